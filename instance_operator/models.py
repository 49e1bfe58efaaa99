"""Custom resource models for challenges and challenge instances."""

import copy
from datetime import datetime, timezone

GROUP = "ctf.ctf.io"
VERSION = "v1alpha1"

PHASE_PENDING = "Pending"
PHASE_RUNNING = "Running"
PHASE_FAILED = "Failed"

EXPOSE_CLUSTER_IP = "ClusterIP"
EXPOSE_NODE_PORT = "NodePort"
EXPOSE_LOAD_BALANCER = "LoadBalancer"
EXPOSE_INGRESS = "Ingress"
EXPOSE_TYPES = {EXPOSE_CLUSTER_IP, EXPOSE_NODE_PORT, EXPOSE_LOAD_BALANCER, EXPOSE_INGRESS}

DEFAULT_TIMEOUT = 600
DEFAULT_TTYD_PORT = 7681


def _parse_port(value):
    try:
        if value is None:
            return None
        if isinstance(value, str) and value.strip() == "":
            return None
        port = int(value)
        if 1 <= port <= 65535:
            return port
    except (TypeError, ValueError):
        return None
    return None


def parse_time(value):
    """Parse an RFC3339 timestamp into an aware UTC datetime (None passes through)."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    text = str(value)
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def format_time(value):
    if value is None:
        return None
    return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


class AuthProxySpec:
    """Identity-verification sidecar placed in front of a workload."""

    def __init__(self, enabled=False, image="", resources=None):
        self.enabled = bool(enabled)
        self.image = image or ""
        self.resources = resources or {}

    @classmethod
    def from_dict(cls, data):
        if not data:
            return None
        return cls(data.get("enabled"), data.get("image"), data.get("resources"))


class AttackBoxSpec:
    """Interactive terminal workload paired with the challenge."""

    def __init__(self, enabled=False, image="", port=None, resources=None):
        self.enabled = bool(enabled)
        self.image = image or ""
        self.port = _parse_port(port) or DEFAULT_TTYD_PORT
        self.resources = resources or {}

    @classmethod
    def from_dict(cls, data):
        if not data:
            return None
        return cls(data.get("enabled"), data.get("image"), data.get("port"), data.get("resources"))


class IngressSpec:
    """HTTP routing options for Ingress-exposed challenges."""

    def __init__(self, enabled=False, host_template="", ingress_class_name="", annotations=None,
                 tls=False, cluster_issuer=""):
        self.enabled = bool(enabled)
        self.host_template = host_template or ""
        self.ingress_class_name = ingress_class_name or ""
        self.annotations = dict(annotations or {})
        self.tls = bool(tls)
        self.cluster_issuer = cluster_issuer or ""

    @classmethod
    def from_dict(cls, data):
        if not data:
            return None
        return cls(
            enabled=data.get("enabled"),
            host_template=data.get("hostTemplate"),
            ingress_class_name=data.get("ingressClassName"),
            annotations=data.get("annotations"),
            tls=data.get("tls"),
            cluster_issuer=data.get("clusterIssuer"),
        )


class NetworkPolicySpec:
    """Egress isolation for the terminal workload."""

    def __init__(self, enabled=False, allow_dns=False, allow_internet=False):
        self.enabled = bool(enabled)
        self.allow_dns = bool(allow_dns)
        self.allow_internet = bool(allow_internet)

    @classmethod
    def from_dict(cls, data):
        if not data:
            return None
        return cls(data.get("enabled"), data.get("allowDNS"), data.get("allowInternet"))


class Template:
    """A ``Challenge`` resource: how to run one class of instance."""

    kind = "Challenge"
    plural = "challenges"

    def __init__(self, name, namespace, challenge_id, image, port, expose_type=EXPOSE_NODE_PORT,
                 env=None, resources=None, flag_template="", flag_count=1, auth_proxy=None,
                 attack_box=None, ingress=None, network_policy=None, timeout=DEFAULT_TIMEOUT,
                 raw=None):
        self.name = name
        self.namespace = namespace
        self.challenge_id = challenge_id
        self.image = image
        self.port = port
        self.expose_type = expose_type if expose_type in EXPOSE_TYPES else EXPOSE_NODE_PORT
        self.env = list(env or [])
        self.resources = resources or {}
        self.flag_template = flag_template or ""
        self.flag_count = flag_count if flag_count and flag_count > 0 else 1
        self.auth_proxy = auth_proxy
        self.attack_box = attack_box
        self.ingress = ingress
        self.network_policy = network_policy
        self.timeout = timeout if timeout and timeout > 0 else DEFAULT_TIMEOUT
        self.raw = raw or {}

    @classmethod
    def from_dict(cls, body):
        metadata = body.get("metadata") or {}
        spec = body.get("spec") or {}
        scenario = spec.get("scenario") or {}
        try:
            flag_count = int(scenario.get("flagCount") or 1)
        except (TypeError, ValueError):
            flag_count = 1
        try:
            timeout = int(spec.get("timeout") or DEFAULT_TIMEOUT)
        except (TypeError, ValueError):
            timeout = DEFAULT_TIMEOUT
        return cls(
            name=metadata.get("name"),
            namespace=metadata.get("namespace"),
            challenge_id=spec.get("id") or metadata.get("name"),
            image=scenario.get("image"),
            port=_parse_port(scenario.get("port")) or 80,
            expose_type=scenario.get("exposeType") or EXPOSE_NODE_PORT,
            env=scenario.get("env"),
            resources=scenario.get("resources"),
            flag_template=scenario.get("flagTemplate"),
            flag_count=flag_count,
            auth_proxy=AuthProxySpec.from_dict(scenario.get("authProxy")),
            attack_box=AttackBoxSpec.from_dict(scenario.get("attackBox")),
            ingress=IngressSpec.from_dict(scenario.get("ingress")),
            network_policy=NetworkPolicySpec.from_dict(scenario.get("networkPolicy")),
            timeout=timeout,
            raw=copy.deepcopy(body),
        )

    def to_dict(self):
        return copy.deepcopy(self.raw)

    @property
    def exposure(self):
        if self.expose_type == EXPOSE_INGRESS or (self.ingress and self.ingress.enabled):
            return EXPOSE_INGRESS
        return self.expose_type

    @property
    def auth_proxy_enabled(self):
        return bool(self.auth_proxy and self.auth_proxy.enabled)

    @property
    def attack_box_enabled(self):
        return bool(self.attack_box and self.attack_box.enabled)

    @property
    def network_policy_enabled(self):
        return bool(self.network_policy and self.network_policy.enabled)


class InstanceStatus:
    """Reconciler-owned status of a ``ChallengeInstance``."""

    FIELDS = (
        ("phase", "phase", ""),
        ("ready", "ready", False),
        ("flags", "flags", None),
        ("connection_info", "connectionInfo", ""),
        ("flag_validated", "flagValidated", False),
        ("deployment_name", "deploymentName", ""),
        ("service_name", "serviceName", ""),
        ("terminal_deployment_name", "terminalDeploymentName", ""),
        ("terminal_service_name", "terminalServiceName", ""),
        ("ingress_name", "ingressName", ""),
        ("network_policy_name", "networkPolicyName", ""),
    )

    def __init__(self, **values):
        for attr, _, default in self.FIELDS:
            setattr(self, attr, values.get(attr, default))
        self.flags = list(self.flags or [])

    @classmethod
    def from_dict(cls, data):
        data = data or {}
        return cls(**{attr: data.get(key, default) for attr, key, default in cls.FIELDS})

    def to_dict(self):
        return {key: getattr(self, attr) for attr, key, _ in self.FIELDS}


class Instance:
    """A ``ChallengeInstance`` resource: one running occurrence for one source."""

    kind = "ChallengeInstance"
    plural = "challengeinstances"

    def __init__(self, name, namespace, challenge_id, source_id, challenge_name, since=None,
                 until=None, additional=None, renew_count=0, uid=None, labels=None, status=None,
                 resource_version=None):
        self.name = name
        self.namespace = namespace
        self.challenge_id = challenge_id
        self.source_id = source_id
        self.challenge_name = challenge_name
        self.since = since
        self.until = until
        self.additional = dict(additional or {})
        self.renew_count = renew_count or 0
        self.uid = uid
        self.resource_version = resource_version
        self.labels = dict(labels or {})
        self.status = status or InstanceStatus()

    @classmethod
    def from_dict(cls, body):
        metadata = body.get("metadata") or {}
        spec = body.get("spec") or {}
        return cls(
            name=metadata.get("name"),
            namespace=metadata.get("namespace"),
            challenge_id=spec.get("challengeId"),
            source_id=spec.get("sourceId"),
            challenge_name=spec.get("challengeName"),
            since=parse_time(spec.get("since")),
            until=parse_time(spec.get("until")),
            additional=spec.get("additional"),
            renew_count=spec.get("renewCount"),
            uid=metadata.get("uid"),
            resource_version=metadata.get("resourceVersion"),
            labels=metadata.get("labels"),
            status=InstanceStatus.from_dict(body.get("status")),
        )

    def spec_dict(self):
        spec = {
            "challengeId": self.challenge_id,
            "sourceId": self.source_id,
            "challengeName": self.challenge_name,
            "since": format_time(self.since),
            "renewCount": self.renew_count,
        }
        if self.until is not None:
            spec["until"] = format_time(self.until)
        if self.additional:
            spec["additional"] = dict(self.additional)
        return spec

    def to_dict(self):
        metadata = {"name": self.name, "namespace": self.namespace}
        if self.labels:
            metadata["labels"] = dict(self.labels)
        if self.uid:
            metadata["uid"] = self.uid
        if self.resource_version:
            metadata["resourceVersion"] = self.resource_version
        return {
            "apiVersion": f"{GROUP}/{VERSION}",
            "kind": self.kind,
            "metadata": metadata,
            "spec": self.spec_dict(),
            "status": self.status.to_dict(),
        }

    def is_expired(self, now):
        return self.until is not None and now >= self.until


class KindRegistry:
    """Maps custom resource kinds to their API coordinates and model classes.

    Constructed explicitly and handed to whatever needs to marshal these kinds.
    """

    def __init__(self):
        self._kinds = {}

    def register(self, model, group=GROUP, version=VERSION):
        self._kinds[model.kind] = (group, version, model.plural, model)
        return model

    def coordinates(self, kind):
        """Return ``(group, version, plural)`` for a registered kind."""
        group, version, plural, _ = self._lookup(kind)
        return group, version, plural

    def api_version(self, kind):
        group, version, _, _ = self._lookup(kind)
        return f"{group}/{version}"

    def load(self, kind, body):
        _, _, _, model = self._lookup(kind)
        return model.from_dict(body)

    def dump(self, obj):
        self._lookup(obj.kind)
        return obj.to_dict()

    def _lookup(self, kind):
        try:
            return self._kinds[kind]
        except KeyError:
            raise KeyError(f"Unregistered kind: {kind}") from None


def default_registry():
    registry = KindRegistry()
    registry.register(Template)
    registry.register(Instance)
    return registry
