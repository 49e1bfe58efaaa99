"""
Shared fixtures: settings, object factories and an in-memory cluster.

``FakeCluster`` implements the ``ClusterClient`` surface the reconciler and
gateway use. Instances are stored as dicts so callers never share state with
the store, and deleting an instance removes every resource it owns.
"""

import copy
import itertools
from datetime import datetime, timedelta, timezone

import pytest

pytest.importorskip("kubernetes")

from kubernetes import client
from kubernetes.client import ApiException

from instance_operator.config import Settings
from instance_operator.models import Instance, Template, default_registry

NOW = datetime(2026, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


class FakeCluster:
    def __init__(self):
        self.registry = default_registry()
        self.templates = {}
        self.instances = {}
        self.resources = {}
        self.created = []
        self.status_writes = 0
        self._uids = itertools.count(1)
        self._node_ports = itertools.count(30000)
        self._versions = itertools.count(1)

    # Challenges

    def add_template(self, body):
        template = Template.from_dict(body)
        self.templates[(template.namespace, template.name)] = template
        return template

    def get_template(self, namespace, name):
        return self.templates.get((namespace, name))

    def list_templates(self, namespace):
        return [t for (ns, _), t in sorted(self.templates.items()) if ns == namespace]

    # Instances

    def create_instance(self, instance):
        body = instance.to_dict()
        body["metadata"]["uid"] = f"uid-{next(self._uids)}"
        self._bump(body)
        self.instances[(instance.namespace, instance.name)] = body
        return Instance.from_dict(copy.deepcopy(body))

    def get_instance(self, namespace, name):
        body = self.instances.get((namespace, name))
        return None if body is None else Instance.from_dict(copy.deepcopy(body))

    def list_instances(self, namespace, source_id=None, challenge_id=None):
        found = []
        for (ns, _), body in sorted(self.instances.items()):
            instance = Instance.from_dict(copy.deepcopy(body))
            if ns != namespace:
                continue
            if source_id and instance.source_id != source_id:
                continue
            if challenge_id and instance.challenge_id != challenge_id:
                continue
            found.append(instance)
        return found

    def delete_instance(self, namespace, name):
        body = self.instances.pop((namespace, name), None)
        if body is None:
            return False
        uid = body["metadata"]["uid"]
        for key, obj in list(self.resources.items()):
            owners = obj.metadata.owner_references or []
            if any(owner.uid == uid for owner in owners):
                del self.resources[key]
        return True

    def update_instance_spec(self, instance):
        body = self.instances[(instance.namespace, instance.name)]
        body["spec"] = instance.spec_dict()
        self._bump(body)
        return Instance.from_dict(copy.deepcopy(body))

    def update_instance_status(self, instance):
        """Whole-status write, rejected with 409 when the stored object moved on."""
        body = self.instances.get((instance.namespace, instance.name))
        if body is None:
            raise ApiException(status=404, reason="Not Found")
        current = body["metadata"]["resourceVersion"]
        if instance.resource_version and instance.resource_version != current:
            raise ApiException(status=409, reason="Conflict")
        body["status"] = instance.status.to_dict()
        instance.resource_version = self._bump(body)
        self.status_writes += 1
        return instance

    def mark_flag_validated(self, namespace, name):
        body = self.instances.get((namespace, name))
        if body is None:
            raise ApiException(status=404, reason="Not Found")
        body.setdefault("status", {})["flagValidated"] = True
        self._bump(body)

    def _bump(self, body):
        version = str(next(self._versions))
        body["metadata"]["resourceVersion"] = version
        return version

    # Owned resources

    def get_resource(self, kind, namespace, name):
        return self.resources.get((kind, namespace, name))

    def create_resource(self, kind, namespace, body):
        key = (kind, namespace, body.metadata.name)
        if key in self.resources:
            raise AssertionError(f"{kind} {body.metadata.name} created twice")
        if kind == "service" and body.spec.type == "NodePort":
            for port in body.spec.ports:
                port.node_port = next(self._node_ports)
        self.resources[key] = body
        self.created.append((kind, body.metadata.name))
        return body

    def set_owner(self, body, instance):
        body.metadata.owner_references = [client.V1OwnerReference(
            api_version=self.registry.api_version(Instance.kind),
            kind=Instance.kind,
            name=instance.name,
            uid=instance.uid,
            controller=True,
            block_owner_deletion=True,
        )]
        return body

    def ensure_namespace(self, namespace):
        return None

    # Test helpers

    def mark_ready(self, namespace, name, replicas=1):
        deployment = self.resources[("deployment", namespace, name)]
        deployment.status = client.V1DeploymentStatus(ready_replicas=replicas)

    def kinds(self):
        return sorted(kind for kind, _, _ in self.resources)


def challenge_body(name="web-101", namespace="ctf-instances", timeout=600, **scenario):
    scenario.setdefault("image", "registry.local/web-101:latest")
    scenario.setdefault("port", 8080)
    return {
        "apiVersion": "ctf.ctf.io/v1alpha1",
        "kind": "Challenge",
        "metadata": {"name": name, "namespace": namespace},
        "spec": {"id": name, "timeout": timeout, "scenario": scenario},
    }


def make_instance(name="chal-web-101-alice", namespace="ctf-instances", challenge="web-101",
                  source="alice", until=None, flags=None, **status):
    instance = Instance(
        name=name,
        namespace=namespace,
        challenge_id=challenge,
        source_id=source,
        challenge_name=challenge,
        since=NOW,
        until=until if until is not None else NOW + timedelta(minutes=10),
        uid="uid-fixed",
    )
    instance.status.flags = list(flags or [])
    for key, value in status.items():
        setattr(instance.status, key, value)
    return instance


@pytest.fixture
def settings():
    return Settings(
        namespace="ctf-instances",
        node_ip="10.0.0.5",
        default_host_template="{{ instance_name }}.ctf.example.com",
        auth_url="auth.example.com",
        requeue_seconds=10,
        retry_delay_seconds=5,
        default_timeout_seconds=600,
        ttl_max_seconds=None,
        ready_wait_seconds=0,
        image_pull_secrets=(),
        auth_proxy_image="ctf-auth-proxy:simple",
        attackbox_image="attack-box:latest",
    )


@pytest.fixture
def cluster():
    return FakeCluster()


@pytest.fixture
def clock():
    """Mutable clock: set ``clock.now`` to move time."""

    class Clock:
        now = NOW

        def __call__(self):
            return self.now

    return Clock()
