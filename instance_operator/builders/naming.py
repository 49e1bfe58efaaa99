"""Deterministic names and labels for resources owned by an instance."""

import hashlib

MANAGED_BY = "instance-operator"
MAX_NAME_LENGTH = 63

DEPLOYMENT_SUFFIX = "-deployment"
SERVICE_SUFFIX = "-svc"
ATTACKBOX_SUFFIX = "-attackbox"
ATTACKBOX_SERVICE_SUFFIX = "-attackbox-svc"
INGRESS_SUFFIX = "-ingress"
NETWORK_POLICY_SUFFIX = "-attackbox-netpol"


def sanitize_for_label(value):
    """Make a source identifier usable in label values and DNS names.

    ``"uwu@uwu.uwu"`` becomes ``"uwu-at-uwu-uwu"``.
    """
    result = str(value).replace("@", "-at-").replace(".", "-").lower()
    return result[:MAX_NAME_LENGTH]


def _derive(base, suffix):
    name = base + suffix
    if len(name) <= MAX_NAME_LENGTH:
        return name
    digest = hashlib.sha256(base.encode("utf-8")).hexdigest()[:8]
    keep = MAX_NAME_LENGTH - len(suffix) - len(digest) - 1
    return f"{base[:keep].rstrip('-')}-{digest}{suffix}"


def instance_label(instance):
    """Label value identifying the instance, kept within the 63 character limit."""
    return _derive(instance.name, "")


def deployment_name(instance):
    return _derive(instance.name, DEPLOYMENT_SUFFIX)


def service_name(instance):
    return _derive(instance.name, SERVICE_SUFFIX)


def attackbox_deployment_name(instance):
    return _derive(instance.name, ATTACKBOX_SUFFIX)


def attackbox_service_name(instance):
    return _derive(instance.name, ATTACKBOX_SERVICE_SUFFIX)


def ingress_name(instance):
    return _derive(instance.name, INGRESS_SUFFIX)


def network_policy_name(instance):
    return _derive(instance.name, NETWORK_POLICY_SUFFIX)


def instance_labels(instance, **extra):
    """Common labels used for lookup and cleanup."""
    labels = {
        "ctf.io/challenge": str(instance.challenge_id),
        "ctf.io/instance": instance_label(instance),
        "ctf.io/source": sanitize_for_label(instance.source_id),
        "app.kubernetes.io/instance": instance_label(instance),
        "app.kubernetes.io/managed-by": MANAGED_BY,
    }
    labels.update(extra)
    return labels


def challenge_selector(instance):
    return {"ctf.io/instance": instance_label(instance), "app": "challenge"}
