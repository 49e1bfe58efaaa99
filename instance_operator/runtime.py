"""Access to the Kubernetes API for instances, challenges and owned resources."""

import logging
import os

from kubernetes import client, config
from kubernetes.client import ApiException

from .builders.naming import sanitize_for_label
from .models import Instance, Template, default_registry

logger = logging.getLogger("instance_operator.runtime")


def is_not_found(exc):
    return getattr(exc, "status", None) == 404


def load_kube_config():
    """Prefer in-cluster config, fall back to kubeconfig."""
    try:
        config.load_incluster_config()
    except config.ConfigException:
        kubeconfig_path = os.getenv("KUBECONFIG")
        if kubeconfig_path:
            config.load_kube_config(config_file=kubeconfig_path)
        else:
            config.load_kube_config()


class ClusterClient:
    """Object-store operations used by the reconciler and the gateway.

    Every ``get_*`` returns None on 404; every other API error propagates.
    """

    def __init__(self, core=None, apps=None, networking=None, custom=None, registry=None):
        self.core = core
        self.apps = apps
        self.networking = networking
        self.custom = custom
        self.registry = registry or default_registry()
        self._resources = {
            "deployment": (self.apps, "read_namespaced_deployment", "create_namespaced_deployment"),
            "service": (self.core, "read_namespaced_service", "create_namespaced_service"),
            "ingress": (self.networking, "read_namespaced_ingress", "create_namespaced_ingress"),
            "networkpolicy": (
                self.networking,
                "read_namespaced_network_policy",
                "create_namespaced_network_policy",
            ),
        }

    @classmethod
    def from_config(cls, registry=None):
        load_kube_config()
        return cls(
            core=client.CoreV1Api(),
            apps=client.AppsV1Api(),
            networking=client.NetworkingV1Api(),
            custom=client.CustomObjectsApi(),
            registry=registry,
        )

    # Namespaces

    def ensure_namespace(self, namespace):
        """Create namespace if it doesn't exist."""
        try:
            self.core.read_namespace(namespace)
        except ApiException as exc:
            if not is_not_found(exc):
                raise
            body = client.V1Namespace(metadata=client.V1ObjectMeta(name=namespace))
            self.core.create_namespace(body)
            logger.info("Created namespace", extra={"namespace": namespace})

    # Custom objects

    def _get_custom(self, kind, namespace, name):
        group, version, plural = self.registry.coordinates(kind)
        try:
            body = self.custom.get_namespaced_custom_object(group, version, namespace, plural, name)
        except ApiException as exc:
            if is_not_found(exc):
                return None
            raise
        return self.registry.load(kind, body)

    def _list_custom(self, kind, namespace, label_selector=None):
        group, version, plural = self.registry.coordinates(kind)
        kwargs = {}
        if label_selector:
            kwargs["label_selector"] = label_selector
        result = self.custom.list_namespaced_custom_object(group, version, namespace, plural, **kwargs)
        return [self.registry.load(kind, item) for item in result.get("items", [])]

    def get_template(self, namespace, name):
        return self._get_custom(Template.kind, namespace, name)

    def list_templates(self, namespace):
        return self._list_custom(Template.kind, namespace)

    def get_instance(self, namespace, name):
        return self._get_custom(Instance.kind, namespace, name)

    def list_instances(self, namespace, source_id=None, challenge_id=None):
        selector = []
        if source_id:
            selector.append(f"ctf.io/source={sanitize_for_label(source_id)}")
        if challenge_id:
            selector.append(f"ctf.io/challenge={challenge_id}")
        return self._list_custom(Instance.kind, namespace, ",".join(selector) or None)

    def create_instance(self, instance):
        group, version, plural = self.registry.coordinates(Instance.kind)
        body = self.registry.dump(instance)
        body.pop("status", None)
        created = self.custom.create_namespaced_custom_object(group, version, instance.namespace, plural, body)
        return self.registry.load(Instance.kind, created)

    def delete_instance(self, namespace, name):
        """Delete an instance; owned resources are garbage-collected. False if already gone."""
        group, version, plural = self.registry.coordinates(Instance.kind)
        try:
            self.custom.delete_namespaced_custom_object(
                group, version, namespace, plural, name,
                body=client.V1DeleteOptions(propagation_policy="Background"),
            )
        except ApiException as exc:
            if is_not_found(exc):
                return False
            raise
        return True

    def update_instance_spec(self, instance):
        group, version, plural = self.registry.coordinates(Instance.kind)
        body = {"spec": instance.spec_dict()}
        updated = self.custom.patch_namespaced_custom_object(
            group, version, instance.namespace, plural, instance.name, body,
        )
        return self.registry.load(Instance.kind, updated)

    def update_instance_status(self, instance):
        """Write the whole status through the status subresource.

        The patch carries the resourceVersion the instance was read at, so a
        concurrent write (a validated flag, for one) fails with 409 instead of
        being overwritten. The new resourceVersion is stored back on ``instance``.
        """
        group, version, plural = self.registry.coordinates(Instance.kind)
        body = {"status": instance.status.to_dict()}
        if instance.resource_version:
            body["metadata"] = {"resourceVersion": instance.resource_version}
        updated = self.custom.patch_namespaced_custom_object_status(
            group, version, instance.namespace, plural, instance.name, body,
        )
        instance.resource_version = (updated.get("metadata") or {}).get("resourceVersion")
        return instance

    def mark_flag_validated(self, namespace, name):
        """Set only ``status.flagValidated``; other status fields are left alone."""
        group, version, plural = self.registry.coordinates(Instance.kind)
        body = {"status": {"flagValidated": True}}
        self.custom.patch_namespaced_custom_object_status(group, version, namespace, plural, name, body)

    # Owned resources

    def _resource_api(self, kind):
        try:
            return self._resources[kind]
        except KeyError:
            raise ValueError(f"Unsupported resource kind: {kind}") from None

    def get_resource(self, kind, namespace, name):
        api, read, _ = self._resource_api(kind)
        try:
            return getattr(api, read)(name, namespace)
        except ApiException as exc:
            if is_not_found(exc):
                return None
            raise

    def create_resource(self, kind, namespace, body):
        api, _, create = self._resource_api(kind)
        return getattr(api, create)(namespace, body)

    def set_owner(self, body, instance):
        """Link ``body`` to the instance so deleting the instance deletes it too."""
        reference = client.V1OwnerReference(
            api_version=self.registry.api_version(Instance.kind),
            kind=Instance.kind,
            name=instance.name,
            uid=instance.uid,
            controller=True,
            block_owner_deletion=True,
        )
        body.metadata.owner_references = [reference]
        return body
