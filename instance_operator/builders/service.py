"""Service builders for the challenge and attackbox workloads."""

from kubernetes import client

from ..models import EXPOSE_INGRESS, EXPOSE_LOAD_BALANCER, EXPOSE_NODE_PORT
from . import naming
from .workload import ATTACKBOX_AUTH_PROXY_PORT, AUTH_PROXY_PORT

ATTACKBOX_SERVICE_PORT = 8080

_SERVICE_TYPES = {
    EXPOSE_NODE_PORT: "NodePort",
    EXPOSE_LOAD_BALANCER: "LoadBalancer",
    # External reachability is delegated to the Ingress
    EXPOSE_INGRESS: "ClusterIP",
}


def service_type(template):
    return _SERVICE_TYPES.get(template.exposure, "ClusterIP")


def build_service(instance, template, settings):
    """Service fronting the challenge pods; the auth proxy takes the traffic when enabled."""
    target_port = AUTH_PROXY_PORT if template.auth_proxy_enabled else template.port
    return client.V1Service(
        api_version="v1",
        kind="Service",
        metadata=client.V1ObjectMeta(
            name=naming.service_name(instance),
            namespace=instance.namespace,
            labels=naming.instance_labels(instance, **{
                "app": "challenge",
                "app.kubernetes.io/name": "challenge-instance",
            }),
        ),
        spec=client.V1ServiceSpec(
            type=service_type(template),
            selector=naming.challenge_selector(instance),
            ports=[client.V1ServicePort(
                name="challenge",
                port=template.port,
                target_port=target_port,
                protocol="TCP",
            )],
        ),
    )


def build_attackbox_service(instance, template, settings):
    if not template.attack_box_enabled:
        return None

    app = naming.attackbox_deployment_name(instance)
    target_port = ATTACKBOX_AUTH_PROXY_PORT if template.auth_proxy_enabled else template.attack_box.port
    return client.V1Service(
        api_version="v1",
        kind="Service",
        metadata=client.V1ObjectMeta(
            name=naming.attackbox_service_name(instance),
            namespace=instance.namespace,
            labels=naming.instance_labels(instance, app=app, component="attackbox"),
        ),
        spec=client.V1ServiceSpec(
            type="ClusterIP",
            selector={"app": app},
            ports=[client.V1ServicePort(
                name="http",
                port=ATTACKBOX_SERVICE_PORT,
                target_port=target_port,
                protocol="TCP",
            )],
        ),
    )
