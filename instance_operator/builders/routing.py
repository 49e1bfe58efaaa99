"""Ingress builder for HTTP-routed challenges.

The Ingress exposes the challenge at ``/`` and, when an attackbox is present,
the terminal at ``/terminal`` with the prefix stripped.
"""

from kubernetes import client

from ..flaggen import render
from ..models import EXPOSE_INGRESS
from . import naming
from .service import ATTACKBOX_SERVICE_PORT

OAUTH_URL = "http://oauth2-proxy.keycloak.svc.cluster.local:4180/oauth2/auth"
AUTH_RESPONSE_HEADERS = "X-Auth-Request-User,X-Auth-Request-Email,Authorization"
TERMINAL_PATH = "/terminal(/|$)(.*)"


def ingress_hostname(instance, template, settings):
    """Render the hostname for an instance, or "" when it is not HTTP-routed."""
    if template.exposure != EXPOSE_INGRESS:
        return ""
    host_template = settings.default_host_template
    if template.ingress and template.ingress.host_template:
        host_template = template.ingress.host_template
    context = {
        "instance_name": instance.name,
        "username": naming.sanitize_for_label(instance.source_id),
        "challenge_id": str(instance.challenge_id),
        "source_id": str(instance.source_id),
    }
    return render(host_template, context, what="host template").strip()


def _annotations(instance, template, settings):
    ingress = template.ingress
    annotations = {
        "nginx.ingress.kubernetes.io/ssl-redirect": "false",
        "nginx.ingress.kubernetes.io/auth-url": OAUTH_URL,
        "nginx.ingress.kubernetes.io/auth-signin":
            f"http://{settings.auth_url}/oauth2/start?rd=$scheme://$host$request_uri",
        "nginx.ingress.kubernetes.io/auth-response-headers": AUTH_RESPONSE_HEADERS,
        "nginx.ingress.kubernetes.io/proxy-buffer-size": "16k",
        "nginx.ingress.kubernetes.io/proxy-buffers-number": "4",
        "nginx.ingress.kubernetes.io/proxy-busy-buffers-size": "24k",
    }
    if template.attack_box_enabled:
        # Websocket support for ttyd, regex path strips /terminal
        annotations.update({
            "nginx.ingress.kubernetes.io/proxy-read-timeout": "3600",
            "nginx.ingress.kubernetes.io/proxy-send-timeout": "3600",
            "nginx.ingress.kubernetes.io/websocket-services": naming.attackbox_service_name(instance),
            "nginx.ingress.kubernetes.io/use-regex": "true",
            "nginx.ingress.kubernetes.io/rewrite-target": "/$2",
        })

    if ingress:
        annotations.update(ingress.annotations)
        if ingress.tls and ingress.cluster_issuer:
            annotations["cert-manager.io/cluster-issuer"] = ingress.cluster_issuer
    return annotations


def _path(path, path_type, service, port):
    return client.V1HTTPIngressPath(
        path=path,
        path_type=path_type,
        backend=client.V1IngressBackend(
            service=client.V1IngressServiceBackend(
                name=service,
                port=client.V1ServiceBackendPort(number=port),
            ),
        ),
    )


def build_ingress(instance, template, settings):
    if template.exposure != EXPOSE_INGRESS:
        return None

    name = naming.ingress_name(instance)
    hostname = ingress_hostname(instance, template, settings)

    paths = []
    if template.attack_box_enabled:
        # Must come first so the regex wins over the catch-all prefix
        paths.append(_path(
            TERMINAL_PATH, "ImplementationSpecific",
            naming.attackbox_service_name(instance), ATTACKBOX_SERVICE_PORT,
        ))
    paths.append(_path("/", "Prefix", naming.service_name(instance), template.port))

    spec = client.V1IngressSpec(
        rules=[client.V1IngressRule(
            host=hostname,
            http=client.V1HTTPIngressRuleValue(paths=paths),
        )],
    )
    if template.ingress and template.ingress.ingress_class_name:
        spec.ingress_class_name = template.ingress.ingress_class_name
    if template.ingress and template.ingress.tls:
        spec.tls = [client.V1IngressTLS(hosts=[hostname], secret_name=f"{name}-tls")]

    return client.V1Ingress(
        api_version="networking.k8s.io/v1",
        kind="Ingress",
        metadata=client.V1ObjectMeta(
            name=name,
            namespace=instance.namespace,
            annotations=_annotations(instance, template, settings),
            labels=naming.instance_labels(instance),
        ),
        spec=spec,
    )


def ingress_host(ingress):
    """Hostname of the first rule of a live Ingress (or "")."""
    if ingress is None or ingress.spec is None or not ingress.spec.rules:
        return ""
    return ingress.spec.rules[0].host or ""
