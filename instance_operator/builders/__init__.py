"""Pure builders computing the desired state of every resource an instance owns.

Each builder takes ``(instance, template, settings)`` and returns a
``kubernetes.client`` model, or None when the template does not ask for that
resource. Builders never touch the cluster.
"""

from collections import namedtuple

from .naming import sanitize_for_label
from .policy import build_network_policy
from .routing import build_ingress, ingress_host, ingress_hostname
from .service import build_attackbox_service, build_service
from .workload import build_attackbox_deployment, build_deployment

Step = namedtuple("Step", "kind build status_field")

# Later steps reference names produced by earlier ones; keep this order.
STEPS = (
    Step("deployment", build_deployment, "deployment_name"),
    Step("service", build_service, "service_name"),
    Step("deployment", build_attackbox_deployment, "terminal_deployment_name"),
    Step("service", build_attackbox_service, "terminal_service_name"),
    Step("ingress", build_ingress, "ingress_name"),
    Step("networkpolicy", build_network_policy, "network_policy_name"),
)

__all__ = [
    "STEPS",
    "Step",
    "build_attackbox_deployment",
    "build_attackbox_service",
    "build_deployment",
    "build_ingress",
    "build_network_policy",
    "build_service",
    "ingress_host",
    "ingress_hostname",
    "sanitize_for_label",
]
