"""Egress NetworkPolicy isolating the attackbox.

The attackbox may only reach:

- DNS (kube-dns in kube-system), when allowed
- the challenge pods of the same instance
- the internet excluding private ranges, when allowed

Everything else is denied because the policy selects the attackbox pods and
declares the Egress policy type.
"""

from kubernetes import client

from . import naming

DNS_PORT = 53
PRIVATE_RANGES = ["10.0.0.0/8", "172.16.0.0/12", "192.168.0.0/16"]


def _dns_rule():
    return client.V1NetworkPolicyEgressRule(
        to=[client.V1NetworkPolicyPeer(
            namespace_selector=client.V1LabelSelector(
                match_labels={"kubernetes.io/metadata.name": "kube-system"},
            ),
            pod_selector=client.V1LabelSelector(match_labels={"k8s-app": "kube-dns"}),
        )],
        ports=[
            client.V1NetworkPolicyPort(protocol="UDP", port=DNS_PORT),
            client.V1NetworkPolicyPort(protocol="TCP", port=DNS_PORT),
        ],
    )


def _challenge_rule(instance):
    return client.V1NetworkPolicyEgressRule(
        to=[client.V1NetworkPolicyPeer(
            pod_selector=client.V1LabelSelector(match_labels=naming.challenge_selector(instance)),
        )],
    )


def _internet_rule():
    return client.V1NetworkPolicyEgressRule(
        to=[client.V1NetworkPolicyPeer(
            ip_block=client.V1IPBlock(cidr="0.0.0.0/0", _except=list(PRIVATE_RANGES)),
        )],
    )


def build_network_policy(instance, template, settings):
    if not template.attack_box_enabled or not template.network_policy_enabled:
        return None

    rules = []
    if template.network_policy.allow_dns:
        rules.append(_dns_rule())
    rules.append(_challenge_rule(instance))
    if template.network_policy.allow_internet:
        rules.append(_internet_rule())

    return client.V1NetworkPolicy(
        api_version="networking.k8s.io/v1",
        kind="NetworkPolicy",
        metadata=client.V1ObjectMeta(
            name=naming.network_policy_name(instance),
            namespace=instance.namespace,
            labels=naming.instance_labels(instance, component="attackbox"),
        ),
        spec=client.V1NetworkPolicySpec(
            pod_selector=client.V1LabelSelector(
                match_labels={"app": naming.attackbox_deployment_name(instance)},
            ),
            policy_types=["Egress"],
            egress=rules,
        ),
    )
