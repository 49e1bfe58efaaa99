"""Deployment builders for the challenge workload and its terminal (attackbox)."""

from kubernetes import client

from . import naming

AUTH_PROXY_PORT = 80
ATTACKBOX_AUTH_PROXY_PORT = 8888


def _resources(spec):
    if not spec:
        return None
    requests = spec.get("requests")
    limits = spec.get("limits")
    if not requests and not limits:
        return None
    return client.V1ResourceRequirements(
        requests=dict(requests) if requests else None,
        limits=dict(limits) if limits else None,
    )


def _key_ref(ref, cls):
    return cls(name=ref.get("name"), key=ref.get("key"), optional=ref.get("optional"))


def _env_var(item):
    """Convert a manifest-style env entry into a V1EnvVar."""
    value_from = item.get("valueFrom")
    if not value_from:
        value = item.get("value")
        return client.V1EnvVar(name=item["name"], value=None if value is None else str(value))
    source = client.V1EnvVarSource()
    if value_from.get("secretKeyRef"):
        source.secret_key_ref = _key_ref(value_from["secretKeyRef"], client.V1SecretKeySelector)
    if value_from.get("configMapKeyRef"):
        source.config_map_key_ref = _key_ref(value_from["configMapKeyRef"], client.V1ConfigMapKeySelector)
    if value_from.get("fieldRef"):
        source.field_ref = client.V1ObjectFieldSelector(field_path=value_from["fieldRef"].get("fieldPath"))
    return client.V1EnvVar(name=item["name"], value_from=source)


def _image_pull_secrets(settings):
    if not settings.image_pull_secrets:
        return None
    return [client.V1LocalObjectReference(name=n) for n in settings.image_pull_secrets]


def _identity_env(instance):
    return [
        client.V1EnvVar(name="INSTANCE_ID", value=instance.name),
        client.V1EnvVar(name="SOURCE_ID", value=str(instance.source_id)),
        client.V1EnvVar(name="CHALLENGE_ID", value=str(instance.challenge_id)),
    ]


def _flag_env(flags):
    """FLAG carries the first flag; extra flags are exposed as FLAG_2, FLAG_3, ..."""
    env = []
    for index, flag in enumerate(flags):
        name = "FLAG" if index == 0 else f"FLAG_{index + 1}"
        env.append(client.V1EnvVar(name=name, value=flag))
    return env


def _auth_proxy_container(name, instance, template, settings, target_port, listen_port):
    env = [
        client.V1EnvVar(name="ALLOWED_USER", value=str(instance.source_id)),
        client.V1EnvVar(name="TARGET_PORT", value=str(target_port)),
    ]
    if listen_port != AUTH_PROXY_PORT:
        env.append(client.V1EnvVar(name="LISTEN_PORT", value=str(listen_port)))
    return client.V1Container(
        name=name,
        image=template.auth_proxy.image or settings.auth_proxy_image,
        image_pull_policy="IfNotPresent",
        env=env,
        ports=[client.V1ContainerPort(name="http", container_port=listen_port, protocol="TCP")],
        resources=_resources(template.auth_proxy.resources),
    )


def _deployment(name, labels, selector, containers, settings, namespace):
    return client.V1Deployment(
        api_version="apps/v1",
        kind="Deployment",
        metadata=client.V1ObjectMeta(name=name, namespace=namespace, labels=labels),
        spec=client.V1DeploymentSpec(
            replicas=1,
            selector=client.V1LabelSelector(match_labels=selector),
            template=client.V1PodTemplateSpec(
                metadata=client.V1ObjectMeta(labels=labels),
                spec=client.V1PodSpec(
                    image_pull_secrets=_image_pull_secrets(settings),
                    containers=containers,
                    restart_policy="Always",
                ),
            ),
        ),
    )


def build_deployment(instance, template, settings):
    """Deployment running the challenge container (plus the auth proxy when enabled)."""
    labels = naming.instance_labels(instance, **{
        "app": "challenge",
        "app.kubernetes.io/name": "challenge-instance",
    })

    env = [_env_var(item) for item in template.env]
    env.extend(_flag_env(instance.status.flags))
    env.extend(_identity_env(instance))

    containers = []
    if template.auth_proxy_enabled:
        # Proxy listens on 80 and forwards to the challenge port
        containers.append(_auth_proxy_container(
            "auth-proxy", instance, template, settings,
            target_port=template.port, listen_port=AUTH_PROXY_PORT,
        ))
    containers.append(client.V1Container(
        name="challenge",
        image=template.image,
        image_pull_policy="IfNotPresent",
        ports=[client.V1ContainerPort(name="challenge", container_port=template.port, protocol="TCP")],
        env=env,
        resources=_resources(template.resources),
    ))

    return _deployment(
        naming.deployment_name(instance),
        labels,
        naming.challenge_selector(instance),
        containers,
        settings,
        instance.namespace,
    )


def build_attackbox_deployment(instance, template, settings):
    """Terminal (ttyd) deployment that can reach the challenge service, or None."""
    if not template.attack_box_enabled:
        return None

    name = naming.attackbox_deployment_name(instance)
    username = naming.sanitize_for_label(instance.source_id)
    labels = naming.instance_labels(instance, **{
        "app": name,
        "component": "attackbox",
        "app.kubernetes.io/name": "attackbox",
    })
    ttyd_port = template.attack_box.port
    challenge_host = f"{naming.service_name(instance)}.{instance.namespace}.svc.cluster.local"

    containers = []
    if template.auth_proxy_enabled:
        containers.append(_auth_proxy_container(
            "auth-proxy-attackbox", instance, template, settings,
            target_port=ttyd_port, listen_port=ATTACKBOX_AUTH_PROXY_PORT,
        ))

    env = [
        client.V1EnvVar(
            name="PS1",
            value=f"\\[\\e[1;32m\\]{username}@attackbox\\[\\e[0m\\]:\\[\\e[1;34m\\]\\w\\[\\e[0m\\]$ ",
        ),
        client.V1EnvVar(name="CHALLENGE_HOST", value=challenge_host),
        client.V1EnvVar(name="CHALLENGE_PORT", value=str(template.port)),
        client.V1EnvVar(name="TTYD_PORT", value=str(ttyd_port)),
    ]
    env.extend(_identity_env(instance))

    containers.append(client.V1Container(
        name="attackbox",
        image=template.attack_box.image or settings.attackbox_image,
        image_pull_policy="IfNotPresent",
        env=env,
        ports=[client.V1ContainerPort(name="ttyd", container_port=ttyd_port, protocol="TCP")],
        resources=_resources(template.attack_box.resources),
        security_context=client.V1SecurityContext(
            run_as_non_root=True,
            run_as_user=1000,
            allow_privilege_escalation=False,
        ),
    ))

    return _deployment(name, labels, {"app": name}, containers, settings, instance.namespace)
