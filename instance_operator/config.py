"""Operator and gateway settings resolved from the environment."""

import os
from collections import namedtuple

DEFAULT_HOST_TEMPLATE = "ctf.{{ instance_name }}.{{ username }}.{{ challenge_id }}.devleo.local"


def _env_int(name, default, minimum=1):
    """Read an integer env var, falling back to ``default`` when unset or invalid."""
    try:
        value = int(os.getenv(name, str(default)))
        return value if value >= minimum else default
    except (TypeError, ValueError):
        return default


def _env_optional_int(name):
    """Positive integer or None (unset, zero, negative and garbage all disable)."""
    try:
        value = int(os.getenv(name, "0"))
        return value if value > 0 else None
    except (TypeError, ValueError):
        return None


def _image_pull_secrets():
    """Parse imagePullSecrets from env (comma-separated)."""
    raw = os.getenv("K8S_IMAGE_PULL_SECRETS", "").strip()
    if not raw:
        return ()
    return tuple(name.strip() for name in raw.split(",") if name.strip())


_FIELDS = (
    "namespace",
    "node_ip",
    "default_host_template",
    "auth_url",
    "requeue_seconds",
    "retry_delay_seconds",
    "default_timeout_seconds",
    "ttl_max_seconds",
    "ready_wait_seconds",
    "image_pull_secrets",
    "auth_proxy_image",
    "attackbox_image",
)


class Settings(namedtuple("Settings", _FIELDS)):
    """Immutable settings shared by the reconciler, builders and gateway."""

    __slots__ = ()

    @classmethod
    def from_env(cls):
        return cls(
            namespace=os.getenv("INSTANCE_NAMESPACE", "ctf-instances"),
            node_ip=os.getenv("NODE_IP", "localhost"),
            default_host_template=os.getenv("DEFAULT_HOST_TEMPLATE") or DEFAULT_HOST_TEMPLATE,
            auth_url=os.getenv("AUTH_URL", "auth.devleo.local"),
            requeue_seconds=_env_int("REQUEUE_SECONDS", 10),
            retry_delay_seconds=_env_int("RETRY_DELAY_SECONDS", 5),
            default_timeout_seconds=_env_int("DEFAULT_TIMEOUT_SECONDS", 600),
            ttl_max_seconds=_env_optional_int("TTL_MAX_SECONDS"),
            ready_wait_seconds=_env_int("READY_WAIT_SECONDS", 60, minimum=0),
            image_pull_secrets=_image_pull_secrets(),
            auth_proxy_image=os.getenv("AUTH_PROXY_IMAGE", "ctf-auth-proxy:simple"),
            attackbox_image=os.getenv("ATTACKBOX_IMAGE", "attack-box:latest"),
        )

    def with_overrides(self, mapping):
        """Apply overrides from a mapping such as ``app.config`` (keys upper-cased)."""
        changes = {}
        for field in self._fields:
            key = field.upper()
            if key in mapping:
                changes[field] = mapping[key]
        return self._replace(**changes) if changes else self
