"""Per-instance flag generation.

Flag templates are Jinja2 strings rendered in a sandbox. Available variables:

- ``instance_id``: the instance name
- ``source_id``: the user/team identifier
- ``challenge_id``: the challenge identifier
- ``random_string``: 32 hex characters from a CSPRNG

Example: ``CTF{{ '{' }}{{ challenge_id }}_{{ random_string }}{{ '}' }}``
"""

import secrets

from jinja2 import StrictUndefined, TemplateError
from jinja2.sandbox import SandboxedEnvironment

from .errors import TemplateRenderError

RANDOM_BYTES = 16

# Literal braces have to be emitted as expressions so Jinja does not read "{{{".
DEFAULT_TEMPLATE = "FLAG{{ '{' }}{{ challenge_id }}_{{ source_id }}_{{ random_string }}{{ '}' }}"

_env = SandboxedEnvironment(undefined=StrictUndefined, autoescape=False)


def render(template, context, what="template"):
    """Render ``template`` with ``context``; any Jinja failure becomes TemplateRenderError."""
    try:
        return _env.from_string(template).render(**context)
    except TemplateError as exc:
        raise TemplateRenderError(f"failed to render {what}: {exc}") from exc


def generate(template, instance_id, source_id, challenge_id):
    """Return a fresh flag for one instance."""
    context = {
        "instance_id": instance_id,
        "source_id": source_id,
        "challenge_id": challenge_id,
        "random_string": secrets.token_hex(RANDOM_BYTES),
    }
    return render(template or DEFAULT_TEMPLATE, context, what="flag template")


def generate_multiple(template, instance_id, source_id, challenge_id, count=1):
    if count is None or count <= 0:
        count = 1
    return [generate(template, instance_id, source_id, challenge_id) for _ in range(count)]
