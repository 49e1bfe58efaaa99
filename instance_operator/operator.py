"""Kopf handlers driving the instance reconciler.

Run with ``kopf run -m instance_operator.operator`` or the ``instance-operator``
console script. Handlers stay thin: every trigger (creation, operator resume,
the periodic timer, a validated flag) runs the same idempotent pass.
"""

import logging
import os

import kopf
from kubernetes.client import ApiException

from .config import Settings
from .errors import TemplateRenderError
from .models import GROUP, VERSION, Instance
from .reconciler import InstanceReconciler
from .runtime import ClusterClient

PLURAL = Instance.plural

# Timer interval has to be known when the handlers are registered
REQUEUE_SECONDS = Settings.from_env().requeue_seconds
WORKER_LIMIT = int(os.environ.get("OPERATOR_WORKER_LIMIT", 5))
MAX_IMMEDIATE_PASSES = 5


def drive(reconciler, namespace, name, retry_delay):
    """Run passes until one asks for a delayed requeue (or stops).

    API failures become kopf.TemporaryError so kopf's backoff applies; broken
    templates are a configuration error and are not retried.
    """
    result = None
    for _ in range(MAX_IMMEDIATE_PASSES):
        try:
            result = reconciler.reconcile(namespace, name)
        except TemplateRenderError as exc:
            raise kopf.PermanentError(str(exc)) from exc
        except ApiException as exc:
            raise kopf.TemporaryError(
                f"Kubernetes API error ({exc.status}): {exc.reason}", delay=retry_delay,
            ) from exc
        if not (result.requeue and result.requeue_after == 0):
            break
    return result


@kopf.on.startup()
def configure(settings: kopf.OperatorSettings, memo: kopf.Memo, logger: logging.Logger, **_):
    operator_settings = Settings.from_env()
    try:
        cluster = ClusterClient.from_config()
    except Exception as exc:
        logger.error(f"Could not configure Kubernetes client: {exc}")
        raise kopf.PermanentError("Could not configure Kubernetes client.") from exc

    cluster.ensure_namespace(operator_settings.namespace)

    memo.settings = operator_settings
    memo.reconciler = InstanceReconciler(cluster, operator_settings)

    # Unbounded workers can flood the API server on restart
    settings.batching.worker_limit = WORKER_LIMIT
    settings.posting.level = logging.WARNING
    logger.info(
        "Operator started",
        extra={"namespace": operator_settings.namespace, "requeue_seconds": operator_settings.requeue_seconds},
    )


@kopf.on.create(GROUP, VERSION, PLURAL)
@kopf.on.resume(GROUP, VERSION, PLURAL)
def instance_created(name, namespace, memo: kopf.Memo, **_):
    drive(memo.reconciler, namespace, name, memo.settings.retry_delay_seconds)


@kopf.timer(GROUP, VERSION, PLURAL, interval=REQUEUE_SECONDS, initial_delay=REQUEUE_SECONDS)
def instance_poll(name, namespace, memo: kopf.Memo, **_):
    drive(memo.reconciler, namespace, name, memo.settings.retry_delay_seconds)


@kopf.on.event(GROUP, VERSION, PLURAL)
def instance_event(event, name, namespace, status, memo: kopf.Memo, logger: logging.Logger, **_):
    """React to a validated flag without waiting for the next timer tick."""
    if event.get("type") == "DELETED" or not status.get("flagValidated"):
        return
    try:
        drive(memo.reconciler, namespace, name, memo.settings.retry_delay_seconds)
    except kopf.TemporaryError as exc:
        # Event handlers are not retried; the timer picks the instance up again
        logger.warning(f"Deferred teardown of {name}: {exc}")


def main():
    settings = Settings.from_env()
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    kopf.run(namespaces=[settings.namespace])


if __name__ == "__main__":
    main()
