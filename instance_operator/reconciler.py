"""Reconciliation of ChallengeInstance objects.

One pass of :meth:`InstanceReconciler.reconcile`:

1. fetch the instance (gone means nothing to do)
2. delete it if expired or if its flag was validated
3. resolve the challenge; a missing challenge marks the instance Failed
4. generate the flags on their own pass and requeue immediately
5. create whichever owned resources are missing, in dependency order
6. flip to Running once the challenge deployment has a ready replica
7. requeue after ``settings.requeue_seconds`` to keep polling readiness and expiry

Passes are idempotent. Existing resources are never updated, only created
when absent.
"""

import logging
import threading
from collections import namedtuple
from contextlib import contextmanager
from datetime import datetime, timezone

from . import flaggen
from .builders import STEPS, ingress_host
from .builders import naming
from .connection import resolve
from .models import EXPOSE_INGRESS, PHASE_FAILED, PHASE_PENDING, PHASE_RUNNING

logger = logging.getLogger("instance_operator.reconciler")


class ReconcileResult(namedtuple("ReconcileResult", "requeue requeue_after")):
    __slots__ = ()

    @classmethod
    def done(cls):
        return cls(False, None)

    @classmethod
    def immediately(cls):
        return cls(True, 0)

    @classmethod
    def after(cls, seconds):
        return cls(True, seconds)


class KeyedLock:
    """One lock per key, dropped again once nobody holds or waits for it."""

    def __init__(self):
        self._guard = threading.Lock()
        self._locks = {}

    @contextmanager
    def hold(self, key):
        with self._guard:
            entry = self._locks.setdefault(key, [threading.Lock(), 0])
            entry[1] += 1
        entry[0].acquire()
        try:
            yield
        finally:
            entry[0].release()
            with self._guard:
                entry[1] -= 1
                if entry[1] == 0:
                    del self._locks[key]

    def __len__(self):
        with self._guard:
            return len(self._locks)


def _utcnow():
    return datetime.now(timezone.utc)


def _ready_replicas(deployment):
    if deployment is None or deployment.status is None:
        return 0
    return deployment.status.ready_replicas or 0


class InstanceReconciler:
    def __init__(self, cluster, settings, clock=None, locks=None):
        self.cluster = cluster
        self.settings = settings
        self.clock = clock or _utcnow
        self.locks = locks or KeyedLock()

    def reconcile(self, namespace, name):
        with self.locks.hold((namespace, name)):
            return self._reconcile(namespace, name)

    def _reconcile(self, namespace, name):
        log_extra = {"namespace": namespace, "instance": name}

        instance = self.cluster.get_instance(namespace, name)
        if instance is None:
            logger.info("Instance not found, likely deleted", extra=log_extra)
            return ReconcileResult.done()

        # Deletion triggers run before any provisioning work
        if instance.is_expired(self.clock()):
            logger.info("Instance expired, deleting", extra=log_extra)
            self.cluster.delete_instance(namespace, name)
            return ReconcileResult.done()

        if instance.status.flag_validated:
            logger.info("Flag validated, deleting instance", extra=log_extra)
            self.cluster.delete_instance(namespace, name)
            return ReconcileResult.done()

        template = self.cluster.get_template(namespace, instance.challenge_name)
        if template is None:
            logger.warning(
                "Challenge not found, marking instance failed",
                extra=dict(log_extra, challenge=instance.challenge_name),
            )
            if instance.status.phase != PHASE_FAILED:
                instance.status.phase = PHASE_FAILED
                instance.status.ready = False
                self.cluster.update_instance_status(instance)
            return ReconcileResult.done()

        if not instance.status.flags:
            instance.status.flags = flaggen.generate_multiple(
                template.flag_template,
                instance.name,
                instance.source_id,
                instance.challenge_id,
                template.flag_count,
            )
            instance.status.phase = PHASE_PENDING
            self.cluster.update_instance_status(instance)
            logger.info("Generated flags", extra=dict(log_extra, count=len(instance.status.flags)))
            return ReconcileResult.immediately()

        for step in STEPS:
            live = self._ensure(step, instance, template)
            if live is None:
                continue
            if step.status_field == "service_name":
                self._offer_connection_info(instance, resolve(live, self.settings.node_ip))
            elif step.status_field == "ingress_name":
                self._offer_connection_info(instance, self._http_info(template, ingress_host(live)))

        deployment = self.cluster.get_resource("deployment", namespace, naming.deployment_name(instance))
        if _ready_replicas(deployment) > 0:
            if instance.status.phase != PHASE_RUNNING or not instance.status.ready:
                instance.status.phase = PHASE_RUNNING
                instance.status.ready = True
                info = self._current_connection_info(instance, template)
                if info:
                    instance.status.connection_info = info
                self.cluster.update_instance_status(instance)
                logger.info(
                    "Instance is now Running",
                    extra=dict(log_extra, connection_info=instance.status.connection_info),
                )

        return ReconcileResult.after(self.settings.requeue_seconds)

    def _ensure(self, step, instance, template):
        """Create the step's resource when missing and return the live object (None if not wanted)."""
        desired = step.build(instance, template, self.settings)
        if desired is None:
            return None
        self.cluster.set_owner(desired, instance)
        name = desired.metadata.name

        live = self.cluster.get_resource(step.kind, instance.namespace, name)
        if live is None:
            logger.info(
                "Creating %s", step.kind,
                extra={"namespace": instance.namespace, "instance": instance.name, "resource": name},
            )
            live = self.cluster.create_resource(step.kind, instance.namespace, desired)

        if getattr(instance.status, step.status_field) != name:
            setattr(instance.status, step.status_field, name)
            self.cluster.update_instance_status(instance)
        return live

    def _offer_connection_info(self, instance, info):
        """Write connection info only into an empty slot."""
        if info and not instance.status.connection_info:
            instance.status.connection_info = info
            self.cluster.update_instance_status(instance)

    def _http_info(self, template, hostname):
        tls = bool(template.ingress and template.ingress.tls)
        return resolve(None, self.settings.node_ip, hostname=hostname,
                       terminal=template.attack_box_enabled, tls=tls)

    def _current_connection_info(self, instance, template):
        if template.exposure == EXPOSE_INGRESS:
            ingress = self.cluster.get_resource("ingress", instance.namespace, naming.ingress_name(instance))
            return self._http_info(template, ingress_host(ingress))
        service = self.cluster.get_resource("service", instance.namespace, naming.service_name(instance))
        return resolve(service, self.settings.node_ip)
