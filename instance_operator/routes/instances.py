"""CTFd-compatible HTTP API translating requests into ChallengeInstance operations."""

import hmac
import json
import logging
import time
from datetime import datetime, timedelta, timezone

from flask import Blueprint, Response, current_app, jsonify, request
from kubernetes.client import ApiException

from ..builders import ingress_hostname, sanitize_for_label
from ..connection import format_http
from ..errors import PayloadError, TemplateRenderError
from ..models import PHASE_FAILED, Instance
from ..payloads import (
    ChallengeRequest,
    CreateInstanceRequest,
    ValidateFlagRequest,
    instance_name,
    source_id_from_args,
)
from ..utils import serialize_challenge, serialize_instance

instances_blueprint = Blueprint("instances", __name__)
logger = logging.getLogger("instance_operator.gateway")

EXTENSION = "instance_operator"


def _context():
    return current_app.extensions[EXTENSION]


def _cluster():
    return _context().cluster


def _settings():
    return _context().settings


def _utcnow():
    return datetime.now(timezone.utc)


def _error(status, error, message=""):
    return jsonify({"error": error, "message": message}), status


def _ndjson(items):
    body = "".join(json.dumps({"result": item}) + "\n" for item in items)
    return Response(body, mimetype="application/x-ndjson")


def _timeout_for(challenge_name):
    challenge = _cluster().get_template(_settings().namespace, challenge_name)
    if challenge is not None:
        return challenge.timeout
    return _settings().default_timeout_seconds


def _instance_payload(instance, challenges=None):
    """Serialize, filling in the Ingress URL while the reconciler has not written it yet.

    ``challenges`` maps challenge names to templates already fetched for this request.
    """
    connection_info = None
    if not instance.status.connection_info:
        if challenges is None:
            challenge = _cluster().get_template(instance.namespace, instance.challenge_name)
        else:
            challenge = challenges.get(instance.challenge_name)
        if challenge is not None:
            try:
                hostname = ingress_hostname(instance, challenge, _settings())
            except TemplateRenderError:
                hostname = ""
            tls = bool(challenge.ingress and challenge.ingress.tls)
            connection_info = format_http(hostname, terminal=challenge.attack_box_enabled, tls=tls)
    return serialize_instance(instance, connection_info=connection_info)


def _load_instance(challenge_id, source_id):
    return _cluster().get_instance(_settings().namespace, instance_name(challenge_id, source_id))


@instances_blueprint.errorhandler(PayloadError)
def _payload_error(exc):
    return _error(400, "Invalid request body", str(exc))


@instances_blueprint.errorhandler(ApiException)
def _api_error(exc):
    logger.warning("Kubernetes API error", extra={"status": exc.status, "reason": exc.reason})
    return _error(500, "Kubernetes API error", exc.reason or "")


@instances_blueprint.route("/health", methods=["GET"])
@instances_blueprint.route("/healthz", methods=["GET"])
def health():
    return jsonify({"status": "ok"})


@instances_blueprint.route("/api/v1/instance", methods=["POST"])
def create_instance():
    """Create an instance (or return the existing one) and wait briefly for readiness."""
    payload = CreateInstanceRequest.from_payload(request.get_json(silent=True))
    settings = _settings()
    cluster = _cluster()
    logger.info("/instance create called", extra={"payload": payload._asdict()})

    existing = cluster.get_instance(settings.namespace, payload.name)
    if existing is not None:
        logger.info("Instance already exists, returning existing", extra={"instance": payload.name})
        return jsonify(_instance_payload(existing))

    # Challenge resources are named after the CTFd challenge id
    now = _utcnow().replace(microsecond=0)
    timeout = _timeout_for(payload.challenge_id)
    instance = Instance(
        name=payload.name,
        namespace=settings.namespace,
        challenge_id=payload.challenge_id,
        source_id=payload.source_id,
        challenge_name=payload.challenge_id,
        since=now,
        until=now + timedelta(seconds=timeout),
        additional=payload.additional,
        labels={
            "ctf.io/challenge": payload.challenge_id,
            "ctf.io/source": sanitize_for_label(payload.source_id),
        },
    )
    cluster.create_instance(instance)
    logger.info("Created instance, waiting for ready state", extra={"instance": payload.name})

    current = None
    for _ in range(settings.ready_wait_seconds):
        time.sleep(1)
        current = cluster.get_instance(settings.namespace, payload.name)
        if current is None:
            continue
        if current.status.ready:
            logger.info("Instance is ready", extra={"instance": payload.name})
            break
        if current.status.phase == PHASE_FAILED:
            return _error(500, "Instance failed to start", "Challenge deployment failed")

    if current is None or not current.status.ready:
        current = cluster.get_instance(settings.namespace, payload.name)
        if current is None:
            return _error(500, "Failed to get instance status", "instance disappeared after creation")
        if current.status.phase == PHASE_FAILED:
            return _error(500, "Instance failed to start", "Challenge deployment failed")
        logger.info("Instance not ready after timeout, returning current state", extra={"instance": payload.name})

    return jsonify(_instance_payload(current)), 201


@instances_blueprint.route("/api/v1/instance", methods=["GET"])
def list_instances():
    """Stream instances as NDJSON, optionally filtered by source."""
    source_id = source_id_from_args(request.args)
    namespace = _settings().namespace
    instances = _cluster().list_instances(namespace, source_id=source_id)
    challenges = {challenge.name: challenge for challenge in _cluster().list_templates(namespace)}
    return _ndjson(_instance_payload(instance, challenges) for instance in instances)


@instances_blueprint.route("/api/v1/instance/<challenge_id>/<source_id>", methods=["GET"])
def get_instance(challenge_id, source_id):
    instance = _load_instance(challenge_id, source_id)
    if instance is None:
        return _error(404, "Instance not found")
    return jsonify(_instance_payload(instance))


@instances_blueprint.route("/api/v1/instance/<challenge_id>/<source_id>", methods=["DELETE"])
def delete_instance(challenge_id, source_id):
    """Delete an instance; owned resources are removed by garbage collection."""
    name = instance_name(challenge_id, source_id)
    if not _cluster().delete_instance(_settings().namespace, name):
        return _error(404, "Instance not found")
    logger.info("Deleted instance", extra={"instance": name})
    return jsonify({"success": True, "message": "Instance deleted successfully"})


@instances_blueprint.route("/api/v1/instance/<challenge_id>/<source_id>/validate", methods=["POST"])
def validate_flag(challenge_id, source_id):
    """Check a submitted flag; a correct one marks the instance for teardown."""
    payload = ValidateFlagRequest.from_payload(request.get_json(silent=True))
    instance = _load_instance(challenge_id, source_id)
    if instance is None:
        return _error(404, "Instance not found")

    submitted = payload.flag.encode("utf-8")
    valid = False
    for flag in instance.status.flags:
        # No short-circuit: every flag is compared
        if hmac.compare_digest(submitted, flag.encode("utf-8")):
            valid = True
    if not valid:
        return _error(403, "Invalid flag", "The submitted flag is incorrect")

    _cluster().mark_flag_validated(instance.namespace, instance.name)
    logger.info("Flag validated, instance marked for deletion", extra={"instance": instance.name})
    return jsonify({"valid": True, "message": "Flag correct! Instance will be cleaned up."})


@instances_blueprint.route("/api/v1/instance/<challenge_id>/<source_id>/renew", methods=["POST"])
def renew_instance(challenge_id, source_id):
    """Push the expiry out by the challenge timeout, capped by TTL_MAX_SECONDS."""
    instance = _load_instance(challenge_id, source_id)
    if instance is None:
        return _error(404, "Instance not found")

    now = _utcnow().replace(microsecond=0)
    until = now + timedelta(seconds=_timeout_for(instance.challenge_name))
    ttl_max = _settings().ttl_max_seconds
    if ttl_max and instance.since is not None:
        until = min(until, instance.since + timedelta(seconds=ttl_max))
    instance.until = until
    instance.renew_count += 1
    instance = _cluster().update_instance_spec(instance)
    logger.info("Instance renewed", extra={"instance": instance.name, "until": until.isoformat()})
    return jsonify(_instance_payload(instance))


@instances_blueprint.route("/api/v1/challenge", methods=["GET"])
def list_challenges():
    challenges = _cluster().list_templates(_settings().namespace)
    return _ndjson(serialize_challenge(challenge) for challenge in challenges)


@instances_blueprint.route("/api/v1/challenge/<challenge_id>", methods=["GET"])
def get_challenge(challenge_id):
    challenge = _cluster().get_template(_settings().namespace, challenge_id)
    if challenge is None:
        return _error(404, "Challenge not found")
    return jsonify(serialize_challenge(challenge))


@instances_blueprint.route("/api/v1/challenge", methods=["POST"])
def register_challenge():
    """Challenges are managed out-of-band; registration only confirms one exists."""
    payload = ChallengeRequest.from_payload(request.get_json(silent=True))
    challenge = _cluster().get_template(_settings().namespace, payload.scenario)
    if challenge is None:
        logger.info("Challenge not found", extra={"scenario": payload.scenario, "ctfd_id": payload.id})
        return _error(
            404,
            "Challenge not found",
            f"Challenge {payload.scenario} must be created in the cluster before registering it in CTFd",
        )
    return jsonify(serialize_challenge(challenge))
