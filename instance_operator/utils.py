from .models import format_time


def serialize_instance(instance, connection_info=None):
    """Gateway view of an instance (``flag`` mirrors the first flag for older clients)."""
    status = instance.status
    data = {
        "challenge_id": instance.challenge_id,
        "source_id": instance.source_id,
        "connectionInfo": connection_info or status.connection_info,
        "flags": list(status.flags),
        "since": format_time(instance.since),
        "phase": status.phase or "Pending",
        "ready": bool(status.ready),
        "renew_count": instance.renew_count,
    }
    if status.flags:
        data["flag"] = status.flags[0]
    if instance.until is not None:
        data["until"] = format_time(instance.until)
    if instance.additional:
        data["additional"] = dict(instance.additional)
    return data


def serialize_challenge(challenge):
    return {
        "id": challenge.challenge_id,
        "scenario": challenge.name,
        "image": challenge.image,
        "timeout": challenge.timeout,
    }
