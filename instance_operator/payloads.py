"""Normalization of gateway request bodies.

CTFd and older clients send the same fields under different spellings
(``challenge_id`` / ``challengeId``) and durations as numbers or strings.
Everything is mapped to one canonical shape here before reaching the core.
"""

import re
from collections import namedtuple

from .builders.naming import sanitize_for_label
from .errors import PayloadError

_DURATION = re.compile(r"^\s*(\d+)\s*([smh]?)\s*$")
_UNITS = {"": 1, "s": 1, "m": 60, "h": 3600}


def _first(data, *keys):
    for key in keys:
        value = data.get(key)
        if value not in (None, ""):
            return value
    return None


def _require_mapping(data):
    if not isinstance(data, dict):
        raise PayloadError("Invalid request body")
    return data


def parse_duration(value):
    """Seconds from ``600``, ``"600"``, ``"600s"``, ``"10m"`` or ``"1h"``; None when absent."""
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        raise PayloadError(f"Invalid duration: {value!r}")
    if isinstance(value, (int, float)):
        return int(value)
    match = _DURATION.match(str(value))
    if not match:
        raise PayloadError(f"Invalid duration: {value!r}")
    return int(match.group(1)) * _UNITS[match.group(2)]


def instance_name(challenge_id, source_id):
    """Deterministic instance name for a (challenge, source) pair."""
    return f"chal-{sanitize_for_label(challenge_id)}-{sanitize_for_label(source_id)}"


def source_id_from_args(args):
    return _first(args, "source_id", "sourceId")


class CreateInstanceRequest(namedtuple("CreateInstanceRequest", "challenge_id source_id additional")):
    __slots__ = ()

    @classmethod
    def from_payload(cls, data):
        data = _require_mapping(data)
        challenge_id = _first(data, "challenge_id", "challengeId")
        source_id = _first(data, "source_id", "sourceId")
        if not challenge_id or not source_id:
            raise PayloadError("challenge_id/challengeId and source_id/sourceId are required")
        additional = data.get("additional") or {}
        if not isinstance(additional, dict):
            raise PayloadError("additional must be an object")
        return cls(
            str(challenge_id),
            str(source_id),
            {str(key): str(value) for key, value in additional.items()},
        )

    @property
    def name(self):
        return instance_name(self.challenge_id, self.source_id)


class ValidateFlagRequest(namedtuple("ValidateFlagRequest", "flag")):
    __slots__ = ()

    @classmethod
    def from_payload(cls, data):
        data = _require_mapping(data)
        flag = data.get("flag")
        if not flag or not isinstance(flag, str):
            raise PayloadError("flag is required")
        return cls(flag)


class ChallengeRequest(namedtuple("ChallengeRequest", "id scenario timeout")):
    """Challenge registration from CTFd; ``scenario`` names the Challenge resource."""

    __slots__ = ()

    @classmethod
    def from_payload(cls, data):
        data = _require_mapping(data)
        scenario = _first(data, "scenario", "challengeName", "challenge_name")
        if not scenario:
            raise PayloadError("scenario is required")
        ctfd_id = _first(data, "id", "challenge_id", "challengeId")
        return cls(
            None if ctfd_id is None else str(ctfd_id),
            str(scenario),
            parse_duration(data.get("timeout")),
        )
