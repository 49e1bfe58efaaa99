"""Unit tests for gateway request normalization."""

import pytest

from instance_operator.errors import PayloadError
from instance_operator.payloads import (
    ChallengeRequest,
    CreateInstanceRequest,
    ValidateFlagRequest,
    instance_name,
    parse_duration,
    source_id_from_args,
)


class TestParseDuration:
    @pytest.mark.parametrize("value, expected", [
        (600, 600),
        ("600", 600),
        ("600s", 600),
        ("10m", 600),
        ("1h", 3600),
        (" 5 m ", 300),
        (None, None),
        ("", None),
    ])
    def test_accepted(self, value, expected):
        assert parse_duration(value) == expected

    @pytest.mark.parametrize("value", ["soon", "10d", "-5", True, "1.5h"])
    def test_rejected(self, value):
        with pytest.raises(PayloadError):
            parse_duration(value)


class TestCreateInstanceRequest:
    def test_snake_case(self):
        request = CreateInstanceRequest.from_payload({"challenge_id": "web", "source_id": "alice"})
        assert request == ("web", "alice", {})
        assert request.name == "chal-web-alice"

    def test_camel_case_and_additional(self):
        request = CreateInstanceRequest.from_payload({
            "challengeId": 12, "sourceId": "team-3", "additional": {"team": 3},
        })
        assert request.challenge_id == "12"
        assert request.source_id == "team-3"
        assert request.additional == {"team": "3"}

    @pytest.mark.parametrize("body", [
        None,
        [],
        {},
        {"challenge_id": "web"},
        {"challenge_id": "web", "source_id": ""},
        {"challenge_id": "web", "source_id": "a", "additional": ["x"]},
    ])
    def test_invalid(self, body):
        with pytest.raises(PayloadError):
            CreateInstanceRequest.from_payload(body)


class TestOtherRequests:
    def test_validate_flag(self):
        assert ValidateFlagRequest.from_payload({"flag": "FLAG{x}"}).flag == "FLAG{x}"

    @pytest.mark.parametrize("body", [{}, {"flag": ""}, {"flag": 42}])
    def test_validate_flag_invalid(self, body):
        with pytest.raises(PayloadError):
            ValidateFlagRequest.from_payload(body)

    def test_challenge_request(self):
        request = ChallengeRequest.from_payload({"id": 4, "challengeName": "web", "timeout": "2m"})
        assert request == ("4", "web", 120)

    def test_challenge_request_requires_scenario(self):
        with pytest.raises(PayloadError):
            ChallengeRequest.from_payload({"id": 4})


def test_instance_name_is_sanitized():
    assert instance_name("web", "Alice@CTF.io") == "chal-web-alice-at-ctf-io"


def test_source_id_from_args():
    assert source_id_from_args({"sourceId": "bob"}) == "bob"
    assert source_id_from_args({"source_id": "alice", "sourceId": "bob"}) == "alice"
    assert source_id_from_args({}) is None
