"""Tests for the bulk heartbeat HTTP sender."""

import base64
import io
import json
import socket
from urllib.error import HTTPError, URLError

import pytest

from conftest import VALID_API_KEY
from wakapulse_client.core import DeliveryBatch, PermanentDeliveryError, QueueRecord, TransientDeliveryError
from wakapulse_client.sender import DeliveryOutcome, HTTPSender, SenderConfig, classify_status, create_default_sender
from wakapulse_client.sender.http_sender import basic_auth_header

SENDER_MODULE = "wakapulse_client.sender.http_sender"


class FakeResponse:
    def __init__(self, status: int, body: bytes = b""):
        self.status = status
        self._body = body

    def read(self) -> bytes:
        return self._body

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False


class FakeUrlopen:
    """Records requests and replays a scripted response or exception."""

    def __init__(self, outcome):
        self.outcome = outcome
        self.requests = []
        self.timeouts = []

    def __call__(self, request, timeout=None):
        self.requests.append(request)
        self.timeouts.append(timeout)
        if isinstance(self.outcome, BaseException):
            raise self.outcome
        return self.outcome


def _sender() -> HTTPSender:
    return HTTPSender(SenderConfig(api_base_url="https://api.example.test/api/v1/users/current/", api_key=VALID_API_KEY, timeout_seconds=7.5))


def _batch(make_heartbeat, count: int = 2) -> DeliveryBatch:
    return DeliveryBatch(records=[QueueRecord(heartbeat=make_heartbeat(i, is_write=i == 1)) for i in range(1, count + 1)])


def _http_error(code: int, body: bytes = b"") -> HTTPError:
    return HTTPError("https://api.example.test", code, "error", {}, io.BytesIO(body))


def test_accepted_batch_posts_expected_request(monkeypatch, make_heartbeat):
    """Test the wire format: endpoint, headers and JSON body."""
    fake = FakeUrlopen(FakeResponse(202, b'{"responses": [[{"data": {}}, 201], [{"data": {}}, 201]]}'))
    monkeypatch.setattr(f"{SENDER_MODULE}.urlopen", fake)
    sender = _sender()
    batch = _batch(make_heartbeat)

    result = sender.send_batch(batch)

    assert result.success
    assert result.status_code == 202
    assert result.error is None

    request = fake.requests[0]
    assert request.full_url == "https://api.example.test/api/v1/users/current/heartbeats.bulk"
    assert request.get_method() == "POST"
    assert fake.timeouts == [7.5]

    expected_auth = "Basic " + base64.b64encode(VALID_API_KEY.encode()).decode()
    assert request.get_header("Authorization") == expected_auth
    assert request.get_header("Content-type") == "application/json"
    assert request.get_header("Idempotency-key") == batch.batch_id

    body = json.loads(request.data)
    assert len(body) == 2
    assert body[0] == {
        "time": 1700000001.0,
        "project": "ShooterGame",
        "entity": "/work/ShooterGame/Source/File1.cpp",
        "type": "file",
        "category": "coding",
        "is_write": True,
        "language": "C++",
        "plugin": "unreal-wakatime/1.0.0",
    }
    assert body[1]["is_write"] is False

    stats = sender.get_stats()
    assert stats["total_batches_sent"] == 1
    assert stats["total_heartbeats_sent"] == 2


@pytest.mark.parametrize("code", [500, 502, 503, 429])
def test_server_errors_are_transient(monkeypatch, make_heartbeat, code):
    monkeypatch.setattr(f"{SENDER_MODULE}.urlopen", FakeUrlopen(_http_error(code)))

    result = _sender().send_batch(_batch(make_heartbeat))

    assert result.outcome == DeliveryOutcome.TRANSIENT_FAILURE
    assert isinstance(result.error, TransientDeliveryError)
    assert result.error.status_code == code


@pytest.mark.parametrize("code", [400, 401, 403, 404])
def test_client_errors_are_permanent(monkeypatch, make_heartbeat, code):
    monkeypatch.setattr(f"{SENDER_MODULE}.urlopen", FakeUrlopen(_http_error(code, b'{"error": "nope"}')))

    result = _sender().send_batch(_batch(make_heartbeat))

    assert result.outcome == DeliveryOutcome.PERMANENT_FAILURE
    assert isinstance(result.error, PermanentDeliveryError)
    assert result.error.status_code == code
    assert "nope" in str(result.error)


def test_unauthorized_mentions_api_key(monkeypatch, make_heartbeat):
    monkeypatch.setattr(f"{SENDER_MODULE}.urlopen", FakeUrlopen(_http_error(401)))

    result = _sender().send_batch(_batch(make_heartbeat))

    assert "invalid API key" in str(result.error)


@pytest.mark.parametrize(
    "exception",
    [
        URLError("Name or service not known"),
        socket.timeout("timed out"),
        TimeoutError("timed out"),
        ConnectionResetError("reset by peer"),
    ],
)
def test_network_failures_are_transient(monkeypatch, make_heartbeat, exception):
    monkeypatch.setattr(f"{SENDER_MODULE}.urlopen", FakeUrlopen(exception))

    sender = _sender()
    result = sender.send_batch(_batch(make_heartbeat))

    assert result.outcome == DeliveryOutcome.TRANSIENT_FAILURE
    assert isinstance(result.error, TransientDeliveryError)
    assert sender.get_stats()["last_error"]


def test_invalid_heartbeat_is_permanent_without_network(monkeypatch, make_heartbeat):
    fake = FakeUrlopen(FakeResponse(202))
    monkeypatch.setattr(f"{SENDER_MODULE}.urlopen", fake)
    batch = DeliveryBatch(records=[QueueRecord(heartbeat=make_heartbeat(1, project_id=""))])

    result = _sender().send_batch(batch)

    assert result.outcome == DeliveryOutcome.PERMANENT_FAILURE
    assert fake.requests == []


def test_unparseable_bulk_response_still_counts_as_accepted(monkeypatch, make_heartbeat):
    monkeypatch.setattr(f"{SENDER_MODULE}.urlopen", FakeUrlopen(FakeResponse(201, b"<html>ok</html>")))

    assert _sender().send_batch(_batch(make_heartbeat)).success


@pytest.mark.parametrize(
    "code, outcome",
    [
        (200, DeliveryOutcome.ACCEPTED),
        (201, DeliveryOutcome.ACCEPTED),
        (202, DeliveryOutcome.ACCEPTED),
        (400, DeliveryOutcome.PERMANENT_FAILURE),
        (401, DeliveryOutcome.PERMANENT_FAILURE),
        (429, DeliveryOutcome.TRANSIENT_FAILURE),
        (500, DeliveryOutcome.TRANSIENT_FAILURE),
        (503, DeliveryOutcome.TRANSIENT_FAILURE),
    ],
)
def test_classify_status(code, outcome):
    assert classify_status(code) == outcome


def test_basic_auth_header():
    assert basic_auth_header("secret") == "Basic c2VjcmV0"


def test_create_default_sender_targets_bulk_endpoint():
    sender = create_default_sender(VALID_API_KEY, "https://wakapi.example.test/api/v1/users/current/")

    assert sender.config.api_key == VALID_API_KEY
    assert sender.url == "https://wakapi.example.test/api/v1/users/current/heartbeats.bulk"
