"""Tests for the dispatcher's retry, rejection and cancellation behaviour."""

import threading
import time
from typing import List

import pytest
from loguru import logger

from conftest import RecordingToken
from wakapulse_client.batcher import BatcherConfig, HeartbeatBatcher
from wakapulse_client.core import DeliveryState, PermanentDeliveryError, TransientDeliveryError
from wakapulse_client.dispatcher import BackoffPolicy, Dispatcher, DispatcherConfig
from wakapulse_client.sender import DeliveryOutcome, SendResult


class ScriptedSender:
    """Stands in for HTTPSender, answering every call with a fixed status."""

    def __init__(self, status_code: int):
        self.status_code = status_code
        self.batch_ids: List[str] = []
        self.sent = threading.Event()

    def send_batch(self, batch) -> SendResult:
        self.batch_ids.append(batch.batch_id)
        self.sent.set()
        if 200 <= self.status_code < 300:
            return SendResult(DeliveryOutcome.ACCEPTED, status_code=self.status_code)
        if self.status_code == 429 or self.status_code >= 500:
            error = TransientDeliveryError(f"HTTP {self.status_code}", status_code=self.status_code, batch_id=batch.batch_id)
            return SendResult(DeliveryOutcome.TRANSIENT_FAILURE, status_code=self.status_code, error=error)
        error = PermanentDeliveryError(f"HTTP {self.status_code}", status_code=self.status_code, batch_id=batch.batch_id)
        return SendResult(DeliveryOutcome.PERMANENT_FAILURE, status_code=self.status_code, error=error)


class ExplodingSender:
    def send_batch(self, batch) -> SendResult:
        raise RuntimeError("sender bug")


def _dispatcher(queue, sender, token=None, notifier=None, batch_size: int = 50, **config) -> Dispatcher:
    config.setdefault("backoff", BackoffPolicy(base_delay=1.0, max_delay=60.0, jitter_ratio=0.1))
    return Dispatcher(
        DispatcherConfig(**config),
        offline_queue=queue,
        batcher=HeartbeatBatcher(BatcherConfig(max_batch_size=batch_size), queue),
        sender=sender,
        notifier=notifier,
        token=token or RecordingToken(),
    )


def _fill(queue, make_heartbeat, count: int) -> None:
    for sequence_id in range(1, count + 1):
        queue.append(make_heartbeat(sequence_id))


def test_accepted_batch_is_delivered(offline_queue, make_heartbeat):
    _fill(offline_queue, make_heartbeat, 3)
    sender = ScriptedSender(202)
    dispatcher = _dispatcher(offline_queue, sender)

    assert dispatcher.run_cycle() == 0.0

    assert len(sender.batch_ids) == 1
    assert offline_queue.pending_count() == 0
    assert {offline_queue.get_record(i).state for i in range(1, 4)} == {DeliveryState.DELIVERED}
    assert dispatcher.get_stats()["total_delivered"] == 3


def test_server_error_is_retried_with_increasing_backoff_then_kept(offline_queue, make_heartbeat, recording_token):
    """Test that a 503 is retried at least three times with growing delays and never lost."""
    _fill(offline_queue, make_heartbeat, 2)
    sender = ScriptedSender(503)
    dispatcher = _dispatcher(offline_queue, sender, token=recording_token, max_retries=3)

    delay = dispatcher.run_cycle()

    assert delay == dispatcher.config.poll_interval_seconds
    assert len(sender.batch_ids) == 4, "Initial attempt plus three retries"
    assert len(recording_token.waits) == 3
    assert all(a < b for a, b in zip(recording_token.waits, recording_token.waits[1:])), recording_token.waits

    records = offline_queue.peek_batch(10)
    assert [record.sequence_id for record in records] == [1, 2]
    assert all(record.state == DeliveryState.FAILED for record in records)
    assert all(record.retry_count == 1 for record in records)

    # Every attempt, including the next cycle, reuses the same idempotency key
    dispatcher.run_cycle()
    assert len(set(sender.batch_ids)) == 1
    assert offline_queue.get_record(1).retry_count == 2
    assert offline_queue.get_record(1).state != DeliveryState.DELIVERED
    logger.info("✓ Transient failure retried and kept")


def test_rate_limit_is_transient(offline_queue, make_heartbeat):
    _fill(offline_queue, make_heartbeat, 1)
    sender = ScriptedSender(429)
    dispatcher = _dispatcher(offline_queue, sender, max_retries=1)

    dispatcher.run_cycle()

    assert len(sender.batch_ids) == 2
    assert offline_queue.get_record(1).state == DeliveryState.FAILED


def test_unauthorized_batch_is_rejected_and_never_retried(offline_queue, make_heartbeat, recording_token):
    """Test that a 401 rejects the batch, tells the user and does not retry."""
    _fill(offline_queue, make_heartbeat, 2)
    sender = ScriptedSender(401)
    messages = []
    dispatcher = _dispatcher(offline_queue, sender, token=recording_token, notifier=messages.append)

    dispatcher.run_cycle()
    dispatcher.run_cycle()

    assert len(sender.batch_ids) == 1
    assert recording_token.waits == []
    assert offline_queue.pending_count() == 0
    assert offline_queue.get_record(1).state == DeliveryState.REJECTED
    assert len(messages) == 1
    assert "rejected" in messages[0]

    offline_queue.compact()
    assert offline_queue.get_record(1) is None


def test_user_warnings_are_limited(offline_queue, make_heartbeat):
    _fill(offline_queue, make_heartbeat, 5)
    messages = []
    dispatcher = _dispatcher(offline_queue, ScriptedSender(400), notifier=messages.append, batch_size=1, max_user_warnings=2)

    for _ in range(5):
        dispatcher.run_cycle()

    assert dispatcher.get_stats()["total_rejected"] == 5
    assert len(messages) == 2


def test_cancellation_during_backoff_releases_records(offline_queue, make_heartbeat):
    _fill(offline_queue, make_heartbeat, 2)
    sender = ScriptedSender(500)
    dispatcher = _dispatcher(offline_queue, sender, token=RecordingToken(cancel_after=0))

    dispatcher.run_cycle()

    assert len(sender.batch_ids) == 1
    record = offline_queue.get_record(1)
    assert record.state == DeliveryState.PENDING
    assert record.retry_count == 0


def test_disabled_dispatcher_does_not_send(offline_queue, make_heartbeat):
    _fill(offline_queue, make_heartbeat, 1)
    sender = ScriptedSender(202)
    dispatcher = _dispatcher(offline_queue, sender)

    dispatcher.disable("API key is missing")
    dispatcher.run_cycle()
    assert sender.batch_ids == []
    assert dispatcher.get_stats()["disabled_reason"] == "API key is missing"

    dispatcher.enable()
    dispatcher.run_cycle()
    assert len(sender.batch_ids) == 1


def test_unexpected_error_does_not_leave_records_in_flight(offline_queue, make_heartbeat):
    _fill(offline_queue, make_heartbeat, 2)
    dispatcher = _dispatcher(offline_queue, ExplodingSender())

    with pytest.raises(RuntimeError):
        dispatcher.run_cycle()

    assert offline_queue.pending_count() == 2
    assert offline_queue.get_record(1).state == DeliveryState.PENDING


def test_drain_delivers_all_batches(offline_queue, make_heartbeat):
    _fill(offline_queue, make_heartbeat, 5)
    sender = ScriptedSender(201)
    dispatcher = _dispatcher(offline_queue, sender, batch_size=2)

    assert dispatcher.drain() == 3
    assert offline_queue.pending_count() == 0
    assert len(set(sender.batch_ids)) == 3


def test_background_loop_delivers_and_stops(offline_queue, make_heartbeat):
    _fill(offline_queue, make_heartbeat, 2)
    sender = ScriptedSender(202)
    dispatcher = Dispatcher(
        DispatcherConfig(poll_interval_seconds=0.05),
        offline_queue=offline_queue,
        batcher=HeartbeatBatcher(BatcherConfig(), offline_queue),
        sender=sender,
    )

    dispatcher.start()
    try:
        assert sender.sent.wait(2.0)
        deadline = time.monotonic() + 2.0
        while offline_queue.pending_count() and time.monotonic() < deadline:
            time.sleep(0.01)
        assert offline_queue.pending_count() == 0
    finally:
        assert dispatcher.stop(grace_seconds=2.0)

    assert not dispatcher.get_stats()["running"]


def test_invalid_heartbeat_is_rejected_alone(offline_queue, make_heartbeat):
    """Test that one unsendable record does not take its valid neighbours down with it."""
    offline_queue.append(make_heartbeat(1, is_write=True, file_path="/work/A.cpp"))
    offline_queue.append(make_heartbeat(2, is_write=True, file_path="/work/Broken.cpp", project_id=""))
    offline_queue.append(make_heartbeat(3, is_write=True, file_path="/work/B.cpp"))
    sender = ScriptedSender(202)
    dispatcher = _dispatcher(offline_queue, sender)

    assert dispatcher.drain() == 2

    states = [offline_queue.get_record(i).state for i in (1, 2, 3)]
    assert states == [DeliveryState.DELIVERED, DeliveryState.REJECTED, DeliveryState.DELIVERED]
    assert len(sender.batch_ids) == 2, "Valid records go out on either side of the gap"
    assert dispatcher.get_stats()["total_rejected"] == 1

    logger.info("✓ Invalid heartbeat rejected without dropping valid writes")
