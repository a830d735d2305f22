"""HTTP sender for transmitting heartbeat batches to the bulk API.

This module performs exactly one authenticated POST per call and classifies
the outcome; retry and backoff belong to the dispatcher.
"""

from __future__ import annotations

import base64
import json
import socket
import time
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional
from urllib.error import HTTPError, URLError
from urllib.request import Request, urlopen

from loguru import logger
from pydantic import ValidationError

from ..core.errors import DeliveryError, PermanentDeliveryError, TransientDeliveryError
from ..core.events import DeliveryBatch, QueueRecord
from .models import BulkResponse, HeartbeatPayload

DEFAULT_API_BASE_URL = "https://api.wakatime.com/api/v1/users/current"


@dataclass
class SenderConfig:
    """Configuration for the HTTP sender."""

    api_base_url: str = DEFAULT_API_BASE_URL  # Base URL of the heartbeat API
    bulk_endpoint: str = "heartbeats.bulk"  # Bulk ingestion endpoint, relative to the base URL

    # Authentication
    api_key: str = ""

    # HTTP settings
    timeout_seconds: float = 30.0  # Request timeout

    # Client identification
    plugin: str = "unreal-wakatime/1.0.0"
    user_agent: str = "wakapulse-client/1.0.0"


class DeliveryOutcome(Enum):
    """Classification of a delivery attempt."""

    ACCEPTED = "accepted"
    PERMANENT_FAILURE = "permanent_failure"  # 4xx other than 429
    TRANSIENT_FAILURE = "transient_failure"  # 5xx, 429, network error, timeout


@dataclass
class SendResult:
    """Result of a single delivery attempt."""

    outcome: DeliveryOutcome
    status_code: Optional[int] = None
    error: Optional[DeliveryError] = None
    elapsed_seconds: float = 0.0

    @property
    def success(self) -> bool:
        return self.outcome == DeliveryOutcome.ACCEPTED


def classify_status(status_code: int) -> DeliveryOutcome:
    """Map an HTTP status code to a delivery outcome."""
    if 200 <= status_code < 300:
        return DeliveryOutcome.ACCEPTED
    if status_code == 429 or status_code >= 500:
        return DeliveryOutcome.TRANSIENT_FAILURE
    if 400 <= status_code < 500:
        return DeliveryOutcome.PERMANENT_FAILURE
    return DeliveryOutcome.TRANSIENT_FAILURE


def find_invalid_records(batch: DeliveryBatch) -> List[QueueRecord]:
    """Records whose heartbeat would not pass payload validation."""
    invalid = []
    for record in batch.records:
        try:
            HeartbeatPayload(**record.heartbeat.to_api_dict())
        except ValidationError as e:
            logger.debug(f"Heartbeat {record.sequence_id} is not sendable: {e.errors()[0]['msg']}")
            invalid.append(record)
    return invalid


def basic_auth_header(api_key: str) -> str:
    """Authorization header value for an API key."""
    token = base64.b64encode(api_key.encode("utf-8")).decode("ascii")
    return f"Basic {token}"


class HTTPSender:
    """HTTP sender for transmitting heartbeat batches."""

    def __init__(self, config: Optional[SenderConfig] = None):
        """Initialize the HTTP sender.

        Args:
            config: Sender configuration
        """
        self.config = config or SenderConfig()

        # Statistics
        self._total_batches_sent = 0
        self._total_batches_failed = 0
        self._total_heartbeats_sent = 0
        self._total_send_time = 0.0
        self._last_successful_send: Optional[datetime] = None
        self._last_error: Optional[str] = None

    @property
    def url(self) -> str:
        return f"{self.config.api_base_url.rstrip('/')}/{self.config.bulk_endpoint.lstrip('/')}"

    def set_api_key(self, api_key: str) -> None:
        self.config.api_key = api_key

    def send_batch(self, batch: DeliveryBatch) -> SendResult:
        """Send a batch of heartbeats to the bulk API.

        Args:
            batch: Batch to send

        Returns:
            Classified result of the attempt
        """
        start_time = time.monotonic()

        try:
            body = self._build_body(batch)
        except ValidationError as e:
            error = PermanentDeliveryError(f"Batch {batch.batch_id} contains an invalid heartbeat: {e}", batch_id=batch.batch_id)
            return self._finish(batch, SendResult(DeliveryOutcome.PERMANENT_FAILURE, error=error), start_time)

        request = Request(
            self.url,
            data=body,
            method="POST",
            headers={
                "Content-Type": "application/json",
                "Accept": "application/json",
                "Authorization": basic_auth_header(self.config.api_key),
                "User-Agent": self.config.user_agent,
                "Idempotency-Key": batch.batch_id,
            },
        )

        try:
            with urlopen(request, timeout=self.config.timeout_seconds) as response:
                status = response.status
                response_body = response.read().decode("utf-8", errors="replace")

            outcome = classify_status(status)
            if outcome == DeliveryOutcome.ACCEPTED:
                self._log_bulk_response(batch, response_body)
                result = SendResult(outcome, status_code=status)
            else:
                result = SendResult(outcome, status_code=status, error=self._error_for(outcome, f"HTTP {status}", status, batch))

        except HTTPError as e:
            outcome = classify_status(e.code)
            detail = self._read_error_body(e)
            message = f"HTTP error: {e.code} {e.reason}"
            if e.code == 401:
                message += " (invalid API key)"
            if detail:
                message += f" - {detail}"
            result = SendResult(outcome, status_code=e.code, error=self._error_for(outcome, message, e.code, batch))

        except (socket.timeout, TimeoutError) as e:
            result = SendResult(DeliveryOutcome.TRANSIENT_FAILURE, error=TransientDeliveryError(f"Request timed out: {e}", batch_id=batch.batch_id))

        except URLError as e:
            result = SendResult(DeliveryOutcome.TRANSIENT_FAILURE, error=TransientDeliveryError(f"Network error: {e.reason}", batch_id=batch.batch_id))

        except OSError as e:
            result = SendResult(DeliveryOutcome.TRANSIENT_FAILURE, error=TransientDeliveryError(f"Connection error: {e}", batch_id=batch.batch_id))

        return self._finish(batch, result, start_time)

    def get_stats(self) -> Dict[str, Any]:
        """Get sender statistics."""
        attempts = self._total_batches_sent + self._total_batches_failed
        return {
            "total_batches_sent": self._total_batches_sent,
            "total_batches_failed": self._total_batches_failed,
            "total_heartbeats_sent": self._total_heartbeats_sent,
            "success_rate": self._total_batches_sent / max(1, attempts),
            "average_send_time_seconds": self._total_send_time / max(1, attempts),
            "last_successful_send": self._last_successful_send.isoformat() if self._last_successful_send else None,
            "last_error": self._last_error,
            "url": self.url,
        }

    def _build_body(self, batch: DeliveryBatch) -> bytes:
        items: List[Dict[str, Any]] = [HeartbeatPayload(**item).model_dump(exclude_none=True) for item in batch.to_payload(self.config.plugin)]
        return json.dumps(items).encode("utf-8")

    def _finish(self, batch: DeliveryBatch, result: SendResult, start_time: float) -> SendResult:
        result.elapsed_seconds = time.monotonic() - start_time
        self._total_send_time += result.elapsed_seconds

        if result.success:
            self._total_batches_sent += 1
            self._total_heartbeats_sent += batch.size()
            self._last_successful_send = datetime.now()
            self._last_error = None
            logger.info(f"Sent batch {batch.batch_id} with {batch.size()} heartbeats in {result.elapsed_seconds:.2f}s (HTTP {result.status_code})")
        else:
            self._total_batches_failed += 1
            self._last_error = str(result.error)
            logger.warning(f"Failed to send batch {batch.batch_id}: {result.error}")

        return result

    @staticmethod
    def _error_for(outcome: DeliveryOutcome, message: str, status_code: int, batch: DeliveryBatch) -> DeliveryError:
        if outcome == DeliveryOutcome.PERMANENT_FAILURE:
            return PermanentDeliveryError(message, status_code=status_code, batch_id=batch.batch_id)
        return TransientDeliveryError(message, status_code=status_code, batch_id=batch.batch_id)

    @staticmethod
    def _read_error_body(error: HTTPError) -> str:
        try:
            return error.read().decode("utf-8", errors="replace")[:200]
        except (OSError, AttributeError):
            return ""

    @staticmethod
    def _log_bulk_response(batch: DeliveryBatch, response_body: str) -> None:
        if not response_body:
            return
        try:
            parsed = BulkResponse.model_validate_json(response_body)
        except ValidationError:
            logger.debug(f"Unrecognized bulk response for batch {batch.batch_id}")
            return

        rejected = parsed.rejected_count()
        if rejected:
            logger.warning(f"API accepted batch {batch.batch_id} but rejected {rejected} of its heartbeats")


def create_default_sender(api_key: str, api_base_url: str = DEFAULT_API_BASE_URL) -> HTTPSender:
    """Create an HTTP sender with default configuration.

    Args:
        api_key: API key for Basic authentication
        api_base_url: Base URL of the heartbeat API

    Returns:
        Configured HTTP sender
    """
    return HTTPSender(SenderConfig(api_base_url=api_base_url, api_key=api_key))
