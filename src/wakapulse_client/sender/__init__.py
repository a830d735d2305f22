"""HTTP transport module for sending heartbeat batches to the bulk API."""

from .http_sender import DeliveryOutcome, HTTPSender, SendResult, SenderConfig, classify_status, create_default_sender, find_invalid_records

__all__ = ["HTTPSender", "SenderConfig", "SendResult", "DeliveryOutcome", "classify_status", "create_default_sender", "find_invalid_records"]
