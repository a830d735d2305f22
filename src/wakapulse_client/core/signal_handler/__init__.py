"""Signal handler module for graceful shutdown management."""

from .signal_handler import SignalHandler

__all__ = ["SignalHandler"]
