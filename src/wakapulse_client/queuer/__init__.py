"""Inbound event channel for editor hooks."""

from .event_queue import EventProducer, EventQueue, EventQueueConfig

__all__ = ["EventQueue", "EventQueueConfig", "EventProducer"]
