"""Event system for engine diagnostics."""

from hotrun.events.bus import EventBus
from hotrun.events.types import Event, EventType

__all__ = ["Event", "EventBus", "EventType"]
