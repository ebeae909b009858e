"""Event type definitions for the event bus."""

from datetime import UTC, datetime
from enum import Enum
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, Field


class EventType(str, Enum):
    """Diagnostics published by the engine."""

    # Engine lifecycle
    ENGINE_STARTED = "engine.started"
    ENGINE_STOPPED = "engine.stopped"

    # Change events
    FILE_CHANGED = "file.changed"
    RECONCILE_STARTED = "reconcile.started"
    RECONCILE_FINISHED = "reconcile.finished"

    # Module events
    MODULE_LOADED = "module.loaded"
    MODULE_COMMITTED = "module.committed"
    MODULE_REJECTED = "module.rejected"
    MODULE_LOAD_FAILED = "module.load_failed"
    RESTART_REQUIRED = "module.restart_required"

    # Step events
    STEP_STARTED = "step.started"
    STEP_COMPLETED = "step.completed"
    STEP_FAILED = "step.failed"
    STEP_REWOUND = "step.rewound"
    REWIND_FAILED = "step.rewind_failed"


class Event(BaseModel):
    """A published diagnostic event."""

    id: str = Field(default_factory=lambda: uuid4().hex[:12])
    type: EventType
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))
    data: dict[str, Any] = Field(default_factory=dict)

    def to_json(self) -> dict:
        """Convert to JSON-serializable dict."""
        return {
            "id": self.id,
            "type": self.type.value,
            "timestamp": self.timestamp.isoformat(),
            "data": self.data,
        }

    def describe(self) -> str:
        """One-line human readable summary."""
        details = ", ".join(f"{key}={value}" for key, value in self.data.items())
        return f"{self.type.value}: {details}" if details else self.type.value
