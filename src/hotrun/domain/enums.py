"""Enumerations for domain models."""

from enum import Enum


class ModuleStatus(str, Enum):
    """Result of one module's turn in a reconciliation walk."""

    COMMITTED = "committed"  # Reconciler absorbed the new exports
    SKIPPED = "skipped"  # A dependency absorbed the change
    UNRECONCILED = "unreconciled"  # Escalated to dependents
    TERMINAL = "terminal"  # Unreconciled with nobody left to escalate to
    LOAD_FAILED = "load_failed"
    BLOCKED = "blocked"  # Only reachable through a module that failed to load


class SequenceState(str, Enum):
    """Step sequence lifecycle states."""

    IDLE = "idle"
    RUNNING = "running"
    UNWINDING = "unwinding"
    COMPLETED = "completed"
    FAILED = "failed"


class StepsStatus(str, Enum):
    """Outcome of a run_steps call."""

    COMPLETED = "completed"
    FAILED = "failed"
    PENDING = "pending"


class ChangeKind(str, Enum):
    """How a watched file changed between two polls."""

    CREATED = "created"
    MODIFIED = "modified"
    DELETED = "deleted"
