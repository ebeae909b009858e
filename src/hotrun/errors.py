"""Error taxonomy for hot-reload failures.

None of these crash the host process. They are attached to reconciliation
outcomes and step results, logged, and published as events.
"""


class HotRunError(Exception):
    """Base class for all hotrun errors."""


class LoadError(HotRunError):
    """Raised when a changed module fails to re-execute."""

    def __init__(self, module_id: str, cause: BaseException):
        self.module_id = module_id
        self.cause = cause
        super().__init__(f"Failed to load {module_id}: {type(cause).__name__}: {cause}")


class ReconciliationRejected(HotRunError):
    """Raised by a reconciler that declines to absorb an update."""

    def __init__(self, module_id: str | None = None, reason: str = "update rejected"):
        self.module_id = module_id
        self.reason = reason
        where = f" by {module_id}" if module_id else ""
        super().__init__(f"Reconciliation rejected{where}: {reason}")


class UnreconciledTerminal(HotRunError):
    """No module up the dependent chain could absorb a change."""

    def __init__(self, module_id: str):
        self.module_id = module_id
        super().__init__(f"Change could not be applied at {module_id}; full restart required")


class StepFailure(HotRunError):
    """A step's run raised during forward execution."""

    def __init__(self, step_id: str, cause: BaseException):
        self.step_id = step_id
        self.cause = cause
        super().__init__(f"Step {step_id!r} failed: {type(cause).__name__}: {cause}")


class RewindFailure(HotRunError):
    """A rewind action raised while unwinding a step."""

    def __init__(self, step_id: str, cause: BaseException):
        self.step_id = step_id
        self.cause = cause
        super().__init__(f"Rewind of step {step_id!r} failed: {type(cause).__name__}: {cause}")


class EngineNotRunningError(HotRunError):
    """Raised when the engine is used outside its init()/shutdown() lifecycle."""

    def __init__(self, operation: str):
        self.operation = operation
        super().__init__(f"Cannot {operation}: engine is not initialized")
