"""Control object handed to each running step."""

import logging

from hotrun.domain.models import RewindAction

logger = logging.getLogger(__name__)


class StepControl:
    """Lets a step register how to undo its side effects.

    Rewind actions of one step run in reverse registration order when the
    step is unwound.
    """

    def __init__(self, sequence_id: str, step_id: str, rewind_actions: list[RewindAction]):
        self.sequence_id = sequence_id
        self.step_id = step_id
        self._rewind_actions = rewind_actions

    def on_rewind(self, action: RewindAction) -> RewindAction:
        """Register a (sync or async) rewind action; returns it for decorator use."""
        self._rewind_actions.append(action)
        logger.debug(f"{self.sequence_id}/{self.step_id}: rewind action registered")
        return action

    @property
    def has_rewind(self) -> bool:
        return bool(self._rewind_actions)
