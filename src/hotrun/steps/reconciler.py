"""Reconciler that re-runs a module's step sequence on update."""

import dataclasses
import logging
from collections.abc import Callable, Sequence
from typing import Any

from hotrun.domain.models import StepDefinition, StepsResult
from hotrun.errors import ReconciliationRejected
from hotrun.hot.oracle import source_fingerprint
from hotrun.reconcile.reconcilers import Reconciler
from hotrun.steps.sequence import StepSequence

logger = logging.getLogger(__name__)

StepSelector = Callable[[Any], Sequence[StepDefinition]]


def with_fingerprints(definitions: Sequence[StepDefinition]) -> list[StepDefinition]:
    """Fill in missing fingerprints from each step's source."""
    return [
        d if d.fingerprint is not None else dataclasses.replace(d, fingerprint=source_fingerprint(d.run))
        for d in definitions
    ]


class StepsReconciler(Reconciler):
    """Absorbs a module update by re-running the changed suffix of its steps.

    `select` extracts the step definitions from the module's exports: either
    an attribute name or a callable taking the exports.
    """

    def __init__(self, sequence: StepSequence, select: StepSelector | str = "STEPS"):
        self.sequence = sequence
        if isinstance(select, str):
            attribute = select
            self._select: StepSelector = lambda exports: getattr(exports, attribute)
        else:
            self._select = select
        self.last_result: StepsResult | None = None

    def definitions_for(self, exports: Any) -> list[StepDefinition]:
        return with_fingerprints(self._select(exports))

    async def start(self, exports: Any) -> StepsResult:
        """Run the sequence for the module's initial exports."""
        self.last_result = await self.sequence.run(self.definitions_for(exports))
        return self.last_result

    async def reconcile(self, old_exports: Any, new_exports: Any) -> bool:
        try:
            definitions = self.definitions_for(new_exports)
        except AttributeError as e:
            raise ReconciliationRejected(reason=f"no step definitions in new exports: {e}") from e

        self.last_result = await self.sequence.run(definitions)
        if self.last_result.failed:
            logger.warning(f"Steps {self.sequence.id} failed during reconciliation")
            return False
        return True
