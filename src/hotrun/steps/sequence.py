"""Checkpointed step sequences.

A StepSequence remembers the steps it ran. When run again with an edited
definition list it keeps the longest unchanged prefix, unwinds everything
after it in reverse order, and re-runs only the changed suffix:

    run([S1, S2, S3])   -> runs S1, S2, S3
    run([S1, S2', S3])  -> rewinds S3, S2; runs S2', S3

Runs of one sequence never overlap: a new run waits for the forward execution
of the previous one to settle before unwinding anything.
"""

import asyncio
import logging
from collections.abc import Collection, Mapping, Sequence

from hotrun.domain.enums import SequenceState, StepsStatus
from hotrun.domain.models import StepDefinition, StepRun, StepsResult, merge_outputs
from hotrun.errors import RewindFailure, StepFailure
from hotrun.events import EventBus, EventType
from hotrun.reconcile.reconcilers import maybe_await
from hotrun.steps.control import StepControl

logger = logging.getLogger(__name__)


class StepSequence:
    """Run history and state machine of one step sequence instance."""

    def __init__(self, sequence_id: str = "steps", bus: EventBus | None = None):
        self.id = sequence_id
        self.bus = bus or EventBus()
        self.state = SequenceState.IDLE
        self.position: int | None = None
        self._runs: list[StepRun] = []
        self._lock = asyncio.Lock()

    @property
    def history(self) -> list[str]:
        """Ids of the recorded step runs in execution order."""
        return [run.id for run in self._runs]

    @property
    def runs(self) -> list[StepRun]:
        return list(self._runs)

    @property
    def output(self) -> dict:
        return merge_outputs([run.output for run in self._runs if not run.failed])

    @property
    def busy(self) -> bool:
        return self._lock.locked()

    def reusable_prefix(
        self,
        definitions: Sequence[StepDefinition],
        changed: Collection[str] = (),
    ) -> int:
        """Length of the prefix of recorded runs that `definitions` can reuse."""
        prefix = 0
        for run, definition in zip(self._runs, definitions, strict=False):
            if self._is_changed(run, definition, changed):
                break
            prefix += 1
        return prefix

    @staticmethod
    def _is_changed(run: StepRun, definition: StepDefinition, changed: Collection[str]) -> bool:
        if run.failed or run.id != definition.id or definition.id in changed:
            return True
        return (
            run.fingerprint is not None
            and definition.fingerprint is not None
            and run.fingerprint != definition.fingerprint
        )

    async def run(
        self,
        definitions: Sequence[StepDefinition],
        changed: Collection[str] = (),
    ) -> StepsResult:
        """Bring the sequence in line with `definitions`.

        Args:
            definitions: Ordered steps; ids must be unique.
            changed: Ids whose bodies the caller knows to have changed.

        Returns:
            StepsResult with the merged output and what was unwound/re-run.
        """
        definitions = list(definitions)
        ids = [d.id for d in definitions]
        if len(set(ids)) != len(ids):
            duplicates = sorted({i for i in ids if ids.count(i) > 1})
            raise ValueError(f"Duplicate step ids in {self.id}: {', '.join(duplicates)}")

        async with self._lock:
            prefix = self.reusable_prefix(definitions, changed)
            unwound, rewind_errors = await self._unwind_to(prefix)
            result = await self._run_from(prefix, definitions)
            result.unwound = unwound
            result.rewind_errors = rewind_errors

        if result.reran or result.unwound:
            logger.info(
                f"Steps {self.id}: reused {prefix}, unwound {len(unwound)}, "
                f"ran {len(result.reran)} ({result.status.value})"
            )
        return result

    def start(
        self,
        definitions: Sequence[StepDefinition],
        changed: Collection[str] = (),
    ) -> asyncio.Task[StepsResult]:
        """Schedule a run without waiting for it."""
        return asyncio.create_task(self.run(definitions, changed), name=f"steps:{self.id}")

    async def dispose(self) -> list[RewindFailure]:
        """Unwind every recorded run."""
        async with self._lock:
            _, errors = await self._unwind_to(0)
            self.state = SequenceState.IDLE
            self.position = None
        return errors

    async def _run_from(self, start: int, definitions: list[StepDefinition]) -> StepsResult:
        reran: list[str] = []
        for index in range(start, len(definitions)):
            definition = definitions[index]
            self.state = SequenceState.RUNNING
            self.position = index

            step_input = dict(self.output)
            run = StepRun(id=definition.id, fingerprint=definition.fingerprint)
            control = StepControl(self.id, definition.id, run.rewind_actions)
            # Recorded before running so rewinds registered before a failure survive.
            self._runs.append(run)
            await self.bus.emit(EventType.STEP_STARTED, sequence=self.id, step=definition.id)

            try:
                output = await maybe_await(definition.run(step_input, control))
                if output is not None and not isinstance(output, Mapping):
                    raise TypeError(f"step returned {type(output).__name__}, expected a mapping")
            except Exception as e:
                run.failed = True
                self.state = SequenceState.FAILED
                error = StepFailure(definition.id, e)
                logger.error(f"Steps {self.id}: {error}")
                await self.bus.emit(
                    EventType.STEP_FAILED,
                    sequence=self.id,
                    step=definition.id,
                    error=str(e),
                )
                return StepsResult(
                    status=StepsStatus.FAILED,
                    output=self.output,
                    reran=reran,
                    error=error,
                )

            run.output = dict(output or {})
            reran.append(definition.id)
            await self.bus.emit(EventType.STEP_COMPLETED, sequence=self.id, step=definition.id)

        self.state = SequenceState.COMPLETED
        self.position = None
        return StepsResult(status=StepsStatus.COMPLETED, output=self.output, reran=reran)

    async def _unwind_to(self, prefix: int) -> tuple[list[str], list[RewindFailure]]:
        unwound: list[str] = []
        errors: list[RewindFailure] = []
        while len(self._runs) > prefix:
            index = len(self._runs) - 1
            run = self._runs[index]
            self.state = SequenceState.UNWINDING
            self.position = index

            for action in reversed(run.rewind_actions):
                try:
                    await maybe_await(action())
                except Exception as e:
                    error = RewindFailure(run.id, e)
                    logger.error(f"Steps {self.id}: {error}")
                    errors.append(error)
                    await self.bus.emit(
                        EventType.REWIND_FAILED,
                        sequence=self.id,
                        step=run.id,
                        error=str(e),
                    )

            self._runs.pop()
            unwound.append(run.id)
            await self.bus.emit(EventType.STEP_REWOUND, sequence=self.id, step=run.id)

        return unwound, errors
