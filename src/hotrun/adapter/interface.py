"""Watch/load adapter interface.

The core decides what to reload and in which order; a ModuleLoader performs
the actual execution of module bodies.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

from hotrun.domain.models import ModuleRecord


@dataclass
class LoadResult:
    """Candidate exports of one module execution."""

    exports: Any
    dependencies: set[str] = field(default_factory=set)


class ModuleLoader(ABC):
    """Executes module bodies on behalf of the reconciliation protocol.

    `load_module` must not touch live state: its result is only a candidate.
    `commit` makes a candidate the live version and is called only after the
    module's reconciler accepted it.
    """

    @abstractmethod
    async def load_module(self, record: ModuleRecord) -> LoadResult:
        """Re-execute a module and return its candidate exports.

        Raises whatever the module body raises.
        """

    async def commit(self, record: ModuleRecord, result: LoadResult) -> None:
        """Install a candidate as the live module (default: nothing to do)."""
