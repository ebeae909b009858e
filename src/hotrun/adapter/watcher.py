"""Polling source watcher.

Reports edits to the files the engine can reload:
- files under the watch roots whose name matches a pattern and that pass
  the optional `accept` filter
- extra files registered by the host, wherever they live and whatever
  their name

Excluded directories are pruned while walking, so their files are never
read. Paths are reported in module-id form (`normalize_path`), and a file
only counts as changed when its content hash changes.
"""

import asyncio
import hashlib
import logging
import os
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass
from fnmatch import fnmatch
from pathlib import Path

from hotrun.domain.enums import ChangeKind
from hotrun.graph.store import normalize_path

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SourceChange:
    """One changed file, identified by its module-id path."""

    path: str
    kind: ChangeKind


ChangeCallback = Callable[[list[SourceChange]], Awaitable[None]]


def merge_change(previous: ChangeKind | None, latest: ChangeKind) -> ChangeKind | None:
    """Fold two changes of the same path into one; None means they cancel out."""
    if previous is None:
        return latest
    if previous == ChangeKind.CREATED:
        return None if latest == ChangeKind.DELETED else ChangeKind.CREATED
    if previous == ChangeKind.DELETED and latest == ChangeKind.CREATED:
        return ChangeKind.MODIFIED
    return latest


class SourceWatcher:
    """Polls the watch roots and diffs content digests between polls."""

    def __init__(
        self,
        roots: Iterable[str | Path],
        patterns: Iterable[str] = ("*.py",),
        exclude: Iterable[str] = (),
        accept: Callable[[str], bool] | None = None,
        extra_files: Callable[[], Iterable[str]] | None = None,
    ):
        self.roots = [Path(root) for root in roots]
        self.patterns = list(patterns)
        self.exclude = list(exclude)
        self._accept = accept
        self._extra_files = extra_files

        # module-id path -> sha256 of the content
        self._digests: dict[str, str] = {}
        self._primed = False

    @property
    def watched(self) -> list[str]:
        return sorted(self._digests)

    def _is_excluded(self, name: str) -> bool:
        return any(fnmatch(name, pattern) for pattern in self.exclude)

    def _wanted(self, path: str) -> bool:
        name = os.path.basename(path)
        if not any(fnmatch(name, pattern) for pattern in self.patterns):
            return False
        return self._accept is None or self._accept(path)

    def _candidates(self) -> set[str]:
        found: set[str] = set()
        for root in self.roots:
            if not root.is_dir():
                continue
            for dirpath, dirnames, filenames in os.walk(root):
                dirnames[:] = [d for d in dirnames if not self._is_excluded(d)]
                for filename in filenames:
                    if self._is_excluded(filename):
                        continue
                    path = normalize_path(os.path.join(dirpath, filename))
                    if self._wanted(path):
                        found.add(path)

        if self._extra_files is not None:
            found.update(normalize_path(path) for path in self._extra_files())
        return found

    def snapshot(self) -> dict[str, str]:
        """Digest every watched file that can currently be read."""
        digests: dict[str, str] = {}
        for path in sorted(self._candidates()):
            try:
                digests[path] = hashlib.sha256(Path(path).read_bytes()).hexdigest()
            except OSError as e:
                logger.debug(f"Skipping unreadable {path}: {e}")
        return digests

    def prime(self) -> None:
        """Take the baseline that later polls are compared against."""
        self._digests = self.snapshot()
        self._primed = True
        logger.info(f"Watching {len(self._digests)} source files")

    def poll(self) -> list[SourceChange]:
        """Changes since the previous poll. The first poll only primes."""
        if not self._primed:
            self.prime()
            return []

        current = self.snapshot()
        changes = [
            SourceChange(path, ChangeKind.MODIFIED if path in self._digests else ChangeKind.CREATED)
            for path, digest in current.items()
            if self._digests.get(path) != digest
        ]
        changes.extend(
            SourceChange(path, ChangeKind.DELETED) for path in sorted(self._digests.keys() - current.keys())
        )
        self._digests = current
        return changes

    async def watch_loop(
        self,
        callback: ChangeCallback,
        poll_interval: float = 0.5,
        debounce_seconds: float = 0.2,
        stop_event: asyncio.Event | None = None,
    ) -> None:
        """Poll until `stop_event` is set, handing settled batches to `callback`.

        A batch is delivered once no poll has found anything new for
        `debounce_seconds`. Changes to the same path within a batch are
        folded with `merge_change`, so each path appears at most once.
        """
        loop = asyncio.get_running_loop()
        self.prime()
        pending: dict[str, ChangeKind] = {}
        last_change = loop.time()

        while stop_event is None or not stop_event.is_set():
            changes = self.poll()
            for change in changes:
                kind = merge_change(pending.get(change.path), change.kind)
                if kind is None:
                    del pending[change.path]
                else:
                    pending[change.path] = kind
            if changes:
                last_change = loop.time()

            if pending and loop.time() - last_change >= debounce_seconds:
                batch = [SourceChange(path, kind) for path, kind in pending.items()]
                pending.clear()
                logger.info(f"Detected {len(batch)} changed source files")
                await callback(batch)

            await asyncio.sleep(poll_interval)
