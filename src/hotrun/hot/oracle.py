"""Source-changed oracle for hot functions.

A function is identified by "module:qualname". Its fingerprint is the sha256
of its source text, falling back to its code object when the source is not
available (e.g. functions built with exec).
"""

import hashlib
import inspect
import linecache
import logging
import sys
from collections.abc import Callable
from typing import Any

logger = logging.getLogger(__name__)


def function_key(fn: Callable[..., Any]) -> str:
    """Stable identity of a function across reloads."""
    module = getattr(fn, "__module__", None) or "<unknown>"
    qualname = getattr(fn, "__qualname__", None) or getattr(fn, "__name__", repr(fn))
    return f"{module}:{qualname}"


def source_fingerprint(fn: Callable[..., Any]) -> str | None:
    """Compute a fingerprint of a callable's body.

    Returns None for objects that have neither source nor a code object.
    """
    fn = inspect.unwrap(fn)
    code = getattr(fn, "__code__", None)
    if code is not None:
        linecache.checkcache(code.co_filename)
    try:
        source = inspect.getsource(fn)
        return hashlib.sha256(source.encode()).hexdigest()
    except (OSError, TypeError):
        pass

    if code is None:
        return None
    digest = hashlib.sha256(code.co_code)
    digest.update(repr(code.co_consts).encode())
    digest.update(repr(code.co_names).encode())
    return digest.hexdigest()


def resolve_function(key: str) -> Callable[..., Any] | None:
    """Look up the live object for a function key in sys.modules."""
    module_name, _, qualname = key.partition(":")
    if not qualname or "<locals>" in qualname:
        return None

    obj: Any = sys.modules.get(module_name)
    if obj is None:
        return None
    for part in qualname.split("."):
        obj = getattr(obj, part, None)
        if obj is None:
            return None
    return obj


class SourceOracle:
    """Answers "did this function's source change since it was last seen?".

    By default a key is only re-fingerprinted after `notify_module_changed`
    flags its module, which the engine does on every committed reload. With
    `check_every_call=True` every query re-fingerprints.

    Each flag also bumps the key's revision. Wrappers compare revisions
    against the one they last saw, so several wrappers of the same key
    (the old one a caller holds and the one a re-executed module creates)
    each notice the change independently.
    """

    def __init__(self, check_every_call: bool = False):
        self.check_every_call = check_every_call
        self._seen: dict[str, str | None] = {}
        self._dirty: set[str] = set()
        self._revisions: dict[str, int] = {}

    def track(self, fn: Callable[..., Any]) -> str:
        """Start tracking a function and return its key.

        Re-tracking a key keeps the first baseline.
        """
        key = function_key(fn)
        self._seen.setdefault(key, source_fingerprint(fn))
        return key

    def notify_module_changed(self, module_name: str) -> None:
        prefix = f"{module_name}:"
        for key in list(self._seen):
            if key.startswith(prefix):
                self.mark_changed(key)

    def mark_changed(self, key: str) -> None:
        self._dirty.add(key)
        self._revisions[key] = self._revisions.get(key, 0) + 1

    def revision(self, key: str) -> int:
        return self._revisions.get(key, 0)

    def source_changed(self, key: str) -> bool:
        if key not in self._dirty and not self.check_every_call:
            return False
        self._dirty.discard(key)

        current = resolve_function(key)
        if current is None:
            return False

        fingerprint = source_fingerprint(current)
        changed = fingerprint != self._seen.get(key)
        self._seen[key] = fingerprint
        if changed:
            logger.debug(f"Source changed: {key}")
        return changed
