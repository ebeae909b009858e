"""Hot function wrapper.

`wrap_hot(fn, oracle)` returns a callable that checks the oracle before every
call and, when the source changed, swaps in the latest implementation.
"""

import functools
import logging
from collections.abc import Callable
from typing import Any

from hotrun.hot.oracle import SourceOracle, resolve_function, source_fingerprint

logger = logging.getLogger(__name__)


class HotFunction:
    """Callable proxy dispatching to the newest version of a function."""

    def __init__(
        self,
        fn: Callable[..., Any],
        oracle: SourceOracle,
        resolve: Callable[[], Callable[..., Any] | None] | None = None,
    ):
        self._fn = fn
        self._oracle = oracle
        self.key = oracle.track(fn)
        self._fingerprint = source_fingerprint(fn)
        self._revision = oracle.revision(self.key)
        self._resolve = resolve or (lambda: resolve_function(self.key))
        self.swaps = 0
        functools.update_wrapper(self, fn)

    @property
    def current(self) -> Callable[..., Any]:
        return self._fn

    def _refresh(self) -> None:
        revision = self._oracle.revision(self.key)
        if revision == self._revision and not self._oracle.check_every_call:
            return
        self._revision = revision

        latest = self._resolve()
        # The module attribute is usually the re-executed module's own wrapper.
        if isinstance(latest, HotFunction):
            latest = latest.current
        if latest is None or latest is self._fn:
            return
        fingerprint = source_fingerprint(latest)
        if fingerprint == self._fingerprint:
            return

        self._fn = latest
        self._fingerprint = fingerprint
        self.__wrapped__ = latest
        self.swaps += 1
        logger.info(f"Hot-swapped {self.key} (swap #{self.swaps})")

    def __call__(self, *args: Any, **kwargs: Any) -> Any:
        self._refresh()
        return self._fn(*args, **kwargs)

    def __get__(self, instance: Any, owner: type | None = None) -> Any:
        if instance is None:
            return self
        return functools.partial(self, instance)

    def __repr__(self) -> str:
        return f"<HotFunction {self.key}>"


def wrap_hot(
    fn: Callable[..., Any],
    oracle: SourceOracle,
    resolve: Callable[[], Callable[..., Any] | None] | None = None,
) -> HotFunction:
    """Wrap `fn` so each call runs its latest version."""
    return HotFunction(fn, oracle, resolve)
