"""Reconciler capabilities attached to modules.

A reconciler decides whether a module can absorb a new version of its own
exports. Returning a falsy value, raising ReconciliationRejected, or raising
anything else means "no": the change escalates to the module's dependents.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from typing import Any

logger = logging.getLogger(__name__)

UpdateCallback = Callable[[Any, Any], bool | None | Awaitable[bool | None]]


async def maybe_await(value: Any) -> Any:
    """Await `value` if it is awaitable, otherwise return it as-is."""
    if asyncio.iscoroutine(value) or isinstance(value, asyncio.Future):
        return await value
    return value


class Reconciler(ABC):
    """Absorbs new module exports into a running process."""

    @abstractmethod
    async def reconcile(self, old_exports: Any, new_exports: Any) -> bool:
        """Apply `new_exports`; return True on success."""


class UpdateReconciler(Reconciler):
    """Reconciler backed by a plain (sync or async) callback.

    The callback receives `(old_exports, new_exports)`. A callback returning
    None counts as success, so simple "patch and move on" handlers need no
    explicit return.
    """

    def __init__(self, callback: UpdateCallback, name: str | None = None):
        self.callback = callback
        self.name = name or getattr(callback, "__qualname__", repr(callback))

    async def reconcile(self, old_exports: Any, new_exports: Any) -> bool:
        result = await maybe_await(self.callback(old_exports, new_exports))
        return result is None or bool(result)

    def __repr__(self) -> str:
        return f"UpdateReconciler({self.name})"


class AcceptReconciler(Reconciler):
    """Accepts every update unconditionally."""

    async def reconcile(self, old_exports: Any, new_exports: Any) -> bool:
        return True


class ModuleHookReconciler(Reconciler):
    """Delegates to a hook function defined by the module itself.

    The hook is looked up on the *new* exports so an edited hook takes effect
    for the very update that introduced it. If the new version dropped the
    hook the update is declined.
    """

    def __init__(self, hook_name: str = "__reconcile__"):
        self.hook_name = hook_name

    async def reconcile(self, old_exports: Any, new_exports: Any) -> bool:
        hook = getattr(new_exports, self.hook_name, None)
        if hook is None:
            logger.debug(f"New exports no longer define {self.hook_name}")
            return False
        result = await maybe_await(hook(old_exports, new_exports))
        return result is None or bool(result)
