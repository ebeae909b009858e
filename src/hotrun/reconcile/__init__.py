"""Update-reconciliation protocol and reconciler capabilities."""

from hotrun.reconcile.protocol import ReconciliationProtocol
from hotrun.reconcile.reconcilers import (
    AcceptReconciler,
    ModuleHookReconciler,
    Reconciler,
    UpdateReconciler,
    maybe_await,
)

__all__ = [
    "AcceptReconciler",
    "ModuleHookReconciler",
    "ReconciliationProtocol",
    "Reconciler",
    "UpdateReconciler",
    "maybe_await",
]
