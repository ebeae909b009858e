"""Hot functions: call-time dispatch to the latest implementation."""

from hotrun.hot.oracle import SourceOracle, function_key, source_fingerprint
from hotrun.hot.wrap import HotFunction, wrap_hot

__all__ = [
    "HotFunction",
    "SourceOracle",
    "function_key",
    "source_fingerprint",
    "wrap_hot",
]
