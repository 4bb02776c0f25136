"""
BuildLedger - inventory ledger and build transaction engine.

Tracks components, finished-good SKUs, bills of materials, locations and
lots for small-batch manufacturers. Every inventory movement is an
immutable ledger entry; running balances are derived from those entries.
"""
from buildledger.core.version import __version__

__all__ = ["__version__"]
