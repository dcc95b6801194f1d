"""
Reward Observer

Subscribes to civic action routes, validates reports against the trigger
registry and keeps the append-only reward ledger.
"""

from .disbursement import Disbursement, RouterDisbursement
from .models import (
    DisbursementOutcome,
    EntryStatus,
    EntryType,
    LedgerEntry,
    RewardEvent,
    TriggerOutcome,
)
from .observer import RewardObserver, RouteHandler, wallet_ref_for

__all__ = [
    "RewardObserver",
    "RouteHandler",
    "wallet_ref_for",
    "Disbursement",
    "RouterDisbursement",
    "DisbursementOutcome",
    "EntryStatus",
    "EntryType",
    "LedgerEntry",
    "RewardEvent",
    "TriggerOutcome",
]
