# Copyright (c) Civic-Reward Contributors. All rights reserved.
# Licensed under the MIT License.
"""Centralized exception hierarchy for the civic reward core.

All exceptions inherit from CivicRewardError, so hosts can catch the
whole family at one seam.
"""

from __future__ import annotations

from typing import Optional


class CivicRewardError(Exception):
    """Base exception for all civic reward errors."""


class TriggerError(CivicRewardError):
    """Errors related to trigger rules and their validation."""


class UnknownRuleError(TriggerError):
    """Raised when a trigger rule id is not registered."""

    def __init__(self, rule_id: str) -> None:
        super().__init__(f"Trigger rule '{rule_id}' not found")
        self.rule_id = rule_id


class DuplicateRuleError(TriggerError):
    """Raised when registering a rule id that already exists."""

    def __init__(self, rule_id: str) -> None:
        super().__init__(f"Trigger rule '{rule_id}' is already registered")
        self.rule_id = rule_id


class IneligibleError(TriggerError):
    """A trigger failed validation. ``reason`` names the unmet condition."""

    def __init__(self, rule_id: str, reason: str, code: Optional[str] = None) -> None:
        super().__init__(f"Trigger '{rule_id}' rejected: {reason}")
        self.rule_id = rule_id
        self.reason = reason
        self.code = code


class LedgerError(CivicRewardError):
    """Errors related to ledger entries."""


class LedgerTransitionError(LedgerError):
    """Raised on a status change out of a terminal state."""


class UnknownEntryError(LedgerError):
    """Raised when a ledger entry id is not known."""


class DisbursementError(CivicRewardError):
    """Errors related to payout routing and settlement."""


class NoCapacityError(DisbursementError):
    """No active settlement node is available."""


class DisbursementFailure(DisbursementError):
    """A payout phase failed after node selection. Terminal for that payout."""

    def __init__(self, payout_id: str, phase: str, detail: str = "") -> None:
        message = f"Payout {payout_id} failed during {phase}"
        super().__init__(f"{message}: {detail}" if detail else message)
        self.payout_id = payout_id
        self.phase = phase
        self.detail = detail


class DuplicatePayoutError(DisbursementError):
    """A non-failed payout already exists for the source id."""


class UnknownPayoutError(DisbursementError):
    """Raised when a payout id is not known."""


class UnknownNodeError(DisbursementError):
    """Raised when a settlement node id is not known."""


class StorageError(CivicRewardError):
    """Errors related to storage backend operations."""


__all__ = [
    "CivicRewardError",
    "TriggerError",
    "UnknownRuleError",
    "DuplicateRuleError",
    "IneligibleError",
    "LedgerError",
    "LedgerTransitionError",
    "UnknownEntryError",
    "DisbursementError",
    "NoCapacityError",
    "DisbursementFailure",
    "DuplicatePayoutError",
    "UnknownPayoutError",
    "UnknownNodeError",
    "StorageError",
]
