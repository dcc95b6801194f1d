"""
Reward Ledger Models

Reward events issued for qualifying civic actions and the signed ledger
entries that track value moving in and out.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field

from civicreward.exceptions import LedgerTransitionError
from civicreward.triggers.rules import ValidationCode


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class EntryType(str, Enum):
    REWARD = "reward"
    WITHDRAWAL = "withdrawal"
    TRANSFER = "transfer"


class EntryStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def terminal(self) -> bool:
        return self is not EntryStatus.PENDING


class RewardEvent(BaseModel):
    """
    A reward issued for one qualifying action.

    The amount is copied from the rule at validation time and cannot be
    changed afterwards; later edits to the rule do not reach it.
    """

    event_id: str = Field(default_factory=lambda: f"reward_{uuid.uuid4().hex[:16]}")
    rule_id: str
    identity_ref: Optional[str] = None
    wallet_ref: str
    amount: float = Field(frozen=True, ge=0.0)
    created_at: datetime = Field(default_factory=_utcnow)
    verification_token: Optional[str] = None
    validated: bool = True
    source: str = ""
    metadata: dict[str, Any] = Field(default_factory=dict)


class LedgerEntry(BaseModel):
    """A signed movement of value: positive inbound, negative outbound."""

    entry_id: str = Field(default_factory=lambda: f"txn_{uuid.uuid4().hex[:16]}")
    entry_type: EntryType
    reference_id: str
    amount: float
    status: EntryStatus = EntryStatus.PENDING
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)
    failure_reason: Optional[str] = None
    metadata: dict[str, Any] = Field(default_factory=dict)

    def transition(
        self,
        status: EntryStatus,
        at: Optional[datetime] = None,
        reason: Optional[str] = None,
    ) -> None:
        """
        Move the entry to a terminal status.

        Raises:
            LedgerTransitionError: If the entry is already terminal or the
                target is ``pending``
        """
        if self.status.terminal:
            raise LedgerTransitionError(
                f"Entry {self.entry_id} is already {self.status.value}"
            )
        if status is EntryStatus.PENDING:
            raise LedgerTransitionError(f"Entry {self.entry_id} cannot return to pending")
        self.status = status
        self.updated_at = at or _utcnow()
        if status is EntryStatus.FAILED:
            self.failure_reason = reason or "failed"


class TriggerOutcome(BaseModel):
    """Result of processing one trigger report."""

    accepted: bool
    reason: Optional[str] = None
    code: Optional[ValidationCode] = None
    event: Optional[RewardEvent] = None
    entry: Optional[LedgerEntry] = None


class DisbursementOutcome(BaseModel):
    """What the disbursement step reports back for one reward."""

    success: bool
    reference: Optional[str] = None
    reason: Optional[str] = None
