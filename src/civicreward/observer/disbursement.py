"""
Disbursement port for the reward observer.

The observer hands each accepted reward to a ``Disbursement`` and records
the outcome on the reward's ledger entry.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Optional, Protocol, runtime_checkable

from civicreward.disbursement import DisbursementRouter, PayoutStatus, WithdrawalRequest

from .models import DisbursementOutcome, LedgerEntry, RewardEvent

logger = logging.getLogger(__name__)


@runtime_checkable
class Disbursement(Protocol):
    """Moves value for one reward. May raise; the observer records a failure."""

    async def disburse(self, event: RewardEvent, entry: LedgerEntry) -> DisbursementOutcome: ...


class RouterDisbursement:
    """
    Disburses rewards through the node router.

    Each ledger entry becomes one payout with the entry id as its source
    id, so a ledger retry (a new entry) maps to a new payout. Zero-value
    rewards complete without touching the router.

    Args:
        router: The disbursement router.
        timeout: Seconds to wait for the payout to finish; ``None`` waits
            indefinitely.
    """

    def __init__(self, router: DisbursementRouter, timeout: Optional[float] = None) -> None:
        self.router = router
        self.timeout = timeout

    async def disburse(self, event: RewardEvent, entry: LedgerEntry) -> DisbursementOutcome:
        if event.amount <= 0:
            logger.debug("Reward %s carries no value; settled without a payout", event.event_id)
            return DisbursementOutcome(success=True)
        receipt = await self.router.submit(
            WithdrawalRequest(
                source_id=entry.entry_id,
                amount=event.amount,
                recipient=event.wallet_ref,
                purpose=f"reward:{event.rule_id}",
            )
        )
        try:
            payout = await self.router.wait(receipt.payout_id, timeout=self.timeout)
        except asyncio.TimeoutError:
            await self.router.cancel(receipt.payout_id, reason="timed out")
            return DisbursementOutcome(
                success=False,
                reference=receipt.payout_id,
                reason=f"Payout {receipt.payout_id} timed out",
            )

        if payout.status is PayoutStatus.COMPLETED:
            return DisbursementOutcome(success=True, reference=payout.payout_id)
        logger.debug("Payout %s for %s failed: %s", payout.payout_id, event.event_id, payout.failure_reason)
        return DisbursementOutcome(
            success=False,
            reference=payout.payout_id,
            reason=payout.failure_reason,
        )
