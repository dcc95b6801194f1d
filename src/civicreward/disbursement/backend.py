"""
Settlement Backends

The router drives each payout phase through a settlement backend. A
production backend talks to the real ledger or payment rail; the
simulated one below is deterministic and is what tests and the CLI use.
"""

from __future__ import annotations

import asyncio
from typing import Iterable, Optional, Protocol, runtime_checkable

from pydantic import BaseModel

from civicreward.config import SimulationConfig

from .models import PayoutPhase, PayoutRequest


class SettlementResult(BaseModel):
    """Outcome of one phase at the settlement backend."""

    success: bool
    detail: str = ""


@runtime_checkable
class SettlementBackend(Protocol):
    """Protocol for pluggable settlement backends.

    ``settle`` is the suspension point for network latency. It may also
    raise; the router treats an exception like a failed result.
    """

    async def settle(self, phase: PayoutPhase, payout: PayoutRequest) -> SettlementResult: ...


_PHASE_MESSAGES = {
    PayoutPhase.VERIFICATION: "Verification completed successfully",
    PayoutPhase.DISBURSEMENT: "Funds disbursed to node network",
    PayoutPhase.COMPLETION: "Payout completed successfully",
}


class SimulatedSettlementBackend:
    """Deterministic backend with fixed per-phase latency.

    Args:
        config: Latency per phase in seconds.
        fail_phases: Phases that fail for every payout.
        fail_sources: Source ids whose payouts fail at ``fail_phases`` or,
            when ``fail_phases`` is empty, at verification.
    """

    def __init__(
        self,
        config: Optional[SimulationConfig] = None,
        fail_phases: Iterable[PayoutPhase] = (),
        fail_sources: Iterable[str] = (),
    ) -> None:
        self.config = config or SimulationConfig()
        self.fail_phases = set(fail_phases)
        self.fail_sources = set(fail_sources)
        self.calls: list[tuple[PayoutPhase, str]] = []

    @classmethod
    def instant(cls, **kwargs) -> "SimulatedSettlementBackend":
        """A backend with zero latency on every phase."""
        return cls(
            SimulationConfig(
                verification_latency=0.0,
                disbursement_latency=0.0,
                completion_latency=0.0,
            ),
            **kwargs,
        )

    def _latency(self, phase: PayoutPhase) -> float:
        return {
            PayoutPhase.VERIFICATION: self.config.verification_latency,
            PayoutPhase.DISBURSEMENT: self.config.disbursement_latency,
            PayoutPhase.COMPLETION: self.config.completion_latency,
        }.get(phase, 0.0)

    def _should_fail(self, phase: PayoutPhase, payout: PayoutRequest) -> bool:
        if payout.source_id in self.fail_sources:
            targets = self.fail_phases or {PayoutPhase.VERIFICATION}
            return phase in targets
        return not self.fail_sources and phase in self.fail_phases

    async def settle(self, phase: PayoutPhase, payout: PayoutRequest) -> SettlementResult:
        self.calls.append((phase, payout.payout_id))
        await asyncio.sleep(self._latency(phase))
        if self._should_fail(phase, payout):
            return SettlementResult(success=False, detail=f"Settlement rejected at {phase.value}")
        return SettlementResult(success=True, detail=_PHASE_MESSAGES.get(phase, phase.value))
