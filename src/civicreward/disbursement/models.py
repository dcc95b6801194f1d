"""
Disbursement Models

Settlement nodes, payout requests and the per-phase audit entries that
record a payout's progress.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, NewType, Optional

from pydantic import BaseModel, ConfigDict, Field

# Opaque marker that an off-core verification step happened. Stored and
# compared, never interpreted.
VerificationToken = NewType("VerificationToken", str)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class NodeStatus(str, Enum):
    ACTIVE = "active"
    MAINTENANCE = "maintenance"
    OFFLINE = "offline"


class PayoutStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def terminal(self) -> bool:
        return self in (PayoutStatus.COMPLETED, PayoutStatus.FAILED)


class PayoutPhase(str, Enum):
    INITIATION = "initiation"
    VERIFICATION = "verification"
    DISBURSEMENT = "disbursement"
    COMPLETION = "completion"
    FAILURE = "failure"


# Phases run after initiation, in order
ADVANCE_PHASES = (
    PayoutPhase.VERIFICATION,
    PayoutPhase.DISBURSEMENT,
    PayoutPhase.COMPLETION,
)


class SettlementNode(BaseModel):
    """A disbursement endpoint and its historical performance."""

    node_id: str = Field(frozen=True, min_length=1)
    total_volume: float = Field(default=0.0, ge=0.0)
    total_payouts: int = Field(default=0, ge=0)
    failed_payouts: int = Field(default=0, ge=0)
    success_rate: float = Field(default=1.0, ge=0.0, le=1.0)
    average_latency: float = Field(default=3.0, ge=0.0, description="Minutes")
    last_activity_at: Optional[datetime] = None
    status: NodeStatus = NodeStatus.ACTIVE

    @property
    def attempts(self) -> int:
        return self.total_payouts + self.failed_payouts

    def record_outcome(self, amount: float, success: bool, at: datetime) -> None:
        """Fold one terminal payout into the node's lifetime metrics."""
        attempts = self.attempts
        successes = self.success_rate * attempts
        if success:
            self.total_payouts += 1
            self.total_volume += amount
            self.last_activity_at = at
            successes += 1
        else:
            self.failed_payouts += 1
        self.success_rate = min(1.0, max(0.0, successes / (attempts + 1)))


class WithdrawalRequest(BaseModel):
    """What a caller asks the router to pay out."""

    source_id: str = Field(min_length=1)
    amount: float = Field(gt=0.0)
    recipient: str = Field(min_length=1)
    purpose: str = ""


class PayoutRequest(BaseModel):
    """A payout travelling through the node network."""

    payout_id: str = Field(default_factory=lambda: f"payout_{uuid.uuid4().hex[:16]}")
    source_id: str
    amount: float
    recipient: str
    purpose: str = ""
    node_id: str
    network_fee: int
    estimated_delivery: datetime
    submitted_at: datetime = Field(default_factory=_utcnow)
    status: PayoutStatus = PayoutStatus.PENDING
    verification_token: str
    audit_id: Optional[str] = None
    retry_of: Optional[str] = None
    failure_reason: Optional[str] = None
    completed_at: Optional[datetime] = None


class PayoutAuditEntry(BaseModel):
    """One phase of a payout's lifecycle. Never mutated once appended."""

    model_config = ConfigDict(frozen=True)

    audit_id: str = Field(default_factory=lambda: f"audit_{uuid.uuid4().hex[:16]}")
    payout_id: str
    phase: PayoutPhase
    timestamp: datetime = Field(default_factory=_utcnow)
    node_id: str
    amount: float
    status: str
    metadata: dict[str, Any] = Field(default_factory=dict)


class PayoutReceipt(BaseModel):
    """Returned synchronously by ``submit``; phases finish later."""

    payout_id: str
    estimated_delivery: datetime
    network_fee: int
    selected_node: str


class NetworkMetrics(BaseModel):
    total_nodes: int
    active_nodes: int
    total_volume: float
    average_success_rate: float
    health: str
