"""
Disbursement Router

Selects a settlement node per payout, prices it, and drives it through
audited phases until it completes or fails.
"""

from .backend import SettlementBackend, SettlementResult, SimulatedSettlementBackend
from .models import (
    ADVANCE_PHASES,
    NetworkMetrics,
    NodeStatus,
    PayoutAuditEntry,
    PayoutPhase,
    PayoutReceipt,
    PayoutRequest,
    PayoutStatus,
    SettlementNode,
    VerificationToken,
    WithdrawalRequest,
)
from .nodes import default_nodes
from .pricing import (
    compute_network_fee,
    estimate_delivery,
    network_health,
    score_node,
    select_node,
)
from .router import DisbursementRouter

__all__ = [
    "DisbursementRouter",
    "SettlementBackend",
    "SettlementResult",
    "SimulatedSettlementBackend",
    "ADVANCE_PHASES",
    "NetworkMetrics",
    "NodeStatus",
    "PayoutAuditEntry",
    "PayoutPhase",
    "PayoutReceipt",
    "PayoutRequest",
    "PayoutStatus",
    "SettlementNode",
    "VerificationToken",
    "WithdrawalRequest",
    "default_nodes",
    "compute_network_fee",
    "estimate_delivery",
    "network_health",
    "score_node",
    "select_node",
]
