"""
Civic Reward - Trigger rules, reward ledger and payout routing for civic participation

Triggers · Ledger · Disbursement

Version: 1.0.0-alpha
"""

__version__ = "1.0.0a1"

# Layer 1: Trigger rules
from .triggers import (
    DEFAULT_ROUTES,
    RuleConditions,
    Tier,
    TriggerRegistry,
    TriggerRule,
    ValidationCode,
    ValidationContext,
    ValidationResult,
    default_rules,
)

# Layer 2: Reward ledger
from .observer import (
    Disbursement,
    DisbursementOutcome,
    EntryStatus,
    EntryType,
    LedgerEntry,
    RewardEvent,
    RewardObserver,
    RouterDisbursement,
    TriggerOutcome,
)

# Layer 3: Payout routing
from .disbursement import (
    DisbursementRouter,
    NetworkMetrics,
    NodeStatus,
    PayoutAuditEntry,
    PayoutPhase,
    PayoutReceipt,
    PayoutRequest,
    PayoutStatus,
    SettlementBackend,
    SettlementNode,
    SimulatedSettlementBackend,
    WithdrawalRequest,
)

# Ambient: configuration, events, storage, composition
from .config import CivicRewardConfig, ObserverConfig, RouterConfig, SimulationConfig
from .events import AsyncEventBus, Event, EventBus, InMemoryEventBus
from .exceptions import (
    CivicRewardError,
    DisbursementError,
    DisbursementFailure,
    DuplicatePayoutError,
    IneligibleError,
    NoCapacityError,
    UnknownRuleError,
)
from .services import CivicRewardService

__all__ = [
    "__version__",
    # Triggers
    "DEFAULT_ROUTES",
    "RuleConditions",
    "Tier",
    "TriggerRegistry",
    "TriggerRule",
    "ValidationCode",
    "ValidationContext",
    "ValidationResult",
    "default_rules",
    # Ledger
    "Disbursement",
    "DisbursementOutcome",
    "EntryStatus",
    "EntryType",
    "LedgerEntry",
    "RewardEvent",
    "RewardObserver",
    "RouterDisbursement",
    "TriggerOutcome",
    # Routing
    "DisbursementRouter",
    "NetworkMetrics",
    "NodeStatus",
    "PayoutAuditEntry",
    "PayoutPhase",
    "PayoutReceipt",
    "PayoutRequest",
    "PayoutStatus",
    "SettlementBackend",
    "SettlementNode",
    "SimulatedSettlementBackend",
    "WithdrawalRequest",
    # Ambient
    "CivicRewardConfig",
    "ObserverConfig",
    "RouterConfig",
    "SimulationConfig",
    "AsyncEventBus",
    "Event",
    "EventBus",
    "InMemoryEventBus",
    "CivicRewardError",
    "DisbursementError",
    "DisbursementFailure",
    "DuplicatePayoutError",
    "IneligibleError",
    "NoCapacityError",
    "UnknownRuleError",
    "CivicRewardService",
]
