"""
Node scoring, fee schedule and delivery estimates.

Pure functions; the router composes them under its lock.
"""

from __future__ import annotations

import hashlib
import math
from datetime import datetime, timedelta
from decimal import ROUND_FLOOR, Decimal
from typing import Iterable, Optional

from civicreward import constants
from civicreward.config import RouterConfig

from .models import NodeStatus, SettlementNode, VerificationToken

_DEFAULT_CONFIG = RouterConfig()


def recency_score(node: SettlementNode, now: datetime, window_seconds: float) -> float:
    """1.0 for activity right now, decaying linearly to 0 over the window."""
    if node.last_activity_at is None:
        return 0.0
    elapsed = (now - node.last_activity_at).total_seconds()
    return min(1.0, max(0.0, 1.0 - elapsed / window_seconds))


def score_node(
    node: SettlementNode,
    now: datetime,
    config: RouterConfig = _DEFAULT_CONFIG,
) -> float:
    """Weighted node score: reliability, latency efficiency, recency."""
    efficiency = 1.0 / (node.average_latency + 1.0)
    recency = recency_score(node, now, config.recency_window_seconds)
    return (
        config.weight_success * node.success_rate
        + config.weight_latency * efficiency
        + config.weight_recency * recency
    )


def select_node(
    nodes: Iterable[SettlementNode],
    now: datetime,
    config: RouterConfig = _DEFAULT_CONFIG,
) -> Optional[SettlementNode]:
    """Highest-scoring active node; ties go to the first seen."""
    best: Optional[SettlementNode] = None
    best_score = -math.inf
    for node in nodes:
        if node.status is not NodeStatus.ACTIVE:
            continue
        score = score_node(node, now, config)
        if score > best_score:
            best, best_score = node, score
    return best


def _dec(value: float) -> Decimal:
    return Decimal(str(value))


def compute_network_fee(amount: float, config: RouterConfig = _DEFAULT_CONFIG) -> int:
    """
    Tiered network fee.

    Base rate on the amount, a discount above the large threshold and a
    further multiplicative discount above the very large threshold.
    Rounded down to whole units, never below the minimum fee.
    """
    fee = _dec(amount) * _dec(config.base_fee_rate)
    if amount > config.large_threshold:
        fee *= _dec(config.large_discount)
    if amount > config.very_large_threshold:
        fee *= _dec(config.very_large_discount)
    floored = int(fee.to_integral_value(rounding=ROUND_FLOOR))
    return max(config.minimum_fee, floored)


def complexity_factor(amount: float, config: RouterConfig = _DEFAULT_CONFIG) -> float:
    return config.large_complexity_factor if amount > config.large_threshold else 1.0


def estimate_delivery(
    amount: float,
    node: SettlementNode,
    now: datetime,
    config: RouterConfig = _DEFAULT_CONFIG,
) -> datetime:
    """Node latency scaled by payout complexity, as a future timestamp."""
    minutes = node.average_latency * complexity_factor(amount, config)
    return now + timedelta(minutes=minutes)


def verification_token(
    source_id: str,
    amount: float,
    recipient: str,
    submitted_at: datetime,
) -> VerificationToken:
    """Stable audit artifact for a payout. Not a security primitive."""
    payload = f"{source_id}:{amount}:{recipient}:{submitted_at.isoformat()}"
    return VerificationToken("0x" + hashlib.sha256(payload.encode()).hexdigest()[:32])


def network_health(average_success_rate: float, active_nodes: int) -> str:
    """Health label for the node network."""
    if active_nodes < constants.HEALTH_MIN_ACTIVE_NODES:
        return "critical"
    if average_success_rate >= constants.HEALTH_EXCELLENT_THRESHOLD:
        return "excellent"
    if average_success_rate >= constants.HEALTH_GOOD_THRESHOLD:
        return "good"
    if average_success_rate >= constants.HEALTH_DEGRADED_THRESHOLD:
        return "degraded"
    return "critical"
