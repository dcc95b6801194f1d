"""Seed settlement-node pool."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Optional

from .models import NodeStatus, SettlementNode


def default_nodes(now: Optional[datetime] = None) -> list[SettlementNode]:
    """The five treasury nodes the network starts with; one is in maintenance."""
    now = now or datetime.now(timezone.utc)
    seeds = [
        ("node_treasury_001", 1247, 15_680_000, 0.987, 2.3, 15, NodeStatus.ACTIVE),
        ("node_treasury_002", 892, 11_230_000, 0.993, 1.8, 8, NodeStatus.ACTIVE),
        ("node_treasury_003", 1556, 19_840_000, 0.981, 3.1, 25, NodeStatus.ACTIVE),
        ("node_treasury_004", 634, 8_970_000, 0.976, 2.7, 45, NodeStatus.MAINTENANCE),
        ("node_treasury_005", 1123, 14_560_000, 0.989, 2.1, 12, NodeStatus.ACTIVE),
    ]
    return [
        SettlementNode(
            node_id=node_id,
            total_payouts=payouts,
            total_volume=volume,
            success_rate=rate,
            average_latency=latency,
            last_activity_at=now - timedelta(minutes=idle_minutes),
            status=status,
        )
        for node_id, payouts, volume, rate, latency, idle_minutes, status in seeds
    ]
