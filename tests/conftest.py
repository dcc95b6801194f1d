"""Shared fixtures for the civic reward tests."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from civicreward.disbursement import DisbursementRouter, SettlementNode, SimulatedSettlementBackend
from civicreward.events import InMemoryEventBus
from civicreward.observer import RewardObserver, RouterDisbursement
from civicreward.triggers import TriggerRegistry, default_rules

FIXED_NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


class FixedClock:
    """Clock that only moves when told to."""

    def __init__(self, now: datetime = FIXED_NOW) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


def make_node(node_id: str, **overrides) -> SettlementNode:
    fields = {
        "node_id": node_id,
        "total_volume": 1_000_000,
        "total_payouts": 100,
        "success_rate": 0.99,
        "average_latency": 2.0,
        "last_activity_at": FIXED_NOW - timedelta(minutes=10),
    }
    fields.update(overrides)
    return SettlementNode(**fields)


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock()


@pytest.fixture
def bus() -> InMemoryEventBus:
    return InMemoryEventBus()


@pytest.fixture
def registry() -> TriggerRegistry:
    return TriggerRegistry(default_rules())


@pytest.fixture
def backend() -> SimulatedSettlementBackend:
    return SimulatedSettlementBackend.instant()


@pytest.fixture
def router(backend, bus, clock) -> DisbursementRouter:
    return DisbursementRouter(backend, bus=bus, clock=clock)


@pytest.fixture
def observer(registry, router, bus, clock) -> RewardObserver:
    obs = RewardObserver(registry, RouterDisbursement(router), bus=bus, clock=clock)
    obs.bind_default_routes()
    return obs
