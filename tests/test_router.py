"""Tests for the disbursement router."""

from __future__ import annotations

import asyncio
from datetime import timedelta

import pytest

from civicreward.disbursement import (
    DisbursementRouter,
    NodeStatus,
    PayoutPhase,
    PayoutStatus,
    SettlementResult,
    SimulatedSettlementBackend,
    WithdrawalRequest,
)
from civicreward.events import Event, InMemoryEventBus
from civicreward.exceptions import (
    DisbursementError,
    DisbursementFailure,
    DuplicatePayoutError,
    NoCapacityError,
    UnknownNodeError,
    UnknownPayoutError,
)
from civicreward.observability import RewardMetrics

from conftest import FixedClock, make_node

FULL_TRAIL = [
    PayoutPhase.INITIATION,
    PayoutPhase.VERIFICATION,
    PayoutPhase.DISBURSEMENT,
    PayoutPhase.COMPLETION,
]


class GatedBackend:
    """Holds every phase until released."""

    def __init__(self) -> None:
        self.release = asyncio.Event()
        self.phases: list[PayoutPhase] = []

    async def settle(self, phase, payout) -> SettlementResult:
        self.phases.append(phase)
        await self.release.wait()
        return SettlementResult(success=True, detail=f"{phase.value} ok")


class ExplodingBackend:
    async def settle(self, phase, payout) -> SettlementResult:
        raise RuntimeError("rail down")


def _request(source_id: str = "src-1", amount: float = 1_000.0) -> WithdrawalRequest:
    return WithdrawalRequest(source_id=source_id, amount=amount, recipient="cid:wallet:alice")


def _phases(router: DisbursementRouter, payout_id: str) -> list[PayoutPhase]:
    return [entry.phase for entry in router.audit_trail(payout_id)]


@pytest.fixture
def pool_router(backend, bus, clock) -> DisbursementRouter:
    nodes = [make_node("node-a"), make_node("node-b"), make_node("node-c")]
    return DisbursementRouter(backend, nodes=nodes, bus=bus, clock=clock)


class TestSubmit:
    """Tests for payout submission and phase advancement."""

    async def test_submit_returns_receipt(self, router: DisbursementRouter) -> None:
        receipt = await router.submit(_request())
        payout = router.status(receipt.payout_id)
        assert payout.status is PayoutStatus.PENDING
        assert receipt.selected_node == payout.node_id
        assert receipt.network_fee == payout.network_fee == 1
        assert payout.audit_id == router.audit_trail(receipt.payout_id)[0].audit_id

    async def test_completed_trail(self, router: DisbursementRouter) -> None:
        receipt = await router.submit(_request())
        payout = await router.wait(receipt.payout_id, timeout=1)

        assert payout.status is PayoutStatus.COMPLETED
        assert payout.completed_at is not None
        assert _phases(router, receipt.payout_id) == FULL_TRAIL

    async def test_default_pool_skips_maintenance(self, router: DisbursementRouter) -> None:
        receipt = await router.submit(_request())
        assert receipt.selected_node != "node_treasury_004"

    async def test_large_payout_scenario(self, backend, clock) -> None:
        router = DisbursementRouter(
            backend, nodes=[make_node("solo", average_latency=2.0)], clock=clock
        )
        receipt = await router.submit(_request(amount=600_000))

        assert receipt.network_fee == 288
        assert receipt.estimated_delivery - clock.now == timedelta(minutes=3.0)
        assert receipt.selected_node == "solo"

    async def test_no_capacity(self, pool_router: DisbursementRouter) -> None:
        for node in pool_router.nodes():
            pool_router.set_node_status(node.node_id, NodeStatus.OFFLINE)

        with pytest.raises(NoCapacityError):
            await pool_router.submit(_request())
        assert pool_router.recent() == []
        assert pool_router.payout_for_source("src-1") is None

    async def test_events_published(self, router: DisbursementRouter, bus: InMemoryEventBus) -> None:
        received: list[Event] = []
        bus.subscribe("payout.*", received.append)

        receipt = await router.submit(_request())
        await router.wait(receipt.payout_id, timeout=1)

        assert [e.event_type for e in received] == ["payout.initiated", "payout.completed"]
        assert received[-1].payload["payout_id"] == receipt.payout_id

    async def test_metrics_recorded(self, backend, clock) -> None:
        metrics = RewardMetrics()
        router = DisbursementRouter(backend, metrics=metrics, clock=clock)
        receipt = await router.submit(_request(amount=600_000))
        await router.wait(receipt.payout_id, timeout=1)

        assert metrics.network_fees._value.get() == 288
        assert metrics.active_nodes._value.get() == 4
        assert b'civicreward_payouts_total{status="completed"} 1.0' in metrics.render()


class TestNodeOutcomes:
    """Tests for node metrics updated on terminal outcomes."""

    async def test_success_updates_node(self, pool_router: DisbursementRouter) -> None:
        receipt = await pool_router.submit(_request(amount=5_000))
        before = pool_router.get_node(receipt.selected_node)
        await pool_router.wait(receipt.payout_id, timeout=1)
        after = pool_router.get_node(receipt.selected_node)

        assert after.total_payouts == before.total_payouts + 1
        assert after.total_volume == before.total_volume + 5_000
        assert after.success_rate >= before.success_rate

    async def test_failure_updates_node(self, bus, clock) -> None:
        backend = SimulatedSettlementBackend.instant(fail_phases=[PayoutPhase.DISBURSEMENT])
        router = DisbursementRouter(backend, nodes=[make_node("solo")], bus=bus, clock=clock)

        receipt = await router.submit(_request())
        await router.wait(receipt.payout_id, timeout=1)
        node = router.get_node("solo")

        assert node.failed_payouts == 1
        assert node.total_payouts == 100
        assert node.total_volume == 1_000_000
        assert node.success_rate == pytest.approx(99 / 101)

    async def test_pending_payout_leaves_node_untouched(self, bus, clock) -> None:
        backend = GatedBackend()
        router = DisbursementRouter(backend, nodes=[make_node("solo")], bus=bus, clock=clock)
        receipt = await router.submit(_request())
        await asyncio.sleep(0)

        assert router.get_node("solo") == make_node("solo")
        backend.release.set()
        await router.wait(receipt.payout_id, timeout=1)


class TestFailures:
    """Tests for phase failures."""

    async def test_failed_trail_is_prefix_plus_failure(self, bus, clock) -> None:
        backend = SimulatedSettlementBackend.instant(fail_phases=[PayoutPhase.DISBURSEMENT])
        router = DisbursementRouter(backend, bus=bus, clock=clock)

        receipt = await router.submit(_request())
        payout = await router.wait(receipt.payout_id, timeout=1)

        assert payout.status is PayoutStatus.FAILED
        assert payout.failure_reason == "Settlement rejected at disbursement"
        assert _phases(router, receipt.payout_id) == [
            PayoutPhase.INITIATION,
            PayoutPhase.VERIFICATION,
            PayoutPhase.FAILURE,
        ]
        failure = router.audit_trail(receipt.payout_id)[-1]
        assert failure.metadata["failed_phase"] == "disbursement"

    async def test_backend_exception_fails_payout(self, bus, clock) -> None:
        router = DisbursementRouter(ExplodingBackend(), bus=bus, clock=clock)

        receipt = await router.submit(_request())
        payout = await router.wait(receipt.payout_id, timeout=1)

        assert payout.status is PayoutStatus.FAILED
        assert "rail down" in payout.failure_reason
        assert _phases(router, receipt.payout_id) == [PayoutPhase.INITIATION, PayoutPhase.FAILURE]

    async def test_wait_raises_on_failure(self, bus, clock) -> None:
        backend = SimulatedSettlementBackend.instant(fail_phases=[PayoutPhase.VERIFICATION])
        router = DisbursementRouter(backend, bus=bus, clock=clock)
        receipt = await router.submit(_request())

        with pytest.raises(DisbursementFailure) as exc_info:
            await router.wait(receipt.payout_id, timeout=1, raise_on_failure=True)
        assert exc_info.value.phase == "verification"
        assert exc_info.value.payout_id == receipt.payout_id

    async def test_failed_event(self, bus, clock) -> None:
        received: list[Event] = []
        bus.subscribe("payout.failed", received.append)
        backend = SimulatedSettlementBackend.instant(fail_phases=[PayoutPhase.COMPLETION])
        router = DisbursementRouter(backend, bus=bus, clock=clock)

        receipt = await router.submit(_request())
        await router.wait(receipt.payout_id, timeout=1)

        assert len(received) == 1
        assert received[0].payload["status"] == "failed"


class TestCancellation:
    """Tests for cancelling in-flight payouts."""

    async def test_cancel_in_flight(self, bus, clock) -> None:
        backend = GatedBackend()
        router = DisbursementRouter(backend, bus=bus, clock=clock)
        receipt = await router.submit(_request())
        await asyncio.sleep(0)
        assert backend.phases == [PayoutPhase.VERIFICATION]

        assert await router.cancel(receipt.payout_id) is True
        payout = router.status(receipt.payout_id)
        assert payout.status is PayoutStatus.FAILED
        assert payout.failure_reason == "cancelled"

        trail = router.audit_trail(receipt.payout_id)
        assert [e.phase for e in trail] == [PayoutPhase.INITIATION, PayoutPhase.FAILURE]
        assert trail[-1].status == "cancelled"
        assert trail[-1].metadata["cancelled"] is True

        backend.release.set()
        await asyncio.sleep(0)
        assert backend.phases == [PayoutPhase.VERIFICATION]
        assert router.in_flight() == []

    async def test_cancel_before_first_phase(self, bus, clock) -> None:
        backend = GatedBackend()
        router = DisbursementRouter(backend, bus=bus, clock=clock)
        receipt = await router.submit(_request())

        assert await router.cancel(receipt.payout_id, reason="operator stop") is True
        payout = await router.wait(receipt.payout_id, timeout=1)
        assert payout.status is PayoutStatus.FAILED
        assert payout.failure_reason == "operator stop"
        assert backend.phases == []

    async def test_cancel_leaves_node_untouched(self, bus, clock) -> None:
        backend = GatedBackend()
        router = DisbursementRouter(backend, nodes=[make_node("solo")], bus=bus, clock=clock)
        receipt = await router.submit(_request())
        await asyncio.sleep(0)

        await router.cancel(receipt.payout_id)
        assert router.get_node("solo").failed_payouts == 0

    async def test_cancel_completed_is_noop(self, router: DisbursementRouter) -> None:
        receipt = await router.submit(_request())
        await router.wait(receipt.payout_id, timeout=1)

        assert await router.cancel(receipt.payout_id) is False
        assert router.status(receipt.payout_id).status is PayoutStatus.COMPLETED
        assert _phases(router, receipt.payout_id) == FULL_TRAIL

    async def test_cancel_unknown(self, router: DisbursementRouter) -> None:
        with pytest.raises(UnknownPayoutError):
            await router.cancel("payout_missing")

    async def test_wait_timeout(self, bus, clock) -> None:
        backend = GatedBackend()
        router = DisbursementRouter(backend, bus=bus, clock=clock)
        receipt = await router.submit(_request())

        with pytest.raises(asyncio.TimeoutError):
            await router.wait(receipt.payout_id, timeout=0.01)
        backend.release.set()
        payout = await router.wait(receipt.payout_id, timeout=1)
        assert payout.status is PayoutStatus.COMPLETED

    async def test_shutdown_cancels_in_flight(self, bus, clock) -> None:
        backend = GatedBackend()
        router = DisbursementRouter(backend, bus=bus, clock=clock)
        first = await router.submit(_request("src-1"))
        second = await router.submit(_request("src-2"))
        await asyncio.sleep(0)

        await router.shutdown()

        for receipt in (first, second):
            payout = router.status(receipt.payout_id)
            assert payout.status is PayoutStatus.FAILED
            assert payout.failure_reason == "shutdown"
        assert router.in_flight() == []


class TestConcurrency:
    """Tests for concurrent submissions."""

    async def test_concurrent_submissions(self, router: DisbursementRouter) -> None:
        receipts = await asyncio.gather(
            *(router.submit(_request(f"src-{i}", amount=100 + i)) for i in range(20))
        )
        assert len({r.payout_id for r in receipts}) == 20

        payouts = await asyncio.gather(*(router.wait(r.payout_id, timeout=1) for r in receipts))
        assert all(p.status is PayoutStatus.COMPLETED for p in payouts)
        for receipt in receipts:
            assert _phases(router, receipt.payout_id) == FULL_TRAIL

    async def test_submission_not_blocked_by_in_flight_phase(self, bus, clock) -> None:
        backend = GatedBackend()
        router = DisbursementRouter(backend, bus=bus, clock=clock)
        first = await router.submit(_request("src-1"))
        await asyncio.sleep(0)

        second = await asyncio.wait_for(router.submit(_request("src-2")), timeout=1)
        await asyncio.sleep(0)
        assert backend.phases.count(PayoutPhase.VERIFICATION) == 2

        backend.release.set()
        for receipt in (first, second):
            payout = await router.wait(receipt.payout_id, timeout=1)
            assert payout.status is PayoutStatus.COMPLETED


class TestRetry:
    """Tests for one-payout-per-source and operator retry."""

    async def test_duplicate_source_rejected(self, router: DisbursementRouter) -> None:
        await router.submit(_request("src-1"))
        with pytest.raises(DuplicatePayoutError):
            await router.submit(_request("src-1"))

    async def test_retry_failed_payout(self, bus, clock) -> None:
        backend = SimulatedSettlementBackend.instant(fail_phases=[PayoutPhase.VERIFICATION])
        router = DisbursementRouter(backend, bus=bus, clock=clock)
        failed = await router.submit(_request("src-1"))
        await router.wait(failed.payout_id, timeout=1)

        with pytest.raises(DuplicatePayoutError):
            await router.submit(_request("src-1"))

        backend.fail_phases = set()
        retried = await router.retry(failed.payout_id)
        payout = await router.wait(retried.payout_id, timeout=1)

        assert payout.status is PayoutStatus.COMPLETED
        assert payout.retry_of == failed.payout_id
        assert router.status(failed.payout_id).status is PayoutStatus.FAILED
        assert router.payout_for_source("src-1").payout_id == retried.payout_id

    async def test_retry_twice_rejected(self, bus, clock) -> None:
        backend = SimulatedSettlementBackend.instant(fail_phases=[PayoutPhase.VERIFICATION])
        router = DisbursementRouter(backend, bus=bus, clock=clock)
        failed = await router.submit(_request("src-1"))
        await router.wait(failed.payout_id, timeout=1)

        await router.retry(failed.payout_id)
        with pytest.raises(DuplicatePayoutError):
            await router.retry(failed.payout_id)

    async def test_retry_non_failed_rejected(self, router: DisbursementRouter) -> None:
        receipt = await router.submit(_request())
        await router.wait(receipt.payout_id, timeout=1)
        with pytest.raises(DisbursementError):
            await router.retry(receipt.payout_id)

    async def test_retry_unknown(self, router: DisbursementRouter) -> None:
        with pytest.raises(UnknownPayoutError):
            await router.retry("payout_missing")


class TestQueries:
    """Tests for status, audit trail, recent payouts and network metrics."""

    async def test_unknown_payout(self, router: DisbursementRouter) -> None:
        assert router.status("payout_missing") is None
        assert router.audit_trail("payout_missing") == []
        with pytest.raises(UnknownPayoutError):
            await router.wait("payout_missing")

    async def test_status_is_a_copy(self, router: DisbursementRouter) -> None:
        receipt = await router.submit(_request())
        snapshot = router.status(receipt.payout_id)
        snapshot.status = PayoutStatus.FAILED
        assert router.status(receipt.payout_id).status is not PayoutStatus.FAILED

    async def test_recent_newest_first(self, router: DisbursementRouter, clock: FixedClock) -> None:
        ids = []
        for i in range(3):
            ids.append((await router.submit(_request(f"src-{i}"))).payout_id)
            clock.advance(seconds=1)

        assert [p.payout_id for p in router.recent()] == list(reversed(ids))
        assert len(router.recent(limit=2)) == 2

    def test_default_network_metrics(self, router: DisbursementRouter) -> None:
        metrics = router.network_metrics()
        assert metrics.total_nodes == 5
        assert metrics.active_nodes == 4
        assert metrics.total_volume == pytest.approx(70_280_000)
        assert metrics.average_success_rate == pytest.approx(0.9852)
        assert metrics.health == "excellent"

    def test_health_critical_below_three_active(self, router: DisbursementRouter) -> None:
        router.set_node_status("node_treasury_001", NodeStatus.OFFLINE)
        router.set_node_status("node_treasury_002", "offline")
        metrics = router.network_metrics()
        assert metrics.active_nodes == 2
        assert metrics.health == "critical"


class TestNodeAdministration:
    """Tests for managing the node pool."""

    def test_add_duplicate_node(self, pool_router: DisbursementRouter) -> None:
        with pytest.raises(ValueError):
            pool_router.add_node(make_node("node-a"))

    def test_remove_node(self, pool_router: DisbursementRouter) -> None:
        removed = pool_router.remove_node("node-b")
        assert removed.node_id == "node-b"
        assert pool_router.get_node("node-b") is None
        with pytest.raises(UnknownNodeError):
            pool_router.remove_node("node-b")

    def test_set_status_unknown(self, pool_router: DisbursementRouter) -> None:
        assert pool_router.set_node_status("node-z", NodeStatus.ACTIVE) is False

    def test_node_scores_only_active(self, pool_router: DisbursementRouter) -> None:
        pool_router.set_node_status("node-c", NodeStatus.MAINTENANCE)
        assert set(pool_router.node_scores()) == {"node-a", "node-b"}

    def test_nodes_are_copies(self, pool_router: DisbursementRouter) -> None:
        node = pool_router.nodes()[0]
        node.status = NodeStatus.OFFLINE
        assert pool_router.get_node(node.node_id).status is NodeStatus.ACTIVE
