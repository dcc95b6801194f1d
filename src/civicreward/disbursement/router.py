"""
Disbursement Router

Owns the settlement-node pool and moves payouts through the network:
- Scores active nodes and selects one per payout
- Prices the transfer and estimates delivery
- Advances each payout through audited phases
  (initiation -> verification -> disbursement -> completion)

Submission is serialized on the router lock. Phase advancement runs as
one asyncio task per payout and awaits the settlement backend without
holding the lock, so payouts progress independently.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Callable, Iterable, Optional

from civicreward.config import RouterConfig
from civicreward.constants import ROUTER_EXPORT_VERSION
from civicreward.events import (
    EVENT_PAYOUT_COMPLETED,
    EVENT_PAYOUT_FAILED,
    EVENT_PAYOUT_INITIATED,
    Event,
    EventBus,
)
from civicreward.exceptions import (
    DisbursementError,
    DisbursementFailure,
    DuplicatePayoutError,
    NoCapacityError,
    UnknownNodeError,
    UnknownPayoutError,
)
from civicreward.observability import RewardMetrics
from civicreward.storage.state import StatePort

from .backend import SettlementBackend, SettlementResult
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
    WithdrawalRequest,
)
from .nodes import default_nodes
from .pricing import (
    compute_network_fee,
    estimate_delivery,
    network_health,
    score_node,
    select_node,
    verification_token,
)

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class DisbursementRouter:
    """
    Settlement-node router with an audited payout pipeline.

    Args:
        backend: Settlement backend that executes each phase.
        nodes: Initial node pool. ``None`` seeds the default pool when
            ``config.seed_default_nodes`` is set.
        config: Fee, scoring and delivery parameters.
        bus: Optional notification channel for payout events.
        state: Optional persistence port; saved after every change.
        metrics: Optional Prometheus collector.
        clock: Source of "now"; injectable for deterministic tests.
    """

    def __init__(
        self,
        backend: SettlementBackend,
        nodes: Optional[Iterable[SettlementNode]] = None,
        config: Optional[RouterConfig] = None,
        bus: Optional[EventBus] = None,
        state: Optional[StatePort] = None,
        metrics: Optional[RewardMetrics] = None,
        clock: Optional[Clock] = None,
    ) -> None:
        self.config = config or RouterConfig()
        self._backend = backend
        self._bus = bus
        self._state = state
        self._metrics = metrics
        self._clock = clock or _utcnow

        self._nodes: dict[str, SettlementNode] = {}
        self._payouts: dict[str, PayoutRequest] = {}
        self._audit: dict[str, list[PayoutAuditEntry]] = {}
        self._audit_log: list[PayoutAuditEntry] = []
        self._by_source: dict[str, str] = {}
        self._tasks: dict[str, asyncio.Task[None]] = {}
        self._done: dict[str, asyncio.Event] = {}
        self._cancel_reasons: dict[str, str] = {}
        self._lock = asyncio.Lock()

        if nodes is None and self.config.seed_default_nodes:
            nodes = default_nodes(self._clock())
        for node in nodes or ():
            self.add_node(node)

    # ── Node administration ───────────────────────────────────

    def add_node(self, node: SettlementNode) -> None:
        """
        Add a settlement node to the pool.

        Raises:
            ValueError: If the node id is already in the pool
        """
        if node.node_id in self._nodes:
            raise ValueError(f"Node {node.node_id} is already registered")
        self._nodes[node.node_id] = node.model_copy(deep=True)
        self._refresh_node_gauge()

    def remove_node(self, node_id: str) -> SettlementNode:
        """
        Take a node out of the pool. Its existing payouts keep their node id.

        Raises:
            UnknownNodeError: If the node is not in the pool
        """
        node = self._nodes.pop(node_id, None)
        if node is None:
            raise UnknownNodeError(f"Node {node_id} not found")
        self._refresh_node_gauge()
        logger.info("Node %s removed from pool", node_id)
        return node

    def get_node(self, node_id: str) -> Optional[SettlementNode]:
        node = self._nodes.get(node_id)
        return node.model_copy(deep=True) if node else None

    def nodes(self) -> list[SettlementNode]:
        return [n.model_copy(deep=True) for n in self._nodes.values()]

    def set_node_status(self, node_id: str, status: NodeStatus | str) -> bool:
        """Change a node's operational status. Returns ``False`` for unknown nodes."""
        node = self._nodes.get(node_id)
        if node is None:
            return False
        node.status = NodeStatus(status)
        self._refresh_node_gauge()
        logger.info("Node %s is now %s", node_id, node.status.value)
        return True

    def node_scores(self) -> dict[str, float]:
        """Current selection score of every active node."""
        now = self._clock()
        return {
            n.node_id: score_node(n, now, self.config)
            for n in self._nodes.values()
            if n.status is NodeStatus.ACTIVE
        }

    def _refresh_node_gauge(self) -> None:
        if self._metrics:
            active = sum(1 for n in self._nodes.values() if n.status is NodeStatus.ACTIVE)
            self._metrics.set_active_nodes(active)

    # ── Submission ────────────────────────────────────────────

    async def submit(
        self,
        request: WithdrawalRequest,
        retry_of: Optional[str] = None,
    ) -> PayoutReceipt:
        """
        Route a withdrawal through the node network.

        Selection, pricing, payout creation and the initiation audit entry
        happen atomically; the remaining phases complete asynchronously.

        Raises:
            DuplicatePayoutError: If the source id already has a payout
            NoCapacityError: If no node is active
        """
        async with self._lock:
            existing_id = self._by_source.get(request.source_id)
            if existing_id is not None and existing_id != retry_of:
                existing = self._payouts[existing_id]
                hint = " (failed; use retry)" if existing.status is PayoutStatus.FAILED else ""
                raise DuplicatePayoutError(
                    f"Source {request.source_id} already has payout {existing_id}{hint}"
                )

            now = self._clock()
            node = select_node(self._nodes.values(), now, self.config)
            if node is None:
                raise NoCapacityError("No active settlement node available")

            score = score_node(node, now, self.config)
            payout = PayoutRequest(
                source_id=request.source_id,
                amount=request.amount,
                recipient=request.recipient,
                purpose=request.purpose,
                node_id=node.node_id,
                network_fee=compute_network_fee(request.amount, self.config),
                estimated_delivery=estimate_delivery(request.amount, node, now, self.config),
                submitted_at=now,
                verification_token=verification_token(
                    request.source_id, request.amount, request.recipient, now
                ),
                retry_of=retry_of,
            )
            pid = payout.payout_id
            self._payouts[pid] = payout
            self._by_source[request.source_id] = pid
            self._audit[pid] = []
            entry = self._append_audit(
                payout,
                PayoutPhase.INITIATION,
                "Payout initiated through node network",
                {"score": round(score, 6), "network_fee": payout.network_fee, "retry_of": retry_of},
            )
            payout.audit_id = entry.audit_id
            self._done[pid] = asyncio.Event()
            self._tasks[pid] = asyncio.create_task(self._advance(payout), name=f"payout-{pid}")

        logger.info(
            "Payout %s initiated: %s -> node %s (fee %d)",
            pid, payout.amount, payout.node_id, payout.network_fee,
        )
        if self._metrics:
            self._metrics.record_submission(payout.node_id, payout.network_fee)
            self._metrics.record_payout(PayoutStatus.PENDING.value)
        self._emit(EVENT_PAYOUT_INITIATED, payout)
        await self._persist()

        return PayoutReceipt(
            payout_id=pid,
            estimated_delivery=payout.estimated_delivery,
            network_fee=payout.network_fee,
            selected_node=payout.node_id,
        )

    async def retry(self, payout_id: str) -> PayoutReceipt:
        """
        Operator retry of a failed payout as a new payout for the same source.

        Raises:
            UnknownPayoutError: If the payout id is unknown
            DisbursementError: If the payout is not failed
            DuplicatePayoutError: If the payout was already retried
        """
        payout = self._require(payout_id)
        if payout.status is not PayoutStatus.FAILED:
            raise DisbursementError(f"Payout {payout_id} is {payout.status.value}; only failed payouts can be retried")
        if self._by_source.get(payout.source_id) != payout_id:
            raise DuplicatePayoutError(f"Payout {payout_id} has already been superseded")
        request = WithdrawalRequest(
            source_id=payout.source_id,
            amount=payout.amount,
            recipient=payout.recipient,
            purpose=payout.purpose,
        )
        return await self.submit(request, retry_of=payout_id)

    # ── Phase advancement ─────────────────────────────────────

    async def _advance(self, payout: PayoutRequest) -> None:
        pid = payout.payout_id
        phase = PayoutPhase.INITIATION
        try:
            for phase in ADVANCE_PHASES:
                try:
                    result = await self._backend.settle(phase, payout)
                except Exception as exc:
                    logger.exception("Settlement backend raised during %s of %s", phase.value, pid)
                    result = SettlementResult(success=False, detail=f"{type(exc).__name__}: {exc}")
                if not result.success:
                    await self._fail(payout, phase, result.detail or f"{phase.value} failed")
                    return
                await self._complete_phase(payout, phase, result.detail)
        except asyncio.CancelledError:
            await self._fail(payout, phase, self._cancel_reasons.get(pid, "cancelled"), cancelled=True)
            raise
        finally:
            self._tasks.pop(pid, None)
            self._done[pid].set()

    async def _complete_phase(self, payout: PayoutRequest, phase: PayoutPhase, detail: str) -> None:
        if phase is PayoutPhase.COMPLETION:
            async with self._lock:
                now = self._clock()
                payout.status = PayoutStatus.COMPLETED
                payout.completed_at = now
                node = self._nodes.get(payout.node_id)
                if node is not None:
                    node.record_outcome(payout.amount, success=True, at=now)
                self._append_audit(payout, phase, detail or "Payout completed successfully")
            logger.info("Payout %s completed via %s", payout.payout_id, payout.node_id)
            if self._metrics:
                self._metrics.record_payout(PayoutStatus.COMPLETED.value)
            self._emit(EVENT_PAYOUT_COMPLETED, payout)
            await self._persist()
            return

        if phase is PayoutPhase.VERIFICATION:
            payout.status = PayoutStatus.PROCESSING
        self._append_audit(payout, phase, detail or f"{phase.value} completed")
        logger.debug("Payout %s passed %s", payout.payout_id, phase.value)

    async def _fail(
        self,
        payout: PayoutRequest,
        phase: PayoutPhase,
        reason: str,
        cancelled: bool = False,
    ) -> bool:
        async with self._lock:
            if payout.status.terminal:
                return False
            payout.status = PayoutStatus.FAILED
            payout.failure_reason = reason
            if not cancelled:
                node = self._nodes.get(payout.node_id)
                if node is not None:
                    node.record_outcome(payout.amount, success=False, at=self._clock())
            self._append_audit(
                payout,
                PayoutPhase.FAILURE,
                reason,
                {"failed_phase": phase.value, "cancelled": cancelled},
            )
        logger.warning("Payout %s failed during %s: %s", payout.payout_id, phase.value, reason)
        if self._metrics:
            self._metrics.record_payout(PayoutStatus.FAILED.value)
        self._emit(EVENT_PAYOUT_FAILED, payout)
        await self._persist()
        return True

    def _append_audit(
        self,
        payout: PayoutRequest,
        phase: PayoutPhase,
        status: str,
        metadata: Optional[dict[str, Any]] = None,
    ) -> PayoutAuditEntry:
        entry = PayoutAuditEntry(
            payout_id=payout.payout_id,
            phase=phase,
            timestamp=self._clock(),
            node_id=payout.node_id,
            amount=payout.amount,
            status=status,
            metadata=metadata or {},
        )
        self._audit.setdefault(payout.payout_id, []).append(entry)
        self._audit_log.append(entry)
        return entry

    # ── Cancellation and waiting ──────────────────────────────

    async def cancel(self, payout_id: str, reason: str = "cancelled") -> bool:
        """
        Stop a payout before completion and mark it failed.

        Returns ``False`` if the payout had already reached a terminal state.

        Raises:
            UnknownPayoutError: If the payout id is unknown
        """
        payout = self._payouts.get(payout_id)
        if payout is None:
            raise UnknownPayoutError(f"Payout {payout_id} not found")
        if payout.status.terminal:
            return False

        self._cancel_reasons[payout_id] = reason
        task = self._tasks.get(payout_id)
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

        # A task cancelled before its first step never runs its handler
        trail = self._audit.get(payout_id) or []
        last_phase = trail[-1].phase if trail else PayoutPhase.INITIATION
        await self._fail(payout, last_phase, reason, cancelled=True)
        self._tasks.pop(payout_id, None)
        done = self._done.get(payout_id)
        if done is not None:
            done.set()
        return payout.status is PayoutStatus.FAILED and payout.failure_reason == reason

    async def wait(
        self,
        payout_id: str,
        timeout: Optional[float] = None,
        raise_on_failure: bool = False,
    ) -> PayoutRequest:
        """
        Wait until a payout is terminal and return it.

        Raises:
            UnknownPayoutError: If the payout id is unknown
            asyncio.TimeoutError: If ``timeout`` elapses first
            DisbursementFailure: If ``raise_on_failure`` and the payout failed
        """
        payout = self._require(payout_id)
        done = self._done.get(payout_id)
        if done is not None and not payout.status.terminal:
            await asyncio.wait_for(done.wait(), timeout)
        if raise_on_failure and payout.status is PayoutStatus.FAILED:
            trail = self._audit.get(payout_id) or []
            failed_phase = trail[-1].metadata.get("failed_phase", "unknown") if trail else "unknown"
            raise DisbursementFailure(payout_id, failed_phase, payout.failure_reason or "")
        return payout.model_copy(deep=True)

    async def shutdown(self) -> None:
        """Cancel every in-flight payout and persist."""
        for payout_id in list(self._tasks):
            await self.cancel(payout_id, reason="shutdown")
        await self._persist()

    # ── Queries ───────────────────────────────────────────────

    def _require(self, payout_id: str) -> PayoutRequest:
        payout = self._payouts.get(payout_id)
        if payout is None:
            raise UnknownPayoutError(f"Payout {payout_id} not found")
        return payout

    def status(self, payout_id: str) -> Optional[PayoutRequest]:
        """Payout by id, or ``None`` if not found."""
        payout = self._payouts.get(payout_id)
        return payout.model_copy(deep=True) if payout else None

    def payout_for_source(self, source_id: str) -> Optional[PayoutRequest]:
        """The current payout for a source id (the latest retry, if any)."""
        payout_id = self._by_source.get(source_id)
        return self.status(payout_id) if payout_id else None

    def audit_trail(self, payout_id: str) -> list[PayoutAuditEntry]:
        """Audit entries for a payout in phase order. Empty for unknown ids."""
        return list(self._audit.get(payout_id, []))

    def network_metrics(self) -> NetworkMetrics:
        nodes = list(self._nodes.values())
        active = sum(1 for n in nodes if n.status is NodeStatus.ACTIVE)
        average = sum(n.success_rate for n in nodes) / len(nodes) if nodes else 0.0
        return NetworkMetrics(
            total_nodes=len(nodes),
            active_nodes=active,
            total_volume=sum(n.total_volume for n in nodes),
            average_success_rate=average,
            health=network_health(average, active),
        )

    def recent(self, limit: int = 10) -> list[PayoutRequest]:
        """Most recently submitted payouts first."""
        ordered = sorted(
            enumerate(self._payouts.values()),
            key=lambda item: (item[1].submitted_at, item[0]),
            reverse=True,
        )
        return [p.model_copy(deep=True) for _, p in ordered[:limit]]

    def in_flight(self) -> list[str]:
        return list(self._tasks)

    # ── Export / restore ──────────────────────────────────────

    def export(self) -> dict[str, Any]:
        """Full payout log, audit trail and node metrics for compliance."""
        return {
            "version": ROUTER_EXPORT_VERSION,
            "exported_at": self._clock().isoformat(),
            "payouts": [p.model_dump(mode="json") for p in self._payouts.values()],
            "audit_entries": [e.model_dump(mode="json") for e in self._audit_log],
            "nodes": [n.model_dump(mode="json") for n in self._nodes.values()],
            "network": self.network_metrics().model_dump(mode="json"),
        }

    def restore(self, data: dict[str, Any]) -> None:
        """
        Replace router state with an exported document.

        Payouts that were still in flight when exported are failed with
        reason ``interrupted``; their phase tasks did not survive.

        Raises:
            ValueError: If the document version is not recognized
            DisbursementError: If payouts are currently in flight
        """
        if data.get("version") != ROUTER_EXPORT_VERSION:
            raise ValueError(f"Unsupported router export version: {data.get('version')!r}")
        if self._tasks:
            raise DisbursementError("Cannot restore while payouts are in flight")

        nodes = [SettlementNode.model_validate(raw) for raw in data.get("nodes", [])]
        payouts = [PayoutRequest.model_validate(raw) for raw in data.get("payouts", [])]
        audit_entries = [PayoutAuditEntry.model_validate(raw) for raw in data.get("audit_entries", [])]

        self._nodes = {node.node_id: node for node in nodes}
        self._payouts = {}
        self._by_source = {}
        self._audit = {}
        self._audit_log = []
        self._done = {}
        self._cancel_reasons = {}
        for payout in payouts:
            self._payouts[payout.payout_id] = payout
            self._by_source[payout.source_id] = payout.payout_id
            self._audit[payout.payout_id] = []
        for entry in audit_entries:
            self._audit.setdefault(entry.payout_id, []).append(entry)
            self._audit_log.append(entry)

        for payout in self._payouts.values():
            if not payout.status.terminal:
                trail = self._audit.get(payout.payout_id) or []
                last_phase = trail[-1].phase if trail else PayoutPhase.INITIATION
                payout.status = PayoutStatus.FAILED
                payout.failure_reason = "interrupted"
                self._append_audit(
                    payout,
                    PayoutPhase.FAILURE,
                    "interrupted",
                    {"failed_phase": last_phase.value, "cancelled": True},
                )
                logger.warning("Payout %s was in flight at export; marked failed", payout.payout_id)
        self._refresh_node_gauge()
        logger.info("Router restored: %d payouts, %d nodes", len(self._payouts), len(self._nodes))

    async def load(self) -> bool:
        """
        Restore from the persistence port.

        Returns ``True`` if state was found and applied. Unreadable or
        unsupported documents are logged and leave the router untouched.
        """
        if self._state is None:
            return False
        try:
            data = await self._state.load()
            if not data:
                return False
            self.restore(data)
        except Exception:
            logger.exception("Failed to load router state")
            return False
        return True

    async def _persist(self) -> None:
        if self._state is None:
            return
        try:
            await self._state.save(self.export())
        except Exception:
            logger.exception("Failed to persist router state")

    def _emit(self, event_type: str, payout: PayoutRequest) -> None:
        if self._bus is None:
            return
        self._bus.emit(Event(
            event_type=event_type,
            source="disbursement-router",
            payload=payout.model_dump(mode="json"),
        ))


__all__ = ["DisbursementRouter"]
