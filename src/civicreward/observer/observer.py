"""
Reward Observer

Bridges named civic action routes to the trigger registry and the reward
ledger:

1. A route reports an action with a payload
2. The bound rule is validated against the caller's context
3. An accepted action becomes a RewardEvent and a pending ledger entry
4. The disbursement step moves the value; the entry becomes terminal
5. Listeners on the event bus are notified and the history is persisted

Rejections are never silent: they are logged, published as
``reward.rejected`` and returned to the caller.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections import Counter
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Mapping, Optional, Union

from civicreward.config import ObserverConfig
from civicreward.constants import OBSERVER_EXPORT_VERSION
from civicreward.disbursement import PayoutRequest
from civicreward.events import (
    EVENT_REWARD_FAILED,
    EVENT_REWARD_REJECTED,
    EVENT_REWARD_TRIGGERED,
    Event,
    EventBus,
)
from civicreward.exceptions import (
    IneligibleError,
    LedgerTransitionError,
    UnknownEntryError,
    UnknownRuleError,
)
from civicreward.observability import RewardMetrics
from civicreward.storage.state import StatePort
from civicreward.triggers import DEFAULT_ROUTES, TriggerRegistry, ValidationContext

from .disbursement import Disbursement
from .models import (
    DisbursementOutcome,
    EntryStatus,
    EntryType,
    LedgerEntry,
    RewardEvent,
    TriggerOutcome,
)

logger = logging.getLogger(__name__)

RouteHandler = Callable[[dict[str, Any]], Union[None, Awaitable[None]]]
Clock = Callable[[], datetime]

_WALLET_KEYS = ("wallet_ref", "wallet", "walletCID", "wallet_cid")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def wallet_ref_for(payload: Mapping[str, Any], identity_ref: Optional[str]) -> str:
    """Wallet from the payload, else one derived from the identity reference."""
    for key in _WALLET_KEYS:
        if payload.get(key):
            return str(payload[key])
    if not identity_ref:
        return "cid:wallet:anonymous"
    parts = identity_ref.split(":")
    suffix = parts[2] if len(parts) > 2 else identity_ref
    return f"cid:wallet:{suffix}"


def _newest_first(items: list[Any]) -> list[Any]:
    ordered = sorted(enumerate(items), key=lambda pair: (pair[1].created_at, pair[0]), reverse=True)
    return [item for _, item in ordered]


class RewardObserver:
    """
    Route subscriptions, validation and the reward ledger.

    Args:
        registry: Trigger rules to validate against.
        disbursement: Moves value for each accepted reward.
        bus: Optional notification channel.
        state: Optional persistence port; saved after every ledger change.
        metrics: Optional Prometheus collector.
        config: Observer behaviour.
        clock: Source of "now"; injectable for deterministic tests.
    """

    def __init__(
        self,
        registry: TriggerRegistry,
        disbursement: Disbursement,
        bus: Optional[EventBus] = None,
        state: Optional[StatePort] = None,
        metrics: Optional[RewardMetrics] = None,
        config: Optional[ObserverConfig] = None,
        clock: Optional[Clock] = None,
    ) -> None:
        self.registry = registry
        self.disbursement = disbursement
        self.config = config or ObserverConfig()
        self._bus = bus
        self._state = state
        self._metrics = metrics
        self._clock = clock or _utcnow

        self._routes: dict[str, list[RouteHandler]] = {}
        self._events: list[RewardEvent] = []
        self._event_index: dict[str, RewardEvent] = {}
        self._entries: list[LedgerEntry] = []
        self._entry_index: dict[str, LedgerEntry] = {}
        self._lock = asyncio.Lock()

    # ── Routes ────────────────────────────────────────────────

    def subscribe(self, route: str, handler: RouteHandler) -> None:
        """Register a handler for a route. Handlers run in registration order."""
        self._routes.setdefault(route, []).append(handler)
        logger.debug("Subscribed handler to %s", route)

    def unsubscribe(self, route: str, handler: RouteHandler) -> bool:
        handlers = self._routes.get(route, [])
        if handler not in handlers:
            return False
        handlers.remove(handler)
        return True

    def bind(self, route: str, rule_id: str) -> RouteHandler:
        """Subscribe a handler that processes ``rule_id`` for every report on ``route``."""

        async def handler(payload: dict[str, Any]) -> None:
            await self.process_trigger(rule_id, payload, source=route)

        self.subscribe(route, handler)
        return handler

    def bind_default_routes(self) -> None:
        for route, rule_id in DEFAULT_ROUTES.items():
            self.bind(route, rule_id)

    def routes(self) -> dict[str, int]:
        """Subscribed routes and their handler counts."""
        return {route: len(handlers) for route, handlers in self._routes.items() if handlers}

    async def report(self, route: str, payload: Optional[Mapping[str, Any]] = None) -> None:
        """
        Run every handler subscribed to ``route``.

        A failing handler is logged and does not stop the others.
        """
        handlers = list(self._routes.get(route, ()))
        if not handlers:
            logger.debug("No handlers for route %s", route)
            return
        data = dict(payload or {})
        for handler in handlers:
            try:
                result = handler(data)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception("Handler for route %s failed", route)

    # ── Triggers ──────────────────────────────────────────────

    async def process_trigger(
        self,
        rule_id: str,
        payload: Optional[Mapping[str, Any]] = None,
        source: Optional[str] = None,
    ) -> TriggerOutcome:
        """
        Validate a reported action and, if eligible, issue and disburse its reward.

        A rejection has no side effects beyond the log line, the
        ``reward.rejected`` notification and the metrics counter.
        """
        data = dict(payload or {})
        context = ValidationContext.from_payload(data, self.config.default_tier)
        result = self.registry.validate(rule_id, context)
        if self._metrics:
            self._metrics.record_validation(
                rule_id, result.eligible, result.code.value if result.code else None
            )

        if not result.eligible:
            logger.info("Trigger %s rejected: %s", rule_id, result.reason)
            self._emit(EVENT_REWARD_REJECTED, {
                "rule_id": rule_id,
                "reason": result.reason,
                "code": result.code.value if result.code else None,
                "source": source,
            })
            return TriggerOutcome(accepted=False, reason=result.reason, code=result.code)

        rule = self.registry.get(rule_id)
        event = RewardEvent(
            rule_id=rule_id,
            identity_ref=context.identity_ref,
            wallet_ref=wallet_ref_for(data, context.identity_ref),
            amount=rule.reward,
            created_at=self._clock(),
            verification_token=context.verification_token,
            source=source or str(data.get("source") or rule.category),
            metadata=data,
        )
        self.registry.record_activation(rule_id)
        entry = await self.process_reward(event)
        return TriggerOutcome(
            accepted=True,
            reason=entry.failure_reason,
            event=event.model_copy(deep=True),
            entry=entry,
        )

    async def trigger(
        self,
        rule_id: str,
        payload: Optional[Mapping[str, Any]] = None,
        source: Optional[str] = None,
    ) -> TriggerOutcome:
        """
        Manually trigger a reward.

        Raises:
            UnknownRuleError: If the rule is not registered
            IneligibleError: If the context fails validation
        """
        if rule_id not in self.registry:
            raise UnknownRuleError(rule_id)
        outcome = await self.process_trigger(rule_id, payload, source=source or "manual")
        if not outcome.accepted:
            raise IneligibleError(
                rule_id,
                outcome.reason or "ineligible",
                outcome.code.value if outcome.code else None,
            )
        return outcome

    # ── Ledger ────────────────────────────────────────────────

    def _add_entry(self, entry: LedgerEntry) -> None:
        self._entries.append(entry)
        self._entry_index[entry.entry_id] = entry
        if self._metrics:
            self._metrics.record_ledger_entry(entry.entry_type.value, entry.status.value)

    async def process_reward(self, event: RewardEvent) -> LedgerEntry:
        """
        Record a reward, disburse it and settle its ledger entry.

        Returns the terminal ledger entry.
        """
        now = self._clock()
        async with self._lock:
            self._events.append(event)
            self._event_index[event.event_id] = event
            entry = LedgerEntry(
                entry_type=EntryType.REWARD,
                reference_id=event.event_id,
                amount=event.amount,
                created_at=now,
                updated_at=now,
                metadata={"rule_id": event.rule_id, "wallet_ref": event.wallet_ref},
            )
            self._add_entry(entry)
        return await self._disburse(event, entry)

    async def _disburse(self, event: RewardEvent, entry: LedgerEntry) -> LedgerEntry:
        try:
            outcome = await self.disbursement.disburse(event, entry)
        except asyncio.CancelledError:
            await self._settle(event, entry, DisbursementOutcome(success=False, reason="cancelled"))
            raise
        except Exception as exc:
            logger.exception("Disbursement of %s raised", event.event_id)
            outcome = DisbursementOutcome(success=False, reason=f"{type(exc).__name__}: {exc}")
        return await self._settle(event, entry, outcome)

    async def _settle(
        self,
        event: RewardEvent,
        entry: LedgerEntry,
        outcome: DisbursementOutcome,
    ) -> LedgerEntry:
        async with self._lock:
            if outcome.reference:
                entry.metadata["payout_id"] = outcome.reference
            if outcome.success:
                entry.transition(EntryStatus.COMPLETED, self._clock())
            else:
                entry.transition(EntryStatus.FAILED, self._clock(), outcome.reason)
        if self._metrics:
            self._metrics.record_ledger_entry(entry.entry_type.value, entry.status.value)

        payload = {
            "event": event.model_dump(mode="json"),
            "entry": entry.model_dump(mode="json"),
        }
        if outcome.success:
            logger.info("Reward disbursed: %s -> %s", event.amount, event.wallet_ref)
            self._emit(EVENT_REWARD_TRIGGERED, payload)
        else:
            logger.warning("Reward %s failed: %s", event.event_id, entry.failure_reason)
            self._emit(EVENT_REWARD_FAILED, payload)
        await self._persist()
        return entry.model_copy(deep=True)

    async def retry(self, entry_id: str) -> LedgerEntry:
        """
        Operator retry of a failed reward.

        A new pending entry is created for the same event and disbursed
        again; the failed entry stays failed and records its successor.

        Raises:
            UnknownEntryError: If the entry id is unknown
            LedgerTransitionError: If the entry is not a failed reward or
                was already retried
        """
        async with self._lock:
            original = self._entry_index.get(entry_id)
            if original is None:
                raise UnknownEntryError(f"Ledger entry {entry_id} not found")
            if original.entry_type is not EntryType.REWARD or original.status is not EntryStatus.FAILED:
                raise LedgerTransitionError(f"Entry {entry_id} is not a failed reward")
            if original.metadata.get("retried_by"):
                raise LedgerTransitionError(
                    f"Entry {entry_id} was already retried as {original.metadata['retried_by']}"
                )
            event = self._event_index[original.reference_id]
            now = self._clock()
            entry = LedgerEntry(
                entry_type=EntryType.REWARD,
                reference_id=event.event_id,
                amount=event.amount,
                created_at=now,
                updated_at=now,
                metadata={"rule_id": event.rule_id, "wallet_ref": event.wallet_ref, "retry_of": entry_id},
            )
            original.metadata["retried_by"] = entry.entry_id
            self._add_entry(entry)
        logger.info("Retrying reward %s as entry %s", event.event_id, entry.entry_id)
        return await self._disburse(event, entry)

    async def record_withdrawal(self, payout: PayoutRequest) -> LedgerEntry:
        """Mirror an outbound payout as a negative withdrawal entry."""
        now = self._clock()
        async with self._lock:
            entry = LedgerEntry(
                entry_type=EntryType.WITHDRAWAL,
                reference_id=payout.payout_id,
                amount=-payout.amount,
                created_at=now,
                updated_at=now,
                metadata={
                    "node_id": payout.node_id,
                    "recipient": payout.recipient,
                    "network_fee": payout.network_fee,
                },
            )
            self._add_entry(entry)
        if payout.status.terminal:
            return await self.settle_withdrawal(payout)
        await self._persist()
        return entry.model_copy(deep=True)

    async def settle_withdrawal(self, payout: PayoutRequest) -> LedgerEntry:
        """
        Bring a withdrawal entry in line with its payout's terminal status.

        Raises:
            UnknownEntryError: If no withdrawal entry mirrors the payout
        """
        async with self._lock:
            entry = next(
                (
                    e for e in self._entries
                    if e.entry_type is EntryType.WITHDRAWAL and e.reference_id == payout.payout_id
                ),
                None,
            )
            if entry is None:
                raise UnknownEntryError(f"No withdrawal entry for payout {payout.payout_id}")
            if entry.status.terminal or not payout.status.terminal:
                return entry.model_copy(deep=True)
            if payout.status.value == EntryStatus.COMPLETED.value:
                entry.transition(EntryStatus.COMPLETED, self._clock())
            else:
                entry.transition(EntryStatus.FAILED, self._clock(), payout.failure_reason)
        if self._metrics:
            self._metrics.record_ledger_entry(entry.entry_type.value, entry.status.value)
        await self._persist()
        return entry.model_copy(deep=True)

    # ── Queries ───────────────────────────────────────────────

    def recent_events(self, limit: int = 10) -> list[RewardEvent]:
        return [e.model_copy(deep=True) for e in _newest_first(self._events)[:limit]]

    def pending_entries(self) -> list[LedgerEntry]:
        return [e.model_copy(deep=True) for e in self._entries if e.status is EntryStatus.PENDING]

    def failed_entries(self) -> list[LedgerEntry]:
        return [e.model_copy(deep=True) for e in self._entries if e.status is EntryStatus.FAILED]

    def history(self) -> list[LedgerEntry]:
        """All ledger entries, most recent first."""
        return [e.model_copy(deep=True) for e in _newest_first(self._entries)]

    def get_entry(self, entry_id: str) -> Optional[LedgerEntry]:
        entry = self._entry_index.get(entry_id)
        return entry.model_copy(deep=True) if entry else None

    def get_event(self, event_id: str) -> Optional[RewardEvent]:
        event = self._event_index.get(event_id)
        return event.model_copy(deep=True) if event else None

    def statistics(self) -> dict[str, Any]:
        rewards = [e for e in self._entries if e.entry_type is EntryType.REWARD]
        completed = [e for e in rewards if e.status is EntryStatus.COMPLETED]
        return {
            "total_events": len(self._events),
            "total_disbursed": sum(e.amount for e in completed),
            "success_rate": len(completed) / len(rewards) if rewards else 0.0,
            "trigger_breakdown": dict(Counter(e.rule_id for e in self._events)),
            "pending": sum(1 for e in self._entries if e.status is EntryStatus.PENDING),
            "failed": sum(1 for e in self._entries if e.status is EntryStatus.FAILED),
            "recent_activity": [
                e.model_dump(mode="json")
                for e in self.recent_events(self.config.recent_activity_limit)
            ],
        }

    # ── Export / restore ──────────────────────────────────────

    def export(self) -> dict[str, Any]:
        """Full event and ledger history plus statistics, for audit."""
        return {
            "version": OBSERVER_EXPORT_VERSION,
            "exported_at": self._clock().isoformat(),
            "events": [e.model_dump(mode="json") for e in self._events],
            "entries": [e.model_dump(mode="json") for e in self._entries],
            "statistics": self.statistics(),
        }

    def restore(self, data: Mapping[str, Any]) -> None:
        """
        Replace the history with an exported document.

        Entries still pending at export time lost their disbursement with
        the process that ran it; they come back failed with reason
        ``interrupted`` so ``retry`` can pick them up.

        Raises:
            ValueError: If the document version is not recognized
        """
        if data.get("version") != OBSERVER_EXPORT_VERSION:
            raise ValueError(f"Unsupported observer export version: {data.get('version')!r}")
        events = [RewardEvent.model_validate(raw) for raw in data.get("events", [])]
        entries = [LedgerEntry.model_validate(raw) for raw in data.get("entries", [])]

        now = self._clock()
        for entry in entries:
            if entry.status is EntryStatus.PENDING:
                entry.transition(EntryStatus.FAILED, now, "interrupted")
                logger.warning("Ledger entry %s was pending at export; marked failed", entry.entry_id)

        self._events = events
        self._event_index = {e.event_id: e for e in events}
        self._entries = entries
        self._entry_index = {e.entry_id: e for e in entries}
        logger.info(
            "Observer restored: %d events, %d entries", len(self._events), len(self._entries)
        )

    async def load(self) -> bool:
        """
        Restore from the persistence port.

        Returns ``True`` if state was found and applied. Unreadable or
        unsupported documents are logged and leave the history untouched.
        """
        if self._state is None:
            return False
        try:
            data = await self._state.load()
            if not data:
                return False
            self.restore(data)
        except Exception:
            logger.exception("Failed to load observer state")
            return False
        return True

    async def save(self) -> None:
        """Write the current history to the persistence port."""
        await self._persist()

    async def _persist(self) -> None:
        if self._state is None:
            return
        try:
            await self._state.save(self.export())
        except Exception:
            logger.exception("Failed to persist observer state")

    def _emit(self, event_type: str, payload: dict[str, Any]) -> None:
        if self._bus is None:
            return
        self._bus.emit(Event(event_type=event_type, source="reward-observer", payload=payload))
