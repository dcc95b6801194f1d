"""
Services Module

Composition root for the civic reward core. Builds one registry, one
observer and one router from configuration and hands each the shared
bus, metrics and persistence ports.
"""

from __future__ import annotations

import logging
from typing import Optional

from civicreward.config import CivicRewardConfig
from civicreward.disbursement import (
    DisbursementRouter,
    SettlementBackend,
    SimulatedSettlementBackend,
    WithdrawalRequest,
)
from civicreward.events import EventBus, InMemoryEventBus
from civicreward.observability import RewardMetrics
from civicreward.observer import LedgerEntry, RewardObserver, RouterDisbursement
from civicreward.storage import AbstractStorageProvider, StorageStatePort, create_storage_provider
from civicreward.triggers import TriggerRegistry, default_rules

logger = logging.getLogger(__name__)


class CivicRewardService:
    """
    Wires the registry, observer and router together.

    Args:
        config: Configuration document; defaults when omitted.
        backend: Settlement backend; the simulated backend when omitted.
        storage: Storage provider; built from ``config.storage`` when omitted.
        bus: Notification channel; an in-memory bus when omitted.
    """

    def __init__(
        self,
        config: Optional[CivicRewardConfig] = None,
        backend: Optional[SettlementBackend] = None,
        storage: Optional[AbstractStorageProvider] = None,
        bus: Optional[EventBus] = None,
    ) -> None:
        self.config = config or CivicRewardConfig()
        self.bus = bus or InMemoryEventBus()
        self.metrics = RewardMetrics()
        self.storage = storage or create_storage_provider(self.config.storage)

        self.registry = TriggerRegistry(default_rules())
        self.router = DisbursementRouter(
            backend or SimulatedSettlementBackend(self.config.simulation),
            config=self.config.router,
            bus=self.bus,
            state=StorageStatePort(self.storage, "router"),
            metrics=self.metrics,
        )
        self.observer = RewardObserver(
            self.registry,
            RouterDisbursement(self.router, timeout=self.config.observer.disbursement_timeout_seconds),
            bus=self.bus,
            state=StorageStatePort(self.storage, "observer"),
            metrics=self.metrics,
            config=self.config.observer,
        )
        if self.config.observer.bind_default_routes:
            self.observer.bind_default_routes()
        self._started = False

    async def start(self) -> None:
        """Connect storage and load persisted state."""
        if self._started:
            return
        await self.storage.connect()
        await self.router.load()
        await self.observer.load()
        self._started = True
        logger.info("Civic reward service started")

    async def stop(self) -> None:
        """Cancel in-flight payouts, persist both components and disconnect storage."""
        if not self._started:
            return
        await self.router.shutdown()
        await self.observer.save()
        await self.storage.disconnect()
        self._started = False
        logger.info("Civic reward service stopped")

    async def withdraw(self, request: WithdrawalRequest, timeout: Optional[float] = None) -> LedgerEntry:
        """
        Pay out a withdrawal and mirror it in the ledger.

        Returns the settled withdrawal entry.
        """
        receipt = await self.router.submit(request)
        await self.observer.record_withdrawal(self.router.status(receipt.payout_id))
        payout = await self.router.wait(receipt.payout_id, timeout=timeout)
        return await self.observer.settle_withdrawal(payout)

    async def __aenter__(self) -> "CivicRewardService":
        await self.start()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.stop()


__all__ = ["CivicRewardService"]
