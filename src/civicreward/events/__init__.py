"""Notification channel for the civic reward core."""

from .bus import (
    ALL_EVENT_TYPES,
    EVENT_PAYOUT_COMPLETED,
    EVENT_PAYOUT_FAILED,
    EVENT_PAYOUT_INITIATED,
    EVENT_REWARD_FAILED,
    EVENT_REWARD_REJECTED,
    EVENT_REWARD_TRIGGERED,
    AsyncEventBus,
    Event,
    EventBus,
    EventHandler,
    InMemoryEventBus,
)

__all__ = [
    "Event",
    "EventBus",
    "EventHandler",
    "InMemoryEventBus",
    "AsyncEventBus",
    "EVENT_REWARD_TRIGGERED",
    "EVENT_REWARD_REJECTED",
    "EVENT_REWARD_FAILED",
    "EVENT_PAYOUT_INITIATED",
    "EVENT_PAYOUT_COMPLETED",
    "EVENT_PAYOUT_FAILED",
    "ALL_EVENT_TYPES",
]
