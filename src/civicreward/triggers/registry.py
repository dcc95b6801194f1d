"""
Trigger Rule Registry

Catalog of reward-eligible civic actions. Stores:
- Trigger rules keyed by immutable id
- Active flags and activation counters
- Eligibility conditions (tier floor, identity, verification token)

Lookups against unknown ids return ``None`` or a rejected
ValidationResult; they never raise.
"""

from __future__ import annotations

import logging
import threading
from collections import Counter
from datetime import datetime, timezone
from typing import Any, Iterable, Optional

from civicreward.exceptions import DuplicateRuleError
from civicreward.triggers.rules import (
    RuleConditions,
    Tier,
    TriggerRule,
    ValidationCode,
    ValidationContext,
    ValidationResult,
    tier_rank,
)

logger = logging.getLogger(__name__)


def _copies(rules: Iterable[TriggerRule]) -> list[TriggerRule]:
    return [r.model_copy(deep=True) for r in rules]


class TriggerRegistry:
    """
    Trigger Rule Registry.

    Rules are registered once and never deleted; they are toggled
    active/inactive instead. Queries hand out copies, so a rule only
    changes through the registry.
    """

    def __init__(self, rules: Optional[Iterable[TriggerRule]] = None) -> None:
        self._rules: dict[str, TriggerRule] = {}
        self._lock = threading.Lock()
        for rule in rules or ():
            self.register(rule)

    def __len__(self) -> int:
        return len(self._rules)

    def __contains__(self, rule_id: object) -> bool:
        return rule_id in self._rules

    def register(self, rule: TriggerRule) -> None:
        """
        Register a new trigger rule.

        Raises:
            DuplicateRuleError: If a rule with the same id exists
        """
        with self._lock:
            if rule.rule_id in self._rules:
                raise DuplicateRuleError(rule.rule_id)
            self._rules[rule.rule_id] = rule.model_copy(deep=True)
        logger.debug("Registered trigger rule %s (%s)", rule.rule_id, rule.category)

    def get(self, rule_id: str) -> Optional[TriggerRule]:
        """Copy of a rule by id, or ``None`` if not registered."""
        rule = self._rules.get(rule_id)
        return rule.model_copy(deep=True) if rule else None

    def all(self) -> list[TriggerRule]:
        return _copies(self._rules.values())

    def list_active(self) -> list[TriggerRule]:
        return _copies(r for r in self._rules.values() if r.active)

    def list_by_category(self, category: str) -> list[TriggerRule]:
        return _copies(r for r in self._rules.values() if r.active and r.category == category)

    def list_by_action(self, action_type: str) -> list[TriggerRule]:
        return _copies(r for r in self._rules.values() if r.active and r.action_type == action_type)

    def list_eligible(self, tier: Tier | str | None) -> list[TriggerRule]:
        """
        Active rules whose tier floor is at or below ``tier``.

        Ordered by the rule's minimum tier, lowest first; rules sharing a
        floor keep registration order.
        """
        caller_rank = tier_rank(Tier.parse(tier))
        eligible = [
            r for r in self._rules.values()
            if r.active and r.conditions.min_tier.rank <= caller_rank
        ]
        return _copies(sorted(eligible, key=lambda r: r.conditions.min_tier.rank))

    def validate(self, rule_id: str, context: ValidationContext) -> ValidationResult:
        """
        Check a caller context against a rule.

        Checks run in a fixed order and the first failing one decides the
        result: exists, active, identity reference, verification token,
        tier floor.
        """
        rule = self._rules.get(rule_id)
        if rule is None:
            return ValidationResult.reject(ValidationCode.NOT_FOUND, "Trigger rule not found")

        if not rule.active:
            return ValidationResult.reject(ValidationCode.INACTIVE, "Trigger rule is not active")

        conditions = rule.conditions
        if conditions.identity_required and not context.identity_ref:
            return ValidationResult.reject(
                ValidationCode.IDENTITY_REQUIRED,
                "Identity reference (DID) required but not provided",
            )

        if conditions.token_required and not context.verification_token:
            return ValidationResult.reject(
                ValidationCode.TOKEN_REQUIRED,
                "Verification token required but not provided",
            )

        if tier_rank(context.tier) < conditions.min_tier.rank:
            return ValidationResult.reject(
                ValidationCode.TIER_TOO_LOW,
                f"Minimum tier {conditions.min_tier.value} required",
            )

        return ValidationResult.ok()

    def record_activation(self, rule_id: str) -> bool:
        """Bump a rule's activation counter. Returns ``False`` if the rule is missing."""
        with self._lock:
            rule = self._rules.get(rule_id)
            if rule is None:
                return False
            rule.activation_count += 1
            rule.last_activated_at = datetime.now(timezone.utc)
        logger.debug("Trigger %s activated (%d total)", rule_id, rule.activation_count)
        return True

    def enable(self, rule_id: str) -> bool:
        return self._set_active(rule_id, True)

    def disable(self, rule_id: str) -> bool:
        return self._set_active(rule_id, False)

    def _set_active(self, rule_id: str, active: bool) -> bool:
        with self._lock:
            rule = self._rules.get(rule_id)
            if rule is None:
                return False
            rule.active = active
        logger.info("Trigger %s %s", rule_id, "enabled" if active else "disabled")
        return True

    def update(
        self,
        rule_id: str,
        *,
        reward: Optional[float] = None,
        description: Optional[str] = None,
        conditions: Optional[RuleConditions] = None,
    ) -> Optional[TriggerRule]:
        """
        Administratively change a rule. The id itself cannot change.

        Events already issued keep the reward they were issued with.
        """
        with self._lock:
            rule = self._rules.get(rule_id)
            if rule is None:
                return None
            if reward is not None:
                if reward < 0:
                    raise ValueError("reward must be non-negative")
                rule.reward = reward
            if description is not None:
                rule.description = description
            if conditions is not None:
                rule.conditions = conditions
        logger.info("Trigger %s updated", rule_id)
        return rule.model_copy(deep=True)

    def statistics(self) -> dict[str, Any]:
        """Summary of the catalog."""
        rules = list(self._rules.values())
        active = [r for r in rules if r.active]

        most_activated: Optional[TriggerRule] = None
        for rule in rules:
            if rule.activation_count > 0 and (
                most_activated is None or rule.activation_count > most_activated.activation_count
            ):
                most_activated = rule

        return {
            "total_rules": len(rules),
            "active_rules": len(active),
            "active_reward_pool": sum(r.reward for r in active),
            "most_activated": most_activated.rule_id if most_activated else None,
            "category_breakdown": dict(Counter(r.category for r in rules)),
        }

    def export(self) -> dict[str, Any]:
        """Full catalog plus statistics for external review."""
        return {
            "exported_at": datetime.now(timezone.utc).isoformat(),
            "rules": [r.model_dump(mode="json") for r in self._rules.values()],
            "statistics": self.statistics(),
        }
