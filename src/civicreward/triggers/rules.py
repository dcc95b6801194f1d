"""
Trigger Rule Models

A trigger rule names a civic action that earns a fixed reward and the
conditions a caller must satisfy before the reward is issued.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Mapping, Optional

from pydantic import BaseModel, Field

from civicreward.constants import TIER_ORDER


class Tier(str, Enum):
    """Civic trust tier. Ordered lowest to highest."""

    CITIZEN = "Citizen"
    CONTRIBUTOR = "Contributor"
    MODERATOR = "Moderator"
    GOVERNOR = "Governor"
    COMMANDER = "Commander"

    @property
    def rank(self) -> int:
        return TIER_ORDER.index(self.value)

    @classmethod
    def parse(cls, value: Any) -> Optional["Tier"]:
        """Parse a tier name case-insensitively. Unknown values give ``None``."""
        if isinstance(value, Tier):
            return value
        if not isinstance(value, str):
            return None
        for tier in cls:
            if tier.value.lower() == value.strip().lower():
                return tier
        return None


def tier_rank(tier: Optional[Tier]) -> int:
    """Rank of a tier in the fixed ordering; unknown tiers rank below all."""
    return tier.rank if tier is not None else -1


class RuleConditions(BaseModel):
    """Eligibility conditions attached to a trigger rule."""

    min_tier: Tier = Tier.CITIZEN
    identity_required: bool = True
    token_required: bool = False
    criteria: str = ""


class TriggerRule(BaseModel):
    """A reward-eligible civic action."""

    rule_id: str = Field(frozen=True, min_length=1)
    action_type: str
    category: str
    reward: float = Field(ge=0.0)
    conditions: RuleConditions = Field(default_factory=RuleConditions)
    description: str = ""
    active: bool = True
    activation_count: int = Field(default=0, ge=0)
    last_activated_at: Optional[datetime] = None


class ValidationCode(str, Enum):
    """Machine-readable reason a validation failed."""

    NOT_FOUND = "not_found"
    INACTIVE = "inactive"
    IDENTITY_REQUIRED = "identity_required"
    TOKEN_REQUIRED = "token_required"
    TIER_TOO_LOW = "tier_too_low"


class ValidationResult(BaseModel):
    """Outcome of validating a trigger against a caller context."""

    eligible: bool
    reason: Optional[str] = None
    code: Optional[ValidationCode] = None

    @classmethod
    def ok(cls) -> "ValidationResult":
        return cls(eligible=True)

    @classmethod
    def reject(cls, code: ValidationCode, reason: str) -> "ValidationResult":
        return cls(eligible=False, reason=reason, code=code)


_IDENTITY_KEYS = ("did", "user_did", "userDID")
_TIER_KEYS = ("tier", "user_tier", "userTier")
_TOKEN_KEYS = ("verification_token", "zkp_hash", "zkpHash", "proof_hash", "proofHash")


def _first(payload: Mapping[str, Any], keys: tuple[str, ...]) -> Any:
    for key in keys:
        value = payload.get(key)
        if value:
            return value
    return None


class ValidationContext(BaseModel):
    """What the caller brings to a trigger: identity, tier, verification token."""

    identity_ref: Optional[str] = None
    tier: Optional[Tier] = Tier.CITIZEN
    verification_token: Optional[str] = None
    extra: dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_payload(
        cls,
        payload: Mapping[str, Any],
        default_tier: Tier = Tier.CITIZEN,
    ) -> "ValidationContext":
        """Extract a context from a route payload.

        Accepts both snake_case and the camelCase keys civic routes emit.
        A tier that is present but unrecognized is kept as ``None`` so it
        fails every tier floor instead of silently becoming the default.
        """
        raw_tier = _first(payload, _TIER_KEYS)
        tier = default_tier if raw_tier is None else Tier.parse(raw_tier)
        return cls(
            identity_ref=_first(payload, _IDENTITY_KEYS),
            tier=tier,
            verification_token=_first(payload, _TOKEN_KEYS),
            extra=dict(payload),
        )
