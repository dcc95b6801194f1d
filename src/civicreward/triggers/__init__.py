"""
Trigger Rule Registry

Catalog of civic actions that earn a reward, and the eligibility checks
applied before a reward is issued.
"""

from .catalog import DEFAULT_ROUTES, default_rules
from .registry import TriggerRegistry
from .rules import (
    RuleConditions,
    Tier,
    TriggerRule,
    ValidationCode,
    ValidationContext,
    ValidationResult,
)

__all__ = [
    "DEFAULT_ROUTES",
    "default_rules",
    "TriggerRegistry",
    "RuleConditions",
    "Tier",
    "TriggerRule",
    "ValidationCode",
    "ValidationContext",
    "ValidationResult",
]
