"""
Configuration for the civic reward core.

Every tunable lives in a pydantic model so hosts can load one YAML
document and hand the sub-configs to the components they build.

Example YAML:

    router:
      base_fee_rate: 0.001
      large_threshold: 100000
    observer:
      default_tier: Citizen
    storage:
      backend: redis
      redis_host: cache.internal
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional, Union

import yaml
from pydantic import BaseModel, Field, model_validator

from civicreward import constants
from civicreward.storage.provider import StorageConfig
from civicreward.triggers.rules import Tier


class RouterConfig(BaseModel):
    """Fee schedule, delivery estimate and node scoring parameters."""

    base_fee_rate: float = Field(default=constants.BASE_FEE_RATE, ge=0.0)
    large_threshold: float = Field(default=constants.LARGE_PAYOUT_THRESHOLD, gt=0)
    very_large_threshold: float = Field(default=constants.VERY_LARGE_PAYOUT_THRESHOLD, gt=0)
    large_discount: float = Field(default=constants.LARGE_PAYOUT_DISCOUNT, gt=0.0, le=1.0)
    very_large_discount: float = Field(default=constants.VERY_LARGE_PAYOUT_DISCOUNT, gt=0.0, le=1.0)
    minimum_fee: int = Field(default=constants.MINIMUM_NETWORK_FEE, ge=0)
    large_complexity_factor: float = Field(default=constants.LARGE_PAYOUT_COMPLEXITY, ge=1.0)

    recency_window_seconds: float = Field(default=constants.RECENCY_WINDOW_SECONDS, gt=0)
    weight_success: float = Field(default=constants.SCORE_WEIGHT_SUCCESS, ge=0.0)
    weight_latency: float = Field(default=constants.SCORE_WEIGHT_LATENCY, ge=0.0)
    weight_recency: float = Field(default=constants.SCORE_WEIGHT_RECENCY, ge=0.0)

    seed_default_nodes: bool = True

    @model_validator(mode="after")
    def _thresholds_ordered(self) -> "RouterConfig":
        if self.very_large_threshold < self.large_threshold:
            raise ValueError("very_large_threshold must not be below large_threshold")
        return self


class ObserverConfig(BaseModel):
    """Reward observer behaviour."""

    default_tier: Tier = Tier.CITIZEN
    recent_activity_limit: int = Field(default=5, ge=0)
    bind_default_routes: bool = True
    disbursement_timeout_seconds: Optional[float] = Field(default=None, gt=0)


class SimulationConfig(BaseModel):
    """Per-phase latency (seconds) for the simulated settlement backend."""

    verification_latency: float = Field(default=1.0, ge=0.0)
    disbursement_latency: float = Field(default=1.5, ge=0.0)
    completion_latency: float = Field(default=1.5, ge=0.0)


class CivicRewardConfig(BaseModel):
    """Top-level configuration document."""

    router: RouterConfig = Field(default_factory=RouterConfig)
    observer: ObserverConfig = Field(default_factory=ObserverConfig)
    simulation: SimulationConfig = Field(default_factory=SimulationConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)

    @classmethod
    def from_yaml(cls, yaml_content: str) -> "CivicRewardConfig":
        """Load configuration from a YAML string. Empty documents give defaults."""
        data = yaml.safe_load(yaml_content) or {}
        if not isinstance(data, dict):
            raise ValueError("Configuration document must be a mapping")
        return cls(**data)

    @classmethod
    def from_file(cls, path: Union[str, Path]) -> "CivicRewardConfig":
        """Load configuration from a YAML file."""
        return cls.from_yaml(Path(path).read_text(encoding="utf-8"))

    def to_yaml(self) -> str:
        return yaml.dump(self.model_dump(mode="json"), default_flow_style=False, sort_keys=False)
