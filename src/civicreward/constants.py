"""Shared constants for the civic reward core."""

# Civic trust tiers, lowest to highest
TIER_ORDER = ["Citizen", "Contributor", "Moderator", "Governor", "Commander"]

# Network fee schedule
BASE_FEE_RATE = 0.001
LARGE_PAYOUT_THRESHOLD = 100_000
VERY_LARGE_PAYOUT_THRESHOLD = 500_000
LARGE_PAYOUT_DISCOUNT = 0.8
VERY_LARGE_PAYOUT_DISCOUNT = 0.6
MINIMUM_NETWORK_FEE = 1

# Delivery estimate
LARGE_PAYOUT_COMPLEXITY = 1.5

# Node scoring
SCORE_WEIGHT_SUCCESS = 0.5
SCORE_WEIGHT_LATENCY = 0.3
SCORE_WEIGHT_RECENCY = 0.2
RECENCY_WINDOW_SECONDS = 3600

# Network health
HEALTH_EXCELLENT_THRESHOLD = 0.95
HEALTH_GOOD_THRESHOLD = 0.90
HEALTH_DEGRADED_THRESHOLD = 0.80
HEALTH_MIN_ACTIVE_NODES = 3

# Export format tags
OBSERVER_EXPORT_VERSION = "reward-observer-v1"
ROUTER_EXPORT_VERSION = "disbursement-router-v1"
