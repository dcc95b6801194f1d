"""
Prometheus Metrics Integration.

Counters and gauges for trigger validation, the reward ledger and the
payout network.
"""

from typing import Optional

from prometheus_client import CollectorRegistry, Counter, Gauge, generate_latest, start_http_server


class RewardMetrics:
    """
    Prometheus metrics collector for the reward core.

    Exposes metrics:
    - civicreward_trigger_validations_total{rule_id, result}
    - civicreward_ledger_entries_total{entry_type, status}
    - civicreward_payouts_total{status}
    - civicreward_network_fees_total
    - civicreward_node_selections_total{node_id}
    - civicreward_active_nodes

    Each collector owns its registry unless one is passed in, so several
    instances can coexist in one process.
    """

    def __init__(
        self,
        prefix: str = "civicreward",
        registry: Optional[CollectorRegistry] = None,
    ) -> None:
        self.registry = registry or CollectorRegistry()

        self.trigger_validations = Counter(
            f"{prefix}_trigger_validations_total",
            "Trigger validations by rule and result",
            ["rule_id", "result"],
            registry=self.registry,
        )
        self.ledger_entries = Counter(
            f"{prefix}_ledger_entries_total",
            "Ledger entries reaching a status",
            ["entry_type", "status"],
            registry=self.registry,
        )
        self.payouts = Counter(
            f"{prefix}_payouts_total",
            "Payouts reaching a status",
            ["status"],
            registry=self.registry,
        )
        self.network_fees = Counter(
            f"{prefix}_network_fees_total",
            "Network fees charged on submitted payouts",
            registry=self.registry,
        )
        self.node_selections = Counter(
            f"{prefix}_node_selections_total",
            "Times a settlement node was selected",
            ["node_id"],
            registry=self.registry,
        )
        self.active_nodes = Gauge(
            f"{prefix}_active_nodes",
            "Settlement nodes currently eligible for selection",
            registry=self.registry,
        )

    def record_validation(self, rule_id: str, eligible: bool, code: Optional[str] = None) -> None:
        result = "eligible" if eligible else (code or "rejected")
        self.trigger_validations.labels(rule_id=rule_id, result=result).inc()

    def record_ledger_entry(self, entry_type: str, status: str) -> None:
        self.ledger_entries.labels(entry_type=entry_type, status=status).inc()

    def record_payout(self, status: str) -> None:
        self.payouts.labels(status=status).inc()

    def record_submission(self, node_id: str, fee: int) -> None:
        self.node_selections.labels(node_id=node_id).inc()
        self.network_fees.inc(fee)

    def set_active_nodes(self, count: int) -> None:
        self.active_nodes.set(count)

    def render(self) -> bytes:
        """Current metrics in the Prometheus text exposition format."""
        return generate_latest(self.registry)


def start_metrics_server(metrics: RewardMetrics, port: int = 9090) -> None:
    """Serve ``metrics`` over HTTP for Prometheus scraping."""
    start_http_server(port, registry=metrics.registry)
