"""Tests for the Prometheus metrics collector."""

from __future__ import annotations

from civicreward.observability import RewardMetrics


class TestRewardMetrics:
    """Tests for RewardMetrics."""

    def test_instances_do_not_collide(self) -> None:
        first = RewardMetrics()
        second = RewardMetrics()
        first.record_payout("completed")
        assert second.payouts.labels(status="completed")._value.get() == 0.0

    def test_validation_results(self) -> None:
        metrics = RewardMetrics()
        metrics.record_validation("REFERRAL_NEW_USER", True)
        metrics.record_validation("REFERRAL_NEW_USER", False, "identity_required")
        metrics.record_validation("NOPE", False)

        counter = metrics.trigger_validations
        assert counter.labels(rule_id="REFERRAL_NEW_USER", result="eligible")._value.get() == 1.0
        assert counter.labels(rule_id="REFERRAL_NEW_USER", result="identity_required")._value.get() == 1.0
        assert counter.labels(rule_id="NOPE", result="rejected")._value.get() == 1.0

    def test_submission(self) -> None:
        metrics = RewardMetrics()
        metrics.record_submission("node_treasury_002", 288)
        metrics.record_submission("node_treasury_002", 1)

        assert metrics.node_selections.labels(node_id="node_treasury_002")._value.get() == 2.0
        assert metrics.network_fees._value.get() == 289.0

    def test_render(self) -> None:
        metrics = RewardMetrics(prefix="civic_test")
        metrics.record_ledger_entry("reward", "completed")
        metrics.set_active_nodes(4)

        text = metrics.render().decode()
        assert 'civic_test_ledger_entries_total{entry_type="reward",status="completed"} 1.0' in text
        assert "civic_test_active_nodes 4.0" in text
