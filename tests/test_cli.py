"""Tests for the civicreward CLI."""

import json

import pytest
import yaml
from click.testing import CliRunner

from civicreward.cli.main import app


@pytest.fixture
def runner():
    """Create CLI test runner."""
    return CliRunner()


class TestCLI:
    """Tests for the command group."""

    def test_cli_help(self, runner):
        result = runner.invoke(app, ["--help"])
        assert result.exit_code == 0
        assert "simulate" in result.output
        assert "network" in result.output

    def test_cli_version(self, runner):
        result = runner.invoke(app, ["--version"])
        assert result.exit_code == 0
        assert "1.0.0a1" in result.output

    def test_config_file(self, runner, tmp_path):
        config = tmp_path / "civicreward.yaml"
        config.write_text("router:\n  minimum_fee: 7\n", encoding="utf-8")
        result = runner.invoke(app, ["--config", str(config), "fee", "100", "--format", "json"])
        assert result.exit_code == 0
        assert json.loads(result.output)["network_fee"] == 7


class TestRulesCommand:
    """Tests for ``civicreward rules``."""

    def test_table(self, runner):
        result = runner.invoke(app, ["rules"])
        assert result.exit_code == 0
        assert "Trigger Rules" in result.output
        assert "Total rules: 5" in result.output

    def test_json(self, runner):
        result = runner.invoke(app, ["rules", "--format", "json"])
        assert result.exit_code == 0
        data = json.loads(result.output)
        assert [r["rule_id"] for r in data][0] == "MUNICIPAL_PARTICIPATION"
        assert len(data) == 5

    def test_yaml(self, runner):
        result = runner.invoke(app, ["rules", "--format", "yaml", "--category", "social"])
        assert result.exit_code == 0
        data = yaml.safe_load(result.output)
        assert [r["rule_id"] for r in data] == ["REFERRAL_NEW_USER"]

    def test_tier_filter(self, runner):
        citizen = json.loads(runner.invoke(app, ["rules", "--tier", "Citizen", "--format", "json"]).output)
        contributor = json.loads(
            runner.invoke(app, ["rules", "--tier", "contributor", "--format", "json"]).output
        )
        assert len(citizen) == 3
        assert len(contributor) == 5

    def test_unknown_tier(self, runner):
        result = runner.invoke(app, ["rules", "--tier", "Emperor"])
        assert result.exit_code == 1


class TestValidateCommand:
    """Tests for ``civicreward validate``."""

    def test_eligible(self, runner):
        result = runner.invoke(app, ["validate", "REFERRAL_NEW_USER", "--did", "did:civic:alice"])
        assert result.exit_code == 0
        assert "Eligible for REFERRAL_NEW_USER" in result.output

    def test_tier_too_low(self, runner):
        result = runner.invoke(app, ["validate", "COMMAND_STREAK", "--did", "did:civic:alice"])
        assert result.exit_code == 1
        assert "Minimum tier Contributor required" in result.output

    def test_json_reports_code(self, runner):
        result = runner.invoke(
            app, ["validate", "DECK10_FEEDBACK", "--did", "did:civic:alice", "--format", "json"]
        )
        assert result.exit_code == 1
        data = json.loads(result.output)
        assert data["rule_id"] == "DECK10_FEEDBACK"
        assert data["eligible"] is False
        assert data["code"] == "token_required"

    def test_unknown_rule(self, runner):
        result = runner.invoke(app, ["validate", "NOPE", "--format", "json"])
        assert result.exit_code == 1
        assert json.loads(result.output)["code"] == "not_found"


class TestFeeCommand:
    """Tests for ``civicreward fee``."""

    def test_large_payout(self, runner):
        result = runner.invoke(app, ["fee", "600000", "--latency", "2", "--format", "json"])
        assert result.exit_code == 0
        data = json.loads(result.output)
        assert data["network_fee"] == 288
        assert data["complexity_factor"] == 1.5
        assert data["estimated_minutes"] == 3.0

    def test_table(self, runner):
        result = runner.invoke(app, ["fee", "50000"])
        assert result.exit_code == 0
        assert "Network Fee" in result.output


class TestNetworkCommand:
    """Tests for ``civicreward network``."""

    def test_json(self, runner):
        result = runner.invoke(app, ["network", "--format", "json"])
        assert result.exit_code == 0
        data = json.loads(result.output)
        assert data["network"]["total_nodes"] == 5
        assert len(data["nodes"]) == 5
        assert all("score" in node for node in data["nodes"])

    def test_table(self, runner):
        result = runner.invoke(app, ["network"])
        assert result.exit_code == 0
        assert "Settlement Nodes" in result.output
        assert "Health" in result.output


class TestSimulateCommand:
    """Tests for ``civicreward simulate``."""

    def test_successful_reward(self, runner):
        result = runner.invoke(
            app, ["simulate", "/referral", "--did", "did:civic:alice", "--format", "json"]
        )
        assert result.exit_code == 0
        data = json.loads(result.output)
        assert data["bound"] is True
        assert data["rejections"] == []
        assert data["entry"]["status"] == "completed"
        assert data["entry"]["amount"] == 150
        assert data["payout"]["status"] == "completed"
        assert [a["phase"] for a in data["audit_trail"]] == [
            "initiation",
            "verification",
            "disbursement",
            "completion",
        ]

    def test_rejected_report(self, runner):
        result = runner.invoke(app, ["simulate", "/referral", "--format", "json"])
        assert result.exit_code == 0
        data = json.loads(result.output)
        assert data["entry"] is None
        assert data["rejections"][0]["code"] == "identity_required"

    def test_unbound_route(self, runner):
        result = runner.invoke(app, ["simulate", "/nowhere"])
        assert result.exit_code == 0
        assert "No rule bound to /nowhere" in result.output

    def test_failed_settlement(self, runner):
        result = runner.invoke(app, ["simulate", "/referral", "--did", "did:civic:alice", "--fail"])
        assert result.exit_code == 0
        assert "failed" in result.output
        assert "Settlement rejected at verification" in result.output
