"""
Civic Reward CLI

Commands for inspecting the reward core:
- rules: List trigger rules
- validate: Check a caller context against a rule
- fee: Price a payout
- network: Show the settlement-node pool and its health
- simulate: Run one route report through an in-process service
"""

import asyncio
import json
from datetime import datetime
from typing import Optional

import click
import yaml
from rich import box
from rich.console import Console
from rich.table import Table

from civicreward import __version__
from civicreward.config import CivicRewardConfig
from civicreward.disbursement import (
    DisbursementRouter,
    PayoutPhase,
    SimulatedSettlementBackend,
    compute_network_fee,
)
from civicreward.disbursement.pricing import complexity_factor
from civicreward.services import CivicRewardService
from civicreward.triggers import (
    DEFAULT_ROUTES,
    Tier,
    TriggerRegistry,
    ValidationContext,
    default_rules,
)

console = Console()

_FORMAT_OPTION = click.option(
    "--format", "fmt",
    type=click.Choice(["table", "json", "yaml"]),
    default="table",
    help="Output format (table, json, or yaml).",
)

_HEALTH_STYLES = {
    "excellent": "bold green",
    "good": "green",
    "degraded": "yellow",
    "critical": "bold red",
}


def _output_json(data: object) -> None:
    click.echo(json.dumps(data, indent=2, default=str))


def _output_yaml(data: object) -> None:
    click.echo(yaml.safe_dump(data, default_flow_style=False, sort_keys=False))


def _output(fmt: str, data: object) -> None:
    if fmt == "json":
        _output_json(data)
    else:
        _output_yaml(data)


def _format_datetime(dt: Optional[datetime]) -> str:
    if dt is None:
        return "N/A"
    return dt.strftime("%Y-%m-%d %H:%M:%S")


@click.group()
@click.version_option(__version__, prog_name="civicreward")
@click.option(
    "--config", "config_path",
    type=click.Path(exists=True, dir_okay=False),
    default=None,
    help="YAML configuration file.",
)
@click.pass_context
def app(ctx: click.Context, config_path: Optional[str]):
    """Inspect civic reward triggers, payouts and the node network."""
    ctx.ensure_object(dict)
    ctx.obj["config"] = (
        CivicRewardConfig.from_file(config_path) if config_path else CivicRewardConfig()
    )


@app.command()
@_FORMAT_OPTION
@click.option("--tier", default=None, help="Only rules a caller of this tier can earn.")
@click.option("--category", default=None, help="Only active rules in this category.")
def rules(fmt: str, tier: Optional[str], category: Optional[str]):
    """List trigger rules."""
    registry = TriggerRegistry(default_rules())
    if tier is not None:
        if Tier.parse(tier) is None:
            click.echo(f"Error: Unknown tier '{tier}'.", err=True)
            raise SystemExit(1)
        selected = registry.list_eligible(tier)
    else:
        selected = registry.all()
    if category is not None:
        selected = [r for r in selected if r.active and r.category == category]

    if fmt in ("json", "yaml"):
        _output(fmt, [r.model_dump(mode="json") for r in selected])
        return

    routes = {rule_id: route for route, rule_id in DEFAULT_ROUTES.items()}
    table = Table(title="Trigger Rules", box=box.ROUNDED)
    table.add_column("Rule", style="cyan", no_wrap=True)
    table.add_column("Category")
    table.add_column("Reward", justify="right")
    table.add_column("Min Tier")
    table.add_column("DID")
    table.add_column("Token")
    table.add_column("Route", style="dim")
    for rule in selected:
        table.add_row(
            rule.rule_id,
            rule.category,
            f"{rule.reward:g}",
            rule.conditions.min_tier.value,
            "yes" if rule.conditions.identity_required else "no",
            "yes" if rule.conditions.token_required else "no",
            routes.get(rule.rule_id, "-"),
        )
    console.print(table)
    console.print(f"\n  Total rules: {len(selected)}\n")


@app.command()
@click.argument("rule_id")
@_FORMAT_OPTION
@click.option("--tier", default=Tier.CITIZEN.value, show_default=True, help="Caller tier.")
@click.option("--did", default=None, help="Caller identity reference.")
@click.option("--token", default=None, help="Verification token.")
def validate(fmt: str, rule_id: str, tier: str, did: Optional[str], token: Optional[str]):
    """Check whether a caller is eligible for RULE_ID.

    Exits with status 1 when the caller is not eligible.
    """
    registry = TriggerRegistry(default_rules())
    context = ValidationContext(identity_ref=did, tier=Tier.parse(tier), verification_token=token)
    result = registry.validate(rule_id, context)

    if fmt in ("json", "yaml"):
        _output(fmt, {"rule_id": rule_id, **result.model_dump(mode="json")})
    elif result.eligible:
        console.print(f"[green]Eligible[/green] for {rule_id}")
    else:
        console.print(f"[red]Not eligible[/red] for {rule_id}: {result.reason}")

    if not result.eligible:
        raise SystemExit(1)


@app.command()
@click.argument("amount", type=float)
@_FORMAT_OPTION
@click.option("--latency", type=float, default=3.0, show_default=True, help="Node latency in minutes.")
@click.pass_context
def fee(ctx: click.Context, amount: float, fmt: str, latency: float):
    """Price a payout of AMOUNT units."""
    config = ctx.obj["config"].router
    factor = complexity_factor(amount, config)
    quote = {
        "amount": amount,
        "network_fee": compute_network_fee(amount, config),
        "complexity_factor": factor,
        "estimated_minutes": round(latency * factor, 4),
    }
    if fmt in ("json", "yaml"):
        _output(fmt, quote)
        return

    table = Table(box=box.SIMPLE, show_header=False)
    table.add_column("Field", style="bold cyan", no_wrap=True)
    table.add_column("Value")
    table.add_row("Amount", f"{amount:,.2f}")
    table.add_row("Network Fee", str(quote["network_fee"]))
    table.add_row("Complexity", f"x{factor:g}")
    table.add_row("Delivery", f"{quote['estimated_minutes']:g} min")
    console.print(table)


@app.command()
@_FORMAT_OPTION
@click.pass_context
def network(ctx: click.Context, fmt: str):
    """Show the settlement-node pool and network health."""
    router = DisbursementRouter(SimulatedSettlementBackend.instant(), config=ctx.obj["config"].router)
    metrics = router.network_metrics()
    scores = router.node_scores()

    if fmt in ("json", "yaml"):
        _output(fmt, {
            "network": metrics.model_dump(mode="json"),
            "nodes": [
                {**n.model_dump(mode="json"), "score": scores.get(n.node_id)}
                for n in router.nodes()
            ],
        })
        return

    table = Table(title="Settlement Nodes", box=box.ROUNDED)
    table.add_column("Node", style="cyan", no_wrap=True)
    table.add_column("Status")
    table.add_column("Success", justify="right")
    table.add_column("Latency", justify="right")
    table.add_column("Volume", justify="right")
    table.add_column("Score", justify="right")
    table.add_column("Last Activity", style="dim")
    for node in router.nodes():
        score = scores.get(node.node_id)
        table.add_row(
            node.node_id,
            node.status.value,
            f"{node.success_rate:.1%}",
            f"{node.average_latency:g} min",
            f"{node.total_volume:,.0f}",
            f"{score:.3f}" if score is not None else "-",
            _format_datetime(node.last_activity_at),
        )
    console.print(table)
    style = _HEALTH_STYLES.get(metrics.health, "white")
    console.print(
        f"\n  Active: {metrics.active_nodes}/{metrics.total_nodes}"
        f"  Mean success: {metrics.average_success_rate:.1%}"
        f"  Health: [{style}]{metrics.health}[/{style}]\n"
    )


async def _simulate(
    config: CivicRewardConfig,
    route: str,
    payload: dict,
    realtime: bool,
    fail: bool,
) -> dict:
    backend_kwargs = {"fail_phases": [PayoutPhase.VERIFICATION]} if fail else {}
    if realtime:
        backend = SimulatedSettlementBackend(config.simulation, **backend_kwargs)
    else:
        backend = SimulatedSettlementBackend.instant(**backend_kwargs)

    async with CivicRewardService(config, backend=backend) as service:
        rejections: list[dict] = []
        service.bus.subscribe("reward.rejected", lambda event: rejections.append(event.payload))
        await service.observer.report(route, payload)

        history = service.observer.history()
        entry = history[0] if history else None
        payout_id = entry.metadata.get("payout_id") if entry else None
        return {
            "route": route,
            "bound": route in service.observer.routes(),
            "rejections": rejections,
            "entry": entry.model_dump(mode="json") if entry else None,
            "payout": (
                service.router.status(payout_id).model_dump(mode="json") if payout_id else None
            ),
            "audit_trail": [
                a.model_dump(mode="json") for a in service.router.audit_trail(payout_id)
            ] if payout_id else [],
        }


@app.command()
@click.argument("route")
@_FORMAT_OPTION
@click.option("--did", default=None, help="Caller identity reference.")
@click.option("--tier", default=None, help="Caller tier.")
@click.option("--token", default=None, help="Verification token.")
@click.option("--realtime", is_flag=True, help="Use the configured phase latencies.")
@click.option("--fail", is_flag=True, help="Make settlement fail at verification.")
@click.pass_context
def simulate(
    ctx: click.Context,
    route: str,
    fmt: str,
    did: Optional[str],
    tier: Optional[str],
    token: Optional[str],
    realtime: bool,
    fail: bool,
):
    """Report one action on ROUTE and show the resulting ledger entry and payout."""
    payload = {k: v for k, v in {"did": did, "tier": tier, "verification_token": token}.items() if v}
    result = asyncio.run(_simulate(ctx.obj["config"], route, payload, realtime, fail))

    if fmt in ("json", "yaml"):
        _output(fmt, result)
        return

    if not result["bound"]:
        console.print(f"[yellow]No rule bound to {route}[/yellow]")
        return
    for rejection in result["rejections"]:
        console.print(f"[red]Rejected[/red] {rejection['rule_id']}: {rejection['reason']}")
    entry = result["entry"]
    if entry is None:
        return

    style = "green" if entry["status"] == "completed" else "red"
    console.print(
        f"Ledger entry {entry['entry_id']}: {entry['amount']:g} "
        f"[{style}]{entry['status']}[/{style}]"
    )
    if entry.get("failure_reason"):
        console.print(f"  Reason: {entry['failure_reason']}")

    table = Table(title="Payout Audit Trail", box=box.ROUNDED)
    table.add_column("Phase", style="cyan")
    table.add_column("Node")
    table.add_column("Status")
    table.add_column("Timestamp", style="dim")
    for audit in result["audit_trail"]:
        table.add_row(audit["phase"], audit["node_id"], audit["status"], audit["timestamp"])
    console.print(table)


if __name__ == "__main__":
    app()
