"""CLI for the cross-chain allocation engine."""

import asyncio
import json
import logging
from decimal import Decimal
from enum import StrEnum
from typing import Any, NoReturn

import httpx
import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.table import Table
from rich.traceback import install

from chain_allocator.config import Settings
from chain_allocator.core import PortfolioAggregator
from chain_allocator.core.models import AllocationTarget, PortfolioSnapshot, QuoteRequest
from chain_allocator.data import (
    get_all_supported_chains,
    get_chain_config,
    get_explorer_url,
    get_supported_chain_ids,
    get_token_address,
    get_token_decimals,
)
from chain_allocator.errors import ChainAllocatorError
from chain_allocator.execution import build_plan, summarize_plan
from chain_allocator.intent import classify as classify_text
from chain_allocator.loop import (
    Coordinator,
    CoordinatedCycle,
    DecisionLoop,
    FallbackPhraser,
    StrategyContext,
    resolve_strategies,
)
from chain_allocator.notifications import LoggingSink, NotificationSink, Notifier, WebhookSink
from chain_allocator.planning import (
    HedgeQuote,
    analyze_drift,
    build_arbitrage_action,
    plan_hedge,
    plan_rebalance,
    quote_hedge,
    scan_arbitrage,
)
from chain_allocator.pricing import CrossChainPriceFeed, DeFiLlamaPricing, DeFiLlamaYields, FallbackPricing
from chain_allocator.routing import LiFiClient, QuoteGateway
from chain_allocator.rpc import build_providers
from chain_allocator.storage import JsonFileStore, PortfolioValueStore, TransactionHistory

# Install rich traceback handler
install(show_locals=True)

app = typer.Typer(
    name="chain-allocator",
    help="Value multi-chain portfolios, plan rebalances and yield moves, and quote cross-chain routes",
    add_completion=False,
)

console = Console()


class OutputFormat(StrEnum):
    """Output format options."""

    TABLE = "table"
    JSON = "json"


FormatOption = typer.Option(OutputFormat.TABLE, "--format", "-f", help="Output format")


@app.callback()
def main(debug: bool = typer.Option(False, "--debug", "-d", help="Enable debug logging")) -> None:
    """Configure logging for every command."""
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, rich_tracebacks=True)],
    )


def _resolve_chains(chains: list[str] | None) -> list[int]:
    if not chains:
        return get_supported_chain_ids()
    try:
        return [get_chain_config(int(c) if c.isdigit() else c)["chain_id"] for c in chains]
    except KeyError as e:
        console.print(f"[bold red]Error:[/bold red] {e.args[0]}")
        raise typer.Exit(1) from e


def _parse_targets(targets: list[str]) -> list[AllocationTarget]:
    """Parse ``SYMBOL=PERCENT`` pairs."""
    parsed = []
    for item in targets:
        symbol, sep, percent = item.partition("=")
        if not sep:
            console.print(f"[bold red]Error:[/bold red] target {item!r} must look like ETH=50")
            raise typer.Exit(1)
        parsed.append(AllocationTarget(token_symbol=symbol.upper(), target_percent=Decimal(percent)))
    return parsed


def _print_json(data: Any) -> None:
    console.print(json.dumps(data, indent=2, default=str))


def _fail(error: ChainAllocatorError) -> NoReturn:
    console.print(f"[bold red]Error:[/bold red] {error}")
    raise typer.Exit(1)


async def _take_snapshot(address: str, chain_ids: list[int], settings: Settings) -> PortfolioSnapshot:
    async with httpx.AsyncClient(timeout=settings.aggregator.request_timeout) as client:
        providers = build_providers(chain_ids, client)
        pricing = FallbackPricing(DeFiLlamaPricing(client=client))
        value_store = PortfolioValueStore(JsonFileStore(settings.storage.state_path))
        aggregator = PortfolioAggregator(providers, pricing, value_store=value_store, config=settings.aggregator)
        return await aggregator.snapshot(address, chain_ids)


def _snapshot_with_progress(address: str, chain_ids: list[int], settings: Settings) -> PortfolioSnapshot:
    with Progress(SpinnerColumn(), TextColumn("[progress.description]{task.description}"), console=console) as progress:
        task = progress.add_task(f"Reading {len(chain_ids)} chains...", total=None)
        snapshot = asyncio.run(_take_snapshot(address, chain_ids, settings))
        progress.update(task, description=f"✓ {len(snapshot.positions)} positions")
    return snapshot


@app.command()
def snapshot(
    address: str = typer.Argument(..., help="Wallet address to value"),
    chain: list[str] | None = typer.Option(None, "--chain", "-c", help="Chain name or id (repeatable)"),
    format: OutputFormat = FormatOption,
) -> None:
    """
    Value a wallet's native and tracked-token balances across chains.

    Examples:

        chain-allocator snapshot 0xABC...

        chain-allocator snapshot 0xABC... --chain arbitrum --chain base --format json
    """
    settings = Settings.from_env()
    result = _snapshot_with_progress(address, _resolve_chains(chain), settings)
    if format == OutputFormat.JSON:
        _print_json(result.model_dump(mode="json"))
        return

    if not result.positions:
        console.print("\n[yellow]No balances found[/yellow]")
    else:
        table = Table(
            title=f"Portfolio for {address[:10]}...{address[-8:]}",
            show_header=True,
            header_style="bold magenta",
        )
        table.add_column("Chain", style="blue")
        table.add_column("Token", style="green")
        table.add_column("Balance", style="white", justify="right")
        table.add_column("Price", style="white", justify="right")
        table.add_column("USD Value", style="bold green", justify="right")
        for position in sorted(result.positions, key=lambda p: p.value_usd, reverse=True):
            price = f"${position.price_usd:,.4f}" + ("*" if position.price_source == "fallback" else "")
            table.add_row(
                get_chain_config(position.chain_id)["display_name"],
                position.symbol,
                f"{position.formatted_balance:,.4f}",
                price,
                f"${position.value_usd:,.2f}",
            )
        console.print(table)

    console.print(f"\n[bold]Total Value:[/bold] [bold green]${result.total_value_usd:,.2f}[/bold green]")
    if result.pnl_usd is not None:
        colour = "green" if result.pnl_usd >= 0 else "red"
        console.print(f"[bold]Since last snapshot:[/bold] [{colour}]{result.pnl_usd:+,.2f} ({result.pnl_percent:+.2f}%)")
    for chain_result in result.chain_results:
        if chain_result.reason:
            console.print(f"[yellow]{chain_result.chain_name} unavailable:[/yellow] {chain_result.reason}")


@app.command()
def classify(
    text: str = typer.Argument(..., help="Free-text request"),
    format: OutputFormat = FormatOption,
) -> None:
    """Show which workflow and roles a request maps to."""
    analysis = classify_text(text)
    if format == OutputFormat.JSON:
        _print_json(analysis.model_dump(mode="json"))
        return
    console.print(f"[bold cyan]Intent:[/bold cyan] {analysis.intent_type.value}")
    console.print(f"[bold cyan]Description:[/bold cyan] {analysis.description}")
    if analysis.needs_clarification:
        console.print("[yellow]Needs clarification: specify an amount, a token and chains[/yellow]")
    console.print(f"[bold cyan]Roles:[/bold cyan] {', '.join(r.value for r in analysis.required_roles) or '-'}")
    for source, target in analysis.role_graph:
        console.print(f"  {source.value} -> {target.value}")
    entities = analysis.entities
    if entities.amount is not None or entities.tokens or entities.chains:
        console.print(
            f"[dim]amount={entities.amount} tokens={','.join(entities.tokens)} chains={','.join(entities.chains)}[/dim]"
        )


@app.command()
def drift(
    address: str = typer.Argument(..., help="Wallet address"),
    target: list[str] = typer.Option(["ETH=50", "USDC=30", "DAI=10", "USDT=10"], "--target", "-t", help="SYMBOL=PERCENT"),
    chain: list[str] | None = typer.Option(None, "--chain", "-c", help="Chain name or id (repeatable)"),
    allow_partial: bool = typer.Option(False, "--allow-partial", help="Plan even if some chains are unreachable"),
    format: OutputFormat = FormatOption,
) -> None:
    """Compare holdings with target allocations and propose rebalance trades."""
    settings = Settings.from_env()
    targets = _parse_targets(target)
    result = _snapshot_with_progress(address, _resolve_chains(chain), settings)
    analysis = analyze_drift(result, targets, settings.planner.rebalance_threshold)
    try:
        actions = plan_rebalance(result, targets, settings.planner, allow_partial=allow_partial)
    except ChainAllocatorError as e:
        _fail(e)

    if format == OutputFormat.JSON:
        _print_json(
            {
                "analysis": analysis.model_dump(mode="json"),
                "actions": [a.model_dump(mode="json") for a in actions],
            }
        )
        return

    table = Table(title="Allocation drift", show_header=True, header_style="bold magenta")
    table.add_column("Token", style="green")
    table.add_column("Current", justify="right")
    table.add_column("Target", justify="right")
    table.add_column("Drift", justify="right")
    table.add_column("Adjustment", justify="right")
    for report in analysis.reports:
        style = "red" if abs(report.drift_percent) > settings.planner.rebalance_threshold else "white"
        table.add_row(
            report.token_symbol,
            f"{report.current_percent:.1f}%",
            f"{report.target_percent}%",
            f"[{style}]{report.drift_percent:+.1f}%[/{style}]",
            f"${report.adjustment_usd:+,.2f}",
        )
    console.print(table)
    for line in analysis.recommendations:
        console.print(f"  • {line}")
    for action in actions:
        console.print(f"[cyan]{action.kind.value}[/cyan] {action.token} ${action.amount_usd:,.2f}: {action.reason}")


@app.command()
def yields(
    token: list[str] | None = typer.Option(None, "--token", "-t", help="Pool symbol (repeatable)"),
    chain: list[str] | None = typer.Option(None, "--chain", "-c", help="Chain name or id (repeatable)"),
    limit: int = typer.Option(20, "--limit", "-n", help="Number of pools shown"),
    format: OutputFormat = FormatOption,
) -> None:
    """List the best yield pools after TVL and APY sanity filters."""
    settings = Settings.from_env()
    chain_ids = _resolve_chains(chain)

    async def fetch() -> list:
        async with httpx.AsyncClient(timeout=30.0) as client:
            feed = DeFiLlamaYields(client=client)
            return await feed.get_pools(
                chain_ids,
                token or ["USDC", "USDT", "DAI", "WETH"],
                min_tvl=settings.planner.yield_min_tvl,
                max_apy=settings.planner.yield_max_apy,
                min_apy=settings.planner.yield_min_apy,
            )

    pools = asyncio.run(fetch())[:limit]
    if format == OutputFormat.JSON:
        _print_json([p.model_dump(mode="json") for p in pools])
        return
    if not pools:
        console.print("[yellow]No pools matched[/yellow]")
        return
    table = Table(title="Yield opportunities", show_header=True, header_style="bold magenta")
    table.add_column("Protocol", style="cyan")
    table.add_column("Chain", style="blue")
    table.add_column("Token", style="green")
    table.add_column("APY", justify="right", style="bold green")
    table.add_column("TVL", justify="right")
    table.add_column("Risk", style="yellow")
    for pool in pools:
        table.add_row(pool.protocol, pool.chain_name, pool.symbol, f"{pool.apy:.2f}%", f"${pool.tvl_usd:,.0f}", pool.risk.value)
    console.print(table)


@app.command()
def arbitrage(
    token: list[str] = typer.Option(["WETH", "USDC", "USDT"], "--token", "-t", help="Token symbol (repeatable)"),
    chain: list[str] | None = typer.Option(None, "--chain", "-c", help="Chain name or id (repeatable)"),
    format: OutputFormat = FormatOption,
) -> None:
    """Scan tokens for cross-chain price gaps that survive fees."""
    settings = Settings.from_env()
    chain_ids = _resolve_chains(chain)

    async def scan() -> list:
        async with httpx.AsyncClient(timeout=settings.planner.price_timeout) as client:
            feed = CrossChainPriceFeed(DeFiLlamaPricing(client=client), timeout=settings.planner.price_timeout)
            return await scan_arbitrage(feed, token, chain_ids, settings.planner)

    opportunities = asyncio.run(scan())
    if format == OutputFormat.JSON:
        _print_json([o.model_dump(mode="json") for o in opportunities])
        return
    if not opportunities:
        console.print("[yellow]No gaps above the minimum after fees[/yellow]")
        return
    table = Table(title="Arbitrage opportunities", show_header=True, header_style="bold magenta")
    table.add_column("Token", style="green")
    table.add_column("Buy on", style="blue")
    table.add_column("Sell on", style="blue")
    table.add_column("Gap", justify="right")
    table.add_column("Net profit", justify="right", style="bold green")
    table.add_column("Confidence", style="yellow")
    for opportunity in opportunities:
        table.add_row(
            opportunity.token,
            get_chain_config(opportunity.buy_chain)["display_name"],
            get_chain_config(opportunity.sell_chain)["display_name"],
            f"{opportunity.price_diff_percent:.2f}%",
            f"${opportunity.net_profit_usd:,.2f}",
            opportunity.confidence.value,
        )
        if build_arbitrage_action(opportunity, settings.planner) is None:
            console.print(f"[dim]{opportunity.token}: no registry route between these chains[/dim]")
    console.print(table)


@app.command()
def watch(
    address: str = typer.Argument(..., help="Wallet address to watch"),
    strategy: list[str] | None = typer.Option(None, "--strategy", "-s", help="Registered strategy name (repeatable)"),
    target: list[str] = typer.Option(["ETH=50", "USDC=30", "DAI=10", "USDT=10"], "--target", "-t", help="SYMBOL=PERCENT"),
    chain: list[str] | None = typer.Option(None, "--chain", "-c", help="Chain name or id (repeatable)"),
    cycles: int = typer.Option(1, "--cycles", "-n", min=1, help="Number of coordinated cycles"),
    interval: float = typer.Option(60.0, "--interval", "-i", help="Seconds between cycles"),
    format: OutputFormat = FormatOption,
) -> None:
    """
    Run registered strategies side by side and print what each would do.

    Proposals are explained and announced but never submitted.

    Examples:

        chain-allocator watch 0xABC... --strategy rebalance --strategy arbitrage --cycles 3
    """
    settings = Settings.from_env()
    try:
        strategy_classes = resolve_strategies(strategy)
    except ChainAllocatorError as e:
        _fail(e)
    targets = _parse_targets(target)
    chain_ids = _resolve_chains(chain)

    async def run() -> list[CoordinatedCycle]:
        async with httpx.AsyncClient(timeout=settings.aggregator.request_timeout) as client:
            pricing = DeFiLlamaPricing(client=client)
            context = StrategyContext(
                aggregator=PortfolioAggregator(
                    build_providers(chain_ids, client),
                    FallbackPricing(pricing),
                    value_store=PortfolioValueStore(JsonFileStore(settings.storage.state_path)),
                    config=settings.aggregator,
                ),
                yields=DeFiLlamaYields(client=client),
                feed=CrossChainPriceFeed(pricing, timeout=settings.planner.price_timeout),
                address=address,
                chain_ids=chain_ids,
                targets=targets,
                config=settings.planner,
            )
            sinks: list[NotificationSink] = [LoggingSink()]
            if settings.notifications.webhook_url:
                sinks.append(WebhookSink(settings.notifications.webhook_url, client=client))
            phraser = FallbackPhraser.from_config(settings.phrasing, client)
            notifier = Notifier(sinks)
            loops = [
                DecisionLoop(strategy_class.from_context(context), phraser=phraser, notifier=notifier)
                for strategy_class in strategy_classes
            ]
            return await Coordinator(loops).run(cycles, interval)

    results = asyncio.run(run())
    if format == OutputFormat.JSON:
        _print_json([[o.model_dump(mode="json") for o in cycle.outcomes] for cycle in results])
        return

    for count, cycle in enumerate(results, start=1):
        table = Table(title=f"Cycle {count}", show_header=True, header_style="bold magenta")
        table.add_column("Role", style="cyan")
        table.add_column("Strategy", style="green")
        table.add_column("Proposal")
        for outcome in cycle.outcomes:
            if outcome.action is not None:
                action = outcome.action
                detail = outcome.explanation or f"{action.kind.value} {action.token} ${action.amount_usd:,.2f}"
            else:
                detail = f"[dim]{outcome.reason}[/dim]"
            table.add_row(outcome.role.value, outcome.strategy, detail)
        console.print(table)


@app.command()
def quote(
    from_chain: str = typer.Argument(..., help="Source chain name or id"),
    to_chain: str = typer.Argument(..., help="Destination chain name or id"),
    from_token: str = typer.Argument(..., help="Source token symbol"),
    to_token: str = typer.Argument(..., help="Destination token symbol"),
    amount: Decimal = typer.Argument(..., parser=Decimal, help="Amount in whole source tokens"),
    address: str = typer.Option(..., "--address", "-a", help="Sending wallet"),
    format: OutputFormat = FormatOption,
) -> None:
    """Quote a cross-chain route and score its risk."""
    settings = Settings.from_env()
    source, destination = _resolve_chains([from_chain, to_chain])
    from_address = get_token_address(source, from_token)
    to_address = get_token_address(destination, to_token)
    if from_address is None or to_address is None:
        console.print("[bold red]Error:[/bold red] token not tracked on that chain")
        raise typer.Exit(1)
    raw = int(amount * Decimal(10) ** get_token_decimals(source, from_token))

    async def fetch():
        async with LiFiClient(settings.routing) as client:
            gateway = QuoteGateway.from_config(client, settings.routing)
            return await gateway.get_quote(
                QuoteRequest(
                    from_chain=source,
                    to_chain=destination,
                    from_token=from_address,
                    to_token=to_address,
                    from_amount=str(raw),
                    from_address=address,
                    to_address=address,
                    slippage=settings.routing.default_slippage,
                )
            )

    try:
        result = asyncio.run(fetch())
    except ChainAllocatorError as e:
        _fail(e)
    plan = build_plan(result, config=settings.risk)
    if format == OutputFormat.JSON:
        _print_json(plan.model_dump(mode="json", exclude={"quote": {"raw"}}))
        return
    console.print(summarize_plan(plan))


@app.command()
def hedge(
    address: str = typer.Argument(..., help="Wallet holding the exposure"),
    chain: str = typer.Option(..., "--chain", "-c", help="Chain name or id to swap on"),
    symbol: str = typer.Option("ETH", "--symbol", "-s", help="Volatile asset to reduce"),
    amount: Decimal | None = typer.Option(None, "--amount", "-a", parser=Decimal, help="Whole tokens to swap"),
    percent: Decimal = typer.Option(
        Decimal("50"), "--percent", "-p", parser=Decimal, help="Share of the position when no amount"
    ),
    format: OutputFormat = FormatOption,
) -> None:
    """Quote swapping part of a volatile holding into a stablecoin on the same chain."""
    settings = Settings.from_env()
    (chain_id,) = _resolve_chains([chain])
    result = _snapshot_with_progress(address, [chain_id], settings)
    try:
        action = plan_hedge(result, chain_id, symbol, amount_token=amount, percent=percent, config=settings.planner)
    except ChainAllocatorError as e:
        _fail(e)

    async def fetch() -> HedgeQuote:
        async with LiFiClient(settings.routing) as client:
            gateway = QuoteGateway.from_config(client, settings.routing)
            return await quote_hedge(gateway, action, address, settings.planner)

    try:
        hedged = asyncio.run(fetch())
    except ChainAllocatorError as e:
        _fail(e)
    plan = build_plan(hedged.quote, config=settings.risk)
    if format == OutputFormat.JSON:
        _print_json(
            {
                "action": action.model_dump(mode="json"),
                "to_amount_estimate": str(hedged.to_amount_estimate),
                "plan": plan.model_dump(mode="json", exclude={"quote": {"raw"}}),
            }
        )
        return
    console.print(f"[bold cyan]{hedged.summary}[/bold cyan]")
    console.print(summarize_plan(plan))


@app.command()
def status(
    tx_hash: str = typer.Argument(..., help="Source transaction hash"),
    from_chain: str | None = typer.Option(None, "--from-chain", help="Source chain"),
    to_chain: str | None = typer.Option(None, "--to-chain", help="Destination chain"),
) -> None:
    """Check the settlement status of a submitted transfer."""
    settings = Settings.from_env()
    source = _resolve_chains([from_chain])[0] if from_chain else None
    destination = _resolve_chains([to_chain])[0] if to_chain else None

    async def fetch():
        async with LiFiClient(settings.routing) as client:
            return await client.get_status(tx_hash, from_chain=source, to_chain=destination)

    try:
        result = asyncio.run(fetch())
    except ChainAllocatorError as e:
        _fail(e)
    console.print(f"[bold cyan]Status:[/bold cyan] {result.state.value}" + (f" ({result.substatus})" if result.substatus else ""))
    if result.receiving_tx_hash and destination is not None:
        console.print(f"[bold cyan]Received:[/bold cyan] {get_explorer_url(destination, result.receiving_tx_hash)}")


@app.command()
def history(
    address: str = typer.Argument(..., help="Wallet address"),
    limit: int = typer.Option(20, "--limit", "-n", help="Number of records"),
    format: OutputFormat = FormatOption,
) -> None:
    """Show recorded transactions for a wallet, newest first."""
    settings = Settings.from_env()
    log = TransactionHistory(JsonFileStore(settings.storage.state_path), settings.storage.max_history_records)
    records = log.query(address, limit=limit)
    if format == OutputFormat.JSON:
        _print_json([r.model_dump(mode="json") for r in records])
        return
    if not records:
        console.print("[yellow]No transactions recorded[/yellow]")
        return
    table = Table(title="Transaction history", show_header=True, header_style="bold magenta")
    table.add_column("When", style="dim")
    table.add_column("Type", style="cyan")
    table.add_column("Route", style="blue")
    table.add_column("Status", style="yellow")
    table.add_column("Tx", style="white")
    for record in records:
        table.add_row(
            record.created_at.strftime("%Y-%m-%d %H:%M"),
            record.type.value,
            f"{record.from_token}@{record.from_chain} -> {record.to_token}@{record.to_chain}",
            record.status.value,
            (record.tx_hash or "-")[:14],
        )
    console.print(table)
    stats = log.stats(address)
    console.print(
        f"[bold]{stats.total}[/bold] total, {stats.completed} completed, {stats.failed} failed, {stats.pending} pending"
    )


@app.command()
def list_chains() -> None:
    """List all supported chains."""
    table = Table(title="Supported Chains", show_header=True, header_style="bold magenta")
    table.add_column("Chain", style="cyan")
    table.add_column("Chain ID", style="white", justify="right")
    table.add_column("Native", style="green")
    table.add_column("Tracked Tokens", style="yellow")

    for name in get_all_supported_chains():
        config = get_chain_config(name)
        table.add_row(
            config["display_name"],
            str(config["chain_id"]),
            config["native"]["symbol"],
            ", ".join(config.get("tokens", {})),
        )

    console.print(table)


if __name__ == "__main__":
    app()
