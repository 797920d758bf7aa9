"""Click-based CLI for trade-insight.

Thin wrapper around TradeDataService. Every command builds the service from
config, runs one query and renders the envelope as a Rich table or JSON.
"""

from __future__ import annotations

import asyncio
import json
import logging

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

console = Console(stderr=True)

_PROVIDERS = ["world_bank", "un_comtrade"]
_FORMATS = ["table", "json"]


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _run_async(coro):
    """Run an async coroutine from synchronous Click code."""
    return asyncio.run(coro)


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.INFO if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=console, show_path=False)],
        force=True,
    )


def _load_config(ctx: click.Context):
    """Load config lazily, caching on first call. `--live` overrides the file."""
    if "config" not in ctx.obj:
        from trade_insight.core import ConfigError, load_config

        try:
            config = load_config(config_path=ctx.obj.get("config_path"))
        except ConfigError as e:
            console.print(f"[red]Configuration error:[/red] {e}")
            raise SystemExit(2)
        if ctx.obj.get("live"):
            config = config.model_copy(
                update={"data": config.data.model_copy(update={"live_enabled": True})}
            )
        ctx.obj["config"] = config
    return ctx.obj["config"]


def _with_service(ctx: click.Context, call):
    """Run `call(service)` inside a service context and return its result."""
    from trade_insight.service import TradeDataService

    config = _load_config(ctx)

    async def _run():
        async with TradeDataService(config) as service:
            return await call(service)

    return _run_async(_run())


def _provider(value: str | None):
    from trade_insight.core import DataProvider

    return DataProvider(value) if value else None


def _split_codes(value: str | None) -> tuple[str, ...]:
    if not value:
        return ()
    return tuple(c.strip().upper() for c in value.split(",") if c.strip())


def _money(value: float) -> str:
    from trade_insight.transformers.metrics import format_compact

    return format_compact(value)


def _emit(response, output_format: str, render) -> None:
    """Print an envelope; exit with status 1 when the query failed."""
    if output_format == "json":
        click.echo(response.model_dump_json(indent=2))
    elif not response.success:
        console.print(f"[red]Error ({response.error_code}):[/red] {response.error}")
    else:
        render(response.data)
        console.print(
            f"[dim]source: {response.source}  provider: {response.provider}  "
            f"at {response.timestamp:%Y-%m-%d %H:%M:%S}[/dim]"
        )
        for warning in response.warnings:
            console.print(f"[yellow]warning:[/yellow] {warning}")
    if not response.success:
        raise SystemExit(1)


format_option = click.option(
    "--format",
    "-f",
    "output_format",
    type=click.Choice(_FORMATS, case_sensitive=False),
    default="table",
    help="Output format.",
)
provider_option = click.option(
    "--provider",
    "-p",
    type=click.Choice(_PROVIDERS, case_sensitive=False),
    default=None,
    help="Data provider (default: providers.preferred from config).",
)


# ---------------------------------------------------------------------------
# CLI group
# ---------------------------------------------------------------------------


@click.group()
@click.option(
    "--config",
    "-c",
    type=click.Path(exists=True),
    envvar="TRADE_INSIGHT_CONFIG",
    default=None,
    help="Path to trade-insight.yml config file.",
)
@click.option(
    "--verbose",
    "-v",
    is_flag=True,
    default=False,
    help="Enable verbose output.",
)
@click.option(
    "--live",
    is_flag=True,
    default=False,
    help="Query live providers (overrides data.live_enabled).",
)
@click.version_option(package_name="trade-insight")
@click.pass_context
def cli(ctx: click.Context, config: str | None, verbose: bool, live: bool) -> None:
    """Trade Insight: trade statistics from World Bank and UN Comtrade."""
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config
    ctx.obj["verbose"] = verbose
    ctx.obj["live"] = live
    ctx.obj["console"] = console
    _configure_logging(verbose)


# ---------------------------------------------------------------------------
# trade-stats
# ---------------------------------------------------------------------------


@cli.command("trade-stats")
@click.argument("country", default="WLD")
@provider_option
@format_option
@click.pass_context
def trade_stats(ctx: click.Context, country: str, provider: str | None, output_format: str) -> None:
    """Trade totals, top products and partners for COUNTRY (default: WLD)."""
    response = _with_service(
        ctx, lambda s: s.get_trade_stats(country, _provider(provider))
    )
    _emit(response, output_format, _render_trade_stats)


def _render_trade_stats(stats) -> None:
    table = Table(title=f"{stats.country} ({stats.country_code}), {stats.period}")
    table.add_column("Metric", style="bold")
    table.add_column("Value", justify="right")
    table.add_row("Exports", _money(stats.total_exports))
    table.add_row("Imports", _money(stats.total_imports))
    table.add_row("Balance", _money(stats.trade_balance))
    console.print(table)

    for title, products in (
        ("Top exports", stats.top_export_products),
        ("Top imports", stats.top_import_products),
    ):
        if not products:
            continue
        ptable = Table(title=title)
        ptable.add_column("HS")
        ptable.add_column("Product")
        ptable.add_column("Value", justify="right")
        ptable.add_column("Share", justify="right")
        ptable.add_column("Growth", justify="right")
        for p in products:
            ptable.add_row(
                p.product_code,
                p.product_name,
                _money(p.value),
                f"{p.percentage:.1f}%",
                f"{p.growth_rate:+.1f}%",
            )
        console.print(ptable)

    if stats.trading_partners:
        partners = Table(title="Trading partners")
        partners.add_column("Partner")
        partners.add_column("Value", justify="right")
        partners.add_column("Share", justify="right")
        partners.add_column("Type")
        for p in stats.trading_partners:
            partners.add_row(
                f"{p.country} ({p.country_code})",
                _money(p.trade_value),
                f"{p.percentage:.1f}%",
                str(p.trade_type),
            )
        console.print(partners)


# ---------------------------------------------------------------------------
# markets
# ---------------------------------------------------------------------------


@cli.command()
@click.option("--countries", type=str, default=None, help="Comma-separated ISO3 codes.")
@click.option("--category", type=str, default="General", help="Product category.")
@click.option("--min-size", type=float, default=None, help="Minimum market size (USD).")
@click.option("--max-tariff", type=float, default=None, help="Maximum tariff rate (%).")
@click.option("--min-growth", type=float, default=None, help="Minimum growth rate (%).")
@click.option(
    "--competition",
    type=click.Choice(["low", "medium", "high"], case_sensitive=False),
    multiple=True,
    help="Competition levels to keep (repeatable).",
)
@provider_option
@format_option
@click.pass_context
def markets(
    ctx: click.Context,
    countries: str | None,
    category: str,
    min_size: float | None,
    max_tariff: float | None,
    min_growth: float | None,
    competition: tuple[str, ...],
    provider: str | None,
    output_format: str,
) -> None:
    """Market size, growth, competition and tariff per country."""
    from trade_insight.core import MarketQuery

    query = MarketQuery(
        countries=_split_codes(countries),
        product_category=category,
        min_market_size=min_size,
        max_tariff_rate=max_tariff,
        min_growth_rate=min_growth,
        competition_levels=tuple(c.lower() for c in competition),
        provider=_provider(provider),
    )
    response = _with_service(ctx, lambda s: s.get_market_data(query))
    _emit(response, output_format, _render_markets)


def _render_markets(items) -> None:
    if not items:
        console.print("[yellow]No markets match the filters.[/yellow]")
        return
    table = Table(title="Market Data")
    table.add_column("Country", style="bold")
    table.add_column("Category")
    table.add_column("Size", justify="right")
    table.add_column("Growth", justify="right")
    table.add_column("Competition")
    table.add_column("Tariff", justify="right")
    table.add_column("Reliability")
    for m in items:
        tariff = f"{m.tariff_rate:.1f}%" + ("*" if m.tariff_estimated else "")
        table.add_row(
            f"{m.country} ({m.country_code})",
            m.product_category,
            _money(m.market_size),
            f"{m.growth_rate:+.1f}%",
            str(m.competition_level),
            tariff,
            str(m.reliability),
        )
    console.print(table)
    if any(m.tariff_estimated for m in items):
        console.print("[dim]* placeholder tariff, not a reported rate[/dim]")


# ---------------------------------------------------------------------------
# opportunities
# ---------------------------------------------------------------------------


@cli.command()
@click.option("--exporter", type=str, default="IND", help="Exporting country (ISO3).")
@click.option("--countries", type=str, default=None, help="Comma-separated destination codes.")
@click.option("--category", type=str, default=None, help="Product category filter.")
@click.option("--min-value", type=float, default=None, help="Minimum estimated value (USD).")
@click.option("--limit", type=int, default=20, help="Maximum number of results.")
@provider_option
@format_option
@click.pass_context
def opportunities(
    ctx: click.Context,
    exporter: str,
    countries: str | None,
    category: str | None,
    min_value: float | None,
    limit: int,
    provider: str | None,
    output_format: str,
) -> None:
    """Ranked export opportunities derived from destination imports."""
    from pydantic import ValidationError

    from trade_insight.core import OpportunityQuery

    try:
        query = OpportunityQuery(
            exporter_country=exporter,
            countries=_split_codes(countries),
            product_category=category,
            min_value=min_value,
            limit=limit,
            provider=_provider(provider),
        )
    except ValidationError as e:
        raise click.UsageError(str(e)) from e
    response = _with_service(ctx, lambda s: s.get_export_opportunities(query))
    _emit(response, output_format, _render_opportunities)


def _render_opportunities(items) -> None:
    if not items:
        console.print("[yellow]No opportunities match the filters.[/yellow]")
        return
    table = Table(title="Export Opportunities")
    table.add_column("Score", justify="right", style="bold")
    table.add_column("Title")
    table.add_column("Category")
    table.add_column("Value", justify="right")
    table.add_column("Verified")
    for o in items:
        table.add_row(
            f"{o.opportunity_score:.0f}",
            o.title,
            o.product_category,
            _money(o.estimated_value),
            "yes" if o.verified else "no",
        )
    console.print(table)


# ---------------------------------------------------------------------------
# indicators
# ---------------------------------------------------------------------------


@cli.command()
@click.option("--countries", type=str, default="WLD", help="Comma-separated ISO3 codes.")
@format_option
@click.pass_context
def indicators(ctx: click.Context, countries: str, output_format: str) -> None:
    """World Bank trade indicators (exports, imports, GDP, trade share)."""
    codes = _split_codes(countries) or ("WLD",)
    response = _with_service(ctx, lambda s: s.get_economic_indicators(codes))
    _emit(response, output_format, _render_indicators)


def _render_indicators(items) -> None:
    table = Table(title="Economic Indicators")
    table.add_column("Country", style="bold")
    table.add_column("Indicator")
    table.add_column("Year", justify="right")
    table.add_column("Value", justify="right")
    for i in items:
        if i.value is None:
            value = "n/a"
        elif i.indicator_id.endswith(".ZS"):
            value = f"{i.value:.1f}%"
        else:
            value = _money(i.value)
        table.add_row(i.country_code, i.indicator_name, str(i.year), value)
    console.print(table)


# ---------------------------------------------------------------------------
# dashboard
# ---------------------------------------------------------------------------


@cli.command()
@format_option
@click.pass_context
def dashboard(ctx: click.Context, output_format: str) -> None:
    """Aggregate figures across the major economies."""
    response = _with_service(ctx, lambda s: s.get_dashboard_stats())
    _emit(response, output_format, _render_dashboard)


def _render_dashboard(stats) -> None:
    table = Table(title=f"Dashboard ({stats.period})")
    table.add_column("Metric", style="bold")
    table.add_column("Value", justify="right")
    table.add_row("Total exports", _money(stats.total_exports))
    table.add_row("Total imports", _money(stats.total_imports))
    table.add_row("Total GDP", _money(stats.total_gdp))
    table.add_row("Export growth", f"{stats.export_growth:+.1f}%")
    table.add_row("Import growth", f"{stats.import_growth:+.1f}%")
    table.add_row("Trade share change", f"{stats.trade_share_change:+.1f} pp")
    table.add_row("Countries covered", str(stats.countries_covered))
    console.print(table)


# ---------------------------------------------------------------------------
# health
# ---------------------------------------------------------------------------


@cli.command()
@click.option(
    "--provider",
    "-p",
    type=click.Choice(_PROVIDERS, case_sensitive=False),
    multiple=True,
    help="Providers to probe (default: all).",
)
@click.pass_context
def health(ctx: click.Context, provider: tuple[str, ...]) -> None:
    """Probe provider availability with one short request each."""
    from trade_insight.core import DataProvider

    providers = [DataProvider(p) for p in (provider or _PROVIDERS)]

    async def _probe(service):
        return {p: await service.health_check(p) for p in providers}

    results = _with_service(ctx, _probe)

    table = Table(title="Provider Health")
    table.add_column("Provider", style="bold")
    table.add_column("Status")
    for p, ok in results.items():
        table.add_row(str(p), "[green]up[/green]" if ok else "[red]down[/red]")
    console.print(table)
    if not all(results.values()):
        raise SystemExit(1)


# ---------------------------------------------------------------------------
# cache
# ---------------------------------------------------------------------------


@cli.command("cache-stats")
@format_option
@click.pass_context
def cache_stats(ctx: click.Context, output_format: str) -> None:
    """Show response cache statistics."""
    async def _stats(service):
        return service.usage_stats()

    usage = _with_service(ctx, _stats)
    if output_format == "json":
        click.echo(json.dumps(usage, indent=2, default=str))
        return

    stats = usage["cache"]
    table = Table(title="Cache")
    table.add_column("Metric", style="bold")
    table.add_column("Value", justify="right")
    table.add_row("Entries", str(stats["entry_count"]))
    table.add_row("Size (bytes)", str(stats["total_size_bytes"]))
    table.add_row("Hit rate", f"{stats['hit_rate']:.1f}%")
    table.add_row("Oldest entry", str(stats["oldest"] or "N/A"))
    table.add_row("Newest entry", str(stats["newest"] or "N/A"))
    console.print(table)


@cli.command("cache-clear")
@click.pass_context
def cache_clear(ctx: click.Context) -> None:
    """Remove every cached response (and rewrite the snapshot, if configured)."""
    async def _clear(service):
        count = len(service.cache)
        service.cache.clear()
        return count

    count = _with_service(ctx, _clear)
    console.print(f"Cleared {count} cached responses.")


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def main() -> None:
    """Main entry point for the CLI."""
    cli()


if __name__ == "__main__":
    main()
