"""Command line entry point for Monedero."""

import asyncio
import sys
from typing import Optional

import click

from monedero import __version__
from monedero.audit import configure_logging
from monedero.config import get_settings, validate_all_settings
from monedero.models.advisor import SupportedLocale
from monedero.orchestrator import create_app_components


@click.group()
@click.version_option(version=__version__)
@click.option("--no-storage", is_flag=True, help="Use in-memory storage instead of Google Sheets")
@click.pass_context
def cli(ctx: click.Context, no_storage: bool) -> None:
    """Monedero: multi-currency valuation and financial tips."""
    configure_logging(get_settings().app.debug_mode)
    ctx.ensure_object(dict)
    ctx.obj["use_storage"] = not no_storage


@cli.command("update-rates")
@click.pass_context
def update_rates(ctx: click.Context) -> None:
    """Refresh stale rate groups and print the current rates."""
    rate_cache, _, _, _, _ = create_app_components(ctx.obj["use_storage"])

    async def _run():
        try:
            return await rate_cache.refresh()
        finally:
            await rate_cache.aclose()

    report = asyncio.run(_run())

    for rate in report.rates:
        marker = "" if rate.is_fresh else " (cached)"
        click.echo(f"{rate.pair:<12} {rate.rate:>18}  {rate.change:>8}  {rate.description}{marker}")

    failed = report.failed_writes
    if failed:
        click.echo(f"{len(failed)} rate(s) could not be saved")


@cli.command()
@click.option("--all", "force_all", is_flag=True, help="Recompute every expense, not only missing ones")
@click.pass_context
def backfill(ctx: click.Context, force_all: bool) -> None:
    """Backfill currency equivalents from historical rates."""
    _, _, backfill_flow, _, _ = create_app_components(ctx.obj["use_storage"])

    result = asyncio.run(backfill_flow.backfill_expense_rates(force_all=force_all))

    click.echo(f"Processed: {result.processed}")
    click.echo(f"Errors: {result.errors}")
    if result.errors:
        sys.exit(1)


@cli.command()
@click.argument("user_id")
@click.option(
    "--locale",
    type=click.Choice([locale.value for locale in SupportedLocale]),
    default=None,
    help="Language of the tips",
)
@click.option("--refresh", is_flag=True, help="Ignore the cached insight")
@click.pass_context
def insight(ctx: click.Context, user_id: str, locale: Optional[str], refresh: bool) -> None:
    """Show financial tips for USER_ID's current month."""
    rate_cache, _, _, insight_flow, _ = create_app_components(ctx.obj["use_storage"])

    async def _run():
        try:
            return await insight_flow.get_financial_insight(
                user_id,
                locale=SupportedLocale(locale) if locale else None,
                force_refresh=refresh,
            )
        finally:
            await rate_cache.aclose()

    result = asyncio.run(_run())

    if not result.success:
        click.echo(result.error)
        sys.exit(1)

    if result.insight.summary:
        click.echo(result.insight.summary)
        click.echo("")
    for tip in result.insight.tips:
        click.echo(f"[{tip.type.value}] {tip.title}")
        click.echo(f"  {tip.body}")
    if result.from_cache:
        click.echo("")
        click.echo(f"(cached, generated {result.insight.generated_at:%Y-%m-%d %H:%M} UTC)")


@cli.command("check-config")
def check_config() -> None:
    """Validate every settings group."""
    results = validate_all_settings()

    ok = True
    for name, valid in results.items():
        if name.endswith("_error"):
            continue
        click.echo(f"{name:<14} {'ok' if valid else 'INVALID'}")
        if not valid:
            ok = False
            click.echo(f"  {results[f'{name}_error']}")

    if not ok:
        sys.exit(1)


if __name__ == "__main__":
    cli()
