"""CLI commands for managing the rotation pool."""

import asyncio
from collections.abc import Sequence

import typer
from rich.console import Console
from rich.markup import escape

from copilot_rotator.client import RotationContext
from copilot_rotator.config.settings import get_settings, setup_logging
from copilot_rotator.exceptions import (
    AccountNotFoundError,
    AccountStoreError,
    RotatorError,
)
from copilot_rotator.rotation.accounts import Credential
from copilot_rotator.rotation.health import format_ms
from copilot_rotator.rotation.probe import ProbeMethod, ProbeResult, ProbeStatus


console = Console(highlight=False)

app = typer.Typer(
    name="copilot-rotator",
    help="Manage the GitHub Copilot accounts used for rotation.",
    add_completion=False,
)


def get_context() -> RotationContext:
    """Build the rotation context from settings."""
    return RotationContext.from_settings(get_settings())


def load_accounts(context: RotationContext) -> list[Credential]:
    try:
        return context.store.list_accounts()
    except AccountStoreError as e:
        console.print(f"[red]Error:[/red] {escape(e.message)}")
        raise typer.Exit(1) from e


def find_account(accounts: Sequence[Credential], name: str) -> Credential:
    """Match by exact label first, then by id prefix."""
    for account in accounts:
        if account.label == name:
            return account
    for account in accounts:
        if account.id.startswith(name):
            return account
    raise AccountNotFoundError(name)


def probe_and_refresh(
    context: RotationContext, accounts: list[Credential]
) -> dict[str, ProbeResult]:
    """Probe every account and adopt resolved usernames as labels."""
    results = asyncio.run(context.prober().probe_all(accounts))
    for account in accounts:
        result = results.get(account.id)
        if result and result.username and result.username != account.label:
            context.store.update_label(account.id, result.username)
            account.label = result.username
    return results


def probe_tag(result: ProbeResult | None) -> str:
    """Short tag describing a probe outcome for the list view."""
    if result is None:
        return ""
    if result.status == ProbeStatus.QUOTA_EXHAUSTED:
        resets = (
            f" resets {format_ms(result.quota_reset_date)}"
            if result.quota_reset_date
            else ""
        )
        return f" [QUOTA EXHAUSTED{resets}]"
    if result.status == ProbeStatus.ERROR:
        if result.http_status:
            return f" [ERROR {result.http_status}]"
        return " [UNREACHABLE]"
    if result.status == ProbeStatus.OK and result.method == ProbeMethod.USER_API:
        return " [QUOTA UNKNOWN]"
    return ""


def quota_line(result: ProbeResult | None) -> str | None:
    """Quota or probe summary line for the status view."""
    if result is None:
        return None
    if result.status == ProbeStatus.QUOTA_EXHAUSTED:
        resets = (
            f" (resets {format_ms(result.quota_reset_date)})"
            if result.quota_reset_date
            else ""
        )
        return f"  Quota: EXHAUSTED{resets}"
    if result.status == ProbeStatus.OK:
        if result.method == ProbeMethod.USER_API:
            return "  Quota: unknown (token valid, Copilot endpoint unavailable)"
        return "  Quota: available"
    if result.status == ProbeStatus.ERROR:
        if result.http_status:
            return f"  Probe: ERROR {result.http_status}"
        return "  Probe: UNREACHABLE"
    return None


def _print(line: str) -> None:
    console.print(escape(line), soft_wrap=True)


@app.callback(invoke_without_command=True)
def main_callback(ctx: typer.Context) -> None:
    """Configure logging; runs ``list`` when no command is given."""
    try:
        settings = get_settings()
    except RotatorError as e:
        console.print(f"[red]Error:[/red] {escape(e.message)}")
        raise typer.Exit(1) from e
    setup_logging(settings.log_level, settings.log_json)
    if ctx.invoked_subcommand is None:
        list_accounts()


@app.command("list")
def list_accounts() -> None:
    """Probe and list accounts in priority order."""
    context = get_context()
    accounts = load_accounts(context)
    if not accounts:
        console.print("[yellow]No GitHub Copilot accounts configured.[/yellow]")
        return

    results = probe_and_refresh(context, accounts)
    now = context.registry.now()
    for account in accounts:
        health = context.registry.get(account.id)
        limited = (
            f" [RATE LIMITED until {format_ms(health.rate_limited_until)}]"
            if health is not None and health.rate_limited_until > now
            else ""
        )
        _print(
            f"#{account.priority + 1} {account.label} ({account.domain}) "
            f"[{account.short_id}]{limited}{probe_tag(results.get(account.id))}"
        )


@app.command("status")
def status() -> None:
    """Probe accounts and show detailed health."""
    context = get_context()
    accounts = load_accounts(context)
    if not accounts:
        console.print("[yellow]No accounts configured.[/yellow]")
        return

    results = probe_and_refresh(context, accounts)
    now = context.registry.now()
    for index, account in enumerate(accounts):
        health = context.registry.get(account.id)
        score = health.score if health else 100
        failures = health.consecutive_failures if health else 0
        limited = (
            f"YES until {format_ms(health.rate_limited_until)}"
            if health is not None and health.rate_limited_until > now
            else "no"
        )
        if index:
            console.print()
        _print(f"{account.label} ({account.domain})")
        _print(f"  Priority: #{account.priority + 1}")
        _print(f"  Health: {score}/100")
        _print(f"  Rate limited: {limited}")
        _print(f"  Consecutive failures: {failures}")
        line = quota_line(results.get(account.id))
        if line:
            _print(line)


@app.command("remove")
def remove(
    name: str = typer.Argument(..., help="Account label or id prefix"),
) -> None:
    """Remove an account from the pool."""
    context = get_context()
    try:
        account = find_account(load_accounts(context), name)
    except AccountNotFoundError as e:
        console.print(f"[red]Error:[/red] {escape(e.message)}")
        raise typer.Exit(1) from e

    remaining = context.store.remove(account.id)
    console.print(
        f"[green]Removed {escape(account.label)}.[/green] "
        f"{len(remaining)} account(s) remaining."
    )


@app.command("reorder")
def reorder(
    names: list[str] = typer.Argument(
        ..., help="Labels or id prefixes, highest priority first"
    ),
) -> None:
    """Set the priority order of accounts."""
    context = get_context()
    accounts = load_accounts(context)
    try:
        ids = [find_account(accounts, name).id for name in names]
    except AccountNotFoundError as e:
        console.print(f"[red]Error:[/red] {escape(e.message)}")
        raise typer.Exit(1) from e

    context.store.reorder(ids)
    console.print("[green]Accounts reordered successfully.[/green]")


def main() -> None:
    """Entry point for the ``copilot-rotator`` script."""
    app()


if __name__ == "__main__":
    main()
