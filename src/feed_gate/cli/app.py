"""CLI for feed-gate - operate the payment engine from the terminal."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table

app = typer.Typer(
    name="feed-gate",
    help="Bitcoin-paid access to a content feed: balances, accounts and monthly settlement.",
    no_args_is_help=True,
)
account_app = typer.Typer(help="Manage reader accounts.", no_args_is_help=True)
app.add_typer(account_app, name="account")

console = Console()

_base_dir: Path | None = None


def _version_callback(value: bool):
    if value:
        from importlib.metadata import version
        console.print(f"feed-gate {version('feed-gate')}")
        raise typer.Exit()


@app.callback()
def main(
    base_dir: Path = typer.Option(
        None,
        "--dir",
        "-d",
        help="Directory containing .feed-gate/ (default: current directory)",
        envvar="FEED_GATE_DIR",
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
    version: bool = typer.Option(
        False,
        "--version",
        "-V",
        help="Show version and exit",
        callback=_version_callback,
        is_eager=True,
    ),
):
    """Bitcoin-paid access to a content feed: balances, accounts and monthly settlement."""
    global _base_dir
    _base_dir = base_dir
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(name)s: %(message)s",
        handlers=[RichHandler(console=console, show_path=False)],
    )


def _run(coro):
    """Run an async function synchronously."""
    return asyncio.run(coro)


def _fail(message: str) -> None:
    console.print(f"[red]{message}[/red]")
    raise typer.Exit(1)


# ------------------------------------------------------------------
# init / settlement
# ------------------------------------------------------------------


@app.command()
def init():
    """Write a default .feed-gate/config.yaml."""
    from feed_gate.config import get_config_dir
    from feed_gate.core.gateway import Gateway

    config_path = get_config_dir(_base_dir) / "config.yaml"
    if config_path.exists():
        _fail(f"Configuration already exists at {config_path}.")

    async def _init():
        gateway = await Gateway.init(_base_dir)
        await gateway.shutdown()

    _run(_init())
    console.print(Panel(
        f"[bold green]Configuration written.[/bold green]\n\n"
        f"Edit [cyan]{config_path}[/cyan] to set the node URL, RPC credentials\n"
        f"and the collection address.  Values like [dim]${{BITCOIN_RPC_PASSWORD}}[/dim]\n"
        f"are read from the environment.",
        title="feed-gate",
    ))


@app.command("next-sweep")
def next_sweep():
    """Show when the next monthly settlement sweep will run."""
    from datetime import datetime

    from feed_gate.config import get_config_dir, load_config
    from feed_gate.payments.schedule import next_sweep_at

    config_path = get_config_dir(_base_dir) / "config.yaml"
    if not config_path.exists():
        _fail(f"No configuration at {config_path}. Run 'feed-gate init' first.")
    config = load_config(config_path)
    target = next_sweep_at(datetime.now(config.sweep.tzinfo))
    console.print(f"Next sweep: [cyan]{target.isoformat()}[/cyan] ({config.sweep.timezone})")


@app.command()
def sweep():
    """Run one settlement sweep now and print its report."""
    from feed_gate.core.gateway import Gateway

    async def _sweep():
        gateway = await Gateway.load(_base_dir)
        try:
            return await gateway.sweeper.run_cycle()
        finally:
            await gateway.shutdown()

    try:
        report = _run(_sweep())
    except (FileNotFoundError, ValueError) as e:
        _fail(str(e))

    table = Table(title="Settlement Sweep")
    table.add_column("Field", style="cyan")
    table.add_column("Value")
    table.add_row("Outcome", report.outcome.value)
    table.add_row("Addresses", str(report.address_count))
    table.add_row("Dropped", ", ".join(report.dropped_addresses) or "-")
    table.add_row("Outputs", str(report.utxo_count))
    table.add_row("Total (BTC)", str(report.total))
    table.add_row("Payout (BTC)", str(report.payout))
    table.add_row("Txid", report.txid or "-")
    if report.failed_phase is not None:
        table.add_row("Failed phase", f"[red]{report.failed_phase.value}[/red]")
        table.add_row("Error", f"[red]{report.error}[/red]")
    console.print(table)
    if not report.ok:
        raise typer.Exit(1)


@app.command()
def run():
    """Run the monthly settlement sweeper until interrupted (Ctrl+C)."""
    from feed_gate.core.gateway import Gateway

    async def _daemon():
        gateway = await Gateway.load(_base_dir)
        try:
            if not gateway.start_sweeper():
                return False
            await asyncio.Event().wait()
        finally:
            await gateway.shutdown()

    try:
        if _run(_daemon()) is False:
            _fail("Settlement sweep is disabled in config (sweep.enabled); nothing to run.")
    except KeyboardInterrupt:
        console.print("\n[yellow]Sweeper stopped.[/yellow]")
    except (FileNotFoundError, ValueError) as e:
        _fail(str(e))


@app.command()
def balance(
    addresses: list[str] = typer.Argument(help="Addresses to total"),
):
    """Show the aggregated unspent balance of one or more addresses."""
    from feed_gate.core.gateway import Gateway
    from feed_gate.rpc.errors import RpcError

    async def _balance():
        gateway = await Gateway.load(_base_dir)
        try:
            return await gateway.balance_of(addresses), gateway.gate.threshold
        finally:
            await gateway.shutdown()

    try:
        total, threshold = _run(_balance())
    except (FileNotFoundError, RpcError, ValueError) as e:
        _fail(str(e))

    colour = "green" if total >= threshold else "yellow"
    console.print(f"[bold]Balance:[/bold] [{colour}]{total} BTC[/{colour}] (monthly minimum {threshold})")


# ------------------------------------------------------------------
# accounts
# ------------------------------------------------------------------


def _print_overview(overview) -> None:
    status = "[green]entitled[/green]" if overview.entitled else "[yellow]payment due[/yellow]"
    lines = [
        f"Balance: [bold]{overview.balance} BTC[/bold]  ({status})",
        "",
        "Addresses:",
    ]
    lines += [f"  [cyan]{addr}[/cyan]" for addr in overview.addresses]
    console.print(Panel("\n".join(lines), title=overview.username))


def _account_command(action: str, username: str, password: str) -> None:
    from feed_gate.accounts.manager import AccountError
    from feed_gate.core.gateway import Gateway
    from feed_gate.rpc.errors import RpcError

    async def _act():
        gateway = await Gateway.load(_base_dir)
        try:
            handler = getattr(gateway.accounts, action)
            return await handler(username, password)
        finally:
            await gateway.shutdown()

    try:
        overview = _run(_act())
    except (FileNotFoundError, AccountError, RpcError, ValueError) as e:
        _fail(str(e))
    _print_overview(overview)


@account_app.command("register")
def account_register(username: str = typer.Argument(help="New account name")):
    """Register an account and mint its first payment address."""
    password = console.input("[bold]Password: [/bold]", password=True)
    confirm = console.input("[bold]Confirm password: [/bold]", password=True)
    if password != confirm:
        _fail("Passwords do not match.")
    _account_command("register", username, password)


@account_app.command("show")
def account_show(username: str = typer.Argument(help="Account name")):
    """Show an account's balance, addresses and entitlement."""
    password = console.input("[bold]Password: [/bold]", password=True)
    _account_command("login", username, password)


@account_app.command("new-address")
def account_new_address(username: str = typer.Argument(help="Account name")):
    """Mint one more payment address for an account."""
    password = console.input("[bold]Password: [/bold]", password=True)
    _account_command("new_address", username, password)
