"""CLI for Cryptodial - run and inspect the USSD wallet service from the terminal."""

from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from cryptodial.chains import CHAINS, ChainRegistry, format_amount, get_chain, parse_chain_id
from cryptodial.config import (
    CryptodialConfig,
    get_config_path,
    is_unresolved,
    load_config,
    save_config,
)
from cryptodial.errors import CryptodialError

app = typer.Typer(
    name="cryptodial",
    help="Custodial multi-chain wallet served over USSD.",
    no_args_is_help=True,
)
console = Console()

_config_path: Path | None = None


def _version_callback(value: bool):
    if value:
        from importlib.metadata import version
        console.print(f"cryptodial {version('cryptodial')}")
        raise typer.Exit()


@app.callback()
def main(
    config: Path = typer.Option(
        None,
        "--config",
        "-c",
        help="Path to cryptodial.yaml",
        envvar="CRYPTODIAL_CONFIG",
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging"),
    version: bool = typer.Option(
        False,
        "--version",
        "-V",
        help="Show version and exit",
        callback=_version_callback,
        is_eager=True,
    ),
):
    """Custodial multi-chain wallet served over USSD."""
    global _config_path
    _config_path = config
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(name)s: %(message)s",
        handlers=[RichHandler(console=console, show_path=False)],
    )


def _run(coro):
    """Run an async function synchronously."""
    try:
        loop = asyncio.get_event_loop()
        if loop.is_running():
            import concurrent.futures
            with concurrent.futures.ThreadPoolExecutor() as pool:
                return pool.submit(asyncio.run, coro).result()
        return loop.run_until_complete(coro)
    except RuntimeError:
        return asyncio.run(coro)


def _load() -> CryptodialConfig:
    try:
        return load_config(_config_path)
    except Exception as e:
        console.print(f"[red]Invalid configuration:[/red] {e}")
        raise typer.Exit(1)


def _parse_chain(value: str):
    try:
        return parse_chain_id(value)
    except CryptodialError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(1)


# ------------------------------------------------------------------
# init / serve
# ------------------------------------------------------------------


@app.command()
def init(
    name: str = typer.Option("Cryptodial", "--name", "-n", help="Service name shown to callers"),
    country_code: str = typer.Option("254", "--country-code", help="Three-digit code in wallet IDs"),
    force: bool = typer.Option(False, "--force", "-f", help="Overwrite an existing config"),
):
    """Write a default configuration file."""
    path = get_config_path(_config_path)
    if path.exists() and not force:
        console.print(f"[yellow]{path} already exists.[/yellow] Use --force to overwrite.")
        raise typer.Exit(1)

    config = CryptodialConfig(name=name, country_code=country_code)
    save_config(config, path)
    console.print(f"[green]Wrote {path}[/green]")
    console.print("Set [bold]ENCRYPTION_SALT[/bold] (and AT_USERNAME / AT_API_KEY for SMS) before serving.")


@app.command()
def serve(
    port: int = typer.Option(None, "--port", "-p", help="Port to serve on"),
    host: str = typer.Option(None, "--host", help="Host to bind to"),
    log_level: str = typer.Option("info", "--log-level", help="uvicorn log level"),
):
    """Serve the USSD callback (POST /ussd)."""
    from cryptodial.server import run_server

    config = _load()
    if is_unresolved(config.vault.salt):
        console.print("[red]vault.salt is not set.[/red] Export ENCRYPTION_SALT first.")
        raise typer.Exit(1)

    bind_host = host or config.server.host
    bind_port = port or config.server.port
    console.print(f"[bold green]Serving USSD callback at http://{bind_host}:{bind_port}/ussd[/bold green]")
    run_server(config, host=bind_host, port=bind_port, log_level=log_level)


# ------------------------------------------------------------------
# chains
# ------------------------------------------------------------------


@app.command()
def chains():
    """List supported chains and their configured endpoints."""
    config = _load()
    table = Table(title="Supported Chains")
    table.add_column("Chain", style="cyan")
    table.add_column("Name")
    table.add_column("Prefix")
    table.add_column("Symbol")
    table.add_column("RPC", style="dim")

    for chain_id, spec in CHAINS.items():
        endpoint = getattr(config.chains, chain_id.value)
        table.add_row(
            chain_id.value,
            spec.display_name,
            spec.wallet_prefix,
            spec.native_symbol,
            endpoint.rpc_url,
        )
    console.print(table)


@app.command()
def balance(
    chain: str = typer.Argument(..., help="Chain id (evm, binance, polygon, solana)"),
    address: str = typer.Argument(..., help="On-chain address"),
):
    """Query the live balance of an address."""
    chain_id = _parse_chain(chain)
    config = _load()

    async def _balance():
        registry = ChainRegistry(config.chains)
        try:
            return await registry.resolve(chain_id).get_balance(address)
        finally:
            await registry.aclose()

    try:
        value = _run(_balance())
    except CryptodialError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(1)
    console.print(f"[bold]{address}:[/bold] {format_amount(value, chain_id)}")


@app.command()
def history(
    chain: str = typer.Argument(..., help="Chain id (evm, binance, polygon, solana)"),
    selector: list[str] = typer.Argument(..., help="Block height, block/tx hash, or several tx hashes"),
):
    """Look up a block or transactions on chain."""
    chain_id = _parse_chain(chain)
    config = _load()
    if len(selector) > 1:
        query = list(selector)
    elif selector[0].isdigit():
        query = int(selector[0])
    else:
        query = selector[0]

    async def _history():
        registry = ChainRegistry(config.chains)
        try:
            return await registry.resolve(chain_id).get_history(query)
        finally:
            await registry.aclose()

    try:
        result = _run(_history())
    except CryptodialError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(1)

    if not result:
        console.print("[yellow]No transactions.[/yellow]")
        return
    console.print_json(json.dumps(result, default=str))


# ------------------------------------------------------------------
# wallet
# ------------------------------------------------------------------

wallet_app = typer.Typer(
    name="wallet",
    help="Inspect custodial wallets.",
    no_args_is_help=True,
)
app.add_typer(wallet_app, name="wallet")


@wallet_app.command("show")
def wallet_show(
    wallet_id: str = typer.Argument(..., help="Wallet ID, e.g. ETN254#1234567890"),
    transactions: int = typer.Option(10, "--transactions", "-t", help="Recent transfers to list"),
):
    """Show a wallet's record and recent transfers (never its key)."""
    from cryptodial.storage import get_database
    from cryptodial.wallets import TransactionLedger, WalletDirectory

    config = _load()

    async def _show():
        db = get_database(config.storage.db_path)
        await db.connect()
        try:
            record = await WalletDirectory(db).find_by_wallet_id(wallet_id.upper())
            entries = []
            if record is not None:
                entries = await TransactionLedger(db).list_for_wallet(record.wallet_id, limit=transactions)
            return record, entries
        finally:
            await db.close()

    try:
        record, entries = _run(_show())
    except CryptodialError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(1)

    if record is None:
        console.print(f"[yellow]No wallet {wallet_id}.[/yellow]")
        raise typer.Exit(1)

    spec = get_chain(record.chain_id)
    console.print(f"[bold]{record.wallet_id}[/bold] ({spec.display_name})")
    console.print(f"  Address: {record.address}")
    console.print(f"  Phone:   {record.phone_number}")
    console.print(f"  Created: {record.created_at:%Y-%m-%d %H:%M}")

    if not entries:
        console.print("[dim]No transfers.[/dim]")
        return

    table = Table(title="Recent Transfers")
    table.add_column("When", style="dim")
    table.add_column("From")
    table.add_column("To")
    table.add_column("Amount", justify="right")
    table.add_column("Status")
    table.add_column("Tx", style="dim")

    status_style = {"completed": "green", "pending": "yellow", "failed": "red"}
    for entry in entries:
        style = status_style.get(entry.status.value, "white")
        table.add_row(
            f"{entry.created_at:%Y-%m-%d %H:%M}",
            entry.sender_wallet_id,
            entry.recipient_wallet_id,
            f"{entry.amount} {spec.native_symbol}",
            f"[{style}]{entry.status.value}[/{style}]",
            entry.tx_hash or (entry.error or "")[:40],
        )
    console.print(table)


# ------------------------------------------------------------------
# sessions
# ------------------------------------------------------------------

sessions_app = typer.Typer(
    name="sessions",
    help="Maintain the USSD session store.",
    no_args_is_help=True,
)
app.add_typer(sessions_app, name="sessions")


@sessions_app.command("sweep")
def sessions_sweep():
    """Delete expired sessions now."""
    from cryptodial.sessions import SessionStore
    from cryptodial.storage import get_database

    config = _load()
    if config.sessions.db_path == ":memory:":
        console.print("[yellow]Sessions are in memory; the running server sweeps them itself.[/yellow]")
        return

    async def _sweep():
        db = get_database(config.sessions.db_path)
        await db.connect()
        try:
            store = SessionStore(db, ttl_seconds=config.sessions.ttl_seconds)
            return await store.sweep_expired()
        finally:
            await db.close()

    try:
        removed = _run(_sweep())
    except CryptodialError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(1)
    console.print(f"[green]Removed {removed} expired session(s).[/green]")
