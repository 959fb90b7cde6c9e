"""CLI for multichain-wallet - a multi-chain custodial wallet from the terminal."""

from __future__ import annotations

import asyncio
import logging
from typing import AsyncIterator, Awaitable, Callable, TypeVar

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from multichain_wallet.wallet.errors import ShortfallCause, WalletError

T = TypeVar("T")

app = typer.Typer(
    name="multichain-wallet",
    help="One wallet, many EVM chains: balances, custom tokens, and transfers.",
    no_args_is_help=True,
)
console = Console()

_selected_user: str = "local"


def _version_callback(value: bool):
    if value:
        from importlib.metadata import version
        console.print(f"multichain-wallet {version('multichain-wallet')}")
        raise typer.Exit()


@app.callback()
def main(
    user: str = typer.Option(
        "local",
        "--user",
        "-u",
        help="User id to operate as",
        envvar="MULTICHAIN_WALLET_USER",
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
    """One wallet, many EVM chains: balances, custom tokens, and transfers."""
    global _selected_user
    _selected_user = user
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _run(coro: Awaitable[T]) -> T:
    """Run an async function synchronously."""
    return asyncio.run(coro)


def _with_service(action: Callable[..., Awaitable[T]]) -> T:
    """Open the service, run *action(service)*, and always shut down.

    A :class:`WalletError` is rendered and turned into exit code 1.
    """
    from multichain_wallet.core.service import WalletService

    async def _go():
        service = await WalletService.open()
        try:
            return await action(service)
        finally:
            await service.shutdown()

    try:
        return _run(_go())
    except WalletError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(1)


# ------------------------------------------------------------------
# setup
# ------------------------------------------------------------------


@app.command()
def init(
    home_chain: int = typer.Option(1, "--home-chain", help="Chain id new wallets start on"),
):
    """Write a default config to .multichain-wallet/config.yaml."""
    from multichain_wallet.config import WalletEngineConfig, build_registry, find_config, save_config

    config_path = find_config()
    if config_path.exists():
        console.print(f"[yellow]Config already exists at {config_path}[/yellow]")
        raise typer.Exit(1)

    config = WalletEngineConfig(home_chain_id=home_chain)
    try:
        build_registry(config)
    except ValueError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(1)
    save_config(config, config_path)
    console.print(f"[green]Config written to {config_path}[/green]")


@app.command()
def chains():
    """List supported chains."""

    async def _chains(service):
        return service.list_chains(_selected_user)

    infos = _with_service(_chains)

    table = Table(title="Supported Chains")
    table.add_column("", width=2)
    table.add_column("Chain ID", justify="right", style="dim")
    table.add_column("Name", style="cyan")
    table.add_column("Symbol")
    table.add_column("Explorer", style="dim")
    for info in infos:
        table.add_row(
            "[green]*[/green]" if info.current else "",
            str(info.chain_id),
            f"{info.icon} {info.name}",
            info.native_symbol,
            info.explorer_url,
        )
    console.print(table)


# ------------------------------------------------------------------
# wallet
# ------------------------------------------------------------------


@app.command()
def create():
    """Generate a new wallet (one per user)."""

    async def _create(service):
        return await service.create_wallet(_selected_user)

    created = _with_service(_create)
    console.print(Panel(
        f"[bold green]Wallet created![/bold green]\n\n"
        f"Address: [cyan]{created.address}[/cyan]\n\n"
        f"Recovery phrase:\n[bold]{created.mnemonic.get_secret_value()}[/bold]\n\n"
        f"[yellow]Save the recovery phrase securely and never share it.[/yellow]\n"
        f"[dim]This wallet works on every supported chain. "
        f"Default chain: {created.chain.icon} {created.chain.name}[/dim]",
        title="Multi-Chain Wallet",
    ))


@app.command()
def address():
    """Show the address to receive funds on the current chain."""

    async def _address(service):
        return service.receive_info(_selected_user)

    info = _with_service(_address)
    console.print(Panel(
        f"[cyan]{info.address}[/cyan]\n\n"
        f"Only send {info.chain.native_symbol} and {info.chain.name} tokens to this address.\n"
        f"[dim]Explorer: {info.explorer_address_url}[/dim]",
        title=f"Receive on {info.chain.icon} {info.chain.name}",
    ))


@app.command()
def balance():
    """Show native and custom token balances on the current chain."""

    async def _balance(service):
        return await service.get_report(_selected_user)

    report = _with_service(_balance)
    _print_report(report)


def _print_report(report) -> None:
    table = Table(title=f"Balance on {report.chain_name}")
    table.add_column("Asset", style="cyan")
    table.add_column("Balance", justify="right")
    table.add_row(report.native_symbol, report.native)
    for token in report.tokens:
        table.add_row(token.symbol, token.formatted)
    console.print(f"Address: [cyan]{report.address}[/cyan]")
    console.print(table)
    if report.is_empty:
        console.print(f"[dim]Send some {report.native_symbol} to this address to get started.[/dim]")


@app.command()
def switch(chain_id: int = typer.Argument(help="Chain id to switch to (see 'chains')")):
    """Switch the current chain."""

    async def _switch(service):
        return await service.switch_chain(_selected_user, chain_id)

    info = _with_service(_switch)
    console.print(f"[green]Switched to {info.icon} [bold]{info.name}[/bold][/green]")


# ------------------------------------------------------------------
# tokens sub-commands
# ------------------------------------------------------------------

tokens_app = typer.Typer(
    name="tokens",
    help="Manage custom ERC-20 tokens on the current chain.",
    no_args_is_help=True,
)
app.add_typer(tokens_app, name="tokens")


@tokens_app.command("add")
def tokens_add(contract: str = typer.Argument(help="Token contract address (0x...)")):
    """Register an ERC-20 token contract."""

    async def _add(service):
        record = await service.register_token(_selected_user, contract)
        return record, service.current_chain(_selected_user)

    console.print("[dim]Fetching token information...[/dim]")
    record, chain = _with_service(_add)
    console.print(Panel(
        f"[bold]{record.name} ({record.symbol})[/bold]\n"
        f"Chain: {chain.icon} {chain.name}\n"
        f"Contract: [cyan]{record.contract_address}[/cyan]\n"
        f"Decimals: {record.decimals}",
        title="Token Added",
    ))


@tokens_app.command("list")
def tokens_list():
    """List registered tokens on the current chain."""

    async def _list(service):
        return service.list_tokens(_selected_user)

    listing = _with_service(_list)
    if not listing.tokens:
        console.print(
            f"[dim]No custom tokens on {listing.chain.icon} {listing.chain.name} yet. "
            f"Use 'tokens add' to add one.[/dim]"
        )
        return

    table = Table(title=f"Custom Tokens on {listing.chain.name}")
    table.add_column("#", justify="right", style="dim")
    table.add_column("Token", style="cyan")
    table.add_column("Contract", style="dim")
    for i, token in enumerate(listing.tokens, 1):
        table.add_row(str(i), f"{token.name} ({token.symbol})", token.contract_address)
    console.print(table)


# ------------------------------------------------------------------
# transfers
# ------------------------------------------------------------------


async def _render_transfer(chain, events: AsyncIterator) -> bool:
    """Print progress of a transfer running on *chain*; return True if it confirmed."""
    from multichain_wallet.wallet.engine import AbortReason, TransferState

    async for event in events:
        if event.state is TransferState.PENDING:
            console.print(Panel(
                f"[bold green]Transaction sent![/bold green]\n\n"
                f"Tx: [cyan]{event.tx_hash}[/cyan]\n"
                f"Explorer: {chain.tx_url(event.tx_hash)}\n\n"
                f"[dim]Waiting for confirmation...[/dim]",
                title=f"{chain.icon} {chain.name}",
            ))
        elif not event.terminal:
            console.print(f"[dim]{event.state.value}...[/dim]")
            continue

        outcome = event.outcome
        if outcome is None:
            continue
        if outcome.status is TransferState.CONFIRMED:
            console.print(f"[green]Transaction confirmed on {chain.name}! Block: {outcome.block_number}[/green]")
            return True
        if outcome.status is TransferState.FAILED:
            console.print(f"[red]Transaction {outcome.tx_hash} failed (reverted).[/red]")
            return False

        shortfall = outcome.shortfall
        if shortfall is not None:
            from multichain_wallet.wallet.units import format_amount

            if shortfall.cause is ShortfallCause.AMOUNT:
                console.print(f"[red]Insufficient {chain.native_symbol} balance.[/red]")
            else:
                fee = format_amount(shortfall.fee or 0, chain.native_decimals, chain.native_symbol)
                console.print(f"[red]Insufficient balance for gas fees.[/red] Gas fee: ~{fee}")
        elif outcome.reason is AbortReason.CONFIRMATION_UNKNOWN:
            console.print(
                f"[yellow]Outcome of {outcome.tx_hash} is unknown: {outcome.detail}.[/yellow]\n"
                f"[dim]It may still be mined; check {chain.tx_url(outcome.tx_hash)}[/dim]"
            )
        else:
            console.print(f"[red]Transfer aborted ({outcome.reason.value}): {outcome.detail}[/red]")
        return False
    return False


@app.command()
def send(
    to: str = typer.Argument(help="Recipient address (0x...)"),
    amount: str = typer.Argument(help="Amount of the native asset (e.g. 0.01)"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation"),
):
    """Send the native asset on the current chain."""

    if not yes:
        typer.confirm(f"Send {amount} to {to}?", abort=True)

    async def _send(service):
        chain = service.current_chain(_selected_user)
        return await _render_transfer(chain, service.send_transfer(_selected_user, to, amount))

    if not _with_service(_send):
        raise typer.Exit(1)


# ------------------------------------------------------------------
# chat
# ------------------------------------------------------------------

_CHAT_HELP = (
    "/balance  /receive  /chains  /switch <id>  /send  /addtoken  /tokens  /quit\n"
    "After /send or /addtoken, type the requested details on the next line."
)


@app.command()
def chat():
    """Interactive, message-driven session (mirrors the chat front end)."""
    from multichain_wallet.core.conversation import ConversationStep

    async def _chat(service):
        console.print(Panel(_CHAT_HELP, title="Multi-Chain Wallet"))
        if not service.has_wallet(_selected_user):
            console.print("[dim]No wallet yet. Use /create to make one.[/dim]")
        while True:
            line = (await asyncio.to_thread(console.input, "[bold]> [/bold]")).strip()
            if not line:
                continue
            command, _, arg = line.partition(" ")
            try:
                if command in ("/quit", "/exit"):
                    return
                elif command == "/create":
                    created = await service.create_wallet(_selected_user)
                    console.print(f"Address: [cyan]{created.address}[/cyan]")
                    console.print(f"Recovery phrase: [bold]{created.mnemonic.get_secret_value()}[/bold]")
                elif command == "/balance":
                    _print_report(await service.get_report(_selected_user))
                elif command == "/receive":
                    info = service.receive_info(_selected_user)
                    console.print(f"[cyan]{info.address}[/cyan]  [dim]{info.explorer_address_url}[/dim]")
                elif command == "/chains":
                    for info in service.list_chains(_selected_user):
                        marker = "*" if info.current else " "
                        console.print(f"{marker} {info.chain_id:>6}  {info.icon} {info.name}")
                elif command == "/switch":
                    try:
                        chain_id = int(arg)
                    except ValueError:
                        console.print("[red]Usage: /switch <chain id>[/red]")
                        continue
                    info = await service.switch_chain(_selected_user, chain_id)
                    console.print(f"[green]Switched to {info.icon} {info.name}[/green]")
                elif command == "/tokens":
                    listing = service.list_tokens(_selected_user)
                    for i, token in enumerate(listing.tokens, 1):
                        console.print(f"{i}. {token.name} ({token.symbol}) [dim]{token.contract_address}[/dim]")
                    if not listing.tokens:
                        console.print("[dim]No custom tokens added yet.[/dim]")
                elif command == "/addtoken":
                    chain = service.begin_add_token(_selected_user)
                    console.print(f"Send the token contract address for {chain.icon} {chain.name}:")
                elif command == "/send":
                    chain = service.begin_send(_selected_user)
                    console.print(
                        f"Send {chain.native_symbol} on {chain.name}.\n"
                        f"Format: recipient_address amount"
                    )
                elif command.startswith("/"):
                    console.print(_CHAT_HELP)
                else:
                    result = await service.handle_input(_selected_user, line)
                    if result.step is ConversationStep.AWAITING_TOKEN_ADDRESS:
                        token = result.token
                        console.print(f"[green]Token added: {token.name} ({token.symbol})[/green]")
                    else:
                        chain = service.registry.describe(result.chain_id)
                        await _render_transfer(chain, result.transfer)
            except WalletError as e:
                console.print(f"[red]{e}[/red]")

    _with_service(_chat)


if __name__ == "__main__":
    app()
