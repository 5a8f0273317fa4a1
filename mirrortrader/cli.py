"""
mirror-trader command line.

Usage:
    mirror-trader run
    mirror-trader preview-size --your-balance 1000 --trader-balance 10000 --trade-usd 500 --price 0.40
    mirror-trader list-trader 0xTRADER 0xFINDER
"""

from decimal import Decimal
from typing import Optional
import asyncio
import logging

import typer
from rich.console import Console
from rich.table import Table
from rich import box

from mirrortrader.config import BotConfig
from mirrortrader.sizing import compute_proportional_sizing

app = typer.Typer(help="Copy-trade selected Polymarket traders.")
console = Console()

logger = logging.getLogger(__name__)


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    # Keep HTTP client chatter out of the trading log
    logging.getLogger("httpx").setLevel(logging.WARNING)


async def _run_engine(config: BotConfig) -> None:
    from mirrortrader.adapters.polymarket import PolymarketAdapter, UsdcTransfer
    from mirrortrader.engine import CopyEngine
    from mirrortrader.funds.fees import FeeDistributor, RegistryClient

    adapter = PolymarketAdapter(config.polymarket, funder=config.proxy_wallet or None)
    registry: Optional[RegistryClient] = None
    fee_distributor = None
    cashout_handler = None

    if config.polymarket.private_key:
        transfer = UsdcTransfer(config.polymarket)
        if transfer.address.lower() != config.proxy_wallet.lower():
            logger.warning(
                f"Fees and cashouts are paid from signer {transfer.address}, "
                f"not proxy wallet {config.proxy_wallet}; keep USDC there for fees"
            )
        if config.fees.platform_wallet:
            registry = RegistryClient(config.fees.registry_url)
            fee_distributor = FeeDistributor(registry, transfer, config.fees)
        if config.cashout.enabled:
            cashout_handler = transfer

    engine = CopyEngine(
        config,
        adapter,
        fee_distributor=fee_distributor,
        cashout_handler=cashout_handler,
    )
    try:
        await engine.run()
    finally:
        await engine.stop()
        await engine.drain()
        await adapter.aclose()
        if registry is not None:
            await registry.aclose()


@app.command()
def run(verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging")) -> None:
    """
    Start copy trading with configuration from the environment.
    """
    _configure_logging(verbose)
    try:
        config = BotConfig.from_env()
    except ValueError as e:
        console.print(f"[bold red]Invalid configuration:[/bold red] {e}")
        raise typer.Exit(code=1)

    if not config.traders:
        console.print("[bold red]USER_ADDRESSES is empty; nothing to copy.[/bold red]")
        raise typer.Exit(code=1)
    if not config.proxy_wallet:
        console.print("[bold red]PROXY_WALLET is required.[/bold red]")
        raise typer.Exit(code=1)

    console.print(f"[bold green]Copying {len(config.traders)} trader(s)[/bold green]")
    try:
        asyncio.run(_run_engine(config))
    except KeyboardInterrupt:
        console.print("[yellow]Interrupted, engine stopped.[/yellow]")


@app.command()
def preview_size(
    your_balance: float = typer.Option(..., help="Your spendable USDC"),
    trader_balance: float = typer.Option(..., help="Trader's estimated capital"),
    trade_usd: float = typer.Option(..., help="Trader's fill size in USD"),
    price: float = typer.Option(..., help="Fill price (0-1)"),
    multiplier: float = typer.Option(1.0, help="Size multiplier"),
    max_trade: Optional[float] = typer.Option(None, help="Cap per trade in USD"),
    min_order_size: float = typer.Option(5.0, help="Market minimum in shares"),
) -> None:
    """
    Show how a trader's fill would be sized for your balance.
    """
    result = compute_proportional_sizing(
        your_balance=Decimal(str(your_balance)),
        trader_balance=Decimal(str(trader_balance)),
        trader_trade_usd=Decimal(str(trade_usd)),
        multiplier=Decimal(str(multiplier)),
        price=Decimal(str(price)),
        max_trade_amount=Decimal(str(max_trade)) if max_trade is not None else None,
        min_order_size=Decimal(str(min_order_size)),
    )

    table = Table(title="Copy sizing", box=box.ROUNDED)
    table.add_column("Field", style="cyan")
    table.add_column("Value", justify="right")
    table.add_row("Ratio", f"{result.ratio:.6f}")
    table.add_row("Target USD", f"${result.target_usd_size:.2f}")
    table.add_row("Target shares", str(result.target_shares))
    if result.accepted:
        table.add_row("Decision", "[bold green]COPY[/bold green]")
    else:
        table.add_row("Decision", f"[bold red]SKIP ({result.reason})[/bold red]")
    console.print(table)


@app.command()
def list_trader(
    trader: str = typer.Argument(..., help="Wallet to list"),
    finder: str = typer.Argument(..., help="Your wallet, credited as lister"),
) -> None:
    """
    Register a trader wallet in the registry with you as the lister.
    """
    from mirrortrader.funds.fees import RegistryClient

    config = BotConfig.from_env()

    async def _add() -> dict:
        client = RegistryClient(config.fees.registry_url)
        try:
            return await client.add_wallet(trader, finder)
        finally:
            await client.aclose()

    outcome = asyncio.run(_add())
    if outcome["success"]:
        console.print(f"[bold green]Listed {trader}[/bold green]")
    else:
        console.print(f"[bold red]Listing failed:[/bold red] {outcome['message']}")
        raise typer.Exit(code=1)


if __name__ == "__main__":
    app()
