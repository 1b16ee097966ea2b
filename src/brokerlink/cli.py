"""Typer-based CLI for inspecting configured brokers."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Any, Awaitable, Callable, NoReturn, Optional

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from .config import load_settings
from .connectors.base import BaseConnector
from .connectors.registry import ConnectorRegistry
from .errors import BrokerError
from .settings import BrokerSettings, Settings

app = typer.Typer(help="Unified broker integration CLI")
console = Console()
logger = logging.getLogger(__name__)

ConfigOption = typer.Option(None, "--config", help="Path to config file")


def run_cli(argv: list[str] | None = None) -> None:
    """Run CLI with optional argv parameter."""
    app(argv)


def _load_settings(config_path: Optional[Path] = None) -> Settings:
    return load_settings(config_path)


def _configured_broker(settings: Settings, instance: str) -> BrokerSettings:
    broker = settings.brokers.get(instance)
    if broker is None:
        configured = ", ".join(settings.brokers) or "none"
        raise ValueError(f"Broker '{instance}' not configured (configured: {configured})")
    if broker.credentials is None:
        raise ValueError(f"Broker '{instance}' has no credentials configured")
    return broker


def _registry_for(settings: Settings) -> ConnectorRegistry:
    return ConnectorRegistry(request_timeout=settings.request_timeout)


async def _with_connector(
    config: Optional[Path],
    instance: str,
    action: Callable[[BaseConnector], Awaitable[Any]],
) -> Any:
    settings = _load_settings(config)
    broker = _configured_broker(settings, instance)
    async with _registry_for(settings) as registry:
        connector = registry.get_or_create(broker.exchange, broker.bound_credentials(), instance)
        return await action(connector)


def _fail(what: str, exc: Exception) -> NoReturn:
    logger.error("Failed to %s: %s", what, exc)
    console.print(f"[red]Error:[/red] {exc}")
    raise typer.Exit(1)


@app.command()
def brokers() -> None:
    """List supported brokers and their endpoints."""
    table = Table(title="Supported Brokers")
    table.add_column("Type", style="cyan")
    table.add_column("Name", style="green")
    table.add_column("REST", style="blue")
    table.add_column("WebSocket", style="blue")
    table.add_column("Features", style="magenta")

    for exchange_type in ConnectorRegistry.get_supported_brokers():
        info = ConnectorRegistry.get_broker_info(exchange_type)
        table.add_row(
            exchange_type.value,
            info.name,
            info.base_url,
            info.ws_url,
            ", ".join(info.features),
        )

    console.print(table)


@app.command()
def balances(
    instance: str = typer.Argument(..., help="Configured broker instance id"),
    config: Optional[Path] = ConfigOption,
) -> None:
    """Show non-zero balances for a configured broker."""
    try:
        rows = asyncio.run(_with_connector(config, instance, lambda c: c.get_account_balance()))
    except (BrokerError, ValueError) as e:
        _fail("fetch balances", e)

    if not rows:
        console.print("[yellow]No balances found[/yellow]")
        return

    table = Table(title=f"Balances ({instance})")
    table.add_column("Asset", style="cyan")
    table.add_column("Free", justify="right")
    table.add_column("Locked", justify="right")
    table.add_column("Total", justify="right", style="bold")

    for balance in sorted(rows, key=lambda b: b.asset):
        table.add_row(
            balance.asset,
            f"{balance.free:.8f}",
            f"{balance.locked:.8f}",
            f"{balance.total:.8f}",
        )

    console.print(table)


@app.command()
def positions(
    instance: str = typer.Argument(..., help="Configured broker instance id"),
    config: Optional[Path] = ConfigOption,
) -> None:
    """Show open positions for a configured broker."""
    try:
        rows = asyncio.run(_with_connector(config, instance, lambda c: c.get_positions()))
    except (BrokerError, ValueError) as e:
        _fail("fetch positions", e)

    if not rows:
        console.print("[yellow]No open positions[/yellow]")
        return

    table = Table(title=f"Positions ({instance})")
    table.add_column("Symbol", style="cyan")
    table.add_column("Side")
    table.add_column("Size", justify="right")
    table.add_column("Entry", justify="right")
    table.add_column("Mark", justify="right")
    table.add_column("PnL", justify="right")
    table.add_column("PnL %", justify="right")

    for position in rows:
        side_style = "green" if position.side.value == "long" else "red"
        pnl_style = "green" if position.pnl >= 0 else "red"
        table.add_row(
            position.symbol,
            f"[{side_style}]{position.side.value.upper()}[/{side_style}]",
            f"{position.size:g}",
            f"{position.entry_price:.4f}",
            f"{position.mark_price:.4f}",
            f"[{pnl_style}]{position.pnl:.4f}[/{pnl_style}]",
            f"{position.percentage:.2f}%",
        )

    console.print(table)


@app.command()
def order_status(
    instance: str = typer.Argument(..., help="Configured broker instance id"),
    order_id: str = typer.Argument(..., help="Exchange order id"),
    symbol: str = typer.Argument(..., help="Exchange symbol of the order"),
    config: Optional[Path] = ConfigOption,
) -> None:
    """Show the normalized status of one order."""
    try:
        result = asyncio.run(
            _with_connector(config, instance, lambda c: c.get_order_status(order_id, symbol))
        )
    except (BrokerError, ValueError) as e:
        _fail("fetch order status", e)

    fees = "not reported" if result.fees is None else f"{result.fees:.8f}"
    console.print(Panel.fit(
        f"Order ID: [cyan]{result.order_id}[/cyan]\n"
        f"Symbol: [green]{result.symbol}[/green]\n"
        f"Side: {result.side.value}\n"
        f"Quantity: {result.quantity:g}\n"
        f"Price: {result.price:g}\n"
        f"Status: [bold]{result.status.value.upper()}[/bold]\n"
        f"Fees: {fees}\n"
        f"Updated: {result.timestamp.isoformat()}",
        title="Order Status"
    ))


async def _health_async(config: Optional[Path]) -> dict[str, bool]:
    settings = _load_settings(config)
    async with _registry_for(settings) as registry:
        for instance, broker in settings.brokers.items():
            if not broker.enabled or broker.credentials is None:
                continue
            try:
                registry.get_or_create(broker.exchange, broker.bound_credentials(), instance)
            except (BrokerError, ValueError) as e:
                logger.error("Cannot create broker %s: %s", instance, e)
        return await registry.health_check_all()


@app.command()
def health(config: Optional[Path] = ConfigOption) -> None:
    """Probe every enabled configured broker."""
    try:
        results = asyncio.run(_health_async(config))
    except (BrokerError, ValueError) as e:
        _fail("run health checks", e)

    if not results:
        console.print("[yellow]No brokers configured[/yellow]")
        return

    table = Table(title="Broker Health")
    table.add_column("Instance", style="cyan")
    table.add_column("Status")
    for instance, healthy in results.items():
        table.add_row(instance, "[green]OK[/green]" if healthy else "[red]FAIL[/red]")
    console.print(table)

    if not all(results.values()):
        raise typer.Exit(1)


def main():
    """CLI main entry point."""
    app()


if __name__ == "__main__":
    main()
