#!/usr/bin/env python3
"""
Management script for the wallet service.

Usage (direct DB access):
    python manage.py db init
    python manage.py db clear
    python manage.py db status
    python manage.py db seed [-f data/seed.yaml]

    python manage.py portfolio show ID
    python manage.py portfolio snapshot ID
"""

import asyncio
from decimal import Decimal
from pathlib import Path

import click
import yaml
from sqlalchemy import func, select

from wallet.database import AsyncSessionLocal, Base, engine, init_db
from wallet.errors import WalletError
from wallet.models import Portfolio, PortfolioHistory, Position, PriceHistory, Transaction
from wallet.schemas.transaction import TransactionCreate
from wallet.services import portfolio as portfolio_service
from wallet.services import positions as position_service
from wallet.services import transactions as transaction_service
from wallet.services.price_feed import HttpPriceFeed


# ============================================================================
# Direct database operations (internal)
# ============================================================================


async def _clear_db():
    """Drop and recreate all tables."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)


async def _count_records():
    """Count records in each table."""
    async with AsyncSessionLocal() as session:
        counts = {}
        for model, name in [
            (Portfolio, "portfolios"),
            (Position, "positions"),
            (Transaction, "transactions"),
            (PortfolioHistory, "history"),
            (PriceHistory, "prices"),
        ]:
            result = await session.execute(select(func.count()).select_from(model))
            counts[name] = result.scalar_one()
        return counts


def _decimal(value) -> Decimal | None:
    """YAML numbers arrive as floats; go through str to keep them exact."""
    if value is None:
        return None
    return Decimal(str(value))


async def _seed(filepath: Path):
    """Create portfolios, cash flows and positions from a YAML file.

    Everything goes through the services, so positions, history and the
    ledger end up exactly as if the API had been used.
    """
    with open(filepath) as f:
        seed = yaml.safe_load(f) or {}

    price_feed = HttpPriceFeed.from_env()
    created = []

    async with AsyncSessionLocal() as session:
        for entry in seed.get("portfolios", []):
            portfolio = await portfolio_service.create_portfolio(
                session, entry["name"], entry.get("description", "")
            )
            click.echo(f"  Portfolio {portfolio.id}: {portfolio.name}")

            for tx in entry.get("transactions", []):
                await transaction_service.create_transaction(
                    session,
                    TransactionCreate(
                        portfolio_id=portfolio.id,
                        type=tx["type"],
                        price=_decimal(tx.get("price", 0)),
                        quantity=_decimal(tx.get("quantity", 0)),
                        total_amount=_decimal(tx.get("total_amount", 0)),
                        notes=tx.get("notes", ""),
                    ),
                )
                click.echo(f"    {tx['type']} {tx.get('total_amount', '')}")

            for pos in entry.get("positions", []):
                try:
                    position = await position_service.create_or_add_position(
                        session,
                        price_feed,
                        portfolio.id,
                        pos["symbol"],
                        pos["category"],
                        _decimal(pos["quantity"]),
                        unit_price=_decimal(pos.get("unit_price")),
                        name=pos.get("name"),
                    )
                except WalletError as e:
                    click.echo(f"    Skipped {pos['symbol']}: {e}", err=True)
                    continue
                click.echo(
                    f"    Bought {pos['quantity']} {position.symbol.upper()} "
                    f"@ {position.average_cost:.2f}"
                )

            created.append(portfolio)

    return created


async def _show_portfolio(portfolio_id: int):
    async with AsyncSessionLocal() as session:
        portfolio = await portfolio_service.require_portfolio(session, portfolio_id)
        positions = await position_service.get_portfolio_positions(session, portfolio_id)
        profit_loss = await portfolio_service.get_profit_loss(session, portfolio_id)
        cash = await portfolio_service.get_cash_invested(session, portfolio_id)
        distribution = await portfolio_service.get_category_distribution(session, portfolio_id)
        return portfolio, positions, profit_loss, cash, distribution


async def _snapshot(portfolio_id: int):
    async with AsyncSessionLocal() as session:
        return await portfolio_service.record_history(session, portfolio_id)


# ============================================================================
# CLI: Main group
# ============================================================================


@click.group()
def cli():
    """Wallet management commands."""
    pass


# ============================================================================
# CLI: db (direct database access)
# ============================================================================


@cli.group()
def db():
    """Direct database management (bypasses API)."""
    pass


@db.command("init")
def db_init():
    """Create missing tables."""
    asyncio.run(init_db())
    click.echo("Database initialized.")


@db.command("clear")
@click.confirmation_option(prompt="Are you sure you want to clear all data?")
def db_clear():
    """Clear all data from the database (destructive!)."""
    click.echo("Clearing database...")
    asyncio.run(_clear_db())
    click.echo("Database cleared and tables recreated.")


@db.command("status")
def db_status():
    """Show database status and record counts."""

    async def run():
        await init_db()
        return await _count_records()

    counts = asyncio.run(run())

    click.echo("\nDatabase Status:")
    click.echo("-" * 30)
    for table, count in counts.items():
        click.echo(f"  {table:<15} {count:>10,}")
    click.echo("-" * 30)
    click.echo(f"  {'Total':<15} {sum(counts.values()):>10,}")


@db.command("seed")
@click.option(
    "--file", "-f",
    default="data/seed.yaml",
    type=click.Path(exists=True),
    help="YAML file with portfolios, transactions and positions",
)
def db_seed(file):
    """Load portfolios from a YAML file."""
    click.echo(f"Seeding from {file}...")

    async def run():
        await init_db()
        return await _seed(Path(file))

    created = asyncio.run(run())
    click.echo(f"\nDone: {len(created)} portfolios created")


# ============================================================================
# CLI: portfolio
# ============================================================================


@cli.group()
def portfolio():
    """Inspect portfolios."""
    pass


@portfolio.command("show")
@click.argument("portfolio_id", type=int)
def portfolio_show(portfolio_id):
    """Show positions and profit/loss of a portfolio."""
    try:
        found, positions, profit_loss, cash, distribution = asyncio.run(
            _show_portfolio(portfolio_id)
        )
    except WalletError as e:
        raise click.ClickException(str(e))

    click.echo(f"\n{found.name} (#{found.id})")
    click.echo(f"\n{'Symbol':<10} {'Category':<16} {'Quantity':>16} {'Avg Cost':>14} {'Price':>14} {'Value':>14}")
    click.echo("-" * 90)
    for p in positions:
        click.echo(
            f"{p.symbol.upper():<10} {p.category:<16} {p.quantity:>16.8f} "
            f"{p.average_cost:>14.2f} {p.current_price:>14.2f} {p.current_value:>14.2f}"
        )
    click.echo("-" * 90)
    click.echo(f"  Cost basis:     {profit_loss.total_invested:>14.2f}")
    click.echo(f"  Current value:  {profit_loss.current_value:>14.2f}")
    click.echo(f"  Profit/loss:    {profit_loss.profit_loss:>14.2f} ({profit_loss.profit_loss_percent}%)")
    click.echo(f"  Cash invested:  {cash:>14.2f}")
    if distribution:
        click.echo("\n  Allocation:")
        for category, percent in distribution.items():
            click.echo(f"    {category:<16} {percent:>6}%")


@portfolio.command("snapshot")
@click.argument("portfolio_id", type=int)
def portfolio_snapshot(portfolio_id):
    """Record a history snapshot of a portfolio now."""
    try:
        point = asyncio.run(_snapshot(portfolio_id))
    except WalletError as e:
        raise click.ClickException(str(e))

    click.echo(
        f"Recorded value {point.total_value:.2f} (invested {point.invested_amount:.2f}) "
        f"at {point.recorded_at.isoformat()}"
    )


if __name__ == "__main__":
    cli()
