"""Tests for the position service (buy, sell, delete, price refresh)."""

from datetime import datetime, timedelta
from decimal import Decimal

import pytest

from wallet.database import utcnow
from wallet.errors import (
    InsufficientQuantityError,
    InvalidQuantityError,
    NotFoundError,
    PriceUnavailableError,
)
from wallet.models import Position, TransactionType
from wallet.services import portfolio as portfolio_service
from wallet.services import positions as position_service
from wallet.services import transactions as transaction_service


async def _reload(session, position_id) -> Position:
    return await session.get(Position, position_id, populate_existing=True)


class TestCreateOrAddPosition:

    @pytest.mark.asyncio
    async def test_opens_at_market_price(self, test_session, price_feed, portfolio_id):
        position = await position_service.create_or_add_position(
            test_session, price_feed, portfolio_id, " BTC ", "Cryptocurrency", Decimal("2")
        )

        assert position.symbol == "btc"
        assert position.category == "cryptocurrency"
        assert position.name == "BTC"
        assert position.quantity == Decimal("2")
        assert position.average_cost == Decimal("30000")
        assert position.invested_amount == Decimal("60000")
        assert position.initial_price == Decimal("30000")
        assert position.current_price == Decimal("30000")

    @pytest.mark.asyncio
    async def test_records_buy_prices_and_snapshot(self, test_session, price_feed, portfolio_id):
        position = await position_service.create_or_add_position(
            test_session, price_feed, portfolio_id, "btc", "cryptocurrency", Decimal("2")
        )

        transactions = await transaction_service.get_transactions_by_position(test_session, position.id)
        assert len(transactions) == 1
        assert transactions[0].type == TransactionType.BUY
        assert transactions[0].total_amount == Decimal("60000")

        prices = await position_service.get_price_history(test_session, position.id)
        assert [p.price for p in prices] == [Decimal("30000")]

        history = await portfolio_service.get_history(
            test_session, portfolio_id, datetime(2000, 1, 1), datetime(2100, 1, 1)
        )
        assert len(history) == 1
        assert history[0].total_value == Decimal("60000")

    @pytest.mark.asyncio
    async def test_adds_to_existing_position(self, test_session, price_feed, portfolio_id):
        first = await position_service.create_or_add_position(
            test_session, price_feed, portfolio_id, "aapl", "stock", Decimal("10"), unit_price=Decimal("100")
        )
        price_feed.set("aapl", "stock", "160")

        second = await position_service.create_or_add_position(
            test_session, price_feed, portfolio_id, "AAPL", "stock", Decimal("5"), unit_price=Decimal("150")
        )

        assert second.id == first.id
        assert second.quantity == Decimal("15")
        assert second.invested_amount == Decimal("1750")
        assert second.average_cost == Decimal("116.66666667")
        # Buy price is the override, current price comes from the feed
        assert second.current_price == Decimal("160")
        assert second.initial_price == Decimal("150")
        positions = await position_service.get_portfolio_positions(test_session, portfolio_id)
        assert len(positions) == 1

    @pytest.mark.asyncio
    async def test_same_symbol_other_category_is_separate(self, test_session, price_feed, portfolio_id):
        await position_service.create_or_add_position(
            test_session, price_feed, portfolio_id, "abc", "stock", Decimal("1"), unit_price=Decimal("10")
        )
        await position_service.create_or_add_position(
            test_session, price_feed, portfolio_id, "abc", "etf", Decimal("1"), unit_price=Decimal("10")
        )

        positions = await position_service.get_portfolio_positions(test_session, portfolio_id)
        assert sorted(p.category for p in positions) == ["etf", "stock"]

    @pytest.mark.asyncio
    async def test_no_price_anywhere(self, test_session, price_feed, portfolio_id):
        with pytest.raises(PriceUnavailableError):
            await position_service.create_or_add_position(
                test_session, price_feed, portfolio_id, "zzz", "stock", Decimal("1")
            )
        assert await position_service.get_portfolio_positions(test_session, portfolio_id) == []

    @pytest.mark.asyncio
    async def test_override_without_feed_price(self, test_session, price_feed, portfolio_id):
        position = await position_service.create_or_add_position(
            test_session, price_feed, portfolio_id, "zzz", "stock", Decimal("4"), unit_price=Decimal("12.5")
        )

        assert position.initial_price == Decimal("12.5")
        assert position.current_price == Decimal("12.5")
        assert position.invested_amount == Decimal("50")

    @pytest.mark.asyncio
    async def test_rejects_zero_quantity(self, test_session, price_feed, portfolio_id):
        with pytest.raises(InvalidQuantityError):
            await position_service.create_or_add_position(
                test_session, price_feed, portfolio_id, "btc", "cryptocurrency", Decimal("0")
            )

    @pytest.mark.asyncio
    async def test_unknown_portfolio(self, test_session, price_feed):
        with pytest.raises(NotFoundError):
            await position_service.create_or_add_position(
                test_session, price_feed, 999, "btc", "cryptocurrency", Decimal("1")
            )


class TestSellPosition:

    @pytest.mark.asyncio
    async def test_partial_sell(self, test_session, price_feed, portfolio_id):
        position = await position_service.create_or_add_position(
            test_session, price_feed, portfolio_id, "aapl", "stock", Decimal("10"), unit_price=Decimal("100")
        )

        outcome = await position_service.sell_position(
            test_session, position.id, Decimal("4"), Decimal("150")
        )

        assert outcome.position.quantity == Decimal("6")
        assert outcome.position.invested_amount == Decimal("600")
        assert outcome.proceeds == Decimal("600")
        assert outcome.cost_removed == Decimal("400")
        assert outcome.realized_profit_loss == Decimal("200")
        assert outcome.transaction.type == TransactionType.SELL
        assert outcome.transaction.asset_id == position.id
        assert "Sold 4 AAPL" in outcome.transaction.notes

    @pytest.mark.asyncio
    async def test_liquidation_keeps_empty_position(self, test_session, price_feed, portfolio_id):
        """Selling everything: 10 @ 100 + 5 @ 150, all 15 sold at 200."""
        position = await position_service.create_or_add_position(
            test_session, price_feed, portfolio_id, "aapl", "stock", Decimal("10"), unit_price=Decimal("100")
        )
        position_id = position.id
        await position_service.create_or_add_position(
            test_session, price_feed, portfolio_id, "aapl", "stock", Decimal("5"), unit_price=Decimal("150")
        )

        outcome = await position_service.sell_position(
            test_session, position_id, Decimal("15"), Decimal("200")
        )

        assert outcome.realized_profit_loss == Decimal("1250")
        position = await _reload(test_session, position_id)
        assert position is not None
        assert position.quantity == 0
        assert position.average_cost == 0
        assert position.invested_amount == 0

    @pytest.mark.asyncio
    async def test_oversell(self, test_session, price_feed, portfolio_id):
        position = await position_service.create_or_add_position(
            test_session, price_feed, portfolio_id, "aapl", "stock", Decimal("10"), unit_price=Decimal("100")
        )
        position_id = position.id

        with pytest.raises(InsufficientQuantityError):
            await position_service.sell_position(test_session, position_id, Decimal("10.5"), Decimal("100"))

        position = await _reload(test_session, position_id)
        assert position.quantity == Decimal("10")
        assert position.invested_amount == Decimal("1000")

    @pytest.mark.asyncio
    async def test_unknown_position(self, test_session):
        with pytest.raises(NotFoundError):
            await position_service.sell_position(test_session, 999, Decimal("1"), Decimal("1"))


class TestDeletePosition:

    @pytest.mark.asyncio
    async def test_delete_unlinks_transactions(self, test_session, price_feed, portfolio_id):
        position = await position_service.create_or_add_position(
            test_session, price_feed, portfolio_id, "btc", "cryptocurrency", Decimal("1")
        )
        position_id = position.id
        await position_service.sell_position(test_session, position_id, Decimal("0.5"), Decimal("31000"))

        assert await position_service.delete_position(test_session, position_id) is True

        assert await position_service.get_position(test_session, position_id) is None
        assert await transaction_service.get_transactions_by_position(test_session, position_id) == []
        transactions = await transaction_service.get_portfolio_transactions(test_session, portfolio_id)
        assert len(transactions) == 2
        for tx in transactions:
            await test_session.refresh(tx)
            assert tx.asset_id is None
            assert tx.asset_symbol == "btc"

    @pytest.mark.asyncio
    async def test_unlinked_transactions_delete_cleanly(self, test_session, price_feed, portfolio_id):
        position = await position_service.create_or_add_position(
            test_session, price_feed, portfolio_id, "btc", "cryptocurrency", Decimal("1")
        )
        position_id = position.id
        await position_service.delete_position(test_session, position_id)

        transactions = await transaction_service.get_portfolio_transactions(test_session, portfolio_id)
        assert await transaction_service.delete_transaction(test_session, transactions[0].id) is True

    @pytest.mark.asyncio
    async def test_delete_missing(self, test_session):
        assert await position_service.delete_position(test_session, 999) is False


class TestPrices:

    @pytest.mark.asyncio
    async def test_refresh_skips_unavailable(self, test_session, price_feed, portfolio_id):
        btc = await position_service.create_or_add_position(
            test_session, price_feed, portfolio_id, "btc", "cryptocurrency", Decimal("1")
        )
        odd = await position_service.create_or_add_position(
            test_session, price_feed, portfolio_id, "zzz", "stock", Decimal("3"), unit_price=Decimal("7")
        )
        btc_id, odd_id = btc.id, odd.id
        price_feed.set("btc", "cryptocurrency", "35000")

        result = await position_service.refresh_prices(test_session, price_feed, portfolio_id)

        assert result.updated == 1
        assert result.skipped == 1
        assert result.skipped_symbols == ["zzz"]

        btc = await _reload(test_session, btc_id)
        odd = await _reload(test_session, odd_id)
        assert btc.current_price == Decimal("35000")
        assert odd.current_price == Decimal("7")

        prices = await position_service.get_price_history(test_session, btc_id)
        assert [p.price for p in prices] == [Decimal("30000"), Decimal("35000")]
        assert await portfolio_service.get_portfolio_value(test_session, portfolio_id) == Decimal("35021")

    @pytest.mark.asyncio
    async def test_refresh_unknown_portfolio(self, test_session, price_feed):
        with pytest.raises(NotFoundError):
            await position_service.refresh_prices(test_session, price_feed, 999)

    @pytest.mark.asyncio
    async def test_value_and_profit_loss(self, test_session, price_feed, portfolio_id):
        position = await position_service.create_or_add_position(
            test_session, price_feed, portfolio_id, "btc", "cryptocurrency", Decimal("2"), unit_price=Decimal("25000")
        )

        assert await position_service.get_position_value(test_session, position.id) == Decimal("60000")
        assert await position_service.get_position_profit_loss(test_session, position.id) == Decimal("10000")

    @pytest.mark.asyncio
    async def test_price_history_range(self, test_session, price_feed, portfolio_id):
        position = await position_service.create_or_add_position(
            test_session, price_feed, portfolio_id, "btc", "cryptocurrency", Decimal("1")
        )

        now = utcnow()
        assert len(await position_service.get_price_history(
            test_session, position.id, now - timedelta(hours=1), now + timedelta(hours=1)
        )) == 1
        assert await position_service.get_price_history(
            test_session, position.id, now + timedelta(hours=1)
        ) == []

        points = await position_service.get_price_history(test_session, position.id)
        assert points[0].recorded_at.tzinfo is not None
