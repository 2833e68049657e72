"""Portfolio accounting.

Holdings are owned by this module: buys and sells go through
``add_holding`` / ``reduce_holding`` which keep the weighted average cost,
realized PnL and the transaction ledger consistent.
"""
from decimal import Decimal
from typing import Dict, Iterable, List, Optional

import structlog

from tradedesk.core.errors import trading_error, validation_error
from tradedesk.core.models import (
    AssetType, Holding, PortfolioSummary, PortfolioTransaction, TransactionType
)
from tradedesk.storage.database import Database

logger = structlog.get_logger(__name__)


def summarize_holdings(
    holdings: Iterable[Holding],
    prices: Optional[Dict[str, Decimal]] = None
) -> PortfolioSummary:
    """Aggregate holdings into portfolio totals.

    A holding is valued at ``prices[asset_id]`` when a price is supplied,
    otherwise at its stored ``current_value``.

    Args:
        holdings: Holdings of one user
        prices: Optional current prices keyed by asset ID

    Returns:
        PortfolioSummary; P&L% is 0 when nothing is invested
    """
    prices = prices or {}
    total_value = Decimal("0")
    total_invested = Decimal("0")
    realized = Decimal("0")
    count = 0

    for holding in holdings:
        price = prices.get(holding.asset_id)
        if price is not None:
            value = holding.quantity * price
        else:
            value = holding.current_value
        total_value += value
        total_invested += holding.total_invested
        realized += holding.realized_pnl
        count += 1

    total_pnl = total_value - total_invested
    pnl_pct = (total_pnl / total_invested) * 100 if total_invested > 0 else Decimal("0")

    return PortfolioSummary(
        total_value=total_value,
        total_invested=total_invested,
        total_pnl=total_pnl,
        total_pnl_percent=pnl_pct,
        realized_pnl=realized,
        unrealized_pnl=total_pnl,
        holdings_count=count,
    )


class PortfolioService:
    """Holdings, transaction ledger and portfolio summary."""

    def __init__(self, database: Database):
        self.database = database

    async def get_holdings(self, user_id: str) -> List[Holding]:
        return await self.database.get_holdings(user_id)

    async def get_holding(
        self, user_id: str, asset_id: str, asset_type: AssetType = AssetType.AGENT
    ) -> Optional[Holding]:
        return await self.database.get_holding(user_id, asset_id, asset_type)

    async def get_transactions(self, user_id: str, limit: int = 50) -> List[PortfolioTransaction]:
        return await self.database.get_transactions(user_id, limit)

    async def add_holding(
        self,
        user_id: str,
        asset_id: str,
        quantity: Decimal,
        price: Decimal,
        asset_type: AssetType = AssetType.AGENT,
        asset_name: str = "",
        asset_symbol: str = "",
        fees: Decimal = Decimal("0"),
        exchange: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> Holding:
        """Record a buy.

        Creates the holding on first purchase, otherwise adds to it and
        recomputes the weighted average buy price.

        Raises:
            AppError: VALIDATION_ERROR for non-positive quantity or negative price
        """
        if quantity <= 0:
            raise validation_error("Quantity must be positive", quantity=str(quantity))
        if price < 0 or fees < 0:
            raise validation_error("Price and fees cannot be negative")

        holding = await self.database.get_holding(user_id, asset_id, asset_type)
        if holding is None:
            holding = Holding(
                user_id=user_id,
                asset_id=asset_id,
                asset_type=asset_type,
                asset_name=asset_name,
                asset_symbol=asset_symbol,
            )
        holding.apply_buy(quantity, price, fees)
        await self.database.save_holding(holding)

        await self.database.save_transaction(PortfolioTransaction(
            user_id=user_id,
            holding_id=holding.id,
            transaction_type=TransactionType.BUY,
            asset_id=asset_id,
            asset_name=holding.asset_name,
            asset_symbol=holding.asset_symbol,
            quantity=quantity,
            price=price,
            fees=fees,
            exchange=exchange,
            notes=notes,
        ))

        logger.info(
            "portfolio.holding_added",
            user_id=user_id,
            asset_id=asset_id,
            quantity=str(quantity),
            price=str(price),
            average_buy_price=str(holding.average_buy_price),
        )
        return holding

    async def reduce_holding(
        self,
        user_id: str,
        asset_id: str,
        quantity: Decimal,
        price: Decimal,
        asset_type: AssetType = AssetType.AGENT,
        fees: Decimal = Decimal("0"),
        exchange: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> Decimal:
        """Record a sell.

        Returns:
            Realized PnL of the sale

        Raises:
            AppError: TRADING_ERROR if there is no holding or not enough quantity
        """
        if quantity <= 0:
            raise validation_error("Quantity must be positive", quantity=str(quantity))

        holding = await self.database.get_holding(user_id, asset_id, asset_type)
        if holding is None:
            raise trading_error("Holding not found", user_id=user_id, asset_id=asset_id)

        realized = holding.apply_sell(quantity, price, fees)

        if holding.is_empty:
            await self.database.delete_holding(holding)
        else:
            await self.database.save_holding(holding)

        await self.database.save_transaction(PortfolioTransaction(
            user_id=user_id,
            holding_id=holding.id,
            transaction_type=TransactionType.SELL,
            asset_id=asset_id,
            asset_name=holding.asset_name,
            asset_symbol=holding.asset_symbol,
            quantity=quantity,
            price=price,
            fees=fees,
            exchange=exchange,
            notes=notes,
        ))

        logger.info(
            "portfolio.holding_reduced",
            user_id=user_id,
            asset_id=asset_id,
            quantity=str(quantity),
            price=str(price),
            realized_pnl=str(realized),
            remaining=str(holding.quantity),
        )
        return realized

    async def update_holdings_value(self, user_id: str, prices: Dict[str, Decimal]) -> List[Holding]:
        """Mark holdings to market. Assets without a price are left as is."""
        updated = []
        for holding in await self.database.get_holdings(user_id):
            price = prices.get(holding.asset_id)
            if price is None:
                continue
            holding.mark_to_market(price)
            await self.database.save_holding(holding)
            updated.append(holding)
        return updated

    async def agent_prices(self, holdings: Iterable[Holding]) -> Dict[str, Decimal]:
        """Quoted agent price for every agent holding whose agent still exists."""
        wanted = {h.asset_id for h in holdings if h.asset_type == AssetType.AGENT}
        if not wanted:
            return {}
        return {
            agent.id: agent.price
            for agent in await self.database.get_agents()
            if agent.id in wanted
        }

    async def get_portfolio_summary(
        self, user_id: str, prices: Optional[Dict[str, Decimal]] = None
    ) -> PortfolioSummary:
        """Summary valued at the agents' quoted prices.

        Prices passed in take precedence over the quoted ones.
        """
        holdings = await self.database.get_holdings(user_id)
        current = await self.agent_prices(holdings)
        current.update(prices or {})
        return summarize_holdings(holdings, current)
