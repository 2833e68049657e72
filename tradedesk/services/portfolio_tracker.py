"""Live portfolio view for one user.

Keeps the latest holdings, transactions and summary in memory. Any change on
the user's holdings or transactions triggers a full refetch; a polling loop
refreshes prices in between.
"""
import asyncio
from decimal import Decimal
from typing import Dict, List, Optional

import structlog

from tradedesk.core.config import RealtimeConfig, realtime_config
from tradedesk.core.errors import AppError, handle_error
from tradedesk.core.models import Holding, PortfolioSummary, PortfolioTransaction
from tradedesk.market.price_feed import ExchangePriceFeed, holding_symbols
from tradedesk.realtime.changes import ChangeEvent, Subscription
from tradedesk.services.portfolio import PortfolioService, summarize_holdings

logger = structlog.get_logger(__name__)

WATCHED_TABLES = ("portfolio_holdings", "portfolio_transactions")


class PortfolioTracker:
    """Refetch-on-change portfolio state."""

    def __init__(
        self,
        user_id: str,
        portfolio: PortfolioService,
        price_feed: Optional[ExchangePriceFeed] = None,
        config: Optional[RealtimeConfig] = None,
        transaction_limit: int = 100,
    ):
        self.user_id = user_id
        self.portfolio = portfolio
        self.price_feed = price_feed
        self.config = config or realtime_config
        self.transaction_limit = transaction_limit

        # State
        self.holdings: List[Holding] = []
        self.transactions: List[PortfolioTransaction] = []
        self.summary: PortfolioSummary = PortfolioSummary()
        self.prices: Dict[str, Decimal] = {}
        self.error: Optional[AppError] = None
        self.refresh_count = 0

        # Control
        self._running = False
        self._poll_task: Optional[asyncio.Task] = None
        self._refresh_task: Optional[asyncio.Task] = None
        self._dirty = False
        self._subscriptions: List[Subscription] = []

    @property
    def is_running(self) -> bool:
        return self._running

    async def refresh(self) -> PortfolioSummary:
        """Full refetch of holdings, transactions and summary."""
        try:
            holdings = await self.portfolio.get_holdings(self.user_id)
            transactions = await self.portfolio.get_transactions(
                self.user_id, self.transaction_limit
            )

            prices = await self.portfolio.agent_prices(holdings)
            symbols = holding_symbols(holdings)
            if self.price_feed is not None and symbols:
                prices.update(await self.price_feed.get_prices(symbols))
            for holding in holdings:
                if holding.asset_id in prices:
                    holding.mark_to_market(prices[holding.asset_id])

            self.holdings = holdings
            self.transactions = transactions
            self.prices = prices
            self.summary = summarize_holdings(holdings, prices)
            self.error = None
            self.refresh_count += 1
        except AppError as e:
            self.error = handle_error(e, component="portfolio_tracker", user_id=self.user_id)

        logger.debug(
            "portfolio_tracker.refreshed",
            user_id=self.user_id,
            holdings=len(self.holdings),
            total_value=str(self.summary.total_value),
        )
        return self.summary

    async def start(self):
        """Load once, subscribe to changes and start polling."""
        if self._running:
            return
        self._running = True

        await self.refresh()

        changes = self.portfolio.database.changes
        for table in WATCHED_TABLES:
            self._subscriptions.append(
                changes.subscribe(table, self._on_change, filter={"user_id": self.user_id})
            )

        self._poll_task = asyncio.create_task(self._poll_loop())
        logger.info("portfolio_tracker.started", user_id=self.user_id)

    async def stop(self):
        """Unsubscribe and cancel polling and any in-flight refresh."""
        self._running = False

        changes = self.portfolio.database.changes
        for subscription in self._subscriptions:
            changes.unsubscribe(subscription)
        self._subscriptions.clear()

        for task in (self._poll_task, self._refresh_task):
            if task and not task.done():
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
        self._poll_task = None
        self._refresh_task = None

        logger.info("portfolio_tracker.stopped", user_id=self.user_id)

    def _on_change(self, change: ChangeEvent):
        if not self._running:
            return
        # Bursts of changes collapse into one more refetch after the current one
        self._dirty = True
        if self._refresh_task is None or self._refresh_task.done():
            self._refresh_task = asyncio.create_task(self._refresh_while_dirty())

    async def _refresh_while_dirty(self):
        while self._dirty and self._running:
            self._dirty = False
            try:
                await self.refresh()
            except Exception as e:
                logger.error("portfolio_tracker.refresh_error", user_id=self.user_id, error=str(e))

    async def wait_for_refresh(self):
        """Wait for the change-triggered refetch, if any."""
        task = self._refresh_task
        if task is None:
            return
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def _poll_loop(self):
        while self._running:
            await asyncio.sleep(self.config.portfolio_refresh_seconds)
            try:
                await self.refresh()
            except Exception as e:
                logger.error("portfolio_tracker.poll_error", user_id=self.user_id, error=str(e))
