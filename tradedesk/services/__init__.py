"""Trading services.

- OrderService / OrderProcessor: order lifecycle and execution
- PortfolioService / PortfolioTracker: holdings accounting and live view
- CopyTradingEngine: follower settings and order fan-out
"""

from tradedesk.services.copy_trading import CopyTradingEngine
from tradedesk.services.order_processor import OrderProcessor
from tradedesk.services.order_service import OrderService
from tradedesk.services.portfolio import PortfolioService, summarize_holdings
from tradedesk.services.portfolio_tracker import PortfolioTracker

__all__ = [
    "CopyTradingEngine",
    "OrderProcessor",
    "OrderService",
    "PortfolioService",
    "PortfolioTracker",
    "summarize_holdings",
]
