"""Market data for portfolio valuation."""

from tradedesk.market.price_feed import (
    ExchangePriceFeed,
    RetryConfig,
    holding_symbols,
    with_retry,
)

__all__ = [
    "ExchangePriceFeed",
    "RetryConfig",
    "holding_symbols",
    "with_retry",
]
