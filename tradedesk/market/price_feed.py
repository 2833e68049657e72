"""Market prices for crypto holdings, fetched from a public exchange via ccxt."""
import asyncio
from decimal import Decimal
from typing import Dict, Iterable, Optional

import ccxt.async_support as ccxt
import structlog

from tradedesk.core.config import RealtimeConfig, realtime_config
from tradedesk.core.errors import network_error

logger = structlog.get_logger(__name__)


class RetryConfig:
    """Configuration for retry logic."""
    DEFAULT_MAX_RETRIES = 3
    DEFAULT_BASE_DELAY = 1.0  # seconds
    DEFAULT_MAX_DELAY = 30.0  # seconds
    DEFAULT_EXPONENTIAL_BASE = 2.0


def with_retry(
    max_retries: int = RetryConfig.DEFAULT_MAX_RETRIES,
    base_delay: float = RetryConfig.DEFAULT_BASE_DELAY,
    max_delay: float = RetryConfig.DEFAULT_MAX_DELAY,
    exponential_base: float = RetryConfig.DEFAULT_EXPONENTIAL_BASE,
    retryable_exceptions: tuple = (ccxt.NetworkError, ccxt.ExchangeNotAvailable, ccxt.RequestTimeout)
):
    """Decorator for adding retry logic with exponential backoff.

    Args:
        max_retries: Maximum number of retry attempts
        base_delay: Initial delay between retries in seconds
        max_delay: Maximum delay between retries in seconds
        exponential_base: Base for exponential backoff calculation
        retryable_exceptions: Tuple of exceptions that should trigger a retry

    After the last attempt the error is raised as a NETWORK_ERROR AppError.
    """
    def decorator(func):
        async def wrapper(*args, **kwargs):
            last_exception = None

            for attempt in range(max_retries + 1):
                try:
                    return await func(*args, **kwargs)
                except retryable_exceptions as e:
                    last_exception = e
                    if attempt < max_retries:
                        delay = min(base_delay * (exponential_base ** attempt), max_delay)
                        logger.warning(
                            f"{func.__name__}.retry_attempt",
                            attempt=attempt + 1,
                            max_retries=max_retries,
                            delay=delay,
                            error=str(e)
                        )
                        await asyncio.sleep(delay)

            raise network_error(
                f"{func.__name__} failed after {max_retries + 1} attempts: {last_exception}",
                function=func.__name__,
            ) from last_exception

        wrapper.__name__ = func.__name__
        wrapper.__doc__ = func.__doc__
        return wrapper
    return decorator


class ExchangePriceFeed:
    """Last traded prices for assets listed on an exchange.

    Assets are addressed by ``asset_id`` and mapped to exchange symbols
    such as ``BTC/USDT``.
    """

    def __init__(self, config: Optional[RealtimeConfig] = None, exchange=None):
        self.config = config or realtime_config
        self._exchange = exchange
        self._fetch_tickers = with_retry(max_retries=self.config.price_retry_attempts)(
            self._fetch_tickers_once
        )

    @property
    def exchange(self):
        if self._exchange is None:
            exchange_class = getattr(ccxt, self.config.price_exchange)
            self._exchange = exchange_class({
                'enableRateLimit': True,
                'timeout': self.config.price_timeout * 1000,
            })
        return self._exchange

    def to_symbol(self, base: str) -> str:
        """BTC -> BTC/USDT. Symbols already containing a slash pass through."""
        if "/" in base:
            return base
        return f"{base.upper()}/{self.config.quote_currency}"

    async def _fetch_tickers_once(self, symbols):
        return await self.exchange.fetch_tickers(symbols)

    async def get_prices(self, assets: Dict[str, str]) -> Dict[str, Decimal]:
        """Fetch last prices.

        Args:
            assets: asset_id -> base symbol or exchange symbol

        Returns:
            asset_id -> last price, for every asset the exchange quoted
        """
        if not assets:
            return {}

        by_symbol = {self.to_symbol(base): asset_id for asset_id, base in assets.items()}
        tickers = await self._fetch_tickers(list(by_symbol))

        prices = {}
        for symbol, asset_id in by_symbol.items():
            ticker = tickers.get(symbol) or {}
            last = ticker.get("last")
            if last is None:
                logger.debug("price_feed.missing_ticker", symbol=symbol)
                continue
            prices[asset_id] = Decimal(str(last))

        logger.debug("price_feed.fetched", requested=len(by_symbol), received=len(prices))
        return prices

    async def get_price(self, base: str) -> Optional[Decimal]:
        prices = await self.get_prices({base: base})
        return prices.get(base)

    async def close(self):
        if self._exchange is not None:
            await self._exchange.close()
            self._exchange = None


def holding_symbols(holdings: Iterable) -> Dict[str, str]:
    """asset_id -> symbol for crypto holdings."""
    return {
        h.asset_id: h.asset_symbol or h.asset_id
        for h in holdings
        if getattr(h.asset_type, "value", h.asset_type) == "crypto"
    }
