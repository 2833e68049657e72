"""TradeDesk - order lifecycle, portfolio accounting and copy-trading services."""

__version__ = "1.0.0"
