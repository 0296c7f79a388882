"""HoldWatch - holding-time monitor for Binance Futures positions."""

__version__ = "1.0.0"
