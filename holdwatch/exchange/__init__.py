"""Exchange integration module for HoldWatch."""

from holdwatch.exchange.binance_client import (
    BinanceFuturesClient,
    RetryConfig,
    create_binance_client,
    describe_gateway_error,
    is_auth_error,
    with_retry,
)

__all__ = [
    "BinanceFuturesClient",
    "RetryConfig",
    "create_binance_client",
    "describe_gateway_error",
    "is_auth_error",
    "with_retry",
]
