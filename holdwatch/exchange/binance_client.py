"""Binance USD-M Futures client for HoldWatch.

Read-only access to the three things the monitor needs:
- order history of one symbol (allOrders)
- current position risk (positionRisk v2)
- the account's position mode (dualSidePosition)

Raw venue payloads are mapped onto Order / PositionSnapshot here so the rest
of the system never sees exchange-specific field names.
"""
import asyncio
import json
import re
from typing import Any, Dict, List, Optional

import ccxt.async_support as ccxt
import structlog

from holdwatch.core.config import binance_config
from holdwatch.core.models import AccountingMode, Order, PositionSnapshot

logger = structlog.get_logger(__name__)


class RetryConfig:
    """Configuration for retry logic."""
    DEFAULT_BASE_DELAY = 1.0  # seconds
    DEFAULT_MAX_DELAY = 30.0  # seconds
    DEFAULT_EXPONENTIAL_BASE = 2.0
    RATE_LIMIT_BASE_DELAY = 60.0
    RATE_LIMIT_MAX_DELAY = 300.0


def with_retry(
    max_retries: Optional[int] = None,
    base_delay: float = RetryConfig.DEFAULT_BASE_DELAY,
    max_delay: float = RetryConfig.DEFAULT_MAX_DELAY,
    exponential_base: float = RetryConfig.DEFAULT_EXPONENTIAL_BASE,
    retryable_exceptions: tuple = (ccxt.NetworkError, ccxt.ExchangeNotAvailable, ccxt.RequestTimeout)
):
    """Decorator for adding retry logic with exponential backoff.

    Args:
        max_retries: Maximum number of retry attempts; defaults to
            BINANCE_RETRY_ATTEMPTS
        base_delay: Initial delay between retries in seconds
        max_delay: Maximum delay between retries in seconds
        exponential_base: Base for exponential backoff calculation
        retryable_exceptions: Tuple of exceptions that should trigger a retry
    """
    def decorator(func):
        async def wrapper(*args, **kwargs):
            retries = (
                binance_config.retry_attempts if max_retries is None else max_retries
            )
            last_exception = None

            for attempt in range(retries + 1):
                try:
                    return await func(*args, **kwargs)
                except ccxt.RateLimitExceeded as e:
                    # RateLimitExceeded is a NetworkError, so it must be caught first
                    last_exception = e
                    if attempt < retries:
                        delay = min(
                            RetryConfig.RATE_LIMIT_BASE_DELAY * (2 ** attempt),
                            RetryConfig.RATE_LIMIT_MAX_DELAY,
                        )
                        logger.warning(
                            f"{func.__name__}.rate_limit_hit",
                            attempt=attempt + 1,
                            delay=delay
                        )
                        await asyncio.sleep(delay)
                    else:
                        break
                except retryable_exceptions as e:
                    last_exception = e
                    if attempt < retries:
                        delay = min(
                            base_delay * (exponential_base ** attempt),
                            max_delay
                        )
                        logger.warning(
                            f"{func.__name__}.retry_attempt",
                            attempt=attempt + 1,
                            max_retries=retries,
                            delay=delay,
                            error=str(e)
                        )
                        await asyncio.sleep(delay)
                    else:
                        break

            logger.error(
                f"{func.__name__}.max_retries_exceeded",
                max_retries=retries,
                last_error=str(last_exception)
            )
            raise last_exception

        wrapper.__name__ = func.__name__
        wrapper.__doc__ = func.__doc__
        return wrapper
    return decorator


# =============================================================================
# Error Descriptions
# =============================================================================

_CODE_RE = re.compile(r'"code"\s*:\s*(-?\d+)')
_MSG_RE = re.compile(r'"msg"\s*:\s*"([^"]*)"')

AUTH_ERROR_CODES = {-2015, -1022, -2010}


def extract_error_code(exc: BaseException) -> Optional[int]:
    """Binance error code embedded in a ccxt exception message, if any."""
    match = _CODE_RE.search(str(exc))
    return int(match.group(1)) if match else None


def _extract_error_message(exc: BaseException) -> str:
    text = str(exc)
    start = text.find("{")
    if start >= 0:
        try:
            payload = json.loads(text[start:])
        except ValueError:
            payload = None
        if isinstance(payload, dict) and payload.get("msg"):
            return str(payload["msg"])
    match = _MSG_RE.search(text)
    return match.group(1) if match else text


def is_auth_error(exc: BaseException) -> bool:
    """True for failures a retry cannot fix: bad keys, signature or permissions."""
    if isinstance(exc, (ccxt.AuthenticationError, ccxt.PermissionDenied)):
        return True
    return extract_error_code(exc) in AUTH_ERROR_CODES


def describe_gateway_error(exc: BaseException) -> str:
    """Render a gateway failure as a message for the chat user."""
    code = extract_error_code(exc)
    message = _extract_error_message(exc)

    if code == -2015 or (code is None and isinstance(exc, ccxt.AuthenticationError)):
        label = f" (code {code})" if code is not None else ""
        return (
            f"❌ API authorization error{label}:\n\n"
            "Possible causes:\n"
            "1. Wrong API key or secret key\n"
            "2. Your IP address is not in the key's whitelist\n"
            "3. The key has no permission to read Futures data\n\n"
            "What to check:\n"
            "• API key and secret key are correct\n"
            "• IP whitelist is disabled or includes this host\n"
            "• 'Enable Reading' is on for Futures in the key settings\n"
            "• The key is a Futures key, not a Spot-only key\n\n"
            f"Binance says: {message}"
        )
    if code == -1022:
        return (
            f"❌ Signature error (code {code}):\n\n"
            "The secret key is wrong or the request signature is invalid.\n\n"
            f"Binance says: {message}"
        )
    if code == -2010 or (code is None and isinstance(exc, ccxt.PermissionDenied)):
        label = f" (code {code})" if code is not None else ""
        return (
            f"❌ Permission error{label}:\n\n"
            "The API key lacks the permissions this operation needs.\n\n"
            f"Binance says: {message}"
        )
    if code is not None:
        return f"❌ Binance API error (code {code}):\n\n{message}"
    if isinstance(exc, ccxt.NetworkError):
        return f"❌ Binance is unreachable right now, try again later.\n\n{exc}"
    return f"❌ Failed to fetch positions: {exc}"


# =============================================================================
# Client
# =============================================================================

class BinanceFuturesClient:
    """Read-only Binance USD-M Futures gateway.

    Attributes:
        exchange: ccxt binanceusdm instance, None until initialize()
        _initialized: Whether the client has been initialized
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        api_secret: Optional[str] = None,
        testnet: Optional[bool] = None,
    ):
        self.api_key = api_key if api_key is not None else binance_config.api_key
        self.api_secret = (
            api_secret if api_secret is not None else binance_config.api_secret
        )
        self.testnet = testnet if testnet is not None else binance_config.testnet
        self.exchange: Optional[ccxt.binanceusdm] = None
        self._initialized = False

    async def initialize(self):
        """Create the ccxt exchange instance."""
        if self._initialized:
            return

        if not self.api_key or not self.api_secret:
            logger.warning(
                "binance_client.missing_credentials",
                message="API credentials not configured, private endpoints will fail"
            )

        exchange = ccxt.binanceusdm({
            'apiKey': self.api_key,
            'secret': self.api_secret,
            'enableRateLimit': True,
            'timeout': binance_config.timeout * 1000,
            'options': {
                'defaultType': 'future',
                'adjustForTimeDifference': True,
                'recvWindow': binance_config.recv_window,
            }
        })
        if self.testnet:
            exchange.set_sandbox_mode(True)

        self.exchange = exchange
        self._initialized = True

        logger.info(
            "binance_client.initialized",
            testnet=self.testnet,
            api_key=binance_config.masked_api_key,
        )

    async def close(self):
        """Close the exchange connection."""
        if self.exchange is None:
            return
        try:
            await self.exchange.close()
        except Exception as e:
            logger.warning("binance_client.close_error", error=str(e))
        finally:
            self.exchange = None
            self._initialized = False

        logger.info("binance_client.closed")

    def _get_exchange(self) -> ccxt.binanceusdm:
        if self.exchange is None:
            raise RuntimeError("BinanceFuturesClient not initialized")
        return self.exchange

    # =========================================================================
    # Orders
    # =========================================================================

    @with_retry()
    async def list_orders(
        self, symbol: str, limit: Optional[int] = None
    ) -> List[Order]:
        """Fetch the most recent orders of one symbol, any status.

        Args:
            symbol: Venue symbol, e.g. "LSKUSDT"
            limit: Maximum records (venue caps at 1000)

        Returns:
            Orders in the order the venue returned them
        """
        exchange = self._get_exchange()
        limit = limit or binance_config.order_history_limit

        try:
            raw_orders = await exchange.fapiPrivateGetAllOrders({
                'symbol': symbol,
                'limit': limit,
            })
        except Exception as e:
            logger.error(
                "binance_client.orders_error",
                symbol=symbol,
                error=str(e),
                error_type=type(e).__name__
            )
            raise

        orders = []
        for raw in raw_orders or []:
            order = self._map_order(raw)
            if order is not None:
                orders.append(order)

        logger.debug(
            "binance_client.orders_fetched",
            symbol=symbol,
            count=len(orders),
            raw_count=len(raw_orders or [])
        )
        return orders

    def _map_order(self, raw: Dict[str, Any]) -> Optional[Order]:
        """Convert a raw allOrders record into an Order."""
        try:
            return Order(
                id=raw.get('orderId', ''),
                symbol=raw.get('symbol', ''),
                side=raw.get('side', ''),
                status=raw.get('status', ''),
                executed_qty=str(raw.get('executedQty', '0')),
                time=int(raw.get('time') or 0),
                update_time=int(raw.get('updateTime') or 0),
                position_side=raw.get('positionSide') or 'BOTH',
            )
        except (ValueError, TypeError) as e:
            logger.warning(
                "binance_client.order_skipped",
                order_id=raw.get('orderId'),
                error=str(e)
            )
            return None

    # =========================================================================
    # Positions
    # =========================================================================

    @with_retry()
    async def get_open_positions(self) -> List[PositionSnapshot]:
        """Fetch position risk and keep only open positions."""
        exchange = self._get_exchange()

        try:
            raw_positions = await exchange.fapiPrivateV2GetPositionRisk()
        except Exception as e:
            logger.error(
                "binance_client.positions_error",
                error=str(e),
                error_type=type(e).__name__
            )
            raise

        positions = []
        for raw in raw_positions or []:
            snapshot = self._map_position(raw)
            if snapshot is not None and snapshot.is_open:
                positions.append(snapshot)

        logger.debug(
            "binance_client.positions_fetched",
            count=len(positions),
            raw_count=len(raw_positions or [])
        )
        return positions

    def _map_position(self, raw: Dict[str, Any]) -> Optional[PositionSnapshot]:
        """Convert a raw positionRisk record into a PositionSnapshot."""
        try:
            return PositionSnapshot(
                symbol=raw.get('symbol', ''),
                position_amt=str(raw.get('positionAmt', '0')).strip(),
                entry_price=str(raw.get('entryPrice', '0')).strip(),
                unrealized_profit=str(raw.get('unRealizedProfit', '0')).strip(),
                position_side=raw.get('positionSide') or 'BOTH',
                update_time=int(raw.get('updateTime') or 0),
            )
        except (ValueError, TypeError) as e:
            logger.warning(
                "binance_client.position_skipped",
                symbol=raw.get('symbol'),
                error=str(e)
            )
            return None

    # =========================================================================
    # Account
    # =========================================================================

    @with_retry()
    async def get_accounting_mode(self) -> AccountingMode:
        """Ask the venue whether the account runs in hedge mode."""
        exchange = self._get_exchange()
        response = await exchange.fapiPrivateGetPositionSideDual()

        dual = (response or {}).get('dualSidePosition', False)
        if isinstance(dual, str):
            dual = dual.strip().lower() == 'true'

        mode = AccountingMode.SIDE_TAGGED if dual else AccountingMode.NET_BALANCE
        logger.info("binance_client.accounting_mode", mode=mode.value)
        return mode


async def create_binance_client(testnet: Optional[bool] = None) -> BinanceFuturesClient:
    """Create and initialize a BinanceFuturesClient.

    Example:
        >>> client = await create_binance_client()
        >>> positions = await client.get_open_positions()
        >>> await client.close()
    """
    client = BinanceFuturesClient(testnet=testnet)
    await client.initialize()
    return client
