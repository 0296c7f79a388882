"""Pytest fixtures and utilities for the HoldWatch test suite."""
import itertools
from datetime import datetime, timedelta, timezone
from typing import List, Optional
from unittest.mock import AsyncMock, MagicMock

import pytest

from holdwatch.core.models import (
    AccountingMode, LimitRule, LimitsStorage, Order, PositionSnapshot,
    datetime_to_ms,
)
from holdwatch.core.monitor import BotState, PositionMonitor
from holdwatch.storage.limit_store import LimitStore


# =============================================================================
# Time Fixtures
# =============================================================================

NOW = datetime(2024, 3, 1, 12, 0, 0, tzinfo=timezone.utc)
HOUR_MS = 3600 * 1000


def ts(hours_ago: float, now: datetime = NOW) -> int:
    """Epoch ms for a point hours_ago before now."""
    return datetime_to_ms(now - timedelta(hours=hours_ago))


@pytest.fixture
def now():
    return NOW


# =============================================================================
# Order Fixtures
# =============================================================================

_order_ids = itertools.count(1000)


def make_order(
    side: str,
    qty: str,
    time: int,
    status: str = "FILLED",
    position_side: str = "BOTH",
    symbol: str = "LSKUSDT",
    order_id=None,
    update_time: Optional[int] = None,
) -> Order:
    """Build an order the way the exchange client maps raw records."""
    return Order(
        id=order_id if order_id is not None else next(_order_ids),
        symbol=symbol,
        side=side,
        status=status,
        executed_qty=qty,
        time=time,
        update_time=update_time if update_time is not None else time,
        position_side=position_side,
    )


@pytest.fixture
def order_factory():
    return make_order


@pytest.fixture
def lsk_orders() -> List[Order]:
    """Net-balance history: two closed round trips, a canceled order, then
    a position opened at t6 and added to at t7."""
    t = [0, 1000, 2000, 3000, 4000, 5000, 6000, 7000]
    return [
        make_order("BUY", "127", t[1]),
        make_order("SELL", "127", t[2]),
        make_order("BUY", "125", t[3]),
        make_order("SELL", "125", t[4]),
        make_order("BUY", "100", t[5], status="CANCELED"),
        make_order("BUY", "261", t[6]),
        make_order("BUY", "100", t[7]),
    ]


@pytest.fixture
def hedge_orders() -> List[Order]:
    """Hedge-mode history with independent long and short ledgers."""
    return [
        make_order("BUY", "0.1", 1000, position_side="LONG"),
        make_order("SELL", "0.2", 2000, position_side="SHORT"),
        make_order("BUY", "0.1", 3000, position_side="LONG"),
    ]


# =============================================================================
# Position Fixtures
# =============================================================================

def make_position(
    symbol: str = "LSKUSDT",
    amount: str = "361",
    entry: str = "1.2345",
    pnl: str = "4.20",
    position_side: str = "BOTH",
) -> PositionSnapshot:
    return PositionSnapshot(
        symbol=symbol,
        position_amt=amount,
        entry_price=entry,
        unrealized_profit=pnl,
        position_side=position_side,
    )


@pytest.fixture
def position_factory():
    return make_position


# =============================================================================
# Storage Fixtures
# =============================================================================

@pytest.fixture
def limits_path(tmp_path):
    return tmp_path / "limits.json"


@pytest.fixture
def limit_store(limits_path):
    return LimitStore(limits_path, default_check_interval="5m")


@pytest.fixture
def lsk_limit_store(limit_store):
    """Store with a 12h limit on LSK."""
    limit_store.save(LimitsStorage(limits=[LimitRule(coin="LSK", time="12h")]))
    return limit_store


# =============================================================================
# Component Fixtures
# =============================================================================

@pytest.fixture
def mock_gateway():
    """Exchange gateway with no positions and no history."""
    gateway = MagicMock()
    gateway.list_orders = AsyncMock(return_value=[])
    gateway.get_open_positions = AsyncMock(return_value=[])
    gateway.get_accounting_mode = AsyncMock(return_value=AccountingMode.NET_BALANCE)
    return gateway


@pytest.fixture
def mock_notifier():
    notifier = MagicMock()
    notifier.send = AsyncMock(return_value=[1])
    notifier.send_chat_action = AsyncMock()
    notifier.get_updates = AsyncMock(return_value=[])
    notifier.get_me = AsyncMock(return_value={"id": 42, "username": "holdwatch_bot"})
    notifier.close = AsyncMock()
    return notifier


@pytest.fixture
def monitor(mock_gateway, lsk_limit_store):
    return PositionMonitor(mock_gateway, lsk_limit_store, accounting_mode="auto")


@pytest.fixture
def bot_state():
    return BotState(chat_id=555)
