"""Data models for HoldWatch.

This module defines the data structures shared by the exchange gateway,
the episode reconstructor, the limit store and the bot:
- Order: a historical order record as reported by the venue
- PositionSnapshot: the current state of one open position
- OpenEpisode: the reconstructed, still-open holding episode of a position
- LimitRule / LimitsStorage: persisted holding-time limits

Quantities and prices arrive from the venue as strings and are kept that way
on the models; they are parsed to Decimal on demand, never through float.
Timestamps are Unix epoch milliseconds, as reported by the venue.
"""

from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator


# =============================================================================
# Enums
# =============================================================================

class OrderSide(str, Enum):
    """Order side - buy or sell."""
    BUY = "buy"
    SELL = "sell"


class OrderStatus(str, Enum):
    """Order lifecycle status as reported by the venue."""
    NEW = "new"
    PARTIALLY_FILLED = "partially_filled"
    FILLED = "filled"
    CANCELED = "canceled"
    REJECTED = "rejected"
    EXPIRED = "expired"
    UNKNOWN = "unknown"


class PositionSide(str, Enum):
    """Position ledger tag.

    LONG/SHORT identify the two independent ledgers of a hedge-mode account;
    BOTH is what one-way accounts report for every order and position.
    """
    LONG = "long"
    SHORT = "short"
    BOTH = "both"


class Direction(str, Enum):
    """Direction of a held position."""
    LONG = "long"
    SHORT = "short"

    @property
    def opening_side(self) -> OrderSide:
        """Order side that opens or adds to a position in this direction."""
        return OrderSide.BUY if self is Direction.LONG else OrderSide.SELL


class AccountingMode(str, Enum):
    """How the venue accounts orders into positions.

    NET_BALANCE: one-way mode, a single signed position per symbol.
    SIDE_TAGGED: hedge mode, independent long and short ledgers per symbol.
    """
    NET_BALANCE = "net_balance"
    SIDE_TAGGED = "side_tagged"


# =============================================================================
# Helpers
# =============================================================================

def parse_decimal(raw: Union[str, int, float, Decimal, None]) -> Optional[Decimal]:
    """Parse a number as the venue sends it.

    Accepts surrounding whitespace and an explicit sign. Returns None for
    missing, empty, non-numeric or non-finite values.
    """
    if raw is None:
        return None
    if isinstance(raw, Decimal):
        value = raw
    else:
        text = str(raw).strip()
        if not text:
            return None
        try:
            value = Decimal(text)
        except InvalidOperation:
            return None
    if not value.is_finite():
        return None
    return value


def ms_to_datetime(timestamp_ms: int) -> datetime:
    """Convert epoch milliseconds to an aware UTC datetime."""
    return datetime.fromtimestamp(timestamp_ms / 1000, tz=timezone.utc)


def datetime_to_ms(value: datetime) -> int:
    """Convert a datetime to epoch milliseconds (naive values are UTC)."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return int(value.timestamp() * 1000)


# =============================================================================
# Order Models
# =============================================================================

class Order(BaseModel):
    """Historical order record.

    Attributes:
        id: Venue order ID (opaque, not monotonic with time)
        symbol: Trading pair symbol (e.g. "LSKUSDT")
        side: Buy or sell
        status: Venue order status
        executed_qty: Executed quantity exactly as the venue sent it
        time: Creation time in epoch ms (0 when the venue omitted it)
        update_time: Last update time in epoch ms
        position_side: Ledger tag (hedge mode) or BOTH (one-way mode)
    """
    model_config = ConfigDict(frozen=True)

    id: Union[int, str] = Field(..., description="Venue order ID")
    symbol: str = Field(..., description="Trading pair symbol")
    side: OrderSide = Field(..., description="Order side")
    status: OrderStatus = Field(..., description="Order status")
    executed_qty: str = Field(default="0", description="Executed quantity (raw)")
    time: int = Field(default=0, description="Creation time, epoch ms")
    update_time: int = Field(default=0, description="Last update time, epoch ms")
    position_side: PositionSide = Field(
        default=PositionSide.BOTH, description="Ledger tag"
    )

    @field_validator("side", "position_side", mode="before")
    @classmethod
    def lowercase_enums(cls, v):
        """Accept the venue's upper-case enum spellings."""
        return v.strip().lower() if isinstance(v, str) else v

    @field_validator("status", mode="before")
    @classmethod
    def normalize_status(cls, v):
        """Map venue statuses onto OrderStatus; unknown ones become UNKNOWN."""
        if isinstance(v, OrderStatus):
            return v
        text = str(v).strip().lower()
        if text == "cancelled":
            text = "canceled"
        if text not in {s.value for s in OrderStatus}:
            return OrderStatus.UNKNOWN
        return text

    @property
    def effective_time(self) -> int:
        """Creation time, falling back to the last update time."""
        return self.time if self.time else self.update_time

    @property
    def is_filled(self) -> bool:
        """True if the venue reports the order as filled."""
        return self.status == OrderStatus.FILLED

    @property
    def executed_quantity(self) -> Optional[Decimal]:
        """Executed quantity as Decimal, None if unparseable."""
        return parse_decimal(self.executed_qty)


# =============================================================================
# Position Models
# =============================================================================

# Sizes and prices at or below this magnitude count as zero
POSITION_EPSILON = Decimal("1e-10")


class PositionSnapshot(BaseModel):
    """Current position state for one symbol (and ledger, in hedge mode).

    Attributes:
        symbol: Trading pair symbol
        position_amt: Signed position size (sign encodes direction)
        entry_price: Average entry price
        unrealized_profit: Unrealized PnL
        position_side: Ledger tag reported by the venue
        update_time: Last update time in epoch ms
    """
    model_config = ConfigDict(frozen=True)

    symbol: str = Field(..., description="Trading pair symbol")
    position_amt: str = Field(default="0", description="Signed size (raw)")
    entry_price: str = Field(default="0", description="Entry price (raw)")
    unrealized_profit: str = Field(default="0", description="Unrealized PnL (raw)")
    position_side: PositionSide = Field(default=PositionSide.BOTH)
    update_time: int = Field(default=0, description="Last update, epoch ms")

    @field_validator("position_side", mode="before")
    @classmethod
    def lowercase_side(cls, v):
        return v.strip().lower() if isinstance(v, str) else v

    @property
    def size(self) -> Optional[Decimal]:
        """Signed size as Decimal, None if unparseable."""
        return parse_decimal(self.position_amt)

    @property
    def entry(self) -> Optional[Decimal]:
        return parse_decimal(self.entry_price)

    @property
    def pnl(self) -> Decimal:
        """Unrealized PnL; zero when missing or unparseable."""
        return parse_decimal(self.unrealized_profit) or Decimal("0")

    @property
    def is_open(self) -> bool:
        """True if size is non-zero and the entry price is positive."""
        size = self.size
        entry = self.entry
        if size is None or entry is None:
            return False
        return abs(size) > POSITION_EPSILON and entry > POSITION_EPSILON

    @property
    def direction(self) -> Direction:
        """Hedge-mode ledger tag when present, otherwise the sign of size."""
        if self.position_side == PositionSide.LONG:
            return Direction.LONG
        if self.position_side == PositionSide.SHORT:
            return Direction.SHORT
        size = self.size
        if size is not None and size < 0:
            return Direction.SHORT
        return Direction.LONG


# =============================================================================
# Episode Models
# =============================================================================

class OpenEpisode(BaseModel):
    """The still-open holding episode of one position.

    Attributes:
        symbol: Trading pair symbol
        direction: Direction of the held position
        started_at_ms: Episode start in epoch ms
        fill_count: Fills belonging to the episode
        found: False when order history gave no usable start and
            started_at_ms is a substituted default
    """
    model_config = ConfigDict(frozen=True)

    symbol: str
    direction: Direction
    started_at_ms: int
    fill_count: int = Field(default=0, ge=0)
    found: bool = True

    @property
    def started_at(self) -> datetime:
        return ms_to_datetime(self.started_at_ms)

    def age(self, now: datetime):
        """Time elapsed since the episode started."""
        return now - self.started_at


# =============================================================================
# Limit Models
# =============================================================================

class LimitRule(BaseModel):
    """Holding-time limit for one base asset.

    Attributes:
        coin: Base asset, upper-case (e.g. "LSK")
        time: Duration text as entered (e.g. "12h")
    """

    coin: str
    time: str

    @field_validator("coin")
    @classmethod
    def uppercase_coin(cls, v: str) -> str:
        return v.strip().upper()

    @field_validator("time")
    @classmethod
    def strip_time(cls, v: str) -> str:
        return v.strip()


class LimitsStorage(BaseModel):
    """Persisted limit rules plus the periodic check interval."""

    limits: List[LimitRule] = Field(default_factory=list)
    check_interval: str = Field(default="5m")

    def find(self, coin: str) -> Optional[LimitRule]:
        """Rule for a base asset (case-insensitive), if any."""
        key = coin.strip().upper()
        for rule in self.limits:
            if rule.coin == key:
                return rule
        return None
