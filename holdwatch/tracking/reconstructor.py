"""Position-episode reconstruction from order history.

Given the order history of one symbol, in any order, this module finds when
the currently-held position last came into existence and how many fills
belong to that still-open episode.

Two accounting modes are supported behind one interface:
- NET_BALANCE (one-way accounts): every fill moves a single signed balance;
  an episode opens when the balance crosses from flat or the opposite
  direction into the requested one.
- SIDE_TAGGED (hedge accounts): long and short are independent ledgers
  selected by the order's position side; an episode opens when an opening
  fill lifts that ledger off zero.

Everything here is pure and synchronous: no I/O, no shared mutable state,
and linear time in the number of orders after sorting.
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable, List, Optional, Sequence, Tuple, Union

import structlog

from holdwatch.core.models import (
    AccountingMode, Direction, OpenEpisode, Order, OrderSide, PositionSide,
)

logger = structlog.get_logger(__name__)

# Balances with magnitude at or below this are flat
BALANCE_EPSILON = Decimal("1e-7")


# =============================================================================
# Order Normalizer
# =============================================================================

@dataclass(frozen=True)
class Fill:
    """A filled order reduced to what the reconstruction needs.

    Attributes:
        order: The source order record
        time: Effective timestamp in epoch ms
        quantity: Executed quantity, strictly positive
    """
    order: Order
    time: int
    quantity: Decimal

    @property
    def side(self) -> OrderSide:
        return self.order.side

    @property
    def position_side(self) -> PositionSide:
        return self.order.position_side

    @property
    def signed_quantity(self) -> Decimal:
        return self.quantity if self.side == OrderSide.BUY else -self.quantity


def effective_time(order: Order) -> int:
    """Creation time, or the last update time when creation time is unset."""
    return order.effective_time


def is_filled(order: Order) -> bool:
    return order.is_filled


def parse_quantity(order: Order) -> Optional[Decimal]:
    """Executed quantity of an order, None if it cannot be parsed."""
    return order.executed_quantity


def normalize_orders(orders: Iterable[Order]) -> List[Fill]:
    """Reduce raw orders to usable fills.

    Non-filled orders are dropped. Filled orders with a non-positive
    quantity are dropped quietly; filled orders with an unparseable quantity
    or no usable timestamp are dropped with a warning.

    Returns:
        Fills in input order (not sorted)
    """
    fills: List[Fill] = []
    for order in orders:
        if not is_filled(order):
            continue

        quantity = parse_quantity(order)
        if quantity is None:
            logger.warning(
                "reconstructor.malformed_quantity",
                symbol=order.symbol,
                order_id=order.id,
                executed_qty=order.executed_qty,
            )
            continue

        timestamp = effective_time(order)
        if timestamp <= 0:
            logger.warning(
                "reconstructor.missing_timestamp",
                symbol=order.symbol,
                order_id=order.id,
                time=order.time,
                update_time=order.update_time,
            )
            continue

        if quantity <= 0:
            logger.debug(
                "reconstructor.zero_quantity_skipped",
                symbol=order.symbol,
                order_id=order.id,
            )
            continue

        fills.append(Fill(order=order, time=timestamp, quantity=quantity))
    return fills


# =============================================================================
# Chronological Sorter
# =============================================================================

def _id_key(order_id: Union[int, str]) -> Tuple[int, int, str]:
    """Order IDs sort numerically when numeric, after numerics otherwise."""
    text = str(order_id).strip()
    try:
        return (0, int(text), "")
    except ValueError:
        return (1, 0, text)


def sort_chronologically(fills: Sequence[Fill]) -> List[Fill]:
    """Return a new list ascending by (timestamp, order id)."""
    return sorted(fills, key=lambda f: (f.time, _id_key(f.order.id)))


def _classify(balance: Decimal) -> int:
    """+1 for long, -1 for short, 0 for flat."""
    if balance > BALANCE_EPSILON:
        return 1
    if balance < -BALANCE_EPSILON:
        return -1
    return 0


# =============================================================================
# Position-Episode Reconstructor
# =============================================================================

class EpisodeTracker(ABC):
    """Reconstructs open episodes under one accounting mode.

    Subclasses implement:
    - find_open_time(): start of the current episode from sorted fills
    - belongs_to_episode(): whether a fill counts toward the episode
    """

    mode: AccountingMode

    def reconstruct_open_time(
        self, orders: Iterable[Order], direction: Direction
    ) -> Optional[int]:
        """Start of the current open episode in epoch ms.

        Args:
            orders: Order history of one symbol, in any order
            direction: Direction of the currently held position

        Returns:
            Episode start timestamp, or None when there is no usable history
        """
        fills = sort_chronologically(normalize_orders(orders))
        return self.find_open_time(fills, direction)

    def count_fills(
        self,
        orders: Iterable[Order],
        episode_start: int,
        direction: Optional[Direction] = None,
    ) -> int:
        """Number of fills that belong to the episode starting at episode_start."""
        return sum(
            1
            for fill in normalize_orders(orders)
            if fill.time >= episode_start and self.belongs_to_episode(fill, direction)
        )

    @abstractmethod
    def find_open_time(
        self, fills: Sequence[Fill], direction: Direction
    ) -> Optional[int]:
        """Episode start from chronologically sorted fills."""

    @abstractmethod
    def belongs_to_episode(self, fill: Fill, direction: Optional[Direction]) -> bool:
        """Whether a fill at or after the episode start is counted."""


class NetBalanceTracker(EpisodeTracker):
    """One-way accounting: a single signed balance per symbol."""

    mode = AccountingMode.NET_BALANCE

    def find_open_time(
        self, fills: Sequence[Fill], direction: Direction
    ) -> Optional[int]:
        if not fills:
            return None

        target = 1 if direction == Direction.LONG else -1
        balance = Decimal("0")
        last_open: Optional[int] = None

        for fill in fills:
            before = _classify(balance)
            balance += fill.signed_quantity
            after = _classify(balance)

            # Opened from flat, or flipped from the opposite direction
            if after == target and before != target:
                last_open = fill.time

        if last_open is not None:
            return last_open

        logger.debug(
            "reconstructor.no_open_event",
            mode=self.mode.value,
            direction=direction.value,
            fills=len(fills),
        )
        return fills[0].time

    def belongs_to_episode(self, fill: Fill, direction: Optional[Direction]) -> bool:
        return True


class SideTaggedTracker(EpisodeTracker):
    """Hedge accounting: independent long and short ledgers per symbol."""

    mode = AccountingMode.SIDE_TAGGED

    @staticmethod
    def _on_ledger(fill: Fill, direction: Direction) -> bool:
        return fill.position_side.value == direction.value

    @staticmethod
    def _is_opening(fill: Fill, direction: Direction) -> bool:
        return fill.side == direction.opening_side

    def find_open_time(
        self, fills: Sequence[Fill], direction: Direction
    ) -> Optional[int]:
        ledger = [f for f in fills if self._on_ledger(f, direction)]
        if not ledger:
            return None

        size = Decimal("0")
        last_open: Optional[int] = None

        for fill in ledger:
            was_flat = size <= BALANCE_EPSILON
            if self._is_opening(fill, direction):
                size += fill.quantity
                if was_flat and size > BALANCE_EPSILON:
                    last_open = fill.time
            else:
                # A ledger never changes sign: over-closing leaves it flat
                size = max(Decimal("0"), size - fill.quantity)

        if last_open is not None:
            return last_open

        logger.debug(
            "reconstructor.no_open_event",
            mode=self.mode.value,
            direction=direction.value,
            fills=len(ledger),
        )
        return ledger[0].time

    def belongs_to_episode(self, fill: Fill, direction: Optional[Direction]) -> bool:
        if direction is None:
            return True
        return self._on_ledger(fill, direction) and self._is_opening(fill, direction)


_TRACKERS = {
    AccountingMode.NET_BALANCE: NetBalanceTracker,
    AccountingMode.SIDE_TAGGED: SideTaggedTracker,
}


def create_tracker(mode: AccountingMode) -> EpisodeTracker:
    """Create the episode tracker for an accounting mode.

    Raises:
        ValueError: If the mode is not supported
    """
    try:
        return _TRACKERS[AccountingMode(mode)]()
    except (KeyError, ValueError):
        raise ValueError(f"Unsupported accounting mode: {mode!r}") from None


# =============================================================================
# Module-level API
# =============================================================================

def reconstruct_open_time(
    orders: Iterable[Order],
    direction: Direction,
    mode: AccountingMode = AccountingMode.NET_BALANCE,
) -> Optional[int]:
    """Start of the current open episode in epoch ms, None if not found."""
    return create_tracker(mode).reconstruct_open_time(orders, direction)


def count_fills(
    orders: Iterable[Order],
    episode_start: int,
    direction: Optional[Direction] = None,
    mode: AccountingMode = AccountingMode.NET_BALANCE,
) -> int:
    """Number of fills belonging to the episode that started at episode_start.

    NET_BALANCE counts every fill at or after the start. SIDE_TAGGED counts
    only opening fills on the direction's own ledger.
    """
    return create_tracker(mode).count_fills(orders, episode_start, direction)


def track_episode(
    symbol: str,
    orders: Sequence[Order],
    direction: Direction,
    mode: AccountingMode,
    now_ms: int,
) -> OpenEpisode:
    """Reconstruct the open episode of a position.

    When the history yields no start, the episode starts at now_ms (zero
    age) with no fills and found=False.
    """
    tracker = create_tracker(mode)
    started_at = tracker.reconstruct_open_time(orders, direction)
    if started_at is None:
        return OpenEpisode(
            symbol=symbol,
            direction=direction,
            started_at_ms=now_ms,
            fill_count=0,
            found=False,
        )

    return OpenEpisode(
        symbol=symbol,
        direction=direction,
        started_at_ms=started_at,
        fill_count=tracker.count_fills(orders, started_at, direction),
        found=True,
    )
