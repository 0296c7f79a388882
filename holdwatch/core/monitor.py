"""Position monitor - joins positions, order history and limits.

PositionMonitor builds one PositionReport per open position: the snapshot,
its reconstructed open episode and, when the base asset has a limit, the
limit evaluation. LimitChecker runs the periodic check in the background
and alerts the known chat about every position past its limit.
"""
import asyncio
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import List, Optional, Sequence

import structlog

from holdwatch.core.config import binance_config, monitor_config
from holdwatch.core.messages import format_limit_alert
from holdwatch.core.models import (
    AccountingMode, OpenEpisode, PositionSide, PositionSnapshot, datetime_to_ms,
)
from holdwatch.storage.limit_store import LimitStore
from holdwatch.tracking.limits import (
    DurationParseError, LimitBook, LimitEvaluation, base_asset, evaluate_limit,
    parse_duration,
)
from holdwatch.tracking.reconstructor import track_episode

logger = structlog.get_logger(__name__)


@dataclass
class BotState:
    """Runtime state shared by the bot and the checker.

    Attributes:
        chat_id: Chat that receives alerts; learned from the first message
            when not configured
    """
    chat_id: Optional[int] = None

    def remember_chat(self, chat_id: int) -> bool:
        """Store chat_id if none is known yet; True when it was stored."""
        if self.chat_id is None:
            self.chat_id = chat_id
            return True
        return False


@dataclass(frozen=True)
class PositionReport:
    """One open position with its episode and limit status."""
    position: PositionSnapshot
    episode: OpenEpisode
    age: timedelta
    limit_text: str = ""
    evaluation: Optional[LimitEvaluation] = None

    @property
    def side_label(self) -> str:
        return self.episode.direction.value.upper()

    @property
    def exceeded(self) -> bool:
        return self.evaluation is not None and self.evaluation.exceeded


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class PositionMonitor:
    """Builds position reports from the gateway and the limit store.

    The gateway needs list_orders(), get_open_positions() and
    get_accounting_mode(); see BinanceFuturesClient.
    """

    def __init__(
        self,
        gateway,
        store: LimitStore,
        accounting_mode: Optional[str] = None,
    ):
        self.gateway = gateway
        self.store = store
        self.accounting_mode = accounting_mode or binance_config.accounting_mode
        self._resolved_mode: Optional[AccountingMode] = None

    async def resolve_mode(
        self, positions: Sequence[PositionSnapshot] = ()
    ) -> AccountingMode:
        """Accounting mode for reconstruction.

        An explicit configured mode wins. In "auto" the venue is asked once
        and the answer cached; if that call fails the mode is inferred from
        the position side tags of the current positions.
        """
        if self.accounting_mode != "auto":
            return AccountingMode(self.accounting_mode)
        if self._resolved_mode is not None:
            return self._resolved_mode

        try:
            self._resolved_mode = await self.gateway.get_accounting_mode()
            return self._resolved_mode
        except Exception as e:
            hedged = any(p.position_side != PositionSide.BOTH for p in positions)
            mode = AccountingMode.SIDE_TAGGED if hedged else AccountingMode.NET_BALANCE
            logger.warning(
                "monitor.accounting_mode_fallback",
                error=str(e),
                inferred=mode.value,
            )
            return mode

    async def _episode_for(
        self,
        position: PositionSnapshot,
        mode: AccountingMode,
        now_ms: int,
    ) -> OpenEpisode:
        try:
            orders = await self.gateway.list_orders(
                position.symbol, binance_config.order_history_limit
            )
        except Exception as e:
            logger.warning(
                "monitor.order_history_failed",
                symbol=position.symbol,
                error=str(e),
            )
            orders = []

        episode = track_episode(
            position.symbol, orders, position.direction, mode, now_ms
        )
        logger.debug(
            "monitor.episode_reconstructed",
            symbol=position.symbol,
            direction=episode.direction.value,
            started_at=episode.started_at.isoformat(),
            fill_count=episode.fill_count,
            found=episode.found,
        )
        return episode

    async def build_reports(
        self,
        positions: Optional[Sequence[PositionSnapshot]] = None,
        now: Optional[datetime] = None,
        limited_only: bool = False,
    ) -> List[PositionReport]:
        """Report every open position.

        Args:
            positions: Snapshots to report on; fetched from the gateway if None
            now: Reference time, defaults to the current UTC time
            limited_only: Skip positions whose base asset has no limit, and
                do not fetch their order history

        Raises:
            Whatever the gateway raises while fetching positions
        """
        now = now or _utcnow()
        now_ms = datetime_to_ms(now)

        if positions is None:
            positions = await self.gateway.get_open_positions()

        book = LimitBook(self.store.load().limits)
        mode = await self.resolve_mode(positions)

        reports = []
        for position in positions:
            limit = book.for_symbol(position.symbol)
            if limited_only and limit is None:
                continue

            episode = await self._episode_for(position, mode, now_ms)
            age = now - episode.started_at

            evaluation = None
            limit_text = ""
            if limit is not None:
                evaluation = evaluate_limit(now, episode.started_at, limit)
                limit_text = book.text(base_asset(position.symbol))

            reports.append(PositionReport(
                position=position,
                episode=episode,
                age=age,
                limit_text=limit_text,
                evaluation=evaluation,
            ))

        logger.info(
            "monitor.reports_built",
            positions=len(positions),
            reports=len(reports),
            mode=mode.value,
        )
        return reports

    async def find_exceeded(self, now: Optional[datetime] = None) -> List[PositionReport]:
        """Positions whose holding time is past their limit."""
        reports = await self.build_reports(now=now, limited_only=True)
        return [r for r in reports if r.exceeded]


class LimitChecker:
    """Background task that alerts about positions past their limit.

    The interval is read from the store before every wait, so a new
    /set_check_interval value applies from the next cycle.
    """

    def __init__(self, monitor: PositionMonitor, notifier, state: BotState):
        self.monitor = monitor
        self.notifier = notifier
        self.state = state
        self._stop_event = asyncio.Event()
        self._task: Optional[asyncio.Task] = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def current_interval(self) -> timedelta:
        """Configured check interval, falling back to the default when invalid."""
        text = self.monitor.store.load().check_interval
        try:
            return parse_duration(text)
        except DurationParseError as e:
            logger.warning("checker.invalid_interval", interval=text, error=str(e))
            return parse_duration(monitor_config.default_check_interval)

    async def check_once(self, now: Optional[datetime] = None) -> int:
        """Run one check and send one alert if anything is over its limit.

        Returns:
            Number of positions reported as exceeded
        """
        chat_id = self.state.chat_id
        if chat_id is None:
            logger.debug("checker.skipped", reason="no_chat")
            return 0

        if not self.monitor.store.load().limits:
            logger.debug("checker.skipped", reason="no_limits")
            return 0

        exceeded = await self.monitor.find_exceeded(now=now)
        if not exceeded:
            logger.debug("checker.all_within_limits")
            return 0

        logger.info(
            "checker.limits_exceeded",
            symbols=[r.position.symbol for r in exceeded],
        )
        await self.notifier.send(
            format_limit_alert(exceeded), chat_id=chat_id, parse_mode="HTML"
        )
        return len(exceeded)

    async def run(self):
        """Check periodically until stop() is called."""
        logger.info("checker.started")
        while not self._stop_event.is_set():
            interval = self.current_interval()
            try:
                await asyncio.wait_for(
                    self._stop_event.wait(), timeout=interval.total_seconds()
                )
                break
            except asyncio.TimeoutError:
                pass

            try:
                await self.check_once()
            except Exception as e:
                logger.error(
                    "checker.check_failed",
                    error=str(e),
                    error_type=type(e).__name__,
                )
        logger.info("checker.stopped")

    def start(self) -> asyncio.Task:
        self._stop_event.clear()
        self._task = asyncio.create_task(self.run())
        return self._task

    async def stop(self):
        self._stop_event.set()
        if self._task is not None:
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
