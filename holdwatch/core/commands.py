"""Chat command handlers."""
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, Optional

import structlog

from holdwatch.core import messages
from holdwatch.core.config import monitor_config
from holdwatch.core.monitor import PositionMonitor
from holdwatch.exchange.binance_client import describe_gateway_error
from holdwatch.notify.telegram import TelegramNotifier, TypingIndicator
from holdwatch.tracking.limits import DurationParseError, parse_duration

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class Command:
    """A parsed "/name args" message.

    Attributes:
        name: Lower-case command name without slash or @botname
        args: Everything after the command, stripped
        mention: Bot username from a "/name@bot" suffix, if present
    """
    name: str
    args: str = ""
    mention: Optional[str] = None


def parse_command(text: Optional[str]) -> Optional[Command]:
    """Parse a chat message; None when it is not a command."""
    text = (text or "").strip()
    if not text.startswith("/"):
        return None

    head, _, args = text.partition(" ")
    name, _, mention = head[1:].partition("@")
    if not name:
        return None
    return Command(name=name.lower(), args=args.strip(), mention=mention or None)


class CommandHandler:
    """Executes commands and replies in the originating chat."""

    def __init__(
        self,
        monitor: PositionMonitor,
        notifier: TelegramNotifier,
    ):
        self.monitor = monitor
        self.store = monitor.store
        self.notifier = notifier

        handlers: Dict[str, Callable[[int, str], Awaitable[None]]] = {
            "start": self.handle_start,
            "positions": self.handle_positions,
            "ps": self.handle_positions,
            "add_limit": self.handle_add_limit,
            "l": self.handle_add_limit,
            "limits": self.handle_limits,
            "ls": self.handle_limits,
            "set_check_interval": self.handle_set_check_interval,
        }
        self._handlers = handlers

    async def dispatch(self, chat_id: int, command: Command) -> None:
        """Run the handler for a command, or reply with help if unknown."""
        handler = self._handlers.get(command.name, self.handle_unknown)
        logger.info("commands.received", command=command.name, chat_id=chat_id)
        await handler(chat_id, command.args)

    async def handle_start(self, chat_id: int, args: str) -> None:
        await self.notifier.send(messages.start_message(), chat_id=chat_id)

    async def handle_unknown(self, chat_id: int, args: str) -> None:
        await self.notifier.send(messages.unknown_command_message(), chat_id=chat_id)

    async def handle_positions(self, chat_id: int, args: str) -> None:
        async with TypingIndicator(self.notifier, chat_id):
            try:
                positions = await self.monitor.gateway.get_open_positions()
            except Exception as e:
                logger.error(
                    "commands.positions_failed",
                    error=str(e),
                    error_type=type(e).__name__,
                )
                text = describe_gateway_error(e)
                parse_mode = None
            else:
                reports = await self.monitor.build_reports(positions)
                text = messages.format_positions(reports)
                parse_mode = "HTML"

        await self.notifier.send(text, chat_id=chat_id, parse_mode=parse_mode)

    async def handle_add_limit(self, chat_id: int, args: str) -> None:
        parts = args.split()
        if len(parts) < 2:
            await self.notifier.send(messages.add_limit_usage(), chat_id=chat_id)
            return

        coin, time = parts[0], parts[1]
        try:
            rule, created = self.store.upsert_limit(coin, time)
        except DurationParseError as e:
            await self.notifier.send(
                messages.duration_error_message(str(e)), chat_id=chat_id
            )
            return
        except OSError as e:
            logger.error("commands.limit_save_failed", coin=coin, error=str(e))
            await self.notifier.send(messages.STORAGE_ERROR, chat_id=chat_id)
            return

        minutes = parse_duration(rule.time).total_seconds() / 60
        await self.notifier.send(
            messages.limit_saved_message(rule.coin, rule.time, minutes, created),
            chat_id=chat_id,
        )

    async def handle_limits(self, chat_id: int, args: str) -> None:
        storage = self.store.load()
        await self.notifier.send(
            messages.format_limits(storage, monitor_config.default_check_interval),
            chat_id=chat_id,
        )

    async def handle_set_check_interval(self, chat_id: int, args: str) -> None:
        if not args:
            interval = (
                self.store.load().check_interval
                or f"{monitor_config.default_check_interval} (default)"
            )
            await self.notifier.send(
                messages.check_interval_status(interval), chat_id=chat_id
            )
            return

        try:
            interval = self.store.set_check_interval(args)
        except DurationParseError as e:
            await self.notifier.send(
                messages.duration_error_message(str(e), examples="5m, 10m, 1h"),
                chat_id=chat_id,
            )
            return
        except OSError as e:
            logger.error("commands.interval_save_failed", error=str(e))
            await self.notifier.send(messages.STORAGE_ERROR, chat_id=chat_id)
            return

        minutes = parse_duration(interval).total_seconds() / 60
        await self.notifier.send(
            messages.check_interval_saved(interval, minutes), chat_id=chat_id
        )
