"""Telegram bot - long-polling loop and wiring of all components."""
import asyncio
from typing import Any, Dict, Optional

import structlog

from holdwatch.core.commands import CommandHandler, parse_command
from holdwatch.core.config import telegram_config
from holdwatch.core.monitor import BotState, LimitChecker, PositionMonitor
from holdwatch.notify.telegram import TelegramAPIError, TelegramNotifier

logger = structlog.get_logger(__name__)


class PositionBot:
    """
    Holding-time monitor bot.

    Responsibilities:
    - Polls Telegram for messages and dispatches commands
    - Learns the alert chat from the first message
    - Runs the periodic limit checker alongside polling
    """

    def __init__(
        self,
        notifier: TelegramNotifier,
        monitor: PositionMonitor,
        state: Optional[BotState] = None,
    ):
        self.notifier = notifier
        self.monitor = monitor
        self.state = state or BotState(chat_id=telegram_config.chat_id)
        self.commands = CommandHandler(monitor, notifier)
        self.checker = LimitChecker(monitor, notifier, self.state)

        self.username: Optional[str] = None
        self._offset: Optional[int] = None
        self._stop_event = asyncio.Event()
        self._poll_task: Optional[asyncio.Task] = None
        self.error_backoff_seconds = 5.0

    async def start(self):
        """Identify the bot, start the checker and the polling loop."""
        logger.info("bot.starting")

        me = await self.notifier.get_me()
        self.username = me.get("username")

        self._stop_event.clear()
        self.checker.start()
        self._poll_task = asyncio.create_task(self._poll_loop())

        logger.info(
            "bot.started",
            username=self.username,
            chat_id=self.state.chat_id,
        )

    async def stop(self):
        """Stop polling and the checker."""
        logger.info("bot.stopping")
        self._stop_event.set()

        if self._poll_task:
            self._poll_task.cancel()
            try:
                await self._poll_task
            except asyncio.CancelledError:
                pass
            self._poll_task = None

        await self.checker.stop()
        logger.info("bot.stopped")

    async def wait_closed(self):
        """Block until the polling loop ends."""
        if self._poll_task:
            await self._poll_task

    async def _poll_loop(self):
        while not self._stop_event.is_set():
            try:
                updates = await self.notifier.get_updates(offset=self._offset)
            except TelegramAPIError as e:
                logger.error("bot.poll_error", error=e.description)
                await self._pause()
                continue
            except Exception as e:
                logger.error(
                    "bot.poll_error",
                    error=str(e),
                    error_type=type(e).__name__,
                )
                await self._pause()
                continue

            for update in updates:
                update_id = update.get("update_id")
                if isinstance(update_id, int):
                    self._offset = update_id + 1
                try:
                    await self.process_update(update)
                except Exception as e:
                    logger.error(
                        "bot.update_failed",
                        update_id=update_id,
                        error=str(e),
                        error_type=type(e).__name__,
                    )

    async def _pause(self):
        try:
            await asyncio.wait_for(
                self._stop_event.wait(), timeout=self.error_backoff_seconds
            )
        except asyncio.TimeoutError:
            pass

    async def process_update(self, update: Dict[str, Any]) -> None:
        """Handle one update from getUpdates."""
        message = update.get("message")
        if not message:
            return

        chat_id = message["chat"]["id"]
        if self.state.remember_chat(chat_id):
            logger.info("bot.chat_registered", chat_id=chat_id)

        command = parse_command(message.get("text"))
        if command is None:
            logger.debug("bot.non_command_ignored", chat_id=chat_id)
            return

        if (
            command.mention
            and self.username
            and command.mention.lower() != self.username.lower()
        ):
            logger.debug("bot.command_for_other_bot", mention=command.mention)
            return

        await self.commands.dispatch(chat_id, command)
