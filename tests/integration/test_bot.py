"""Integration tests for the Telegram bot.

These exercise the full path from a Telegram update through command
dispatch, the monitor, the reconstruction core and the limit store, with
only the exchange and Telegram transports mocked.
"""
import asyncio
from unittest.mock import AsyncMock

import pytest

from holdwatch.core.bot import PositionBot
from holdwatch.core.models import AccountingMode
from holdwatch.core.monitor import BotState, PositionMonitor
from holdwatch.notify.telegram import TelegramAPIError
from tests.conftest import NOW, make_order, make_position, ts


def message_update(update_id, text, chat_id=555):
    return {
        "update_id": update_id,
        "message": {
            "message_id": update_id,
            "chat": {"id": chat_id, "type": "private"},
            "from": {"id": 1, "username": "trader"},
            "text": text,
        },
    }


@pytest.fixture
def bot(mock_notifier, monitor):
    bot = PositionBot(mock_notifier, monitor, BotState())
    bot.error_backoff_seconds = 0.01
    return bot


class TestProcessUpdate:
    """Test update handling."""

    @pytest.mark.asyncio
    async def test_first_message_registers_chat(self, bot, mock_notifier):
        await bot.process_update(message_update(1, "/start", chat_id=777))
        await bot.process_update(message_update(2, "/start", chat_id=888))

        assert bot.state.chat_id == 777
        assert mock_notifier.send.await_count == 2

    @pytest.mark.asyncio
    async def test_non_command_ignored(self, bot, mock_notifier):
        await bot.process_update(message_update(1, "hello there"))

        mock_notifier.send.assert_not_awaited()
        assert bot.state.chat_id == 555

    @pytest.mark.asyncio
    async def test_update_without_message_ignored(self, bot, mock_notifier):
        await bot.process_update({"update_id": 1, "edited_message": {}})
        mock_notifier.send.assert_not_awaited()
        assert bot.state.chat_id is None

    @pytest.mark.asyncio
    async def test_command_for_other_bot_ignored(self, bot, mock_notifier):
        bot.username = "holdwatch_bot"

        await bot.process_update(message_update(1, "/ps@another_bot"))
        mock_notifier.send.assert_not_awaited()

        await bot.process_update(message_update(2, "/start@HoldWatch_Bot"))
        mock_notifier.send.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_add_limit_then_list(self, bot, mock_notifier, monitor):
        await bot.process_update(message_update(1, "/l eth 1.5d"))
        await bot.process_update(message_update(2, "/ls"))

        text = mock_notifier.send.call_args[0][0]
        assert "1. LSK - 12h (12.0 h)" in text
        assert "2. ETH - 1.5d (1.5 d)" in text
        assert monitor.store.load().find("ETH").time == "1.5d"


class TestPollingLoop:
    """Test the long-polling loop."""

    @pytest.mark.asyncio
    async def test_dispatches_and_advances_offset(self, bot, mock_notifier):
        seen_offsets = []
        batches = [[message_update(10, "/start"), message_update(11, "/unknown")]]

        async def get_updates(offset=None, timeout=None):
            seen_offsets.append(offset)
            if batches:
                return batches.pop(0)
            await asyncio.sleep(0.01)
            return []

        mock_notifier.get_updates = AsyncMock(side_effect=get_updates)

        await bot.start()
        await asyncio.sleep(0.05)
        await bot.stop()

        assert seen_offsets[0] is None
        assert seen_offsets[1] == 12
        assert mock_notifier.send.await_count == 2
        assert bot.username == "holdwatch_bot"
        assert not bot.checker.is_running

    @pytest.mark.asyncio
    async def test_handler_failure_does_not_stop_loop(self, bot, mock_notifier):
        batches = [[message_update(1, "/start")], [message_update(2, "/start")]]

        async def get_updates(offset=None, timeout=None):
            if batches:
                return batches.pop(0)
            await asyncio.sleep(0.01)
            return []

        mock_notifier.get_updates = AsyncMock(side_effect=get_updates)
        mock_notifier.send = AsyncMock(side_effect=[TelegramAPIError("sendMessage", "blocked"), [1]])

        await bot.start()
        await asyncio.sleep(0.05)
        await bot.stop()

        assert mock_notifier.send.await_count == 2

    @pytest.mark.asyncio
    async def test_poll_errors_back_off_and_retry(self, bot, mock_notifier):
        calls = []

        async def get_updates(offset=None, timeout=None):
            calls.append(offset)
            if len(calls) == 1:
                raise TelegramAPIError("getUpdates", "Bad Gateway", 502)
            await asyncio.sleep(0.01)
            return []

        mock_notifier.get_updates = AsyncMock(side_effect=get_updates)

        await bot.start()
        await asyncio.sleep(0.05)
        await bot.stop()

        assert len(calls) >= 2

    @pytest.mark.asyncio
    async def test_unexpected_poll_error_keeps_polling(self, bot, mock_notifier):
        calls = []

        async def get_updates(offset=None, timeout=None):
            calls.append(offset)
            if len(calls) == 1:
                raise RuntimeError("connector closed")
            await asyncio.sleep(0.01)
            return []

        mock_notifier.get_updates = AsyncMock(side_effect=get_updates)

        await bot.start()
        await asyncio.sleep(0.05)
        assert not bot._poll_task.done()
        await bot.stop()

        assert len(calls) >= 2

    @pytest.mark.asyncio
    async def test_update_without_id_does_not_stop_loop(self, bot, mock_notifier):
        seen_offsets = []
        batches = [[{"message": {}}, message_update(5, "/start")]]

        async def get_updates(offset=None, timeout=None):
            seen_offsets.append(offset)
            if batches:
                return batches.pop(0)
            await asyncio.sleep(0.01)
            return []

        mock_notifier.get_updates = AsyncMock(side_effect=get_updates)

        await bot.start()
        await asyncio.sleep(0.05)
        await bot.stop()

        assert seen_offsets[1] == 6
        mock_notifier.send.assert_awaited_once()


class TestEndToEndAlert:
    """Test the periodic check against a reconstructed hedge position."""

    @pytest.mark.asyncio
    async def test_alert_for_hedge_long_ledger(self, mock_gateway, lsk_limit_store, mock_notifier):
        mock_gateway.get_accounting_mode.return_value = AccountingMode.SIDE_TAGGED
        mock_gateway.get_open_positions.return_value = [
            make_position(amount="0.2", position_side="LONG"),
            make_position(amount="-0.2", position_side="SHORT"),
        ]
        mock_gateway.list_orders.return_value = [
            make_order("BUY", "0.1", ts(15), position_side="LONG"),
            make_order("SELL", "0.2", ts(4), position_side="SHORT"),
            make_order("BUY", "0.1", ts(3), position_side="LONG"),
        ]
        monitor = PositionMonitor(mock_gateway, lsk_limit_store, accounting_mode="auto")
        bot = PositionBot(mock_notifier, monitor, BotState(chat_id=555))

        sent = await bot.checker.check_once(now=NOW)

        assert sent == 1
        text = mock_notifier.send.call_args[0][0]
        assert "LSKUSDT LONG" in text
        assert "LSKUSDT SHORT" not in text
        assert "Held for: 15h 0m (limit: 12h)" in text
        assert "Over by: 3h 0m" in text
