"""Unit tests for the Telegram transport."""
import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import aiohttp
import pytest

from holdwatch.notify.telegram import (
    TelegramAPIError,
    TelegramNotifier,
    TypingIndicator,
    split_message,
)


def make_session(*bodies):
    """aiohttp session whose post() yields responses with the given JSON bodies."""
    session = MagicMock()
    session.closed = False
    responses = []
    for body in bodies:
        resp = MagicMock()
        resp.status = 200
        resp.json = AsyncMock(return_value=body)
        ctx = MagicMock()
        ctx.__aenter__ = AsyncMock(return_value=resp)
        ctx.__aexit__ = AsyncMock(return_value=False)
        responses.append(ctx)
    session.post = MagicMock(side_effect=responses)
    session.close = AsyncMock()
    return session


def ok(result=None):
    return {"ok": True, "result": result if result is not None else {"message_id": 1}}


# =============================================================================
# Split Tests
# =============================================================================

class TestSplitMessage:
    """Test splitting of long messages."""

    def test_short_message_single_part(self):
        assert split_message("hello", max_length=4096) == ["hello"]

    def test_exact_limit_single_part(self):
        text = "x" * 4096
        assert split_message(text, max_length=4096, header_reserve=50) == [text]

    def test_groups_whole_lines(self):
        line = "y" * 99 + "\n"
        text = line * 100
        parts = split_message(text, max_length=4096, header_reserve=50)

        assert len(parts) == 3
        assert "".join(parts) == text
        for part in parts:
            assert len(part) <= 4046
            assert part.endswith("\n")

    def test_hard_splits_long_line(self):
        text = "z" * 10000
        parts = split_message(text, max_length=4096, header_reserve=50)
        assert [len(p) for p in parts] == [4046, 4046, 1908]
        assert "".join(parts) == text

    def test_long_line_remainder_joins_next_lines(self):
        text = "a" * 5000 + "\nshort\n"
        parts = split_message(text, max_length=4096, header_reserve=50)
        assert parts[0] == "a" * 4046
        assert parts[1] == "a" * 954 + "\n" + "short\n"

    def test_invalid_reserve(self):
        with pytest.raises(ValueError):
            split_message("x" * 100, max_length=10, header_reserve=10)


# =============================================================================
# Client Tests
# =============================================================================

class TestTelegramNotifier:
    """Test Bot API calls."""

    @pytest.mark.asyncio
    async def test_send_short_message(self):
        session = make_session(ok({"message_id": 7}))
        notifier = TelegramNotifier(bot_token="TOKEN", chat_id=99, session=session)

        ids = await notifier.send("hello", parse_mode="HTML")

        assert ids == [7]
        url = session.post.call_args[0][0]
        payload = session.post.call_args[1]["json"]
        assert url.endswith("/botTOKEN/sendMessage")
        assert payload["chat_id"] == 99
        assert payload["text"] == "hello"
        assert payload["parse_mode"] == "HTML"

    @pytest.mark.asyncio
    async def test_send_long_message_adds_part_headers(self):
        session = make_session(ok({"message_id": 1}), ok({"message_id": 2}))
        notifier = TelegramNotifier(bot_token="TOKEN", chat_id=99, session=session)

        with patch("holdwatch.notify.telegram.asyncio.sleep", new=AsyncMock()):
            ids = await notifier.send("z" * 5000)

        assert ids == [1, 2]
        texts = [c[1]["json"]["text"] for c in session.post.call_args_list]
        assert texts[0].startswith("📄 Part 1 of 2\n\n")
        assert texts[1].startswith("📄 Part 2 of 2\n\n")
        assert all(len(t) <= 4096 for t in texts)
        assert "parse_mode" not in session.post.call_args_list[0][1]["json"]

    @pytest.mark.asyncio
    async def test_send_without_chat(self):
        notifier = TelegramNotifier(bot_token="TOKEN", chat_id=None, session=make_session())
        notifier.chat_id = None
        with pytest.raises(ValueError):
            await notifier.send("hello")

    @pytest.mark.asyncio
    async def test_api_error(self):
        session = make_session({"ok": False, "error_code": 400, "description": "Bad Request: chat not found"})
        notifier = TelegramNotifier(bot_token="TOKEN", chat_id=1, session=session)

        with pytest.raises(TelegramAPIError) as exc_info:
            await notifier.send("hello")

        assert exc_info.value.error_code == 400
        assert "chat not found" in exc_info.value.description

    @pytest.mark.asyncio
    async def test_transport_error(self):
        session = MagicMock()
        session.closed = False
        session.post = MagicMock(side_effect=aiohttp.ClientConnectionError("refused"))
        notifier = TelegramNotifier(bot_token="TOKEN", chat_id=1, session=session)

        with pytest.raises(TelegramAPIError):
            await notifier.get_me()

    @pytest.mark.asyncio
    async def test_get_updates(self):
        updates = [{"update_id": 10, "message": {"text": "/ps"}}]
        session = make_session(ok(updates))
        notifier = TelegramNotifier(bot_token="TOKEN", session=session)

        result = await notifier.get_updates(offset=10, timeout=30)

        assert result == updates
        payload = session.post.call_args[1]["json"]
        assert payload["offset"] == 10
        assert payload["timeout"] == 30

    @pytest.mark.asyncio
    async def test_close_keeps_external_session(self):
        session = make_session()
        notifier = TelegramNotifier(bot_token="TOKEN", session=session)
        await notifier.close()
        session.close.assert_not_awaited()


class TestTypingIndicator:
    """Test the typing heartbeat."""

    @pytest.mark.asyncio
    async def test_pings_until_exit(self):
        notifier = MagicMock()
        notifier.send_chat_action = AsyncMock()

        async with TypingIndicator(notifier, 5, interval=0.01):
            await asyncio.sleep(0.035)

        count = notifier.send_chat_action.await_count
        assert count >= 2
        await asyncio.sleep(0.03)
        assert notifier.send_chat_action.await_count == count
        notifier.send_chat_action.assert_awaited_with(5)

    @pytest.mark.asyncio
    async def test_ping_failures_ignored(self):
        notifier = MagicMock()
        notifier.send_chat_action = AsyncMock(side_effect=TelegramAPIError("sendChatAction", "boom"))

        async with TypingIndicator(notifier, 5, interval=0.01):
            await asyncio.sleep(0.02)
