"""Telegram Bot API transport.

A thin aiohttp client over the handful of Bot API methods HoldWatch uses:
sendMessage (with splitting of long texts), sendChatAction, getUpdates
(long polling) and getMe.
"""
import asyncio
from typing import Any, Dict, List, Optional

import aiohttp
import structlog

from holdwatch.core.config import telegram_config

logger = structlog.get_logger(__name__)


class TelegramAPIError(Exception):
    """Raised when a Bot API call fails or returns ok=false."""

    def __init__(self, method: str, description: str, error_code: Optional[int] = None):
        self.method = method
        self.description = description
        self.error_code = error_code
        super().__init__(f"{method} failed: {description}")


# =============================================================================
# Message Splitting
# =============================================================================

def split_message(
    text: str,
    max_length: Optional[int] = None,
    header_reserve: Optional[int] = None,
) -> List[str]:
    """Split a long message into parts that fit one Telegram message.

    Texts up to max_length are returned unchanged as a single part. Longer
    texts are grouped line by line into parts of at most
    max_length - header_reserve characters; a single line longer than that
    is cut into fixed-size pieces.
    """
    max_length = max_length or telegram_config.max_message_length
    if header_reserve is None:
        header_reserve = telegram_config.header_reserve

    if len(text) <= max_length:
        return [text]

    safe_length = max_length - header_reserve
    if safe_length <= 0:
        raise ValueError("header_reserve must be smaller than max_length")

    parts: List[str] = []
    current = ""

    for line in text.splitlines(keepends=True):
        if len(line) > safe_length:
            if current:
                parts.append(current)
                current = ""
            while len(line) > safe_length:
                parts.append(line[:safe_length])
                line = line[safe_length:]
            current = line
        elif len(current) + len(line) <= safe_length:
            current += line
        else:
            if current:
                parts.append(current)
            current = line

    if current:
        parts.append(current)
    return parts


def part_header(index: int, total: int) -> str:
    return f"📄 Part {index} of {total}\n\n"


# =============================================================================
# Client
# =============================================================================

class TelegramNotifier:
    """Async Telegram Bot API client.

    Attributes:
        bot_token: Bot token from BotFather
        chat_id: Default chat for send() when none is given
    """

    def __init__(
        self,
        bot_token: Optional[str] = None,
        chat_id: Optional[int] = None,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        self.bot_token = bot_token if bot_token is not None else telegram_config.bot_token
        self.chat_id = chat_id if chat_id is not None else telegram_config.chat_id
        self._session = session
        self._owns_session = session is None

    @property
    def base_url(self) -> str:
        return f"{telegram_config.api_url}/bot{self.bot_token}"

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
            self._owns_session = True
        return self._session

    async def close(self):
        """Close the HTTP session if this client created it."""
        if self._session is not None and self._owns_session and not self._session.closed:
            await self._session.close()
        self._session = None
        logger.debug("telegram.closed")

    async def _call(
        self,
        method: str,
        payload: Optional[Dict[str, Any]] = None,
        timeout: Optional[float] = None,
    ) -> Any:
        """Invoke a Bot API method and return its result field.

        Raises:
            TelegramAPIError: On transport errors or an ok=false response
        """
        url = f"{self.base_url}/{method}"
        client_timeout = aiohttp.ClientTimeout(
            total=timeout or telegram_config.request_timeout
        )
        session = self._get_session()

        try:
            async with session.post(url, json=payload or {}, timeout=client_timeout) as resp:
                try:
                    body = await resp.json(content_type=None)
                except ValueError:
                    text = await resp.text()
                    raise TelegramAPIError(
                        method, f"HTTP {resp.status}: {text[:200]}", resp.status
                    ) from None
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise TelegramAPIError(method, str(e) or type(e).__name__) from e

        if not isinstance(body, dict) or not body.get("ok"):
            description = "unknown error"
            error_code = None
            if isinstance(body, dict):
                description = body.get("description", description)
                error_code = body.get("error_code")
            raise TelegramAPIError(method, description, error_code)

        return body.get("result")

    # =========================================================================
    # Bot API methods
    # =========================================================================

    async def get_me(self) -> Dict[str, Any]:
        """Identity of the bot (id, username)."""
        return await self._call("getMe")

    async def get_updates(
        self, offset: Optional[int] = None, timeout: Optional[int] = None
    ) -> List[Dict[str, Any]]:
        """Long-poll for new updates.

        Args:
            offset: First update id to return (last seen id + 1)
            timeout: Long-polling timeout in seconds
        """
        poll_timeout = telegram_config.poll_timeout if timeout is None else timeout
        payload: Dict[str, Any] = {
            "timeout": poll_timeout,
            "allowed_updates": ["message"],
        }
        if offset is not None:
            payload["offset"] = offset

        result = await self._call(
            "getUpdates",
            payload,
            timeout=poll_timeout + telegram_config.request_timeout,
        )
        return result or []

    async def send_chat_action(self, chat_id: int, action: str = "typing") -> None:
        await self._call("sendChatAction", {"chat_id": chat_id, "action": action})

    async def send(
        self,
        text: str,
        chat_id: Optional[int] = None,
        parse_mode: Optional[str] = None,
    ) -> List[int]:
        """Send a message, split into numbered parts when too long.

        Returns:
            Message ids of the sent parts

        Raises:
            ValueError: If no chat id is known
            TelegramAPIError: If a part fails; later parts are not sent
        """
        target = chat_id if chat_id is not None else self.chat_id
        if target is None:
            raise ValueError("No chat id to send to")

        parts = split_message(text)
        message_ids = []

        for i, part in enumerate(parts):
            if len(parts) > 1:
                part = part_header(i + 1, len(parts)) + part

            payload: Dict[str, Any] = {
                "chat_id": target,
                "text": part,
                "disable_web_page_preview": True,
            }
            if parse_mode:
                payload["parse_mode"] = parse_mode

            try:
                result = await self._call("sendMessage", payload)
            except TelegramAPIError as e:
                logger.error(
                    "telegram.send_failed",
                    chat_id=target,
                    part=i + 1,
                    parts=len(parts),
                    error=e.description,
                )
                raise

            message_ids.append((result or {}).get("message_id"))

            if i < len(parts) - 1:
                await asyncio.sleep(telegram_config.part_delay_seconds)

        logger.debug("telegram.sent", chat_id=target, parts=len(parts))
        return message_ids


class TypingIndicator:
    """Keeps the "typing..." status visible while a reply is prepared.

    Usage:
        async with TypingIndicator(notifier, chat_id):
            text = await build_report()
        await notifier.send(text, chat_id)
    """

    def __init__(
        self,
        notifier: TelegramNotifier,
        chat_id: int,
        interval: Optional[float] = None,
    ):
        self.notifier = notifier
        self.chat_id = chat_id
        self.interval = interval or telegram_config.typing_interval_seconds
        self._task: Optional[asyncio.Task] = None

    async def _ping(self):
        try:
            await self.notifier.send_chat_action(self.chat_id)
        except TelegramAPIError as e:
            logger.debug("telegram.typing_failed", chat_id=self.chat_id, error=e.description)

    async def _run(self):
        while True:
            await asyncio.sleep(self.interval)
            await self._ping()

    async def __aenter__(self):
        await self._ping()
        self._task = asyncio.create_task(self._run())
        return self

    async def __aexit__(self, exc_type, exc, tb):
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        return False
