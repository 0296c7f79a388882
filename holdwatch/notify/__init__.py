"""Notification transport for HoldWatch."""

from holdwatch.notify.telegram import (
    TelegramAPIError,
    TelegramNotifier,
    TypingIndicator,
    split_message,
)

__all__ = [
    "TelegramAPIError",
    "TelegramNotifier",
    "TypingIndicator",
    "split_message",
]
