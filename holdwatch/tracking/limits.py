"""Holding-time limits: duration parsing and limit evaluation."""
import math
import re
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Dict, Iterable, List, Optional

import structlog

from holdwatch.core.config import monitor_config
from holdwatch.core.models import LimitRule

logger = structlog.get_logger(__name__)

_UNITS = {
    "s": timedelta(seconds=1),
    "m": timedelta(minutes=1),
    "h": timedelta(hours=1),
    "d": timedelta(days=1),
}

_NUMBER_RE = re.compile(r"^[+-]?(\d+(\.\d*)?|\.\d+)$")


class DurationParseError(ValueError):
    """Raised when a duration string such as "12h" cannot be used."""


def parse_duration(text: str) -> timedelta:
    """Parse a duration like "30s", "15m", "12h" or "1.5d".

    The unit is a single case-insensitive suffix from s, m, h, d; the
    magnitude is a decimal number.

    Raises:
        DurationParseError: If the text is empty, malformed, uses an unknown
            unit, or is not strictly positive
    """
    text = (text or "").strip()
    if not text:
        raise DurationParseError("empty duration")

    unit = text[-1].lower()
    magnitude = text[:-1].strip()

    if unit not in _UNITS:
        raise DurationParseError(
            f"unknown time unit {text[-1]!r} (use s, m, h or d)"
        )
    if not _NUMBER_RE.match(magnitude):
        raise DurationParseError(f"invalid number {magnitude!r}")

    value = float(magnitude)
    if not math.isfinite(value):
        raise DurationParseError(f"invalid number {magnitude!r}")

    try:
        duration = _UNITS[unit] * value
    except OverflowError:
        raise DurationParseError("duration is too large") from None
    if duration <= timedelta(0):
        raise DurationParseError("duration must be greater than zero")
    return duration


def format_duration(duration: timedelta) -> str:
    """Render a duration as whole hours and minutes, e.g. "13h 5m"."""
    total_minutes = int(abs(duration).total_seconds() // 60)
    hours, minutes = divmod(total_minutes, 60)
    return f"{hours}h {minutes}m"


def describe_duration(text: str) -> str:
    """Humanize a stored duration: minutes below 1h, hours below 1d, else days."""
    try:
        duration = parse_duration(text)
    except DurationParseError:
        return text

    minutes = duration.total_seconds() / 60
    if minutes < 60:
        return f"{text} ({minutes:.0f} min)"
    if minutes < 1440:
        return f"{text} ({minutes / 60:.1f} h)"
    return f"{text} ({minutes / 1440:.1f} d)"


def base_asset(symbol: str, quote_suffixes: Optional[Iterable[str]] = None) -> str:
    """Strip the first matching quote suffix, e.g. "LSKUSDT" -> "LSK"."""
    symbol = symbol.strip().upper()
    suffixes = quote_suffixes if quote_suffixes is not None else monitor_config.quote_suffixes
    for suffix in suffixes:
        if symbol.endswith(suffix) and len(symbol) > len(suffix):
            return symbol[: -len(suffix)]
    return symbol


# =============================================================================
# Limit Evaluator
# =============================================================================

@dataclass(frozen=True)
class LimitEvaluation:
    """Outcome of comparing an episode's age with its limit.

    Attributes:
        exceeded: True if age is strictly greater than the limit
        age: Time since the episode started
        limit: Configured holding-time limit
        remaining: Time left before the limit (zero when exceeded)
        overshoot: Time past the limit (zero when within)
    """
    exceeded: bool
    age: timedelta
    limit: timedelta
    remaining: timedelta
    overshoot: timedelta

    @property
    def within_limit(self) -> bool:
        return not self.exceeded


def evaluate_limit(
    now: datetime, episode_start: datetime, limit: timedelta
) -> LimitEvaluation:
    """Classify an episode as within its limit or exceeded.

    An age exactly equal to the limit is within the limit.
    """
    age = now - episode_start
    if age > limit:
        return LimitEvaluation(
            exceeded=True,
            age=age,
            limit=limit,
            remaining=timedelta(0),
            overshoot=age - limit,
        )
    return LimitEvaluation(
        exceeded=False,
        age=age,
        limit=limit,
        remaining=limit - age,
        overshoot=timedelta(0),
    )


class LimitBook:
    """Parsed limit rules keyed by base asset.

    Stored rules that no longer parse are skipped with a warning so one bad
    entry never blocks the others.
    """

    def __init__(self, rules: Iterable[LimitRule]):
        self._durations: Dict[str, timedelta] = {}
        self._texts: Dict[str, str] = {}

        for rule in rules:
            try:
                duration = parse_duration(rule.time)
            except DurationParseError as e:
                logger.warning(
                    "limits.invalid_rule_skipped",
                    coin=rule.coin,
                    time=rule.time,
                    error=str(e),
                )
                continue
            self._durations[rule.coin] = duration
            self._texts[rule.coin] = rule.time

    def __len__(self) -> int:
        return len(self._durations)

    def __contains__(self, coin: str) -> bool:
        return coin.upper() in self._durations

    def get(self, coin: str) -> Optional[timedelta]:
        return self._durations.get(coin.upper())

    def text(self, coin: str) -> str:
        return self._texts.get(coin.upper(), "")

    def for_symbol(self, symbol: str) -> Optional[timedelta]:
        """Limit for a trading symbol, via its base asset."""
        return self.get(base_asset(symbol))

    @property
    def coins(self) -> List[str]:
        return list(self._durations)
