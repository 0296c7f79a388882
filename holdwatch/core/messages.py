"""User-facing message texts.

All texts that carry venue data are sent with parse_mode=HTML, so every
interpolated value goes through html.escape.
"""
from html import escape
from typing import List, Sequence

from holdwatch.core.models import LimitsStorage
from holdwatch.tracking.limits import describe_duration, format_duration

COMMAND_LIST = (
    "/positions or /ps - show open positions\n"
    "/add_limit or /l - add a holding-time limit\n"
    "/limits or /ls - show configured limits\n"
    "/set_check_interval - set the position check interval"
)

TIME_UNITS_HELP = "Time units: s (seconds), m (minutes), h (hours), d (days)"


def start_message() -> str:
    return (
        "Hi! I track open positions on Binance Futures.\n\n"
        "Available commands:\n" + COMMAND_LIST
    )


def unknown_command_message() -> str:
    return "Unknown command. Use:\n" + COMMAND_LIST


def _pnl_text(raw: str) -> str:
    raw = (raw or "").strip()
    if raw in ("", "0", "0.0"):
        return "0.00"
    return raw


def format_positions(reports: Sequence) -> str:
    """Render the /positions report.

    Args:
        reports: PositionReport items in display order
    """
    if not reports:
        return "You have no open Futures positions."

    lines: List[str] = ["📊 <b>Open Futures positions:</b>", ""]

    for i, report in enumerate(reports, start=1):
        pos = report.position
        lines.append(f"{i}. <b>{escape(pos.symbol)}</b> {report.side_label}")
        lines.append(f"   Size: {escape(pos.position_amt)}")
        lines.append(f"   Entry price: {escape(pos.entry_price)}")
        lines.append(f"   PnL: {escape(_pnl_text(pos.unrealized_profit))}")
        lines.append(f"   Fills in position: {report.episode.fill_count}")
        lines.append(f"   Held for: {format_duration(report.age)}")

        if report.evaluation is not None:
            limit_text = escape(report.limit_text)
            if report.evaluation.exceeded:
                lines.append(
                    f"   ⚠️ Limit {limit_text} exceeded by "
                    f"{format_duration(report.evaluation.overshoot)}"
                )
            else:
                lines.append(
                    f"   ⏱ Limit {limit_text}: "
                    f"{format_duration(report.evaluation.remaining)} left"
                )
        lines.append("")

    return "\n".join(lines)


def format_limit_alert(reports: Sequence) -> str:
    """Render the periodic alert for positions past their limit."""
    lines: List[str] = [
        "⚠️ <b>WARNING: positions exceeded their holding-time limits!</b>",
        "",
    ]

    for report in reports:
        pos = report.position
        lines.append(f"🔴 <b>{escape(pos.symbol)} {report.side_label}</b>")
        lines.append(f"   Size: {escape(pos.position_amt)}")
        lines.append(f"   Entry price: {escape(pos.entry_price)}")
        pnl = _pnl_text(pos.unrealized_profit)
        if pnl != "0.00":
            lines.append(f"   PnL: {escape(pnl)}")
        lines.append(
            f"   Held for: {format_duration(report.age)} "
            f"(limit: {escape(report.limit_text)})"
        )
        lines.append(
            f"   ⚠️ Over by: {format_duration(report.evaluation.overshoot)}"
        )
        lines.append("")

    lines.append("💡 <i>Consider closing the positions that exceeded their limits.</i>")
    return "\n".join(lines)


def format_limits(storage: LimitsStorage, default_interval: str = "5m") -> str:
    """Render the /limits listing."""
    if not storage.limits:
        return (
            "📋 No limits configured.\n\n"
            "Use /add_limit to add one.\n\n"
            "Example: /add_limit LSK 12h"
        )

    lines = ["📋 Configured limits:", ""]
    for i, rule in enumerate(storage.limits, start=1):
        lines.append(f"{i}. {rule.coin} - {describe_duration(rule.time)}")

    interval = storage.check_interval or f"{default_interval} (default)"
    lines.extend([
        "",
        "💡 Use /add_limit to add or change limits.",
        "",
        f"⏱ Position check interval: {interval}",
        "💡 Use /set_check_interval to change the interval.",
    ])
    return "\n".join(lines)


def add_limit_usage() -> str:
    return (
        "❌ Wrong command format.\n\n"
        "Usage: /add_limit (or /l) <coin> <time>\n\n"
        "Examples:\n"
        "/l LSK 12h\n"
        "/l BTC 30m\n"
        "/l ETH 1d\n\n" + TIME_UNITS_HELP
    )


def limit_saved_message(coin: str, time: str, minutes: float, created: bool) -> str:
    if created:
        return (
            "✅ Limit added:\n\n"
            f"Coin: {coin}\n"
            f"Time: {time} ({minutes:.0f} minutes)"
        )
    return f"✅ Limit for {coin} updated: {time} ({minutes:.0f} minutes)"


def duration_error_message(error: str, examples: str = "12h, 30m, 1d") -> str:
    return (
        f"❌ Could not parse the time: {error}\n\n"
        "Use the format: number + unit (s, m, h, d)\n"
        f"Examples: {examples}"
    )


def check_interval_status(interval: str) -> str:
    return (
        f"⏱ Current check interval: {interval}\n\n"
        "Usage: /set_check_interval <interval>\n\n"
        "Examples:\n"
        "/set_check_interval 5m\n"
        "/set_check_interval 10m\n"
        "/set_check_interval 1h\n\n" + TIME_UNITS_HELP
    )


def check_interval_saved(interval: str, minutes: float) -> str:
    return (
        f"✅ Check interval updated: {interval} ({minutes:.0f} minutes)\n\n"
        "The new interval applies from the next check."
    )


STORAGE_ERROR = "❌ Could not save settings. Please try again later."
