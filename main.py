"""
HoldWatch - Main Entry Point

Telegram bot that tracks how long Binance Futures positions have been held
and alerts when a position outlives its configured holding-time limit.

Usage:
    # Check configuration
    python main.py --check

    # Print open positions with their holding times once and exit
    python main.py --positions

    # Run the bot
    python main.py
"""

import argparse
import asyncio
import signal
import sys
from pathlib import Path
from typing import Dict, List, Optional

sys.path.insert(0, str(Path(__file__).parent))

import structlog

from holdwatch.core.bot import PositionBot
from holdwatch.core.config import config
from holdwatch.core.monitor import BotState, PositionMonitor, PositionReport
from holdwatch.exchange.binance_client import (
    BinanceFuturesClient, describe_gateway_error,
)
from holdwatch.notify.telegram import TelegramNotifier
from holdwatch.storage.limit_store import LimitStore
from holdwatch.tracking.limits import format_duration
from holdwatch.utils.logging_config import setup_logging

logger = structlog.get_logger(__name__)


class HoldWatchApp:
    """
    Main HoldWatch application.

    Owns the exchange client, the Telegram client and the bot, and tears
    them down on shutdown.
    """

    def __init__(self):
        self.exchange: Optional[BinanceFuturesClient] = None
        self.notifier: Optional[TelegramNotifier] = None
        self.bot: Optional[PositionBot] = None
        self.monitor: Optional[PositionMonitor] = None

        self._shutdown_event = asyncio.Event()
        self._initialized = False

    async def initialize(self, with_telegram: bool = True):
        """Initialize all components based on configuration."""
        logger.info(
            "app.initializing",
            environment=config.system.environment,
            testnet=config.binance.testnet,
            accounting_mode=config.binance.accounting_mode,
        )

        self.exchange = BinanceFuturesClient()
        await self.exchange.initialize()

        store = LimitStore(config.monitor.limits_file)
        self.monitor = PositionMonitor(self.exchange, store)

        if with_telegram:
            self.notifier = TelegramNotifier()
            self.bot = PositionBot(
                self.notifier,
                self.monitor,
                BotState(chat_id=config.telegram.chat_id),
            )

        self._initialized = True
        logger.info("app.initialized")

    async def run(self):
        """Run the bot until a shutdown signal arrives."""
        if not self._initialized or self.bot is None:
            raise RuntimeError("App not initialized. Call initialize() first.")

        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, self._signal_handler)

        try:
            await self.bot.start()
            await self._shutdown_event.wait()
        except Exception as e:
            logger.error("app.error", error=str(e), exc_info=True)
            raise
        finally:
            await self.shutdown()

    async def shutdown(self):
        """Perform graceful shutdown."""
        logger.info("app.shutting_down")

        if self.bot:
            await self.bot.stop()

        if self.notifier:
            await self.notifier.close()

        if self.exchange:
            await self.exchange.close()

        logger.info("app.shutdown_complete")

    def _signal_handler(self):
        """Handle shutdown signals."""
        logger.info("app.shutdown_signal_received")
        self._shutdown_event.set()


def print_banner():
    """Print the startup banner."""
    banner = f"""
╔══════════════════════════════════════════════════════════════════╗
║                                                                  ║
║           ⏱  HOLDWATCH v{config.system.app_version:<8}                                ║
║                                                                  ║
║     Holding-time limits for Binance Futures positions            ║
║                                                                  ║
╚══════════════════════════════════════════════════════════════════╝
"""
    print(banner)


def check_configuration() -> Dict:
    """
    Check if configuration is valid.

    Returns:
        Dictionary with validation results
    """
    validation = config.validate_configuration()
    warnings = []

    if config.binance.testnet:
        warnings.append("✓ Using Binance Futures testnet")
    if config.telegram.chat_id is None:
        warnings.append("ℹ️  TELEGRAM_CHAT_ID not set, alerts go to the first chat that writes")

    return {
        "valid": validation["valid"],
        "issues": validation["issues"],
        "warnings": warnings,
        "accounting_mode": config.binance.accounting_mode,
        "limits_file": config.monitor.limits_file,
    }


def print_positions(reports: List[PositionReport]):
    """Print the positions report to the terminal."""
    print("\n" + "=" * 60)
    print("           HOLDWATCH - OPEN POSITIONS")
    print("=" * 60)

    if not reports:
        print("\nNo open Futures positions.")

    for report in reports:
        pos = report.position
        print(f"\n📈 {pos.symbol} {report.side_label}")
        print(f"   Size: {pos.position_amt} @ {pos.entry_price}")
        print(f"   PnL: {pos.unrealized_profit}")
        print(f"   Fills: {report.episode.fill_count}")
        held = format_duration(report.age)
        if not report.episode.found:
            held += " (no order history)"
        print(f"   Held for: {held}")
        if report.evaluation is not None:
            if report.evaluation.exceeded:
                print(
                    f"   ⚠️  Limit {report.limit_text} exceeded by "
                    f"{format_duration(report.evaluation.overshoot)}"
                )
            else:
                print(
                    f"   ⏱  Limit {report.limit_text}: "
                    f"{format_duration(report.evaluation.remaining)} left"
                )

    print("\n" + "=" * 60)


async def show_positions() -> int:
    """Fetch and print positions once. Returns a process exit code."""
    app = HoldWatchApp()
    await app.initialize(with_telegram=False)
    try:
        reports = await app.monitor.build_reports()
    except Exception as e:
        logger.error("main.positions_error", error=str(e))
        print(describe_gateway_error(e))
        return 1
    finally:
        await app.shutdown()

    print_positions(reports)
    return 0


async def main() -> int:
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="HoldWatch - holding-time monitor for Binance Futures positions"
    )
    parser.add_argument(
        "--check", action="store_true", help="Check configuration and exit"
    )
    parser.add_argument(
        "--positions",
        action="store_true",
        help="Print open positions with holding times and exit",
    )

    args = parser.parse_args()

    setup_logging()

    if not args.check and not args.positions:
        print_banner()

    config_check = check_configuration()

    for warning in config_check["warnings"]:
        print(warning)

    if args.check:
        print("\n" + "=" * 60)
        print("           CONFIGURATION CHECK")
        print("=" * 60)

        if config_check["valid"]:
            print("\n✓ Configuration is valid")
        else:
            print("\n✗ Configuration errors:")
            for issue in config_check["issues"]:
                print(f"   - {issue}")

        print(f"\nAccounting Mode: {config_check['accounting_mode']}")
        print(f"Limits File: {config_check['limits_file']}")

        print("\n" + "=" * 60)
        return 0 if config_check["valid"] else 1

    if args.positions:
        return await show_positions()

    if not config_check["valid"]:
        print("\n✗ Configuration errors:")
        for issue in config_check["issues"]:
            print(f"   - {issue}")
        print("\nPlease check your .env file and try again.")
        return 1

    app = HoldWatchApp()

    try:
        await app.initialize()
        await app.run()
    except KeyboardInterrupt:
        print("\n\nShutdown requested by user...")
    except Exception as e:
        logger.error("main.error", error=str(e), exc_info=True)
        print(f"\n✗ Fatal error: {e}")
        raise

    return 0


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
