#!/usr/bin/env python3
"""Price alert monitor.

Polls Binance for the markets referenced by active alerts and evaluates
every alert once per tick. Fired alerts are deactivated, logged to the
alert history and sent to the Discord webhook (if configured).

Usage:
    python scripts/run_alert_monitor.py [--once] [--interval SECONDS] [--cycles N]

Options:
    --once          Poll and evaluate a single time, then exit
    --interval N    Evaluation tick in seconds (default: EVALUATION_INTERVAL_SECONDS)
    --cycles N      Stop after N evaluation cycles
"""

import argparse
import asyncio
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from src.adapters.data_feeds.binance_poller import BinanceRestPoller
from src.adapters.data_feeds.tick_buffer import TickBuffer
from src.adapters.notifiers.webhook_dispatcher import WebhookDispatcher
from src.adapters.repositories.alert_repository import PostgresAlertRepository
from src.adapters.repositories.drawing_repository import PostgresDrawingRepository
from src.application.workflows.evaluation_loop import (
    AlertEvaluationLoop,
    EvaluationCycleResult,
)
from src.infrastructure.config import get_settings
from src.infrastructure.database import close_pool
from src.infrastructure.logging import configure_logging, get_logger

logger = get_logger("alert_monitor")


def log_cycle(result: EvaluationCycleResult) -> None:
    """Log a one-line summary for cycles where something happened."""
    for evaluation in result.triggered:
        logger.info(f"[Cycle {result.cycle_number}] {evaluation.symbol} alert {evaluation.alert_id} fired")
    for error in result.errors:
        logger.warning(f"[Cycle {result.cycle_number}] {error}")


async def main() -> int:
    parser = argparse.ArgumentParser(description="Evaluate price alerts against live Binance data")
    parser.add_argument("--once", action="store_true", help="Run a single poll and evaluation")
    parser.add_argument("--interval", type=float, default=None, help="Evaluation tick in seconds")
    parser.add_argument("--cycles", type=int, default=None, help="Stop after N cycles")
    args = parser.parse_args()

    settings = get_settings()
    configure_logging(settings.log_level, settings.log_format)

    interval = args.interval or settings.evaluation_interval_seconds
    logger.info("Starting price alert monitor")
    logger.info(f"Mode: {'Single check' if args.once else f'Continuous (every {interval}s)'}")

    buffer = TickBuffer(settings.tick_buffer_size)
    poller = BinanceRestPoller(buffer)
    loop = AlertEvaluationLoop(
        alert_repo=PostgresAlertRepository(settings.alert_history_limit),
        drawing_repo=PostgresDrawingRepository(),
        buffer=buffer,
        dispatcher=WebhookDispatcher(),
        check_interval_seconds=interval,
        history_limit=settings.price_history_limit,
    )

    def on_cycle(result: EvaluationCycleResult) -> None:
        log_cycle(result)
        poller.subscribe(*loop.subscriptions())

    try:
        if args.once:
            # First cycle learns which markets the alerts need
            await loop.run_evaluation_cycle()
            poller.subscribe(*loop.subscriptions())
            await poller.poll_once()
            log_cycle(await loop.run_evaluation_cycle())
            return 0

        poll_task = asyncio.create_task(poller.run())
        try:
            result = await loop.start(max_cycles=args.cycles, on_cycle_complete=on_cycle)
        finally:
            poller.stop()
            poll_task.cancel()
            try:
                await poll_task
            except asyncio.CancelledError:
                pass

        logger.info(
            f"Monitor stopped after {result.cycles_completed} cycles, "
            f"{result.total_triggered} alerts fired"
        )
        return 1 if result.errors else 0

    except KeyboardInterrupt:
        logger.info("Monitoring stopped by user")
        return 0
    finally:
        await poller.aclose()
        await close_pool()


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
