"""Periodic matchmaking for battles whose start time has passed."""

from __future__ import annotations

import argparse
import asyncio
import signal
from collections.abc import Callable
from datetime import datetime

from loguru import logger

from app.core.config import Settings, get_settings
from app.core.guards import SingleFlight
from app.db import init_db
from app.models import utcnow
from app.services.matchmaking_service import MatchmakingReport, MatchmakingService


class MatchmakingScheduler:
    """Fire a matchmaking tick every ``interval_seconds``.

    Ticks start on a fixed cadence; a tick that finds the previous one still
    running is skipped. Failures are logged and the next tick proceeds.
    """

    def __init__(
        self,
        matchmaking_service: MatchmakingService | None = None,
        *,
        settings: Settings | None = None,
        interval_seconds: float | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._settings = settings or get_settings()
        self._service = matchmaking_service or MatchmakingService(settings=self._settings)
        self.interval_seconds = interval_seconds or self._settings.scheduler_interval_seconds
        self._clock = clock
        self._guard = SingleFlight("scheduler-tick")
        self._tasks: set[asyncio.Task] = set()

    async def tick(self) -> MatchmakingReport | None:
        if not self._guard.try_acquire():
            logger.warning("Previous scheduler tick still running; skipping this one")
            return None
        try:
            now = self._clock()
            report = await self._service.run(due_before=now)
        except Exception:  # noqa: BLE001
            logger.exception("Scheduler tick failed")
            return None
        finally:
            self._guard.release()

        if report.processed:
            logger.info("Scheduler tick created {} match(es)", len(report.processed))
        else:
            logger.info("Scheduler tick: no due battles were ready")
        return report

    async def run_forever(self, stop: asyncio.Event) -> None:
        logger.info("Scheduler started (every {}s)", self.interval_seconds)
        while not stop.is_set():
            task = asyncio.create_task(self.tick())
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)
            try:
                await asyncio.wait_for(stop.wait(), timeout=self.interval_seconds)
            except asyncio.TimeoutError:
                continue

        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        logger.info("Scheduler stopped")


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run matchmaking for due battles on a fixed interval")
    parser.add_argument("--interval", type=float, default=None, help="Seconds between ticks")
    parser.add_argument("--once", action="store_true", help="Run a single tick and exit")
    return parser.parse_args()


async def _main(args: argparse.Namespace) -> None:
    settings = get_settings()
    await init_db()
    scheduler = MatchmakingScheduler(settings=settings, interval_seconds=args.interval)
    if args.once:
        await scheduler.tick()
        return

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for signum in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(signum, stop.set)
    await scheduler.run_forever(stop)


def main() -> None:
    asyncio.run(_main(_parse_args()))


if __name__ == "__main__":
    main()
