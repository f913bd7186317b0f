"""Pay out the backlog of unprocessed matches in bounded, concurrent chunks."""

from __future__ import annotations

import argparse
import asyncio
import json
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterable

from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.config import Settings, get_settings
from app.core.guards import SingleFlight
from app.db import init_db, session_scope
from app.domain.errors import BatchAlreadyRunningError, BattleHubError
from app.repositories import MatchRepository
from app.services.payout_service import PayoutOutcome, PayoutService, PayoutStatus


@dataclass(slots=True)
class BatchPayoutOptions:
    apply: bool = False
    limit: int = 0
    batch_size: int = 50
    concurrency: int = 10

    @classmethod
    def from_settings(cls, settings: Settings, **overrides: Any) -> BatchPayoutOptions:
        values: dict[str, Any] = {
            "limit": settings.payout_limit,
            "batch_size": settings.payout_batch_size,
            "concurrency": settings.payout_concurrency,
        }
        values.update({key: value for key, value in overrides.items() if value is not None})
        return cls(**values)


@dataclass(slots=True)
class BatchPayoutSummary:
    apply: bool
    considered: int = 0
    processed: int = 0
    skipped: int = 0
    errors: int = 0
    details: list[dict[str, Any]] = field(default_factory=list)

    def record_outcome(self, outcome: PayoutOutcome) -> None:
        if outcome.status is PayoutStatus.ALREADY_PROCESSED:
            self.skipped += 1
        else:
            self.processed += 1
        self.details.append(outcome.to_dict())

    def record_error(self, match_id: str, kind: str, message: str) -> None:
        self.errors += 1
        self.details.append({"match_id": match_id, "status": "error", "error": kind, "message": message})

    def to_dict(self) -> dict[str, Any]:
        return {
            "apply": self.apply,
            "considered": self.considered,
            "processed": self.processed,
            "skipped": self.skipped,
            "errors": self.errors,
            "details": self.details,
        }


class BatchPayoutRunner:
    """Drive :class:`PayoutService` over every unprocessed match.

    Matches are fetched newest first, split into chunks of ``batch_size`` and
    each chunk is drained by at most ``concurrency`` workers sharing one queue.
    Only one run may be in flight per runner; a concurrent call is rejected
    with :class:`BatchAlreadyRunningError`.
    """

    def __init__(
        self,
        payout_service: PayoutService | None = None,
        *,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
        settings: Settings | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._settings = settings or get_settings()
        self._session_factory = session_factory
        self._payout_service = payout_service or PayoutService(
            session_factory, settings=self._settings
        )
        self._sleep = sleep
        self._guard = SingleFlight("batch-payout")

    @property
    def running(self) -> bool:
        return self._guard.running

    async def run(self, options: BatchPayoutOptions | None = None) -> BatchPayoutSummary:
        options = options or BatchPayoutOptions.from_settings(self._settings)
        if not self._guard.try_acquire():
            logger.warning("Batch payout rejected: a run is already in progress")
            raise BatchAlreadyRunningError("a batch payout run is already in progress")
        try:
            return await self._run(options)
        finally:
            self._guard.release()

    async def _run(self, options: BatchPayoutOptions) -> BatchPayoutSummary:
        summary = BatchPayoutSummary(apply=options.apply)
        logger.info(
            "Starting batch payout: apply={}, limit={}, batch_size={}, concurrency={}",
            options.apply,
            options.limit,
            options.batch_size,
            options.concurrency,
        )

        async with session_scope(self._session_factory) as session:
            match_ids = await MatchRepository(session).list_unprocessed_match_ids(limit=options.limit)

        summary.considered = len(match_ids)
        if not match_ids:
            logger.info("No unpaid matches found; batch payout finished with no work")
            return summary

        chunks = list(_chunked(match_ids, options.batch_size))
        for index, chunk in enumerate(chunks, start=1):
            logger.info("Processing batch {}/{} (size={})", index, len(chunks), len(chunk))
            await self._process_chunk(chunk, options, summary)
            if index < len(chunks) and self._settings.payout_batch_pause_seconds > 0:
                await self._sleep(self._settings.payout_batch_pause_seconds)

        logger.info(
            "Batch payout finished: processed={}, skipped={}, errors={}",
            summary.processed,
            summary.skipped,
            summary.errors,
        )
        return summary

    async def _process_chunk(
        self,
        chunk: Sequence[str],
        options: BatchPayoutOptions,
        summary: BatchPayoutSummary,
    ) -> None:
        queue: asyncio.Queue[str] = asyncio.Queue()
        for match_id in chunk:
            queue.put_nowait(match_id)

        action = self._payout_service.payout if options.apply else self._payout_service.preview

        async def worker() -> None:
            while True:
                try:
                    match_id = queue.get_nowait()
                except asyncio.QueueEmpty:
                    return
                try:
                    outcome = await action(match_id)
                except BattleHubError as exc:
                    logger.warning("Payout failed for match {}: {}", match_id, exc.message)
                    summary.record_error(match_id, exc.kind, exc.message)
                except Exception as exc:  # noqa: BLE001
                    logger.exception("Payout failed for match {}", match_id)
                    summary.record_error(match_id, "internal_error", str(exc))
                else:
                    summary.record_outcome(outcome)

        worker_count = max(1, min(options.concurrency, len(chunk)))
        await asyncio.gather(*(worker() for _ in range(worker_count)))


def _chunked(items: Sequence[Any], size: int) -> Iterable[Sequence[Any]]:
    if size <= 0:
        yield items
        return
    for index in range(0, len(items), size):
        yield items[index : index + size]


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Pay out unprocessed matches (dry run unless --apply is given)",
    )
    parser.add_argument("--apply", action="store_true", help="Actually credit winners")
    parser.add_argument("--limit", type=int, default=None, help="Maximum number of matches to consider")
    parser.add_argument("--batch-size", type=int, default=None, help="Matches handled per chunk")
    parser.add_argument(
        "--concurrency", type=int, default=None, help="Simultaneous payouts within a chunk"
    )
    parser.add_argument(
        "--summary-path",
        type=Path,
        default=None,
        help="Optional path where a JSON summary report will be written",
    )
    return parser.parse_args()


def _write_summary(summary: BatchPayoutSummary, path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(summary.to_dict(), default=str, indent=2) + "\n", encoding="utf-8")
    logger.info("Batch payout summary written to {}", path)


async def _main(args: argparse.Namespace) -> BatchPayoutSummary:
    settings = get_settings()
    await init_db()
    options = BatchPayoutOptions.from_settings(
        settings,
        apply=args.apply,
        limit=args.limit,
        batch_size=args.batch_size,
        concurrency=args.concurrency,
    )
    return await BatchPayoutRunner(settings=settings).run(options)


def main() -> BatchPayoutSummary:
    args = _parse_args()
    summary = asyncio.run(_main(args))
    if args.summary_path:
        _write_summary(summary, args.summary_path)
    else:
        print(json.dumps(summary.to_dict(), default=str, indent=2))
    return summary


if __name__ == "__main__":
    main()
