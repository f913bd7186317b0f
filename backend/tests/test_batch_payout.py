from __future__ import annotations

import asyncio

import pytest
from sqlalchemy import select

from app.domain.errors import BatchAlreadyRunningError, NotFoundError
from app.models import Match, Transaction
from app.services.matchmaking_service import MatchmakingService
from app.services.payout_service import PayoutOutcome, PayoutStatus
from pipelines.batch_payout import BatchPayoutOptions, BatchPayoutRunner, _chunked


async def _seed_matches(factory, make_battle, settings, count: int) -> list[str]:
    for index in range(count):
        await make_battle(factory, players=2, title=f"battle-{index}")
    report = await MatchmakingService(factory, settings=settings).run()
    return [created.match_id for created in report.processed]


async def _processed_flags(factory) -> list[bool]:
    async with factory() as session:
        result = await session.execute(select(Match.payout_processed))
        return list(result.scalars().all())


async def _transaction_count(factory) -> int:
    async with factory() as session:
        result = await session.execute(select(Transaction))
        return len(result.scalars().all())


class _StubPayoutService:
    """Records calls and returns canned outcomes without touching the store."""

    def __init__(self, *, failing: set[str] | None = None, gate: asyncio.Event | None = None):
        self.failing = failing or set()
        self.gate = gate
        self.calls: list[str] = []
        self.in_flight = 0
        self.max_in_flight = 0

    async def _handle(self, match_id: str, status: PayoutStatus) -> PayoutOutcome:
        self.calls.append(match_id)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.gate is not None:
                await self.gate.wait()
            else:
                await asyncio.sleep(0.01)
            if match_id in self.failing:
                raise NotFoundError(f"match {match_id} not found")
            return PayoutOutcome(match_id=match_id, status=status)
        finally:
            self.in_flight -= 1

    async def payout(self, match_id: str) -> PayoutOutcome:
        return await self._handle(match_id, PayoutStatus.PAID)

    async def preview(self, match_id: str) -> PayoutOutcome:
        return await self._handle(match_id, PayoutStatus.WOULD_PAY)


def test_dry_run_then_apply(open_store, make_battle, test_settings):
    async def scenario():
        async with open_store() as factory:
            match_ids = await _seed_matches(factory, make_battle, test_settings, 3)
            runner = BatchPayoutRunner(session_factory=factory, settings=test_settings)

            dry = await runner.run(BatchPayoutOptions(apply=False, batch_size=2, concurrency=2))
            assert dry.to_dict()["apply"] is False
            assert (dry.considered, dry.processed, dry.skipped, dry.errors) == (3, 3, 0, 0)
            assert {detail["status"] for detail in dry.details} == {"would_pay"}
            planned = {
                detail["match_id"]: (detail["winner_payout_usd"], detail["platform_cut_usd"])
                for detail in dry.details
            }
            assert await _processed_flags(factory) == [False, False, False]
            assert await _transaction_count(factory) == 0

            applied = await runner.run(BatchPayoutOptions(apply=True, batch_size=2, concurrency=2))
            assert (applied.considered, applied.processed, applied.errors) == (3, 3, 0)
            assert sorted(detail["match_id"] for detail in applied.details) == sorted(match_ids)
            assert {
                detail["match_id"]: (detail["winner_payout_usd"], detail["platform_cut_usd"])
                for detail in applied.details
            } == planned
            assert set(planned.values()) == {("8.50", "1.50")}
            assert await _processed_flags(factory) == [True, True, True]
            assert await _transaction_count(factory) == 6

            again = await runner.run(BatchPayoutOptions(apply=True))
            assert (again.considered, again.processed) == (0, 0)

    asyncio.run(scenario())


def test_limit_caps_matches_considered(open_store, make_battle, test_settings):
    async def scenario():
        async with open_store() as factory:
            await _seed_matches(factory, make_battle, test_settings, 3)
            runner = BatchPayoutRunner(session_factory=factory, settings=test_settings)
            summary = await runner.run(BatchPayoutOptions(apply=True, limit=2))
            assert (summary.considered, summary.processed) == (2, 2)
            assert sorted(await _processed_flags(factory)) == [False, True, True]

    asyncio.run(scenario())


def test_errors_are_isolated_per_match(open_store, make_battle, test_settings):
    async def scenario():
        async with open_store() as factory:
            match_ids = await _seed_matches(factory, make_battle, test_settings, 3)
            stub = _StubPayoutService(failing={match_ids[1]})
            runner = BatchPayoutRunner(stub, session_factory=factory, settings=test_settings)

            summary = await runner.run(BatchPayoutOptions(apply=True, batch_size=10))
            assert (summary.processed, summary.errors) == (2, 1)
            failed = [detail for detail in summary.details if detail["status"] == "error"]
            assert failed == [
                {
                    "match_id": match_ids[1],
                    "status": "error",
                    "error": "not_found",
                    "message": f"match {match_ids[1]} not found",
                }
            ]
            assert sorted(stub.calls) == sorted(match_ids)

    asyncio.run(scenario())


def test_concurrency_is_bounded_and_chunks_pause(open_store, make_battle, test_settings):
    pauses: list[float] = []

    async def record_sleep(seconds: float) -> None:
        pauses.append(seconds)

    async def scenario():
        async with open_store() as factory:
            await _seed_matches(factory, make_battle, test_settings, 5)
            settings = test_settings.model_copy(update={"payout_batch_pause_seconds": 0.5})
            stub = _StubPayoutService()
            runner = BatchPayoutRunner(
                stub, session_factory=factory, settings=settings, sleep=record_sleep
            )

            summary = await runner.run(BatchPayoutOptions(apply=False, batch_size=2, concurrency=2))
            assert summary.processed == 5
            assert stub.max_in_flight == 2
            # Three chunks, paused between them but not after the last.
            assert pauses == [0.5, 0.5]

    asyncio.run(scenario())


def test_second_run_is_rejected_while_first_is_in_flight(open_store, make_battle, test_settings):
    async def scenario():
        async with open_store() as factory:
            await _seed_matches(factory, make_battle, test_settings, 1)
            gate = asyncio.Event()
            stub = _StubPayoutService(gate=gate)
            runner = BatchPayoutRunner(stub, session_factory=factory, settings=test_settings)

            first = asyncio.create_task(runner.run(BatchPayoutOptions(apply=True)))
            while not stub.calls:
                await asyncio.sleep(0.01)
            assert runner.running

            with pytest.raises(BatchAlreadyRunningError):
                await runner.run(BatchPayoutOptions(apply=True))

            gate.set()
            summary = await first
            assert summary.processed == 1
            assert not runner.running

            # The guard is released, so a new run is accepted.
            follow_up = await runner.run(BatchPayoutOptions(apply=True))
            assert follow_up.considered == 1

    asyncio.run(scenario())


def test_options_from_settings_ignores_unset_overrides(test_settings):
    options = BatchPayoutOptions.from_settings(test_settings, apply=True, limit=None, batch_size=7)
    assert options.apply is True
    assert options.limit == test_settings.payout_limit
    assert options.batch_size == 7
    assert options.concurrency == test_settings.payout_concurrency


def test_chunked_splits_sequence():
    assert list(_chunked(["a", "b", "c"], 2)) == [["a", "b"], ["c"]]
    assert list(_chunked(["a", "b"], 0)) == [["a", "b"]]
