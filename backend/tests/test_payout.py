from __future__ import annotations

import asyncio
from decimal import Decimal

import pytest
from sqlalchemy import update

from app.domain import SplitSource
from app.domain.errors import InconsistentStateError, NotFoundError
from app.models import Entry, Match, Transaction, TransactionType, User
from app.repositories import LedgerRepository
from app.services.matchmaking_service import MatchmakingService
from app.services.payout_service import PayoutService, PayoutStatus


async def _create_match(factory, make_battle, settings, **battle_kwargs):
    seeded = await make_battle(factory, **battle_kwargs)
    report = await MatchmakingService(factory, settings=settings).run()
    created = report.processed[0]
    async with factory() as session:
        winner = await session.get(Entry, created.winner_entry_id)
        winner_user_id = winner.user_id
    return seeded, created, winner_user_id


async def _balance(factory, user_id: str) -> Decimal:
    async with factory() as session:
        return (await session.get(User, user_id)).balance_usd


async def _transactions(factory, match_id: str) -> list[Transaction]:
    async with factory() as session:
        return await LedgerRepository(session).list_transactions(match_id=match_id)


async def _match(factory, match_id: str) -> Match:
    async with factory() as session:
        return await session.get(Match, match_id)


def test_payout_credits_winner_once(open_store, make_battle, test_settings):
    async def scenario():
        async with open_store() as factory:
            _, created, winner_id = await _create_match(factory, make_battle, test_settings)
            service = PayoutService(factory, settings=test_settings)

            outcome = await service.payout(created.match_id)
            assert outcome.status is PayoutStatus.PAID
            assert outcome.applied
            assert outcome.winner_user_id == winner_id
            assert outcome.winner_payout_usd == Decimal("8.50")
            assert outcome.platform_cut_usd == Decimal("1.50")
            assert outcome.balance_usd == Decimal("8.50")
            assert outcome.split_source is SplitSource.STORED
            assert await _balance(factory, winner_id) == Decimal("8.50")

            match = await _match(factory, created.match_id)
            assert match.payout_processed and match.paid
            assert match.payout_at is not None

            records = await _transactions(factory, created.match_id)
            by_type = {record.type: record for record in records}
            assert len(records) == 2
            assert by_type[TransactionType.PAYOUT.value].user_id == winner_id
            assert by_type[TransactionType.PAYOUT.value].amount_usd == Decimal("8.50")
            assert by_type[TransactionType.PLATFORM_FEE.value].user_id is None
            assert by_type[TransactionType.PLATFORM_FEE.value].amount_usd == Decimal("1.50")

            again = await service.payout(created.match_id)
            assert again.status is PayoutStatus.ALREADY_PROCESSED
            assert not again.applied
            assert await _balance(factory, winner_id) == Decimal("8.50")
            assert len(await _transactions(factory, created.match_id)) == 2

    asyncio.run(scenario())


def test_concurrent_payouts_credit_exactly_once(open_store, make_battle, test_settings):
    async def scenario():
        async with open_store() as factory:
            _, created, winner_id = await _create_match(
                factory, make_battle, test_settings, entry_fee="3.00", players=3
            )
            services = [PayoutService(factory, settings=test_settings) for _ in range(8)]
            outcomes = await asyncio.gather(*(s.payout(created.match_id) for s in services))

            statuses = [outcome.status for outcome in outcomes]
            assert statuses.count(PayoutStatus.PAID) == 1
            assert statuses.count(PayoutStatus.ALREADY_PROCESSED) == 7
            # 3 x 3.00 = 9.00; cut 1.35; payout 7.65
            assert await _balance(factory, winner_id) == Decimal("7.65")
            assert len(await _transactions(factory, created.match_id)) == 2

    asyncio.run(scenario())


def test_payout_recomputes_missing_split(open_store, make_battle, test_settings):
    async def scenario():
        async with open_store() as factory:
            _, created, winner_id = await _create_match(factory, make_battle, test_settings)
            async with factory() as session:
                await session.execute(
                    update(Match)
                    .where(Match.match_id == created.match_id)
                    .values(pot_usd=None, platform_cut_usd=None, winner_payout_usd=None)
                )
                await session.commit()

            service = PayoutService(factory, settings=test_settings)
            preview = await service.preview(created.match_id)
            assert preview.status is PayoutStatus.WOULD_PAY
            assert preview.split_source is SplitSource.RECOMPUTED
            assert preview.winner_payout_usd == Decimal("8.50")

            outcome = await service.payout(created.match_id)
            assert outcome.split_source is SplitSource.RECOMPUTED
            assert await _balance(factory, winner_id) == Decimal("8.50")

    asyncio.run(scenario())


def test_payout_uses_stored_split_when_consistent(open_store, make_battle, test_settings):
    async def scenario():
        async with open_store() as factory:
            _, created, winner_id = await _create_match(factory, make_battle, test_settings)
            async with factory() as session:
                await session.execute(
                    update(Match)
                    .where(Match.match_id == created.match_id)
                    .values(
                        pot_usd=Decimal("10.00"),
                        platform_cut_usd=Decimal("1.00"),
                        winner_payout_usd=Decimal("9.00"),
                    )
                )
                await session.commit()

            outcome = await PayoutService(factory, settings=test_settings).payout(created.match_id)
            assert outcome.split_source is SplitSource.STORED
            assert await _balance(factory, winner_id) == Decimal("9.00")

    asyncio.run(scenario())


def test_preview_writes_nothing(open_store, make_battle, test_settings):
    async def scenario():
        async with open_store() as factory:
            _, created, winner_id = await _create_match(factory, make_battle, test_settings)
            preview = await PayoutService(factory, settings=test_settings).preview(created.match_id)

            assert preview.status is PayoutStatus.WOULD_PAY
            assert preview.balance_usd == Decimal("0.00")
            assert not (await _match(factory, created.match_id)).payout_processed
            assert await _balance(factory, winner_id) == Decimal("0.00")
            assert await _transactions(factory, created.match_id) == []

    asyncio.run(scenario())


def test_failed_payout_rolls_back_claim(open_store, make_battle, test_settings, monkeypatch):
    original = LedgerRepository.record_transaction

    async def failing(self, **kwargs):
        if kwargs["type"] is TransactionType.PLATFORM_FEE:
            raise RuntimeError("ledger write failed")
        return await original(self, **kwargs)

    async def scenario():
        async with open_store() as factory:
            _, created, winner_id = await _create_match(factory, make_battle, test_settings)
            service = PayoutService(factory, settings=test_settings)

            monkeypatch.setattr(LedgerRepository, "record_transaction", failing)
            with pytest.raises(RuntimeError):
                await service.payout(created.match_id)
            monkeypatch.setattr(LedgerRepository, "record_transaction", original)

            assert not (await _match(factory, created.match_id)).payout_processed
            assert await _balance(factory, winner_id) == Decimal("0.00")
            assert await _transactions(factory, created.match_id) == []

            retry = await service.payout(created.match_id)
            assert retry.status is PayoutStatus.PAID
            assert await _balance(factory, winner_id) == Decimal("8.50")

    asyncio.run(scenario())


def test_payout_unknown_match(open_store, test_settings):
    async def scenario():
        async with open_store() as factory:
            with pytest.raises(NotFoundError):
                await PayoutService(factory, settings=test_settings).payout("missing")

    asyncio.run(scenario())


def test_payout_with_dangling_winner(open_store, make_battle, test_settings):
    async def scenario():
        async with open_store() as factory:
            _, created, _ = await _create_match(factory, make_battle, test_settings)
            async with factory() as session:
                await session.execute(
                    update(Match)
                    .where(Match.match_id == created.match_id)
                    .values(winner_entry_id="no-such-entry")
                )
                await session.commit()

            with pytest.raises(InconsistentStateError):
                await PayoutService(factory, settings=test_settings).payout(created.match_id)
            assert not (await _match(factory, created.match_id)).payout_processed

    asyncio.run(scenario())
