from __future__ import annotations

import sys
from contextlib import asynccontextmanager
from decimal import Decimal
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

import pytest

from app.core.config import Settings
from app.db import create_engine, create_schema, create_session_factory
from app.repositories import BattleRepository, LedgerRepository


@pytest.fixture
def test_settings(tmp_path, monkeypatch) -> Settings:
    settings = Settings(
        database_url=f"sqlite:///{tmp_path/'battlehub.db'}",
        admin_key="test-admin-key",
        payout_batch_pause_seconds=0,
    )
    monkeypatch.setattr("app.core.config.get_settings", lambda: settings)
    monkeypatch.setattr("app.core.config.settings", settings)
    return settings


@pytest.fixture
def open_store(test_settings):
    """Async context manager yielding a session factory over a fresh SQLite file.

    The engine is created inside the caller's event loop and disposed on exit,
    so each ``asyncio.run`` scenario owns its connections.
    """

    @asynccontextmanager
    async def _open():
        engine = create_engine(test_settings.database_url)
        await create_schema(engine)
        try:
            yield create_session_factory(engine)
        finally:
            await engine.dispose()

    return _open


@pytest.fixture
def make_battle():
    """Async helper: create users, a battle and one entry per user."""

    async def _make(
        session_factory,
        *,
        entry_fee: str = "5.00",
        players: int = 2,
        paid: int | None = None,
        start_at=None,
        title: str = "Test battle",
    ) -> dict[str, object]:
        paid = players if paid is None else paid
        async with session_factory() as session:
            ledger = LedgerRepository(session)
            battles = BattleRepository(session)
            users = [
                await ledger.create_user(email=f"{title}-{index}@example.com".replace(" ", "-"))
                for index in range(players)
            ]
            battle = await battles.create_battle(
                title=title,
                sport="car",
                entry_fee_usd=Decimal(entry_fee),
                start_at=start_at,
                creator_id=users[0].user_id if users else None,
            )
            entries = []
            for index, user in enumerate(users):
                entry = await battles.add_entry(battle_id=battle.battle_id, user_id=user.user_id)
                if index < paid:
                    await battles.mark_entry_paid(entry.entry_id, payment_reference=f"ref-{index}")
                entries.append(entry)
            await session.commit()
        return {
            "battle_id": battle.battle_id,
            "user_ids": [user.user_id for user in users],
            "entry_ids": [entry.entry_id for entry in entries],
        }

    return _make
