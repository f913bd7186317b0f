"""Battle creation, joining and entry payment confirmation."""

from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from typing import Any

from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.db import session_scope
from app.domain.errors import NotFoundError, ValidationError
from app.domain.splits import round2, to_decimal
from app.models import Battle, BattleState, Entry
from app.repositories import BattleRepository, LedgerRepository


def _normalize_start(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


class BattleService:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession] | None = None) -> None:
        self._session_factory = session_factory

    async def create_battle(
        self,
        *,
        creator_id: str,
        title: str,
        entry_fee_usd: Any,
        sport: str = "car",
        start_at: datetime | None = None,
    ) -> Battle:
        title = (title or "").strip()
        if not title:
            raise ValidationError("title is required")
        fee = round2(to_decimal(entry_fee_usd))
        if fee <= Decimal("0"):
            raise ValidationError("entry fee must be positive")

        async with session_scope(self._session_factory) as session:
            if await LedgerRepository(session).get_user(creator_id) is None:
                raise NotFoundError(f"user {creator_id} not found")
            battle = await BattleRepository(session).create_battle(
                title=title,
                sport=(sport or "car").strip() or "car",
                entry_fee_usd=fee,
                start_at=_normalize_start(start_at),
                creator_id=creator_id,
            )
        logger.info("Battle {} created by {} (fee {})", battle.battle_id, creator_id, fee)
        return battle

    async def join_battle(self, *, battle_id: str, user_id: str) -> Entry:
        """Create the caller's entry, or return the one they already hold."""

        async with session_scope(self._session_factory) as session:
            battles = BattleRepository(session)
            battle = await battles.get_battle(battle_id)
            if battle is None:
                raise NotFoundError(f"battle {battle_id} not found")
            if await LedgerRepository(session).get_user(user_id) is None:
                raise NotFoundError(f"user {user_id} not found")

            existing = await battles.find_entry(battle_id=battle_id, user_id=user_id)
            if existing is not None:
                return existing
            if battle.state != BattleState.OPEN.value:
                raise ValidationError(f"battle {battle_id} is no longer open")
            return await battles.add_entry(battle_id=battle_id, user_id=user_id)

    async def confirm_entry_payment(
        self, entry_id: str, *, payment_reference: str | None = None
    ) -> Entry:
        """Record that the entry fee settled; the entry becomes eligible for matchmaking."""

        async with session_scope(self._session_factory) as session:
            battles = BattleRepository(session)
            entry = await battles.get_entry(entry_id)
            if entry is None:
                raise NotFoundError(f"entry {entry_id} not found")
            if not (entry.paid and entry.locked):
                await battles.mark_entry_paid(entry_id, payment_reference=payment_reference)
                await session.refresh(entry)
        return entry

    async def list_entries(self, battle_id: str) -> list[Entry]:
        async with session_scope(self._session_factory) as session:
            battles = BattleRepository(session)
            if await battles.get_battle(battle_id) is None:
                raise NotFoundError(f"battle {battle_id} not found")
            return await battles.list_entries(battle_id)


__all__ = ["BattleService"]
