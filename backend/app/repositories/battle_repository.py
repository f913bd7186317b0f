"""Battle and entry data access helpers."""

from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime
from decimal import Decimal
from typing import Any

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.models import Battle, BattleState, Entry


class BattleRepository:
    """Encapsulate battle and entry persistence concerns."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    # ------------------------------------------------------------------
    # Mutations

    async def create_battle(
        self,
        *,
        title: str,
        sport: str,
        entry_fee_usd: Decimal,
        start_at: datetime | None,
        creator_id: str | None,
    ) -> Battle:
        battle = Battle(
            title=title,
            sport=sport,
            entry_fee_usd=entry_fee_usd,
            start_at=start_at,
            creator_id=creator_id,
            state=BattleState.OPEN.value,
        )
        self._session.add(battle)
        await self._session.flush()
        return battle

    async def close_battle(self, battle_id: str) -> bool:
        """Flip ``open`` to ``closed``; False when another writer got there first."""

        statement = (
            update(Battle)
            .where(Battle.battle_id == battle_id, Battle.state == BattleState.OPEN.value)
            .values(state=BattleState.CLOSED.value)
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(statement)
        return result.rowcount == 1

    async def add_entry(self, *, battle_id: str, user_id: str) -> Entry:
        entry = Entry(battle_id=battle_id, user_id=user_id, paid=False, locked=False)
        self._session.add(entry)
        await self._session.flush()
        return entry

    async def mark_entry_paid(self, entry_id: str, *, payment_reference: str | None = None) -> None:
        values: dict[str, Any] = {"paid": True, "locked": True}
        if payment_reference is not None:
            values["payment_reference"] = payment_reference
        statement = (
            update(Entry)
            .where(Entry.entry_id == entry_id)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        await self._session.execute(statement)

    async def lock_entries(self, entry_ids: Sequence[str]) -> int:
        if not entry_ids:
            return 0
        statement = (
            update(Entry)
            .where(Entry.entry_id.in_(list(entry_ids)))
            .values(locked=True)
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(statement)
        return result.rowcount

    # ------------------------------------------------------------------
    # Queries

    async def get_battle(self, battle_id: str) -> Battle | None:
        return await self._session.get(Battle, battle_id)

    async def list_open_battles(self, *, due_before: datetime | None = None) -> list[Battle]:
        filters: list[Any] = [Battle.state == BattleState.OPEN.value]
        if due_before is not None:
            filters.append(Battle.start_at.is_not(None))
            filters.append(Battle.start_at <= due_before)

        query = (
            select(Battle)
            .where(*filters)
            .order_by(Battle.created_at.asc(), Battle.battle_id.asc())
        )
        result = await self._session.execute(query)
        return list(result.scalars().all())

    async def list_entries(self, battle_id: str, *, eligible_only: bool = False) -> list[Entry]:
        filters: list[Any] = [Entry.battle_id == battle_id]
        if eligible_only:
            filters.append(Entry.paid.is_(True))
            filters.append(Entry.locked.is_(True))

        query = (
            select(Entry)
            .where(*filters)
            .order_by(Entry.created_at.asc(), Entry.entry_id.asc())
        )
        result = await self._session.execute(query)
        return list(result.scalars().all())

    async def list_eligible_entries(self, battle_id: str) -> list[Entry]:
        return await self.list_entries(battle_id, eligible_only=True)

    async def get_entry(self, entry_id: str) -> Entry | None:
        return await self._session.get(Entry, entry_id)

    async def find_entry(self, *, battle_id: str, user_id: str) -> Entry | None:
        query = select(Entry).where(Entry.battle_id == battle_id, Entry.user_id == user_id)
        result = await self._session.execute(query)
        return result.scalar_one_or_none()


__all__ = ["BattleRepository"]
