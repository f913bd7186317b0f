"""Match persistence and the once-only payout claim."""

from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime
from typing import Any

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.domain import FinancialSplit
from app.models import Entry, Match, MatchEntry


class MatchRepository:
    """Encapsulate match persistence concerns."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    # ------------------------------------------------------------------
    # Mutations

    async def create_match(
        self,
        *,
        battle_id: str,
        entry_ids: Sequence[str],
        winner_entry_id: str,
        split: FinancialSplit,
        seed: str,
    ) -> Match:
        match = Match(
            battle_id=battle_id,
            winner_entry_id=winner_entry_id,
            entry_count=len(entry_ids),
            pot_usd=split.pot_usd,
            platform_cut_usd=split.platform_cut_usd,
            winner_payout_usd=split.winner_payout_usd,
            seed=seed,
            paid=False,
            payout_processed=False,
        )
        match.participants = [
            MatchEntry(position=position, entry_id=entry_id)
            for position, entry_id in enumerate(entry_ids)
        ]
        self._session.add(match)
        await self._session.flush()
        return match

    async def claim_payout(self, match_id: str, *, paid_at: datetime) -> bool:
        """Compare-and-set ``payout_processed`` from false to true.

        Exactly one caller can win the claim for a match; everyone else gets False.
        """

        statement = (
            update(Match)
            .where(Match.match_id == match_id, Match.payout_processed.is_(False))
            .values(payout_processed=True, paid=True, payout_at=paid_at)
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(statement)
        return result.rowcount == 1

    # ------------------------------------------------------------------
    # Queries

    async def get_match(self, match_id: str) -> Match | None:
        query = (
            select(Match)
            .options(
                selectinload(Match.battle),
                selectinload(Match.participants)
                .selectinload(MatchEntry.entry)
                .selectinload(Entry.user),
                selectinload(Match.winner_entry).selectinload(Entry.user),
            )
            .where(Match.match_id == match_id)
            .execution_options(populate_existing=True)
        )
        result = await self._session.execute(query)
        return result.scalar_one_or_none()

    async def list_unprocessed_match_ids(self, *, limit: int = 0) -> list[str]:
        query = (
            select(Match.match_id)
            .where(Match.payout_processed.is_not(True))
            .order_by(Match.created_at.desc(), Match.match_id.desc())
        )
        if limit:
            query = query.limit(limit)
        result = await self._session.execute(query)
        return list(result.scalars().all())

    async def list_matches(self, *, unprocessed_only: bool = False, limit: int = 200) -> list[Match]:
        filters: list[Any] = []
        if unprocessed_only:
            filters.append(Match.payout_processed.is_not(True))

        query = (
            select(Match)
            .options(selectinload(Match.participants))
            .where(*filters)
            .order_by(Match.created_at.desc(), Match.match_id.desc())
            .limit(limit)
        )
        result = await self._session.execute(query)
        return list(result.scalars().all())


__all__ = ["MatchRepository"]
