"""Read-only listings behind the admin dashboard."""

from __future__ import annotations

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.db import session_scope
from app.models import Match, Transaction, User
from app.repositories import LedgerRepository, MatchRepository

LISTING_LIMIT = 200


class AdminService:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession] | None = None) -> None:
        self._session_factory = session_factory

    async def list_users(self) -> list[User]:
        async with session_scope(self._session_factory) as session:
            return await LedgerRepository(session).list_users(limit=LISTING_LIMIT)

    async def list_matches(self, *, unpaid_only: bool = False) -> list[Match]:
        async with session_scope(self._session_factory) as session:
            return await MatchRepository(session).list_matches(
                unprocessed_only=unpaid_only, limit=LISTING_LIMIT
            )

    async def list_transactions(self, *, match_id: str | None = None) -> list[Transaction]:
        async with session_scope(self._session_factory) as session:
            return await LedgerRepository(session).list_transactions(
                match_id=match_id, limit=LISTING_LIMIT
            )


__all__ = ["AdminService", "LISTING_LIMIT"]
