"""Read-only replay of a match's seeded winner draw."""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.db import session_scope
from app.domain.errors import InconsistentStateError, NotFoundError
from app.domain.seed import draw
from app.repositories import MatchRepository


@dataclass(slots=True)
class VerificationResult:
    match_id: str
    seed: str
    entry_count: int
    digest_hex: str
    prefix_value: int
    computed_index: int
    computed_winner_entry_id: str
    stored_winner_entry_id: str | None
    verified: bool

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class VerificationService:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession] | None = None) -> None:
        self._session_factory = session_factory

    async def verify(self, match_id: str) -> VerificationResult:
        async with session_scope(self._session_factory) as session:
            match = await MatchRepository(session).get_match(match_id)
            if match is None:
                raise NotFoundError(f"match {match_id} not found")
            entry_ids = match.entry_ids

        if len(entry_ids) != match.entry_count:
            raise InconsistentStateError(
                f"match {match_id} lists {len(entry_ids)} entries but recorded {match.entry_count}"
            )

        replay = draw(match.seed, match.entry_count)
        computed_winner = entry_ids[replay.index]
        return VerificationResult(
            match_id=match_id,
            seed=match.seed,
            entry_count=match.entry_count,
            digest_hex=replay.digest_hex,
            prefix_value=replay.prefix_value,
            computed_index=replay.index,
            computed_winner_entry_id=computed_winner,
            stored_winner_entry_id=match.winner_entry_id,
            verified=computed_winner == match.winner_entry_id,
        )


__all__ = ["VerificationResult", "VerificationService"]
