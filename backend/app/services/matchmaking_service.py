"""Group paid entries of open battles into matches and draw a winner."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.config import Settings, get_settings
from app.db import session_scope
from app.domain import FinancialSplit
from app.domain.errors import BattleHubError
from app.domain.seed import generate_seed, winner_index
from app.domain.splits import compute_split
from app.models import BattleState
from app.repositories import BattleRepository, MatchRepository

MIN_ENTRIES = 2


class BattleSkip(Exception):
    """Raised when a battle is not ready (or no longer available) for matchmaking."""


@dataclass(slots=True)
class CreatedMatch:
    battle_id: str
    match_id: str
    winner_entry_id: str
    entry_ids: list[str]
    seed: str
    split: FinancialSplit

    def to_dict(self) -> dict[str, Any]:
        return {
            "battle_id": self.battle_id,
            "match_id": self.match_id,
            "winner_entry_id": self.winner_entry_id,
            "entry_count": len(self.entry_ids),
            **self.split.to_dict(),
        }


@dataclass(slots=True)
class MatchmakingReport:
    processed: list[CreatedMatch] = field(default_factory=list)
    skipped: list[dict[str, str]] = field(default_factory=list)
    failures: list[dict[str, str]] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "processed": [item.to_dict() for item in self.processed],
            "skipped": self.skipped,
            "failures": self.failures,
        }


class MatchmakingService:
    """Scan open battles oldest first and turn each eligible one into a match.

    Each battle is handled in its own unit of work: the battle close, the new
    match and the entry locks commit together or not at all. A failure on one
    battle is recorded in the report and the scan moves on.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
        *,
        settings: Settings | None = None,
        seed_factory: Callable[[], str] = generate_seed,
    ) -> None:
        self._session_factory = session_factory
        self._settings = settings or get_settings()
        self._seed_factory = seed_factory

    async def run(self, *, due_before: datetime | None = None) -> MatchmakingReport:
        report = MatchmakingReport()

        async with session_scope(self._session_factory) as session:
            battles = await BattleRepository(session).list_open_battles(due_before=due_before)
            battle_ids = [battle.battle_id for battle in battles]

        logger.info("Matchmaking scanning {} open battle(s)", len(battle_ids))
        for battle_id in battle_ids:
            try:
                created = await self._process_battle(battle_id)
            except BattleSkip as skip:
                report.skipped.append({"battle_id": battle_id, "reason": str(skip)})
                continue
            except BattleHubError as exc:
                logger.warning("Matchmaking failed for battle {}: {}", battle_id, exc.message)
                report.failures.append(
                    {"battle_id": battle_id, "error": exc.kind, "message": exc.message}
                )
                continue
            except Exception as exc:  # noqa: BLE001
                logger.exception("Matchmaking failed for battle {}", battle_id)
                report.failures.append(
                    {"battle_id": battle_id, "error": "internal_error", "message": str(exc)}
                )
                continue

            report.processed.append(created)
            logger.info(
                "Battle {} closed into match {} (winner entry {}, pot {})",
                created.battle_id,
                created.match_id,
                created.winner_entry_id,
                created.split.pot_usd,
            )

        logger.info(
            "Matchmaking finished: created={}, skipped={}, failed={}",
            len(report.processed),
            len(report.skipped),
            len(report.failures),
        )
        return report

    async def _process_battle(self, battle_id: str) -> CreatedMatch:
        async with session_scope(self._session_factory) as session:
            battles = BattleRepository(session)
            battle = await battles.get_battle(battle_id)
            if battle is None or battle.state != BattleState.OPEN.value:
                raise BattleSkip("not_open")

            entries = await battles.list_eligible_entries(battle_id)
            if len(entries) < MIN_ENTRIES:
                raise BattleSkip("insufficient_entries")

            if not await battles.close_battle(battle_id):
                raise BattleSkip("already_closed")

            entry_ids = [entry.entry_id for entry in entries]
            seed = self._seed_factory()
            winner_entry_id = entry_ids[winner_index(seed, len(entry_ids))]
            split = compute_split(len(entry_ids), battle.entry_fee_usd, self._settings.rake_rate)

            match = await MatchRepository(session).create_match(
                battle_id=battle_id,
                entry_ids=entry_ids,
                winner_entry_id=winner_entry_id,
                split=split,
                seed=seed,
            )
            await battles.lock_entries(entry_ids)

            return CreatedMatch(
                battle_id=battle_id,
                match_id=match.match_id,
                winner_entry_id=winner_entry_id,
                entry_ids=entry_ids,
                seed=seed,
                split=split,
            )


__all__ = ["BattleSkip", "CreatedMatch", "MatchmakingReport", "MatchmakingService"]
