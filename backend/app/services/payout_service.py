"""Credit match winners exactly once."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any

from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.config import Settings, get_settings
from app.db import session_scope
from app.domain import ResolvedSplit, SplitSource
from app.domain.errors import InconsistentStateError, NotFoundError, ValidationError
from app.domain.splits import resolve_split
from app.models import Match, TransactionType, User, utcnow
from app.repositories import LedgerRepository, MatchRepository


class PayoutStatus(str, Enum):
    PAID = "paid"
    ALREADY_PROCESSED = "already_processed"
    WOULD_PAY = "would_pay"


@dataclass(slots=True)
class PayoutOutcome:
    match_id: str
    status: PayoutStatus
    winner_user_id: str | None = None
    balance_usd: Decimal | None = None
    pot_usd: Decimal | None = None
    winner_payout_usd: Decimal | None = None
    platform_cut_usd: Decimal | None = None
    split_source: SplitSource | None = None

    @property
    def applied(self) -> bool:
        return self.status is PayoutStatus.PAID

    def to_dict(self) -> dict[str, Any]:
        def _money(value: Decimal | None) -> str | None:
            return str(value) if value is not None else None

        return {
            "match_id": self.match_id,
            "status": self.status.value,
            "applied": self.applied,
            "winner_user_id": self.winner_user_id,
            "balance_usd": _money(self.balance_usd),
            "pot_usd": _money(self.pot_usd),
            "winner_payout_usd": _money(self.winner_payout_usd),
            "platform_cut_usd": _money(self.platform_cut_usd),
            "split_source": self.split_source.value if self.split_source else None,
        }


@dataclass(slots=True)
class _PreparedPayout:
    match: Match
    winner: User
    resolved: ResolvedSplit


class PayoutService:
    """Apply (or preview) the payout of a single match.

    The ``payout_processed`` compare-and-set, the balance credit and both
    ledger lines share one database transaction, so a payout either lands
    completely or not at all, and two concurrent callers cannot both win.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
        *,
        settings: Settings | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._session_factory = session_factory
        self._settings = settings or get_settings()
        self._clock = clock

    async def payout(self, match_id: str) -> PayoutOutcome:
        async with session_scope(self._session_factory) as session:
            matches = MatchRepository(session)
            prepared = await self._prepare(matches, match_id)
            if prepared is None:
                return PayoutOutcome(match_id=match_id, status=PayoutStatus.ALREADY_PROCESSED)

            if not await matches.claim_payout(match_id, paid_at=self._clock()):
                logger.info("Payout for match {} lost the claim; already processed", match_id)
                return PayoutOutcome(match_id=match_id, status=PayoutStatus.ALREADY_PROCESSED)

            split = prepared.resolved.split
            ledger = LedgerRepository(session)
            balance = await ledger.credit_user(prepared.winner.user_id, split.winner_payout_usd)
            if balance is None:
                raise InconsistentStateError(
                    f"winner user {prepared.winner.user_id} vanished while paying match {match_id}"
                )

            await ledger.record_transaction(
                user_id=prepared.winner.user_id,
                match_id=match_id,
                amount_usd=split.winner_payout_usd,
                type=TransactionType.PAYOUT,
                note=(
                    f"Payout for match {match_id} "
                    f"(pot: {split.pot_usd}, platform cut: {split.platform_cut_usd})"
                ),
            )
            await ledger.record_transaction(
                user_id=None,
                match_id=match_id,
                amount_usd=split.platform_cut_usd,
                type=TransactionType.PLATFORM_FEE,
                note=f"Platform cut for match {match_id}",
            )

        logger.info(
            "Paid match {}: {} to user {} (platform cut {}, split {})",
            match_id,
            split.winner_payout_usd,
            prepared.winner.user_id,
            split.platform_cut_usd,
            prepared.resolved.source.value,
        )
        return self._outcome(prepared, PayoutStatus.PAID, balance=balance)

    async def preview(self, match_id: str) -> PayoutOutcome:
        """Report what :meth:`payout` would do without writing anything."""

        async with session_scope(self._session_factory) as session:
            prepared = await self._prepare(MatchRepository(session), match_id)
            if prepared is None:
                return PayoutOutcome(match_id=match_id, status=PayoutStatus.ALREADY_PROCESSED)
            return self._outcome(prepared, PayoutStatus.WOULD_PAY, balance=prepared.winner.balance_usd)

    async def _prepare(self, matches: MatchRepository, match_id: str) -> _PreparedPayout | None:
        match = await matches.get_match(match_id)
        if match is None:
            raise NotFoundError(f"match {match_id} not found")
        if match.payout_processed:
            return None

        winner_entry = match.winner_entry
        if winner_entry is None or winner_entry.entry_id not in match.entry_ids:
            raise InconsistentStateError(f"winner entry missing on match {match_id}")
        winner = winner_entry.user
        if winner is None:
            raise InconsistentStateError(f"winner user missing for entry {winner_entry.entry_id}")

        fee = match.battle.entry_fee_usd if match.battle is not None else None
        try:
            resolved = resolve_split(
                pot_usd=match.pot_usd,
                platform_cut_usd=match.platform_cut_usd,
                winner_payout_usd=match.winner_payout_usd,
                entry_count=match.entry_count or len(match.participants),
                entry_fee_usd=fee,
                rake_rate=self._settings.rake_rate,
            )
        except ValidationError as exc:
            raise InconsistentStateError(
                f"match {match_id} has no usable split and cannot be recomputed: {exc}"
            ) from exc

        if resolved.recomputed:
            logger.warning("Match {} carried no valid split; recomputed it", match_id)
        return _PreparedPayout(match=match, winner=winner, resolved=resolved)

    @staticmethod
    def _outcome(
        prepared: _PreparedPayout,
        status: PayoutStatus,
        *,
        balance: Decimal | None,
    ) -> PayoutOutcome:
        split = prepared.resolved.split
        return PayoutOutcome(
            match_id=prepared.match.match_id,
            status=status,
            winner_user_id=prepared.winner.user_id,
            balance_usd=balance,
            pot_usd=split.pot_usd,
            winner_payout_usd=split.winner_payout_usd,
            platform_cut_usd=split.platform_cut_usd,
            split_source=prepared.resolved.source,
        )


__all__ = ["PayoutOutcome", "PayoutService", "PayoutStatus"]
