"""Typed value objects shared by matchmaking, payout and audit code."""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum


class SplitSource(str, Enum):
    STORED = "stored"
    RECOMPUTED = "recomputed"


@dataclass(slots=True, frozen=True)
class FinancialSplit:
    """Pot divided between the winner and the platform."""

    pot_usd: Decimal
    platform_cut_usd: Decimal
    winner_payout_usd: Decimal

    def to_dict(self) -> dict[str, str]:
        return {
            "pot_usd": str(self.pot_usd),
            "platform_cut_usd": str(self.platform_cut_usd),
            "winner_payout_usd": str(self.winner_payout_usd),
        }


@dataclass(slots=True, frozen=True)
class ResolvedSplit:
    """A split tagged with where it came from.

    ``STORED`` means the values persisted on the match were used as-is;
    ``RECOMPUTED`` means they were missing or invalid and were derived again.
    """

    split: FinancialSplit
    source: SplitSource

    @property
    def recomputed(self) -> bool:
        return self.source is SplitSource.RECOMPUTED


@dataclass(slots=True, frozen=True)
class SeedDraw:
    seed: str
    digest_hex: str
    prefix_value: int
    entry_count: int
    index: int
