"""Repository abstractions for database interactions."""

from .battle_repository import BattleRepository
from .ledger_repository import LedgerRepository
from .match_repository import MatchRepository

__all__ = [
    "BattleRepository",
    "LedgerRepository",
    "MatchRepository",
]
