"""Pure domain logic: the seeded draw, the financial split and the error taxonomy."""

from .models import FinancialSplit, ResolvedSplit, SeedDraw, SplitSource

__all__ = [
    "FinancialSplit",
    "ResolvedSplit",
    "SeedDraw",
    "SplitSource",
]
