"""Pot, rake and winner payout arithmetic.

Every place that needs a split goes through :func:`compute_split`, so a
match stamped at creation and a match paid later agree to the cent.
"""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any

from .errors import ValidationError
from .models import FinancialSplit, ResolvedSplit, SplitSource

CENT = Decimal("0.01")
ZERO = Decimal("0.00")


def to_decimal(value: Any) -> Decimal:
    if isinstance(value, Decimal):
        return value
    try:
        # str() keeps floats such as 0.15 from dragging binary noise along.
        return Decimal(str(value))
    except (InvalidOperation, ValueError) as exc:
        raise ValidationError(f"not a number: {value!r}") from exc


def round2(value: Decimal) -> Decimal:
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def compute_split(entry_count: int, entry_fee_usd: Any, rake_rate: Any) -> FinancialSplit:
    if entry_count < 2:
        raise ValidationError(f"a split needs at least 2 entries, got {entry_count}")
    fee = to_decimal(entry_fee_usd)
    if fee < 0:
        raise ValidationError(f"entry fee must be non-negative, got {fee}")
    rate = to_decimal(rake_rate)
    if not ZERO <= rate < 1:
        raise ValidationError(f"rake rate must be within [0, 1), got {rate}")

    pot = round2(fee * entry_count)
    platform_cut = round2(pot * rate)
    winner_payout = max(round2(pot - platform_cut), ZERO)
    return FinancialSplit(
        pot_usd=pot,
        platform_cut_usd=platform_cut,
        winner_payout_usd=winner_payout,
    )


def stored_split(
    pot_usd: Any,
    platform_cut_usd: Any,
    winner_payout_usd: Any,
) -> FinancialSplit | None:
    """Return the persisted split when it is complete and self-consistent."""

    if pot_usd is None or platform_cut_usd is None or winner_payout_usd is None:
        return None
    try:
        pot = to_decimal(pot_usd)
        cut = to_decimal(platform_cut_usd)
        payout = to_decimal(winner_payout_usd)
    except ValidationError:
        return None
    if pot < 0 or cut < 0 or payout < 0:
        return None
    if abs(pot - (cut + payout)) > CENT:
        return None
    return FinancialSplit(
        pot_usd=round2(pot),
        platform_cut_usd=round2(cut),
        winner_payout_usd=round2(payout),
    )


def resolve_split(
    *,
    pot_usd: Any,
    platform_cut_usd: Any,
    winner_payout_usd: Any,
    entry_count: int,
    entry_fee_usd: Any,
    rake_rate: Any,
) -> ResolvedSplit:
    stored = stored_split(pot_usd, platform_cut_usd, winner_payout_usd)
    if stored is not None:
        return ResolvedSplit(split=stored, source=SplitSource.STORED)
    return ResolvedSplit(
        split=compute_split(entry_count, entry_fee_usd, rake_rate),
        source=SplitSource.RECOMPUTED,
    )


__all__ = [
    "CENT",
    "compute_split",
    "resolve_split",
    "round2",
    "stored_split",
    "to_decimal",
]
