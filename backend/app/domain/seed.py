"""Auditable winner draw.

A seed is ``"<64 hex chars>|<epoch millis>"``. The winner index is the first
four bytes of ``sha256(seed)`` read as a big-endian unsigned integer, modulo
the number of entries captured when the match was created.
"""

from __future__ import annotations

import hashlib
import secrets
from collections.abc import Sequence
from datetime import datetime, timezone

from .errors import ValidationError
from .models import SeedDraw

SEED_ENTROPY_BYTES = 32
PREFIX_BYTES = 4


def generate_seed(now: datetime | None = None) -> str:
    now = now or datetime.now(timezone.utc)
    millis = int(now.timestamp() * 1000)
    return f"{secrets.token_hex(SEED_ENTROPY_BYTES)}|{millis}"


def draw(seed: str, entry_count: int) -> SeedDraw:
    if not seed:
        raise ValidationError("seed must not be empty")
    if entry_count < 1:
        raise ValidationError(f"entry count must be positive, got {entry_count}")

    digest = hashlib.sha256(seed.encode("utf-8")).digest()
    prefix_value = int.from_bytes(digest[:PREFIX_BYTES], "big")
    return SeedDraw(
        seed=seed,
        digest_hex=digest.hex(),
        prefix_value=prefix_value,
        entry_count=entry_count,
        index=prefix_value % entry_count,
    )


def winner_index(seed: str, entry_count: int) -> int:
    return draw(seed, entry_count).index


def verify_draw(seed: str, entry_ids: Sequence[str], winner_entry_id: str | None) -> bool:
    """True when replaying the draw over ``entry_ids`` lands on ``winner_entry_id``."""

    if not entry_ids or winner_entry_id is None:
        return False
    return entry_ids[winner_index(seed, len(entry_ids))] == winner_entry_id


__all__ = ["draw", "generate_seed", "verify_draw", "winner_index"]
