"""Replay a winner draw offline from a published seed.

Usage::

    python -m scripts.verify_seed "<seed>" 5
    python -m scripts.verify_seed "<seed>" 3 --entries e1 e2 e3 --winner e2
"""

import argparse
import json

from loguru import logger

from app.domain.errors import ValidationError
from app.domain.seed import draw, verify_draw


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Recompute the winner index for a match seed")
    parser.add_argument("seed", help="Seed string exactly as stored on the match")
    parser.add_argument("entry_count", type=int, help="Number of entries captured in the match")
    parser.add_argument(
        "--entries",
        nargs="+",
        default=None,
        help="Match entry ids in stored order; prints the computed winner entry",
    )
    parser.add_argument(
        "--winner",
        default=None,
        help="Stored winner entry id to check against (requires --entries)",
    )
    return parser.parse_args()


def main() -> int:
    args = parse_args()
    try:
        result = draw(args.seed, args.entry_count)
    except ValidationError as exc:
        logger.error("Cannot replay draw: {}", exc.message)
        return 2

    payload: dict[str, object] = {
        "seed": result.seed,
        "entry_count": result.entry_count,
        "digest_hex": result.digest_hex,
        "prefix_value": result.prefix_value,
        "computed_index": result.index,
    }

    if args.entries:
        if len(args.entries) != args.entry_count:
            logger.error(
                "Got {} entry ids but entry_count is {}", len(args.entries), args.entry_count
            )
            return 2
        payload["computed_winner_entry_id"] = args.entries[result.index]
        if args.winner:
            payload["stored_winner_entry_id"] = args.winner
            payload["verified"] = verify_draw(args.seed, args.entries, args.winner)
    elif args.winner:
        logger.warning("--winner ignored without --entries")

    print(json.dumps(payload, indent=2))
    return 0 if payload.get("verified", True) else 1


if __name__ == "__main__":
    raise SystemExit(main())
