"""Run one matchmaking pass over every open battle."""

from __future__ import annotations

import argparse
import asyncio
import json
from pathlib import Path

from loguru import logger

from app.core.config import get_settings
from app.db import init_db
from app.services.matchmaking_service import MatchmakingReport, MatchmakingService


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Close eligible open battles into matches")
    parser.add_argument(
        "--summary-path",
        type=Path,
        default=None,
        help="Optional path where a JSON report of created matches will be written",
    )
    return parser.parse_args()


async def _main() -> MatchmakingReport:
    await init_db()
    return await MatchmakingService(settings=get_settings()).run()


def main() -> MatchmakingReport:
    args = _parse_args()
    report = asyncio.run(_main())
    payload = json.dumps(report.to_dict(), default=str, indent=2)
    if args.summary_path:
        args.summary_path.parent.mkdir(parents=True, exist_ok=True)
        args.summary_path.write_text(payload + "\n", encoding="utf-8")
        logger.info("Matchmaking report written to {}", args.summary_path)
    else:
        print(payload)
    return report


if __name__ == "__main__":
    main()
