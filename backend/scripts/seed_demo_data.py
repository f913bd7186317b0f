"""Populate a local database with two users and a ready-to-match battle."""

import argparse
import asyncio
from decimal import Decimal

from loguru import logger

from app.db import init_db, session_scope
from app.repositories import BattleRepository, LedgerRepository

DEMO_USERS = (
    ("alice@battlehub.local", "Alice"),
    ("bob@battlehub.local", "Bob"),
)


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Seed demo users and an open battle")
    parser.add_argument("--entry-fee", type=Decimal, default=Decimal("5.00"), help="Battle entry fee in USD")
    parser.add_argument("--title", default="Demo battle", help="Title of the seeded battle")
    return parser.parse_args()


async def seed(*, entry_fee: Decimal, title: str) -> str:
    await init_db()
    async with session_scope() as session:
        ledger = LedgerRepository(session)
        battles = BattleRepository(session)

        users = []
        for email, name in DEMO_USERS:
            user = await ledger.get_user_by_email(email)
            if user is None:
                user = await ledger.create_user(email=email, name=name)
                logger.info("Created demo user {} ({})", email, user.user_id)
            users.append(user)

        battle = await battles.create_battle(
            title=title,
            sport="car",
            entry_fee_usd=entry_fee,
            start_at=None,
            creator_id=users[0].user_id,
        )
        for user in users:
            entry = await battles.add_entry(battle_id=battle.battle_id, user_id=user.user_id)
            await battles.mark_entry_paid(entry.entry_id, payment_reference="demo")

    logger.info("Seeded battle {} with {} paid entries", battle.battle_id, len(users))
    return battle.battle_id


def main() -> None:
    args = parse_args()
    battle_id = asyncio.run(seed(entry_fee=args.entry_fee, title=args.title))
    print(battle_id)


if __name__ == "__main__":
    main()
