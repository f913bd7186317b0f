"""User balances and the append-only transaction ledger."""

from __future__ import annotations

from decimal import Decimal

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.models import Transaction, TransactionType, User


class LedgerRepository:
    """Encapsulate user balance and transaction persistence."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    # ------------------------------------------------------------------
    # Mutations

    async def create_user(
        self,
        *,
        email: str,
        name: str | None = None,
        role: str = "user",
        balance_usd: Decimal = Decimal("0.00"),
    ) -> User:
        user = User(email=email, name=name, role=role, balance_usd=balance_usd)
        self._session.add(user)
        await self._session.flush()
        return user

    async def credit_user(self, user_id: str, amount_usd: Decimal) -> Decimal | None:
        """Atomically add ``amount_usd`` to a balance and return the new balance."""

        statement = (
            update(User)
            .where(User.user_id == user_id)
            .values(balance_usd=User.balance_usd + amount_usd)
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(statement)
        if result.rowcount != 1:
            return None
        balance = await self._session.execute(
            select(User.balance_usd).where(User.user_id == user_id)
        )
        return balance.scalar_one()

    async def record_transaction(
        self,
        *,
        amount_usd: Decimal,
        type: TransactionType,
        user_id: str | None = None,
        match_id: str | None = None,
        note: str | None = None,
    ) -> Transaction:
        record = Transaction(
            user_id=user_id,
            match_id=match_id,
            amount_usd=amount_usd,
            type=type.value,
            note=note,
        )
        self._session.add(record)
        await self._session.flush()
        return record

    # ------------------------------------------------------------------
    # Queries

    async def get_user(self, user_id: str) -> User | None:
        return await self._session.get(User, user_id)

    async def get_user_by_email(self, email: str) -> User | None:
        result = await self._session.execute(select(User).where(User.email == email))
        return result.scalar_one_or_none()

    async def list_users(self, *, limit: int = 200) -> list[User]:
        query = select(User).order_by(User.created_at.desc(), User.user_id.desc()).limit(limit)
        result = await self._session.execute(query)
        return list(result.scalars().all())

    async def list_transactions(
        self,
        *,
        match_id: str | None = None,
        limit: int = 200,
    ) -> list[Transaction]:
        query = select(Transaction)
        if match_id is not None:
            query = query.where(Transaction.match_id == match_id)
        query = query.order_by(
            Transaction.created_at.desc(), Transaction.transaction_id.desc()
        ).limit(limit)
        result = await self._session.execute(query)
        return list(result.scalars().all())


__all__ = ["LedgerRepository"]
