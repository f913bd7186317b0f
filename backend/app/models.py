from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from uuid import uuid4

from sqlalchemy import (
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .db import Base


class BattleState(str, Enum):
    OPEN = "open"
    CLOSED = "closed"


class TransactionType(str, Enum):
    PAYOUT = "payout"
    PLATFORM_FEE = "platform_fee"
    DEPOSIT = "deposit"
    WITHDRAWAL = "withdrawal"
    OTHER = "other"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return uuid4().hex


class User(Base):
    __tablename__ = "users"

    user_id: Mapped[str] = mapped_column(String(32), primary_key=True, default=new_id)
    name: Mapped[str | None] = mapped_column(String, nullable=True)
    email: Mapped[str] = mapped_column(String, nullable=False, unique=True)
    password_hash: Mapped[str | None] = mapped_column(String, nullable=True)
    role: Mapped[str] = mapped_column(String, nullable=False, default="user")
    balance_usd: Mapped[Decimal] = mapped_column(
        Numeric(18, 2), nullable=False, default=Decimal("0.00")
    )
    verified: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)

    entries: Mapped[list["Entry"]] = relationship("Entry", back_populates="user")


class Battle(Base):
    __tablename__ = "battles"

    battle_id: Mapped[str] = mapped_column(String(32), primary_key=True, default=new_id)
    creator_id: Mapped[str | None] = mapped_column(
        String(32), ForeignKey("users.user_id"), nullable=True
    )
    title: Mapped[str] = mapped_column(String, nullable=False)
    sport: Mapped[str] = mapped_column(String, nullable=False, default="car")
    entry_fee_usd: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    start_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    state: Mapped[str] = mapped_column(String, nullable=False, default=BattleState.OPEN.value)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)

    entries: Mapped[list["Entry"]] = relationship(
        "Entry", back_populates="battle", order_by="Entry.created_at"
    )

    __table_args__ = (Index("ix_battles_state_created", "state", "created_at"),)


class Entry(Base):
    __tablename__ = "entries"

    entry_id: Mapped[str] = mapped_column(String(32), primary_key=True, default=new_id)
    user_id: Mapped[str] = mapped_column(String(32), ForeignKey("users.user_id"), nullable=False)
    battle_id: Mapped[str] = mapped_column(String(32), ForeignKey("battles.battle_id"), nullable=False)
    payment_reference: Mapped[str | None] = mapped_column(String, nullable=True)
    paid: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    locked: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)

    user: Mapped[User] = relationship("User", back_populates="entries")
    battle: Mapped[Battle] = relationship("Battle", back_populates="entries")

    __table_args__ = (
        UniqueConstraint("battle_id", "user_id", name="uq_entry_battle_user"),
        Index("ix_entries_battle_eligible", "battle_id", "paid", "locked"),
    )


class Match(Base):
    __tablename__ = "matches"

    match_id: Mapped[str] = mapped_column(String(32), primary_key=True, default=new_id)
    battle_id: Mapped[str] = mapped_column(
        String(32), ForeignKey("battles.battle_id"), nullable=False, unique=True
    )
    winner_entry_id: Mapped[str | None] = mapped_column(
        String(32), ForeignKey("entries.entry_id"), nullable=True
    )
    entry_count: Mapped[int] = mapped_column(Integer, nullable=False)

    pot_usd: Mapped[Decimal | None] = mapped_column(Numeric(18, 2), nullable=True)
    winner_payout_usd: Mapped[Decimal | None] = mapped_column(Numeric(18, 2), nullable=True)
    platform_cut_usd: Mapped[Decimal | None] = mapped_column(Numeric(18, 2), nullable=True)

    paid: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    payout_processed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    payout_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    seed: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)

    battle: Mapped[Battle] = relationship("Battle")
    winner_entry: Mapped[Entry | None] = relationship("Entry")
    participants: Mapped[list["MatchEntry"]] = relationship(
        "MatchEntry",
        back_populates="match",
        order_by="MatchEntry.position",
        cascade="all, delete-orphan",
    )

    __table_args__ = (Index("ix_matches_payout_created", "payout_processed", "created_at"),)

    @property
    def entry_ids(self) -> list[str]:
        return [link.entry_id for link in self.participants]


class MatchEntry(Base):
    """Participant slot of a match; ``position`` fixes the order used for the draw."""

    __tablename__ = "match_entries"

    match_id: Mapped[str] = mapped_column(String(32), ForeignKey("matches.match_id"), primary_key=True)
    position: Mapped[int] = mapped_column(Integer, primary_key=True)
    entry_id: Mapped[str] = mapped_column(String(32), ForeignKey("entries.entry_id"), nullable=False)

    match: Mapped[Match] = relationship("Match", back_populates="participants")
    entry: Mapped[Entry] = relationship("Entry")

    __table_args__ = (UniqueConstraint("match_id", "entry_id", name="uq_match_entry"),)


class Transaction(Base):
    __tablename__ = "transactions"

    transaction_id: Mapped[str] = mapped_column(String(32), primary_key=True, default=new_id)
    user_id: Mapped[str | None] = mapped_column(String(32), ForeignKey("users.user_id"), nullable=True)
    match_id: Mapped[str | None] = mapped_column(String(32), ForeignKey("matches.match_id"), nullable=True)
    amount_usd: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    type: Mapped[str] = mapped_column(String, nullable=False, default=TransactionType.PAYOUT.value)
    note: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)

    __table_args__ = (Index("ix_transactions_match", "match_id"),)
