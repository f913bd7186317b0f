from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field, field_validator


def _coerce_money(value: Any) -> float | None:
    if value is None:
        return None
    return float(value)


class User(BaseModel):
    user_id: str
    name: str | None = None
    email: str
    role: str
    balance_usd: float
    verified: bool
    created_at: datetime

    model_config = {"from_attributes": True}

    @field_validator("balance_usd", mode="before")
    @classmethod
    def _coerce_balance(cls, value: Any) -> float | None:
        return _coerce_money(value)


class BattleCreate(BaseModel):
    creator_id: str
    title: str = Field(min_length=1)
    sport: str = "car"
    entry_fee_usd: float = Field(gt=0)
    start_at: datetime | None = None


class Battle(BaseModel):
    battle_id: str
    creator_id: str | None = None
    title: str
    sport: str
    entry_fee_usd: float
    start_at: datetime | None = None
    state: str
    created_at: datetime

    model_config = {"from_attributes": True}

    @field_validator("entry_fee_usd", mode="before")
    @classmethod
    def _coerce_fee(cls, value: Any) -> float | None:
        return _coerce_money(value)


class BattleJoin(BaseModel):
    user_id: str


class PaymentConfirmation(BaseModel):
    payment_reference: str | None = None


class Entry(BaseModel):
    entry_id: str
    battle_id: str
    user_id: str
    paid: bool
    locked: bool
    created_at: datetime

    model_config = {"from_attributes": True}


class EntryList(BaseModel):
    total: int
    items: list[Entry]


class Match(BaseModel):
    match_id: str
    battle_id: str
    entry_ids: list[str] = Field(default_factory=list)
    winner_entry_id: str | None = None
    entry_count: int
    pot_usd: float | None = None
    winner_payout_usd: float | None = None
    platform_cut_usd: float | None = None
    seed: str
    paid: bool
    payout_processed: bool
    payout_at: datetime | None = None
    created_at: datetime

    model_config = {"from_attributes": True}

    @field_validator("pot_usd", "winner_payout_usd", "platform_cut_usd", mode="before")
    @classmethod
    def _coerce_amounts(cls, value: Any) -> float | None:
        return _coerce_money(value)


class Transaction(BaseModel):
    transaction_id: str
    user_id: str | None = None
    match_id: str | None = None
    amount_usd: float
    type: str
    note: str | None = None
    created_at: datetime

    model_config = {"from_attributes": True}

    @field_validator("amount_usd", mode="before")
    @classmethod
    def _coerce_amount(cls, value: Any) -> float | None:
        return _coerce_money(value)


class BatchPayoutRequest(BaseModel):
    apply: bool = False
    limit: int | None = Field(default=None, ge=0)
    batch_size: int | None = Field(default=None, ge=1)
    concurrency: int | None = Field(default=None, ge=1)
