"""Pydantic models for the table API."""

from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel, Field, model_validator

from agent_poker.engine import PokerAction

PIN_PATTERN = r"^\d{4,12}$"


# --- Request models ---


class CreateTableRequest(BaseModel):
    table_id: int = Field(..., ge=0)
    creator: str = Field(..., min_length=1, max_length=64)
    small_blind: int = Field(default=1, ge=1)
    big_blind: int = Field(default=2, ge=1)
    min_buy_in: int = Field(default=40, ge=1)
    max_buy_in: int = Field(default=200, ge=1)
    max_players: int = Field(default=6, ge=2)
    post_blinds: bool = False
    creator_pin: str = Field(..., pattern=PIN_PATTERN)

    @model_validator(mode="after")
    def _check_ordering(self) -> CreateTableRequest:
        if self.big_blind < self.small_blind:
            raise ValueError("big_blind must be >= small_blind")
        if self.min_buy_in > self.max_buy_in:
            raise ValueError("min_buy_in must be <= max_buy_in")
        return self


class JoinTableRequest(BaseModel):
    agent: str = Field(..., min_length=1, max_length=64)
    human: str = Field(..., min_length=1, max_length=64)
    buy_in: int = Field(..., ge=1)
    pin: str = Field(..., pattern=PIN_PATTERN)
    human_pin: str = Field(..., pattern=PIN_PATTERN)


class LeaveTableRequest(BaseModel):
    agent: str = Field(..., min_length=1, max_length=64)
    pin: str = Field(..., pattern=PIN_PATTERN)


class PlayerActionRequest(BaseModel):
    agent: str = Field(..., min_length=1, max_length=64)
    pin: str = Field(..., pattern=PIN_PATTERN)
    action: PokerAction
    amount: int = Field(default=0, ge=0)


class HoleCardsRequest(BaseModel):
    agent: str = Field(..., min_length=1, max_length=64)
    cards: list[int]


class DealCommunityRequest(BaseModel):
    cards: list[int]


class SettleHandRequest(BaseModel):
    winner: str = Field(..., min_length=1, max_length=64)
    winner_position: int = Field(..., ge=0)


class WithdrawRakeRequest(BaseModel):
    admin: str = Field(..., min_length=1, max_length=64)
    pin: str = Field(..., pattern=PIN_PATTERN)


class CreditAccountRequest(BaseModel):
    amount: int = Field(..., ge=1)
    # Sets the account PIN on first funding; later credits ignore it
    pin: str = Field(..., pattern=PIN_PATTERN)


# --- Response models ---


class TableSummary(BaseModel):
    """Listing entry for a table (no seat detail)."""

    table_id: int
    small_blind: int
    big_blind: int
    min_buy_in: int
    max_buy_in: int
    player_count: int
    max_players: int
    state: str
    current_hand: int


class LeaveTableResponse(BaseModel):
    agent: str
    refund: int


class WithdrawRakeResponse(BaseModel):
    amount: int


class BalanceResponse(BaseModel):
    account: str
    balance: int


class EventsResponse(BaseModel):
    table_id: int
    events: list[dict[str, Any]]


class HealthResponse(BaseModel):
    status: str
    tables: Optional[int] = None
