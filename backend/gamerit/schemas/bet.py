"""Bet request/response schemas."""

from pydantic import BaseModel, Field


class BetCreate(BaseModel):
    round_id: str
    bet_on: str  # A | B
    amount: int = Field(gt=0)


class BetResponse(BaseModel):
    id: str
    round_id: str
    bet_on: str
    amount: int
    outcome: str  # pending | won | lost
    payout: int
    created_at: str

    class Config:
        from_attributes = True
