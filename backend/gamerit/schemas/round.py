"""Round schemas."""

from typing import Optional
from pydantic import BaseModel


class RoundPost(BaseModel):
    id: str
    title: str
    author: str
    subreddit: str
    initial_score: int
    current_score: int
    delta: int


class RoundResponse(BaseModel):
    id: str
    status: str  # active | finished
    post_a: RoundPost
    post_b: RoundPost
    winner: Optional[str]
    created_at: str
    closes_at: str
    scores_updated_at: Optional[str]
    finished_at: Optional[str]


class RoundCreateResponse(BaseModel):
    created: int
    round: Optional[RoundResponse] = None
    message: str


class RoundCycleResponse(BaseModel):
    active_before: int
    active_after: int
    expired: list[str]
    created: list[str]
    skipped_reason: Optional[str]


class ScoreRefreshResponse(BaseModel):
    updated_rounds: int
    failed_rounds: int
