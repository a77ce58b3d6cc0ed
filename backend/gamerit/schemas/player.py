"""Player, session and leaderboard schemas."""

from typing import Optional
from pydantic import BaseModel


class SessionRequest(BaseModel):
    reddit_id: str
    reddit_username: str
    avatar_url: Optional[str] = None


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    player_id: str


class PlayerResponse(BaseModel):
    id: str
    reddit_username: str
    avatar_url: Optional[str]
    points: int
    xp: int
    level: int
    next_level_xp: int
    meta_minutes: int
    last_welfare_claim: Optional[str]
    created_at: str

    class Config:
        from_attributes = True


class LeaderboardEntry(BaseModel):
    rank: int
    id: str
    reddit_username: str
    avatar_url: Optional[str]
    points: int
    level: int


class WelfareResponse(BaseModel):
    points: int
    granted: int
