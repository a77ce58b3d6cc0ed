"""Player model: one row per Reddit identity."""

import uuid
from datetime import datetime, timezone

from sqlalchemy import Column, String, Integer, DateTime, CheckConstraint
from sqlalchemy.orm import relationship

from gamerit.database import Base


class Player(Base):
    __tablename__ = "players"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    reddit_id = Column(String(64), unique=True, nullable=False, index=True)
    reddit_username = Column(String(255), nullable=False, index=True)
    avatar_url = Column(String(1024), nullable=True)
    points = Column(Integer, nullable=False, default=1000)
    xp = Column(Integer, nullable=False, default=0)
    level = Column(Integer, nullable=False, default=1)
    meta_minutes = Column(Integer, nullable=False, default=0)  # Productivity Paradox currency
    last_welfare_claim = Column(DateTime, nullable=True)
    created_at = Column(DateTime, nullable=False, default=lambda: datetime.now(timezone.utc))

    __table_args__ = (
        CheckConstraint("points >= 0", name="ck_players_points_non_negative"),
    )

    # Relationships
    bets = relationship("Bet", back_populates="player")
    portfolios = relationship("PlayerPortfolio", back_populates="player")
