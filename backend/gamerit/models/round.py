"""Game round model: a head-to-head upvote contest between two Reddit posts."""

import uuid
from datetime import datetime, timezone

from sqlalchemy import Column, String, Integer, DateTime, Text, Index
from sqlalchemy.orm import relationship

from gamerit.database import Base

ROUND_ACTIVE = "active"
ROUND_FINISHED = "finished"


class GameRound(Base):
    __tablename__ = "game_rounds"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    status = Column(String(20), nullable=False, default=ROUND_ACTIVE)  # active | finished

    post_a_id = Column(String(32), nullable=False)
    post_a_title = Column(Text, nullable=False)
    post_a_author = Column(String(255), nullable=False)
    post_a_subreddit = Column(String(255), nullable=False)
    post_a_initial_score = Column(Integer, nullable=False, default=0)
    post_a_final_score = Column(Integer, nullable=False, default=0)

    post_b_id = Column(String(32), nullable=False)
    post_b_title = Column(Text, nullable=False)
    post_b_author = Column(String(255), nullable=False)
    post_b_subreddit = Column(String(255), nullable=False)
    post_b_initial_score = Column(Integer, nullable=False, default=0)
    post_b_final_score = Column(Integer, nullable=False, default=0)

    winner = Column(String(1), nullable=True)  # A | B
    created_at = Column(DateTime, nullable=False, default=lambda: datetime.now(timezone.utc))
    scores_updated_at = Column(DateTime, nullable=True)
    finished_at = Column(DateTime, nullable=True)
    settled_at = Column(DateTime, nullable=True)

    __table_args__ = (
        Index("idx_game_rounds_status_created", "status", "created_at"),
    )

    # Relationships
    bets = relationship("Bet", back_populates="round")
