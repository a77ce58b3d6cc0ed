"""Bet model: immutable record of a wager on one side of a round."""

import uuid
from datetime import datetime, timezone

from sqlalchemy import Column, String, Integer, DateTime, ForeignKey, CheckConstraint
from sqlalchemy.orm import relationship

from gamerit.database import Base


class Bet(Base):
    __tablename__ = "bets"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    round_id = Column(String(36), ForeignKey("game_rounds.id"), nullable=False, index=True)
    player_id = Column(String(36), ForeignKey("players.id"), nullable=False, index=True)
    bet_on = Column(String(1), nullable=False)  # A | B
    amount = Column(Integer, nullable=False)
    created_at = Column(DateTime, nullable=False, default=lambda: datetime.now(timezone.utc))

    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_bets_amount_positive"),
    )

    # Relationships
    round = relationship("GameRound", back_populates="bets")
    player = relationship("Player", back_populates="bets")
