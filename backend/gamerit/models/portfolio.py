"""Materialized portfolio position: updated transactionally with each trade."""

import uuid
from datetime import datetime, timezone

from sqlalchemy import Column, String, Integer, Float, DateTime, ForeignKey, UniqueConstraint, CheckConstraint
from sqlalchemy.orm import relationship

from gamerit.database import Base


class PlayerPortfolio(Base):
    __tablename__ = "player_portfolios"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    player_id = Column(String(36), ForeignKey("players.id"), nullable=False, index=True)
    stock_id = Column(String(36), ForeignKey("meme_stocks.id"), nullable=False, index=True)
    shares_owned = Column(Integer, nullable=False, default=0)
    average_buy_price = Column(Float, nullable=False, default=0.0)
    created_at = Column(DateTime, nullable=False, default=lambda: datetime.now(timezone.utc))
    updated_at = Column(DateTime, nullable=False, default=lambda: datetime.now(timezone.utc))

    __table_args__ = (
        UniqueConstraint("player_id", "stock_id", name="uq_player_stock"),
        CheckConstraint("shares_owned >= 0", name="ck_portfolio_shares_non_negative"),
    )

    # Relationships
    player = relationship("Player", back_populates="portfolios")
    stock = relationship("MemeStock")
