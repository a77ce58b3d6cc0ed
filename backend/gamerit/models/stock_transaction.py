"""Stock transaction model: immutable record of every buy and sell."""

import uuid
from datetime import datetime, timezone

from sqlalchemy import Column, String, Integer, Float, DateTime, ForeignKey
from sqlalchemy.orm import relationship

from gamerit.database import Base


class StockTransaction(Base):
    __tablename__ = "meme_stock_transactions"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    player_id = Column(String(36), ForeignKey("players.id"), nullable=False, index=True)
    stock_id = Column(String(36), ForeignKey("meme_stocks.id"), nullable=False, index=True)
    transaction_type = Column(String(4), nullable=False)  # buy | sell
    shares = Column(Integer, nullable=False)
    price_per_share = Column(Integer, nullable=False)
    total_amount = Column(Integer, nullable=False)
    # Realized P&L, sells only
    profit_loss = Column(Float, nullable=True)
    created_at = Column(DateTime, nullable=False, default=lambda: datetime.now(timezone.utc))

    # Relationships
    stock = relationship("MemeStock")
