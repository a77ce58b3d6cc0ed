"""Meme stock model: a tradable instrument keyed by a trending keyword."""

import uuid
from datetime import datetime, timezone

from sqlalchemy import Column, String, Integer, Boolean, DateTime, JSON, Index, true

from gamerit.database import Base


class MemeStock(Base):
    __tablename__ = "meme_stocks"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    meme_keyword = Column(String(100), nullable=False, index=True)
    current_value = Column(Integer, nullable=False, default=10)
    is_active = Column(Boolean, nullable=False, default=True)
    # Append-only list of {"timestamp": iso8601, "value": int}
    history = Column(JSON, nullable=False, default=list)
    created_at = Column(DateTime, nullable=False, default=lambda: datetime.now(timezone.utc))
    updated_at = Column(DateTime, nullable=False, default=lambda: datetime.now(timezone.utc))
    deactivated_at = Column(DateTime, nullable=True)

    __table_args__ = (
        # A keyword backs at most one active stock at a time.
        Index(
            "uq_meme_stocks_active_keyword",
            "meme_keyword",
            unique=True,
            sqlite_where=is_active == true(),
            postgresql_where=is_active == true(),
        ),
    )
