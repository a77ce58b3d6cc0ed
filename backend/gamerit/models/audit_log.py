"""Audit log model: immutable record of every lifecycle transition."""

import uuid
from datetime import datetime, timezone

from sqlalchemy import Column, String, DateTime, ForeignKey, Text

from gamerit.database import Base


class AuditLog(Base):
    __tablename__ = "audit_logs"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    entity_type = Column(String(50), nullable=False)  # round | meme_stock | player
    entity_id = Column(String(36), nullable=False)
    action = Column(String(50), nullable=False)  # created | finished | settled | deactivated | ...
    actor_id = Column(String(36), ForeignKey("players.id"), nullable=True)  # null = scheduler
    old_data = Column(Text, nullable=True)   # JSON string
    new_data = Column(Text, nullable=True)   # JSON string
    created_at = Column(DateTime, nullable=False, default=lambda: datetime.now(timezone.utc))
