"""Job lease model: one row per periodic job, shared by every instance."""

from sqlalchemy import Column, String, DateTime

from gamerit.database import Base


class JobLock(Base):
    __tablename__ = "job_locks"

    name = Column(String(100), primary_key=True)
    owner = Column(String(64), nullable=True)
    locked_until = Column(DateTime, nullable=True)
    last_started_at = Column(DateTime, nullable=True)
    last_finished_at = Column(DateTime, nullable=True)
