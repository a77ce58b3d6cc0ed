"""Store-backed job leases.

A lease is one row in job_locks; acquiring it is a single conditional UPDATE,
so at most one invocation of a job runs at a time across every instance
sharing the database. Leases expire so a crashed holder cannot wedge a job.
"""

import logging
import uuid
from contextlib import contextmanager
from datetime import timedelta
from typing import Optional

from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from gamerit.config import settings
from gamerit.exceptions import JobAlreadyRunning
from gamerit.models.job_lock import JobLock
from gamerit.timeutil import utcnow

logger = logging.getLogger(__name__)


def _ensure_row(db: Session, name: str) -> None:
    if db.get(JobLock, name) is not None:
        return
    try:
        db.add(JobLock(name=name))
        db.commit()
    except IntegrityError:
        # Another instance inserted it first.
        db.rollback()


def acquire(db: Session, name: str, ttl_seconds: Optional[int] = None, owner: Optional[str] = None) -> Optional[str]:
    """Try to take the lease. Returns the owner token, or None if held."""
    ttl = ttl_seconds if ttl_seconds is not None else settings.JOB_LOCK_TTL_SECONDS
    owner = owner or uuid.uuid4().hex
    _ensure_row(db, name)

    now = utcnow()
    updated = (
        db.query(JobLock)
        .filter(
            JobLock.name == name,
            or_(JobLock.locked_until.is_(None), JobLock.locked_until < now),
        )
        .update(
            {
                JobLock.owner: owner,
                JobLock.locked_until: now + timedelta(seconds=ttl),
                JobLock.last_started_at: now,
            },
            synchronize_session=False,
        )
    )
    db.commit()
    if updated != 1:
        return None
    return owner


def release(db: Session, name: str, owner: str) -> None:
    db.query(JobLock).filter(JobLock.name == name, JobLock.owner == owner).update(
        {
            JobLock.owner: None,
            JobLock.locked_until: None,
            JobLock.last_finished_at: utcnow(),
        },
        synchronize_session=False,
    )
    db.commit()


@contextmanager
def exclusive(db: Session, name: str, ttl_seconds: Optional[int] = None):
    """Run a block while holding the named lease; raises JobAlreadyRunning."""
    owner = acquire(db, name, ttl_seconds)
    if owner is None:
        raise JobAlreadyRunning(f"Job '{name}' is already running")
    try:
        yield owner
    finally:
        db.rollback()
        release(db, name, owner)
