"""Audit trail helper."""

import json
from typing import Optional

from sqlalchemy.orm import Session

from gamerit.models.audit_log import AuditLog


def record(
    db: Session,
    entity_type: str,
    entity_id: str,
    action: str,
    new_data: Optional[dict] = None,
    old_data: Optional[dict] = None,
    actor_id: Optional[str] = None,
) -> None:
    """Stage an audit row in the caller's transaction."""
    db.add(AuditLog(
        entity_type=entity_type,
        entity_id=entity_id,
        action=action,
        actor_id=actor_id,
        old_data=json.dumps(old_data) if old_data is not None else None,
        new_data=json.dumps(new_data) if new_data is not None else None,
    ))
