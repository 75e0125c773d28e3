from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

import audit
import permissions
import reputation
from dependencies import get_actor, get_db
from filter_helpers import blank_to_none, normalize_limit, normalize_offset
from models import Actor, Reputation

router = APIRouter(tags=["reputation"])


@router.get("/users/{user_id}/reputation", response_model=Reputation)
def get_reputation_api(
    user_id: str,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
):
    permissions.require_owner_or_staff(actor, user_id, "view this user's reputation")
    return reputation.get_reputation(db, user_id)


@router.get("/audit-logs", response_model=list[audit.AuditLogEntry])
def list_audit_logs_api(
    entity_type: Optional[str] = None,
    entity_id: Optional[str] = None,
    action: Optional[str] = None,
    user_id: Optional[str] = None,
    limit: int = 100,
    offset: int = 0,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
):
    permissions.require_staff(actor, "read the audit log")
    rows = audit.list_entries(
        db,
        entity_type=blank_to_none(entity_type),
        entity_id=blank_to_none(entity_id),
        action=blank_to_none(action),
        user_id=blank_to_none(user_id),
        limit=normalize_limit(limit),
        offset=normalize_offset(offset),
    )
    return [audit.to_entry(r) for r in rows]
