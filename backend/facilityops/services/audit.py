from __future__ import annotations
import logging
from typing import Any, Dict, List, Optional
from flask_jwt_extended import get_jwt_identity, get_jwt
from sqlalchemy import select
from facilityops import get_db
from facilityops.models.audit import AuditLog

logger = logging.getLogger(__name__)


def add_audit(action: str, entity: Optional[str] = None, entity_id: Optional[str] = None, meta: Optional[Dict[str, Any]] = None,
              actor_user_id: Optional[int] = None):
    """Persist an audit log entry within the current DB session.

    Parameters:
      action: short action code e.g. ISSUE.ASSIGN, ISSUE.SLA.SWEEP
      entity: optional entity name (Issue, Notification)
      entity_id: optional primary key string
      meta: additional JSON-safe dictionary (will be shallow copied)
      actor_user_id: explicit actor for calls made outside a request (sweeps, scripts)
    """
    session = get_db()
    claims = {}
    actor = actor_user_id
    if actor is None:
        try:
            claims = get_jwt() or {}
            ident = get_jwt_identity()
            actor = int(ident) if ident is not None else None
        except Exception:
            actor = None  # no JWT context (scripts, engine-only tests)
    log = AuditLog(
        actor_user_id=actor or 0,
        action=action,
        entity=entity,
        entity_id=str(entity_id) if entity_id is not None else None,
        perms_snapshot={'perms': claims.get('perms', [])},
        meta=dict(meta or {}),
    )
    session.add(log)
    # No commit here; caller's transaction boundary controls durability.
    return log


def activity_for(entity: str, entity_id, limit: int = 50, offset: int = 0) -> List[AuditLog]:
    session = get_db()
    return session.execute(
        select(AuditLog)
        .where(AuditLog.entity == entity, AuditLog.entity_id == str(entity_id))
        .order_by(AuditLog.id.asc())
        .limit(limit).offset(offset)
    ).scalars().all()


def audit_dict(log: AuditLog) -> Dict[str, Any]:
    return {
        'id': log.id,
        'actor_user_id': log.actor_user_id,
        'action': log.action,
        'entity': log.entity,
        'entity_id': log.entity_id,
        'meta': log.meta or {},
        'created_at': log.created_at.isoformat() if log.created_at else None,
    }
