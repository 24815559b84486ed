from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session
from typing import Optional
from wholesale.infrastructure.db import get_db
from wholesale.application.audit import AuditLogger
from wholesale.application.rbac import Actor
from wholesale.application.schemas import AuditLogRead
from .deps import require_permission

router = APIRouter(prefix="/audit-logs", tags=["audit"])

@router.get("/", response_model=list[AuditLogRead])
def list_audit_logs(
    action: Optional[str] = Query(None),
    entity: Optional[str] = Query(None),
    limit: int = Query(100, ge=1, le=1000),
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_permission("view_audit_logs")),
):
    return AuditLogger(db).list(action=action, entity=entity, limit=limit)
