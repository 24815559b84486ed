from sqlalchemy import select
from sqlalchemy.orm import Session
from typing import Any, Optional
from wholesale.domain.models import AuditLog
from shared.core import get_logger
from .rbac import Actor

logger = get_logger(__name__)

ENTITY_ORDER = "OrderRequest"
ENTITY_INVOICE = "Invoice"
ENTITY_PRODUCT = "Product"
ENTITY_TIER_PROPOSAL = "TierProposal"


class AuditLogger:
    """Append-only trail of mutating actions.

    ``record`` only adds the entry to the caller's session, so it commits or
    rolls back together with the mutation it describes. There is
    no update or delete path.
    """

    def __init__(self, db: Session):
        self.db = db

    def record(
        self,
        actor: Optional[Actor],
        action: str,
        entity: str,
        entity_id: Any,
        meta: Optional[dict] = None,
    ) -> AuditLog:
        entry = AuditLog(
            actor_id=actor.user_id if actor else None,
            actor_role=actor.role.value if actor else None,
            action=action,
            entity=entity,
            entity_id=str(entity_id),
            meta=meta or {},
        )
        self.db.add(entry)
        logger.info(
            f"Audit {action} on {entity} {entity_id}",
            extra={'extra_fields': {'action': action, 'entity': entity, 'entity_id': str(entity_id)}}
        )
        return entry

    def list(self, action: Optional[str] = None, entity: Optional[str] = None, limit: int = 100):
        query = select(AuditLog)
        if action:
            query = query.where(AuditLog.action == action)
        if entity:
            query = query.where(AuditLog.entity == entity)
        query = query.order_by(AuditLog.created_at.desc(), AuditLog.id.desc()).limit(limit)
        return list(self.db.scalars(query))
