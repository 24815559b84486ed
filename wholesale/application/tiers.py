from __future__ import annotations
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, selectinload
from typing import Optional
from wholesale.domain.models import TierProposal, TierProposalStatus, User, utcnow
from shared.core import get_logger
from .audit import AuditLogger, ENTITY_TIER_PROPOSAL
from .errors import ConflictError, InvalidInputError, NotFoundError, PersistenceError, UnauthorizedError
from .rbac import Actor
from .schemas import TierProposalCreate, TierProposalDecision

logger = get_logger(__name__)

DECISION_STATUSES = (TierProposalStatus.APPROVED, TierProposalStatus.REJECTED)


class TierProposalService:
    """Pricing-tier change requests and the staff decision on them.

    Approving a proposal moves the customer to the proposed tier in the same
    transaction as the decision and its audit entry.
    """

    def __init__(self, db: Session):
        self.db = db
        self.audit = AuditLogger(db)

    def _load(self, proposal_id: int) -> TierProposal:
        proposal = self.db.scalar(
            select(TierProposal)
            .where(TierProposal.id == proposal_id)
            .options(selectinload(TierProposal.user))
        )
        if proposal is None:
            raise NotFoundError("Tier proposal not found")
        return proposal

    def create(self, data: TierProposalCreate, actor: Actor) -> TierProposal:
        user_id = data.user_id if data.user_id is not None else actor.user_id
        if not actor.is_staff and user_id != actor.user_id:
            raise UnauthorizedError("Customers may only propose a tier change for themselves")

        user = self.db.get(User, user_id)
        if user is None:
            raise NotFoundError("User not found")
        if user.tier == data.proposed_tier.value:
            raise InvalidInputError(f"User is already on tier {user.tier}")

        pending = self.db.scalar(
            select(TierProposal.id).where(
                TierProposal.user_id == user_id,
                TierProposal.status == TierProposalStatus.PENDING.value,
            )
        )
        if pending is not None:
            raise ConflictError("A tier proposal for this user is already pending")

        now = utcnow()
        proposal = TierProposal(
            user_id=user_id,
            current_tier=user.tier,
            proposed_tier=data.proposed_tier.value,
            reason=data.reason.strip(),
            status=TierProposalStatus.PENDING.value,
            created_by=actor.user_id,
            created_at=now,
        )
        proposal.user = user
        self.db.add(proposal)
        try:
            self.db.flush()
            self.audit.record(actor, "CREATE_TIER_PROPOSAL", ENTITY_TIER_PROPOSAL, proposal.id, {
                "userId": user_id,
                "currentTier": proposal.current_tier,
                "proposedTier": proposal.proposed_tier,
                "reason": proposal.reason,
            })
            self.db.commit()
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.error("Failed to create tier proposal", exc_info=True)
            raise PersistenceError("Failed to create tier proposal") from exc
        logger.info(
            f"Tier proposal {proposal.id} created",
            extra={'extra_fields': {'user_id': user_id, 'proposed_tier': proposal.proposed_tier}}
        )
        return proposal

    def list(self, actor: Actor, status: Optional[TierProposalStatus] = None) -> list[TierProposal]:
        query = select(TierProposal).options(selectinload(TierProposal.user))
        if not actor.is_staff:
            query = query.where(TierProposal.user_id == actor.user_id)
        if status:
            query = query.where(TierProposal.status == status.value)
        return list(self.db.scalars(query.order_by(TierProposal.created_at.desc(), TierProposal.id.desc())))

    def respond(self, proposal_id: int, data: TierProposalDecision, actor: Actor) -> TierProposal:
        if data.status not in DECISION_STATUSES:
            raise InvalidInputError("Invalid status")

        proposal = self._load(proposal_id)
        if proposal.status != TierProposalStatus.PENDING.value:
            raise InvalidInputError(f"Tier proposal is already {proposal.status}")

        user = proposal.user
        previous_tier = user.tier
        proposal.status = data.status.value
        proposal.decided_by = actor.user_id
        proposal.decided_at = utcnow()
        proposal.decision_note = data.decision_note
        if data.status == TierProposalStatus.APPROVED:
            user.tier = proposal.proposed_tier

        self.audit.record(actor, f"TIER_PROPOSAL_{data.status.value}", ENTITY_TIER_PROPOSAL, proposal.id, {
            "userId": user.id,
            "tier": proposal.proposed_tier,
            "previousTier": previous_tier,
            "decisionNote": data.decision_note,
        })
        self._commit("Failed to record tier decision")
        logger.info(
            f"Tier proposal {proposal.id} {proposal.status.lower()}",
            extra={'extra_fields': {'user_id': user.id, 'tier': user.tier}}
        )
        return proposal

    def _commit(self, message: str) -> None:
        try:
            self.db.commit()
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.error(message, exc_info=True)
            raise PersistenceError(message) from exc
