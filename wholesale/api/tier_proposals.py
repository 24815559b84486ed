from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session
from typing import Optional
from wholesale.infrastructure.db import get_db
from wholesale.application.rbac import Actor
from wholesale.application.schemas import TierProposalCreate, TierProposalDecision, TierProposalRead
from wholesale.application.tiers import TierProposalService
from wholesale.domain.models import TierProposalStatus
from .deps import require_permission

router = APIRouter(prefix="/tier-proposals", tags=["tier-proposals"])

@router.get("/", response_model=list[TierProposalRead])
def list_tier_proposals(
    status: Optional[TierProposalStatus] = Query(None),
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_permission("propose_tier")),
):
    """Staff see every proposal; customers see their own."""
    return TierProposalService(db).list(actor, status=status)

@router.post("/", response_model=TierProposalRead, status_code=201)
def create_tier_proposal(
    payload: TierProposalCreate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_permission("propose_tier")),
):
    return TierProposalService(db).create(payload, actor)

@router.patch("/{proposal_id}/respond", response_model=TierProposalRead)
def respond_to_tier_proposal(
    proposal_id: int,
    payload: TierProposalDecision,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_permission("manage_tiers")),
):
    return TierProposalService(db).respond(proposal_id, payload, actor)
