"""Tier change proposals: submission, listing and the staff decision."""

import pytest
from sqlalchemy import select
from sqlalchemy.exc import OperationalError

from wholesale.application.errors import (
    ConflictError, InvalidInputError, NotFoundError, PersistenceError, UnauthorizedError,
)
from wholesale.application.schemas import TierProposalCreate, TierProposalDecision
from wholesale.application.tiers import TierProposalService
from wholesale.domain.models import AuditLog, TierProposal, TierProposalStatus, User


def _proposal(tier="PLATINUM", reason="Consistent monthly volume", user_id=None):
    return TierProposalCreate(proposed_tier=tier, reason=reason, user_id=user_id)


class TestCreateProposal:
    def test_customer_proposes_for_themselves(self, db, customer, seed):
        proposal = TierProposalService(db).create(_proposal(), customer)

        assert proposal.user_id == seed["customer"]
        assert proposal.created_by == seed["customer"]
        assert proposal.current_tier == "GOLD"
        assert proposal.proposed_tier == "PLATINUM"
        assert proposal.status == TierProposalStatus.PENDING.value

        entry = db.scalar(select(AuditLog).where(AuditLog.action == "CREATE_TIER_PROPOSAL"))
        assert entry.entity == "TierProposal"
        assert entry.entity_id == str(proposal.id)
        assert entry.meta["proposedTier"] == "PLATINUM"
        assert entry.meta["userId"] == seed["customer"]

    def test_customer_cannot_propose_for_someone_else(self, db, customer, seed):
        with pytest.raises(UnauthorizedError):
            TierProposalService(db).create(_proposal(user_id=seed["other"]), customer)
        assert db.scalar(select(TierProposal)) is None

    def test_staff_propose_for_a_customer(self, db, manager, seed):
        proposal = TierProposalService(db).create(_proposal(tier="DIAMOND", user_id=seed["other"]), manager)
        assert proposal.user_id == seed["other"]
        assert proposal.created_by == seed["manager"]

    def test_unknown_user(self, db, manager):
        with pytest.raises(NotFoundError):
            TierProposalService(db).create(_proposal(user_id=9999), manager)

    def test_same_tier_is_rejected(self, db, customer):
        with pytest.raises(InvalidInputError, match="already on tier GOLD"):
            TierProposalService(db).create(_proposal(tier="GOLD"), customer)

    def test_second_pending_proposal_conflicts(self, db, customer):
        service = TierProposalService(db)
        service.create(_proposal(), customer)
        with pytest.raises(ConflictError):
            service.create(_proposal(tier="DIAMOND"), customer)

    def test_failed_commit_is_reported(self, db, customer, monkeypatch):
        def broken_commit():
            raise OperationalError("COMMIT", {}, Exception("disk full"))
        monkeypatch.setattr(db, "commit", broken_commit)

        with pytest.raises(PersistenceError) as info:
            TierProposalService(db).create(_proposal(), customer)
        assert info.value.detail == "Failed to create tier proposal"
        assert db.scalar(select(TierProposal)) is None
        assert db.scalar(select(AuditLog)) is None


class TestListProposals:
    def test_customers_see_their_own(self, db, customer, manager, seed):
        service = TierProposalService(db)
        service.create(_proposal(), customer)
        service.create(_proposal(user_id=seed["other"]), manager)

        assert [p.user_id for p in service.list(customer)] == [seed["customer"]]
        assert len(service.list(manager)) == 2

    def test_newest_first_and_status_filter(self, db, customer, manager, seed):
        service = TierProposalService(db)
        first = service.create(_proposal(), customer)
        second = service.create(_proposal(user_id=seed["other"]), manager)
        service.respond(first.id, TierProposalDecision(status="REJECTED"), manager)

        assert [p.id for p in service.list(manager)] == [second.id, first.id]
        rejected = service.list(manager, status=TierProposalStatus.REJECTED)
        assert [p.id for p in rejected] == [first.id]


class TestRespond:
    def test_approval_moves_the_customer_to_the_new_tier(self, db, customer, admin, seed):
        service = TierProposalService(db)
        proposal = service.create(_proposal(), customer)

        decided = service.respond(
            proposal.id, TierProposalDecision(status="APPROVED", decision_note="Welcome to Platinum"), admin
        )

        assert decided.status == "APPROVED"
        assert decided.decided_by == seed["admin"]
        assert decided.decided_at is not None
        assert decided.decision_note == "Welcome to Platinum"
        assert db.get(User, seed["customer"]).tier == "PLATINUM"

        entry = db.scalar(select(AuditLog).where(AuditLog.action == "TIER_PROPOSAL_APPROVED"))
        assert entry.meta["tier"] == "PLATINUM"
        assert entry.meta["previousTier"] == "GOLD"
        assert entry.actor_id == seed["admin"]

    def test_rejection_keeps_the_tier(self, db, customer, manager, seed):
        service = TierProposalService(db)
        proposal = service.create(_proposal(), customer)

        service.respond(proposal.id, TierProposalDecision(status="REJECTED"), manager)

        assert db.get(User, seed["customer"]).tier == "GOLD"
        assert db.scalar(select(AuditLog).where(AuditLog.action == "TIER_PROPOSAL_REJECTED")) is not None

    def test_pending_is_not_a_decision(self, db, customer, manager):
        service = TierProposalService(db)
        proposal = service.create(_proposal(), customer)
        with pytest.raises(InvalidInputError, match="Invalid status"):
            service.respond(proposal.id, TierProposalDecision(status="PENDING"), manager)

    def test_decided_proposal_cannot_be_decided_again(self, db, customer, manager, seed):
        service = TierProposalService(db)
        proposal = service.create(_proposal(), customer)
        service.respond(proposal.id, TierProposalDecision(status="REJECTED"), manager)

        with pytest.raises(InvalidInputError, match="already REJECTED"):
            service.respond(proposal.id, TierProposalDecision(status="APPROVED"), manager)
        assert db.get(User, seed["customer"]).tier == "GOLD"

    def test_unknown_proposal(self, db, manager):
        with pytest.raises(NotFoundError):
            TierProposalService(db).respond(9999, TierProposalDecision(status="APPROVED"), manager)

    def test_failed_commit_leaves_the_tier_alone(self, db, customer, manager, seed, monkeypatch):
        service = TierProposalService(db)
        proposal = service.create(_proposal(), customer)

        def broken_commit():
            raise OperationalError("COMMIT", {}, Exception("disk full"))
        monkeypatch.setattr(db, "commit", broken_commit)

        with pytest.raises(PersistenceError):
            service.respond(proposal.id, TierProposalDecision(status="APPROVED"), manager)
        assert db.get(User, seed["customer"]).tier == "GOLD"
        assert db.get(TierProposal, proposal.id).status == "PENDING"


class TestTierProposalsApi:
    def test_customer_submits_and_lists(self, client, headers, seed):
        response = client.post(
            "/tier-proposals/",
            json={"proposedTier": "PLATINUM", "reason": "Opening a second store"},
            headers=headers["customer"],
        )
        assert response.status_code == 201
        body = response.json()
        assert body["userId"] == seed["customer"]
        assert body["currentTier"] == "GOLD"
        assert body["status"] == "PENDING"

        listed = client.get("/tier-proposals/", headers=headers["customer"]).json()
        assert [p["id"] for p in listed] == [body["id"]]
        assert client.get("/tier-proposals/", headers=headers["other"]).json() == []

    def test_public_users_cannot_propose(self, client, headers):
        response = client.post(
            "/tier-proposals/", json={"proposedTier": "PLATINUM", "reason": "Please"}, headers=headers["visitor"]
        )
        assert response.status_code == 403
        assert "error" in response.json()

    def test_anonymous_request_is_unauthenticated(self, client):
        assert client.get("/tier-proposals/").status_code == 401

    def test_unknown_tier_is_rejected(self, client, headers):
        response = client.post(
            "/tier-proposals/", json={"proposedTier": "TITANIUM", "reason": "Please"}, headers=headers["customer"]
        )
        assert response.status_code == 400

    def test_only_staff_respond(self, client, headers):
        created = client.post(
            "/tier-proposals/", json={"proposedTier": "DIAMOND", "reason": "Volume"}, headers=headers["customer"]
        ).json()

        response = client.patch(
            f"/tier-proposals/{created['id']}/respond", json={"status": "APPROVED"}, headers=headers["customer"]
        )
        assert response.status_code == 403

    def test_manager_approves(self, client, headers, session_factory, seed):
        created = client.post(
            "/tier-proposals/", json={"proposedTier": "DIAMOND", "reason": "Volume"}, headers=headers["customer"]
        ).json()

        response = client.patch(
            f"/tier-proposals/{created['id']}/respond",
            json={"status": "APPROVED", "decisionNote": "Approved at review"},
            headers=headers["manager"],
        )
        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "APPROVED"
        assert body["decidedBy"] == seed["manager"]
        assert body["user"]["tier"] == "DIAMOND"

        with session_factory() as db:
            assert db.get(User, seed["customer"]).tier == "DIAMOND"

    def test_invalid_decision_status(self, client, headers):
        created = client.post(
            "/tier-proposals/", json={"proposedTier": "DIAMOND", "reason": "Volume"}, headers=headers["customer"]
        ).json()
        response = client.patch(
            f"/tier-proposals/{created['id']}/respond", json={"status": "PENDING"}, headers=headers["admin"]
        )
        assert response.status_code == 400
        assert response.json() == {"error": "Invalid status"}

    def test_duplicate_pending_proposal(self, client, headers):
        payload = {"proposedTier": "PLATINUM", "reason": "Volume"}
        client.post("/tier-proposals/", json=payload, headers=headers["customer"])
        response = client.post("/tier-proposals/", json=payload, headers=headers["customer"])
        assert response.status_code == 409
