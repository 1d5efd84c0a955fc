"""Tests for the provenance SDK against an in-process gateway."""

import pytest

from provenance_sdk import ProvenanceClient

from conftest import APPROVER_KEY, ESCALATING_TITLE, PII_DESCRIPTION, PII_TITLE


@pytest.fixture
def agent(client):
    return ProvenanceClient("http://testserver", actor_id="agent:strategy", http_client=client)


@pytest.fixture
def board(client):
    return ProvenanceClient(
        "http://testserver/",
        actor_id="human:governance-board",
        api_key=APPROVER_KEY,
        http_client=client,
    )


class TestProvenanceClient:
    def test_health(self, agent):
        assert agent.health()["status"] == "operational"

    def test_decision_lifecycle(self, agent):
        decision = agent.create_decision("Q1 Budget", "Allocate Q1 spend", agents=["agent:strategy"])
        assert decision.status == "proposed"

        vote = agent.record_vote(decision.decision_id, "approve", 80, "Within plan")
        assert vote.sequence == 2
        assert vote.event_type == "agent.voted"

        final = agent.finalize(decision.decision_id, "approved", 85)
        assert final.previous_hash == vote.hash

        report = agent.export(decision.decision_id)
        assert report["entry_count"] == 3
        assert [h["hash"] for h in report["hash_chain"]][-1] == final.hash

        signed = agent.export(decision.decision_id, signed=True)
        assert signed["signature"].startswith("hmac-sha256:")

    def test_veto_and_override(self, agent, board):
        proposal = agent.submit_proposal(PII_TITLE, PII_DESCRIPTION, amount=50000)
        assert proposal.status == "vetoed"
        assert proposal.final_decision == "vetoed"
        assert proposal.blocking_roles == ["compliance"]

        requested = agent.request_override(proposal.decision_id, "Past retention")
        assert requested.success
        assert requested.status == "override_requested"

        approved = board.approve_override(proposal.decision_id)
        assert approved.success
        assert approved.status == "approved"
        assert agent.get_proposal(proposal.decision_id).status == "approved"

    def test_approve_without_key(self, agent):
        proposal = agent.submit_proposal(PII_TITLE, PII_DESCRIPTION)
        agent.request_override(proposal.decision_id, "Past retention")

        result = agent.approve_override(proposal.decision_id)
        assert not result.success
        assert "api_key" in result.raw["error"]

    def test_deny_override(self, agent, board):
        proposal = agent.submit_proposal(PII_TITLE, PII_DESCRIPTION)
        agent.request_override(proposal.decision_id, "Please")
        denied = board.deny_override(proposal.decision_id)
        assert denied.success
        assert denied.status == "vetoed"

    def test_ineligible_override(self, agent, board):
        proposal = agent.submit_proposal("Team offsite", "")
        result = board.approve_override(proposal.decision_id)
        assert not result.success
        assert result.status == "approved"

    def test_resolve_escalation(self, agent, board):
        proposal = agent.submit_proposal(ESCALATING_TITLE, "")
        assert proposal.status == "escalated"
        assert proposal.blocking_roles == []

        resolved = board.resolve_escalation(proposal.decision_id, "vetoed", "Too risky")
        assert resolved.success
        assert resolved.status == "vetoed"
        assert resolved.raw["decided_by"] == "human:governance-board"

    def test_verify_chain(self, agent):
        agent.create_decision("Q1 Budget", "")
        agent.submit_proposal("Team offsite", "")
        chain = agent.verify_chain()
        assert chain.valid
        assert chain.entries_checked == 4
