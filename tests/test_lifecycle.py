"""Tests for the decision lifecycle state machine."""

import pytest

from provenance.errors import InvalidTransitionError, NotFoundError, ValidationError
from provenance.models import GENESIS_HASH, DecisionStatus, LedgerEventType, Vote


class TestQ1Budget:
    """Propose, one approving vote, finalize as approved."""

    def test_three_entries_chained_from_genesis(self, ledger, lifecycle):
        decision = lifecycle.create("Q1 Budget", "Allocate Q1 spend", "agent:strategy", ["agent:cfo"])
        lifecycle.record_vote(decision.id, "agent:cfo", Vote.APPROVE, 80, "Within plan")
        lifecycle.finalize_decision(decision.id, DecisionStatus.APPROVED, 85)

        final = ledger.get_decision(decision.id)
        assert final.status == DecisionStatus.APPROVED
        assert final.final_confidence == 85

        entries = ledger.get_entries_for_decision(decision.id)
        assert [e.event_type for e in entries] == [
            LedgerEventType.DECISION_PROPOSED,
            LedgerEventType.AGENT_VOTED,
            LedgerEventType.DECISION_APPROVED,
        ]
        assert entries[0].previous_hash == GENESIS_HASH
        assert entries[1].previous_hash == entries[0].hash
        assert entries[2].previous_hash == entries[1].hash
        assert final.first_entry_hash == entries[0].hash
        assert final.latest_entry_hash == entries[2].hash
        assert ledger.verify_chain().valid

    def test_finalize_records_voter_summary(self, ledger, lifecycle):
        decision = lifecycle.create("Q1 Budget", "", "agent:strategy", [])
        lifecycle.record_vote(decision.id, "agent:cfo", Vote.APPROVE, 80, "")
        entry = lifecycle.finalize_decision(decision.id, "approved", 85)

        assert entry.confidence_score == 85
        assert entry.data["status"] == "approved"
        assert entry.data["voter_summary"][0]["agent_id"] == "agent:cfo"


class TestTransitions:
    """Tests for individual transitions."""

    def test_create_starts_proposed(self, lifecycle):
        decision = lifecycle.create("Hire", "Hire two engineers", "human:admin", ["agent:a"])
        assert decision.status == DecisionStatus.PROPOSED
        assert decision.agents == ["agent:a"]
        assert decision.id.startswith("decision-")

    def test_create_with_duplicate_id(self, lifecycle):
        lifecycle.create("One", "", "human:admin", [], decision_id="decision-fixed")
        with pytest.raises(ValidationError):
            lifecycle.create("Two", "", "human:admin", [], decision_id="decision-fixed")

    def test_deliberation(self, ledger, lifecycle):
        decision = lifecycle.create("Hire", "", "human:admin", [])
        entry = lifecycle.record_deliberation(decision.id, "agent:a", "Looks sound", 70)

        assert entry.event_type == LedgerEventType.AGENT_CONTRIBUTED
        assert entry.agent_id == "agent:a"
        assert entry.confidence_score == 70
        assert ledger.get_decision(decision.id).status == DecisionStatus.DELIBERATING

    def test_late_contribution_is_recorded(self, ledger, lifecycle):
        decision = lifecycle.create("Hire", "", "human:admin", [])
        lifecycle.record_vote(decision.id, "agent:a", Vote.APPROVE, 90, "")
        lifecycle.record_deliberation(decision.id, "agent:b", "One more thing", 50)
        assert len(ledger.get_entries_for_decision(decision.id)) == 3

    def test_vote_appends_voter(self, ledger, lifecycle):
        decision = lifecycle.create("Hire", "", "human:admin", [])
        lifecycle.record_vote(decision.id, "agent:a", "reject", 40, "Too early")

        stored = ledger.get_decision(decision.id)
        assert stored.status == DecisionStatus.VOTING
        assert stored.voters[0].vote == Vote.REJECT
        assert stored.voters[0].confidence == 40

    def test_veto_vote_logged_as_vetoed(self, lifecycle):
        decision = lifecycle.create("Hire", "", "human:admin", [])
        entry = lifecycle.record_vote(decision.id, "agent:a", Vote.VETO, 95, "Blocked")
        assert entry.event_type == LedgerEventType.AGENT_VETOED
        assert entry.vote == Vote.VETO

    def test_vote_on_unknown_decision(self, lifecycle):
        with pytest.raises(NotFoundError):
            lifecycle.record_vote("decision-missing", "agent:a", Vote.APPROVE, 50, "")

    def test_finalize_rejected_uses_vote_event(self, ledger, lifecycle):
        decision = lifecycle.create("Hire", "", "human:admin", [])
        entry = lifecycle.finalize_decision(decision.id, "rejected", 30)
        assert entry.event_type == LedgerEventType.DECISION_VOTED
        assert ledger.get_decision(decision.id).status == DecisionStatus.REJECTED

    def test_finalize_vetoed(self, lifecycle):
        decision = lifecycle.create("Hire", "", "human:admin", [])
        entry = lifecycle.finalize_decision(decision.id, "vetoed", 10)
        assert entry.event_type == LedgerEventType.DECISION_VETOED

    @pytest.mark.parametrize("status", ["voting", "executed", "bogus"])
    def test_finalize_rejects_non_terminal_status(self, lifecycle, status):
        decision = lifecycle.create("Hire", "", "human:admin", [])
        with pytest.raises(ValidationError):
            lifecycle.finalize_decision(decision.id, status, 50)

    def test_record_outcome(self, ledger, lifecycle):
        decision = lifecycle.create("Hire", "", "human:admin", [])
        lifecycle.finalize_decision(decision.id, "approved", 90)
        entry = lifecycle.record_outcome(decision.id, "Both hired", {"headcount": 2})

        stored = ledger.get_decision(decision.id)
        assert stored.outcome == "Both hired"
        assert stored.outcome_recorded_at is not None
        assert entry.event_type == LedgerEventType.DECISION_OUTCOME_RECORDED
        assert entry.data["metrics"] == {"headcount": 2}


class TestExecution:
    """approved -> executed is the only way into executed."""

    def test_mark_executed(self, ledger, lifecycle):
        decision = lifecycle.create("Hire", "", "human:admin", [])
        lifecycle.finalize_decision(decision.id, "approved", 90)
        entry = lifecycle.mark_executed(decision.id, "human:admin")

        assert entry.event_type == LedgerEventType.DECISION_EXECUTED
        assert ledger.get_decision(decision.id).status == DecisionStatus.EXECUTED

    @pytest.mark.parametrize("final", ["rejected", "vetoed"])
    def test_mark_executed_requires_approval(self, ledger, lifecycle, final):
        decision = lifecycle.create("Hire", "", "human:admin", [])
        lifecycle.finalize_decision(decision.id, final, 20)
        before = ledger.sequence

        with pytest.raises(InvalidTransitionError) as exc_info:
            lifecycle.mark_executed(decision.id, "human:admin")
        assert exc_info.value.current == final
        assert ledger.sequence == before

    def test_mark_executed_twice(self, lifecycle):
        decision = lifecycle.create("Hire", "", "human:admin", [])
        lifecycle.finalize_decision(decision.id, "approved", 90)
        lifecycle.mark_executed(decision.id, "human:admin")
        with pytest.raises(InvalidTransitionError):
            lifecycle.mark_executed(decision.id, "human:admin")
