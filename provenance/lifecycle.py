"""
Decision Lifecycle

Models proposing, deliberating, voting, finalizing and recording outcomes
for a DecisionRecord. Each call mutates the record and appends its ledger
entry inside one ledger transaction.

    proposed -> deliberating -> voting -> approved | rejected | vetoed
                                           approved -> executed

Deliberation and voting deliberately carry no regression guard so late
contributions are still recorded. Authorization is the caller's job.
"""

from __future__ import annotations

from typing import Any, Optional
from uuid import uuid4

import structlog

from provenance.errors import InvalidTransitionError, ValidationError
from provenance.ledger import LedgerStore
from provenance.models import (
    FINAL_STATUSES,
    DecisionRecord,
    DecisionStatus,
    LedgerEntry,
    LedgerEventType,
    Vote,
    VoterRecord,
)

log = structlog.get_logger(__name__)

# Terminal status -> event appended by finalize_decision
_FINAL_EVENTS = {
    DecisionStatus.APPROVED: LedgerEventType.DECISION_APPROVED,
    DecisionStatus.VETOED: LedgerEventType.DECISION_VETOED,
    DecisionStatus.REJECTED: LedgerEventType.DECISION_VOTED,
}


class DecisionLifecycle:
    """Thin state-machine layer over a LedgerStore."""

    def __init__(self, ledger: LedgerStore):
        self.ledger = ledger

    def create(
        self,
        title: str,
        description: str,
        proposed_by: str,
        agents: list[str],
        decision_id: Optional[str] = None,
    ) -> DecisionRecord:
        """Register a decision and append its ``decision.proposed`` entry."""
        with self.ledger.transaction():
            decision = DecisionRecord(
                id=decision_id or f"decision-{uuid4().hex}",
                title=title,
                description=description,
                proposed_by=proposed_by,
                proposed_at=self.ledger.now(),
                agents=list(agents),
            )
            self.ledger.register_decision(decision)
            self.ledger.append(
                LedgerEventType.DECISION_PROPOSED,
                decision.id,
                f"Decision Proposed: {title}",
                description,
                {"proposed_by": proposed_by, "agents": list(agents)},
                user_id=proposed_by,
            )

        log.info("decision_created", decision_id=decision.id, proposed_by=proposed_by)
        return self.ledger.get_decision(decision.id)

    def record_deliberation(
        self,
        decision_id: str,
        agent_id: str,
        contribution: str,
        confidence_score: float,
    ) -> LedgerEntry:
        with self.ledger.transaction():
            decision = self.ledger.decision_for_update(decision_id)
            decision.status = DecisionStatus.DELIBERATING
            return self.ledger.append(
                LedgerEventType.AGENT_CONTRIBUTED,
                decision_id,
                "Agent Contribution",
                contribution,
                {"agent_id": agent_id, "contribution": contribution},
                agent_id=agent_id,
                confidence_score=confidence_score,
            )

    def record_vote(
        self,
        decision_id: str,
        agent_id: str,
        vote: Vote,
        confidence: float,
        reasoning: str,
    ) -> LedgerEntry:
        """Record one vote. A ``veto`` vote is logged as ``agent.vetoed``."""
        vote = Vote(vote)
        with self.ledger.transaction():
            decision = self.ledger.decision_for_update(decision_id)
            decision.status = DecisionStatus.VOTING
            decision.voters.append(VoterRecord(
                agent_id=agent_id,
                vote=vote,
                confidence=confidence,
                timestamp=self.ledger.now(),
            ))

            event_type = (
                LedgerEventType.AGENT_VETOED if vote == Vote.VETO
                else LedgerEventType.AGENT_VOTED
            )
            return self.ledger.append(
                event_type,
                decision_id,
                f"Vote: {vote.value.upper()}",
                reasoning,
                {
                    "agent_id": agent_id,
                    "vote": vote.value,
                    "confidence": confidence,
                    "reasoning": reasoning,
                },
                agent_id=agent_id,
                vote=vote,
                confidence_score=confidence,
                vote_weight=1,
            )

    def finalize_decision(
        self,
        decision_id: str,
        status: DecisionStatus,
        final_confidence: float,
    ) -> LedgerEntry:
        try:
            status = DecisionStatus(status)
        except ValueError:
            raise ValidationError(f"Unknown decision status: {status}")
        if status not in FINAL_STATUSES:
            raise ValidationError(
                f"Cannot finalize as '{status.value}'; expected approved, rejected or vetoed"
            )

        with self.ledger.transaction():
            decision = self.ledger.decision_for_update(decision_id)
            decision.status = status
            decision.final_confidence = final_confidence
            entry = self.ledger.append(
                _FINAL_EVENTS[status],
                decision_id,
                f"Decision {status.value.upper()}",
                f"Final confidence: {final_confidence}%",
                {
                    "status": status.value,
                    "final_confidence": final_confidence,
                    "voter_summary": [v.model_dump(mode="json") for v in decision.voters],
                },
                confidence_score=final_confidence,
            )

        log.info("decision_finalized", decision_id=decision_id, status=status.value)
        return entry

    def record_outcome(
        self,
        decision_id: str,
        outcome: str,
        metrics: Optional[dict[str, Any]] = None,
    ) -> LedgerEntry:
        with self.ledger.transaction():
            decision = self.ledger.decision_for_update(decision_id)
            decision.outcome = outcome
            decision.outcome_recorded_at = self.ledger.now()
            return self.ledger.append(
                LedgerEventType.DECISION_OUTCOME_RECORDED,
                decision_id,
                "Outcome Recorded",
                outcome,
                {"outcome": outcome, "metrics": metrics},
            )

    def mark_executed(self, decision_id: str, executed_by: str) -> LedgerEntry:
        """approved -> executed. Any other starting state is rejected."""
        with self.ledger.transaction():
            decision = self.ledger.decision_for_update(decision_id)
            if decision.status != DecisionStatus.APPROVED:
                raise InvalidTransitionError(
                    "decision", decision_id,
                    decision.status.value, DecisionStatus.EXECUTED.value,
                )
            decision.status = DecisionStatus.EXECUTED
            return self.ledger.append(
                LedgerEventType.DECISION_EXECUTED,
                decision_id,
                "Decision Executed",
                f"Executed by {executed_by}",
                {"executed_by": executed_by},
                user_id=executed_by,
            )
