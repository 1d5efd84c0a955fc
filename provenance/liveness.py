"""
Liveness Model -- timeout handling for escalated proposals.

Keeps escalated proposals from waiting forever: a time-bounded review
window, then a human-required window, then an automatic veto once the
hard deadline passes.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Optional

import structlog

from provenance import config
from provenance.models import utcnow
from provenance.veto_models import VetoDecision, VetoStatus

log = structlog.get_logger(__name__)


# ---------------------------------------------------------------------------
# State machine
# ---------------------------------------------------------------------------

class EscalationState(str, Enum):
    PENDING_REVIEW = "PENDING_REVIEW"
    HUMAN_REQUIRED = "HUMAN_REQUIRED"
    AUTO_VETOED_TIMEOUT = "AUTO_VETOED_TIMEOUT"
    RESOLVED = "RESOLVED"


@dataclass
class EscalationTracker:
    decision_id: str
    submitted_by: str
    escalated_at: datetime
    state: EscalationState
    expires_at: datetime      # escalated_at + initial timeout
    hard_deadline: datetime   # escalated_at + max timeout


def _windows(
    escalated_at: datetime,
    initial_timeout: int,
    max_timeout: int,
) -> tuple[datetime, datetime]:
    return (
        escalated_at + timedelta(seconds=initial_timeout),
        escalated_at + timedelta(seconds=max_timeout),
    )


# ---------------------------------------------------------------------------
# Core functions
# ---------------------------------------------------------------------------

def check_escalation_status(
    decision: VetoDecision,
    now: Optional[datetime] = None,
    initial_timeout: int = config.ESCALATION_INITIAL_TIMEOUT_SECONDS,
    max_timeout: int = config.ESCALATION_MAX_TIMEOUT_SECONDS,
) -> EscalationState:
    """Classify an escalated (or formerly escalated) proposal.

    Anything no longer in ``escalated`` status counts as RESOLVED.
    """
    if decision.status != VetoStatus.ESCALATED or decision.escalated_at is None:
        return EscalationState.RESOLVED

    now = now or utcnow()
    expires_at, hard_deadline = _windows(decision.escalated_at, initial_timeout, max_timeout)

    if now > hard_deadline:
        return EscalationState.AUTO_VETOED_TIMEOUT
    if now > expires_at:
        return EscalationState.HUMAN_REQUIRED
    return EscalationState.PENDING_REVIEW


def build_escalation_tracker(
    decision: VetoDecision,
    now: Optional[datetime] = None,
    initial_timeout: int = config.ESCALATION_INITIAL_TIMEOUT_SECONDS,
    max_timeout: int = config.ESCALATION_MAX_TIMEOUT_SECONDS,
) -> EscalationTracker | None:
    """Tracker for a proposal that was escalated at some point, else None."""
    if decision.escalated_at is None:
        return None
    expires_at, hard_deadline = _windows(decision.escalated_at, initial_timeout, max_timeout)
    return EscalationTracker(
        decision_id=decision.id,
        submitted_by=decision.submitted_by,
        escalated_at=decision.escalated_at,
        state=check_escalation_status(decision, now, initial_timeout, max_timeout),
        expires_at=expires_at,
        hard_deadline=hard_deadline,
    )


def auto_veto_expired_escalations(
    engine,
    now: Optional[datetime] = None,
    initial_timeout: int = config.ESCALATION_INITIAL_TIMEOUT_SECONDS,
    max_timeout: int = config.ESCALATION_MAX_TIMEOUT_SECONDS,
) -> list[str]:
    """Veto every escalation past its hard deadline.

    Args:
        engine: VetoEngine instance

    Returns:
        Ids of the proposals that were auto-vetoed.
    """
    now = now or utcnow()
    vetoed: list[str] = []

    for decision in engine.get_escalated_decisions():
        state = check_escalation_status(decision, now, initial_timeout, max_timeout)
        if state != EscalationState.AUTO_VETOED_TIMEOUT:
            continue
        result = engine.auto_veto(
            decision.id,
            reason="Escalation expired -- auto-vetoed after timeout",
        )
        # None means a human resolved it between listing and vetoing
        if result is not None:
            vetoed.append(decision.id)

    if vetoed:
        log.warning("escalations_auto_vetoed", count=len(vetoed), decision_ids=vetoed)
    return vetoed


def get_escalation_summary(
    engine,
    now: Optional[datetime] = None,
    initial_timeout: int = config.ESCALATION_INITIAL_TIMEOUT_SECONDS,
    max_timeout: int = config.ESCALATION_MAX_TIMEOUT_SECONDS,
) -> dict:
    """Counts of escalation states across every proposal ever escalated.

    Returns:
        {pending: N, human_required: N, auto_vetoed: N, resolved: N}
    """
    now = now or utcnow()
    summary = {"pending": 0, "human_required": 0, "auto_vetoed": 0, "resolved": 0}

    for decision in engine.get_all_decisions():
        if decision.escalated_at is None:
            continue
        state = check_escalation_status(decision, now, initial_timeout, max_timeout)
        if state == EscalationState.PENDING_REVIEW:
            summary["pending"] += 1
        elif state == EscalationState.HUMAN_REQUIRED:
            summary["human_required"] += 1
        elif state == EscalationState.AUTO_VETOED_TIMEOUT:
            summary["auto_vetoed"] += 1
        elif state == EscalationState.RESOLVED:
            summary["resolved"] += 1

    return summary
