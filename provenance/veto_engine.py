"""
Veto Review & Decision Engine

Gates proposals before they take effect:

    submit_proposal -> PolicyEngine picks roles -> one review per role
                    -> evaluate_decision

    any blocking veto     -> vetoed      (hard gate, never out-voted)
    every review approved -> approved
    anything else         -> escalated   (human resolution, or liveness
                                          auto-veto once it expires)

    vetoed -> override_requested -> approved | vetoed

Reviews for one proposal run in parallel and are joined before
aggregation. Every transition is appended to the shared ledger so veto
history and decision history live on one chain.
"""

from __future__ import annotations

import threading
import time
from collections import Counter
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from datetime import datetime
from typing import Any, Callable, Optional
from uuid import uuid4

import structlog
from pydantic import ValidationError as SchemaError

from provenance import config
from provenance.errors import (
    InvalidTransitionError,
    NotFoundError,
    PersistenceError,
    ValidationError,
)
from provenance.ledger import LedgerStore
from provenance.models import (
    DecisionRecord,
    DecisionStatus,
    LedgerEventType,
    Vote,
    utcnow,
)
from provenance.persistence import SnapshotStore
from provenance.policy_engine import PolicyEngine
from provenance.review import FallbackReviewer, ReviewStrategy, select_strategy
from provenance.reviewers import VetoAgent, get_veto_agent, get_veto_agents
from provenance.veto_models import (
    FinalDecision,
    ReviewStatus,
    VetoAgentRole,
    VetoDecision,
    VetoMetrics,
    VetoPolicy,
    VetoReason,
    VetoReview,
    VetoSnapshot,
    VetoStatus,
)

log = structlog.get_logger(__name__)

SYSTEM_ACTOR = "system"
LIVENESS_ACTOR = "system:liveness"

PENDING_STATUSES = {VetoStatus.PENDING, VetoStatus.ESCALATED, VetoStatus.OVERRIDE_REQUESTED}

_REVIEW_VOTES = {
    ReviewStatus.APPROVED: Vote.APPROVE,
    ReviewStatus.VETOED: Vote.VETO,
    ReviewStatus.CONDITIONAL: Vote.ABSTAIN,
}

_MIRROR_STATUS = {
    FinalDecision.APPROVED: DecisionStatus.APPROVED,
    FinalDecision.VETOED: DecisionStatus.VETOED,
}


class VetoEngine:
    """
    Owns VetoDecisions and the policy set; narrates into a LedgerStore.

    Args:
        ledger:         Shared chain every transition is appended to.
        policy_engine:  Reviewer routing; default policies when None.
        reviewer:       Preferred review strategy, probed per proposal.
        fallback:       Deterministic strategy used when the preferred one
                        is unavailable, slow or returns nothing.
        persistence:    Snapshot backend; None keeps everything in memory.
        review_timeout: Seconds to wait for the preferred strategy.
        max_workers:    Upper bound on parallel reviews per proposal.
    """

    def __init__(
        self,
        ledger: LedgerStore,
        policy_engine: PolicyEngine | None = None,
        reviewer: ReviewStrategy | None = None,
        fallback: ReviewStrategy | None = None,
        persistence: SnapshotStore | None = None,
        clock: Callable[[], datetime] = utcnow,
        review_timeout: float = config.REASONING_TIMEOUT_SECONDS,
        max_workers: int = config.REVIEW_MAX_WORKERS,
        snapshot_key: str = config.VETO_SNAPSHOT_KEY,
    ):
        self.ledger = ledger
        self._clock = clock
        self.policy_engine = policy_engine or PolicyEngine(clock=clock)
        self.reviewer = reviewer
        self.fallback = fallback or FallbackReviewer(clock=clock)
        self._persistence = persistence
        self.review_timeout = review_timeout
        self.max_workers = max(1, max_workers)
        self._snapshot_key = snapshot_key

        self._decisions: dict[str, VetoDecision] = {}
        self._lock = threading.RLock()

        self._load()

    # ------------------------------------------------------------------
    # Snapshot load / save
    # ------------------------------------------------------------------

    def _load(self) -> None:
        if self._persistence is None:
            return
        try:
            raw = self._persistence.load(self._snapshot_key)
        except PersistenceError as exc:
            log.error("veto_load_failed", key=self._snapshot_key, error=str(exc))
            return
        if raw is None:
            return
        try:
            snapshot = VetoSnapshot.model_validate(raw)
        except SchemaError as exc:
            log.error("veto_snapshot_invalid", key=self._snapshot_key, error=str(exc))
            return

        self._decisions = {d.id: d for d in snapshot.decisions}
        if snapshot.policies:
            self.policy_engine.replace_policies(snapshot.policies)
        log.info(
            "veto_engine_loaded",
            decisions=len(self._decisions),
            policies=len(snapshot.policies),
        )

    def _persist(self) -> None:
        if self._persistence is None:
            return
        snapshot = VetoSnapshot(
            decisions=list(self._decisions.values()),
            policies=self.policy_engine.get_policies(),
        )
        try:
            self._persistence.save(self._snapshot_key, snapshot.model_dump(mode="json"))
        except PersistenceError as exc:
            log.error("veto_save_failed", key=self._snapshot_key, error=str(exc))

    def _require(self, decision_id: str) -> VetoDecision:
        decision = self._decisions.get(decision_id)
        if decision is None:
            raise NotFoundError("veto decision", decision_id)
        return decision

    def _require_reviewable(self, decision_id: str, agent: VetoAgent) -> VetoDecision:
        decision = self._require(decision_id)
        if decision.status not in (VetoStatus.PENDING, VetoStatus.ESCALATED):
            raise InvalidTransitionError(
                "veto decision",
                decision_id,
                decision.status.value,
                f"review:{agent.role.value}",
            )
        return decision

    # ------------------------------------------------------------------
    # Ledger narration
    # ------------------------------------------------------------------

    def _record(
        self,
        event_type: LedgerEventType,
        decision: VetoDecision,
        title: str,
        description: str,
        data: dict[str, Any],
        **options: Any,
    ) -> None:
        self.ledger.append(
            event_type,
            decision.id,
            title,
            description,
            {"veto_decision_id": decision.id, **data},
            **options,
        )

    def _register_mirror(self, decision: VetoDecision) -> None:
        """Give the ledger a DecisionRecord when it refuses orphan entries."""
        if not self.ledger.reject_orphans:
            return
        self.ledger.register_decision(DecisionRecord(
            id=decision.id,
            title=decision.proposal_title,
            description=decision.proposal_description,
            proposed_by=decision.submitted_by,
            proposed_at=decision.submitted_at,
            agents=[get_veto_agent(r).id for r in decision.required_roles],
        ))

    def _sync_mirror(self, decision: VetoDecision) -> None:
        if not self.ledger.reject_orphans or decision.final_decision is None:
            return
        with self.ledger.transaction():
            mirror = self.ledger.decision_for_update(decision.id)
            mirror.status = _MIRROR_STATUS[decision.final_decision]
            self.ledger.mark_dirty()

    def _record_review(self, decision: VetoDecision, review: VetoReview) -> None:
        event_type = (
            LedgerEventType.AGENT_VETOED if review.status == ReviewStatus.VETOED
            else LedgerEventType.AGENT_VOTED
        )
        agent = get_veto_agent(review.agent_role)
        self._record(
            event_type,
            decision,
            f"Review: {agent.name}",
            review.reasoning,
            {
                "review_id": review.id,
                "role": review.agent_role.value,
                "status": review.status.value,
                "risk_score": review.risk_score,
                "is_blocking": review.is_blocking,
                "source": review.source.value,
                "concerns": [c.category.value for c in review.concerns],
            },
            agent_id=review.agent_id,
            vote=_REVIEW_VOTES.get(review.status),
            confidence_score=review.confidence,
            vote_weight=1,
        )

    # ------------------------------------------------------------------
    # Proposal submission
    # ------------------------------------------------------------------

    def submit_proposal(
        self,
        title: str,
        description: str,
        submitted_by: str,
        category: Optional[str] = None,
        amount: Optional[float] = None,
    ) -> VetoDecision:
        """Create, review and aggregate a proposal in one call."""
        if not title.strip():
            raise ValidationError("Proposal title must not be empty")

        roles = self.policy_engine.determine_required_reviewers(
            title, description, category=category, amount=amount,
        )
        decision = VetoDecision(
            id=f"veto-{uuid4().hex}",
            proposal_title=title,
            proposal_description=description,
            category=category,
            amount=amount,
            submitted_by=submitted_by,
            submitted_at=self._clock(),
            required_roles=roles,
        )

        with self._lock:
            self._decisions[decision.id] = decision
            with self.ledger.transaction():
                self._register_mirror(decision)
                self._record(
                    LedgerEventType.DECISION_PROPOSED,
                    decision,
                    f"Proposal Submitted: {title}",
                    description,
                    {
                        "category": category,
                        "amount": amount,
                        "required_roles": [r.value for r in roles],
                    },
                    user_id=submitted_by,
                )
            self._persist()
            snapshot = decision.model_copy(deep=True)

        log.info(
            "proposal_submitted",
            decision_id=decision.id,
            submitted_by=submitted_by,
            roles=[r.value for r in roles],
        )

        reviews = self._run_reviews(snapshot, [get_veto_agent(r) for r in roles])

        with self._lock:
            with self.ledger.transaction():
                for review in reviews:
                    decision.reviews.append(review)
                    self._record_review(decision, review)
            self._persist()

        return self.evaluate_decision(decision.id)

    def _collect(
        self,
        future,
        decision: VetoDecision,
        agent: VetoAgent,
        timeout: float,
    ) -> VetoReview:
        try:
            review = future.result(timeout=timeout)
        except FutureTimeout:
            log.warning(
                "review_timeout",
                decision_id=decision.id,
                role=agent.role.value,
                timeout=self.review_timeout,
            )
            review = None
        except Exception as exc:
            log.error(
                "review_failed",
                decision_id=decision.id,
                role=agent.role.value,
                error=repr(exc),
            )
            review = None
        if review is None:
            review = self.fallback.review(decision, agent)
        return review

    def _run_reviews(self, decision: VetoDecision, agents: list[VetoAgent]) -> list[VetoReview]:
        """
        Review *decision* once per agent, in parallel, and join.

        Results keep the order of *agents*. A preferred-strategy review that
        overruns the shared deadline or returns None is replaced by the
        deterministic one.
        """
        strategy = select_strategy(self.reviewer, self.fallback)
        if strategy is self.fallback:
            return [self.fallback.review(decision, agent) for agent in agents]

        executor = ThreadPoolExecutor(
            max_workers=min(self.max_workers, len(agents)),
            thread_name_prefix="veto-review",
        )
        try:
            futures = [executor.submit(strategy.review, decision, agent) for agent in agents]
            deadline = time.monotonic() + self.review_timeout
            return [
                self._collect(future, decision, agent, max(0.0, deadline - time.monotonic()))
                for agent, future in zip(agents, futures)
            ]
        finally:
            executor.shutdown(wait=False, cancel_futures=True)

    # ------------------------------------------------------------------
    # Single review / aggregation
    # ------------------------------------------------------------------

    def run_agent_review(self, decision_id: str, role: VetoAgentRole | str) -> VetoReview:
        """
        Run one reviewer against an existing proposal and record it.

        Does not re-aggregate; call evaluate_decision() afterwards.
        Raises InvalidTransitionError unless the proposal is pending or
        escalated.
        """
        agent = get_veto_agent(role)
        with self._lock:
            decision = self._require_reviewable(decision_id, agent)
            snapshot = decision.model_copy(deep=True)

        review = self._run_reviews(snapshot, [agent])[0]

        with self._lock:
            decision = self._require_reviewable(decision_id, agent)
            decision.reviews.append(review)
            if agent.role not in decision.required_roles:
                decision.required_roles.append(agent.role)
            self._record_review(decision, review)
            self._persist()

        log.info(
            "agent_review_recorded",
            decision_id=decision_id,
            role=agent.role.value,
            status=review.status.value,
            risk_score=review.risk_score,
        )
        return review.model_copy(deep=True)

    def evaluate_decision(self, decision_id: str) -> VetoDecision:
        """
        Aggregate reviews into an outcome.

        Only pending and escalated decisions are re-evaluated; decided ones
        and open override requests are returned unchanged.
        """
        with self._lock:
            decision = self._require(decision_id)
            if decision.status not in (VetoStatus.PENDING, VetoStatus.ESCALATED):
                return decision.model_copy(deep=True)
            if not decision.reviews:
                return decision.model_copy(deep=True)

            blocking = next(
                (r for r in decision.reviews
                 if r.is_blocking and r.status == ReviewStatus.VETOED),
                None,
            )
            if blocking is not None:
                self._decide(
                    decision,
                    FinalDecision.VETOED,
                    decided_by=blocking.agent_role.value,
                    description=f"Blocked by {blocking.agent_role.value} review",
                    data={"blocking_review_id": blocking.id, "risk_score": blocking.risk_score},
                )
            elif all(r.status == ReviewStatus.APPROVED for r in decision.reviews):
                self._decide(
                    decision,
                    FinalDecision.APPROVED,
                    decided_by=SYSTEM_ACTOR,
                    description="All required reviews approved",
                    data={"reviews": len(decision.reviews)},
                )
            elif decision.status == VetoStatus.PENDING:
                self._escalate(decision)
            self._persist()
            return decision.model_copy(deep=True)

    def _decide(
        self,
        decision: VetoDecision,
        final: FinalDecision,
        decided_by: str,
        description: str,
        data: dict[str, Any],
        event_type: Optional[LedgerEventType] = None,
    ) -> None:
        decision.status = VetoStatus(final.value)
        decision.final_decision = final
        decision.decided_at = self._clock()
        decision.decided_by = decided_by

        if event_type is None:
            event_type = (
                LedgerEventType.DECISION_APPROVED if final == FinalDecision.APPROVED
                else LedgerEventType.DECISION_VETOED
            )
        with self.ledger.transaction():
            self._record(
                event_type,
                decision,
                f"Proposal {final.value.upper()}",
                description,
                {"final_decision": final.value, "decided_by": decided_by, **data},
                user_id=decided_by,
            )
            self._sync_mirror(decision)

        log.info(
            "proposal_decided",
            decision_id=decision.id,
            final_decision=final.value,
            decided_by=decided_by,
        )

    def _escalate(self, decision: VetoDecision) -> None:
        decision.status = VetoStatus.ESCALATED
        decision.escalated_at = self._clock()
        open_roles = [
            r.agent_role.value for r in decision.reviews
            if r.status != ReviewStatus.APPROVED
        ]
        self._record(
            LedgerEventType.DECISION_ESCALATED,
            decision,
            "Proposal Escalated",
            "Non-blocking concerns require human resolution",
            {"open_roles": open_roles},
        )
        log.info("proposal_escalated", decision_id=decision.id, open_roles=open_roles)

    # ------------------------------------------------------------------
    # Escalation resolution
    # ------------------------------------------------------------------

    def resolve_escalation(
        self,
        decision_id: str,
        resolution: FinalDecision | str,
        resolved_by: str,
        reason: str = "",
    ) -> Optional[VetoDecision]:
        """escalated -> approved | vetoed. Returns None from any other state."""
        resolution = FinalDecision(resolution)
        with self._lock:
            decision = self._require(decision_id)
            if decision.status != VetoStatus.ESCALATED:
                return None
            self._decide(
                decision,
                resolution,
                decided_by=resolved_by,
                description=reason or f"Escalation resolved by {resolved_by}",
                data={"resolution": resolution.value, "reason": reason},
            )
            self._persist()
            return decision.model_copy(deep=True)

    def auto_veto(self, decision_id: str, reason: str) -> Optional[VetoDecision]:
        """Veto an escalation nobody resolved in time."""
        with self._lock:
            decision = self._require(decision_id)
            if decision.status != VetoStatus.ESCALATED:
                return None
            self._decide(
                decision,
                FinalDecision.VETOED,
                decided_by=LIVENESS_ACTOR,
                description=reason,
                data={"auto_vetoed": True, "reason": reason},
            )
            self._persist()
            return decision.model_copy(deep=True)

    # ------------------------------------------------------------------
    # Override workflow
    # ------------------------------------------------------------------

    def request_override(
        self,
        decision_id: str,
        requested_by: str,
        reason: str,
    ) -> Optional[VetoDecision]:
        """vetoed -> override_requested. Returns None from any other state."""
        if not reason or not reason.strip():
            raise ValidationError("An override request needs a reason")
        with self._lock:
            decision = self._require(decision_id)
            if decision.status != VetoStatus.VETOED:
                return None

            decision.status = VetoStatus.OVERRIDE_REQUESTED
            decision.override_requested = True
            decision.override_requested_by = requested_by
            decision.override_reason = reason
            self._record(
                LedgerEventType.OVERRIDE_REQUESTED,
                decision,
                "Override Requested",
                reason,
                {"requested_by": requested_by, "reason": reason},
                user_id=requested_by,
            )
            self._persist()

        log.info("override_requested", decision_id=decision_id, requested_by=requested_by)
        return decision.model_copy(deep=True)

    def approve_override(self, decision_id: str, approved_by: str) -> Optional[VetoDecision]:
        """override_requested -> approved. Returns None from any other state."""
        with self._lock:
            decision = self._require(decision_id)
            if decision.status != VetoStatus.OVERRIDE_REQUESTED:
                return None

            decision.override_approved = True
            decision.override_approved_by = approved_by
            self._decide(
                decision,
                FinalDecision.APPROVED,
                decided_by=approved_by,
                description=f"Veto overridden by {approved_by}",
                data={"override_reason": decision.override_reason},
                event_type=LedgerEventType.OVERRIDE_APPROVED,
            )
            self._persist()
            return decision.model_copy(deep=True)

    def deny_override(
        self,
        decision_id: str,
        denied_by: str = SYSTEM_ACTOR,
    ) -> Optional[VetoDecision]:
        """override_requested -> vetoed. Returns None from any other state."""
        with self._lock:
            decision = self._require(decision_id)
            if decision.status != VetoStatus.OVERRIDE_REQUESTED:
                return None

            decision.status = VetoStatus.VETOED
            decision.override_approved = False
            self._record(
                LedgerEventType.OVERRIDE_DENIED,
                decision,
                "Override Denied",
                f"Override denied by {denied_by}",
                {"denied_by": denied_by},
                user_id=denied_by,
            )
            self._persist()

        log.info("override_denied", decision_id=decision_id, denied_by=denied_by)
        return decision.model_copy(deep=True)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_decision(self, decision_id: str) -> Optional[VetoDecision]:
        with self._lock:
            decision = self._decisions.get(decision_id)
            return decision.model_copy(deep=True) if decision is not None else None

    def get_all_decisions(self) -> list[VetoDecision]:
        """Every proposal, most recently submitted first."""
        with self._lock:
            decisions = [d.model_copy(deep=True) for d in self._decisions.values()]
        return sorted(decisions, key=lambda d: d.submitted_at, reverse=True)

    def get_pending_decisions(self) -> list[VetoDecision]:
        return [d for d in self.get_all_decisions() if d.status in PENDING_STATUSES]

    def get_escalated_decisions(self) -> list[VetoDecision]:
        return [d for d in self.get_all_decisions() if d.status == VetoStatus.ESCALATED]

    def get_vetoed_decisions(self) -> list[VetoDecision]:
        return [
            d for d in self.get_all_decisions()
            if d.final_decision == FinalDecision.VETOED
        ]

    def get_veto_agents(self) -> list[VetoAgent]:
        return get_veto_agents()

    def get_veto_agent(self, role: VetoAgentRole | str) -> VetoAgent:
        return get_veto_agent(role)

    # ------------------------------------------------------------------
    # Policies
    # ------------------------------------------------------------------

    def get_policies(self) -> list[VetoPolicy]:
        return self.policy_engine.get_policies()

    def create_policy(self, **fields: Any) -> VetoPolicy:
        with self._lock:
            policy = self.policy_engine.create_policy(**fields)
            self._persist()
        return policy

    def toggle_policy(self, policy_id: str) -> VetoPolicy:
        with self._lock:
            policy = self.policy_engine.toggle_policy(policy_id)
            self._persist()
        return policy

    # ------------------------------------------------------------------
    # Metrics
    # ------------------------------------------------------------------

    def get_metrics(self) -> VetoMetrics:
        decisions = self.get_all_decisions()

        by_agent: dict[str, int] = {r.value: 0 for r in VetoAgentRole}
        by_reason: dict[str, int] = {r.value: 0 for r in VetoReason}
        for d in decisions:
            if d.final_decision != FinalDecision.VETOED:
                continue
            blocking = next((r for r in d.reviews if r.is_blocking), None)
            if blocking is None:
                continue
            by_agent[blocking.agent_role.value] += 1
            for concern in blocking.concerns:
                by_reason[concern.category.value] += 1

        scores = [r.risk_score for d in decisions for r in d.reviews]
        buckets = Counter(
            "0-25" if s <= 25 else "26-50" if s <= 50 else "51-75" if s <= 75 else "76-100"
            for s in scores
        )
        distribution = [
            {"range": label, "count": buckets.get(label, 0)}
            for label in ("0-25", "26-50", "51-75", "76-100")
        ]

        review_hours = [
            (d.decided_at - d.submitted_at).total_seconds() / 3600
            for d in decisions
            if d.decided_at is not None
        ]

        return VetoMetrics(
            total_proposals=len(decisions),
            approved_proposals=sum(1 for d in decisions if d.final_decision == FinalDecision.APPROVED),
            vetoed_proposals=sum(1 for d in decisions if d.final_decision == FinalDecision.VETOED),
            pending_proposals=sum(1 for d in decisions if d.status == VetoStatus.PENDING),
            escalated_proposals=sum(1 for d in decisions if d.status == VetoStatus.ESCALATED),
            override_requests=sum(1 for d in decisions if d.override_requested),
            overrides_approved=sum(1 for d in decisions if d.override_approved),
            avg_review_time_hours=(
                sum(review_hours) / len(review_hours) if review_hours else 0.0
            ),
            vetoes_by_agent=by_agent,
            vetoes_by_reason=by_reason,
            risk_score_distribution=distribution,
        )
