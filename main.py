"""
Provenance Gateway

HTTP surface over the decision ledger and the veto engine. Every mutating
call lands on the hash chain before the response is sent; override and
escalation decisions additionally require an approver's Bearer key.
"""

from __future__ import annotations

from dataclasses import asdict
from datetime import datetime
from typing import Any, Optional

from fastapi import FastAPI, Header, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from provenance import __version__, config
from provenance.compliance import ComplianceAuditor
from provenance.errors import (
    IntegrityViolationError,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
)
from provenance.identity import authenticate_approver, validate_actor
from provenance.ledger import LedgerStore
from provenance.lifecycle import DecisionLifecycle
from provenance.liveness import auto_veto_expired_escalations, get_escalation_summary
from provenance.models import (
    AuditFinding,
    ComplianceFramework,
    DecisionStatus,
    LedgerEventType,
    Vote,
)
from provenance.observability import configure_logging
from provenance.persistence import build_snapshot_store
from provenance.review import ReasoningReviewer
from provenance.signing import Sha256Attestor
from provenance.veto_engine import VetoEngine
from provenance.veto_models import FinalDecision, VetoAgentRole

# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------

class DecisionCreate(BaseModel):
    title: str
    description: str
    proposed_by: str
    agents: list[str] = []


class DeliberationRequest(BaseModel):
    agent_id: str
    contribution: str
    confidence_score: float


class VoteRequest(BaseModel):
    agent_id: str
    vote: Vote
    confidence: float
    reasoning: str = ""


class FinalizeRequest(BaseModel):
    status: DecisionStatus
    final_confidence: float


class OutcomeRequest(BaseModel):
    outcome: str
    metrics: Optional[dict[str, Any]] = None


class ExecuteRequest(BaseModel):
    executed_by: str


class AuditRequest(BaseModel):
    requested_by: str
    reason: str
    framework: ComplianceFramework


class AuditStartRequest(BaseModel):
    auditor: str


class AuditCompleteRequest(BaseModel):
    findings: list[AuditFinding] = []
    report: Optional[str] = None


class AuditFailRequest(BaseModel):
    reason: str


class VerifyEntryRequest(BaseModel):
    verified_by: str = "system"


class ProposalSubmit(BaseModel):
    title: str
    description: str
    submitted_by: str
    category: Optional[str] = None
    amount: Optional[float] = None


class ReviewRequest(BaseModel):
    role: VetoAgentRole


class OverrideRequest(BaseModel):
    requested_by: str
    reason: str


class ResolveRequest(BaseModel):
    resolution: FinalDecision
    reason: str = ""


class PolicyCreate(BaseModel):
    name: str
    description: str
    trigger_conditions: list[dict[str, Any]]
    required_agents: list[VetoAgentRole] = []
    auto_veto_threshold: int = 80
    escalation_path: list[str] = []
    is_active: bool = True


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _authenticate_approver_request(authorization: str):
    """Extract Bearer token and resolve to an approver Identity.

    Raises HTTPException on auth failure.
    """
    if not authorization.startswith("Bearer "):
        raise HTTPException(status_code=401, detail="Missing Bearer token.")

    token = authorization[len("Bearer "):]
    try:
        return authenticate_approver(token)
    except ValueError as exc:
        raise HTTPException(status_code=401, detail=str(exc))


def _require_actor(actor_id: str):
    """Reject unknown or inactive actors with 403."""
    try:
        return validate_actor(actor_id)
    except ValueError as exc:
        raise HTTPException(status_code=403, detail=str(exc))


def _ineligible(decision_id: str, action: str, engine: VetoEngine) -> JSONResponse:
    current = engine.get_decision(decision_id)
    return JSONResponse(
        status_code=409,
        content={
            "error": f"Cannot {action} proposal {decision_id} in its current state.",
            "status": current.status.value if current is not None else None,
        },
    )


# ---------------------------------------------------------------------------
# App factory
# ---------------------------------------------------------------------------

def create_app(
    ledger: LedgerStore | None = None,
    engine: VetoEngine | None = None,
    attestor: Sha256Attestor | None = None,
) -> FastAPI:
    """Wire the services into a FastAPI app. Defaults come from config.

    Every route writes to one chain: a supplied engine brings its own ledger.
    """
    if ledger is None and engine is not None:
        ledger = engine.ledger
    if engine is not None and engine.ledger is not ledger:
        raise ValueError("engine and gateway must share one LedgerStore")
    if ledger is None or engine is None:
        store = build_snapshot_store()
        ledger = ledger or LedgerStore(persistence=store)
        engine = engine or VetoEngine(ledger, reviewer=ReasoningReviewer(), persistence=store)
    lifecycle = DecisionLifecycle(ledger)
    auditor = ComplianceAuditor(ledger)
    attestor = attestor or Sha256Attestor()

    app = FastAPI(title="Provenance Gateway", version=__version__)
    app.state.ledger = ledger
    app.state.engine = engine

    # --- Error mapping -----------------------------------------------------

    @app.exception_handler(NotFoundError)
    async def _not_found(request: Request, exc: NotFoundError):
        return JSONResponse(status_code=404, content={"error": str(exc)})

    @app.exception_handler(InvalidTransitionError)
    async def _invalid_transition(request: Request, exc: InvalidTransitionError):
        return JSONResponse(
            status_code=409,
            content={"error": str(exc), "current": exc.current, "requested": exc.requested},
        )

    @app.exception_handler(ValidationError)
    async def _validation(request: Request, exc: ValidationError):
        return JSONResponse(status_code=422, content={"error": str(exc)})

    @app.exception_handler(IntegrityViolationError)
    async def _integrity(request: Request, exc: IntegrityViolationError):
        return JSONResponse(
            status_code=409,
            content={"error": str(exc), "sequence": exc.sequence, "entry_id": exc.entry_id},
        )

    # --- Health ------------------------------------------------------------

    @app.get("/health")
    def health():
        return {"status": "operational", "service": "provenance-gateway"}

    # --- Decisions ---------------------------------------------------------

    @app.post("/decisions", status_code=201)
    def create_decision(body: DecisionCreate):
        _require_actor(body.proposed_by)
        return lifecycle.create(body.title, body.description, body.proposed_by, body.agents)

    @app.get("/decisions")
    def list_decisions():
        return ledger.get_all_decisions()

    @app.get("/decisions/{decision_id}")
    def get_decision(decision_id: str):
        decision = ledger.get_decision(decision_id)
        if decision is None:
            raise NotFoundError("decision", decision_id)
        return decision

    @app.get("/decisions/{decision_id}/entries")
    def decision_entries(decision_id: str):
        return ledger.get_entries_for_decision(decision_id)

    @app.post("/decisions/{decision_id}/deliberations")
    def deliberate(decision_id: str, body: DeliberationRequest):
        return lifecycle.record_deliberation(
            decision_id, body.agent_id, body.contribution, body.confidence_score,
        )

    @app.post("/decisions/{decision_id}/votes")
    def vote(decision_id: str, body: VoteRequest):
        return lifecycle.record_vote(
            decision_id, body.agent_id, body.vote, body.confidence, body.reasoning,
        )

    @app.post("/decisions/{decision_id}/finalize")
    def finalize(decision_id: str, body: FinalizeRequest):
        return lifecycle.finalize_decision(decision_id, body.status, body.final_confidence)

    @app.post("/decisions/{decision_id}/outcome")
    def outcome(decision_id: str, body: OutcomeRequest):
        return lifecycle.record_outcome(decision_id, body.outcome, body.metrics)

    @app.post("/decisions/{decision_id}/execute")
    def execute(decision_id: str, body: ExecuteRequest):
        _require_actor(body.executed_by)
        return lifecycle.mark_executed(decision_id, body.executed_by)

    @app.get("/decisions/{decision_id}/export")
    async def export(decision_id: str, signed: bool = False):
        if not signed:
            return ledger.export_for_audit(decision_id)
        return await ledger.export_for_audit_signed(
            decision_id, attestor, timeout=config.SIGNING_TIMEOUT_SECONDS,
        )

    # --- Audits ------------------------------------------------------------

    @app.post("/decisions/{decision_id}/audits", status_code=201)
    def request_audit(decision_id: str, body: AuditRequest):
        return auditor.request_audit(decision_id, body.requested_by, body.reason, body.framework)

    @app.post("/decisions/{decision_id}/audits/{audit_id}/start")
    def start_audit(decision_id: str, audit_id: str, body: AuditStartRequest):
        return auditor.start_audit(decision_id, audit_id, body.auditor)

    @app.post("/decisions/{decision_id}/audits/{audit_id}/complete")
    def complete_audit(decision_id: str, audit_id: str, body: AuditCompleteRequest):
        return auditor.complete_audit(decision_id, audit_id, body.findings, body.report)

    @app.post("/decisions/{decision_id}/audits/{audit_id}/fail")
    def fail_audit(decision_id: str, audit_id: str, body: AuditFailRequest):
        return auditor.fail_audit(decision_id, audit_id, body.reason)

    # --- Ledger ------------------------------------------------------------

    @app.get("/ledger/entries")
    def search_entries(
        event_type: Optional[LedgerEventType] = None,
        agent_id: Optional[str] = None,
        framework: Optional[ComplianceFramework] = None,
        pii_only: bool = False,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
    ):
        return ledger.search_entries(
            event_type=event_type,
            start_date=start_date,
            end_date=end_date,
            agent_id=agent_id,
            compliance_framework=framework,
            pii_only=pii_only,
        )

    @app.get("/ledger/entries/{entry_id}")
    def get_entry(entry_id: str):
        entry = ledger.get_entry(entry_id)
        if entry is None:
            raise NotFoundError("entry", entry_id)
        return entry

    @app.post("/ledger/entries/{entry_id}/verify")
    def verify_entry(entry_id: str, body: VerifyEntryRequest):
        if ledger.get_entry(entry_id) is None:
            raise NotFoundError("entry", entry_id)
        return {"entry_id": entry_id, "valid": ledger.verify_entry(entry_id, body.verified_by)}

    @app.get("/ledger/verify")
    def verify_chain():
        return asdict(ledger.verify_chain())

    @app.get("/ledger/metrics")
    def ledger_metrics():
        return asdict(ledger.get_metrics())

    # --- Veto: proposals ---------------------------------------------------

    @app.post("/veto/proposals", status_code=201)
    def submit_proposal(body: ProposalSubmit):
        _require_actor(body.submitted_by)
        return engine.submit_proposal(
            body.title, body.description, body.submitted_by,
            category=body.category, amount=body.amount,
        )

    @app.get("/veto/proposals")
    def list_proposals():
        return engine.get_all_decisions()

    @app.get("/veto/proposals/pending")
    def pending_proposals():
        return engine.get_pending_decisions()

    @app.get("/veto/proposals/vetoed")
    def vetoed_proposals():
        return engine.get_vetoed_decisions()

    @app.get("/veto/proposals/{decision_id}")
    def get_proposal(decision_id: str):
        decision = engine.get_decision(decision_id)
        if decision is None:
            raise NotFoundError("veto decision", decision_id)
        return decision

    @app.post("/veto/proposals/{decision_id}/reviews", status_code=201)
    def run_review(decision_id: str, body: ReviewRequest):
        return engine.run_agent_review(decision_id, body.role)

    @app.post("/veto/proposals/{decision_id}/evaluate")
    def evaluate(decision_id: str):
        return engine.evaluate_decision(decision_id)

    # --- Veto: override / escalation ----------------------------------------

    @app.post("/veto/proposals/{decision_id}/override")
    def request_override(decision_id: str, body: OverrideRequest):
        _require_actor(body.requested_by)
        result = engine.request_override(decision_id, body.requested_by, body.reason)
        if result is None:
            return _ineligible(decision_id, "request an override for", engine)
        return result

    @app.post("/veto/proposals/{decision_id}/override/approve")
    def approve_override(decision_id: str, authorization: str = Header(...)):
        approver = _authenticate_approver_request(authorization)
        result = engine.approve_override(decision_id, approver.actor_id)
        if result is None:
            return _ineligible(decision_id, "approve an override for", engine)
        return result

    @app.post("/veto/proposals/{decision_id}/override/deny")
    def deny_override(decision_id: str, authorization: str = Header(...)):
        approver = _authenticate_approver_request(authorization)
        result = engine.deny_override(decision_id, approver.actor_id)
        if result is None:
            return _ineligible(decision_id, "deny an override for", engine)
        return result

    @app.post("/veto/proposals/{decision_id}/resolve")
    def resolve_escalation(
        decision_id: str,
        body: ResolveRequest,
        authorization: str = Header(...),
    ):
        approver = _authenticate_approver_request(authorization)
        result = engine.resolve_escalation(
            decision_id, body.resolution, approver.actor_id, body.reason,
        )
        if result is None:
            return _ineligible(decision_id, "resolve an escalation for", engine)
        return result

    @app.post("/veto/escalations/expire")
    def expire_escalations():
        return {"auto_vetoed": auto_veto_expired_escalations(engine)}

    @app.get("/veto/escalations/summary")
    def escalation_summary():
        return get_escalation_summary(engine)

    # --- Veto: registry / policies / metrics --------------------------------

    @app.get("/veto/agents")
    def list_agents():
        return [agent.to_dict() for agent in engine.get_veto_agents()]

    @app.get("/veto/policies")
    def list_policies():
        return engine.get_policies()

    @app.post("/veto/policies", status_code=201)
    def create_policy(body: PolicyCreate):
        return engine.create_policy(
            name=body.name,
            description=body.description,
            trigger_conditions=body.trigger_conditions,
            required_agents=body.required_agents,
            auto_veto_threshold=body.auto_veto_threshold,
            escalation_path=body.escalation_path,
            is_active=body.is_active,
        )

    @app.post("/veto/policies/{policy_id}/toggle")
    def toggle_policy(policy_id: str):
        return engine.toggle_policy(policy_id)

    @app.get("/veto/metrics")
    def veto_metrics():
        return asdict(engine.get_metrics())

    return app


configure_logging()
app = create_app()
