"""
Compliance Audit Subsystem

Attaches AuditRecords to a DecisionRecord and walks them through

    pending -> in_progress -> completed | failed
    pending ----------------> completed | failed

Completed and failed are terminal. Every transition appends its own ledger
entry tagged with the audit's framework, so the audit trail is itself part
of the chain.
"""

from __future__ import annotations

from typing import Optional
from uuid import uuid4

import structlog

from provenance.errors import InvalidTransitionError, NotFoundError
from provenance.ledger import LedgerStore
from provenance.models import (
    AuditFinding,
    AuditRecord,
    AuditStatus,
    ComplianceFramework,
    ComplianceStatus,
    DecisionRecord,
    FindingSeverity,
    LedgerEntry,
    LedgerEventType,
)

log = structlog.get_logger(__name__)

_OPEN = {AuditStatus.PENDING, AuditStatus.IN_PROGRESS}
_SERIOUS = {FindingSeverity.CRITICAL, FindingSeverity.HIGH}


def _find_audit(decision: DecisionRecord, audit_id: str) -> AuditRecord:
    for audit in decision.audit_history:
        if audit.id == audit_id:
            return audit
    raise NotFoundError("audit", audit_id)


def _require_status(
    audit: AuditRecord,
    allowed: set[AuditStatus],
    requested: AuditStatus,
) -> None:
    if audit.status not in allowed:
        raise InvalidTransitionError(
            "audit", audit.id, audit.status.value, requested.value,
        )


class ComplianceAuditor:
    """Audit request / start / complete / fail over a LedgerStore."""

    def __init__(self, ledger: LedgerStore):
        self.ledger = ledger

    def request_audit(
        self,
        decision_id: str,
        requested_by: str,
        reason: str,
        framework: ComplianceFramework,
    ) -> AuditRecord:
        framework = ComplianceFramework(framework)
        with self.ledger.transaction():
            decision = self.ledger.decision_for_update(decision_id)
            audit = AuditRecord(
                id=f"audit-{uuid4().hex}",
                requested_at=self.ledger.now(),
                requested_by=requested_by,
                reason=reason,
                framework=framework,
            )
            decision.audit_history.append(audit)
            self.ledger.append(
                LedgerEventType.AUDIT_REQUESTED,
                decision_id,
                f"{framework.value} Audit Requested",
                reason,
                {
                    "audit_id": audit.id,
                    "framework": framework.value,
                    "requested_by": requested_by,
                },
                user_id=requested_by,
                compliance_frameworks=[framework],
            )

        log.info(
            "audit_requested",
            decision_id=decision_id,
            audit_id=audit.id,
            framework=framework.value,
        )
        return audit.model_copy(deep=True)

    def start_audit(self, decision_id: str, audit_id: str, auditor: str) -> AuditRecord:
        with self.ledger.transaction():
            decision = self.ledger.decision_for_update(decision_id)
            audit = _find_audit(decision, audit_id)
            _require_status(audit, {AuditStatus.PENDING}, AuditStatus.IN_PROGRESS)

            audit.status = AuditStatus.IN_PROGRESS
            audit.started_at = self.ledger.now()
            audit.started_by = auditor
            self.ledger.append(
                LedgerEventType.AUDIT_STARTED,
                decision_id,
                f"{audit.framework.value} Audit Started",
                f"Audit {audit_id} picked up by {auditor}",
                {"audit_id": audit_id, "auditor": auditor},
                user_id=auditor,
                compliance_frameworks=[audit.framework],
            )

        log.info("audit_started", decision_id=decision_id, audit_id=audit_id, auditor=auditor)
        return audit.model_copy(deep=True)

    def complete_audit(
        self,
        decision_id: str,
        audit_id: str,
        findings: list[AuditFinding],
        report: Optional[str] = None,
    ) -> AuditRecord:
        """
        Close an open audit with its findings.

        The decision's compliance_status becomes ``review_needed`` when any
        finding is high or critical, ``compliant`` otherwise.
        """
        findings = [
            f if isinstance(f, AuditFinding) else AuditFinding.model_validate(f)
            for f in findings
        ]
        with self.ledger.transaction():
            decision = self.ledger.decision_for_update(decision_id)
            audit = _find_audit(decision, audit_id)
            _require_status(audit, _OPEN, AuditStatus.COMPLETED)

            audit.status = AuditStatus.COMPLETED
            audit.findings = findings
            audit.report = report
            audit.completed_at = self.ledger.now()

            serious = sum(1 for f in findings if f.severity in _SERIOUS)
            decision.compliance_status = (
                ComplianceStatus.REVIEW_NEEDED if serious else ComplianceStatus.COMPLIANT
            )
            self.ledger.append(
                LedgerEventType.AUDIT_COMPLETED,
                decision_id,
                f"{audit.framework.value} Audit Completed",
                f"{len(findings)} findings, {serious} critical/high",
                {
                    "audit_id": audit_id,
                    "findings_count": len(findings),
                    "critical_high_count": serious,
                    "compliance_status": decision.compliance_status.value,
                },
                compliance_frameworks=[audit.framework],
            )

        log.info(
            "audit_completed",
            decision_id=decision_id,
            audit_id=audit_id,
            findings=len(findings),
            compliance_status=decision.compliance_status.value,
        )
        return audit.model_copy(deep=True)

    def fail_audit(self, decision_id: str, audit_id: str, reason: str) -> AuditRecord:
        """Abandon an open audit. Compliance status is left untouched."""
        with self.ledger.transaction():
            decision = self.ledger.decision_for_update(decision_id)
            audit = _find_audit(decision, audit_id)
            _require_status(audit, _OPEN, AuditStatus.FAILED)

            audit.status = AuditStatus.FAILED
            audit.failure_reason = reason
            audit.completed_at = self.ledger.now()
            self.ledger.append(
                LedgerEventType.AUDIT_FAILED,
                decision_id,
                f"{audit.framework.value} Audit Failed",
                reason,
                {"audit_id": audit_id, "reason": reason},
                compliance_frameworks=[audit.framework],
            )

        log.warning("audit_failed", decision_id=decision_id, audit_id=audit_id, reason=reason)
        return audit.model_copy(deep=True)
