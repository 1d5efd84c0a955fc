"""Tests for the compliance audit subsystem."""

import pytest

from provenance.errors import InvalidTransitionError, NotFoundError
from provenance.models import (
    AuditStatus,
    ComplianceFramework,
    ComplianceStatus,
    LedgerEventType,
)


@pytest.fixture
def decision(lifecycle):
    return lifecycle.create("Customer export", "Export CRM data", "agent:strategy", [])


def _finding(severity: str) -> dict:
    return {
        "id": f"finding-{severity}",
        "severity": severity,
        "category": "retention",
        "description": f"{severity} finding",
    }


class TestAuditFlow:
    """request -> start -> complete | fail."""

    def test_request(self, ledger, auditor, decision):
        audit = auditor.request_audit(decision.id, "human:analyst", "Annual review", "GDPR")

        assert audit.status == AuditStatus.PENDING
        assert audit.framework == ComplianceFramework.GDPR
        entry = ledger.get_entries_for_decision(decision.id)[-1]
        assert entry.event_type == LedgerEventType.AUDIT_REQUESTED
        assert entry.compliance_frameworks == [ComplianceFramework.GDPR]
        assert entry.data["audit_id"] == audit.id

    def test_start(self, ledger, auditor, decision):
        audit = auditor.request_audit(decision.id, "human:analyst", "Annual", "SOX")
        started = auditor.start_audit(decision.id, audit.id, "auditor:jane")

        assert started.status == AuditStatus.IN_PROGRESS
        assert started.started_by == "auditor:jane"
        assert started.started_at is not None
        stored = ledger.get_decision(decision.id).audit_history[0]
        assert stored.status == AuditStatus.IN_PROGRESS

    def test_start_twice_rejected(self, auditor, decision):
        audit = auditor.request_audit(decision.id, "human:analyst", "Annual", "SOX")
        auditor.start_audit(decision.id, audit.id, "auditor:jane")
        with pytest.raises(InvalidTransitionError):
            auditor.start_audit(decision.id, audit.id, "auditor:jane")

    def test_complete_with_serious_finding(self, ledger, auditor, decision):
        audit = auditor.request_audit(decision.id, "human:analyst", "Annual", "HIPAA")
        auditor.start_audit(decision.id, audit.id, "auditor:jane")
        done = auditor.complete_audit(
            decision.id, audit.id, [_finding("low"), _finding("critical")], report="See attached",
        )

        assert done.status == AuditStatus.COMPLETED
        assert len(done.findings) == 2
        assert done.report == "See attached"
        assert ledger.get_decision(decision.id).compliance_status == ComplianceStatus.REVIEW_NEEDED

        entry = ledger.get_entries_for_decision(decision.id)[-1]
        assert entry.event_type == LedgerEventType.AUDIT_COMPLETED
        assert entry.data["findings_count"] == 2
        assert entry.data["critical_high_count"] == 1

    def test_complete_from_pending_is_compliant(self, ledger, auditor, decision):
        audit = auditor.request_audit(decision.id, "human:analyst", "Spot check", "SOC2")
        auditor.complete_audit(decision.id, audit.id, [_finding("medium")])
        assert ledger.get_decision(decision.id).compliance_status == ComplianceStatus.COMPLIANT

    def test_fail(self, ledger, auditor, decision):
        audit = auditor.request_audit(decision.id, "human:analyst", "Annual", "GDPR")
        failed = auditor.fail_audit(decision.id, audit.id, "Auditor unavailable")

        assert failed.status == AuditStatus.FAILED
        assert failed.failure_reason == "Auditor unavailable"
        assert ledger.get_decision(decision.id).compliance_status == ComplianceStatus.PENDING
        entry = ledger.get_entries_for_decision(decision.id)[-1]
        assert entry.event_type == LedgerEventType.AUDIT_FAILED

    def test_terminal_states_are_final(self, auditor, decision):
        audit = auditor.request_audit(decision.id, "human:analyst", "Annual", "GDPR")
        auditor.fail_audit(decision.id, audit.id, "Cancelled")
        with pytest.raises(InvalidTransitionError):
            auditor.complete_audit(decision.id, audit.id, [])
        with pytest.raises(InvalidTransitionError):
            auditor.start_audit(decision.id, audit.id, "auditor:jane")

    def test_unknown_audit(self, auditor, decision):
        with pytest.raises(NotFoundError):
            auditor.start_audit(decision.id, "audit-missing", "auditor:jane")

    def test_unknown_decision(self, auditor):
        with pytest.raises(NotFoundError):
            auditor.request_audit("decision-missing", "human:analyst", "x", "GDPR")

    def test_audit_entries_keep_chain_valid(self, ledger, auditor, decision):
        audit = auditor.request_audit(decision.id, "human:analyst", "Annual", "PCI-DSS")
        auditor.start_audit(decision.id, audit.id, "auditor:jane")
        auditor.complete_audit(decision.id, audit.id, [])
        assert ledger.verify_chain().valid
        assert len(ledger.search_entries(compliance_framework=ComplianceFramework.PCI_DSS)) == 3
