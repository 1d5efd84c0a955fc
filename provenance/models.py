"""
Ledger domain types

Persisted records (entries, decisions, audits) are pydantic models so a
snapshot can be dumped to JSON and rehydrated with timestamps restored.
Verification results and metrics are plain dataclasses.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field

GENESIS_HASH = "0" * 16
DEFAULT_RETENTION_DAYS = 2555  # 7 years


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------

class LedgerEventType(str, Enum):
    DECISION_PROPOSED = "decision.proposed"
    DECISION_DELIBERATED = "decision.deliberated"
    DECISION_VOTED = "decision.voted"
    DECISION_VETOED = "decision.vetoed"
    DECISION_APPROVED = "decision.approved"
    DECISION_EXECUTED = "decision.executed"
    DECISION_OUTCOME_RECORDED = "decision.outcome_recorded"
    DECISION_ESCALATED = "decision.escalated"
    AGENT_JOINED = "agent.joined"
    AGENT_CONTRIBUTED = "agent.contributed"
    AGENT_VOTED = "agent.voted"
    AGENT_VETOED = "agent.vetoed"
    CONFIDENCE_UPDATED = "confidence.updated"
    EVIDENCE_ATTACHED = "evidence.attached"
    AUDIT_REQUESTED = "audit.requested"
    AUDIT_STARTED = "audit.started"
    AUDIT_COMPLETED = "audit.completed"
    AUDIT_FAILED = "audit.failed"
    COMPLIANCE_CHECK = "compliance.check"
    OVERRIDE_REQUESTED = "override.requested"
    OVERRIDE_APPROVED = "override.approved"
    OVERRIDE_DENIED = "override.denied"


class ComplianceFramework(str, Enum):
    GDPR = "GDPR"
    SOX = "SOX"
    HIPAA = "HIPAA"
    PCI_DSS = "PCI-DSS"
    ISO27001 = "ISO27001"
    SOC2 = "SOC2"
    CCPA = "CCPA"
    NIST = "NIST"


class Vote(str, Enum):
    APPROVE = "approve"
    REJECT = "reject"
    ABSTAIN = "abstain"
    VETO = "veto"


class SensitivityLevel(str, Enum):
    PUBLIC = "public"
    INTERNAL = "internal"
    CONFIDENTIAL = "confidential"
    RESTRICTED = "restricted"


class DecisionStatus(str, Enum):
    PROPOSED = "proposed"
    DELIBERATING = "deliberating"
    VOTING = "voting"
    APPROVED = "approved"
    REJECTED = "rejected"
    VETOED = "vetoed"
    EXECUTED = "executed"


FINAL_STATUSES = {DecisionStatus.APPROVED, DecisionStatus.REJECTED, DecisionStatus.VETOED}


class ComplianceStatus(str, Enum):
    PENDING = "pending"
    COMPLIANT = "compliant"
    REVIEW_NEEDED = "review_needed"
    VIOLATION = "violation"


class AuditStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"


class FindingSeverity(str, Enum):
    INFO = "info"
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


# ---------------------------------------------------------------------------
# Persisted records
# ---------------------------------------------------------------------------

class LedgerEntry(BaseModel):
    """One immutable fact. Only the verification fields ever change."""

    id: str
    sequence: int
    timestamp: datetime
    event_type: LedgerEventType

    decision_id: str
    organization_id: str = "default"
    user_id: Optional[str] = None
    agent_id: Optional[str] = None

    title: str
    description: str
    data: dict[str, Any] = Field(default_factory=dict)

    confidence_score: Optional[float] = None
    vote: Optional[Vote] = None
    vote_weight: Optional[float] = None

    previous_hash: str
    hash: str = ""
    signature: Optional[str] = None

    compliance_frameworks: list[ComplianceFramework] = Field(default_factory=list)
    retention_period_days: int = DEFAULT_RETENTION_DAYS
    sensitivity_level: SensitivityLevel = SensitivityLevel.INTERNAL
    pii_involved: bool = False

    verified: bool = False
    verified_at: Optional[datetime] = None
    verified_by: Optional[str] = None

    def hash_material(self) -> dict[str, Any]:
        """Fields covered by the chain hash. Excludes hash and volatile fields."""
        return {
            "id": self.id,
            "sequence": self.sequence,
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "decision_id": self.decision_id,
            "previous_hash": self.previous_hash,
            "data": self.data,
        }


class VoterRecord(BaseModel):
    agent_id: str
    vote: Vote
    confidence: float
    timestamp: datetime


class AuditFinding(BaseModel):
    id: str
    severity: FindingSeverity
    category: str
    description: str
    remediation: Optional[str] = None
    resolved: bool = False


class AuditRecord(BaseModel):
    id: str
    requested_at: datetime
    requested_by: str
    reason: str
    framework: ComplianceFramework
    status: AuditStatus = AuditStatus.PENDING
    findings: list[AuditFinding] = Field(default_factory=list)
    started_at: Optional[datetime] = None
    started_by: Optional[str] = None
    completed_at: Optional[datetime] = None
    report: Optional[str] = None
    failure_reason: Optional[str] = None


class DecisionRecord(BaseModel):
    id: str
    title: str
    description: str
    proposed_by: str
    proposed_at: datetime
    status: DecisionStatus = DecisionStatus.PROPOSED

    agents: list[str] = Field(default_factory=list)
    voters: list[VoterRecord] = Field(default_factory=list)

    final_confidence: Optional[float] = None
    outcome: Optional[str] = None
    outcome_recorded_at: Optional[datetime] = None

    ledger_entries: list[str] = Field(default_factory=list)
    first_entry_hash: str = ""
    latest_entry_hash: str = ""

    compliance_status: ComplianceStatus = ComplianceStatus.PENDING
    audit_history: list[AuditRecord] = Field(default_factory=list)


class LedgerSnapshot(BaseModel):
    """Wire format of the persisted ledger blob."""

    sequence: int = 0
    entries: list[LedgerEntry] = Field(default_factory=list)
    decisions: list[DecisionRecord] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------

@dataclass
class ChainVerificationResult:
    valid: bool
    entries_checked: int
    message: str
    broken_at: Optional[int] = None
    broken_entry_id: Optional[str] = None
    cancelled: bool = False


@dataclass
class LedgerMetrics:
    total_entries: int
    total_decisions: int
    entries_by_type: dict[str, int] = field(default_factory=dict)
    entries_by_framework: dict[str, int] = field(default_factory=dict)
    average_confidence: int = 0
    veto_rate: int = 0
    approval_rate: int = 0
    chain_integrity: str = "unknown"   # valid | broken | unknown
    last_verified_at: Optional[datetime] = None
    pii_entries_count: int = 0
    pending_audits: int = 0
