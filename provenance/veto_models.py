"""
Veto domain types

Proposals under governance review, the per-role reviews that gate them,
and the policies that decide which roles must review. Persisted records
are pydantic models; metrics are a plain dataclass.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional, Union

from pydantic import BaseModel, Field


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------

class VetoAgentRole(str, Enum):
    CISO = "ciso"
    ETHICS = "ethics"
    COMPLIANCE = "compliance"
    RISK = "risk"
    LEGAL = "legal"
    FINANCE = "finance"


class VetoStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    VETOED = "vetoed"
    OVERRIDE_REQUESTED = "override_requested"
    ESCALATED = "escalated"


class FinalDecision(str, Enum):
    APPROVED = "approved"
    VETOED = "vetoed"


class ReviewStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    VETOED = "vetoed"
    CONDITIONAL = "conditional"


class ReviewSource(str, Enum):
    FALLBACK = "fallback"
    REASONING = "reasoning"


class VetoReason(str, Enum):
    SECURITY_RISK = "security_risk"
    COMPLIANCE_VIOLATION = "compliance_violation"
    ETHICAL_CONCERN = "ethical_concern"
    FINANCIAL_RISK = "financial_risk"
    LEGAL_LIABILITY = "legal_liability"
    REGULATORY_BREACH = "regulatory_breach"
    REPUTATIONAL_DAMAGE = "reputational_damage"
    DATA_PRIVACY = "data_privacy"
    OPERATIONAL_RISK = "operational_risk"
    STRATEGIC_MISALIGNMENT = "strategic_misalignment"


class ConcernSeverity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class TriggerType(str, Enum):
    KEYWORD = "keyword"
    AMOUNT = "amount"
    DEPARTMENT = "department"
    CATEGORY = "category"
    RISK_SCORE = "risk_score"


class TriggerOperator(str, Enum):
    CONTAINS = "contains"
    EQUALS = "equals"
    GREATER_THAN = "greater_than"
    LESS_THAN = "less_than"
    IN = "in"


# ---------------------------------------------------------------------------
# Reviews
# ---------------------------------------------------------------------------

class VetoConcern(BaseModel):
    id: str
    category: VetoReason
    severity: ConcernSeverity
    description: str
    mitigation: Optional[str] = None
    regulatory_reference: Optional[str] = None


class VetoReview(BaseModel):
    id: str
    agent_id: str
    agent_role: VetoAgentRole
    status: ReviewStatus
    risk_score: int = Field(ge=0, le=100)
    confidence: int = Field(ge=0, le=100)
    reasoning: str
    concerns: list[VetoConcern] = Field(default_factory=list)
    conditions: Optional[list[str]] = None
    reviewed_at: datetime
    is_blocking: bool
    source: ReviewSource = ReviewSource.FALLBACK


# ---------------------------------------------------------------------------
# Proposals
# ---------------------------------------------------------------------------

class VetoDecision(BaseModel):
    id: str
    proposal_title: str
    proposal_description: str
    category: Optional[str] = None
    amount: Optional[float] = None
    submitted_by: str
    submitted_at: datetime
    status: VetoStatus = VetoStatus.PENDING

    required_roles: list[VetoAgentRole] = Field(default_factory=list)
    reviews: list[VetoReview] = Field(default_factory=list)

    final_decision: Optional[FinalDecision] = None
    decided_at: Optional[datetime] = None
    decided_by: Optional[str] = None
    escalated_at: Optional[datetime] = None

    override_requested: bool = False
    override_requested_by: Optional[str] = None
    override_reason: Optional[str] = None
    override_approved: Optional[bool] = None
    override_approved_by: Optional[str] = None

    @property
    def proposal_text(self) -> str:
        """Lower-cased title + description, the text every matcher scans."""
        return f"{self.proposal_title} {self.proposal_description}".lower()


# ---------------------------------------------------------------------------
# Policies
# ---------------------------------------------------------------------------

TriggerValue = Union[float, str, list[str]]


class VetoTrigger(BaseModel):
    type: TriggerType
    operator: TriggerOperator
    value: TriggerValue
    agent_to_notify: VetoAgentRole


class VetoPolicy(BaseModel):
    id: str
    name: str
    description: str
    trigger_conditions: list[VetoTrigger] = Field(default_factory=list)
    required_agents: list[VetoAgentRole] = Field(default_factory=list)
    auto_veto_threshold: int = Field(default=80, ge=0, le=100)
    escalation_path: list[str] = Field(default_factory=list)
    is_active: bool = True
    created_at: datetime
    updated_at: datetime


class VetoSnapshot(BaseModel):
    """Wire format of the persisted veto engine blob."""

    decisions: list[VetoDecision] = Field(default_factory=list)
    policies: list[VetoPolicy] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Metrics
# ---------------------------------------------------------------------------

@dataclass
class VetoMetrics:
    total_proposals: int
    approved_proposals: int
    vetoed_proposals: int
    pending_proposals: int
    escalated_proposals: int
    override_requests: int
    overrides_approved: int
    avg_review_time_hours: float
    vetoes_by_agent: dict[str, int] = field(default_factory=dict)
    vetoes_by_reason: dict[str, int] = field(default_factory=dict)
    risk_score_distribution: list[dict] = field(default_factory=list)
