"""
Reviewer Registry

Six standing reviewer roles, each with a jurisdiction and a risk threshold.
Roles that can block automatically turn a review at or above their
threshold into a hard veto; the others only flag.

The registry is static configuration and is never persisted.
"""

from __future__ import annotations

from dataclasses import dataclass

from provenance.errors import NotFoundError
from provenance.veto_models import VetoAgentRole


@dataclass(frozen=True)
class VetoAgent:
    id: str
    role: VetoAgentRole
    name: str
    title: str
    jurisdiction: tuple[str, ...]
    veto_threshold: int                  # 0-100 risk score
    can_block_automatic: bool
    requires_human_override: bool
    description: str = ""

    def blocks(self, risk_score: int) -> bool:
        return self.can_block_automatic and risk_score >= self.veto_threshold

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "role": self.role.value,
            "name": self.name,
            "title": self.title,
            "jurisdiction": list(self.jurisdiction),
            "veto_threshold": self.veto_threshold,
            "can_block_automatic": self.can_block_automatic,
            "requires_human_override": self.requires_human_override,
            "description": self.description,
        }


VETO_AGENTS: dict[VetoAgentRole, VetoAgent] = {
    VetoAgentRole.CISO: VetoAgent(
        id="veto-ciso",
        role=VetoAgentRole.CISO,
        name="CISO Guardian",
        title="Chief Information Security Officer",
        jurisdiction=(
            "data_security", "cyber_risk", "access_control",
            "encryption", "incident_response",
        ),
        veto_threshold=70,
        can_block_automatic=True,
        requires_human_override=True,
        description="Blocks proposals with security vulnerabilities, data exposure or weak access control",
    ),
    VetoAgentRole.ETHICS: VetoAgent(
        id="veto-ethics",
        role=VetoAgentRole.ETHICS,
        name="Ethics Arbiter",
        title="Chief Ethics Officer",
        jurisdiction=("fairness", "bias", "transparency", "social_impact", "stakeholder_welfare"),
        veto_threshold=60,
        can_block_automatic=True,
        requires_human_override=True,
        description="Blocks proposals with bias risk or negative social impact",
    ),
    VetoAgentRole.COMPLIANCE: VetoAgent(
        id="veto-compliance",
        role=VetoAgentRole.COMPLIANCE,
        name="Compliance Sentinel",
        title="Chief Compliance Officer",
        jurisdiction=("gdpr", "sox", "hipaa", "pci_dss", "regulatory", "licensing"),
        veto_threshold=65,
        can_block_automatic=True,
        requires_human_override=True,
        description="Blocks proposals violating GDPR, SOX, HIPAA or other regulatory frameworks",
    ),
    VetoAgentRole.RISK: VetoAgent(
        id="veto-risk",
        role=VetoAgentRole.RISK,
        name="Risk Assessor",
        title="Chief Risk Officer",
        jurisdiction=(
            "operational_risk", "market_risk", "credit_risk",
            "liquidity_risk", "strategic_risk",
        ),
        veto_threshold=75,
        can_block_automatic=False,
        requires_human_override=False,
        description="Flags high overall risk exposure for review",
    ),
    VetoAgentRole.LEGAL: VetoAgent(
        id="veto-legal",
        role=VetoAgentRole.LEGAL,
        name="Legal Counsel",
        title="General Counsel",
        jurisdiction=("contracts", "liability", "ip", "employment_law", "litigation_risk"),
        veto_threshold=70,
        can_block_automatic=True,
        requires_human_override=True,
        description="Blocks proposals with legal liability or litigation risk",
    ),
    VetoAgentRole.FINANCE: VetoAgent(
        id="veto-finance",
        role=VetoAgentRole.FINANCE,
        name="Financial Guardian",
        title="Chief Financial Officer",
        jurisdiction=("budget", "roi", "cash_flow", "audit", "financial_controls"),
        veto_threshold=80,
        can_block_automatic=False,
        requires_human_override=False,
        description="Flags proposals exceeding budget or ROI thresholds",
    ),
}


def get_veto_agents() -> list[VetoAgent]:
    return list(VETO_AGENTS.values())


def get_veto_agent(role: VetoAgentRole | str) -> VetoAgent:
    """Look up a reviewer by role. Raises NotFoundError for unknown roles."""
    try:
        return VETO_AGENTS[VetoAgentRole(role)]
    except (ValueError, KeyError):
        raise NotFoundError("veto agent", str(role))
