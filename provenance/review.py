"""
Review Strategies

A review strategy turns (proposal, reviewer) into a VetoReview.

  FallbackReviewer   deterministic keyword-weighted scoring; always available
  ReasoningReviewer  asks an Ollama-compatible model for a JSON assessment

Whatever the strategy reports, is_blocking is recomputed locally from the
reviewer's threshold so a model can never raise (or lift) a hard veto.
"""

from __future__ import annotations

import json
import math
import re
from datetime import datetime
from typing import Any, Callable, Optional, Protocol
from uuid import uuid4

import httpx
import structlog
from pydantic import ValidationError as SchemaError

from provenance import config
from provenance.models import utcnow
from provenance.reviewers import VetoAgent
from provenance.veto_models import (
    ConcernSeverity,
    ReviewSource,
    ReviewStatus,
    VetoConcern,
    VetoDecision,
    VetoReason,
    VetoReview,
)

log = structlog.get_logger(__name__)


class ReviewStrategy(Protocol):
    def is_available(self) -> bool: ...

    def review(self, decision: VetoDecision, agent: VetoAgent) -> Optional[VetoReview]: ...


def _review_id() -> str:
    return f"review-{uuid4().hex[:12]}"


# ---------------------------------------------------------------------------
# Deterministic fallback
# ---------------------------------------------------------------------------

BASE_RISK = 20
CONDITIONAL_RISK = 50
FALLBACK_CONFIDENCE = 70
DEFAULT_CONDITIONS = [
    "Requires additional documentation",
    "Stakeholder sign-off recommended",
]

# (keyword, score, category); matched as lower-cased substrings
RISK_INDICATORS: list[tuple[str, int, VetoReason]] = [
    ("delete", 30, VetoReason.DATA_PRIVACY),
    ("remove", 20, VetoReason.OPERATIONAL_RISK),
    ("customer data", 40, VetoReason.DATA_PRIVACY),
    ("pii", 50, VetoReason.COMPLIANCE_VIOLATION),
    ("gdpr", 35, VetoReason.REGULATORY_BREACH),
    ("layoff", 45, VetoReason.ETHICAL_CONCERN),
    ("terminate", 40, VetoReason.LEGAL_LIABILITY),
    ("acquisition", 35, VetoReason.FINANCIAL_RISK),
    ("ai", 25, VetoReason.ETHICAL_CONCERN),
    ("automation", 20, VetoReason.OPERATIONAL_RISK),
    ("security", 30, VetoReason.SECURITY_RISK),
    ("password", 35, VetoReason.SECURITY_RISK),
    ("encrypt", 25, VetoReason.SECURITY_RISK),
    ("public", 20, VetoReason.REPUTATIONAL_DAMAGE),
    ("media", 25, VetoReason.REPUTATIONAL_DAMAGE),
]


def _in_jurisdiction(category: VetoReason, jurisdiction: tuple[str, ...]) -> bool:
    prefix = category.value.split("_")[0]
    return any(j in category.value or prefix in j for j in jurisdiction)


def _severity(score: int) -> ConcernSeverity:
    if score > 35:
        return ConcernSeverity.HIGH
    if score > 25:
        return ConcernSeverity.MEDIUM
    return ConcernSeverity.LOW


class FallbackReviewer:
    """
    Keyword-weighted risk accumulation.

    Every matched indicator raises the score (base 20, capped at 100), but
    only indicators whose category falls inside the reviewer's jurisdiction
    become concerns.
    """

    def __init__(self, clock: Callable[[], datetime] = utcnow):
        self._clock = clock

    def is_available(self) -> bool:
        return True

    def review(self, decision: VetoDecision, agent: VetoAgent) -> VetoReview:
        text = decision.proposal_text
        risk_score = BASE_RISK
        concerns: list[VetoConcern] = []

        for i, (keyword, score, category) in enumerate(RISK_INDICATORS):
            if keyword not in text:
                continue
            risk_score += score
            if _in_jurisdiction(category, agent.jurisdiction):
                label = category.value.replace("_", " ")
                concerns.append(VetoConcern(
                    id=f"concern-{i}",
                    category=category,
                    severity=_severity(score),
                    description=f'Detected "{keyword}" which may indicate {label}',
                    mitigation=f"Review and address {label} before proceeding",
                ))

        risk_score = min(100, risk_score)
        is_blocking = agent.blocks(risk_score)
        if is_blocking:
            status = ReviewStatus.VETOED
        elif risk_score >= CONDITIONAL_RISK:
            status = ReviewStatus.CONDITIONAL
        else:
            status = ReviewStatus.APPROVED

        return VetoReview(
            id=_review_id(),
            agent_id=agent.id,
            agent_role=agent.role,
            status=status,
            risk_score=risk_score,
            confidence=FALLBACK_CONFIDENCE,
            reasoning=(
                f"{agent.name} reviewed this proposal. Risk score: {risk_score}/100. "
                f"{len(concerns)} concerns identified within {agent.role.value} jurisdiction."
            ),
            concerns=concerns,
            conditions=list(DEFAULT_CONDITIONS) if risk_score >= CONDITIONAL_RISK else None,
            reviewed_at=self._clock(),
            is_blocking=is_blocking,
            source=ReviewSource.FALLBACK,
        )


# ---------------------------------------------------------------------------
# Model-backed reasoning
# ---------------------------------------------------------------------------

_JSON_OBJECT = re.compile(r"\{[\s\S]*\}")

PROMPT_TEMPLATE = """You are the {title} ({name}) responsible for reviewing proposals.

Your jurisdiction includes: {jurisdiction}

Review this proposal and provide your assessment:

**Proposal Title:** {proposal_title}
**Description:** {proposal_description}

Analyze for risks in your jurisdiction. Respond in JSON format:
{{
  "riskScore": <0-100>,
  "confidence": <0-100>,
  "status": "<approved|vetoed|conditional>",
  "reasoning": "<your detailed reasoning>",
  "concerns": [
    {{
      "category": "<{categories}>",
      "severity": "<low|medium|high|critical>",
      "description": "<description of concern>",
      "mitigation": "<suggested mitigation>"
    }}
  ],
  "conditions": ["<condition if conditional approval>"]
}}"""


def build_prompt(decision: VetoDecision, agent: VetoAgent) -> str:
    return PROMPT_TEMPLATE.format(
        title=agent.title,
        name=agent.name,
        jurisdiction=", ".join(agent.jurisdiction),
        proposal_title=decision.proposal_title,
        proposal_description=decision.proposal_description,
        categories="|".join(r.value for r in VetoReason),
    )


def _clamp(value: Any) -> int:
    number = float(value)
    if not math.isfinite(number):
        raise ValueError(f"score is not a finite number: {value!r}")
    return max(0, min(100, int(round(number))))


class ReasoningReviewer:
    """
    Reviews through an Ollama-compatible ``/api/generate`` endpoint.

    Returns None from review() whenever the model is unreachable, slow, or
    answers with something that does not parse into a review; the engine
    then falls back to the deterministic strategy.
    """

    def __init__(
        self,
        base_url: str = config.REASONING_URL,
        model: str = config.REASONING_MODEL,
        timeout: float = config.REASONING_TIMEOUT_SECONDS,
        client: httpx.Client | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.base_url = base_url.rstrip("/")
        self.model = model
        self._client = client or httpx.Client(timeout=timeout)
        self._clock = clock

    def is_available(self) -> bool:
        try:
            resp = self._client.get(f"{self.base_url}/api/tags")
        except httpx.HTTPError as exc:
            log.debug("reasoning_unavailable", url=self.base_url, error=str(exc))
            return False
        return resp.status_code == 200

    def _generate(self, prompt: str) -> str:
        resp = self._client.post(
            f"{self.base_url}/api/generate",
            json={"model": self.model, "prompt": prompt, "stream": False},
        )
        resp.raise_for_status()
        return resp.json().get("response", "")

    def review(self, decision: VetoDecision, agent: VetoAgent) -> Optional[VetoReview]:
        try:
            text = self._generate(build_prompt(decision, agent))
        except (httpx.HTTPError, ValueError) as exc:
            log.warning("reasoning_review_failed", agent=agent.role.value, error=str(exc))
            return None

        match = _JSON_OBJECT.search(text)
        if match is None:
            log.warning("reasoning_review_unparseable", agent=agent.role.value)
            return None

        try:
            parsed = json.loads(match.group(0))
            return self._to_review(parsed, agent)
        except (ValueError, TypeError, KeyError, AttributeError, SchemaError) as exc:
            log.warning("reasoning_review_unparseable", agent=agent.role.value, error=str(exc))
            return None

    def _to_review(self, parsed: dict[str, Any], agent: VetoAgent) -> VetoReview:
        risk_score = _clamp(parsed["riskScore"])
        is_blocking = agent.blocks(risk_score)
        status = ReviewStatus(parsed.get("status", "conditional"))
        if status == ReviewStatus.PENDING:
            raise ValueError("model returned a pending review")
        if is_blocking:
            status = ReviewStatus.VETOED

        concerns = [
            VetoConcern(
                id=f"concern-{i}",
                category=c["category"],
                severity=c.get("severity", "medium"),
                description=c.get("description", ""),
                mitigation=c.get("mitigation"),
            )
            for i, c in enumerate(parsed.get("concerns") or [])
        ]
        conditions = parsed.get("conditions") or None

        return VetoReview(
            id=_review_id(),
            agent_id=agent.id,
            agent_role=agent.role,
            status=status,
            risk_score=risk_score,
            confidence=_clamp(parsed.get("confidence", 50)),
            reasoning=str(parsed.get("reasoning", "")),
            concerns=concerns,
            conditions=[str(c) for c in conditions] if conditions else None,
            reviewed_at=self._clock(),
            is_blocking=is_blocking,
            source=ReviewSource.REASONING,
        )


def select_strategy(
    primary: Optional[ReviewStrategy],
    fallback: ReviewStrategy,
) -> ReviewStrategy:
    """Probe *primary* now; use it if it answers, else *fallback*."""
    if primary is not None and primary.is_available():
        return primary
    return fallback
