"""
Veto Policy Engine

Deterministic routing of proposals to reviewer roles. Every active
VetoPolicy's trigger conditions are matched against the proposal; each
matching trigger adds its agent_to_notify to the required set. A proposal
that matches nothing is still reviewed by the risk role.
"""

from __future__ import annotations

import threading
from datetime import datetime
from typing import Any, Callable, Optional
from uuid import uuid4

import structlog
from pydantic import ValidationError as SchemaError

from provenance.errors import NotFoundError, ValidationError
from provenance.models import utcnow
from provenance.veto_models import (
    TriggerOperator,
    TriggerType,
    VetoAgentRole,
    VetoPolicy,
    VetoTrigger,
)

log = structlog.get_logger(__name__)

# ---------------------------------------------------------------------------
# Trigger grammar
# ---------------------------------------------------------------------------

NUMERIC_TYPES = {TriggerType.AMOUNT, TriggerType.RISK_SCORE}
SET_TYPES = {TriggerType.CATEGORY, TriggerType.DEPARTMENT}

ALLOWED_OPERATORS: dict[TriggerType, set[TriggerOperator]] = {
    TriggerType.KEYWORD: {TriggerOperator.CONTAINS},
    TriggerType.CATEGORY: {TriggerOperator.IN, TriggerOperator.EQUALS},
    TriggerType.DEPARTMENT: {TriggerOperator.IN, TriggerOperator.EQUALS},
    TriggerType.AMOUNT: {
        TriggerOperator.GREATER_THAN, TriggerOperator.LESS_THAN, TriggerOperator.EQUALS,
    },
    TriggerType.RISK_SCORE: {
        TriggerOperator.GREATER_THAN, TriggerOperator.LESS_THAN, TriggerOperator.EQUALS,
    },
}

FLOOR_ROLE = VetoAgentRole.RISK


def validate_trigger(trigger: VetoTrigger | dict[str, Any]) -> VetoTrigger:
    """
    Check a trigger against the grammar above and return it as a model.

    Raises ValidationError for an unknown type, operator or role, an
    operator the type does not support, or a value of the wrong shape.
    """
    if not isinstance(trigger, VetoTrigger):
        try:
            trigger = VetoTrigger.model_validate(trigger)
        except SchemaError as exc:
            raise ValidationError(f"Malformed trigger: {exc.errors()[0]['msg']}") from exc

    if trigger.operator not in ALLOWED_OPERATORS[trigger.type]:
        raise ValidationError(
            f"Operator '{trigger.operator.value}' is not valid for "
            f"'{trigger.type.value}' triggers"
        )

    value = trigger.value
    if trigger.type in NUMERIC_TYPES:
        if isinstance(value, (list, str)):
            raise ValidationError(f"'{trigger.type.value}' triggers need a numeric value")
    elif trigger.operator == TriggerOperator.IN:
        if not isinstance(value, list) or not value:
            raise ValidationError("'in' triggers need a non-empty list of values")
    elif trigger.operator == TriggerOperator.EQUALS:
        if not isinstance(value, str):
            raise ValidationError("'equals' triggers on text fields need a string value")
    else:  # keyword / contains
        if isinstance(value, list):
            if not value or not all(isinstance(v, str) and v for v in value):
                raise ValidationError("keyword triggers need non-empty keywords")
        elif not isinstance(value, str) or not value:
            raise ValidationError("keyword triggers need a keyword or a list of keywords")

    return trigger


def _trigger_matches(
    trigger: VetoTrigger,
    text: str,
    category: Optional[str],
    amount: Optional[float],
    risk_score: Optional[float],
    department: Optional[str],
) -> bool:
    value = trigger.value

    if trigger.type == TriggerType.KEYWORD:
        keywords = value if isinstance(value, list) else [value]
        return any(str(kw).lower() in text for kw in keywords)

    if trigger.type in SET_TYPES:
        subject = category if trigger.type == TriggerType.CATEGORY else department
        if not subject:
            return False
        subject = subject.lower()
        if trigger.operator == TriggerOperator.IN and isinstance(value, list):
            return subject in [str(v).lower() for v in value]
        if trigger.operator == TriggerOperator.EQUALS and isinstance(value, str):
            return subject == value.lower()
        return False

    if trigger.type in NUMERIC_TYPES:
        subject = amount if trigger.type == TriggerType.AMOUNT else risk_score
        if subject is None or isinstance(value, (list, str)):
            return False
        if trigger.operator == TriggerOperator.GREATER_THAN:
            return subject > value
        if trigger.operator == TriggerOperator.LESS_THAN:
            return subject < value
        if trigger.operator == TriggerOperator.EQUALS:
            return subject == value

    return False


# ---------------------------------------------------------------------------
# Default policies
# ---------------------------------------------------------------------------

def default_policies(now: datetime) -> list[VetoPolicy]:
    """The four standing gates seeded when nothing else is configured."""
    seeds = [
        dict(
            id="policy-security",
            name="Security Review Required",
            description="Proposals involving data, systems or infrastructure must pass CISO review",
            trigger_conditions=[
                VetoTrigger(
                    type=TriggerType.KEYWORD, operator=TriggerOperator.CONTAINS,
                    value=["data", "system", "api", "database", "cloud", "server"],
                    agent_to_notify=VetoAgentRole.CISO,
                ),
                VetoTrigger(
                    type=TriggerType.CATEGORY, operator=TriggerOperator.IN,
                    value=["infrastructure", "data", "integration"],
                    agent_to_notify=VetoAgentRole.CISO,
                ),
            ],
            required_agents=[VetoAgentRole.CISO],
            auto_veto_threshold=85,
            escalation_path=["ciso", "cto", "ceo"],
        ),
        dict(
            id="policy-compliance",
            name="Regulatory Compliance Gate",
            description="Proposals touching customer data or financial operations need compliance review",
            trigger_conditions=[
                VetoTrigger(
                    type=TriggerType.KEYWORD, operator=TriggerOperator.CONTAINS,
                    value=["customer", "pii", "financial", "payment", "gdpr", "hipaa"],
                    agent_to_notify=VetoAgentRole.COMPLIANCE,
                ),
                VetoTrigger(
                    type=TriggerType.AMOUNT, operator=TriggerOperator.GREATER_THAN,
                    value=100000, agent_to_notify=VetoAgentRole.COMPLIANCE,
                ),
            ],
            required_agents=[VetoAgentRole.COMPLIANCE, VetoAgentRole.LEGAL],
            auto_veto_threshold=80,
            escalation_path=["compliance", "legal", "ceo"],
        ),
        dict(
            id="policy-ethics",
            name="Ethics Review Gate",
            description="AI/ML decisions and workforce changes need ethics review",
            trigger_conditions=[
                VetoTrigger(
                    type=TriggerType.KEYWORD, operator=TriggerOperator.CONTAINS,
                    value=["ai", "ml", "algorithm", "automation", "layoff", "termination"],
                    agent_to_notify=VetoAgentRole.ETHICS,
                ),
                VetoTrigger(
                    type=TriggerType.CATEGORY, operator=TriggerOperator.IN,
                    value=["ai", "hr", "workforce"],
                    agent_to_notify=VetoAgentRole.ETHICS,
                ),
            ],
            required_agents=[VetoAgentRole.ETHICS],
            auto_veto_threshold=70,
            escalation_path=["ethics", "chro", "ceo"],
        ),
        dict(
            id="policy-financial",
            name="Financial Approval Gate",
            description="High-value proposals need CFO review",
            trigger_conditions=[
                VetoTrigger(
                    type=TriggerType.AMOUNT, operator=TriggerOperator.GREATER_THAN,
                    value=500000, agent_to_notify=VetoAgentRole.FINANCE,
                ),
                VetoTrigger(
                    type=TriggerType.KEYWORD, operator=TriggerOperator.CONTAINS,
                    value=["acquisition", "merger", "investment", "budget"],
                    agent_to_notify=VetoAgentRole.FINANCE,
                ),
            ],
            required_agents=[VetoAgentRole.FINANCE, VetoAgentRole.RISK],
            auto_veto_threshold=90,
            escalation_path=["finance", "ceo", "board"],
        ),
    ]
    return [VetoPolicy(created_at=now, updated_at=now, **fields) for fields in seeds]


# ---------------------------------------------------------------------------
# PolicyEngine
# ---------------------------------------------------------------------------

class PolicyEngine:
    """
    Holds the policy set and answers "who must review this?".

    Policies keep insertion order, so the returned role list is stable for
    a given configuration.
    """

    def __init__(
        self,
        policies: Optional[list[VetoPolicy]] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._clock = clock
        self._lock = threading.RLock()
        self._policies: dict[str, VetoPolicy] = {}
        self.replace_policies(policies or default_policies(clock()))

    def replace_policies(self, policies: list[VetoPolicy]) -> None:
        """Swap in a full policy set (used when a snapshot is loaded)."""
        for policy in policies:
            for trigger in policy.trigger_conditions:
                validate_trigger(trigger)
        with self._lock:
            self._policies = {p.id: p.model_copy(deep=True) for p in policies}

    def determine_required_reviewers(
        self,
        title: str,
        description: str,
        category: Optional[str] = None,
        amount: Optional[float] = None,
        risk_score: Optional[float] = None,
        department: Optional[str] = None,
    ) -> list[VetoAgentRole]:
        """
        Roles that must review the proposal. Never empty.

        risk_score and department triggers only fire when the caller
        supplies a value for them.
        """
        text = f"{title} {description}".lower()
        required: dict[VetoAgentRole, None] = {}

        with self._lock:
            policies = list(self._policies.values())

        for policy in policies:
            if not policy.is_active:
                continue
            for trigger in policy.trigger_conditions:
                if _trigger_matches(trigger, text, category, amount, risk_score, department):
                    required[trigger.agent_to_notify] = None

        if not required:
            required[FLOOR_ROLE] = None

        roles = list(required)
        log.debug("reviewers_determined", title=title, roles=[r.value for r in roles])
        return roles

    # ------------------------------------------------------------------
    # Policy management
    # ------------------------------------------------------------------

    def get_policies(self) -> list[VetoPolicy]:
        with self._lock:
            return [p.model_copy(deep=True) for p in self._policies.values()]

    def get_policy(self, policy_id: str) -> Optional[VetoPolicy]:
        with self._lock:
            policy = self._policies.get(policy_id)
            return policy.model_copy(deep=True) if policy is not None else None

    def create_policy(
        self,
        name: str,
        description: str,
        trigger_conditions: list[VetoTrigger | dict[str, Any]],
        required_agents: Optional[list[VetoAgentRole | str]] = None,
        auto_veto_threshold: int = 80,
        escalation_path: Optional[list[str]] = None,
        is_active: bool = True,
    ) -> VetoPolicy:
        """Validate and register a new policy. Raises ValidationError."""
        triggers = [validate_trigger(t) for t in trigger_conditions]
        try:
            roles = [VetoAgentRole(r) for r in (required_agents or [])]
        except ValueError as exc:
            raise ValidationError(f"Unknown reviewer role: {exc}") from exc
        if not 0 <= auto_veto_threshold <= 100:
            raise ValidationError("auto_veto_threshold must be between 0 and 100")

        now = self._clock()
        policy = VetoPolicy(
            id=f"policy-{uuid4().hex[:12]}",
            name=name,
            description=description,
            trigger_conditions=triggers,
            required_agents=roles,
            auto_veto_threshold=auto_veto_threshold,
            escalation_path=list(escalation_path or []),
            is_active=is_active,
            created_at=now,
            updated_at=now,
        )
        with self._lock:
            self._policies[policy.id] = policy

        log.info("policy_created", policy_id=policy.id, name=name, triggers=len(triggers))
        return policy.model_copy(deep=True)

    def toggle_policy(self, policy_id: str) -> VetoPolicy:
        """Flip is_active. Raises NotFoundError for unknown ids."""
        with self._lock:
            policy = self._policies.get(policy_id)
            if policy is None:
                raise NotFoundError("policy", policy_id)
            policy.is_active = not policy.is_active
            policy.updated_at = self._clock()
            result = policy.model_copy(deep=True)

        log.info("policy_toggled", policy_id=policy_id, is_active=result.is_active)
        return result
