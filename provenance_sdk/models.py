"""
Provenance SDK -- Data Models
"""

from __future__ import annotations

from pydantic import BaseModel


class ProposalResult(BaseModel):
    """Result of submitting or fetching a veto proposal."""
    decision_id: str
    status: str             # pending | approved | vetoed | override_requested | escalated
    final_decision: str | None = None
    required_roles: list[str] = []
    blocking_roles: list[str] = []
    raw: dict               # full response body


class OverrideResult(BaseModel):
    """Result of an override or escalation call."""
    success: bool
    status: str | None = None
    raw: dict               # full response body


class DecisionResult(BaseModel):
    """Result of POST /decisions."""
    decision_id: str
    status: str
    raw: dict


class EntryResult(BaseModel):
    """A ledger entry appended by a lifecycle call."""
    entry_id: str
    sequence: int
    event_type: str
    hash: str
    previous_hash: str
    raw: dict


class ChainResult(BaseModel):
    """Result of GET /ledger/verify."""
    valid: bool
    entries_checked: int
    message: str
    broken_at: int | None = None
    broken_entry_id: str | None = None
