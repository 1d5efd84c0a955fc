"""
Provenance SDK -- Client
Thin synchronous wrapper over the provenance gateway.
"""

from __future__ import annotations

from typing import Any, Optional

import httpx

from provenance_sdk.models import (
    ChainResult,
    DecisionResult,
    EntryResult,
    OverrideResult,
    ProposalResult,
)


class ProvenanceClient:
    """
    Client for the provenance gateway.

    Submits proposals for veto review, drives decisions through their
    lifecycle, and (with an approver key) settles overrides and
    escalations.
    """

    def __init__(
        self,
        gateway_url: str,
        actor_id: str,
        api_key: str | None = None,
        timeout: float = 10.0,
        http_client: httpx.Client | None = None,
    ):
        """
        Args:
            gateway_url: Base URL of the gateway (e.g. "http://localhost:8000")
            actor_id: Identity recorded on every call (e.g. "agent:strategy")
            api_key: Bearer key for override / escalation decisions
            timeout: HTTP request timeout in seconds
            http_client: Pre-built client (e.g. a FastAPI TestClient)
        """
        self.gateway_url = gateway_url.rstrip("/")
        self.actor_id = actor_id
        self.api_key = api_key
        self._client = http_client or httpx.Client(timeout=timeout)

    def _url(self, path: str) -> str:
        return f"{self.gateway_url}{path}"

    def _auth_headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.api_key}"}

    # ------------------------------------------------------------------
    # Veto proposals
    # ------------------------------------------------------------------

    @staticmethod
    def _proposal(body: dict[str, Any]) -> ProposalResult:
        return ProposalResult(
            decision_id=body.get("id", ""),
            status=body.get("status", "unknown"),
            final_decision=body.get("final_decision"),
            required_roles=body.get("required_roles", []),
            blocking_roles=[
                r["agent_role"] for r in body.get("reviews", []) if r.get("is_blocking")
            ],
            raw=body,
        )

    def submit_proposal(
        self,
        title: str,
        description: str,
        category: Optional[str] = None,
        amount: Optional[float] = None,
    ) -> ProposalResult:
        """
        Submit a proposal for veto review.

        Returns:
            ProposalResult with the aggregated status and blocking roles.
        """
        resp = self._client.post(
            self._url("/veto/proposals"),
            json={
                "title": title,
                "description": description,
                "submitted_by": self.actor_id,
                "category": category,
                "amount": amount,
            },
        )
        resp.raise_for_status()
        return self._proposal(resp.json())

    def get_proposal(self, decision_id: str) -> ProposalResult:
        resp = self._client.get(self._url(f"/veto/proposals/{decision_id}"))
        resp.raise_for_status()
        return self._proposal(resp.json())

    def _settle(self, path: str, **kwargs: Any) -> OverrideResult:
        resp = self._client.post(self._url(path), **kwargs)
        body = resp.json()
        return OverrideResult(
            success=resp.status_code == 200,
            status=body.get("status"),
            raw=body,
        )

    def request_override(self, decision_id: str, reason: str) -> OverrideResult:
        return self._settle(
            f"/veto/proposals/{decision_id}/override",
            json={"requested_by": self.actor_id, "reason": reason},
        )

    def approve_override(self, decision_id: str) -> OverrideResult:
        """Approve a pending override. Requires api_key on the client."""
        if not self.api_key:
            return OverrideResult(
                success=False,
                raw={"error": "No api_key configured on client."},
            )
        return self._settle(
            f"/veto/proposals/{decision_id}/override/approve",
            headers=self._auth_headers(),
        )

    def deny_override(self, decision_id: str) -> OverrideResult:
        if not self.api_key:
            return OverrideResult(
                success=False,
                raw={"error": "No api_key configured on client."},
            )
        return self._settle(
            f"/veto/proposals/{decision_id}/override/deny",
            headers=self._auth_headers(),
        )

    def resolve_escalation(
        self,
        decision_id: str,
        resolution: str,
        reason: str = "",
    ) -> OverrideResult:
        if not self.api_key:
            return OverrideResult(
                success=False,
                raw={"error": "No api_key configured on client."},
            )
        return self._settle(
            f"/veto/proposals/{decision_id}/resolve",
            json={"resolution": resolution, "reason": reason},
            headers=self._auth_headers(),
        )

    # ------------------------------------------------------------------
    # Decision lifecycle
    # ------------------------------------------------------------------

    @staticmethod
    def _entry(body: dict[str, Any]) -> EntryResult:
        return EntryResult(
            entry_id=body["id"],
            sequence=body["sequence"],
            event_type=body["event_type"],
            hash=body["hash"],
            previous_hash=body["previous_hash"],
            raw=body,
        )

    def create_decision(
        self,
        title: str,
        description: str,
        agents: Optional[list[str]] = None,
    ) -> DecisionResult:
        resp = self._client.post(
            self._url("/decisions"),
            json={
                "title": title,
                "description": description,
                "proposed_by": self.actor_id,
                "agents": agents or [],
            },
        )
        resp.raise_for_status()
        body = resp.json()
        return DecisionResult(decision_id=body["id"], status=body["status"], raw=body)

    def record_vote(
        self,
        decision_id: str,
        vote: str,
        confidence: float,
        reasoning: str = "",
    ) -> EntryResult:
        resp = self._client.post(
            self._url(f"/decisions/{decision_id}/votes"),
            json={
                "agent_id": self.actor_id,
                "vote": vote,
                "confidence": confidence,
                "reasoning": reasoning,
            },
        )
        resp.raise_for_status()
        return self._entry(resp.json())

    def finalize(self, decision_id: str, status: str, final_confidence: float) -> EntryResult:
        resp = self._client.post(
            self._url(f"/decisions/{decision_id}/finalize"),
            json={"status": status, "final_confidence": final_confidence},
        )
        resp.raise_for_status()
        return self._entry(resp.json())

    def export(self, decision_id: str, signed: bool = False) -> dict:
        resp = self._client.get(
            self._url(f"/decisions/{decision_id}/export"),
            params={"signed": str(signed).lower()},
        )
        resp.raise_for_status()
        return resp.json()

    # ------------------------------------------------------------------
    # Ledger
    # ------------------------------------------------------------------

    def verify_chain(self) -> ChainResult:
        resp = self._client.get(self._url("/ledger/verify"))
        resp.raise_for_status()
        body = resp.json()
        return ChainResult(
            valid=body["valid"],
            entries_checked=body["entries_checked"],
            message=body["message"],
            broken_at=body.get("broken_at"),
            broken_entry_id=body.get("broken_entry_id"),
        )

    def health(self) -> dict:
        """Check gateway health via GET /health."""
        resp = self._client.get(self._url("/health"))
        return resp.json()
