"""Tests for the gateway HTTP surface."""

import pytest
from fastapi.testclient import TestClient

from provenance.ledger import LedgerStore

from conftest import ESCALATING_TITLE, PII_DESCRIPTION, PII_TITLE


def _create(client, title="Q1 Budget", proposed_by="agent:strategy"):
    resp = client.post("/decisions", json={
        "title": title,
        "description": "Allocate Q1 spend",
        "proposed_by": proposed_by,
        "agents": ["agent:finance-bot"],
    })
    assert resp.status_code == 201, resp.text
    return resp.json()


def _submit(client, title=PII_TITLE, description=PII_DESCRIPTION, **extra):
    resp = client.post("/veto/proposals", json={
        "title": title,
        "description": description,
        "submitted_by": "agent:strategy",
        **extra,
    })
    assert resp.status_code == 201, resp.text
    return resp.json()


class TestHealth:
    def test_health(self, client):
        resp = client.get("/health")
        assert resp.status_code == 200
        assert resp.json()["status"] == "operational"


class TestDecisions:
    def test_lifecycle(self, client):
        decision = _create(client)
        assert decision["status"] == "proposed"

        vote = client.post(f"/decisions/{decision['id']}/votes", json={
            "agent_id": "agent:finance-bot", "vote": "approve", "confidence": 80,
        })
        assert vote.status_code == 200
        assert vote.json()["event_type"] == "agent.voted"

        final = client.post(f"/decisions/{decision['id']}/finalize", json={
            "status": "approved", "final_confidence": 85,
        })
        assert final.status_code == 200

        entries = client.get(f"/decisions/{decision['id']}/entries").json()
        assert [e["event_type"] for e in entries] == [
            "decision.proposed", "agent.voted", "decision.approved",
        ]
        assert client.get(f"/decisions/{decision['id']}").json()["status"] == "approved"

        executed = client.post(f"/decisions/{decision['id']}/execute", json={"executed_by": "human:admin"})
        assert executed.status_code == 200

    def test_unknown_proposer_forbidden(self, client):
        resp = client.post("/decisions", json={
            "title": "x", "description": "", "proposed_by": "agent:nobody",
        })
        assert resp.status_code == 403

    def test_suspended_proposer_forbidden(self, client):
        resp = client.post("/decisions", json={
            "title": "x", "description": "", "proposed_by": "agent:retired",
        })
        assert resp.status_code == 403

    def test_unknown_decision(self, client):
        resp = client.get("/decisions/decision-missing")
        assert resp.status_code == 404
        assert "decision-missing" in resp.json()["error"]

    def test_finalize_non_terminal(self, client):
        decision = _create(client)
        resp = client.post(f"/decisions/{decision['id']}/finalize", json={
            "status": "voting", "final_confidence": 50,
        })
        assert resp.status_code == 422
        assert "error" in resp.json()

    def test_execute_before_approval(self, client):
        decision = _create(client)
        resp = client.post(f"/decisions/{decision['id']}/execute", json={"executed_by": "human:admin"})
        assert resp.status_code == 409
        assert resp.json()["current"] == "proposed"

    def test_deliberation_and_outcome(self, client):
        decision = _create(client)
        resp = client.post(f"/decisions/{decision['id']}/deliberations", json={
            "agent_id": "agent:finance-bot", "contribution": "Looks fine", "confidence_score": 60,
        })
        assert resp.json()["event_type"] == "agent.contributed"
        resp = client.post(f"/decisions/{decision['id']}/outcome", json={"outcome": "Spent"})
        assert resp.json()["event_type"] == "decision.outcome_recorded"

    def test_export(self, client):
        decision = _create(client)
        report = client.get(f"/decisions/{decision['id']}/export").json()
        assert report["chain_integrity"]["valid"] is True
        assert report["entry_count"] == 1
        assert "signature" not in report

        signed = client.get(f"/decisions/{decision['id']}/export", params={"signed": "true"}).json()
        assert signed["signature"].startswith("hmac-sha256:")


class TestAudits:
    def test_audit_flow(self, client):
        decision = _create(client)
        audit = client.post(f"/decisions/{decision['id']}/audits", json={
            "requested_by": "human:analyst", "reason": "Annual", "framework": "GDPR",
        })
        assert audit.status_code == 201
        audit_id = audit.json()["id"]

        base = f"/decisions/{decision['id']}/audits/{audit_id}"
        assert client.post(f"{base}/start", json={"auditor": "auditor:jane"}).json()["status"] == "in_progress"
        done = client.post(f"{base}/complete", json={"findings": [{
            "id": "f-1", "severity": "high", "category": "retention", "description": "Too long",
        }]})
        assert done.json()["status"] == "completed"
        assert client.get(f"/decisions/{decision['id']}").json()["compliance_status"] == "review_needed"

        again = client.post(f"{base}/fail", json={"reason": "late"})
        assert again.status_code == 409

    def test_unknown_audit(self, client):
        decision = _create(client)
        resp = client.post(f"/decisions/{decision['id']}/audits/audit-missing/start", json={"auditor": "a"})
        assert resp.status_code == 404


class TestLedger:
    def test_verify_and_metrics(self, client):
        _create(client)
        verify = client.get("/ledger/verify").json()
        assert verify["valid"] is True
        assert verify["entries_checked"] == 1

        metrics = client.get("/ledger/metrics").json()
        assert metrics["total_entries"] == 1
        assert metrics["chain_integrity"] == "valid"

    def test_entries_and_search(self, client):
        _create(client)
        _submit(client)
        proposed = client.get("/ledger/entries", params={"event_type": "decision.proposed"}).json()
        assert len(proposed) == 2

        entry_id = proposed[0]["id"]
        assert client.get(f"/ledger/entries/{entry_id}").json()["id"] == entry_id
        verified = client.post(f"/ledger/entries/{entry_id}/verify", json={"verified_by": "auditor:jane"})
        assert verified.json() == {"entry_id": entry_id, "valid": True}

    def test_unknown_entry(self, client):
        assert client.get("/ledger/entries/entry-missing").status_code == 404
        assert client.post("/ledger/entries/entry-missing/verify", json={}).status_code == 404

    def test_tampering_reported(self, client, ledger):
        _create(client)
        entry = ledger.get_all_entries()[0]
        ledger._entries[entry.id].data["proposed_by"] = "someone-else"

        verify = client.get("/ledger/verify").json()
        assert verify["valid"] is False
        assert verify["broken_at"] == entry.sequence


class TestVeto:
    def test_pii_vetoed(self, client):
        proposal = _submit(client, amount=50000)
        assert proposal["status"] == "vetoed"
        assert proposal["required_roles"] == ["compliance"]
        assert proposal["reviews"][0]["is_blocking"] is True

        vetoed = client.get("/veto/proposals/vetoed").json()
        assert [p["id"] for p in vetoed] == [proposal["id"]]

    def test_unknown_submitter_forbidden(self, client):
        resp = client.post("/veto/proposals", json={
            "title": "x", "description": "", "submitted_by": "agent:nobody",
        })
        assert resp.status_code == 403

    def test_override_flow(self, client, approver_headers):
        proposal = _submit(client)
        pid = proposal["id"]

        requested = client.post(f"/veto/proposals/{pid}/override", json={
            "requested_by": "agent:strategy", "reason": "Past retention",
        })
        assert requested.status_code == 200
        assert requested.json()["status"] == "override_requested"

        approved = client.post(f"/veto/proposals/{pid}/override/approve", headers=approver_headers)
        assert approved.status_code == 200
        assert approved.json()["status"] == "approved"
        assert approved.json()["decided_by"] == "human:governance-board"

    def test_override_needs_bearer(self, client):
        proposal = _submit(client)
        pid = proposal["id"]
        client.post(f"/veto/proposals/{pid}/override", json={
            "requested_by": "agent:strategy", "reason": "Past retention",
        })

        assert client.post(f"/veto/proposals/{pid}/override/approve").status_code == 422
        bad = client.post(
            f"/veto/proposals/{pid}/override/approve",
            headers={"Authorization": "Bearer wrong"},
        )
        assert bad.status_code == 401
        not_bearer = client.post(
            f"/veto/proposals/{pid}/override/approve",
            headers={"Authorization": "Basic abc"},
        )
        assert not_bearer.status_code == 401
        assert client.get(f"/veto/proposals/{pid}").json()["status"] == "override_requested"

    def test_override_wrong_state(self, client, approver_headers):
        proposal = _submit(client, title="Team offsite", description="")
        resp = client.post(f"/veto/proposals/{proposal['id']}/override/approve", headers=approver_headers)
        assert resp.status_code == 409
        assert resp.json()["status"] == "approved"

        resp = client.post(f"/veto/proposals/{proposal['id']}/override", json={
            "requested_by": "agent:strategy", "reason": "x",
        })
        assert resp.status_code == 409

    def test_override_deny(self, client, admin_headers):
        pid = _submit(client)["id"]
        client.post(f"/veto/proposals/{pid}/override", json={
            "requested_by": "agent:strategy", "reason": "Please",
        })
        denied = client.post(f"/veto/proposals/{pid}/override/deny", headers=admin_headers)
        assert denied.json()["status"] == "vetoed"

    def test_override_empty_reason(self, client):
        pid = _submit(client)["id"]
        resp = client.post(f"/veto/proposals/{pid}/override", json={
            "requested_by": "agent:strategy", "reason": "",
        })
        assert resp.status_code == 422

    def test_override_unknown_proposal(self, client, approver_headers):
        resp = client.post("/veto/proposals/veto-missing/override/approve", headers=approver_headers)
        assert resp.status_code == 404

    def test_escalation_resolved(self, client, admin_headers):
        proposal = _submit(client, title=ESCALATING_TITLE, description="")
        assert proposal["status"] == "escalated"
        assert [p["id"] for p in client.get("/veto/proposals/pending").json()] == [proposal["id"]]

        summary = client.get("/veto/escalations/summary").json()
        assert summary["pending"] == 1

        resolved = client.post(
            f"/veto/proposals/{proposal['id']}/resolve",
            json={"resolution": "approved", "reason": "Accepted"},
            headers=admin_headers,
        )
        assert resolved.status_code == 200
        assert resolved.json()["decided_by"] == "human:admin"

        assert client.post("/veto/escalations/expire").json() == {"auto_vetoed": []}

    def test_review_and_evaluate(self, client):
        proposal = _submit(client, title=ESCALATING_TITLE, description="")
        review = client.post(f"/veto/proposals/{proposal['id']}/reviews", json={"role": "ethics"})
        assert review.status_code == 201
        assert review.json()["is_blocking"] is True

        evaluated = client.post(f"/veto/proposals/{proposal['id']}/evaluate").json()
        assert evaluated["status"] == "vetoed"


    def test_review_on_decided_proposal(self, client):
        proposal = _submit(client)
        resp = client.post(f"/veto/proposals/{proposal['id']}/reviews", json={"role": "legal"})
        assert resp.status_code == 409
        assert resp.json()["current"] == "vetoed"
        assert len(client.get(f"/veto/proposals/{proposal['id']}").json()["reviews"]) == 1


class TestWiring:
    def test_engine_brings_its_ledger(self, engine, ledger):
        from main import create_app
        client = TestClient(create_app(engine=engine))

        _create(client)
        _submit(client)
        assert ledger.get_metrics().total_entries == 4
        assert client.get("/ledger/verify").json()["entries_checked"] == 4

    def test_mismatched_ledger_rejected(self, engine, clock):
        from main import create_app
        with pytest.raises(ValueError):
            create_app(ledger=LedgerStore(clock=clock), engine=engine)


class TestRegistryAndPolicies:
    def test_agents(self, client):
        agents = client.get("/veto/agents").json()
        assert len(agents) == 6
        compliance = next(a for a in agents if a["role"] == "compliance")
        assert compliance["veto_threshold"] == 65

    def test_policies(self, client):
        assert len(client.get("/veto/policies").json()) == 4

        created = client.post("/veto/policies", json={
            "name": "Vendor gate",
            "description": "",
            "trigger_conditions": [{
                "type": "keyword", "operator": "contains",
                "value": ["vendor"], "agent_to_notify": "legal",
            }],
            "required_agents": ["legal"],
        })
        assert created.status_code == 201
        proposal = _submit(client, title="Onboard new vendor", description="")
        assert proposal["required_roles"] == ["legal"]

        toggled = client.post(f"/veto/policies/{created.json()['id']}/toggle")
        assert toggled.json()["is_active"] is False

    def test_invalid_policy(self, client):
        resp = client.post("/veto/policies", json={
            "name": "Broken",
            "description": "",
            "trigger_conditions": [{
                "type": "amount", "operator": "contains",
                "value": 5, "agent_to_notify": "finance",
            }],
        })
        assert resp.status_code == 422
        assert "error" in resp.json()

    def test_toggle_unknown(self, client):
        assert client.post("/veto/policies/policy-missing/toggle").status_code == 404

    def test_metrics(self, client):
        _submit(client)
        metrics = client.get("/veto/metrics").json()
        assert metrics["total_proposals"] == 1
        assert metrics["vetoed_proposals"] == 1
        assert metrics["vetoes_by_agent"]["compliance"] == 1
