#!/usr/bin/env python3
"""
Provenance -- End-to-End Demo Script

Walks through both halves of the core against a running gateway: a
decision lifecycle on the ledger, then a proposal that the compliance
reviewer hard-vetoes and a human override, and finally chain
verification.

Usage:
    1. uvicorn main:app --port 8000
    2. python scripts/demo.py

Requires: httpx
"""

from __future__ import annotations

import json
import os
import sys

import httpx

from provenance_sdk import ProvenanceClient

BASE_URL = os.environ.get("GATEWAY_URL", "http://localhost:8000")
APPROVER_API_KEY = os.environ.get("APPROVER_API_KEY", "approver-key-change-me")

# ---------------------------------------------------------------------------
# Terminal colors (ANSI)
# ---------------------------------------------------------------------------

class C:
    RESET   = "\033[0m"
    BOLD    = "\033[1m"
    DIM     = "\033[2m"
    RED     = "\033[91m"
    GREEN   = "\033[92m"
    YELLOW  = "\033[93m"
    CYAN    = "\033[96m"
    WHITE   = "\033[97m"


def banner(text: str):
    print()
    print(f"{C.CYAN}{C.BOLD}{'=' * 64}{C.RESET}")
    print(f"{C.CYAN}{C.BOLD}  {text}{C.RESET}")
    print(f"{C.CYAN}{C.BOLD}{'=' * 64}{C.RESET}")
    print()


def step(n: int, text: str):
    print(f"  {C.BOLD}{C.WHITE}[Step {n}]{C.RESET} {text}")


def ok(text: str):
    print(f"  {C.GREEN}{C.BOLD}OK{C.RESET} {text}")


def fail(text: str):
    print(f"  {C.RED}{C.BOLD}FAIL{C.RESET} {text}")
    sys.exit(1)


def info(text: str):
    print(f"  {C.DIM}{text}{C.RESET}")


def status_badge(status: str) -> str:
    color = {"approved": C.GREEN, "vetoed": C.RED}.get(status, C.YELLOW)
    return f"{color}{C.BOLD}[{status.upper()}]{C.RESET}"


def main():
    agent = ProvenanceClient(BASE_URL, actor_id="agent:strategy")
    board = ProvenanceClient(BASE_URL, actor_id="human:governance-board", api_key=APPROVER_API_KEY)

    banner("Provenance Core Demo")
    info(f"Gateway: {BASE_URL}")
    try:
        health = agent.health()
    except httpx.HTTPError as exc:
        fail(f"Gateway unreachable: {exc}")
    ok(f"Gateway {health.get('status', '?')}")

    # --- Decision lifecycle -------------------------------------------------
    banner("1. Decision lifecycle")

    step(1, "Propose 'Q1 Budget'")
    decision = agent.create_decision(
        "Q1 Budget", "Allocate the Q1 operating budget", agents=["agent:strategy"],
    )
    ok(f"decision_id={decision.decision_id}")

    step(2, "Vote approve at confidence 80")
    vote = agent.record_vote(decision.decision_id, "approve", 80, "Within plan")
    info(f"#{vote.sequence} {vote.event_type}  prev={vote.previous_hash[:16]}")

    step(3, "Finalize as approved at 85")
    final = agent.finalize(decision.decision_id, "approved", 85)
    info(f"#{final.sequence} {final.event_type}  hash={final.hash[:16]}")

    report = agent.export(decision.decision_id)
    ok(f"{report['entry_count']} entries exported, chain valid={report['chain_integrity']['valid']}")

    # --- Veto gate ----------------------------------------------------------
    banner("2. Veto gate")

    step(4, "Submit 'Delete customer PII records'")
    proposal = agent.submit_proposal(
        "Delete customer PII records", "Purge stale records from the CRM", amount=50000,
    )
    print(f"  {status_badge(proposal.status)}  required={proposal.required_roles}  "
          f"blocking={proposal.blocking_roles}")
    if proposal.status != "vetoed":
        fail("Expected a hard veto from the compliance reviewer")

    step(5, "Request an override")
    requested = agent.request_override(proposal.decision_id, "Records are past retention")
    print(f"  {status_badge(requested.status or '?')}")

    step(6, "Governance board approves the override")
    approved = board.approve_override(proposal.decision_id)
    if not approved.success:
        fail(f"Override not approved: {json.dumps(approved.raw)}")
    print(f"  {status_badge(approved.status or '?')}  "
          f"decided_by={approved.raw.get('decided_by')}")

    # --- Chain ----------------------------------------------------------------
    banner("3. Chain verification")
    chain = agent.verify_chain()
    if not chain.valid:
        fail(f"{chain.message} (sequence {chain.broken_at})")
    ok(chain.message)


if __name__ == "__main__":
    main()
