"""Pytest configuration and fixtures for the provenance core tests."""

import os
import threading
from datetime import datetime, timedelta, timezone

import pytest

# Keep the module-level gateway app off PostgreSQL
os.environ["SNAPSHOT_BACKEND"] = "memory"
os.environ["LOG_FORMAT"] = "console"

from provenance.compliance import ComplianceAuditor
from provenance.ledger import LedgerStore
from provenance.lifecycle import DecisionLifecycle
from provenance.persistence import InMemorySnapshotStore
from provenance.signing import Sha256Attestor
from provenance.veto_engine import VetoEngine

ADMIN_KEY = "test-key-change-me"
APPROVER_KEY = "approver-key-change-me"

PII_TITLE = "Delete customer PII records"
PII_DESCRIPTION = "Purge stale records from the CRM"

# Routed to the risk reviewer only; scores 85, which the risk role cannot block
ESCALATING_TITLE = "Remove public media page"


class TickingClock:
    """Monotonic test clock: every call returns the next instant.

    Starts at wall-clock time so liveness windows computed against the real
    clock still see fresh escalations.
    """

    def __init__(self, start=None, step=timedelta(seconds=1)):
        self.current = start or datetime.now(timezone.utc).replace(microsecond=0)
        self.step = step
        self._lock = threading.Lock()

    def __call__(self) -> datetime:
        with self._lock:
            now = self.current
            self.current = now + self.step
            return now

    def advance(self, **kwargs):
        with self._lock:
            self.current += timedelta(**kwargs)


@pytest.fixture
def clock():
    return TickingClock()


@pytest.fixture
def snapshot_store():
    return InMemorySnapshotStore()


@pytest.fixture
def ledger(clock):
    """Fresh in-memory ledger that accepts orphan entries."""
    return LedgerStore(clock=clock, reject_orphans=False)


@pytest.fixture
def lifecycle(ledger):
    return DecisionLifecycle(ledger)


@pytest.fixture
def auditor(ledger):
    return ComplianceAuditor(ledger)


@pytest.fixture
def engine(ledger, clock):
    """Veto engine on the deterministic fallback reviewer."""
    return VetoEngine(ledger, clock=clock, review_timeout=2.0)


@pytest.fixture
def app(ledger, engine):
    from main import create_app
    return create_app(ledger=ledger, engine=engine, attestor=Sha256Attestor("test-attestation"))


@pytest.fixture
def client(app):
    from fastapi.testclient import TestClient
    return TestClient(app)


@pytest.fixture
def approver_headers():
    return {"Authorization": f"Bearer {APPROVER_KEY}"}


@pytest.fixture
def admin_headers():
    return {"Authorization": f"Bearer {ADMIN_KEY}"}
