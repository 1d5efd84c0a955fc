"""
Runtime configuration

All tunables are read from environment variables once, at import time,
with defaults suitable for a single-process development deployment.
"""

from __future__ import annotations

import os
from pathlib import Path

# ---------------------------------------------------------------------------
# Persistence
# ---------------------------------------------------------------------------
SNAPSHOT_BACKEND = os.environ.get("SNAPSHOT_BACKEND", "memory")

DB_CONFIG = {
    "host": os.environ.get("DB_HOST", "localhost"),
    "port": int(os.environ.get("DB_PORT", "5433")),
    "dbname": os.environ.get("DB_NAME", "provenance_core"),
    "user": os.environ.get("DB_USER", "admin"),
    "password": os.environ.get("DB_PASSWORD", "password123"),
}

LEDGER_SNAPSHOT_KEY = os.environ.get("LEDGER_SNAPSHOT_KEY", "provenance_ledger")
VETO_SNAPSHOT_KEY = os.environ.get("VETO_SNAPSHOT_KEY", "provenance_veto")

# ---------------------------------------------------------------------------
# Ledger
# ---------------------------------------------------------------------------
LEDGER_REJECT_ORPHANS = os.environ.get("LEDGER_REJECT_ORPHANS", "0") == "1"
RETENTION_PERIOD_DAYS = int(os.environ.get("RETENTION_PERIOD_DAYS", "2555"))

# ---------------------------------------------------------------------------
# Reviews
# ---------------------------------------------------------------------------
REASONING_URL = os.environ.get("REASONING_URL", "http://localhost:11434")
REASONING_MODEL = os.environ.get("REASONING_MODEL", "llama3.2:latest")
REASONING_TIMEOUT_SECONDS = float(os.environ.get("REASONING_TIMEOUT_SECONDS", "30"))
REVIEW_MAX_WORKERS = int(os.environ.get("REVIEW_MAX_WORKERS", "6"))

ESCALATION_INITIAL_TIMEOUT_SECONDS = int(
    os.environ.get("ESCALATION_INITIAL_TIMEOUT_SECONDS", "300")
)
ESCALATION_MAX_TIMEOUT_SECONDS = int(
    os.environ.get("ESCALATION_MAX_TIMEOUT_SECONDS", "3600")
)

# ---------------------------------------------------------------------------
# Attestation
# ---------------------------------------------------------------------------
ATTESTATION_KEY = os.environ.get("ATTESTATION_KEY", "dev-attestation-key-change-me")
SIGNING_TIMEOUT_SECONDS = float(os.environ.get("SIGNING_TIMEOUT_SECONDS", "5"))

# ---------------------------------------------------------------------------
# Gateway
# ---------------------------------------------------------------------------
IDENTITIES_PATH = Path(
    os.environ.get(
        "IDENTITIES_PATH",
        str(Path(__file__).resolve().parent / "identities.json"),
    )
)

LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")
LOG_FORMAT = os.environ.get("LOG_FORMAT", "console")
