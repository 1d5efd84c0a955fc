"""
Identity Validation Module

Actor allowlist for the gateway. Mutating ledger calls accept any active
actor; override and escalation decisions need a human approver who
authenticates with a Bearer key whose SHA-256 fingerprint is on file.
"""

from __future__ import annotations

import hashlib
import hmac
import json
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from provenance import config


# ---------------------------------------------------------------------------
# Domain types
# ---------------------------------------------------------------------------

APPROVER_ROLES = {"admin", "approver"}


@dataclass
class Identity:
    actor_id: str
    role: str
    status: str
    key_fingerprint: Optional[str] = None

    @property
    def can_approve(self) -> bool:
        return self.role in APPROVER_ROLES


# ---------------------------------------------------------------------------
# Identity loading
# ---------------------------------------------------------------------------

_cache: dict[str, Identity] | None = None
_cache_path: Path | None = None
_lock = threading.Lock()


def load_identities(path: Path | None = None) -> dict[str, Identity]:
    """Load the actor allowlist (cached per path)."""
    global _cache, _cache_path
    path = Path(path or config.IDENTITIES_PATH)
    with _lock:
        if _cache is not None and _cache_path == path:
            return _cache
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
        result: dict[str, Identity] = {}
        for actor_id, info in data["actors"].items():
            result[actor_id] = Identity(
                actor_id=actor_id,
                role=info["role"],
                status=info["status"],
                key_fingerprint=info.get("key_fingerprint"),
            )
        _cache = result
        _cache_path = path
        return result


def reload_identities(path: Path | None = None) -> dict[str, Identity]:
    """Force reload from disk (useful after identity changes)."""
    global _cache
    with _lock:
        _cache = None
    return load_identities(path)


# ---------------------------------------------------------------------------
# Validation helpers
# ---------------------------------------------------------------------------

def validate_actor(actor_id: str) -> Identity:
    """Validate actor_id exists and is active. Raises ValueError if not."""
    identities = load_identities()
    if actor_id not in identities:
        raise ValueError(f"Unknown actor: {actor_id}")
    identity = identities[actor_id]
    if identity.status != "active":
        raise ValueError(f"Actor {actor_id} is {identity.status}")
    return identity


# ---------------------------------------------------------------------------
# API-key authentication
# ---------------------------------------------------------------------------

def hash_api_key(raw_key: str) -> str:
    """Return ``sha256:<hex>`` fingerprint of a raw API key."""
    digest = hashlib.sha256(raw_key.encode()).hexdigest()
    return f"sha256:{digest}"


def authenticate_approver(bearer_token: str) -> Identity:
    """Resolve a Bearer token to an active approver Identity.

    Every approver fingerprint is compared (timing-safe) against the hash
    of the token. Raises ValueError when nothing matches.
    """
    token_fp = hash_api_key(bearer_token)

    for identity in load_identities().values():
        if identity.key_fingerprint is None or not identity.can_approve:
            continue
        if hmac.compare_digest(token_fp, identity.key_fingerprint):
            if identity.status != "active":
                raise ValueError(f"Identity {identity.actor_id} is {identity.status}")
            return identity

    raise ValueError("Invalid API key: no matching identity found")
