#!/usr/bin/env python3
"""
Provenance Approver Key Generator

Generates a new approver API key with a `prv_` prefix and prints:
  - The raw key (hand to the approver, store securely)
  - The SHA-256 fingerprint (store in provenance/identities.json)
  - A ready-to-paste JSON snippet for the "actors" map

Usage:  python scripts/keygen.py [actor_id] [role]
        actor_id defaults to "human:approver", role to "approver"
"""

from __future__ import annotations

import json
import secrets
import sys

from provenance.identity import APPROVER_ROLES, hash_api_key


def generate_key() -> str:
    """Return a `prv_` prefixed key with 32 bytes of URL-safe randomness."""
    return "prv_" + secrets.token_urlsafe(32)


def main():
    actor_id = sys.argv[1] if len(sys.argv) > 1 else "human:approver"
    role = sys.argv[2] if len(sys.argv) > 2 else "approver"
    if role not in APPROVER_ROLES:
        print(f"Role must be one of: {', '.join(sorted(APPROVER_ROLES))}")
        sys.exit(2)

    raw = generate_key()
    fp = hash_api_key(raw)

    print()
    print("=== Provenance Approver Key ===")
    print()
    print(f"  Actor ID:    {actor_id}")
    print(f"  Role:        {role}")
    print(f"  Raw Key:     {raw}")
    print(f"  Fingerprint: {fp}")
    print()
    print("--- Paste into provenance/identities.json under \"actors\" ---")
    entry = {actor_id: {"role": role, "status": "active", "key_fingerprint": fp}}
    print(json.dumps(entry, indent=2))
    print()


if __name__ == "__main__":
    main()
