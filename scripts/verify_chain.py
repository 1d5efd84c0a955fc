#!/usr/bin/env python3
"""
Ledger Chain Verifier

Loads the persisted ledger snapshot, recomputes every entry's checksum
outside of the LedgerStore, and confirms the chain has not been tampered
with. Exits 1 on the first broken link.

Usage:  SNAPSHOT_BACKEND=postgres python scripts/verify_chain.py
"""

from __future__ import annotations

import sys

from provenance import config
from provenance.checksum import canonical_json, digest
from provenance.errors import PersistenceError
from provenance.models import GENESIS_HASH, LedgerSnapshot
from provenance.persistence import build_snapshot_store


def verify() -> bool:
    store = build_snapshot_store(config.SNAPSHOT_BACKEND)
    try:
        raw = store.load(config.LEDGER_SNAPSHOT_KEY)
    except PersistenceError as exc:
        print(f"Cannot load ledger snapshot: {exc}")
        return False

    if raw is None:
        print("Ledger is empty -- nothing to verify.")
        return True

    entries = sorted(LedgerSnapshot.model_validate(raw).entries, key=lambda e: e.sequence)
    print(f"Verifying chain of {len(entries)} entr{'y' if len(entries) == 1 else 'ies'}...\n")

    previous_hash = GENESIS_HASH
    for entry in entries:
        expected = digest(canonical_json(entry.hash_material()))
        linked = entry.previous_hash == previous_hash
        intact = entry.hash == expected

        status = "OK" if linked and intact else "TAMPERED"
        print(f"  [{status}] #{entry.sequence}: {entry.event_type.value}")
        print(f"         Decision: {entry.decision_id}")
        print(f"         Hash:     {entry.hash[:32]}...")
        print(f"         PrevHash: {entry.previous_hash[:32]}")
        if not linked:
            print(f"         EXPECTED PREV: {previous_hash[:32]}")
        if not intact:
            print(f"         EXPECTED: {expected[:32]}...")
        print()

        if status == "TAMPERED":
            print(f"CHAIN INTEGRITY: BROKEN at sequence {entry.sequence}")
            return False
        previous_hash = entry.hash

    print(f"CHAIN INTEGRITY: VALID -- all {len(entries)} entries verified.")
    return True


if __name__ == "__main__":
    sys.exit(0 if verify() else 1)
