"""
Chain Checksum

Fast, deterministic, non-cryptographic 256-bit digest used to link ledger
entries. Four independent passes run over the input, each carrying two
32-bit multiplicative rolling lanes with their own seeds; every lane is
finalized with the Murmur3 fmix32 mixer and emitted as 8 hex characters.

This is an integrity checksum, not a commitment: it detects accidental or
naive tampering with high probability but is not collision-resistant
against an adversary with a compute budget. Anything that must be
verifiable by a third party goes through provenance.signing instead.
"""

from __future__ import annotations

import json
from typing import Any

_MASK32 = 0xFFFFFFFF

FNV_PRIME = 0x01000193
MURMUR_M = 0x5BD1E995

# (fnv lane seed, murmur lane seed) per pass
PASS_SEEDS: tuple[tuple[int, int], ...] = (
    (0x811C9DC5, 0x9747B28C),
    (0x050C5D1F, 0x1B873593),
    (0xCC9E2D51, 0xE6546B64),
    (0x85EBCA6B, 0xC2B2AE35),
)

DIGEST_HEX_LENGTH = 64


def _fmix32(h: int) -> int:
    """Murmur3 32-bit finalizer (avalanche step)."""
    h ^= h >> 16
    h = (h * 0x85EBCA6B) & _MASK32
    h ^= h >> 13
    h = (h * 0xC2B2AE35) & _MASK32
    h ^= h >> 16
    return h


def _run_pass(data: bytes, fnv_seed: int, murmur_seed: int) -> tuple[int, int]:
    a = fnv_seed
    b = murmur_seed
    for byte in data:
        a ^= byte
        a = (a * FNV_PRIME) & _MASK32
        b = ((b ^ byte) * MURMUR_M) & _MASK32
        b ^= b >> 15
    # Fold in the length so inputs that differ only by trailing zero
    # bytes still diverge.
    length = len(data) & _MASK32
    return _fmix32(a ^ length), _fmix32(b ^ length)


def digest(data: bytes | str) -> str:
    """Return the 64-hex-char chain checksum of *data*.

    Args:
        data: Raw bytes, or a string which is UTF-8 encoded first.

    Returns:
        Lowercase hex string, 64 characters long.
    """
    if isinstance(data, str):
        data = data.encode("utf-8")

    groups: list[str] = []
    for fnv_seed, murmur_seed in PASS_SEEDS:
        a, b = _run_pass(data, fnv_seed, murmur_seed)
        groups.append(f"{a:08x}")
        groups.append(f"{b:08x}")
    return "".join(groups)


def canonical_json(payload: Any) -> str:
    """Serialize *payload* deterministically (sorted keys, compact)."""
    return json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str)
