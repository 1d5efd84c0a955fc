"""
Attestation signing

Cryptographic digest for externally verifiable material (audit exports).
It never sits on the ledger append path. Production deployments are
expected to swap the local HMAC key for a KMS-backed signer exposing the
same two coroutines.
"""

from __future__ import annotations

import asyncio
import hashlib
import hmac
from typing import Protocol

from provenance import config


class Attestor(Protocol):
    async def sign(self, payload: bytes) -> str: ...

    async def verify(self, payload: bytes, signature: str) -> bool: ...


def sha256_hex(payload: bytes | str) -> str:
    """Plain SHA-256 of *payload* as hex."""
    if isinstance(payload, str):
        payload = payload.encode("utf-8")
    return hashlib.sha256(payload).hexdigest()


class Sha256Attestor:
    """HMAC-SHA-256 signer with a locally configured key.

    Signatures are formatted as ``hmac-sha256:<hex>`` so a verifier can
    tell them apart from KMS-issued material.
    """

    PREFIX = "hmac-sha256:"

    def __init__(self, key: str | bytes = config.ATTESTATION_KEY):
        self._key = key.encode("utf-8") if isinstance(key, str) else key

    def _mac(self, payload: bytes) -> str:
        return hmac.new(self._key, payload, hashlib.sha256).hexdigest()

    async def sign(self, payload: bytes) -> str:
        mac = await asyncio.to_thread(self._mac, payload)
        return f"{self.PREFIX}{mac}"

    async def verify(self, payload: bytes, signature: str) -> bool:
        if not signature.startswith(self.PREFIX):
            return False
        expected = await self.sign(payload)
        return hmac.compare_digest(expected, signature)
