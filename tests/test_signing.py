"""Tests for export attestation."""

import asyncio

from provenance.signing import Sha256Attestor, sha256_hex


class TestSha256Attestor:
    def test_sign_and_verify(self):
        attestor = Sha256Attestor("secret")
        signature = asyncio.run(attestor.sign(b"report"))
        assert signature.startswith("hmac-sha256:")
        assert asyncio.run(attestor.verify(b"report", signature))

    def test_tampered_payload(self):
        attestor = Sha256Attestor("secret")
        signature = asyncio.run(attestor.sign(b"report"))
        assert not asyncio.run(attestor.verify(b"report!", signature))

    def test_other_key(self):
        signature = asyncio.run(Sha256Attestor("secret").sign(b"report"))
        assert not asyncio.run(Sha256Attestor("other").verify(b"report", signature))

    def test_foreign_signature_format(self):
        assert not asyncio.run(Sha256Attestor("secret").verify(b"report", "kms:abc"))

    def test_bytes_key(self):
        a = asyncio.run(Sha256Attestor(b"secret").sign(b"x"))
        b = asyncio.run(Sha256Attestor("secret").sign(b"x"))
        assert a == b


def test_sha256_hex():
    assert sha256_hex("abc") == "ba7816bf8f01cfea414140de5dae2223b00361a396177a9cb410ff61f20015ad"
    assert sha256_hex(b"abc") == sha256_hex("abc")
