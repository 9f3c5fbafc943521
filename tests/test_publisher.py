"""Tests for the publisher and the full sign path."""

from __future__ import annotations

import hashlib
from pathlib import Path

import pytest

from provsig.errors import AuthFailure, DigestMismatch, MalformedInput, NetworkFailure, SigningUnavailable
from provsig.manifest import SignedPayload
from provsig.packaging import extract_layer, unpack_bundle
from provsig.publisher import Publisher, attach_signature
from provsig.registry import Credentials, MemoryRegistry, StaticCredentialProvider
from provsig.signing import Ed25519Signer
from tests.conftest import PROVENANCE, SUBJECT, SUBJECT_DIGEST, SUBJECT_HEX

SIG_REF = f"registry.example/team/app:{SUBJECT_HEX}.sig"


class StubRegistry(MemoryRegistry):
    """Memory registry returning a fixed resolve result."""

    def __init__(self, resolved: str | Exception):
        super().__init__()
        self.resolved = resolved

    def resolve_digest(self, reference, credentials=None):
        if isinstance(self.resolved, Exception):
            raise self.resolved
        return self.resolved


class TestPublisher:
    """Test publishing signed payloads."""

    def test_publish_pushes_to_derived_tag(self, publisher, registry, signed_payload, tmp_path: Path):
        result = publisher.publish(SUBJECT, signed_payload)

        assert result.signature_reference == SIG_REF
        assert result.subject_digest == SUBJECT_DIGEST
        assert registry.pushes == [SIG_REF]

        tarball = registry.pull(SIG_REF, tmp_path / "img.tar")
        assert unpack_bundle(extract_layer(tarball)) == (signed_payload.signature, signed_payload.body)

    def test_stale_digest_pushes_nothing(self, publisher, registry, signed_payload):
        registry.add_image(SUBJECT, "sha256:" + hashlib.sha256(b"rebuilt").hexdigest())

        with pytest.raises(DigestMismatch):
            publisher.publish(SUBJECT, signed_payload)
        assert registry.pushes == []

    @pytest.mark.parametrize("resolved", ["", "sha256:short", "latest", "md5:" + "0" * 32])
    def test_malformed_resolved_digest(self, signed_payload, resolved):
        registry = StubRegistry(resolved)
        with pytest.raises(DigestMismatch):
            Publisher(registry).publish(SUBJECT, signed_payload)
        assert registry.pushes == []

    def test_network_failure_propagates(self, signed_payload):
        registry = StubRegistry(NetworkFailure("connection refused"))
        with pytest.raises(NetworkFailure):
            Publisher(registry).publish(SUBJECT, signed_payload)

    def test_auth_failure_propagates(self, signed_payload):
        registry = MemoryRegistry(required_credentials=Credentials("ci", "token"))
        registry.add_image(SUBJECT, SUBJECT_DIGEST)
        with pytest.raises(AuthFailure):
            Publisher(registry).publish(SUBJECT, signed_payload)

    def test_uses_credential_provider(self, signed_payload):
        creds = Credentials("ci", "token")
        registry = MemoryRegistry(required_credentials=creds)
        registry.add_image(SUBJECT, SUBJECT_DIGEST)
        publisher = Publisher(registry, StaticCredentialProvider({"registry.example": creds}))

        publisher.publish(SUBJECT, signed_payload)
        assert registry.pushes == [SIG_REF]

    def test_explicit_credentials_win(self, signed_payload):
        creds = Credentials("ci", "token")
        registry = MemoryRegistry(required_credentials=creds)
        registry.add_image(SUBJECT, SUBJECT_DIGEST)

        Publisher(registry).publish(SUBJECT, signed_payload, credentials=creds)
        assert registry.pushes == [SIG_REF]

    def test_malformed_reference(self, publisher, signed_payload):
        with pytest.raises(MalformedInput):
            publisher.publish("Bad Reference", signed_payload)

    def test_republish_overwrites_same_tag(self, publisher, registry, signed_payload, tmp_path: Path):
        publisher.publish(SUBJECT, signed_payload)
        second = SignedPayload(payload=signed_payload.payload, signature=b"re-signed")
        publisher.publish(SUBJECT, second)

        assert registry.pushes == [SIG_REF, SIG_REF]
        tarball = registry.pull(SIG_REF, tmp_path / "img.tar")
        assert unpack_bundle(extract_layer(tarball))[0] == b"re-signed"


class TestAttachSignature:
    """Test the composed sign path."""

    def test_signs_live_digest(self, publisher, registry, signer, checker, builder, tmp_path: Path):
        result = attach_signature(SUBJECT, signer, publisher, builder, PROVENANCE)

        assert result.signature_reference == SIG_REF
        signature, body = unpack_bundle(extract_layer(registry.pull(SIG_REF, tmp_path / "img.tar")))
        checker.verify(body, signature)
        assert SUBJECT_DIGEST.encode() in body

    def test_signing_failure_pushes_nothing(self, publisher, registry, monkeypatch):
        monkeypatch.delenv("PROVSIG_SIGNING_PRIVATE_KEY", raising=False)
        with pytest.raises(SigningUnavailable):
            attach_signature(SUBJECT, Ed25519Signer(), publisher)
        assert registry.pushes == []
