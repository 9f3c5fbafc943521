"""Shared fixtures for provsig tests."""

from __future__ import annotations

import hashlib

import pytest

from provsig.manifest import PayloadBuilder, SignedPayload
from provsig.publisher import Publisher
from provsig.registry import MemoryRegistry
from provsig.signing import Ed25519Checker, Ed25519Signer, generate_keys
from provsig.verifier import Verifier

SUBJECT = "registry.example/team/app:v1"
SUBJECT_DIGEST = "sha256:" + hashlib.sha256(b"subject image manifest").hexdigest()
SUBJECT_HEX = SUBJECT_DIGEST.split(":", 1)[1]
PINNED_SUBJECT = f"registry.example/team/app@{SUBJECT_DIGEST}"

PROVENANCE = {
    "taskRun": "build-app-x7k2p",
    "steps": [{"name": "compile", "image": "golang:1.21"}, {"name": "push"}],
    "params": {"revision": "4f1c2e9", "dockerfile": "Dockerfile"},
}


@pytest.fixture
def keypair() -> tuple[bytes, bytes]:
    return generate_keys()


@pytest.fixture
def signer(keypair) -> Ed25519Signer:
    return Ed25519Signer(keypair[0])


@pytest.fixture
def checker(keypair) -> Ed25519Checker:
    return Ed25519Checker(keypair[1])


@pytest.fixture
def registry() -> MemoryRegistry:
    reg = MemoryRegistry()
    reg.add_image(SUBJECT, SUBJECT_DIGEST)
    return reg


@pytest.fixture
def builder() -> PayloadBuilder:
    return PayloadBuilder(builder_version="1.2.3")


@pytest.fixture
def publisher(registry) -> Publisher:
    return Publisher(registry)


@pytest.fixture
def verifier(registry, checker) -> Verifier:
    return Verifier(registry, checker)


@pytest.fixture
def signed_payload(builder, signer) -> SignedPayload:
    payload = builder.build(SUBJECT, SUBJECT_DIGEST, PROVENANCE)
    return SignedPayload(payload=payload, signature=signer.sign(payload.data))
