"""Publishing signature sidecars to a registry.

The tag a sidecar is pushed to is always derived from the subject digest as
freshly resolved from the registry, never from a digest the caller hands in.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from provsig.errors import DigestMismatch, MalformedInput
from provsig.manifest import PayloadBuilder, SignedPayload
from provsig.packaging import package
from provsig.reference import Digest, ImageReference, derive_signature_reference
from provsig.registry.base import Credentials, RegistryClient
from provsig.registry.credentials import AnonymousCredentialProvider, CredentialProvider
from provsig.signing import Signer

logger = logging.getLogger(__name__)


@dataclass
class PublishResult:
    """Outcome of a successful publish."""

    subject_reference: str
    subject_digest: str
    signature_reference: str
    artifact_digest: str

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "subject_reference": self.subject_reference,
            "subject_digest": self.subject_digest,
            "signature_reference": self.signature_reference,
            "artifact_digest": self.artifact_digest,
        }


class Publisher:
    """Pushes signed payloads as sidecar artifacts."""

    def __init__(
        self,
        registry: RegistryClient,
        credential_provider: CredentialProvider | None = None,
    ) -> None:
        self.registry = registry
        self.credential_provider = credential_provider or AnonymousCredentialProvider()

    def credentials_for(self, reference: ImageReference, credentials: Credentials | None = None) -> Credentials:
        if credentials is not None:
            return credentials
        return self.credential_provider.credentials_for(reference.registry)

    def resolve(self, subject_reference: str, credentials: Credentials | None = None) -> Digest:
        """Resolve the live digest of a subject.

        Raises:
            MalformedInput: If the reference is malformed
            DigestMismatch: If the registry returns an empty or malformed digest
        """
        ref = ImageReference.parse(subject_reference)
        resolved = self.registry.resolve_digest(subject_reference, self.credentials_for(ref, credentials))
        if not resolved:
            raise DigestMismatch(f"Registry returned an empty digest for {subject_reference}")
        try:
            return Digest.parse(resolved.strip())
        except MalformedInput as e:
            raise DigestMismatch(f"Registry returned a malformed digest for {subject_reference}: {e.message}")

    def publish(
        self,
        subject_reference: str,
        signed: SignedPayload,
        credentials: Credentials | None = None,
    ) -> PublishResult:
        """Package signed and push it next to the subject.

        Args:
            subject_reference: Image the signature belongs to
            signed: Signed canonical payload
            credentials: Registry credentials (default: from the provider)

        Returns:
            PublishResult

        Raises:
            MalformedInput: If the reference is malformed
            DigestMismatch: If the live digest is empty, malformed, or differs
                from the digest the payload attests; nothing is pushed
            AuthFailure, NetworkFailure: Propagated from the registry
            PackagingError: If the artifact cannot be assembled
        """
        ref = ImageReference.parse(subject_reference)
        creds = self.credentials_for(ref, credentials)
        live = self.resolve(subject_reference, creds)

        if live != signed.payload.digest:
            raise DigestMismatch(
                f"Payload attests {signed.payload.digest} but {subject_reference} resolves to {live}",
                details={"attested": str(signed.payload.digest), "resolved": str(live)},
            )

        artifact = package(signed)
        target = derive_signature_reference(ref.registry, ref.repository, live.hex)
        logger.info("Pushing signature to %s", target)
        pushed = self.registry.push(target, artifact, creds)

        return PublishResult(
            subject_reference=subject_reference,
            subject_digest=str(live),
            signature_reference=target,
            artifact_digest=pushed,
        )


def attach_signature(
    subject_reference: str,
    signer: Signer,
    publisher: Publisher,
    builder: PayloadBuilder | None = None,
    provenance_detail: Mapping[str, Any] | None = None,
    credentials: Credentials | None = None,
) -> PublishResult:
    """Sign a subject's provenance and publish the sidecar.

    Resolves the live digest once, builds the payload for it, signs and
    publishes. Signing errors propagate unchanged.
    """
    builder = builder or PayloadBuilder()
    digest = publisher.resolve(subject_reference, credentials)
    payload = builder.build(subject_reference, str(digest), provenance_detail)
    logger.info("Attaching signature to image %s", subject_reference)
    signature = signer.sign(payload.data)
    return publisher.publish(subject_reference, SignedPayload(payload=payload, signature=signature), credentials)
