"""Sidecar signature verification.

Mirrors the sign path: derive the sidecar reference from the subject digest,
pull it into a scoped temporary directory, unpack the single layer, and check
the detached signature over body.json.

Stages run strictly in order:

    REFERENCE_PARSED -> ARTIFACT_PULLED -> ARTIFACT_UNPACKED -> SIGNATURE_CHECKED

with FAILED reachable from any of them.
"""

from __future__ import annotations

import json
import logging
import tempfile
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any

from provsig.errors import MalformedInput, ProvsigError, VerificationFailed
from provsig.manifest import ProvenanceManifest
from provsig.packaging import BODY_ENTRY, extract_layer, unpack_bundle
from provsig.reference import ImageReference, signature_reference_for
from provsig.registry.base import Credentials, RegistryClient
from provsig.registry.credentials import AnonymousCredentialProvider, CredentialProvider
from provsig.signing import SignatureChecker

logger = logging.getLogger(__name__)


class VerificationStage(Enum):
    """Stages of the verification flow."""

    REFERENCE_PARSED = "reference_parsed"
    ARTIFACT_PULLED = "artifact_pulled"
    ARTIFACT_UNPACKED = "artifact_unpacked"
    SIGNATURE_CHECKED = "signature_checked"
    FAILED = "failed"


@dataclass
class VerificationResult:
    """Result of a successful verification."""

    subject_reference: str
    signature_reference: str
    body: bytes
    signature: bytes
    manifest: ProvenanceManifest | None = None
    body_path: Path | None = None
    stages: list[VerificationStage] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "subject_reference": self.subject_reference,
            "signature_reference": self.signature_reference,
            "body_path": str(self.body_path) if self.body_path else None,
            "stages": [s.value for s in self.stages],
            "manifest": self.manifest.to_dict() if self.manifest else None,
        }

    def write_json(self, path: Path) -> None:
        """Write to JSON file."""
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w", encoding="utf-8") as f:
            json.dump(self.to_dict(), f, indent=2, sort_keys=True)


class Verifier:
    """Verifier for sidecar signatures."""

    def __init__(
        self,
        registry: RegistryClient,
        checker: SignatureChecker,
        credential_provider: CredentialProvider | None = None,
    ) -> None:
        self.registry = registry
        self.checker = checker
        self.credential_provider = credential_provider or AnonymousCredentialProvider()

    def verify(
        self,
        subject_reference: str,
        output_dir: Path | None = None,
        credentials: Credentials | None = None,
        require_claims: bool = False,
    ) -> VerificationResult:
        """Verify the sidecar signature of a digest-pinned subject.

        Args:
            subject_reference: Subject as repository@algorithm:hex
            output_dir: If set, body.json is written here on success
            credentials: Registry credentials (default: from the provider)
            require_claims: Also check that the signed body names this subject

        Returns:
            VerificationResult

        Raises:
            MalformedInput: If the reference is malformed or has no digest
            NotFound: If the sidecar tag does not exist
            ExtractionError: If the sidecar layout is wrong
            VerificationFailed: If the signature does not match
            TrustAnchorUnavailable: If the checker cannot use its key or keyring
        """
        stages: list[VerificationStage] = []

        def advance(stage: VerificationStage) -> None:
            stages.append(stage)
            logger.info("Verification of %s: %s", subject_reference, stage.value)

        try:
            ref = ImageReference.parse(subject_reference, strict=False)
            if ref.digest is None:
                raise MalformedInput(f"Subject reference must include a digest: {subject_reference}")
            sig_ref = signature_reference_for(ref)
            creds = credentials if credentials is not None else self.credential_provider.credentials_for(ref.registry)
            advance(VerificationStage.REFERENCE_PARSED)

            with tempfile.TemporaryDirectory(prefix="provsig-verify-") as workspace:
                tarball = self.registry.pull(sig_ref, Path(workspace) / "img.tar", creds)
                advance(VerificationStage.ARTIFACT_PULLED)

                signature, body = unpack_bundle(extract_layer(tarball))
                advance(VerificationStage.ARTIFACT_UNPACKED)

            self.checker.verify(body, signature)
            advance(VerificationStage.SIGNATURE_CHECKED)

            manifest = self._parse_manifest(body)
            if require_claims:
                self._check_claims(ref, manifest)
        except ProvsigError as e:
            stages.append(VerificationStage.FAILED)
            logger.warning("Verification of %s failed: [%s] %s", subject_reference, e.kind.value, e.message)
            raise

        result = VerificationResult(
            subject_reference=subject_reference,
            signature_reference=sig_ref,
            body=body,
            signature=signature,
            manifest=manifest,
            stages=stages,
        )
        if output_dir is not None:
            output_dir.mkdir(parents=True, exist_ok=True)
            result.body_path = output_dir / BODY_ENTRY
            result.body_path.write_bytes(body)
        return result

    @staticmethod
    def _parse_manifest(body: bytes) -> ProvenanceManifest | None:
        try:
            return ProvenanceManifest.from_bytes(body)
        except MalformedInput:
            logger.debug("Signed body is not a provenance manifest")
            return None

    @staticmethod
    def _check_claims(ref: ImageReference, manifest: ProvenanceManifest | None) -> None:
        if manifest is None:
            raise VerificationFailed("Signed body is not a provenance manifest")
        if manifest.digest != str(ref.digest):
            raise VerificationFailed(
                f"Signed body attests {manifest.digest}, expected {ref.digest}"
            )
        try:
            claimed = ImageReference.parse(manifest.subject_reference, strict=False)
        except MalformedInput:
            raise VerificationFailed(f"Signed body names an invalid image: {manifest.subject_reference}")
        if claimed.context != ref.context:
            raise VerificationFailed(
                f"Signed body names {claimed.context}, expected {ref.context}"
            )
