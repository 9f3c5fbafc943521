"""provsig - signed provenance sidecars for container images.

Builds a canonical provenance manifest for an image, signs it, and pushes the
signature as a single-layer sidecar image tagged <digest-hex>.sig next to the
subject. Verification derives the same tag from the subject digest, pulls the
sidecar and checks the detached signature.
"""

from __future__ import annotations

__version__ = "0.3.0"

from provsig.errors import (  # noqa: E402
    AuthFailure,
    DigestMismatch,
    ErrorKind,
    ExtractionError,
    MalformedInput,
    NetworkFailure,
    NotFound,
    PackagingError,
    ProvsigError,
    SigningRejected,
    SigningUnavailable,
    TrustAnchorUnavailable,
    VerificationFailed,
)
from provsig.manifest import (  # noqa: E402
    CanonicalPayload,
    PayloadBuilder,
    ProvenanceManifest,
    RawValue,
    SignedPayload,
)
from provsig.packaging import SignatureArtifact, package, unpack_bundle  # noqa: E402
from provsig.publisher import Publisher, PublishResult, attach_signature  # noqa: E402
from provsig.reference import (  # noqa: E402
    Digest,
    ImageReference,
    derive_signature_reference,
    signature_reference_for,
)
from provsig.verifier import Verifier, VerificationResult, VerificationStage  # noqa: E402

__all__ = [
    "__version__",
    "AuthFailure",
    "CanonicalPayload",
    "Digest",
    "DigestMismatch",
    "ErrorKind",
    "ExtractionError",
    "ImageReference",
    "MalformedInput",
    "NetworkFailure",
    "NotFound",
    "PackagingError",
    "PayloadBuilder",
    "ProvenanceManifest",
    "ProvsigError",
    "PublishResult",
    "Publisher",
    "RawValue",
    "SignatureArtifact",
    "SignedPayload",
    "SigningRejected",
    "SigningUnavailable",
    "TrustAnchorUnavailable",
    "VerificationFailed",
    "VerificationResult",
    "VerificationStage",
    "Verifier",
    "attach_signature",
    "derive_signature_reference",
    "package",
    "signature_reference_for",
    "unpack_bundle",
]
