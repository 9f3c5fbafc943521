"""Error taxonomy for signing, publishing and verifying sidecar signatures.

Every failure is raised to the immediate caller tagged with an ErrorKind.
Nothing here retries; retry policy belongs to whoever drives the core.
"""

from __future__ import annotations

from enum import Enum
from typing import Any


class ErrorKind(Enum):
    """Machine-readable error kinds.

    Format: CATEGORY_DETAIL, stable across releases.
    """

    INPUT_VALIDATION = "INPUT_VALIDATION"
    CREDENTIAL_FAILURE = "CREDENTIAL_FAILURE"
    NETWORK_FAILURE = "NETWORK_FAILURE"
    PACKAGING_ERROR = "PACKAGING_ERROR"
    DIGEST_MISMATCH = "DIGEST_MISMATCH"
    EXTRACTION_ERROR = "EXTRACTION_ERROR"
    VERIFICATION_FAILED = "VERIFICATION_FAILED"


# CLI exit codes; every failure is non-zero
EXIT_CODES: dict[ErrorKind, int] = {
    ErrorKind.INPUT_VALIDATION: 2,
    ErrorKind.CREDENTIAL_FAILURE: 3,
    ErrorKind.NETWORK_FAILURE: 4,
    ErrorKind.PACKAGING_ERROR: 5,
    ErrorKind.DIGEST_MISMATCH: 6,
    ErrorKind.EXTRACTION_ERROR: 7,
    ErrorKind.VERIFICATION_FAILED: 8,
}


class ProvsigError(Exception):
    """Base class for all provsig failures."""

    kind: ErrorKind = ErrorKind.INPUT_VALIDATION

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}

    @property
    def exit_code(self) -> int:
        """Process exit code for this failure."""
        return EXIT_CODES[self.kind]

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        result: dict[str, Any] = {
            "kind": self.kind.value,
            "error": type(self).__name__,
            "message": self.message,
        }
        if self.details:
            result["details"] = self.details
        return result


class MalformedInput(ProvsigError):
    """Reference, digest or provenance detail is not well formed."""

    kind = ErrorKind.INPUT_VALIDATION


class CredentialFailure(ProvsigError):
    """Credential or key material problem."""

    kind = ErrorKind.CREDENTIAL_FAILURE


class AuthFailure(CredentialFailure):
    """Registry rejected the supplied credentials."""
    pass


class SigningError(CredentialFailure):
    """Error during signing operation."""
    pass


class SigningUnavailable(SigningError):
    """Signing key, passphrase or backend is not accessible."""
    pass


class SigningRejected(SigningError):
    """Signing backend declined to sign."""
    pass


class TrustAnchorUnavailable(CredentialFailure):
    """Verification key, keyring or backend is not accessible."""
    pass


class NetworkFailure(ProvsigError):
    """Registry could not be reached or returned an unexpected failure."""

    kind = ErrorKind.NETWORK_FAILURE


class NotFound(NetworkFailure):
    """Requested reference does not exist in the registry."""

    @property
    def exit_code(self) -> int:
        return 9


class PackagingError(ProvsigError):
    """Sidecar artifact could not be assembled."""

    kind = ErrorKind.PACKAGING_ERROR


class DigestMismatch(ProvsigError):
    """Resolved subject digest is empty, malformed or differs from the signed one."""

    kind = ErrorKind.DIGEST_MISMATCH


class ExtractionError(ProvsigError):
    """Sidecar artifact does not have the expected layout."""

    kind = ErrorKind.EXTRACTION_ERROR


class VerificationFailed(ProvsigError):
    """Signature does not match the payload under the trust anchor."""

    kind = ErrorKind.VERIFICATION_FAILED
