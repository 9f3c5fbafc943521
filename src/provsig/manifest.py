"""Provenance manifest and canonical payload construction.

The manifest is the body that gets signed. Its JSON shape is fixed for
compatibility with other simple-signing implementations:

    {
      "Critical": {
        "identity": {"docker-reference": ...},
        "image": {"Docker-manifest-digest": ...},
        "type": ...
      },
      "Optional": {"builder": ..., "provenance": {...}}
    }
"""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from provsig import __version__
from provsig.canonical import canonical_bytes, canonical_json
from provsig.errors import MalformedInput
from provsig.reference import Digest, ImageReference

logger = logging.getLogger(__name__)

SIGNATURE_TYPE = "provsig builder signature"


@dataclass(frozen=True)
class RawValue:
    """Opaque, pre-serialized JSON value stored in canonical form."""

    text: str

    @classmethod
    def from_json(cls, text: str | bytes) -> RawValue:
        """Wrap already-serialized JSON, re-encoding it canonically.

        Raises:
            MalformedInput: If text is not valid JSON
        """
        try:
            value = json.loads(text)
            return cls(text=canonical_json(value))
        except (ValueError, UnicodeDecodeError) as e:
            raise MalformedInput(f"Provenance value is not valid JSON: {e}")

    @classmethod
    def from_obj(cls, value: Any) -> RawValue:
        """Serialize a JSON-compatible Python value."""
        try:
            return cls(text=canonical_json(value))
        except (TypeError, ValueError) as e:
            raise MalformedInput(f"Provenance value is not JSON-serializable: {e}")

    def to_obj(self) -> Any:
        """Decode back to a Python value."""
        return json.loads(self.text)


def normalize_detail(detail: Mapping[str, Any] | None) -> dict[str, RawValue]:
    """Convert arbitrary provenance facts into a string -> RawValue mapping.

    Values that are already RawValue are kept; everything else is serialized.
    """
    result: dict[str, RawValue] = {}
    for key, value in (detail or {}).items():
        if not isinstance(key, str):
            raise MalformedInput(f"Provenance keys must be strings, got {type(key).__name__}")
        result[key] = value if isinstance(value, RawValue) else RawValue.from_obj(value)
    return result


@dataclass(frozen=True)
class ProvenanceManifest:
    """Signed statement binding a subject image to its build provenance."""

    subject_reference: str
    digest: str
    type: str = SIGNATURE_TYPE
    builder: str | None = None
    provenance: Mapping[str, RawValue] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to the wire dictionary."""
        optional: dict[str, Any] = {}
        if self.builder is not None:
            optional["builder"] = self.builder
        if self.provenance:
            optional["provenance"] = {k: v.to_obj() for k, v in self.provenance.items()}
        return {
            "Critical": {
                "identity": {"docker-reference": self.subject_reference},
                "image": {"Docker-manifest-digest": self.digest},
                "type": self.type,
            },
            "Optional": optional,
        }

    def to_bytes(self) -> bytes:
        """Canonical serialization."""
        return canonical_bytes(self.to_dict())

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ProvenanceManifest:
        """Create from the wire dictionary.

        Raises:
            MalformedInput: If required fields are missing
        """
        try:
            critical = data["Critical"]
            optional = data.get("Optional") or {}
            provenance = optional.get("provenance") or {}
            return cls(
                subject_reference=critical["identity"]["docker-reference"],
                digest=critical["image"]["Docker-manifest-digest"],
                type=critical["type"],
                builder=optional.get("builder"),
                provenance=normalize_detail(provenance),
            )
        except (KeyError, TypeError, AttributeError) as e:
            raise MalformedInput(f"Manifest is missing required field: {e}")

    @classmethod
    def from_bytes(cls, body: bytes) -> ProvenanceManifest:
        """Parse a signed body.json."""
        try:
            data = json.loads(body)
        except (ValueError, UnicodeDecodeError) as e:
            raise MalformedInput(f"Manifest is not valid JSON: {e}")
        if not isinstance(data, dict):
            raise MalformedInput("Manifest must be a JSON object")
        return cls.from_dict(data)


@dataclass(frozen=True)
class CanonicalPayload:
    """Immutable canonical bytes of a manifest and the digest they attest."""

    data: bytes
    digest: Digest


@dataclass(frozen=True)
class SignedPayload:
    """Canonical payload plus its detached signature (opaque bytes)."""

    payload: CanonicalPayload
    signature: bytes

    @property
    def body(self) -> bytes:
        return self.payload.data


class PayloadBuilder:
    """Builds canonical payloads from provenance facts."""

    def __init__(self, builder_version: str = __version__, builder_name: str = "provsig") -> None:
        self.builder_version = builder_version
        self.builder_name = builder_name

    @property
    def builder(self) -> str:
        return f"{self.builder_name} {self.builder_version}"

    def build_manifest(
        self,
        subject_reference: str,
        digest: str,
        provenance_detail: Mapping[str, Any] | None = None,
    ) -> ProvenanceManifest:
        """Validate inputs and build a manifest.

        Args:
            subject_reference: Image name of the subject
            digest: Algorithm-prefixed content hash of the subject
            provenance_detail: Arbitrary provenance facts

        Returns:
            ProvenanceManifest

        Raises:
            MalformedInput: If the reference or digest is malformed
        """
        ImageReference.parse(subject_reference)
        parsed = Digest.parse(digest)
        return ProvenanceManifest(
            subject_reference=subject_reference,
            digest=str(parsed),
            builder=self.builder,
            provenance=normalize_detail(provenance_detail),
        )

    def build(
        self,
        subject_reference: str,
        digest: str,
        provenance_detail: Mapping[str, Any] | None = None,
    ) -> CanonicalPayload:
        """Build the canonical payload; byte-identical for identical input."""
        manifest = self.build_manifest(subject_reference, digest, provenance_detail)
        data = manifest.to_bytes()
        logger.info("Built payload for %s (%d bytes)", subject_reference, len(data))
        return CanonicalPayload(data=data, digest=Digest.parse(manifest.digest))
