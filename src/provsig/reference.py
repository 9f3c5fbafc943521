"""Image reference parsing and sidecar tag derivation.

The sidecar signature of an image lives at a tag computed purely from the
image's digest, so a verifier can find it without any side table:

    registry.example/repo@sha256:<hex>  ->  registry.example/repo:<hex>.sig
"""

from __future__ import annotations

import re
from dataclasses import dataclass

from provsig.errors import MalformedInput

DEFAULT_REGISTRY = "index.docker.io"
SIGNATURE_TAG_SUFFIX = ".sig"

# Hex length per known digest algorithm
DIGEST_ALGORITHMS: dict[str, int] = {
    "sha256": 64,
    "sha384": 96,
    "sha512": 128,
}

_HEX_RE = re.compile(r"^[a-f0-9]+$")
_PATH_COMPONENT_RE = re.compile(r"^[a-z0-9]+(?:(?:[._]|__|-+)[a-z0-9]+)*$")
_TAG_RE = re.compile(r"^[A-Za-z0-9_][A-Za-z0-9_.-]{0,127}$")
_REGISTRY_RE = re.compile(r"^[A-Za-z0-9.-]+(?::[0-9]+)?$")


@dataclass(frozen=True)
class Digest:
    """Content hash of a subject, e.g. sha256:<hex>."""

    algorithm: str
    hex: str

    def __str__(self) -> str:
        return f"{self.algorithm}:{self.hex}"

    @classmethod
    def parse(cls, value: str, strict: bool = True) -> Digest:
        """Parse an algorithm-prefixed digest.

        Args:
            value: Digest string such as "sha256:ab12..."
            strict: Require the full hex length of the algorithm

        Returns:
            Parsed Digest

        Raises:
            MalformedInput: If the algorithm is unknown or the hex is invalid
        """
        if not value or ":" not in value:
            raise MalformedInput(f"Digest must be <algorithm>:<hex>, got {value!r}")

        algorithm, _, hex_part = value.partition(":")
        if algorithm not in DIGEST_ALGORITHMS:
            raise MalformedInput(f"Unknown digest algorithm: {algorithm!r}")
        if not _HEX_RE.match(hex_part):
            raise MalformedInput(f"Digest is not lowercase hex: {value!r}")
        if strict and len(hex_part) != DIGEST_ALGORITHMS[algorithm]:
            raise MalformedInput(
                f"{algorithm} digest must have {DIGEST_ALGORITHMS[algorithm]} hex chars, "
                f"got {len(hex_part)}"
            )
        return cls(algorithm=algorithm, hex=hex_part)


@dataclass(frozen=True)
class ImageReference:
    """Parsed registry/repository[:tag][@digest] reference."""

    registry: str
    repository: str
    tag: str | None = None
    digest: Digest | None = None

    @property
    def context(self) -> str:
        """registry/repository without tag or digest."""
        return f"{self.registry}/{self.repository}"

    def __str__(self) -> str:
        result = self.context
        if self.tag:
            result += f":{self.tag}"
        if self.digest:
            result += f"@{self.digest}"
        return result

    def with_digest(self, digest: Digest) -> ImageReference:
        """Return a copy pinned to digest, dropping the tag."""
        return ImageReference(registry=self.registry, repository=self.repository, digest=digest)

    @classmethod
    def parse(cls, value: str, strict: bool = True) -> ImageReference:
        """Parse an image reference.

        Registry detection follows the usual convention: the first path
        component is a registry if it contains "." or ":" or is "localhost".
        Docker Hub names get the default registry and the "library/" prefix.

        Args:
            value: Reference string
            strict: Passed to Digest.parse for the digest part

        Raises:
            MalformedInput: If the reference is not a well-formed image name
        """
        if not value or value != value.strip():
            raise MalformedInput(f"Invalid image reference: {value!r}")

        remainder = value
        digest = None
        if "@" in remainder:
            remainder, _, digest_str = remainder.partition("@")
            digest = Digest.parse(digest_str, strict=strict)

        tag = None
        last_slash = remainder.rfind("/")
        colon = remainder.rfind(":")
        if colon > last_slash:
            remainder, tag = remainder[:colon], remainder[colon + 1:]
            if not _TAG_RE.match(tag):
                raise MalformedInput(f"Invalid tag {tag!r} in {value!r}")

        parts = remainder.split("/")
        if len(parts) > 1 and ("." in parts[0] or ":" in parts[0] or parts[0] == "localhost"):
            registry = parts[0]
            path = parts[1:]
            if not _REGISTRY_RE.match(registry):
                raise MalformedInput(f"Invalid registry {registry!r} in {value!r}")
        else:
            registry = DEFAULT_REGISTRY
            path = parts
            if len(path) == 1:
                path = ["library", *path]

        for component in path:
            if not _PATH_COMPONENT_RE.match(component):
                raise MalformedInput(f"Invalid repository component {component!r} in {value!r}")

        return cls(registry=registry, repository="/".join(path), tag=tag, digest=digest)


def derive_signature_reference(registry: str, repository: str, digest_hex: str) -> str:
    """Derive the sidecar reference for a subject digest.

    Uses the raw hex digest, never the algorithm-prefixed form. Tags are
    capped at 128 characters, so sha256 and sha384 subjects can carry a
    sidecar but a full sha512 digest cannot.

    Args:
        registry: Registry host of the subject
        repository: Repository path of the subject
        digest_hex: Hex part of the subject digest

    Returns:
        "<registry>/<repository>:<digest_hex>.sig"

    Raises:
        MalformedInput: If the hex is empty, not hex, or too long for a tag
    """
    if not digest_hex or not _HEX_RE.match(digest_hex):
        raise MalformedInput(f"Digest hex must be non-empty lowercase hex, got {digest_hex!r}")
    if not registry or not repository:
        raise MalformedInput("Registry and repository are required")
    tag = f"{digest_hex}{SIGNATURE_TAG_SUFFIX}"
    if not _TAG_RE.match(tag):
        raise MalformedInput(f"Sidecar tag would be {len(tag)} characters, registries allow at most 128")
    return f"{registry}/{repository}:{tag}"


def signature_reference_for(reference: ImageReference) -> str:
    """Derive the sidecar reference of a digest-pinned image reference."""
    if reference.digest is None:
        raise MalformedInput(f"Reference {reference} does not carry a digest")
    return derive_signature_reference(reference.registry, reference.repository, reference.digest.hex)
