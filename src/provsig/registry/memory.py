"""In-process registry.

Stores subject image digests and pushed signature artifacts in memory.
Used for tests, dry runs and local pipelines that do not talk to a real
registry.
"""

from __future__ import annotations

import threading
from pathlib import Path

from provsig.errors import AuthFailure, NotFound
from provsig.packaging import SignatureArtifact
from provsig.reference import ImageReference
from provsig.registry.base import ANONYMOUS, Credentials, RegistryClient


class MemoryRegistry(RegistryClient):
    """Registry held in a dict, keyed by "registry/repository"."""

    def __init__(self, required_credentials: Credentials | None = None) -> None:
        """Initialize registry.

        Args:
            required_credentials: If set, every call must present these
        """
        self.required_credentials = required_credentials
        self._lock = threading.Lock()
        self._tags: dict[str, dict[str, str]] = {}
        self._artifacts: dict[str, SignatureArtifact] = {}
        self._subjects: set[str] = set()
        self.pushes: list[str] = []

    @property
    def name(self) -> str:
        """Return client name."""
        return "memory"

    def _check_auth(self, credentials: Credentials) -> None:
        if self.required_credentials is not None and credentials != self.required_credentials:
            raise AuthFailure("Registry rejected credentials")

    def add_image(self, reference: str, digest: str) -> None:
        """Register a subject image tag pointing at digest."""
        ref = ImageReference.parse(reference)
        with self._lock:
            self._tags.setdefault(ref.context, {})[ref.tag or "latest"] = digest
            self._subjects.add(f"{ref.context}@{digest}")

    def _lookup(self, ref: ImageReference) -> str:
        if ref.digest is not None:
            key = f"{ref.context}@{ref.digest}"
            if key in self._subjects or key in self._artifacts:
                return str(ref.digest)
            raise NotFound(f"Manifest unknown: {ref}")
        digest = self._tags.get(ref.context, {}).get(ref.tag or "latest")
        if digest is None:
            raise NotFound(f"Manifest unknown: {ref}")
        return digest

    def resolve_digest(self, reference: str, credentials: Credentials = ANONYMOUS) -> str:
        self._check_auth(credentials)
        ref = ImageReference.parse(reference, strict=False)
        with self._lock:
            return self._lookup(ref)

    def pull(self, reference: str, destination: Path, credentials: Credentials = ANONYMOUS) -> Path:
        self._check_auth(credentials)
        ref = ImageReference.parse(reference, strict=False)
        with self._lock:
            digest = self._lookup(ref)
            artifact = self._artifacts.get(f"{ref.context}@{digest}")
        if artifact is None:
            raise NotFound(f"No pullable content stored for {reference}")
        destination.write_bytes(artifact.to_tarball(repo_tags=[reference]))
        return destination

    def push(self, reference: str, artifact: SignatureArtifact, credentials: Credentials = ANONYMOUS) -> str:
        self._check_auth(credentials)
        ref = ImageReference.parse(reference)
        with self._lock:
            self._tags.setdefault(ref.context, {})[ref.tag or "latest"] = artifact.digest
            self._artifacts[f"{ref.context}@{artifact.digest}"] = artifact
            self.pushes.append(reference)
        return artifact.digest
