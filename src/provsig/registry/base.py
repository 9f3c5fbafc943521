"""Registry client interface used by the publisher and verifier."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path

from provsig.packaging import SignatureArtifact


@dataclass(frozen=True)
class Credentials:
    """Registry auth material.

    Attributes:
        username: Registry user name (None for anonymous access)
        password: Password or token
    """
    username: str | None = None
    password: str | None = None

    @property
    def anonymous(self) -> bool:
        return not self.username

    def __repr__(self) -> str:
        return f"Credentials(username={self.username!r}, password={'***' if self.password else None})"


ANONYMOUS = Credentials()


class RegistryClient(ABC):
    """Capability interface over a remote image store.

    Implementations raise AuthFailure, NetworkFailure or NotFound and never
    retry internally.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Return client name."""
        pass

    @property
    def is_available(self) -> bool:
        """Return whether this client can be used (binaries, auth, etc)."""
        return True

    @abstractmethod
    def resolve_digest(self, reference: str, credentials: Credentials = ANONYMOUS) -> str:
        """Return the current manifest digest of reference ("sha256:<hex>")."""
        pass

    @abstractmethod
    def pull(self, reference: str, destination: Path, credentials: Credentials = ANONYMOUS) -> Path:
        """Write reference as an image tarball at destination and return its path."""
        pass

    @abstractmethod
    def push(self, reference: str, artifact: SignatureArtifact, credentials: Credentials = ANONYMOUS) -> str:
        """Push artifact to reference, creating or overwriting that tag.

        Returns:
            Digest of the pushed manifest
        """
        pass
