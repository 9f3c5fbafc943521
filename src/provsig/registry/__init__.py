"""Registry clients and credential providers."""

from __future__ import annotations

from provsig.registry.base import ANONYMOUS, Credentials, RegistryClient
from provsig.registry.crane import CraneRegistry
from provsig.registry.credentials import (
    AnonymousCredentialProvider,
    CredentialProvider,
    EnvCredentialProvider,
    StaticCredentialProvider,
)
from provsig.registry.memory import MemoryRegistry

__all__ = [
    "ANONYMOUS",
    "Credentials",
    "RegistryClient",
    "CraneRegistry",
    "MemoryRegistry",
    "CredentialProvider",
    "AnonymousCredentialProvider",
    "EnvCredentialProvider",
    "StaticCredentialProvider",
    "get_registry",
]


def get_registry(name: str, crane_binary: str = "crane", timeout: float = 300) -> RegistryClient:
    """Get a registry client by name.

    Args:
        name: Client name (crane, memory)
        crane_binary: crane executable for the crane client
        timeout: Per-command timeout in seconds for the crane client

    Raises:
        ValueError: If name is unknown
    """
    if name == "crane":
        return CraneRegistry(crane_binary=crane_binary, timeout=timeout)
    if name == "memory":
        return MemoryRegistry()
    raise ValueError(f"Unknown registry client: {name}")
