"""Credential providers.

The core never looks up secrets itself; it asks a provider for the
Credentials to use with a given registry.
"""

from __future__ import annotations

import os
from abc import ABC, abstractmethod

from provsig.errors import AuthFailure
from provsig.registry.base import ANONYMOUS, Credentials

USERNAME_ENV = "PROVSIG_REGISTRY_USERNAME"
PASSWORD_ENV = "PROVSIG_REGISTRY_PASSWORD"


class CredentialProvider(ABC):
    """Supplies registry auth material."""

    @abstractmethod
    def credentials_for(self, registry: str) -> Credentials:
        """Return credentials for registry.

        Raises:
            AuthFailure: If credentials exist but cannot be resolved
        """
        pass


class AnonymousCredentialProvider(CredentialProvider):
    """Always returns anonymous credentials."""

    def credentials_for(self, registry: str) -> Credentials:
        return ANONYMOUS


class StaticCredentialProvider(CredentialProvider):
    """Fixed credentials per registry host, anonymous otherwise."""

    def __init__(self, credentials: dict[str, Credentials] | None = None) -> None:
        self._credentials = dict(credentials or {})

    def credentials_for(self, registry: str) -> Credentials:
        return self._credentials.get(registry, ANONYMOUS)


class EnvCredentialProvider(CredentialProvider):
    """Reads PROVSIG_REGISTRY_USERNAME / PROVSIG_REGISTRY_PASSWORD."""

    def credentials_for(self, registry: str) -> Credentials:
        username = os.environ.get(USERNAME_ENV)
        password = os.environ.get(PASSWORD_ENV)
        if not username and not password:
            return ANONYMOUS
        if not username or not password:
            raise AuthFailure(f"Both {USERNAME_ENV} and {PASSWORD_ENV} must be set")
        return Credentials(username=username, password=password)
