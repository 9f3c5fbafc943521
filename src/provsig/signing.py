"""Detached signature capabilities.

Two schemes are provided behind the same interface:

- Ed25519 via the ``cryptography`` library. Keys can be passed directly or
  read from environment variables:
  - PROVSIG_SIGNING_PRIVATE_KEY: Base64-encoded raw private key
  - PROVSIG_SIGNING_PUBLIC_KEY: Base64-encoded raw public key
- OpenPGP detached signatures via the ``gpg`` binary.

Callers only ever see ``Signer.sign`` and ``SignatureChecker.verify``.
"""

from __future__ import annotations

import base64
import binascii
import logging
import os
import re
import shutil
import subprocess
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path

from cryptography.exceptions import InvalidSignature, UnsupportedAlgorithm
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.ed25519 import (
    Ed25519PrivateKey,
    Ed25519PublicKey,
)

from provsig.errors import (
    ProvsigError,
    SigningRejected,
    SigningUnavailable,
    TrustAnchorUnavailable,
    VerificationFailed,
)

logger = logging.getLogger(__name__)

PRIVATE_KEY_ENV = "PROVSIG_SIGNING_PRIVATE_KEY"
PUBLIC_KEY_ENV = "PROVSIG_SIGNING_PUBLIC_KEY"

_KEY_ENV_NAME_RE = re.compile(rb"^[A-Z][A-Z0-9_]*_KEY$")


class Signer(ABC):
    """Computes a detached signature over payload bytes."""

    @abstractmethod
    def sign(self, payload: bytes) -> bytes:
        """Sign payload.

        Raises:
            SigningUnavailable: If key material or backend is inaccessible
            SigningRejected: If the backend declines to sign
        """


class SignatureChecker(ABC):
    """Checks a detached signature against a trust anchor."""

    @abstractmethod
    def verify(self, payload: bytes, signature: bytes) -> None:
        """Verify signature over payload.

        Raises:
            VerificationFailed: If the signature does not match
        """


def _decode_env_key(name: str, error: type[ProvsigError]) -> bytes | None:
    value = os.environ.get(name)
    if not value:
        return None
    try:
        return base64.b64decode(value, validate=True)
    except (binascii.Error, ValueError):
        raise error(f"Invalid base64 in {name}")


def decode_key_material(data: bytes) -> bytes:
    """Normalize key file contents.

    Accepts raw 32-byte keys and PEM unchanged, plus base64 text either bare
    or as a NAME_KEY=<base64> line as printed by generate-keys.
    """
    if len(data) == 32 or data.lstrip().startswith(b"-----BEGIN"):
        return data
    text = data.strip()
    name, sep, value = text.partition(b"=")
    if sep and _KEY_ENV_NAME_RE.match(name):
        text = value.strip()
    try:
        return base64.b64decode(text, validate=True)
    except (binascii.Error, ValueError):
        return data


def load_private_key(data: bytes) -> Ed25519PrivateKey:
    """Load an Ed25519 private key from raw 32 bytes, PEM or base64 text."""
    data = decode_key_material(data)
    try:
        if len(data) == 32:
            return Ed25519PrivateKey.from_private_bytes(data)
        key = serialization.load_pem_private_key(data, password=None)
    except (ValueError, TypeError, UnsupportedAlgorithm) as e:
        raise SigningUnavailable(f"Unreadable private key: {e}")
    if not isinstance(key, Ed25519PrivateKey):
        raise SigningUnavailable("Private key is not an Ed25519 key")
    return key


def load_public_key(data: bytes) -> Ed25519PublicKey:
    """Load an Ed25519 public key from raw 32 bytes, PEM or base64 text."""
    data = decode_key_material(data)
    try:
        if len(data) == 32:
            return Ed25519PublicKey.from_public_bytes(data)
        key = serialization.load_pem_public_key(data)
    except (ValueError, TypeError, UnsupportedAlgorithm) as e:
        raise TrustAnchorUnavailable(f"Unreadable public key: {e}")
    if not isinstance(key, Ed25519PublicKey):
        raise TrustAnchorUnavailable("Public key is not an Ed25519 key")
    return key


class Ed25519Signer(Signer):
    """Ed25519 signer."""

    def __init__(self, private_key: bytes | None = None) -> None:
        """Initialize signer.

        Args:
            private_key: Raw 32-byte, PEM or base64 private key. Falls back to
                PROVSIG_SIGNING_PRIVATE_KEY when omitted.
        """
        if private_key is None:
            private_key = _decode_env_key(PRIVATE_KEY_ENV, SigningUnavailable)
        self._key = load_private_key(private_key) if private_key is not None else None

    def is_configured(self) -> bool:
        """Check if signer has a key configured."""
        return self._key is not None

    @property
    def public_key(self) -> bytes:
        """Raw public key bytes."""
        if self._key is None:
            raise SigningUnavailable("No private key configured")
        return self._key.public_key().public_bytes(
            encoding=serialization.Encoding.Raw,
            format=serialization.PublicFormat.Raw,
        )

    def sign(self, payload: bytes) -> bytes:
        if self._key is None:
            raise SigningUnavailable("No private key configured")
        return self._key.sign(payload)


class Ed25519Checker(SignatureChecker):
    """Ed25519 signature checker bound to one public key."""

    def __init__(self, public_key: bytes | None = None) -> None:
        """Initialize checker.

        Args:
            public_key: Raw, PEM or base64 public key. Falls back to
                PROVSIG_SIGNING_PUBLIC_KEY when omitted.

        Raises:
            TrustAnchorUnavailable: If no key is configured or it is unreadable
        """
        if public_key is None:
            public_key = _decode_env_key(PUBLIC_KEY_ENV, TrustAnchorUnavailable)
        if public_key is None:
            raise TrustAnchorUnavailable("No public key available for verification")
        self._key = load_public_key(public_key)

    def verify(self, payload: bytes, signature: bytes) -> None:
        try:
            self._key.verify(signature, payload)
        except InvalidSignature:
            raise VerificationFailed("Signature does not match payload")


def generate_keys() -> tuple[bytes, bytes]:
    """Generate a new Ed25519 key pair.

    Returns:
        Tuple of (private_key, public_key) as raw bytes
    """
    private_key = Ed25519PrivateKey.generate()
    private_bytes = private_key.private_bytes(
        encoding=serialization.Encoding.Raw,
        format=serialization.PrivateFormat.Raw,
        encryption_algorithm=serialization.NoEncryption(),
    )
    public_bytes = private_key.public_key().public_bytes(
        encoding=serialization.Encoding.Raw,
        format=serialization.PublicFormat.Raw,
    )
    return (private_bytes, public_bytes)


def keys_to_env_format(private_key: bytes, public_key: bytes) -> tuple[str, str]:
    """Convert keys to environment variable format.

    Returns:
        Tuple of (private_key_b64, public_key_b64)
    """
    return (
        base64.b64encode(private_key).decode("ascii"),
        base64.b64encode(public_key).decode("ascii"),
    )


class _GpgBase:
    def __init__(self, gpg_binary: str = "gpg", homedir: Path | None = None, timeout: float = 60.0) -> None:
        self.gpg_binary = gpg_binary
        self.homedir = homedir
        self.timeout = timeout

    def _command(self, *args: str) -> list[str]:
        binary = shutil.which(self.gpg_binary)
        if binary is None:
            raise SigningUnavailable(f"{self.gpg_binary} not found on PATH")
        cmd = [binary, "--batch", "--no-tty", "--status-fd", "2"]
        if self.homedir is not None:
            cmd.extend(["--homedir", str(self.homedir)])
        cmd.extend(args)
        return cmd


class GpgSigner(_GpgBase, Signer):
    """OpenPGP detached, ASCII-armoured signer backed by gpg."""

    def __init__(
        self,
        key_id: str | None = None,
        gpg_binary: str = "gpg",
        homedir: Path | None = None,
        timeout: float = 60.0,
    ) -> None:
        super().__init__(gpg_binary, homedir, timeout)
        self.key_id = key_id

    def sign(self, payload: bytes) -> bytes:
        args = ["--armor", "--detach-sign"]
        if self.key_id:
            args.extend(["--local-user", self.key_id])
        cmd = self._command(*args)
        logger.debug("Running %s", " ".join(cmd))
        try:
            result = subprocess.run(cmd, input=payload, capture_output=True, timeout=self.timeout)
        except (OSError, subprocess.TimeoutExpired) as e:
            raise SigningUnavailable(f"gpg could not be run: {e}")

        if result.returncode != 0:
            stderr = result.stderr.decode("utf-8", errors="replace")
            if "No secret key" in stderr or "no default secret key" in stderr or "Bad passphrase" in stderr:
                raise SigningUnavailable(f"gpg key unavailable: {stderr.strip()}")
            raise SigningRejected(f"gpg refused to sign: {stderr.strip()}")
        return result.stdout


class GpgChecker(_GpgBase, SignatureChecker):
    """OpenPGP detached signature checker; the keyring is the trust anchor."""

    def verify(self, payload: bytes, signature: bytes) -> None:
        with tempfile.TemporaryDirectory(prefix="provsig-gpg-") as tmp:
            sig_path = Path(tmp) / "signature"
            body_path = Path(tmp) / "body.json"
            sig_path.write_bytes(signature)
            body_path.write_bytes(payload)
            try:
                cmd = self._command("--verify", str(sig_path), str(body_path))
            except SigningUnavailable as e:
                raise TrustAnchorUnavailable(str(e))
            logger.debug("Running %s", " ".join(cmd))
            try:
                result = subprocess.run(cmd, capture_output=True, timeout=self.timeout)
            except (OSError, subprocess.TimeoutExpired) as e:
                raise TrustAnchorUnavailable(f"gpg could not be run: {e}")

        stderr = result.stderr.decode("utf-8", errors="replace")
        if result.returncode != 0 or "[GNUPG:] GOODSIG" not in stderr:
            raise VerificationFailed(f"gpg signature check failed: {stderr.strip()}")
