"""Registry client backed by the ``crane`` CLI.

crane speaks the registry protocol; this adapter only shapes arguments,
scopes credentials to a per-call docker config directory, and maps failures
onto the provsig error taxonomy.
"""

from __future__ import annotations

import base64
import json
import logging
import os
import re
import shutil
import subprocess
import tempfile
from pathlib import Path

from provsig.errors import AuthFailure, NetworkFailure, NotFound
from provsig.packaging import SignatureArtifact
from provsig.reference import DEFAULT_REGISTRY, ImageReference
from provsig.registry.base import ANONYMOUS, Credentials, RegistryClient

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 300  # seconds
DOCKER_HUB_AUTH_KEY = "https://index.docker.io/v1/"

_AUTH_MARKERS = ("UNAUTHORIZED", "DENIED", "401 Unauthorized", "403 Forbidden")
_NOT_FOUND_MARKERS = ("MANIFEST_UNKNOWN", "NAME_UNKNOWN", "404 Not Found", "not found")
_DIGEST_RE = re.compile(r"sha256:[a-f0-9]{64}")


class CraneRegistry(RegistryClient):
    """Registry client that shells out to crane."""

    def __init__(self, crane_binary: str = "crane", timeout: float = DEFAULT_TIMEOUT) -> None:
        self.crane_binary = crane_binary
        self.timeout = timeout

    @property
    def name(self) -> str:
        """Return client name."""
        return "crane"

    @property
    def is_available(self) -> bool:
        """Return whether the crane binary is on PATH."""
        return shutil.which(self.crane_binary) is not None

    def _write_docker_config(self, directory: Path, registry: str, credentials: Credentials) -> None:
        token = base64.b64encode(f"{credentials.username}:{credentials.password}".encode("utf-8"))
        key = DOCKER_HUB_AUTH_KEY if registry == DEFAULT_REGISTRY else registry
        config = {"auths": {key: {"auth": token.decode("ascii")}}}
        path = directory / "config.json"
        path.write_text(json.dumps(config), encoding="utf-8")
        path.chmod(0o600)

    def _run(self, args: list[str], registry: str, credentials: Credentials) -> str:
        """Run crane and return stdout.

        The child is killed if the wait is interrupted, and the scoped config
        directory is removed on every exit path.
        """
        binary = shutil.which(self.crane_binary)
        if binary is None:
            raise NetworkFailure(f"{self.crane_binary} not found on PATH")
        cmd = [binary, *args]

        with tempfile.TemporaryDirectory(prefix="provsig-crane-") as config_dir:
            env = dict(os.environ)
            if not credentials.anonymous:
                self._write_docker_config(Path(config_dir), registry, credentials)
                env["DOCKER_CONFIG"] = config_dir

            logger.debug("Running %s", " ".join(cmd))
            try:
                proc = subprocess.Popen(
                    cmd,
                    stdout=subprocess.PIPE,
                    stderr=subprocess.PIPE,
                    env=env,
                    text=True,
                )
            except OSError as e:
                raise NetworkFailure(f"crane could not be started: {e}")

            try:
                stdout, stderr = proc.communicate(timeout=self.timeout)
            except subprocess.TimeoutExpired:
                proc.kill()
                proc.communicate()
                raise NetworkFailure(f"crane {args[0]} timed out after {self.timeout}s")
            except BaseException:
                proc.kill()
                proc.wait()
                raise

        if proc.returncode != 0:
            self._raise_for_output(args[0], stderr)
        return stdout

    @staticmethod
    def _raise_for_output(command: str, stderr: str) -> None:
        message = stderr.strip() or f"crane {command} failed"
        if any(marker in stderr for marker in _AUTH_MARKERS):
            raise AuthFailure(message)
        if any(marker in stderr for marker in _NOT_FOUND_MARKERS):
            raise NotFound(message)
        raise NetworkFailure(message)

    def resolve_digest(self, reference: str, credentials: Credentials = ANONYMOUS) -> str:
        ref = ImageReference.parse(reference, strict=False)
        return self._run(["digest", reference], ref.registry, credentials).strip()

    def pull(self, reference: str, destination: Path, credentials: Credentials = ANONYMOUS) -> Path:
        ref = ImageReference.parse(reference, strict=False)
        self._run(["pull", reference, str(destination)], ref.registry, credentials)
        if not destination.exists():
            raise NetworkFailure(f"crane pull produced no tarball at {destination}")
        return destination

    def push(self, reference: str, artifact: SignatureArtifact, credentials: Credentials = ANONYMOUS) -> str:
        ref = ImageReference.parse(reference)
        with tempfile.TemporaryDirectory(prefix="provsig-push-") as tmp:
            tarball = Path(tmp) / "image.tar"
            tarball.write_bytes(artifact.to_tarball(repo_tags=[reference]))
            stdout = self._run(["push", str(tarball), reference], ref.registry, credentials)
        match = _DIGEST_RE.search(stdout)
        return match.group(0) if match else artifact.digest
