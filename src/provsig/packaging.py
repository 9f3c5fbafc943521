"""Sidecar artifact packaging.

A signature bundle is a tar archive with exactly two entries, in order:

    signature   detached signature bytes
    body.json   canonical payload that was signed

The bundle is gzip-compressed and becomes the only layer of an image built
from an empty base. Everything is assembled in memory and is byte-for-byte
deterministic (mtime 0 in tar headers and in the gzip header).
"""

from __future__ import annotations

import gzip
import hashlib
import io
import json
import logging
import tarfile
import zlib
from dataclasses import dataclass
from pathlib import Path

from provsig.canonical import canonical_bytes
from provsig.errors import ExtractionError, PackagingError
from provsig.manifest import SignedPayload

logger = logging.getLogger(__name__)

SIGNATURE_ENTRY = "signature"
BODY_ENTRY = "body.json"
BUNDLE_ENTRIES = (SIGNATURE_ENTRY, BODY_ENTRY)
ENTRY_MODE = 0o755
LAYER_SUFFIX = ".tar.gz"

MEDIA_TYPE_MANIFEST = "application/vnd.docker.distribution.manifest.v2+json"
MEDIA_TYPE_CONFIG = "application/vnd.docker.container.image.v1+json"
MEDIA_TYPE_LAYER = "application/vnd.docker.image.rootfs.diff.tar.gzip"

# Upper bound for a single bundle entry; signatures and bodies are small
MAX_ENTRY_SIZE = 16 * 1024 * 1024
# Upper bound for a layer, compressed or inflated: two entries plus tar headers
MAX_LAYER_SIZE = 2 * MAX_ENTRY_SIZE + 64 * 1024


def _sha256(data: bytes) -> str:
    return f"sha256:{hashlib.sha256(data).hexdigest()}"


def _add_entry(tar: tarfile.TarFile, name: str, data: bytes) -> None:
    info = tarfile.TarInfo(name=name)
    info.size = len(data)
    info.mode = ENTRY_MODE
    info.mtime = 0
    info.type = tarfile.REGTYPE
    tar.addfile(info, io.BytesIO(data))


def build_bundle(signature: bytes, body: bytes) -> bytes:
    """Build the two-entry signature archive.

    Args:
        signature: Detached signature bytes
        body: Signed payload bytes

    Returns:
        Uncompressed tar archive bytes

    Raises:
        PackagingError: If the archive cannot be written
    """
    buffer = io.BytesIO()
    try:
        with tarfile.open(fileobj=buffer, mode="w", format=tarfile.USTAR_FORMAT) as tar:
            _add_entry(tar, SIGNATURE_ENTRY, signature)
            _add_entry(tar, BODY_ENTRY, body)
    except (tarfile.TarError, OSError, ValueError) as e:
        raise PackagingError(f"Failed to write signature archive: {e}")
    return buffer.getvalue()


def unpack_bundle(data: bytes) -> tuple[bytes, bytes]:
    """Extract (signature, body) from a two-entry signature archive.

    Raises:
        ExtractionError: If an entry is missing, unexpected, or the archive is malformed
    """
    entries: dict[str, bytes] = {}
    try:
        with tarfile.open(fileobj=io.BytesIO(data), mode="r:") as tar:
            for member in tar:
                if member.name not in BUNDLE_ENTRIES:
                    raise ExtractionError(f"Unexpected entry in signature archive: {member.name!r}")
                if not member.isreg():
                    raise ExtractionError(f"Entry {member.name!r} is not a regular file")
                if member.name in entries:
                    raise ExtractionError(f"Duplicate entry in signature archive: {member.name!r}")
                if member.size > MAX_ENTRY_SIZE:
                    raise ExtractionError(f"Entry {member.name!r} exceeds {MAX_ENTRY_SIZE} bytes")
                fileobj = tar.extractfile(member)
                if fileobj is None:
                    raise ExtractionError(f"Entry {member.name!r} has no content")
                entries[member.name] = fileobj.read()
    except (tarfile.TarError, OSError, EOFError) as e:
        raise ExtractionError(f"Malformed signature archive: {e}")

    missing = [name for name in BUNDLE_ENTRIES if name not in entries]
    if missing:
        raise ExtractionError(f"Signature archive is missing entries: {', '.join(missing)}")
    return entries[SIGNATURE_ENTRY], entries[BODY_ENTRY]


def compress_layer(data: bytes) -> bytes:
    """Gzip data with a zeroed header timestamp."""
    try:
        return gzip.compress(data, mtime=0)
    except (OSError, zlib.error) as e:
        raise PackagingError(f"Failed to compress layer: {e}")


def decompress_layer(data: bytes, limit: int = MAX_LAYER_SIZE) -> bytes:
    """Gunzip a layer blob, inflating at most limit bytes.

    Raises:
        ExtractionError: If data is not a complete gzip stream or inflates
            past limit
    """
    inflater = zlib.decompressobj(16 + zlib.MAX_WBITS)
    try:
        inflated = inflater.decompress(data, limit + 1)
    except zlib.error as e:
        raise ExtractionError(f"Layer is not valid gzip: {e}")
    if len(inflated) > limit:
        raise ExtractionError(f"Layer exceeds {limit} bytes when decompressed")
    if not inflater.eof:
        raise ExtractionError("Layer is not valid gzip: truncated stream")
    return inflated


@dataclass(frozen=True)
class SignatureArtifact:
    """Single-layer image carrying a signature bundle."""

    layer: bytes
    diff_id: str
    config: bytes
    manifest: bytes

    @property
    def layer_digest(self) -> str:
        return _sha256(self.layer)

    @property
    def config_digest(self) -> str:
        return _sha256(self.config)

    @property
    def digest(self) -> str:
        """Digest of the image manifest."""
        return _sha256(self.manifest)

    def bundle(self) -> bytes:
        """Uncompressed two-entry archive."""
        return decompress_layer(self.layer)

    def to_tarball(self, repo_tags: list[str] | None = None) -> bytes:
        """Serialize as a ``docker save`` style tarball.

        Layout: manifest.json, config blob named after its digest, and the
        layer as <hex>.tar.gz.
        """
        layer_name = f"{self.layer_digest.split(':', 1)[1]}{LAYER_SUFFIX}"
        index = [{
            "Config": self.config_digest,
            "RepoTags": list(repo_tags or []),
            "Layers": [layer_name],
        }]
        buffer = io.BytesIO()
        try:
            with tarfile.open(fileobj=buffer, mode="w", format=tarfile.USTAR_FORMAT) as tar:
                _add_entry(tar, self.config_digest, self.config)
                _add_entry(tar, layer_name, self.layer)
                _add_entry(tar, "manifest.json", json.dumps(index, sort_keys=True).encode("utf-8"))
        except (tarfile.TarError, OSError, ValueError) as e:
            raise PackagingError(f"Failed to write image tarball: {e}")
        return buffer.getvalue()


def package(signed: SignedPayload) -> SignatureArtifact:
    """Wrap a signed payload as a fresh single-layer image.

    Raises:
        PackagingError: On any write failure
    """
    bundle = build_bundle(signed.signature, signed.body)
    layer = compress_layer(bundle)
    diff_id = _sha256(bundle)

    config = canonical_bytes({
        "architecture": "",
        "os": "",
        "config": {},
        "rootfs": {"type": "layers", "diff_ids": [diff_id]},
    })
    manifest = canonical_bytes({
        "schemaVersion": 2,
        "mediaType": MEDIA_TYPE_MANIFEST,
        "config": {
            "mediaType": MEDIA_TYPE_CONFIG,
            "size": len(config),
            "digest": _sha256(config),
        },
        "layers": [{
            "mediaType": MEDIA_TYPE_LAYER,
            "size": len(layer),
            "digest": _sha256(layer),
        }],
    })
    artifact = SignatureArtifact(layer=layer, diff_id=diff_id, config=config, manifest=manifest)
    logger.debug("Packaged signature artifact %s (layer %d bytes)", artifact.digest, len(layer))
    return artifact


def extract_layer(tarball: Path, limit: int = MAX_LAYER_SIZE) -> bytes:
    """Return the decompressed content of the sole layer in an image tarball.

    Args:
        tarball: Path to an image tarball as written by a registry pull
        limit: Largest layer accepted, both compressed and inflated

    Raises:
        ExtractionError: If there is not exactly one compressed layer, the
            layer is too large, or the tarball is malformed
    """
    try:
        with tarfile.open(tarball, mode="r:") as tar:
            candidates = [m for m in tar.getmembers() if m.isreg() and m.name.endswith(LAYER_SUFFIX)]
            if not candidates:
                raise ExtractionError(f"No {LAYER_SUFFIX} layer found in {tarball.name}")
            if len(candidates) > 1:
                names = ", ".join(m.name for m in candidates)
                raise ExtractionError(f"Expected one layer, found {len(candidates)}: {names}")
            if candidates[0].size > limit:
                raise ExtractionError(f"Layer {candidates[0].name} exceeds {limit} bytes")
            fileobj = tar.extractfile(candidates[0])
            if fileobj is None:
                raise ExtractionError(f"Layer {candidates[0].name} has no content")
            layer = fileobj.read(limit + 1)
    except (tarfile.TarError, OSError, EOFError) as e:
        raise ExtractionError(f"Malformed image tarball: {e}")
    return decompress_layer(layer, limit)
