"""Tests for the provsig CLI."""

from __future__ import annotations

import json

import pytest
from click.testing import CliRunner

from provsig import cli as cli_module
from provsig.cli import cli
from provsig.errors import EXIT_CODES, ErrorKind
from provsig.packaging import build_bundle
from provsig.signing import PRIVATE_KEY_ENV, PUBLIC_KEY_ENV, Signer, generate_keys, keys_to_env_format
from tests.conftest import PINNED_SUBJECT, PROVENANCE, SUBJECT, SUBJECT_DIGEST, SUBJECT_HEX
from tests.test_verifier import artifact_with_bundle, signature_only_tar

SIG_REF = f"registry.example/team/app:{SUBJECT_HEX}.sig"


class RecordingGpgSigner(Signer):
    """Stands in for GpgSigner and remembers how it was built."""

    instances: list[RecordingGpgSigner] = []

    def __init__(self, **kwargs):
        self.kwargs = kwargs
        RecordingGpgSigner.instances.append(self)

    def sign(self, payload: bytes) -> bytes:
        return b"gpg-signature"


@pytest.fixture
def runner() -> CliRunner:
    return CliRunner()


@pytest.fixture(autouse=True)
def shared_registry(monkeypatch, registry):
    """Route every command to the same in-memory registry."""
    monkeypatch.setattr(cli_module, "get_registry", lambda *args, **kwargs: registry)
    for name in ("PROVSIG_REGISTRY_USERNAME", "PROVSIG_REGISTRY_PASSWORD", "PROVSIG_REGISTRY"):
        monkeypatch.delenv(name, raising=False)
    return registry


@pytest.fixture
def env_keys(monkeypatch, keypair):
    private_b64, public_b64 = keys_to_env_format(*keypair)
    monkeypatch.setenv(PRIVATE_KEY_ENV, private_b64)
    monkeypatch.setenv(PUBLIC_KEY_ENV, public_b64)


class TestSignAndVerify:
    """Test the sign and verify commands end to end."""

    def test_sign_then_verify(self, runner, env_keys, tmp_path, registry):
        provenance = tmp_path / "provenance.json"
        provenance.write_text(json.dumps(PROVENANCE))

        signed = runner.invoke(cli, ["sign", SUBJECT, "--provenance", str(provenance)])
        assert signed.exit_code == 0, signed.output
        assert SIG_REF in signed.output
        assert registry.pushes == [SIG_REF]

        out = tmp_path / "out"
        verified = runner.invoke(cli, ["verify", PINNED_SUBJECT, "--out", str(out), "--require-claims"])
        assert verified.exit_code == 0, verified.output
        body = json.loads((out / "body.json").read_text())
        assert body["Critical"]["image"]["Docker-manifest-digest"] == SUBJECT_DIGEST
        assert body["Optional"]["provenance"] == PROVENANCE

    def test_verify_leaves_body_in_working_directory(self, runner, env_keys):
        assert runner.invoke(cli, ["sign", SUBJECT]).exit_code == 0
        with runner.isolated_filesystem():
            result = runner.invoke(cli, ["verify", PINNED_SUBJECT])
            assert result.exit_code == 0, result.output
            with open("body.json", "rb") as f:
                assert SUBJECT_DIGEST.encode() in f.read()

    def test_verify_with_key_file(self, runner, env_keys, keypair, tmp_path, monkeypatch):
        assert runner.invoke(cli, ["sign", SUBJECT]).exit_code == 0
        monkeypatch.delenv(PUBLIC_KEY_ENV)
        key_file = tmp_path / "key.pub"
        key_file.write_bytes(keypair[1])

        result = runner.invoke(cli, ["verify", PINNED_SUBJECT, "--public-key", str(key_file), "--out", str(tmp_path)])
        assert result.exit_code == 0, result.output

    def test_verify_with_generated_key_line(self, runner, env_keys, keypair, tmp_path, monkeypatch):
        assert runner.invoke(cli, ["sign", SUBJECT]).exit_code == 0
        monkeypatch.delenv(PUBLIC_KEY_ENV)
        public_b64 = keys_to_env_format(*keypair)[1]
        key_file = tmp_path / "key.pub"
        key_file.write_text(f"{PUBLIC_KEY_ENV}={public_b64}\n")

        result = runner.invoke(cli, ["verify", PINNED_SUBJECT, "--public-key", str(key_file), "--out", str(tmp_path)])
        assert result.exit_code == 0, result.output

    def test_sign_with_gpg_homedir_uses_default_key(self, runner, monkeypatch, registry, tmp_path):
        monkeypatch.delenv(PRIVATE_KEY_ENV, raising=False)
        monkeypatch.setattr(RecordingGpgSigner, "instances", [])
        monkeypatch.setattr(cli_module, "GpgSigner", RecordingGpgSigner)

        result = runner.invoke(cli, ["sign", SUBJECT, "--gpg-homedir", str(tmp_path)])
        assert result.exit_code == 0, result.output
        assert registry.pushes == [SIG_REF]
        [signer] = RecordingGpgSigner.instances
        assert signer.kwargs["homedir"] == tmp_path
        assert signer.kwargs["key_id"] is None

    def test_verify_report(self, runner, env_keys, tmp_path):
        assert runner.invoke(cli, ["sign", SUBJECT]).exit_code == 0
        report = tmp_path / "report.json"
        result = runner.invoke(cli, ["verify", PINNED_SUBJECT, "--out", str(tmp_path), "--report", str(report)])
        assert result.exit_code == 0, result.output
        assert json.loads(report.read_text())["stages"][-1] == "signature_checked"


class TestExitCodes:
    """Each failure kind exits with its own non-zero code."""

    def test_verify_wrong_key(self, runner, env_keys, tmp_path):
        assert runner.invoke(cli, ["sign", SUBJECT]).exit_code == 0
        other = tmp_path / "other.pub"
        other.write_bytes(generate_keys()[1])

        result = runner.invoke(cli, ["verify", PINNED_SUBJECT, "--public-key", str(other), "--out", str(tmp_path)])
        assert result.exit_code == EXIT_CODES[ErrorKind.VERIFICATION_FAILED]
        assert "VERIFICATION_FAILED" in result.output
        assert not (tmp_path / "body.json").exists()

    def test_verify_without_public_key(self, runner, env_keys, monkeypatch, tmp_path):
        assert runner.invoke(cli, ["sign", SUBJECT]).exit_code == 0
        monkeypatch.delenv(PUBLIC_KEY_ENV)

        result = runner.invoke(cli, ["verify", PINNED_SUBJECT, "--out", str(tmp_path)])
        assert result.exit_code == EXIT_CODES[ErrorKind.CREDENTIAL_FAILURE]
        assert "CREDENTIAL_FAILURE" in result.output
        assert not (tmp_path / "body.json").exists()

    def test_verify_unreadable_public_key(self, runner, env_keys, tmp_path):
        assert runner.invoke(cli, ["sign", SUBJECT]).exit_code == 0
        key_file = tmp_path / "key.pub"
        key_file.write_text("not a key\n")

        result = runner.invoke(cli, ["verify", PINNED_SUBJECT, "--public-key", str(key_file), "--out", str(tmp_path)])
        assert result.exit_code == EXIT_CODES[ErrorKind.CREDENTIAL_FAILURE]

    def test_verify_key_and_keyring_conflict(self, runner, env_keys, tmp_path):
        key_file = tmp_path / "key.pub"
        key_file.write_text("unused")
        result = runner.invoke(
            cli, ["verify", PINNED_SUBJECT, "--public-key", str(key_file), "--gpg-homedir", str(tmp_path)]
        )
        assert result.exit_code == 2

    def test_verify_missing_sidecar(self, runner, env_keys, tmp_path):
        result = runner.invoke(cli, ["verify", PINNED_SUBJECT, "--out", str(tmp_path)])
        assert result.exit_code == 9

    def test_verify_malformed_sidecar(self, runner, env_keys, registry, tmp_path):
        registry.push(SIG_REF, artifact_with_bundle(signature_only_tar()))
        result = runner.invoke(cli, ["verify", PINNED_SUBJECT, "--out", str(tmp_path)])
        assert result.exit_code == EXIT_CODES[ErrorKind.EXTRACTION_ERROR]

    def test_verify_bad_reference(self, runner, env_keys):
        result = runner.invoke(cli, ["verify", "Not/A/Reference"])
        assert result.exit_code == EXIT_CODES[ErrorKind.INPUT_VALIDATION]

    def test_verify_unsigned_body_garbage(self, runner, env_keys, registry, tmp_path):
        registry.push(SIG_REF, artifact_with_bundle(build_bundle(b"x" * 64, b"{}")))
        result = runner.invoke(cli, ["verify", PINNED_SUBJECT, "--out", str(tmp_path)])
        assert result.exit_code == EXIT_CODES[ErrorKind.VERIFICATION_FAILED]

    def test_sign_without_key(self, runner, monkeypatch, registry):
        monkeypatch.delenv(PRIVATE_KEY_ENV, raising=False)
        result = runner.invoke(cli, ["sign", SUBJECT])
        assert result.exit_code == EXIT_CODES[ErrorKind.CREDENTIAL_FAILURE]
        assert registry.pushes == []

    def test_sign_key_options_conflict(self, runner, env_keys, registry, tmp_path):
        key_file = tmp_path / "key"
        key_file.write_text("unused")
        result = runner.invoke(cli, ["sign", SUBJECT, "--private-key", str(key_file), "--gpg-key", "ABCD1234"])
        assert result.exit_code == 2
        assert registry.pushes == []

    def test_sign_unknown_image(self, runner, env_keys):
        result = runner.invoke(cli, ["sign", "registry.example/team/missing:v1"])
        assert result.exit_code == 9

    def test_bad_config(self, runner, tmp_path):
        config = tmp_path / "provsig.yaml"
        config.write_text("registry_backend: ftp\n")
        result = runner.invoke(cli, ["--config", str(config), "derive", PINNED_SUBJECT])
        assert result.exit_code == EXIT_CODES[ErrorKind.INPUT_VALIDATION]

    def test_numeric_log_level_in_config(self, runner, tmp_path):
        config = tmp_path / "provsig.yaml"
        config.write_text("log_level: 10\n")
        result = runner.invoke(cli, ["--config", str(config), "derive", PINNED_SUBJECT])
        assert result.exit_code == EXIT_CODES[ErrorKind.INPUT_VALIDATION]


class TestOfflineCommands:
    """Commands that do not touch a registry."""

    def test_derive(self, runner):
        result = runner.invoke(cli, ["derive", "registry.example/repo@sha256:deadbeef"])
        assert result.exit_code == 0
        assert result.output.strip() == "registry.example/repo:deadbeef.sig"

    def test_derive_requires_digest(self, runner):
        result = runner.invoke(cli, ["derive", SUBJECT])
        assert result.exit_code == EXIT_CODES[ErrorKind.INPUT_VALIDATION]

    def test_payload(self, runner, tmp_path):
        provenance = tmp_path / "provenance.json"
        provenance.write_text(json.dumps(PROVENANCE))
        first = runner.invoke(cli, ["payload", SUBJECT, "--digest", SUBJECT_DIGEST, "-p", str(provenance)])
        second = runner.invoke(cli, ["payload", SUBJECT, "--digest", SUBJECT_DIGEST, "-p", str(provenance)])

        assert first.exit_code == 0
        assert first.output == second.output
        assert json.loads(first.output)["Critical"]["identity"]["docker-reference"] == SUBJECT

    def test_payload_rejects_non_object_provenance(self, runner, tmp_path):
        provenance = tmp_path / "provenance.json"
        provenance.write_text("[1, 2]")
        result = runner.invoke(cli, ["payload", SUBJECT, "--digest", SUBJECT_DIGEST, "-p", str(provenance)])
        assert result.exit_code == EXIT_CODES[ErrorKind.INPUT_VALIDATION]

    def test_generate_keys(self, runner):
        result = runner.invoke(cli, ["generate-keys"])
        assert result.exit_code == 0
        assert "PROVSIG_SIGNING_PRIVATE_KEY=" in result.output
        assert "PROVSIG_SIGNING_PUBLIC_KEY=" in result.output
