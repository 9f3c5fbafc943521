"""provsig CLI."""

from __future__ import annotations

import json
import logging
import sys
import traceback
from pathlib import Path

import click

from provsig import __version__
from provsig.config import ProvsigConfig
from provsig.errors import MalformedInput, ProvsigError
from provsig.manifest import PayloadBuilder
from provsig.publisher import Publisher, attach_signature
from provsig.reference import ImageReference, signature_reference_for
from provsig.registry import EnvCredentialProvider, RegistryClient, get_registry
from provsig.signing import (
    Ed25519Checker,
    Ed25519Signer,
    GpgChecker,
    GpgSigner,
    SignatureChecker,
    Signer,
    generate_keys,
    keys_to_env_format,
)
from provsig.verifier import Verifier


def handle_error(error: Exception, debug: bool) -> None:
    """Report an error and exit with its code.

    Args:
        error: The exception that occurred
        debug: Whether to show full traceback
    """
    if debug:
        traceback.print_exc()
    if isinstance(error, ProvsigError):
        click.echo(f"Error [{error.kind.value}]: {error.message}", err=True)
        sys.exit(error.exit_code)
    click.echo(f"Error: {error}", err=True)
    sys.exit(1)


def load_provenance(path: Path | None) -> dict:
    """Read a provenance detail JSON object from path."""
    if path is None:
        return {}
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as e:
        raise MalformedInput(f"Cannot read provenance from {path}: {e}")
    if not isinstance(data, dict):
        raise MalformedInput(f"Provenance in {path} must be a JSON object")
    return data


def build_registry(ctx: click.Context) -> RegistryClient:
    config: ProvsigConfig = ctx.obj["config"]
    return get_registry(config.registry_backend, config.crane_binary, config.command_timeout)


@click.group()
@click.version_option(version=__version__, prog_name="provsig")
@click.option('--config', 'config_path', type=click.Path(exists=True, path_type=Path), help='YAML config file')
@click.option('--registry', type=click.Choice(['crane', 'memory']), help='Registry backend override')
@click.option('--debug', is_flag=True, help='Enable debug mode (show full tracebacks)')
@click.pass_context
def cli(ctx: click.Context, config_path: Path | None, registry: str | None, debug: bool):
    """provsig - signed provenance sidecars for container images."""
    ctx.ensure_object(dict)
    try:
        config = ProvsigConfig.load(config_path, registry_backend=registry, log_level="DEBUG" if debug else None)
    except ValueError as e:
        handle_error(MalformedInput(str(e)), debug)
    except ProvsigError as e:
        handle_error(e, debug)
    logging.basicConfig(level=config.logging_level, format="%(levelname)s %(name)s: %(message)s")
    ctx.obj['config'] = config
    ctx.obj['debug'] = debug


@cli.command()
@click.argument('image')
@click.option('--public-key', type=click.Path(exists=True, path_type=Path),
              help='Ed25519 public key (raw, PEM or base64 text)')
@click.option('--gpg-homedir', type=click.Path(exists=True, file_okay=False, path_type=Path),
              help='GnuPG home directory holding the trusted keyring')
@click.option('--out', '-o', type=click.Path(file_okay=False, path_type=Path), default=Path('.'),
              help='Directory to leave body.json in (default: current directory)')
@click.option('--require-claims', is_flag=True, help='Check the signed body names this image and digest')
@click.option('--report', type=click.Path(path_type=Path), help='Write a JSON verification report')
@click.pass_context
def verify(
    ctx: click.Context,
    image: str,
    public_key: Path | None,
    gpg_homedir: Path | None,
    out: Path,
    require_claims: bool,
    report: Path | None,
):
    """Verify the sidecar signature of IMAGE (repository@sha256:<hex>).

    Uses PROVSIG_SIGNING_PUBLIC_KEY when neither --public-key nor
    --gpg-homedir is given.
    """
    if public_key is not None and gpg_homedir is not None:
        raise click.UsageError("--public-key and --gpg-homedir are mutually exclusive")
    debug = ctx.obj.get('debug', False)
    config: ProvsigConfig = ctx.obj['config']

    try:
        checker: SignatureChecker
        if gpg_homedir is not None:
            checker = GpgChecker(gpg_binary=config.gpg_binary, homedir=gpg_homedir, timeout=config.command_timeout)
        elif public_key is not None:
            checker = Ed25519Checker(public_key.read_bytes())
        else:
            checker = Ed25519Checker()

        verifier = Verifier(build_registry(ctx), checker, EnvCredentialProvider())
        result = verifier.verify(image, output_dir=out, require_claims=require_claims)

        if report:
            result.write_json(report)
        click.echo(f"Verified {image}")
        click.echo(f"  Signature: {result.signature_reference}")
        click.echo(f"  Body: {result.body_path}")
    except Exception as e:
        handle_error(e, debug)


@cli.command()
@click.argument('image')
@click.option('--provenance', '-p', type=click.Path(exists=True, path_type=Path),
              help='JSON object of provenance facts')
@click.option('--private-key', type=click.Path(exists=True, path_type=Path),
              help='Ed25519 private key (raw, PEM or base64 text)')
@click.option('--gpg-key', help='GnuPG key id to sign with')
@click.option('--gpg-homedir', type=click.Path(exists=True, file_okay=False, path_type=Path),
              help='GnuPG home directory (default secret key unless --gpg-key)')
@click.pass_context
def sign(
    ctx: click.Context,
    image: str,
    provenance: Path | None,
    private_key: Path | None,
    gpg_key: str | None,
    gpg_homedir: Path | None,
):
    """Sign IMAGE's provenance and push the signature sidecar.

    --gpg-key or --gpg-homedir signs with GnuPG; with only --gpg-homedir the
    keyring's default secret key is used. Uses PROVSIG_SIGNING_PRIVATE_KEY
    when no key option is given.
    """
    use_gpg = gpg_key is not None or gpg_homedir is not None
    if private_key is not None and use_gpg:
        raise click.UsageError("--private-key cannot be combined with --gpg-key or --gpg-homedir")
    debug = ctx.obj.get('debug', False)
    config: ProvsigConfig = ctx.obj['config']

    try:
        signer: Signer
        if use_gpg:
            signer = GpgSigner(key_id=gpg_key, gpg_binary=config.gpg_binary,
                               homedir=gpg_homedir, timeout=config.command_timeout)
        elif private_key is not None:
            signer = Ed25519Signer(private_key.read_bytes())
        else:
            signer = Ed25519Signer()

        publisher = Publisher(build_registry(ctx), EnvCredentialProvider())
        result = attach_signature(
            image,
            signer,
            publisher,
            builder=PayloadBuilder(builder_name=config.builder_name),
            provenance_detail=load_provenance(provenance),
        )
        click.echo(f"Signed {result.subject_reference} ({result.subject_digest})")
        click.echo(result.signature_reference)
    except Exception as e:
        handle_error(e, debug)


@cli.command()
@click.argument('image')
@click.option('--digest', '-d', required=True, help='Subject digest (sha256:<hex>)')
@click.option('--provenance', '-p', type=click.Path(exists=True, path_type=Path),
              help='JSON object of provenance facts')
@click.option('--out', '-o', type=click.Path(dir_okay=False, path_type=Path), help='Write payload to file')
@click.pass_context
def payload(ctx: click.Context, image: str, digest: str, provenance: Path | None, out: Path | None):
    """Print the canonical payload that would be signed for IMAGE."""
    debug = ctx.obj.get('debug', False)
    config: ProvsigConfig = ctx.obj['config']

    try:
        builder = PayloadBuilder(builder_name=config.builder_name)
        data = builder.build(image, digest, load_provenance(provenance)).data
        if out:
            out.write_bytes(data)
            click.echo(f"Payload written to: {out}")
        else:
            click.echo(data.decode("utf-8"))
    except Exception as e:
        handle_error(e, debug)


@cli.command()
@click.argument('image')
@click.pass_context
def derive(ctx: click.Context, image: str):
    """Print the sidecar reference for IMAGE (repository@sha256:<hex>)."""
    try:
        click.echo(signature_reference_for(ImageReference.parse(image, strict=False)))
    except Exception as e:
        handle_error(e, ctx.obj.get('debug', False))


@cli.command(name="generate-keys")
def generate_keys_cmd():
    """Generate a new Ed25519 signing key pair."""
    private_key, public_key = generate_keys()
    private_b64, public_b64 = keys_to_env_format(private_key, public_key)

    click.echo("Generated new Ed25519 key pair:")
    click.echo("")
    click.echo("Private key (keep secret!):")
    click.echo(f"  PROVSIG_SIGNING_PRIVATE_KEY={private_b64}")
    click.echo("")
    click.echo("Public key (share for verification):")
    click.echo(f"  PROVSIG_SIGNING_PUBLIC_KEY={public_b64}")


def main():
    """Main entry point."""
    cli()


if __name__ == "__main__":
    main()
