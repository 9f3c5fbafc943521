#!/usr/bin/env python3
"""Doctor script for the provsig development and CI environment.

Verifies the interpreter, Python packages, the external registry and
GnuPG tools, signing/credential environment variables, and scans the
tree for committed key material.

Usage:
    python scripts/doctor.py

Exit codes:
    0 - All checks passed
    1 - One or more checks failed
"""

from __future__ import annotations

import os
import re
import shutil
import subprocess
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parent.parent

PASS = "\033[32mPASS\033[0m"
FAIL = "\033[31mFAIL\033[0m"
WARN = "\033[33mWARN\033[0m"
INFO = "\033[36mINFO\033[0m"

# Patterns that indicate committed key material or registry secrets
SECRET_PATTERNS = [
    re.compile(r"-----BEGIN\s+(OPENSSH\s+|PGP\s+)?PRIVATE\s+KEY(\s+BLOCK)?-----"),
    re.compile(r"(?i)PROVSIG_SIGNING_PRIVATE_KEY=[A-Za-z0-9+/]{40,}={0,2}"),
    re.compile(r"(?i)PROVSIG_REGISTRY_PASSWORD=[^\s]{8,}"),
    re.compile(r"\"auth\"\s*:\s*\"[A-Za-z0-9+/]{16,}={0,2}\""),
]


def header(title: str) -> None:
    """Print a section header."""
    print(f"\n{'=' * 60}")
    print(f"  {title}")
    print(f"{'=' * 60}")


def check_python_version() -> list[str]:
    """Check Python version meets requirements."""
    errors: list[str] = []
    major, minor = sys.version_info[:2]
    if major < 3 or (major == 3 and minor < 10):
        errors.append(f"Python >= 3.10 required, found {major}.{minor}. Install Python 3.10+.")
    else:
        print(f"    Python {major}.{minor} [{PASS}]")
    return errors


def check_python_packages() -> list[str]:
    """Check required Python packages are installed."""
    errors: list[str] = []
    # Map of package name -> import name (when they differ)
    required = {
        "click": "click",
        "cryptography": "cryptography",
        "pyyaml": "yaml",
    }

    for pkg, import_name in required.items():
        try:
            result = subprocess.run(
                [sys.executable, "-c", f"import {import_name}"],
                capture_output=True,
                text=True,
                timeout=10,
            )
            if result.returncode != 0:
                errors.append(f"Python package '{pkg}' not installed. Run: pip install -e '.[test]'")
        except subprocess.TimeoutExpired:
            errors.append(f"Timeout checking package '{pkg}'")
    if not errors:
        print(f"    Required Python packages [{PASS}]")
    return errors


def check_provsig_installed() -> list[str]:
    """Check provsig is installed in development mode."""
    errors: list[str] = []
    try:
        result = subprocess.run(
            [sys.executable, "-c", "import provsig; print(provsig.__version__)"],
            capture_output=True,
            text=True,
            timeout=10,
        )
        if result.returncode != 0:
            errors.append("provsig not installed. Run: pip install -e '.[test]'")
        else:
            print(f"    provsig {result.stdout.strip()} [{PASS}]")
    except subprocess.TimeoutExpired:
        errors.append("Timeout checking provsig installation.")
    return errors


def check_external_tools() -> list[str]:
    """Check the registry and signing tools provsig shells out to."""
    errors: list[str] = []
    crane = os.environ.get("PROVSIG_CRANE", "crane")
    gpg = os.environ.get("PROVSIG_GPG", "gpg")

    if not shutil.which(crane):
        errors.append(
            f"'{crane}' not found. Install crane: "
            "go install github.com/google/go-containerregistry/cmd/crane@latest"
        )
    else:
        print(f"    {crane} [{PASS}]")

    if not shutil.which(gpg):
        # Only the GnuPG signer and checker need it
        print(f"    [{INFO}] '{gpg}' not found. GnuPG signing and verification are unavailable.")
    else:
        print(f"    {gpg} [{PASS}]")
    return errors


def check_env_vars() -> list[str]:
    """Check signing and registry environment configuration."""
    errors: list[str] = []

    if os.environ.get("PROVSIG_SIGNING_PRIVATE_KEY"):
        print(f"    [{WARN}] PROVSIG_SIGNING_PRIVATE_KEY is set. Ensure it is not committed to source.")
    if not os.environ.get("PROVSIG_SIGNING_PUBLIC_KEY"):
        print(f"    [{INFO}] PROVSIG_SIGNING_PUBLIC_KEY not set. Pass --public-key to verify.")

    username = os.environ.get("PROVSIG_REGISTRY_USERNAME")
    password = os.environ.get("PROVSIG_REGISTRY_PASSWORD")
    if bool(username) != bool(password):
        errors.append("Set both PROVSIG_REGISTRY_USERNAME and PROVSIG_REGISTRY_PASSWORD, or neither.")

    if not errors:
        print(f"    Environment variables [{PASS}]")
    return errors


def check_secret_leakage() -> list[str]:
    """Scan source files for committed key material."""
    errors: list[str] = []

    scan_dirs = [
        ROOT / "src",
        ROOT / "tests",
        ROOT / "scripts",
    ]

    scan_extensions = {".py", ".json", ".yaml", ".yml", ".sh", ".pem", ".asc"}

    # This script holds the pattern definitions
    excluded_files = {
        "scripts/doctor.py",
    }

    files_scanned = 0

    for scan_dir in scan_dirs:
        if not scan_dir.exists():
            continue
        for fpath in scan_dir.rglob("*"):
            if not fpath.is_file():
                continue
            if fpath.suffix not in scan_extensions:
                continue
            if "__pycache__" in str(fpath):
                continue

            rel_path = str(fpath.relative_to(ROOT))
            if rel_path in excluded_files:
                continue

            files_scanned += 1
            try:
                content = fpath.read_text(encoding="utf-8", errors="ignore")
            except OSError:
                continue

            for pattern in SECRET_PATTERNS:
                if pattern.search(content):
                    errors.append(
                        f"Potential secret in {rel_path}: matches pattern "
                        f"'{pattern.pattern[:40]}...'"
                    )

    if not errors:
        print(f"    Secret scan ({files_scanned} files) [{PASS}]")
    return errors


def main() -> int:
    """Run all doctor checks."""
    header("provsig Doctor")
    all_errors: list[str] = []

    sections = [
        ("Runtime Versions", [check_python_version]),
        ("Dependencies", [check_python_packages, check_provsig_installed]),
        ("External Tools", [check_external_tools]),
        ("Environment", [check_env_vars]),
        ("Security Scan", [check_secret_leakage]),
    ]

    for section_name, checks in sections:
        print(f"\n  {section_name}:")
        for check_fn in checks:
            try:
                errors = check_fn()
            except Exception as e:
                errors = [f"Check failed unexpectedly: {e}"]
            if errors:
                for err in errors:
                    print(f"    [{FAIL}] {err}")
                all_errors.extend(errors)

    header("Summary")
    if all_errors:
        print(f"\n  {FAIL}: {len(all_errors)} issue(s) found")
        print("\n  Remediation:")
        for err in all_errors:
            print(f"    - {err}")
        return 1
    else:
        print(f"\n  {PASS}: All checks passed. Environment is healthy.")
        return 0


if __name__ == "__main__":
    sys.exit(main())
