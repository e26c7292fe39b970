"""Reads the key-value files behind mailsort.config.

Each scope lives in ``secrets/<scope>.env``, or in ``secrets/<scope>.env.enc``
when SOPS is on. The plain file is optional because every key can also be set
in the process environment, which is how tests and containers run mailsort.
The encrypted file is required: asking for SOPS without one is a setup error.
"""

import subprocess
from io import StringIO
from pathlib import Path

from dotenv import dotenv_values

SOPS_COMMAND = "sops"


def _without_empty_keys(values: dict[str, str | None]) -> dict[str, str]:
    # dotenv maps a bare "KEY" line to None; treat it as unset.
    return {key: value for key, value in values.items() if value is not None}


def decrypt_env(encrypted_path: Path) -> dict[str, str]:
    """Decrypt a SOPS-encrypted .env file.

    Raises:
        FileNotFoundError: If the encrypted file does not exist.
        subprocess.CalledProcessError: If SOPS decryption fails.
    """
    if not encrypted_path.exists():
        raise FileNotFoundError(f"Encrypted secrets file not found: {encrypted_path}")

    result = subprocess.run(
        [SOPS_COMMAND, "--decrypt", str(encrypted_path)],
        capture_output=True,
        text=True,
        check=True,
    )
    return _without_empty_keys(dotenv_values(stream=StringIO(result.stdout)))


def read_env(dotenv_path: Path) -> dict[str, str]:
    """Plain .env values, or nothing when the file is absent."""
    if not dotenv_path.exists():
        return {}
    return _without_empty_keys(dotenv_values(dotenv_path))


def load_scope(root: str | Path, scope: str, *, use_sops: bool) -> dict[str, str]:
    """Values for one scope (e.g. ``internal``) under ``root/secrets``."""
    base = Path(root) / "secrets"
    if use_sops:
        return decrypt_env(base / f"{scope}.env.enc")
    return read_env(base / f"{scope}.env")
