"""Tests for reading plain and SOPS-encrypted .env scopes."""

import subprocess
from unittest.mock import MagicMock, patch

import pytest

from mailsort.secrets import load_scope


def _write(root, name: str, text: str) -> None:
    secrets_dir = root / "secrets"
    secrets_dir.mkdir(exist_ok=True)
    (secrets_dir / name).write_text(text)


class TestPlainScope:
    def test_reads_values(self, tmp_path):
        _write(tmp_path, "internal.env", "IMAP_SERVER=imap.example.com\nIMAP_PORT=993\n")

        values = load_scope(tmp_path, "internal", use_sops=False)

        assert values == {"IMAP_SERVER": "imap.example.com", "IMAP_PORT": "993"}

    def test_missing_file_is_empty(self, tmp_path):
        assert load_scope(tmp_path, "internal", use_sops=False) == {}

    def test_bare_keys_are_unset(self, tmp_path):
        _write(tmp_path, "internal.env", "OLLAMA_MODEL\nIMAP_EMAIL=me@example.com\n")

        assert load_scope(tmp_path, "internal", use_sops=False) == {"IMAP_EMAIL": "me@example.com"}


class TestSopsScope:
    def test_decrypts_with_sops(self, tmp_path):
        _write(tmp_path, "internal.env.enc", "ciphertext")
        completed = MagicMock(stdout="IMAP_PASSWORD=hunter2\n")

        with patch("mailsort.secrets.subprocess.run", return_value=completed) as run:
            values = load_scope(tmp_path, "internal", use_sops=True)

        assert values == {"IMAP_PASSWORD": "hunter2"}
        command = run.call_args.args[0]
        assert command[:2] == ["sops", "--decrypt"]
        assert command[2].endswith("internal.env.enc")

    def test_missing_encrypted_file_raises(self, tmp_path):
        _write(tmp_path, "internal.env", "IMAP_SERVER=imap.example.com\n")
        with pytest.raises(FileNotFoundError):
            load_scope(tmp_path, "internal", use_sops=True)

    def test_sops_failure_propagates(self, tmp_path):
        _write(tmp_path, "internal.env.enc", "ciphertext")
        error = subprocess.CalledProcessError(1, ["sops"])

        with patch("mailsort.secrets.subprocess.run", side_effect=error):
            with pytest.raises(subprocess.CalledProcessError):
                load_scope(tmp_path, "internal", use_sops=True)
