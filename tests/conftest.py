"""Shared fixtures for mailsort tests."""

import pytest


@pytest.fixture(autouse=True)
def _no_sops(monkeypatch):
    """Ensure tests never try to invoke SOPS."""
    monkeypatch.setenv("MAILSORT_USE_SOPS", "false")


@pytest.fixture()
def db_path(tmp_path):
    """Path to a fresh SQLite database shared by all stores in a test."""
    return tmp_path / "mailsort.db"
