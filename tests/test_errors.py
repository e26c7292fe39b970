"""Tests for classifying capability failures as transient or permanent."""

import smtplib
import sqlite3

import httpx
import pytest

from mailsort.errors import (
    CapabilityError,
    StoreUnavailableError,
    as_capability_error,
    as_store_error,
)


def _status_error(status: int) -> httpx.HTTPStatusError:
    request = httpx.Request("POST", "https://hooks.example.com/x")
    return httpx.HTTPStatusError(
        "error", request=request, response=httpx.Response(status, request=request)
    )


@pytest.mark.parametrize(
    "status,transient",
    [(500, True), (503, True), (429, True), (408, True), (400, False), (401, False), (404, False)],
)
def test_http_status(status, transient):
    error = as_capability_error(_status_error(status))
    assert error.transient is transient
    assert str(status) in str(error)


@pytest.mark.parametrize(
    "exc",
    [
        httpx.ConnectError("refused"),
        httpx.ReadTimeout("slow"),
        TimeoutError("slow"),
        ConnectionResetError("reset"),
        smtplib.SMTPServerDisconnected("bye"),
    ],
)
def test_transient_failures(exc):
    assert as_capability_error(exc).transient is True


def test_smtp_codes():
    assert as_capability_error(smtplib.SMTPResponseException(451, b"try later")).transient is True
    assert as_capability_error(smtplib.SMTPResponseException(550, b"no such user")).transient is False


def test_unknown_errors_are_permanent():
    assert as_capability_error(ValueError("bad address")).transient is False


def test_capability_error_passes_through():
    original = CapabilityError("already classified", transient=True)
    assert as_capability_error(original) is original


def test_store_error():
    error = as_store_error(sqlite3.OperationalError("database is locked"))
    assert isinstance(error, StoreUnavailableError)
    assert "database is locked" in str(error)
