"""Exception taxonomy shared by the rules, action and cleanup layers."""

import imaplib
import smtplib
import sqlite3

import httpx


class MailsortError(Exception):
    """Base class for all mailsort errors."""


class RuleValidationError(MailsortError):
    """A rule or action payload is malformed. Never persisted."""

    def __init__(self, field: str, message: str) -> None:
        super().__init__(f"{field}: {message}" if field else message)
        self.field = field
        self.message = message


class RuleConflictError(RuleValidationError):
    """Structural rule conflict: empty lists or duplicate condition types."""


class CapabilityError(MailsortError):
    """An AI or mail-provider call failed.

    ``transient`` errors may succeed on retry (timeouts, dropped
    connections, 5xx/429); permanent ones (4xx-class) will not.
    """

    def __init__(self, message: str, *, transient: bool) -> None:
        super().__init__(message)
        self.transient = transient


class StoreUnavailableError(MailsortError):
    """Persistence failed. Aborts the enclosing operation."""


class CleanupJobNotFoundError(MailsortError):
    """No cleanup job exists with the given id."""


def as_capability_error(exc: BaseException) -> CapabilityError:
    """Classify a provider/transport exception as transient or permanent."""
    if isinstance(exc, CapabilityError):
        return exc
    if isinstance(exc, httpx.HTTPStatusError):
        status = exc.response.status_code
        transient = status >= 500 or status in (408, 429)
        return CapabilityError(f"HTTP {status} from {exc.request.url}", transient=transient)
    if isinstance(exc, httpx.TransportError):
        return CapabilityError(f"Transport error: {exc}", transient=True)
    if isinstance(exc, smtplib.SMTPResponseException):
        return CapabilityError(
            f"SMTP {exc.smtp_code}: {exc.smtp_error!r}",
            transient=400 <= exc.smtp_code < 500,
        )
    if isinstance(exc, (smtplib.SMTPServerDisconnected, imaplib.IMAP4.abort)):
        return CapabilityError(f"Connection dropped: {exc}", transient=True)
    if isinstance(exc, (TimeoutError, ConnectionError)):
        return CapabilityError(f"Network error: {exc}", transient=True)
    return CapabilityError(f"{type(exc).__name__}: {exc}", transient=False)


def as_store_error(exc: sqlite3.Error) -> StoreUnavailableError:
    return StoreUnavailableError(f"Persistence failure: {exc}")
