"""Per-message skip filters for inbox cleanup.

Each predicate is a cheap header/metadata test; none of them call the AI.
"""

from imap_tools import MailMessageFlags

from mailsort.schemas.cleanup import SkipFilters
from mailsort.schemas.email import EmailMessage

_CALENDAR_CONTENT_TYPES = ("text/calendar", "application/ics")
_CALENDAR_SUBJECT_KEYWORDS = (
    "invitation:",
    "updated invitation",
    "accepted:",
    "declined:",
    "tentatively accepted:",
    "canceled event",
    "cancelled event",
)
_RECEIPT_KEYWORDS = (
    "receipt",
    "invoice",
    "order confirmation",
    "your order",
    "payment confirmation",
    "payment received",
    "purchase confirmation",
    "billing statement",
)


def has_reply(email: EmailMessage) -> bool:
    """The user already answered this message."""
    return MailMessageFlags.ANSWERED in email.flags


def is_starred(email: EmailMessage) -> bool:
    return MailMessageFlags.FLAGGED in email.flags


def is_calendar(email: EmailMessage) -> bool:
    if any(ct.lower() in _CALENDAR_CONTENT_TYPES for ct in email.content_types):
        return True
    if any(name.lower().endswith(".ics") for name in email.attachment_names):
        return True
    subject = email.subject.lower()
    return any(keyword in subject for keyword in _CALENDAR_SUBJECT_KEYWORDS)


def is_receipt(email: EmailMessage) -> bool:
    subject = email.subject.lower()
    if any(keyword in subject for keyword in _RECEIPT_KEYWORDS):
        return True
    head = email.body[:1000].lower()
    return "receipt" in head or "invoice" in head


def has_attachment(email: EmailMessage) -> bool:
    return email.has_attachments


def matched_skip(email: EmailMessage, skips: SkipFilters) -> str | None:
    """Name of the first enabled filter the message matches, or None."""
    checks = (
        ("reply", skips.reply, has_reply),
        ("starred", skips.starred, is_starred),
        ("calendar", skips.calendar, is_calendar),
        ("receipt", skips.receipt, is_receipt),
        ("attachment", skips.attachment, has_attachment),
    )
    for name, enabled, predicate in checks:
        if enabled and predicate(email):
            return name
    return None
