"""Tests for mailsort.integrations.imap — mail provider with mocked MailBox."""

import asyncio
import threading
import time
from datetime import UTC, datetime
from unittest.mock import MagicMock, patch

import pytest
from imap_tools import MailMessageFlags

from mailsort.integrations.imap import ImapClient, _parse_message
from mailsort.schemas.email import EmailAccountConfig, EmailMessage

# --- Mock helpers ---


class MockAttachment:
    """Minimal mock for an imap-tools attachment."""

    def __init__(self, filename: str = "file.pdf", content_type: str = "application/pdf"):
        self.filename = filename
        self.content_type = content_type


class MockMailMessage:
    """Minimal mock for an imap-tools MailMessage."""

    def __init__(
        self,
        uid="123",
        from_="Test Sender <test@example.com>",
        to=("recipient@example.com",),
        cc=(),
        subject="Test Subject",
        date=datetime(2024, 1, 1, tzinfo=UTC),
        flags=("\\Seen",),
        text="Hello body",
        html="",
        attachments=(),
        headers=None,
    ):
        self.uid = uid
        self.from_ = from_
        self.to = to
        self.cc = cc
        self.subject = subject
        self.date = date
        self.flags = flags
        self.text = text
        self.html = html
        self.attachments = attachments
        self.headers = headers or {}


def _make_config(**overrides) -> EmailAccountConfig:
    defaults = dict(
        name="test",
        server="imap.example.com",
        email="user@example.com",
        password="secret",
        smtp_server="smtp.example.com",
    )
    defaults.update(overrides)
    return EmailAccountConfig(**defaults)


def _connected(config: EmailAccountConfig | None = None, *, folders=("INBOX",)):
    client = ImapClient(config or _make_config())
    mock_mailbox = MagicMock()
    existing = []
    for name in folders:
        folder = MagicMock()
        folder.name = name
        existing.append(folder)
    mock_mailbox.folder.list.return_value = existing
    client._mailbox = mock_mailbox
    return client, mock_mailbox


# --- _parse_message ---


class TestParseMessage:
    def test_basic_message(self):
        msg = MockMailMessage(
            text="Plain body",
            html="<p>HTML body</p>",
            headers={"message-id": (" <m1@example.com> ",), "in-reply-to": ("<m0@example.com>",)},
        )
        email = _parse_message(msg, "user@example.com")

        assert email.uid == "123"
        assert email.account_email == "user@example.com"
        assert email.from_address == "test@example.com"
        assert email.from_name == "Test Sender"
        assert email.message_id == "<m1@example.com>"
        assert email.is_thread_reply is True
        assert email.flags == ["\\Seen"]
        assert email.has_attachments is False

    def test_no_from_name(self):
        email = _parse_message(MockMailMessage(from_="noreply@system.com"), "user@example.com")
        assert email.from_address == "noreply@system.com"
        assert email.from_name == ""

    def test_attachments_and_content_types(self):
        attachments = [
            MockAttachment("invite.ics", "text/calendar"),
            MockAttachment("", "image/png"),
        ]
        email = _parse_message(MockMailMessage(attachments=attachments), "user@example.com")

        assert email.has_attachments is True
        # The empty-filename attachment is filtered from names but still counted
        assert email.attachment_names == ["invite.ics"]
        assert email.content_types == ["text/calendar", "image/png"]

    def test_missing_subject(self):
        email = _parse_message(MockMailMessage(subject=None), "user@example.com")
        assert email.subject == ""


# --- Fetch ---


class TestFetch:
    async def test_fetch_older_than_sorted_and_filtered(self):
        client, mailbox = _connected()
        mailbox.fetch.return_value = [
            MockMailMessage(uid="30"),
            MockMailMessage(uid="12"),
            MockMailMessage(uid="5"),  # returned by "N:*" when nothing newer exists
        ]

        emails = await client.fetch_older_than(
            datetime(2026, 1, 1, tzinfo=UTC), after_uid=10, limit=50
        )

        assert [e.uid for e in emails] == ["12", "30"]
        mailbox.folder.set.assert_called_with("INBOX")
        assert mailbox.fetch.call_args.kwargs["limit"] == 50
        assert mailbox.fetch.call_args.kwargs["mark_seen"] is False

    async def test_fetch_messages_unbounded(self):
        client, mailbox = _connected()
        mailbox.fetch.return_value = [MockMailMessage()]

        emails = await client.fetch_messages()

        assert len(emails) == 1
        assert mailbox.fetch.call_args.kwargs["limit"] is None

    async def test_fetch_sender_addresses(self):
        client, mailbox = _connected()
        mailbox.fetch.return_value = [
            MockMailMessage(from_="News <news@example.com>"),
            MockMailMessage(from_="bare@example.com"),
        ]

        addresses = await client.fetch_sender_addresses(limit=10)

        assert addresses == ["news@example.com", "bare@example.com"]
        assert mailbox.fetch.call_args.kwargs["headers_only"] is True


# --- Mailbox actions ---


class TestActions:
    async def test_gmail_archive_removes_from_inbox(self):
        client, mailbox = _connected(_make_config(is_gmail=True))
        await client.archive("7")
        mailbox.delete.assert_called_once_with(["7"])
        mailbox.move.assert_not_called()

    async def test_standard_archive_moves_and_creates_folder(self):
        client, mailbox = _connected()
        await client.archive("7")
        mailbox.folder.create.assert_called_once_with("Archive")
        mailbox.move.assert_called_once_with(["7"], "Archive")

    async def test_existing_folder_not_recreated(self):
        client, mailbox = _connected(folders=("INBOX", "Junk"))
        await client.mark_spam("7")
        mailbox.folder.create.assert_not_called()
        mailbox.move.assert_called_once_with(["7"], "Junk")

    async def test_mark_read(self):
        client, mailbox = _connected()
        await client.mark_read("7")
        mailbox.flag.assert_called_once_with(["7"], MailMessageFlags.SEEN, True)

    async def test_gmail_label_copies_to_label_folder(self):
        client, mailbox = _connected(_make_config(is_gmail=True))
        await client.label("7", "Newsletter")
        mailbox.copy.assert_called_once_with(["7"], "Newsletter")

    async def test_label_as_keyword(self):
        client, mailbox = _connected()
        await client.label("7", "Cold Email!")
        mailbox.flag.assert_called_once_with(["7"], "Cold_Email", True)


# --- Sending ---


class TestSending:
    def _email(self) -> EmailMessage:
        return EmailMessage(
            uid="7",
            message_id="<m7@example.com>",
            from_address="friend@example.com",
            subject="Lunch?",
        )

    async def test_reply_threads_and_sends(self):
        client, _mailbox = _connected()
        with patch("mailsort.integrations.imap.smtplib.SMTP") as smtp_cls:
            await client.reply(self._email(), "Sure!", bcc="me@example.com")

        smtp = smtp_cls.return_value.__enter__.return_value
        smtp.starttls.assert_called_once()
        mime = smtp.send_message.call_args.args[0]
        assert mime["Subject"] == "Re: Lunch?"
        assert mime["In-Reply-To"] == "<m7@example.com>"
        assert smtp.send_message.call_args.kwargs["to_addrs"] == [
            "friend@example.com",
            "me@example.com",
        ]

    async def test_send_without_smtp_server(self):
        client, _mailbox = _connected(_make_config(smtp_server=""))
        with pytest.raises(RuntimeError, match="SMTP server is not configured"):
            await client.send_email("a@example.com", "Hi", "Body")

    async def test_draft_appended_to_drafts_folder(self):
        client, mailbox = _connected(folders=("INBOX", "Drafts"))
        await client.draft_email(self._email(), "Draft text")

        args, kwargs = mailbox.append.call_args
        assert args[1] == "Drafts"
        assert kwargs["flag_set"] == [MailMessageFlags.DRAFT]


class TestMailboxProperty:
    def test_mailbox_not_connected_raises(self):
        client = ImapClient(_make_config())
        with pytest.raises(RuntimeError, match="not connected"):
            _ = client.mailbox


class CountingMailbox:
    """MailBox stand-in that records how many commands overlap."""

    def __init__(self):
        self.active = 0
        self.peak = 0
        self._guard = threading.Lock()
        self.folder = MagicMock()

    def fetch(self, *args, **kwargs):
        with self._guard:
            self.active += 1
            self.peak = max(self.peak, self.active)
        time.sleep(0.05)
        with self._guard:
            self.active -= 1
        return [MockMailMessage()]

    def flag(self, *args, **kwargs):
        self.fetch()


class TestSerializedAccess:
    async def test_concurrent_commands_never_overlap(self):
        client = ImapClient(_make_config())
        mailbox = CountingMailbox()
        client._mailbox = mailbox

        results = await asyncio.gather(
            client.fetch_from_sender("a@x.com"),
            client.fetch_from_sender("b@y.com"),
            client.fetch_from_sender("c@z.com"),
            client.mark_read("7"),
        )

        assert mailbox.peak == 1
        assert [len(r) for r in results[:3]] == [1, 1, 1]

    async def test_cancelled_caller_holds_connection_until_done(self):
        client = ImapClient(_make_config())
        mailbox = CountingMailbox()
        client._mailbox = mailbox

        first = asyncio.create_task(client.fetch_from_sender("a@x.com"))
        await asyncio.sleep(0.01)
        first.cancel()
        await client.fetch_from_sender("b@y.com")

        with pytest.raises(asyncio.CancelledError):
            await first
        assert mailbox.peak == 1
