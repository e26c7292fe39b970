"""Mail provider backed by IMAP (imap-tools) and SMTP.

imap-tools and smtplib are synchronous; all public methods use
asyncio.to_thread() for non-blocking operation. One IMAP connection
carries one command at a time, so mailbox work is serialized by a lock
held in the worker thread.

Usage::

    async with ImapClient(account_config) as imap:
        emails = await imap.fetch_messages(limit=50)
        await imap.archive(emails[0].uid)
"""

import asyncio
import logging
import re
import smtplib
import threading
from collections.abc import Callable
from datetime import datetime
from email.message import EmailMessage as MimeMessage
from email.utils import formatdate, make_msgid, parseaddr
from typing import TypeVar

from imap_tools import AND, U, MailBox, MailboxLoginError, MailMessage, MailMessageFlags

from mailsort.schemas.email import EmailAccountConfig, EmailMessage

logger = logging.getLogger(__name__)

_KEYWORD_UNSAFE = re.compile(r"[^A-Za-z0-9_.-]+")

T = TypeVar("T")


def _header(msg: MailMessage, name: str) -> str:
    values = msg.headers.get(name.lower(), ())
    return values[0].strip() if values else ""


def _parse_message(msg: MailMessage, account_email: str) -> EmailMessage:
    """Convert an imap-tools MailMessage to an EmailMessage."""
    from_name, from_addr = parseaddr(msg.from_)
    attachments = list(msg.attachments)
    return EmailMessage(
        uid=msg.uid,
        account_email=account_email,
        message_id=_header(msg, "message-id"),
        in_reply_to=_header(msg, "in-reply-to"),
        from_address=from_addr or msg.from_,
        from_name=from_name,
        to=list(msg.to),
        cc=list(msg.cc),
        subject=msg.subject or "",
        date=msg.date,
        flags=list(msg.flags),
        body_text=msg.text or "",
        body_html=msg.html or "",
        has_attachments=len(attachments) > 0,
        attachment_names=[a.filename for a in attachments if a.filename],
        content_types=[a.content_type for a in attachments],
    )


def _split_addresses(value: str) -> list[str]:
    return [a.strip() for a in value.split(",") if a.strip()]


class ImapClient:
    """Async IMAP/SMTP mail provider.

    Archive, spam and drafts map to folders from the account config.
    Labels are Gmail labels (copy to label folder) on Gmail, IMAP keywords
    elsewhere.
    """

    def __init__(self, config: EmailAccountConfig) -> None:
        self._config = config
        self._mailbox: MailBox | None = None
        self._known_folders: set[str] | None = None
        self._lock = threading.Lock()

    async def __aenter__(self) -> "ImapClient":
        self._mailbox = await asyncio.to_thread(self._connect)
        return self

    async def __aexit__(self, *exc: object) -> None:
        if self._mailbox:
            await asyncio.to_thread(self._disconnect)
            self._mailbox = None

    def _connect(self) -> MailBox:
        if self._config.ssl:
            mb = MailBox(self._config.server, port=self._config.port)
        else:
            from imap_tools import MailBoxUnencrypted

            mb = MailBoxUnencrypted(self._config.server, port=self._config.port)

        try:
            mb.login(self._config.email, self._config.password, initial_folder=self.inbox)
        except MailboxLoginError:
            logger.error("IMAP login failed for %s", self._config.email)
            raise

        logger.info("Connected to %s as %s", self._config.server, self._config.email)
        return mb

    def _disconnect(self) -> None:
        if self._mailbox:
            try:
                with self._lock:
                    self._mailbox.logout()
            except Exception:
                logger.debug("Error during IMAP logout", exc_info=True)

    def _locked(self, fn: Callable[[], T]) -> T:
        with self._lock:
            return fn()

    async def _call(self, fn: Callable[[], T]) -> T:
        """Run mailbox work in a thread, one command at a time.

        The lock is taken inside the thread, so a cancelled caller keeps the
        connection busy until its command has actually finished.
        """
        return await asyncio.to_thread(self._locked, fn)

    @property
    def mailbox(self) -> MailBox:
        if self._mailbox is None:
            raise RuntimeError("ImapClient is not connected. Use 'async with' context.")
        return self._mailbox

    @property
    def inbox(self) -> str:
        return self._config.folders.get("inbox", "INBOX")

    def _folder(self, key: str, default: str) -> str:
        return self._config.folders.get(key, default)

    def _ensure_folder(self, folder: str) -> None:
        if self._known_folders is None:
            self._known_folders = {f.name for f in self.mailbox.folder.list()}
        if folder not in self._known_folders:
            self.mailbox.folder.create(folder)
            self._known_folders.add(folder)
            logger.info("Created IMAP folder: %s", folder)

    # --- Fetch ---

    async def fetch_messages(self, *, limit: int = 0) -> list[EmailMessage]:
        """Fetch unread messages from the inbox, newest first."""

        def _fetch() -> list[EmailMessage]:
            self.mailbox.folder.set(self.inbox)
            msgs = self.mailbox.fetch(
                AND(seen=False),
                mark_seen=False,
                reverse=True,
                limit=limit if limit > 0 else None,
            )
            return [_parse_message(m, self._config.email) for m in msgs]

        return await self._call(_fetch)

    async def fetch_older_than(
        self, cutoff: datetime, *, after_uid: int = 0, limit: int = 0
    ) -> list[EmailMessage]:
        """Inbox messages received before ``cutoff`` with UID > ``after_uid``.

        Returned oldest first (ascending UID).
        """

        def _fetch() -> list[EmailMessage]:
            self.mailbox.folder.set(self.inbox)
            criteria = AND(date_lt=cutoff.date(), uid=U(str(after_uid + 1), "*"))
            msgs = self.mailbox.fetch(
                criteria,
                mark_seen=False,
                limit=limit if limit > 0 else None,
            )
            # "N:*" always includes the highest UID, even when it is below N.
            parsed = [
                _parse_message(m, self._config.email) for m in msgs if int(m.uid) > after_uid
            ]
            return sorted(parsed, key=lambda e: int(e.uid))

        return await self._call(_fetch)

    async def fetch_from_sender(self, address: str, *, limit: int = 5) -> list[EmailMessage]:
        """Most recent messages from one sender."""

        def _fetch() -> list[EmailMessage]:
            self.mailbox.folder.set(self.inbox)
            msgs = self.mailbox.fetch(
                AND(from_=address), mark_seen=False, reverse=True, limit=limit
            )
            return [_parse_message(m, self._config.email) for m in msgs]

        return await self._call(_fetch)

    async def fetch_sender_addresses(self, *, limit: int = 500) -> list[str]:
        """Sender addresses of the most recent inbox messages (headers only)."""

        def _fetch() -> list[str]:
            self.mailbox.folder.set(self.inbox)
            msgs = self.mailbox.fetch(
                AND(all=True), headers_only=True, mark_seen=False, reverse=True, limit=limit
            )
            return [parseaddr(m.from_)[1] or m.from_ for m in msgs]

        return await self._call(_fetch)

    # --- Mailbox actions ---

    async def archive(self, uid: str) -> None:
        """Remove from the inbox. Gmail keeps the message in All Mail."""

        def _do() -> None:
            self.mailbox.folder.set(self.inbox)
            if self._config.is_gmail:
                self.mailbox.delete([uid])
            else:
                target = self._folder("archive", "Archive")
                self._ensure_folder(target)
                self.mailbox.move([uid], target)
            logger.info("Archived email %s", uid)

        await self._call(_do)

    async def mark_read(self, uid: str) -> None:
        def _do() -> None:
            self.mailbox.folder.set(self.inbox)
            self.mailbox.flag([uid], MailMessageFlags.SEEN, True)

        await self._call(_do)

    async def mark_spam(self, uid: str) -> None:
        def _do() -> None:
            self.mailbox.folder.set(self.inbox)
            target = self._folder("spam", "[Gmail]/Spam" if self._config.is_gmail else "Junk")
            self._ensure_folder(target)
            self.mailbox.move([uid], target)
            logger.info("Moved email %s to %s", uid, target)

        await self._call(_do)

    async def label(self, uid: str, name: str) -> None:
        def _do() -> None:
            self.mailbox.folder.set(self.inbox)
            if self._config.is_gmail:
                self._ensure_folder(name)
                self.mailbox.copy([uid], name)
            else:
                keyword = _KEYWORD_UNSAFE.sub("_", name).strip("_") or "Labelled"
                self.mailbox.flag([uid], keyword, True)
            logger.info("Labelled email %s as %s", uid, name)

        await self._call(_do)

    async def draft_email(
        self, email: EmailMessage, content: str, *, subject: str = "", to: str = ""
    ) -> None:
        """Save a reply draft in the drafts folder."""
        mime = self._build_reply(email, content, subject=subject, to=to)

        def _do() -> None:
            folder = self._folder("drafts", "[Gmail]/Drafts" if self._config.is_gmail else "Drafts")
            self._ensure_folder(folder)
            self.mailbox.append(mime.as_bytes(), folder, flag_set=[MailMessageFlags.DRAFT])
            logger.info("Drafted reply to email %s", email.uid)

        await self._call(_do)

    # --- Sending ---

    async def reply(self, email: EmailMessage, content: str, *, cc: str = "", bcc: str = "") -> None:
        mime = self._build_reply(email, content, cc=cc)
        await asyncio.to_thread(self._send, mime, _split_addresses(bcc))

    async def forward(
        self, email: EmailMessage, to: str, *, content: str = "", cc: str = "", bcc: str = ""
    ) -> None:
        mime = MimeMessage()
        mime["From"] = self._config.email
        mime["To"] = to
        if cc:
            mime["Cc"] = cc
        mime["Subject"] = f"Fwd: {email.subject}"
        mime["Date"] = formatdate(localtime=True)
        mime["Message-ID"] = make_msgid()
        quoted = (
            "---------- Forwarded message ---------\n"
            f"From: {email.from_name} <{email.from_address}>\n"
            f"Date: {email.date.isoformat() if email.date else ''}\n"
            f"Subject: {email.subject}\n\n"
            f"{email.body}"
        )
        mime.set_content(f"{content}\n\n{quoted}" if content else quoted)
        await asyncio.to_thread(self._send, mime, _split_addresses(bcc))

    async def send_email(
        self, to: str, subject: str, content: str, *, cc: str = "", bcc: str = ""
    ) -> None:
        mime = MimeMessage()
        mime["From"] = self._config.email
        mime["To"] = to
        if cc:
            mime["Cc"] = cc
        mime["Subject"] = subject
        mime["Date"] = formatdate(localtime=True)
        mime["Message-ID"] = make_msgid()
        mime.set_content(content)
        await asyncio.to_thread(self._send, mime, _split_addresses(bcc))

    def _build_reply(
        self, email: EmailMessage, content: str, *, subject: str = "", to: str = "", cc: str = ""
    ) -> MimeMessage:
        mime = MimeMessage()
        mime["From"] = self._config.email
        mime["To"] = to or email.from_address
        if cc:
            mime["Cc"] = cc
        original = email.subject or ""
        mime["Subject"] = subject or (original if original.lower().startswith("re:") else f"Re: {original}")
        mime["Date"] = formatdate(localtime=True)
        mime["Message-ID"] = make_msgid()
        if email.message_id:
            mime["In-Reply-To"] = email.message_id
            mime["References"] = email.message_id
        mime.set_content(content)
        return mime

    def _send(self, mime: MimeMessage, bcc: list[str]) -> None:
        """Deliver via SMTP with STARTTLS (sync, called via to_thread)."""
        if not self._config.smtp_server:
            raise RuntimeError("SMTP server is not configured")
        recipients = _split_addresses(mime["To"] or "") + _split_addresses(mime["Cc"] or "") + bcc
        with smtplib.SMTP(self._config.smtp_server, self._config.smtp_port, timeout=30) as smtp:
            smtp.starttls()
            smtp.login(self._config.email, self._config.password)
            smtp.send_message(mime, to_addrs=recipients)
        logger.info("Sent '%s' to %d recipient(s)", mime["Subject"], len(recipients))
