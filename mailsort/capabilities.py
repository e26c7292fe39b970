"""Interfaces of the collaborators the core consumes.

The IMAP/SMTP client, the webhook client and the Ollama-backed executors
are the shipped implementations; tests substitute mocks.
"""

from collections.abc import Awaitable, Callable
from datetime import datetime
from typing import Protocol

from mailsort.schemas.email import EmailMessage
from mailsort.schemas.rules import DraftedRule

# (email, instructions) -> does the email match?
AiConditionCheck = Callable[[EmailMessage, str], Awaitable[bool]]

# (field name, email, rule instructions, hint) -> generated value
FieldGenerator = Callable[[str, EmailMessage, str | None, str | None], Awaitable[str]]

# sender address -> category name, or None when uncategorized
CategoryLookup = Callable[[str], str | None]

# sender address -> short text describing recent mail from that sender
SenderContextFetcher = Callable[[str], Awaitable[str]]

# free-text rules prompt -> rules drafted by the AI
RuleWriter = Callable[[str], Awaitable[list[DraftedRule]]]


class MailProvider(Protocol):
    async def archive(self, uid: str) -> None: ...

    async def mark_read(self, uid: str) -> None: ...

    async def mark_spam(self, uid: str) -> None: ...

    async def label(self, uid: str, name: str) -> None: ...

    async def forward(
        self, email: EmailMessage, to: str, *, content: str = "", cc: str = "", bcc: str = ""
    ) -> None: ...

    async def reply(
        self, email: EmailMessage, content: str, *, cc: str = "", bcc: str = ""
    ) -> None: ...

    async def send_email(
        self, to: str, subject: str, content: str, *, cc: str = "", bcc: str = ""
    ) -> None: ...

    async def draft_email(
        self, email: EmailMessage, content: str, *, subject: str = "", to: str = ""
    ) -> None: ...

    async def fetch_messages(self, *, limit: int = 0) -> list[EmailMessage]: ...

    async def fetch_older_than(
        self, cutoff: datetime, *, after_uid: int = 0, limit: int = 0
    ) -> list[EmailMessage]: ...

    async def fetch_from_sender(self, address: str, *, limit: int = 5) -> list[EmailMessage]: ...

    async def fetch_sender_addresses(self, *, limit: int = 500) -> list[str]: ...


class Webhooks(Protocol):
    async def call(self, url: str, payload: dict) -> None: ...
