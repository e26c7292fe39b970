"""Schemas for email messages and the mail account they come from."""

from datetime import datetime

from pydantic import BaseModel, Field


class EmailAccountConfig(BaseModel):
    """Configuration for the mail account mailsort acts on."""

    name: str = "default"
    server: str
    email: str
    password: str
    port: int = 993
    ssl: bool = True
    is_gmail: bool = False
    smtp_server: str = ""
    smtp_port: int = 587
    # logical name -> IMAP folder path
    folders: dict[str, str] = Field(
        default_factory=lambda: {
            "inbox": "INBOX",
            "archive": "Archive",
            "spam": "Junk",
            "drafts": "Drafts",
        }
    )


class EmailMessage(BaseModel):
    """A full email message as seen by the rules engine and actions."""

    uid: str
    account_email: str = ""
    message_id: str = ""
    in_reply_to: str = ""
    from_address: str
    from_name: str = ""
    to: list[str] = Field(default_factory=list)
    cc: list[str] = Field(default_factory=list)
    subject: str = ""
    date: datetime | None = None
    flags: list[str] = Field(default_factory=list)
    body_text: str = ""
    body_html: str = ""
    has_attachments: bool = False
    attachment_names: list[str] = Field(default_factory=list)
    content_types: list[str] = Field(default_factory=list)

    @property
    def sender(self) -> str:
        """Normalized sender address used as the Sender identity."""
        return self.from_address.strip().lower()

    @property
    def is_thread_reply(self) -> bool:
        """True when this message continues an existing thread."""
        return bool(self.in_reply_to) or self.subject.lower().startswith("re:")

    @property
    def body(self) -> str:
        return self.body_text or self.body_html
