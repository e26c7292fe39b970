"""Schemas for sender categorization."""

from datetime import datetime
from enum import StrEnum

from pydantic import BaseModel, Field


class SenderState(StrEnum):
    UNCATEGORIZED = "uncategorized"
    QUEUED = "queued"
    RUNNING = "running"
    CATEGORIZED = "categorized"
    FAILED = "failed"


class Category(BaseModel):
    id: int
    name: str
    description: str = ""


class Sender(BaseModel):
    address: str
    category: str | None = None  # category name, resolved from the category list
    state: SenderState = SenderState.UNCATEGORIZED


class CategorizationJob(BaseModel):
    """Exists only while an address is queued or running."""

    address: str
    status: SenderState
    enqueued_at: datetime


class SenderPage(BaseModel):
    senders: list[str] = Field(default_factory=list)
    next_offset: int | None = None  # absent = end of data


# --- LLM output schemas ---


class SenderCategoryVerdict(BaseModel):
    """LLM output for a single sender."""

    category: str | None = None
    rationale: str = ""


class BulkSenderCategory(BaseModel):
    sender: str
    category: str | None = None


class BulkCategorizationResult(BaseModel):
    """LLM output covering many senders in one call."""

    senders: list[BulkSenderCategory] = Field(default_factory=list)


# --- Queue outcomes ---


class OutcomeStatus(StrEnum):
    COMPLETED = "completed"
    UNMATCHED = "unmatched"
    FAILED = "failed"
    CANCELLED = "cancelled"


class CategorizationOutcome(BaseModel):
    address: str
    status: OutcomeStatus
    category: str | None = None
    error: str | None = None


class QueueStats(BaseModel):
    """Aggregated outcomes since the queue was created."""

    completed: int = 0
    unmatched: int = 0
    failed: int = 0
    cancelled: int = 0

    @property
    def total(self) -> int:
        return self.completed + self.unmatched + self.failed + self.cancelled

    def summary(self) -> str:
        text = f"{self.completed} of {self.total} sender(s) categorized"
        if self.failed:
            text += f", {self.failed} failed"
        if self.unmatched:
            text += f", {self.unmatched} without a matching category"
        if self.cancelled:
            text += f", {self.cancelled} cancelled"
        return text
