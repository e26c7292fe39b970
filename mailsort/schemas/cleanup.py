"""Schemas for the two-phase inbox cleanup job."""

from datetime import datetime
from enum import StrEnum

from pydantic import BaseModel, Field


class CleanAction(StrEnum):
    ARCHIVE = "ARCHIVE"
    MARK_READ = "MARK_READ"


class CleanupPhase(StrEnum):
    PREVIEWING = "previewing"
    AWAITING_CONTINUATION = "awaiting_continuation"
    CONTINUING = "continuing"
    DONE = "done"


class SkipFilters(BaseModel):
    """Messages matching any enabled filter are left untouched."""

    reply: bool = False
    starred: bool = False
    calendar: bool = False
    receipt: bool = False
    attachment: bool = False


class CleanupConfig(BaseModel):
    days_old: int = Field(default=7, ge=0)
    action: CleanAction = CleanAction.ARCHIVE
    skips: SkipFilters = Field(default_factory=SkipFilters)
    max_emails: int = Field(default=50, ge=1)
    instructions: str = ""  # free text describing emails to keep


class CleanupJob(BaseModel):
    id: str
    config: CleanupConfig
    cutoff: datetime
    phase: CleanupPhase
    cursor: int = 0  # highest message UID examined so far
    acted: int = 0
    skipped: int = 0
    failed: int = 0
    created_at: datetime
    updated_at: datetime


class CleanupResult(BaseModel):
    """Outcome of one phase of a cleanup job."""

    job_id: str
    phase: CleanupPhase
    acted: int = 0
    skipped: int = 0
    failed: int = 0
    ran: bool = True  # False when the call was a no-op for the current phase
