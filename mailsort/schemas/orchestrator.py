"""Result schemas returned by MailsortService to the CLI."""

from pydantic import BaseModel, Field

from mailsort.schemas.cleanup import CleanupJob


class StatusResult(BaseModel):
    rules: int = 0
    categories: int = 0
    uncategorized_senders: int = 0
    categorization_jobs: int = 0
    auto_categorize: bool = False
    recent_cleanups: list[CleanupJob] = Field(default_factory=list)
    actions_last_24h: int = 0
    awaiting_approval_last_24h: int = 0
