"""Schemas for action execution reports and the action audit log."""

from datetime import datetime
from enum import StrEnum
from typing import Literal

from pydantic import BaseModel, Field

from mailsort.schemas.rules import ActionType


class ActionStatus(StrEnum):
    APPLIED = "applied"
    DUPLICATE = "duplicate"  # already applied for this (email, rule, action)
    FAILED = "failed"


class ActionOutcome(BaseModel):
    action_type: ActionType
    status: ActionStatus
    attempts: int = 0
    error: str | None = None
    transient: bool | None = None


class ExecutionReport(BaseModel):
    email_id: str
    rule_id: str
    outcomes: list[ActionOutcome] = Field(default_factory=list)

    @property
    def failed(self) -> list[ActionOutcome]:
        return [o for o in self.outcomes if o.status == ActionStatus.FAILED]

    @property
    def ok(self) -> bool:
        return not self.failed


class ActionAuditEntry(BaseModel):
    """A record of an action taken (or held back) by the system."""

    timestamp: datetime
    event: Literal["action_applied", "action_failed", "awaiting_approval"]
    email_id: str
    rule_id: str
    rule_name: str = ""
    from_address: str = ""
    subject: str = ""
    action_type: ActionType | None = None
    error: str | None = None


class InboxRunResult(BaseModel):
    """Pipeline result for one pass of rules over the inbox."""

    processed: int = 0
    matched: int = 0
    awaiting_approval: int = 0
    actions_failed: int = 0
    errors: int = 0
    rules: dict[str, int] = Field(default_factory=dict)  # rule name -> matches
