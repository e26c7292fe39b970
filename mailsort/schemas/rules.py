"""Schemas for rules: conditions, actions and their dynamic fields.

A rule is an ordered list of conditions combined by a logical operator,
plus the actions to run when it matches. Action fields are either a
literal value or a request to generate the value with the AI at
execution time.
"""

from enum import StrEnum
from typing import Annotated, Literal
from uuid import uuid4

from pydantic import BaseModel, Field

# --- Enums ---


class ConditionType(StrEnum):
    AI = "AI"
    STATIC = "STATIC"
    CATEGORY = "CATEGORY"


class CategoryFilterType(StrEnum):
    INCLUDE = "INCLUDE"
    EXCLUDE = "EXCLUDE"


class LogicalOperator(StrEnum):
    AND = "AND"
    OR = "OR"


class ActionType(StrEnum):
    ARCHIVE = "ARCHIVE"
    DRAFT_EMAIL = "DRAFT_EMAIL"
    FORWARD = "FORWARD"
    LABEL = "LABEL"
    MARK_SPAM = "MARK_SPAM"
    REPLY = "REPLY"
    SEND_EMAIL = "SEND_EMAIL"
    CALL_WEBHOOK = "CALL_WEBHOOK"
    MARK_READ = "MARK_READ"


# --- Conditions ---


class AiCondition(BaseModel):
    """Matched by asking the AI whether the email fits the instructions."""

    type: Literal["AI"] = "AI"
    instructions: str | None = None


class StaticCondition(BaseModel):
    """Matched by case-insensitive patterns against message fields."""

    type: Literal["STATIC"] = "STATIC"
    to: str | None = None
    from_: str | None = Field(default=None, alias="from")
    subject: str | None = None
    body: str | None = None

    model_config = {"populate_by_name": True}

    def patterns(self) -> dict[str, str]:
        """Configured (non-blank) patterns keyed by field name."""
        fields = {"to": self.to, "from": self.from_, "subject": self.subject, "body": self.body}
        return {k: v.strip() for k, v in fields.items() if v and v.strip()}


class CategoryCondition(BaseModel):
    """Matched against the sender's assigned category."""

    type: Literal["CATEGORY"] = "CATEGORY"
    filter_type: CategoryFilterType = CategoryFilterType.INCLUDE
    categories: list[str] = Field(default_factory=list)


Condition = Annotated[
    AiCondition | StaticCondition | CategoryCondition,
    Field(discriminator="type"),
]


# --- Actions ---


class LiteralValue(BaseModel):
    """A field value given verbatim."""

    kind: Literal["literal"] = "literal"
    value: str


class GenerateValue(BaseModel):
    """A field whose value the AI writes when the action runs."""

    kind: Literal["generate"] = "generate"
    hint: str | None = None


ActionField = Annotated[LiteralValue | GenerateValue, Field(discriminator="kind")]

ACTION_FIELD_NAMES = ("label", "subject", "content", "to", "cc", "bcc", "url")


class Action(BaseModel):
    """One action attached to a rule."""

    type: ActionType
    label: ActionField | None = None
    subject: ActionField | None = None
    content: ActionField | None = None
    to: ActionField | None = None
    cc: ActionField | None = None
    bcc: ActionField | None = None
    url: ActionField | None = None

    def literal(self, name: str) -> str:
        """Return a field's literal value, or "" if unset or generated."""
        field = getattr(self, name)
        if isinstance(field, LiteralValue):
            return field.value.strip()
        return ""


# --- Rules ---


class Rule(BaseModel):
    """A user-defined rule. Build instances via ``rules.validation.parse_rule``."""

    id: str = Field(default_factory=lambda: uuid4().hex)
    name: str
    instructions: str | None = None
    conditions: list[Condition]
    actions: list[Action]
    operator: LogicalOperator = LogicalOperator.AND
    automate: bool = True
    run_on_threads: bool = False
    # When on, matching mail also gets an AI-written reply draft.
    draft_replies: bool = False
    draft_replies_instructions: str | None = None


class RuleMatch(BaseModel):
    """The rule chosen for an email, with each evaluated condition's outcome."""

    rule: Rule
    condition_results: dict[ConditionType, bool] = Field(default_factory=dict)


class RuleSettings(BaseModel):
    """Editable per-rule settings, applied without touching conditions or actions."""

    id: str
    instructions: str = ""
    draft_replies: bool = False
    draft_replies_instructions: str = ""


# --- Rules written from a prompt ---


class PromptRulesResult(BaseModel):
    """Outcome of turning a free-text rules prompt into saved rules."""

    created: list[Rule] = Field(default_factory=list)
    skipped: list[str] = Field(default_factory=list)
    rejected: list[str] = Field(default_factory=list)


# --- Onboarding ---


class OnboardingChoice(StrEnum):
    LABEL = "label"
    LABEL_ARCHIVE = "label_archive"
    NONE = "none"


class OnboardingRulesBody(BaseModel):
    """Per-kind choice made during onboarding."""

    to_reply: OnboardingChoice = OnboardingChoice.NONE
    newsletters: OnboardingChoice = OnboardingChoice.NONE
    marketing: OnboardingChoice = OnboardingChoice.NONE
    calendar: OnboardingChoice = OnboardingChoice.NONE
    receipts: OnboardingChoice = OnboardingChoice.NONE
    notifications: OnboardingChoice = OnboardingChoice.NONE
    cold_emails: OnboardingChoice = OnboardingChoice.NONE


# --- LLM output schemas ---


class ConditionVerdict(BaseModel):
    """LLM output for an AI condition."""

    matches: bool
    reasoning: str = ""


class GeneratedText(BaseModel):
    """LLM output for a generated action field."""

    value: str


class DraftedAction(BaseModel):
    """An action as the LLM proposes it: literal values only."""

    type: ActionType
    label: str | None = None
    to: str | None = None
    subject: str | None = None
    content: str | None = None
    url: str | None = None


class DraftedRule(BaseModel):
    """One rule the LLM read out of the user's prompt."""

    name: str
    instructions: str
    from_pattern: str | None = None
    subject_pattern: str | None = None
    actions: list[DraftedAction]


class DraftedRules(BaseModel):
    """LLM output for a rules prompt."""

    rules: list[DraftedRule] = Field(default_factory=list)
