"""Starter rules created from the onboarding questionnaire.

Each kind of mail the user opts into becomes one AI-condition rule that
labels matching mail, and archives it too for ``label_archive``.
"""

import logging

from mailsort.schemas.rules import (
    Action,
    ActionType,
    AiCondition,
    LiteralValue,
    OnboardingChoice,
    OnboardingRulesBody,
    Rule,
)
from mailsort.store.rules import RuleStore

logger = logging.getLogger(__name__)

# field -> (rule / label name, AI instructions)
ONBOARDING_KINDS: dict[str, tuple[str, str]] = {
    "to_reply": (
        "To Reply",
        "Emails from a real person that ask me a question or need a response from me.",
    ),
    "newsletters": (
        "Newsletter",
        "Newsletters, digests and other editorial content I subscribed to.",
    ),
    "marketing": (
        "Marketing",
        "Promotional emails: sales, discounts, product announcements and offers.",
    ),
    "calendar": (
        "Calendar",
        "Calendar invitations, event updates, cancellations and meeting reminders.",
    ),
    "receipts": (
        "Receipt",
        "Receipts, invoices, order confirmations and payment notices.",
    ),
    "notifications": (
        "Notification",
        "Automated notifications from apps and services: alerts, security notices, status updates.",
    ),
    "cold_emails": (
        "Cold Email",
        "Unsolicited outreach from someone I have no relationship with, "
        "such as sales pitches or recruiting.",
    ),
}


def build_onboarding_rules(body: OnboardingRulesBody) -> list[Rule]:
    """Rules for every kind not answered with ``none``, in questionnaire order."""
    rules: list[Rule] = []
    for field, (name, instructions) in ONBOARDING_KINDS.items():
        choice: OnboardingChoice = getattr(body, field)
        if choice == OnboardingChoice.NONE:
            continue
        actions = [Action(type=ActionType.LABEL, label=LiteralValue(value=name))]
        if choice == OnboardingChoice.LABEL_ARCHIVE:
            actions.append(Action(type=ActionType.ARCHIVE))
        rules.append(
            Rule(
                name=name,
                conditions=[AiCondition(instructions=instructions)],
                actions=actions,
            )
        )
    return rules


def create_onboarding_rules(store: RuleStore, body: OnboardingRulesBody) -> list[Rule]:
    """Save the onboarding rules, skipping any whose name is already taken."""
    existing = {r.name.lower() for r in store.list_rules()}
    created: list[Rule] = []
    for rule in build_onboarding_rules(body):
        if rule.name.lower() in existing:
            logger.info("Onboarding rule %r already exists; skipped", rule.name)
            continue
        created.append(store.save(rule))
    return created
