"""Rules written from a free-text prompt.

The AI drafts rules from the prompt; each draft becomes an ordinary rule
payload and goes through the same validation as a hand-written rule.
Drafts that fail validation are reported, never saved.
"""

import logging

from mailsort.errors import RuleValidationError
from mailsort.rules.validation import parse_rule
from mailsort.schemas.rules import ACTION_FIELD_NAMES, ActionType, DraftedRule, PromptRulesResult
from mailsort.store.rules import RuleStore

logger = logging.getLogger(__name__)

# Action types whose body is written per email when the draft gives none.
_GENERATED_CONTENT = frozenset({ActionType.REPLY, ActionType.SEND_EMAIL, ActionType.DRAFT_EMAIL})


def drafted_rule_payload(draft: DraftedRule) -> dict:
    """Rule payload for a draft: an AI condition, plus static patterns if named."""
    conditions: list[dict] = [{"type": "AI", "instructions": draft.instructions}]
    static = {
        key: value.strip()
        for key, value in (("from", draft.from_pattern), ("subject", draft.subject_pattern))
        if value and value.strip()
    }
    if static:
        conditions.append({"type": "STATIC", **static})

    actions: list[dict] = []
    for drafted in draft.actions:
        action: dict = {"type": drafted.type.value}
        for name in ACTION_FIELD_NAMES:
            value = getattr(drafted, name, None)
            if value and value.strip():
                action[name] = {"kind": "literal", "value": value.strip()}
        if drafted.type in _GENERATED_CONTENT and "content" not in action:
            action["content"] = {"kind": "generate"}
        actions.append(action)

    return {
        "name": draft.name,
        "conditions": conditions,
        "actions": actions,
        "operator": "AND",
    }


def create_prompt_rules(store: RuleStore, drafts: list[DraftedRule]) -> PromptRulesResult:
    """Validate and save drafted rules, skipping names that already exist."""
    result = PromptRulesResult()
    existing = {r.name.lower() for r in store.list_rules()}
    for draft in drafts:
        try:
            rule = parse_rule(drafted_rule_payload(draft))
        except RuleValidationError as exc:
            logger.warning("Drafted rule %r rejected: %s", draft.name, exc)
            result.rejected.append(f"{draft.name}: {exc.message}")
            continue
        if rule.name.lower() in existing:
            logger.info("Rule %r already exists; skipped", rule.name)
            result.skipped.append(rule.name)
            continue
        existing.add(rule.name.lower())
        result.created.append(store.save(rule))
    return result
