"""Rule validation, enforced before any rule is saved."""

import logging

import pydantic

from mailsort.errors import RuleConflictError, RuleValidationError
from mailsort.schemas.rules import Action, ActionType, GenerateValue, Rule

logger = logging.getLogger(__name__)


def _loc_to_field(loc: tuple) -> str:
    parts: list[str] = []
    for item in loc:
        if isinstance(item, int) and parts:
            parts[-1] = f"{parts[-1]}[{item}]"
        else:
            parts.append(str(item))
    return ".".join(parts)


def check_action(action: Action, field_prefix: str = "action") -> None:
    """Enforce the per-type required fields of an action."""
    if action.type == ActionType.LABEL:
        if not action.literal("label") and not isinstance(action.label, GenerateValue):
            raise RuleValidationError(
                f"{field_prefix}.label", "Please enter a label name for the Label action"
            )
    elif action.type == ActionType.FORWARD:
        if not action.literal("to"):
            raise RuleValidationError(
                f"{field_prefix}.to", "Please enter an email address to forward to"
            )
    elif action.type == ActionType.CALL_WEBHOOK:
        if not action.literal("url"):
            raise RuleValidationError(f"{field_prefix}.url", "Please enter a webhook URL")


def check_rule(rule: Rule) -> Rule:
    """Enforce rule invariants on an already-parsed rule.

    Raises:
        RuleValidationError: A field is missing or malformed.
        RuleConflictError: Empty condition/action list, or two conditions
            share a type.
    """
    if not rule.name.strip():
        raise RuleValidationError("name", "Please enter a name")
    if not rule.conditions:
        raise RuleConflictError("conditions", "You must have at least one condition")
    if not rule.actions:
        raise RuleConflictError("actions", "You must have at least one action")

    types = [c.type for c in rule.conditions]
    if len(set(types)) != len(types):
        raise RuleConflictError(
            "conditions", "You can't have two conditions with the same type."
        )

    for i, action in enumerate(rule.actions):
        check_action(action, f"actions[{i}]")
    return rule


def parse_rule(data: dict) -> Rule:
    """Build a Rule from an untrusted payload and validate it."""
    try:
        rule = Rule.model_validate(data)
    except pydantic.ValidationError as exc:
        first = exc.errors()[0]
        field = _loc_to_field(first["loc"])
        logger.debug("Rejected rule payload: %s", exc)
        raise RuleValidationError(field, first["msg"]) from exc
    return check_rule(rule)
