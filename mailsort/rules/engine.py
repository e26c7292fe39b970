"""Rule evaluation: picks at most one rule for an email.

No side effects. AI conditions go through an injected check so the
engine never talks to a model or a store directly.
"""

import logging
import re

from mailsort.capabilities import AiConditionCheck, CategoryLookup
from mailsort.schemas.email import EmailMessage
from mailsort.schemas.rules import (
    AiCondition,
    CategoryCondition,
    CategoryFilterType,
    Condition,
    ConditionType,
    LogicalOperator,
    Rule,
    RuleMatch,
    StaticCondition,
)

logger = logging.getLogger(__name__)

FAIL_CLOSED = "closed"
FAIL_OPEN = "open"


def _field_text(email: EmailMessage, field: str) -> str:
    if field == "from":
        return f"{email.from_name} <{email.from_address}>"
    if field == "to":
        return ", ".join(email.to + email.cc)
    if field == "subject":
        return email.subject
    return email.body


def pattern_matches(pattern: str, text: str) -> bool:
    """Case-insensitive test of one STATIC pattern against a field.

    ``|`` separates alternatives; ``*`` is a wildcard. Without a wildcard
    the alternative is a plain substring test.
    """
    text = text.lower()
    for alternative in pattern.lower().split("|"):
        alternative = alternative.strip()
        if not alternative:
            continue
        if "*" in alternative:
            regex = re.escape(alternative).replace(r"\*", ".*")
            if re.search(regex, text, re.DOTALL):
                return True
        elif alternative in text:
            return True
    return False


def static_matches(condition: StaticCondition, email: EmailMessage) -> bool:
    """Every configured pattern must match; no patterns means no match."""
    patterns = condition.patterns()
    if not patterns:
        return False
    return all(pattern_matches(p, _field_text(email, field)) for field, p in patterns.items())


def category_matches(condition: CategoryCondition, category: str | None) -> bool:
    """INCLUDE: category in filters. EXCLUDE: category not in filters.

    An uncategorized sender never satisfies INCLUDE and always satisfies
    EXCLUDE.
    """
    filters = {name.strip().lower() for name in condition.categories}
    member = category is not None and category.strip().lower() in filters
    if condition.filter_type == CategoryFilterType.INCLUDE:
        return member
    return not member


def combine(operator: LogicalOperator, results: list[bool]) -> bool:
    if operator == LogicalOperator.AND:
        return all(results)
    return any(results)


class RuleEngine:
    """Evaluates emails against rules in caller-supplied order.

    Usage::

        engine = RuleEngine(ai_check=check, category_of=store.get_sender_category)
        match = await engine.evaluate(email, rules)
        if match:
            await executor.execute(email, match.rule)
    """

    def __init__(
        self,
        *,
        ai_check: AiConditionCheck,
        category_of: CategoryLookup,
        ai_failure_policy: str = FAIL_CLOSED,
    ) -> None:
        if ai_failure_policy not in (FAIL_CLOSED, FAIL_OPEN):
            raise ValueError(f"Unknown AI failure policy: {ai_failure_policy}")
        self._ai_check = ai_check
        self._category_of = category_of
        self._fail_open = ai_failure_policy == FAIL_OPEN

    async def evaluate(self, email: EmailMessage, rules: list[Rule]) -> RuleMatch | None:
        """Return the first matching rule, or None."""
        for rule in rules:
            if email.is_thread_reply and not rule.run_on_threads:
                continue
            results = await self.evaluate_rule(email, rule)
            if combine(rule.operator, list(results.values())):
                logger.info("Email %s matched rule %r", email.uid, rule.name)
                return RuleMatch(rule=rule, condition_results=results)
        logger.debug("Email %s matched no rule", email.uid)
        return None

    async def evaluate_rule(self, email: EmailMessage, rule: Rule) -> dict[ConditionType, bool]:
        """Evaluate one rule's conditions.

        Cheap conditions go first; AI conditions are skipped once the
        operator's outcome is already decided, so a skipped condition is
        absent from the result.
        """
        results: dict[ConditionType, bool] = {}
        ai_conditions: list[AiCondition] = []

        for condition in rule.conditions:
            if isinstance(condition, AiCondition):
                ai_conditions.append(condition)
            else:
                results[ConditionType(condition.type)] = self._evaluate_sync(condition, email)

        for condition in ai_conditions:
            values = list(results.values())
            if rule.operator == LogicalOperator.AND and values and not all(values):
                break
            if rule.operator == LogicalOperator.OR and any(values):
                break
            results[ConditionType.AI] = await self._evaluate_ai(condition, rule, email)

        return results

    def _evaluate_sync(self, condition: Condition, email: EmailMessage) -> bool:
        if isinstance(condition, StaticCondition):
            return static_matches(condition, email)
        if isinstance(condition, CategoryCondition):
            return category_matches(condition, self._category_of(email.sender))
        raise TypeError(f"Unsupported condition: {condition!r}")

    async def _evaluate_ai(self, condition: AiCondition, rule: Rule, email: EmailMessage) -> bool:
        """Ask the AI whether the email fits the combined instructions.

        The failure policy covers errors from the AI only. A condition with no
        instructions has nothing to ask, so it is false under either policy.
        """
        instructions = "\n".join(
            part for part in (rule.instructions, condition.instructions) if part and part.strip()
        )
        if not instructions:
            logger.warning("Rule %r has an AI condition without instructions", rule.name)
            return False
        try:
            return await self._ai_check(email, instructions)
        except Exception:
            logger.exception(
                "AI condition failed for email %s, rule %r; treating as %s",
                email.uid,
                rule.name,
                "match" if self._fail_open else "no match",
            )
            return self._fail_open
