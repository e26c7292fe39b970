"""Executes the actions of a matched rule against the mail provider.

Each action is independent: one failing never stops its siblings, and a
failure is reported in the ExecutionReport rather than raised. Every
(email, rule, action type) tuple is claimed in the ledger before its side
effect, so re-running a rule on the same email is a no-op.
"""

import asyncio
import logging
from datetime import UTC, datetime

from mailsort.audit.action_logger import ActionAuditLog
from mailsort.capabilities import FieldGenerator, MailProvider, Webhooks
from mailsort.errors import CapabilityError, as_capability_error
from mailsort.schemas.actions import ActionOutcome, ActionStatus, ExecutionReport
from mailsort.schemas.email import EmailMessage
from mailsort.schemas.rules import (
    ACTION_FIELD_NAMES,
    Action,
    ActionType,
    GenerateValue,
    LiteralValue,
    Rule,
)
from mailsort.store.ledger import ExecutionLedger

logger = logging.getLogger(__name__)

# Actions whose transient failures are retried with backoff.
RETRYABLE_ACTIONS = frozenset(
    {ActionType.CALL_WEBHOOK, ActionType.SEND_EMAIL, ActionType.FORWARD, ActionType.REPLY}
)


def webhook_payload(email: EmailMessage, rule_id: str) -> dict:
    return {
        "rule_id": rule_id,
        "executed_at": datetime.now(UTC).isoformat(),
        "email": {
            "id": email.uid,
            "message_id": email.message_id,
            "from": email.from_address,
            "to": email.to,
            "subject": email.subject,
            "date": email.date.isoformat() if email.date else None,
            "snippet": email.body[:500],
        },
    }


def rule_actions(rule: Rule) -> list[Action]:
    """The rule's actions, plus an AI-written reply draft when the rule asks for one."""
    actions = list(rule.actions)
    if rule.draft_replies and not any(a.type == ActionType.DRAFT_EMAIL for a in actions):
        actions.append(
            Action(
                type=ActionType.DRAFT_EMAIL,
                content=GenerateValue(hint=rule.draft_replies_instructions),
            )
        )
    return actions


class ActionExecutor:
    """Runs rule actions with idempotency and bounded retry.

    Usage::

        executor = ActionExecutor(provider=imap, webhooks=webhooks, ledger=ledger)
        report = await executor.execute(email, rule)
        for outcome in report.failed:
            print(outcome.action_type, outcome.error)
    """

    def __init__(
        self,
        *,
        provider: MailProvider,
        webhooks: Webhooks,
        ledger: ExecutionLedger,
        generate: FieldGenerator | None = None,
        audit_log: ActionAuditLog | None = None,
        max_attempts: int = 3,
        base_delay: float = 1.0,
    ) -> None:
        self._provider = provider
        self._webhooks = webhooks
        self._ledger = ledger
        self._generate = generate
        self._audit_log = audit_log
        self._max_attempts = max(1, max_attempts)
        self._base_delay = base_delay

    async def execute(
        self,
        email: EmailMessage,
        rule: Rule,
        actions: list[Action] | None = None,
    ) -> ExecutionReport:
        """Run ``actions`` (default: the rule's actions, see ``rule_actions``) on ``email``."""
        return await self.apply(
            email,
            rule_id=rule.id,
            rule_name=rule.name,
            actions=rule_actions(rule) if actions is None else actions,
            instructions=rule.instructions,
        )

    async def apply(
        self,
        email: EmailMessage,
        *,
        rule_id: str,
        actions: list[Action],
        instructions: str | None = None,
        rule_name: str = "",
    ) -> ExecutionReport:
        """Run actions under an arbitrary dedup key, e.g. a cleanup job id."""
        report = ExecutionReport(email_id=email.uid, rule_id=rule_id)
        for action in actions:
            outcome = await self._run_one(email, rule_id, action, instructions)
            report.outcomes.append(outcome)
            if self._audit_log:
                self._audit_log.log_outcome(email, rule_id, rule_name, outcome)
        return report

    async def _run_one(
        self,
        email: EmailMessage,
        rule_id: str,
        action: Action,
        instructions: str | None,
    ) -> ActionOutcome:
        key = (email.uid, rule_id, action.type.value)
        if not self._ledger.claim(*key):
            logger.info("Skipping %s on email %s: already executed", action.type.value, email.uid)
            return ActionOutcome(action_type=action.type, status=ActionStatus.DUPLICATE)

        try:
            return await self._run_claimed(email, rule_id, action, instructions, key)
        except BaseException:
            # Cancelled or interrupted: the next run may retry.
            self._ledger.release(*key)
            raise

    async def _run_claimed(
        self,
        email: EmailMessage,
        rule_id: str,
        action: Action,
        instructions: str | None,
        key: tuple[str, str, str],
    ) -> ActionOutcome:
        try:
            values = await self._resolve_fields(action, email, instructions)
        except Exception as exc:
            self._ledger.release(*key)
            error = as_capability_error(exc)
            logger.exception("Could not resolve fields for %s on email %s", action.type.value, email.uid)
            return ActionOutcome(
                action_type=action.type,
                status=ActionStatus.FAILED,
                error=str(error),
                transient=error.transient,
            )

        retryable = action.type in RETRYABLE_ACTIONS
        attempt = 0
        while True:
            attempt += 1
            try:
                await self._dispatch(action.type, email, values, rule_id)
            except Exception as exc:
                error = as_capability_error(exc)
                if error.transient and retryable and attempt < self._max_attempts:
                    delay = self._base_delay * 2 ** (attempt - 1)
                    logger.warning(
                        "%s on email %s failed (attempt %d/%d): %s; retrying in %.1fs",
                        action.type.value,
                        email.uid,
                        attempt,
                        self._max_attempts,
                        error,
                        delay,
                    )
                    await asyncio.sleep(delay)
                    continue
                self._ledger.release(*key)
                logger.error(
                    "%s on email %s failed after %d attempt(s): %s",
                    action.type.value,
                    email.uid,
                    attempt,
                    error,
                )
                return ActionOutcome(
                    action_type=action.type,
                    status=ActionStatus.FAILED,
                    attempts=attempt,
                    error=str(error),
                    transient=error.transient,
                )

            self._ledger.complete(*key)
            logger.info("Applied %s to email %s (rule %s)", action.type.value, email.uid, rule_id)
            return ActionOutcome(action_type=action.type, status=ActionStatus.APPLIED, attempts=attempt)

    async def _resolve_fields(
        self,
        action: Action,
        email: EmailMessage,
        instructions: str | None,
    ) -> dict[str, str]:
        """Literal values as-is; generated values via the AI, once per run."""
        values: dict[str, str] = {}
        for name in ACTION_FIELD_NAMES:
            field = getattr(action, name)
            if isinstance(field, LiteralValue):
                values[name] = field.value.strip()
            elif isinstance(field, GenerateValue):
                if self._generate is None:
                    raise CapabilityError(
                        f"Field '{name}' needs AI generation but no generator is configured",
                        transient=False,
                    )
                values[name] = await self._generate(name, email, instructions, field.hint)
        return values

    async def _dispatch(
        self,
        action_type: ActionType,
        email: EmailMessage,
        values: dict[str, str],
        rule_id: str,
    ) -> None:
        uid = email.uid
        content = values.get("content", "")
        cc = values.get("cc", "")
        bcc = values.get("bcc", "")

        if action_type == ActionType.ARCHIVE:
            await self._provider.archive(uid)
        elif action_type == ActionType.MARK_READ:
            await self._provider.mark_read(uid)
        elif action_type == ActionType.MARK_SPAM:
            await self._provider.mark_spam(uid)
        elif action_type == ActionType.LABEL:
            await self._provider.label(uid, values.get("label", ""))
        elif action_type == ActionType.FORWARD:
            await self._provider.forward(email, values["to"], content=content, cc=cc, bcc=bcc)
        elif action_type == ActionType.REPLY:
            await self._provider.reply(email, content, cc=cc, bcc=bcc)
        elif action_type == ActionType.SEND_EMAIL:
            to = values.get("to", "")
            if not to:
                raise CapabilityError("SEND_EMAIL has no recipient", transient=False)
            await self._provider.send_email(to, values.get("subject", ""), content, cc=cc, bcc=bcc)
        elif action_type == ActionType.DRAFT_EMAIL:
            await self._provider.draft_email(
                email, content, subject=values.get("subject", ""), to=values.get("to", "")
            )
        elif action_type == ActionType.CALL_WEBHOOK:
            await self._webhooks.call(values["url"], webhook_payload(email, rule_id))
        else:
            raise CapabilityError(f"Unknown action type: {action_type}", transient=False)
