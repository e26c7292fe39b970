"""Service facade and pipeline handlers for mailsort.

MailsortService wires the stores, the rule engine, the action executor,
the categorization paths and cleanup together. CLI commands call into it;
progress output is delegated via an optional callback.
"""

import logging
import sqlite3
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from datetime import UTC, datetime, timedelta
from pathlib import Path

from mailsort.audit.action_logger import ActionAuditLog
from mailsort.capabilities import (
    AiConditionCheck,
    FieldGenerator,
    MailProvider,
    RuleWriter,
    SenderContextFetcher,
    Webhooks,
)
from mailsort.categorize.fast import BulkClassify, FastCategorizer
from mailsort.categorize.pagination import PaginationCursor
from mailsort.categorize.queue import OutcomeObserver, SenderCategorizationQueue, SenderClassify
from mailsort.cleanup.orchestrator import CleanupOrchestrator
from mailsort.errors import CapabilityError, as_store_error
from mailsort.router.actions import ActionExecutor
from mailsort.rules.engine import FAIL_CLOSED, RuleEngine
from mailsort.rules.onboarding import create_onboarding_rules
from mailsort.rules.prompt import create_prompt_rules
from mailsort.rules.validation import parse_rule
from mailsort.schemas.actions import InboxRunResult
from mailsort.schemas.cleanup import CleanupConfig, CleanupResult
from mailsort.schemas.email import EmailAccountConfig, EmailMessage
from mailsort.schemas.orchestrator import StatusResult
from mailsort.schemas.rules import (
    DraftedRule,
    OnboardingRulesBody,
    PromptRulesResult,
    Rule,
    RuleSettings,
)
from mailsort.schemas.senders import Category, SenderPage
from mailsort.store.cleanup import CleanupJobStore
from mailsort.store.ledger import ExecutionLedger
from mailsort.store.rules import RuleStore
from mailsort.store.senders import SenderStore

logger = logging.getLogger(__name__)

# Messages per sender used as categorization context.
SENDER_CONTEXT_EMAILS = 5


def sender_context_fetcher(provider: MailProvider) -> SenderContextFetcher:
    """Build a context fetcher that summarizes a sender's recent mail."""

    async def _fetch(address: str) -> str:
        emails = await provider.fetch_from_sender(address, limit=SENDER_CONTEXT_EMAILS)
        lines = []
        for email in emails:
            snippet = " ".join(email.body.split())[:200]
            lines.append(f"- {email.subject or '(no subject)'}: {snippet}")
        return "\n".join(lines)

    return _fetch


class MailsortService:
    """Everything the CLI (or any other caller) needs, behind one object.

    Usage::

        service = MailsortService(
            db_path="data/mailsort.db",
            audit_log_path="data/action_audit.jsonl",
            provider=imap,
            webhooks=webhooks,
            ai_check=ai_check,
            generate=generate,
            classify=classify,
            bulk_classify=bulk_classify,
        )
        result = await service.process_inbox(limit=50)
        service.close()
    """

    def __init__(
        self,
        *,
        db_path: str | Path,
        audit_log_path: str | Path,
        provider: MailProvider,
        webhooks: Webhooks,
        ai_check: AiConditionCheck,
        generate: FieldGenerator | None,
        classify: SenderClassify,
        bulk_classify: BulkClassify,
        write_rules: RuleWriter | None = None,
        ai_failure_policy: str = FAIL_CLOSED,
        concurrency: int = 3,
        page_size: int = 100,
        max_attempts: int = 3,
        base_delay: float = 1.0,
        cleanup_batch_size: int = 100,
        cleanup_continue_limit: int = 0,
        on_outcome: OutcomeObserver | None = None,
    ) -> None:
        try:
            self.rules = RuleStore(db_path)
            self.senders = SenderStore(db_path)
            self.cleanup_jobs = CleanupJobStore(db_path)
            self.ledger = ExecutionLedger(db_path)
        except sqlite3.Error as exc:
            raise as_store_error(exc) from exc
        self.audit_log = ActionAuditLog(audit_log_path)
        self._provider = provider
        self._ai_check = ai_check
        self._write_rules = write_rules

        self.engine = RuleEngine(
            ai_check=ai_check,
            category_of=self.senders.get_sender_category,
            ai_failure_policy=ai_failure_policy,
        )
        self.executor = ActionExecutor(
            provider=provider,
            webhooks=webhooks,
            ledger=self.ledger,
            generate=generate,
            audit_log=self.audit_log,
            max_attempts=max_attempts,
            base_delay=base_delay,
        )
        self.queue = SenderCategorizationQueue(
            store=self.senders,
            classify=classify,
            fetch_context=sender_context_fetcher(provider),
            concurrency=concurrency,
            on_outcome=on_outcome,
        )
        self.fast = FastCategorizer(bulk_classify=bulk_classify, store=self.senders)
        self.cursor = PaginationCursor(self.senders, page_size=page_size)
        self.cleanup = CleanupOrchestrator(
            provider=provider,
            store=self.cleanup_jobs,
            executor=self.executor,
            ai_check=ai_check,
            batch_size=cleanup_batch_size,
            continue_limit=cleanup_continue_limit,
        )

        stale = self.senders.reset_stale_jobs()
        if stale:
            logger.warning("Recovered %d categorization job(s) from a previous run", stale)

    def close(self) -> None:
        self.rules.close()
        self.senders.close()
        self.cleanup_jobs.close()
        self.ledger.close()

    # --- Rules ---

    def save_rule(self, data: dict) -> Rule:
        """Validate an untrusted rule payload and persist it.

        Raises:
            RuleValidationError: If the payload breaks a rule invariant.
        """
        return self.rules.save(parse_rule(data))

    def list_rules(self) -> list[Rule]:
        return self.rules.list_rules()

    def delete_rule(self, rule_id: str) -> bool:
        return self.rules.delete(rule_id)

    def update_rule_instructions(self, rule_id: str, instructions: str) -> Rule:
        return self.rules.update_instructions(rule_id, instructions)

    def update_rule_settings(self, settings: RuleSettings) -> Rule:
        return self.rules.update_settings(settings)

    def create_onboarding_rules(self, body: OnboardingRulesBody) -> list[Rule]:
        return create_onboarding_rules(self.rules, body)

    async def save_rules_prompt(self, prompt: str) -> PromptRulesResult:
        """Store the rules prompt and save the rules the AI reads out of it.

        Existing rules are left alone; drafts whose name is taken are skipped
        and drafts that fail validation are reported in ``rejected``.

        Raises:
            CapabilityError: If no rule writer is configured.
        """
        if self._write_rules is None:
            raise CapabilityError("No rule writer is configured", transient=False)
        self.rules.set_rules_prompt(prompt)
        if not prompt.strip():
            return PromptRulesResult()
        drafts = await self._write_rules(prompt)
        result = create_prompt_rules(self.rules, drafts)
        logger.info(
            "Rules prompt: %d created, %d skipped, %d rejected",
            len(result.created),
            len(result.skipped),
            len(result.rejected),
        )
        return result

    async def find_rule_examples(self, prompt: str, *, limit: int = 20) -> list[EmailMessage]:
        """Recent unread mail the AI judges to fit ``prompt``.

        Lets a user preview what a rules prompt would catch. An AI error on
        one email leaves that email out.
        """
        if not prompt.strip():
            return []
        matches: list[EmailMessage] = []
        for email in await self._provider.fetch_messages(limit=limit):
            try:
                if await self._ai_check(email, prompt):
                    matches.append(email)
            except Exception:
                logger.warning("Example check failed for email %s", email.uid, exc_info=True)
        return matches

    # --- Categories & senders ---

    def add_category(self, name: str, description: str = "") -> Category:
        return self.senders.add_category(name, description)

    def list_categories(self) -> list[Category]:
        return self.senders.list_categories()

    def remove_category(self, name: str) -> bool:
        return self.senders.remove_category(name)

    def push_categorization(self, addresses: list[str]) -> int:
        return self.queue.push(addresses)

    def stop_categorization(self) -> int:
        return self.queue.stop()

    def is_categorizing(self) -> bool:
        return self.queue.is_processing()

    async def fast_categorize(
        self, addresses: list[str], *, persist: bool = True
    ) -> dict[str, str | None]:
        """Categorize in one AI call; optionally persist the matches."""
        results = await self.fast.classify(addresses)
        if persist:
            self.fast.apply(results)
        return results

    def list_uncategorized_senders(self, offset: int | None = None) -> SenderPage:
        if not offset:
            return self.cursor.first_page()
        return self.cursor.next_page(offset)

    async def sync_senders(self, *, limit: int = 500) -> list[str]:
        """Record the senders of recent inbox mail. Returns the new ones."""
        addresses = await self._provider.fetch_sender_addresses(limit=limit)
        new = self.senders.upsert_senders(addresses)
        logger.info("Synced %d sender(s), %d new", len(set(addresses)), len(new))
        return new

    def set_auto_categorize(self, enabled: bool) -> None:
        self.senders.set_auto_categorize(enabled)

    # --- Cleanup ---

    async def start_cleanup_preview(self, config: CleanupConfig) -> str:
        return await self.cleanup.start_preview(config)

    async def continue_cleanup(self, job_id: str) -> CleanupResult:
        return await self.cleanup.continue_job(job_id)

    # --- Pipelines ---

    async def process_inbox(
        self,
        *,
        limit: int = 50,
        on_progress: Callable[[str], None] | None = None,
    ) -> InboxRunResult:
        """Run the rules over unread inbox mail.

        Flow:
        1. Fetch unread emails and record their senders.
        2. With auto-categorize on, queue newly seen senders.
        3. For each email: pick the first matching rule, then run its
           actions, or hold the match for approval if the rule is not
           automated.

        A failure on one email is logged and counted; a persistence
        failure aborts the run.
        """

        def _emit(msg: str) -> None:
            if on_progress:
                on_progress(msg)

        result = InboxRunResult()
        emails = await self._provider.fetch_messages(limit=limit)
        if not emails:
            _emit("No unread emails to process.")
            return result
        _emit(f"Found {len(emails)} unread email(s). Processing...")

        try:
            new_senders = self.senders.upsert_senders([e.sender for e in emails])
            if new_senders and self.senders.auto_categorize:
                queued = self.queue.push(new_senders)
                _emit(f"Queued {queued} new sender(s) for categorization.")

            rules = self.rules.list_rules()
            for i, email in enumerate(emails, 1):
                _emit(f"\n[{i}/{len(emails)}] {email.subject}\n  From: {email.from_address}")
                try:
                    await self._process_email(email, rules, result, _emit)
                    result.processed += 1
                except sqlite3.Error:
                    raise
                except Exception:
                    result.errors += 1
                    logger.exception("Error processing email %s: %s", email.uid, email.subject)
                    _emit("  ERROR: Failed to process (see log for details)")
        except sqlite3.Error as exc:
            raise as_store_error(exc) from exc

        _emit(
            f"\nDone. Processed: {result.processed}, Matched: {result.matched}, "
            f"Awaiting approval: {result.awaiting_approval}, Errors: {result.errors}"
        )
        return result

    async def _process_email(
        self,
        email: EmailMessage,
        rules: list[Rule],
        result: InboxRunResult,
        emit: Callable[[str], None],
    ) -> None:
        match = await self.engine.evaluate(email, rules)
        if match is None:
            emit("  No rule matched")
            return

        rule = match.rule
        result.matched += 1
        result.rules[rule.name] = result.rules.get(rule.name, 0) + 1

        if not rule.automate:
            self.audit_log.log_awaiting_approval(email, rule)
            result.awaiting_approval += 1
            emit(f"  Rule: {rule.name} (awaiting approval)")
            return

        report = await self.executor.execute(email, rule)
        result.actions_failed += len(report.failed)
        applied = ", ".join(f"{o.action_type.value}={o.status.value}" for o in report.outcomes)
        emit(f"  Rule: {rule.name} -> {applied}")


def run_status_pipeline(*, db_path: str | Path, audit_log_path: str | Path) -> StatusResult:
    """Counts from the stores and the last 24h of the audit log (no network)."""
    audit_log = ActionAuditLog(audit_log_path)
    with (
        RuleStore(db_path) as rules,
        SenderStore(db_path) as senders,
        CleanupJobStore(db_path) as cleanup_jobs,
    ):
        since = datetime.now(UTC) - timedelta(hours=24)
        entries = audit_log.read_entries(since=since)
        return StatusResult(
            rules=len(rules.list_rules()),
            categories=len(senders.list_categories()),
            uncategorized_senders=senders.count_uncategorized(),
            categorization_jobs=len(senders.list_jobs()),
            auto_categorize=senders.auto_categorize,
            recent_cleanups=cleanup_jobs.list_jobs(limit=5),
            actions_last_24h=sum(1 for e in entries if e.event == "action_applied"),
            awaiting_approval_last_24h=sum(1 for e in entries if e.event == "awaiting_approval"),
        )


@asynccontextmanager
async def open_service(
    *,
    db_path: str | Path,
    audit_log_path: str | Path,
    model: str | None = None,
    on_outcome: OutcomeObserver | None = None,
) -> AsyncIterator[MailsortService]:
    """Build a MailsortService from configuration with live clients.

    Raises:
        RuntimeError: If no Ollama model is configured or available.
    """
    from mailsort import config
    from mailsort.executors.ai_condition import check_ai_condition
    from mailsort.executors.field_generator import generate_field
    from mailsort.executors.rule_writer import write_rules
    from mailsort.executors.sender_classifier import classify_sender, classify_senders_bulk
    from mailsort.integrations.imap import ImapClient
    from mailsort.integrations.ollama import OllamaClient
    from mailsort.integrations.webhook import WebhookClient

    account = EmailAccountConfig(
        server=config.IMAP_SERVER,
        email=config.IMAP_EMAIL,
        password=config.IMAP_PASSWORD,
        port=config.IMAP_PORT,
        is_gmail=config.IMAP_IS_GMAIL,
        smtp_server=config.SMTP_SERVER,
        smtp_port=config.SMTP_PORT,
    )

    async with (
        ImapClient(account) as imap,
        OllamaClient(config.OLLAMA_BASE_URL) as ollama,
        WebhookClient(secret=config.WEBHOOK_SECRET, timeout=config.WEBHOOK_TIMEOUT) as webhooks,
    ):
        model = model or config.OLLAMA_MODEL or await ollama.pick_instruct_model()
        if not model:
            raise RuntimeError("No models available on Ollama server")
        logger.info("Using model %s", model)

        async def ai_check(email: EmailMessage, instructions: str) -> bool:
            verdict = await check_ai_condition(email, instructions, ollama=ollama, model=model)
            return verdict.matches

        async def generate(
            field: str, email: EmailMessage, instructions: str | None, hint: str | None
        ) -> str:
            return await generate_field(
                field, email, rule_instructions=instructions, hint=hint, ollama=ollama, model=model
            )

        async def classify(address: str, context: str, categories: list[Category]) -> str | None:
            verdict = await classify_sender(
                address, context=context, categories=categories, ollama=ollama, model=model
            )
            return verdict.category

        async def bulk_classify(
            addresses: list[str], categories: list[Category]
        ) -> dict[str, str | None]:
            return await classify_senders_bulk(
                addresses, categories=categories, ollama=ollama, model=model
            )

        async def rule_writer(prompt: str) -> list[DraftedRule]:
            return await write_rules(prompt, ollama=ollama, model=model)

        service = MailsortService(
            db_path=db_path,
            audit_log_path=audit_log_path,
            provider=imap,
            webhooks=webhooks,
            ai_check=ai_check,
            generate=generate,
            classify=classify,
            bulk_classify=bulk_classify,
            write_rules=rule_writer,
            ai_failure_policy=config.AI_FAILURE_POLICY,
            concurrency=config.CATEGORIZE_CONCURRENCY,
            page_size=config.SENDER_PAGE_SIZE,
            max_attempts=config.ACTION_MAX_ATTEMPTS,
            base_delay=config.ACTION_RETRY_BASE_DELAY,
            cleanup_batch_size=config.CLEANUP_BATCH_SIZE,
            cleanup_continue_limit=config.CLEANUP_CONTINUE_LIMIT,
            on_outcome=on_outcome,
        )
        try:
            yield service
        finally:
            await service.queue.drain()
            service.close()
