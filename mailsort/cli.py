"""CLI entry point for mailsort.

Commands:
    mailsort rules       — list, add, remove and tune rules
    mailsort categories  — manage sender categories
    mailsort senders     — sync, list and categorize senders
    mailsort clean       — two-phase cleanup of old inbox mail
    mailsort run         — apply rules to unread inbox mail
    mailsort status      — quick overview of rules, senders and recent activity
"""

import asyncio
import json
import logging
import sys

import click

from mailsort.config import (
    ACTION_AUDIT_LOG_PATH,
    CLEANUP_PREVIEW_COUNT,
    IMAP_EMAIL,
    IMAP_PASSWORD,
    IMAP_SERVER,
    MAILSORT_DB_PATH,
    SENDER_PAGE_SIZE,
)
from mailsort.errors import CapabilityError, CleanupJobNotFoundError, RuleValidationError

logger = logging.getLogger("mailsort")

ONBOARDING_CHOICES = ["label", "label_archive", "none"]
SKIP_FILTERS = ["reply", "starred", "calendar", "receipt", "attachment"]


def _validate_config() -> None:
    """Fail loudly if required config is missing."""
    missing = []
    if not IMAP_SERVER:
        missing.append("IMAP_SERVER")
    if not IMAP_EMAIL:
        missing.append("IMAP_EMAIL")
    if not IMAP_PASSWORD:
        missing.append("IMAP_PASSWORD")
    if missing:
        click.echo(f"Error: Missing required config: {', '.join(missing)}", err=True)
        click.echo("Set these in secrets/internal.env or via SOPS.", err=True)
        sys.exit(1)


def _open_service(model: str | None = None, **kwargs):
    from mailsort.orchestrator.pipelines import open_service

    return open_service(
        db_path=MAILSORT_DB_PATH, audit_log_path=ACTION_AUDIT_LOG_PATH, model=model, **kwargs
    )


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging.")
def cli(verbose: bool) -> None:
    """mailsort — rule-based email triage with a local LLM."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)-8s %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )


# ------------------------------------------------------------------
# mailsort rules
# ------------------------------------------------------------------


@cli.group()
def rules() -> None:
    """Manage rules (evaluated in list order, first match wins)."""


@rules.command("list")
def rules_list() -> None:
    """Show all rules in evaluation order."""
    from mailsort.store.rules import RuleStore

    with RuleStore(MAILSORT_DB_PATH) as store:
        all_rules = store.list_rules()

    if not all_rules:
        click.echo("No rules defined.")
        return

    for i, rule in enumerate(all_rules, 1):
        conditions = f" {rule.operator.value} ".join(c.type for c in rule.conditions)
        actions = ", ".join(a.type.value for a in rule.actions)
        flags = "" if rule.automate else " [needs approval]"
        if rule.draft_replies:
            flags += " [drafts replies]"
        click.echo(f"{i}. {rule.name} ({rule.id}){flags}")
        click.echo(f"   if {conditions} -> {actions}")
        if rule.instructions:
            click.echo(f"   instructions: {rule.instructions}")


@rules.command("add")
@click.argument("rule_file", type=click.File("r"))
def rules_add(rule_file) -> None:
    """Add or update a rule from a JSON file ('-' for stdin)."""
    from mailsort.rules.validation import parse_rule
    from mailsort.store.rules import RuleStore

    try:
        data = json.load(rule_file)
    except json.JSONDecodeError as exc:
        click.echo(f"Error: Invalid JSON: {exc}", err=True)
        sys.exit(1)

    try:
        rule = parse_rule(data)
        with RuleStore(MAILSORT_DB_PATH) as store:
            store.save(rule)
    except RuleValidationError as exc:
        click.echo(f"Error: {exc}", err=True)
        sys.exit(1)

    click.echo(f"Saved rule {rule.name} ({rule.id})")


@rules.command("remove")
@click.argument("rule_id")
def rules_remove(rule_id: str) -> None:
    """Delete a rule."""
    from mailsort.store.rules import RuleStore

    with RuleStore(MAILSORT_DB_PATH) as store:
        deleted = store.delete(rule_id)
    if not deleted:
        click.echo(f"Error: Rule not found: {rule_id}", err=True)
        sys.exit(1)
    click.echo(f"Deleted rule {rule_id}")


@rules.command("instructions")
@click.argument("rule_id")
@click.argument("instructions")
def rules_instructions(rule_id: str, instructions: str) -> None:
    """Replace a rule's free-text instructions."""
    from mailsort.store.rules import RuleStore

    with RuleStore(MAILSORT_DB_PATH) as store:
        try:
            rule = store.update_instructions(rule_id, instructions)
        except ValueError as exc:
            click.echo(f"Error: {exc}", err=True)
            sys.exit(1)
    click.echo(f"Updated instructions for {rule.name}")


@rules.command("settings")
@click.argument("rule_id")
@click.option("--instructions", default=None, help="Replace the rule's instructions.")
@click.option("--draft-replies/--no-draft-replies", default=None, help="Draft an AI reply to matching mail.")
@click.option("--draft-instructions", default=None, help="Guidance for drafted replies.")
def rules_settings(
    rule_id: str,
    instructions: str | None,
    draft_replies: bool | None,
    draft_instructions: str | None,
) -> None:
    """Change a rule's instructions and reply drafting. Omitted options keep their value."""
    from mailsort.schemas.rules import RuleSettings
    from mailsort.store.rules import RuleStore

    with RuleStore(MAILSORT_DB_PATH) as store:
        rule = store.get(rule_id)
        if rule is None:
            click.echo(f"Error: Rule not found: {rule_id}", err=True)
            sys.exit(1)
        settings = RuleSettings(
            id=rule_id,
            instructions=(rule.instructions or "") if instructions is None else instructions,
            draft_replies=rule.draft_replies if draft_replies is None else draft_replies,
            draft_replies_instructions=(
                (rule.draft_replies_instructions or "")
                if draft_instructions is None
                else draft_instructions
            ),
        )
        rule = store.update_settings(settings)
    drafting = "on" if rule.draft_replies else "off"
    click.echo(f"Updated settings for {rule.name} (reply drafts {drafting})")


@rules.command("prompt")
@click.argument("prompt", required=False)
@click.option("--file", "-f", "prompt_file", type=click.File("r"), help="Read the prompt from a file ('-' for stdin).")
@click.option("--model", "-m", default=None, help="Ollama model name (auto-detected if omitted).")
def rules_prompt(prompt: str | None, prompt_file, model: str | None) -> None:
    """Write rules from a plain-language description of how to handle mail.

    Without a prompt, shows the prompt the rules were last written from.
    """
    if prompt_file is not None:
        prompt = prompt_file.read()
    if prompt is None:
        from mailsort.store.rules import RuleStore

        with RuleStore(MAILSORT_DB_PATH) as store:
            current = store.rules_prompt
        click.echo(current or "No rules prompt saved.")
        return

    _validate_config()
    asyncio.run(_rules_prompt_async(prompt, model))


async def _rules_prompt_async(prompt: str, model: str | None) -> None:
    async with _open_service(model) as service:
        result = await service.save_rules_prompt(prompt)

    for rule in result.created:
        click.echo(f"  + {rule.name}: {', '.join(a.type.value for a in rule.actions)}")
    for name in result.skipped:
        click.echo(f"  = {name}: already exists")
    for problem in result.rejected:
        click.echo(f"  ! {problem}")
    click.echo(
        f"Created {len(result.created)} rule(s), skipped {len(result.skipped)}, "
        f"rejected {len(result.rejected)}."
    )


@rules.command("examples")
@click.argument("prompt")
@click.option("--limit", "-n", default=20, show_default=True, help="Recent unread emails to check.")
@click.option("--model", "-m", default=None, help="Ollama model name (auto-detected if omitted).")
def rules_examples(prompt: str, limit: int, model: str | None) -> None:
    """Show recent unread mail that a rules prompt would catch."""
    _validate_config()
    asyncio.run(_rules_examples_async(prompt, limit, model))


async def _rules_examples_async(prompt: str, limit: int, model: str | None) -> None:
    async with _open_service(model) as service:
        matches = await service.find_rule_examples(prompt, limit=limit)

    if not matches:
        click.echo("No matching emails.")
        return
    for email in matches:
        click.echo(f"  {email.from_address}: {email.subject}")
    click.echo(f"{len(matches)} matching email(s)")


@rules.command("onboard")
@click.option("--to-reply", type=click.Choice(ONBOARDING_CHOICES), default="none", show_default=True)
@click.option("--newsletters", type=click.Choice(ONBOARDING_CHOICES), default="none", show_default=True)
@click.option("--marketing", type=click.Choice(ONBOARDING_CHOICES), default="none", show_default=True)
@click.option("--calendar", type=click.Choice(ONBOARDING_CHOICES), default="none", show_default=True)
@click.option("--receipts", type=click.Choice(ONBOARDING_CHOICES), default="none", show_default=True)
@click.option("--notifications", type=click.Choice(ONBOARDING_CHOICES), default="none", show_default=True)
@click.option("--cold-emails", type=click.Choice(ONBOARDING_CHOICES), default="none", show_default=True)
def rules_onboard(**choices: str) -> None:
    """Create starter rules for common kinds of mail."""
    from mailsort.rules.onboarding import create_onboarding_rules
    from mailsort.schemas.rules import OnboardingRulesBody
    from mailsort.store.rules import RuleStore

    body = OnboardingRulesBody(**choices)
    with RuleStore(MAILSORT_DB_PATH) as store:
        created = create_onboarding_rules(store, body)
    for rule in created:
        click.echo(f"  {rule.name}: {', '.join(a.type.value for a in rule.actions)}")
    click.echo(f"Created {len(created)} rule(s).")


# ------------------------------------------------------------------
# mailsort categories
# ------------------------------------------------------------------


@cli.group()
def categories() -> None:
    """Manage sender categories."""


@categories.command("list")
def categories_list() -> None:
    from mailsort.store.senders import SenderStore

    with SenderStore(MAILSORT_DB_PATH) as store:
        cats = store.list_categories()
    if not cats:
        click.echo("No categories defined.")
        return
    for cat in cats:
        click.echo(f"  {cat.name}" + (f" — {cat.description}" if cat.description else ""))


@categories.command("add")
@click.argument("name")
@click.option("--description", "-d", default="", help="Helps the AI pick this category.")
def categories_add(name: str, description: str) -> None:
    from mailsort.store.senders import SenderStore

    with SenderStore(MAILSORT_DB_PATH) as store:
        try:
            cat = store.add_category(name, description)
        except ValueError as exc:
            click.echo(f"Error: {exc}", err=True)
            sys.exit(1)
    click.echo(f"Added category {cat.name}")


@categories.command("remove")
@click.argument("name")
def categories_remove(name: str) -> None:
    """Delete a category; its senders become uncategorized."""
    from mailsort.store.senders import SenderStore

    with SenderStore(MAILSORT_DB_PATH) as store:
        removed = store.remove_category(name)
    if not removed:
        click.echo(f"Error: Category not found: {name}", err=True)
        sys.exit(1)
    click.echo(f"Removed category {name}")


# ------------------------------------------------------------------
# mailsort senders
# ------------------------------------------------------------------


@cli.group()
def senders() -> None:
    """Sender discovery and categorization."""


@senders.command("sync")
@click.option("--limit", "-n", default=500, show_default=True, help="Recent inbox messages to scan.")
def senders_sync(limit: int) -> None:
    """Record the senders of recent inbox mail."""
    _validate_config()
    asyncio.run(_senders_sync_async(limit))


async def _senders_sync_async(limit: int) -> None:
    async with _open_service() as service:
        new = await service.sync_senders(limit=limit)
    click.echo(f"Found {len(new)} new sender(s).")


@senders.command("list")
@click.option("--offset", default=0, show_default=True, help="Offset returned by a previous page.")
def senders_list(offset: int) -> None:
    """Show one page of uncategorized senders."""
    from mailsort.categorize.pagination import PaginationCursor
    from mailsort.store.senders import SenderStore

    with SenderStore(MAILSORT_DB_PATH) as store:
        cursor = PaginationCursor(store, page_size=SENDER_PAGE_SIZE)
        page = cursor.next_page(offset) if offset else cursor.first_page()

    if not page.senders:
        click.echo("No uncategorized senders.")
        return
    for address in page.senders:
        click.echo(f"  {address}")
    if page.next_offset is not None:
        click.echo(f"\nMore senders: mailsort senders list --offset {page.next_offset}")


@senders.command("categorize")
@click.argument("addresses", nargs=-1)
@click.option("--fast", is_flag=True, help="One AI call for all senders (lower fidelity).")
@click.option("--model", "-m", default=None, help="Ollama model name (auto-detected if omitted).")
def senders_categorize(addresses: tuple[str, ...], fast: bool, model: str | None) -> None:
    """Categorize the given senders, or every uncategorized sender."""
    _validate_config()
    asyncio.run(_senders_categorize_async(list(addresses), fast, model))


async def _senders_categorize_async(addresses: list[str], fast: bool, model: str | None) -> None:
    from mailsort.schemas.senders import OutcomeStatus

    def _on_outcome(outcome) -> None:
        if outcome.status == OutcomeStatus.COMPLETED:
            click.echo(f"  {outcome.address}: {outcome.category}")
        elif outcome.status == OutcomeStatus.UNMATCHED:
            click.echo(f"  {outcome.address}: no matching category")
        elif outcome.status == OutcomeStatus.FAILED:
            click.echo(f"  {outcome.address}: FAILED ({outcome.error})")

    async with _open_service(model, on_outcome=_on_outcome) as service:
        if not service.list_categories():
            click.echo("Error: No categories defined. Add one with 'mailsort categories add'.", err=True)
            sys.exit(1)

        targets = addresses or list(service.cursor.iter_senders())
        if not targets:
            click.echo("No uncategorized senders.")
            return

        if fast:
            try:
                results = await service.fast_categorize(targets)
            except CapabilityError as exc:
                click.echo(f"Error: Fast categorization failed: {exc}", err=True)
                sys.exit(1)
            for address, name in results.items():
                click.echo(f"  {address}: {name or 'no matching category'}")
            matched = sum(1 for name in results.values() if name)
            click.echo(f"\n{matched} of {len(results)} sender(s) categorized")
            return

        added = service.push_categorization(targets)
        click.echo(f"Categorizing {added} sender(s)...")
        await service.queue.drain()
        click.echo(f"\n{service.queue.stats.summary()}")
        if service.queue.error:
            click.echo(f"Error: {service.queue.error}", err=True)
            sys.exit(1)


@senders.command("auto")
@click.argument("state", type=click.Choice(["on", "off"]))
def senders_auto(state: str) -> None:
    """Queue new senders for categorization during 'mailsort run'."""
    from mailsort.store.senders import SenderStore

    with SenderStore(MAILSORT_DB_PATH) as store:
        store.set_auto_categorize(state == "on")
    click.echo(f"Auto-categorize is {state}.")


# ------------------------------------------------------------------
# mailsort clean
# ------------------------------------------------------------------


@cli.group()
def clean() -> None:
    """Archive or mark read old inbox mail, previewing a batch first."""


@clean.command("preview")
@click.option("--days-old", default=7, show_default=True, help="Only mail older than this.")
@click.option(
    "--action",
    type=click.Choice(["archive", "mark_read"]),
    default="archive",
    show_default=True,
)
@click.option("--skip", "skips", multiple=True, type=click.Choice(SKIP_FILTERS), help="Leave these alone.")
@click.option("--max", "max_emails", default=CLEANUP_PREVIEW_COUNT, show_default=True, help="Preview size.")
@click.option("--instructions", default="", help="Describe mail to keep; checked by the AI.")
@click.option("--model", "-m", default=None, help="Ollama model name (auto-detected if omitted).")
def clean_preview(
    days_old: int,
    action: str,
    skips: tuple[str, ...],
    max_emails: int,
    instructions: str,
    model: str | None,
) -> None:
    """Act on a first batch, then offer to process the rest."""
    from mailsort.schemas.cleanup import CleanAction, CleanupConfig, SkipFilters

    _validate_config()
    config = CleanupConfig(
        days_old=days_old,
        action=CleanAction(action.upper()),
        skips=SkipFilters(**{name: True for name in skips}),
        max_emails=max_emails,
        instructions=instructions,
    )
    asyncio.run(_clean_preview_async(config, model))


async def _clean_preview_async(config, model: str | None) -> None:
    async with _open_service(model) as service:
        job_id = await service.start_cleanup_preview(config)
        job = service.cleanup.get_job(job_id)
        click.echo(f"Preview done: {job.acted} acted, {job.skipped} skipped, {job.failed} failed.")
        click.echo(f"Job id: {job_id}")

        if not click.confirm("Process the remaining emails?", default=False):
            click.echo(f"Later: mailsort clean continue {job_id}")
            return

        result = await service.continue_cleanup(job_id)
        click.echo(f"Done: {result.acted} acted, {result.skipped} skipped, {result.failed} failed.")


@clean.command("continue")
@click.argument("job_id")
@click.option("--model", "-m", default=None, help="Ollama model name (auto-detected if omitted).")
def clean_continue(job_id: str, model: str | None) -> None:
    """Process the rest of a previewed cleanup job."""
    _validate_config()
    asyncio.run(_clean_continue_async(job_id, model))


async def _clean_continue_async(job_id: str, model: str | None) -> None:
    async with _open_service(model) as service:
        try:
            result = await service.continue_cleanup(job_id)
        except CleanupJobNotFoundError as exc:
            click.echo(f"Error: {exc}", err=True)
            sys.exit(1)

    if not result.ran:
        click.echo(f"Job {job_id} is {result.phase.value}; nothing to do.")
        return
    click.echo(f"Done: {result.acted} acted, {result.skipped} skipped, {result.failed} failed.")


@clean.command("status")
@click.argument("job_id", required=False)
def clean_status(job_id: str | None) -> None:
    """Show one cleanup job, or the most recent ones."""
    from mailsort.store.cleanup import CleanupJobStore

    with CleanupJobStore(MAILSORT_DB_PATH) as store:
        if job_id:
            job = store.get(job_id)
            if job is None:
                click.echo(f"Error: No cleanup job with id {job_id}", err=True)
                sys.exit(1)
            jobs = [job]
        else:
            jobs = store.list_jobs()

    if not jobs:
        click.echo("No cleanup jobs.")
        return
    for job in jobs:
        click.echo(
            f"{job.id}  {job.phase.value:<22} {job.config.action.value:<9} "
            f"acted={job.acted} skipped={job.skipped} failed={job.failed}"
        )


# ------------------------------------------------------------------
# mailsort run
# ------------------------------------------------------------------


@cli.command()
@click.option("--limit", "-n", default=50, show_default=True, help="Max unread emails to process.")
@click.option("--model", "-m", default=None, help="Ollama model name (auto-detected if omitted).")
def run(limit: int, model: str | None) -> None:
    """Apply rules to unread inbox mail."""
    _validate_config()
    asyncio.run(_run_async(limit, model))


async def _run_async(limit: int, model: str | None) -> None:
    async with _open_service(model) as service:
        result = await service.process_inbox(limit=limit, on_progress=click.echo)
        if service.is_categorizing():
            click.echo("Waiting for sender categorization to finish...")
    if result.rules:
        click.echo("\nMatches by rule:")
        for name, count in sorted(result.rules.items(), key=lambda kv: -kv[1]):
            click.echo(f"  {name}: {count}")


# ------------------------------------------------------------------
# mailsort status
# ------------------------------------------------------------------


@cli.command()
def status() -> None:
    """Quick overview of rules, senders and recent activity."""
    from mailsort.orchestrator.pipelines import run_status_pipeline

    result = run_status_pipeline(db_path=MAILSORT_DB_PATH, audit_log_path=ACTION_AUDIT_LOG_PATH)

    click.echo("mailsort Status")
    click.echo(f"  Rules:                  {result.rules}")
    click.echo(f"  Categories:             {result.categories}")
    click.echo(f"  Uncategorized senders:  {result.uncategorized_senders}")
    click.echo(f"  Categorization jobs:    {result.categorization_jobs}")
    click.echo(f"  Auto-categorize:        {'on' if result.auto_categorize else 'off'}")
    click.echo(f"  Actions (24h):          {result.actions_last_24h}")
    click.echo(f"  Awaiting approval (24h): {result.awaiting_approval_last_24h}")
    for job in result.recent_cleanups:
        click.echo(f"  Cleanup {job.id[:8]}: {job.phase.value} ({job.acted} acted)")
