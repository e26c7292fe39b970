"""Tests for MailsortService and the status pipeline, with the network mocked."""

import sqlite3
from unittest.mock import AsyncMock

import pytest

from mailsort.errors import CapabilityError, StoreUnavailableError
from mailsort.orchestrator.pipelines import (
    MailsortService,
    run_status_pipeline,
    sender_context_fetcher,
)
from mailsort.schemas.email import EmailMessage
from mailsort.schemas.rules import ActionType, DraftedAction, DraftedRule, RuleSettings
from mailsort.store.senders import SenderStore

# --- Helpers ---


def _make_email(uid: str, from_address: str, subject: str = "Hello") -> EmailMessage:
    return EmailMessage(uid=uid, from_address=from_address, subject=subject, body_text="Hi there")


def _rule_payload(**overrides) -> dict:
    data = {
        "name": "Newsletters",
        "conditions": [{"type": "STATIC", "from": "news@"}],
        "actions": [{"type": "ARCHIVE"}],
    }
    data.update(overrides)
    return data


@pytest.fixture()
def provider():
    mock = AsyncMock()
    mock.fetch_messages.return_value = []
    mock.fetch_from_sender.return_value = []
    return mock


@pytest.fixture()
def bulk_classify():
    return AsyncMock(return_value={})


@pytest.fixture()
def ai_check():
    return AsyncMock(return_value=False)


@pytest.fixture()
def write_rules():
    return AsyncMock(return_value=[])


@pytest.fixture()
def service(tmp_path, db_path, provider, bulk_classify, ai_check, write_rules):
    svc = MailsortService(
        db_path=db_path,
        audit_log_path=tmp_path / "audit.jsonl",
        provider=provider,
        webhooks=AsyncMock(),
        ai_check=ai_check,
        generate=None,
        classify=AsyncMock(return_value="Newsletter"),
        bulk_classify=bulk_classify,
        write_rules=write_rules,
        base_delay=0,
    )
    yield svc
    svc.close()


# --- process_inbox ---


class TestProcessInbox:
    async def test_no_unread_mail(self, service):
        messages = []
        result = await service.process_inbox(on_progress=messages.append)

        assert result.processed == 0
        assert messages == ["No unread emails to process."]

    async def test_first_matching_rule_runs(self, service, provider):
        service.save_rule(_rule_payload())
        provider.fetch_messages.return_value = [
            _make_email("1", "news@example.com", "Weekly digest"),
            _make_email("2", "friend@example.com"),
        ]

        result = await service.process_inbox(limit=10)

        provider.fetch_messages.assert_awaited_once_with(limit=10)
        provider.archive.assert_awaited_once_with("1")
        assert result.processed == 2
        assert result.matched == 1
        assert result.rules == {"Newsletters": 1}
        assert result.errors == 0

    async def test_rerun_does_not_repeat_actions(self, service, provider):
        service.save_rule(_rule_payload())
        provider.fetch_messages.return_value = [_make_email("1", "news@example.com")]

        await service.process_inbox()
        await service.process_inbox()

        provider.archive.assert_awaited_once()

    async def test_unautomated_rule_awaits_approval(self, service, provider):
        service.save_rule(_rule_payload(automate=False))
        provider.fetch_messages.return_value = [_make_email("1", "news@example.com")]

        result = await service.process_inbox()

        assert result.awaiting_approval == 1
        provider.archive.assert_not_awaited()
        entries = service.audit_log.read_entries()
        assert [e.event for e in entries] == ["awaiting_approval"]

    async def test_failed_actions_counted(self, service, provider):
        service.save_rule(_rule_payload())
        provider.archive.side_effect = RuntimeError("imap gone")
        provider.fetch_messages.return_value = [_make_email("1", "news@example.com")]

        result = await service.process_inbox()

        assert result.processed == 1
        assert result.actions_failed == 1

    async def test_error_on_one_email_does_not_stop_run(self, service, provider, monkeypatch):
        provider.fetch_messages.return_value = [
            _make_email("1", "a@example.com"),
            _make_email("2", "b@example.com"),
        ]
        evaluate = AsyncMock(side_effect=[ValueError("boom"), None])
        monkeypatch.setattr(service.engine, "evaluate", evaluate)

        result = await service.process_inbox()

        assert result.errors == 1
        assert result.processed == 1

    async def test_store_failure_aborts(self, service, provider, monkeypatch):
        provider.fetch_messages.return_value = [_make_email("1", "a@example.com")]

        def broken():
            raise sqlite3.OperationalError("disk I/O error")

        monkeypatch.setattr(service.rules, "list_rules", broken)

        with pytest.raises(StoreUnavailableError):
            await service.process_inbox()

    async def test_senders_recorded(self, service, provider):
        provider.fetch_messages.return_value = [_make_email("1", "New@Example.com")]

        await service.process_inbox()

        assert service.senders.get_sender("new@example.com") is not None
        assert not service.is_categorizing()

    async def test_auto_categorize_queues_new_senders(self, service, provider):
        service.add_category("Newsletter")
        service.set_auto_categorize(True)
        provider.fetch_messages.return_value = [
            _make_email("1", "news@example.com"),
            _make_email("2", "news@example.com"),
        ]

        await service.process_inbox()
        await service.queue.drain()

        assert service.queue.stats.completed == 1
        assert service.senders.get_sender_category("news@example.com") == "Newsletter"

    async def test_category_rule_uses_stored_category(self, service, provider):
        category = service.add_category("Receipt")
        service.senders.assign_category("billing@acme.com", category)
        service.save_rule(
            _rule_payload(
                name="Receipts",
                conditions=[{"type": "CATEGORY", "categories": ["receipt"]}],
                actions=[{"type": "MARK_READ"}],
            )
        )
        provider.fetch_messages.return_value = [_make_email("9", "billing@acme.com")]

        result = await service.process_inbox()

        assert result.rules == {"Receipts": 1}
        provider.mark_read.assert_awaited_once_with("9")


# --- Senders ---


class TestSenders:
    async def test_sync_senders(self, service, provider):
        provider.fetch_sender_addresses.return_value = ["a@x.com", "A@x.com", "b@y.com"]
        service.senders.upsert_senders(["b@y.com"])

        new = await service.sync_senders(limit=100)

        provider.fetch_sender_addresses.assert_awaited_once_with(limit=100)
        assert new == ["a@x.com"]

    async def test_fast_categorize_persists(self, service, bulk_classify):
        service.add_category("Marketing")
        bulk_classify.return_value = {"a@x.com": "marketing"}

        results = await service.fast_categorize(["a@x.com", "b@y.com"])

        assert results == {"a@x.com": "Marketing", "b@y.com": None}
        assert service.senders.get_sender_category("a@x.com") == "Marketing"

    async def test_fast_categorize_without_persisting(self, service, bulk_classify):
        service.add_category("Marketing")
        bulk_classify.return_value = {"a@x.com": "Marketing"}

        await service.fast_categorize(["a@x.com"], persist=False)

        assert service.senders.get_sender_category("a@x.com") is None

    def test_list_uncategorized_senders(self, service):
        service.senders.upsert_senders([f"s{i:03d}@x.com" for i in range(150)])

        first = service.list_uncategorized_senders()
        second = service.list_uncategorized_senders(first.next_offset)

        assert len(first.senders) == 100
        assert first.next_offset == 100
        assert len(second.senders) == 50
        assert second.next_offset is None

    def test_stale_jobs_recovered_on_start(self, tmp_path, db_path, provider):
        with SenderStore(db_path) as store:
            store.add_job("a@x.com")

        svc = MailsortService(
            db_path=db_path,
            audit_log_path=tmp_path / "audit.jsonl",
            provider=provider,
            webhooks=AsyncMock(),
            ai_check=AsyncMock(),
            generate=None,
            classify=AsyncMock(),
            bulk_classify=AsyncMock(),
        )
        try:
            assert svc.senders.list_jobs() == []
        finally:
            svc.close()

    async def test_sender_context(self, provider):
        provider.fetch_from_sender.return_value = [
            EmailMessage(uid="1", from_address="a@x.com", subject="Sale", body_text="50%\n off  now"),
            EmailMessage(uid="2", from_address="a@x.com", body_text="x" * 500),
        ]

        context = await sender_context_fetcher(provider)("a@x.com")

        lines = context.split("\n")
        assert lines[0] == "- Sale: 50% off now"
        assert lines[1] == "- (no subject): " + "x" * 200


# --- Rules ---


class TestRules:
    def test_update_and_delete(self, service):
        rule = service.save_rule(_rule_payload())
        service.update_rule_instructions(rule.id, "weekly only")

        assert service.list_rules()[0].instructions == "weekly only"
        assert service.delete_rule(rule.id) is True
        assert service.list_rules() == []

    def test_update_settings(self, service):
        rule = service.save_rule(_rule_payload())

        service.update_rule_settings(
            RuleSettings(
                id=rule.id,
                instructions="weekly only",
                draft_replies=True,
                draft_replies_instructions="Keep it short",
            )
        )

        saved = service.list_rules()[0]
        assert saved.instructions == "weekly only"
        assert saved.draft_replies is True
        assert saved.draft_replies_instructions == "Keep it short"

    async def test_draft_replies_on_match(self, service, provider, monkeypatch):
        rule = service.save_rule(_rule_payload())
        service.update_rule_settings(
            RuleSettings(id=rule.id, draft_replies=True, draft_replies_instructions="Decline politely")
        )
        generate = AsyncMock(return_value="Thanks, but no.")
        monkeypatch.setattr(service.executor, "_generate", generate)
        provider.fetch_messages.return_value = [_make_email("1", "news@example.com")]

        await service.process_inbox()

        provider.archive.assert_awaited_once_with("1")
        provider.draft_email.assert_awaited_once()
        assert provider.draft_email.call_args.args[1] == "Thanks, but no."
        assert generate.call_args.args[3] == "Decline politely"


class TestRulesPrompt:
    def _drafts(self):
        return [
            DraftedRule(
                name="Receipts",
                instructions="Receipts and invoices",
                actions=[DraftedAction(type=ActionType.LABEL, label="Receipt")],
            ),
            DraftedRule(
                name="Broken",
                instructions="Anything from the bank",
                actions=[DraftedAction(type=ActionType.FORWARD)],
            ),
        ]

    async def test_prompt_creates_rules(self, service, write_rules):
        write_rules.return_value = self._drafts()

        result = await service.save_rules_prompt("Label receipts. Forward bank mail.")

        write_rules.assert_awaited_once_with("Label receipts. Forward bank mail.")
        assert [r.name for r in result.created] == ["Receipts"]
        assert result.rejected == ["Broken: Please enter an email address to forward to"]
        assert [r.name for r in service.list_rules()] == ["Receipts"]
        assert service.rules.rules_prompt == "Label receipts. Forward bank mail."

    async def test_prompt_again_skips_existing(self, service, write_rules):
        write_rules.return_value = self._drafts()[:1]
        await service.save_rules_prompt("Label receipts.")

        result = await service.save_rules_prompt("Label receipts.")

        assert result.created == []
        assert result.skipped == ["Receipts"]
        assert len(service.list_rules()) == 1

    async def test_empty_prompt_clears_without_ai(self, service, write_rules):
        result = await service.save_rules_prompt("   ")

        write_rules.assert_not_awaited()
        assert result.created == []
        assert service.rules.rules_prompt == ""

    async def test_no_writer_configured(self, tmp_path, db_path, provider):
        svc = MailsortService(
            db_path=db_path,
            audit_log_path=tmp_path / "audit.jsonl",
            provider=provider,
            webhooks=AsyncMock(),
            ai_check=AsyncMock(),
            generate=None,
            classify=AsyncMock(),
            bulk_classify=AsyncMock(),
        )
        try:
            with pytest.raises(CapabilityError):
                await svc.save_rules_prompt("Label receipts.")
        finally:
            svc.close()

    async def test_examples(self, service, provider, ai_check):
        provider.fetch_messages.return_value = [
            _make_email("1", "shop@example.com", "Your receipt"),
            _make_email("2", "friend@example.com", "Lunch?"),
            _make_email("3", "store@example.com", "Order confirmed"),
        ]

        async def check(email, instructions):
            if email.uid == "3":
                raise TimeoutError("slow model")
            return "receipt" in email.subject.lower()

        ai_check.side_effect = check

        matches = await service.find_rule_examples("Receipts", limit=3)

        provider.fetch_messages.assert_awaited_once_with(limit=3)
        assert [e.uid for e in matches] == ["1"]

    async def test_examples_for_empty_prompt(self, service, provider):
        assert await service.find_rule_examples("") == []
        provider.fetch_messages.assert_not_awaited()


# --- Status ---


class TestStatusPipeline:
    async def test_counts(self, service, provider, tmp_path, db_path):
        service.save_rule(_rule_payload())
        service.save_rule(
            _rule_payload(
                name="Held",
                automate=False,
                conditions=[{"type": "STATIC", "subject": "approve"}],
            )
        )
        service.add_category("Newsletter")
        service.senders.upsert_senders(["x@y.com"])
        service.set_auto_categorize(True)
        provider.fetch_messages.return_value = [
            _make_email("1", "news@example.com"),
            _make_email("2", "boss@example.com", "Please approve"),
        ]
        await service.process_inbox()
        await service.queue.drain()

        status = run_status_pipeline(db_path=db_path, audit_log_path=tmp_path / "audit.jsonl")

        assert status.rules == 2
        assert status.categories == 1
        assert status.auto_categorize is True
        assert status.actions_last_24h == 1
        assert status.awaiting_approval_last_24h == 1
        assert status.recent_cleanups == []

    def test_empty_database(self, tmp_path):
        status = run_status_pipeline(
            db_path=tmp_path / "fresh.db", audit_log_path=tmp_path / "audit.jsonl"
        )
        assert status.rules == 0
        assert status.uncategorized_senders == 0
        assert status.auto_categorize is False
