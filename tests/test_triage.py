"""One-shot batch triage against the in-memory mailbox."""

from __future__ import annotations

import pytest

from email_triage.categorizer import LLMEmailCategorizer
from email_triage.config import AppConfig, AppSettings, LLMConfig
from email_triage.labels import LabelsConfigManager
from email_triage.llm_client import LLMClient
from email_triage.triage import apply_labels, categorize_and_label, render_report, run_once, write_report


def _by_subject(email):
    return "to_respond" if "?" in email.subject else "fyi"


def test_run_once_labels_unread_mail(make_email, fake_client_cls, fake_categorizer_cls):
    emails = [
        make_email("a", subject="Can you review?"),
        make_email("b", subject="Release notes"),
        make_email("c", subject="Lunch?"),
    ]
    client = fake_client_cls(emails)
    categorizer = fake_categorizer_cls(_by_subject)
    cfg = AppConfig(app=AppSettings(max_results=2))

    report = run_once(cfg, client, categorizer)

    assert client.initialized
    assert categorizer.defaults_created == 1
    assert client.queries == [(2, "is:unread")]
    assert report["provider"] == "gmail"
    assert report["fetched"] == 2
    assert report["stats"] == {"to_respond": 1, "fyi": 1}
    assert client.applied == {"Label_to_respond": ["a"], "Label_fyi": ["b"]}
    assert ("to_respond", "#fb4c2f") in client.created


def test_run_once_with_empty_inbox(fake_client_cls, fake_categorizer_cls):
    client = fake_client_cls([])
    categorizer = fake_categorizer_cls()
    report = run_once(AppConfig(), client, categorizer)
    assert report["fetched"] == 0
    assert categorizer.seen == []
    assert "No unread emails found." in render_report(report, {})


def test_run_once_without_api_key_labels_nothing(tmp_path, monkeypatch, make_email, fake_client_cls):
    monkeypatch.delenv("ANTHROPIC_API_KEY", raising=False)
    monkeypatch.setattr("email_triage.utils._ENV_LOADED", True)
    client = fake_client_cls([make_email("a"), make_email("b"), make_email("c")])
    categorizer = LLMEmailCategorizer(
        LLMClient(LLMConfig(), sleep=lambda s: None), LabelsConfigManager(tmp_path / "labels-config.json")
    )

    with pytest.raises(RuntimeError, match="API key missing"):
        run_once(AppConfig(), client, categorizer)
    assert client.applied == {}
    assert client.created == []


def test_existing_labels_are_reused(make_email, fake_client_cls, fake_categorizer_cls):
    from email_triage.mail_client import EmailLabel

    client = fake_client_cls([make_email("a")], labels=[EmailLabel("Label_9", "fyi")])
    categorize_and_label(client, fake_categorizer_cls(), client.messages)
    assert client.created == []
    assert client.applied == {"Label_9": ["a"]}


def test_label_failures_continue_or_raise(make_email, fake_client_cls, fake_categorizer_cls):
    emails = [make_email("a", subject="Why?"), make_email("b", subject="Note")]

    client = fake_client_cls(emails, fail_labels={"to_respond"})
    result = categorize_and_label(client, fake_categorizer_cls(_by_subject), emails)
    assert result["applied"] == {"fyi": 1}
    assert "cannot create to_respond" in result["failed"]["to_respond"]

    client = fake_client_cls(emails, fail_labels={"to_respond"})
    with pytest.raises(RuntimeError):
        categorize_and_label(client, fake_categorizer_cls(_by_subject), emails, continue_on_error=False)


def test_apply_labels_skips_empty_groups(fake_client_cls):
    client = fake_client_cls()
    applied, failed = apply_labels(client, {"fyi": []})
    assert applied == {} and failed == {}
    assert client.created == []


def test_render_and_write_report(tmp_path, make_email, fake_client_cls, fake_categorizer_cls):
    emails = [make_email("a", subject="x" * 80, sender='"Jane Doe" <jane@example.com>')]
    client = fake_client_cls(emails)
    categorizer = fake_categorizer_cls()
    report = run_once(AppConfig(), client, categorizer)

    md = render_report(report, categorizer.label_descriptions())
    assert "- **FYI**: 1 emails" in md
    assert "### FYI (1 emails)" in md
    assert "Description: Good to know" in md
    assert f"- {'x' * 60}..." in md
    assert "  - From: Jane Doe" in md
    assert "  - Confidence: 90.0%" in md
    assert "  - Reasoning: fake reasoning" in md

    path = write_report(tmp_path / "out", "run", md)
    assert path.parent == tmp_path / "out"
    assert path.name.startswith("email_triage_run_") and path.suffix == ".md"
    assert path.read_text(encoding="utf-8") == md
