"""LLMEmailCategorizer wiring plus the grouping/sorting helpers."""

from __future__ import annotations

import json
from types import SimpleNamespace

from email_triage.categorizer import (
    CategorizedEmail,
    LLMEmailCategorizer,
    build_categorizer,
    filter_by_confidence,
    group_emails_by_label,
    label_stats,
    sort_emails_by_date,
)
from email_triage.config import AppConfig, LLMConfig
from email_triage.keyword_categorizer import KeywordEmailCategorizer
from email_triage.labels import LabelsConfigManager
from email_triage.llm_client import LLMClient


class RecordingMessages:
    def __init__(self, label="fyi"):
        self.label = label
        self.prompts = []

    def create(self, **kwargs):
        self.prompts.append(kwargs["messages"][0]["content"])
        text = json.dumps({"label": self.label, "confidence": 0.8, "reasoning": "because"})
        return SimpleNamespace(content=[SimpleNamespace(type="text", text=text)])


def _categorizer(tmp_path, label="fyi", body_max_chars=1000):
    messages = RecordingMessages(label)
    llm = LLMClient(
        LLMConfig(request_delay_seconds=0),
        sdk_client=SimpleNamespace(messages=messages),
    )
    manager = LabelsConfigManager(tmp_path / "labels-config.json")
    return LLMEmailCategorizer(llm, manager, body_max_chars=body_max_chars), messages


def test_format_email_for_llm_truncates_body(tmp_path, make_email):
    categorizer, _ = _categorizer(tmp_path, body_max_chars=10)
    text = categorizer.format_email_for_llm(make_email(body="0123456789ABCDEF"))

    assert text.startswith("Subject: Question\nFrom: Jane Doe <jane@example.com>\nTo: me@example.com\n")
    assert "\n\nPreview: Quick question about the report\n\n" in text
    assert text.endswith("Body: 0123456789...")


def test_format_email_without_body_has_no_body_line(tmp_path, make_email):
    categorizer, _ = _categorizer(tmp_path)
    assert "Body:" not in categorizer.format_email_for_llm(make_email(body=""))


def test_categorize_emails_keeps_email_objects(tmp_path, make_email):
    categorizer, messages = _categorizer(tmp_path, label="to_respond")
    emails = [make_email("a"), make_email("b", subject="Other")]

    results = categorizer.categorize_emails(emails)

    assert [r.email for r in results] == emails
    assert all(r.label == "to_respond" and r.confidence == 0.8 for r in results)
    assert len(messages.prompts) == 2
    assert "Subject: Other" in messages.prompts[1]


def test_categorize_emails_empty(tmp_path):
    categorizer, messages = _categorizer(tmp_path)
    assert categorizer.categorize_emails([]) == []
    assert messages.prompts == []


def test_custom_labels_round_trip(tmp_path):
    categorizer, _ = _categorizer(tmp_path)
    categorizer.add_custom_label("invoices", "Bills", description="Bills to pay", color="#16a766")
    assert "invoices" in categorizer.available_labels()
    assert categorizer.label_descriptions()["invoices"] == "Bills to pay"
    assert categorizer.label_colors()["invoices"] == "#16a766"

    categorizer.remove_label("invoices")
    assert "invoices" not in categorizer.available_labels()


def _item(make_email, id, label, confidence=0.9, date=""):
    return CategorizedEmail(make_email(id, date=date), label, confidence, "r")


def test_group_and_stats(make_email):
    items = [_item(make_email, "a", "fyi"), _item(make_email, "b", "to_respond"), _item(make_email, "c", "fyi")]
    grouped = group_emails_by_label(items)
    assert [i.email.id for i in grouped["fyi"]] == ["a", "c"]
    assert label_stats(items) == {"fyi": 2, "to_respond": 1}


def test_filter_by_confidence(make_email):
    items = [_item(make_email, "a", "fyi", 0.4), _item(make_email, "b", "fyi", 0.5)]
    assert [i.email.id for i in filter_by_confidence(items)] == ["b"]
    assert [i.email.id for i in filter_by_confidence(items, 0.3)] == ["a", "b"]


def test_sort_emails_by_date_newest_first(make_email):
    emails = [
        make_email("old", date="2024-01-01T00:00:00Z"),
        make_email("bad", date="whenever"),
        make_email("new", date="Tue, 02 Jan 2024 00:00:00 +0000"),
    ]
    assert [e.id for e in sort_emails_by_date(emails)] == ["new", "old", "bad"]


def test_build_categorizer_selects_backend(tmp_path):
    keywords = AppConfig(llm=LLMConfig(provider="keywords"))
    assert isinstance(build_categorizer(keywords), KeywordEmailCategorizer)

    llm = build_categorizer(AppConfig())
    assert isinstance(llm, LLMEmailCategorizer)
    assert llm.labels_manager.config_path.name == "labels-config.json"
