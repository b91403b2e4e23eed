"""Test bootstrap helpers.

Ensures the project root is importable when running tests without installing
the package, and provides an in-memory mailbox and categorizer so the triage,
monitor and webhook paths can run without network access.
"""

import sys
from pathlib import Path
from typing import Callable, Dict, List, Optional

import pytest


ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from email_triage.categorizer import CategorizedEmail  # noqa: E402
from email_triage.mail_client import EmailLabel, EmailMessage, MailClient  # noqa: E402


class FakeMailClient(MailClient):
    provider = "fake"

    def __init__(self, messages=None, labels=None, fail_labels=()):
        self.messages: List[EmailMessage] = list(messages or [])
        self.labels: Dict[str, EmailLabel] = {label.name: label for label in labels or []}
        self.fail_labels = set(fail_labels)
        self.applied: Dict[str, List[str]] = {}
        self.created: List[tuple] = []
        self.queries: List[tuple] = []
        self.initialized = False

    def initialize(self) -> None:
        self.initialized = True

    def get_messages(self, max_results=50, query=None):
        self.queries.append((max_results, query))
        return self.messages[:max_results]

    def get_unread_messages(self, max_results=50):
        return self.get_messages(max_results, "is:unread")

    def get_messages_by_label(self, label_name, max_results=50):
        return [m for m in self.messages if label_name in m.labels][:max_results]

    def get_labels(self):
        return list(self.labels.values())

    def create_label(self, name, color=None):
        if name in self.fail_labels:
            raise RuntimeError(f"cannot create {name}")
        label = EmailLabel(id=f"Label_{name}", name=name, type="user")
        self.labels[name] = label
        self.created.append((name, color))
        return label

    def add_label_to_message(self, message_id, label_id):
        self.applied.setdefault(label_id, []).append(message_id)

    def add_label_to_messages(self, message_ids, label_id):
        for message_id in message_ids:
            self.add_label_to_message(message_id, label_id)

    def remove_label_from_message(self, message_id, label_id):
        self.applied.get(label_id, []).remove(message_id)


class FakeCategorizer:
    """Labels each email with `rule(email)`; defaults to "fyi"."""

    def __init__(self, rule: Optional[Callable[[EmailMessage], str]] = None):
        self.rule = rule or (lambda email: "fyi")
        self.seen: List[str] = []
        self.defaults_created = 0

    def categorize_email(self, email):
        self.seen.append(email.id)
        return CategorizedEmail(email, self.rule(email), 0.9, "fake reasoning")

    def categorize_emails(self, emails):
        return [self.categorize_email(email) for email in emails]

    def available_labels(self):
        return ["to_respond", "fyi"]

    def label_descriptions(self):
        return {"to_respond": "Emails you need to respond to", "fyi": "Good to know"}

    def label_colors(self):
        return {"to_respond": "#fb4c2f", "fyi": None}

    def create_default_config(self):
        self.defaults_created += 1


def _make_email(id="m1", **kwargs) -> EmailMessage:
    fields = {
        "thread_id": kwargs.pop("thread_id", id),
        "snippet": "Quick question about the report",
        "subject": "Question",
        "sender": "Jane Doe <jane@example.com>",
        "to": "me@example.com",
        "date": "Mon, 01 Jan 2024 10:00:00 +0000",
        "body": "Can you send me the numbers?",
    }
    fields.update(kwargs)
    return EmailMessage(id=id, **fields)


@pytest.fixture
def make_email():
    return _make_email


@pytest.fixture
def fake_client_cls():
    return FakeMailClient


@pytest.fixture
def fake_categorizer_cls():
    return FakeCategorizer
