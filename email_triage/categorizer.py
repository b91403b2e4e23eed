from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Dict, Iterable, List, Optional

from .labels import LabelDefinition, LabelsConfigManager, add_label, remove_label
from .llm_client import LLMClient
from .mail_client import EmailMessage
from .utils import parse_date

if TYPE_CHECKING:
    from .config import AppConfig

logger = logging.getLogger("email_triage.categorizer")


@dataclass
class CategorizedEmail:
    email: EmailMessage
    label: str
    confidence: float
    reasoning: str


class LLMEmailCategorizer:
    def __init__(
        self,
        llm_client: LLMClient,
        labels_manager: LabelsConfigManager,
        body_max_chars: int = 1000,
    ) -> None:
        self.llm_client = llm_client
        self.labels_manager = labels_manager
        self.body_max_chars = body_max_chars

    def format_email_for_llm(self, email: EmailMessage) -> str:
        lines = [
            f"Subject: {email.subject}",
            f"From: {email.sender}",
            f"To: {email.to}",
            f"Date: {email.date}",
            "",
            f"Preview: {email.snippet}",
            "",
        ]
        if email.body:
            body = email.body[: self.body_max_chars]
            suffix = "..." if len(email.body) > self.body_max_chars else ""
            lines.append(f"Body: {body}{suffix}")
        return "\n".join(lines)

    def categorize_email(self, email: EmailMessage) -> CategorizedEmail:
        config = self.labels_manager.load()
        result = self.llm_client.categorize_email(
            self.format_email_for_llm(email),
            self.labels_manager.available_labels(config),
            self.labels_manager.label_prompts(config),
        )
        return CategorizedEmail(email, result.label, result.confidence, result.reasoning)

    def categorize_emails(self, emails: List[EmailMessage]) -> List[CategorizedEmail]:
        if not emails:
            return []
        config = self.labels_manager.load()
        by_id = {email.id: email for email in emails}
        results = self.llm_client.batch_categorize_emails(
            [{"id": email.id, "content": self.format_email_for_llm(email)} for email in emails],
            self.labels_manager.available_labels(config),
            self.labels_manager.label_prompts(config),
        )
        return [
            CategorizedEmail(by_id[r.id], r.label, r.confidence, r.reasoning)
            for r in results
            if r.id in by_id
        ]

    def available_labels(self) -> List[str]:
        return self.labels_manager.available_labels()

    def label_descriptions(self) -> Dict[str, str]:
        return self.labels_manager.label_descriptions()

    def label_colors(self) -> Dict[str, Optional[str]]:
        return self.labels_manager.label_colors()

    def create_default_config(self) -> None:
        self.labels_manager.create_default_config()

    def add_custom_label(
        self,
        name: str,
        prompt: str,
        description: Optional[str] = None,
        examples: Optional[List[str]] = None,
        color: Optional[str] = None,
    ) -> None:
        config = self.labels_manager.load()
        label = LabelDefinition(name, prompt, description, list(examples or []), color)
        self.labels_manager.save(add_label(config, label))

    def remove_label(self, label_name: str) -> None:
        config = self.labels_manager.load()
        self.labels_manager.save(remove_label(config, label_name))


def group_emails_by_label(categorized: Iterable[CategorizedEmail]) -> Dict[str, List[CategorizedEmail]]:
    grouped: Dict[str, List[CategorizedEmail]] = {}
    for item in categorized:
        grouped.setdefault(item.label, []).append(item)
    return grouped


def label_stats(categorized: Iterable[CategorizedEmail]) -> Dict[str, int]:
    stats: Dict[str, int] = {}
    for item in categorized:
        stats[item.label] = stats.get(item.label, 0) + 1
    return stats


def filter_by_confidence(
    categorized: Iterable[CategorizedEmail], min_confidence: float = 0.5
) -> List[CategorizedEmail]:
    return [item for item in categorized if item.confidence >= min_confidence]


_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


def sort_emails_by_date(emails: Iterable[EmailMessage]) -> List[EmailMessage]:
    """Newest first; messages with unparsable dates go last."""
    return sorted(emails, key=lambda e: parse_date(e.date) or _EPOCH, reverse=True)


def build_categorizer(config: "AppConfig"):
    if config.llm.provider == "keywords":
        from .keyword_categorizer import KeywordEmailCategorizer

        return KeywordEmailCategorizer()
    return LLMEmailCategorizer(
        LLMClient(config.llm),
        LabelsConfigManager(config.resolve(config.app.labels_path)),
        body_max_chars=config.llm.body_max_chars,
    )
