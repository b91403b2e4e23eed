from __future__ import annotations

import abc
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, List, Optional

if TYPE_CHECKING:
    from .config import AppConfig


@dataclass
class EmailMessage:
    """Provider-neutral view of a single message."""

    id: str
    thread_id: str
    snippet: str = ""
    subject: str = ""
    sender: str = ""
    to: str = ""
    date: str = ""
    body: str = ""
    labels: List[str] = field(default_factory=list)


@dataclass
class EmailLabel:
    id: str
    name: str
    type: Optional[str] = None


class MailClient(abc.ABC):
    """Operations the triage, monitor and webhook paths need from a mailbox.

    Gmail labels and Outlook categories both map onto `EmailLabel`; for
    Outlook the label id is the category display name.
    """

    provider: str = ""

    @abc.abstractmethod
    def initialize(self) -> None: ...

    @abc.abstractmethod
    def get_messages(self, max_results: int = 50, query: Optional[str] = None) -> List[EmailMessage]: ...

    @abc.abstractmethod
    def get_unread_messages(self, max_results: int = 50) -> List[EmailMessage]: ...

    @abc.abstractmethod
    def get_messages_by_label(self, label_name: str, max_results: int = 50) -> List[EmailMessage]: ...

    @abc.abstractmethod
    def get_labels(self) -> List[EmailLabel]: ...

    @abc.abstractmethod
    def create_label(self, name: str, color: Optional[str] = None) -> EmailLabel: ...

    @abc.abstractmethod
    def add_label_to_message(self, message_id: str, label_id: str) -> None: ...

    @abc.abstractmethod
    def add_label_to_messages(self, message_ids: List[str], label_id: str) -> None: ...

    @abc.abstractmethod
    def remove_label_from_message(self, message_id: str, label_id: str) -> None: ...

    def get_label_by_name(self, name: str) -> Optional[EmailLabel]:
        for label in self.get_labels():
            if label.name == name:
                return label
        return None

    def get_or_create_label(self, name: str, color: Optional[str] = None) -> EmailLabel:
        label = self.get_label_by_name(name)
        if label is None:
            label = self.create_label(name, color)
        return label


def create_mail_client(config: "AppConfig") -> MailClient:
    provider = (config.email_provider or "").strip().lower()
    if provider == "gmail":
        from .gmail_client import GmailMailClient

        return GmailMailClient(config.gmail, base_dir=config.base_dir())
    if provider == "outlook":
        from .graph_client import OutlookMailClient

        return OutlookMailClient(config.outlook, base_dir=config.base_dir())
    raise ValueError(f"Unsupported email provider: {config.email_provider}")
