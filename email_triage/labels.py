"""User-defined, action-oriented labels.

Labels live in a JSON file (``labels-config.json`` by default) so they can be
edited without touching ``config.toml``. Each label carries the prompt text
the LLM sees when deciding whether an email belongs to it.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

from .utils import load_json, save_json

logger = logging.getLogger("email_triage.labels")


@dataclass
class LabelDefinition:
    name: str
    prompt: str
    description: Optional[str] = None
    examples: List[str] = field(default_factory=list)
    color: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"name": self.name, "prompt": self.prompt}
        if self.description:
            out["description"] = self.description
        if self.examples:
            out["examples"] = list(self.examples)
        if self.color:
            out["color"] = self.color
        return out


@dataclass
class LabelsConfig:
    labels: List[LabelDefinition] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {"labels": [label.to_dict() for label in self.labels]}


DEFAULT_LABELS: List[LabelDefinition] = [
    LabelDefinition(
        name="to_respond",
        prompt=(
            "Emails that require a response from me - questions directed at me, requests "
            "for information, decisions needed, or conversations where I need to reply"
        ),
        description="Emails you need to respond to",
        examples=[
            "Direct questions to me",
            "Requests for decisions",
            "Meeting invitations needing RSVP",
            "Client inquiries",
        ],
    ),
    LabelDefinition(
        name="fyi",
        prompt=(
            "Important informational emails that don't require my response but are important "
            "for me to know - updates, announcements, or information relevant to my work or interests"
        ),
        description="Emails that don't require your response, but are important",
        examples=["Project updates", "Company announcements", "Policy changes", "Important news"],
    ),
    LabelDefinition(
        name="comment",
        prompt=(
            "Collaborative communications from team tools like comments in Google Docs, "
            "Microsoft Office, Slack notifications, or other team collaboration platforms"
        ),
        description="Team chats in tools like Google Docs or Microsoft Office",
        examples=[
            "Google Docs comments",
            "Office 365 comments",
            "Slack notifications",
            "Team collaboration updates",
        ],
    ),
    LabelDefinition(
        name="notification",
        prompt=(
            "Automated updates and notifications from tools, services, and platforms I use - "
            "system notifications, app updates, service alerts"
        ),
        description="Automated updates from tools you use",
        examples=[
            "GitHub notifications",
            "App updates",
            "Service alerts",
            "System notifications",
            "Backup reports",
        ],
    ),
    LabelDefinition(
        name="meeting_update",
        prompt=(
            "Calendar and meeting-related updates from platforms like Zoom, Google Meet, "
            "Microsoft Teams, calendar invitations, meeting reminders, or scheduling changes"
        ),
        description="Calendar updates from Zoom, Google Meet, etc",
        examples=[
            "Zoom meeting links",
            "Calendar invitations",
            "Meeting reminders",
            "Schedule changes",
            "Meeting recordings",
        ],
    ),
    LabelDefinition(
        name="awaiting_reply",
        prompt=(
            "Emails where I'm expecting a response - follow-ups to my previous emails, "
            "replies to questions I asked, or confirmations I'm waiting for"
        ),
        description="Emails you're expecting a reply to",
        examples=[
            "Replies to my questions",
            "Confirmations I requested",
            "Follow-up responses",
            "Pending approvals",
        ],
    ),
    LabelDefinition(
        name="actioned",
        prompt=(
            "Email threads that have been resolved, completed, or no longer need attention - "
            "confirmations of completed tasks, resolved issues, or closed conversations"
        ),
        description="Email threads that have been resolved",
        examples=[
            "Task completion confirmations",
            "Issue resolved notifications",
            "Completed project updates",
            "Closed tickets",
        ],
    ),
    LabelDefinition(
        name="marketing",
        prompt=(
            "Marketing emails, promotional content, cold emails, newsletters from companies "
            "trying to sell products or services, or unsolicited business communications"
        ),
        description="Marketing or cold emails",
        examples=[
            "Product promotions",
            "Sales pitches",
            "Cold outreach",
            "Marketing newsletters",
            "Advertising emails",
        ],
    ),
]


def default_labels_config() -> LabelsConfig:
    return LabelsConfig(labels=[replace(label, examples=list(label.examples)) for label in DEFAULT_LABELS])


def _label_from_dict(raw: Mapping[str, Any]) -> LabelDefinition:
    return LabelDefinition(
        name=str(raw["name"]),
        prompt=str(raw.get("prompt", "")),
        description=raw.get("description"),
        examples=[str(e) for e in raw.get("examples", []) or []],
        color=raw.get("color"),
    )


def labels_config_from_dict(raw: Mapping[str, Any]) -> LabelsConfig:
    return LabelsConfig(labels=[_label_from_dict(item) for item in raw.get("labels", [])])


class LabelsConfigManager:
    def __init__(self, config_path: str | Path = "labels-config.json") -> None:
        self.config_path = Path(config_path).expanduser()

    def load(self) -> LabelsConfig:
        try:
            raw = load_json(self.config_path, None)
        except (OSError, json.JSONDecodeError) as exc:
            logger.warning("Could not read %s (%s), using default labels", self.config_path, exc)
            return default_labels_config()
        if raw is None:
            logger.info(
                "No custom labels config found, using defaults. Create %s to customize.",
                self.config_path.name,
            )
            return default_labels_config()
        try:
            config = labels_config_from_dict(raw)
        except (KeyError, TypeError, AttributeError) as exc:
            logger.warning("Malformed labels config %s (%s), using default labels", self.config_path, exc)
            return default_labels_config()
        if not config.labels:
            logger.warning("Labels config %s defines no labels, using defaults", self.config_path)
            return default_labels_config()
        return config

    def save(self, config: LabelsConfig) -> None:
        save_json(self.config_path, config.to_dict())

    def create_default_config(self) -> bool:
        if self.config_path.exists():
            return False
        self.save(default_labels_config())
        logger.info("Default labels config created at %s", self.config_path)
        return True

    def available_labels(self, config: Optional[LabelsConfig] = None) -> List[str]:
        config = config or self.load()
        return [label.name for label in config.labels]

    def label_prompts(self, config: Optional[LabelsConfig] = None) -> Dict[str, str]:
        config = config or self.load()
        return {label.name: label.prompt for label in config.labels}

    def label_descriptions(self, config: Optional[LabelsConfig] = None) -> Dict[str, str]:
        config = config or self.load()
        return {label.name: label.description or label.prompt for label in config.labels}

    def label_colors(self, config: Optional[LabelsConfig] = None) -> Dict[str, Optional[str]]:
        config = config or self.load()
        return {label.name: label.color for label in config.labels}


def add_label(config: LabelsConfig, label: LabelDefinition) -> LabelsConfig:
    if any(existing.name == label.name for existing in config.labels):
        raise ValueError(f"Label already exists: {label.name}")
    return LabelsConfig(labels=[*config.labels, label])


def remove_label(config: LabelsConfig, label_name: str) -> LabelsConfig:
    return LabelsConfig(labels=[label for label in config.labels if label.name != label_name])


def update_label(config: LabelsConfig, label_name: str, updated: LabelDefinition) -> LabelsConfig:
    return LabelsConfig(
        labels=[updated if label.name == label_name else label for label in config.labels]
    )
