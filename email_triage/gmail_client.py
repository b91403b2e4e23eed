from __future__ import annotations

import base64
import logging
import time
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from .auth import load_gmail_credentials
from .config import GmailConfig
from .mail_client import EmailLabel, EmailMessage, MailClient

logger = logging.getLogger("email_triage.gmail")


def _headers_map(msg: Dict[str, Any]) -> Dict[str, str]:
    headers = (msg.get("payload") or {}).get("headers") or []
    return {h["name"]: h["value"] for h in headers if "name" in h}


def _decode_body_data(data: str) -> str:
    padded = data + "=" * (-len(data) % 4)
    return base64.urlsafe_b64decode(padded.encode("ascii")).decode("utf-8", errors="replace")


def extract_message_body(payload: Dict[str, Any]) -> str:
    """Return the top-level body, or the first text/plain part found (depth first)."""
    body = payload.get("body") or {}
    if body.get("data"):
        return _decode_body_data(body["data"])

    for part in payload.get("parts") or []:
        if part.get("mimeType") == "text/plain" and (part.get("body") or {}).get("data"):
            return _decode_body_data(part["body"]["data"])
    for part in payload.get("parts") or []:
        if (part.get("mimeType") or "").startswith("multipart/"):
            nested = extract_message_body(part)
            if nested:
                return nested
    return ""


def parse_message(message: Dict[str, Any]) -> EmailMessage:
    headers = _headers_map(message)
    return EmailMessage(
        id=message["id"],
        thread_id=message.get("threadId", message["id"]),
        snippet=message.get("snippet", ""),
        subject=headers.get("Subject", ""),
        sender=headers.get("From", ""),
        to=headers.get("To", ""),
        date=headers.get("Date", ""),
        body=extract_message_body(message.get("payload") or {}),
        labels=list(message.get("labelIds") or []),
    )


class GmailClient:
    """Thin Gmail API wrapper over an authenticated discovery service."""

    def __init__(self, service: Any, label_delay_seconds: float = 0.05, user_id: str = "me") -> None:
        self.service = service
        self.label_delay_seconds = label_delay_seconds
        self.user_id = user_id

    def _execute(self, request: Any, what: str) -> Dict[str, Any]:
        try:
            return request.execute() or {}
        except HttpError as exc:
            logger.error("Gmail %s failed: %s", what, exc)
            raise

    def list_message_ids(self, max_results: int = 50, query: Optional[str] = None) -> List[str]:
        params: Dict[str, Any] = {"userId": self.user_id, "maxResults": max_results}
        if query:
            params["q"] = query
        data = self._execute(self.service.users().messages().list(**params), "messages.list")
        return [m["id"] for m in data.get("messages", []) or []]

    def get_message(self, message_id: str) -> Dict[str, Any]:
        return self._execute(
            self.service.users().messages().get(userId=self.user_id, id=message_id, format="full"),
            f"messages.get {message_id}",
        )

    def get_messages(self, max_results: int = 50, query: Optional[str] = None) -> List[EmailMessage]:
        return [parse_message(self.get_message(mid)) for mid in self.list_message_ids(max_results, query)]

    def list_labels(self) -> List[Dict[str, Any]]:
        data = self._execute(self.service.users().labels().list(userId=self.user_id), "labels.list")
        return data.get("labels", []) or []

    def create_label(self, name: str, color: Optional[str] = None) -> Dict[str, Any]:
        body: Dict[str, Any] = {
            "name": name,
            "messageListVisibility": "show",
            "labelListVisibility": "labelShow",
        }
        if color:
            body["color"] = {"backgroundColor": color, "textColor": "#ffffff"}
        logger.debug("Creating Gmail label %s", name)
        return self._execute(
            self.service.users().labels().create(userId=self.user_id, body=body),
            f"labels.create {name}",
        )

    def get_label_by_name(self, name: str) -> Optional[Dict[str, Any]]:
        return next((label for label in self.list_labels() if label.get("name") == name), None)

    def modify_labels(
        self,
        message_id: str,
        add: Optional[List[str]] = None,
        remove: Optional[List[str]] = None,
    ) -> None:
        body: Dict[str, Any] = {}
        if add:
            body["addLabelIds"] = add
        if remove:
            body["removeLabelIds"] = remove
        self._execute(
            self.service.users().messages().modify(userId=self.user_id, id=message_id, body=body),
            f"messages.modify {message_id}",
        )

    def add_label_to_messages(self, message_ids: List[str], label_id: str) -> None:
        for message_id in message_ids:
            self.modify_labels(message_id, add=[label_id])
            time.sleep(self.label_delay_seconds)

    def watch(self, topic_name: str, label_ids: Optional[List[str]] = None) -> Dict[str, Any]:
        """Register Pub/Sub push notifications for the mailbox (expires after 7 days)."""
        body = {"topicName": topic_name, "labelIds": label_ids or ["INBOX"]}
        return self._execute(self.service.users().watch(userId=self.user_id, body=body), "users.watch")

    def stop_watch(self) -> None:
        self._execute(self.service.users().stop(userId=self.user_id), "users.stop")


def _to_label(raw: Dict[str, Any]) -> EmailLabel:
    return EmailLabel(id=raw.get("id", ""), name=raw.get("name", ""), type=raw.get("type"))


class GmailMailClient(MailClient):
    provider = "gmail"

    def __init__(
        self,
        gmail: GmailConfig,
        base_dir: Optional[Path] = None,
        service_factory: Optional[Callable[[], Any]] = None,
    ) -> None:
        self.gmail = gmail
        self.base_dir = base_dir
        self._service_factory = service_factory or self._build_service
        self._client: Optional[GmailClient] = None

    def _build_service(self) -> Any:
        creds = load_gmail_credentials(self.gmail, base_dir=self.base_dir)
        return build("gmail", "v1", credentials=creds, cache_discovery=False)

    def initialize(self) -> None:
        if self._client is None:
            self._client = GmailClient(self._service_factory(), label_delay_seconds=self.gmail.label_delay_seconds)

    @property
    def client(self) -> GmailClient:
        self.initialize()
        assert self._client is not None
        return self._client

    def get_messages(self, max_results: int = 50, query: Optional[str] = None) -> List[EmailMessage]:
        return self.client.get_messages(max_results, query)

    def get_unread_messages(self, max_results: int = 50) -> List[EmailMessage]:
        return self.get_messages(max_results, self.gmail.unread_query)

    def get_messages_by_label(self, label_name: str, max_results: int = 50) -> List[EmailMessage]:
        return self.get_messages(max_results, f"label:{label_name}")

    def get_labels(self) -> List[EmailLabel]:
        return [_to_label(raw) for raw in self.client.list_labels()]

    def create_label(self, name: str, color: Optional[str] = None) -> EmailLabel:
        return _to_label(self.client.create_label(name, color))

    def add_label_to_message(self, message_id: str, label_id: str) -> None:
        self.client.modify_labels(message_id, add=[label_id])

    def add_label_to_messages(self, message_ids: List[str], label_id: str) -> None:
        self.client.add_label_to_messages(message_ids, label_id)

    def remove_label_from_message(self, message_id: str, label_id: str) -> None:
        self.client.modify_labels(message_id, remove=[label_id])
