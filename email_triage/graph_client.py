from __future__ import annotations

import logging
import time
from datetime import timedelta
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

import requests  # type: ignore[import]

from .auth import acquire_outlook_token
from .config import OutlookConfig
from .mail_client import EmailLabel, EmailMessage, MailClient
from .utils import utc_now

logger = logging.getLogger("email_triage.graph")

MESSAGE_SELECT = "id,subject,from,toRecipients,receivedDateTime,bodyPreview,body,isRead,categories"
MAX_SUBSCRIPTION_MINUTES = 4320


def _plan_category_updates(
    desired: Dict[str, str], existing: List[Dict[str, Any]]
) -> Dict[str, Dict[str, Any]]:
    """Return the operations needed to align master categories with desired colours.

    The returned dict is keyed by category name and each value contains:
    - action: one of create/update/unchanged
    - color: desired categoryColor value
    - id: master category id when present in Graph
    """

    existing_by_name = {
        c.get("displayName"): c for c in existing if c.get("displayName")
    }
    plan: Dict[str, Dict[str, Any]] = {}

    for name, color in desired.items():
        current = existing_by_name.get(name)
        if current is None:
            plan[name] = {"action": "create", "color": color}
            continue

        if current.get("color") != color:
            plan[name] = {"action": "update", "color": color, "id": current.get("id")}
            continue

        plan[name] = {"action": "unchanged", "color": color, "id": current.get("id")}

    return plan


def graph_error_code(exc: requests.HTTPError) -> Optional[str]:
    """Extract the Graph `error.code` (e.g. ErrorAccessDenied) from a failed response."""
    resp = exc.response
    if resp is None:
        return None
    try:
        return ((resp.json() or {}).get("error") or {}).get("code")
    except ValueError:
        return None


def odata_quote(value: str) -> str:
    return value.replace("'", "''")


def convert_message(raw: Dict[str, Any]) -> EmailMessage:
    sender = ((raw.get("from") or {}).get("emailAddress") or {}).get("address") or ""
    recipients = [
        ((r or {}).get("emailAddress") or {}).get("address") or ""
        for r in raw.get("toRecipients") or []
    ]
    return EmailMessage(
        id=raw["id"],
        # Graph has no Gmail-style thread id on the message list; reuse the id.
        thread_id=raw["id"],
        snippet=raw.get("bodyPreview") or "",
        subject=raw.get("subject") or "",
        sender=sender,
        to=", ".join(a for a in recipients if a),
        date=raw.get("receivedDateTime") or "",
        body=(raw.get("body") or {}).get("content") or raw.get("bodyPreview") or "",
        labels=list(raw.get("categories") or []),
    )


class GraphClient:
    """Thin Microsoft Graph wrapper scoped to a single user/mailbox."""

    def __init__(
        self,
        access_token: str,
        user: str = "me",
        base_url: str = "https://graph.microsoft.com/v1.0",
        category_delay_seconds: float = 0.1,
    ) -> None:
        self.access_token = access_token
        self.user = user  # "me" for delegated, or userPrincipalName for app-only
        self.base_url = base_url.rstrip("/")
        self.category_delay_seconds = category_delay_seconds
        self.session = requests.Session()
        self.session.headers.update(
            {"Authorization": f"Bearer {access_token}", "Accept": "application/json"}
        )

    @property
    def _user_root(self) -> str:
        if self.user.lower() == "me":
            return f"{self.base_url}/me"
        return f"{self.base_url}/users/{self.user}"

    @property
    def messages_resource(self) -> str:
        """Resource path used for change notification subscriptions."""
        if self.user.lower() == "me":
            return "/me/messages"
        return f"/users/{self.user}/messages"

    def _get(self, url: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        resp = self.session.get(url, params=params)
        if not resp.ok:
            logger.error("Graph GET %s failed: %s", resp.url, resp.text)
            resp.raise_for_status()
        return resp.json()

    def _patch(self, url: str, body: Dict[str, Any]) -> Dict[str, Any]:
        resp = self.session.patch(url, json=body)
        if not resp.ok:
            logger.error("Graph PATCH %s failed: %s", resp.url, resp.text)
            resp.raise_for_status()
        return resp.json() if resp.text else {}

    def _post(self, url: str, body: Dict[str, Any]) -> Dict[str, Any]:
        resp = self.session.post(url, json=body)
        if not resp.ok:
            logger.error("Graph POST %s failed: %s", resp.url, resp.text)
            resp.raise_for_status()
        return resp.json() if resp.text else {}

    def _delete(self, url: str) -> None:
        resp = self.session.delete(url)
        if not resp.ok:
            logger.error("Graph DELETE %s failed: %s", resp.url, resp.text)
            resp.raise_for_status()

    def _get_paged(
        self, url: str, params: Optional[Dict[str, Any]], limit: Optional[int] = None
    ) -> List[Dict[str, Any]]:
        out: List[Dict[str, Any]] = []
        next_url: Optional[str] = url
        while next_url and (limit is None or len(out) < limit):
            data = self._get(next_url, params=params)
            params = None
            out.extend(data.get("value", []))
            next_url = data.get("@odata.nextLink")
        return out if limit is None else out[:limit]

    # -----------------------------
    # Messages
    # -----------------------------

    def list_messages(
        self, max_results: int = 50, odata_filter: Optional[str] = None
    ) -> List[Dict[str, Any]]:
        params: Dict[str, Any] = {
            "$select": MESSAGE_SELECT,
            "$orderby": "receivedDateTime desc",
            "$top": min(max_results, 50),
        }
        if odata_filter:
            params["$filter"] = odata_filter
        return self._get_paged(f"{self._user_root}/messages", params, limit=max_results)

    def get_message_categories(self, message_id: str) -> List[str]:
        data = self._get(
            f"{self._user_root}/messages/{message_id}", params={"$select": "categories"}
        )
        return list(data.get("categories") or [])

    def update_message(self, message_id: str, patch_body: Dict[str, Any]) -> None:
        self._patch(f"{self._user_root}/messages/{message_id}", patch_body)

    def add_category_to_message(self, message_id: str, category: str) -> bool:
        """Append a category, preserving existing ones. Returns False when skipped."""
        try:
            current = self.get_message_categories(message_id)
            if category in current:
                return False
            self.update_message(message_id, {"categories": [*current, category]})
            return True
        except requests.HTTPError as exc:
            if graph_error_code(exc) == "ErrorAccessDenied":
                logger.warning(
                    "Permission error: cannot apply category %r to message. "
                    "The app registration needs the Mail.ReadWrite permission with admin consent.",
                    category,
                )
                return False
            raise

    def add_category_to_messages(self, message_ids: List[str], category: str) -> int:
        applied = 0
        for message_id in message_ids:
            if self.add_category_to_message(message_id, category):
                applied += 1
            time.sleep(self.category_delay_seconds)
        return applied

    def remove_category_from_message(self, message_id: str, category: str) -> None:
        current = self.get_message_categories(message_id)
        self.update_message(
            message_id, {"categories": [c for c in current if c != category]}
        )

    # -----------------------------
    # Master categories
    # -----------------------------

    def list_master_categories(self) -> List[Dict[str, Any]]:
        url = f"{self._user_root}/outlook/masterCategories"
        return self._get_paged(url, {"$select": "id,displayName,color"})

    def create_master_category(self, display_name: str, color: str) -> Dict[str, Any]:
        body = {"displayName": display_name, "color": color}
        try:
            return self._post(f"{self._user_root}/outlook/masterCategories", body)
        except requests.HTTPError as exc:
            if graph_error_code(exc) != "ErrorAccessDenied":
                raise
            logger.warning(
                "Permission error: cannot create category %r. Add the MailboxSettings.ReadWrite "
                "permission to the app registration and grant admin consent; continuing without it.",
                display_name,
            )
            return {"id": display_name, "displayName": display_name, "color": color}

    def update_master_category(self, category_id: str, color: str) -> Dict[str, Any]:
        body = {"color": color}
        return self._patch(
            f"{self._user_root}/outlook/masterCategories/{category_id}", body
        )

    def ensure_master_categories(
        self, desired_colors: Dict[str, str]
    ) -> Dict[str, str]:
        """Create or update master categories so they carry the desired colours.

        Returns a map of category name to action taken (create/update/unchanged).
        """

        existing = self.list_master_categories()
        plan = _plan_category_updates(desired_colors, existing)
        results: Dict[str, str] = {}

        for name, step in plan.items():
            action = step.get("action")
            color = step.get("color")
            if action == "create":
                self.create_master_category(name, color)
            elif action == "update":
                cat_id = step.get("id")
                if cat_id:
                    self.update_master_category(cat_id, color)
                else:
                    logger.warning(
                        "Category %s missing id during update; recreating", name
                    )
                    self.create_master_category(name, color)
                    action = "create"

            results[name] = action or "unchanged"

        return results

    # -----------------------------
    # Change notification subscriptions
    # -----------------------------

    def create_subscription(
        self,
        notification_url: str,
        client_state: Optional[str] = None,
        expiration_minutes: int = MAX_SUBSCRIPTION_MINUTES,
        change_type: str = "created",
    ) -> Dict[str, Any]:
        minutes = min(expiration_minutes, MAX_SUBSCRIPTION_MINUTES)
        expires = utc_now() + timedelta(minutes=minutes)
        body = {
            "changeType": change_type,
            "notificationUrl": notification_url,
            "resource": self.messages_resource,
            "expirationDateTime": expires.strftime("%Y-%m-%dT%H:%M:%SZ"),
            "latestSupportedTlsVersion": "v1_2",
        }
        if client_state:
            body["clientState"] = client_state
        return self._post(f"{self.base_url}/subscriptions", body)

    def renew_subscription(
        self, subscription_id: str, expiration_minutes: int = MAX_SUBSCRIPTION_MINUTES
    ) -> Dict[str, Any]:
        minutes = min(expiration_minutes, MAX_SUBSCRIPTION_MINUTES)
        expires = utc_now() + timedelta(minutes=minutes)
        return self._patch(
            f"{self.base_url}/subscriptions/{subscription_id}",
            {"expirationDateTime": expires.strftime("%Y-%m-%dT%H:%M:%SZ")},
        )

    def delete_subscription(self, subscription_id: str) -> None:
        self._delete(f"{self.base_url}/subscriptions/{subscription_id}")

    def list_subscriptions(self) -> List[Dict[str, Any]]:
        return self._get_paged(f"{self.base_url}/subscriptions", None)


def _to_label(raw: Dict[str, Any]) -> EmailLabel:
    name = raw.get("displayName") or ""
    return EmailLabel(id=name, name=name, type="user")


class OutlookMailClient(MailClient):
    """MailClient over Outlook categories. Label ids are category display names."""

    provider = "outlook"

    def __init__(
        self,
        outlook: OutlookConfig,
        base_dir: Optional[Path] = None,
        token_provider: Optional[Callable[[], str]] = None,
    ) -> None:
        self.outlook = outlook
        self.base_dir = base_dir
        self._token_provider = token_provider or (
            lambda: acquire_outlook_token(self.outlook, base_dir=self.base_dir)
        )
        self._graph: Optional[GraphClient] = None

    def initialize(self) -> None:
        if self._graph is None:
            self._graph = GraphClient(
                self._token_provider(),
                user=self.outlook.user,
                category_delay_seconds=self.outlook.category_delay_seconds,
            )

    @property
    def graph(self) -> GraphClient:
        self.initialize()
        assert self._graph is not None
        return self._graph

    def get_messages(self, max_results: int = 50, query: Optional[str] = None) -> List[EmailMessage]:
        return [convert_message(m) for m in self.graph.list_messages(max_results, query)]

    def get_unread_messages(self, max_results: int = 50) -> List[EmailMessage]:
        return self.get_messages(max_results, "isRead eq false")

    def get_messages_by_label(self, label_name: str, max_results: int = 50) -> List[EmailMessage]:
        return self.get_messages(
            max_results, f"categories/any(c:c eq '{odata_quote(label_name)}')"
        )

    def get_labels(self) -> List[EmailLabel]:
        return [_to_label(raw) for raw in self.graph.list_master_categories()]

    def create_label(self, name: str, color: Optional[str] = None) -> EmailLabel:
        raw = self.graph.create_master_category(name, color or self.outlook.default_category_color)
        return _to_label(raw)

    def add_label_to_message(self, message_id: str, label_id: str) -> None:
        self.graph.add_category_to_message(message_id, label_id)

    def add_label_to_messages(self, message_ids: List[str], label_id: str) -> None:
        self.graph.add_category_to_messages(message_ids, label_id)

    def remove_label_from_message(self, message_id: str, label_id: str) -> None:
        self.graph.remove_category_from_message(message_id, label_id)
