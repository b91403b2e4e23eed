"""Push mode: a small FastAPI app that reacts to Gmail Pub/Sub pushes and
Microsoft Graph change notifications by triaging the most recent mail.

Subscription bookkeeping (Gmail `users.watch`, Graph `/subscriptions`) lives
here too because `serve` registers them before the server starts.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
import json
import logging
from datetime import timedelta
from typing import Any, Dict, List, Optional

import uvicorn
from fastapi import FastAPI, HTTPException, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import PlainTextResponse

from .config import WebhookConfig
from .gmail_client import GmailMailClient
from .graph_client import MAX_SUBSCRIPTION_MINUTES, OutlookMailClient
from .mail_client import EmailMessage, MailClient
from .triage import categorize_and_label
from .utils import parse_date, utc_now

logger = logging.getLogger("email_triage.webhooks")


def verify_signature(payload: bytes, signature: str, secret: str) -> bool:
    """Hex HMAC-SHA256 of the raw request body, compared in constant time."""
    expected = hmac.new(secret.encode("utf-8"), payload, hashlib.sha256).hexdigest()
    return hmac.compare_digest(expected.encode("ascii"), signature.strip().lower().encode("utf-8", "replace"))


def decode_pubsub_data(body: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    """Decode the base64 JSON `message.data` of a Pub/Sub push; None if absent or unreadable."""
    message = body.get("message")
    if not isinstance(message, dict):
        return None
    data = message.get("data")
    if not data or not isinstance(data, str):
        return None
    try:
        decoded = base64.b64decode(data)
        parsed = json.loads(decoded.decode("utf-8"))
    except (binascii.Error, ValueError) as exc:
        logger.warning("Could not decode Gmail notification data: %s", exc)
        return None
    return parsed if isinstance(parsed, dict) else None


def get_recent_emails(client: MailClient, cfg: WebhookConfig) -> List[EmailMessage]:
    cutoff = utc_now() - timedelta(minutes=cfg.recent_window_minutes)
    recent = []
    for email in client.get_messages(cfg.recent_fetch_count):
        received = parse_date(email.date)
        if received is not None and received > cutoff:
            recent.append(email)
    return recent


def process_recent_emails(client: MailClient, categorizer: Any, cfg: WebhookConfig) -> Dict[str, Any]:
    emails = get_recent_emails(client, cfg)
    if not emails:
        logger.info("No recent emails to process")
        return {"fetched": 0, "stats": {}, "applied": {}, "failed": {}}
    logger.info("Processing %d recent email(s)", len(emails))
    return categorize_and_label(client, categorizer, emails)


def create_app(client: MailClient, categorizer: Any, cfg: WebhookConfig) -> FastAPI:
    app = FastAPI(title="email-triage webhooks")

    async def _process() -> PlainTextResponse:
        try:
            await run_in_threadpool(process_recent_emails, client, categorizer, cfg)
        except Exception as exc:
            logger.error("Error processing notification: %s", exc)
            raise HTTPException(status_code=500, detail="Processing failed") from exc
        return PlainTextResponse("OK")

    @app.get("/health")
    def health() -> Dict[str, str]:
        return {"status": "ok", "timestamp": utc_now().isoformat()}

    @app.post("/webhooks/gmail")
    async def gmail_webhook(request: Request) -> PlainTextResponse:
        try:
            body = await request.json()
        except ValueError:
            body = {}
        notification = decode_pubsub_data(body if isinstance(body, dict) else {})
        if notification:
            logger.info(
                "Gmail notification for %s (historyId=%s)",
                notification.get("emailAddress"),
                notification.get("historyId"),
            )
        else:
            logger.info("Gmail notification received")
        return await _process()

    @app.get("/webhooks/outlook")
    def outlook_validation(validationToken: Optional[str] = None) -> PlainTextResponse:
        if not validationToken:
            raise HTTPException(status_code=400, detail="Missing validation token")
        return PlainTextResponse(validationToken)

    @app.post("/webhooks/outlook")
    async def outlook_webhook(request: Request) -> PlainTextResponse:
        token = request.query_params.get("validationToken")
        if token:
            logger.info("Answering Graph subscription validation")
            return PlainTextResponse(token)

        raw = await request.body()
        signature = request.headers.get("X-Webhook-Signature")
        if cfg.secret and signature and not verify_signature(raw, signature, cfg.secret):
            logger.warning("Rejected Outlook notification with bad signature")
            raise HTTPException(status_code=401, detail="Invalid signature")

        try:
            body = json.loads(raw or b"{}")
        except ValueError:
            body = {}
        value = body.get("value") if isinstance(body, dict) else None
        notifications = [n for n in value if isinstance(n, dict)] if isinstance(value, list) else []
        for notification in notifications:
            state = notification.get("clientState")
            if cfg.secret and state is not None and state != cfg.secret:
                logger.warning("Rejected Outlook notification with bad clientState")
                raise HTTPException(status_code=401, detail="Invalid client state")
        logger.info("Outlook notification received (%d change(s))", len(notifications))
        return await _process()

    return app


class WebhookServer:
    def __init__(self, client: MailClient, categorizer: Any, cfg: WebhookConfig) -> None:
        self.client = client
        self.categorizer = categorizer
        self.cfg = cfg
        self.app = create_app(client, categorizer, cfg)
        self.is_running = False

    def start(self) -> None:
        logger.info("Webhook server listening on %s:%d", self.cfg.host, self.cfg.port)
        logger.info("  Gmail:   POST /webhooks/gmail")
        logger.info("  Outlook: POST /webhooks/outlook")
        self.is_running = True
        try:
            uvicorn.run(self.app, host=self.cfg.host, port=self.cfg.port, log_level="info")
        finally:
            self.is_running = False

    def get_status(self) -> Dict[str, Any]:
        return {
            "is_running": self.is_running,
            "host": self.cfg.host,
            "port": self.cfg.port,
            "secret_configured": bool(self.cfg.secret),
        }


class GmailWatchManager:
    def __init__(self, client: GmailMailClient) -> None:
        self.client = client

    def start(self, topic_name: str) -> Dict[str, Any]:
        response = self.client.client.watch(topic_name)
        logger.info(
            "Gmail watch registered on %s (historyId=%s, expiration=%s)",
            topic_name,
            response.get("historyId"),
            response.get("expiration"),
        )
        return response

    def stop(self) -> None:
        self.client.client.stop_watch()
        logger.info("Gmail watch stopped")


class OutlookSubscriptionManager:
    def __init__(self, client: OutlookMailClient) -> None:
        self.client = client

    def create(
        self,
        notification_url: str,
        client_state: Optional[str] = None,
        expiration_minutes: int = MAX_SUBSCRIPTION_MINUTES,
    ) -> Dict[str, Any]:
        subscription = self.client.graph.create_subscription(
            notification_url, client_state, expiration_minutes
        )
        logger.info(
            "Graph subscription %s created (expires %s)",
            subscription.get("id"),
            subscription.get("expirationDateTime"),
        )
        return subscription

    def renew(self, subscription_id: str, expiration_minutes: int = MAX_SUBSCRIPTION_MINUTES) -> Dict[str, Any]:
        subscription = self.client.graph.renew_subscription(subscription_id, expiration_minutes)
        logger.info("Graph subscription %s renewed until %s", subscription_id, subscription.get("expirationDateTime"))
        return subscription

    def delete(self, subscription_id: str) -> None:
        self.client.graph.delete_subscription(subscription_id)
        logger.info("Graph subscription %s deleted", subscription_id)

    def list(self) -> List[Dict[str, Any]]:
        return self.client.graph.list_subscriptions()

    def cleanup_expired(self) -> int:
        """Delete subscriptions whose expirationDateTime has passed; returns how many."""
        now = utc_now()
        removed = 0
        for subscription in self.list():
            expires = parse_date(subscription.get("expirationDateTime"))
            if expires is not None and expires <= now:
                self.delete(subscription["id"])
                removed += 1
        return removed
