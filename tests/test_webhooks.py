"""Webhook routes through FastAPI's TestClient, plus subscription managers."""

from __future__ import annotations

import base64
import hashlib
import hmac
import json
from datetime import timedelta

import pytest
from fastapi.testclient import TestClient

from email_triage.config import WebhookConfig
from email_triage.utils import utc_now
from email_triage.webhooks import (
    OutlookSubscriptionManager,
    WebhookServer,
    create_app,
    decode_pubsub_data,
    get_recent_emails,
    verify_signature,
)


def _minutes_ago(minutes):
    return (utc_now() - timedelta(minutes=minutes)).strftime("%Y-%m-%dT%H:%M:%SZ")


@pytest.fixture
def mailbox(make_email, fake_client_cls):
    return fake_client_cls(
        [
            make_email("recent", date=_minutes_ago(2)),
            make_email("stale", date=_minutes_ago(60)),
        ]
    )


def _app(client, categorizer, **cfg):
    return TestClient(create_app(client, categorizer, WebhookConfig(enabled=True, **cfg)))


def _sign(body: bytes, secret: str) -> str:
    return hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()


def test_health(mailbox, fake_categorizer_cls):
    response = _app(mailbox, fake_categorizer_cls()).get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"
    assert "timestamp" in response.json()


def test_gmail_push_processes_recent_mail(mailbox, fake_categorizer_cls):
    categorizer = fake_categorizer_cls()
    data = base64.b64encode(json.dumps({"emailAddress": "me@example.com", "historyId": 42}).encode()).decode()

    response = _app(mailbox, categorizer).post("/webhooks/gmail", json={"message": {"data": data}})

    assert response.status_code == 200
    assert response.text == "OK"
    assert categorizer.seen == ["recent"]
    assert mailbox.queries == [(20, None)]
    assert mailbox.applied == {"Label_fyi": ["recent"]}


def test_gmail_push_with_bad_data_still_processes(mailbox, fake_categorizer_cls):
    categorizer = fake_categorizer_cls()
    response = _app(mailbox, categorizer).post("/webhooks/gmail", json={"message": {"data": "%%%not-base64"}})
    assert response.status_code == 200
    assert categorizer.seen == ["recent"]


def test_decode_pubsub_data():
    data = base64.b64encode(b'{"historyId": 1}').decode()
    assert decode_pubsub_data({"message": {"data": data}}) == {"historyId": 1}
    assert decode_pubsub_data({}) is None
    assert decode_pubsub_data({"message": {"data": base64.b64encode(b"[1]").decode()}}) is None
    assert decode_pubsub_data({"message": "x"}) is None
    assert decode_pubsub_data({"message": {"data": 42}}) is None


def test_outlook_validation_handshake(mailbox, fake_categorizer_cls):
    categorizer = fake_categorizer_cls()
    app = _app(mailbox, categorizer)

    response = app.post("/webhooks/outlook?validationToken=abc%20123")
    assert response.status_code == 200
    assert response.text == "abc 123"
    assert response.headers["content-type"].startswith("text/plain")
    assert categorizer.seen == []

    assert app.get("/webhooks/outlook", params={"validationToken": "tok"}).text == "tok"
    assert app.get("/webhooks/outlook").status_code == 400


def test_outlook_signature_checked(mailbox, fake_categorizer_cls):
    categorizer = fake_categorizer_cls()
    app = _app(mailbox, categorizer, secret="s3cret")
    body = json.dumps({"value": [{"clientState": "s3cret", "changeType": "created"}]}).encode()

    bad = app.post("/webhooks/outlook", content=body, headers={"X-Webhook-Signature": "deadbeef"})
    assert bad.status_code == 401
    assert categorizer.seen == []

    good = app.post("/webhooks/outlook", content=body, headers={"X-Webhook-Signature": _sign(body, "s3cret")})
    assert good.status_code == 200
    assert categorizer.seen == ["recent"]


def test_outlook_non_ascii_signature_rejected(mailbox, fake_categorizer_cls):
    categorizer = fake_categorizer_cls()
    app = _app(mailbox, categorizer, secret="s3cret")
    body = json.dumps({"value": []}).encode()
    headers = {"X-Webhook-Signature": "caf\xe9".encode("latin-1")}

    response = app.post("/webhooks/outlook", content=body, headers=headers)

    assert response.status_code == 401
    assert categorizer.seen == []


@pytest.mark.parametrize(
    "body",
    [{"value": None}, {"value": ["x", 3]}, {"value": "created"}, [1, 2], "text"],
)
def test_outlook_malformed_body_is_ignored(mailbox, fake_categorizer_cls, body):
    categorizer = fake_categorizer_cls()
    response = _app(mailbox, categorizer, secret="s3cret").post("/webhooks/outlook", json=body)
    assert response.status_code == 200
    assert categorizer.seen == ["recent"]


@pytest.mark.parametrize("body", [{"message": "x"}, {"message": None}, ["x"]])
def test_gmail_malformed_body_still_processes(mailbox, fake_categorizer_cls, body):
    categorizer = fake_categorizer_cls()
    response = _app(mailbox, categorizer).post("/webhooks/gmail", json=body)
    assert response.status_code == 200
    assert categorizer.seen == ["recent"]


def test_outlook_client_state_checked(mailbox, fake_categorizer_cls):
    categorizer = fake_categorizer_cls()
    app = _app(mailbox, categorizer, secret="s3cret")

    response = app.post("/webhooks/outlook", json={"value": [{"clientState": "guess"}]})
    assert response.status_code == 401

    # without a header the signature check is skipped
    response = app.post("/webhooks/outlook", json={"value": [{"clientState": "s3cret"}]})
    assert response.status_code == 200


def test_processing_failure_is_500(fake_client_cls, fake_categorizer_cls):
    class Broken(fake_client_cls):
        def get_messages(self, max_results=50, query=None):
            raise RuntimeError("token expired")

    response = _app(Broken(), fake_categorizer_cls()).post("/webhooks/outlook", json={"value": []})
    assert response.status_code == 500


def test_recent_window(mailbox):
    cfg = WebhookConfig(recent_window_minutes=90, recent_fetch_count=5)
    assert [e.id for e in get_recent_emails(mailbox, cfg)] == ["recent", "stale"]
    assert mailbox.queries[-1] == (5, None)


def test_verify_signature():
    body = b'{"a": 1}'
    assert verify_signature(body, _sign(body, "k"), "k")
    assert verify_signature(body, _sign(body, "k").upper(), "k")
    assert not verify_signature(body, _sign(body, "other"), "k")
    assert not verify_signature(body, "caf\xe9", "k")


def test_server_status(mailbox, fake_categorizer_cls):
    server = WebhookServer(mailbox, fake_categorizer_cls(), WebhookConfig(port=8081, secret="x"))
    assert server.get_status() == {
        "is_running": False,
        "host": "0.0.0.0",
        "port": 8081,
        "secret_configured": True,
    }


class _FakeGraph:
    def __init__(self, subscriptions):
        self.subscriptions = subscriptions
        self.deleted = []
        self.created = []

    def create_subscription(self, url, client_state, expiration_minutes):
        self.created.append((url, client_state, expiration_minutes))
        return {"id": "new", "expirationDateTime": _minutes_ago(-60)}

    def list_subscriptions(self):
        return self.subscriptions

    def delete_subscription(self, subscription_id):
        self.deleted.append(subscription_id)


def test_outlook_subscription_cleanup():
    graph = _FakeGraph(
        [
            {"id": "expired", "expirationDateTime": _minutes_ago(5)},
            {"id": "live", "expirationDateTime": _minutes_ago(-600)},
        ]
    )

    class _Client:
        pass

    client = _Client()
    client.graph = graph
    manager = OutlookSubscriptionManager(client)  # type: ignore[arg-type]

    assert manager.create("https://example.com/hook", "s3cret", 60)["id"] == "new"
    assert graph.created == [("https://example.com/hook", "s3cret", 60)]
    assert manager.cleanup_expired() == 1
    assert graph.deleted == ["expired"]
