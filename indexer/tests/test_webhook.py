"""Tests for the relay webhook endpoint."""

import asyncio
import threading

import pytest
from fastapi.testclient import TestClient
from pika.exceptions import AMQPConnectionError

from factories import notification
from producer import publisher as publisher_module
from producer.publisher import PUBLISHER_CONNECT_RETRIES, NotificationPublisher
from producer.webhook import create_app

AUTH = {"Authorization": "test-secret"}


class FakePublisher:
    def __init__(self, fail_signatures=()):
        self.fail_signatures = set(fail_signatures)
        self.published = []

    def publish(self, notification):
        if notification.signature in self.fail_signatures:
            return False
        self.published.append(notification)
        return True


def _tx(signature):
    return {"signature": signature, "timestamp": 1700000000, "instructions": [], "type": "UNKNOWN"}


@pytest.fixture
def publisher():
    return FakePublisher()


@pytest.fixture
def client(test_config, publisher):
    return TestClient(create_app(test_config, publisher))


def test_healthz(client):
    assert client.get("/healthz").json() == {"status": "ok"}


def test_batch_published(client, publisher):
    """Test every transaction in a batch is validated and queued."""
    response = client.post("/webhooks/helius", json=[_tx("sig-1"), _tx("sig-2")], headers=AUTH)

    assert response.status_code == 200
    assert response.json() == {"received": True, "published": 2, "total": 2, "errors": None}
    assert [n.signature for n in publisher.published] == ["sig-1", "sig-2"]


def test_single_object_accepted(client, publisher):
    response = client.post("/webhooks/helius", json=_tx("sig-1"), headers=AUTH)
    assert response.json()["published"] == 1


def test_unauthorized(client, publisher):
    response = client.post("/webhooks/helius", json=[_tx("sig-1")], headers={"Authorization": "wrong"})
    assert response.status_code == 401
    assert publisher.published == []


@pytest.mark.parametrize("headers", [{}, {"Authorization": ""}, {"Authorization": "test-secret-and-more"}])
def test_auth_header_must_match_exactly(client, publisher, headers):
    response = client.post("/webhooks/helius", json=[_tx("sig-1")], headers=headers)
    assert response.status_code == 401
    assert publisher.published == []


def test_missing_auth_configuration(test_config, publisher):
    test_config.webhook_auth = None
    client = TestClient(create_app(test_config, publisher))
    response = client.post("/webhooks/helius", json=[_tx("sig-1")], headers=AUTH)
    assert response.status_code == 500


def test_invalid_json(client):
    response = client.post(
        "/webhooks/helius",
        content=b"{not json",
        headers={**AUTH, "Content-Type": "application/json"},
    )
    assert response.status_code == 400


def test_partial_failures_reported(test_config):
    """Test invalid items and publish failures are reported without failing the batch."""
    publisher = FakePublisher(fail_signatures={"sig-2"})
    client = TestClient(create_app(test_config, publisher))

    response = client.post(
        "/webhooks/helius",
        json=[_tx("sig-1"), {"timestamp": 1}, _tx("sig-2")],
        headers=AUTH,
    )

    body = response.json()
    assert response.status_code == 200
    assert body["published"] == 1
    assert body["total"] == 3
    assert len(body["errors"]) == 2
    assert body["errors"][0].startswith("Invalid transaction")
    assert body["errors"][1] == "sig-2: publish failed"


def test_publish_runs_off_event_loop(test_config):
    """Test the blocking publish never runs on the event loop thread."""
    loops = []

    class LoopCheckingPublisher(FakePublisher):
        def publish(self, notification):
            try:
                asyncio.get_running_loop()
                loops.append(True)
            except RuntimeError:
                loops.append(False)
            return super().publish(notification)

    client = TestClient(create_app(test_config, LoopCheckingPublisher()))
    response = client.post("/webhooks/helius", json=[_tx("sig-1"), _tx("sig-2")], headers=AUTH)

    assert response.json()["published"] == 2
    assert loops == [False, False]


class FakeConnection:
    instances = []

    def __init__(self, fail=False, **kwargs):
        self.kwargs = kwargs
        self.fail = fail
        self.exchange = "gsd"
        FakeConnection.instances.append(self)

    def connect(self):
        if self.fail:
            raise AMQPConnectionError("refused")

    def enable_confirm_delivery(self):
        pass

    def close(self):
        pass


def _patch_connection(monkeypatch, fail=False):
    FakeConnection.instances = []
    monkeypatch.setattr(
        publisher_module.RabbitMQConnection,
        "from_config",
        classmethod(lambda cls, config, **kwargs: FakeConnection(fail=fail, **kwargs)),
    )


def test_publisher_reports_unreachable_broker(test_config, monkeypatch):
    """Test a dead broker fails the publish instead of blocking the request forever."""
    _patch_connection(monkeypatch, fail=True)
    publisher = NotificationPublisher(test_config)

    assert publisher.publish(notification("sig-1", [])) is False
    assert FakeConnection.instances[0].kwargs["max_retries"] == PUBLISHER_CONNECT_RETRIES
    assert publisher.published_count == 0


def test_publisher_serializes_publishes(test_config, monkeypatch):
    _patch_connection(monkeypatch)
    publisher = NotificationPublisher(test_config)
    active = []
    overlaps = []

    def publish_notification(message):
        active.append(message)
        if len(active) > 1:
            overlaps.append(message)
        threading.Event().wait(0.01)
        active.remove(message)
        return True

    publisher.connect()
    publisher._publisher.publish_notification = publish_notification

    threads = [
        threading.Thread(target=publisher.publish, args=(notification(f"sig-{i}", []),)) for i in range(5)
    ]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert overlaps == []
    assert publisher.published_count == 5
