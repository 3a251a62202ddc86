"""Tests for queue message handling and retry routing."""

import json
from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest
from sqlalchemy.exc import OperationalError

from consumer.event_handler import NotificationHandler, TransientError, get_retry_count, increment_retry_count
from consumer.main import ConsumerWorker
from db.models import IdeaRound, PendingRevenue
from db.session import get_session
from factories import create_round_payload, instruction, notification, pubkey
from messaging.schema import NotificationMessage

TREASURY = pubkey(200)


def _body(tx) -> bytes:
    return NotificationMessage(notification=tx).model_dump_json(by_alias=True).encode()


@pytest.fixture
def handler(test_config, db):
    return NotificationHandler(test_config)


def test_message_applies_instructions(handler):
    """Test a queued notification is dispatched and committed."""
    tx = notification("sig-1", [instruction("create_round", [pubkey(1), pubkey(10)], create_round_payload())])

    assert handler.handle_message(_body(tx)) is True
    assert handler.messages_processed == 1
    with get_session() as session:
        assert session.query(IdeaRound).count() == 1


def test_treasury_inflow_recorded(handler):
    tx = notification(
        "sig-1",
        [],
        nativeTransfers=[{"fromUserAccount": pubkey(5), "toUserAccount": TREASURY, "amount": 42}],
    )

    assert handler.handle_message(_body(tx)) is True
    with get_session() as session:
        pending = session.query(PendingRevenue).one()
        assert pending.amount == 42
        assert pending.from_wallet == pubkey(5)


def test_malformed_messages_rejected(handler):
    assert handler.handle_message(b"not json") is False
    assert handler.handle_message(json.dumps({"message_type": "other"}).encode()) is False
    assert handler.handle_message(json.dumps({"message_type": "notification"}).encode()) is False
    assert handler.messages_failed == 3


def test_database_outage_is_transient(test_config, db):
    dispatcher = MagicMock()
    dispatcher.dispatch.side_effect = OperationalError("SELECT 1", {}, Exception("connection refused"))
    handler = NotificationHandler(test_config, dispatcher=dispatcher)

    with pytest.raises(TransientError):
        handler.handle_message(_body(notification("sig-1", [])))


def test_retry_headers():
    assert get_retry_count(None) == 0
    assert get_retry_count(SimpleNamespace(headers={"x-retry-count": 2})) == 2
    assert increment_retry_count(SimpleNamespace(headers={"x-retry-count": 2, "other": "x"})) == {
        "x-retry-count": 3,
        "other": "x",
    }
    assert increment_retry_count(SimpleNamespace(headers=None)) == {"x-retry-count": 1}


def _worker(test_config, outcome):
    worker = ConsumerWorker(test_config, worker_id=0)
    worker.handler = MagicMock()
    if isinstance(outcome, Exception):
        worker.handler.handle_message.side_effect = outcome
    else:
        worker.handler.handle_message.return_value = outcome
    worker.consumer = MagicMock()
    return worker


def test_worker_acks_processed(test_config):
    worker = _worker(test_config, True)
    channel = MagicMock()
    worker._on_message(channel, SimpleNamespace(delivery_tag=7), SimpleNamespace(headers=None), b"{}")
    channel.basic_ack.assert_called_once_with(delivery_tag=7)


def test_worker_rejects_malformed(test_config):
    worker = _worker(test_config, False)
    channel = MagicMock()
    worker._on_message(channel, SimpleNamespace(delivery_tag=7), SimpleNamespace(headers=None), b"{}")
    channel.basic_reject.assert_called_once_with(delivery_tag=7, requeue=False)


def test_worker_republishes_with_retry_count(test_config):
    """Test a failing message goes back to the exchange with an incremented retry header."""
    worker = _worker(test_config, RuntimeError("boom"))
    channel = MagicMock()
    method = SimpleNamespace(delivery_tag=7)
    worker._on_message(channel, method, SimpleNamespace(headers={"x-retry-count": 1}), b"{}")

    worker.consumer.republish.assert_called_once_with(channel, method, b"{}", {"x-retry-count": 2})
    channel.basic_reject.assert_not_called()


def test_worker_dead_letters_after_max_retries(test_config):
    worker = _worker(test_config, RuntimeError("boom"))
    channel = MagicMock()
    properties = SimpleNamespace(headers={"x-retry-count": test_config.max_retries})
    worker._on_message(channel, SimpleNamespace(delivery_tag=7), properties, b"{}")

    channel.basic_reject.assert_called_once_with(delivery_tag=7, requeue=False)
    worker.consumer.republish.assert_not_called()
