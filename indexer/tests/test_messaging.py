"""Tests for broker layout and the pika publisher/consumer wrappers."""

from types import SimpleNamespace
from unittest.mock import MagicMock

from pika.exceptions import AMQPConnectionError, NackError

from db.healthcheck import check_tables_exist, missing_tables
from factories import notification
from messaging.rabbitmq import RabbitMQConnection, RabbitMQConsumer, RabbitMQPublisher
from messaging.routing import TRANSACTION_ROUTING_KEY, notification_queue_arguments
from messaging.schema import NotificationMessage


def _connection(exchange="gsd"):
    connection = MagicMock()
    connection.exchange = exchange
    return connection


def test_queue_dead_letters_to_exchange_dlx():
    args = notification_queue_arguments("gsd")
    assert args["x-dead-letter-exchange"] == "gsd.dlx"
    assert args["x-dead-letter-routing-key"] == "dlq"


def test_connection_uses_configured_exchange(test_config):
    test_config.rabbitmq_exchange = "custom"
    connection = RabbitMQConnection.from_config(test_config)
    assert connection.exchange == "custom"
    assert connection.dlx_exchange == "custom.dlx"


def test_publish_uses_signature_as_message_id():
    connection = _connection()
    publisher = RabbitMQPublisher(connection)

    assert publisher.publish_notification(NotificationMessage(notification=notification("sig-1", []))) is True

    kwargs = connection.channel.basic_publish.call_args.kwargs
    assert kwargs["exchange"] == "gsd"
    assert kwargs["routing_key"] == TRANSACTION_ROUTING_KEY
    assert kwargs["properties"].message_id == "sig-1"
    assert '"signature":"sig-1"' in kwargs["body"]


def test_publish_gives_up_after_max_attempts():
    connection = _connection()
    connection.channel.basic_publish.side_effect = AMQPConnectionError("down")
    publisher = RabbitMQPublisher(connection, max_attempts=2)

    assert publisher.publish_notification(NotificationMessage(notification=notification("sig-1", []))) is False
    assert connection.channel.basic_publish.call_count == 2
    assert connection.connect.call_count == 1


def _broker(monkeypatch, channels):
    """Patch pika so each new BlockingConnection hands out the next channel."""
    def connect(params):
        conn = MagicMock(is_closed=False, is_open=True)
        conn.channel.return_value = channels.pop(0)
        return conn

    monkeypatch.setattr("messaging.rabbitmq.pika.BlockingConnection", connect)


def test_confirm_mode_survives_reconnect(monkeypatch):
    first = MagicMock(is_closed=False, is_open=True)
    first.basic_publish.side_effect = AMQPConnectionError("reset")
    second = MagicMock(is_closed=False, is_open=True)
    _broker(monkeypatch, [first, second])

    connection = RabbitMQConnection()
    connection.connect()
    publisher = RabbitMQPublisher(connection)
    publisher.enable_confirm_delivery()

    assert publisher.publish_notification(NotificationMessage(notification=notification("sig-1", []))) is True
    first.confirm_delivery.assert_called_once()
    second.confirm_delivery.assert_called_once()
    second.basic_publish.assert_called_once()


def test_nacked_publish_is_retried(monkeypatch):
    first = MagicMock(is_closed=False, is_open=True)
    first.basic_publish.side_effect = NackError([])
    second = MagicMock(is_closed=False, is_open=True)
    _broker(monkeypatch, [first, second])

    connection = RabbitMQConnection()
    connection.enable_confirm_delivery()
    connection.connect()

    assert RabbitMQPublisher(connection).publish_notification(
        NotificationMessage(notification=notification("sig-1", []))
    ) is True
    second.basic_publish.assert_called_once()


def test_publish_stops_when_reconnect_fails():
    connection = _connection()
    connection.channel.basic_publish.side_effect = AMQPConnectionError("down")
    connection.connect.side_effect = AMQPConnectionError("refused")
    publisher = RabbitMQPublisher(connection, max_attempts=3)

    assert publisher.publish_notification(NotificationMessage(notification=notification("sig-1", []))) is False
    assert connection.channel.basic_publish.call_count == 1


def test_republish_acks_original():
    consumer = RabbitMQConsumer(_connection())
    channel = MagicMock()
    method = SimpleNamespace(exchange="gsd", routing_key=TRANSACTION_ROUTING_KEY, delivery_tag=3)

    consumer.republish(channel, method, b"{}", {"x-retry-count": 1})

    kwargs = channel.basic_publish.call_args.kwargs
    assert kwargs["properties"].headers == {"x-retry-count": 1}
    channel.basic_ack.assert_called_once_with(delivery_tag=3)


def test_schema_check(db):
    assert missing_tables() == []
    check_tables_exist()
