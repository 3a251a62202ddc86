"""RabbitMQ transport for relay notifications (pika blocking adapter)."""

import time
from typing import Callable, Dict, Optional

import pika
from pika.adapters.blocking_connection import BlockingChannel
from pika.exceptions import AMQPChannelError, AMQPConnectionError, NackError, UnroutableError

from config import Config
from log import get_logger
from messaging.routing import (
    ALL_QUEUES,
    CONSUMED_QUEUES,
    DEFAULT_EXCHANGE,
    DLQ_ROUTING_KEY,
    DLX_QUEUE_NAME,
    EXCHANGE_TYPE,
    NOTIFICATION_QUEUE,
    TRANSACTION_ROUTING_KEY,
    dlx_exchange_name,
    notification_queue_arguments,
)
from messaging.schema import NotificationMessage

logger = get_logger(__name__)

# Callback signature used by pika: (channel, method, properties, body)
MessageCallback = Callable[[BlockingChannel, object, pika.BasicProperties, bytes], None]


def _json_properties(message_id: Optional[str] = None, headers: Optional[Dict] = None) -> pika.BasicProperties:
    return pika.BasicProperties(
        content_type="application/json",
        delivery_mode=pika.DeliveryMode.Persistent,
        message_id=message_id,
        headers=headers,
    )


class RabbitMQConnection:
    """Blocking connection with exponential-backoff reconnects."""

    def __init__(
        self,
        host: str = "localhost",
        port: int = 5672,
        user: str = "guest",
        password: str = "guest",
        vhost: str = "/",
        exchange: str = DEFAULT_EXCHANGE,
        heartbeat: int = 60,
        max_retries: int = -1,
        retry_delay: float = 1.0,
        max_retry_delay: float = 60.0,
    ):
        """Initialize RabbitMQ connection.

        Args:
            host: RabbitMQ host
            port: RabbitMQ port
            user: RabbitMQ username
            password: RabbitMQ password
            vhost: Virtual host
            exchange: Topic exchange notifications are published to
            heartbeat: Heartbeat interval in seconds
            max_retries: Connection attempts before giving up (-1 retries forever)
            retry_delay: Initial backoff in seconds
            max_retry_delay: Backoff ceiling in seconds
        """
        self.host = host
        self.port = port
        self.vhost = vhost
        self.exchange = exchange
        self.heartbeat = heartbeat
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.max_retry_delay = max_retry_delay
        self._credentials = pika.PlainCredentials(user, password)

        self._connection: Optional[pika.BlockingConnection] = None
        self._channel: Optional[BlockingChannel] = None
        # Applied to every channel this connection opens, including after reconnects
        self.confirm_delivery = False

    @classmethod
    def from_config(cls, config: Config, **kwargs) -> "RabbitMQConnection":
        """Build a connection from the indexer configuration."""
        return cls(**config.get_rabbitmq_connection_params(), exchange=config.rabbitmq_exchange, **kwargs)

    @property
    def dlx_exchange(self) -> str:
        return dlx_exchange_name(self.exchange)

    def connect(self) -> None:
        """Open the connection and a channel, backing off between failures."""
        attempt = 0
        delay = self.retry_delay
        params = pika.ConnectionParameters(
            host=self.host,
            port=self.port,
            virtual_host=self.vhost,
            credentials=self._credentials,
            heartbeat=self.heartbeat,
            blocked_connection_timeout=300,
        )

        while True:
            try:
                self._connection = pika.BlockingConnection(params)
                self._open_channel()
                logger.info(f"Connected to RabbitMQ at {self.host}:{self.port}{self.vhost}")
                return
            except AMQPConnectionError as e:
                attempt += 1
                if 0 <= self.max_retries < attempt:
                    logger.error(f"Giving up on RabbitMQ after {attempt} attempts")
                    raise
                logger.warning(f"RabbitMQ unavailable (attempt {attempt}), retrying in {delay:.1f}s: {e}")
                time.sleep(delay)
                delay = min(delay * 2, self.max_retry_delay)

    @property
    def channel(self) -> BlockingChannel:
        """Open channel, reconnecting first if the connection dropped."""
        if self._connection is None or self._connection.is_closed:
            self.connect()
        elif self._channel is None or self._channel.is_closed:
            self._open_channel()
        return self._channel

    def _open_channel(self) -> None:
        self._channel = self._connection.channel()
        if self.confirm_delivery:
            self._channel.confirm_delivery()

    def enable_confirm_delivery(self) -> None:
        """Put this and every future channel into publisher-confirm mode."""
        if self.confirm_delivery:
            return
        self.confirm_delivery = True
        if self._channel is not None and self._channel.is_open:
            self._channel.confirm_delivery()
        logger.info("Publisher confirms enabled")

    def close(self) -> None:
        try:
            if self._channel and self._channel.is_open:
                self._channel.close()
            if self._connection and self._connection.is_open:
                self._connection.close()
            logger.info("RabbitMQ connection closed")
        except Exception as e:
            logger.warning(f"Error closing RabbitMQ connection: {e}")

    def setup_exchange_and_queues(self) -> None:
        """Declare the exchange, the notification queue and its dead-letter path."""
        channel = self.channel

        channel.exchange_declare(exchange=self.exchange, exchange_type=EXCHANGE_TYPE, durable=True)
        channel.exchange_declare(exchange=self.dlx_exchange, exchange_type="direct", durable=True)

        channel.queue_declare(queue=DLX_QUEUE_NAME, durable=True)
        channel.queue_bind(queue=DLX_QUEUE_NAME, exchange=self.dlx_exchange, routing_key=DLQ_ROUTING_KEY)

        channel.queue_declare(
            queue=NOTIFICATION_QUEUE,
            durable=True,
            arguments=notification_queue_arguments(self.exchange),
        )
        channel.queue_bind(queue=NOTIFICATION_QUEUE, exchange=self.exchange, routing_key=TRANSACTION_ROUTING_KEY)

        logger.info(
            f"Declared {self.exchange} -> {NOTIFICATION_QUEUE} ({TRANSACTION_ROUTING_KEY}), "
            f"dead letters -> {DLX_QUEUE_NAME}"
        )

    def get_queue_status(self) -> Dict[str, Dict]:
        """Message and consumer counts per queue (``error`` if a queue is missing)."""
        status: Dict[str, Dict] = {}
        for queue_name in ALL_QUEUES:
            try:
                result = self.channel.queue_declare(queue=queue_name, passive=True)
                status[queue_name] = {
                    "message_count": result.method.message_count,
                    "consumer_count": result.method.consumer_count,
                }
            except AMQPChannelError as e:
                # A failed passive declare closes the channel; the property reopens it
                logger.warning(f"Queue {queue_name} unavailable: {e}")
                status[queue_name] = {"error": str(e)}
        return status

    def purge_queue(self, queue_name: str) -> int:
        """Drop every message in ``queue_name``; returns how many were dropped."""
        count = self.channel.queue_purge(queue_name).method.message_count
        logger.info(f"Purged {count} messages from {queue_name}")
        return count


class RabbitMQPublisher:
    """Publishes notification envelopes to the topic exchange."""

    def __init__(self, connection: RabbitMQConnection, max_attempts: int = 3):
        self.connection = connection
        self.max_attempts = max_attempts

    def enable_confirm_delivery(self) -> None:
        """Have the broker confirm each publish, surviving reconnects."""
        self.connection.enable_confirm_delivery()

    def publish_notification(self, message: NotificationMessage) -> bool:
        """Publish one envelope, reconnecting between failed attempts.

        The transaction signature is the AMQP message id.

        Returns:
            True if the broker accepted the message
        """
        body = message.model_dump_json(by_alias=True)
        properties = _json_properties(message_id=message.notification.signature)

        for attempt in range(1, self.max_attempts + 1):
            try:
                self.connection.channel.basic_publish(
                    exchange=self.connection.exchange,
                    routing_key=message.to_routing_key(),
                    body=body,
                    properties=properties,
                )
                return True
            except (AMQPConnectionError, AMQPChannelError, NackError, UnroutableError) as e:
                logger.warning(f"Publish of tx={message.notification.signature} failed (attempt {attempt}): {e}")
                if attempt == self.max_attempts:
                    break
                try:
                    self.connection.connect()
                except AMQPConnectionError as e:
                    logger.error(f"Reconnect to RabbitMQ failed: {e}")
                    break

        logger.error(f"Giving up on tx={message.notification.signature} after {self.max_attempts} attempts")
        return False


class RabbitMQConsumer:
    """Manual-ack consumer of the notification queue."""

    def __init__(self, connection: RabbitMQConnection, prefetch_count: int = 10):
        self.connection = connection
        self.prefetch_count = prefetch_count
        self._consuming = False

    def start_consuming(self, callback: MessageCallback) -> None:
        """Deliver every consumed message to ``callback``; blocks until stopped.

        The callback owns acknowledgement: it must ack, reject or republish.
        """
        channel = self.connection.channel
        channel.basic_qos(prefetch_count=self.prefetch_count)
        for queue_name in CONSUMED_QUEUES:
            channel.basic_consume(queue=queue_name, on_message_callback=callback, auto_ack=False)
            logger.info(f"Consuming from {queue_name} (prefetch={self.prefetch_count})")

        self._consuming = True
        try:
            channel.start_consuming()
        except KeyboardInterrupt:
            logger.info("Consumer interrupted")
            self.stop_consuming()

    def stop_consuming(self) -> None:
        if self._consuming:
            self.connection.channel.stop_consuming()
            self._consuming = False
            logger.info("Consumer stopped")

    def republish(self, channel: BlockingChannel, method, body: bytes, headers: Dict) -> None:
        """Re-enqueue a delivery with new headers, then ack the original.

        A nack would redeliver with unchanged headers, so the retry count
        would never advance.
        """
        channel.basic_publish(
            exchange=method.exchange or self.connection.exchange,
            routing_key=method.routing_key or TRANSACTION_ROUTING_KEY,
            body=body,
            properties=_json_properties(headers=headers),
        )
        channel.basic_ack(delivery_tag=method.delivery_tag)
