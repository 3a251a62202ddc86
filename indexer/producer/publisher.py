"""Publisher module for sending transaction notifications to RabbitMQ."""

import threading
from typing import Optional

from pika.exceptions import AMQPConnectionError

from config import Config
from log import get_logger
from messaging.rabbitmq import RabbitMQConnection, RabbitMQPublisher
from messaging.schema import NotificationMessage, TransactionNotification

logger = get_logger(__name__)

# Webhook requests wait on the broker, so a dead broker must fail fast
PUBLISHER_CONNECT_RETRIES = 3
PUBLISHER_MAX_RETRY_DELAY = 4.0


class NotificationPublisher:
    """Publishes relay notifications for the consumer workers.

    A pika blocking connection is not thread-safe, and the webhook calls
    ``publish`` from a thread pool, so publishes are serialized.
    """

    def __init__(self, config: Config):
        """Initialize notification publisher.

        Args:
            config: Configuration object
        """
        self.config = config
        self._connection: Optional[RabbitMQConnection] = None
        self._publisher: Optional[RabbitMQPublisher] = None
        self._published = 0
        self._lock = threading.Lock()

    def connect(self) -> None:
        """Establish connection to RabbitMQ.

        Raises:
            AMQPConnectionError: if the broker stays unreachable
        """
        connection = RabbitMQConnection.from_config(
            self.config,
            max_retries=PUBLISHER_CONNECT_RETRIES,
            max_retry_delay=PUBLISHER_MAX_RETRY_DELAY,
        )
        connection.connect()
        self._connection = connection
        self._publisher = RabbitMQPublisher(connection)
        self._publisher.enable_confirm_delivery()
        logger.info("Notification publisher connected to RabbitMQ")

    def close(self) -> None:
        """Close the connection."""
        with self._lock:
            if self._connection:
                self._connection.close()
                self._connection = None
                self._publisher = None
        logger.info(f"Notification publisher closed. Total published: {self._published}")

    def ensure_connected(self) -> None:
        """Ensure publisher is connected."""
        if self._connection is None or self._publisher is None:
            self.connect()

    def publish(self, notification: TransactionNotification) -> bool:
        """Wrap and publish one notification.

        Args:
            notification: Validated transaction notification

        Returns:
            True if published successfully, False if the broker refused or is unreachable
        """
        message = NotificationMessage(notification=notification)

        with self._lock:
            try:
                self.ensure_connected()
            except AMQPConnectionError as e:
                logger.error(f"Failed to publish notification: tx={notification.signature}, broker unreachable: {e}")
                return False

            success = self._publisher.publish_notification(message)
            if success:
                self._published += 1

        if success:
            logger.debug(f"Published notification: tx={notification.signature}")
        else:
            logger.error(f"Failed to publish notification: tx={notification.signature}")

        return success

    @property
    def published_count(self) -> int:
        """Get the number of notifications published."""
        return self._published
