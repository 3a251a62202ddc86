"""RabbitMQ messaging between the webhook and the consumer workers."""

from messaging.schema import (
    NotificationMessage,
    TransactionNotification,
    MessageType,
)
from messaging.routing import (
    NOTIFICATION_QUEUE,
    TRANSACTION_ROUTING_KEY,
)
from messaging.rabbitmq import (
    RabbitMQConnection,
    RabbitMQPublisher,
    RabbitMQConsumer,
)

__all__ = [
    "NotificationMessage",
    "TransactionNotification",
    "MessageType",
    "NOTIFICATION_QUEUE",
    "TRANSACTION_ROUTING_KEY",
    "RabbitMQConnection",
    "RabbitMQPublisher",
    "RabbitMQConsumer",
]
