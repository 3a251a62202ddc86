"""Producer module for receiving relay webhooks and publishing to RabbitMQ."""

from producer.publisher import NotificationPublisher
from producer.webhook import create_app

__all__ = [
    "NotificationPublisher",
    "create_app",
]
