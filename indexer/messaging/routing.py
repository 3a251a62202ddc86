"""Broker layout for relay notifications.

One topic exchange (name from RABBITMQ_EXCHANGE) feeds a single durable
notification queue. Messages rejected without requeue, expired, or beyond
the queue length limit are dead-lettered to ``<exchange>.dlx``.
"""

from typing import Dict, List

DEFAULT_EXCHANGE = "solana_notifications"
EXCHANGE_TYPE = "topic"

TRANSACTION_ROUTING_KEY = "notification.transaction"
NOTIFICATION_QUEUE = "queue.notifications"

DLQ_ROUTING_KEY = "dlq"
DLX_QUEUE_NAME = "dlq.notifications"

QUEUE_MESSAGE_TTL_MS = 7 * 24 * 3600 * 1000
QUEUE_MAX_LENGTH = 100000

# Queues consumers subscribe to
CONSUMED_QUEUES: List[str] = [NOTIFICATION_QUEUE]

# Queues reported by status commands
ALL_QUEUES: List[str] = CONSUMED_QUEUES + [DLX_QUEUE_NAME]


def dlx_exchange_name(exchange: str) -> str:
    return f"{exchange}.dlx"


def notification_queue_arguments(exchange: str) -> Dict:
    """Arguments for the notification queue: TTL, length cap, dead-lettering."""
    return {
        "x-message-ttl": QUEUE_MESSAGE_TTL_MS,
        "x-max-length": QUEUE_MAX_LENGTH,
        "x-dead-letter-exchange": dlx_exchange_name(exchange),
        "x-dead-letter-routing-key": DLQ_ROUTING_KEY,
    }
