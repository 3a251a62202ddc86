"""Consumer module for receiving notifications from RabbitMQ and indexing them."""

from consumer.dispatcher import DispatchResult, InstructionDispatcher
from consumer.event_handler import NotificationHandler, TransientError
from consumer.ledger import claim_instruction

__all__ = [
    "DispatchResult",
    "InstructionDispatcher",
    "NotificationHandler",
    "TransientError",
    "claim_instruction",
]
