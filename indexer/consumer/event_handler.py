"""Notification handler for consumer - decodes messages and dispatches them."""

import json
from typing import Any, Dict, Optional

from pydantic import ValidationError
from sqlalchemy.exc import OperationalError

from config import Config
from consumer.dispatcher import DispatchResult, InstructionDispatcher
from db.session import get_session
from log import get_logger
from messaging.schema import NotificationMessage, parse_message
from revenue.detection import record_pending_revenue

logger = get_logger(__name__)


class TransientError(Exception):
    """Raised for transient errors that should be retried."""
    pass


class NotificationHandler:
    """Handles incoming notification messages from RabbitMQ."""

    def __init__(self, config: Config, dispatcher: Optional[InstructionDispatcher] = None):
        """Initialize notification handler.

        Args:
            config: Configuration object
            dispatcher: Instruction dispatcher (default: built from config)
        """
        self.config = config
        self.max_retries = config.max_retries
        self.dispatcher = dispatcher or InstructionDispatcher(config)

        # Stats
        self._messages_processed = 0
        self._messages_failed = 0

    def handle_message(self, body: bytes, properties: Any = None) -> bool:
        """Handle a message from RabbitMQ.

        Instruction-level failures are logged and counted by the dispatcher;
        they do not fail the message, since redelivery would not fix them.

        Args:
            body: Message body (JSON bytes)
            properties: Message properties

        Returns:
            True if message was processed, False if it is malformed

        Raises:
            TransientError: If the database is unavailable (should requeue)
        """
        try:
            data = json.loads(body)
            message = parse_message(data)
        except json.JSONDecodeError as e:
            logger.error(f"Failed to parse message JSON: {e}")
            self._messages_failed += 1
            return False
        except (ValidationError, ValueError) as e:
            logger.error(f"Invalid message: {e}")
            self._messages_failed += 1
            return False

        try:
            self.handle_notification(message)
        except OperationalError as e:
            # Database temporarily unavailable
            logger.warning(f"Database error (transient): {e}")
            raise TransientError(str(e))

        self._messages_processed += 1
        return True

    def handle_notification(self, message: NotificationMessage) -> DispatchResult:
        """Dispatch program instructions and record any treasury inflow."""
        notification = message.notification
        result = self.dispatcher.dispatch(notification)

        with get_session() as session:
            record_pending_revenue(
                session,
                notification,
                treasury=self.config.treasury_address,
                usdc_mint=self.config.usdc_mint,
            )

        if result.failed:
            logger.warning(
                f"tx={notification.signature}: {result.failed} instruction(s) failed, "
                f"{result.processed} processed"
            )
        else:
            logger.info(
                f"Processed tx={notification.signature}: processed={result.processed} "
                f"duplicates={result.duplicates} skipped={result.skipped} missing={result.missing}"
            )
        return result

    @property
    def messages_processed(self) -> int:
        """Get number of messages processed."""
        return self._messages_processed

    @property
    def messages_failed(self) -> int:
        """Get number of messages rejected as malformed."""
        return self._messages_failed


def get_retry_count(properties: Any) -> int:
    """Get the retry count from message headers.

    Args:
        properties: Message properties

    Returns:
        Retry count (0 if not set)
    """
    if properties and properties.headers:
        return properties.headers.get("x-retry-count", 0)
    return 0


def increment_retry_count(properties: Any) -> Dict[str, Any]:
    """Increment retry count in message headers.

    Args:
        properties: Message properties

    Returns:
        Updated headers dictionary
    """
    headers = {}
    if properties and properties.headers:
        headers = dict(properties.headers)

    headers["x-retry-count"] = headers.get("x-retry-count", 0) + 1
    return headers
