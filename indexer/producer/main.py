"""Serves the relay webhook and publishes its notifications to the broker."""

import uvicorn

from config import Config
from log import get_logger
from producer.publisher import NotificationPublisher
from producer.webhook import create_app

logger = get_logger(__name__)


def run_webhook(config: Config) -> None:
    """Serve the webhook until interrupted.

    Args:
        config: Configuration object
    """
    if not config.webhook_auth:
        logger.warning("WEBHOOK_AUTH not set, every webhook request will be rejected")

    publisher = NotificationPublisher(config)
    publisher.connect()

    app = create_app(config, publisher)
    logger.info(f"Webhook listening on {config.webhook_host}:{config.webhook_port}")

    try:
        uvicorn.run(
            app,
            host=config.webhook_host,
            port=config.webhook_port,
            log_level=config.log_level.lower(),
        )
    finally:
        publisher.close()

