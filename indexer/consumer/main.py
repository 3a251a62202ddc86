"""Consumer workers: pull relay notifications off the queue and index them."""

import multiprocessing
import signal
import time
from typing import Optional

from config import Config
from db.healthcheck import check_tables_exist
from db.session import init_db
from log import get_logger, setup_logging
from messaging.rabbitmq import RabbitMQConnection, RabbitMQConsumer
from consumer.event_handler import (
    NotificationHandler,
    TransientError,
    get_retry_count,
    increment_retry_count,
)

logger = get_logger(__name__)

# Pause after a transient failure so a struggling database is not hammered
TRANSIENT_BACKOFF_SECONDS = 1.0


class ConsumerWorker:
    """One worker: a broker connection, a consumer and a notification handler."""

    def __init__(self, config: Config, worker_id: int):
        self.config = config
        self.worker_id = worker_id
        self.connection: Optional[RabbitMQConnection] = None
        self.consumer: Optional[RabbitMQConsumer] = None
        self.handler: Optional[NotificationHandler] = None

    def start(self) -> None:
        """Connect and consume until stopped or interrupted."""
        init_db(self.config)
        self.handler = NotificationHandler(self.config)

        self.connection = RabbitMQConnection.from_config(self.config)
        self.connection.connect()
        self.consumer = RabbitMQConsumer(self.connection, prefetch_count=self.config.rabbitmq_prefetch_count)

        logger.info(f"Worker {self.worker_id}: consuming (max_retries={self.config.max_retries})")
        try:
            self.consumer.start_consuming(self._on_message)
        finally:
            self.stop()

    def stop(self) -> None:
        if self.consumer:
            self.consumer.stop_consuming()
        if self.connection:
            self.connection.close()

        processed = self.handler.messages_processed if self.handler else 0
        failed = self.handler.messages_failed if self.handler else 0
        logger.info(f"Worker {self.worker_id}: stopped (processed={processed}, failed={failed})")

    def _retry_or_dead_letter(self, channel, method, properties, body) -> None:
        retry_count = get_retry_count(properties)
        if retry_count >= self.config.max_retries:
            logger.warning(f"Worker {self.worker_id}: giving up after {retry_count} retries, dead-lettering")
            channel.basic_reject(delivery_tag=method.delivery_tag, requeue=False)
            return
        self.consumer.republish(channel, method, body, increment_retry_count(properties))

    def _on_message(self, channel, method, properties, body) -> None:
        """Ack handled messages; dead-letter malformed ones; retry failures."""
        try:
            handled = self.handler.handle_message(body, properties)
        except TransientError as e:
            logger.warning(f"Worker {self.worker_id}: transient failure, will retry: {e}")
            self._retry_or_dead_letter(channel, method, properties, body)
            time.sleep(TRANSIENT_BACKOFF_SECONDS)
            return
        except Exception as e:
            logger.error(f"Worker {self.worker_id}: unexpected failure: {e}", exc_info=True)
            self._retry_or_dead_letter(channel, method, properties, body)
            return

        if handled:
            channel.basic_ack(delivery_tag=method.delivery_tag)
        else:
            # Redelivery cannot fix a message that does not parse
            channel.basic_reject(delivery_tag=method.delivery_tag, requeue=False)


def _raise_interrupt(signum, frame):
    raise KeyboardInterrupt


def run_worker(config: Config, worker_id: int) -> None:
    """Process entry point for one worker."""
    setup_logging(config)
    # SIGTERM unwinds like Ctrl-C so the worker closes its connection
    signal.signal(signal.SIGTERM, _raise_interrupt)

    try:
        ConsumerWorker(config, worker_id).start()
    except KeyboardInterrupt:
        logger.info(f"Worker {worker_id}: interrupted")


def run_consumer(config: Config, num_workers: Optional[int] = None) -> None:
    """Run ``num_workers`` workers (``CONSUMER_WORKERS`` by default).

    A single worker runs in this process; more are forked and joined.
    Refuses to start when the schema is missing.
    """
    init_db(config)
    check_tables_exist()

    num_workers = num_workers or config.consumer_workers
    logger.info(
        f"Starting {num_workers} consumer worker(s) against "
        f"{config.rabbitmq_host}:{config.rabbitmq_port}/{config.rabbitmq_exchange}"
    )

    if num_workers == 1:
        run_worker(config, 0)
        return

    processes = [
        multiprocessing.Process(target=run_worker, args=(config, worker_id), name=f"consumer-{worker_id}")
        for worker_id in range(num_workers)
    ]
    for process in processes:
        process.start()
        logger.info(f"Started {process.name} (pid={process.pid})")

    try:
        for process in processes:
            process.join()
    except KeyboardInterrupt:
        logger.info("Stopping consumer workers")
        for process in processes:
            process.terminate()
        for process in processes:
            process.join(timeout=5)
