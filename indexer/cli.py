"""CLI module for the indexer with webhook/consumer/broker/db/revenue/review/backfill subcommands."""

import argparse
import json
import sys

from pydantic import ValidationError

from config import Config
from db.healthcheck import check_tables_exist
from db.session import create_schema, init_db
from log import get_logger, setup_logging
from messaging.rabbitmq import RabbitMQConnection
from messaging.routing import ALL_QUEUES, CONSUMED_QUEUES, DLX_QUEUE_NAME

logger = get_logger(__name__)


def broker_setup(config: Config) -> None:
    """Set up RabbitMQ exchanges, queues, and bindings.

    Args:
        config: Configuration object
    """
    print(f"Setting up RabbitMQ broker at {config.rabbitmq_host}:{config.rabbitmq_port}")

    connection = RabbitMQConnection.from_config(config)
    try:
        connection.connect()
        connection.setup_exchange_and_queues()
        print("Broker setup complete!")
        print(f"  Exchange: {config.rabbitmq_exchange}")
        print(f"  Queues: {', '.join(CONSUMED_QUEUES)}")
        print(f"  DLQ: {DLX_QUEUE_NAME}")
    finally:
        connection.close()


def broker_status(config: Config) -> None:
    """Show RabbitMQ broker status.

    Args:
        config: Configuration object
    """
    print(f"RabbitMQ: {config.rabbitmq_host}:{config.rabbitmq_port}")

    connection = RabbitMQConnection.from_config(config)
    try:
        connection.connect()
        status = connection.get_queue_status()

        print("\nQueue Status:")
        print("-" * 50)

        total_messages = 0
        for queue_name in ALL_QUEUES:
            queue_status = status.get(queue_name, {})
            if "error" in queue_status:
                print(f"  {queue_name}: ERROR - {queue_status['error']}")
            else:
                msg_count = queue_status.get("message_count", 0)
                total_messages += msg_count
                print(f"  {queue_name}: {msg_count} messages, {queue_status.get('consumer_count', 0)} consumers")

        print("-" * 50)
        print(f"Total messages: {total_messages}")
    finally:
        connection.close()


def broker_purge(config: Config, queue_name: str) -> None:
    """Purge all messages from a queue.

    Args:
        config: Configuration object
        queue_name: Name of queue to purge
    """
    connection = RabbitMQConnection.from_config(config)
    try:
        connection.connect()
        count = connection.purge_queue(queue_name)
        print(f"Purged {count} messages from {queue_name}")
    finally:
        connection.close()


def db_init(config: Config) -> None:
    """Create any missing tables."""
    init_db(config)
    create_schema()
    print("Database schema created")


def db_check(config: Config) -> None:
    """Exit non-zero if the schema is incomplete."""
    init_db(config)
    try:
        check_tables_exist()
    except RuntimeError as e:
        print(str(e), file=sys.stderr)
        sys.exit(1)
    print("Database schema OK")


def process_file(config: Config, path: str) -> None:
    """Index notifications from a JSON file (one object or an array).

    Useful for replaying captured webhook payloads without the broker.
    """
    from consumer.event_handler import NotificationHandler
    from messaging.schema import NotificationMessage, TransactionNotification

    with open(path, "r") as f:
        payload = json.load(f)
    items = payload if isinstance(payload, list) else [payload]

    init_db(config)
    check_tables_exist()
    handler = NotificationHandler(config)

    failed = 0
    for item in items:
        try:
            notification = TransactionNotification.model_validate(item)
        except ValidationError as e:
            print(f"Skipping invalid transaction: {e.errors()[0].get('msg')}", file=sys.stderr)
            failed += 1
            continue

        result = handler.handle_notification(NotificationMessage(notification=notification))
        failed += result.failed
        print(
            f"{notification.signature}: processed={result.processed} duplicates={result.duplicates} "
            f"skipped={result.skipped} missing={result.missing} failed={result.failed}"
        )

    if failed:
        sys.exit(1)


def revenue_distribute(config: Config, amount: int, token: str, origin_signature: str) -> None:
    """Record a revenue event and attempt buy-and-burn."""
    from chain.instructions import RevenueToken
    from revenue.distributor import DuplicateRevenueError, RevenueDistributor

    init_db(config)
    distributor = RevenueDistributor.from_config(config)
    try:
        result = distributor.distribute(amount, RevenueToken(token), origin_signature)
    except DuplicateRevenueError as e:
        print(str(e), file=sys.stderr)
        sys.exit(1)
    _print_distribution(result)


def revenue_promote(config: Config, pending_id: int) -> None:
    """Distribute a detected pending revenue record."""
    from revenue.distributor import DuplicateRevenueError, RevenueDistributor

    init_db(config)
    distributor = RevenueDistributor.from_config(config)
    try:
        result = distributor.promote_pending(pending_id)
    except (LookupError, DuplicateRevenueError) as e:
        print(str(e), file=sys.stderr)
        sys.exit(1)
    _print_distribution(result)


def _print_distribution(result) -> None:
    split = result.split
    print(f"Revenue event {result.event_index} (id={result.event_id})")
    print(f"  Developer pool:    {split.developer_pool}")
    print(f"  Treasury reserve:  {split.treasury_reserve}")
    print(f"  Burn:              {split.burn_amount}")
    print(f"  Maintenance:       {split.maintenance_amount}")
    if result.settlement is None:
        print("  Buy-and-burn:      not executed")
    else:
        state = "confirmed" if result.settlement.confirmed else "unconfirmed"
        print(f"  Buy-and-burn:      {result.settlement.signature} ({result.settlement.gsd_amount} GSD, {state})")


def review_assign(config: Config, report_id: int, count: int = None) -> None:
    """Print a reviewer panel for a stored verification report."""
    from db.session import get_session
    from review.assignment import assign_panel

    init_db(config)
    with get_session() as session:
        try:
            panel = assign_panel(session, config, report_id, count)
        except LookupError as e:
            print(str(e), file=sys.stderr)
            sys.exit(1)

    if not panel:
        print(f"No eligible reviewers for report {report_id}")
        return
    for reviewer in panel:
        print(f"  {reviewer.wallet}  tier={reviewer.tier} relevance={reviewer.relevance}")


def backfill_run(config: Config, batch_size: int = None, delay: float = None) -> None:
    """Run the verification backfill in the foreground."""
    from backfill.runner import MigrationRunner

    init_db(config)
    check_tables_exist()
    runner = MigrationRunner(config, batch_size=batch_size, delay_seconds=delay)
    try:
        runner.start(background=False)
    except KeyboardInterrupt:
        runner.cancel()

    status = runner.status()
    print(f"Backfill {status.state.value}: {status.processed}/{status.total} processed, "
          f"{status.legacy_tagged} legacy, {status.failed} failed")
    if status.error:
        print(f"Error: {status.error}", file=sys.stderr)
        sys.exit(1)


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser.

    Returns:
        Configured argument parser
    """
    parser = argparse.ArgumentParser(
        description="GSD Hub on-chain indexer",
        prog="gsd-indexer",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # Webhook commands
    webhook_parser = subparsers.add_parser("webhook", help="Relay webhook commands")
    webhook_subparsers = webhook_parser.add_subparsers(dest="subcommand", help="Webhook subcommands")
    webhook_subparsers.add_parser("run", help="Serve the webhook and publish notifications")

    # Consumer commands
    consumer_parser = subparsers.add_parser("consumer", help="Consumer commands")
    consumer_subparsers = consumer_parser.add_subparsers(dest="subcommand", help="Consumer subcommands")
    consumer_run = consumer_subparsers.add_parser("run", help="Start consumer workers")
    consumer_run.add_argument("--workers", "-w", type=int, help="Number of worker processes")
    consumer_subparsers.add_parser("status", help="Show consumer/queue status")

    # Broker commands
    broker_parser = subparsers.add_parser("broker", help="Broker management commands")
    broker_subparsers = broker_parser.add_subparsers(dest="subcommand", help="Broker subcommands")
    broker_subparsers.add_parser("setup", help="Set up exchanges and queues")
    broker_subparsers.add_parser("status", help="Show queue status")
    broker_purge_parser = broker_subparsers.add_parser("purge", help="Purge a queue")
    broker_purge_parser.add_argument("--queue", "-q", type=str, required=True, help="Queue name to purge")

    # Database commands
    db_parser = subparsers.add_parser("db", help="Database commands")
    db_subparsers = db_parser.add_subparsers(dest="subcommand", help="Database subcommands")
    db_subparsers.add_parser("init", help="Create the schema")
    db_subparsers.add_parser("check", help="Verify the schema")

    # Offline processing
    process_parser = subparsers.add_parser("process", help="Index notifications from a JSON file")
    process_parser.add_argument("file", type=str, help="Path to a webhook payload")

    # Revenue commands
    revenue_parser = subparsers.add_parser("revenue", help="Revenue distribution commands")
    revenue_subparsers = revenue_parser.add_subparsers(dest="subcommand", help="Revenue subcommands")
    distribute_parser = revenue_subparsers.add_parser("distribute", help="Distribute a revenue inflow")
    distribute_parser.add_argument("--amount", type=int, required=True, help="Raw amount (lamports or USDC units)")
    distribute_parser.add_argument("--token", choices=["sol", "usdc"], required=True, help="Inflow token")
    distribute_parser.add_argument("--origin", type=str, required=True, help="Origin transaction signature")
    promote_parser = revenue_subparsers.add_parser("promote", help="Distribute a pending revenue record")
    promote_parser.add_argument("--pending-id", type=int, required=True, help="PendingRevenue id")

    # Review commands
    review_parser = subparsers.add_parser("review", help="Peer review commands")
    review_subparsers = review_parser.add_subparsers(dest="subcommand", help="Review subcommands")
    assign_parser = review_subparsers.add_parser("assign", help="Select a reviewer panel for a report")
    assign_parser.add_argument("--report-id", type=int, required=True, help="VerificationReport id")
    assign_parser.add_argument("--count", type=int, help="Panel size (default: MIN_REVIEWERS)")

    # Backfill commands
    backfill_parser = subparsers.add_parser("backfill", help="Verification backfill commands")
    backfill_subparsers = backfill_parser.add_subparsers(dest="subcommand", help="Backfill subcommands")
    backfill_run_parser = backfill_subparsers.add_parser("run", help="Backfill reports for unverified contributions")
    backfill_run_parser.add_argument("--batch-size", type=int, help="Contributions per batch")
    backfill_run_parser.add_argument("--delay", type=float, help="Seconds between batches")

    return parser


def main() -> None:
    """Main entry point for CLI."""
    parser = create_parser()
    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        sys.exit(1)

    if args.command != "process" and not getattr(args, "subcommand", None):
        print(f"Usage: gsd-indexer {args.command} <subcommand>", file=sys.stderr)
        sys.exit(1)

    # Load config
    try:
        config = Config.from_env()
        config.validate()
    except Exception as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)

    setup_logging(config)

    try:
        if args.command == "webhook":
            from producer.main import run_webhook
            run_webhook(config)

        elif args.command == "consumer":
            if args.subcommand == "run":
                from consumer.main import run_consumer
                run_consumer(config, args.workers)
            else:
                broker_status(config)

        elif args.command == "broker":
            if args.subcommand == "setup":
                broker_setup(config)
            elif args.subcommand == "status":
                broker_status(config)
            elif args.subcommand == "purge":
                broker_purge(config, args.queue)

        elif args.command == "db":
            if args.subcommand == "init":
                db_init(config)
            else:
                db_check(config)

        elif args.command == "process":
            process_file(config, args.file)

        elif args.command == "revenue":
            if args.subcommand == "distribute":
                revenue_distribute(config, args.amount, args.token, args.origin)
            else:
                revenue_promote(config, args.pending_id)

        elif args.command == "review":
            review_assign(config, args.report_id, args.count)

        elif args.command == "backfill":
            backfill_run(config, args.batch_size, args.delay)

        else:
            parser.print_help()
            sys.exit(1)

    except KeyboardInterrupt:
        print("\nInterrupted")
        sys.exit(0)
    except Exception as e:
        logger.error(f"Fatal error: {e}", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
