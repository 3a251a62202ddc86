"""Schema check run before the consumer and backfill start."""

from typing import List

from sqlalchemy import inspect

from db.session import get_engine
from log import get_logger

logger = get_logger(__name__)


def missing_tables() -> List[str]:
    """Names of mapped tables absent from the connected database."""
    from db.models import Base

    existing = set(inspect(get_engine()).get_table_names())
    return sorted(name for name in Base.metadata.tables if name not in existing)


def check_tables_exist() -> None:
    """Raise RuntimeError naming every missing table."""
    missing = missing_tables()
    if missing:
        raise RuntimeError(
            f"DB schema incomplete, missing tables: {', '.join(missing)}. "
            "Run 'gsd-indexer db init' first."
        )
    logger.info("Database schema OK")
