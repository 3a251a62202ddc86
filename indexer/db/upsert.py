"""Dialect-aware INSERT ... ON CONFLICT helpers."""

from typing import Any, Dict, Iterable, Optional

from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.orm import Session

from db.models import utcnow


def _insert_for(session: Session, model):
    dialect = session.get_bind().dialect.name
    if dialect == "postgresql":
        return postgresql.insert(model)
    if dialect == "sqlite":
        return sqlite.insert(model)
    raise RuntimeError(f"Upsert not supported for dialect '{dialect}'")


def upsert(
    session: Session,
    model,
    values: Dict[str, Any],
    conflict_columns: Iterable[str],
    update_values: Optional[Dict[str, Any]] = None,
) -> None:
    """Insert a row or, on a natural-key conflict, update only ``update_values``.

    ``update_values`` may contain SQL expressions (e.g. ``Model.col + 1``) so
    that counters are adjusted atomically. When it is empty the conflicting
    row is left untouched.

    Args:
        session: Active session
        model: Mapped class to insert into
        values: Column values for the create branch
        conflict_columns: Columns of the unique constraint to resolve on
        update_values: Columns to set on the update branch
    """
    stmt = _insert_for(session, model).values(**values)
    if update_values:
        # onupdate defaults are not applied by ON CONFLICT DO UPDATE
        if hasattr(model, "updated_at") and "updated_at" not in update_values:
            update_values = {**update_values, "updated_at": utcnow()}
        stmt = stmt.on_conflict_do_update(
            index_elements=list(conflict_columns),
            set_=update_values,
        )
    else:
        stmt = stmt.on_conflict_do_nothing(index_elements=list(conflict_columns))
    session.execute(stmt)


def insert_ignore(session: Session, model, values: Dict[str, Any], conflict_columns: Iterable[str]) -> bool:
    """Insert a row unless the natural key already exists.

    Returns:
        True if a row was inserted
    """
    stmt = (
        _insert_for(session, model)
        .values(**values)
        .on_conflict_do_nothing(index_elements=list(conflict_columns))
    )
    result = session.execute(stmt)
    return bool(result.rowcount)
