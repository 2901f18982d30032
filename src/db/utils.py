"""
Database Utility Functions.

Atomic write helpers used wherever the engine needs "insert if absent" or
"increment in place" semantics instead of a read-then-write round trip.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from typing import Any

from loguru import logger
from sqlalchemy import insert
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session


def insert_if_absent(
    session: Session,
    model: type,
    values: Mapping[str, Any],
    conflict_columns: Iterable[str],
) -> bool:
    """
    Insert a row unless a row with the same unique key already exists.

    The insert attempt itself is the decision: the store's unique constraint
    arbitrates between concurrent writers, so two callers can never both win.

    Args:
        session: Active session (the insert joins its transaction)
        model: ORM model class
        values: Column values for the new row
        conflict_columns: Columns of the unique constraint that arbitrates

    Returns:
        True if this call inserted the row, False if it already existed
    """
    dialect = session.get_bind().dialect.name
    columns = list(conflict_columns)

    if dialect in ("sqlite", "postgresql"):
        builder = sqlite_insert if dialect == "sqlite" else pg_insert
        stmt = builder(model).values(**values).on_conflict_do_nothing(index_elements=columns)
        result = session.execute(stmt)
        return result.rowcount == 1

    # Generic fallback: let the unique constraint fail inside a savepoint
    try:
        with session.begin_nested():
            session.execute(insert(model).values(**values))
        return True
    except IntegrityError:
        logger.debug(f"{model.__name__} row already exists for {columns}")
        return False
