# Overview: Row-level locking and compare-and-swap helpers for status fields.

from __future__ import annotations

from sqlalchemy import update


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    Works on both legacy Query objects and 2.0-style select() statements.
    """
    return query.with_for_update()


def compare_and_set(session, model, row_id: int, column, expected, **values) -> bool:
    """
    Conditional UPDATE: write `values` only if `column` still equals `expected`.

    Returns True when exactly one row changed. False means the row is gone or
    another caller changed the column first; re-read and re-validate.

    The check and the write are one statement, so two callers racing on the
    same row can never both succeed regardless of backend locking support.
    Does not commit.
    """
    stmt = (
        update(model)
        .where(model.id == row_id, column == expected)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    result = session.execute(stmt)
    return result.rowcount == 1
