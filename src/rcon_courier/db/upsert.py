"""Dialect-aware ``INSERT ... ON CONFLICT DO UPDATE`` helpers."""

from __future__ import annotations

from collections.abc import Callable, Mapping, Sequence
from typing import Any

from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.orm import Session

_DIALECT_INSERTS: dict[str, Callable[..., Any]] = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


def upsert(
    db: Session,
    model: type[Any],
    values: Mapping[str, Any],
    *,
    conflict_columns: Sequence[str],
    update_values: Mapping[str, Any] | Callable[[Any], Mapping[str, Any]],
) -> None:
    """Insert ``values`` or update the conflicting row in one statement.

    ``update_values`` may be a callable receiving the statement's ``excluded``
    namespace so that updates can reference the proposed row. Column
    expressions on ``model`` refer to the row already stored.
    """
    dialect = db.get_bind().dialect.name
    try:
        insert = _DIALECT_INSERTS[dialect]
    except KeyError as err:
        raise NotImplementedError(f"Upsert is not supported for dialect {dialect!r}") from err

    stmt = insert(model).values(**values)
    update = update_values(stmt.excluded) if callable(update_values) else update_values
    stmt = stmt.on_conflict_do_update(index_elements=list(conflict_columns), set_=dict(update))
    db.execute(stmt)
