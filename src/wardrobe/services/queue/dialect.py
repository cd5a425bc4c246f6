"""Dialect-specific statements shared by the queue and lease stores."""

from typing import Any

from sqlalchemy.dialects import postgresql, sqlite


def insert_ignore(dialect_name: str, model: Any, values: dict[str, Any], index_elements: list[str]):
    """Build INSERT ... ON CONFLICT DO NOTHING for the given dialect.

    The result's rowcount is 1 when the row was inserted and 0 when the key
    already existed.
    """
    if dialect_name == "postgresql":
        stmt = postgresql.insert(model)
    elif dialect_name == "sqlite":
        stmt = sqlite.insert(model)
    else:
        raise NotImplementedError(f"Unsupported queue database dialect: {dialect_name}")
    return stmt.values(**values).on_conflict_do_nothing(index_elements=index_elements)
