"""Conversion of query result rows into search documents.

Column names become field names verbatim. Values map to the search
engine's JSON representations:

- bool, int, float, Decimal -> JSON booleans and numbers
- str -> JSON string
- date, datetime, time -> ISO-8601 string
- None -> field omitted

Any other value (binary, arrays, maps, rows, non-finite floats) raises
DocumentConversionError.
"""

from __future__ import annotations

import math
from collections.abc import Iterator, Sequence
from datetime import date, datetime, time
from decimal import Decimal
from typing import Any, Protocol

from floe_elasticsearch.errors import DocumentConversionError

Document = dict[str, Any]


class Cursor(Protocol):
    """The DB-API cursor surface the loader uses."""

    description: Sequence[Sequence[Any]] | None

    def execute(self, operation: str, params: Any = ...) -> Any: ...

    def fetchone(self) -> Sequence[Any] | None: ...


def convert_value(column: str, value: Any) -> Any:
    """Convert a single column value.

    Args:
        column: Column name, for error reporting.
        value: Value as returned by the query engine client. Must not be None.

    Returns:
        The JSON-compatible value.

    Raises:
        DocumentConversionError: If the value has no representation.
    """
    # bool before int: bool is an int subclass
    if isinstance(value, bool | str):
        return value
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        if not math.isfinite(value):
            raise DocumentConversionError(column, f"float({value})")
        return value
    if isinstance(value, Decimal):
        if not value.is_finite():
            raise DocumentConversionError(column, f"decimal({value})")
        return float(value)
    # datetime before date: datetime is a date subclass
    if isinstance(value, datetime | date | time):
        return value.isoformat()
    raise DocumentConversionError(column, type(value).__name__)


def to_document(columns: Sequence[str], row: Sequence[Any]) -> Document:
    """Convert one result row into a document.

    Args:
        columns: Column names in result order.
        row: Values in the same order.

    Returns:
        Document keyed by column name, without the null-valued columns.

    Raises:
        DocumentConversionError: If any value cannot be converted.
        ValueError: If the row length does not match the columns.

    Example:
        >>> to_document(["id", "name", "comment"], [1, "ALGERIA", None])
        {'id': 1, 'name': 'ALGERIA'}
    """
    if len(columns) != len(row):
        msg = f"Row has {len(row)} values for {len(columns)} columns"
        raise ValueError(msg)
    return {
        column: convert_value(column, value)
        for column, value in zip(columns, row, strict=True)
        if value is not None
    }


def column_names(cursor: Cursor) -> list[str]:
    """Column names of the cursor's current result."""
    if cursor.description is None:
        return []
    return [str(entry[0]) for entry in cursor.description]


def stream_rows(cursor: Cursor) -> Iterator[Sequence[Any]]:
    """Yield result rows one at a time until the cursor is exhausted.

    The stream is not restartable: rows that were consumed are gone.
    """
    return iter(cursor.fetchone, None)
