"""Shared test fixtures for floe-elasticsearch tests.

Provides in-memory stand-ins for the query engine's DB-API connection and
the search node client, so the loader and bootstrapper can be tested
without containers.
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from typing import Any
from unittest.mock import MagicMock

import pytest
import structlog
from elasticsearch import NotFoundError

from floe_elasticsearch.config import RetryPolicy

NATION_COLUMNS = ("nationkey", "name", "regionkey", "comment")

# Per-request plan of the fake search client:
#   None -> every document succeeds
#   Exception -> the whole request raises
#   dict -> request position -> item status
BulkPlan = None | Exception | dict[int, int]


class FakeCursor:
    """DB-API cursor over fixed rows.

    ``description`` is only populated after the first fetch, like clients
    that page results lazily.
    """

    def __init__(
        self,
        columns: Sequence[str],
        rows: Sequence[Sequence[Any]],
        *,
        execute_error: Exception | None = None,
        fetch_error_at: int | None = None,
    ) -> None:
        self._columns = columns
        self._rows = list(rows)
        self._execute_error = execute_error
        self._fetch_error_at = fetch_error_at
        self._position = 0
        self.description: list[tuple[Any, ...]] | None = None
        self.executed: list[str] = []

    def execute(self, operation: str, params: Any = None) -> FakeCursor:
        self.executed.append(operation)
        if self._execute_error is not None:
            raise self._execute_error
        return self

    def fetchone(self) -> Sequence[Any] | None:
        self.description = [(name, "varchar", None, None, None, None, None) for name in self._columns]
        if self._fetch_error_at is not None and self._position == self._fetch_error_at:
            raise RuntimeError("Query exceeded memory limit")
        if self._position >= len(self._rows):
            return None
        row = self._rows[self._position]
        self._position += 1
        return row

    def fetchall(self) -> list[Sequence[Any]]:
        return list(iter(self.fetchone, None))


class FakeConnection:
    """DB-API connection handing out FakeCursors."""

    def __init__(self, cursor_factory: Callable[[], FakeCursor]) -> None:
        self._cursor_factory = cursor_factory
        self.cursors: list[FakeCursor] = []
        self.closed = False

    def cursor(self) -> FakeCursor:
        cursor = self._cursor_factory()
        self.cursors.append(cursor)
        return cursor

    def close(self) -> None:
        self.closed = True


class FakeIndices:
    """Index admin API; refreshing an index that was never written raises 404."""

    def __init__(self, indexed: dict[str, list[dict[str, Any]]]) -> None:
        self._indexed = indexed
        self.refreshed: list[str] = []

    def refresh(self, index: str) -> dict[str, Any]:
        if index not in self._indexed:
            raise NotFoundError(
                message="index_not_found_exception",
                meta=MagicMock(status=404),
                body={"error": {"type": "index_not_found_exception"}},
            )
        self.refreshed.append(index)
        return {"_shards": {"failed": 0}}


class FakeSearchClient:
    """Search node client recording bulk requests.

    Each bulk call consumes the next entry of ``plan``; once the plan is
    exhausted every request succeeds.
    """

    def __init__(self, plan: Sequence[BulkPlan] = ()) -> None:
        self.plan: list[BulkPlan] = list(plan)
        self.requests: list[list[dict[str, Any]]] = []
        self.indexed: dict[str, list[dict[str, Any]]] = {}
        self.options_calls: list[dict[str, Any]] = []
        self.indices = FakeIndices(self.indexed)
        self.closed = False

    def options(self, **kwargs: Any) -> FakeSearchClient:
        self.options_calls.append(kwargs)
        return self

    def bulk(self, *, operations: list[dict[str, Any]]) -> dict[str, Any]:
        self.requests.append(operations)
        step = self.plan.pop(0) if self.plan else None
        if isinstance(step, Exception):
            raise step
        statuses = step or {}

        items = []
        for position, (action, document) in enumerate(zip(operations[::2], operations[1::2])):
            index = action["index"]["_index"]
            status = statuses.get(position, 201)
            result: dict[str, Any] = {"_index": index, "status": status}
            if status >= 300:
                result["error"] = {"type": "mapper_parsing_exception", "reason": "failed to parse"}
            else:
                self.indexed.setdefault(index, []).append(document)
            items.append({"index": result})
        return {"errors": any(s >= 300 for s in statuses.values()), "items": items}

    def count(self, index: str) -> dict[str, Any]:
        return {"count": len(self.indexed.get(index, []))}

    def close(self) -> None:
        self.closed = True


@pytest.fixture(autouse=True)
def _reset_structlog() -> None:
    """Keep structlog on its default configuration between tests."""
    structlog.reset_defaults()


@pytest.fixture
def nation_rows() -> list[tuple[Any, ...]]:
    """Ten nation rows, the last one with a null comment."""
    rows: list[tuple[Any, ...]] = [
        (i, f"NATION_{i}", i % 5, f"comment {i}") for i in range(9)
    ]
    rows.append((9, "NATION_9", 4, None))
    return rows


@pytest.fixture
def make_connection() -> Callable[..., FakeConnection]:
    """Factory for connections whose cursors return the given rows."""

    def factory(
        rows: Sequence[Sequence[Any]],
        columns: Sequence[str] = NATION_COLUMNS,
        **cursor_kwargs: Any,
    ) -> FakeConnection:
        return FakeConnection(lambda: FakeCursor(columns, rows, **cursor_kwargs))

    return factory


@pytest.fixture
def search_client() -> FakeSearchClient:
    return FakeSearchClient()


@pytest.fixture
def fast_policy() -> RetryPolicy:
    """Three attempts without backoff waits."""
    return RetryPolicy(
        max_attempts=3,
        max_retry_seconds=60.0,
        initial_wait_seconds=0.0,
        max_wait_seconds=0.0,
    )


@pytest.fixture
def no_sleep() -> Callable[[float], None]:
    def sleep(seconds: float) -> None:
        return None

    return sleep
