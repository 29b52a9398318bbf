"""Result-to-document loader.

ResultLoader runs a SQL query against the query cluster, converts each
result row into a document and indexes the documents in batches through
BulkIndexer.

States:

    IDLE -> QUERYING -> STREAMING -> (RETRYING)* -> DONE | FAILED

Batches are submitted in result order with at most one batch in flight.
Batches acknowledged before a failure stay indexed; nothing is deleted on
failure, so loading is at-least-once.
"""

from __future__ import annotations

import time
from collections.abc import Callable, Iterable, Iterator, Sequence
from concurrent.futures import Future, ThreadPoolExecutor
from enum import Enum
from itertools import chain
from typing import TYPE_CHECKING, Any, Protocol

from pydantic import BaseModel, ConfigDict

from floe_elasticsearch.bulk import BatchReceipt, BulkIndexBatch, BulkIndexer
from floe_elasticsearch.config import LoaderConfig, RetryPolicy
from floe_elasticsearch.documents import Cursor, column_names, stream_rows, to_document
from floe_elasticsearch.errors import (
    DocumentConversionError,
    DocumentRejectedError,
    LoadError,
    TransientBulkError,
)
from floe_elasticsearch.observability import get_logger, load_operation

if TYPE_CHECKING:
    from elasticsearch import Elasticsearch
    from structlog.stdlib import BoundLogger


class Connection(Protocol):
    """The DB-API connection surface the loader uses."""

    def cursor(self) -> Cursor: ...


class LoadState(str, Enum):
    """Lifecycle of a single load."""

    IDLE = "idle"
    QUERYING = "querying"
    STREAMING = "streaming"
    RETRYING = "retrying"
    DONE = "done"
    FAILED = "failed"


class LoadResult(BaseModel):
    """Result of loading one table.

    Attributes:
        table_name: Table that was loaded
        index: Index the documents were written to
        rows_loaded: Rows indexed, equal to the rows read from the query
        batch_sizes: Size of each acknowledged batch, in submission order
        retries: Retry attempts across all batches
        elapsed_seconds: Wall-clock duration of the load
    """

    model_config = ConfigDict(frozen=True)

    table_name: str
    index: str
    rows_loaded: int
    batch_sizes: tuple[int, ...]
    retries: int
    elapsed_seconds: float

    @property
    def batches(self) -> int:
        return len(self.batch_sizes)


class ResultLoader:
    """Load query results into a search index.

    Example:
        >>> loader = ResultLoader(connection, es_client, RetryPolicy(max_attempts=3))
        >>> result = loader.load("SELECT * FROM tpch.tiny.nation", "nation")
        >>> result.rows_loaded
        25
    """

    def __init__(
        self,
        connection: Connection,
        client: Elasticsearch,
        policy: RetryPolicy,
        *,
        config: LoaderConfig | None = None,
        request_timeout: float | None = None,
        sleep: Callable[[float], None] | None = None,
        logger: BoundLogger | None = None,
    ) -> None:
        """Initialize the loader.

        Args:
            connection: DB-API connection bound to the source catalog.
            client: Search node client.
            policy: Retry bounds for each batch submission.
            config: Batch size, refresh and pipelining settings.
            request_timeout: Timeout of each bulk request, in seconds.
            sleep: Sleep function between retries (defaults to time.sleep).
            logger: Optional structlog logger.
        """
        self._connection = connection
        self.config = config or LoaderConfig()
        self._logger = logger or get_logger()
        self.indexer = BulkIndexer(
            client,
            policy,
            request_timeout=request_timeout,
            on_retry=self._on_retry,
            sleep=sleep,
            logger=self._logger,
        )
        self.state = LoadState.IDLE
        self._retries = 0

    def load(
        self,
        source_query: str,
        target_index: str,
        *,
        table_name: str | None = None,
    ) -> LoadResult:
        """Run a query and index every result row.

        Args:
            source_query: SQL query producing the rows.
            target_index: Index to write documents into.
            table_name: Name used in logs and errors; defaults to the index.

        Returns:
            LoadResult with the number of rows loaded.

        Raises:
            LoadError: If the query fails, a row cannot be converted, a
                document is rejected, or retries are exhausted.
        """
        table = table_name or target_index
        start = time.perf_counter()
        self._retries = 0
        log = self._logger.bind(table=table, index=target_index)

        with load_operation("load", table=table, index=target_index):
            try:
                self._transition(LoadState.QUERYING, table)
                cursor, rows = self._run_query(table, source_query)

                self._transition(LoadState.STREAMING, table)
                counter = _RowCounter()
                batches = self._batches(table, cursor, rows, counter)
                receipts = self._submit_all(table, target_index, batches)

                # An index only exists once a batch has been acknowledged.
                if self.config.refresh and receipts:
                    self._refresh(table, target_index)
            except LoadError:
                self._transition(LoadState.FAILED, table)
                raise

            rows_loaded = sum(r.documents for r in receipts)
            if rows_loaded != counter.rows:
                self._transition(LoadState.FAILED, table)
                raise LoadError(
                    table,
                    f"Indexed {rows_loaded} of {counter.rows} rows",
                )
            self._transition(LoadState.DONE, table)

        result = LoadResult(
            table_name=table,
            index=target_index,
            rows_loaded=rows_loaded,
            batch_sizes=tuple(r.documents for r in receipts),
            retries=self._retries,
            elapsed_seconds=time.perf_counter() - start,
        )
        log.info(
            "table_loaded",
            rows=result.rows_loaded,
            batches=result.batches,
            retries=result.retries,
            elapsed_seconds=round(result.elapsed_seconds, 3),
        )
        return result

    def _run_query(
        self,
        table: str,
        source_query: str,
    ) -> tuple[Cursor, Iterator[Sequence[Any]]]:
        """Submit the query and read ahead to the first row.

        Some clients only report result columns once the first page of
        results has arrived, so the first row is fetched eagerly.
        """
        try:
            cursor = self._connection.cursor()
            cursor.execute(source_query)
            rows = stream_rows(cursor)
            first = next(rows, None)
        except Exception as exc:
            self._logger.error("source_query_failed", table=table, error=str(exc))
            raise LoadError(table, "Source query failed", cause=str(exc)) from exc

        if first is None:
            return cursor, iter(())
        return cursor, chain((first,), rows)

    def _batches(
        self,
        table: str,
        cursor: Cursor,
        rows: Iterable[Sequence[Any]],
        counter: _RowCounter,
    ) -> Iterator[BulkIndexBatch]:
        """Group converted rows into batches of at most batch_size."""
        columns = column_names(cursor)
        batch = BulkIndexBatch(index=0)
        iterator = iter(rows)

        while True:
            try:
                row = next(iterator)
            except StopIteration:
                break
            except Exception as exc:
                raise LoadError(
                    table,
                    "Result stream failed",
                    batch_index=batch.index,
                    row_position=counter.rows,
                    cause=str(exc),
                ) from exc

            position = counter.rows
            counter.rows += 1
            try:
                document = to_document(columns, row)
            except (DocumentConversionError, ValueError) as exc:
                raise LoadError(
                    table,
                    "Row cannot be converted to a document",
                    batch_index=batch.index,
                    row_position=position,
                    cause=str(exc),
                ) from exc

            batch.add(position, document)
            if len(batch) >= self.config.batch_size:
                yield batch
                batch = BulkIndexBatch(index=batch.index + 1)

        if len(batch):
            yield batch

    def _submit_all(
        self,
        table: str,
        index: str,
        batches: Iterator[BulkIndexBatch],
    ) -> list[BatchReceipt]:
        receipts: list[BatchReceipt] = []
        if not self.config.pipelined:
            for batch in batches:
                receipts.append(self._submit(table, index, batch))
            return receipts

        # One worker keeps a single batch in flight, so submission order
        # follows result order while the next batch is being read.
        with ThreadPoolExecutor(max_workers=1, thread_name_prefix="bulk-submit") as executor:
            in_flight: Future[BatchReceipt] | None = None
            try:
                for batch in batches:
                    if in_flight is not None:
                        receipts.append(in_flight.result())
                    in_flight = executor.submit(self._submit, table, index, batch)
            except LoadError as exc:
                # A failure of the batch already in flight happened first.
                earlier = in_flight.exception() if in_flight is not None else None
                if earlier is not None and earlier is not exc:
                    raise earlier
                raise
            if in_flight is not None:
                receipts.append(in_flight.result())
        return receipts

    def _submit(self, table: str, index: str, batch: BulkIndexBatch) -> BatchReceipt:
        try:
            receipt = self.indexer.submit(index, batch)
        except DocumentRejectedError as exc:
            raise LoadError(
                table,
                "Document rejected by search node",
                batch_index=batch.index,
                row_position=exc.row_position,
                cause=str(exc),
            ) from exc
        except TransientBulkError as exc:
            raise LoadError(
                table,
                "Bulk submission retries exhausted",
                batch_index=batch.index,
                cause=str(exc),
            ) from exc
        if self.state is LoadState.RETRYING:
            self._transition(LoadState.STREAMING, table)
        return receipt

    def _refresh(self, table: str, index: str) -> None:
        try:
            self.indexer.refresh(index)
        except Exception as exc:
            raise LoadError(table, "Index refresh failed", cause=str(exc)) from exc

    def _on_retry(self, attempt: int, exc: BaseException | None) -> None:
        self._retries += 1
        self.state = LoadState.RETRYING

    def _transition(self, state: LoadState, table: str) -> None:
        self._logger.debug(
            "load_state_changed",
            table=table,
            previous=self.state.value,
            state=state.value,
        )
        self.state = state


class _RowCounter:
    """Rows read from the result stream so far."""

    def __init__(self) -> None:
        self.rows = 0
