"""Bulk index submission with retries.

BulkIndexer submits one batch of documents to the search node's bulk
endpoint. Failures are classified per request and per document:

- connection errors, timeouts, 429 and 5xx: transient, retried within the
  RetryPolicy bounds; only documents that failed are resubmitted
- any other 4xx: structural, never retried
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from elasticsearch import ApiError, ConnectionTimeout
from elasticsearch import ConnectionError as EsConnectionError

from floe_elasticsearch.config import RetryPolicy
from floe_elasticsearch.documents import Document
from floe_elasticsearch.errors import DocumentRejectedError, TransientBulkError
from floe_elasticsearch.observability import get_logger, load_operation
from floe_elasticsearch.retry import RetryCallback, create_retry_decorator

if TYPE_CHECKING:
    from elasticsearch import Elasticsearch
    from structlog.stdlib import BoundLogger

THROTTLED_STATUS = 429


def is_transient_status(status: int) -> bool:
    """True for HTTP statuses worth retrying (throttling and server errors)."""
    return status == THROTTLED_STATUS or status >= 500


@dataclass
class BulkIndexBatch:
    """Documents accumulated for one bulk submission.

    Attributes:
        index: Zero-based position of the batch within the load.
        documents: Documents in result order.
        positions: Source row position of each document.
    """

    index: int
    documents: list[Document] = field(default_factory=list)
    positions: list[int] = field(default_factory=list)

    def add(self, position: int, document: Document) -> None:
        self.positions.append(position)
        self.documents.append(document)

    def __len__(self) -> int:
        return len(self.documents)


@dataclass(frozen=True)
class BatchReceipt:
    """Acknowledgment of a fully indexed batch."""

    batch_index: int
    documents: int
    attempts: int


class BulkIndexer:
    """Submit document batches to one search node.

    Example:
        >>> indexer = BulkIndexer(es_client, RetryPolicy(max_attempts=3))
        >>> receipt = indexer.submit("nation", batch)
        >>> receipt.documents
        25
    """

    def __init__(
        self,
        client: Elasticsearch,
        policy: RetryPolicy,
        *,
        request_timeout: float | None = None,
        on_retry: RetryCallback | None = None,
        sleep: Callable[[float], None] | None = None,
        logger: BoundLogger | None = None,
    ) -> None:
        """Initialize BulkIndexer.

        Args:
            client: Search node client.
            policy: Retry bounds for each batch.
            request_timeout: Timeout of each individual bulk request, in
                seconds. Independent of the policy's total retry time.
            on_retry: Called before each retry wait.
            sleep: Sleep function between attempts (defaults to time.sleep).
            logger: Optional structlog logger.
        """
        self._client = client
        self.policy = policy
        self._request_timeout = request_timeout
        self._on_retry = on_retry
        self._sleep = sleep
        self._logger = logger or get_logger()

    def submit(self, index: str, batch: BulkIndexBatch) -> BatchReceipt:
        """Index every document of a batch.

        Args:
            index: Target index name.
            batch: Documents to index.

        Returns:
            BatchReceipt once every document is acknowledged.

        Raises:
            TransientBulkError: If transient failures outlast the policy.
            DocumentRejectedError: If the node rejects a document with a
                client error. Raised on first occurrence.
        """
        pending: dict[int, Document] = dict(zip(batch.positions, batch.documents, strict=True))
        attempts = 0

        retry_kwargs: dict[str, Any] = {
            "operation_name": "bulk_submit",
            "on_retry": self._on_retry,
        }
        if self._sleep is not None:
            retry_kwargs["sleep"] = self._sleep

        @create_retry_decorator(self.policy, **retry_kwargs)
        def attempt() -> None:
            nonlocal pending, attempts
            attempts += 1
            try:
                self._send(index, pending)
            except TransientBulkError as exc:
                if exc.failed_positions:
                    pending = {p: pending[p] for p in exc.failed_positions}
                raise

        with load_operation("bulk_submit", index=index, batch=batch.index):
            attempt()

        self._logger.debug(
            "batch_indexed",
            index=index,
            batch=batch.index,
            documents=len(batch),
            attempts=attempts,
        )
        return BatchReceipt(batch_index=batch.index, documents=len(batch), attempts=attempts)

    def refresh(self, index: str) -> None:
        """Make every indexed document searchable."""
        self._client.indices.refresh(index=index)

    def count(self, index: str) -> int:
        """Number of documents in an index."""
        response = self._client.count(index=index)
        return int(response["count"])

    def _send(self, index: str, pending: dict[int, Document]) -> None:
        positions = list(pending)
        operations: list[Document] = []
        for position in positions:
            operations.append({"index": {"_index": index}})
            operations.append(pending[position])

        client = self._client
        if self._request_timeout is not None:
            client = client.options(request_timeout=self._request_timeout)

        try:
            response = client.bulk(operations=operations)
        except (EsConnectionError, ConnectionTimeout) as exc:
            raise TransientBulkError(f"Bulk request failed: {exc}") from exc
        except ApiError as exc:
            status = exc.meta.status
            if is_transient_status(status):
                raise TransientBulkError(
                    f"Bulk request failed: {exc.message}",
                    status=status,
                ) from exc
            raise DocumentRejectedError(
                None,
                status=status,
                reason=str(exc.message),
            ) from exc

        if not response["errors"]:
            return

        transient: list[int] = []
        last_status: int | None = None
        for position, item in zip(positions, response["items"], strict=True):
            result = next(iter(item.values()))
            status = int(result.get("status", 200))
            if status < 300:
                continue
            if is_transient_status(status):
                transient.append(position)
                last_status = status
                continue
            raise DocumentRejectedError(
                position,
                status=status,
                reason=_error_reason(result.get("error")),
            )

        if transient:
            raise TransientBulkError(
                f"{len(transient)} of {len(positions)} documents failed transiently",
                status=last_status,
                failed_positions=tuple(transient),
            )


def _error_reason(error: Any) -> str:
    if isinstance(error, dict):
        kind = error.get("type", "error")
        reason = error.get("reason")
        return f"{kind}: {reason}" if reason else str(kind)
    return str(error)
