"""Custom exceptions for floe-elasticsearch.

This module defines the exception hierarchy:
- FloeSearchError (base)
- BootstrapError
- ContainerError
- ConfigError
- LoadError
- TransientBulkError
- DocumentRejectedError
- DocumentConversionError
"""

from __future__ import annotations


class FloeSearchError(Exception):
    """Base exception for the search connector query runner.

    Attributes:
        message: Human-readable error description.
        details: Optional additional context about the error.

    Example:
        >>> try:
        ...     build_cluster(2, ["nation"])
        ... except FloeSearchError as e:
        ...     print(f"Query runner error: {e}")
    """

    def __init__(self, message: str, *, details: dict[str, str] | None = None) -> None:
        """Initialize FloeSearchError.

        Args:
            message: Human-readable error description.
            details: Optional additional context about the error.
        """
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        """Return string representation with details if present."""
        if self.details:
            detail_str = ", ".join(f"{k}={v}" for k, v in self.details.items())
            return f"{self.message} ({detail_str})"
        return self.message


class BootstrapError(FloeSearchError):
    """Starting the search node or the query cluster failed.

    Raised when:
    - The embedded search node does not start or never becomes healthy
    - The query cluster does not start with the requested node count
    - A catalog cannot be registered

    Example:
        >>> try:
        ...     cluster = build_cluster(2, TPCH_TABLES)
        ... except BootstrapError as e:
        ...     print(f"Cluster not started: {e.component}")
    """

    def __init__(
        self,
        message: str,
        *,
        component: str | None = None,
        cause: str | None = None,
    ) -> None:
        """Initialize BootstrapError.

        Args:
            message: Human-readable error description.
            component: The component that failed (search_node, query_cluster).
            cause: The underlying cause of the failure.
        """
        details: dict[str, str] = {}
        if component:
            details["component"] = component
        if cause:
            details["cause"] = cause
        super().__init__(message, details=details)
        self.component = component
        self.cause = cause


class ContainerError(BootstrapError):
    """A docker command failed.

    Example:
        >>> try:
        ...     container.start()
        ... except ContainerError as e:
        ...     print(e.stderr)
    """

    def __init__(
        self,
        message: str,
        *,
        container: str | None = None,
        stderr: str | None = None,
    ) -> None:
        """Initialize ContainerError.

        Args:
            message: Human-readable error description.
            container: Name of the container the command targeted.
            stderr: Captured standard error of the docker command.
        """
        super().__init__(message, component=container, cause=stderr)
        self.container = container
        self.stderr = stderr


class ConfigError(FloeSearchError):
    """Table descriptions or connector configuration are invalid.

    Raised when:
    - The table description location cannot be resolved to a directory
    - A table description document is not valid JSON
    - A document is structurally invalid or references an unknown type

    Example:
        >>> try:
        ...     resolve_descriptions(config, codec)
        ... except ConfigError as e:
        ...     print(f"Bad description: {e.location}")
    """

    def __init__(
        self,
        message: str,
        *,
        location: str | None = None,
        cause: str | None = None,
    ) -> None:
        """Initialize ConfigError.

        Args:
            message: Human-readable error description.
            location: The file or directory that failed.
            cause: The underlying cause.
        """
        details: dict[str, str] = {}
        if location:
            details["location"] = location
        if cause:
            details["cause"] = cause
        super().__init__(message, details=details)
        self.location = location
        self.cause = cause


class LoadError(FloeSearchError):
    """Loading one benchmark table into the search node failed.

    Attributes:
        table: Name of the table being loaded.
        batch_index: Zero-based index of the failed batch, if any.
        row_position: Zero-based source row position of the offending
            document, for structural failures.
        cause: Message of the last underlying error.

    Example:
        >>> try:
        ...     loader.load("SELECT * FROM tpch.tiny.nation", "nation")
        ... except LoadError as e:
        ...     print(e.table, e.batch_index)
    """

    def __init__(
        self,
        table: str,
        message: str | None = None,
        *,
        batch_index: int | None = None,
        row_position: int | None = None,
        cause: str | None = None,
    ) -> None:
        """Initialize LoadError.

        Args:
            table: Name of the table being loaded.
            message: Optional custom error message.
            batch_index: Index of the batch that failed.
            row_position: Source row position of the offending document.
            cause: Message of the last underlying error.
        """
        msg = message or f"Failed to load table: {table}"
        details: dict[str, str] = {"table": table}
        if batch_index is not None:
            details["batch"] = str(batch_index)
        if row_position is not None:
            details["row"] = str(row_position)
        if cause:
            details["cause"] = cause
        super().__init__(msg, details=details)
        self.table = table
        self.batch_index = batch_index
        self.row_position = row_position
        self.cause = cause


class TransientBulkError(FloeSearchError):
    """A bulk submission failed in a way that may succeed on retry.

    Covers connection failures, timeouts, throttling (429) and 5xx
    responses, either for the whole request or for individual documents.

    Attributes:
        status: HTTP status, when the server answered.
        failed_positions: Source row positions of the documents that still
            need to be submitted. Empty when the whole request failed.
    """

    def __init__(
        self,
        message: str,
        *,
        status: int | None = None,
        failed_positions: tuple[int, ...] = (),
    ) -> None:
        details: dict[str, str] = {}
        if status is not None:
            details["status"] = str(status)
        if failed_positions:
            details["documents"] = str(len(failed_positions))
        super().__init__(message, details=details)
        self.status = status
        self.failed_positions = failed_positions


class DocumentRejectedError(FloeSearchError):
    """The search node rejected a document with a client error.

    Never retried: resubmitting the same document yields the same error.
    ``row_position`` is None when the whole request was rejected.
    """

    def __init__(
        self,
        row_position: int | None,
        *,
        status: int,
        reason: str,
    ) -> None:
        details = {"status": str(status)}
        if row_position is not None:
            details["row"] = str(row_position)
        super().__init__(f"Document rejected: {reason}", details=details)
        self.row_position = row_position
        self.status = status
        self.reason = reason


class DocumentConversionError(FloeSearchError):
    """A column value has no search-engine representation."""

    def __init__(self, column: str, value_type: str) -> None:
        super().__init__(
            f"Cannot convert column {column!r} of type {value_type}",
            details={"column": column, "type": value_type},
        )
        self.column = column
        self.value_type = value_type
