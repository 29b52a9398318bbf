"""Pydantic configuration models for floe-elasticsearch.

This module provides:
- parse_duration: Duration strings ("5s", "1m", "500ms") to seconds
- RetryPolicy: Bulk submission retry bounds
- ConnectorConfig: Search connector catalog configuration
- LoaderConfig: Result-to-document loader settings
- QueryRunnerSettings: Environment-driven container settings
"""

from __future__ import annotations

import re

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

_DURATION_PATTERN = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*(ns|us|ms|s|m|h|d)\s*$")

_DURATION_UNITS: dict[str, float] = {
    "ns": 1e-9,
    "us": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
    "d": 86400.0,
}

# Key prefix the search connector reads its catalog properties from
CATALOG_PROPERTY_PREFIX = "elasticsearch."


def parse_duration(value: str) -> float:
    """Parse a duration string into seconds.

    Args:
        value: Duration such as "5s", "1m", "2.5h" or "500ms".

    Returns:
        Duration in seconds.

    Raises:
        ValueError: If the string is not a valid duration.

    Example:
        >>> parse_duration("2m")
        120.0
    """
    match = _DURATION_PATTERN.match(value)
    if match is None:
        msg = f"Invalid duration: {value!r} (expected e.g. '5s', '1m', '500ms')"
        raise ValueError(msg)
    amount, unit = match.groups()
    return float(amount) * _DURATION_UNITS[unit]


class RetryPolicy(BaseModel):
    """Retry bounds for bulk index submissions.

    A submission is attempted at most ``max_attempts`` times and stops
    retrying once ``max_retry_seconds`` of wall-clock time have elapsed
    since the first attempt, whichever comes first. Waits between attempts
    grow exponentially from ``initial_wait_seconds`` up to
    ``max_wait_seconds``.

    Example:
        >>> policy = RetryPolicy(max_attempts=3, max_retry_seconds=5.0)
        >>> policy.max_attempts
        3
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    max_attempts: int = Field(
        default=3,
        ge=1,
        le=100,
        description="Maximum number of submission attempts",
    )
    max_retry_seconds: float = Field(
        default=5.0,
        gt=0.0,
        description="Total wall-clock time allowed for retries",
    )
    initial_wait_seconds: float = Field(
        default=0.1,
        ge=0.0,
        le=30.0,
        description="Initial backoff wait time in seconds",
    )
    max_wait_seconds: float = Field(
        default=2.0,
        ge=0.0,
        le=300.0,
        description="Maximum backoff wait time in seconds",
    )

    @field_validator("max_wait_seconds")
    @classmethod
    def max_wait_must_exceed_initial(cls, v: float, info: object) -> float:
        """Validate that max_wait_seconds >= initial_wait_seconds."""
        data = getattr(info, "data", {})
        initial = data.get("initial_wait_seconds", 0.1)
        if v < initial:
            msg = f"max_wait_seconds ({v}) must be >= initial_wait_seconds ({initial})"
            raise ValueError(msg)
        return v


class ConnectorConfig(BaseModel):
    """Configuration of the search connector catalog.

    Values are kept exactly as they are handed to the connector; durations
    stay strings so the rendered catalog properties match the input.

    Attributes:
        default_schema: Schema for table descriptions that do not name one.
        table_description_directory: URI or path of the table descriptions.
        scroll_size: Documents per scroll page when reading from the index.
        scroll_timeout: Scroll context keep-alive.
        request_timeout: Timeout of each individual search node request.
        max_request_retries: Attempts per request before giving up.
        max_request_retry_time: Total time allowed for retrying a request.

    Example:
        >>> config = ConnectorConfig(table_description_directory="file:///tmp/tables")
        >>> config.to_catalog_properties()["elasticsearch.scroll-size"]
        '1000'
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    default_schema: str = Field(
        default="tpch",
        min_length=1,
        description="Default schema name",
    )
    table_description_directory: str = Field(
        ...,
        min_length=1,
        description="Location of table description documents (URI or path)",
    )
    scroll_size: int = Field(
        default=1000,
        ge=1,
        description="Number of documents per scroll page",
    )
    scroll_timeout: str = Field(
        default="1m",
        description="Scroll context keep-alive duration",
    )
    request_timeout: str = Field(
        default="2m",
        description="Per-request timeout duration",
    )
    max_request_retries: int = Field(
        default=3,
        ge=1,
        description="Maximum attempts per request",
    )
    max_request_retry_time: str = Field(
        default="5s",
        description="Total retry time allowed per request",
    )

    @field_validator("scroll_timeout", "request_timeout", "max_request_retry_time")
    @classmethod
    def validate_duration(cls, v: str) -> str:
        """Validate duration strings without normalizing them."""
        if parse_duration(v) <= 0:
            msg = f"Duration must be positive, got: {v}"
            raise ValueError(msg)
        return v

    @property
    def request_timeout_seconds(self) -> float:
        """Per-request timeout in seconds."""
        return parse_duration(self.request_timeout)

    def retry_policy(self) -> RetryPolicy:
        """Derive the bulk submission retry policy.

        Returns:
            RetryPolicy bounded by max_request_retries and
            max_request_retry_time.
        """
        return RetryPolicy(
            max_attempts=self.max_request_retries,
            max_retry_seconds=parse_duration(self.max_request_retry_time),
        )

    def to_catalog_properties(self) -> dict[str, str]:
        """Render the catalog configuration map.

        Returns:
            Connector property names mapped to their unmodified values.
        """
        values = {
            "default-schema-name": self.default_schema,
            "table-description-directory": self.table_description_directory,
            "scroll-size": str(self.scroll_size),
            "scroll-timeout": self.scroll_timeout,
            "request-timeout": self.request_timeout,
            "max-request-retries": str(self.max_request_retries),
            "max-request-retry-time": self.max_request_retry_time,
        }
        return {f"{CATALOG_PROPERTY_PREFIX}{key}": value for key, value in values.items()}


class LoaderConfig(BaseModel):
    """Settings of the result-to-document loader.

    Attributes:
        batch_size: Maximum documents per bulk submission. Independent of
            the connector's scroll size, which only governs reads.
        refresh: Refresh the index once all batches are acknowledged.
        pipelined: Read the next batch while the previous one is submitted.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    batch_size: int = Field(
        default=1000,
        ge=1,
        le=100_000,
        description="Maximum documents per bulk submission",
    )
    refresh: bool = Field(
        default=True,
        description="Refresh the target index after loading",
    )
    pipelined: bool = Field(
        default=True,
        description="Overlap batch reading with batch submission",
    )


class QueryRunnerSettings(BaseSettings):
    """Container settings for the query runner.

    Can be loaded from environment variables with FLOE_ES_ prefix.

    Example:
        >>> # From environment
        >>> settings = QueryRunnerSettings()
        >>>
        >>> # Explicit
        >>> settings = QueryRunnerSettings(node_count=3, trino_port=18080)
    """

    model_config = SettingsConfigDict(
        env_prefix="FLOE_ES_",
        env_file=".env",
        extra="ignore",
    )

    node_count: int = Field(
        default=2,
        ge=1,
        le=16,
        description="Query cluster nodes, coordinator included",
    )
    elasticsearch_image: str = Field(
        default="docker.elastic.co/elasticsearch/elasticsearch:8.15.3",
        description="Search node container image",
    )
    trino_image: str = Field(
        default="trinodb/trino:462",
        description="Query engine container image",
    )
    elasticsearch_port: int = Field(
        default=9200,
        ge=1,
        le=65535,
        description="Host port published for the search node",
    )
    trino_port: int = Field(
        default=8080,
        ge=1,
        le=65535,
        description="Host port published for the coordinator",
    )
    host: str = Field(
        default="localhost",
        description="Host the published ports are reachable on",
    )
    container_prefix: str = Field(
        default="floe-es",
        min_length=1,
        description="Prefix for container and network names",
    )
    startup_timeout_seconds: float = Field(
        default=180.0,
        gt=0.0,
        description="Time allowed for a container to become healthy",
    )
    batch_size: int = Field(
        default=1000,
        ge=1,
        description="Documents per bulk submission",
    )
    user: str = Field(
        default="floe",
        min_length=1,
        description="Query engine session user",
    )
