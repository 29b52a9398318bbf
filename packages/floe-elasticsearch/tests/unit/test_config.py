"""Unit tests for configuration models."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from floe_elasticsearch.config import (
    ConnectorConfig,
    LoaderConfig,
    QueryRunnerSettings,
    RetryPolicy,
    parse_duration,
)

DESCRIPTION_URI = "file:///opt/floe/tables"


class TestParseDuration:
    """Tests for parse_duration."""

    @pytest.mark.parametrize(
        ("value", "seconds"),
        [
            ("5s", 5.0),
            ("1m", 60.0),
            ("2m", 120.0),
            ("500ms", 0.5),
            ("1.5h", 5400.0),
            ("1d", 86400.0),
            (" 10 s ", 10.0),
        ],
    )
    def test_valid(self, value: str, seconds: float) -> None:
        assert parse_duration(value) == pytest.approx(seconds)

    @pytest.mark.parametrize("value", ["", "5", "s", "5 minutes", "-1s", "1w"])
    def test_invalid(self, value: str) -> None:
        with pytest.raises(ValueError, match="Invalid duration"):
            parse_duration(value)


class TestRetryPolicy:
    """Tests for RetryPolicy model."""

    def test_defaults(self) -> None:
        policy = RetryPolicy()

        assert policy.max_attempts == 3
        assert policy.max_retry_seconds == 5.0

    def test_max_wait_below_initial_rejected(self) -> None:
        """Test max_wait_seconds must be >= initial_wait_seconds."""
        with pytest.raises(ValidationError, match="max_wait_seconds"):
            RetryPolicy(initial_wait_seconds=3.0, max_wait_seconds=1.0)

    def test_attempts_must_be_positive(self) -> None:
        with pytest.raises(ValidationError):
            RetryPolicy(max_attempts=0)

    def test_frozen(self) -> None:
        policy = RetryPolicy()
        with pytest.raises(ValidationError):
            policy.max_attempts = 5  # type: ignore[misc]


class TestConnectorConfig:
    """Tests for ConnectorConfig model."""

    def test_defaults(self) -> None:
        config = ConnectorConfig(table_description_directory=DESCRIPTION_URI)

        assert config.default_schema == "tpch"
        assert config.scroll_size == 1000
        assert config.scroll_timeout == "1m"
        assert config.request_timeout == "2m"
        assert config.max_request_retries == 3
        assert config.max_request_retry_time == "5s"

    def test_catalog_properties_passed_through(self) -> None:
        """Test catalog properties keep the values exactly as given."""
        config = ConnectorConfig(
            table_description_directory=DESCRIPTION_URI,
            scroll_timeout="60s",
            max_request_retry_time="5000ms",
        )

        assert config.to_catalog_properties() == {
            "elasticsearch.default-schema-name": "tpch",
            "elasticsearch.table-description-directory": DESCRIPTION_URI,
            "elasticsearch.scroll-size": "1000",
            "elasticsearch.scroll-timeout": "60s",
            "elasticsearch.request-timeout": "2m",
            "elasticsearch.max-request-retries": "3",
            "elasticsearch.max-request-retry-time": "5000ms",
        }

    def test_retry_policy(self) -> None:
        """Test the bulk retry policy follows the request retry settings."""
        config = ConnectorConfig(
            table_description_directory=DESCRIPTION_URI,
            max_request_retries=4,
            max_request_retry_time="10s",
        )

        policy = config.retry_policy()

        assert policy.max_attempts == 4
        assert policy.max_retry_seconds == 10.0

    def test_request_timeout_seconds(self) -> None:
        config = ConnectorConfig(table_description_directory=DESCRIPTION_URI)

        assert config.request_timeout_seconds == 120.0

    @pytest.mark.parametrize("field", ["scroll_timeout", "request_timeout", "max_request_retry_time"])
    def test_invalid_duration_rejected(self, field: str) -> None:
        with pytest.raises(ValidationError, match="Invalid duration"):
            ConnectorConfig(table_description_directory=DESCRIPTION_URI, **{field: "soon"})

    def test_zero_duration_rejected(self) -> None:
        with pytest.raises(ValidationError, match="positive"):
            ConnectorConfig(table_description_directory=DESCRIPTION_URI, request_timeout="0s")

    def test_description_directory_required(self) -> None:
        with pytest.raises(ValidationError):
            ConnectorConfig()  # type: ignore[call-arg]

    def test_unknown_field_rejected(self) -> None:
        with pytest.raises(ValidationError):
            ConnectorConfig(table_description_directory=DESCRIPTION_URI, scroll_sizes=10)  # type: ignore[call-arg]


class TestLoaderConfig:
    """Tests for LoaderConfig model."""

    def test_defaults(self) -> None:
        config = LoaderConfig()

        assert config.batch_size == 1000
        assert config.refresh is True
        assert config.pipelined is True

    def test_batch_size_must_be_positive(self) -> None:
        with pytest.raises(ValidationError):
            LoaderConfig(batch_size=0)


class TestQueryRunnerSettings:
    """Tests for environment-driven settings."""

    def test_defaults(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("FLOE_ES_NODE_COUNT", raising=False)

        settings = QueryRunnerSettings()

        assert settings.node_count == 2
        assert settings.host == "localhost"
        assert settings.trino_port == 8080
        assert settings.elasticsearch_port == 9200

    def test_reads_environment(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Test FLOE_ES_ environment variables override defaults."""
        monkeypatch.setenv("FLOE_ES_NODE_COUNT", "3")
        monkeypatch.setenv("FLOE_ES_TRINO_PORT", "18080")
        monkeypatch.setenv("FLOE_ES_CONTAINER_PREFIX", "ci-run")

        settings = QueryRunnerSettings()

        assert settings.node_count == 3
        assert settings.trino_port == 18080
        assert settings.container_prefix == "ci-run"

    def test_invalid_port_rejected(self) -> None:
        with pytest.raises(ValidationError):
            QueryRunnerSettings(trino_port=70000)
