"""Unit tests for logging and span helpers."""

from __future__ import annotations

import logging
from collections.abc import Iterator

import pytest
from structlog.testing import capture_logs

from floe_elasticsearch.observability import (
    CHATTY_LOGGERS,
    configure_logging,
    get_logger,
    load_operation,
    log_retry_attempt,
    span,
)


@pytest.fixture
def restore_logging() -> Iterator[None]:
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    client_levels = {name: logging.getLogger(name).level for name in CHATTY_LOGGERS}
    yield
    root.handlers[:] = handlers
    root.setLevel(level)
    for name, client_level in client_levels.items():
        logging.getLogger(name).setLevel(client_level)


class TestConfigureLogging:
    @pytest.mark.usefixtures("restore_logging")
    def test_quiets_http_clients(self) -> None:
        configure_logging(log_level="info")

        assert logging.getLogger().level == logging.INFO
        assert logging.getLogger("elastic_transport").level == logging.WARNING

    @pytest.mark.usefixtures("restore_logging")
    def test_debug_includes_http_clients(self) -> None:
        configure_logging(log_level="DEBUG", json_format=True)

        assert logging.getLogger("trino").level == logging.DEBUG

    def test_unknown_level(self) -> None:
        with pytest.raises(ValueError, match="Unknown log level: LOUD"):
            configure_logging(log_level="LOUD")


class TestSpan:
    def test_completed(self) -> None:
        with capture_logs() as logs, span("start_search_node", attributes={"search.url": "http://es"}):
            pass

        assert logs[-1]["event"] == "start_search_node_completed"
        assert logs[-1]["search.url"] == "http://es"

    def test_failed(self) -> None:
        with capture_logs() as logs:
            with pytest.raises(RuntimeError):
                with span("create_catalog"):
                    raise RuntimeError("catalog exists")

        assert logs[-1]["event"] == "create_catalog_failed"
        assert logs[-1]["error"] == "catalog exists"
        assert logs[-1]["log_level"] == "error"

    def test_batch_spans_stay_out_of_info_log(self) -> None:
        with capture_logs() as logs, load_operation("bulk_submit", index="nation", batch=2):
            pass

        assert [e["log_level"] for e in logs] == ["debug"]
        assert logs[0]["search.batch"] == 2


def test_retry_attempt_event() -> None:
    with capture_logs() as logs:
        log_retry_attempt("bulk_submit", 1, 3, 0.25, "HTTP 503")

    assert logs == [
        {
            "event": "bulk_submit_retrying",
            "log_level": "warning",
            "attempt": 1,
            "max_attempts": 3,
            "wait_seconds": 0.25,
            "error": "HTTP 503",
        }
    ]


def test_logger_binds_context() -> None:
    with capture_logs() as logs:
        get_logger(component="query_cluster").info("query_cluster_started")

    assert logs[0]["component"] == "query_cluster"
