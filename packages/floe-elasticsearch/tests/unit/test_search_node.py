"""Unit tests for the embedded search node."""

from __future__ import annotations

from unittest.mock import MagicMock, patch

import pytest

from floe_elasticsearch.config import QueryRunnerSettings
from floe_elasticsearch.errors import BootstrapError, ContainerError
from floe_elasticsearch.search_node import EmbeddedSearchNode


@pytest.fixture
def node() -> EmbeddedSearchNode:
    settings = QueryRunnerSettings(container_prefix="test-es", elasticsearch_port=19200, startup_timeout_seconds=1)
    return EmbeddedSearchNode(settings, network="test-net")


class TestEmbeddedSearchNode:
    def test_container_definition(self, node: EmbeddedSearchNode) -> None:
        assert node.container.name == "test-es-elasticsearch"
        assert node.container.network == "test-net"
        assert node.container.ports == {19200: 9200}
        assert node.container.env["discovery.type"] == "single-node"
        assert node.container.env["xpack.security.enabled"] == "false"

    def test_addresses(self, node: EmbeddedSearchNode) -> None:
        assert node.url == "http://localhost:19200"
        assert node.internal_host == "test-es-elasticsearch"
        assert node.internal_port == 9200

    @patch("floe_elasticsearch.search_node.wait_for_condition", return_value=True)
    @patch("floe_elasticsearch.containers.run_docker", return_value="abc")
    def test_start(self, mock_docker: MagicMock, mock_wait: MagicMock, node: EmbeddedSearchNode) -> None:
        node.start()

        assert node.container.container_id == "abc"
        mock_wait.assert_called_once()

    @patch("floe_elasticsearch.containers.run_docker")
    def test_container_failure(self, mock_docker: MagicMock, node: EmbeddedSearchNode) -> None:
        mock_docker.side_effect = ContainerError("run failed", container="test-es-elasticsearch", stderr="Conflict")

        with pytest.raises(BootstrapError) as exc_info:
            node.start()

        assert exc_info.value.component == "search_node"
        assert exc_info.value.cause == "Conflict"

    @patch("floe_elasticsearch.containers.subprocess.run")
    @patch("floe_elasticsearch.search_node.wait_for_condition", return_value=False)
    @patch("floe_elasticsearch.containers.run_docker", return_value="abc")
    def test_unhealthy_node_is_removed(
        self,
        mock_docker: MagicMock,
        mock_wait: MagicMock,
        mock_run: MagicMock,
        node: EmbeddedSearchNode,
    ) -> None:
        mock_run.return_value = MagicMock(stdout="", stderr="max virtual memory areas too low")

        with pytest.raises(BootstrapError, match="did not become healthy") as exc_info:
            node.start()

        assert "virtual memory" in (exc_info.value.cause or "")
        mock_docker.assert_called_with("rm", "-f", "test-es-elasticsearch", container="test-es-elasticsearch")
        assert node.container.container_id is None

    @patch("floe_elasticsearch.search_node.requests.get")
    @pytest.mark.parametrize(("status", "healthy"), [("green", True), ("yellow", True), ("red", False)])
    def test_is_healthy(self, mock_get: MagicMock, node: EmbeddedSearchNode, status: str, healthy: bool) -> None:
        mock_get.return_value = MagicMock(status_code=200, json=lambda: {"status": status})

        assert node.is_healthy() is healthy
        mock_get.assert_called_once_with("http://localhost:19200/_cluster/health", timeout=5)

    @patch("floe_elasticsearch.search_node.Elasticsearch")
    def test_client_is_reused_and_closed(self, mock_es: MagicMock, node: EmbeddedSearchNode) -> None:
        assert node.client() is node.client()
        mock_es.assert_called_once_with("http://localhost:19200")

        node.close()

        mock_es.return_value.close.assert_called_once()
