"""Embedded search node.

Runs a single-node Elasticsearch container with security disabled and
exposes a client for loading data. The query cluster reaches the node by
its container name on the shared network.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import requests
from elasticsearch import Elasticsearch

from floe_elasticsearch.config import QueryRunnerSettings
from floe_elasticsearch.containers import DockerContainer, wait_for_condition
from floe_elasticsearch.errors import BootstrapError, ContainerError
from floe_elasticsearch.observability import get_logger, span

if TYPE_CHECKING:
    from structlog.stdlib import BoundLogger

# Port the node listens on inside the network
INTERNAL_HTTP_PORT = 9200


class EmbeddedSearchNode:
    """A disposable Elasticsearch node.

    Use as a context manager, or call start() and close().

    Example:
        >>> with EmbeddedSearchNode(QueryRunnerSettings(), network="floe-es") as node:
        ...     node.client().info()
    """

    def __init__(
        self,
        settings: QueryRunnerSettings,
        *,
        network: str | None = None,
        logger: BoundLogger | None = None,
    ) -> None:
        self.settings = settings
        self._logger = logger or get_logger(component="search_node")
        self._client: Elasticsearch | None = None
        self.container = DockerContainer(
            name=f"{settings.container_prefix}-elasticsearch",
            image=settings.elasticsearch_image,
            network=network,
            ports={settings.elasticsearch_port: INTERNAL_HTTP_PORT},
            env={
                "discovery.type": "single-node",
                "xpack.security.enabled": "false",
                "action.auto_create_index": "true",
                "ES_JAVA_OPTS": "-Xms512m -Xmx512m",
            },
        )

    @property
    def url(self) -> str:
        """URL of the node as seen from the host."""
        return f"http://{self.settings.host}:{self.settings.elasticsearch_port}"

    @property
    def internal_host(self) -> str:
        """Hostname of the node on the container network."""
        return self.container.name

    @property
    def internal_port(self) -> int:
        return INTERNAL_HTTP_PORT

    def start(self) -> None:
        """Start the node and wait until the cluster health is green or yellow.

        Raises:
            BootstrapError: If the container does not start or never
                becomes healthy. A partially started container is removed.
        """
        with span("start_search_node", attributes={"search.url": self.url}):
            try:
                self.container.start()
            except ContainerError as exc:
                raise BootstrapError(
                    "Search node failed to start",
                    component="search_node",
                    cause=exc.stderr or exc.message,
                ) from exc

            healthy = wait_for_condition(
                self.is_healthy,
                timeout=self.settings.startup_timeout_seconds,
                description="search node health",
            )
            if not healthy:
                logs = self.container.logs()
                self.close()
                raise BootstrapError(
                    "Search node did not become healthy",
                    component="search_node",
                    cause=logs[-500:] or None,
                )

    def is_healthy(self) -> bool:
        response = requests.get(f"{self.url}/_cluster/health", timeout=5)
        if response.status_code >= 500:
            return False
        return response.json().get("status") in ("green", "yellow")

    def client(self) -> Elasticsearch:
        """Client connected to the node, created on first use."""
        if self._client is None:
            self._client = Elasticsearch(self.url)
        return self._client

    def close(self) -> None:
        """Close the client and remove the container."""
        if self._client is not None:
            self._client.close()
            self._client = None
        self.container.stop()

    def __enter__(self) -> EmbeddedSearchNode:
        self.start()
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()
