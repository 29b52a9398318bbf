"""Multi-node query cluster.

Runs one Trino coordinator and ``node_count - 1`` workers as containers on
the shared network. Catalogs are created at runtime with
``CREATE CATALOG``, which requires dynamic catalog management on every
node.
"""

from __future__ import annotations

import shutil
import tempfile
from collections.abc import Mapping
from contextlib import ExitStack
from pathlib import Path
from typing import TYPE_CHECKING, Any

import requests
import trino.dbapi

from floe_elasticsearch.catalogs import CatalogRegistration, CatalogRegistry, Plugin, render_create_catalog
from floe_elasticsearch.config import QueryRunnerSettings
from floe_elasticsearch.containers import DockerContainer, wait_for_condition
from floe_elasticsearch.descriptions import TableDescriptionCodec
from floe_elasticsearch.errors import BootstrapError, ContainerError, FloeSearchError
from floe_elasticsearch.observability import get_logger, span
from floe_elasticsearch.types import TypeRegistry

if TYPE_CHECKING:
    from structlog.stdlib import BoundLogger

INTERNAL_HTTP_PORT = 8080
CONFIG_DIR = "/etc/trino"
NODE_ENVIRONMENT = "floe"


def node_properties(node_id: str) -> dict[str, str]:
    return {
        "node.environment": NODE_ENVIRONMENT,
        "node.id": node_id,
        "node.data-dir": "/data/trino",
    }


def config_properties(*, coordinator: bool, coordinator_host: str, node_count: int) -> dict[str, str]:
    """Server configuration of one node.

    A single-node cluster schedules work on its coordinator; larger
    clusters leave the coordinator to planning.
    """
    properties = {
        "coordinator": str(coordinator).lower(),
        "http-server.http.port": str(INTERNAL_HTTP_PORT),
        "discovery.uri": f"http://{coordinator_host}:{INTERNAL_HTTP_PORT}",
        "catalog.management": "dynamic",
    }
    if coordinator:
        properties["node-scheduler.include-coordinator"] = str(node_count == 1).lower()
    return properties


def render_properties(properties: Mapping[str, str]) -> str:
    return "".join(f"{key}={value}\n" for key, value in properties.items())


class QueryCluster:
    """A disposable Trino cluster.

    Use as a context manager, or call start() and close().

    Example:
        >>> with QueryCluster(QueryRunnerSettings(), node_count=2, network="floe-es") as cluster:
        ...     cluster.install_plugin(TpchPlugin())
        ...     cluster.create_catalog("tpch", "tpch")
    """

    def __init__(
        self,
        settings: QueryRunnerSettings,
        *,
        node_count: int,
        network: str | None = None,
        shared_paths: tuple[Path, ...] = (),
        logger: BoundLogger | None = None,
    ) -> None:
        """Initialize QueryCluster.

        Args:
            settings: Container settings.
            node_count: Nodes in the cluster, coordinator included.
            network: Network shared with the search node.
            shared_paths: Host directories mounted read-only at the same
                path in every node, so file URIs resolve identically.
            logger: Optional structlog logger.
        """
        if node_count < 1:
            raise BootstrapError(
                f"Query cluster needs at least one node, got {node_count}",
                component="query_cluster",
            )
        self.settings = settings
        self.node_count = node_count
        self.network = network
        self.shared_paths = shared_paths
        self.registry = CatalogRegistry()
        self._logger = logger or get_logger(component="query_cluster")
        self._stack = ExitStack()
        self._config_dir: Path | None = None
        self.containers: list[DockerContainer] = []

    @property
    def coordinator_name(self) -> str:
        return f"{self.settings.container_prefix}-coordinator"

    @property
    def base_url(self) -> str:
        """Coordinator URL as seen from the host."""
        return f"http://{self.settings.host}:{self.settings.trino_port}"

    def start(self) -> None:
        """Start every node and wait until all of them are active.

        Raises:
            BootstrapError: If a node fails to start or the cluster does not
                become ready. Nodes already started are removed.
        """
        with span("start_query_cluster", attributes={"query.nodes": self.node_count}):
            with ExitStack() as stack:
                config_dir = Path(tempfile.mkdtemp(prefix=f"{self.settings.container_prefix}-"))
                stack.callback(shutil.rmtree, config_dir, ignore_errors=True)

                for container in self._build_containers(config_dir):
                    try:
                        container.start()
                    except ContainerError as exc:
                        raise BootstrapError(
                            f"Query node {container.name} failed to start",
                            component="query_cluster",
                            cause=exc.stderr or exc.message,
                        ) from exc
                    stack.callback(container.stop)
                    self.containers.append(container)

                self._wait_until_ready()
                self._config_dir = config_dir
                self._stack = stack.pop_all()

            self._logger.info(
                "query_cluster_ready",
                base_url=self.base_url,
                nodes=self.node_count,
            )

    def _build_containers(self, config_dir: Path) -> list[DockerContainer]:
        names = [self.coordinator_name] + [
            f"{self.settings.container_prefix}-worker-{i}" for i in range(1, self.node_count)
        ]
        containers = []
        for name in names:
            coordinator = name == self.coordinator_name
            node_dir = config_dir / name
            node_dir.mkdir(parents=True)
            (node_dir / "node.properties").write_text(render_properties(node_properties(name)))
            (node_dir / "config.properties").write_text(
                render_properties(
                    config_properties(
                        coordinator=coordinator,
                        coordinator_host=self.coordinator_name,
                        node_count=self.node_count,
                    )
                )
            )
            volumes = {
                str(node_dir / "node.properties"): f"{CONFIG_DIR}/node.properties",
                str(node_dir / "config.properties"): f"{CONFIG_DIR}/config.properties",
            }
            for path in self.shared_paths:
                volumes[str(path)] = str(path)
            containers.append(
                DockerContainer(
                    name=name,
                    image=self.settings.trino_image,
                    network=self.network,
                    ports={self.settings.trino_port: INTERNAL_HTTP_PORT} if coordinator else {},
                    volumes=volumes,
                )
            )
        return containers

    def _wait_until_ready(self) -> None:
        timeout = self.settings.startup_timeout_seconds
        if not wait_for_condition(self._coordinator_started, timeout=timeout, description="coordinator"):
            raise BootstrapError(
                "Coordinator did not finish starting",
                component="query_cluster",
            )
        if not wait_for_condition(
            lambda: self.active_nodes() == self.node_count,
            timeout=timeout,
            description="worker registration",
        ):
            raise BootstrapError(
                f"Expected {self.node_count} active nodes",
                component="query_cluster",
            )

    def _coordinator_started(self) -> bool:
        response = requests.get(f"{self.base_url}/v1/info", timeout=5)
        return response.status_code == 200 and response.json().get("starting") is False

    def active_nodes(self) -> int:
        rows = self.execute("SELECT count(*) FROM system.runtime.nodes WHERE state = 'active'")
        return int(rows[0][0])

    def connect(self, catalog: str | None = None, schema: str | None = None) -> Any:
        """Open a DB-API connection to the coordinator.

        Args:
            catalog: Session catalog.
            schema: Session schema.

        Returns:
            trino.dbapi.Connection.
        """
        return trino.dbapi.connect(
            host=self.settings.host,
            port=self.settings.trino_port,
            user=self.settings.user,
            catalog=catalog,
            schema=schema,
            http_scheme="http",
        )

    def execute(self, sql: str) -> list[Any]:
        """Run a statement and return all of its rows."""
        connection = self.connect()
        try:
            cursor = connection.cursor()
            cursor.execute(sql)
            return list(cursor.fetchall())
        finally:
            connection.close()

    def table_description_codec(self) -> TableDescriptionCodec:
        """Decoder for table descriptions using the cluster's type system."""
        return TableDescriptionCodec(TypeRegistry.default())

    def install_plugin(self, plugin: Plugin) -> None:
        self.registry.install_plugin(plugin)
        self._logger.info("plugin_installed", plugin=plugin.name)

    def create_catalog(
        self,
        catalog_name: str,
        connector_name: str,
        properties: Mapping[str, str] | None = None,
    ) -> CatalogRegistration:
        """Register a catalog and create it on the running cluster.

        Raises:
            BootstrapError: If the registration is invalid or the cluster
                rejects the catalog.
        """
        registration = self.registry.create_catalog(catalog_name, connector_name, properties)
        with span("create_catalog", attributes={"query.catalog": catalog_name}):
            try:
                self.execute(render_create_catalog(registration))
            except FloeSearchError:
                raise
            except Exception as exc:
                raise BootstrapError(
                    f"Cluster rejected catalog {catalog_name}",
                    component="catalog",
                    cause=str(exc),
                ) from exc
        return registration

    def close(self) -> None:
        """Remove every node and the generated configuration."""
        self._stack.close()
        self.containers.clear()
        self._config_dir = None

    def __enter__(self) -> QueryCluster:
        self.start()
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()
