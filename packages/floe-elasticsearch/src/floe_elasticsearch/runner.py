"""Cluster bootstrapper for search connector testing.

build_cluster() brings up an embedded search node and a multi-node query
cluster, registers the benchmark and search catalogs, and loads the
requested benchmark tables into the search node. Every acquired resource
is released if a later step fails.

Example:
    >>> with build_cluster(NODE_COUNT, ["nation", "region"]) as cluster:
    ...     session = cluster.session()
    ...     session.cursor().execute("SELECT count(*) FROM nation").fetchall()
"""

from __future__ import annotations

import time
import uuid
from collections.abc import Callable, Iterable
from contextlib import ExitStack
from pathlib import Path
from typing import Any

from floe_elasticsearch.catalogs import (
    BENCHMARK_CONNECTOR,
    SEARCH_CONNECTOR,
    ElasticsearchPlugin,
    TpchPlugin,
)
from floe_elasticsearch.config import (
    CATALOG_PROPERTY_PREFIX,
    ConnectorConfig,
    LoaderConfig,
    QueryRunnerSettings,
)
from floe_elasticsearch.containers import DockerNetwork
from floe_elasticsearch.descriptions import (
    bundled_descriptions_location,
    resolve_descriptions,
    resolve_location,
)
from floe_elasticsearch.errors import BootstrapError, FloeSearchError
from floe_elasticsearch.loader import LoadResult, ResultLoader
from floe_elasticsearch.observability import get_logger, span
from floe_elasticsearch.query_cluster import QueryCluster
from floe_elasticsearch.search_node import EmbeddedSearchNode

TPCH_CATALOG = "tpch"
TPCH_SCHEMA = "tpch"
TINY_SCHEMA_NAME = "tiny"
SEARCH_CATALOG = "elasticsearch"
NODE_COUNT = 2

TPCH_TABLES = (
    "customer",
    "lineitem",
    "nation",
    "orders",
    "part",
    "partsupp",
    "region",
    "supplier",
)

SearchNodeFactory = Callable[..., EmbeddedSearchNode]
QueryClusterFactory = Callable[..., QueryCluster]
NetworkFactory = Callable[[str], DockerNetwork]


class RunningCluster:
    """A bootstrapped cluster with its loaded tables.

    Owns the search node, the query cluster and the network between them.
    close() releases all of them in reverse order of acquisition.
    """

    def __init__(
        self,
        search_node: EmbeddedSearchNode,
        query_cluster: QueryCluster,
        resources: ExitStack,
        load_results: list[LoadResult],
    ) -> None:
        self.search_node = search_node
        self.query_cluster = query_cluster
        self.load_results = load_results
        self._resources = resources

    @property
    def base_url(self) -> str:
        return self.query_cluster.base_url

    def session(self) -> Any:
        """Connection bound to the search catalog and the benchmark schema."""
        return self.query_cluster.connect(catalog=SEARCH_CATALOG, schema=TPCH_SCHEMA)

    def close(self) -> None:
        self._resources.close()

    def __enter__(self) -> RunningCluster:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


def create_connector_config(
    location: str | None = None,
    *,
    default_schema: str = TPCH_SCHEMA,
) -> ConnectorConfig:
    """Connector configuration over a table description location.

    Args:
        location: Directory or ``file://`` URI; defaults to the bundled
            TPC-H descriptions.
        default_schema: Schema for descriptions that do not name one.
    """
    return ConnectorConfig(
        default_schema=default_schema,
        table_description_directory=location or bundled_descriptions_location(),
        scroll_size=1000,
        scroll_timeout="1m",
        request_timeout="2m",
        max_request_retries=3,
        max_request_retry_time="5s",
    )


def load_tpch_table(
    query_cluster: QueryCluster,
    search_node: EmbeddedSearchNode,
    table_name: str,
    *,
    connector_config: ConnectorConfig,
    loader_config: LoaderConfig | None = None,
) -> LoadResult:
    """Copy one tiny TPC-H table into an index named after it."""
    connection = query_cluster.connect(catalog=TPCH_CATALOG, schema=TINY_SCHEMA_NAME)
    try:
        loader = ResultLoader(
            connection,
            search_node.client(),
            connector_config.retry_policy(),
            config=loader_config,
            request_timeout=connector_config.request_timeout_seconds,
        )
        return loader.load(
            f"SELECT * FROM {TPCH_CATALOG}.{TINY_SCHEMA_NAME}.{table_name}",
            table_name.lower(),
            table_name=table_name,
        )
    finally:
        connection.close()


def build_cluster(
    node_count: int = NODE_COUNT,
    tables: Iterable[str] = TPCH_TABLES,
    *,
    settings: QueryRunnerSettings | None = None,
    connector_config: ConnectorConfig | None = None,
    loader_config: LoaderConfig | None = None,
    search_node_factory: SearchNodeFactory = EmbeddedSearchNode,
    query_cluster_factory: QueryClusterFactory = QueryCluster,
    network_factory: NetworkFactory = DockerNetwork,
) -> RunningCluster:
    """Start a search node and a query cluster, then load benchmark tables.

    Args:
        node_count: Query cluster nodes, coordinator included.
        tables: TPC-H tables to load, in order.
        settings: Container settings; read from the environment if omitted.
        connector_config: Search catalog configuration; defaults to the
            bundled table descriptions.
        loader_config: Batch size and refresh settings of the loader;
            defaults to the settings' batch size.
        search_node_factory: Creates the search node.
        query_cluster_factory: Creates the query cluster.
        network_factory: Creates the network shared by all containers.

    Returns:
        RunningCluster owning every started resource.

    Raises:
        BootstrapError: If a component fails to start.
        ConfigError: If the table descriptions cannot be loaded.
        LoadError: If a table fails to load. No further tables are loaded.
    """
    settings = settings or QueryRunnerSettings()
    connector_config = connector_config or create_connector_config()
    loader_config = loader_config or LoaderConfig(batch_size=settings.batch_size)
    tables = list(tables)
    logger = get_logger().bind(nodes=node_count)

    with ExitStack() as stack:
        stack.push(_log_bootstrap_failure)
        try:
            with span("build_cluster", attributes={"query.nodes": node_count}):
                network = network_factory(f"{settings.container_prefix}-{uuid.uuid4().hex[:8]}")
                network.create()
                stack.callback(_release, network.remove, "network")

                search_node = search_node_factory(settings, network=network.name)
                search_node.start()
                stack.callback(_release, search_node.close, "search_node")

                description_dir = resolve_location(connector_config.table_description_directory)
                query_cluster = query_cluster_factory(
                    settings,
                    node_count=node_count,
                    network=network.name,
                    shared_paths=(Path(description_dir).resolve(),),
                )
                query_cluster.start()
                stack.callback(_release, query_cluster.close, "query_cluster")

                query_cluster.install_plugin(TpchPlugin())
                query_cluster.create_catalog(TPCH_CATALOG, BENCHMARK_CONNECTOR)

                descriptions = resolve_descriptions(
                    connector_config,
                    query_cluster.table_description_codec(),
                )
                query_cluster.install_plugin(ElasticsearchPlugin(descriptions, connector_config))
                properties = {
                    **connector_config.to_catalog_properties(),
                    f"{CATALOG_PROPERTY_PREFIX}host": search_node.internal_host,
                    f"{CATALOG_PROPERTY_PREFIX}port": str(search_node.internal_port),
                }
                query_cluster.create_catalog(SEARCH_CATALOG, SEARCH_CONNECTOR, properties)

                load_results = _load_tables(
                    query_cluster,
                    search_node,
                    tables,
                    connector_config=connector_config,
                    loader_config=loader_config,
                    logger=logger,
                )
        except FloeSearchError:
            raise
        except Exception as exc:
            raise BootstrapError("Cluster bootstrap failed", cause=str(exc)) from exc

        resources = stack.pop_all()

    logger.info("cluster_ready", base_url=query_cluster.base_url, tables=len(load_results))
    return RunningCluster(search_node, query_cluster, resources, load_results)


def _load_tables(
    query_cluster: QueryCluster,
    search_node: EmbeddedSearchNode,
    tables: list[str],
    *,
    connector_config: ConnectorConfig,
    loader_config: LoaderConfig,
    logger: Any,
) -> list[LoadResult]:
    logger.info("loading_tpch_tables", tables=tables)
    start = time.perf_counter()
    results = []
    for table in tables:
        table_start = time.perf_counter()
        result = load_tpch_table(
            query_cluster,
            search_node,
            table,
            connector_config=connector_config,
            loader_config=loader_config,
        )
        logger.info(
            "table_imported",
            table=table,
            rows=result.rows_loaded,
            elapsed_seconds=round(time.perf_counter() - table_start, 3),
        )
        results.append(result)
    logger.info(
        "tpch_tables_loaded",
        tables=len(results),
        elapsed_seconds=round(time.perf_counter() - start, 3),
    )
    return results


def _release(close: Callable[[], None], component: str) -> None:
    """Release one resource; failures are logged and do not stop teardown."""
    try:
        close()
    except Exception as exc:
        get_logger().warning("resource_release_failed", component=component, error=str(exc))


def _log_bootstrap_failure(exc_type: Any, exc: BaseException | None, tb: Any) -> bool:
    if exc is not None:
        get_logger().error("cluster_bootstrap_failed", error=str(exc))
    return False
