"""Plugins and catalog registrations of the query cluster.

A plugin provides connectors by name. A catalog is a named connector
instance plus its immutable configuration. The registry resolves every
catalog when it is created, so the query cluster only ever applies
complete registrations.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Protocol

from floe_elasticsearch.config import CATALOG_PROPERTY_PREFIX, ConnectorConfig
from floe_elasticsearch.descriptions import TableDescriptionProvider, TableDescriptor
from floe_elasticsearch.errors import BootstrapError

BENCHMARK_CONNECTOR = "tpch"
SEARCH_CONNECTOR = "elasticsearch"

CLIENT_SIDE_PROPERTIES = frozenset({"table-description-directory", "max-request-retries"})
ENGINE_PROPERTY_NAMES = {"max-request-retry-time": "max-retry-time"}


class Connector(Protocol):
    """A connector instance backing one catalog."""

    @property
    def connector_name(self) -> str: ...

    def engine_properties(self, properties: Mapping[str, str]) -> dict[str, str]: ...


class Plugin(Protocol):
    """Provides connectors to the query cluster."""

    @property
    def name(self) -> str: ...

    @property
    def connector_names(self) -> tuple[str, ...]: ...

    def create_connector(
        self,
        connector_name: str,
        catalog_name: str,
        properties: Mapping[str, str],
    ) -> Connector: ...


@dataclass(frozen=True)
class BenchmarkConnector:
    """The TPC-H benchmark data source. Takes no configuration."""

    connector_name: str = BENCHMARK_CONNECTOR

    def engine_properties(self, properties: Mapping[str, str]) -> dict[str, str]:
        return {}


@dataclass(frozen=True)
class SearchConnector:
    """The search connector with its table descriptions."""

    descriptions: TableDescriptionProvider
    config: ConnectorConfig
    connector_name: str = SEARCH_CONNECTOR

    def get_table(self, schema_name: str, table_name: str) -> TableDescriptor | None:
        """Resolve a logical table to its index description."""
        return self.descriptions.get(schema_name, table_name)

    def engine_properties(self, properties: Mapping[str, str]) -> dict[str, str]:
        """Properties understood by the engine's own search connector.

        Table descriptions and the retry count are enforced on the client
        side, so they are not sent. The retry time cap is sent under the
        engine's property name.
        """
        engine: dict[str, str] = {}
        for key, value in properties.items():
            name = key.removeprefix(CATALOG_PROPERTY_PREFIX)
            if name in CLIENT_SIDE_PROPERTIES:
                continue
            engine[CATALOG_PROPERTY_PREFIX + ENGINE_PROPERTY_NAMES.get(name, name)] = value
        return engine


class TpchPlugin:
    """Plugin providing the benchmark data connector."""

    name = "tpch"
    connector_names = (BENCHMARK_CONNECTOR,)

    def create_connector(
        self,
        connector_name: str,
        catalog_name: str,
        properties: Mapping[str, str],
    ) -> BenchmarkConnector:
        return BenchmarkConnector()


class ElasticsearchPlugin:
    """Plugin providing the search connector, bound to table descriptions.

    Example:
        >>> plugin = ElasticsearchPlugin(provider, connector_config)
        >>> cluster.install_plugin(plugin)
    """

    name = "elasticsearch"
    connector_names = (SEARCH_CONNECTOR,)

    def __init__(self, descriptions: TableDescriptionProvider, config: ConnectorConfig) -> None:
        self.descriptions = descriptions
        self.config = config

    def create_connector(
        self,
        connector_name: str,
        catalog_name: str,
        properties: Mapping[str, str],
    ) -> SearchConnector:
        """Create the search connector for a catalog.

        Raises:
            BootstrapError: If the catalog properties disagree with the
                configuration the plugin was built with.
        """
        expected = self.config.to_catalog_properties()
        mismatched = sorted(
            key for key, value in expected.items() if properties.get(key) != value
        )
        if mismatched:
            raise BootstrapError(
                f"Catalog {catalog_name} properties differ from connector configuration",
                component="catalog",
                cause=", ".join(mismatched),
            )
        return SearchConnector(descriptions=self.descriptions, config=self.config)


@dataclass(frozen=True)
class CatalogRegistration:
    """A catalog resolved to its connector and configuration."""

    catalog_name: str
    connector_name: str
    connector: Connector
    properties: Mapping[str, str] = field(default_factory=dict)


class CatalogRegistry:
    """Installed plugins and created catalogs.

    Example:
        >>> registry = CatalogRegistry()
        >>> registry.install_plugin(TpchPlugin())
        >>> registry.create_catalog("tpch", "tpch").connector_name
        'tpch'
    """

    def __init__(self) -> None:
        self._plugins: dict[str, Plugin] = {}
        self._catalogs: dict[str, CatalogRegistration] = {}

    def install_plugin(self, plugin: Plugin) -> None:
        """Make the plugin's connectors available to new catalogs.

        Raises:
            BootstrapError: If another plugin already provides one of the
                connectors.
        """
        for connector_name in plugin.connector_names:
            if connector_name in self._plugins:
                raise BootstrapError(
                    f"Connector {connector_name} is already installed",
                    component="plugin",
                    cause=plugin.name,
                )
        for connector_name in plugin.connector_names:
            self._plugins[connector_name] = plugin

    def create_catalog(
        self,
        catalog_name: str,
        connector_name: str,
        properties: Mapping[str, str] | None = None,
    ) -> CatalogRegistration:
        """Create a catalog over an installed connector.

        Raises:
            BootstrapError: If the catalog exists or the connector is not
                installed.
        """
        if catalog_name in self._catalogs:
            raise BootstrapError(
                f"Catalog {catalog_name} already exists",
                component="catalog",
            )
        plugin = self._plugins.get(connector_name)
        if plugin is None:
            raise BootstrapError(
                f"No plugin provides connector {connector_name}",
                component="catalog",
            )

        frozen_properties = MappingProxyType(dict(properties or {}))
        registration = CatalogRegistration(
            catalog_name=catalog_name,
            connector_name=connector_name,
            connector=plugin.create_connector(connector_name, catalog_name, frozen_properties),
            properties=frozen_properties,
        )
        self._catalogs[catalog_name] = registration
        return registration

    def get(self, catalog_name: str) -> CatalogRegistration | None:
        return self._catalogs.get(catalog_name)

    @property
    def catalog_names(self) -> list[str]:
        return sorted(self._catalogs)

    def __contains__(self, catalog_name: object) -> bool:
        return catalog_name in self._catalogs


def render_create_catalog(registration: CatalogRegistration) -> str:
    """Render the SQL statement that creates a catalog on the cluster.

    Only the properties the connector hands to the engine are rendered.

    Example:
        >>> render_create_catalog(registration)
        'CREATE CATALOG "tpch" USING tpch'
    """
    statement = f'CREATE CATALOG "{registration.catalog_name}" USING {registration.connector_name}'
    properties = registration.connector.engine_properties(registration.properties)
    if not properties:
        return statement
    entries = ", ".join(
        f'"{key}" = {_quote_literal(value)}' for key, value in sorted(properties.items())
    )
    return f"{statement} WITH ({entries})"


def _quote_literal(value: str) -> str:
    return "'" + value.replace("'", "''") + "'"
