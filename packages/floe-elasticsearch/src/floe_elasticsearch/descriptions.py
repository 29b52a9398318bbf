"""Table descriptions for the search connector.

A table description binds a logical table (schema + name) to a physical
index and lists its columns. Descriptions are JSON documents, one per
table, stored in a directory:

    {
        "tableName": "nation",
        "schemaName": "tpch",
        "index": "nation",
        "columns": [
            {"name": "nationkey", "type": "bigint"},
            {"name": "name", "type": "varchar(25)"}
        ]
    }

``schemaName`` defaults to the connector's default schema and ``index``
defaults to the lower-cased table name.
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator
from importlib import resources
from pathlib import Path
from urllib.parse import urlparse
from urllib.request import url2pathname

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from floe_elasticsearch.config import ConnectorConfig
from floe_elasticsearch.errors import ConfigError
from floe_elasticsearch.observability import get_logger
from floe_elasticsearch.types import TypeRegistry

DESCRIPTION_SUFFIX = ".json"


class ColumnDescriptor(BaseModel):
    """A column of a described table.

    Attributes:
        name: Column name; becomes the document field name.
        type: Canonical type signature.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    name: str = Field(..., min_length=1)
    type: str = Field(..., min_length=1)


class TableDescriptor(BaseModel):
    """Mapping of a logical table to a search index.

    Attributes:
        table_name: Logical table name.
        schema_name: Schema the table is exposed under.
        index: Physical index name, always lower-case.
        columns: Columns in declaration order.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    table_name: str = Field(..., min_length=1)
    schema_name: str = Field(..., min_length=1)
    index: str = Field(..., min_length=1)
    columns: tuple[ColumnDescriptor, ...] = Field(..., min_length=1)

    @field_validator("index")
    @classmethod
    def index_must_be_lower_case(cls, v: str) -> str:
        """Index names are lower-case in the search engine."""
        if v != v.lower():
            msg = f"Index name must be lower-case, got: {v}"
            raise ValueError(msg)
        return v

    @property
    def column_names(self) -> tuple[str, ...]:
        return tuple(c.name for c in self.columns)


class _RawColumn(BaseModel):
    model_config = ConfigDict(extra="ignore")

    name: str = Field(..., min_length=1)
    type: str = Field(..., min_length=1)


class _RawTableDescription(BaseModel):
    # Older descriptions carry host/port/cluster keys; those are ignored.
    model_config = ConfigDict(extra="ignore")

    tableName: str = Field(..., min_length=1)  # noqa: N815
    schemaName: str | None = None  # noqa: N815
    index: str | None = None
    columns: list[_RawColumn] = Field(..., min_length=1)


class TableDescriptionCodec:
    """Decode table description documents.

    Column types are checked against the query engine's type registry and
    stored in canonical form.

    Example:
        >>> codec = TableDescriptionCodec(TypeRegistry.default())
        >>> desc = codec.decode('{"tableName": "Nation", "columns": '
        ...                     '[{"name": "n", "type": "BIGINT"}]}', default_schema="tpch")
        >>> desc.index, desc.columns[0].type
        ('nation', 'bigint')
    """

    def __init__(self, registry: TypeRegistry) -> None:
        self._registry = registry

    def decode(self, text: str | bytes, *, default_schema: str) -> TableDescriptor:
        """Decode one description document.

        Args:
            text: JSON document.
            default_schema: Schema used when the document names none.

        Returns:
            The decoded TableDescriptor.

        Raises:
            ValueError: If the document is not valid JSON, is structurally
                invalid, or references an unknown type.
        """
        try:
            raw = _RawTableDescription.model_validate_json(text)
        except ValidationError as exc:
            msg = f"Invalid table description: {_first_error(exc)}"
            raise ValueError(msg) from exc

        columns = tuple(
            ColumnDescriptor(name=c.name, type=str(self._registry.parse(c.type)))
            for c in raw.columns
        )
        names = [c.name for c in columns]
        duplicates = sorted({n for n in names if names.count(n) > 1})
        if duplicates:
            msg = f"Duplicate columns in {raw.tableName}: {', '.join(duplicates)}"
            raise ValueError(msg)

        return TableDescriptor(
            table_name=raw.tableName,
            schema_name=raw.schemaName or default_schema,
            index=(raw.index or raw.tableName).lower(),
            columns=columns,
        )


class TableDescriptionProvider:
    """Table descriptions of one catalog, keyed by schema and table name.

    Lookups are exact-match on the stored names.
    """

    def __init__(self, descriptors: Iterable[TableDescriptor]) -> None:
        self._tables: dict[tuple[str, str], TableDescriptor] = {}
        for descriptor in descriptors:
            key = (descriptor.schema_name, descriptor.table_name)
            if key in self._tables:
                raise ConfigError(
                    "Duplicate table description",
                    location=f"{key[0]}.{key[1]}",
                )
            self._tables[key] = descriptor

    def get(self, schema_name: str, table_name: str) -> TableDescriptor | None:
        """Return the description of a table, or None if it is not described."""
        return self._tables.get((schema_name, table_name))

    def all_tables(self) -> list[TableDescriptor]:
        return [self._tables[key] for key in sorted(self._tables)]

    def schema_names(self) -> set[str]:
        return {schema for schema, _ in self._tables}

    def __contains__(self, key: object) -> bool:
        return key in self._tables

    def __iter__(self) -> Iterator[TableDescriptor]:
        return iter(self.all_tables())

    def __len__(self) -> int:
        return len(self._tables)


def bundled_descriptions_location() -> str:
    """Return the ``file://`` URI of the bundled TPC-H table descriptions."""
    path = Path(str(resources.files("floe_elasticsearch") / "resources" / "queryrunner"))
    return path.resolve().as_uri()


def resolve_location(location: str) -> Path:
    """Resolve a description location to a filesystem directory.

    Args:
        location: A ``file://`` URI or a filesystem path.

    Returns:
        The directory path.

    Raises:
        ConfigError: If the location is not a local file location or is not
            an existing directory.
    """
    parsed = urlparse(location)
    if parsed.scheme == "file":
        if parsed.netloc not in ("", "localhost"):
            raise ConfigError("Remote file URIs are not supported", location=location)
        path = Path(url2pathname(parsed.path))
    elif parsed.scheme and len(parsed.scheme) > 1:
        # Single-letter schemes are Windows drive letters
        raise ConfigError(
            f"Unsupported location scheme: {parsed.scheme}",
            location=location,
        )
    else:
        path = Path(location)

    if not path.is_dir():
        raise ConfigError("Table description directory not found", location=str(path))
    return path


def resolve_descriptions(
    config: ConnectorConfig,
    codec: TableDescriptionCodec,
) -> TableDescriptionProvider:
    """Load all table descriptions of a connector configuration.

    Args:
        config: Connector configuration naming the description directory
            and the default schema.
        codec: Decoder obtained from the query cluster's metadata.

    Returns:
        Provider over every description in the directory.

    Raises:
        ConfigError: If the directory cannot be resolved or any document
            fails to decode.
    """
    logger = get_logger()
    directory = resolve_location(config.table_description_directory)

    descriptors: list[TableDescriptor] = []
    for path in sorted(directory.glob(f"*{DESCRIPTION_SUFFIX}")):
        try:
            descriptor = codec.decode(path.read_bytes(), default_schema=config.default_schema)
        except (OSError, ValueError) as exc:
            logger.error("table_description_invalid", path=str(path), error=str(exc))
            raise ConfigError(
                "Invalid table description",
                location=str(path),
                cause=str(exc),
            ) from exc
        descriptors.append(descriptor)

    provider = TableDescriptionProvider(descriptors)
    logger.info(
        "table_descriptions_loaded",
        directory=str(directory),
        tables=len(provider),
        schemas=sorted(provider.schema_names()),
    )
    return provider


def _first_error(exc: ValidationError) -> str:
    error = exc.errors()[0]
    loc = ".".join(str(x) for x in error["loc"])
    return f"{loc}: {error['msg']}" if loc else error["msg"]
