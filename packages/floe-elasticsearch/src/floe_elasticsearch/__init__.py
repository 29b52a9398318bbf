"""floe-elasticsearch: query runner for search connector testing.

This package boots a disposable query cluster next to an embedded search
node and loads benchmark tables into it:
- Docker-backed search node and multi-node query cluster
- Explicit plugin and catalog registration
- Table descriptions decoded against the engine's type system
- Batched bulk loading with bounded retries

Example:
    >>> from floe_elasticsearch import build_cluster
    >>> with build_cluster(2, ["nation", "region"]) as cluster:
    ...     print(cluster.base_url)
"""

from __future__ import annotations

__version__ = "0.1.0"

# Public API exports
__all__ = [
    # Bootstrapper
    "build_cluster",
    "RunningCluster",
    "TPCH_TABLES",
    # Loader
    "ResultLoader",
    "LoadResult",
    "LoadState",
    # Configuration models
    "ConnectorConfig",
    "LoaderConfig",
    "QueryRunnerSettings",
    "RetryPolicy",
    # Table descriptions
    "TableDescriptor",
    "TableDescriptionProvider",
    "resolve_descriptions",
    # Exceptions
    "FloeSearchError",
    "BootstrapError",
    "ConfigError",
    "LoadError",
]


def __getattr__(name: str) -> object:
    """Lazy import of public API members."""
    if name in ("build_cluster", "RunningCluster", "TPCH_TABLES"):
        from floe_elasticsearch import runner as runner_module

        return getattr(runner_module, name)
    if name in ("ResultLoader", "LoadResult", "LoadState"):
        from floe_elasticsearch import loader as loader_module

        return getattr(loader_module, name)
    if name in ("ConnectorConfig", "LoaderConfig", "QueryRunnerSettings", "RetryPolicy"):
        from floe_elasticsearch import config as config_module

        return getattr(config_module, name)
    if name in ("TableDescriptor", "TableDescriptionProvider", "resolve_descriptions"):
        from floe_elasticsearch import descriptions as descriptions_module

        return getattr(descriptions_module, name)
    if name in ("FloeSearchError", "BootstrapError", "ConfigError", "LoadError"):
        from floe_elasticsearch import errors as errors_module

        return getattr(errors_module, name)
    msg = f"module {__name__!r} has no attribute {name!r}"
    raise AttributeError(msg)
