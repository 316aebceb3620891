"""
This submodule contains factory and configuration methods for loading flag catalogs from outside
sources.
"""

from flagengine.catalog import FlagCatalog
from flagengine.impl.integrations.files.file_catalog_source import (
    FileCatalogWatcher, load_catalog)


class Files:
    """Provides factory methods for reading flag definitions from local files."""

    @staticmethod
    def load_catalog(*paths: str) -> FlagCatalog:
        """Reads a :class:`flagengine.catalog.FlagCatalog` from one or more JSON or YAML files.

        This is meant to be called once at startup. Any problem with the files, including a single
        malformed flag definition, raises :class:`flagengine.FlagConfigurationError` so that the
        application does not start with flags it has misread.

        A file looks like this in YAML::

            flags:
              NEW_DASHBOARD_DESIGN:
                kind: percentage
                description: Updated dashboard with improved UX
                environments:
                  development: { enabled: true, percentage: 100 }
                  production:
                    enabled: true
                    percentage: 20
                    userSegments: { beta_users: true, internal: true }

        Segment entries must be booleans. A catalog that lists segments with numbers, such as
        ``beta_users: 100``, has to be converted before loading: use ``true`` for a segment that is
        let through and ``false`` (or no entry) for one that is not. A numeric entry is rejected.

        :param paths: paths of the source files
        """
        return load_catalog(paths)

    @staticmethod
    def new_catalog_watcher(engine, *paths: str, poll_interval: float = 1.0) -> FileCatalogWatcher:
        """Creates an object that reloads an engine's catalog when its source files change.

        Call ``start()`` on the returned object to begin polling and ``stop()`` to end it. A reload
        replaces the catalog atomically and clears the engine's result cache; if the changed files
        cannot be loaded, the engine keeps the catalog it has.

        :param engine: the :class:`flagengine.engine.EvaluationEngine` to update
        :param paths: paths of the source files
        :param poll_interval: the interval in seconds between checks of the files' modification times
        """
        return FileCatalogWatcher(engine, paths, poll_interval)
