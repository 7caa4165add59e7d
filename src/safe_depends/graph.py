"""Lazily materialized dependency graph of (package, version) nodes."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from sqlalchemy.exc import SQLAlchemyError

from .errors import PackageNotFoundError, RegistryError

if TYPE_CHECKING:
    from .db import DBStore
    from .registry import RegistryClient

logger = logging.getLogger(__name__)


class DependencyGraphCache:
    """Shared graph of dependency versions whose edges are discovered on first use.

    Nodes are interned versions addressed by their store identifier. The edges
    of a version are fetched from the registry the first time they are needed
    and persisted, so later resolutions reuse them. A version whose edge set
    is complete, possibly empty, is marked resolved and never queried again.
    """

    def __init__(self, store: DBStore, registry: RegistryClient) -> None:
        """Initialize the graph over a store and a registry."""
        self.store = store
        self.registry = registry

    def children_of(self, version_id: int) -> list[int]:
        """Return the identifiers of the versions `version_id` directly depends on.

        If the registry or the store is unavailable, whatever edges are already
        recorded are returned. Missing data is never turned into a verdict here.
        """
        try:
            if self.store.edges_resolved(version_id):
                return self.store.child_version_ids(version_id)
            return self._extend(version_id)
        except RegistryError as e:
            logger.warning("Could not discover dependencies of version %d: %s", version_id, e)
        except SQLAlchemyError as e:
            logger.warning("Could not load dependencies of version %d: %s", version_id, e)
        try:
            return self.store.child_version_ids(version_id)
        except SQLAlchemyError:
            return []

    def _extend(self, version_id: int) -> list[int]:
        parent = self.store.get_version(version_id)
        if parent is None:
            msg = f"Unknown dependency version {version_id}"
            raise PackageNotFoundError(msg)

        manifest = self.registry.get_manifest(parent.name, parent.version)
        child_ids: list[int] = []
        complete = True
        for child_name, child_range in sorted(manifest.items()):
            try:
                resolved = self.registry.resolve_range(child_name, child_range)
            except RegistryError as e:
                logger.info("Skipping dependency %s@%s of %s: %s", child_name, child_range, parent, e)
                complete = False
                continue
            child_dependency_id = self.store.ensure_dependency(child_name)
            child_ids.append(self.store.ensure_version(child_dependency_id, resolved))

        self.store.add_edges(version_id, child_ids)
        if complete:
            self.store.set_edges_resolved(version_id)
        else:
            logger.debug("Recorded a partial edge set for %s; it will be retried", parent)
        return self.store.child_version_ids(version_id)
