"""The latest-safe-version resolver."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import TYPE_CHECKING

from sqlalchemy.exc import SQLAlchemyError

from .audit import VulnerabilityLedger
from .cache import ResultCache, cache_key
from .config import ResolverConfig
from .errors import (
    DependencyVersionNotFoundError,
    ProjectDependencyNotFoundError,
    ResolutionCancelled,
    ResolutionUnavailableError,
)
from .graph import DependencyGraphCache
from .models import ResolutionResult
from .policy import ExclusionPolicy
from .severity import Severity, VulnCounts, exceeds_threshold
from .versions import stable_descending

if TYPE_CHECKING:
    import threading
    from collections.abc import Callable

    from .db import DBStore
    from .models import DependencyVersion, ProjectDependency
    from .registry import RegistryClient

logger = logging.getLogger(__name__)

VERSION_NOT_RESOLVED = "Dependency version not resolved"
NO_VERSIONS = "No versions found"
NO_SAFE_VERSION = "No recent versions meet this criteria"
CURRENT_IS_SAFE = "Current version is the latest safe version"


def _stable_newest_first(versions: list[DependencyVersion]) -> list[DependencyVersion]:
    by_version: dict[str, DependencyVersion] = {}
    for v in versions:
        by_version.setdefault(v.version, v)
    return [by_version[v] for v in stable_descending(by_version)]


class LatestSafeVersionResolver:
    """Finds the newest stable release of a dependency that is safe to adopt.

    A release is safe at a severity floor when no exclusion policy rules it
    out, it has no vulnerability at or above the floor, and neither do any of
    the versions it depends on. Releases are examined newest first, at most
    `ResolverConfig.max_candidates` of them, and the first safe one wins.

    The resolver keeps no state between calls besides what it writes to the
    store (discovered dependency edges) and to the result cache.
    """

    def __init__(
        self,
        store: DBStore,
        registry: RegistryClient,
        cache: ResultCache | None = None,
        config: ResolverConfig | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        """Initialize the resolver.

        Args:
            store: The relational store with versions, edges, advisories and policies
            registry: Registry used to discover the dependencies of a version
            cache: Result cache; by default nothing is cached
            config: Search window, batch size and cache TTL
            clock: Returns the current time, used to decide whether quarantines are active

        """
        self.store = store
        self.config = config if config is not None else ResolverConfig()
        self.cache = cache if cache is not None else ResultCache(ttl_seconds=self.config.cache_ttl_seconds)
        self.graph = DependencyGraphCache(store, registry)
        self.ledger = VulnerabilityLedger(store, batch_size=self.config.batch_size)
        self._clock = clock if clock is not None else (lambda: datetime.now(timezone.utc))

    def resolve(  # noqa: PLR0913
        self,
        organization_id: int,
        project_id: int,
        project_dependency_id: int,
        severity: str | Severity = Severity.HIGH,
        *,
        exclude_banned: bool = True,
        skip_cache: bool = False,
        cancel: threading.Event | None = None,
    ) -> ResolutionResult:
        """Find the latest safe version of a project dependency.

        Args:
            organization_id: Organization whose banned versions and quarantines apply
            project_id: Project owning the dependency; its teams' banned versions apply
            project_dependency_id: The dependency as used by the project
            severity: Severity floor (critical, high, medium or low)
            exclude_banned: Whether banned versions are ruled out
            skip_cache: Recompute even if a cached answer exists; the answer is still cached
            cancel: When set, the resolution stops at the next candidate or batch boundary

        Raises:
            ResolverInputError: for an unknown severity or project dependency
            ResolutionUnavailableError: if the version list or policies can not be loaded
            ResolutionCancelled: if `cancel` was set

        """
        floor = Severity.parse(severity)
        key = cache_key(organization_id, project_id, project_dependency_id, floor, exclude_banned)
        if not skip_cache:
            cached = self.cache.get(key)
            if cached is not None:
                logger.debug("Cache hit for %s", key)
                return cached

        result = self._resolve(organization_id, project_id, project_dependency_id, floor, exclude_banned, cancel)
        self.cache.put(key, result)
        return result

    def _resolve(  # noqa: PLR0913
        self,
        organization_id: int,
        project_id: int,
        project_dependency_id: int,
        floor: Severity,
        exclude_banned: bool,  # noqa: FBT001
        cancel: threading.Event | None,
    ) -> ResolutionResult:
        project_dependency = self._load_project_dependency(project_id, project_dependency_id)
        if project_dependency.dependency_version_id is None:
            return self._no_result(floor, 0, VERSION_NOT_RESOLVED)

        dependency_id, all_versions = self._load_versions(project_dependency)
        if not all_versions:
            return self._no_result(floor, 0, NO_VERSIONS)
        candidates = _stable_newest_first(all_versions)
        if not candidates:
            logger.info("%s has no stable release", project_dependency.name)
            return self._no_result(floor, 0, NO_SAFE_VERSION)

        try:
            policy = ExclusionPolicy.load(
                self.store,
                organization_id,
                project_id,
                dependency_id,
                candidates,
                exclude_banned=exclude_banned,
            )
        except SQLAlchemyError as e:
            msg = f"Could not load exclusion policies for dependency {dependency_id}: {e!s}"
            raise ResolutionUnavailableError(msg) from e

        candidates = candidates[: self.config.max_candidates]
        own_counts = self.ledger.counts_for_versions(dependency_id, [c.version for c in candidates])
        now = self._clock()

        versions_checked = 0
        for candidate in candidates:
            self._check_cancelled(cancel)
            versions_checked += 1

            reason = policy.exclusion_reason(candidate.version, now)
            if reason is not None:
                logger.debug("Skipping %s: %s", candidate, reason)
                continue

            if exceeds_threshold(own_counts.get(candidate.version, VulnCounts.ZERO), floor):
                logger.debug("Skipping %s: vulnerable at or above %s", candidate, floor)
                continue

            if not self._children_safe(candidate, floor, cancel):
                logger.debug("Skipping %s: a dependency is vulnerable at or above %s", candidate, floor)
                continue

            is_current = candidate.id == project_dependency.dependency_version_id
            logger.info("Latest safe version of %s at %s is %s", candidate.name, floor, candidate.version)
            return ResolutionResult(
                safe_version=candidate.version,
                safe_version_id=candidate.id,
                is_current=is_current,
                severity=str(floor),
                versions_checked=versions_checked,
                message=CURRENT_IS_SAFE if is_current else None,
            )

        logger.info("No safe version of %s at %s among %d candidate(s)", project_dependency.name, floor, versions_checked)
        return self._no_result(floor, versions_checked, NO_SAFE_VERSION)

    def _load_project_dependency(self, project_id: int, project_dependency_id: int) -> ProjectDependency:
        try:
            project_dependency = self.store.get_project_dependency(project_id, project_dependency_id)
        except SQLAlchemyError as e:
            msg = f"Could not load project dependency {project_dependency_id}: {e!s}"
            raise ResolutionUnavailableError(msg) from e
        if project_dependency is None:
            raise ProjectDependencyNotFoundError(project_id, project_dependency_id)
        return project_dependency

    def _load_versions(self, project_dependency: ProjectDependency) -> tuple[int, list[DependencyVersion]]:
        """Return the package id and every known version of it."""
        try:
            current = self.store.get_version(project_dependency.dependency_version_id)  # type: ignore[arg-type]
            if current is None:
                msg = f"Dependency version {project_dependency.dependency_version_id} not found"
                raise DependencyVersionNotFoundError(msg)
            if self.store.get_dependency(current.dependency_id) is None:
                msg = f"Dependency {current.dependency_id} not found"
                raise DependencyVersionNotFoundError(msg)
            all_versions = self.store.versions_for_dependency(current.dependency_id)
        except SQLAlchemyError as e:
            msg = f"Could not load the versions of {project_dependency.name}: {e!s}"
            raise ResolutionUnavailableError(msg) from e
        return current.dependency_id, all_versions

    def _children_safe(self, candidate: DependencyVersion, floor: Severity, cancel: threading.Event | None) -> bool:
        child_ids = self.graph.children_of(candidate.id)
        if not child_ids:
            return True
        self._check_cancelled(cancel)
        try:
            children = self.store.versions_by_ids(child_ids, batch_size=self.config.batch_size)
        except SQLAlchemyError as e:
            logger.warning("Could not load the dependencies of %s, ignoring them: %s", candidate, e)
            return True
        self._check_cancelled(cancel)
        counts = self.ledger.counts_batch((c.dependency_id, c.version) for c in children)
        for child in children:
            if exceeds_threshold(counts.get((child.dependency_id, child.version), VulnCounts.ZERO), floor):
                logger.debug("%s depends on vulnerable %s", candidate, child)
                return False
        return True

    @staticmethod
    def _check_cancelled(cancel: threading.Event | None) -> None:
        if cancel is not None and cancel.is_set():
            msg = "Resolution cancelled by caller"
            raise ResolutionCancelled(msg)

    @staticmethod
    def _no_result(floor: Severity, versions_checked: int, message: str) -> ResolutionResult:
        return ResolutionResult(
            safe_version=None,
            safe_version_id=None,
            is_current=False,
            severity=str(floor),
            versions_checked=versions_checked,
            message=message,
        )
