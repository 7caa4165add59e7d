"""Periodic refresh of latest releases and vulnerability advisories."""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import TYPE_CHECKING

from sqlalchemy.exc import SQLAlchemyError
from tqdm import tqdm

from .errors import RegistryError

if TYPE_CHECKING:
    from .audit import AdvisoryProvider
    from .cache import ResultCache
    from .db import DBStore
    from .models import Dependency
    from .registry import RegistryClient

logger = logging.getLogger(__name__)


@dataclass
class RefreshReport:
    """Outcome of one refresh run."""

    processed: int = 0
    errors: int = 0
    advisories: int = 0
    """Number of advisories that were new or changed."""


def _as_utc(when: datetime | None) -> datetime | None:
    if when is None or when.tzinfo is not None:
        return when
    return when.replace(tzinfo=timezone.utc)


class DependencyRefresher:
    """Keeps the latest-release columns and the vulnerability ledger current.

    Registry requests run on a thread pool; all store writes happen on the
    calling thread.
    """

    def __init__(  # noqa: PLR0913
        self,
        store: DBStore,
        registry: RegistryClient,
        advisories: AdvisoryProvider,
        batch_size: int = 100,
        max_workers: int | None = None,
        cache: ResultCache | None = None,
    ) -> None:
        """Initialize the refresh job.

        Args:
            store: Store to update
            registry: Source of the latest releases
            advisories: Source of the vulnerability advisories
            batch_size: Number of packages per advisory query
            max_workers: Number of concurrent registry requests
            cache: If given, cached resolutions of packages whose advisories changed are dropped

        """
        self.store = store
        self.registry = registry
        self.advisories = advisories
        self.batch_size = batch_size
        self.max_workers = max_workers
        self.cache = cache

    def run(self) -> RefreshReport:
        """Refresh latest releases, then advisories."""
        report = RefreshReport()
        self.refresh_latest_releases(report)
        self.refresh_advisories(report)
        logger.info(
            "Refreshed %d package(s): %d advisory change(s), %d error(s)",
            report.processed,
            report.advisories,
            report.errors,
        )
        return report

    def refresh_latest_releases(self, report: RefreshReport) -> None:
        """Update the latest stable release of every package some project uses directly."""
        direct = self.store.direct_dependency_ids()
        dependencies = [d for d in self.store.all_dependencies() if d.id in direct]
        with (
            ThreadPoolExecutor(max_workers=self.max_workers) as executor,
            tqdm(desc="Checking latest releases", leave=False, unit=" packages") as t,
        ):
            futures = {executor.submit(self.registry.get_latest_release, d.name): d for d in dependencies}
            t.total = len(futures)
            for future in as_completed(futures):
                dependency = futures[future]
                t.update(1)
                try:
                    latest = future.result()
                    if latest is None:
                        logger.debug("%s has no stable release", dependency.name)
                    else:
                        self._record_latest(dependency, *latest)
                    report.processed += 1
                except (RegistryError, SQLAlchemyError) as e:
                    logger.warning("Failed to refresh the latest release of %s: %s", dependency.name, e)
                    report.errors += 1

    def _record_latest(self, dependency: Dependency, version: str, released_at: datetime | None) -> None:
        version_changed = version != dependency.latest_version
        if not version_changed and _as_utc(released_at) == _as_utc(dependency.latest_release_date):
            return
        self.store.update_latest_release(dependency.id, version, released_at)
        if version_changed:
            self.store.ensure_version(dependency.id, version, published_at=released_at)
            logger.info("New release of %s: %s", dependency.name, version)

    def refresh_advisories(self, report: RefreshReport) -> None:
        """Fetch the advisories of every known package and upsert them into the ledger."""
        ids_by_name: dict[str, list[int]] = {}
        for dependency in self.store.all_dependencies():
            ids_by_name.setdefault(dependency.name, []).append(dependency.id)
        names = sorted(ids_by_name)

        with tqdm(desc="Fetching advisories", leave=False, unit=" packages", total=len(names)) as t:
            for i in range(0, len(names), self.batch_size):
                chunk = names[i : i + self.batch_size]
                results = self.advisories.query_batch(chunk)
                for name in chunk:
                    t.update(1)
                    if name not in results:
                        report.errors += 1
                        continue
                    for dependency_id in ids_by_name[name]:
                        try:
                            changed = self.store.upsert_advisories(dependency_id, results[name])
                        except SQLAlchemyError as e:
                            logger.warning("Failed to store the advisories of %s: %s", name, e)
                            report.errors += 1
                            continue
                        report.advisories += changed
                        if changed and self.cache is not None:
                            try:
                                invalidated = self.cache.invalidate_dependency(self.store, dependency_id)
                            except SQLAlchemyError as e:
                                logger.warning("Failed to drop the cached results of %s: %s", name, e)
                                report.errors += 1
                                continue
                            logger.debug("%d advisory change(s) for %s; dropped %d cached result(s)", changed, name, invalidated)
