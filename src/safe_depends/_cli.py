"""Command-line interface for safe-depends."""

from __future__ import annotations

import json
import logging
import os
import sys
from dataclasses import asdict

from sqlalchemy.exc import OperationalError

from .audit import OSVProject
from .cache import ResultCache, cache_store_from_url
from .config import Settings
from .db import DBStore
from .errors import ResolutionUnavailableError, ResolverInputError
from .logger import setup_logger
from .refresh import DependencyRefresher
from .registry import NPMRegistry
from .resolver import LatestSafeVersionResolver
from .safe_depends import version as safe_depends_version

logger = logging.getLogger(__name__)


def main() -> int:  # noqa: C901, PLR0911
    """Run safe-depends; returns the process exit status."""
    settings = Settings(_cli_parse_args=True)  # type: ignore[call-arg]
    setup_logger(settings.log_level)

    # If max_workers isn't provided, use the number of CPUs.
    # If that fails, use 1.
    if settings.max_workers == -1:
        settings.max_workers = os.cpu_count() or 1

    logger.debug("Starting safe-depends with settings: %s", settings)

    if settings.version:
        logger.info("safe-depends version %s", safe_depends_version())
        return 0

    config = settings.resolver
    cache = ResultCache(
        cache_store_from_url(settings.redis_url, timeout=config.cache_timeout),
        ttl_seconds=config.cache_ttl_seconds,
    )
    registry = NPMRegistry(settings.registry_url, timeout=config.registry_timeout)

    try:
        with DBStore(settings.database, timeout=config.store_timeout) as store:
            if settings.refresh:
                report = DependencyRefresher(
                    store,
                    registry,
                    OSVProject(),
                    batch_size=config.batch_size,
                    max_workers=settings.max_workers,
                    cache=cache,
                ).run()
                sys.stdout.write(json.dumps(asdict(report), indent=4) + "\n")
                return 1 if report.errors else 0

            if settings.organization is None or settings.project is None or settings.project_dependency is None:
                logger.error("--organization, --project and --project-dependency are required")
                return 1

            if settings.invalidate:
                cache.invalidate(settings.organization, settings.project, settings.project_dependency)
                logger.info("Dropped the cached results of project dependency %d", settings.project_dependency)
                return 0

            resolver = LatestSafeVersionResolver(store, registry, cache=cache, config=config)
            try:
                result = resolver.resolve(
                    settings.organization,
                    settings.project,
                    settings.project_dependency,
                    settings.severity,
                    exclude_banned=not settings.include_banned,
                    skip_cache=settings.skip_cache,
                )
            except ResolverInputError as e:
                logger.error("%s", e)  # noqa: TRY400
                return 1
            except ResolutionUnavailableError as e:
                logger.error("%s; try again later", e)  # noqa: TRY400
                return 1
            sys.stdout.write(json.dumps(result.to_obj(), indent=4) + "\n")
            return 0

    except OperationalError as e:
        msg = (
            f"Database error: {e!r}\n\nThis can occur if your database was created with an older version "
            f"of safe-depends. If you remove {settings.database} and try again, the database will "
            "automatically be rebuilt from scratch."
        )
        logger.exception(msg)
        return 1
