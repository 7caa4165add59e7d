"""Configuration settings for safe-depends."""

from __future__ import annotations

from pathlib import Path  # noqa: TC003

from pydantic import BaseModel, Field
from pydantic_settings import (
    BaseSettings,
    CliImplicitFlag,
    SettingsConfigDict,
)

from .safe_depends import APP_DIRS

DEFAULT_DB_PATH = Path(APP_DIRS.user_cache_dir) / "safe-depends.sqlite"
DEFAULT_REGISTRY_URL = "https://registry.npmjs.org"


class ResolverConfig(BaseModel):
    """Tunables for one latest-safe-version resolver instance."""

    max_candidates: int = Field(
        default=25,
        gt=0,
        description="""Number of newest stable releases to examine before
        giving up with "no safe version found".""",
    )
    batch_size: int = Field(
        default=100,
        gt=0,
        description="""Maximum number of identifiers per batched store query.""",
    )
    cache_ttl_seconds: int = Field(
        default=10 * 60,
        ge=0,
        description="""How long a resolution result stays in the result cache.""",
    )
    registry_timeout: float = Field(
        default=10.0,
        gt=0,
        description="""Timeout in seconds for each package registry request.""",
    )
    cache_timeout: float = Field(
        default=2.0,
        gt=0,
        description="""Timeout in seconds for each result cache request.""",
    )
    store_timeout: float = Field(
        default=10.0,
        gt=0,
        description="""Timeout in seconds for connecting to the database and waiting on its locks.""",
    )


class Settings(BaseSettings):
    """Settings for safe-depends."""

    database: Path = Field(
        default=DEFAULT_DB_PATH,
        description="""Alternative path to load/store the database, or
        ':memory:' to keep everything in memory rather than reading/writing
        to disk.""",
    )
    redis_url: str | None = Field(
        default=None,
        description="""Redis URL of the result cache, e.g.
        redis://localhost:6379/0. Without it every lookup is a cache miss.""",
    )
    registry_url: str = Field(
        default=DEFAULT_REGISTRY_URL,
        description="""Base URL of the npm-compatible package registry.""",
    )
    organization: int | None = Field(default=None, description="Organization identifier.")
    project: int | None = Field(default=None, description="Project identifier.")
    project_dependency: int | None = Field(
        default=None,
        description="""Project dependency to compute the latest safe version for.""",
    )
    severity: str = Field(
        default="high",
        description="""Severity floor: one of critical, high, medium or low.
        Versions with any vulnerability at or above it are rejected.""",
    )
    include_banned: CliImplicitFlag[bool] = Field(
        default=False,
        description="""Consider versions banned by the organization or the
        project's teams.""",
    )
    skip_cache: CliImplicitFlag[bool] = Field(
        default=False,
        description="""Recompute even if a cached result exists. The fresh
        result is still written back to the cache.""",
    )
    refresh: CliImplicitFlag[bool] = Field(
        default=False,
        description="""Run the version and vulnerability refresh job instead
        of resolving.""",
    )
    invalidate: CliImplicitFlag[bool] = Field(
        default=False,
        description="""Drop every cached result for the project dependency.""",
    )
    log_level: str = Field(default="info", description="Log level")
    max_workers: int = Field(
        default=-1,
        description="""Maximum number of registry requests the refresh job
            runs concurrently. If not provided, the maximum number of logical
            CPUs will be used.""",
    )
    version: CliImplicitFlag[bool] = Field(
        default=False,
        description="""Show the version of safe-depends and exit.""",
    )
    resolver: ResolverConfig = Field(default_factory=ResolverConfig)

    model_config = SettingsConfigDict(
        cli_prog_name="safe-depends",
        cli_kebab_case=True,
        env_prefix="SAFE_DEPENDS_",
        env_nested_delimiter="__",
        nested_model_default_partial_update=True,
    )
