"""Package registry clients: the source of release lists, manifests and range resolution."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any

from requests import RequestException, Session

from .config import DEFAULT_REGISTRY_URL
from .errors import PackageNotFoundError, RegistryUnavailableError
from .versions import is_stable, max_satisfying, parse_spec, parse_version, stable_descending

logger = logging.getLogger(__name__)

HTTP_NOT_FOUND = 404


def _parse_timestamp(raw: object) -> datetime | None:
    if not isinstance(raw, str):
        return None
    try:
        return datetime.fromisoformat(raw)
    except ValueError:
        return None


class RegistryClient(ABC):
    """Read-only view of a package registry.

    All methods are idempotent reads. Failures are reported as
    `RegistryUnavailableError` (try again later) or `PackageNotFoundError`.
    """

    @abstractmethod
    def get_release_list(self, package: str) -> list[tuple[str, datetime | None]]:
        """Return every published version of `package` with its publication time."""
        raise NotImplementedError

    @abstractmethod
    def get_manifest(self, package: str, version: str) -> dict[str, str]:
        """Return the runtime dependencies declared by `package@version`, as name to range."""
        raise NotImplementedError

    @abstractmethod
    def resolve_range(self, package: str, version_range: str) -> str:
        """Return the one concrete version that `version_range` of `package` resolves to."""
        raise NotImplementedError

    def get_latest_release(self, package: str) -> tuple[str, datetime | None] | None:
        """Return the newest stable release of `package`, or None if it has none."""
        releases = dict(self.get_release_list(package))
        ordered = stable_descending(releases)
        if not ordered:
            return None
        return ordered[0], releases[ordered[0]]


class NPMRegistry(RegistryClient):
    """Client for the npm registry HTTP API."""

    def __init__(self, base_url: str = DEFAULT_REGISTRY_URL, timeout: float = 10.0, token: str | None = None) -> None:
        """Initialize the npm registry client.

        Args:
            base_url: Registry root, without a trailing slash
            timeout: Timeout in seconds applied to every request
            token: Optional bearer token for private registries

        """
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = Session()
        self.session.headers["Accept"] = "application/json"
        if token:
            self.session.headers["Authorization"] = f"Bearer {token}"

    @staticmethod
    def _escape(package: str) -> str:
        # scoped packages are addressed as @scope%2Fname
        return package.replace("/", "%2F")

    def _get(self, path: str, package: str) -> dict[str, Any]:
        url = f"{self.base_url}/{path}"
        try:
            response = self.session.get(url, timeout=self.timeout)
        except RequestException as e:
            msg = f"Error contacting {url}: {e!s}"
            raise RegistryUnavailableError(msg) from e
        if response.status_code == HTTP_NOT_FOUND:
            msg = f"{package} was not found at {url}"
            raise PackageNotFoundError(msg)
        try:
            response.raise_for_status()
            data = response.json()
        except (RequestException, ValueError) as e:
            msg = f"Unusable registry response from {url}: {e!s}"
            raise RegistryUnavailableError(msg) from e
        if not isinstance(data, dict):
            msg = f"Unexpected registry response from {url}"
            raise RegistryUnavailableError(msg)
        return data

    def _packument(self, package: str) -> dict[str, Any]:
        return self._get(self._escape(package), package)

    def get_release_list(self, package: str) -> list[tuple[str, datetime | None]]:
        """Return every published version of `package` with its publication time."""
        packument = self._packument(package)
        times = packument.get("time", {})
        return [(version, _parse_timestamp(times.get(version))) for version in packument.get("versions", {})]

    def get_manifest(self, package: str, version: str) -> dict[str, str]:
        """Return the runtime dependencies declared by `package@version`."""
        manifest = self._get(f"{self._escape(package)}/{version}", package)
        dependencies = manifest.get("dependencies") or {}
        return {str(name): str(spec) for name, spec in dependencies.items()}

    def resolve_range(self, package: str, version_range: str) -> str:
        """Resolve an npm range or dist-tag to the newest matching published version."""
        packument = self._packument(package)
        dist_tags = packument.get("dist-tags", {})
        if version_range in dist_tags:
            return str(dist_tags[version_range])
        try:
            spec = parse_spec(version_range or "*")
        except ValueError as e:
            raise PackageNotFoundError(str(e)) from e
        resolved = max_satisfying(packument.get("versions", {}), spec)
        if resolved is None:
            msg = f"No version of {package} satisfies {version_range!r}"
            raise PackageNotFoundError(msg)
        return resolved

    def get_latest_release(self, package: str) -> tuple[str, datetime | None] | None:
        """Return the newest stable release, preferring the ``latest`` dist-tag unless it is a pre-release."""
        packument = self._packument(package)
        times = packument.get("time", {})
        latest = packument.get("dist-tags", {}).get("latest")
        if isinstance(latest, str) and is_stable(latest):
            return latest, _parse_timestamp(times.get(latest))
        ordered = stable_descending(packument.get("versions", {}))
        if not ordered:
            logger.debug("%s has no stable releases", package)
            return None
        return ordered[0], _parse_timestamp(times.get(ordered[0]))


class InMemoryRegistry(RegistryClient):
    """A registry whose contents are given up front. Used for offline runs and tests."""

    def __init__(self) -> None:
        """Initialize an empty registry."""
        self._releases: dict[str, dict[str, datetime | None]] = {}
        self._manifests: dict[tuple[str, str], dict[str, str]] = {}

    def publish(
        self,
        package: str,
        version: str,
        dependencies: dict[str, str] | None = None,
        published_at: datetime | None = None,
    ) -> None:
        """Add a release to the registry."""
        self._releases.setdefault(package, {})[version] = published_at
        self._manifests[(package, version)] = dict(dependencies or {})

    def get_release_list(self, package: str) -> list[tuple[str, datetime | None]]:
        """Return every published version of `package` with its publication time."""
        if package not in self._releases:
            raise PackageNotFoundError(package)
        return list(self._releases[package].items())

    def get_manifest(self, package: str, version: str) -> dict[str, str]:
        """Return the runtime dependencies declared by `package@version`."""
        try:
            return dict(self._manifests[(package, version)])
        except KeyError:
            raise PackageNotFoundError(f"{package}@{version}") from None

    def resolve_range(self, package: str, version_range: str) -> str:
        """Resolve a range to the newest matching published version."""
        if package not in self._releases:
            raise PackageNotFoundError(package)
        try:
            spec = parse_spec(version_range or "*")
        except ValueError as e:
            raise PackageNotFoundError(str(e)) from e
        resolved = max_satisfying(self._releases[package], spec)
        if resolved is None or parse_version(resolved) is None:
            msg = f"No version of {package} satisfies {version_range!r}"
            raise PackageNotFoundError(msg)
        return resolved
