"""Core data records shared between the store, the resolver and the cache."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from .versions import parse_version


class SupplyChainStatus(str, Enum):
    """Outcome of an automated supply-chain check on one version."""

    PASS = "pass"  # noqa: S105
    WARNING = "warning"
    FAIL = "fail"
    UNKNOWN = "unknown"

    @classmethod
    def parse(cls, raw: str | SupplyChainStatus | None) -> SupplyChainStatus:
        """Parse a stored status; anything missing or unrecognized is UNKNOWN."""
        if isinstance(raw, SupplyChainStatus):
            return raw
        if raw is None:
            return cls.UNKNOWN
        try:
            return cls(raw.strip().lower())
        except ValueError:
            return cls.UNKNOWN


class SupplyChainCheck(str, Enum):
    """The supply-chain checks tracked per version."""

    REGISTRY_INTEGRITY = "registry_integrity"
    INSTALL_SCRIPTS = "install_scripts"
    ENTROPY_ANALYSIS = "entropy_analysis"


@dataclass(frozen=True)
class SupplyChainChecks:
    """Supply-chain check statuses for one version."""

    registry_integrity: SupplyChainStatus = SupplyChainStatus.UNKNOWN
    install_scripts: SupplyChainStatus = SupplyChainStatus.UNKNOWN
    entropy_analysis: SupplyChainStatus = SupplyChainStatus.UNKNOWN

    @property
    def has_failure(self) -> bool:
        """Return whether any check failed. Warnings and unknowns never count."""
        return SupplyChainStatus.FAIL in (self.registry_integrity, self.install_scripts, self.entropy_analysis)


@dataclass(frozen=True)
class Dependency:
    """A package, interned by name."""

    id: int
    name: str
    latest_version: str | None = None
    latest_release_date: datetime | None = None


@dataclass(frozen=True)
class DependencyVersion:
    """One released version of one package."""

    id: int
    dependency_id: int
    version: str
    name: str = ""
    published_at: datetime | None = None
    checks: SupplyChainChecks = field(default_factory=SupplyChainChecks)

    def __str__(self) -> str:
        """Return ``name@version``."""
        return f"{self.name}@{self.version}"


@dataclass(frozen=True)
class DependencyEdge:
    """The parent version declares a runtime dependency resolved to the child version."""

    parent_version_id: int
    child_version_id: int


@dataclass(frozen=True)
class ProjectDependency:
    """A dependency as used by one project."""

    id: int
    project_id: int
    organization_id: int
    name: str
    version: str | None
    dependency_id: int | None
    dependency_version_id: int | None
    is_direct: bool = True


@dataclass(frozen=True)
class QuarantineRecord:
    """An organization's time-boxed hold on adopting new versions of a package."""

    quarantine_until: datetime | None = None
    is_current_version_quarantined: bool = False
    latest_allowed_version: str | None = None

    def is_active(self, now: datetime | None = None) -> bool:
        """Return whether the quarantine is currently in force."""
        if not self.is_current_version_quarantined or self.quarantine_until is None:
            return False
        if now is None:
            now = datetime.now(timezone.utc)
        until = self.quarantine_until
        if until.tzinfo is None:
            until = until.replace(tzinfo=timezone.utc)
        return until > now

    def disallows(self, version: str, now: datetime | None = None) -> bool:
        """Check if an active quarantine forbids `version`, i.e. it is newer than the latest allowed one."""
        if not self.is_active(now) or not self.latest_allowed_version:
            return False
        if version == self.latest_allowed_version:
            return False
        allowed = parse_version(self.latest_allowed_version)
        candidate = parse_version(version)
        return allowed is not None and candidate is not None and candidate > allowed


@dataclass(frozen=True)
class AdvisoryRecord:
    """A vulnerability advisory affecting some versions of one package."""

    osv_id: str
    severity: str | None = None
    summary: str | None = None
    aliases: tuple[str, ...] = ()
    affected_versions: Any = None
    fixed_versions: tuple[str, ...] = ()
    published_at: datetime | None = None
    modified_at: datetime | None = None


@dataclass(frozen=True)
class ResolutionResult:
    """The answer to "what is the newest safe version of this dependency"."""

    safe_version: str | None
    safe_version_id: int | None
    is_current: bool
    severity: str
    versions_checked: int
    message: str | None = None

    def to_obj(self) -> dict[str, Any]:
        """Convert to the camelCase dictionary callers consume."""
        return {
            "safeVersion": self.safe_version,
            "safeVersionId": self.safe_version_id,
            "isCurrent": self.is_current,
            "severity": self.severity,
            "versionsChecked": self.versions_checked,
            "message": self.message,
        }

    @classmethod
    def from_obj(cls, obj: dict[str, Any]) -> ResolutionResult:
        """Inverse of `to_obj`."""
        return cls(
            safe_version=obj["safeVersion"],
            safe_version_id=obj["safeVersionId"],
            is_current=bool(obj["isCurrent"]),
            severity=obj["severity"],
            versions_checked=int(obj["versionsChecked"]),
            message=obj.get("message"),
        )

    def dumps(self) -> str:
        """Serialize to a JSON string."""
        return json.dumps(self.to_obj())

    @classmethod
    def loads(cls, data: str | bytes) -> ResolutionResult:
        """Deserialize from `dumps` output."""
        return cls.from_obj(json.loads(data))
