"""Organizational exclusion policies: banned versions, quarantines and supply-chain checks."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterable

    from .db import DBStore
    from .models import DependencyVersion, QuarantineRecord, SupplyChainChecks


@dataclass(frozen=True)
class ExclusionPolicy:
    """Everything that can rule out a version regardless of its vulnerabilities."""

    banned: frozenset[str] = frozenset()
    quarantine: QuarantineRecord | None = None
    checks: dict[str, SupplyChainChecks] = field(default_factory=dict)

    @classmethod
    def load(
        cls,
        store: DBStore,
        organization_id: int,
        project_id: int,
        dependency_id: int,
        versions: Iterable[DependencyVersion],
        *,
        exclude_banned: bool = True,
    ) -> ExclusionPolicy:
        """Load the policy that applies to one package within one project."""
        banned = store.banned_versions(organization_id, project_id, dependency_id) if exclude_banned else set()
        return cls(
            banned=frozenset(banned),
            quarantine=store.quarantine_for(organization_id, dependency_id),
            checks={v.version: v.checks for v in versions},
        )

    def exclusion_reason(self, version: str, now: datetime | None = None) -> str | None:
        """Return why `version` is excluded, or None if the policy allows it."""
        if version in self.banned:
            return "banned"
        if self.quarantine is not None:
            if now is None:
                now = datetime.now(timezone.utc)
            if self.quarantine.disallows(version, now):
                return "quarantined"
        checks = self.checks.get(version)
        if checks is not None and checks.has_failure:
            return "failed supply-chain check"
        return None

    def excludes(self, version: str, now: datetime | None = None) -> bool:
        """Check whether the policy rules out `version`."""
        return self.exclusion_reason(version, now) is not None
