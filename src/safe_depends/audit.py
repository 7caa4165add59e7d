"""Vulnerability ledger and advisory providers."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from datetime import datetime
from typing import TYPE_CHECKING, Any, ClassVar

from requests import RequestException, get, post
from sqlalchemy.exc import SQLAlchemyError

from .models import AdvisoryRecord
from .severity import VulnCounts, normalize_severity
from .versions import fixed_versions, is_version_affected

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence

    from .db import DBStore

logger = logging.getLogger(__name__)


def count_vulnerabilities(version: str, advisories: Iterable[AdvisoryRecord]) -> VulnCounts:
    """Count the advisories affecting `version`, per severity tier."""
    counts = VulnCounts.ZERO
    for advisory in advisories:
        if is_version_affected(version, advisory.affected_versions):
            counts = counts.add(normalize_severity(advisory.severity))
    return counts


class VulnerabilityLedger:
    """Derives per-version vulnerability counts from stored advisories.

    Counts are always computed in batch: one store query per chunk of
    packages, never one per version. If the store can not be read the affected
    versions get no counts at all, and callers fall back to `VulnCounts.ZERO`.
    """

    def __init__(self, store: DBStore, batch_size: int = 100) -> None:
        """Initialize the ledger."""
        self.store = store
        self.batch_size = batch_size

    def counts_for_versions(self, dependency_id: int, versions: Iterable[str]) -> dict[str, VulnCounts]:
        """Get the counts of many versions of one package."""
        return {
            version: counts
            for (_, version), counts in self.counts_batch((dependency_id, v) for v in versions).items()
        }

    def counts_batch(self, pairs: Iterable[tuple[int, str]]) -> dict[tuple[int, str], VulnCounts]:
        """Get the counts of many ``(dependency_id, version)`` pairs."""
        pairs = list(dict.fromkeys(pairs))
        if not pairs:
            return {}
        dependency_ids = list(dict.fromkeys(dep_id for dep_id, _ in pairs))
        try:
            advisories = self.store.advisories_for(dependency_ids, batch_size=self.batch_size)
        except SQLAlchemyError as e:
            logger.warning("Could not load advisories for %d package(s): %s", len(dependency_ids), e)
            return {}
        return {(dep_id, version): count_vulnerabilities(version, advisories[dep_id]) for dep_id, version in pairs}


def _parse_timestamp(raw: object) -> datetime | None:
    if not isinstance(raw, str):
        return None
    try:
        return datetime.fromisoformat(raw)
    except ValueError:
        return None


class OSVVulnerability:
    """Represents a vulnerability from the OSV project."""

    """Additional keys available from the OSV Vulnerability db."""
    EXTRA_KEYS: ClassVar[list[str]] = [
        "published",
        "modified",
        "withdrawn",
        "related",
        "details",
        "affected",
        "references",
        "severity",
        "database_specific",
    ]

    def __init__(self, osv_dict: dict[str, Any]) -> None:
        """Initialize OSV vulnerability from dictionary."""
        self.id: str = osv_dict["id"]
        self.aliases: list[str] = list(osv_dict.get("aliases", []))
        # Get the first available information as summary (N/A if none)
        self.summary: str = osv_dict.get("summary", "") or osv_dict.get("details", "") or "N/A"
        for k in OSVVulnerability.EXTRA_KEYS:
            setattr(self, k, osv_dict.get(k))

    @property
    def severity_label(self) -> str | None:
        """Return the GitHub-style severity label (LOW, MODERATE, HIGH, CRITICAL), if any."""
        database_specific = getattr(self, "database_specific", None) or {}
        label = database_specific.get("severity")
        return label if isinstance(label, str) else None

    def affected_entries(self, package: str, ecosystem: str) -> list[dict[str, Any]]:
        """Return the ``affected`` entries that describe `package`."""
        return [
            entry
            for entry in getattr(self, "affected", None) or ()
            if isinstance(entry, dict)
            and entry.get("package", {}).get("name") == package
            and entry.get("package", {}).get("ecosystem", ecosystem) == ecosystem
        ]

    def to_record(self, package: str, ecosystem: str) -> AdvisoryRecord:
        """Convert to a ledger record for one package."""
        affected = self.affected_entries(package, ecosystem)
        return AdvisoryRecord(
            osv_id=self.id,
            severity=self.severity_label,
            summary=self.summary,
            aliases=tuple(self.aliases),
            affected_versions=affected or None,
            fixed_versions=tuple(fixed_versions(affected)),
            published_at=_parse_timestamp(getattr(self, "published", None)),
            modified_at=_parse_timestamp(getattr(self, "modified", None)),
        )


class AdvisoryProvider(ABC):
    """Interface of an advisory source that can be queried for many packages at once."""

    @abstractmethod
    def query_batch(self, packages: Sequence[str]) -> dict[str, list[AdvisoryRecord]]:
        """Return the advisories of every package in `packages`.

        Packages that could not be queried are missing from the result; packages
        without advisories map to an empty list.
        """
        raise NotImplementedError


class OSVProject(AdvisoryProvider):
    """OSV project advisory provider."""

    QUERY_BATCH_URL = "https://api.osv.dev/v1/querybatch"
    VULN_URL = "https://api.osv.dev/v1/vulns/{id}"

    def __init__(self, ecosystem: str = "npm", timeout: float = 30.0) -> None:
        """Initialize the provider for one ecosystem."""
        self.ecosystem = ecosystem
        self.timeout = timeout
        self._details: dict[str, OSVVulnerability | None] = {}

    def _hydrate(self, vuln_id: str) -> OSVVulnerability | None:
        if vuln_id not in self._details:
            try:
                r = get(OSVProject.VULN_URL.format(id=vuln_id), timeout=self.timeout)
                r.raise_for_status()
                self._details[vuln_id] = OSVVulnerability(r.json())
            except (RequestException, ValueError, KeyError) as e:
                logger.warning("Failed to retrieve OSV advisory %s: %s", vuln_id, e)
                return None
        return self._details[vuln_id]

    def query_batch(self, packages: Sequence[str]) -> dict[str, list[AdvisoryRecord]]:
        """Query OSV for the advisories of every package with one batched request."""
        if not packages:
            return {}
        q = {"queries": [{"package": {"name": name, "ecosystem": self.ecosystem}} for name in packages]}
        try:
            r = post(OSVProject.QUERY_BATCH_URL, json=q, timeout=self.timeout)
            r.raise_for_status()
            results = r.json().get("results", [])
        except (RequestException, ValueError) as e:
            logger.warning("OSV batch query for %d package(s) failed: %s", len(packages), e)
            return {}

        ret: dict[str, list[AdvisoryRecord]] = {}
        for name, result in zip(packages, results):
            if result.get("next_page_token"):
                logger.warning("OSV returned a partial advisory list for %s", name)
            records = []
            for stub in result.get("vulns", []):
                vuln = self._hydrate(stub["id"])
                if vuln is not None:
                    records.append(vuln.to_record(name, self.ecosystem))
            ret[name] = records
        return ret
