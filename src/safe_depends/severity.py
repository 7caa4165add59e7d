"""Vulnerability severity tiers and the severity threshold evaluator."""

from __future__ import annotations

from dataclasses import dataclass
from enum import IntEnum
from typing import ClassVar

from .errors import InvalidSeverityError


class Severity(IntEnum):
    """Ordered severity tiers, lowest first."""

    LOW = 1
    MEDIUM = 2
    HIGH = 3
    CRITICAL = 4

    @classmethod
    def parse(cls, severity: str | Severity) -> Severity:
        """Parse a severity literal such as ``"high"``.

        Raises:
            InvalidSeverityError: if `severity` is not one of the four tiers

        """
        if isinstance(severity, Severity):
            return severity
        if not isinstance(severity, str):
            raise InvalidSeverityError(severity)
        try:
            return cls[severity.strip().upper()]
        except KeyError:
            raise InvalidSeverityError(severity) from None

    def at_or_above(self) -> tuple[Severity, ...]:
        """Return every tier at or above this one."""
        return tuple(s for s in Severity if s >= self)

    def __str__(self) -> str:
        """Return the lowercase literal."""
        return self.name.lower()


def normalize_severity(raw: str | None) -> Severity:
    """Map an advisory's free-form severity onto a tier.

    GitHub advisories call the medium tier "moderate". Missing or unrecognized
    severities count as medium.
    """
    if not raw:
        return Severity.MEDIUM
    s = raw.strip().lower()
    if s == "moderate":
        return Severity.MEDIUM
    try:
        return Severity.parse(s)
    except InvalidSeverityError:
        return Severity.MEDIUM


@dataclass(frozen=True)
class VulnCounts:
    """Number of vulnerabilities affecting one version, per tier."""

    critical: int = 0
    high: int = 0
    medium: int = 0
    low: int = 0

    ZERO: ClassVar[VulnCounts]

    def count(self, severity: Severity) -> int:
        """Return the count for a single tier."""
        return getattr(self, severity.name.lower())  # type: ignore[no-any-return]

    def add(self, severity: Severity) -> VulnCounts:
        """Return a copy with one more vulnerability in `severity`."""
        field = severity.name.lower()
        values = {s.name.lower(): self.count(s) for s in Severity}
        values[field] += 1
        return VulnCounts(**values)

    @property
    def total(self) -> int:
        """Return the number of vulnerabilities across all tiers."""
        return self.critical + self.high + self.medium + self.low

    def to_obj(self) -> dict[str, int]:
        """Convert to a dictionary."""
        return {"critical": self.critical, "high": self.high, "medium": self.medium, "low": self.low}


VulnCounts.ZERO = VulnCounts()


def exceeds_threshold(counts: VulnCounts, severity: str | Severity) -> bool:
    """Return whether `counts` has any vulnerability at or above the `severity` floor.

    Requesting ``high`` flags critical or high findings, ``medium`` additionally
    flags medium ones, and ``low`` flags any finding at all. A version unsafe at
    some floor is therefore unsafe at every lower floor.
    """
    floor = Severity.parse(severity)
    return sum(counts.count(tier) for tier in floor.at_or_above()) > 0
