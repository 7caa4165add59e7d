"""Semantic version helpers shared by the registry client, the ledger and the resolver."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from semantic_version import NpmSpec, SimpleSpec, Version
from semantic_version.base import BaseSpec as SemanticVersion

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence

logger = logging.getLogger(__name__)


def parse_version(version_string: str) -> Version | None:
    """Leniently parse a version string, returning None if it is not a version at all."""
    cleaned = version_string.strip().lstrip("=v").strip()
    if not cleaned:
        return None
    try:
        return Version.coerce(cleaned)
    except ValueError:
        return None


def is_stable(version_string: str) -> bool:
    """Check that a version parses and carries no pre-release qualifier."""
    version = parse_version(version_string)
    return version is not None and not version.prerelease


def stable_descending(version_strings: Iterable[str]) -> list[str]:
    """Return the stable releases among `version_strings`, newest first.

    Versions that compare equal keep their original relative order.
    """
    parsed = [(v, parse_version(v)) for v in version_strings]
    stable = [(v, p) for v, p in parsed if p is not None and not p.prerelease]
    stable.sort(key=lambda vp: vp[1], reverse=True)  # type: ignore[arg-type,return-value]
    return [v for v, _ in stable]


def parse_spec(spec: str) -> SemanticVersion:
    """Parse an npm-style range.

    Raises:
        ValueError: if the range is not a semantic version range (e.g. a git URL or an alias)

    """
    try:
        return NpmSpec(spec)
    except ValueError:
        pass
    try:
        return SimpleSpec(spec)
    except ValueError:
        pass
    # Sometimes npm ranges contain whitespace, which trips up the parser
    no_whitespace = "".join(c for c in spec if c != " ")
    if no_whitespace != spec:
        return parse_spec(no_whitespace)
    msg = f"Unsupported version range {spec!r}"
    raise ValueError(msg)


def max_satisfying(version_strings: Iterable[str], spec: SemanticVersion) -> str | None:
    """Return the newest version string that satisfies `spec`."""
    best: tuple[Version, str] | None = None
    for v in version_strings:
        parsed = parse_version(v)
        if parsed is None or not spec.match(parsed):
            continue
        if best is None or parsed > best[0]:
            best = (parsed, v)
    return None if best is None else best[1]


def is_version_affected(version_string: str, affected: Any) -> bool:  # noqa: ANN401, C901, PLR0912
    """Check whether a version falls into an OSV-style ``affected`` description.

    `affected` is either None (no range information: every version is affected),
    a single entry, or a list of entries. Each entry may carry an explicit
    ``versions`` list and/or ``ranges``, each with ``introduced`` / ``fixed``
    events. A range without an ``introduced`` event is ignored.
    """
    if affected is None:
        return True
    version = parse_version(version_string)
    if version is None:
        return False

    entries: Sequence[Any] = affected if isinstance(affected, list) else [affected]
    for entry in entries:
        if not isinstance(entry, dict):
            continue

        for listed in entry.get("versions") or ():
            parsed = parse_version(str(listed))
            if parsed is not None and parsed == version:
                return True

        for version_range in entry.get("ranges") or ():
            events = version_range.get("events") if isinstance(version_range, dict) else None
            if not events:
                continue
            introduced: str | None = None
            fixed: str | None = None
            for event in events:
                if event.get("introduced") is not None:
                    introduced = str(event["introduced"])
                if event.get("fixed") is not None:
                    fixed = str(event["fixed"])
            if introduced is None:
                continue
            lower = parse_version(introduced)
            if lower is None or version < lower:
                continue
            if fixed is not None:
                upper = parse_version(fixed)
                if upper is not None and version >= upper:
                    continue
            return True
    return False


def fixed_versions(affected: Any) -> list[str]:  # noqa: ANN401
    """Collect every ``fixed`` event from an OSV-style ``affected`` description."""
    if affected is None:
        return []
    entries = affected if isinstance(affected, list) else [affected]
    fixed: list[str] = []
    for entry in entries:
        if not isinstance(entry, dict):
            continue
        for version_range in entry.get("ranges") or ():
            for event in version_range.get("events") or ():
                if event.get("fixed") is not None and str(event["fixed"]) not in fixed:
                    fixed.append(str(event["fixed"]))
    return fixed
