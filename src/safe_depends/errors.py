"""Exceptions raised by safe-depends."""

from __future__ import annotations


class SafeDependsError(Exception):
    """Base class for all safe-depends errors."""


class ResolverInputError(SafeDependsError, ValueError):
    """The caller asked for something that can not be answered; never retried."""


class InvalidSeverityError(ResolverInputError):
    """A severity literal outside of critical, high, medium and low."""

    def __init__(self, severity: object) -> None:
        """Initialize with the offending severity."""
        super().__init__(f"severity must be one of: critical, high, medium, low (got {severity!r})")
        self.severity = severity


class ProjectDependencyNotFoundError(ResolverInputError):
    """The project dependency does not exist in the given project."""

    def __init__(self, project_id: int, project_dependency_id: int) -> None:
        """Initialize with the project and project dependency identifiers."""
        super().__init__(f"Project dependency {project_dependency_id} not found in project {project_id}")
        self.project_id = project_id
        self.project_dependency_id = project_dependency_id


class DependencyVersionNotFoundError(ResolverInputError):
    """The installed dependency version, or its package, is missing from the store."""


class RegistryError(SafeDependsError):
    """Base class for package registry failures."""


class RegistryUnavailableError(RegistryError):
    """The registry could not be reached or returned an unusable response."""


class PackageNotFoundError(RegistryError):
    """The registry does not know the package, version, or a version satisfying a range."""


class ResolutionUnavailableError(SafeDependsError):
    """The data a resolution starts from could not be loaded. The resolution may be retried."""


class ResolutionCancelled(SafeDependsError):  # noqa: N818
    """The caller cancelled an in-flight resolution."""
