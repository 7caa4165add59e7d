"""The `safe-depends` APIs."""

__version__ = "0.1.0"

from .errors import (
    DependencyVersionNotFoundError,
    InvalidSeverityError,
    PackageNotFoundError,
    ProjectDependencyNotFoundError,
    RegistryError,
    RegistryUnavailableError,
    ResolutionCancelled,
    ResolutionUnavailableError,
    ResolverInputError,
    SafeDependsError,
)
from .models import ResolutionResult
from .resolver import LatestSafeVersionResolver
from .severity import Severity, VulnCounts

__all__ = [
    "DependencyVersionNotFoundError",
    "InvalidSeverityError",
    "LatestSafeVersionResolver",
    "PackageNotFoundError",
    "ProjectDependencyNotFoundError",
    "RegistryError",
    "RegistryUnavailableError",
    "ResolutionCancelled",
    "ResolutionResult",
    "ResolutionUnavailableError",
    "ResolverInputError",
    "SafeDependsError",
    "Severity",
    "VulnCounts",
]
