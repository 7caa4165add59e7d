"""Version and application directory utilities for safe-depends."""

from importlib.metadata import PackageNotFoundError, version as meta_version

from platformdirs import PlatformDirs


def version() -> str:
    """Get the installed version of safe-depends."""
    try:
        return meta_version("safe-depends")
    except PackageNotFoundError:
        from . import __version__  # noqa: PLC0415

        return __version__


APP_DIRS = PlatformDirs("safe-depends", "safe-depends")
