"""
Error types for the chart releaser.
"""

from pathlib import Path
from typing import List, Optional, Sequence


class ReleaserError(Exception):
    """Base class for all chart releaser errors."""


class ConfigError(ReleaserError):
    """Raised when the releaser configuration is invalid."""


class NotFoundError(ReleaserError):
    """Raised when a release, remote index or package does not exist."""


class InvalidChartError(NotFoundError):
    """Raised when a path does not reference a loadable chart archive."""

    def __init__(self, path, reason: str):
        self.path = Path(path)
        self.reason = reason
        super().__init__(f"{self.path} is not a helm chart package: {reason}")


class MalformedPackageNameError(ReleaserError, ValueError):
    """Raised for a package filename that has no version-separating hyphen.

    Callers are expected to pass pre-validated archive names, so this signals
    a contract violation rather than a recoverable condition.
    """

    def __init__(self, package_name: str):
        self.package_name = package_name
        super().__init__(f"malformed chart package name {package_name!r}: expected <name>-<version>")


class GitCommandError(ReleaserError):
    """Raised when a git invocation exits non-zero."""

    def __init__(self, args: Sequence[str], returncode: int, stderr: str = ""):
        self.args_list = list(args)
        self.returncode = returncode
        self.stderr = stderr.strip()
        message = f"git {' '.join(self.args_list)} failed with exit code {returncode}"
        if self.stderr:
            message += f": {self.stderr}"
        super().__init__(message)


class PackageError(ReleaserError):
    """A failure while releasing one chart package."""

    def __init__(self, package: Path, error: Exception, release_name: Optional[str] = None):
        self.package = Path(package)
        self.error = error
        self.release_name = release_name
        label = release_name or self.package.name
        super().__init__(f"{label}: {error}")


class ReleaseBatchError(ReleaserError):
    """Raised after a release batch in which one or more packages failed.

    Every package is still processed; ``errors`` holds one ``PackageError`` per
    failure and ``created`` the releases that did succeed.
    """

    def __init__(self, errors: List[PackageError], created: Optional[list] = None):
        self.errors = list(errors)
        self.created = list(created or [])
        lines = [f"failed to release {len(self.errors)} chart package(s):"]
        lines.extend(f"  - {error}" for error in self.errors)
        super().__init__("\n".join(lines))


class InvalidIndexError(ReleaserError):
    """Raised when an index document cannot be parsed."""


class HelmCommandError(ReleaserError):
    """Raised when a helm invocation fails."""
