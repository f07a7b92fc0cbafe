"""
Discovery of packaged charts in a package directory.
"""

import re
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator, Optional, Tuple

from chart_releaser.errors import MalformedPackageNameError, NotFoundError
from chart_releaser.index import IndexFile

PACKAGE_EXTENSION = ".tgz"

# Semantic version, optionally "v" prefixed, with prerelease and build metadata
VERSION_RE = re.compile(
    r"^v?\d+\.\d+\.\d+"
    r"(-[0-9A-Za-z-]+(\.[0-9A-Za-z-]+)*)?"
    r"(\+[0-9A-Za-z-]+(\.[0-9A-Za-z-]+)*)?$"
)


@dataclass(frozen=True)
class PackageRef:
    """A chart archive and the name/version derived from its filename."""
    name: str
    version: str
    path: Path


def split_package_name_and_version(package: str) -> Tuple[str, str]:
    """Split a package base name into chart name and version.

    Hyphen-delimited segments are scanned from the end; the version is the
    shortest suffix that parses as a semantic version, so
    ``foo-bar-1.2.3-rc.1`` gives ``("foo-bar", "1.2.3-rc.1")``.
    When no suffix looks like a version the split falls back to the last hyphen.

    Args:
        package: Archive file name without extension (e.g. "foo-bar-1.2.3")

    Returns:
        Tuple of (name, version)

    Raises:
        MalformedPackageNameError: If the name contains no hyphen. Callers are
            expected to pass archive names produced by ``helm package``.
    """
    segments = package.split("-")
    if len(segments) < 2 or not segments[0]:
        raise MalformedPackageNameError(package)

    for i in range(len(segments) - 1, 0, -1):
        version = "-".join(segments[i:])
        if VERSION_RE.match(version):
            return "-".join(segments[:i]), version

    name, _, version = package.rpartition("-")
    if not name or not version:
        raise MalformedPackageNameError(package)
    return name, version


def package_base_name(path) -> str:
    name = Path(path).name
    if name.endswith(PACKAGE_EXTENSION):
        name = name[: -len(PACKAGE_EXTENSION)]
    return name


def list_packages(package_path) -> list:
    """List chart archives in a package directory.

    Raises:
        NotFoundError: If the directory does not exist
    """
    package_dir = Path(package_path)
    if not package_dir.is_dir():
        raise NotFoundError(f"package path {package_dir} does not exist or is not a directory")
    return [p for p in package_dir.iterdir() if p.name.endswith(PACKAGE_EXTENSION)]


def scan_packages(
    package_path,
    index: Optional[IndexFile] = None,
    skip_existing: bool = False,
) -> Iterator[PackageRef]:
    """Yield the chart packages found in ``package_path``.

    Order is directory enumeration order. When ``skip_existing`` is set and an
    index is given, packages already present in the index are left out.
    """
    for path in list_packages(package_path):
        name, version = split_package_name_and_version(package_base_name(path))
        if skip_existing and index is not None and index.has(name, version):
            print(f"Skipping {path.name}: already in index")
            continue
        yield PackageRef(name=name, version=version, path=path)
