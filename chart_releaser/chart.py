"""
Reading packaged Helm charts (``.tgz`` archives).
"""

import hashlib
import tarfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from chart_releaser.errors import InvalidChartError

CHART_FILE = "Chart.yaml"

# Go template field names usable in release name templates
TEMPLATE_FIELDS = {
    "Name": "name",
    "Version": "version",
    "AppVersion": "appVersion",
    "Description": "description",
    "APIVersion": "apiVersion",
    "Type": "type",
    "KubeVersion": "kubeVersion",
    "Home": "home",
}


@dataclass
class ChartMetadata:
    """Metadata declared in a chart's Chart.yaml."""
    name: str
    version: str
    description: str = ""
    app_version: str = ""
    api_version: str = ""
    raw: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ChartMetadata":
        return cls(
            name=str(data["name"]),
            version=str(data["version"]),
            description=str(data.get("description") or ""),
            app_version=str(data.get("appVersion") or ""),
            api_version=str(data.get("apiVersion") or ""),
            raw=dict(data),
        )

    def template_value(self, field_name: str) -> str:
        key = TEMPLATE_FIELDS.get(field_name)
        if key is None:
            raise KeyError(field_name)
        value = self.raw.get(key, "")
        return "" if value is None else str(value)


@dataclass
class Chart:
    """A loaded chart archive: its metadata plus bundled non-template files."""
    path: Path
    metadata: ChartMetadata
    files: Dict[str, bytes] = field(default_factory=dict)

    def get_file(self, name: str) -> Optional[bytes]:
        return self.files.get(name.removeprefix("./"))


def load_chart(path) -> Chart:
    """Load a packaged chart.

    Args:
        path: Path to the chart ``.tgz`` archive

    Returns:
        The chart metadata and top-level files of the archive

    Raises:
        InvalidChartError: If the file is missing, not a gzipped tarball, or
            has no valid Chart.yaml
    """
    path = Path(path)
    if not path.is_file():
        raise InvalidChartError(path, "file does not exist")

    try:
        with tarfile.open(path, "r:gz") as archive:
            members = [m for m in archive.getmembers() if m.isfile()]
            root = _chart_root(path, members)

            metadata_data = None
            files: Dict[str, bytes] = {}
            for member in members:
                relative = member.name[len(root) + 1:]
                if not relative or relative.startswith("templates/") or relative.startswith("charts/"):
                    continue
                extracted = archive.extractfile(member)
                if extracted is None:
                    continue
                content = extracted.read()
                if relative == CHART_FILE:
                    metadata_data = yaml.safe_load(content)
                else:
                    files[relative] = content
    except (tarfile.TarError, OSError, EOFError) as e:
        raise InvalidChartError(path, str(e)) from e
    except yaml.YAMLError as e:
        raise InvalidChartError(path, f"invalid {CHART_FILE}: {e}") from e

    if not isinstance(metadata_data, dict):
        raise InvalidChartError(path, f"{CHART_FILE} not found")
    for required in ("name", "version"):
        if not metadata_data.get(required):
            raise InvalidChartError(path, f"{CHART_FILE} is missing '{required}'")

    return Chart(path=path, metadata=ChartMetadata.from_dict(metadata_data), files=files)


def _chart_root(path: Path, members) -> str:
    for member in members:
        parts = member.name.split("/")
        if len(parts) == 2 and parts[1] == CHART_FILE:
            return parts[0]
    raise InvalidChartError(path, f"{CHART_FILE} not found")


def digest_file(path) -> str:
    """Compute the sha256 hex digest of a file, as stored in index entries."""
    sha = hashlib.sha256()
    with open(path, "rb") as f:
        for block in iter(lambda: f.read(65536), b""):
            sha.update(block)
    return sha.hexdigest()
