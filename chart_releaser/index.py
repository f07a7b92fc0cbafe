"""
Helm chart repository index (index.yaml) document.

The on-disk layout matches what ``helm repo index`` produces: an ``apiVersion``,
an ``entries`` mapping of chart name to a list of chart versions, and a
``generated`` timestamp.
"""

import functools
import re
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

import semver
import yaml

from chart_releaser.chart import ChartMetadata
from chart_releaser.errors import InvalidIndexError, NotFoundError

API_VERSION = "v1"

# Seconds fraction; RFC3339Nano writes 1 to 9 digits, fromisoformat wants 6
_FRACTION_RE = re.compile(r"\.(\d+)")


def now() -> datetime:
    return datetime.now(timezone.utc).astimezone()


def format_time(value: datetime) -> str:
    return value.isoformat(timespec="microseconds")


def parse_time(value: Any) -> Optional[datetime]:
    """Parse an index timestamp (RFC 3339, possibly with nanoseconds)."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        text = str(value).strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        text = _FRACTION_RE.sub(lambda m: "." + m.group(1)[:6].ljust(6, "0"), text)
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError as e:
            raise InvalidIndexError(f"invalid timestamp {value!r}: {e}") from e
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _compare_versions(left: str, right: str) -> int:
    try:
        return semver.Version.parse(left.lstrip("v")).compare(right.lstrip("v"))
    except ValueError:
        return (left > right) - (left < right)


class IndexFile:
    """In-memory chart repository index."""

    def __init__(
        self,
        entries: Optional[Dict[str, List[Dict[str, Any]]]] = None,
        generated: Optional[datetime] = None,
        api_version: str = API_VERSION,
        extra: Optional[Dict[str, Any]] = None,
    ):
        self.api_version = api_version
        self.entries: Dict[str, List[Dict[str, Any]]] = entries if entries is not None else {}
        self.generated = generated if generated is not None else now()
        self.extra = extra or {}

    @classmethod
    def new(cls) -> "IndexFile":
        """Create an empty index stamped with the current time."""
        return cls()

    @classmethod
    def loads(cls, content) -> "IndexFile":
        """Parse an index document from YAML text or bytes."""
        try:
            data = yaml.safe_load(content)
        except yaml.YAMLError as e:
            raise InvalidIndexError(f"invalid index: {e}") from e

        if not isinstance(data, dict):
            raise InvalidIndexError("invalid index: expected a mapping")
        if not data.get("apiVersion"):
            raise InvalidIndexError("invalid index: no API version specified")

        entries = data.get("entries") or {}
        if not isinstance(entries, dict):
            raise InvalidIndexError("invalid index: 'entries' must be a mapping")
        for name, versions in list(entries.items()):
            entries[name] = [v for v in (versions or []) if isinstance(v, dict)]

        extra = {k: v for k, v in data.items() if k not in ("apiVersion", "entries", "generated")}
        return cls(
            entries=entries,
            generated=parse_time(data.get("generated")),
            api_version=str(data["apiVersion"]),
            extra=extra,
        )

    @classmethod
    def load(cls, path) -> "IndexFile":
        path = Path(path)
        try:
            content = path.read_bytes()
        except FileNotFoundError as e:
            raise NotFoundError(f"index file not found: {path}") from e
        try:
            return cls.loads(content)
        except InvalidIndexError as e:
            raise InvalidIndexError(f"{path}: {e}") from e

    def has(self, name: str, version: str) -> bool:
        return self._find(name, version) is not None

    def get(self, name: str, version: str) -> Dict[str, Any]:
        """Return the entry for a chart version.

        Raises:
            NotFoundError: If the chart version is not in the index
        """
        entry = self._find(name, version)
        if entry is None:
            raise NotFoundError(f"no chart version found for {name}-{version}")
        return entry

    def _find(self, name: str, version: str) -> Optional[Dict[str, Any]]:
        for entry in self.entries.get(name, []):
            if str(entry.get("version")) == version:
                return entry
        return None

    def add(self, metadata: ChartMetadata, filename: str, base_url: str, digest: str) -> Dict[str, Any]:
        """Add a chart version, replacing any existing entry for the same version.

        Args:
            metadata: Chart metadata from the archive's Chart.yaml
            filename: Archive file name
            base_url: URL the archive is served under; empty stores the bare filename
            digest: sha256 hex digest of the archive

        Returns:
            The stored entry
        """
        url = f"{base_url.rstrip('/')}/{filename}" if base_url else filename

        entry = dict(metadata.raw)
        entry.update({
            "name": metadata.name,
            "version": metadata.version,
            "urls": [url],
            "created": format_time(now()),
            "digest": digest,
        })
        if not entry.get("apiVersion"):
            entry["apiVersion"] = "v1"

        versions = self.entries.setdefault(metadata.name, [])
        for i, existing in enumerate(versions):
            if str(existing.get("version")) == metadata.version:
                versions[i] = entry
                break
        else:
            versions.append(entry)
        return entry

    def sort_entries(self) -> None:
        """Sort every chart's versions newest first."""
        key = functools.cmp_to_key(_compare_versions)
        for name, versions in self.entries.items():
            self.entries[name] = sorted(versions, key=lambda v: key(str(v.get("version", ""))), reverse=True)

    def stamp_generated(self, previous: Optional[datetime] = None) -> datetime:
        """Set ``generated`` to now, strictly later than ``previous``."""
        stamp = now()
        if previous is not None and stamp <= previous:
            stamp = previous + timedelta(microseconds=1)
        self.generated = stamp
        return stamp

    def to_dict(self) -> Dict[str, Any]:
        data = dict(self.extra)
        data.update({
            "apiVersion": self.api_version,
            "entries": self.entries,
            "generated": format_time(self.generated),
        })
        return data

    def dumps(self) -> str:
        return yaml.safe_dump(self.to_dict(), default_flow_style=False, sort_keys=True)

    def write(self, path) -> None:
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(self.dumps())
