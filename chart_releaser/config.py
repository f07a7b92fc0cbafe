"""
Configuration for the chart releaser.

Values are resolved once per invocation, lowest precedence first:
defaults, a YAML config file, ``CR_*`` environment variables, then explicit
overrides (CLI flags). The result is an immutable ``ReleaserConfig`` that is
passed to every component.
"""

import dataclasses
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

import yaml

from chart_releaser.errors import ConfigError

DEFAULT_RELEASE_NAME_TEMPLATE = "{{ .Name }}-{{ .Version }}"
ENV_PREFIX = "CR_"
CONFIG_FILE_NAME = "cr.yaml"


@dataclass(frozen=True)
class ReleaserConfig:
    """Immutable options for one chart releaser invocation."""
    owner: str = ""
    git_repo: str = ""
    charts_repo: str = ""
    index_path: str = ".cr-index"
    package_path: str = ".cr-release-packages"
    pages_index_path: str = "index.yaml"
    token: str = field(default="", repr=False)
    git_base_url: str = "https://api.github.com/"
    git_upload_url: str = "https://uploads.github.com/"
    commit: str = ""
    pages_branch: str = "gh-pages"
    pr_base_branch: str = ""
    remote: str = "origin"
    push: bool = False
    pr: bool = False
    skip_existing: bool = False
    packages_with_index: bool = False
    release_name_template: str = DEFAULT_RELEASE_NAME_TEMPLATE
    release_notes_file: str = ""
    generate_release_notes: bool = False
    make_release_latest: bool = True
    sign: bool = False
    key: str = ""
    keyring: str = field(default_factory=lambda: str(Path.home() / ".gnupg" / "pubring.gpg"))
    passphrase_file: str = field(default="", repr=False)

    @property
    def charts_repo_url(self) -> str:
        """Base URL of the published chart repository."""
        if self.charts_repo:
            return self.charts_repo.rstrip("/")
        return f"https://{self.owner}.github.io/{self.git_repo}"

    @property
    def remote_index_url(self) -> str:
        return f"{self.charts_repo_url}/index.yaml"

    @property
    def base_branch(self) -> str:
        """Branch pull requests are opened against."""
        return self.pr_base_branch or self.pages_branch

    def validate(self) -> "ReleaserConfig":
        if self.push and self.pr:
            raise ConfigError("--push and --pr are mutually exclusive")
        if not self.release_name_template.strip():
            raise ConfigError("release name template must not be empty")
        return self

    def require_github(self) -> "ReleaserConfig":
        """Ensure the options needed to talk to GitHub are present."""
        missing = [name for name in ("owner", "git_repo", "token") if not getattr(self, name)]
        if missing:
            flags = ", ".join(f"--{name.replace('_', '-')}" for name in missing)
            raise ConfigError(f"missing required option(s): {flags}")
        return self


_FIELDS = {f.name: f for f in dataclasses.fields(ReleaserConfig)}


def _parse_bool(name: str, value: Any) -> bool:
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in ("1", "true", "yes", "on"):
        return True
    if text in ("0", "false", "no", "off", ""):
        return False
    raise ConfigError(f"invalid boolean for {name}: {value!r}")


def _coerce(name: str, value: Any) -> Any:
    if _FIELDS[name].type in (bool, "bool"):
        return _parse_bool(name, value)
    return "" if value is None else str(value)


def find_config_file(explicit: Optional[str] = None) -> Optional[Path]:
    """Locate the config file: explicit path, ./cr.yaml, then ~/.cr/cr.yaml."""
    if explicit:
        path = Path(explicit).expanduser()
        if not path.is_file():
            raise ConfigError(f"config file not found: {path}")
        return path

    for candidate in (Path.cwd() / CONFIG_FILE_NAME, Path.home() / ".cr" / CONFIG_FILE_NAME):
        if candidate.is_file():
            return candidate
    return None


def read_config_file(path: Path) -> Dict[str, Any]:
    """Read option values from a YAML config file.

    Keys may be written with dashes (``package-path``) or underscores.
    """
    try:
        with open(path, "r") as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"invalid config file {path}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigError(f"invalid config file {path}: expected a mapping")

    values = {}
    for raw_key, value in data.items():
        key = str(raw_key).replace("-", "_")
        if key not in _FIELDS:
            print(f"Warning: ignoring unknown option {raw_key!r} in {path}")
            continue
        values[key] = _coerce(key, value)
    return values


def read_env(environ: Optional[Mapping[str, str]] = None) -> Dict[str, Any]:
    """Read ``CR_<FIELD>`` environment variables."""
    environ = os.environ if environ is None else environ
    values = {}
    for name in _FIELDS:
        env_name = ENV_PREFIX + name.upper()
        if env_name in environ:
            values[name] = _coerce(name, environ[env_name])
    if "token" not in values and environ.get("GITHUB_TOKEN"):
        values["token"] = environ["GITHUB_TOKEN"]
    return values


def load_config(
    config_file: Optional[str] = None,
    environ: Optional[Mapping[str, str]] = None,
    **overrides: Any,
) -> ReleaserConfig:
    """Build a validated ``ReleaserConfig``.

    Args:
        config_file: Explicit config file path (searched for when omitted)
        environ: Environment mapping (defaults to ``os.environ``)
        **overrides: Explicit values, typically CLI flags; ``None`` means unset

    Returns:
        The resolved configuration
    """
    values: Dict[str, Any] = {}

    path = find_config_file(config_file)
    if path:
        values.update(read_config_file(path))

    values.update(read_env(environ))

    for name, value in overrides.items():
        if name not in _FIELDS:
            raise ConfigError(f"unknown option: {name}")
        if value is not None:
            values[name] = _coerce(name, value)

    return ReleaserConfig(**values).validate()
