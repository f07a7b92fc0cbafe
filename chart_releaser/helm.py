"""
Helm chart packaging for the chart releaser.
"""

import subprocess
from pathlib import Path
from typing import List

import yaml

from chart_releaser.config import ReleaserConfig
from chart_releaser.errors import HelmCommandError, NotFoundError

SAVED_TO_MARKER = "saved it to:"


def read_chart_yaml(chart_dir: Path) -> dict:
    """Read a chart directory's Chart.yaml.

    Raises:
        NotFoundError: If the directory has no Chart.yaml
    """
    chart_yaml_path = chart_dir / "Chart.yaml"
    if not chart_yaml_path.is_file():
        raise NotFoundError(f"no Chart.yaml found in {chart_dir}")
    with open(chart_yaml_path, 'r') as f:
        return yaml.safe_load(f) or {}


def run_helm(args: List[str]) -> subprocess.CompletedProcess:
    """Run a helm command, raising HelmCommandError on failure."""
    cmd = ["helm"] + args
    try:
        result = subprocess.run(cmd, capture_output=True, text=True, check=False)
    except FileNotFoundError as e:
        raise HelmCommandError("helm binary not found; install helm and make sure it is on PATH") from e
    if result.returncode != 0:
        raise HelmCommandError(f"{' '.join(cmd)} failed: {result.stderr.strip()}")
    return result


def package_chart(
    chart_dir: Path,
    destination: Path,
    sign: bool = False,
    key: str = "",
    keyring: str = "",
    passphrase_file: str = "",
    dependency_update: bool = False,
) -> Path:
    """Package a chart directory into ``destination`` using helm package.

    Args:
        chart_dir: Path to the chart directory
        destination: Directory to write the .tgz into
        sign: Sign the package, producing a .prov file next to it
        key: Name of the signing key
        keyring: Keyring holding the signing key
        passphrase_file: File containing the key passphrase
        dependency_update: Run ``helm dependency update`` first

    Returns:
        Path to the generated .tgz file
    """
    chart_dir = Path(chart_dir)
    chart_data = read_chart_yaml(chart_dir)
    destination.mkdir(parents=True, exist_ok=True)

    if dependency_update:
        print(f"Updating dependencies for {chart_dir}")
        run_helm(["dependency", "update", str(chart_dir)])

    args = ["package", str(chart_dir), "--destination", str(destination)]
    if sign:
        if not key:
            raise HelmCommandError("--key is required when signing packages")
        args.extend(["--sign", "--key", key, "--keyring", keyring])
        if passphrase_file:
            args.extend(["--passphrase-file", passphrase_file])

    print(f"Packaging chart {chart_dir}")
    result = run_helm(args)

    # helm prints "Successfully packaged chart and saved it to: <path>"
    for line in result.stdout.splitlines():
        if SAVED_TO_MARKER in line:
            return Path(line.split(SAVED_TO_MARKER, 1)[1].strip())

    packaged_file = destination / f"{chart_data.get('name')}-{chart_data.get('version')}.tgz"
    if not packaged_file.exists():
        raise HelmCommandError(f"expected packaged chart not found: {packaged_file}")
    return packaged_file


def package_charts(chart_paths: List[str], config: ReleaserConfig, dependency_update: bool = False) -> List[Path]:
    """Package each chart directory into the configured package path."""
    destination = Path(config.package_path)
    packaged: List[Path] = []
    for chart_path in chart_paths:
        packaged.append(package_chart(
            Path(chart_path),
            destination,
            sign=config.sign,
            key=config.key,
            keyring=config.keyring,
            passphrase_file=config.passphrase_file,
            dependency_update=dependency_update,
        ))
    return packaged
