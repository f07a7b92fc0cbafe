"""
Release and index reconciliation.

``Releaser.create_releases`` turns every packaged chart in the package directory
into a GitHub release. ``Releaser.update_index_file`` merges the published
release assets into the chart repository index and, when configured, commits
the index to the pages branch through a temporary git worktree.
"""

import posixpath
import random
import re
import shutil
import string
import sys
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, List, Optional, Tuple
from urllib.parse import urlparse

from chart_releaser.chart import Chart, ChartMetadata, digest_file, load_chart
from chart_releaser.config import ReleaserConfig
from chart_releaser.errors import (
    ConfigError,
    NotFoundError,
    PackageError,
    ReleaseBatchError,
    ReleaserError,
)
from chart_releaser.index import IndexFile
from chart_releaser.interface import (
    Asset,
    GitInterface,
    HttpFetcherInterface,
    HttpxFetcher,
    Release,
    ReleaseStoreInterface,
)
from chart_releaser.packages import (
    PACKAGE_EXTENSION,
    list_packages,
    package_base_name,
    scan_packages,
    split_package_name_and_version,
)

INDEX_FILE_NAME = "index.yaml"
INDEX_COMMIT_MESSAGE = "Update index.yaml"
PR_BRANCH_PREFIX = "chart-releaser-"
PROVENANCE_EXTENSION = ".prov"

_TEMPLATE_FIELD_RE = re.compile(r"\{\{\s*\.(\w+)\s*\}\}")


def render_release_name(template: str, metadata: ChartMetadata) -> str:
    """Render a release name template such as ``{{ .Name }}-{{ .Version }}``.

    Raises:
        ConfigError: If the template references an unknown field or uses an
            unsupported expression
    """
    def substitute(match):
        try:
            return metadata.template_value(match.group(1))
        except KeyError:
            raise ConfigError(f"unknown field {match.group(1)!r} in release name template {template!r}") from None

    name = _TEMPLATE_FIELD_RE.sub(substitute, template)
    if "{{" in name or "}}" in name:
        raise ConfigError(f"unsupported expression in release name template {template!r}")
    return name


def add_to_index(index: IndexFile, archive_path, public_url: str, packages_with_index: bool = False) -> None:
    """Merge a published chart archive into an index document.

    Args:
        index: Index document, updated in place
        archive_path: Local chart archive the release asset was uploaded from
        public_url: Download URL of the published asset
        packages_with_index: Archives are served next to index.yaml, so only
            the file name is stored instead of the full URL

    Raises:
        InvalidChartError: If ``archive_path`` is not a loadable chart archive
    """
    print(f"Extracting chart metadata from {archive_path}")
    chart = load_chart(archive_path)

    print(f"Calculating hash for {archive_path}")
    digest = digest_file(archive_path)

    if packages_with_index:
        base_url = ""
        filename = posixpath.basename(urlparse(public_url).path)
    else:
        base_url, _, filename = public_url.rpartition("/")

    index.add(chart.metadata, filename, base_url, digest)


def random_branch_name(length: int = 16) -> str:
    return PR_BRANCH_PREFIX + "".join(random.choices(string.ascii_lowercase, k=length))


class Releaser:
    """Publishes chart packages as releases and maintains the repository index."""

    def __init__(
        self,
        config: ReleaserConfig,
        github: ReleaseStoreInterface,
        git: GitInterface,
        http_client: Optional[HttpFetcherInterface] = None,
    ):
        self.config = config
        self.github = github
        self.git = git
        self.http_client = http_client or HttpxFetcher()

    def compute_release_name(self, metadata: ChartMetadata) -> str:
        return render_release_name(self.config.release_name_template, metadata)

    def get_release_notes(self, chart: Chart) -> str:
        """Release body: the configured notes file bundled in the chart, else its description."""
        notes_file = self.config.release_notes_file
        if notes_file:
            content = chart.get_file(notes_file)
            if content is not None:
                return content.decode("utf-8")
            print(f"Warning: release notes file {notes_file!r} is not present in {chart.path.name}, using chart description", file=sys.stderr)
        return chart.metadata.description

    def release_exists(self, release_name: str) -> bool:
        try:
            self.github.get_release(release_name)
        except NotFoundError:
            return False
        return True

    def create_releases(self) -> List[Release]:
        """Create a GitHub release for every chart package that has none yet.

        Every package is processed even when some fail; failures are collected
        and raised together afterwards.

        Returns:
            The releases created by this call, with asset URLs filled in

        Raises:
            NotFoundError: If the package path does not exist or holds no charts
            ReleaseBatchError: If one or more packages failed
        """
        package_path = Path(self.config.package_path)
        if not list_packages(package_path):
            raise NotFoundError(f"no charts found at {package_path}")

        index = self.local_index() if self.config.skip_existing else None
        packages = list(scan_packages(package_path, index=index, skip_existing=self.config.skip_existing))

        print(f"Creating GitHub releases for {len(packages)} chart package(s)...")

        created: List[Release] = []
        errors: List[PackageError] = []
        skipped = 0

        for package in packages:
            release_name = None
            try:
                chart = load_chart(package.path)
                release_name = self.compute_release_name(chart.metadata)

                if self.release_exists(release_name):
                    print(f"ℹ️  Release {release_name} already exists, skipping")
                    skipped += 1
                    continue

                release = Release(
                    name=release_name,
                    description=self.get_release_notes(chart),
                    commit=self.config.commit,
                    assets=self._release_assets(package.path),
                    generate_release_notes=self.config.generate_release_notes,
                    make_latest=self.config.make_release_latest,
                )
                created.append(self.github.create_release(release))

                if self.config.packages_with_index and self.config.push:
                    self.publish_package(package.path, release_name)
            except Exception as e:
                print(f"❌ Failed to release {package.path.name}: {e}", file=sys.stderr)
                errors.append(PackageError(package.path, e, release_name))

        print(f"✅ Created {len(created)} release(s), skipped {skipped} existing")
        if errors:
            print(f"❌ Failed to release {len(errors)} chart package(s)", file=sys.stderr)
            raise ReleaseBatchError(errors, created)
        return created

    def local_index(self) -> Optional[IndexFile]:
        """The local index file, if one exists."""
        index_path = self.resolve_index_path()
        if not index_path.exists():
            return None
        return IndexFile.load(index_path)

    def _release_assets(self, package_path: Path) -> List[Asset]:
        assets = [Asset(path=str(package_path))]
        provenance = Path(str(package_path) + PROVENANCE_EXTENSION)
        if provenance.is_file():
            assets.append(Asset(path=str(provenance)))
        return assets

    def add_to_index_file(self, index: IndexFile, url: str) -> None:
        """Merge the release asset at ``url`` using the matching local package."""
        archive = Path(self.config.package_path) / posixpath.basename(urlparse(url).path)
        add_to_index(index, archive, url, self.config.packages_with_index)

    def resolve_index_path(self) -> Path:
        """Index file location; a directory (existing or to be created) gets index.yaml appended."""
        path = Path(self.config.index_path)
        if path.name == INDEX_FILE_NAME:
            return path
        if path.is_dir() or (not path.exists() and not path.suffix):
            return path / INDEX_FILE_NAME
        raise ConfigError(f"index path ({path}) should be a directory or a file called {INDEX_FILE_NAME}")

    def fetch_remote_index(self, url: str) -> IndexFile:
        """Download the published index.

        Raises:
            NotFoundError: If the server does not answer 200
            httpx.HTTPError: On transport failure
        """
        response = self.http_client.get(url)
        if response.status_code != 200:
            raise NotFoundError(f"remote index {url} not found (status {response.status_code})")
        return IndexFile.loads(response.content)

    def load_index(self, index_path: Path) -> Tuple[IndexFile, bool]:
        """Load the base index: local file, else the published one, else a new one.

        Returns:
            Tuple of (index, whether a local index file existed)
        """
        if index_path.exists():
            print(f"Using existing index at {index_path}")
            return IndexFile.load(index_path), True

        url = self.config.remote_index_url
        print(f"Index {index_path} missing, fetching {url}")
        try:
            return self.fetch_remote_index(url), False
        except NotFoundError:
            print(f"No published index at {url}, creating a new index")
            return IndexFile.new(), False

    def _published_packages(self, index: IndexFile):
        try:
            return list(scan_packages(self.config.package_path, index=index, skip_existing=True))
        except NotFoundError as e:
            print(f"Warning: {e}", file=sys.stderr)
            return []

    def update_index_file(self) -> bool:
        """Merge released chart packages into the index file.

        Returns:
            True if the index file was written, False if it was already up to date

        Raises:
            ReleaserError: If the index cannot be loaded, merged or published
            httpx.HTTPError: If the published index or a release cannot be fetched
        """
        index_path = self.resolve_index_path()
        index, existed = self.load_index(index_path)
        previous_generated = index.generated

        merged = 0
        for package in self._published_packages(index):
            chart = load_chart(package.path)
            release_name = self.compute_release_name(chart.metadata)
            try:
                release = self.github.get_release(release_name)
            except NotFoundError:
                print(f"Warning: no release {release_name} for {package.path.name}, skipping", file=sys.stderr)
                continue

            for asset in release.assets:
                if not asset.url:
                    continue
                filename = posixpath.basename(urlparse(asset.url).path)
                if not filename.endswith(PACKAGE_EXTENSION):
                    continue
                name, version = split_package_name_and_version(package_base_name(filename))
                print(f"Found {filename}")
                if index.has(name, version):
                    continue
                self.add_to_index_file(index, asset.url)
                merged += 1

        if merged == 0 and existed:
            print(f"Index {index_path} did not change")
            return False

        print(f"Updating index {index_path}")
        index.sort_entries()
        index.stamp_generated(previous_generated)
        index.write(index_path)

        if self.config.push or self.config.pr:
            self.publish_index(index_path)
        return True

    @contextmanager
    def worktree(self) -> Iterator[Path]:
        """Check out the pages branch into a temporary worktree, removed on exit."""
        committish = f"{self.config.remote}/{self.config.pages_branch}"
        path = self.git.add_worktree("", committish)
        try:
            yield Path(path)
        finally:
            try:
                self.git.remove_worktree("", path)
            except ReleaserError as e:
                print(f"Warning: failed to remove worktree {path}: {e}", file=sys.stderr)

    def _copy_into_worktree(self, worktree: Path, source: Path) -> str:
        target = (worktree / self.config.pages_index_path).parent / source.name
        target.parent.mkdir(parents=True, exist_ok=True)
        shutil.copyfile(source, target)
        return str(target)

    def publish_index(self, index_path: Path) -> None:
        """Commit the index file to the pages branch and push it or open a pull request."""
        with self.worktree() as worktree:
            index_target = worktree / self.config.pages_index_path
            index_target.parent.mkdir(parents=True, exist_ok=True)
            shutil.copyfile(index_path, index_target)
            paths = [str(index_target)]

            if self.config.packages_with_index:
                for package in self._package_files():
                    paths.append(self._copy_into_worktree(worktree, package))

            self.git.add(str(worktree), *paths)
            self.git.commit(str(worktree), INDEX_COMMIT_MESSAGE)
            self._push(worktree, INDEX_COMMIT_MESSAGE)

    def publish_package(self, package_path: Path, release_name: str) -> None:
        """Commit a released package (and its provenance file) to the pages branch."""
        with self.worktree() as worktree:
            paths = [self._copy_into_worktree(worktree, package_path)]
            provenance = Path(str(package_path) + PROVENANCE_EXTENSION)
            if provenance.is_file():
                paths.append(self._copy_into_worktree(worktree, provenance))
            self.git.add(str(worktree), *paths)
            message = f"Publishing chart package for {release_name}"
            self.git.commit(str(worktree), message)
            self._push(worktree, message)

    def _package_files(self) -> List[Path]:
        files = []
        for package in list_packages(self.config.package_path):
            files.append(package)
            provenance = Path(str(package) + PROVENANCE_EXTENSION)
            if provenance.is_file():
                files.append(provenance)
        return files

    def _push(self, worktree: Path, message: str) -> None:
        push_url = self.git.get_push_url(self.config.remote, self.config.token)
        if self.config.pr:
            branch = random_branch_name()
            print(f"Pushing to branch {branch!r}")
            self.git.push(str(worktree), push_url, f"HEAD:refs/heads/{branch}")
            print(f"Creating pull request against branch {self.config.base_branch!r}")
            pr_url = self.github.create_pull_request(
                self.config.owner, self.config.git_repo, message, branch, self.config.base_branch
            )
            print(f"Pull request created: {pr_url}")
        else:
            print(f"Pushing to branch {self.config.pages_branch!r}")
            self.git.push(str(worktree), push_url, f"HEAD:refs/heads/{self.config.pages_branch}")
