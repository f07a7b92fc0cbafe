"""Abstract interfaces for the collaborators the releaser drives."""

import abc
from dataclasses import dataclass, field
from typing import List, Optional

import httpx


@dataclass
class Asset:
    """A release asset: a local file and, once uploaded, its download URL."""
    path: str
    url: Optional[str] = None


@dataclass
class Release:
    """A GitHub release for one chart version."""
    name: str
    description: str = ""
    commit: str = ""
    assets: List[Asset] = field(default_factory=list)
    generate_release_notes: bool = False
    make_latest: bool = True
    html_url: Optional[str] = None


class ReleaseStoreInterface(abc.ABC):
    """Abstract interface for a remote release store."""

    @abc.abstractmethod
    def create_release(self, release: Release) -> Release:
        """
        Create a release and upload its assets.

        Args:
            release: Release to create; asset paths must exist locally

        Returns:
            The release with asset download URLs filled in
        """
        pass

    @abc.abstractmethod
    def get_release(self, tag: str) -> Release:
        """
        Look up a release by tag.

        Raises:
            NotFoundError: If no release exists for the tag
        """
        pass

    @abc.abstractmethod
    def create_pull_request(self, owner: str, repo: str, message: str, head: str, base: str) -> str:
        """
        Open a pull request.

        Returns:
            URL of the pull request
        """
        pass


class GitInterface(abc.ABC):
    """Abstract interface for the git operations of an index update."""

    @abc.abstractmethod
    def add_worktree(self, working_dir: str, committish: str) -> str:
        """Check out ``committish`` into a new temporary worktree and return its path."""
        pass

    @abc.abstractmethod
    def remove_worktree(self, working_dir: str, path: str) -> None:
        pass

    @abc.abstractmethod
    def add(self, working_dir: str, *paths: str) -> None:
        pass

    @abc.abstractmethod
    def commit(self, working_dir: str, message: str) -> None:
        pass

    @abc.abstractmethod
    def push(self, working_dir: str, *args: str) -> None:
        pass

    @abc.abstractmethod
    def get_push_url(self, remote: str, token: str) -> str:
        """Return the push URL of ``remote`` with ``token`` embedded."""
        pass


class HttpFetcherInterface(abc.ABC):
    """Abstract interface for fetching a published index document."""

    @abc.abstractmethod
    def get(self, url: str) -> httpx.Response:
        """
        Fetch a URL.

        Non-200 responses are returned, not raised; transport failures raise
        ``httpx.HTTPError``.
        """
        pass


class HttpxFetcher(HttpFetcherInterface):
    """HTTP fetcher backed by httpx."""

    DEFAULT_TIMEOUT = 30.0

    def __init__(self, timeout: float = DEFAULT_TIMEOUT):
        self.timeout = timeout

    def get(self, url: str) -> httpx.Response:
        with httpx.Client(timeout=self.timeout, follow_redirects=True) as client:
            response = client.get(url)
            response.read()
            return response
