"""
GitHub release store backed by the GitHub REST API.
"""

import json
import os
import sys
import time
from pathlib import Path
from typing import Dict, Optional

import httpx

from chart_releaser.errors import NotFoundError
from chart_releaser.interface import Asset, Release, ReleaseStoreInterface


class GitHubClient(ReleaseStoreInterface):
    """Client for the GitHub Releases and Pull Requests APIs."""

    DEFAULT_TIMEOUT = 30.0  # Default timeout for HTTP requests in seconds
    UPLOAD_TIMEOUT = 120.0
    UPLOAD_ATTEMPTS = 3
    UPLOAD_RETRY_DELAY = 2.0

    def __init__(
        self,
        owner: str,
        repo: str,
        token: Optional[str] = None,
        base_url: str = "https://api.github.com/",
        upload_url: str = "https://uploads.github.com/",
    ):
        """Initialize the GitHub client.

        Args:
            owner: Repository owner
            repo: Repository name
            token: GitHub token (defaults to GITHUB_TOKEN env var)
            base_url: API base URL (GitHub Enterprise installs use their own)
            upload_url: Asset upload base URL
        """
        self.owner = owner
        self.repo = repo
        self.token = token or os.getenv('GITHUB_TOKEN')

        if not self.token:
            raise ValueError("GitHub token is required. Pass --token or set CR_TOKEN.")

        self.base_url = base_url.rstrip("/")
        self.upload_url = upload_url.rstrip("/")
        self.headers = {
            "Authorization": f"Bearer {self.token}",
            "Accept": "application/vnd.github.v3+json",
        }

    @property
    def repo_url(self) -> str:
        return f"{self.base_url}/repos/{self.owner}/{self.repo}"

    def create_release(self, release: Release) -> Release:
        """Create a GitHub release tagged with the release name and upload its assets.

        Raises:
            httpx.HTTPStatusError: If the release cannot be created or an asset
                upload keeps failing
        """
        payload = {
            "tag_name": release.name,
            "name": release.name,
            "body": release.description,
            "draft": False,
            "prerelease": False,
            "generate_release_notes": release.generate_release_notes,
            "make_latest": "true" if release.make_latest else "false",
        }
        if release.commit:
            payload["target_commitish"] = release.commit

        print(f"Creating GitHub release: {release.name}")

        with httpx.Client(timeout=self.DEFAULT_TIMEOUT) as client:
            response = client.post(f"{self.repo_url}/releases", headers=self.headers, json=payload)
            if response.status_code != 201:
                self._report_failure(f"Failed to create GitHub release {release.name}", response)
                response.raise_for_status()
            release_info = response.json()

        release.html_url = release_info.get("html_url")
        for asset in release.assets:
            asset_info = self.upload_release_asset(release_info["id"], asset.path)
            asset.url = asset_info["browser_download_url"]

        print(f"✅ Successfully created GitHub release: {release.html_url or release.name}")
        return release

    def upload_release_asset(self, release_id: int, file_path: str, content_type: str = "application/gzip") -> Dict:
        """Upload a file to a release, retrying transient failures.

        Args:
            release_id: ID of the release
            file_path: Path to the file to upload
            content_type: MIME type of the asset

        Returns:
            Asset data from the API
        """
        asset_name = Path(file_path).name
        url = f"{self.upload_url}/repos/{self.owner}/{self.repo}/releases/{release_id}/assets"
        upload_headers = dict(self.headers, **{"Content-Type": content_type})
        content = Path(file_path).read_bytes()

        for attempt in range(self.UPLOAD_ATTEMPTS):
            print(f"Uploading asset {asset_name} to release {release_id}...")
            try:
                with httpx.Client(timeout=self.UPLOAD_TIMEOUT) as client:
                    response = client.post(url, headers=upload_headers, params={"name": asset_name}, content=content)
                    if response.status_code not in (200, 201):
                        self._report_failure(f"Failed to upload asset {asset_name}", response)
                        response.raise_for_status()
                    return response.json()
            except httpx.HTTPError as e:
                if attempt < self.UPLOAD_ATTEMPTS - 1:
                    print(f"⚠️  Upload of {asset_name} failed (attempt {attempt + 1}/{self.UPLOAD_ATTEMPTS}): {e}", file=sys.stderr)
                    time.sleep(self.UPLOAD_RETRY_DELAY)
                    continue
                raise

    def get_release(self, tag: str) -> Release:
        """Get a release by tag name.

        Raises:
            NotFoundError: If no release exists for the tag
            httpx.HTTPError: For any other failure
        """
        with httpx.Client(timeout=self.DEFAULT_TIMEOUT) as client:
            response = client.get(f"{self.repo_url}/releases/tags/{tag}", headers=self.headers)
            if response.status_code == 404:
                raise NotFoundError(f"release {tag} not found")
            response.raise_for_status()
            data = response.json()

        return Release(
            name=data.get("name") or tag,
            description=data.get("body") or "",
            commit=data.get("target_commitish") or "",
            assets=[
                Asset(path=asset["name"], url=asset["browser_download_url"])
                for asset in data.get("assets", [])
            ],
            html_url=data.get("html_url"),
        )

    def create_pull_request(self, owner: str, repo: str, message: str, head: str, base: str) -> str:
        """Open a pull request from ``head`` into ``base`` and return its URL."""
        payload = {"title": message, "head": head, "base": base, "body": message}
        with httpx.Client(timeout=self.DEFAULT_TIMEOUT) as client:
            response = client.post(f"{self.base_url}/repos/{owner}/{repo}/pulls", headers=self.headers, json=payload)
            if response.status_code != 201:
                self._report_failure("Failed to create pull request", response)
                response.raise_for_status()
            return response.json()["html_url"]

    @staticmethod
    def _report_failure(message: str, response: httpx.Response) -> None:
        print(f"❌ {message}. Status: {response.status_code}", file=sys.stderr)
        try:
            error_data = response.json()
            print(f"Error: {error_data.get('message', 'Unknown error')}", file=sys.stderr)
        except json.JSONDecodeError:
            print(f"Response: {response.text}", file=sys.stderr)
