"""
Unit tests for release creation and index reconciliation.
"""

from pathlib import Path

import httpx
import pytest
import yaml

from chart_releaser.chart import ChartMetadata, digest_file
from chart_releaser.errors import (
    ConfigError,
    GitCommandError,
    InvalidChartError,
    NotFoundError,
    ReleaseBatchError,
)
from chart_releaser.index import IndexFile, parse_time
from chart_releaser.interface import Asset, Release
from chart_releaser.releaser import (
    INDEX_COMMIT_MESSAGE,
    PR_BRANCH_PREFIX,
    add_to_index,
    random_branch_name,
    render_release_name,
)

ASSET_URL = "https://myrepo/charts/test-chart-0.1.0.tgz"


def published(fake_github, name="test-chart-0.1.0", url=ASSET_URL):
    fake_github.releases[name] = Release(name=name, assets=[Asset(path=Path(url).name, url=url)])


def read_index(path):
    return yaml.safe_load(Path(path).read_text())


class TestRenderReleaseName:
    """Test cases for release name templates."""

    def setup_method(self):
        self.metadata = ChartMetadata.from_dict({
            "name": "test-chart",
            "version": "0.1.0",
            "appVersion": "1.16.0",
        })

    def test_default_template(self):
        assert render_release_name("{{ .Name }}-{{ .Version }}", self.metadata) == "test-chart-0.1.0"

    def test_compact_and_static_text(self):
        assert render_release_name("v{{.Version}}", self.metadata) == "v0.1.0"
        assert render_release_name("{{ .Name }}-app-{{ .AppVersion }}", self.metadata) == "test-chart-app-1.16.0"

    def test_unknown_field(self):
        with pytest.raises(ConfigError, match="Bogus"):
            render_release_name("{{ .Bogus }}", self.metadata)

    def test_unsupported_expression(self):
        with pytest.raises(ConfigError):
            render_release_name("{{ .Name | upper }}", self.metadata)


class TestAddToIndex:
    """Test cases for merging a published archive into an index."""

    def test_full_url_is_stored(self, make_chart, mock_print):
        archive = make_chart()
        index = IndexFile.new()

        add_to_index(index, archive, ASSET_URL)

        entry = index.get("test-chart", "0.1.0")
        assert entry["urls"] == [ASSET_URL]
        assert entry["digest"] == digest_file(archive)
        assert entry["description"] == "A Helm chart for Kubernetes"

    def test_packages_with_index_stores_file_name(self, make_chart, mock_print):
        archive = make_chart()
        index = IndexFile.new()

        add_to_index(index, archive, ASSET_URL, packages_with_index=True)

        assert index.get("test-chart", "0.1.0")["urls"] == ["test-chart-0.1.0.tgz"]

    def test_invalid_archive_path(self, tmp_path, mock_print):
        """A path that is not a chart archive fails without touching the index."""
        index = IndexFile.new()

        with pytest.raises(InvalidChartError):
            add_to_index(index, tmp_path / "missing-0.1.0.tgz", ASSET_URL)

        assert index.entries == {}


class TestCreateReleases:
    """Test cases for Releaser.create_releases."""

    def test_creates_release_per_package(self, make_chart, make_releaser, fake_github, mock_print):
        make_chart()
        make_chart(name="other-chart", version="1.2.3")

        created = make_releaser().create_releases()

        assert sorted(r.name for r in created) == ["other-chart-1.2.3", "test-chart-0.1.0"]
        release = fake_github.releases["test-chart-0.1.0"]
        assert release.description == "A Helm chart for Kubernetes"
        assert [Path(a.path).name for a in release.assets] == ["test-chart-0.1.0.tgz"]
        assert release.assets[0].url == ASSET_URL

    def test_release_options_are_passed(self, make_chart, make_releaser, fake_github, mock_print):
        make_chart()

        make_releaser(commit="abc123", generate_release_notes=True, make_release_latest=False).create_releases()

        release = fake_github.created[0]
        assert release.commit == "abc123"
        assert release.generate_release_notes is True
        assert release.make_latest is False

    def test_custom_release_name_template(self, make_chart, make_releaser, fake_github, mock_print):
        make_chart()

        make_releaser(release_name_template="v{{ .Version }}").create_releases()

        assert list(fake_github.releases) == ["v0.1.0"]

    def test_release_notes_file(self, make_chart, make_releaser, fake_github, mock_print):
        make_chart(extra_files={"release-notes.md": b"# Changes\n\n- Fixed everything\n"})

        make_releaser(release_notes_file="release-notes.md").create_releases()

        assert fake_github.created[0].description == "# Changes\n\n- Fixed everything\n"

    def test_missing_release_notes_file_falls_back_to_description(self, make_chart, make_releaser, fake_github, mock_print):
        make_chart()

        make_releaser(release_notes_file="release-notes.md").create_releases()

        assert fake_github.created[0].description == "A Helm chart for Kubernetes"

    def test_provenance_file_is_uploaded(self, make_chart, make_releaser, fake_github, mock_print):
        archive = make_chart()
        Path(str(archive) + ".prov").write_text("signature")

        make_releaser().create_releases()

        names = [Path(a.path).name for a in fake_github.created[0].assets]
        assert names == ["test-chart-0.1.0.tgz", "test-chart-0.1.0.tgz.prov"]

    def test_existing_release_is_skipped(self, make_chart, make_releaser, fake_github, mock_print):
        make_chart()
        published(fake_github)

        created = make_releaser().create_releases()

        assert created == []
        assert fake_github.created == []

    def test_skip_existing_uses_local_index(self, tmp_path, make_chart, make_releaser, fake_github, mock_print):
        archive = make_chart()
        index = IndexFile.new()
        add_to_index(index, archive, ASSET_URL)
        index.write(tmp_path / "index" / "index.yaml")

        created = make_releaser(skip_existing=True).create_releases()

        assert created == []
        assert fake_github.created == []

    def test_missing_package_path(self, tmp_path, make_releaser, fake_github, mock_print):
        releaser = make_releaser(package_path=str(tmp_path / "does-not-exist"))

        with pytest.raises(NotFoundError):
            releaser.create_releases()

        assert fake_github.created == []

    def test_empty_package_path(self, make_releaser, fake_github, mock_print):
        with pytest.raises(NotFoundError, match="no charts found"):
            make_releaser().create_releases()

        assert fake_github.created == []

    def test_partial_failure_releases_remaining_packages(self, package_dir, make_chart, make_releaser, fake_github, mock_print):
        (package_dir / "broken-0.2.0.tgz").write_bytes(b"not a tarball")
        make_chart()
        releaser = make_releaser()

        with pytest.raises(ReleaseBatchError) as exc_info:
            releaser.create_releases()

        error = exc_info.value
        assert len(error.errors) == 1
        assert error.errors[0].package.name == "broken-0.2.0.tgz"
        assert isinstance(error.errors[0].error, InvalidChartError)
        assert [r.name for r in error.created] == ["test-chart-0.1.0"]

    def test_missing_archive_makes_no_release_call(self, package_dir, make_chart, make_releaser, fake_github, mock_print):
        (package_dir / "missing-0.2.0.tgz").symlink_to(package_dir / "gone.tgz")
        make_chart()

        with pytest.raises(ReleaseBatchError) as exc_info:
            make_releaser().create_releases()

        assert [e.package.name for e in exc_info.value.errors] == ["missing-0.2.0.tgz"]
        assert [r.name for r in fake_github.created] == ["test-chart-0.1.0"]

    def test_release_lookup_failure_is_collected(self, make_chart, make_releaser, fake_github, mock_print):
        make_chart()
        make_chart(name="other-chart", version="1.2.3")
        fake_github.fail_get_on.add("other-chart-1.2.3")

        with pytest.raises(ReleaseBatchError) as exc_info:
            make_releaser().create_releases()

        errors = exc_info.value.errors
        assert [e.release_name for e in errors] == ["other-chart-1.2.3"]
        assert isinstance(errors[0].error, httpx.HTTPError)
        assert [r.name for r in fake_github.created] == ["test-chart-0.1.0"]

    def test_store_failure_is_collected(self, make_chart, make_releaser, fake_github, mock_print):
        make_chart()
        make_chart(name="other-chart", version="1.2.3")
        fake_github.fail_on.add("other-chart-1.2.3")

        with pytest.raises(ReleaseBatchError) as exc_info:
            make_releaser().create_releases()

        assert [e.release_name for e in exc_info.value.errors] == ["other-chart-1.2.3"]
        assert list(fake_github.releases) == ["test-chart-0.1.0"]

    def test_packages_with_index_publishes_package(self, make_chart, make_releaser, fake_git, mock_print):
        make_chart()

        make_releaser(packages_with_index=True, push=True).create_releases()

        assert ("commit", str(fake_git.worktrees[0]), "Publishing chart package for test-chart-0.1.0") in fake_git.calls
        assert fake_git.committed_files == ["test-chart-0.1.0.tgz"]
        assert not fake_git.worktrees[0].exists()


class TestResolveIndexPath:
    """Test cases for index path normalization."""

    def test_directory(self, tmp_path, make_releaser):
        assert make_releaser(index_path=str(tmp_path)).resolve_index_path() == tmp_path / "index.yaml"

    def test_missing_directory(self, tmp_path, make_releaser):
        path = tmp_path / "new-dir"
        assert make_releaser(index_path=str(path)).resolve_index_path() == path / "index.yaml"

    def test_index_file(self, tmp_path, make_releaser):
        path = tmp_path / "index.yaml"
        assert make_releaser(index_path=str(path)).resolve_index_path() == path

    def test_other_file_is_rejected(self, tmp_path, make_releaser):
        path = tmp_path / "charts.yaml"
        path.write_text("")

        with pytest.raises(ConfigError):
            make_releaser(index_path=str(path)).resolve_index_path()


class TestUpdateIndexFile:
    """Test cases for Releaser.update_index_file."""

    def test_creates_index_from_releases(self, tmp_path, make_chart, make_releaser, fake_github, fake_http, mock_print):
        archive = make_chart()
        published(fake_github)

        assert make_releaser().update_index_file() is True

        data = read_index(tmp_path / "index" / "index.yaml")
        assert data["apiVersion"] == "v1"
        entry = data["entries"]["test-chart"][0]
        assert entry["urls"] == [ASSET_URL]
        assert entry["digest"] == digest_file(archive)
        assert fake_http.urls == ["https://owner.github.io/repo/index.yaml"]

    def test_charts_repo_overrides_remote_index_url(self, make_chart, make_releaser, fake_github, fake_http, mock_print):
        make_chart()
        published(fake_github)

        make_releaser(charts_repo="https://charts.example.com/").update_index_file()

        assert fake_http.urls == ["https://charts.example.com/index.yaml"]

    def test_second_update_is_a_no_op(self, tmp_path, make_chart, make_releaser, fake_github, mock_print):
        make_chart()
        published(fake_github)
        releaser = make_releaser()
        index_path = tmp_path / "index" / "index.yaml"

        assert releaser.update_index_file() is True
        first = index_path.read_bytes()

        assert releaser.update_index_file() is False
        assert index_path.read_bytes() == first

    def test_generated_is_later_than_remote_index(self, tmp_path, make_chart, make_releaser, fake_github, fake_http, mock_print):
        make_chart()
        published(fake_github)
        previous = parse_time("2999-01-01T00:00:00Z")
        fake_http.status_code = 200
        fake_http.content = b"apiVersion: v1\nentries: {}\ngenerated: '2999-01-01T00:00:00Z'\n"

        make_releaser().update_index_file()

        data = read_index(tmp_path / "index" / "index.yaml")
        assert parse_time(data["generated"]) > previous

    def test_remote_entries_are_kept(self, tmp_path, make_chart, make_releaser, fake_github, fake_http, mock_print):
        make_chart()
        published(fake_github)
        fake_http.status_code = 200
        fake_http.content = yaml.safe_dump({
            "apiVersion": "v1",
            "entries": {"old-chart": [{"name": "old-chart", "version": "0.0.1", "urls": ["https://example.com/old-chart-0.0.1.tgz"]}]},
            "generated": "2024-01-01T00:00:00Z",
        }).encode()

        make_releaser().update_index_file()

        data = read_index(tmp_path / "index" / "index.yaml")
        assert sorted(data["entries"]) == ["old-chart", "test-chart"]

    def test_packages_with_index_stores_file_name(self, tmp_path, make_chart, make_releaser, fake_github, mock_print):
        make_chart()
        published(fake_github)

        make_releaser(packages_with_index=True).update_index_file()

        data = read_index(tmp_path / "index" / "index.yaml")
        assert data["entries"]["test-chart"][0]["urls"] == ["test-chart-0.1.0.tgz"]

    def test_package_without_release_is_skipped(self, tmp_path, make_chart, make_releaser, mock_print):
        make_chart()

        assert make_releaser().update_index_file() is True

        assert read_index(tmp_path / "index" / "index.yaml")["entries"] == {}

    def test_push_commits_to_pages_branch(self, tmp_path, make_chart, make_releaser, fake_github, fake_git, mock_print):
        make_chart()
        published(fake_github)

        make_releaser(push=True).update_index_file()

        worktree = str(fake_git.worktrees[0])
        assert fake_git.names() == ["add_worktree", "add", "commit", "get_push_url", "push", "remove_worktree"]
        assert fake_git.calls[0] == ("add_worktree", "origin/gh-pages")
        assert ("commit", worktree, INDEX_COMMIT_MESSAGE) in fake_git.calls
        assert ("push", worktree, fake_git.PUSH_URL, "HEAD:refs/heads/gh-pages") in fake_git.calls
        assert fake_git.committed_files == ["index.yaml"]
        assert not fake_git.worktrees[0].exists()

    def test_push_with_packages_and_custom_pages_path(self, make_chart, make_releaser, fake_github, fake_git, mock_print):
        make_chart()
        published(fake_github)

        make_releaser(push=True, packages_with_index=True, pages_index_path="charts/index.yaml").update_index_file()

        assert fake_git.committed_files == ["charts/index.yaml", "charts/test-chart-0.1.0.tgz"]

    def test_worktree_removed_when_push_fails(self, make_chart, make_releaser, fake_github, fake_git, mock_print):
        make_chart()
        published(fake_github)
        fake_git.push_error = GitCommandError(["push"], 1, "rejected")

        with pytest.raises(GitCommandError):
            make_releaser(push=True).update_index_file()

        assert fake_git.names()[-1] == "remove_worktree"
        assert not fake_git.worktrees[0].exists()

    def test_local_index_kept_when_push_fails(self, tmp_path, make_chart, make_releaser, fake_github, fake_git, mock_print):
        make_chart()
        published(fake_github)
        fake_git.push_error = GitCommandError(["push"], 1, "rejected")

        with pytest.raises(GitCommandError):
            make_releaser(push=True).update_index_file()

        data = read_index(tmp_path / "index" / "index.yaml")
        assert data["entries"]["test-chart"][0]["urls"] == [ASSET_URL]

    def test_push_error_wins_over_cleanup_error(self, make_chart, make_releaser, fake_github, fake_git, mock_print):
        make_chart()
        published(fake_github)
        fake_git.push_error = GitCommandError(["push"], 1, "rejected")
        fake_git.remove_error = GitCommandError(["worktree", "remove"], 1, "locked")

        with pytest.raises(GitCommandError) as exc_info:
            make_releaser(push=True).update_index_file()

        assert exc_info.value.args_list == ["push"]

    def test_cleanup_error_after_successful_push_is_a_warning(self, make_chart, make_releaser, fake_github, fake_git, mock_print):
        make_chart()
        published(fake_github)
        fake_git.remove_error = GitCommandError(["worktree", "remove"], 1, "locked")

        assert make_releaser(push=True).update_index_file() is True

        assert fake_git.names()[-1] == "remove_worktree"
        warnings = [call.args[0] for call in mock_print.call_args_list if call.args]
        assert any("failed to remove worktree" in message for message in warnings)

    def test_pr_mode_pushes_branch_and_opens_pull_request(self, make_chart, make_releaser, fake_github, fake_git, mock_print):
        make_chart()
        published(fake_github)

        make_releaser(pr=True, pr_base_branch="main").update_index_file()

        push = [call for call in fake_git.calls if call[0] == "push"][0]
        refspec = push[-1]
        assert refspec.startswith(f"HEAD:refs/heads/{PR_BRANCH_PREFIX}")
        branch = refspec[len("HEAD:refs/heads/"):]
        assert fake_github.pull_requests == [("owner", "repo", INDEX_COMMIT_MESSAGE, branch, "main")]
        assert not fake_git.worktrees[0].exists()

    def test_no_push_without_flags(self, make_chart, make_releaser, fake_github, fake_git, mock_print):
        make_chart()
        published(fake_github)

        make_releaser().update_index_file()

        assert fake_git.calls == []


def test_random_branch_name():
    name = random_branch_name()

    assert name.startswith(PR_BRANCH_PREFIX)
    suffix = name[len(PR_BRANCH_PREFIX):]
    assert len(suffix) == 16
    assert suffix.isalpha() and suffix.islower()
