"""
Command line interface for the chart releaser.
"""

from typing import List, Optional

import httpx
import typer
from typing_extensions import Annotated

from chart_releaser.config import ReleaserConfig, load_config
from chart_releaser.errors import ReleaseBatchError, ReleaserError
from chart_releaser.git import Git
from chart_releaser.github import GitHubClient
from chart_releaser.helm import package_charts
from chart_releaser.releaser import Releaser

app = typer.Typer(help="Host Helm charts via GitHub Pages and Releases", no_args_is_help=True)

ConfigFile = Annotated[Optional[str], typer.Option("--config", help="Config file (default: ./cr.yaml or ~/.cr/cr.yaml)")]
Owner = Annotated[Optional[str], typer.Option("--owner", "-o", help="GitHub username or organization")]
GitRepo = Annotated[Optional[str], typer.Option("--git-repo", "-r", help="GitHub repository")]
Token = Annotated[Optional[str], typer.Option("--token", "-t", help="GitHub Auth Token")]
PackagePath = Annotated[Optional[str], typer.Option("--package-path", "-p", help="Path to directory with chart packages")]
IndexPath = Annotated[Optional[str], typer.Option("--index-path", "-i", help="Path to index file")]
ChartsRepo = Annotated[Optional[str], typer.Option("--charts-repo", "-c", help="The URL to the charts repository")]
GitBaseURL = Annotated[Optional[str], typer.Option("--git-base-url", help="GitHub Base URL (only needed for private GitHub)")]
GitUploadURL = Annotated[Optional[str], typer.Option("--git-upload-url", help="GitHub Upload URL (only needed for private GitHub)")]
PagesBranch = Annotated[Optional[str], typer.Option("--pages-branch", help="The GitHub pages branch")]
PagesIndexPath = Annotated[Optional[str], typer.Option("--pages-index-path", help="The GitHub pages index path")]
Remote = Annotated[Optional[str], typer.Option("--remote", help="The Git remote used when creating a local worktree for the GitHub Pages branch")]
Commit = Annotated[Optional[str], typer.Option("--commit", help="Target commit for release")]
ReleaseNameTemplate = Annotated[Optional[str], typer.Option("--release-name-template", help="Go template for computing release names, using chart metadata")]
PackagesWithIndex = Annotated[Optional[bool], typer.Option("--packages-with-index/--no-packages-with-index", help="Host the package files in the GitHub Pages branch")]
Push = Annotated[Optional[bool], typer.Option("--push/--no-push", help="Push index.yaml to the GitHub Pages branch (must not be set if --pr is set)")]
PR = Annotated[Optional[bool], typer.Option("--pr/--no-pr", help="Create a pull request for index.yaml against the GitHub Pages branch (must not be set if --push is set)")]


def _load(config_file: Optional[str], **overrides) -> ReleaserConfig:
    try:
        return load_config(config_file, **overrides)
    except ReleaserError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1)


def _build_releaser(config: ReleaserConfig) -> Releaser:
    try:
        config.require_github()
        github = GitHubClient(
            config.owner,
            config.git_repo,
            config.token,
            base_url=config.git_base_url,
            upload_url=config.git_upload_url,
        )
    except (ReleaserError, ValueError) as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1)
    return Releaser(config, github, Git())


@app.command()
def package(
    chart_paths: Annotated[List[str], typer.Argument(help="Chart directories to package")],
    config_file: ConfigFile = None,
    package_path: PackagePath = None,
    sign: Annotated[Optional[bool], typer.Option("--sign/--no-sign", help="Use a PGP private key to sign this package")] = None,
    key: Annotated[Optional[str], typer.Option("--key", help="Name of the key to use when signing")] = None,
    keyring: Annotated[Optional[str], typer.Option("--keyring", help="Location of a public keyring")] = None,
    passphrase_file: Annotated[Optional[str], typer.Option("--passphrase-file", help="Location of a file which stores the passphrase for the signing key")] = None,
    dependency_update: Annotated[bool, typer.Option("--dependency-update", help="Update dependencies before packaging")] = False,
):
    """Package Helm charts into the package path."""
    config = _load(
        config_file,
        package_path=package_path,
        sign=sign,
        key=key,
        keyring=keyring,
        passphrase_file=passphrase_file,
    )
    try:
        packaged = package_charts(chart_paths, config, dependency_update=dependency_update)
    except ReleaserError as e:
        typer.echo(f"❌ {e}", err=True)
        raise typer.Exit(1)

    for path in packaged:
        typer.echo(f"Successfully packaged chart {path}")


@app.command()
def upload(
    config_file: ConfigFile = None,
    owner: Owner = None,
    git_repo: GitRepo = None,
    token: Token = None,
    package_path: PackagePath = None,
    index_path: IndexPath = None,
    git_base_url: GitBaseURL = None,
    git_upload_url: GitUploadURL = None,
    commit: Commit = None,
    release_name_template: ReleaseNameTemplate = None,
    release_notes_file: Annotated[Optional[str], typer.Option("--release-notes-file", help="Markdown file with chart release notes. If set, the file is expected in the chart package")] = None,
    generate_release_notes: Annotated[Optional[bool], typer.Option("--generate-release-notes/--no-generate-release-notes", help="Let GitHub generate release notes")] = None,
    make_release_latest: Annotated[Optional[bool], typer.Option("--make-release-latest/--no-make-release-latest", help="Mark the created GitHub release as 'latest'")] = None,
    skip_existing: Annotated[Optional[bool], typer.Option("--skip-existing/--no-skip-existing", help="Skip upload if release exists")] = None,
    packages_with_index: PackagesWithIndex = None,
    pages_branch: PagesBranch = None,
    pages_index_path: PagesIndexPath = None,
    remote: Remote = None,
    push: Push = None,
):
    """Upload Helm chart packages to GitHub Releases."""
    config = _load(
        config_file,
        owner=owner,
        git_repo=git_repo,
        token=token,
        package_path=package_path,
        index_path=index_path,
        git_base_url=git_base_url,
        git_upload_url=git_upload_url,
        commit=commit,
        release_name_template=release_name_template,
        release_notes_file=release_notes_file,
        generate_release_notes=generate_release_notes,
        make_release_latest=make_release_latest,
        skip_existing=skip_existing,
        packages_with_index=packages_with_index,
        pages_branch=pages_branch,
        pages_index_path=pages_index_path,
        remote=remote,
        push=push,
    )
    releaser = _build_releaser(config)

    try:
        created = releaser.create_releases()
    except ReleaseBatchError as e:
        for error in e.errors:
            typer.echo(f"❌ {error}", err=True)
        typer.echo(f"Created {len(e.created)} release(s); {len(e.errors)} package(s) failed", err=True)
        raise typer.Exit(1)
    except (ReleaserError, httpx.HTTPError) as e:
        typer.echo(f"❌ {e}", err=True)
        raise typer.Exit(1)

    typer.echo(f"Created {len(created)} release(s)")


@app.command()
def index(
    config_file: ConfigFile = None,
    owner: Owner = None,
    git_repo: GitRepo = None,
    token: Token = None,
    charts_repo: ChartsRepo = None,
    index_path: IndexPath = None,
    package_path: PackagePath = None,
    git_base_url: GitBaseURL = None,
    git_upload_url: GitUploadURL = None,
    release_name_template: ReleaseNameTemplate = None,
    packages_with_index: PackagesWithIndex = None,
    pages_branch: PagesBranch = None,
    pages_index_path: PagesIndexPath = None,
    pr_base_branch: Annotated[Optional[str], typer.Option("--pr-base-branch", help="Branch pull requests are opened against (default: the pages branch)")] = None,
    remote: Remote = None,
    push: Push = None,
    pr: PR = None,
):
    """Update the Helm repository index.yaml from the released chart packages."""
    config = _load(
        config_file,
        owner=owner,
        git_repo=git_repo,
        token=token,
        charts_repo=charts_repo,
        index_path=index_path,
        package_path=package_path,
        git_base_url=git_base_url,
        git_upload_url=git_upload_url,
        release_name_template=release_name_template,
        packages_with_index=packages_with_index,
        pages_branch=pages_branch,
        pages_index_path=pages_index_path,
        pr_base_branch=pr_base_branch,
        remote=remote,
        push=push,
        pr=pr,
    )
    releaser = _build_releaser(config)

    try:
        updated = releaser.update_index_file()
    except (ReleaserError, httpx.HTTPError) as e:
        typer.echo(f"❌ Failed to update index: {e}", err=True)
        raise typer.Exit(1)

    if updated:
        typer.echo("✅ Index updated")
    else:
        typer.echo("Index already up to date")


def main() -> None:
    app()
