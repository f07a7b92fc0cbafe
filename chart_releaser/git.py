"""
Git operations for the chart releaser.
"""

import os
import shutil
import subprocess
import tempfile
from typing import List, Optional

from chart_releaser.errors import GitCommandError
from chart_releaser.interface import GitInterface

WORKTREE_PREFIX = "chart-releaser-"


def run_git(args: List[str], working_dir: Optional[str] = None) -> str:
    """Run a git command and return its stdout.

    Args:
        args: Arguments after ``git``
        working_dir: Directory to run in (current directory when empty)

    Raises:
        GitCommandError: If git exits non-zero
    """
    result = subprocess.run(
        ["git"] + args,
        capture_output=True,
        text=True,
        check=False,
        cwd=working_dir or None,
    )
    if result.returncode != 0:
        raise GitCommandError(args, result.returncode, result.stderr)
    return result.stdout


class Git(GitInterface):
    """Git worker that shells out to the git binary."""

    def add_worktree(self, working_dir: str, committish: str) -> str:
        """Check out ``committish`` detached into a fresh temporary directory."""
        path = tempfile.mkdtemp(prefix=WORKTREE_PREFIX)
        print(f"Creating worktree for {committish} in {path}")
        try:
            run_git(["worktree", "add", "--detach", path, committish], working_dir)
        except GitCommandError:
            shutil.rmtree(path, ignore_errors=True)
            raise
        return path

    def remove_worktree(self, working_dir: str, path: str) -> None:
        print(f"Removing worktree {path}")
        try:
            run_git(["worktree", "remove", path, "--force"], working_dir)
        finally:
            if os.path.exists(path):
                shutil.rmtree(path, ignore_errors=True)

    def add(self, working_dir: str, *paths: str) -> None:
        if not paths:
            raise ValueError("no paths specified")
        run_git(["add", "--"] + list(paths), working_dir)

    def commit(self, working_dir: str, message: str) -> None:
        run_git(["commit", "--message", message], working_dir)

    def push(self, working_dir: str, *args: str) -> None:
        run_git(["push"] + list(args), working_dir)

    def get_push_url(self, remote: str, token: str) -> str:
        """Return the HTTPS push URL of ``remote`` with the token embedded.

        SSH remotes (``git@github.com:owner/repo.git``) are rewritten to HTTPS.
        """
        push_url = run_git(["remote", "get-url", "--push", remote]).strip()
        return token_push_url(push_url, token)


def token_push_url(push_url: str, token: str) -> str:
    if push_url.startswith("git@"):
        host, _, path = push_url[len("git@"):].partition(":")
        push_url = f"https://{host}/{path}"
    elif push_url.startswith("ssh://"):
        push_url = "https://" + push_url[len("ssh://"):].split("@", 1)[-1]

    scheme, sep, rest = push_url.partition("://")
    if not sep:
        raise ValueError(f"unsupported push URL: {push_url}")
    # Drop any credentials already present in the URL
    rest = rest.split("@", 1)[-1] if "@" in rest.split("/", 1)[0] else rest
    return f"{scheme}://x-access-token:{token}@{rest}"
