"""Git-based repository management."""

from __future__ import annotations

import logging
import os
import re
import subprocess
from pathlib import Path
from typing import Dict, List, Optional, Sequence

from ..errors import ProvisioningError

logger = logging.getLogger(__name__)

COMMIT_IDENTITY = {
    "GIT_AUTHOR_NAME": "cms-starter",
    "GIT_AUTHOR_EMAIL": "noreply@cms-starter",
    "GIT_COMMITTER_NAME": "cms-starter",
    "GIT_COMMITTER_EMAIL": "noreply@cms-starter",
}

_CREDENTIALS_IN_URL = re.compile(r"(https?://)[^@/\s]+@")


def _mask(text: str) -> str:
    return _CREDENTIALS_IN_URL.sub(r"\1***@", text)


class GitCommandError(ProvisioningError):
    """Raised when a git command fails."""

    def __init__(self, command: List[str], exit_code: int, stderr: str) -> None:
        self.command = [_mask(part) for part in command]
        self.exit_code = exit_code
        self.stderr = _mask(stderr)
        super().__init__(
            f"Git command {' '.join(self.command)} failed with code {exit_code}: {self.stderr}"
        )


def authenticated_url(clone_url: str, token: str) -> str:
    """https://github.com/o/r.git -> https://x-access-token:<token>@github.com/o/r.git"""
    return clone_url.replace("https://", f"https://x-access-token:{token}@", 1)


class GitRepositoryManager:
    """Wraps `git` CLI commands for publishing a generated project."""

    def __init__(self, git_binary: str = "git", branch: str = "main") -> None:
        self.git_binary = git_binary
        self.branch = branch

    def init_and_push(
        self,
        target_dir: Path,
        clone_url: str,
        token: str,
        exclude: Sequence[str] = (),
        message: str = "Initial commit from cms-starter",
    ) -> str:
        """Create the first commit of `target_dir` and push it to `clone_url`.

        Paths in `exclude` stay uncommitted (pathspec exclusions), so a CI
        workflow file can be pushed later without triggering on this commit.
        Returns the commit sha.
        """
        target_dir = Path(target_dir).resolve()
        self._run(["init"], cwd=target_dir)

        add_args = ["add", "."] + [f":!{path}" for path in exclude]
        self._run(add_args, cwd=target_dir)

        if not self._run(["status", "--porcelain"], cwd=target_dir).strip():
            raise ProvisioningError(
                "No files to commit. The generated project directory appears to be "
                "empty or all files are gitignored."
            )

        self._run(["commit", "-m", message], cwd=target_dir, env=COMMIT_IDENTITY)
        self._run(["remote", "add", "origin", authenticated_url(clone_url, token)], cwd=target_dir)
        self._run(["branch", "-M", self.branch], cwd=target_dir)
        self._run(["push", "-u", "origin", self.branch], cwd=target_dir)

        sha = self._run(["rev-parse", "HEAD"], cwd=target_dir).strip()
        logger.info("📤 Pushed %s to %s", sha[:7], clone_url)
        return sha

    def commit_and_push_paths(self, target_dir: Path, paths: Sequence[str], message: str) -> bool:
        """Commit and push `paths`. Returns False when there was nothing to commit."""
        target_dir = Path(target_dir).resolve()
        self._run(["add", "--", *paths], cwd=target_dir)
        if not self._run(["status", "--porcelain"], cwd=target_dir).strip():
            logger.info("Nothing to commit for %s", ", ".join(paths))
            return False
        self._run(["commit", "-m", message], cwd=target_dir, env=COMMIT_IDENTITY)
        self._run(["push", "origin", self.branch], cwd=target_dir)
        return True

    def _run(
        self,
        args: List[str],
        cwd: Optional[Path] = None,
        env: Optional[Dict[str, str]] = None,
    ) -> str:
        command = [self.git_binary] + args
        full_env = None
        if env:
            full_env = os.environ.copy()
            full_env.update(env)
        try:
            process = subprocess.run(
                command,
                cwd=str(cwd) if cwd else None,
                env=full_env,
                capture_output=True,
                text=True,
                check=False,
            )
        except OSError as exc:
            raise GitCommandError(command, -1, str(exc)) from exc
        if process.returncode != 0:
            raise GitCommandError(command, process.returncode, process.stderr.strip())
        return process.stdout
