"""
Service for version-control source synchronization.

Clones an application's repository on first use and fast-forwards it on
later runs. Also answers "are there new commits upstream?" for the
auto-update poller without touching the working tree.
"""
import asyncio
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

from dockflow.core.config import settings
from dockflow.core.exceptions import SourceSyncError

logger = logging.getLogger(__name__)

AUTH_FAILURE_MARKERS = (
    "Authentication failed",
    "Permission denied",
    "could not read Username",
    "Repository not found",
    "repository not found",
)


@dataclass
class GitUpdateInfo:
    """Comparison of the local checkout with its remote."""
    has_updates: bool
    current_commit: str = ""
    latest_commit: str = ""
    commits_behind: int = 0  # -1 when unknown
    error: Optional[str] = None


def repository_dir_name(locator: str) -> str:
    """"https://github.com/acme/app.git" -> "app" """
    name = locator.rstrip("/")
    if name.endswith(".git"):
        name = name[:-4]
    return name.split("/")[-1] or "repo"


class GitService:
    """Thin async wrapper around the git CLI."""

    def __init__(self, workspace_dir: Optional[str] = None, timeout: Optional[int] = None):
        self.workspace_dir = Path(workspace_dir or settings.WORKSPACE_DIR)
        self.timeout = timeout or settings.GIT_TIMEOUT

    def local_path_for(self, locator: str) -> Path:
        return self.workspace_dir / repository_dir_name(locator)

    async def _run_git(self, args: List[str], timeout: Optional[int] = None) -> tuple[int, str, str]:
        """
        Run a git command non-interactively.

        Returns:
            Tuple of (return_code, stdout, stderr)
        """
        cmd = ["git", *args]
        env = {**os.environ, "GIT_TERMINAL_PROMPT": "0"}
        logger.debug(f"Running git command: {' '.join(cmd)}")

        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=env,
            )
        except OSError as e:
            return -1, "", f"Failed to start git: {e}"

        try:
            stdout, stderr = await asyncio.wait_for(
                process.communicate(),
                timeout=timeout or self.timeout,
            )
        except asyncio.TimeoutError:
            process.kill()
            await process.wait()
            return -1, "", f"git {args[0]} timed out"

        return (
            process.returncode,
            stdout.decode(errors="replace").strip() if stdout else "",
            stderr.decode(errors="replace").strip() if stderr else "",
        )

    async def sync_source(self, locator: str, local_path: Optional[str] = None) -> Path:
        """
        Clone the repository if absent, otherwise pull the latest changes.

        Args:
            locator: Repository URL
            local_path: Checkout directory (defaults to one below WORKSPACE_DIR)

        Returns:
            Path to the checkout

        Raises:
            SourceSyncError: If git fails (auth, network, conflicts)
        """
        target = Path(local_path) if local_path else self.local_path_for(locator)

        if not target.exists():
            logger.info(f"Cloning {locator} into {target}")
            target.parent.mkdir(parents=True, exist_ok=True)
            code, _, stderr = await self._run_git(["clone", locator, str(target)])
        else:
            logger.info(f"Pulling latest in {target}")
            code, _, stderr = await self._run_git(["-C", str(target), "pull"])

        if code != 0:
            reason = stderr or f"exit code {code}"
            if any(marker in reason for marker in AUTH_FAILURE_MARKERS):
                reason = (
                    f"{reason}. For private repositories include a personal access token "
                    "in the URL: https://<token>@github.com/owner/repo.git"
                )
            logger.error(f"Git operation failed for {locator}: {reason}")
            raise SourceSyncError(locator, reason)

        return target

    async def check_for_updates(self, locator: str, local_path: Optional[str] = None) -> GitUpdateInfo:
        """
        Check whether the remote has commits the local checkout lacks.

        A missing checkout counts as having updates. Errors are reported in
        the result rather than raised.
        """
        target = Path(local_path) if local_path else self.local_path_for(locator)
        if not target.exists():
            return GitUpdateInfo(has_updates=True, latest_commit="unknown", commits_behind=-1)

        code, _, stderr = await self._run_git(["-C", str(target), "fetch", "origin"])
        if code != 0:
            logger.error(f"Error checking updates for {locator}: {stderr}")
            return GitUpdateInfo(has_updates=False, error=stderr or f"exit code {code}")

        code, current, stderr = await self._run_git(["-C", str(target), "rev-parse", "HEAD"])
        if code != 0:
            return GitUpdateInfo(has_updates=False, error=stderr)
        code, latest, stderr = await self._run_git(["-C", str(target), "rev-parse", "origin/HEAD"])
        if code != 0:
            return GitUpdateInfo(has_updates=False, current_commit=current, error=stderr)

        if current == latest:
            return GitUpdateInfo(has_updates=False, current_commit=current, latest_commit=latest)

        code, count, _ = await self._run_git(
            ["-C", str(target), "rev-list", "--count", "HEAD..origin/HEAD"]
        )
        try:
            behind = int(count) if code == 0 else -1
        except ValueError:
            behind = -1
        return GitUpdateInfo(
            has_updates=True,
            current_commit=current,
            latest_commit=latest,
            commits_behind=behind,
        )


# Singleton instance
git_service = GitService()
