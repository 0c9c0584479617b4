"""
Tests for GitService.

Tests cover:
- Clone vs pull selection
- Failure reporting with credential hints
- Update checks against the remote

Run with: pytest backend/tests/test_git_service.py -v
"""
from unittest.mock import AsyncMock, patch

import pytest


@pytest.fixture
def git(tmp_path):
    from dockflow.services.source.git_service import GitService
    return GitService(workspace_dir=str(tmp_path / "repos"), timeout=5)


class TestRepositoryDirName:
    def test_strips_suffix(self):
        from dockflow.services.source.git_service import repository_dir_name

        assert repository_dir_name("https://github.com/acme/app.git") == "app"
        assert repository_dir_name("https://github.com/acme/app/") == "app"


class TestSyncSource:
    """Tests for sync_source()."""

    @pytest.mark.asyncio
    async def test_clones_when_missing(self, git):
        with patch.object(git, "_run_git", AsyncMock(return_value=(0, "", ""))) as mock_git:
            path = await git.sync_source("https://github.com/acme/app.git")

        assert path == git.workspace_dir / "app"
        assert mock_git.call_args.args[0] == ["clone", "https://github.com/acme/app.git", str(path)]

    @pytest.mark.asyncio
    async def test_pulls_when_present(self, git):
        (git.workspace_dir / "app").mkdir(parents=True)

        with patch.object(git, "_run_git", AsyncMock(return_value=(0, "", ""))) as mock_git:
            await git.sync_source("https://github.com/acme/app.git")

        assert mock_git.call_args.args[0][-1] == "pull"

    @pytest.mark.asyncio
    async def test_auth_failure_includes_hint(self, git):
        from dockflow.core.exceptions import SourceSyncError

        failure = (128, "", "fatal: Authentication failed for 'https://github.com/acme/app.git/'")
        with patch.object(git, "_run_git", AsyncMock(return_value=failure)):
            with pytest.raises(SourceSyncError) as exc_info:
                await git.sync_source("https://github.com/acme/app.git")

        assert "personal access token" in exc_info.value.message
        assert exc_info.value.details["locator"] == "https://github.com/acme/app.git"


class TestCheckForUpdates:
    """Tests for check_for_updates()."""

    @pytest.mark.asyncio
    async def test_missing_checkout_has_updates(self, git):
        info = await git.check_for_updates("https://github.com/acme/app.git")

        assert info.has_updates is True
        assert info.commits_behind == -1

    @pytest.mark.asyncio
    async def test_behind_remote(self, git):
        (git.workspace_dir / "app").mkdir(parents=True)
        results = [(0, "", ""), (0, "aaa", ""), (0, "bbb", ""), (0, "3", "")]

        with patch.object(git, "_run_git", AsyncMock(side_effect=results)):
            info = await git.check_for_updates("https://github.com/acme/app.git")

        assert info.has_updates is True
        assert info.current_commit == "aaa"
        assert info.latest_commit == "bbb"
        assert info.commits_behind == 3

    @pytest.mark.asyncio
    async def test_up_to_date(self, git):
        (git.workspace_dir / "app").mkdir(parents=True)
        results = [(0, "", ""), (0, "aaa", ""), (0, "aaa", "")]

        with patch.object(git, "_run_git", AsyncMock(side_effect=results)):
            info = await git.check_for_updates("https://github.com/acme/app.git")

        assert info.has_updates is False

    @pytest.mark.asyncio
    async def test_fetch_failure_is_reported(self, git):
        (git.workspace_dir / "app").mkdir(parents=True)

        with patch.object(git, "_run_git", AsyncMock(return_value=(1, "", "network unreachable"))):
            info = await git.check_for_updates("https://github.com/acme/app.git")

        assert info.has_updates is False
        assert info.error == "network unreachable"

    @pytest.mark.asyncio
    async def test_run_git_disables_prompts(self, git):
        process = AsyncMock()
        process.communicate.return_value = (b"ok\n", b"")
        process.returncode = 0

        with patch("asyncio.create_subprocess_exec", return_value=process) as mock_exec:
            code, stdout, _ = await git._run_git(["status"])

        assert (code, stdout) == (0, "ok")
        assert mock_exec.call_args.kwargs["env"]["GIT_TERMINAL_PROMPT"] == "0"
