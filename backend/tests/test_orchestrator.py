"""
Tests for the deployment orchestrator.

Tests cover:
- Successful descriptor-sourced deployment and record updates
- Build path for repository-sourced applications
- Verification mismatch and install failure handling
- Pre-install hook execution and failure
- Install timeout retry with the extended timeout
- Up-to-date short-circuit for unchanged descriptors
- Handoff callback and completion events
- Fatal cleaning failures and runs interrupted by shutdown

Run with: pytest backend/tests/test_orchestrator.py -v
"""
import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from dockflow.core.events import DeploymentCompletedEvent, EventDispatcher
from dockflow.schemas.application import Application, ApplicationStatus, SourceKind

PRE_INSTALL_DESCRIPTOR = """\
name: myapp
services:
  web:
    image: nginx:1.25
x-casaos:
  pre-install-cmd: mkdir -p /DATA/AppData/myapp
"""

BUILD_DESCRIPTOR = """\
name: myapp
services:
  web:
    build: .
    ports:
      - "3000:3000"
"""


@pytest.fixture
def dispatcher():
    return EventDispatcher()


@pytest.fixture
def completed_events(dispatcher):
    events = []
    dispatcher.register(DeploymentCompletedEvent, events.append)
    return events


@pytest.fixture
def orchestrator(repository, token_repository, mock_installer, dispatcher):
    from dockflow.services.deployment.orchestrator import DeploymentOrchestrator

    return DeploymentOrchestrator(
        repository=repository,
        installer=mock_installer,
        git=AsyncMock(),
        builder=AsyncMock(),
        tokens=token_repository,
        dispatcher=dispatcher,
        settle_delay=0,
        install_timeout=10,
        install_retry_timeout=20,
        install_timeout_retries=1,
        pre_install_timeout=5,
        sleep=AsyncMock(),
    )


@pytest.fixture
def descriptor_app(repository, sample_descriptor):
    app = repository.add(Application(id="app-1", name="myapp"))
    repository.write_descriptor("myapp", sample_descriptor)
    return app


class TestSuccessfulDeployment:
    """Tests for the happy path."""

    @pytest.mark.asyncio
    async def test_descriptor_app_installs(self, orchestrator, repository, mock_installer, descriptor_app, completed_events):
        """A supplied descriptor is normalized, written, installed and verified."""
        result = await orchestrator.run("app-1")

        assert result.success is True
        assert result.app_id == "myapp"

        record = repository.get("app-1")
        assert record.status == ApplicationStatus.SUCCESS
        assert record.progress == 100
        assert record.is_installed is True
        assert record.is_running is True
        assert record.display_name == "myapp"
        assert record.last_error is None
        assert record.last_build_time is not None

        written = mock_installer.read_descriptor("myapp")
        assert written is not None
        assert "ports:" not in written
        assert "/DATA/AppData/myapp/config:/config" in written

        call = mock_installer.install.call_args
        assert call.args[1] == "myapp"
        assert call.kwargs["use_pull_policy"] is True
        assert call.kwargs["timeout"] == 10

        assert len(completed_events) == 1
        assert completed_events[0].success is True

    @pytest.mark.asyncio
    async def test_icon_is_recorded(self, orchestrator, repository, descriptor_app, sample_descriptor):
        repository.write_descriptor(
            "myapp", sample_descriptor + "  icon: https://cdn.example.com/myapp.png\n"
        )

        await orchestrator.run("app-1")

        assert repository.get("app-1").icon == "https://cdn.example.com/myapp.png"

    @pytest.mark.asyncio
    async def test_host_paths_are_created(self, orchestrator, mock_installer, descriptor_app):
        await orchestrator.run("app-1")

        paths, uid, gid = mock_installer.ensure_host_paths.call_args.args
        assert paths == ["/DATA/AppData/myapp/config"]
        assert (uid, gid) == ("1000", "1000")

    @pytest.mark.asyncio
    async def test_handoff_happens_at_install(self, orchestrator, mock_installer, descriptor_app):
        """The provisional result is handed off before install runs."""
        handoffs = []

        async def install(*args, **kwargs):
            assert len(handoffs) == 1
            from dockflow.services.platform.installer import InstallResult
            return InstallResult(success=True, message="Installation completed successfully.")

        mock_installer.install.side_effect = install

        await orchestrator.run("app-1", on_handoff=handoffs.append)

        assert handoffs[0].success is True
        assert handoffs[0].app_id == "myapp"

    @pytest.mark.asyncio
    async def test_progress_never_moves_backwards(self, orchestrator, dispatcher, descriptor_app):
        from dockflow.core.events import ApplicationStatusChangedEvent

        changes = []
        dispatcher.register(ApplicationStatusChangedEvent, changes.append)

        await orchestrator.run("app-1")

        progress = [event.progress for event in changes]
        assert progress == sorted(progress)
        assert changes[-1].new_status == ApplicationStatus.VERIFYING.value


class TestBuildPath:
    """Tests for repository-sourced applications."""

    @pytest.mark.asyncio
    async def test_build_replaces_image_and_skips_pull(self, orchestrator, repository, mock_installer, tmp_path):
        checkout = tmp_path / "checkout"
        checkout.mkdir()
        (checkout / "docker-compose.yml").write_text(BUILD_DESCRIPTOR)
        repository.add(Application(
            id="app-2",
            name="myapp",
            source_kind=SourceKind.REPOSITORY,
            repository_url="https://github.com/acme/myapp.git",
        ))
        orchestrator.git.sync_source.return_value = checkout
        orchestrator.builder.build_image.return_value = "myapp:latest"

        result = await orchestrator.run("app-2")

        assert result.success is True
        orchestrator.git.sync_source.assert_awaited_once_with("https://github.com/acme/myapp.git")
        assert orchestrator.builder.build_image.call_args.args[:2] == (str(checkout), "myapp:latest")

        written = mock_installer.read_descriptor("myapp")
        assert "image: myapp:latest" in written
        assert "build:" not in written
        assert mock_installer.install.call_args.kwargs["use_pull_policy"] is False

    @pytest.mark.asyncio
    async def test_build_failure_marks_error(self, orchestrator, repository, mock_installer):
        from dockflow.core.exceptions import BuildError

        repository.add(Application(
            id="app-2",
            name="myapp",
            source_kind=SourceKind.REPOSITORY,
            repository_url="https://github.com/acme/myapp.git",
        ))
        orchestrator.git.sync_source.return_value = "/tmp/nowhere"
        orchestrator.builder.build_image.side_effect = BuildError("myapp:latest", "Docker build failed with code 1")

        with pytest.raises(BuildError):
            await orchestrator.run("app-2")

        record = repository.get("app-2")
        assert record.status == ApplicationStatus.ERROR
        assert "Docker build failed" in record.last_error
        mock_installer.install.assert_not_called()
        mock_installer.manual_cleanup.assert_not_called()


class TestFailures:
    """Tests for failure handling."""

    @pytest.mark.asyncio
    async def test_verification_mismatch(self, orchestrator, repository, mock_installer, descriptor_app, completed_events):
        """Install succeeded but the platform does not list the app."""
        from dockflow.core.exceptions import VerificationMismatchError
        from dockflow.services.platform.installer import AppStatus

        mock_installer.app_status.return_value = AppStatus()

        with pytest.raises(VerificationMismatchError):
            await orchestrator.run("app-1")

        record = repository.get("app-1")
        assert record.status == ApplicationStatus.ERROR
        assert record.progress == 0
        assert record.is_installed is False
        assert "not registered with the platform" in record.last_error
        mock_installer.manual_cleanup.assert_awaited_once_with("myapp")
        assert completed_events[-1].success is False

    @pytest.mark.asyncio
    async def test_install_failure(self, orchestrator, repository, mock_installer, descriptor_app):
        from dockflow.core.exceptions import InstallError
        from dockflow.services.platform.installer import InstallResult

        mock_installer.install.return_value = InstallResult(
            success=False, message="Installation failed (exit code: 1)", exit_code=1
        )

        with pytest.raises(InstallError):
            await orchestrator.run("app-1")

        assert mock_installer.install.call_count == 1
        assert "exit code: 1" in repository.get("app-1").last_error
        mock_installer.manual_cleanup.assert_awaited_once_with("myapp")

    @pytest.mark.asyncio
    async def test_cleaning_failure_is_fatal(self, orchestrator, repository, mock_installer, descriptor_app):
        from dockflow.core.exceptions import ExternalToolError

        mock_installer.remove_metadata = MagicMock(
            side_effect=ExternalToolError("cleanup", "could not remove /DATA/AppData/casaos/apps/myapp")
        )
        mock_installer.write_descriptor = MagicMock()

        with pytest.raises(ExternalToolError):
            await orchestrator.run("app-1")

        record = repository.get("app-1")
        assert record.status == ApplicationStatus.ERROR
        assert record.progress == 0
        assert record.last_error.startswith("cleanup failed")
        mock_installer.write_descriptor.assert_not_called()
        mock_installer.install.assert_not_called()

    @pytest.mark.asyncio
    async def test_missing_supplied_descriptor(self, orchestrator, repository):
        from dockflow.core.exceptions import DescriptorNotFoundError

        repository.add(Application(id="app-3", name="nodescriptor"))

        with pytest.raises(DescriptorNotFoundError):
            await orchestrator.run("app-3")

        assert repository.get("app-3").status == ApplicationStatus.ERROR

    @pytest.mark.asyncio
    async def test_unknown_application(self, orchestrator):
        from dockflow.core.exceptions import ApplicationNotFoundError

        with pytest.raises(ApplicationNotFoundError):
            await orchestrator.run("missing")


class TestPreInstallHook:
    """Tests for the pre-install phase."""

    @pytest.mark.asyncio
    async def test_hook_runs_as_puid(self, orchestrator, repository, mock_installer):
        repository.add(Application(id="app-1", name="myapp"))
        repository.write_descriptor("myapp", PRE_INSTALL_DESCRIPTOR)

        await orchestrator.run("app-1")

        call = mock_installer.run_pre_install.call_args
        assert call.args[0] == "mkdir -p /DATA/AppData/myapp"
        assert call.kwargs["user"] == "1000"
        assert call.kwargs["timeout"] == 5

        written = mock_installer.read_descriptor("myapp")
        assert "pre-install-cmd" in written

    @pytest.mark.asyncio
    async def test_hook_failure_aborts_before_install(self, orchestrator, repository, mock_installer):
        from dockflow.core.exceptions import ExternalToolError

        repository.add(Application(id="app-1", name="myapp"))
        repository.write_descriptor("myapp", PRE_INSTALL_DESCRIPTOR)
        mock_installer.run_pre_install.side_effect = ExternalToolError("pre-install command", "exit code 2")

        with pytest.raises(ExternalToolError):
            await orchestrator.run("app-1")

        record = repository.get("app-1")
        assert record.status == ApplicationStatus.ERROR
        assert "exit code 2" in record.last_error
        mock_installer.install.assert_not_called()
        mock_installer.manual_cleanup.assert_not_called()
        assert mock_installer.read_descriptor("myapp") is None

    @pytest.mark.asyncio
    async def test_hook_skipped_when_already_installed(self, orchestrator, repository, mock_installer):
        repository.add(Application(id="app-1", name="myapp", is_installed=True))
        repository.write_descriptor("myapp", PRE_INSTALL_DESCRIPTOR)

        result = await orchestrator.run("app-1", force=True)

        assert result.success is True
        mock_installer.run_pre_install.assert_not_called()


class TestInstallRetry:
    """Tests for the install timeout retry."""

    @pytest.mark.asyncio
    async def test_timeout_is_retried_with_extended_timeout(self, orchestrator, mock_installer, descriptor_app):
        from dockflow.services.platform.installer import InstallResult

        mock_installer.install.side_effect = [
            InstallResult(success=False, message="Installation timed out after 10 seconds", timed_out=True),
            InstallResult(success=True, message="Installation completed successfully."),
        ]

        result = await orchestrator.run("app-1")

        assert result.success is True
        timeouts = [call.kwargs["timeout"] for call in mock_installer.install.call_args_list]
        assert timeouts == [10, 20]

    @pytest.mark.asyncio
    async def test_repeated_timeout_fails(self, orchestrator, repository, mock_installer, descriptor_app):
        from dockflow.core.exceptions import InstallTimeoutError
        from dockflow.services.platform.installer import InstallResult

        mock_installer.install.return_value = InstallResult(
            success=False, message="Installation timed out", timed_out=True
        )

        with pytest.raises(InstallTimeoutError) as exc_info:
            await orchestrator.run("app-1")

        assert exc_info.value.message == "Installation timed out after 20 seconds"
        assert mock_installer.install.call_count == 2
        assert repository.get("app-1").status == ApplicationStatus.ERROR


class TestUpToDate:
    """Tests for the unchanged-descriptor short-circuit."""

    @pytest.mark.asyncio
    async def test_second_run_is_skipped(self, orchestrator, mock_installer, descriptor_app):
        first = await orchestrator.run("app-1")
        second = await orchestrator.run("app-1")

        assert first.success and second.success
        assert second.message == "myapp is already up to date"
        assert mock_installer.install.call_count == 1

    @pytest.mark.asyncio
    async def test_env_value_change_is_still_up_to_date(self, orchestrator, repository, mock_installer, descriptor_app, sample_descriptor):
        await orchestrator.run("app-1")
        repository.write_descriptor("myapp", sample_descriptor.replace("TOKEN: abc", "TOKEN: rotated"))

        result = await orchestrator.run("app-1")

        assert "already up to date" in result.message
        assert mock_installer.install.call_count == 1

    @pytest.mark.asyncio
    async def test_force_reinstalls(self, orchestrator, mock_installer, descriptor_app):
        await orchestrator.run("app-1")
        await orchestrator.run("app-1", force=True)

        assert mock_installer.install.call_count == 2

    @pytest.mark.asyncio
    async def test_structural_change_reinstalls(self, orchestrator, repository, mock_installer, descriptor_app, sample_descriptor):
        await orchestrator.run("app-1")
        repository.write_descriptor("myapp", sample_descriptor.replace("nginx:1.25", "nginx:1.26"))

        await orchestrator.run("app-1")

        assert mock_installer.install.call_count == 2
        assert "nginx:1.26" in mock_installer.read_descriptor("myapp")


class TestInterruptedRun:
    """Tests for runs cancelled by scheduler shutdown."""

    @pytest.mark.asyncio
    async def test_shutdown_during_install_cleans_up(self, orchestrator, repository, mock_installer, dispatcher, descriptor_app, completed_events):
        from dockflow.services.deployment.scheduler import BuildScheduler, JobStatus

        async def hang(*args, **kwargs):
            await asyncio.Event().wait()

        mock_installer.install.side_effect = hang
        mock_installer.manual_cleanup.side_effect = lambda app_id: mock_installer.remove_metadata(app_id)
        scheduler = BuildScheduler(runner=orchestrator.run, limit_provider=lambda: 1, dispatcher=dispatcher)

        provisional = await scheduler.enqueue("app-1")
        assert repository.get("app-1").status == ApplicationStatus.INSTALLING
        assert mock_installer.read_descriptor("myapp") is not None

        await scheduler.shutdown()

        record = repository.get("app-1")
        assert provisional.success is True
        assert record.status == ApplicationStatus.ERROR
        assert record.progress == 0
        assert record.last_error == "Deployment interrupted"
        assert mock_installer.read_descriptor("myapp") is None
        assert scheduler.recent_jobs()[0].status == JobStatus.FAILED
        assert completed_events[-1].success is False

    @pytest.mark.asyncio
    async def test_cancelled_run_reraises(self, orchestrator, repository, mock_installer, descriptor_app):
        started = asyncio.Event()

        async def hang(*args, **kwargs):
            started.set()
            await asyncio.Event().wait()

        mock_installer.install.side_effect = hang
        task = asyncio.get_running_loop().create_task(orchestrator.run("app-1"))
        await started.wait()

        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert repository.get("app-1").status == ApplicationStatus.ERROR
        mock_installer.manual_cleanup.assert_awaited_once_with("myapp")
