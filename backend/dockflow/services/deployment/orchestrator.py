"""
Per-application deployment state machine.

One run walks an application through:

    Idle -> Cleaning -> [Building] -> Normalizing -> PreInstall -> Writing
         -> Installing -> AwaitingCompletion -> Verifying -> Success | Error

Phases before Installing fail fast and reach the caller directly. When
Installing begins the caller is handed a provisional result (on_handoff);
from then on the outcome is visible through the application record and the
DeploymentCompletedEvent published at the end of the run.
"""
import asyncio
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Awaitable, Callable, Optional

from dockflow.core.config import settings
from dockflow.core.events import (
    ApplicationStatusChangedEvent,
    DeploymentCompletedEvent,
    EventDispatcher,
    event_dispatcher,
)
from dockflow.core.exceptions import (
    DescriptorNotFoundError,
    DomainException,
    InstallError,
    InstallTimeoutError,
    VerificationMismatchError,
)
from dockflow.repositories.app_token_repository import AppTokenRepository, app_token_repository
from dockflow.repositories.application_repository import ApplicationRepository, application_repository
from dockflow.schemas.application import Application, ApplicationStatus, GlobalSettings, utcnow
from dockflow.services.compose import (
    NormalizedDescriptor,
    dump_descriptor,
    get_host_paths,
    has_structural_change,
    load_descriptor,
    normalize,
)
from dockflow.services.docker.build_service import ImageBuildService, build_service, local_image_tag
from dockflow.services.log_collector import LogCollector, collector_registry
from dockflow.services.platform.installer import InstallerAdapter, InstallResult, installer_adapter
from dockflow.services.source.git_service import GitService, git_service

logger = logging.getLogger(__name__)

DESCRIPTOR_FILE = "docker-compose.yml"

# Order of the pipeline states; a run never moves backwards through it.
PIPELINE_ORDER = [
    ApplicationStatus.IDLE,
    ApplicationStatus.CLEANING,
    ApplicationStatus.BUILDING,
    ApplicationStatus.NORMALIZING,
    ApplicationStatus.PRE_INSTALL,
    ApplicationStatus.WRITING,
    ApplicationStatus.INSTALLING,
    ApplicationStatus.AWAITING_COMPLETION,
    ApplicationStatus.VERIFYING,
    ApplicationStatus.SUCCESS,
]


@dataclass
class DeploymentResult:
    """Result handed back to the scheduler caller."""
    success: bool
    message: str
    app_id: Optional[str] = None


HandoffCallback = Callable[[DeploymentResult], None]


class _RunState:
    """Mutable bookkeeping for one run."""

    def __init__(self, application: Application, collector: LogCollector):
        self.application = application
        self.collector = collector
        self.status = ApplicationStatus.IDLE
        self.progress = 0
        self.app_id: Optional[str] = None
        self.handed_off = False

    def reached(self, status: ApplicationStatus) -> bool:
        return PIPELINE_ORDER.index(self.status) >= PIPELINE_ORDER.index(status)


class DeploymentOrchestrator:
    """
    Sequences source sync, build, normalization, install and verification.

    Collaborators are injected so tests can replace any of them.
    """

    def __init__(
        self,
        repository: Optional[ApplicationRepository] = None,
        installer: Optional[InstallerAdapter] = None,
        git: Optional[GitService] = None,
        builder: Optional[ImageBuildService] = None,
        tokens: Optional[AppTokenRepository] = None,
        dispatcher: Optional[EventDispatcher] = None,
        settle_delay: Optional[float] = None,
        install_timeout: Optional[float] = None,
        install_retry_timeout: Optional[float] = None,
        install_timeout_retries: Optional[int] = None,
        pre_install_timeout: Optional[float] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.repository = repository or application_repository
        self.installer = installer or installer_adapter
        self.git = git or git_service
        self.builder = builder or build_service
        self.tokens = tokens or app_token_repository
        self.dispatcher = dispatcher or event_dispatcher
        self.settle_delay = settings.INSTALL_SETTLE_DELAY if settle_delay is None else settle_delay
        self.install_timeout = install_timeout or settings.INSTALL_TIMEOUT
        self.install_retry_timeout = install_retry_timeout or settings.INSTALL_RETRY_TIMEOUT
        self.install_timeout_retries = (
            settings.INSTALL_TIMEOUT_RETRIES if install_timeout_retries is None else install_timeout_retries
        )
        self.pre_install_timeout = pre_install_timeout or settings.PRE_INSTALL_TIMEOUT
        self._sleep = sleep

    # ------------------------------------------------------------------
    # State helpers
    # ------------------------------------------------------------------

    def _advance(self, run: _RunState, status: ApplicationStatus, progress: int) -> None:
        """Move the run forward; backwards moves are ignored."""
        if PIPELINE_ORDER.index(status) < PIPELINE_ORDER.index(run.status):
            logger.warning(f"Ignoring backwards transition {run.status.value} -> {status.value}")
            return

        old_status = run.status
        run.status = status
        run.progress = max(run.progress, progress)
        self.repository.update(run.application.id, status=status, progress=run.progress)
        self.dispatcher.dispatch(ApplicationStatusChangedEvent(
            application_id=run.application.id,
            old_status=old_status.value,
            new_status=status.value,
            progress=run.progress,
        ))

    def _publish_completion(self, run: _RunState, success: bool, message: str, is_installed: bool, is_running: bool):
        self.dispatcher.dispatch(DeploymentCompletedEvent(
            application_id=run.application.id,
            app_id=run.app_id,
            success=success,
            message=message,
            is_installed=is_installed,
            is_running=is_running,
        ))

    # ------------------------------------------------------------------
    # Descriptor sources
    # ------------------------------------------------------------------

    def _read_supplied_descriptor(self, application: Application) -> str:
        content = self.repository.read_descriptor(application.name)
        if content is None:
            raise DescriptorNotFoundError(str(self.repository.descriptor_path(application.name)))
        return content

    def _read_checkout_descriptor(self, application: Application, checkout: Path) -> str:
        candidate = checkout / DESCRIPTOR_FILE
        if candidate.exists():
            return candidate.read_text(encoding="utf-8")
        return self._read_supplied_descriptor(application)

    def _normalize(
        self,
        run: _RunState,
        content: str,
        global_settings: GlobalSettings,
        local_image: Optional[str] = None,
        create_token: bool = True,
    ) -> NormalizedDescriptor:
        descriptor = load_descriptor(content)
        app_name = descriptor.get("name")
        token_value = None
        if isinstance(app_name, str) and app_name.strip():
            try:
                if create_token:
                    token = self.tokens.get_or_create(app_name.strip(), run.application.id)
                else:
                    token = self.tokens.get(app_name.strip())
                token_value = token.token if token else None
            except OSError as e:
                run.collector.warning(f"Failed to create app token: {e}")
        return normalize(descriptor, global_settings, local_image=local_image, app_token=token_value)

    def _is_up_to_date(self, run: _RunState, content: str, global_settings: GlobalSettings) -> bool:
        """Installed descriptor-sourced apps with no structural change need no reinstall."""
        application = run.application
        if application.requires_build or not application.is_installed:
            return False

        normalized = self._normalize(run, content, global_settings, create_token=False)
        installed = self.installer.read_descriptor(normalized.app_id)
        if installed is None:
            return False
        run.app_id = normalized.app_id
        return not has_structural_change(installed, dump_descriptor(normalized.rich))

    # ------------------------------------------------------------------
    # Run
    # ------------------------------------------------------------------

    async def run(
        self,
        application_id: str,
        force: bool = False,
        on_handoff: Optional[HandoffCallback] = None,
        collector: Optional[LogCollector] = None,
    ) -> DeploymentResult:
        """
        Deploy one application.

        Args:
            application_id: Application to deploy
            force: Reinstall even when the descriptor has not changed
            on_handoff: Called once with a provisional result when Installing begins
            collector: Log collector for this run (a fresh one by default)

        Returns:
            DeploymentResult for a completed run

        Raises:
            ApplicationNotFoundError: If the application does not exist
            DomainException: Any phase failure, after the record is set to Error
        """
        application = self.repository.get_or_raise(application_id)
        collector = collector or collector_registry.new(application_id)
        run = _RunState(application, collector)
        collector.system(f"Deployment started for {application.name} (force={force})")

        try:
            return await self._execute(run, force, on_handoff)
        except asyncio.CancelledError:
            logger.warning(f"Deployment of {application_id} cancelled during {run.status.value}")
            await asyncio.shield(self._fail(run, "Deployment interrupted"))
            raise
        except Exception as e:
            message = e.message if isinstance(e, DomainException) else str(e)
            await self._fail(run, message)
            raise

    async def _execute(
        self,
        run: _RunState,
        force: bool,
        on_handoff: Optional[HandoffCallback],
    ) -> DeploymentResult:
        application = run.application
        collector = run.collector
        global_settings = self.repository.get_settings()

        supplied = None
        if not application.requires_build:
            supplied = self._read_supplied_descriptor(application)
            if not force and self._is_up_to_date(run, supplied, global_settings):
                message = f"{run.app_id} is already up to date"
                collector.success(message)
                self.repository.update(
                    application.id,
                    status=ApplicationStatus.SUCCESS,
                    progress=100,
                    last_error=None,
                )
                self._publish_completion(run, True, message, True, application.is_running)
                return DeploymentResult(success=True, message=message, app_id=run.app_id)

        # Cleaning
        self._advance(run, ApplicationStatus.CLEANING, 5)
        cleaned = {application.name}
        if supplied is not None:
            cleaned.add(load_descriptor(supplied).get("name") or application.name)
        for app_id in sorted(cleaned):
            if self.installer.remove_metadata(str(app_id)):
                collector.info(f"Removed stale install metadata for {app_id}")

        # Building
        local_image = None
        content = supplied
        if application.requires_build:
            self._advance(run, ApplicationStatus.BUILDING, 15)
            collector.info(f"Syncing source from {application.repository_url}")
            checkout = await self.git.sync_source(application.repository_url)
            collector.success("Source sync completed")
            self._advance(run, ApplicationStatus.BUILDING, 30)
            local_image = await self.builder.build_image(
                str(checkout), local_image_tag(application.name), collector
            )
            collector.success(f"Built local image: {local_image}")
            self._advance(run, ApplicationStatus.BUILDING, 45)
            content = self._read_checkout_descriptor(application, checkout)

        # Normalizing
        self._advance(run, ApplicationStatus.NORMALIZING, 50)
        normalized = self._normalize(run, content, global_settings, local_image=local_image)
        run.app_id = normalized.app_id
        if normalized.app_id not in cleaned and self.installer.remove_metadata(normalized.app_id):
            collector.info(f"Removed stale install metadata for {normalized.app_id}")
        changes = {}
        if normalized.app_id != application.display_name:
            changes["display_name"] = normalized.app_id
        if normalized.icon and normalized.icon != application.icon:
            changes["icon"] = normalized.icon
        if changes:
            self.repository.update(application.id, **changes)
        collector.success(f"Descriptor normalized (main service: {normalized.main_service})")

        # PreInstallHook
        self._advance(run, ApplicationStatus.PRE_INSTALL, 55)
        command = normalized.pre_install_command
        if command and application.is_installed:
            collector.info("Skipping pre-install command, app is already installed")
        elif command:
            collector.info("Executing pre-install command")
            await self.installer.run_pre_install(
                command,
                user=global_settings.puid,
                timeout=self.pre_install_timeout,
                collector=collector,
            )
            collector.success("Pre-install command completed")

        # Writing
        self._advance(run, ApplicationStatus.WRITING, 60)
        await self.installer.ensure_host_paths(
            get_host_paths(normalized.rich), global_settings.puid, global_settings.pgid
        )
        descriptor_path = self.installer.write_descriptor(normalized.app_id, dump_descriptor(normalized.rich))
        collector.info(f"Descriptor written to {descriptor_path}")

        # Installing
        self._advance(run, ApplicationStatus.INSTALLING, 70)
        if on_handoff:
            run.handed_off = True
            on_handoff(DeploymentResult(
                success=True,
                message=f"Installation of {normalized.app_id} started",
                app_id=normalized.app_id,
            ))
        result = await self._install(run, str(descriptor_path), use_pull_policy=local_image is None)
        if not result.success:
            if result.timed_out:
                last_timeout = self.install_retry_timeout if self.install_timeout_retries else self.install_timeout
                raise InstallTimeoutError("Installation", last_timeout)
            raise InstallError(normalized.app_id, result.message)
        collector.success(result.message)

        # AwaitingCompletion
        self._advance(run, ApplicationStatus.AWAITING_COMPLETION, 85)
        await self._sleep(self.settle_delay)

        # Verifying
        self._advance(run, ApplicationStatus.VERIFYING, 90)
        status = await self.installer.app_status(normalized.app_id)
        if not status.is_installed:
            raise VerificationMismatchError(normalized.app_id)

        message = f"{normalized.app_id} installed successfully"
        run.status = ApplicationStatus.SUCCESS
        self.repository.update(
            application.id,
            status=ApplicationStatus.SUCCESS,
            progress=100,
            is_installed=True,
            is_running=status.is_running,
            install_mismatch=False,
            last_error=None,
            last_build_time=utcnow(),
        )
        collector.success(message)
        self._publish_completion(run, True, message, True, status.is_running)
        return DeploymentResult(success=True, message=message, app_id=normalized.app_id)

    async def _install(self, run: _RunState, descriptor_path: str, use_pull_policy: bool) -> InstallResult:
        """Install, retrying with the extended timeout when an attempt times out."""
        attempts = self.install_timeout_retries + 1
        result = None
        for attempt in range(attempts):
            timeout = self.install_timeout if attempt == 0 else self.install_retry_timeout
            if attempt > 0:
                run.collector.warning(
                    f"Installation timed out, retrying ({attempt + 1}/{attempts}) with {timeout:g}s timeout"
                )
            result = await self.installer.install(
                descriptor_path,
                run.app_id,
                collector=run.collector,
                use_pull_policy=use_pull_policy,
                timeout=timeout,
            )
            if result.success or not result.timed_out:
                break
        return result

    async def _fail(self, run: _RunState, message: str) -> None:
        """Record the failure, clean partial artifacts and publish completion."""
        run.collector.error(message)
        reached_install = run.reached(ApplicationStatus.INSTALLING)

        if run.app_id and run.reached(ApplicationStatus.WRITING):
            try:
                if reached_install:
                    await self.installer.manual_cleanup(run.app_id)
                else:
                    self.installer.remove_metadata(run.app_id)
            except Exception as e:
                logger.error(f"Cleanup after failed deployment of {run.app_id} failed: {e}")

        changes = {"status": ApplicationStatus.ERROR, "progress": 0, "last_error": message}
        if reached_install:
            changes.update(is_installed=False, is_running=False)
        try:
            self.repository.update(run.application.id, **changes)
        except DomainException as e:
            logger.error(f"Could not record failure for {run.application.id}: {e.message}")

        self.dispatcher.dispatch(ApplicationStatusChangedEvent(
            application_id=run.application.id,
            old_status=run.status.value,
            new_status=ApplicationStatus.ERROR.value,
            progress=0,
        ))
        self._publish_completion(run, False, message, False, False)


# Singleton instance
deployment_orchestrator = DeploymentOrchestrator()
