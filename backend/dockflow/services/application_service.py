"""
Operator-facing application management.

Coordinates between:
- ApplicationRepository / AppTokenRepository for persisted state
- InstallerAdapter for uninstall and start/stop
- BuildScheduler for (re)deployments
"""
import logging
from typing import List

from dockflow.core.exceptions import DescriptorValidationError, InvalidConfigurationError
from dockflow.repositories.app_token_repository import AppTokenRepository
from dockflow.repositories.application_repository import ApplicationRepository, generate_application_id
from dockflow.schemas.application import (
    Application,
    ApplicationCreate,
    ApplicationStatus,
    DescriptorUpdateResponse,
    SourceKind,
)
from dockflow.schemas.queue import OperationResponse
from dockflow.services.compose import has_structural_change, load_descriptor
from dockflow.services.deployment.scheduler import BuildScheduler
from dockflow.services.log_collector import collector_registry
from dockflow.services.platform.installer import InstallerAdapter, OperationOutcome

logger = logging.getLogger(__name__)


class ApplicationService:
    """High-level operations behind the HTTP surface."""

    def __init__(
        self,
        repository: ApplicationRepository,
        tokens: AppTokenRepository,
        installer: InstallerAdapter,
        scheduler: BuildScheduler,
    ):
        self.repository = repository
        self.tokens = tokens
        self.installer = installer
        self.scheduler = scheduler

    def list_applications(self) -> List[Application]:
        return self.repository.list()

    def get_application(self, application_id: str) -> Application:
        return self.repository.get_or_raise(application_id)

    def create_application(self, data: ApplicationCreate) -> Application:
        """
        Register an application.

        Descriptor-sourced applications must supply a parseable descriptor;
        repository-sourced ones must supply a repository URL.

        Raises:
            InvalidConfigurationError: If the source fields do not match the kind
            DescriptorValidationError: If the supplied descriptor does not parse
            ApplicationAlreadyExistsError: If the name is taken
        """
        if data.source_kind == SourceKind.REPOSITORY and not data.repository_url:
            raise InvalidConfigurationError("repository_url", "required for repository applications")
        if data.source_kind == SourceKind.DESCRIPTOR and not data.descriptor:
            raise InvalidConfigurationError("descriptor", "required for descriptor applications")
        if data.descriptor:
            load_descriptor(data.descriptor)

        global_settings = self.repository.get_settings()
        application = Application(
            id=generate_application_id(data.repository_url or data.name),
            name=data.name,
            source_kind=data.source_kind,
            repository_url=data.repository_url,
            auto_update=data.auto_update,
            auto_update_interval=data.auto_update_interval or global_settings.default_auto_update_interval,
        )
        self.repository.add(application)
        if data.descriptor:
            self.repository.write_descriptor(application.name, data.descriptor)
        return application

    def delete_application(self, application_id: str) -> bool:
        application = self.repository.get_or_raise(application_id)
        self.scheduler.cancel_queued(application_id)
        self.tokens.remove(application.display_name or application.name)
        return self.repository.remove(application_id)

    async def deploy(self, application_id: str, force: bool = False) -> OperationResponse:
        self.repository.get_or_raise(application_id)
        result = await self.scheduler.submit(application_id, force)
        return OperationResponse(success=result.success, message=result.message)

    async def update_descriptor(self, application_id: str, descriptor: str, redeploy: bool = True) -> DescriptorUpdateResponse:
        """
        Replace the supplied descriptor and queue a redeploy on structural change.

        Raises:
            DescriptorValidationError: If the new descriptor does not parse
        """
        application = self.repository.get_or_raise(application_id)
        parsed = load_descriptor(descriptor)
        if not parsed.get("services"):
            raise DescriptorValidationError("descriptor defines no services", field="services")

        current = self.repository.read_descriptor(application.name)
        structural = current is None or has_structural_change(current, descriptor)
        self.repository.write_descriptor(application.name, descriptor)

        queued = False
        if structural and redeploy and application.is_installed:
            future = self.scheduler.enqueue(application_id, force=True)
            queued = not future.done()

        if structural:
            message = "Structural changes detected" + (", redeploy queued" if queued else "")
        else:
            message = "Only environment values changed, descriptor saved"
        return DescriptorUpdateResponse(structural_change=structural, redeploy_queued=queued, message=message)

    async def uninstall(self, application_id: str, preserve_data: bool = False) -> OperationResponse:
        application = self.repository.get_or_raise(application_id)
        if self.scheduler.is_building(application_id):
            return OperationResponse(success=False, message=f"{application.name} is currently deploying")
        self.scheduler.cancel_queued(application_id)

        app_id = application.display_name or application.name
        self.repository.update(application_id, status=ApplicationStatus.UNINSTALLING)
        result = await self.installer.uninstall(app_id, preserve_data=preserve_data)

        if result.success:
            self.tokens.remove(app_id)
            self.repository.update(
                application_id,
                status=ApplicationStatus.IDLE,
                progress=0,
                is_installed=False,
                is_running=False,
                install_mismatch=False,
            )
        else:
            self.repository.update(application_id, status=ApplicationStatus.ERROR, last_error=result.message)

        message = result.message
        if result.outcome == OperationOutcome.DEGRADED:
            message = f"{message} (degraded)"
        return OperationResponse(success=result.success, message=message)

    async def set_running(self, application_id: str, start: bool) -> OperationResponse:
        application = self.repository.get_or_raise(application_id)
        app_id = application.display_name or application.name
        previous = application.status
        self.repository.update(
            application_id,
            status=ApplicationStatus.STARTING if start else ApplicationStatus.STOPPING,
        )

        result = await self.installer.toggle(app_id, start)
        if result.success:
            self.repository.update(application_id, status=previous, is_running=start)
        else:
            self.repository.update(application_id, status=previous, last_error=result.message)
        return OperationResponse(success=result.success, message=result.message)

    def logs(self, application_id: str) -> List[dict]:
        self.repository.get_or_raise(application_id)
        collector = collector_registry.get(application_id)
        return [entry.to_dict() for entry in collector.entries()] if collector else []
