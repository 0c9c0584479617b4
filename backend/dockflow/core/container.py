"""
Process-wide service wiring.

Builds the scheduler and the services around it once, from the module
singletons, and exposes FastAPI dependency getters. Tests replace the
getters with app.dependency_overrides or call reset_container().
"""
import logging
from typing import Optional

from dockflow.repositories.app_token_repository import app_token_repository
from dockflow.repositories.application_repository import application_repository
from dockflow.services.application_service import ApplicationService
from dockflow.services.deployment.orchestrator import deployment_orchestrator
from dockflow.services.deployment.scheduler import BuildScheduler
from dockflow.services.platform.installer import installer_adapter
from dockflow.services.source.git_service import git_service
from dockflow.services.status_sync_service import StatusSyncService
from dockflow.services.update_poller import UpdatePoller

logger = logging.getLogger(__name__)


class ServiceContainer:
    def __init__(self):
        self.repository = application_repository
        self.tokens = app_token_repository
        self.installer = installer_adapter
        self.orchestrator = deployment_orchestrator
        self.scheduler = BuildScheduler(
            runner=lambda application_id, force, on_handoff: self.orchestrator.run(
                application_id, force=force, on_handoff=on_handoff
            ),
            limit_provider=lambda: self.repository.get_settings().max_concurrent_builds,
        )
        self.application_service = ApplicationService(
            repository=self.repository,
            tokens=self.tokens,
            installer=self.installer,
            scheduler=self.scheduler,
        )
        self.status_sync = StatusSyncService(self.repository, self.installer)
        self.update_poller = UpdatePoller(self.repository, git_service, self.scheduler)


_container: Optional[ServiceContainer] = None


def get_container() -> ServiceContainer:
    global _container
    if _container is None:
        _container = ServiceContainer()
    return _container


def reset_container() -> None:
    global _container
    _container = None


def get_scheduler() -> BuildScheduler:
    return get_container().scheduler


def get_application_service() -> ApplicationService:
    return get_container().application_service


def get_repository():
    return get_container().repository


def get_installer():
    return get_container().installer
