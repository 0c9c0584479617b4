"""
Platform status synchronization.

Refreshes each application's last known is_installed / is_running flags
from the platform and flags install_mismatch when an application believed
installed is no longer listed.
"""
import logging
from typing import Optional

from dockflow.repositories.application_repository import ApplicationRepository
from dockflow.schemas.application import Application
from dockflow.services.platform.installer import InstallerAdapter

logger = logging.getLogger(__name__)


class StatusSyncService:
    def __init__(self, repository: ApplicationRepository, installer: InstallerAdapter):
        self.repository = repository
        self.installer = installer

    @staticmethod
    def app_id_for(application: Application) -> str:
        return application.display_name or application.name

    async def sync_all(self, skip: Optional[set] = None) -> int:
        """
        Sync every application against one platform listing.

        Args:
            skip: Application ids to leave alone (e.g. currently deploying)

        Returns:
            Number of records that changed
        """
        skip = skip or set()
        listing = await self.installer.query_listing()
        if listing is None:
            logger.debug("Platform returned no app listing, skipping status sync")
            return 0

        changed = 0
        for application in self.repository.list():
            if application.id in skip:
                continue
            app = listing.find(self.app_id_for(application))
            is_installed = app is not None
            is_running = app.is_running if app else False
            mismatch = (application.is_installed or application.install_mismatch) and not is_installed

            if (
                application.is_installed != is_installed
                or application.is_running != is_running
                or application.install_mismatch != mismatch
            ):
                if mismatch:
                    logger.warning(f"{application.name} is marked installed but missing from the platform")
                self.repository.update(
                    application.id,
                    is_installed=is_installed,
                    is_running=is_running,
                    install_mismatch=mismatch,
                )
                changed += 1
        return changed

    async def sync_one(self, application_id: str) -> None:
        application = self.repository.get(application_id)
        if application is None:
            return
        status = await self.installer.app_status(self.app_id_for(application))
        self.repository.update(
            application_id,
            is_installed=status.is_installed,
            is_running=status.is_running,
            install_mismatch=(application.is_installed or application.install_mismatch) and not status.is_installed,
        )
