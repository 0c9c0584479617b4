"""
Auto-update sweep for repository-sourced applications.

Run periodically by the apscheduler job registered in main.py. An
application is redeployed when auto-update is on, it is installed, its
interval has elapsed since the last check and its remote has new commits.
"""
import logging
from datetime import timedelta
from typing import List

from dockflow.repositories.application_repository import ApplicationRepository
from dockflow.schemas.application import Application, utcnow
from dockflow.services.deployment.scheduler import BuildScheduler
from dockflow.services.source.git_service import GitService

logger = logging.getLogger(__name__)


class UpdatePoller:
    def __init__(self, repository: ApplicationRepository, git: GitService, scheduler: BuildScheduler):
        self.repository = repository
        self.git = git
        self.scheduler = scheduler

    def _is_due(self, application: Application, now) -> bool:
        if not (application.auto_update and application.requires_build and application.is_installed):
            return False
        if not application.repository_url:
            return False
        if self.scheduler.is_queued(application.id) or self.scheduler.is_building(application.id):
            return False
        if application.last_update_check is None:
            return True
        return now - application.last_update_check >= timedelta(minutes=application.auto_update_interval)

    async def poll(self) -> List[str]:
        """
        Check due applications and enqueue those with upstream changes.

        Returns:
            Ids of the applications that were enqueued
        """
        now = utcnow()
        enqueued = []
        for application in self.repository.list():
            if not self._is_due(application, now):
                continue

            info = await self.git.check_for_updates(application.repository_url)
            self.repository.update(application.id, last_update_check=now)
            if info.error:
                logger.warning(f"Update check failed for {application.name}: {info.error}")
                continue
            if not info.has_updates:
                continue

            logger.info(
                f"{application.name} is {info.commits_behind} commit(s) behind, queueing update"
            )
            self.scheduler.enqueue(application.id, force=False)
            enqueued.append(application.id)
        return enqueued
