"""
API endpoints for system settings and platform information.
"""
from typing import List

from fastapi import APIRouter, Depends

from dockflow.core.container import get_installer, get_repository
from dockflow.repositories.application_repository import ApplicationRepository
from dockflow.schemas.application import GlobalSettings
from dockflow.services.platform.installer import InstallerAdapter

router = APIRouter()


@router.get("/settings", response_model=GlobalSettings)
async def get_settings(
    repository: ApplicationRepository = Depends(get_repository),
) -> GlobalSettings:
    """Effective global settings (environment overrides applied)."""
    return repository.get_settings()


@router.put("/settings", response_model=GlobalSettings)
async def update_settings(
    data: GlobalSettings,
    repository: ApplicationRepository = Depends(get_repository),
) -> GlobalSettings:
    """
    Persist global settings.

    A new max_concurrent_builds applies from the scheduler's next dispatch.
    """
    return repository.save_settings(data)


@router.get("/platform/apps", response_model=List[str])
async def list_platform_apps(
    installer: InstallerAdapter = Depends(get_installer),
) -> List[str]:
    """App ids currently registered with the platform."""
    return sorted(await installer.query_installed())
