"""
API endpoints for applications.

Routes stay thin: validation lives in the schemas, behavior in
ApplicationService, and domain exceptions are mapped to HTTP by the
registered exception handlers.
"""
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status

from dockflow.core.container import get_application_service
from dockflow.schemas.application import (
    Application,
    ApplicationCreate,
    DescriptorUpdate,
    DescriptorUpdateResponse,
)
from dockflow.schemas.queue import DeployRequest, OperationResponse
from dockflow.services.application_service import ApplicationService

router = APIRouter()


@router.get("", response_model=List[Application])
async def list_applications(
    service: ApplicationService = Depends(get_application_service),
) -> List[Application]:
    return service.list_applications()


@router.post("", response_model=Application, status_code=status.HTTP_201_CREATED)
async def create_application(
    data: ApplicationCreate,
    service: ApplicationService = Depends(get_application_service),
) -> Application:
    """
    Register an application.

    Raises:
        InvalidConfigurationError: If the source fields are inconsistent (400)
        ApplicationAlreadyExistsError: If the name is taken (409)
    """
    return service.create_application(data)


@router.get("/{application_id}", response_model=Application)
async def get_application(
    application_id: str,
    service: ApplicationService = Depends(get_application_service),
) -> Application:
    return service.get_application(application_id)


@router.delete("/{application_id}", response_model=OperationResponse)
async def delete_application(
    application_id: str,
    service: ApplicationService = Depends(get_application_service),
) -> OperationResponse:
    """Forget an application. Does not uninstall it from the platform."""
    removed = service.delete_application(application_id)
    return OperationResponse(success=removed, message=f"Application {application_id} removed")


@router.put("/{application_id}/descriptor", response_model=DescriptorUpdateResponse)
async def update_descriptor(
    application_id: str,
    data: DescriptorUpdate,
    service: ApplicationService = Depends(get_application_service),
) -> DescriptorUpdateResponse:
    """
    Replace the supplied descriptor.

    A redeploy is queued only when the change is structural, i.e. not
    limited to environment variable values.
    """
    return await service.update_descriptor(application_id, data.descriptor, redeploy=data.redeploy)


@router.post("/{application_id}/deploy", response_model=OperationResponse)
async def deploy_application(
    application_id: str,
    data: Optional[DeployRequest] = None,
    service: ApplicationService = Depends(get_application_service),
) -> OperationResponse:
    """
    Queue a deployment and wait for its result.

    Returns once the run fails early or reaches the install phase; install
    and verification outcomes show up on the application record.
    """
    return await service.deploy(application_id, force=data.force if data else False)


@router.post("/{application_id}/start", response_model=OperationResponse)
async def start_application(
    application_id: str,
    service: ApplicationService = Depends(get_application_service),
) -> OperationResponse:
    return await service.set_running(application_id, start=True)


@router.post("/{application_id}/stop", response_model=OperationResponse)
async def stop_application(
    application_id: str,
    service: ApplicationService = Depends(get_application_service),
) -> OperationResponse:
    return await service.set_running(application_id, start=False)


@router.post("/{application_id}/uninstall", response_model=OperationResponse)
async def uninstall_application(
    application_id: str,
    preserve_data: bool = Query(False, description="Keep the app's metadata folder"),
    service: ApplicationService = Depends(get_application_service),
) -> OperationResponse:
    return await service.uninstall(application_id, preserve_data=preserve_data)


@router.get("/{application_id}/logs", response_model=List[dict])
async def get_application_logs(
    application_id: str,
    service: ApplicationService = Depends(get_application_service),
) -> List[dict]:
    """Log lines of the application's most recent deployment run."""
    return service.logs(application_id)
