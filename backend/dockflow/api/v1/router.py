"""
API v1 router that includes all endpoint routers.
"""
from fastapi import APIRouter

from dockflow.api.v1.endpoints import (
    applications,
    queue,
    system,
)

# Create main API router
api_router = APIRouter()

# Include endpoint routers
api_router.include_router(
    applications.router,
    prefix="/applications",
    tags=["applications"],
)

api_router.include_router(
    queue.router,
    prefix="/queue",
    tags=["queue"],
)

api_router.include_router(
    system.router,
    prefix="/system",
    tags=["system"],
)
