"""
Docker image build services.
"""
from dockflow.services.docker.build_service import (
    BuildCommand,
    ImageBuildService,
    build_service,
    local_image_tag,
)

__all__ = [
    "BuildCommand",
    "ImageBuildService",
    "local_image_tag",
    # Singleton instances
    "build_service",
]
