"""
Target platform integration.

- PlatformExecClient: docker CLI and exec-tunnelled platform API requests
- responses: decoders for the platform's shape-varying app listings
- InstallerAdapter: install, status, uninstall, start/stop
"""
from dockflow.services.platform.exec_client import CommandResult, PlatformExecClient, PlatformResponse
from dockflow.services.platform.responses import AppListing, PlatformApp, decode_app_listing
from dockflow.services.platform.installer import (
    AppStatus,
    InstallerAdapter,
    InstallResult,
    OperationOutcome,
    PlatformOperationResult,
    installer_adapter,
)

__all__ = [
    "AppListing",
    "AppStatus",
    "CommandResult",
    "InstallerAdapter",
    "InstallResult",
    "OperationOutcome",
    "PlatformApp",
    "PlatformExecClient",
    "PlatformOperationResult",
    "PlatformResponse",
    "decode_app_listing",
    # Singleton instances
    "installer_adapter",
]
