"""
Persistence layer.

File-backed JSON repositories under settings.DATA_DIR.
"""
from dockflow.repositories.application_repository import (
    ApplicationRepository,
    application_repository,
    generate_application_id,
)
from dockflow.repositories.app_token_repository import (
    AppToken,
    AppTokenRepository,
    app_token_repository,
)

__all__ = [
    "AppToken",
    "AppTokenRepository",
    "ApplicationRepository",
    "generate_application_id",
    # Singleton instances
    "app_token_repository",
    "application_repository",
]
