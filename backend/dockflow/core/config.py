"""
Application configuration using Pydantic Settings.
"""
from typing import List, Optional
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings."""

    # Application
    APP_NAME: str = "Dockflow"
    APP_VERSION: str = "1.0.0"
    ENVIRONMENT: str = "development"
    LOG_LEVEL: str = "info"
    DEBUG: bool = False
    LOG_APPS_BEACON: bool = False  # Verbose logging of platform status polling

    # Storage
    DATA_DIR: str = "/app/uidata"
    WORKSPACE_DIR: str = "/app/repos"

    # Target platform
    PLATFORM_CONTAINER: str = "casaos"
    PLATFORM_API_URL: str = "http://localhost:8080"
    # Status endpoints in priority order; the first one that answers with apps wins
    PLATFORM_STATUS_ENDPOINTS: str = (
        "/v2/app_management/compose,/v2/app_management/apps,/v1/app_management/apps"
    )
    PLATFORM_COMPOSE_ENDPOINT: str = "/v2/app_management/compose"
    PLATFORM_METADATA_ROOT: str = "/DATA/AppData/casaos/apps"
    PLATFORM_METADATA_KEY: str = "x-casaos"
    PLATFORM_REQUEST_TIMEOUT: int = 30
    PLATFORM_RETRY_ATTEMPTS: int = 3
    PLATFORM_RETRY_BACKOFF: float = 2.0

    # Installation
    INSTALL_TIMEOUT: int = 600  # 10 minutes for docker compose up
    INSTALL_RETRY_TIMEOUT: int = 900  # Extended timeout used when retrying a timed-out install
    INSTALL_TIMEOUT_RETRIES: int = 1
    INSTALL_TERMINATION_GRACE: float = 10.0  # seconds between SIGTERM and SIGKILL
    INSTALL_SETTLE_DELAY: float = 3.0  # seconds before trusting the platform registry
    PRE_INSTALL_TIMEOUT: int = 300

    # Source and image collaborators
    GIT_TIMEOUT: int = 600
    BUILD_TIMEOUT: int = 1800

    # Background jobs
    AUTO_UPDATE_POLL_INTERVAL: int = 60  # seconds between auto-update sweeps
    STATUS_SYNC_INTERVAL: int = 30  # seconds between platform status syncs

    # Runtime identity overrides (take precedence over the persisted settings record)
    PUID: Optional[str] = None
    PGID: Optional[str] = None
    REF_DOMAIN: Optional[str] = None
    REF_SCHEME: Optional[str] = None
    REF_PORT: Optional[str] = None
    REF_SEPARATOR: Optional[str] = None

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
        extra="ignore"
    )

    def get_status_endpoints(self) -> List[str]:
        """Parse platform status endpoints from comma-separated string."""
        return [e.strip() for e in self.PLATFORM_STATUS_ENDPOINTS.split(",") if e.strip()]

    def get_identity_overrides(self) -> dict:
        """Return the runtime identity values set in the environment, keyed by settings field."""
        overrides = {
            "puid": self.PUID,
            "pgid": self.PGID,
            "ref_domain": self.REF_DOMAIN,
            "ref_scheme": self.REF_SCHEME,
            "ref_port": self.REF_PORT,
            "ref_separator": self.REF_SEPARATOR,
        }
        return {key: value for key, value in overrides.items() if value}


settings = Settings()
