"""
Pydantic schemas for Application and GlobalSettings.
"""
from datetime import datetime, timezone
from enum import Enum
from typing import Optional
from pydantic import BaseModel, Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SourceKind(str, Enum):
    """Where an application's descriptor comes from."""
    REPOSITORY = "repository"  # Cloned from version control and built locally
    DESCRIPTOR = "descriptor"  # Supplied descriptor, images pulled from registries


class ApplicationStatus(str, Enum):
    """Status of an application, in deployment phase order."""
    IDLE = "idle"
    CLEANING = "cleaning"
    BUILDING = "building"
    NORMALIZING = "normalizing"
    PRE_INSTALL = "pre_install"
    WRITING = "writing"
    INSTALLING = "installing"
    AWAITING_COMPLETION = "awaiting_completion"
    VERIFYING = "verifying"
    SUCCESS = "success"
    ERROR = "error"
    # Operator-driven states outside the deployment pipeline
    UNINSTALLING = "uninstalling"
    STARTING = "starting"
    STOPPING = "stopping"


class Application(BaseModel):
    """Persisted application record."""
    id: str
    name: str = Field(..., min_length=1, max_length=255)
    display_name: Optional[str] = None
    source_kind: SourceKind = SourceKind.DESCRIPTOR
    repository_url: Optional[str] = None
    auto_update: bool = False
    auto_update_interval: int = Field(default=60, ge=1)  # minutes
    status: ApplicationStatus = ApplicationStatus.IDLE
    progress: int = Field(default=0, ge=0, le=100)
    is_installed: bool = False
    is_running: bool = False
    install_mismatch: bool = False
    icon: Optional[str] = None
    last_error: Optional[str] = None
    last_build_time: Optional[datetime] = None
    last_update_check: Optional[datetime] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @property
    def requires_build(self) -> bool:
        return self.source_kind == SourceKind.REPOSITORY


class ApplicationCreate(BaseModel):
    """Schema for registering an application."""
    name: str = Field(..., min_length=1, max_length=255, pattern=r"^[A-Za-z0-9][A-Za-z0-9_.-]*$")
    source_kind: SourceKind = SourceKind.DESCRIPTOR
    repository_url: Optional[str] = None
    auto_update: bool = False
    auto_update_interval: Optional[int] = Field(default=None, ge=1)
    descriptor: Optional[str] = None  # Raw YAML, stored for descriptor-sourced applications


class DescriptorUpdate(BaseModel):
    """Schema for replacing an application's supplied descriptor."""
    descriptor: str = Field(..., min_length=1)
    redeploy: bool = True


class DescriptorUpdateResponse(BaseModel):
    """Outcome of a descriptor update."""
    structural_change: bool
    redeploy_queued: bool
    message: str


class GlobalSettings(BaseModel):
    """Single global settings record, read as a snapshot per dispatch/normalization."""
    global_api_updates_enabled: bool = True
    default_auto_update_interval: int = Field(default=60, ge=1)  # minutes
    max_concurrent_builds: int = Field(default=2, ge=1)
    puid: str = "1000"
    pgid: str = "1000"
    ref_domain: str = "local.casaos.io"
    ref_scheme: str = "http"
    ref_port: str = "80"
    ref_separator: str = "-"
