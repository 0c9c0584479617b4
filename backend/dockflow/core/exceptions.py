"""
Custom exception hierarchy for domain-specific errors.

This module provides a clean separation between domain errors and HTTP concerns.
Services raise domain exceptions, and the exception handlers in main.py map them to HTTP responses.
"""
from typing import Optional, Dict, Any


class DomainException(Exception):
    """Base exception for all domain errors."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)


# =============================================================================
# Not Found Errors (404)
# =============================================================================

class NotFoundError(DomainException):
    """Base class for resource not found errors."""
    pass


class ApplicationNotFoundError(NotFoundError):
    """Application does not exist."""

    def __init__(self, identifier: str):
        super().__init__(f"Application not found: {identifier}", {"identifier": identifier})


class DescriptorNotFoundError(NotFoundError):
    """Application descriptor file does not exist."""

    def __init__(self, path: str):
        super().__init__(f"Descriptor not found: {path}", {"path": path})


# =============================================================================
# Conflict Errors (409)
# =============================================================================

class AlreadyExistsError(DomainException):
    """Base class for resource already exists errors."""
    pass


class ApplicationAlreadyExistsError(AlreadyExistsError):
    """Application with this name already exists."""

    def __init__(self, name: str):
        super().__init__(f"Application already exists: {name}", {"name": name})


# =============================================================================
# Validation Errors (400/422)
# =============================================================================

class ValidationError(DomainException):
    """Base class for validation errors."""
    pass


class DescriptorValidationError(ValidationError):
    """Descriptor is missing a required field or is malformed."""

    def __init__(self, reason: str, field: Optional[str] = None):
        details = {"reason": reason}
        if field:
            details["field"] = field
        super().__init__(f"Invalid descriptor: {reason}", details)


class InvalidConfigurationError(ValidationError):
    """Configuration is invalid."""

    def __init__(self, field: str, reason: str):
        super().__init__(f"Invalid configuration for {field}: {reason}", {"field": field, "reason": reason})


# =============================================================================
# Operation Errors (500)
# =============================================================================

class OperationError(DomainException):
    """Base class for operation failures."""
    pass


class ExternalToolError(OperationError):
    """An external tool (git, docker, docker compose, platform exec) failed."""

    def __init__(self, tool: str, reason: str):
        super().__init__(f"{tool} failed: {reason}", {"tool": tool, "reason": reason})


class SourceSyncError(ExternalToolError):
    """Fetching or updating the application source failed."""

    def __init__(self, locator: str, reason: str):
        super().__init__("git", reason)
        self.details["locator"] = locator


class BuildError(ExternalToolError):
    """Docker build operation failed."""

    def __init__(self, image_tag: str, reason: str):
        super().__init__("docker build", reason)
        self.details["image_tag"] = image_tag


class InstallError(ExternalToolError):
    """Docker compose installation failed."""

    def __init__(self, app_id: str, reason: str):
        super().__init__("docker compose", reason)
        self.details["app_id"] = app_id


class InstallTimeoutError(OperationError):
    """An install-time operation exceeded its maximum duration."""

    def __init__(self, operation: str, timeout: float):
        super().__init__(
            f"{operation} timed out after {timeout:g} seconds",
            {"operation": operation, "timeout": timeout},
        )


class VerificationMismatchError(OperationError):
    """Install reported success but the platform registry does not list the app."""

    def __init__(self, app_id: str):
        super().__init__(
            f"Verification failed: app '{app_id}' is not registered with the platform after install",
            {"app_id": app_id},
        )


# =============================================================================
# Service Unavailable (503)
# =============================================================================

class ServiceUnavailableError(DomainException):
    """External service is unavailable."""

    def __init__(self, service: str, reason: str = "Service unavailable"):
        super().__init__(f"{service}: {reason}", {"service": service, "reason": reason})


class PlatformUnavailableError(ServiceUnavailableError):
    """The target platform API could not be reached."""

    def __init__(self, reason: str = "Platform API unreachable"):
        super().__init__("platform", reason)
