"""
Domain event system for loose coupling between services.

This module provides a simple in-process event dispatcher that allows
services to communicate without direct dependencies.

Deployment completion is published exactly once per run by the orchestrator,
keyed by application id. Because the build scheduler never runs two jobs for
the same application at once, there is at most one live producer per key.
"""
import asyncio
import logging
from typing import Callable, Dict, List, Any, Optional, Type
from dataclasses import dataclass, field
from datetime import datetime, timezone

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# =============================================================================
# Base Event Classes
# =============================================================================

@dataclass
class DomainEvent:
    """Base class for all domain events."""
    timestamp: datetime = field(default_factory=_utcnow)

    @property
    def event_type(self) -> str:
        """Return the event type name."""
        return self.__class__.__name__


# =============================================================================
# Deployment Events
# =============================================================================

@dataclass
class DeploymentStartedEvent(DomainEvent):
    """Emitted when the scheduler dispatches a deployment job."""
    application_id: str = None
    job_id: str = None
    force: bool = False


@dataclass
class DeploymentCompletedEvent(DomainEvent):
    """Emitted once per orchestrator run with the authoritative install outcome."""
    application_id: str = None
    app_id: Optional[str] = None
    success: bool = False
    message: str = None
    is_installed: bool = False
    is_running: bool = False


@dataclass
class ApplicationStatusChangedEvent(DomainEvent):
    """Emitted when an application's status changes."""
    application_id: str = None
    old_status: str = None
    new_status: str = None
    progress: int = 0


# =============================================================================
# Event Dispatcher
# =============================================================================

class EventDispatcher:
    """
    Simple in-process event dispatcher.

    Handlers are registered per event type and called in registration order
    when events are dispatched.
    """

    def __init__(self):
        self._handlers: Dict[Type[DomainEvent], List[Callable]] = {}

    def register(
        self,
        event_type: Type[DomainEvent],
        handler: Callable[[DomainEvent], Any],
    ) -> None:
        """
        Register a handler for an event type.

        Args:
            event_type: The event class to handle
            handler: Callable that takes the event as argument
        """
        if event_type not in self._handlers:
            self._handlers[event_type] = []
        if handler not in self._handlers[event_type]:
            self._handlers[event_type].append(handler)
        logger.debug(f"Registered handler {handler.__name__} for {event_type.__name__}")

    def dispatch(self, event: DomainEvent) -> None:
        """
        Dispatch an event to all registered synchronous handlers.

        Coroutine handlers are scheduled on the running loop when there is one.

        Args:
            event: The event to dispatch
        """
        event_type = type(event)
        handlers = self._handlers.get(event_type, [])

        logger.debug(f"Dispatching {event_type.__name__} to {len(handlers)} handlers")

        for handler in handlers:
            try:
                result = handler(event)
                if asyncio.iscoroutine(result):
                    try:
                        asyncio.get_running_loop().create_task(result)
                    except RuntimeError:
                        result.close()
                        logger.warning(
                            f"Skipped async handler {handler.__name__} for {event_type.__name__}: no running loop"
                        )
            except Exception as e:
                logger.error(
                    f"Handler {handler.__name__} failed for {event_type.__name__}: {e}"
                )

    def clear(self) -> None:
        """Clear all registered handlers."""
        self._handlers.clear()


# Global event dispatcher instance
event_dispatcher = EventDispatcher()


# =============================================================================
# Decorator for registering handlers
# =============================================================================

def handles(event_type: Type[DomainEvent]):
    """
    Decorator to register a function as an event handler.

    Example:
        @handles(DeploymentCompletedEvent)
        async def on_deployment_completed(event: DeploymentCompletedEvent):
            await refresh_status(event.application_id)
    """
    def decorator(func: Callable):
        event_dispatcher.register(event_type, func)
        return func
    return decorator
