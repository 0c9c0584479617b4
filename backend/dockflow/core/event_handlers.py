"""
Event handlers for domain events.

This module registers handlers that react to domain events,
enabling loose coupling between services.
"""
import logging

from dockflow.core.events import (
    ApplicationStatusChangedEvent,
    DeploymentCompletedEvent,
    DeploymentStartedEvent,
    event_dispatcher,
    handles,
)

logger = logging.getLogger(__name__)


# =============================================================================
# Deployment Event Handlers
# =============================================================================

@handles(DeploymentStartedEvent)
def on_deployment_started(event: DeploymentStartedEvent):
    logger.info(f"Deployment job {event.job_id} started for {event.application_id} (force={event.force})")


@handles(DeploymentCompletedEvent)
async def on_deployment_completed(event: DeploymentCompletedEvent):
    """
    Refresh platform-sourced flags after a run.

    The orchestrator's own result is authoritative for success; this only
    brings is_running up to date once the platform has settled.
    """
    from dockflow.core.container import get_container

    outcome = "succeeded" if event.success else "failed"
    logger.info(f"Deployment of {event.application_id} ({event.app_id}) {outcome}: {event.message}")

    if not event.success:
        return
    await get_container().status_sync.sync_one(event.application_id)


@handles(ApplicationStatusChangedEvent)
def on_status_changed(event: ApplicationStatusChangedEvent):
    logger.debug(
        f"{event.application_id}: {event.old_status} -> {event.new_status} ({event.progress}%)"
    )


def register_all_handlers():
    """
    Explicitly register all handlers.

    The @handles decorator registers them on import; calling this again at
    startup restores them after the dispatcher has been cleared.
    """
    event_dispatcher.register(DeploymentStartedEvent, on_deployment_started)
    event_dispatcher.register(DeploymentCompletedEvent, on_deployment_completed)
    event_dispatcher.register(ApplicationStatusChangedEvent, on_status_changed)
    logger.info("Registered domain event handlers")
