"""
Deployment services.

- DeploymentOrchestrator: per-application state machine for one run
- BuildScheduler: bounded, single-flight queue that drives the orchestrator
"""
from dockflow.services.deployment.orchestrator import (
    DeploymentOrchestrator,
    DeploymentResult,
    deployment_orchestrator,
)
from dockflow.services.deployment.scheduler import BuildScheduler, DeploymentJob, JobStatus

__all__ = [
    "BuildScheduler",
    "DeploymentJob",
    "DeploymentOrchestrator",
    "DeploymentResult",
    "JobStatus",
    # Singleton instances
    "deployment_orchestrator",
]
