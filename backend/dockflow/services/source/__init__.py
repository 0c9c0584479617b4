"""
Source checkout services.
"""
from dockflow.services.source.git_service import GitService, GitUpdateInfo, git_service

__all__ = [
    "GitService",
    "GitUpdateInfo",
    "git_service",
]
