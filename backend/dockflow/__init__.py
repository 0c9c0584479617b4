"""Dockflow: deploys source repositories and application descriptors onto a home-server app platform."""

__version__ = "1.0.0"
