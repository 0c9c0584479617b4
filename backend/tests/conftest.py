"""
Pytest configuration and fixtures for backend tests.

This file is automatically loaded by pytest before running tests.
It sets up necessary environment variables and common fixtures.
"""
import os
import tempfile

import pytest

# Set environment variables BEFORE any dockflow imports
# Storage locations must never point at a real host during tests
_test_root = tempfile.mkdtemp(prefix="dockflow-tests-")
os.environ.setdefault("DATA_DIR", os.path.join(_test_root, "uidata"))
os.environ.setdefault("WORKSPACE_DIR", os.path.join(_test_root, "repos"))
os.environ.setdefault("PLATFORM_METADATA_ROOT", os.path.join(_test_root, "apps"))
os.environ.setdefault("ENVIRONMENT", "test")


SAMPLE_DESCRIPTOR = """\
name: myapp
services:
  web:
    image: nginx:1.25
    ports:
      - "8080:80"
    environment:
      TOKEN: abc
    volumes:
      - /DATA/AppData/$AppID/config:/config
x-casaos:
  main: web
  title:
    en_us: My App
"""


@pytest.fixture
def sample_descriptor():
    return SAMPLE_DESCRIPTOR


@pytest.fixture
def global_settings():
    """Settings snapshot used by normalization tests."""
    from dockflow.schemas.application import GlobalSettings
    return GlobalSettings(
        puid="1000",
        pgid="1000",
        ref_domain="example.com",
        ref_scheme="https",
        ref_port="443",
        ref_separator="-",
    )


@pytest.fixture
def repository(tmp_path):
    """Application repository backed by a temporary directory."""
    from dockflow.repositories.application_repository import ApplicationRepository
    return ApplicationRepository(data_dir=str(tmp_path / "uidata"))


@pytest.fixture
def token_repository(tmp_path):
    from dockflow.repositories.app_token_repository import AppTokenRepository
    return AppTokenRepository(data_dir=str(tmp_path / "uidata"))


@pytest.fixture
def mock_installer(tmp_path):
    """
    Installer double: real metadata file handling, mocked platform calls.

    By default installs succeed and the platform lists the app afterwards.
    """
    from unittest.mock import AsyncMock
    from dockflow.services.platform.installer import AppStatus, InstallerAdapter, InstallResult

    installer = InstallerAdapter(
        client=AsyncMock(),
        metadata_root=str(tmp_path / "apps"),
        status_endpoints=["/v2/app_management/compose"],
        retry_attempts=2,
        retry_backoff=0,
        termination_grace=0.1,
        sleep=AsyncMock(),
    )
    installer.install = AsyncMock(return_value=InstallResult(success=True, message="Installation completed successfully."))
    installer.app_status = AsyncMock(return_value=AppStatus(is_installed=True, is_running=True))
    installer.run_pre_install = AsyncMock()
    installer.ensure_host_paths = AsyncMock()
    installer.manual_cleanup = AsyncMock()
    return installer
