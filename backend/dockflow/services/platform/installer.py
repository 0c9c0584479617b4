"""
Installer adapter for the target platform.

Handles:
- docker compose installs with streamed output and enforced timeouts
- Platform status queries across shape-varying endpoints
- Uninstall and start/stop with re-query confirmation and degraded fallback
- Install-time helpers: pre-install scripts, host path creation, metadata files
"""
import asyncio
import logging
import re
import shlex
import shutil
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Awaitable, Callable, Iterable, List, Optional

from dockflow.core.config import settings
from dockflow.core.exceptions import ExternalToolError, InstallTimeoutError, PlatformUnavailableError
from dockflow.services.log_collector import LogCollector, iter_output_lines
from dockflow.services.platform.exec_client import PlatformExecClient
from dockflow.services.platform.responses import AppListing, decode_app_listing

logger = logging.getLogger(__name__)

DESCRIPTOR_FILE = "docker-compose.yml"
COMPOSE_PROJECT_LABEL = "com.docker.compose.project"


def container_name_pattern(app_id: str) -> str:
    """Anchored docker name filter: `<app_id>`, `<app_id>-web-1` or `<app_id>_web_1`."""
    return f"^/?{re.escape(app_id)}([-_].*)?$"


@dataclass
class InstallResult:
    """Authoritative result of one install attempt."""
    success: bool
    message: str
    timed_out: bool = False
    exit_code: Optional[int] = None


@dataclass
class AppStatus:
    is_installed: bool = False
    is_running: bool = False


class OperationOutcome(str, Enum):
    VERIFIED = "verified"  # Platform request accepted and end state confirmed
    DEGRADED = "degraded"  # Platform unreachable, manual fallback applied
    FAILED = "failed"


@dataclass
class PlatformOperationResult:
    success: bool
    outcome: OperationOutcome
    message: str


class InstallerAdapter:
    """
    Integration boundary to the target platform and the container runtime.

    Nothing the platform answers immediately is trusted: state-changing
    operations are confirmed by re-querying the platform's app listing.
    """

    def __init__(
        self,
        client: Optional[PlatformExecClient] = None,
        metadata_root: Optional[str] = None,
        status_endpoints: Optional[List[str]] = None,
        compose_endpoint: Optional[str] = None,
        retry_attempts: Optional[int] = None,
        retry_backoff: Optional[float] = None,
        termination_grace: Optional[float] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        """
        Initialize the adapter.

        Args:
            client: Exec client used for docker and platform API calls
            metadata_root: Directory holding one metadata folder per app
            status_endpoints: App listing endpoints in priority order
            compose_endpoint: Base path for per-app compose operations
            retry_attempts: Attempts for platform requests before falling back
            retry_backoff: Fixed delay between attempts in seconds
            termination_grace: Seconds between graceful and forced termination
            sleep: Awaitable sleep, replaceable in tests
        """
        self.client = client or PlatformExecClient()
        self.metadata_root = Path(metadata_root or settings.PLATFORM_METADATA_ROOT)
        self.status_endpoints = status_endpoints or settings.get_status_endpoints()
        self.compose_endpoint = (compose_endpoint or settings.PLATFORM_COMPOSE_ENDPOINT).rstrip("/")
        self.retry_attempts = max(1, retry_attempts or settings.PLATFORM_RETRY_ATTEMPTS)
        self.retry_backoff = settings.PLATFORM_RETRY_BACKOFF if retry_backoff is None else retry_backoff
        self.termination_grace = (
            settings.INSTALL_TERMINATION_GRACE if termination_grace is None else termination_grace
        )
        self._sleep = sleep

    # ------------------------------------------------------------------
    # Metadata files
    # ------------------------------------------------------------------

    def metadata_dir(self, app_id: str) -> Path:
        return self.metadata_root / app_id

    def metadata_path(self, app_id: str) -> Path:
        """Where the platform expects the rich descriptor for an app."""
        return self.metadata_dir(app_id) / DESCRIPTOR_FILE

    def write_descriptor(self, app_id: str, content: str) -> Path:
        path = self.metadata_path(app_id)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(content, encoding="utf-8")
        except OSError as e:
            raise ExternalToolError("write descriptor", f"{path}: {e}")
        return path

    def read_descriptor(self, app_id: str) -> Optional[str]:
        path = self.metadata_path(app_id)
        if not path.exists():
            return None
        return path.read_text(encoding="utf-8")

    def remove_metadata(self, app_id: str) -> bool:
        """
        Remove the app's metadata folder.

        Returns:
            True if something was removed

        Raises:
            ExternalToolError: If the folder exists but could not be removed
        """
        directory = self.metadata_dir(app_id)
        if not directory.exists():
            return False
        try:
            shutil.rmtree(directory)
        except OSError as e:
            raise ExternalToolError("cleanup", f"could not remove {directory}: {e}")
        logger.info(f"Removed install metadata for {app_id}")
        return True

    # ------------------------------------------------------------------
    # Install
    # ------------------------------------------------------------------

    def install_command(self, descriptor_path: str, app_id: str, use_pull_policy: bool = True) -> List[str]:
        cmd = [
            "docker", "compose",
            "-p", app_id,
            "-f", str(descriptor_path),
            "up", "-d", "--remove-orphans",
        ]
        if use_pull_policy:
            cmd.append("--pull=always")
        return cmd

    async def _pump_output(self, stream: asyncio.StreamReader, app_id: str, collector: Optional[LogCollector]):
        async for text in iter_output_lines(stream):
            logger.debug(f"[{app_id} compose] {text}")
            if collector:
                collector.info(text)

    async def _terminate(self, process: asyncio.subprocess.Process) -> None:
        if process.returncode is not None:
            return
        try:
            process.terminate()
        except ProcessLookupError:
            return
        try:
            await asyncio.wait_for(process.wait(), timeout=self.termination_grace)
        except asyncio.TimeoutError:
            logger.warning(f"Install process {process.pid} ignored SIGTERM, killing")
            try:
                process.kill()
            except ProcessLookupError:
                return
            await process.wait()

    async def install(
        self,
        descriptor_path: str,
        app_id: str,
        collector: Optional[LogCollector] = None,
        use_pull_policy: bool = True,
        timeout: Optional[float] = None,
    ) -> InstallResult:
        """
        Install an app from its finalized descriptor.

        Blocks until the compose process exits or the timeout elapses.

        Args:
            descriptor_path: Persisted rich descriptor
            app_id: Application id, used as the compose project name
            collector: Receives every output line
            use_pull_policy: Always pull images (off for locally built images)
            timeout: Maximum duration in seconds (defaults to settings.INSTALL_TIMEOUT)

        Returns:
            InstallResult; never raises for process failures
        """
        timeout = timeout or settings.INSTALL_TIMEOUT
        cmd = self.install_command(descriptor_path, app_id, use_pull_policy)
        logger.info(f"Starting install: {' '.join(cmd)}")

        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
            )
        except OSError as e:
            logger.error(f"Failed to start installer for {app_id}: {e}")
            return InstallResult(success=False, message=f"Failed to start installer: {e}")

        reader = asyncio.create_task(self._pump_output(process.stdout, app_id, collector))
        try:
            try:
                await asyncio.wait_for(process.wait(), timeout=timeout)
            except asyncio.TimeoutError:
                logger.error(f"Install of {app_id} timed out after {timeout}s")
                await self._terminate(process)
                return InstallResult(
                    success=False,
                    message=f"Installation timed out after {timeout:g} seconds",
                    timed_out=True,
                )
        finally:
            await self._terminate(process)
            try:
                await asyncio.wait_for(reader, timeout=5)
            except asyncio.TimeoutError:
                reader.cancel()
            except Exception as e:
                logger.warning(f"Output reader for {app_id} failed: {e}")

        if process.returncode == 0:
            logger.info(f"Install process for {app_id} completed successfully")
            return InstallResult(success=True, message="Installation completed successfully.", exit_code=0)

        logger.error(f"Install process for {app_id} exited with code {process.returncode}")
        return InstallResult(
            success=False,
            message=f"Installation failed (exit code: {process.returncode})",
            exit_code=process.returncode,
        )

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    async def query_listing(self) -> Optional[AppListing]:
        """First endpoint answering with a non-empty app listing, else None."""
        for endpoint in self.status_endpoints:
            try:
                response = await self.client.api_request("GET", endpoint)
            except PlatformUnavailableError as e:
                logger.debug(f"Status endpoint {endpoint} unreachable: {e.message}")
                continue
            if response.status_code >= 400:
                continue

            listing = decode_app_listing(response.body)
            if listing and listing.apps:
                if settings.LOG_APPS_BEACON:
                    logger.info(f"{endpoint} ({listing.shape}) lists: {sorted(listing.app_ids())}")
                return listing
        if settings.LOG_APPS_BEACON:
            logger.info("No apps found from any platform endpoint")
        return None

    async def query_installed(self) -> set:
        listing = await self.query_listing()
        return listing.app_ids() if listing else set()

    async def is_installed(self, app_id: str) -> bool:
        return app_id in await self.query_installed()

    async def app_status(self, app_id: str) -> AppStatus:
        listing = await self.query_listing()
        app = listing.find(app_id) if listing else None
        if app is None:
            return AppStatus()
        return AppStatus(is_installed=True, is_running=app.is_running)

    # ------------------------------------------------------------------
    # Uninstall / start / stop
    # ------------------------------------------------------------------

    async def _request_with_retry(self, method: str, path: str):
        last_error = None
        for attempt in range(1, self.retry_attempts + 1):
            try:
                return await self.client.api_request(method, path)
            except PlatformUnavailableError as e:
                last_error = e
                logger.warning(f"Platform unreachable ({attempt}/{self.retry_attempts}): {e.message}")
                if attempt < self.retry_attempts:
                    await self._sleep(self.retry_backoff)
        raise last_error

    async def uninstall(self, app_id: str, preserve_data: bool = False) -> PlatformOperationResult:
        """
        Uninstall an app and confirm it is gone from the platform listing.

        Falls back to manual cleanup (DEGRADED) when the platform stays unreachable.
        """
        delete_config = "false" if preserve_data else "true"
        path = f"{self.compose_endpoint}/{app_id}?delete_config_folder={delete_config}"
        try:
            response = await self._request_with_retry("DELETE", path)
        except PlatformUnavailableError:
            await self.manual_cleanup(app_id, remove_metadata=not preserve_data)
            return PlatformOperationResult(
                success=True,
                outcome=OperationOutcome.DEGRADED,
                message=f"App {app_id} manually cleaned up (platform API unavailable)",
            )

        if response.status_code >= 400:
            logger.warning(f"Platform refused uninstall of {app_id}: HTTP {response.status_code}")

        if await self.is_installed(app_id):
            return PlatformOperationResult(
                success=False,
                outcome=OperationOutcome.FAILED,
                message=f"App {app_id} is still registered with the platform after uninstall",
            )

        if not preserve_data:
            self.remove_metadata(app_id)
        return PlatformOperationResult(
            success=True,
            outcome=OperationOutcome.VERIFIED,
            message=f"App {app_id} uninstalled",
        )

    async def toggle(self, app_id: str, start: bool) -> PlatformOperationResult:
        """Start or stop an app and confirm its running state."""
        action = "start" if start else "stop"
        try:
            response = await self._request_with_retry("POST", f"{self.compose_endpoint}/{app_id}/{action}")
        except PlatformUnavailableError:
            result = await self.client.run(
                ["docker", "compose", "-p", app_id, "-f", str(self.metadata_path(app_id)), action],
                timeout=120,
            )
            if not result.ok:
                return PlatformOperationResult(
                    success=False,
                    outcome=OperationOutcome.FAILED,
                    message=f"Could not {action} {app_id}: {result.stderr or result.stdout}",
                )
            return PlatformOperationResult(
                success=True,
                outcome=OperationOutcome.DEGRADED,
                message=f"App {app_id} {action} via docker compose (platform API unavailable)",
            )

        if response.status_code >= 400:
            logger.warning(f"Platform refused {action} of {app_id}: HTTP {response.status_code}")

        status = await self.app_status(app_id)
        if status.is_installed and status.is_running == start:
            return PlatformOperationResult(
                success=True,
                outcome=OperationOutcome.VERIFIED,
                message=f"App {app_id} {'started' if start else 'stopped'}",
            )
        return PlatformOperationResult(
            success=False,
            outcome=OperationOutcome.FAILED,
            message=f"App {app_id} did not reach the expected state after {action}",
        )

    async def manual_cleanup(self, app_id: str, remove_metadata: bool = True) -> None:
        """
        Best-effort removal of containers, networks and metadata for an app.

        Every step is attempted even if an earlier one fails.
        """
        logger.info(f"Manual cleanup for {app_id}")

        container_ids: List[str] = []
        for filter_arg in (f"name={container_name_pattern(app_id)}", f"label={COMPOSE_PROJECT_LABEL}={app_id}"):
            result = await self.client.run(["docker", "ps", "-aq", "--filter", filter_arg], timeout=30)
            for container_id in result.stdout.split():
                if container_id not in container_ids:
                    container_ids.append(container_id)
        if container_ids:
            result = await self.client.run(["docker", "rm", "-f", *container_ids], timeout=120)
            if not result.ok:
                logger.warning(f"Container removal for {app_id} failed: {result.stderr}")

        result = await self.client.run(
            ["docker", "network", "ls", "--filter", f"label={COMPOSE_PROJECT_LABEL}={app_id}", "--format", "{{.Name}}"],
            timeout=30,
        )
        for network in result.stdout.split():
            removed = await self.client.run(["docker", "network", "rm", network], timeout=30)
            if not removed.ok:
                logger.warning(f"Network {network} removal failed: {removed.stderr}")

        if remove_metadata:
            try:
                self.remove_metadata(app_id)
            except ExternalToolError as e:
                logger.warning(f"Metadata removal for {app_id} failed: {e.message}")

    # ------------------------------------------------------------------
    # Install-time helpers
    # ------------------------------------------------------------------

    async def run_pre_install(
        self,
        command: str,
        user: Optional[str] = None,
        timeout: Optional[float] = None,
        collector: Optional[LogCollector] = None,
    ) -> None:
        """
        Run an install-time directive inside the platform container.

        Raises:
            InstallTimeoutError: If the command exceeds the timeout
            ExternalToolError: If the command exits non-zero
        """
        timeout = timeout or settings.PRE_INSTALL_TIMEOUT
        result = await self.client.exec_in_platform(command, user=user, timeout=timeout)

        if collector:
            for line in (result.stdout + "\n" + result.stderr).splitlines():
                if line.strip():
                    collector.info(line)

        if result.timed_out:
            raise InstallTimeoutError("Pre-install command", timeout)
        if result.returncode != 0:
            raise ExternalToolError(
                "pre-install command",
                f"exit code {result.returncode}: {result.stderr or result.stdout}".strip(),
            )

    async def ensure_host_paths(self, paths: Iterable[str], uid: str, gid: str) -> None:
        """
        Create missing host paths, owned by uid:gid, from inside the platform container.

        Raises:
            ExternalToolError: If any path could not be created
        """
        paths = list(paths)
        if not paths:
            return
        lines = ["set -e"]
        for path in paths:
            quoted = shlex.quote(path)
            lines.append(f"[ -e {quoted} ] || {{ mkdir -p {quoted} && chown {uid}:{gid} {quoted}; }}")
        result = await self.client.exec_in_platform("\n".join(lines), timeout=60)
        if not result.ok:
            raise ExternalToolError("mkdir", result.stderr or f"exit code {result.returncode}")
        logger.info(f"Ensured {len(paths)} host path(s) exist")


# Singleton instance
installer_adapter = InstallerAdapter()
