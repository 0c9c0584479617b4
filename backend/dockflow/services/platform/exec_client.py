"""
Exec-based access to the target platform.

The platform's HTTP API is not reachable from this process; every request is
made with curl inside the platform container via `docker exec`. The same
primitive runs install-time scripts in the platform's runtime context.
"""
import asyncio
import base64
import logging
from dataclasses import dataclass
from typing import List, Optional

from dockflow.core.config import settings
from dockflow.core.exceptions import PlatformUnavailableError

logger = logging.getLogger(__name__)


@dataclass
class CommandResult:
    """Outcome of a finished (or timed-out) subprocess."""
    returncode: int
    stdout: str = ""
    stderr: str = ""
    timed_out: bool = False

    @property
    def ok(self) -> bool:
        return self.returncode == 0 and not self.timed_out


@dataclass
class PlatformResponse:
    status_code: int
    body: str


class PlatformExecClient:
    """
    Runs docker commands and platform API requests.

    Responsibilities:
    - Run local docker CLI commands with a timeout
    - Execute shell scripts inside the platform container
    - Issue HTTP requests to the platform API from inside its container
    """

    def __init__(
        self,
        container: Optional[str] = None,
        api_base_url: Optional[str] = None,
        request_timeout: Optional[int] = None,
    ):
        """
        Initialize the client.

        Args:
            container: Name of the platform container
            api_base_url: Platform API base URL as seen from inside the container
            request_timeout: Timeout for API requests in seconds
        """
        self.container = container or settings.PLATFORM_CONTAINER
        self.api_base_url = (api_base_url or settings.PLATFORM_API_URL).rstrip("/")
        self.request_timeout = request_timeout or settings.PLATFORM_REQUEST_TIMEOUT

    async def run(self, cmd: List[str], timeout: float = 30) -> CommandResult:
        """
        Run a command via subprocess.

        Args:
            cmd: Command arguments
            timeout: Timeout in seconds

        Returns:
            CommandResult; spawn failures are reported with returncode -1
        """
        logger.debug(f"Running command: {' '.join(cmd)}")

        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            logger.error(f"Failed to start command {cmd[0]}: {e}")
            return CommandResult(returncode=-1, stderr=str(e))

        try:
            stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=timeout)
        except asyncio.TimeoutError:
            logger.error(f"Command timed out after {timeout}s: {' '.join(cmd)}")
            process.kill()
            await process.wait()
            return CommandResult(returncode=-1, stderr="Command timed out", timed_out=True)

        return CommandResult(
            returncode=process.returncode,
            stdout=stdout.decode(errors="replace").strip() if stdout else "",
            stderr=stderr.decode(errors="replace").strip() if stderr else "",
        )

    async def exec_in_platform(
        self,
        script: str,
        user: Optional[str] = None,
        timeout: float = 60,
    ) -> CommandResult:
        """
        Run a shell script inside the platform container.

        The script is passed base64-encoded so that quoting never leaks
        through the exec boundary.
        """
        encoded = base64.b64encode(script.encode()).decode()
        cmd = ["docker", "exec"]
        if user:
            cmd.extend(["--user", user])
        cmd.extend([self.container, "sh", "-c", f"echo {encoded} | base64 -d | sh"])
        return await self.run(cmd, timeout=timeout)

    async def api_request(self, method: str, path: str) -> PlatformResponse:
        """
        Issue an HTTP request to the platform API.

        Args:
            method: HTTP method
            path: Path below the API base URL

        Returns:
            PlatformResponse with the HTTP status code and raw body

        Raises:
            PlatformUnavailableError: If the API could not be reached at all
        """
        url = f"{self.api_base_url}{path}"
        cmd = [
            "docker", "exec", self.container,
            "curl", "-s", "-X", method.upper(),
            "-H", "Accept: application/json",
            "-H", "Cache-Control: no-cache",
            "-w", "\n%{http_code}",
            url,
        ]
        result = await self.run(cmd, timeout=self.request_timeout)

        if not result.ok:
            reason = result.stderr or f"exit code {result.returncode}"
            raise PlatformUnavailableError(f"{method.upper()} {path}: {reason}")

        body, _, code = result.stdout.rpartition("\n")
        try:
            status_code = int(code.strip())
        except ValueError:
            status_code = 0
        if status_code == 0:
            raise PlatformUnavailableError(f"{method.upper()} {path}: no HTTP response")

        return PlatformResponse(status_code=status_code, body=body)
