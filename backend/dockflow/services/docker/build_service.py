"""
Service for Docker image builds.

Handles:
- Docker build command construction
- Build execution with streamed output and a timeout
"""
import asyncio
import logging
import os
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from dockflow.core.config import settings
from dockflow.core.exceptions import BuildError
from dockflow.services.log_collector import LogCollector, iter_output_lines

logger = logging.getLogger(__name__)


@dataclass
class BuildCommand:
    """Docker build command configuration."""
    image_tag: str
    context_path: str
    dockerfile_path: Optional[str] = None
    build_args: Dict[str, str] = field(default_factory=dict)
    network: str = "host"


def local_image_tag(name: str) -> str:
    """Tag used for images built from an application's own source."""
    return f"{name.lower()}:latest"


class ImageBuildService:
    """
    Builds images from checked-out sources.

    Responsibilities:
    - Construct Docker build commands
    - Stream build output to the run's log collector
    - Enforce the build timeout
    """

    def __init__(self, timeout: Optional[int] = None):
        self.timeout = timeout or settings.BUILD_TIMEOUT

    def build_command(self, config: BuildCommand) -> List[str]:
        """
        Construct Docker build command.

        Args:
            config: Build command configuration

        Returns:
            List of command arguments
        """
        cmd = [
            "docker", "build",
            "--progress=plain",
            "--network", config.network,
            "-t", config.image_tag,
        ]
        if config.dockerfile_path:
            cmd.extend(["-f", config.dockerfile_path])

        for key, value in config.build_args.items():
            cmd.extend(["--build-arg", f"{key}={value}"])

        cmd.append(config.context_path)
        return cmd

    async def build_image(
        self,
        source_tree: str,
        tag: str,
        collector: Optional[LogCollector] = None,
        timeout: Optional[int] = None,
    ) -> str:
        """
        Build a locally tagged image from a source tree.

        Args:
            source_tree: Build context directory
            tag: Image tag to produce
            collector: Receives build output lines
            timeout: Optional timeout in seconds

        Returns:
            The built image tag

        Raises:
            BuildError: If the build fails or times out
        """
        if not os.path.isdir(source_tree):
            raise BuildError(tag, f"source tree not found: {source_tree}")

        dockerfile = os.path.join(source_tree, "Dockerfile")
        config = BuildCommand(
            image_tag=tag,
            context_path=source_tree,
            dockerfile_path=dockerfile if os.path.exists(dockerfile) else None,
        )
        cmd = self.build_command(config)
        timeout = timeout or self.timeout

        logger.info(f"Starting Docker build: {' '.join(cmd)}")

        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
            )
        except OSError as e:
            raise BuildError(tag, f"could not start docker: {e}")

        async def pump():
            async for text in iter_output_lines(process.stdout):
                if collector:
                    collector.info(text)

        try:
            await asyncio.wait_for(asyncio.gather(pump(), process.wait()), timeout=timeout)
        except asyncio.TimeoutError:
            process.kill()
            await process.wait()
            raise BuildError(tag, f"Build timed out after {timeout} seconds")

        if process.returncode != 0:
            raise BuildError(tag, f"Docker build failed with code {process.returncode}")

        logger.info(f"Docker build completed successfully: {tag}")
        return tag


# Singleton instance
build_service = ImageBuildService()
