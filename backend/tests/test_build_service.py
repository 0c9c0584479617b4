"""
Tests for ImageBuildService.

Tests cover:
- Build command construction
- Successful build with streamed output
- Build failures and missing source trees
- Draining output with lines longer than the stream limit

Run with: pytest backend/tests/test_build_service.py -v
"""
from unittest.mock import AsyncMock, MagicMock, patch

import pytest


def make_process(lines, returncode=0):
    process = MagicMock()
    process.returncode = returncode
    process.stdout.read = AsyncMock(side_effect=[*lines, b""])
    process.wait = AsyncMock(return_value=returncode)
    return process


class TestBuildCommand:
    """Tests for build command construction."""

    def test_basic_command(self):
        from dockflow.services.docker.build_service import BuildCommand, ImageBuildService

        service = ImageBuildService(timeout=60)
        cmd = service.build_command(BuildCommand(
            image_tag="myapp:latest",
            context_path="/repos/myapp",
            dockerfile_path="/repos/myapp/Dockerfile",
            build_args={"VERSION": "1.2"},
        ))

        assert cmd[:2] == ["docker", "build"]
        assert "-t" in cmd and cmd[cmd.index("-t") + 1] == "myapp:latest"
        assert cmd[cmd.index("-f") + 1] == "/repos/myapp/Dockerfile"
        assert "VERSION=1.2" in cmd
        assert cmd[-1] == "/repos/myapp"

    def test_local_image_tag(self):
        from dockflow.services.docker.build_service import local_image_tag

        assert local_image_tag("MyApp") == "myapp:latest"


class TestBuildImage:
    """Tests for build_image()."""

    @pytest.mark.asyncio
    async def test_success(self, tmp_path):
        from dockflow.services.docker.build_service import ImageBuildService
        from dockflow.services.log_collector import LogCollector

        (tmp_path / "Dockerfile").write_text("FROM alpine\n")
        collector = LogCollector("app-1")

        with patch("asyncio.create_subprocess_exec", return_value=make_process([b"#1 DONE\n"])) as mock_exec:
            tag = await ImageBuildService(timeout=60).build_image(str(tmp_path), "myapp:latest", collector)

        assert tag == "myapp:latest"
        assert collector.lines() == ["#1 DONE"]
        assert str(tmp_path / "Dockerfile") in mock_exec.call_args.args

    @pytest.mark.asyncio
    async def test_failure_raises(self, tmp_path):
        from dockflow.core.exceptions import BuildError
        from dockflow.services.docker.build_service import ImageBuildService

        with patch("asyncio.create_subprocess_exec", return_value=make_process([], returncode=1)):
            with pytest.raises(BuildError) as exc_info:
                await ImageBuildService(timeout=60).build_image(str(tmp_path), "myapp:latest")

        assert "code 1" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_missing_source_tree(self, tmp_path):
        from dockflow.core.exceptions import BuildError
        from dockflow.services.docker.build_service import ImageBuildService

        with pytest.raises(BuildError):
            await ImageBuildService(timeout=60).build_image(str(tmp_path / "missing"), "myapp:latest")


class TestOutputLines:
    """Tests for iter_output_lines()."""

    @pytest.mark.asyncio
    async def test_lines_beyond_stream_limit(self):
        import asyncio
        from dockflow.services.log_collector import iter_output_lines

        stream = asyncio.StreamReader()
        stream.feed_data(b"step 1\r\n" + b"=" * 200_000 + b"\n\nstep 2")
        stream.feed_eof()

        lines = [line async for line in iter_output_lines(stream)]

        assert lines[0] == "step 1"
        assert len(lines[1]) == 200_000
        assert lines[2] == "step 2"
        assert len(lines) == 3

    @pytest.mark.asyncio
    async def test_unterminated_line_is_split(self):
        import asyncio
        from dockflow.services.log_collector import MAX_OUTPUT_LINE, iter_output_lines

        stream = asyncio.StreamReader()
        stream.feed_data(b"z" * (MAX_OUTPUT_LINE + 10))
        stream.feed_eof()

        lines = [line async for line in iter_output_lines(stream)]

        assert [len(line) for line in lines] == [MAX_OUTPUT_LINE, 10]

    @pytest.mark.asyncio
    async def test_build_with_long_line(self, tmp_path):
        from dockflow.services.docker.build_service import ImageBuildService
        from dockflow.services.log_collector import LogCollector

        collector = LogCollector("app-1")
        process = make_process([b"#2 " + b"." * 150_000 + b"\n#2 DONE\n"])

        with patch("asyncio.create_subprocess_exec", return_value=process):
            await ImageBuildService(timeout=60).build_image(str(tmp_path), "myapp:latest", collector)

        assert collector.lines()[1] == "#2 DONE"
