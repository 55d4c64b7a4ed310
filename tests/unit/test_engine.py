"""Unit tests for the FFmpeg engine adapter and its shared loader.

Subprocesses are replaced with fakes; no ffmpeg binary is needed.
"""

import asyncio
from unittest.mock import AsyncMock, Mock, patch

import pytest

from assembly.engine import (
    PROGRESS_EVENT,
    EngineCommandError,
    EngineLoader,
    EngineLoadError,
    FFmpegEngine,
    get_engine_loader,
    parse_progress_line,
)


def fake_process(stdout_lines: list[bytes], returncode: int = 0, stderr: bytes = b""):
    async def lines():
        for line in stdout_lines:
            yield line

    process = Mock()
    process.stdout = lines()
    process.stderr = Mock()
    process.stderr.read = AsyncMock(return_value=stderr)
    process.wait = AsyncMock(return_value=returncode)
    return process


class TestParseProgressLine:
    """Tests for parse_progress_line()."""

    @pytest.mark.unit
    def test_out_time_us(self):
        assert parse_progress_line("out_time_us=2500000") == 2.5

    @pytest.mark.unit
    def test_out_time_ms_is_microseconds(self):
        assert parse_progress_line("out_time_ms=1000000\n") == 1.0

    @pytest.mark.unit
    @pytest.mark.parametrize("line", ["frame=12", "out_time=00:00:01.00", "out_time_us=N/A", "out_time_us=-5", ""])
    def test_lines_without_timing(self, line):
        assert parse_progress_line(line) is None


class TestVirtualFilesystem:
    """Tests for the engine's working-directory file API."""

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_write_read_list_delete(self, temp_dir):
        engine = FFmpegEngine("ffmpeg", workdir=temp_dir)

        await engine.write_file("img-0.png", b"\x89PNG")
        await engine.write_file("list.txt", "file 'segment-000.mp4'\n")

        assert await engine.list_files() == ["img-0.png", "list.txt"]
        assert await engine.read_file("img-0.png") == b"\x89PNG"
        assert (temp_dir / "list.txt").read_text() == "file 'segment-000.mp4'\n"

        await engine.delete_file("img-0.png")
        assert await engine.list_files() == ["list.txt"]

    @pytest.mark.unit
    @pytest.mark.asyncio
    @pytest.mark.parametrize("name", ["../escape.txt", "nested/file.txt", "", ".."])
    async def test_rejects_non_plain_names(self, temp_dir, name):
        engine = FFmpegEngine("ffmpeg", workdir=temp_dir)

        with pytest.raises(ValueError):
            await engine.write_file(name, b"x")

    @pytest.mark.unit
    def test_terminate_removes_workdir(self, temp_dir):
        workdir = temp_dir / "engine"
        engine = FFmpegEngine("ffmpeg", workdir=workdir)
        assert workdir.exists()

        engine.terminate()

        assert not workdir.exists()


class TestExec:
    """Tests for FFmpegEngine.exec()."""

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_runs_in_workdir_and_emits_progress(self, temp_dir):
        engine = FFmpegEngine("/usr/bin/ffmpeg", workdir=temp_dir)
        process = fake_process([
            b"frame=1\n",
            b"out_time_us=500000\n",
            b"progress=continue\n",
            b"out_time_us=1000000\n",
            b"progress=end\n",
        ])
        seen = []
        engine.on(PROGRESS_EVENT, seen.append)

        with patch(
            "assembly.engine.asyncio.create_subprocess_exec",
            new=AsyncMock(return_value=process),
        ) as create:
            await engine.exec(["-i", "in.png", "out.mp4"], duration=2.0)

        cmd = create.await_args.args
        assert cmd[0] == "/usr/bin/ffmpeg"
        assert cmd[1:7] == ("-hide_banner", "-nostats", "-progress", "pipe:1", "-y", "-i")
        assert cmd[-1] == "out.mp4"
        assert create.await_args.kwargs["cwd"] == str(temp_dir)
        assert seen == [0.25, 0.5, 1.0]

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_off_stops_events(self, temp_dir):
        engine = FFmpegEngine("ffmpeg", workdir=temp_dir)
        seen = []
        engine.on(PROGRESS_EVENT, seen.append)
        engine.off(PROGRESS_EVENT, seen.append)

        with patch(
            "assembly.engine.asyncio.create_subprocess_exec",
            new=AsyncMock(return_value=fake_process([b"progress=end\n"])),
        ):
            await engine.exec(["out.mp4"])

        assert seen == []

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_non_zero_exit_raises_with_stderr(self, temp_dir):
        engine = FFmpegEngine("ffmpeg", workdir=temp_dir)
        process = fake_process([], returncode=1, stderr=b"img-0.png: Invalid data found")

        with patch(
            "assembly.engine.asyncio.create_subprocess_exec",
            new=AsyncMock(return_value=process),
        ):
            with pytest.raises(EngineCommandError) as exc_info:
                await engine.exec(["out.mp4"])

        assert exc_info.value.returncode == 1
        assert "Invalid data found" in exc_info.value.stderr


class TestEngineLoader:
    """Tests for EngineLoader caching and failure handling."""

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_load_is_cached(self, temp_dir):
        loader = EngineLoader("ffmpeg")
        engine = FFmpegEngine("ffmpeg", workdir=temp_dir)

        with patch.object(EngineLoader, "_load", new=AsyncMock(return_value=engine)) as load:
            first = await loader.load()
            second = await loader.load()

        assert first is second is engine
        assert load.await_count == 1
        assert loader.is_loaded

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_concurrent_callers_share_one_load(self, temp_dir):
        loader = EngineLoader("ffmpeg")
        engine = FFmpegEngine("ffmpeg", workdir=temp_dir)
        release = asyncio.Event()
        calls = 0

        async def slow_load():
            nonlocal calls
            calls += 1
            await release.wait()
            return engine

        with patch.object(loader, "_load", new=slow_load):
            first = asyncio.ensure_future(loader.load())
            second = asyncio.ensure_future(loader.load())
            await asyncio.sleep(0)
            release.set()
            results = await asyncio.gather(first, second)

        assert results == [engine, engine]
        assert calls == 1

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_failed_load_is_not_cached(self, temp_dir):
        loader = EngineLoader("ffmpeg")
        engine = FFmpegEngine("ffmpeg", workdir=temp_dir)
        attempts = AsyncMock(side_effect=[EngineLoadError("probe failed"), engine])

        with patch.object(loader, "_load", new=attempts):
            with pytest.raises(EngineLoadError):
                await loader.load()
            assert not loader.is_loaded

            assert await loader.load() is engine

        assert attempts.await_count == 2

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_missing_binary_raises_load_error(self):
        loader = EngineLoader("definitely-not-ffmpeg")

        with patch("assembly.engine.shutil.which", return_value=None):
            with pytest.raises(EngineLoadError, match="definitely-not-ffmpeg"):
                await loader.load()

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_failing_version_probe_raises_load_error(self):
        loader = EngineLoader("ffmpeg")
        process = Mock()
        process.communicate = AsyncMock(return_value=(b"", b"cannot execute"))
        process.returncode = 1

        with patch("assembly.engine.shutil.which", return_value="/usr/bin/ffmpeg"), patch(
            "assembly.engine.asyncio.create_subprocess_exec",
            new=AsyncMock(return_value=process),
        ):
            with pytest.raises(EngineLoadError, match="cannot execute"):
                await loader.load()

        assert not loader.is_loaded

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_unstartable_binary_raises_load_error(self):
        loader = EngineLoader("ffmpeg")

        with patch("assembly.engine.shutil.which", return_value="/usr/bin/ffmpeg"), patch(
            "assembly.engine.asyncio.create_subprocess_exec",
            new=AsyncMock(side_effect=PermissionError("denied")),
        ):
            with pytest.raises(EngineLoadError, match="denied"):
                await loader.load()


@pytest.mark.unit
def test_get_engine_loader_is_process_wide():
    assert get_engine_loader("ffmpeg-test") is get_engine_loader("ffmpeg-test")
    assert get_engine_loader("ffmpeg-test") is not get_engine_loader("ffmpeg-other")
