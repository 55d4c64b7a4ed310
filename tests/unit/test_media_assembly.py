"""Unit tests for MediaAssemblyPipeline.

Runs against an in-memory fake engine, so no ffmpeg process is started. The
fake records every command and writes the concat output when asked.
"""

import asyncio

import pytest

from conftest import PNG_DATA_URI, pcm_base64
from assembly.engine import PROGRESS_EVENT, EngineCommandError, EngineLoadError
from assembly.exporter import (
    CONCAT_LIST,
    OUTPUT_NAME,
    ExportStage,
    MediaAssemblyPipeline,
    NoExportableFramesError,
    segment_name,
    slugify_title,
)
from models.scene import FRAME_COMPOSING_IMAGE, Frame


class FakeEngine:
    """In-memory stand-in for FFmpegEngine."""

    def __init__(
        self,
        fail_on_command: int | None = None,
        progress=(0.25, 0.5, 0.5, 1.0),
        fail_on_write: str | None = None,
    ):
        self.files: dict[str, bytes] = {}
        self.commands: list[tuple[list[str], float | None]] = []
        self.handlers = []
        self.fail_on_command = fail_on_command
        self.progress = progress
        self.fail_on_write = fail_on_write

    async def write_file(self, name, data):
        if name == self.fail_on_write:
            raise OSError(f"No space left on device: {name}")
        self.files[name] = data.encode("utf-8") if isinstance(data, str) else data

    async def read_file(self, name):
        return self.files[name]

    async def delete_file(self, name):
        del self.files[name]

    async def list_files(self):
        return sorted(self.files)

    def on(self, event, handler):
        assert event == PROGRESS_EVENT
        self.handlers.append(handler)

    def off(self, event, handler):
        self.handlers.remove(handler)

    async def exec(self, args, duration=None):
        self.commands.append((args, duration))
        if self.fail_on_command == len(self.commands):
            raise EngineCommandError("ffmpeg exited with status 1", returncode=1)
        for fraction in self.progress:
            for handler in list(self.handlers):
                handler(fraction)
        self.files[args[-1]] = b"mp4:" + args[-1].encode("ascii")


class FakeLoader:
    def __init__(self, engine=None, error=None):
        self.engine = engine or FakeEngine()
        self.error = error
        self.load_count = 0

    async def load(self):
        self.load_count += 1
        if self.error:
            raise self.error
        return self.engine


def make_frame(index: int, samples: int | None = 24000, image: str = PNG_DATA_URI) -> Frame:
    return Frame(
        id=f"f-{index}",
        title=f"Frame {index}",
        time_range="00:00 - 00:05",
        prompt="p",
        image=image,
        audio_data=pcm_base64(samples) if samples is not None else None,
    )


@pytest.fixture
def loader():
    return FakeLoader()


@pytest.fixture
def pipeline(loader, temp_dir):
    return MediaAssemblyPipeline(loader, output_dir=temp_dir)


def segment_commands(engine):
    return [(args, duration) for args, duration in engine.commands if "-loop" in args]


@pytest.mark.unit
@pytest.mark.asyncio
async def test_three_frames_three_segments_in_order(pipeline, loader, temp_dir):
    frames = [make_frame(0, 24000), make_frame(1, 36000), make_frame(2, 12000)]

    result = await pipeline.export(frames, "Rain Alley")

    segments = segment_commands(loader.engine)
    assert [args[-1] for args, _ in segments] == [segment_name(i) for i in range(3)]
    assert [duration for _, duration in segments] == [1.0, 1.5, 0.5]
    assert [args[args.index("-t") + 1] for args, _ in segments] == ["1.000", "1.500", "0.500"]

    concat_args, concat_duration = loader.engine.commands[-1]
    assert concat_args == ["-f", "concat", "-safe", "0", "-i", CONCAT_LIST, "-c", "copy", OUTPUT_NAME]
    assert concat_duration == 3.0

    assert result.segment_count == 3
    assert result.durations == [1.0, 1.5, 0.5]
    assert result.path == temp_dir / "Rain_Alley.mp4"
    assert result.path.read_bytes() == b"mp4:output.mp4"
    assert pipeline.stage == ExportStage.DONE


@pytest.mark.unit
@pytest.mark.asyncio
async def test_concat_list_orders_segments(pipeline, loader):
    written = {}
    original_write = loader.engine.write_file

    async def capture(name, data):
        written[name] = data
        await original_write(name, data)

    loader.engine.write_file = capture

    await pipeline.export([make_frame(0), make_frame(1)], "t")

    assert written[CONCAT_LIST] == "file 'segment-000.mp4'\nfile 'segment-001.mp4'\n"


@pytest.mark.unit
@pytest.mark.asyncio
async def test_segment_arguments_letterbox_and_raw_audio(pipeline, loader):
    await pipeline.export([make_frame(0)], "t")

    args, _ = segment_commands(loader.engine)[0]
    assert args[args.index("-f") + 1] == "s16le"
    assert args[args.index("-ar") + 1] == "24000"
    assert args[args.index("-ac") + 1] == "1"
    assert args[args.index("-pix_fmt") + 1] == "yuv420p"
    assert args[args.index("-vf") + 1] == (
        "scale=1280:720:force_original_aspect_ratio=decrease,"
        "pad=1280:720:(ow-iw)/2:(oh-ih)/2"
    )
    assert "img-0.png" in args
    assert "aud-0.raw" in args


@pytest.mark.unit
@pytest.mark.asyncio
async def test_frame_without_audio_is_skipped(pipeline, loader):
    frames = [make_frame(0), make_frame(1, samples=None), make_frame(2)]

    result = await pipeline.export(frames, "t")

    assert result.segment_count == 2
    assert len(segment_commands(loader.engine)) == 2


@pytest.mark.unit
@pytest.mark.asyncio
async def test_pending_or_generating_images_are_not_exportable(pipeline, loader):
    generating = make_frame(1)
    generating.is_generating = True
    frames = [make_frame(0, image=FRAME_COMPOSING_IMAGE), generating, make_frame(2, image="")]

    with pytest.raises(NoExportableFramesError):
        await pipeline.export(frames, "t")


@pytest.mark.unit
@pytest.mark.asyncio
async def test_no_exportable_frames_runs_no_engine_commands(pipeline, loader):
    frames = [make_frame(0, samples=None), make_frame(1, samples=None)]

    with pytest.raises(NoExportableFramesError, match="No exportable frames"):
        await pipeline.export(frames, "t")

    assert loader.load_count == 0
    assert loader.engine.commands == []
    assert pipeline.stage == ExportStage.FAILED


@pytest.mark.unit
@pytest.mark.asyncio
async def test_cleanup_after_success(pipeline, loader):
    await pipeline.export([make_frame(0), make_frame(1)], "t")

    assert loader.engine.files == {}


@pytest.mark.unit
@pytest.mark.asyncio
async def test_cleanup_after_failed_segment(pipeline, loader, temp_dir):
    loader.engine.fail_on_command = 2

    with pytest.raises(EngineCommandError):
        await pipeline.export([make_frame(0), make_frame(1), make_frame(2)], "t")

    assert loader.engine.files == {}
    assert pipeline.stage == ExportStage.FAILED
    assert loader.engine.handlers == []
    assert not (temp_dir / "t.mp4").exists()


@pytest.mark.unit
@pytest.mark.asyncio
async def test_engine_load_failure_surfaces(temp_dir):
    pipeline = MediaAssemblyPipeline(FakeLoader(error=EngineLoadError("missing")), output_dir=temp_dir)

    with pytest.raises(EngineLoadError):
        await pipeline.export([make_frame(0)], "t")

    assert pipeline.stage == ExportStage.FAILED


@pytest.mark.unit
@pytest.mark.asyncio
async def test_cleanup_after_failed_staging_write(pipeline, loader):
    loader.engine.fail_on_write = "aud-1.raw"

    with pytest.raises(OSError, match="aud-1.raw"):
        await pipeline.export([make_frame(0), make_frame(1)], "t")

    assert loader.engine.files == {}
    assert loader.engine.commands == []


@pytest.mark.unit
@pytest.mark.asyncio
async def test_cleanup_listing_failure_keeps_export_error(pipeline, loader):
    loader.engine.fail_on_command = 1

    async def workdir_gone():
        raise FileNotFoundError("workdir gone")

    loader.engine.list_files = workdir_gone

    with pytest.raises(EngineCommandError):
        await pipeline.export([make_frame(0)], "t")

    assert loader.engine.files == {}
    assert pipeline.stage == ExportStage.FAILED


@pytest.mark.unit
@pytest.mark.asyncio
async def test_rejected_export_leaves_running_stage_alone(pipeline, loader):
    release = asyncio.Event()
    encode = loader.engine.exec

    async def slow_exec(args, duration=None):
        await release.wait()
        await encode(args, duration)

    loader.engine.exec = slow_exec
    running = asyncio.ensure_future(pipeline.export([make_frame(0)], "t"))
    for _ in range(20):
        await asyncio.sleep(0)
    assert pipeline.stage == ExportStage.SEGMENT_ENCODING

    rejected = asyncio.ensure_future(pipeline.export([make_frame(1, samples=None)], "t"))
    for _ in range(5):
        await asyncio.sleep(0)
    assert pipeline.stage == ExportStage.SEGMENT_ENCODING

    release.set()
    assert (await running).segment_count == 1
    with pytest.raises(NoExportableFramesError):
        await rejected


@pytest.mark.unit
@pytest.mark.asyncio
async def test_progress_is_integer_and_non_decreasing_per_command(pipeline):
    reported = []

    await pipeline.export([make_frame(0)], "t", on_progress=reported.append)

    # Two commands (segment, concat), each reporting 25, 50, 100 once
    assert reported == [25, 50, 100, 25, 50, 100]
    assert all(isinstance(p, int) for p in reported)


@pytest.mark.unit
@pytest.mark.asyncio
async def test_malformed_audio_uses_fallback_duration(pipeline, loader):
    bad = make_frame(1)
    bad.audio_data = "!!not-base64!!"

    result = await pipeline.export([make_frame(0), bad], "t")

    assert result.durations[1] == 5.0


@pytest.mark.unit
def test_slugify_title():
    assert slugify_title("Rain / Alley: Take 2") == "Rain_Alley_Take_2"
    assert slugify_title("") == "storyboard"
