"""Frame -> segment -> concatenated MP4 export.

Each exportable frame becomes one segment: its image held still for exactly
the length of its audio, letterboxed to a fixed resolution. Segments are named
segment-000.mp4, segment-001.mp4, ... so the concat list order is the frame
order. The concat step stream-copies, so nothing is re-encoded twice.

All staged files are removed from the engine's working directory after every
export, successful or not.
"""

import asyncio
import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Callable, Optional

import httpx

from assembly.engine import PROGRESS_EVENT, EngineLoader, ExportError, FFmpegEngine
from models.scene import Frame
from utils.codec import (
    DEFAULT_SAMPLE_RATE,
    decode_pcm16_lenient,
    get_image_bytes,
    pcm16_duration_seconds,
    sniff_image_extension,
)

logger = logging.getLogger(__name__)

DEFAULT_WIDTH = 1280
DEFAULT_HEIGHT = 720
DEFAULT_AUDIO_BITRATE = "128k"
VIDEO_EXTENSION = ".mp4"
CONCAT_LIST = "list.txt"
OUTPUT_NAME = "output.mp4"


class NoExportableFramesError(ExportError):
    """Raised when no frame has both a resolved image and audio."""

    def __init__(self):
        super().__init__(
            "No exportable frames: ensure every frame has both image and audio before exporting."
        )


class ExportStage(str, Enum):
    """Stages of one export invocation."""

    IDLE = "idle"
    ENGINE_LOADING = "engine_loading"
    ASSET_STAGING = "asset_staging"
    SEGMENT_ENCODING = "segment_encoding"
    CONCATENATING = "concatenating"
    CLEANUP = "cleanup"
    DONE = "done"
    FAILED = "failed"


@dataclass
class StagedFrame:
    """Engine file names for one frame, in export order."""

    index: int
    frame_id: str
    image_name: str
    audio_name: str
    segment_name: str
    duration: float


@dataclass
class ExportResult:
    """A finished export on local disk."""

    path: Path
    segment_count: int
    durations: list[float] = field(default_factory=list)
    size_bytes: int = 0

    @property
    def total_duration(self) -> float:
        return sum(self.durations)

    def to_dict(self) -> dict:
        """Convert to dictionary for CLI output."""
        return {
            "path": str(self.path),
            "segment_count": self.segment_count,
            "durations": self.durations,
            "total_duration": round(self.total_duration, 3),
            "size_bytes": self.size_bytes,
        }


def slugify_title(title: str) -> str:
    """Turn a scene title into a safe file stem."""
    slug = re.sub(r"[^A-Za-z0-9]+", "_", title or "").strip("_")
    return slug or "storyboard"


def segment_name(index: int) -> str:
    return f"segment-{index:03d}{VIDEO_EXTENSION}"


class MediaAssemblyPipeline:
    """Renders frames with image and audio into a single MP4.

    Exports through one pipeline are serialized; the engine's working
    directory is not safe for interleaved exports.
    """

    def __init__(
        self,
        loader: EngineLoader,
        output_dir: Optional[Path] = None,
        width: int = DEFAULT_WIDTH,
        height: int = DEFAULT_HEIGHT,
        sample_rate: int = DEFAULT_SAMPLE_RATE,
        audio_bitrate: str = DEFAULT_AUDIO_BITRATE,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.loader = loader
        self.output_dir = output_dir or Path("output")
        self.width = width
        self.height = height
        self.sample_rate = sample_rate
        self.audio_bitrate = audio_bitrate
        self.http_client = http_client
        self.stage = ExportStage.IDLE
        self._lock = asyncio.Lock()

    def _set_stage(self, stage: ExportStage) -> None:
        self.stage = stage
        logger.info(f"Export stage: {stage.value}")

    @staticmethod
    def eligible_frames(frames: list[Frame]) -> list[Frame]:
        """Frames with both a resolved image and audio, in original order."""
        return [f for f in frames if f.is_exportable]

    def segment_args(self, staged: StagedFrame) -> list[str]:
        """FFmpeg arguments for one still-image segment."""
        w, h = self.width, self.height
        return [
            "-loop", "1",
            "-t", f"{staged.duration:.3f}",
            "-i", staged.image_name,
            "-f", "s16le",
            "-ar", str(self.sample_rate),
            "-ac", "1",
            "-i", staged.audio_name,
            "-c:v", "libx264",
            "-tune", "stillimage",
            "-c:a", "aac",
            "-b:a", self.audio_bitrate,
            "-pix_fmt", "yuv420p",
            "-vf", (
                f"scale={w}:{h}:force_original_aspect_ratio=decrease,"
                f"pad={w}:{h}:(ow-iw)/2:(oh-ih)/2"
            ),
            staged.segment_name,
        ]

    @staticmethod
    def concat_args() -> list[str]:
        return ["-f", "concat", "-safe", "0", "-i", CONCAT_LIST, "-c", "copy", OUTPUT_NAME]

    @staticmethod
    def concat_list(staged: list[StagedFrame]) -> str:
        return "\n".join(f"file '{s.segment_name}'" for s in staged) + "\n"

    async def export(
        self,
        frames: list[Frame],
        title: str,
        on_progress: Optional[Callable[[int], None]] = None,
    ) -> ExportResult:
        """Export frames to <output_dir>/<title>.mp4.

        Args:
            frames: Scene frames in display order. Incomplete frames are skipped.
            title: Scene title, used for the output file name.
            on_progress: Receives integer percentages for the running command.

        Returns:
            ExportResult for the written file.

        Raises:
            NoExportableFramesError: No frame has both image and audio.
            EngineLoadError: The engine could not be loaded.
            EngineCommandError: An encode or concat command failed.
        """
        async with self._lock:
            eligible = self.eligible_frames(frames)
            if not eligible:
                self.stage = ExportStage.FAILED
                raise NoExportableFramesError()

            skipped = len(frames) - len(eligible)
            if skipped:
                logger.info(f"Skipping {skipped} frame(s) without both image and audio")

            return await self._run(eligible, title, on_progress)

    async def _run(
        self,
        frames: list[Frame],
        title: str,
        on_progress: Optional[Callable[[int], None]],
    ) -> ExportResult:
        engine: Optional[FFmpegEngine] = None
        staged: list[StagedFrame] = []
        # Every name handed to the engine, recorded before the write or command
        written: list[str] = []
        last_percent = -1

        def progress_handler(fraction: float) -> None:
            nonlocal last_percent
            percent = max(0, min(100, round(fraction * 100)))
            if percent <= last_percent:
                return
            last_percent = percent
            if on_progress:
                on_progress(percent)

        try:
            self._set_stage(ExportStage.ENGINE_LOADING)
            engine = await self.loader.load()
            engine.on(PROGRESS_EVENT, progress_handler)

            self._set_stage(ExportStage.ASSET_STAGING)
            for index, frame in enumerate(frames):
                staged.append(await self._stage_frame(engine, index, frame, written))

            self._set_stage(ExportStage.SEGMENT_ENCODING)
            for item in staged:
                last_percent = -1
                logger.info(
                    f"Encoding {item.segment_name} ({item.duration:.3f}s) for frame {item.frame_id}"
                )
                written.append(item.segment_name)
                await engine.exec(self.segment_args(item), duration=item.duration)

            self._set_stage(ExportStage.CONCATENATING)
            written.extend([CONCAT_LIST, OUTPUT_NAME])
            await engine.write_file(CONCAT_LIST, self.concat_list(staged))
            last_percent = -1
            await engine.exec(
                self.concat_args(),
                duration=sum(item.duration for item in staged),
            )
            data = await engine.read_file(OUTPUT_NAME)

            self.output_dir.mkdir(parents=True, exist_ok=True)
            output_path = self.output_dir / f"{slugify_title(title)}{VIDEO_EXTENSION}"
            await asyncio.to_thread(output_path.write_bytes, data)

            result = ExportResult(
                path=output_path,
                segment_count=len(staged),
                durations=[item.duration for item in staged],
                size_bytes=len(data),
            )
        except Exception as e:
            self.stage = ExportStage.FAILED
            logger.error(f"Export failed: {e}")
            raise
        finally:
            if engine is not None:
                engine.off(PROGRESS_EVENT, progress_handler)
                failed = self.stage == ExportStage.FAILED
                self._set_stage(ExportStage.CLEANUP)
                await self._cleanup(engine, written)
                if failed:
                    self.stage = ExportStage.FAILED

        self._set_stage(ExportStage.DONE)
        logger.info(
            f"Exported {result.segment_count} segments "
            f"({result.total_duration:.1f}s) to {result.path}"
        )
        return result

    async def _stage_frame(
        self, engine: FFmpegEngine, index: int, frame: Frame, written: list[str]
    ) -> StagedFrame:
        image_bytes = await get_image_bytes(frame.image, client=self.http_client)
        image_name = f"img-{index}.{sniff_image_extension(image_bytes)}"
        audio_name = f"aud-{index}.raw"

        written.append(image_name)
        await engine.write_file(image_name, image_bytes)
        written.append(audio_name)
        await engine.write_file(audio_name, decode_pcm16_lenient(frame.audio_data))

        return StagedFrame(
            index=index,
            frame_id=frame.id,
            image_name=image_name,
            audio_name=audio_name,
            segment_name=segment_name(index),
            duration=pcm16_duration_seconds(frame.audio_data, self.sample_rate),
        )

    async def _cleanup(self, engine: FFmpegEngine, written: list[str]) -> None:
        try:
            existing = set(await engine.list_files())
        except Exception as e:
            logger.warning(f"Engine cleanup could not list files: {e}")
            existing = set(written)

        for name in dict.fromkeys(written):
            if name not in existing:
                continue
            try:
                await engine.delete_file(name)
            except Exception as e:
                logger.warning(f"Engine cleanup failed for {name}: {e}")

