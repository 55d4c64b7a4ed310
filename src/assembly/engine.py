"""FFmpeg engine adapter used by the export pipeline.

The engine owns a private working directory that acts as its virtual
filesystem: callers write inputs by name, run argument-vector commands against
those names, read outputs back, and delete what they staged. Commands run as
subprocesses with machine-readable progress on stdout.

The binary is probed once per process through EngineLoader. Concurrent callers
share one in-flight load, and a failed load is never cached.
"""

import asyncio
import logging
import shutil
import tempfile
from pathlib import Path
from typing import Callable, Optional

logger = logging.getLogger(__name__)

DEFAULT_BINARY = "ffmpeg"
PROGRESS_EVENT = "progress"
STDERR_TAIL_CHARS = 1000

ProgressHandler = Callable[[float], None]


class ExportError(Exception):
    """Base class for export failures surfaced to the caller."""

    pass


class EngineLoadError(ExportError):
    """Raised when the ffmpeg binary cannot be located or started."""

    pass


class EngineCommandError(ExportError):
    """Raised when an ffmpeg command exits with a non-zero status."""

    def __init__(self, message: str, returncode: int | None = None, stderr: str = ""):
        super().__init__(message)
        self.returncode = returncode
        self.stderr = stderr


def parse_progress_line(line: str) -> Optional[float]:
    """Extract elapsed output seconds from one `-progress` key=value line.

    Returns None for lines that carry no timing. `out_time_ms` is reported in
    microseconds by ffmpeg, same as `out_time_us`.
    """
    key, _, value = line.strip().partition("=")
    if key not in ("out_time_us", "out_time_ms"):
        return None
    try:
        micros = int(value)
    except ValueError:
        return None
    if micros < 0:
        return None
    return micros / 1_000_000


class FFmpegEngine:
    """An ffmpeg binary bound to a private working directory."""

    def __init__(self, binary: str, workdir: Optional[Path] = None):
        self.binary = binary
        self.workdir = Path(workdir) if workdir else Path(tempfile.mkdtemp(prefix="storyboard-engine-"))
        self.workdir.mkdir(parents=True, exist_ok=True)
        self._listeners: dict[str, list[ProgressHandler]] = {PROGRESS_EVENT: []}

    # ------------------------------------------------------------------
    # Virtual filesystem
    # ------------------------------------------------------------------

    def _path(self, name: str) -> Path:
        if not name or Path(name).name != name or name in (".", ".."):
            raise ValueError(f"Engine file names must be plain names: {name!r}")
        return self.workdir / name

    async def write_file(self, name: str, data: bytes | str) -> None:
        path = self._path(name)
        if isinstance(data, str):
            await asyncio.to_thread(path.write_text, data, encoding="utf-8")
        else:
            await asyncio.to_thread(path.write_bytes, data)

    async def read_file(self, name: str) -> bytes:
        return await asyncio.to_thread(self._path(name).read_bytes)

    async def delete_file(self, name: str) -> None:
        await asyncio.to_thread(self._path(name).unlink)

    async def list_files(self) -> list[str]:
        return await asyncio.to_thread(self._list_files)

    def _list_files(self) -> list[str]:
        return sorted(p.name for p in self.workdir.iterdir() if p.is_file())

    # ------------------------------------------------------------------
    # Progress events
    # ------------------------------------------------------------------

    def on(self, event: str, handler: ProgressHandler) -> None:
        self._listeners.setdefault(event, []).append(handler)

    def off(self, event: str, handler: ProgressHandler) -> None:
        handlers = self._listeners.get(event, [])
        if handler in handlers:
            handlers.remove(handler)

    def _emit(self, event: str, value: float) -> None:
        for handler in list(self._listeners.get(event, [])):
            try:
                handler(value)
            except Exception as e:
                logger.warning(f"Progress handler failed: {e}")

    # ------------------------------------------------------------------
    # Command execution
    # ------------------------------------------------------------------

    async def exec(self, args: list[str], duration: Optional[float] = None) -> None:
        """Run one ffmpeg command inside the working directory.

        Args:
            args: Arguments after the binary name (inputs, filters, output).
            duration: Expected output duration in seconds, used to turn
                elapsed output time into a 0-1 progress fraction.

        Raises:
            EngineCommandError: If ffmpeg exits with a non-zero status.
        """
        cmd = [
            self.binary,
            "-hide_banner",
            "-nostats",
            "-progress", "pipe:1",
            "-y",
            *args,
        ]
        logger.debug(f"Command: {' '.join(cmd)}")

        process = await asyncio.create_subprocess_exec(
            *cmd,
            cwd=str(self.workdir),
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        stderr_task = asyncio.create_task(process.stderr.read())

        async for raw_line in process.stdout:
            line = raw_line.decode("utf-8", errors="replace").strip()
            if line == "progress=end":
                self._emit(PROGRESS_EVENT, 1.0)
                continue
            elapsed = parse_progress_line(line)
            if elapsed is not None and duration:
                self._emit(PROGRESS_EVENT, min(elapsed / duration, 1.0))

        stderr = (await stderr_task).decode("utf-8", errors="replace")
        returncode = await process.wait()

        if returncode != 0:
            logger.error(f"FFmpeg stderr: {stderr[-STDERR_TAIL_CHARS:]}")
            raise EngineCommandError(
                f"FFmpeg exited with status {returncode}: {stderr[-500:].strip()}",
                returncode=returncode,
                stderr=stderr,
            )

    def terminate(self) -> None:
        """Remove the working directory."""
        shutil.rmtree(self.workdir, ignore_errors=True)


class EngineLoader:
    """Loads the engine once and shares it.

    Callers that arrive while a load is in flight await the same task. If the
    load fails the slot is cleared, so the next call starts a fresh attempt.
    """

    def __init__(self, binary: str = DEFAULT_BINARY):
        self.binary = binary
        self._engine: Optional[FFmpegEngine] = None
        self._loading: Optional[asyncio.Task] = None

    @property
    def is_loaded(self) -> bool:
        return self._engine is not None

    async def load(self) -> FFmpegEngine:
        if self._engine is not None:
            return self._engine

        if self._loading is None:
            self._loading = asyncio.ensure_future(self._load())

        task = self._loading
        try:
            engine = await task
        except Exception:
            if self._loading is task:
                self._loading = None
            raise

        self._engine = engine
        return engine

    async def _probe(self, executable: str) -> None:
        """Run `<binary> -version` to make sure the runtime starts."""
        process = await asyncio.create_subprocess_exec(
            executable,
            "-version",
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        stdout, stderr = await process.communicate()
        if process.returncode != 0:
            raise EngineLoadError(
                f"{executable} -version failed: {stderr.decode('utf-8', errors='replace')[:300]}"
            )
        first_line = stdout.decode("utf-8", errors="replace").splitlines()[:1]
        logger.info(f"Media engine ready: {first_line[0] if first_line else executable}")

    async def _load(self) -> FFmpegEngine:
        executable = shutil.which(self.binary)
        if executable is None:
            raise EngineLoadError(
                f"Could not find the '{self.binary}' binary. Install FFmpeg or set FFMPEG_BINARY."
            )
        try:
            await self._probe(executable)
        except EngineLoadError:
            raise
        except OSError as e:
            raise EngineLoadError(f"Failed to start {executable}: {e}") from e
        return FFmpegEngine(executable)

    def reset(self) -> None:
        """Drop the cached engine and remove its working directory."""
        if self._engine is not None:
            self._engine.terminate()
        self._engine = None
        self._loading = None


_default_loaders: dict[str, EngineLoader] = {}


def get_engine_loader(binary: str = DEFAULT_BINARY) -> EngineLoader:
    """Return the process-wide loader for a binary."""
    loader = _default_loaders.get(binary)
    if loader is None:
        loader = EngineLoader(binary)
        _default_loaders[binary] = loader
    return loader
