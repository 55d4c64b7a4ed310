"""Media assembly - frame segments rendered and concatenated with FFmpeg."""

from .engine import (
    EngineCommandError,
    EngineLoader,
    EngineLoadError,
    ExportError,
    FFmpegEngine,
    get_engine_loader,
)
from .exporter import (
    ExportResult,
    ExportStage,
    MediaAssemblyPipeline,
    NoExportableFramesError,
)

__all__ = [
    "ExportError",
    "EngineLoadError",
    "EngineCommandError",
    "NoExportableFramesError",
    "FFmpegEngine",
    "EngineLoader",
    "get_engine_loader",
    "ExportStage",
    "ExportResult",
    "MediaAssemblyPipeline",
]
