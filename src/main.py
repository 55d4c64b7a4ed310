"""Main application entry point for Storyboard Studio."""

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Optional

import httpx
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from tqdm import tqdm

from assembly.engine import ExportError, get_engine_loader
from assembly.exporter import ExportResult, MediaAssemblyPipeline
from models.generation import GenerationOutcome, GenerationPolicy, PlateFailurePolicy
from models.scene import Genre, SceneDocument
from services.generation_gateway import GenerationGateway
from services.scene_store import SceneStore
from services.storyboard_service import StoryboardService
from utils.config import load_config, validate_config
from utils.logging import setup_logging

logger = logging.getLogger(__name__)


class ExportProgressBar:
    """tqdm bar fed with integer export percentages, one bar per command."""

    def __init__(self):
        self.bar: Optional[tqdm] = None
        self.last_percent = 0

    def __call__(self, percent: int):
        # A lower percentage means the exporter moved on to its next command
        if self.bar is None or percent < self.last_percent:
            self.close()
            self.bar = tqdm(total=100, desc="Exporting", unit="%", leave=False)
        self.bar.n = percent
        self.bar.refresh()
        self.last_percent = percent

    def close(self):
        """Close the current progress bar."""
        if self.bar:
            self.bar.close()
        self.bar = None
        self.last_percent = 0


class StoryboardApp:
    """Runs one manuscript through the full storyboard pipeline."""

    def __init__(self, config: dict, console: Optional[Console] = None):
        self.config = config
        self.console = console or Console()

    def _summarize(self, label: str, outcomes: list[GenerationOutcome]) -> None:
        generated = sum(1 for o in outcomes if o.ok)
        failed = [o for o in outcomes if o.error]
        self.console.print(
            f"[bold]{label}:[/bold] {generated}/{len(outcomes)} generated"
            + (f", [red]{len(failed)} failed[/red]" if failed else "")
        )

    def display_manifest(self, document: SceneDocument) -> None:
        """Show extracted characters, environments, and motifs."""
        table = Table(title="Visual Manifest", show_lines=False)
        table.add_column("Kind", style="cyan")
        table.add_column("Name", style="bold white")
        table.add_column("Details", style="white")
        table.add_column("Plate", style="green")

        manifest = document.manifest
        for c in manifest.characters:
            table.add_row("Character", c.name, c.role, "pending" if c.is_pending else "ready")
        for e in manifest.environments:
            table.add_row("Environment", e.name, e.mood, "pending" if e.is_pending else "ready")
        for m in manifest.motifs:
            table.add_row("Motif", m.label, m.description, "-")

        self.console.print(table)

    def display_frames(self, document: SceneDocument) -> None:
        """Show the frame list with image and audio status."""
        table = Table(title="Storyboard")
        table.add_column("#", style="dim")
        table.add_column("Time", style="cyan")
        table.add_column("Title", style="bold white")
        table.add_column("Shot", style="white")
        table.add_column("Image", style="green")
        table.add_column("Audio", style="green")

        for index, frame in enumerate(document.frames, start=1):
            table.add_row(
                str(index),
                frame.time_range,
                frame.title,
                frame.shot_type or "-",
                "ready" if frame.has_resolved_image else "missing",
                "ready" if frame.audio_data else "-",
            )

        self.console.print(table)

    async def run(self, args: argparse.Namespace) -> Optional[ExportResult]:
        """Import, storyboard, voice, and export one manuscript."""
        script_path = Path(args.script_file)
        text = script_path.read_text(encoding="utf-8")

        output_dir = Path(args.output_dir or self.config["output_folder"])
        store = SceneStore(
            SceneDocument(
                title=args.title or script_path.stem.replace("_", " ").title(),
                location=args.location or "",
                genre=Genre.parse(args.genre),
            )
        )

        async with httpx.AsyncClient(timeout=30.0) as http_client:
            gateway = GenerationGateway(
                api_key=self.config["gemini_api_key"],
                text_model=self.config["text_model"],
                image_model=self.config["image_model"],
                tts_model=self.config["tts_model"],
                max_attempts=self.config["max_retry_attempts"],
                base_delay=self.config["retry_base_delay"],
                http_client=http_client,
            )
            exporter = MediaAssemblyPipeline(
                loader=get_engine_loader(self.config["ffmpeg_binary"]),
                output_dir=output_dir,
                width=self.config["export_width"],
                height=self.config["export_height"],
                sample_rate=self.config["audio_sample_rate"],
                http_client=http_client,
            )
            service = StoryboardService(
                gateway,
                store,
                exporter=exporter,
                frame_policy=GenerationPolicy(self.config["frame_generation_policy"]),
                plate_policy=GenerationPolicy(self.config["plate_generation_policy"]),
                plate_failure_policy=PlateFailurePolicy(self.config["plate_failure_policy"]),
            )

            self.console.print(
                Panel(
                    f"[bold]{store.document.title}[/bold]\n"
                    f"Genre: {store.document.genre.value}  Script: {len(text)} chars",
                    title="Storyboard Studio",
                    border_style="blue",
                )
            )

            with self.console.status("Analyzing manuscript and generating plates..."):
                plates = await service.import_manuscript(text)
            self.display_manifest(store.document)
            self._summarize("Plates", plates)

            with self.console.status("Partitioning scene and rendering frames..."):
                frames = await service.generate_storyboard()
            self._summarize("Frames", frames)

            if not args.no_audio:
                with self.console.status("Synthesizing performances..."):
                    audio = await service.synthesize_all_audio()
                self._summarize("Audio", audio)

            self.display_frames(store.document)

            result = None
            if not args.no_export and not args.no_audio:
                progress = ExportProgressBar()
                try:
                    result = await service.export_movie(on_progress=progress)
                finally:
                    progress.close()
                self.console.print(
                    f"[green]Exported {result.segment_count} segments "
                    f"({result.total_duration:.1f}s) to {result.path}[/green]"
                )

        if args.dump:
            dump_path = Path(args.dump)
            dump_path.write_text(
                json.dumps(store.document.to_dict(), indent=2), encoding="utf-8"
            )
            self.console.print(f"Scene document written to {dump_path}")

        return result


def main():
    """Main entry point."""
    # Parse command line arguments
    parser = argparse.ArgumentParser(
        description="Storyboard Studio - manuscript to storyboard to MP4",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  storyboard-studio scene.txt                          # Full pipeline
  storyboard-studio scene.txt --genre Noir --no-export # Storyboard and audio only
  storyboard-studio scene.txt --dump scene.json        # Also write the scene document
        """,
    )
    parser.add_argument("script_file", help="Plain-text script or manuscript")
    parser.add_argument("--title", help="Scene title (defaults to the file name)")
    parser.add_argument("--location", help="Scene location")
    parser.add_argument(
        "--genre",
        default=Genre.DRAMA.value,
        help=f"One of: {', '.join(g.value for g in Genre)}",
    )
    parser.add_argument("--output-dir", help="Directory for the exported MP4")
    parser.add_argument("--no-audio", action="store_true", help="Skip voice synthesis (implies --no-export)")
    parser.add_argument("--no-export", action="store_true", help="Skip the MP4 export")
    parser.add_argument("--dump", metavar="SCENE_JSON", help="Write the scene document as JSON")
    parser.add_argument("--json-logs", action="store_true", help="Emit JSON log lines")
    parser.add_argument("--log-level", help="Override LOG_LEVEL")

    args = parser.parse_args()

    config = load_config()
    if args.log_level:
        config["log_level"] = args.log_level.upper()
    setup_logging(config["log_level"], json_output=args.json_logs)

    console = Console()
    errors = validate_config(config)
    if errors:
        for error in errors:
            console.print(f"[red]Configuration error:[/red] {error}")
        sys.exit(1)

    if not Path(args.script_file).is_file():
        console.print(f"[red]Script file not found:[/red] {args.script_file}")
        sys.exit(1)

    app = StoryboardApp(config, console=console)

    try:
        asyncio.run(app.run(args))
    except KeyboardInterrupt:
        logger.info("Application interrupted by user")
        sys.exit(0)
    except ExportError as e:
        console.print(f"[red]Export failed:[/red] {e}")
        sys.exit(1)
    except Exception as e:
        logger.error(f"Application error: {e}")
        console.print(f"[red]Failed:[/red] {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
