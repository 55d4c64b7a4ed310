"""Storyboard orchestration - manuscript import, frame generation, audio, and export.

Every handler writes through the SceneStore, one id-keyed action at a time, and
reports a GenerationOutcome per entity instead of raising for missing
artifacts. Progress flags (is_generating, is_generating_audio) are cleared in
finally blocks so no exit path leaves them set.
"""

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from functools import partial
from typing import Awaitable, Callable, Optional, Sequence, TypeVar

from assembly.exporter import ExportResult, MediaAssemblyPipeline
from models.generation import (
    AssetKind,
    FrameCoordinate,
    FrameReferences,
    GenerationOutcome,
    GenerationPolicy,
    PlateFailurePolicy,
)
from models.scene import (
    FRAME_COMPOSING_IMAGE,
    FRAME_TIMEOUT_IMAGE,
    PENDING_CHARACTER_IMAGE,
    PENDING_ENVIRONMENT_IMAGE,
    PENDING_IMAGES,
    Character,
    Environment,
    Frame,
    Motif,
    format_time_range,
)
from services.generation_gateway import GenerationGateway
from services.scene_store import Collection, SceneStore
from utils.logging import clear_task_context, set_task_context

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_PERFORMANCE_BRIEF = "Cinematic Performance"

PLATE_COLLECTIONS = {
    AssetKind.CHARACTER: Collection.CHARACTERS,
    AssetKind.ENVIRONMENT: Collection.ENVIRONMENTS,
}

PENDING_PLATE_IMAGES = {
    AssetKind.CHARACTER: PENDING_CHARACTER_IMAGE,
    AssetKind.ENVIRONMENT: PENDING_ENVIRONMENT_IMAGE,
}


def _short_id() -> str:
    return uuid.uuid4().hex[:8]


async def run_with_policy(
    policy: GenerationPolicy,
    tasks: Sequence[Callable[[], Awaitable[T]]],
) -> list[T]:
    """Run zero-argument coroutine factories under a scheduling policy.

    SEQUENTIAL awaits each task before starting the next, in order.
    CONCURRENT starts all of them at once. Results keep the input order
    either way.
    """
    if policy == GenerationPolicy.SEQUENTIAL:
        results = []
        for task in tasks:
            results.append(await task())
        return results
    return list(await asyncio.gather(*(task() for task in tasks)))


@dataclass
class PendingInsertion:
    """Handle for a manifest entry inserted before its plate exists."""

    store: SceneStore
    kind: AssetKind
    entity_id: str
    # Plate the entry held before a retry; restored instead of removing the entry
    previous_image: Optional[str] = None

    @property
    def collection(self) -> Collection:
        return PLATE_COLLECTIONS[self.kind]

    def commit(self, image: str) -> None:
        self.store.patch(self.collection, self.entity_id, image=image)

    def rollback(self) -> None:
        if self.previous_image:
            self.store.patch(self.collection, self.entity_id, image=self.previous_image)
        else:
            self.store.remove(self.collection, self.entity_id)


@dataclass
class SegmentCoverage:
    """How well frame segments cover the script they were cut from."""

    segment_count: int = 0
    # Indices of segments that are empty or not found verbatim after the previous one
    unmatched: list[int] = field(default_factory=list)
    # Non-whitespace script text not covered by any matched segment
    gaps: list[str] = field(default_factory=list)

    @property
    def is_complete(self) -> bool:
        return not self.unmatched and not self.gaps

    def to_dict(self) -> dict:
        return {
            "segment_count": self.segment_count,
            "unmatched": self.unmatched,
            "gaps": self.gaps,
            "is_complete": self.is_complete,
        }


def verify_segment_coverage(script: str, segments: Sequence[Optional[str]]) -> SegmentCoverage:
    """Check that segments appear verbatim, in order, and leave nothing uncovered.

    Whitespace between segments is ignored.
    """
    coverage = SegmentCoverage(segment_count=len(segments))
    cursor = 0
    for index, segment in enumerate(segments):
        text = (segment or "").strip()
        position = script.find(text, cursor) if text else -1
        if position < 0:
            coverage.unmatched.append(index)
            continue
        gap = script[cursor:position].strip()
        if gap:
            coverage.gaps.append(gap)
        cursor = position + len(text)

    tail = script[cursor:].strip()
    if tail:
        coverage.gaps.append(tail)
    return coverage


class StoryboardService:
    """Drives the generation gateway and export pipeline against one scene store."""

    def __init__(
        self,
        gateway: GenerationGateway,
        store: SceneStore,
        exporter: Optional[MediaAssemblyPipeline] = None,
        frame_policy: GenerationPolicy = GenerationPolicy.SEQUENTIAL,
        plate_policy: GenerationPolicy = GenerationPolicy.CONCURRENT,
        plate_failure_policy: PlateFailurePolicy = PlateFailurePolicy.REMOVE,
    ):
        """Initialize the storyboard service.

        Args:
            gateway: Provider gateway for analysis, images, and audio
            store: Scene store; the service is its only writer
            exporter: Media assembly pipeline, required for export_movie
            frame_policy: Scheduling for frame images during a storyboard build
            plate_policy: Scheduling for manifest plates after manuscript import
            plate_failure_policy: What to do with a pending entry whose plate fails
        """
        self.gateway = gateway
        self.store = store
        self.exporter = exporter
        self.frame_policy = frame_policy
        self.plate_policy = plate_policy
        self.plate_failure_policy = plate_failure_policy

    # =========================================================================
    # Manifest
    # =========================================================================

    async def import_manuscript(self, text: str) -> list[GenerationOutcome[str]]:
        """Analyze a manuscript, replace the manifest, and generate its plates.

        Analysis failures propagate and leave the manifest untouched.

        Returns:
            One plate outcome per extracted character and environment
        """
        analysis = await self.gateway.analyze_manuscript(text)

        characters = [
            Character(
                id=f"c-auto-{i}-{_short_id()}",
                name=draft.name,
                role=draft.role,
                description=draft.description,
            )
            for i, draft in enumerate(analysis.characters)
        ]
        environments = [
            Environment(
                id=f"e-auto-{i}-{_short_id()}",
                name=draft.name,
                mood=draft.mood,
                colors=draft.colors,
            )
            for i, draft in enumerate(analysis.environments)
        ]
        motifs = [
            Motif(
                id=f"m-auto-{i}-{_short_id()}",
                label=draft.label,
                icon=draft.icon,
                description=draft.description,
                frequency=draft.frequency,
            )
            for i, draft in enumerate(analysis.motifs)
        ]

        self.store.update(script=text)
        self.store.replace(Collection.CHARACTERS, characters)
        self.store.replace(Collection.ENVIRONMENTS, environments)
        self.store.replace(Collection.MOTIFS, motifs)

        tasks = [
            partial(
                self._generate_plate,
                PendingInsertion(self.store, AssetKind.CHARACTER, c.id),
                c.name,
                c.description,
            )
            for c in characters
        ] + [
            partial(
                self._generate_plate,
                PendingInsertion(self.store, AssetKind.ENVIRONMENT, e.id),
                e.name,
                e.mood,
            )
            for e in environments
        ]

        logger.info(
            f"Manuscript imported, generating {len(tasks)} plates ({self.plate_policy.value})"
        )
        return await run_with_policy(self.plate_policy, tasks)

    async def add_character(
        self, name: str, description: str, role: str = ""
    ) -> GenerationOutcome[str]:
        """Insert a pending character and generate its portrait plate."""
        character = Character(
            id=f"c-{_short_id()}", name=name, role=role, description=description
        )
        self.store.insert(Collection.CHARACTERS, character)
        pending = PendingInsertion(self.store, AssetKind.CHARACTER, character.id)
        return await self._generate_plate(pending, name, description)

    async def add_environment(self, name: str, description: str) -> GenerationOutcome[str]:
        """Insert a pending environment and generate its establishing plate."""
        environment = Environment(id=f"e-{_short_id()}", name=name, mood=description)
        self.store.insert(Collection.ENVIRONMENTS, environment)
        pending = PendingInsertion(self.store, AssetKind.ENVIRONMENT, environment.id)
        return await self._generate_plate(pending, name, description)

    async def retry_plate(self, kind: AssetKind, entity_id: str) -> GenerationOutcome[str]:
        """Regenerate the plate for an existing manifest entry."""
        manifest = self.store.document.manifest
        if kind == AssetKind.CHARACTER:
            entry = manifest.find_character(entity_id)
            description = entry.description if entry else ""
        else:
            entry = manifest.find_environment(entity_id)
            description = entry.mood if entry else ""

        if entry is None:
            logger.warning(f"Cannot retry plate: {kind.value} {entity_id} not found")
            return GenerationOutcome.failed(entity_id, f"{kind.value} {entity_id} not found")

        previous = None if entry.image in PENDING_IMAGES else entry.image or None
        self.store.patch(PLATE_COLLECTIONS[kind], entity_id, image=PENDING_PLATE_IMAGES[kind])
        pending = PendingInsertion(self.store, kind, entity_id, previous_image=previous)
        return await self._generate_plate(pending, entry.name, description)

    async def _generate_plate(
        self, pending: PendingInsertion, name: str, description: str
    ) -> GenerationOutcome[str]:
        token = set_task_context(pending.entity_id)
        try:
            image = await self.gateway.generate_asset_plate(name, description, pending.kind)
        except Exception as e:
            logger.error(f"Plate generation failed for {pending.kind.value} {name}: {e}")
            self._settle_failed_plate(pending)
            return GenerationOutcome.failed(pending.entity_id, e)
        finally:
            clear_task_context(token)

        if not image:
            logger.warning(f"No plate produced for {pending.kind.value} {name}")
            self._settle_failed_plate(pending)
            return GenerationOutcome.empty(pending.entity_id)

        pending.commit(image)
        return GenerationOutcome.generated(pending.entity_id, image)

    def _settle_failed_plate(self, pending: PendingInsertion) -> None:
        if pending.previous_image:
            logger.info(f"Restoring previous plate for {pending.kind.value} {pending.entity_id}")
            pending.rollback()
        elif self.plate_failure_policy == PlateFailurePolicy.REMOVE:
            pending.rollback()
        else:
            logger.info(f"Keeping {pending.kind.value} {pending.entity_id} pending for retry")

    # =========================================================================
    # Frames
    # =========================================================================

    async def generate_storyboard(self) -> list[GenerationOutcome[str]]:
        """Partition the scene script into frames and render each frame image.

        Partitioning failures propagate and leave the existing frames untouched.

        Returns:
            One image outcome per frame, in frame order
        """
        document = self.store.document
        if not document.script.strip():
            logger.warning("Scene has no script; nothing to storyboard")
            return []

        drafts = await self.gateway.partition_scene(
            document.script, document.manifest, document.genre
        )

        coverage = self.verify_segment_coverage(
            document.script, [d.script_segment for d in drafts]
        )
        if not coverage.is_complete:
            logger.warning(
                f"Frame segments do not cover the script verbatim "
                f"(unmatched={coverage.unmatched}, gaps={len(coverage.gaps)})"
            )

        frames = [
            Frame(
                id=f"f-{i}-{_short_id()}",
                title=draft.title,
                time_range=format_time_range(i),
                prompt=draft.prompt,
                image=FRAME_COMPOSING_IMAGE,
                script_segment=draft.script_segment,
                directors_brief=draft.directors_brief,
                character_id=draft.character_id,
                environment_id=draft.environment_id,
                shot_type=draft.shot_type,
                is_generating=True,
            )
            for i, draft in enumerate(drafts)
        ]
        self.store.replace(Collection.FRAMES, frames)

        logger.info(f"Rendering {len(frames)} frames ({self.frame_policy.value})")
        return await run_with_policy(
            self.frame_policy, [partial(self._render_frame, frame) for frame in frames]
        )

    @staticmethod
    def _references(frame: Frame) -> FrameReferences:
        return FrameReferences(
            character_id=frame.character_id,
            environment_id=frame.environment_id,
            shot_type=frame.shot_type,
            emotion=frame.directors_brief.emotional_arc if frame.directors_brief else None,
        )

    async def _render_frame(self, frame: Frame) -> GenerationOutcome[str]:
        token = set_task_context(frame.id)
        image = FRAME_TIMEOUT_IMAGE
        try:
            result = await self.gateway.generate_frame_image(
                frame.prompt,
                self.store.document.manifest,
                references=self._references(frame),
            )
            if result:
                image = result
                outcome = GenerationOutcome.generated(frame.id, result)
            else:
                outcome = GenerationOutcome.empty(frame.id)
        except Exception as e:
            logger.error(f"Frame generation failed after retries for {frame.id}: {e}")
            outcome = GenerationOutcome.failed(frame.id, e)
        finally:
            self.store.patch(Collection.FRAMES, frame.id, image=image, is_generating=False)
            clear_task_context(token)
        return outcome

    async def refine_frame(
        self,
        frame_id: str,
        instruction: str,
        coord: Optional[FrameCoordinate] = None,
    ) -> GenerationOutcome[str]:
        """Edit a frame's current image, optionally localized to a point.

        The previous image is kept when the edit fails or produces nothing.
        """
        frame = self.store.document.find_frame(frame_id)
        if frame is None:
            return GenerationOutcome.failed(frame_id, f"Frame {frame_id} not found")
        if frame.is_generating:
            logger.warning(f"Frame {frame_id} is already generating; edit ignored")
            return GenerationOutcome.failed(frame_id, "Frame is already generating")

        token = set_task_context(frame_id)
        image = frame.image
        self.store.patch(Collection.FRAMES, frame_id, is_generating=True)
        try:
            result = await self.gateway.generate_frame_image(
                instruction,
                self.store.document.manifest,
                references=self._references(frame),
                base_image=frame.image,
                coord=coord,
            )
            if result:
                image = result
                outcome = GenerationOutcome.generated(frame_id, result)
            else:
                outcome = GenerationOutcome.empty(frame_id)
        except Exception as e:
            logger.error(f"Edit failed for {frame_id}: {e}")
            outcome = GenerationOutcome.failed(frame_id, e)
        finally:
            self.store.patch(Collection.FRAMES, frame_id, image=image, is_generating=False)
            clear_task_context(token)
        return outcome

    # =========================================================================
    # Audio
    # =========================================================================

    async def synthesize_audio(self, frame_id: str) -> GenerationOutcome[str]:
        """Generate a voice performance for one frame's script segment."""
        document = self.store.document
        frame = document.find_frame(frame_id)
        if frame is None:
            return GenerationOutcome.failed(frame_id, f"Frame {frame_id} not found")
        if not frame.script_segment:
            logger.debug(f"Frame {frame_id} has no script segment; skipping audio")
            return GenerationOutcome.empty(frame_id)
        if frame.is_generating_audio:
            return GenerationOutcome.failed(frame_id, "Audio is already generating")

        brief = (
            frame.directors_brief.emotional_arc if frame.directors_brief else ""
        ) or DEFAULT_PERFORMANCE_BRIEF

        token = set_task_context(frame_id)
        audio = frame.audio_data
        self.store.patch(Collection.FRAMES, frame_id, is_generating_audio=True)
        try:
            result = await self.gateway.synthesize_performance(
                frame.script_segment, brief, document.genre
            )
            if result:
                audio = result
                outcome = GenerationOutcome.generated(frame_id, result)
            else:
                outcome = GenerationOutcome.empty(frame_id)
        except Exception as e:
            logger.error(f"Audio synthesis failed for {frame_id}: {e}")
            outcome = GenerationOutcome.failed(frame_id, e)
        finally:
            self.store.patch(
                Collection.FRAMES, frame_id, audio_data=audio, is_generating_audio=False
            )
            clear_task_context(token)
        return outcome

    async def synthesize_all_audio(self) -> list[GenerationOutcome[str]]:
        """Synthesize audio for every frame, one at a time in frame order."""
        frame_ids = [f.id for f in self.store.document.frames]
        return await run_with_policy(
            GenerationPolicy.SEQUENTIAL,
            [partial(self.synthesize_audio, frame_id) for frame_id in frame_ids],
        )

    # =========================================================================
    # Export
    # =========================================================================

    async def export_movie(
        self, on_progress: Optional[Callable[[int], None]] = None
    ) -> ExportResult:
        """Render every frame with both image and audio into one MP4."""
        if self.exporter is None:
            raise RuntimeError("No exporter configured")

        document = self.store.document
        token = set_task_context("export")
        try:
            return await self.exporter.export(document.frames, document.title, on_progress)
        finally:
            clear_task_context(token)

    @staticmethod
    def verify_segment_coverage(
        script: str, segments: Sequence[Optional[str]]
    ) -> SegmentCoverage:
        return verify_segment_coverage(script, segments)
