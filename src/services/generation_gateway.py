"""Generation gateway for manuscript analysis, storyboards, images, and voice using Google GenAI.

Every provider call is wrapped in the rate-limit retry from utils.retry.
Structured responses go through parse_json_response because the model does not
always return clean JSON even when asked to. A response without an image or
audio part is a normal outcome and is reported as None, not an error.
"""

import base64
import logging
import re
from typing import Optional

import httpx
from google.genai import Client
from google.genai import types

from models.generation import AssetKind, FrameCoordinate, FrameReferences
from models.scene import FrameDraft, Genre, ManuscriptAnalysis, VisualManifest
from services.prompts import (
    CHARACTER_PLATE,
    CINEMATIC_STYLE,
    ENVIRONMENT_PLATE,
    FRAME_EDIT_GLOBAL,
    FRAME_EDIT_LOCALIZED,
    FRAME_GENERATION,
    MANUSCRIPT_ANALYZER,
    PERFORMANCE_DIRECTOR,
    REFERENCE_NOTE,
    SCENE_PARTITIONER,
    parse_json_response,
)
from utils.codec import EncodedImage, is_data_uri, make_data_uri, parse_data_uri, to_base64
from utils.retry import DEFAULT_BASE_DELAY, DEFAULT_MAX_ATTEMPTS, with_retry

logger = logging.getLogger(__name__)

DEFAULT_TEXT_MODEL = "gemini-3-pro-preview"
DEFAULT_IMAGE_MODEL = "gemini-2.5-flash-image"
DEFAULT_TTS_MODEL = "gemini-2.5-flash-preview-tts"

FRAME_ASPECT_RATIO = "16:9"
PLATE_ASPECT_RATIOS = {
    AssetKind.CHARACTER: "3:4",
    AssetKind.ENVIRONMENT: FRAME_ASPECT_RATIO,
}

# Dialogue lines look like 'NAME: "..."' or contain quoted speech
DIALOGUE_PATTERN = re.compile(r"^\s*[A-Z][A-Z .'\-]{1,40}:|[\"“]", re.MULTILINE)

GENRE_VOICES = {
    Genre.HORROR: "Fenrir",
    Genre.ACTION: "Fenrir",
    Genre.COMEDY: "Puck",
    Genre.SCI_FI: "Charon",
}
DIALOGUE_VOICE = "Kore"
NARRATION_VOICE = "Zephyr"


def select_voice(genre: Genre, text: str) -> str:
    """Pick a prebuilt voice for a genre.

    Drama and Noir pick between a dialogue voice and a narration voice
    depending on whether the passage contains spoken lines.
    """
    voice = GENRE_VOICES.get(genre)
    if voice:
        return voice
    return DIALOGUE_VOICE if DIALOGUE_PATTERN.search(text or "") else NARRATION_VOICE


def _string_schema() -> types.Schema:
    return types.Schema(type=types.Type.STRING)


def _object_array(properties: dict[str, types.Schema]) -> types.Schema:
    return types.Schema(
        type=types.Type.ARRAY,
        items=types.Schema(type=types.Type.OBJECT, properties=properties),
    )


MANIFEST_SCHEMA = types.Schema(
    type=types.Type.OBJECT,
    properties={
        "characters": _object_array({
            "name": _string_schema(),
            "role": _string_schema(),
            "description": _string_schema(),
        }),
        "environments": _object_array({
            "name": _string_schema(),
            "mood": _string_schema(),
            "colors": types.Schema(type=types.Type.ARRAY, items=_string_schema()),
        }),
        "motifs": _object_array({
            "label": _string_schema(),
            "icon": _string_schema(),
            "description": _string_schema(),
            "frequency": _string_schema(),
        }),
    },
)

STORYBOARD_SCHEMA = types.Schema(
    type=types.Type.OBJECT,
    properties={
        "frames": _object_array({
            "title": _string_schema(),
            "prompt": _string_schema(),
            "scriptSegment": _string_schema(),
            "characterId": _string_schema(),
            "environmentId": _string_schema(),
            "shotType": _string_schema(),
            "directorsBrief": types.Schema(
                type=types.Type.OBJECT,
                properties={
                    "emotionalArc": _string_schema(),
                    "lightingScheme": _string_schema(),
                    "cameraLogic": _string_schema(),
                    "pacing": _string_schema(),
                },
            ),
        }),
    },
)


class GenerationGateway:
    """Builds provider requests for each generative task and unwraps the results."""

    def __init__(
        self,
        api_key: str,
        text_model: str = DEFAULT_TEXT_MODEL,
        image_model: str = DEFAULT_IMAGE_MODEL,
        tts_model: str = DEFAULT_TTS_MODEL,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        base_delay: float = DEFAULT_BASE_DELAY,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        """Initialize Google GenAI client.

        Args:
            api_key: Google GenAI API key
            text_model: Model for manuscript analysis and scene partitioning
            image_model: Model for frame images and asset plates
            tts_model: Model for voice performances
            max_attempts: Attempts per request when rate limited
            base_delay: First backoff delay in seconds
            http_client: Optional shared client for fetching remote reference images
        """
        self.client = Client(api_key=api_key)
        self.text_model = text_model
        self.image_model = image_model
        self.tts_model = tts_model
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.http_client = http_client

        logger.info(
            f"Initialized generation gateway (text={text_model}, "
            f"image={image_model}, tts={tts_model})"
        )

    async def _generate(self, model: str, contents, config: types.GenerateContentConfig):
        """Issue one generate_content call with rate-limit retry."""
        return await with_retry(
            lambda: self.client.aio.models.generate_content(
                model=model,
                contents=contents,
                config=config,
            ),
            max_attempts=self.max_attempts,
            base_delay=self.base_delay,
        )

    @staticmethod
    def _inline_parts(response) -> list:
        """Collect inline-data parts from the first candidate, tolerating missing fields."""
        candidates = getattr(response, "candidates", None) or []
        if not candidates:
            return []
        content = getattr(candidates[0], "content", None)
        parts = getattr(content, "parts", None) or []
        return [p for p in parts if getattr(p, "inline_data", None) is not None]

    @staticmethod
    def _image_part(image: EncodedImage) -> types.Part:
        return types.Part.from_bytes(
            data=base64.b64decode(image.data),
            mime_type=image.mime_type,
        )

    # =========================================================================
    # Manuscript analysis
    # =========================================================================

    async def analyze_manuscript(self, manuscript: str) -> ManuscriptAnalysis:
        """Extract a visual manifest (characters, environments, motifs) from a script.

        Args:
            manuscript: Full script text

        Returns:
            ManuscriptAnalysis without ids. Empty when nothing could be parsed.

        Raises:
            MaxRetriesExceededError: Rate limited on every attempt
            Exception: Any other provider failure, unchanged
        """
        if not manuscript or not manuscript.strip():
            logger.warning("Empty manuscript provided for analysis")
            return ManuscriptAnalysis()

        logger.info(f"Analyzing manuscript ({len(manuscript)} chars)")
        response = await self._generate(
            self.text_model,
            MANUSCRIPT_ANALYZER.format(manuscript=manuscript),
            types.GenerateContentConfig(
                response_mime_type="application/json",
                response_schema=MANIFEST_SCHEMA,
            ),
        )

        analysis = ManuscriptAnalysis.from_dict(parse_json_response(response.text))
        logger.info(
            f"Manifest extracted: {len(analysis.characters)} characters, "
            f"{len(analysis.environments)} environments, {len(analysis.motifs)} motifs"
        )
        return analysis

    # =========================================================================
    # Scene partitioning
    # =========================================================================

    async def partition_scene(
        self,
        script: str,
        manifest: VisualManifest,
        genre: Genre = Genre.DRAMA,
    ) -> list[FrameDraft]:
        """Split a script into ordered frame drafts with director's briefs.

        References to characters or environments that are not in the manifest
        are dropped from the drafts.
        """
        if not script or not script.strip():
            logger.warning("Empty script provided for scene partitioning")
            return []

        characters = "\n".join(
            f"- {c.id}: {c.name} ({c.role})" for c in manifest.characters
        ) or "- none"
        environments = "\n".join(
            f"- {e.id}: {e.name} ({e.mood})" for e in manifest.environments
        ) or "- none"

        prompt = SCENE_PARTITIONER.format(
            genre=genre.value,
            characters=characters,
            environments=environments,
            script=script,
        )

        logger.info(f"Partitioning script into frames (genre={genre.value})")
        response = await self._generate(
            self.text_model,
            prompt,
            types.GenerateContentConfig(
                response_mime_type="application/json",
                response_schema=STORYBOARD_SCHEMA,
            ),
        )

        raw_frames = parse_json_response(response.text).get("frames")
        if not isinstance(raw_frames, list):
            logger.warning("Storyboard response contained no frames")
            return []

        character_ids = {c.id for c in manifest.characters}
        environment_ids = {e.id for e in manifest.environments}
        drafts = []
        for index, raw in enumerate(f for f in raw_frames if isinstance(f, dict)):
            draft = FrameDraft.from_dict(raw, index)
            if draft.character_id and draft.character_id not in character_ids:
                logger.debug(f"Dropping unknown character reference {draft.character_id}")
                draft.character_id = None
            if draft.environment_id and draft.environment_id not in environment_ids:
                logger.debug(f"Dropping unknown environment reference {draft.environment_id}")
                draft.environment_id = None
            drafts.append(draft)

        logger.info(f"Scene partitioned into {len(drafts)} frames")
        return drafts

    # =========================================================================
    # Image synthesis
    # =========================================================================

    def _reference_parts(
        self, manifest: VisualManifest, references: FrameReferences
    ) -> tuple[list[types.Part], list[str]]:
        """Inline parts for manifest plates that are self-contained data URIs."""
        parts: list[types.Part] = []
        labels: list[str] = []

        entries = [
            (manifest.find_character(references.character_id), "character"),
            (manifest.find_environment(references.environment_id), "environment"),
        ]
        for entry, kind in entries:
            if entry is None or not is_data_uri(entry.image):
                continue
            data, mime_type = parse_data_uri(entry.image)
            parts.append(self._image_part(EncodedImage(data=data, mime_type=mime_type)))
            labels.append(f"{kind} {entry.name}")

        return parts, labels

    async def generate_frame_image(
        self,
        instruction: str,
        manifest: VisualManifest,
        references: Optional[FrameReferences] = None,
        base_image: Optional[str] = None,
        coord: Optional[FrameCoordinate] = None,
    ) -> Optional[str]:
        """Generate or edit a storyboard frame.

        Args:
            instruction: Free-text shot description or edit instruction
            manifest: Current manifest, used to resolve reference plates
            references: Optional character/environment/shot/emotion references
            base_image: Existing frame image (URL or data URI) to edit
            coord: Percentage coordinates for a localized edit

        Returns:
            Data URI of the generated image, or None if no image was returned
        """
        references = references or FrameReferences()
        parts, labels = self._reference_parts(manifest, references)

        base = None
        if base_image:
            base = await to_base64(base_image, client=self.http_client)
            if base.is_empty:
                logger.warning("Base image unavailable, generating without it")
                base = None

        if base is not None and coord is not None:
            text = FRAME_EDIT_LOCALIZED.format(
                style=CINEMATIC_STYLE, instruction=instruction, x=coord.x, y=coord.y
            )
        elif base is not None:
            text = FRAME_EDIT_GLOBAL.format(style=CINEMATIC_STYLE, instruction=instruction)
        else:
            text = FRAME_GENERATION.format(
                style=CINEMATIC_STYLE,
                shot=f"{references.shot_type}. " if references.shot_type else "",
                emotion=f"Emotional tone: {references.emotion}. " if references.emotion else "",
                instruction=instruction,
            )
        if labels:
            text = f"{text} {REFERENCE_NOTE.format(labels=', '.join(labels))}"

        if base is not None:
            parts.insert(0, self._image_part(base))
        parts.append(types.Part.from_text(text=text))

        logger.info(
            f"Generating frame image (edit={base is not None}, "
            f"localized={coord is not None and base is not None}, references={len(labels)})"
        )
        return await self._generate_image(parts)

    async def generate_asset_plate(
        self, name: str, description: str, kind: AssetKind
    ) -> Optional[str]:
        """Generate a character portrait plate or an environment establishing plate."""
        template = CHARACTER_PLATE if kind == AssetKind.CHARACTER else ENVIRONMENT_PLATE
        text = template.format(style=CINEMATIC_STYLE, name=name, description=description or name)

        logger.info(f"Generating {kind.value} plate for {name}")
        return await self._generate_image(
            [types.Part.from_text(text=text)], aspect_ratio=PLATE_ASPECT_RATIOS[kind]
        )

    async def _generate_image(
        self, parts: list[types.Part], aspect_ratio: str = FRAME_ASPECT_RATIO
    ) -> Optional[str]:
        response = await self._generate(
            self.image_model,
            types.Content(role="user", parts=parts),
            types.GenerateContentConfig(
                response_modalities=["IMAGE"],
                image_config=types.ImageConfig(aspect_ratio=aspect_ratio),
            ),
        )

        for part in self._inline_parts(response):
            data = part.inline_data.data
            if not data:
                continue
            mime_type = part.inline_data.mime_type or "image/png"
            if isinstance(data, bytes):
                data = base64.b64encode(data).decode("ascii")
            return make_data_uri(data, mime_type)

        logger.warning("Image response contained no image part")
        return None

    # =========================================================================
    # Voice performance
    # =========================================================================

    async def synthesize_performance(
        self, text: str, brief: str, genre: Genre = Genre.DRAMA
    ) -> Optional[str]:
        """Synthesize an emotional voice performance.

        Args:
            text: Dialogue or narration, possibly with bracketed cues
            brief: Free-text performance direction
            genre: Scene genre, selects the voice

        Returns:
            Base64 PCM16 mono audio at 24 kHz, or None on any failure
        """
        if not text or not text.strip():
            return None

        voice = select_voice(genre, text)
        prompt = PERFORMANCE_DIRECTOR.format(genre=genre.value, brief=brief, text=text)
        config = types.GenerateContentConfig(
            response_modalities=["AUDIO"],
            speech_config=types.SpeechConfig(
                voice_config=types.VoiceConfig(
                    prebuilt_voice_config=types.PrebuiltVoiceConfig(voice_name=voice),
                ),
            ),
        )

        logger.info(f"Synthesizing performance ({len(text)} chars, voice={voice})")
        try:
            response = await self._generate(self.tts_model, prompt, config)
        except Exception as e:
            logger.error(f"Audio synthesis failed: {e}")
            return None

        for part in self._inline_parts(response):
            data = part.inline_data.data
            if not data:
                continue
            if isinstance(data, bytes):
                return base64.b64encode(data).decode("ascii")
            return data

        logger.warning("Audio response contained no audio part")
        return None
