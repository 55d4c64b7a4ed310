"""Scene document models: manifest entries, frames, and the scene root."""

from dataclasses import dataclass, field
from enum import Enum

PENDING_CHARACTER_IMAGE = "loading://character"
PENDING_ENVIRONMENT_IMAGE = "loading://environment"
FRAME_COMPOSING_IMAGE = "https://placehold.co/1280x720/1a1a1a/ecb613?text=Composing+Shot..."
FRAME_TIMEOUT_IMAGE = "https://placehold.co/1280x720/333/fff?text=Generation+Timeout"

PENDING_IMAGES = {PENDING_CHARACTER_IMAGE, PENDING_ENVIRONMENT_IMAGE, FRAME_COMPOSING_IMAGE}

SECONDS_PER_FRAME = 5


class Genre(str, Enum):
    """Scene genre; drives voice and tone choices."""

    DRAMA = "Drama"
    COMEDY = "Comedy"
    HORROR = "Horror"
    ACTION = "Action"
    SCI_FI = "Sci-Fi"
    NOIR = "Noir"

    @classmethod
    def parse(cls, value: "str | Genre | None") -> "Genre":
        """Case-insensitive lookup; unknown values fall back to Drama."""
        if isinstance(value, Genre):
            return value
        normalized = (value or "").strip().lower().replace("_", "-")
        for genre in cls:
            if genre.value.lower() == normalized or genre.name.lower() == normalized:
                return genre
        if normalized == "scifi":
            return cls.SCI_FI
        return cls.DRAMA


def _text(data: dict, key: str, default: str = "") -> str:
    value = data.get(key)
    return str(value) if value is not None else default


def _optional_text(data: dict, key: str) -> str | None:
    value = data.get(key)
    if value is None or value == "":
        return None
    return str(value)


def format_time_range(index: int, seconds_per_frame: int = SECONDS_PER_FRAME) -> str:
    """Render the display time range for the frame at index, e.g. '00:05 - 00:10'."""

    def mmss(total: int) -> str:
        return f"{total // 60:02d}:{total % 60:02d}"

    start = index * seconds_per_frame
    return f"{mmss(start)} - {mmss(start + seconds_per_frame)}"


@dataclass
class Character:
    """A cast member with a reference portrait."""

    id: str
    name: str
    role: str = ""
    description: str = ""
    image: str = PENDING_CHARACTER_IMAGE

    @property
    def is_pending(self) -> bool:
        return self.image == PENDING_CHARACTER_IMAGE

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON snapshots."""
        return {
            "id": self.id,
            "name": self.name,
            "role": self.role,
            "description": self.description,
            "image": self.image,
        }


@dataclass
class Environment:
    """A location with a mood, palette, and establishing plate."""

    id: str
    name: str
    mood: str = ""
    colors: list[str] = field(default_factory=list)
    image: str = PENDING_ENVIRONMENT_IMAGE

    @property
    def is_pending(self) -> bool:
        return self.image == PENDING_ENVIRONMENT_IMAGE

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON snapshots."""
        return {
            "id": self.id,
            "name": self.name,
            "mood": self.mood,
            "colors": list(self.colors),
            "image": self.image,
        }


@dataclass
class Motif:
    """Recurring visual motif extracted from the manuscript. Read-only."""

    id: str
    label: str
    icon: str = ""
    description: str = ""
    frequency: str | None = None

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON snapshots."""
        return {
            "id": self.id,
            "label": self.label,
            "icon": self.icon,
            "description": self.description,
            "frequency": self.frequency,
        }


@dataclass
class DirectorsBrief:
    """Directorial metadata attached to a frame."""

    emotional_arc: str = ""
    lighting_scheme: str = ""
    camera_logic: str = ""
    pacing: str = ""

    @classmethod
    def from_dict(cls, data: dict | None) -> "DirectorsBrief | None":
        if not isinstance(data, dict):
            return None
        return cls(
            emotional_arc=_text(data, "emotionalArc"),
            lighting_scheme=_text(data, "lightingScheme"),
            camera_logic=_text(data, "cameraLogic"),
            pacing=_text(data, "pacing"),
        )

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON snapshots."""
        return {
            "emotional_arc": self.emotional_arc,
            "lighting_scheme": self.lighting_scheme,
            "camera_logic": self.camera_logic,
            "pacing": self.pacing,
        }


@dataclass
class Frame:
    """One storyboard beat: segment, image, optional audio, and brief."""

    id: str
    title: str
    time_range: str
    prompt: str
    image: str = FRAME_COMPOSING_IMAGE
    script_segment: str | None = None
    directors_brief: DirectorsBrief | None = None
    character_id: str | None = None
    environment_id: str | None = None
    shot_type: str | None = None
    is_generating: bool = False
    # Base64 PCM16 mono audio at the synthesis sample rate
    audio_data: str | None = None
    is_generating_audio: bool = False

    @property
    def has_resolved_image(self) -> bool:
        return bool(self.image) and self.image not in PENDING_IMAGES and not self.is_generating

    @property
    def is_exportable(self) -> bool:
        return self.has_resolved_image and bool(self.audio_data)

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON snapshots."""
        return {
            "id": self.id,
            "title": self.title,
            "time_range": self.time_range,
            "prompt": self.prompt,
            "image": self.image,
            "script_segment": self.script_segment,
            "directors_brief": self.directors_brief.to_dict() if self.directors_brief else None,
            "character_id": self.character_id,
            "environment_id": self.environment_id,
            "shot_type": self.shot_type,
            "is_generating": self.is_generating,
            "has_audio": self.audio_data is not None,
            "is_generating_audio": self.is_generating_audio,
        }


@dataclass
class VisualManifest:
    """Characters, environments, and motifs for a script."""

    characters: list[Character] = field(default_factory=list)
    environments: list[Environment] = field(default_factory=list)
    motifs: list[Motif] = field(default_factory=list)

    def find_character(self, character_id: str | None) -> Character | None:
        return next((c for c in self.characters if c.id == character_id), None)

    def find_environment(self, environment_id: str | None) -> Environment | None:
        return next((e for e in self.environments if e.id == environment_id), None)

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON snapshots."""
        return {
            "characters": [c.to_dict() for c in self.characters],
            "environments": [e.to_dict() for e in self.environments],
            "motifs": [m.to_dict() for m in self.motifs],
        }


@dataclass
class SentimentSample:
    """Display-only sentiment curve point."""

    time: str
    value: float
    suspense: float = 0.0

    def to_dict(self) -> dict:
        return {"time": self.time, "value": self.value, "suspense": self.suspense}


@dataclass
class SceneDocument:
    """The single mutable root of a storyboard session."""

    title: str = "Untitled Scene"
    location: str = ""
    script: str = ""
    genre: Genre = Genre.DRAMA
    manifest: VisualManifest = field(default_factory=VisualManifest)
    frames: list[Frame] = field(default_factory=list)
    sentiment_data: list[SentimentSample] = field(default_factory=list)

    def find_frame(self, frame_id: str) -> Frame | None:
        return next((f for f in self.frames if f.id == frame_id), None)

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON snapshots."""
        return {
            "title": self.title,
            "location": self.location,
            "script": self.script,
            "genre": self.genre.value,
            "manifest": self.manifest.to_dict(),
            "frames": [f.to_dict() for f in self.frames],
            "sentiment_data": [s.to_dict() for s in self.sentiment_data],
        }


# Provider-side drafts (no ids yet)


@dataclass
class CharacterDraft:
    name: str
    role: str = ""
    description: str = ""

    @classmethod
    def from_dict(cls, data: dict) -> "CharacterDraft":
        return cls(
            name=_text(data, "name", "Unnamed"),
            role=_text(data, "role"),
            description=_text(data, "description"),
        )


@dataclass
class EnvironmentDraft:
    name: str
    mood: str = ""
    colors: list[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict) -> "EnvironmentDraft":
        colors = data.get("colors")
        return cls(
            name=_text(data, "name", "Unnamed"),
            mood=_text(data, "mood"),
            colors=[str(c) for c in colors] if isinstance(colors, list) else [],
        )


@dataclass
class MotifDraft:
    label: str
    icon: str = ""
    description: str = ""
    frequency: str | None = None

    @classmethod
    def from_dict(cls, data: dict) -> "MotifDraft":
        return cls(
            label=_text(data, "label", "Motif"),
            icon=_text(data, "icon"),
            description=_text(data, "description"),
            frequency=_optional_text(data, "frequency"),
        )


@dataclass
class ManuscriptAnalysis:
    """Result of manuscript analysis before ids are assigned."""

    characters: list[CharacterDraft] = field(default_factory=list)
    environments: list[EnvironmentDraft] = field(default_factory=list)
    motifs: list[MotifDraft] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict) -> "ManuscriptAnalysis":
        def items(key: str) -> list[dict]:
            value = data.get(key)
            if not isinstance(value, list):
                return []
            return [item for item in value if isinstance(item, dict)]

        return cls(
            characters=[CharacterDraft.from_dict(c) for c in items("characters")],
            environments=[EnvironmentDraft.from_dict(e) for e in items("environments")],
            motifs=[MotifDraft.from_dict(m) for m in items("motifs")],
        )

    @property
    def is_empty(self) -> bool:
        return not (self.characters or self.environments or self.motifs)


@dataclass
class FrameDraft:
    """One frame proposed by scene partitioning."""

    title: str
    prompt: str
    script_segment: str | None = None
    character_id: str | None = None
    environment_id: str | None = None
    shot_type: str | None = None
    directors_brief: DirectorsBrief | None = None

    @classmethod
    def from_dict(cls, data: dict, index: int = 0) -> "FrameDraft":
        return cls(
            title=_text(data, "title", f"Frame {index + 1:02d}"),
            prompt=_text(data, "prompt"),
            script_segment=_optional_text(data, "scriptSegment"),
            character_id=_optional_text(data, "characterId"),
            environment_id=_optional_text(data, "environmentId"),
            shot_type=_optional_text(data, "shotType"),
            directors_brief=DirectorsBrief.from_dict(data.get("directorsBrief")),
        )
