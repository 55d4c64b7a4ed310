"""Models for generation requests, outcomes, and orchestration policies."""

from dataclasses import dataclass
from enum import Enum
from typing import Generic, Optional, TypeVar

T = TypeVar("T")


class AssetKind(str, Enum):
    """Which kind of manifest plate to generate."""

    CHARACTER = "character"
    ENVIRONMENT = "environment"


class GenerationPolicy(str, Enum):
    """How a batch of independent generation requests is scheduled."""

    SEQUENTIAL = "sequential"  # one at a time, in order (throttles bursts)
    CONCURRENT = "concurrent"  # all at once, each result lands independently


class PlateFailurePolicy(str, Enum):
    """What happens to a pending manifest entry whose plate fails."""

    REMOVE = "remove"
    KEEP_FOR_RETRY = "keep_for_retry"


class GenerationStatus(str, Enum):
    """Outcome of a single generation request."""

    GENERATED = "generated"
    EMPTY = "empty"  # call succeeded but produced no artifact
    FAILED = "failed"


@dataclass
class GenerationOutcome(Generic[T]):
    """Result of one generation request for one entity."""

    entity_id: str
    status: GenerationStatus
    payload: Optional[T] = None
    error: Optional[str] = None

    @classmethod
    def generated(cls, entity_id: str, payload: T) -> "GenerationOutcome[T]":
        return cls(entity_id=entity_id, status=GenerationStatus.GENERATED, payload=payload)

    @classmethod
    def empty(cls, entity_id: str) -> "GenerationOutcome[T]":
        return cls(entity_id=entity_id, status=GenerationStatus.EMPTY)

    @classmethod
    def failed(cls, entity_id: str, error: BaseException | str) -> "GenerationOutcome[T]":
        return cls(entity_id=entity_id, status=GenerationStatus.FAILED, error=str(error))

    @property
    def ok(self) -> bool:
        return self.status == GenerationStatus.GENERATED

    def to_dict(self) -> dict:
        """Convert to dictionary for logging and CLI output."""
        return {
            "entity_id": self.entity_id,
            "status": self.status.value,
            "has_payload": self.payload is not None,
            "error": self.error,
        }


@dataclass
class FrameReferences:
    """Structured references that bias frame image synthesis."""

    character_id: str | None = None
    environment_id: str | None = None
    shot_type: str | None = None
    emotion: str | None = None


@dataclass
class FrameCoordinate:
    """Point on a frame for a localized edit, as percentages (0-100)."""

    x: float
    y: float

    def __post_init__(self):
        self.x = min(max(float(self.x), 0.0), 100.0)
        self.y = min(max(float(self.y), 0.0), 100.0)
