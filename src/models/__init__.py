# Data models for Storyboard Studio
from .scene import (
    Character,
    CharacterDraft,
    DirectorsBrief,
    Environment,
    EnvironmentDraft,
    Frame,
    FrameDraft,
    Genre,
    ManuscriptAnalysis,
    Motif,
    MotifDraft,
    SceneDocument,
    SentimentSample,
    VisualManifest,
)
from .generation import (
    AssetKind,
    FrameCoordinate,
    FrameReferences,
    GenerationOutcome,
    GenerationPolicy,
    GenerationStatus,
    PlateFailurePolicy,
)

__all__ = [
    # Scene document
    "Genre",
    "Character",
    "Environment",
    "Motif",
    "DirectorsBrief",
    "Frame",
    "VisualManifest",
    "SentimentSample",
    "SceneDocument",
    # Provider drafts
    "CharacterDraft",
    "EnvironmentDraft",
    "MotifDraft",
    "ManuscriptAnalysis",
    "FrameDraft",
    # Generation
    "AssetKind",
    "GenerationPolicy",
    "PlateFailurePolicy",
    "GenerationStatus",
    "GenerationOutcome",
    "FrameReferences",
    "FrameCoordinate",
]
