"""Prompts module - centralized prompt templates for the generation gateway.

Re-exports all prompt constants and utilities for easy importing:
    from services.prompts import parse_json_response, CINEMATIC_STYLE
    from services.prompts import MANUSCRIPT_ANALYZER, SCENE_PARTITIONER
"""

from services.prompts._base import (
    extract_json_object,
    parse_json_response,
    strip_markdown_code_blocks,
)
from services.prompts.manifest import MANUSCRIPT_ANALYZER
from services.prompts.performance import PERFORMANCE_DIRECTOR
from services.prompts.storyboard import (
    CHARACTER_PLATE,
    CINEMATIC_STYLE,
    ENVIRONMENT_PLATE,
    FRAME_EDIT_GLOBAL,
    FRAME_EDIT_LOCALIZED,
    FRAME_GENERATION,
    REFERENCE_NOTE,
    SCENE_PARTITIONER,
)

__all__ = [
    # Utilities
    "strip_markdown_code_blocks",
    "extract_json_object",
    "parse_json_response",
    # Manifest prompts
    "MANUSCRIPT_ANALYZER",
    # Storyboard prompts
    "SCENE_PARTITIONER",
    "CINEMATIC_STYLE",
    "FRAME_GENERATION",
    "FRAME_EDIT_GLOBAL",
    "FRAME_EDIT_LOCALIZED",
    "REFERENCE_NOTE",
    "CHARACTER_PLATE",
    "ENVIRONMENT_PLATE",
    # Performance prompts
    "PERFORMANCE_DIRECTOR",
]
