"""Configuration loading and validation for Storyboard Studio."""

import os
from pathlib import Path

from dotenv import load_dotenv

from models.generation import GenerationPolicy, PlateFailurePolicy

# Get the project root directory (parent of src)
PROJECT_ROOT = Path(__file__).parent.parent.parent

# Load environment variables from .env file in project root
load_dotenv(PROJECT_ROOT / ".env")

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


def load_config() -> dict:
    """Load configuration from environment variables."""

    # Helper function to resolve paths relative to project root
    def resolve_path(path: str | None, default_relative: str) -> str:
        if not path:
            return str(PROJECT_ROOT / default_relative)
        if Path(path).is_absolute():
            return path
        return str(PROJECT_ROOT / path)

    config = {
        # Required API key
        "gemini_api_key": os.getenv("GEMINI_API_KEY"),
        # Model configurations
        "text_model": os.getenv("GEMINI_TEXT_MODEL", "gemini-3-pro-preview"),
        "image_model": os.getenv("GEMINI_IMAGE_MODEL", "gemini-2.5-flash-image"),
        "tts_model": os.getenv("GEMINI_TTS_MODEL", "gemini-2.5-flash-preview-tts"),
        # Rate-limit retries
        "max_retry_attempts": int(os.getenv("MAX_RETRY_ATTEMPTS", "5")),
        "retry_base_delay": float(os.getenv("RETRY_BASE_DELAY", "1.0")),
        # Export settings
        "ffmpeg_binary": os.getenv("FFMPEG_BINARY", "ffmpeg"),
        "output_folder": resolve_path(os.getenv("OUTPUT_FOLDER"), "output"),
        "export_width": int(os.getenv("EXPORT_WIDTH", "1280")),
        "export_height": int(os.getenv("EXPORT_HEIGHT", "720")),
        "audio_sample_rate": int(os.getenv("AUDIO_SAMPLE_RATE", "24000")),
        # Generation policies
        "frame_generation_policy": os.getenv("FRAME_GENERATION_POLICY", "sequential").lower(),
        "plate_generation_policy": os.getenv("PLATE_GENERATION_POLICY", "concurrent").lower(),
        "plate_failure_policy": os.getenv("PLATE_FAILURE_POLICY", "remove").lower(),
        # Logging
        "log_level": os.getenv("LOG_LEVEL", "INFO").upper(),
    }

    return config


def validate_config(config: dict) -> list[str]:
    """Validate configuration and return list of errors."""
    errors = []

    # Check required API key
    if not config.get("gemini_api_key"):
        errors.append("GEMINI_API_KEY is required")

    for key in ("text_model", "image_model", "tts_model"):
        if not config.get(key):
            errors.append(f"{key} must not be empty")

    # Numeric settings must be positive
    for key in ("max_retry_attempts", "export_width", "export_height", "audio_sample_rate"):
        value = config.get(key)
        if not isinstance(value, int) or value < 1:
            errors.append(f"{key} must be a positive integer (got {value!r})")

    base_delay = config.get("retry_base_delay")
    if not isinstance(base_delay, (int, float)) or base_delay < 0:
        errors.append(f"retry_base_delay must be zero or more (got {base_delay!r})")

    # Policies
    policy_choices = [p.value for p in GenerationPolicy]
    for key in ("frame_generation_policy", "plate_generation_policy"):
        if config.get(key) not in policy_choices:
            errors.append(f"{key} must be one of {policy_choices} (got {config.get(key)!r})")

    failure_choices = [p.value for p in PlateFailurePolicy]
    if config.get("plate_failure_policy") not in failure_choices:
        errors.append(
            f"plate_failure_policy must be one of {failure_choices} "
            f"(got {config.get('plate_failure_policy')!r})"
        )

    if config.get("log_level") not in LOG_LEVELS:
        errors.append(f"log_level must be one of {list(LOG_LEVELS)}")

    if not config.get("ffmpeg_binary"):
        errors.append("FFMPEG_BINARY must not be empty")

    # Validate local output path exists
    if config.get("output_folder"):
        output_path = Path(config["output_folder"])
        try:
            output_path.mkdir(parents=True, exist_ok=True)
        except Exception as e:
            errors.append(f"Cannot create output folder: {e}")
    else:
        errors.append("OUTPUT_FOLDER is required")

    return errors
