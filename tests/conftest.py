"""Shared pytest fixtures for Storyboard Studio tests."""

import base64
import sys
import tempfile
from pathlib import Path
from typing import Dict, Generator
from unittest.mock import AsyncMock, Mock

import pytest

# Add src directory to path for imports
src_path = Path(__file__).parent.parent / "src"
if str(src_path) not in sys.path:
    sys.path.insert(0, str(src_path))

PNG_DATA_URI = "data:image/png;base64," + base64.b64encode(
    b"\x89PNG\r\n\x1a\n" + b"\x00" * 16
).decode("ascii")


def pcm_base64(sample_count: int) -> str:
    """Base64 of silent PCM16 mono audio with the given sample count."""
    return base64.b64encode(b"\x00\x00" * sample_count).decode("ascii")


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for test files."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def sample_config(temp_dir) -> Dict:
    """Sample configuration for testing."""
    return {
        "gemini_api_key": "test_gemini_key",
        "text_model": "gemini-3-pro-preview",
        "image_model": "gemini-2.5-flash-image",
        "tts_model": "gemini-2.5-flash-preview-tts",
        "max_retry_attempts": 5,
        "retry_base_delay": 1.0,
        "ffmpeg_binary": "ffmpeg",
        "output_folder": str(temp_dir / "output"),
        "export_width": 1280,
        "export_height": 720,
        "audio_sample_rate": 24000,
        "frame_generation_policy": "sequential",
        "plate_generation_policy": "concurrent",
        "plate_failure_policy": "remove",
        "log_level": "INFO",
    }


@pytest.fixture
def sample_script() -> str:
    """Short two-beat script used across tests."""
    return (
        "INT. RAIN-SOAKED ALLEY - NIGHT\n"
        "Detective Vale steps out of the shadows.\n"
        "VALE: \"You're late.\"\n"
        "A match flares. Mara lights her cigarette and smiles."
    )


@pytest.fixture
def mock_gateway():
    """Mock GenerationGateway with async operations."""
    mock = Mock()
    mock.analyze_manuscript = AsyncMock()
    mock.partition_scene = AsyncMock(return_value=[])
    mock.generate_frame_image = AsyncMock(return_value=PNG_DATA_URI)
    mock.generate_asset_plate = AsyncMock(return_value=PNG_DATA_URI)
    mock.synthesize_performance = AsyncMock(return_value=pcm_base64(24000))
    return mock
