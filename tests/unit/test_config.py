"""Unit tests for configuration loading and validation."""

from unittest.mock import patch

import pytest

from utils.config import PROJECT_ROOT, load_config, validate_config


@pytest.mark.unit
def test_defaults(monkeypatch):
    for key in (
        "GEMINI_TEXT_MODEL",
        "MAX_RETRY_ATTEMPTS",
        "OUTPUT_FOLDER",
        "FRAME_GENERATION_POLICY",
        "PLATE_GENERATION_POLICY",
        "PLATE_FAILURE_POLICY",
        "AUDIO_SAMPLE_RATE",
    ):
        monkeypatch.delenv(key, raising=False)

    config = load_config()

    assert config["text_model"] == "gemini-3-pro-preview"
    assert config["max_retry_attempts"] == 5
    assert config["audio_sample_rate"] == 24000
    assert config["output_folder"] == str(PROJECT_ROOT / "output")
    assert config["frame_generation_policy"] == "sequential"
    assert config["plate_generation_policy"] == "concurrent"
    assert config["plate_failure_policy"] == "remove"


@pytest.mark.unit
def test_environment_overrides(monkeypatch, temp_dir):
    monkeypatch.setenv("GEMINI_API_KEY", "abc")
    monkeypatch.setenv("MAX_RETRY_ATTEMPTS", "3")
    monkeypatch.setenv("RETRY_BASE_DELAY", "0.5")
    monkeypatch.setenv("OUTPUT_FOLDER", str(temp_dir))
    monkeypatch.setenv("FRAME_GENERATION_POLICY", "CONCURRENT")

    config = load_config()

    assert config["gemini_api_key"] == "abc"
    assert config["max_retry_attempts"] == 3
    assert config["retry_base_delay"] == 0.5
    assert config["output_folder"] == str(temp_dir)
    assert config["frame_generation_policy"] == "concurrent"


@pytest.mark.unit
def test_relative_output_folder_resolves_to_project_root(monkeypatch):
    monkeypatch.setenv("OUTPUT_FOLDER", "exports")

    assert load_config()["output_folder"] == str(PROJECT_ROOT / "exports")


@pytest.mark.unit
def test_valid_config_has_no_errors(sample_config):
    assert validate_config(sample_config) == []


@pytest.mark.unit
def test_missing_api_key(sample_config):
    sample_config["gemini_api_key"] = None

    assert "GEMINI_API_KEY is required" in validate_config(sample_config)


@pytest.mark.unit
def test_bad_policies_and_numbers(sample_config):
    sample_config["frame_generation_policy"] = "parallel"
    sample_config["plate_failure_policy"] = "ignore"
    sample_config["max_retry_attempts"] = 0
    sample_config["export_width"] = -1

    errors = validate_config(sample_config)

    assert any("frame_generation_policy" in e for e in errors)
    assert any("plate_failure_policy" in e for e in errors)
    assert any("max_retry_attempts" in e for e in errors)
    assert any("export_width" in e for e in errors)


@pytest.mark.unit
def test_uncreatable_output_folder(sample_config):
    with patch("utils.config.Path.mkdir", side_effect=PermissionError("read-only")):
        errors = validate_config(sample_config)

    assert any("Cannot create output folder" in e for e in errors)
