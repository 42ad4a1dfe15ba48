from __future__ import annotations

import os
from pathlib import Path

import pytest

from listing_pipeline.config import load_settings


def _clear_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for key in list(os.environ):
        if key.startswith("LISTING_PIPELINE_"):
            monkeypatch.delenv(key, raising=False)


def test_missing_config_file_uses_defaults(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    _clear_env(monkeypatch)

    settings = load_settings(tmp_path / "absent.yaml")

    assert settings.queue.max_size == 10
    assert settings.queue.cooldown_seconds == pytest.approx(12.0)
    assert settings.aggregation.confidence_threshold == pytest.approx(0.7)
    assert settings.aggregation.frame_interval_seconds is None
    assert settings.video.extensions == [".mp4", ".mov", ".avi", ".mkv", ".webm"]
    assert settings.llm.provider == "gemini"


def test_yaml_values_and_env_overrides(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    _clear_env(monkeypatch)
    config_path = tmp_path / "config.yaml"
    config_path.write_text(
        "queue:\n  max_size: 3\nllm:\n  provider: ollama\n  model: llama3\n",
        encoding="utf-8",
    )
    monkeypatch.setenv("LISTING_PIPELINE_QUEUE__COOLDOWN_SECONDS", "5")
    monkeypatch.setenv("LISTING_PIPELINE_QUEUE__RETRY_FAILED_FILES", "true")
    monkeypatch.setenv("LISTING_PIPELINE_AGGREGATION__FRAME_INTERVAL_SECONDS", "1.0")
    monkeypatch.setenv("LISTING_PIPELINE_VIDEO__EXTENSIONS", '[".mp4"]')
    monkeypatch.setenv("LISTING_PIPELINE_UNKNOWN__KEY", "ignored")

    settings = load_settings(config_path)

    assert settings.queue.max_size == 3
    assert settings.queue.cooldown_seconds == pytest.approx(5.0)
    assert settings.queue.retry_failed_files is True
    assert settings.aggregation.frame_interval_seconds == pytest.approx(1.0)
    assert settings.video.extensions == [".mp4"]
    assert settings.llm.provider == "ollama"
    assert settings.llm.model == "llama3"


def test_config_path_from_environment(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    _clear_env(monkeypatch)
    config_path = tmp_path / "env.yaml"
    config_path.write_text("server:\n  port: 9090\n", encoding="utf-8")
    monkeypatch.setenv("LISTING_PIPELINE_CONFIG", str(config_path))

    assert load_settings().server.port == 9090
