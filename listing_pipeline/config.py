from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import BaseModel, Field

DEFAULT_CONFIG_PATH = Path("configs/default.yaml")
ENV_PREFIX = "LISTING_PIPELINE_"


class ServerSettings(BaseModel):
    host: str = "0.0.0.0"
    port: int = 8080


class QueueSettings(BaseModel):
    max_size: int = 10
    cooldown_seconds: float = 12.0
    dedup_capacity: int = 10_000
    dedup_ttl_seconds: float | None = None
    retry_failed_files: bool = False


class VideoSettings(BaseModel):
    extensions: list[str] = Field(default_factory=lambda: [".mp4", ".mov", ".avi", ".mkv", ".webm"])
    features: list[str] = Field(
        default_factory=lambda: ["SPEECH_TRANSCRIPTION", "OBJECT_TRACKING", "LABEL_DETECTION", "TEXT_DETECTION"]
    )
    language_code: str = "en-US"
    enable_automatic_punctuation: bool = True
    operation_timeout_seconds: float | None = None


class AggregationSettings(BaseModel):
    confidence_threshold: float | None = 0.7
    frame_interval_seconds: float | None = None
    text_window_seconds: float = 5.0
    max_entities_per_bucket: int = 25


class LLMSettings(BaseModel):
    provider: Literal["gemini", "ollama"] = "gemini"
    model: str = "gemini-1.5-pro"
    endpoint: str = "http://localhost:11434"
    api_key_env: str = "GEMINI_API_KEY"
    timeout_seconds: int = 60
    max_retries: int = 2


class StorageSettings(BaseModel):
    mongo_uri: str = "mongodb://localhost:27017"
    database: str = "listing_pipeline"
    collection: str = "videoAnalysis"
    server_selection_timeout_ms: int = 3000


class LoggingSettings(BaseModel):
    level: str = "INFO"


class Settings(BaseModel):
    server: ServerSettings = Field(default_factory=ServerSettings)
    queue: QueueSettings = Field(default_factory=QueueSettings)
    video: VideoSettings = Field(default_factory=VideoSettings)
    aggregation: AggregationSettings = Field(default_factory=AggregationSettings)
    llm: LLMSettings = Field(default_factory=LLMSettings)
    storage: StorageSettings = Field(default_factory=StorageSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)


def load_settings(config_path: str | Path | None = None) -> Settings:
    """Load typed settings from YAML with environment-variable overrides.

    A missing YAML file is not an error; defaults apply and environment
    overrides are still honoured.
    """

    resolved_path = Path(
        config_path
        or os.getenv(f"{ENV_PREFIX}CONFIG")
        or DEFAULT_CONFIG_PATH
    )
    raw_config: dict[str, Any] = {}
    if resolved_path.exists():
        raw_config = yaml.safe_load(resolved_path.read_text(encoding="utf-8")) or {}
    data = Settings.model_validate(raw_config).model_dump(mode="python")

    for key, raw_value in os.environ.items():
        if not key.startswith(ENV_PREFIX):
            continue

        suffix = key[len(ENV_PREFIX) :]
        if suffix == "CONFIG":
            continue

        path = [part.lower() for part in suffix.split("__")]
        _apply_override(data, path, raw_value)

    return Settings.model_validate(data)


def _apply_override(data: dict[str, Any], path: list[str], raw_value: str) -> None:
    current: Any = data
    for segment in path[:-1]:
        if not isinstance(current, dict) or segment not in current:
            return
        current = current[segment]

    if not isinstance(current, dict):
        return

    final_key = path[-1]
    if final_key not in current:
        return

    current[final_key] = _coerce_value(raw_value, current[final_key])


def _coerce_value(raw_value: str, existing_value: Any) -> Any:
    if existing_value is None:
        return None if raw_value.strip().lower() in {"", "none", "null"} else raw_value
    if isinstance(existing_value, bool):
        return raw_value.lower() in {"1", "true", "yes", "on"}
    if isinstance(existing_value, int) and not isinstance(existing_value, bool):
        return int(raw_value)
    if isinstance(existing_value, float):
        return float(raw_value)
    if isinstance(existing_value, list | dict):
        return json.loads(raw_value)
    if isinstance(existing_value, Path):
        return Path(raw_value)
    return raw_value
