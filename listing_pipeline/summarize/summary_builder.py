from __future__ import annotations

import json
from pathlib import Path
from typing import Any

from listing_pipeline.models import AggregatedEntity, TextWindow

PROMPT_TEMPLATE_PATH = Path(__file__).resolve().parent.parent / "prompts" / "listing_prompt.txt"
DEFAULT_MAX_ENTITIES_PER_BUCKET = 25


def build_listing_summary(
    *,
    transcription: str,
    labels: dict[str, list[AggregatedEntity]],
    objects: dict[str, list[AggregatedEntity]],
    text: dict[str, list[TextWindow]],
    max_entities_per_bucket: int = DEFAULT_MAX_ENTITIES_PER_BUCKET,
) -> dict[str, Any]:
    """Assemble the compact, categorized summary handed to the generative model."""

    return {
        "transcription": transcription,
        "labels": {bucket: _entity_rows(entities, max_entities_per_bucket) for bucket, entities in labels.items()},
        "objects": {bucket: _entity_rows(entities, max_entities_per_bucket) for bucket, entities in objects.items()},
        "text": {bucket: _text_rows(records, max_entities_per_bucket) for bucket, records in text.items()},
        "counts": {
            "transcriptionCharacters": len(transcription),
            "labels": sum(len(entities) for entities in labels.values()),
            "objects": sum(len(entities) for entities in objects.values()),
            "textWindows": sum(len(records) for records in text.values()),
        },
    }


def render_prompt(summary: dict[str, Any], template_path: Path = PROMPT_TEMPLATE_PATH) -> str:
    template = template_path.read_text(encoding="utf-8").strip()
    summary_json = json.dumps(summary, ensure_ascii=False, indent=2)
    return f"{template}\n\nVideo summary JSON:\n{summary_json}\n"


def _entity_rows(entities: list[AggregatedEntity], limit: int) -> list[dict[str, Any]]:
    ranked = sorted(entities, key=lambda entity: (-entity.average_confidence, entity.name.lower()))
    return [entity.to_payload() for entity in ranked[: max(limit, 0)]]


def _text_rows(records: list[TextWindow], limit: int) -> list[dict[str, Any]]:
    # on-screen text keeps timeline order
    ordered = sorted(records, key=lambda record: record.timestamp)
    return [record.to_payload() for record in ordered[: max(limit, 0)]]
