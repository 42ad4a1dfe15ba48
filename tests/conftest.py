from __future__ import annotations

from typing import Any

import pytest

WALKTHROUGH_RESULTS: dict[str, dict[str, Any]] = {
    "SPEECH_TRANSCRIPTION": {
        "speechTranscriptions": [{"alternatives": [{"transcript": "Welcome to the kitchen", "confidence": 0.93}]}]
    },
    "LABEL_DETECTION": {
        "segmentLabelAnnotations": [
            {
                "entity": {"description": "kitchen"},
                "segments": [{"confidence": 0.95, "segment": {"startTimeOffset": "2s"}}],
            }
        ]
    },
    "OBJECT_TRACKING": {},
    "TEXT_DETECTION": {},
}


class FakeCollection:
    """In-memory stand-in for a pymongo collection."""

    def __init__(self) -> None:
        self.documents: dict[str, dict[str, Any]] = {}

    def update_one(self, selector: dict[str, Any], update: dict[str, Any], upsert: bool = False) -> None:
        document = self.documents.get(selector["_id"])
        if document is None:
            if not upsert:
                return
            document = {"_id": selector["_id"]}
            self.documents[selector["_id"]] = document
        document.update(update["$set"])

    def find_one(self, selector: dict[str, Any]) -> dict[str, Any] | None:
        return self.documents.get(selector["_id"])


class FakeAnnotationProvider:
    def __init__(self, results: dict[str, dict[str, Any] | None]) -> None:
        self.results = results
        self.calls: list[tuple[str, str]] = []

    def annotate(self, input_uri: str, feature: str) -> dict[str, Any] | None:
        self.calls.append((input_uri, feature))
        return self.results.get(feature)


@pytest.fixture
def fake_collection() -> FakeCollection:
    return FakeCollection()


@pytest.fixture
def walkthrough_provider() -> FakeAnnotationProvider:
    return FakeAnnotationProvider(dict(WALKTHROUGH_RESULTS))
