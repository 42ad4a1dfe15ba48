from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any


@dataclass(slots=True)
class Detection:
    """One timestamped, confidence-scored observation from the annotation provider."""

    description: str
    confidence: float = 0.0
    timestamp: float = 0.0


@dataclass(slots=True)
class AggregatedEntity:
    """Statistics for every detection sharing one normalized description."""

    name: str
    count: int
    total_confidence: float
    occurrences: list[tuple[float, float]]
    first_seen: float
    last_seen: float
    average_confidence: float
    max_confidence: float
    min_confidence: float
    time_span: float
    frequency: float

    def to_payload(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "count": self.count,
            "averageConfidence": round(self.average_confidence, 4),
            "maxConfidence": round(self.max_confidence, 4),
            "minConfidence": round(self.min_confidence, 4),
            "firstSeen": self.first_seen,
            "lastSeen": self.last_seen,
            "timeSpan": round(self.time_span, 3),
            "frequency": round(self.frequency, 4),
        }


@dataclass(slots=True)
class TextWindow:
    """On-screen text merged over one fixed-width time window."""

    text: str
    confidence: float
    timestamp: float
    duration: float
    frequency: int

    def to_payload(self) -> dict[str, Any]:
        return {
            "text": self.text,
            "confidence": round(self.confidence, 4),
            "timestamp": self.timestamp,
            "duration": round(self.duration, 3),
            "frequency": self.frequency,
        }


@dataclass(slots=True)
class AnnotationBundle:
    """Normalized provider output for one video, one sequence per annotation kind."""

    transcription: str
    transcript: list[Detection] = field(default_factory=list)
    objects: list[Detection] = field(default_factory=list)
    labels: list[Detection] = field(default_factory=list)
    text: list[Detection] = field(default_factory=list)


@dataclass(slots=True)
class JobOutcome:
    """Terminal HTTP-shaped answer for one delivery."""

    status_code: int
    payload: dict[str, Any]


@dataclass(slots=True)
class QueueJob:
    """A video waiting for (or undergoing) serialized processing."""

    bucket: str
    file_name: str
    delivery_id: str | None = None
    drive_file_id: str | None = None
    outcome: asyncio.Future[JobOutcome] | None = None
