from __future__ import annotations

import math
from collections import defaultdict
from typing import Iterable

import numpy as np

from listing_pipeline.models import AggregatedEntity, Detection, TextWindow

DEFAULT_CONFIDENCE_THRESHOLD = 0.7
DEFAULT_TEXT_WINDOW_SECONDS = 5.0

# averages like (0.9 + 0.5) / 2 must still pass a 0.7 threshold
_THRESHOLD_TOLERANCE = 1e-9


def aggregate_detections(
    detections: Iterable[Detection],
    *,
    confidence_threshold: float | None = DEFAULT_CONFIDENCE_THRESHOLD,
    frame_interval_seconds: float | None = None,
) -> dict[str, AggregatedEntity]:
    """Fold per-frame detections into per-entity statistics.

    Pipeline:
    1) key each detection by its trimmed, lowercased description (empty keys dropped)
    2) optionally keep only timestamps that are exact multiples of the frame interval
    3) derive average/min/max confidence, first/last seen, time span and frequency
    4) drop entities whose average confidence is below the threshold
    """

    names: dict[str, str] = {}
    occurrences: dict[str, list[tuple[float, float]]] = defaultdict(list)

    for detection in detections:
        name = (detection.description or "").strip()
        key = name.lower()
        if not key:
            continue
        if not _on_sampled_frame(detection.timestamp, frame_interval_seconds):
            continue

        names.setdefault(key, name)
        occurrences[key].append((float(detection.timestamp), float(detection.confidence)))

    aggregated: dict[str, AggregatedEntity] = {}
    for key, entries in occurrences.items():
        entity = _summarize_entity(names[key], entries)
        if not _passes_threshold(entity.average_confidence, confidence_threshold):
            continue
        aggregated[key] = entity

    return aggregated


def aggregate_text_windows(
    detections: Iterable[Detection],
    window_seconds: float = DEFAULT_TEXT_WINDOW_SECONDS,
) -> list[TextWindow]:
    """Merge text detections that fall into the same fixed, non-overlapping time window."""

    if window_seconds <= 0:
        raise ValueError("window_seconds must be positive.")

    grouped: dict[int, list[Detection]] = defaultdict(list)
    for detection in detections:
        text = (detection.description or "").strip()
        if not text:
            continue
        window_index = int(math.floor(float(detection.timestamp) / window_seconds))
        grouped[window_index].append(Detection(description=text, confidence=detection.confidence, timestamp=detection.timestamp))

    windows: list[TextWindow] = []
    for window_index in sorted(grouped):
        members = grouped[window_index]
        timestamps = np.array([member.timestamp for member in members], dtype=np.float64)
        confidences = np.array([member.confidence for member in members], dtype=np.float64)
        earliest = float(timestamps.min())
        windows.append(
            TextWindow(
                text=" ".join(member.description for member in members),
                confidence=float(confidences.max()),
                timestamp=earliest,
                duration=float(timestamps.max()) - earliest,
                frequency=len(members),
            )
        )

    return windows


def _summarize_entity(name: str, entries: list[tuple[float, float]]) -> AggregatedEntity:
    timestamps = np.array([timestamp for timestamp, _ in entries], dtype=np.float64)
    confidences = np.array([confidence for _, confidence in entries], dtype=np.float64)

    count = len(entries)
    total_confidence = sum(confidence for _, confidence in entries)
    first_seen = float(timestamps.min())
    last_seen = float(timestamps.max())
    time_span = last_seen - first_seen

    return AggregatedEntity(
        name=name,
        count=count,
        total_confidence=total_confidence,
        occurrences=list(entries),
        first_seen=first_seen,
        last_seen=last_seen,
        average_confidence=total_confidence / count,
        max_confidence=float(confidences.max()),
        min_confidence=float(confidences.min()),
        time_span=time_span,
        frequency=count / max(time_span, 1.0),
    )


def _on_sampled_frame(timestamp: float, frame_interval_seconds: float | None) -> bool:
    if not frame_interval_seconds:
        return True
    return float(timestamp) % frame_interval_seconds == 0


def _passes_threshold(average_confidence: float, threshold: float | None) -> bool:
    if threshold is None:
        return True
    return average_confidence + _THRESHOLD_TOLERANCE >= threshold
