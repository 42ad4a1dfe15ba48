from __future__ import annotations

from typing import Any, Literal, Mapping

from listing_pipeline.errors import TranscriptUnavailableError
from listing_pipeline.models import AnnotationBundle, Detection

AnnotationKind = Literal["transcript", "objects", "labels", "text"]

TRANSCRIPT_SEPARATOR = " "

# provider feature name -> annotation kind it fills
FEATURE_KINDS: dict[str, AnnotationKind] = {
    "SPEECH_TRANSCRIPTION": "transcript",
    "OBJECT_TRACKING": "objects",
    "LABEL_DETECTION": "labels",
    "TEXT_DETECTION": "text",
}


def normalize_annotations(result: Mapping[str, Any] | None, kind: AnnotationKind) -> list[Detection]:
    """Convert one raw annotation result into uniform detections for the given kind."""

    if kind == "transcript":
        if result is None:
            raise TranscriptUnavailableError()
        return _transcript_detections(result)
    if result is None:
        return []
    if kind == "objects":
        return _object_detections(result)
    if kind == "labels":
        return _label_detections(result)
    if kind == "text":
        return _text_detections(result)
    raise ValueError(f"Unsupported annotation kind '{kind}'.")


def extract_transcription(result: Mapping[str, Any] | None) -> str:
    """Join the top alternative of every transcription segment into one string.

    A missing result is a hard failure; a result without speech yields "".
    """

    if result is None:
        raise TranscriptUnavailableError()
    return TRANSCRIPT_SEPARATOR.join(
        detection.description for detection in _transcript_detections(result)
    )


def build_annotation_bundle(results: Mapping[AnnotationKind, Mapping[str, Any] | None]) -> AnnotationBundle:
    """Normalize every requested kind; the transcript result is mandatory."""

    transcript_result = results.get("transcript")
    return AnnotationBundle(
        transcription=extract_transcription(transcript_result),
        transcript=normalize_annotations(transcript_result, "transcript"),
        objects=normalize_annotations(results.get("objects"), "objects"),
        labels=normalize_annotations(results.get("labels"), "labels"),
        text=normalize_annotations(results.get("text"), "text"),
    )


def parse_time_offset(raw_value: Any) -> float:
    """Read a provider time offset given as "2.5s", {seconds, nanos}, a timedelta or a number."""

    if raw_value is None or raw_value == "":
        return 0.0
    if isinstance(raw_value, bool):
        return 0.0
    if isinstance(raw_value, int | float):
        return float(raw_value)
    if isinstance(raw_value, str):
        text = raw_value.strip()
        if text.endswith("s"):
            text = text[:-1]
        try:
            return float(text)
        except ValueError:
            return 0.0
    if isinstance(raw_value, Mapping):
        seconds = _to_float(raw_value.get("seconds"))
        nanos = _to_float(raw_value.get("nanos"))
        return seconds + nanos / 1e9
    total_seconds = getattr(raw_value, "total_seconds", None)
    if callable(total_seconds):
        return float(total_seconds())
    return 0.0


def _transcript_detections(result: Mapping[str, Any]) -> list[Detection]:
    detections: list[Detection] = []
    for transcription in result.get("speechTranscriptions") or []:
        alternatives = transcription.get("alternatives") or []
        if not alternatives:
            continue
        best = alternatives[0]
        words = best.get("words") or []
        timestamp = parse_time_offset(words[0].get("startTime")) if words else 0.0
        detections.append(
            Detection(
                description=str(best.get("transcript") or ""),
                confidence=_to_float(best.get("confidence")),
                timestamp=timestamp,
            )
        )
    return detections


def _object_detections(result: Mapping[str, Any]) -> list[Detection]:
    detections: list[Detection] = []
    for track in result.get("objectAnnotations") or []:
        description = _entity_description(track)
        confidence = _to_float(track.get("confidence"))
        frames = track.get("frames") or []
        if not frames:
            detections.append(Detection(description=description, confidence=confidence, timestamp=0.0))
            continue
        for frame in frames:
            detections.append(
                Detection(
                    description=description,
                    confidence=confidence,
                    timestamp=parse_time_offset(frame.get("timeOffset")),
                )
            )
    return detections


def _label_detections(result: Mapping[str, Any]) -> list[Detection]:
    detections: list[Detection] = []
    for label in result.get("segmentLabelAnnotations") or []:
        description = _entity_description(label)
        segments = label.get("segments") or []
        if not segments:
            detections.append(Detection(description=description))
            continue
        for segment in segments:
            detections.append(
                Detection(
                    description=description,
                    confidence=_to_float(segment.get("confidence")),
                    timestamp=parse_time_offset((segment.get("segment") or {}).get("startTimeOffset")),
                )
            )
    return detections


def _text_detections(result: Mapping[str, Any]) -> list[Detection]:
    detections: list[Detection] = []
    for annotation in result.get("textAnnotations") or []:
        text = str(annotation.get("text") or "")
        segments = annotation.get("segments") or []
        if not segments:
            detections.append(Detection(description=text))
            continue
        for segment in segments:
            detections.append(
                Detection(
                    description=text,
                    confidence=_to_float(segment.get("confidence")),
                    timestamp=parse_time_offset((segment.get("segment") or {}).get("startTimeOffset")),
                )
            )
    return detections


def _entity_description(annotation: Mapping[str, Any]) -> str:
    entity = annotation.get("entity") or {}
    return str(entity.get("description") or "")


def _to_float(raw_value: Any) -> float:
    if raw_value in (None, ""):
        return 0.0
    try:
        return float(raw_value)
    except (TypeError, ValueError):
        return 0.0
