from __future__ import annotations

import asyncio
import logging
from typing import Any, Protocol

from listing_pipeline.annotations.normalizer import FEATURE_KINDS, AnnotationKind
from listing_pipeline.config import VideoSettings
from listing_pipeline.errors import ProviderError

logger = logging.getLogger(__name__)


class AnnotationProvider(Protocol):
    def annotate(self, input_uri: str, feature: str) -> dict[str, Any] | None:
        """Return the first annotation result for one feature, or None when the provider sent none."""


class VideoIntelligenceProvider:
    """Google Video Intelligence client returning camelCase annotation-result mappings."""

    def __init__(self, settings: VideoSettings, client: Any | None = None) -> None:
        self._settings = settings
        self._client = client

    def annotate(self, input_uri: str, feature: str) -> dict[str, Any] | None:
        from google.cloud import videointelligence

        client = self._get_client(videointelligence)
        request = build_annotation_request(input_uri, feature, self._settings)
        request["features"] = [videointelligence.Feature[name] for name in request["features"]]

        logger.info("Submitting %s annotation for %s", feature, input_uri)
        try:
            operation = client.annotate_video(request=request)
            # operation_timeout_seconds is None unless configured
            response = operation.result(timeout=self._settings.operation_timeout_seconds)
        except Exception as exc:
            raise ProviderError(f"Video Intelligence {feature} request failed for {input_uri}: {exc}") from exc

        payload = type(response).to_dict(response, preserving_proto_field_name=False)
        results = payload.get("annotationResults") or []
        logger.info("%s annotation finished for %s (%d result(s))", feature, input_uri, len(results))
        return results[0] if results else None

    def _get_client(self, videointelligence: Any) -> Any:
        if self._client is None:
            self._client = videointelligence.VideoIntelligenceServiceClient()
        return self._client


def build_annotation_request(input_uri: str, feature: str, settings: VideoSettings) -> dict[str, Any]:
    request: dict[str, Any] = {"input_uri": input_uri, "features": [feature]}
    if feature == "SPEECH_TRANSCRIPTION":
        request["video_context"] = {
            "speech_transcription_config": {
                "language_code": settings.language_code,
                "enable_automatic_punctuation": settings.enable_automatic_punctuation,
            }
        }
    return request


async def annotate_video(
    provider: AnnotationProvider,
    input_uri: str,
    features: list[str],
) -> dict[AnnotationKind, dict[str, Any] | None]:
    """Submit every feature concurrently and wait for all long-running operations."""

    unknown = [feature for feature in features if feature not in FEATURE_KINDS]
    if unknown:
        raise ValueError(f"Unsupported annotation feature(s): {', '.join(unknown)}")

    # all operations settle before the first failure is raised; none outlives the job
    results = await asyncio.gather(
        *(asyncio.to_thread(provider.annotate, input_uri, feature) for feature in features),
        return_exceptions=True,
    )
    failures = [
        (feature, result) for feature, result in zip(features, results) if isinstance(result, BaseException)
    ]
    for feature, error in failures:
        logger.error("%s annotation failed for %s: %s", feature, input_uri, error)
    if failures:
        raise failures[0][1]
    return {FEATURE_KINDS[feature]: result for feature, result in zip(features, results)}
