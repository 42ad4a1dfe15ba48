from __future__ import annotations

import asyncio
import logging
from dataclasses import asdict, dataclass, field
from time import perf_counter
from typing import Any, Callable

from listing_pipeline.annotations.normalizer import build_annotation_bundle
from listing_pipeline.annotations.provider import AnnotationProvider, annotate_video
from listing_pipeline.config import AggregationSettings, LLMSettings, Settings
from listing_pipeline.generate.listing_llm import generate_listing
from listing_pipeline.models import AnnotationBundle, QueueJob
from listing_pipeline.queueing.processing_queue import JobProcessor
from listing_pipeline.storage.record_store import RecordStore
from listing_pipeline.summarize.aggregator import aggregate_detections, aggregate_text_windows
from listing_pipeline.summarize.categorizer import categorize_entities, categorize_text
from listing_pipeline.summarize.summary_builder import build_listing_summary, render_prompt
from listing_pipeline.summarize.taxonomy import LABEL_TAXONOMY, OBJECT_TAXONOMY

logger = logging.getLogger(__name__)

ListingGenerator = Callable[[str, LLMSettings], dict[str, Any]]


@dataclass(slots=True)
class PipelineContext:
    settings: Settings
    provider: AnnotationProvider
    store: RecordStore
    generate: ListingGenerator = field(default=generate_listing)


async def process_video(job: QueueJob, context: PipelineContext) -> dict[str, Any]:
    """Annotate one stored video, persist its raw and processed records, and return the listing.

    Stages:
    1) request every configured annotation feature concurrently
    2) normalize results and persist the raw annotations
    3) aggregate, categorize and summarize detections into a prompt
    4) generate the property listing and persist it
    """

    settings = context.settings
    input_uri = f"gs://{job.bucket}/{job.file_name}"
    started_at = perf_counter()
    logger.info("Processing video: %s (%s)", job.file_name, input_uri)

    results = await annotate_video(context.provider, input_uri, settings.video.features)
    bundle = build_annotation_bundle(results)
    log_analysis_summary(job.file_name, bundle)

    raw_id = await asyncio.to_thread(
        context.store.store_raw,
        job.file_name,
        {
            "transcription": bundle.transcription,
            "transcriptSegments": [asdict(detection) for detection in bundle.transcript],
            "objects": [asdict(detection) for detection in bundle.objects],
            "labels": [asdict(detection) for detection in bundle.labels],
            "text": [asdict(detection) for detection in bundle.text],
            "driveFileId": job.drive_file_id,
        },
    )

    summary = summarize_bundle(bundle, settings.aggregation)
    prompt = render_prompt(summary)
    logger.info("Requesting listing from %s (%s)", settings.llm.provider, settings.llm.model)
    property_details = await asyncio.to_thread(context.generate, prompt, settings.llm)

    processed_id = await asyncio.to_thread(
        context.store.store_processed,
        job.file_name,
        raw_id,
        {
            "driveFileId": job.drive_file_id,
            "propertyDetails": property_details,
            "metadata": {"sourceUri": input_uri, "counts": summary["counts"]},
        },
    )

    logger.info("Finished %s in %.1fs", job.file_name, perf_counter() - started_at)
    return {
        "success": True,
        "fileName": job.file_name,
        "transcription": bundle.transcription,
        "propertyDetails": property_details,
        "summary": summary["counts"],
        "rawId": raw_id,
        "processedId": processed_id,
    }


def build_job_processor(context: PipelineContext) -> JobProcessor:
    async def processor(job: QueueJob) -> dict[str, Any]:
        return await process_video(job, context)

    return processor


def summarize_bundle(bundle: AnnotationBundle, settings: AggregationSettings) -> dict[str, Any]:
    """Aggregate and categorize a normalized bundle into the prompt summary."""

    labels = aggregate_detections(
        bundle.labels,
        confidence_threshold=settings.confidence_threshold,
        frame_interval_seconds=settings.frame_interval_seconds,
    )
    objects = aggregate_detections(
        bundle.objects,
        confidence_threshold=settings.confidence_threshold,
        frame_interval_seconds=settings.frame_interval_seconds,
    )
    text_windows = aggregate_text_windows(bundle.text, settings.text_window_seconds)

    return build_listing_summary(
        transcription=bundle.transcription,
        labels=categorize_entities(labels, LABEL_TAXONOMY),
        objects=categorize_entities(objects, OBJECT_TAXONOMY),
        text=categorize_text(text_windows),
        max_entities_per_bucket=settings.max_entities_per_bucket,
    )


def log_analysis_summary(file_name: str, bundle: AnnotationBundle) -> None:
    logger.info(
        "Analysis summary for %s: transcription=%d chars, objects=%d, labels=%d, text=%d",
        file_name,
        len(bundle.transcription),
        len(bundle.objects),
        len(bundle.labels),
        len(bundle.text),
    )
