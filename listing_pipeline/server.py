from __future__ import annotations

import json
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from listing_pipeline.annotations.provider import AnnotationProvider, VideoIntelligenceProvider
from listing_pipeline.config import Settings
from listing_pipeline.ingest.handler import IngressHandler
from listing_pipeline.pipeline import PipelineContext, build_job_processor
from listing_pipeline.queueing.dedup import MembershipCache
from listing_pipeline.queueing.processing_queue import JobProcessor, ProcessingQueue
from listing_pipeline.storage.record_store import RecordStore

logger = logging.getLogger(__name__)


def build_processing_queue(settings: Settings, processor: JobProcessor) -> ProcessingQueue:
    queue_settings = settings.queue

    def membership_cache() -> MembershipCache:
        return MembershipCache(
            capacity=queue_settings.dedup_capacity,
            ttl_seconds=queue_settings.dedup_ttl_seconds,
        )

    return ProcessingQueue(
        processor,
        max_size=queue_settings.max_size,
        cooldown_seconds=queue_settings.cooldown_seconds,
        video_extensions=settings.video.extensions,
        retry_failed_files=queue_settings.retry_failed_files,
        processed_files=membership_cache(),
        failed_files=membership_cache(),
        seen_delivery_ids=membership_cache(),
    )


def create_app(
    settings: Settings,
    *,
    provider: AnnotationProvider | None = None,
    store: RecordStore | None = None,
    queue: ProcessingQueue | None = None,
) -> FastAPI:
    """Build the HTTP service: ``POST /`` for deliveries and ``GET /health``."""

    if queue is None:
        context = PipelineContext(
            settings=settings,
            provider=provider or VideoIntelligenceProvider(settings.video),
            store=store or RecordStore(settings.storage),
        )
        queue = build_processing_queue(settings, build_job_processor(context))
    handler = IngressHandler(queue)

    @asynccontextmanager
    async def lifespan(_: FastAPI) -> AsyncIterator[None]:
        logger.info(
            "Listing pipeline ready (queue capacity %d, cooldown %.1fs)",
            settings.queue.max_size,
            settings.queue.cooldown_seconds,
        )
        yield
        await queue.close()
        logger.info("Listing pipeline stopped")

    app = FastAPI(title="listing-pipeline", lifespan=lifespan)
    app.state.queue = queue

    @app.post("/")
    async def receive_delivery(request: Request) -> JSONResponse:
        logger.info("Received POST request")
        try:
            body: Any = await request.json()
        except (json.JSONDecodeError, UnicodeDecodeError) as exc:
            logger.warning("Rejecting request with invalid JSON body: %s", exc)
            return JSONResponse(status_code=400, content={"error": "Invalid JSON body", "details": str(exc)})

        response = await handler.handle(body)
        return JSONResponse(status_code=response.status_code, content=response.payload)

    @app.get("/health")
    async def health() -> dict[str, Any]:
        return queue.health()

    return app
