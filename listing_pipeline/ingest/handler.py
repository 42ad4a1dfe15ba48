from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any

from listing_pipeline.errors import MalformedInputError
from listing_pipeline.ingest.envelope import Delivery, decode_delivery
from listing_pipeline.queueing.processing_queue import AdmissionOutcome, ProcessingQueue

logger = logging.getLogger(__name__)

# acknowledged with 200; queue_full answers 429 instead
SHORT_CIRCUIT_MESSAGES: dict[AdmissionOutcome, str] = {
    AdmissionOutcome.DUPLICATE_DELIVERY: "Message already processed",
    AdmissionOutcome.ALREADY_PROCESSED: "File already processed successfully",
    AdmissionOutcome.ALREADY_FAILED: "File has already failed processing",
    AdmissionOutcome.NOT_A_VIDEO: "File is not a video, skipping processing",
    AdmissionOutcome.ALREADY_QUEUED: "File is already in the processing queue",
}


@dataclass(slots=True)
class IngressResponse:
    status_code: int
    payload: dict[str, Any]


class IngressHandler:
    """Turns deliveries into queue admissions and waits for admitted jobs to finish."""

    def __init__(self, queue: ProcessingQueue) -> None:
        self._queue = queue

    async def handle(self, body: Any) -> IngressResponse:
        try:
            delivery = decode_delivery(body)
        except MalformedInputError as exc:
            logger.warning("Rejecting malformed delivery: %s", exc)
            return IngressResponse(400, {"error": "Invalid Pub/Sub message format", "details": str(exc)})

        if not delivery.file_name:
            logger.error("No fileName provided in request")
            return IngressResponse(
                400,
                {
                    "error": "Missing fileName in request",
                    "details": "The request must include a 'name' field",
                },
            )

        if not delivery.bucket:
            logger.error("No bucket provided in request for %s", delivery.file_name)
            return IngressResponse(
                400,
                {
                    "error": "Missing bucket in request",
                    "details": "The request must include a 'bucket' field",
                },
            )

        logger.info(
            "Processing request for file: %s (delivery %s)",
            delivery.file_name,
            delivery.delivery_id or "N/A",
        )
        admission = self._queue.admit(
            bucket=delivery.bucket,
            file_name=delivery.file_name,
            delivery_id=delivery.delivery_id,
            drive_file_id=delivery.drive_file_id,
        )

        if admission.outcome is AdmissionOutcome.ENQUEUED and admission.job is not None:
            assert admission.job.outcome is not None
            # shielded so a dropped client connection does not cancel the job's future
            outcome = await asyncio.shield(admission.job.outcome)
            return IngressResponse(outcome.status_code, outcome.payload)

        return short_circuit_response(admission.outcome, delivery)


def short_circuit_response(outcome: AdmissionOutcome, delivery: Delivery) -> IngressResponse:
    if outcome is AdmissionOutcome.QUEUE_FULL:
        return IngressResponse(
            429,
            {
                "error": "Processing queue is full",
                "details": "The system is currently processing too many videos. Please try again later.",
            },
        )

    payload: dict[str, Any] = {"message": SHORT_CIRCUIT_MESSAGES[outcome]}
    if outcome is AdmissionOutcome.DUPLICATE_DELIVERY:
        payload["messageId"] = delivery.delivery_id
    else:
        payload["fileName"] = delivery.file_name
    return IngressResponse(200, payload)
