from __future__ import annotations

import asyncio
import logging
import time
from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable

from listing_pipeline.models import JobOutcome, QueueJob
from listing_pipeline.queueing.dedup import MembershipCache
from listing_pipeline.summarize.taxonomy import DEFAULT_VIDEO_EXTENSIONS, is_video_file

logger = logging.getLogger(__name__)

DEFAULT_MAX_SIZE = 10
DEFAULT_COOLDOWN_SECONDS = 12.0

JobProcessor = Callable[[QueueJob], Awaitable[dict[str, Any]]]


class AdmissionOutcome(str, Enum):
    ENQUEUED = "enqueued"
    DUPLICATE_DELIVERY = "duplicate_delivery"
    ALREADY_PROCESSED = "already_processed"
    ALREADY_FAILED = "already_failed"
    NOT_A_VIDEO = "not_a_video"
    QUEUE_FULL = "queue_full"
    ALREADY_QUEUED = "already_queued"


@dataclass(slots=True)
class Admission:
    outcome: AdmissionOutcome
    job: QueueJob | None = None


class ProcessingQueue:
    """Single-flight FIFO of video jobs with admission dedup and a fixed cooldown.

    Exactly one worker task dequeues jobs; at most one job runs at a time and
    a job never starts earlier than ``cooldown_seconds`` after the previous
    job finished. Each admitted job carries a future that is resolved once
    with its terminal :class:`JobOutcome`.
    """

    def __init__(
        self,
        processor: JobProcessor,
        *,
        max_size: int = DEFAULT_MAX_SIZE,
        cooldown_seconds: float = DEFAULT_COOLDOWN_SECONDS,
        video_extensions: tuple[str, ...] | list[str] = DEFAULT_VIDEO_EXTENSIONS,
        retry_failed_files: bool = False,
        processed_files: MembershipCache | None = None,
        failed_files: MembershipCache | None = None,
        seen_delivery_ids: MembershipCache | None = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self._processor = processor
        self._max_size = max_size
        self._cooldown_seconds = max(0.0, cooldown_seconds)
        self._video_extensions = tuple(video_extensions)
        self._retry_failed_files = retry_failed_files
        self.processed_files = processed_files if processed_files is not None else MembershipCache()
        self.failed_files = failed_files if failed_files is not None else MembershipCache()
        self.seen_delivery_ids = seen_delivery_ids if seen_delivery_ids is not None else MembershipCache()
        self._clock = clock
        self._sleep = sleep

        self._pending: deque[QueueJob] = deque()
        self._running: QueueJob | None = None
        self._last_completed_at: float | None = None
        self._wakeup: asyncio.Event | None = None
        self._worker: asyncio.Task[None] | None = None

    @property
    def queue_length(self) -> int:
        return len(self._pending)

    @property
    def running_file(self) -> str | None:
        return self._running.file_name if self._running else None

    def health(self) -> dict[str, Any]:
        return {
            "status": "ok",
            "queueLength": len(self._pending),
            "runningFile": self.running_file,
            "processedFiles": self.processed_files.snapshot(),
            "failedFiles": self.failed_files.snapshot(),
            "processedMessageIds": self.seen_delivery_ids.snapshot(),
        }

    def admit(
        self,
        *,
        bucket: str,
        file_name: str,
        delivery_id: str | None = None,
        drive_file_id: str | None = None,
    ) -> Admission:
        """Apply the admission guards in order and enqueue the job when all pass.

        Runs without suspending, so concurrent deliveries see each other's effects.
        """

        if delivery_id and delivery_id in self.seen_delivery_ids:
            logger.info("Delivery %s already handled, skipping %s", delivery_id, file_name)
            return Admission(AdmissionOutcome.DUPLICATE_DELIVERY)

        outcome = self._short_circuit(file_name)
        if outcome is AdmissionOutcome.QUEUE_FULL:
            # not recorded as seen: the transport is expected to redeliver later
            logger.warning("Queue is full (%d items), rejecting %s", len(self._pending), file_name)
            return Admission(outcome)

        if delivery_id:
            self.seen_delivery_ids.add(delivery_id)

        if outcome is not None:
            logger.info("Skipping %s: %s", file_name, outcome.value)
            return Admission(outcome)

        if file_name in self.failed_files:
            logger.info("Retrying previously failed file %s", file_name)
            self.failed_files.discard(file_name)

        job = QueueJob(
            bucket=bucket,
            file_name=file_name,
            delivery_id=delivery_id,
            drive_file_id=drive_file_id,
            outcome=asyncio.get_running_loop().create_future(),
        )
        self._pending.append(job)
        logger.info("Added %s to processing queue. Queue length: %d", file_name, len(self._pending))
        self._ensure_worker()
        return Admission(AdmissionOutcome.ENQUEUED, job)

    async def close(self) -> None:
        """Stop the worker and answer every job still waiting or interrupted."""

        interrupted = self._running
        if self._worker is not None:
            self._worker.cancel()
            try:
                await self._worker
            except asyncio.CancelledError:
                pass
            self._worker = None

        unfinished = ([interrupted] if interrupted is not None else []) + list(self._pending)
        self._pending.clear()
        for job in unfinished:
            _resolve(job, JobOutcome(503, {"error": "Service shutting down", "fileName": job.file_name}))

    def _short_circuit(self, file_name: str) -> AdmissionOutcome | None:
        if file_name in self.processed_files:
            return AdmissionOutcome.ALREADY_PROCESSED

        if file_name in self.failed_files and not self._retry_failed_files:
            return AdmissionOutcome.ALREADY_FAILED

        if not is_video_file(file_name, self._video_extensions):
            return AdmissionOutcome.NOT_A_VIDEO

        if len(self._pending) >= self._max_size:
            return AdmissionOutcome.QUEUE_FULL

        if self.running_file == file_name or any(job.file_name == file_name for job in self._pending):
            return AdmissionOutcome.ALREADY_QUEUED

        return None

    def _ensure_worker(self) -> None:
        if self._wakeup is None:
            self._wakeup = asyncio.Event()
        self._wakeup.set()
        if self._worker is None or self._worker.done():
            self._worker = asyncio.get_running_loop().create_task(self._run_worker())

    async def _run_worker(self) -> None:
        assert self._wakeup is not None
        while True:
            if not self._pending:
                self._wakeup.clear()
                await self._wakeup.wait()
                continue

            await self._wait_for_cooldown()

            job = self._pending.popleft()
            # claimed before the first await of the job
            self._running = job
            try:
                await self._execute(job)
            finally:
                self._running = None
                self._last_completed_at = self._clock()

            if self._pending:
                logger.info(
                    "Queue still has %d item(s); next starts after %.1fs cooldown.",
                    len(self._pending),
                    self._cooldown_seconds,
                )
            else:
                logger.info("Queue processing complete. Queue is now empty.")

    async def _wait_for_cooldown(self) -> None:
        if self._last_completed_at is None:
            return
        remaining = self._last_completed_at + self._cooldown_seconds - self._clock()
        if remaining > 0:
            logger.debug("Cooling down for %.2fs before next job", remaining)
            await self._sleep(remaining)

    async def _execute(self, job: QueueJob) -> None:
        logger.info("Processing queue item: %s (delivery %s)", job.file_name, job.delivery_id or "N/A")
        try:
            result = await self._processor(job)
        except Exception as exc:
            self.failed_files.add(job.file_name)
            logger.exception("Processing failed for %s", job.file_name)
            _resolve(
                job,
                JobOutcome(
                    500,
                    {"error": "Failed to process video", "details": str(exc), "fileName": job.file_name},
                ),
            )
            return

        self.processed_files.add(job.file_name)
        logger.info("Successfully processed file: %s", job.file_name)
        _resolve(job, JobOutcome(200, {"message": "Video processed successfully", **result}))


def _resolve(job: QueueJob, outcome: JobOutcome) -> None:
    if job.outcome is not None and not job.outcome.done():
        job.outcome.set_result(outcome)
