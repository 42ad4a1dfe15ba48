from __future__ import annotations

import asyncio
import time

import pytest

from listing_pipeline.models import QueueJob
from listing_pipeline.queueing.dedup import MembershipCache
from listing_pipeline.queueing.processing_queue import AdmissionOutcome, ProcessingQueue


class _FakeTime:
    def __init__(self) -> None:
        self.now = 0.0
        self.sleeps: list[float] = []

    def clock(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds
        await asyncio.sleep(0)


async def _echo(job: QueueJob) -> dict:
    return {"fileName": job.file_name}


def test_jobs_run_one_at_a_time_in_admission_order() -> None:
    async def scenario():
        running = 0
        max_running = 0
        completed: list[str] = []

        async def processor(job: QueueJob) -> dict:
            nonlocal running, max_running
            running += 1
            max_running = max(max_running, running)
            await asyncio.sleep(0.01)
            completed.append(job.file_name)
            running -= 1
            return {"fileName": job.file_name}

        queue = ProcessingQueue(processor, cooldown_seconds=0)
        admissions = [queue.admit(bucket="listings", file_name=f"tour-{index}.mp4") for index in range(4)]
        outcomes = await asyncio.gather(*(admission.job.outcome for admission in admissions))
        await queue.close()
        return max_running, completed, outcomes

    max_running, completed, outcomes = asyncio.run(scenario())

    assert max_running == 1
    assert completed == ["tour-0.mp4", "tour-1.mp4", "tour-2.mp4", "tour-3.mp4"]
    assert [outcome.status_code for outcome in outcomes] == [200, 200, 200, 200]
    assert outcomes[0].payload["message"] == "Video processed successfully"
    assert outcomes[0].payload["fileName"] == "tour-0.mp4"


def test_cooldown_is_measured_from_previous_completion() -> None:
    fake = _FakeTime()
    spans: list[tuple[float, float]] = []

    async def processor(job: QueueJob) -> dict:
        started = fake.now
        fake.now += 3.0
        spans.append((started, fake.now))
        return {}

    async def scenario() -> None:
        queue = ProcessingQueue(processor, cooldown_seconds=12.0, clock=fake.clock, sleep=fake.sleep)
        first = queue.admit(bucket="b", file_name="a.mp4")
        second = queue.admit(bucket="b", file_name="b.mp4")
        await asyncio.gather(first.job.outcome, second.job.outcome)
        await queue.close()

    asyncio.run(scenario())

    (_, first_end), (second_start, _) = spans
    assert fake.sleeps == [pytest.approx(12.0)]
    assert second_start >= first_end + 12.0


def test_cooldown_also_follows_a_failed_job() -> None:
    fake = _FakeTime()
    spans: list[tuple[float, float]] = []

    async def processor(job: QueueJob) -> dict:
        started = fake.now
        fake.now += 3.0
        spans.append((started, fake.now))
        if job.file_name == "broken.mp4":
            raise RuntimeError("annotation provider unavailable")
        return {}

    async def scenario():
        queue = ProcessingQueue(processor, cooldown_seconds=12.0, clock=fake.clock, sleep=fake.sleep)
        broken = queue.admit(bucket="b", file_name="broken.mp4")
        healthy = queue.admit(bucket="b", file_name="healthy.mp4")
        outcomes = await asyncio.gather(broken.job.outcome, healthy.job.outcome)
        await queue.close()
        return outcomes

    broken_outcome, healthy_outcome = asyncio.run(scenario())

    (_, first_end), (second_start, _) = spans
    assert broken_outcome.status_code == 500
    assert healthy_outcome.status_code == 200
    assert fake.sleeps == [pytest.approx(12.0)]
    assert second_start >= first_end + 12.0


def test_cooldown_holds_with_real_clock() -> None:
    cooldown = 0.05
    spans: list[tuple[float, float]] = []

    async def processor(job: QueueJob) -> dict:
        started = time.monotonic()
        await asyncio.sleep(0.01)
        spans.append((started, time.monotonic()))
        return {}

    async def scenario() -> None:
        queue = ProcessingQueue(processor, cooldown_seconds=cooldown)
        first = queue.admit(bucket="b", file_name="a.mp4")
        second = queue.admit(bucket="b", file_name="b.mp4")
        await asyncio.gather(first.job.outcome, second.job.outcome)
        await queue.close()

    asyncio.run(scenario())

    (_, first_end), (second_start, _) = spans
    assert second_start - first_end >= cooldown - 0.005


def test_failed_job_answers_500_and_queue_keeps_going() -> None:
    async def processor(job: QueueJob) -> dict:
        if job.file_name == "broken.mp4":
            raise RuntimeError("annotation provider unavailable")
        return {"fileName": job.file_name}

    async def scenario():
        queue = ProcessingQueue(processor, cooldown_seconds=0)
        broken = queue.admit(bucket="b", file_name="broken.mp4")
        healthy = queue.admit(bucket="b", file_name="healthy.mp4")
        outcomes = await asyncio.gather(broken.job.outcome, healthy.job.outcome)
        await queue.close()
        return queue, outcomes

    queue, (broken_outcome, healthy_outcome) = asyncio.run(scenario())

    assert broken_outcome.status_code == 500
    assert broken_outcome.payload["error"] == "Failed to process video"
    assert broken_outcome.payload["details"] == "annotation provider unavailable"
    assert healthy_outcome.status_code == 200
    assert "broken.mp4" in queue.failed_files
    assert "healthy.mp4" in queue.processed_files
    assert "broken.mp4" not in queue.processed_files


def test_admission_guards_short_circuit_in_order() -> None:
    processed = MembershipCache()
    failed = MembershipCache()
    processed.add("done.mp4")
    failed.add("bad.mp4")

    async def scenario():
        queue = ProcessingQueue(_echo, processed_files=processed, failed_files=failed)
        results = {
            "enqueued": queue.admit(bucket="b", file_name="new.mp4", delivery_id="m1").outcome,
            "duplicate": queue.admit(bucket="b", file_name="other.mp4", delivery_id="m1").outcome,
            "processed": queue.admit(bucket="b", file_name="done.mp4", delivery_id="m2").outcome,
            "failed": queue.admit(bucket="b", file_name="bad.mp4", delivery_id="m3").outcome,
            "not_video": queue.admit(bucket="b", file_name="photo.jpg", delivery_id="m4").outcome,
            "queued": queue.admit(bucket="b", file_name="new.mp4", delivery_id="m5").outcome,
        }
        await queue.close()
        return queue, results

    queue, results = asyncio.run(scenario())

    assert results == {
        "enqueued": AdmissionOutcome.ENQUEUED,
        "duplicate": AdmissionOutcome.DUPLICATE_DELIVERY,
        "processed": AdmissionOutcome.ALREADY_PROCESSED,
        "failed": AdmissionOutcome.ALREADY_FAILED,
        "not_video": AdmissionOutcome.NOT_A_VIDEO,
        "queued": AdmissionOutcome.ALREADY_QUEUED,
    }
    assert queue.seen_delivery_ids.snapshot() == ["m1", "m2", "m3", "m4", "m5"]


def test_queue_full_is_not_recorded_as_seen() -> None:
    async def scenario():
        release = asyncio.Event()

        async def processor(job: QueueJob) -> dict:
            await release.wait()
            return {}

        queue = ProcessingQueue(processor, max_size=1)
        first = queue.admit(bucket="b", file_name="a.mp4", delivery_id="m1")
        full = queue.admit(bucket="b", file_name="b.mp4", delivery_id="m2")
        seen = "m2" in queue.seen_delivery_ids
        release.set()
        await first.job.outcome
        await queue.close()
        return full.outcome, seen

    outcome, seen = asyncio.run(scenario())

    assert outcome is AdmissionOutcome.QUEUE_FULL
    assert seen is False


def test_running_job_counts_as_queued() -> None:
    async def scenario():
        started = asyncio.Event()
        release = asyncio.Event()

        async def processor(job: QueueJob) -> dict:
            started.set()
            await release.wait()
            return {}

        queue = ProcessingQueue(processor)
        first = queue.admit(bucket="b", file_name="a.mp4")
        await started.wait()
        running_file = queue.running_file
        queue_length = queue.queue_length
        again = queue.admit(bucket="b", file_name="a.mp4")
        release.set()
        await first.job.outcome
        await queue.close()
        return running_file, queue_length, again.outcome

    running_file, queue_length, outcome = asyncio.run(scenario())

    assert running_file == "a.mp4"
    assert queue_length == 0
    assert outcome is AdmissionOutcome.ALREADY_QUEUED


def test_retry_failed_files_readmits_previous_failures() -> None:
    failed = MembershipCache()
    failed.add("bad.mp4")

    async def scenario():
        queue = ProcessingQueue(_echo, failed_files=failed, retry_failed_files=True)
        admission = queue.admit(bucket="b", file_name="bad.mp4")
        outcome = await admission.job.outcome
        await queue.close()
        return queue, admission.outcome, outcome

    queue, admission_outcome, outcome = asyncio.run(scenario())

    assert admission_outcome is AdmissionOutcome.ENQUEUED
    assert outcome.status_code == 200
    assert "bad.mp4" not in queue.failed_files
    assert "bad.mp4" in queue.processed_files


def test_failed_file_stays_failed_when_retry_is_rejected_by_full_queue() -> None:
    failed = MembershipCache()
    failed.add("bad.mp4")

    async def scenario():
        started = asyncio.Event()
        release = asyncio.Event()

        async def processor(job: QueueJob) -> dict:
            started.set()
            await release.wait()
            return {}

        queue = ProcessingQueue(
            processor, max_size=1, cooldown_seconds=0, failed_files=failed, retry_failed_files=True
        )
        running = queue.admit(bucket="b", file_name="a.mp4")
        await started.wait()
        waiting = queue.admit(bucket="b", file_name="b.mp4")
        retry = queue.admit(bucket="b", file_name="bad.mp4", delivery_id="m1")
        still_failed = "bad.mp4" in queue.failed_files
        release.set()
        await asyncio.gather(running.job.outcome, waiting.job.outcome)
        await queue.close()
        return waiting.outcome, retry.outcome, still_failed

    waiting_outcome, retry_outcome, still_failed = asyncio.run(scenario())

    assert waiting_outcome is AdmissionOutcome.ENQUEUED
    assert retry_outcome is AdmissionOutcome.QUEUE_FULL
    assert still_failed is True


def test_close_answers_waiting_jobs_with_503() -> None:
    async def scenario():
        started = asyncio.Event()

        async def processor(job: QueueJob) -> dict:
            started.set()
            await asyncio.Event().wait()
            return {}

        queue = ProcessingQueue(processor)
        running = queue.admit(bucket="b", file_name="a.mp4")
        waiting = queue.admit(bucket="b", file_name="b.mp4")
        await started.wait()
        await queue.close()
        return running.job.outcome.result(), waiting.job.outcome.result(), queue.queue_length

    running_outcome, waiting_outcome, queue_length = asyncio.run(scenario())

    assert running_outcome.status_code == 503
    assert waiting_outcome.status_code == 503
    assert queue_length == 0


def test_health_reports_queue_state() -> None:
    async def scenario():
        queue = ProcessingQueue(_echo, cooldown_seconds=0)
        admission = queue.admit(bucket="b", file_name="a.mp4", delivery_id="m1")
        await admission.job.outcome
        health = queue.health()
        await queue.close()
        return health

    health = asyncio.run(scenario())

    assert health == {
        "status": "ok",
        "queueLength": 0,
        "runningFile": None,
        "processedFiles": ["a.mp4"],
        "failedFiles": [],
        "processedMessageIds": ["m1"],
    }
