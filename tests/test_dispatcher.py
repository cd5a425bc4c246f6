"""Tests for the AI job worker dispatcher.

Covers the full delivery path against a scripted provider:
- Success updates the record before acknowledging the queue
- Failed attempts are retried with backoff while the record stays processing
- Exhausted attempts fail the record with the last cause
- Lease contention, stale redeliveries and missing records
"""

import asyncio
from uuid import uuid4

import pytest

from wardrobe.models.ai_job import JobStatus
from wardrobe.models.queue_entry import QueueState
from wardrobe.repositories.ai_job import AIJobRepository
from wardrobe.services.exceptions import ProviderTimeout, ProviderUnavailable
from wardrobe.services.queue.lease import LeaseManager
from wardrobe.workers.dispatcher import DeliveryOutcome, WorkerDispatcher, run_ai_job_worker


async def submit_infer(gateway, wardrobe_data, item=None):
    item = item or wardrobe_data.top
    return await gateway.submit_payload({"type": "infer_item", "itemId": str(item.id)})


@pytest.mark.asyncio
class TestProcessing:
    async def test_success_completes_record_and_entry(
        self, dispatcher, gateway, queue, fake_provider, wardrobe_data
    ):
        job = await submit_infer(gateway, wardrobe_data)

        outcomes = await dispatcher.process_batch()

        assert outcomes == [DeliveryOutcome.COMPLETED]
        stored = await gateway.get(job.id)
        assert stored.status == JobStatus.COMPLETED
        assert stored.attempts == 1
        assert stored.result["category"] == "top"
        assert stored.model_name == "test/vision-model"
        assert stored.error is None
        assert stored.completed_at is not None
        assert (await queue.get_entry(job.id)).state == QueueState.COMPLETED

        # Main photo plus the label photo
        [call] = fake_provider.called("infer_item_details")
        assert call.args[1] is not None

    async def test_idle_queue_returns_no_outcomes(self, dispatcher):
        assert await dispatcher.process_batch() == []

    async def test_retry_then_success(self, dispatcher, gateway, queue, clock, fake_provider, wardrobe_data):
        fake_provider.errors = [ProviderUnavailable("Rate limit exceeded")]
        job = await submit_infer(gateway, wardrobe_data)

        assert await dispatcher.process_batch() == [DeliveryOutcome.RETRY_SCHEDULED]

        stored = await gateway.get(job.id)
        assert stored.status == JobStatus.PROCESSING
        assert stored.attempts == 1
        entry = await queue.get_entry(job.id)
        assert entry.state == QueueState.DELAYED
        assert entry.failed_reason.startswith("PROVIDER_UNAVAILABLE")

        clock.advance(2.1)
        assert await dispatcher.process_batch() == [DeliveryOutcome.COMPLETED]

        stored = await gateway.get(job.id)
        assert stored.status == JobStatus.COMPLETED
        assert stored.attempts == 2
        assert stored.error is None

    async def test_three_timeouts_fail_the_job(self, dispatcher, gateway, queue, clock, fake_provider, wardrobe_data):
        fake_provider.errors = [ProviderTimeout("Request timeout after 60s") for _ in range(3)]
        job = await submit_infer(gateway, wardrobe_data)

        assert await dispatcher.process_batch() == [DeliveryOutcome.RETRY_SCHEDULED]
        clock.advance(2.1)
        assert await dispatcher.process_batch() == [DeliveryOutcome.RETRY_SCHEDULED]
        clock.advance(4.1)
        assert await dispatcher.process_batch() == [DeliveryOutcome.FAILED]

        stored = await gateway.get(job.id)
        assert stored.status == JobStatus.FAILED
        assert stored.attempts == 3
        assert stored.result is None
        assert stored.error["code"] == "PERMANENT_FAILURE"
        assert stored.error["attempts"] == 3
        assert stored.error["cause"]["code"] == "PROVIDER_TIMEOUT"
        assert "after 3 attempts" in stored.error["message"]

        entry = await queue.get_entry(job.id)
        assert entry.state == QueueState.FAILED

        # No further deliveries
        clock.advance(3600)
        assert await dispatcher.process_batch() == []

    async def test_handler_time_budget_counts_as_timeout(
        self, queue, leases, uow_factory, gateway, fake_provider, assets, wardrobe_data
    ):
        fake_provider.delay = 0.5
        dispatcher = WorkerDispatcher(
            queue, leases, uow_factory, fake_provider, assets, handler_timeout=0.05
        )
        job = await submit_infer(gateway, wardrobe_data)

        assert await dispatcher.process_batch() == [DeliveryOutcome.RETRY_SCHEDULED]

        entry = await queue.get_entry(job.id)
        assert entry.failed_reason.startswith("PROVIDER_TIMEOUT")

    async def test_missing_input_image_is_a_failed_attempt(self, dispatcher, gateway, queue, wardrobe_data):
        job = await submit_infer(gateway, wardrobe_data, item=wardrobe_data.bare_item)

        assert await dispatcher.process_batch() == [DeliveryOutcome.RETRY_SCHEDULED]

        entry = await queue.get_entry(job.id)
        assert entry.failed_reason.startswith("HANDLER_INPUT_ERROR")

    async def test_entry_retired_during_attempt_fails_record(
        self, dispatcher, gateway, queue, fake_provider, wardrobe_data, monkeypatch
    ):
        job = await submit_infer(gateway, wardrobe_data)

        async def retired_then_unavailable(image, label_image=None):
            await queue.discard(job.id, "stalled on final attempt")
            raise ProviderUnavailable("Provider unavailable (503)")

        monkeypatch.setattr(fake_provider, "infer_item_details", retired_then_unavailable)

        assert await dispatcher.process_batch() == [DeliveryOutcome.FAILED]

        stored = await gateway.get(job.id)
        assert stored.status == JobStatus.FAILED
        assert stored.error["code"] == "PERMANENT_FAILURE"
        assert stored.error["attempts"] == 1
        assert stored.error["cause"]["code"] == "PROVIDER_UNAVAILABLE"

    async def test_batch_processes_deliveries_concurrently(
        self, queue, leases, uow_factory, gateway, fake_provider, assets, wardrobe_data
    ):
        dispatcher = WorkerDispatcher(
            queue, leases, uow_factory, fake_provider, assets, handler_timeout=5.0, batch_size=2
        )
        first = await submit_infer(gateway, wardrobe_data)
        second = await gateway.submit_payload(
            {"type": "generate_catalog_image", "itemId": str(wardrobe_data.bottom.id)}
        )

        outcomes = await dispatcher.process_batch()

        assert outcomes == [DeliveryOutcome.COMPLETED, DeliveryOutcome.COMPLETED]
        assert (await gateway.get(first.id)).status == JobStatus.COMPLETED
        assert (await gateway.get(second.id)).status == JobStatus.COMPLETED


@pytest.mark.asyncio
class TestDeliveryGuards:
    async def test_lease_held_elsewhere_skips_delivery(
        self, dispatcher, gateway, queue, db_engine, clock, fake_provider, wardrobe_data
    ):
        job = await submit_infer(gateway, wardrobe_data)
        other_worker = LeaseManager(db_engine, owner="worker-b", clock=clock)
        await other_worker.acquire(job.id)

        assert await dispatcher.process_batch() == [DeliveryOutcome.LEASE_HELD]

        assert fake_provider.calls == []
        assert (await gateway.get(job.id)).status == JobStatus.QUEUED
        # Handed back without using up an attempt
        entry = await queue.get_entry(job.id)
        assert entry.state == QueueState.DELAYED
        assert entry.attempts_made == 0

        await other_worker.release(job.id)
        clock.advance(2.1)
        assert await dispatcher.process_batch() == [DeliveryOutcome.COMPLETED]
        assert (await gateway.get(job.id)).attempts == 1

    async def test_reclaim_while_holder_still_runs_keeps_attempt_budget(
        self, dispatcher, gateway, queue, db_engine, clock, wardrobe_data
    ):
        job = await submit_infer(gateway, wardrobe_data)
        [first] = await queue.claim()
        holder = LeaseManager(db_engine, owner="worker-b", clock=clock)
        clock.advance(5)
        await holder.acquire(job.id)

        # Holder outlives the stall timeout but its lease is still valid
        clock.advance(86)
        assert (await queue.recover_stalled()).requeued == [job.id]
        assert await dispatcher.process_batch() == [DeliveryOutcome.LEASE_HELD]
        assert (await queue.get_entry(job.id)).attempts_made == first.attempt

        # Holder's attempt fails; the job keeps its remaining retries
        outcome = await queue.fail(job.id, "PROVIDER_TIMEOUT: slow")
        assert outcome.will_retry

        await holder.release(job.id)
        clock.advance(2.1)
        assert await dispatcher.process_batch() == [DeliveryOutcome.COMPLETED]
        assert (await gateway.get(job.id)).status == JobStatus.COMPLETED

    async def test_record_failed_concurrently_is_not_reopened(
        self, dispatcher, gateway, queue, uow_factory, fake_provider, wardrobe_data, monkeypatch
    ):
        job = await submit_infer(gateway, wardrobe_data)
        original = AIJobRepository.get_for_update
        interleaved = False

        async def fail_first(repo, job_id):
            nonlocal interleaved
            if not interleaved:
                interleaved = True
                # Reconciliation fails the record just before the worker locks it
                async with await uow_factory() as uow:
                    await uow.ai_jobs.transition(
                        job_id,
                        JobStatus.FAILED,
                        error={"code": "PERMANENT_FAILURE", "message": "Job delivery lost while processing"},
                    )
            return await original(repo, job_id)

        monkeypatch.setattr(AIJobRepository, "get_for_update", fail_first)

        assert await dispatcher.process_batch() == [DeliveryOutcome.STALE]

        assert fake_provider.calls == []
        stored = await gateway.get(job.id)
        assert stored.status == JobStatus.FAILED
        assert stored.result is None
        assert stored.attempts == 0
        assert (await queue.get_entry(job.id)).state == QueueState.FAILED

    async def test_stale_delivery_of_completed_job(
        self, dispatcher, gateway, queue, uow_factory, fake_provider, wardrobe_data
    ):
        job = await submit_infer(gateway, wardrobe_data)
        async with await uow_factory() as uow:
            await uow.ai_jobs.transition(job.id, JobStatus.PROCESSING)
        async with await uow_factory() as uow:
            await uow.ai_jobs.transition(job.id, JobStatus.COMPLETED, result={"category": "top"})

        assert await dispatcher.process_batch() == [DeliveryOutcome.STALE]

        assert fake_provider.calls == []
        stored = await gateway.get(job.id)
        assert stored.status == JobStatus.COMPLETED
        assert stored.attempts == 1
        assert (await queue.get_entry(job.id)).state == QueueState.COMPLETED

    async def test_delivery_for_missing_record_is_discarded(self, dispatcher, queue, fake_provider):
        job_id = uuid4()
        await queue.enqueue(job_id, "infer_item")

        assert await dispatcher.process_batch() == [DeliveryOutcome.MISSING]

        assert fake_provider.calls == []
        entry = await queue.get_entry(job_id)
        assert entry.state == QueueState.FAILED

    async def test_lease_released_after_delivery(self, dispatcher, gateway, db_engine, clock, wardrobe_data):
        job = await submit_infer(gateway, wardrobe_data)

        await dispatcher.process_batch()

        other_worker = LeaseManager(db_engine, owner="worker-b", clock=clock)
        assert await other_worker.acquire(job.id)


@pytest.mark.asyncio
async def test_worker_loop_processes_until_cancelled(dispatcher, gateway, wardrobe_data):
    job = await submit_infer(gateway, wardrobe_data)

    task = asyncio.create_task(run_ai_job_worker(dispatcher, poll_interval=0.01))
    try:
        for _ in range(200):
            if (await gateway.get(job.id)).status == JobStatus.COMPLETED:
                break
            await asyncio.sleep(0.01)
    finally:
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

    assert (await gateway.get(job.id)).status == JobStatus.COMPLETED
