"""Testes do InMemoryJobStore (máquina de estados da fila de persistência)."""
import pytest

from app.schemas.podcast import ITunesPodcast
from app.services.podcast_queue import JobStatus


@pytest.fixture
def item(itunes_item):
    def _make(track_id, **kwargs):
        return ITunesPodcast.model_validate(itunes_item(track_id, **kwargs))
    return _make


class TestEnqueue:
    async def test_creates_pending_jobs_with_snapshot(self, job_store, item):
        jobs = await job_store.enqueue_many([item(10, name="Tech Talk")])

        assert len(jobs) == 1
        job = jobs[0]
        assert job.status == JobStatus.PENDING
        assert job.attempts == 0
        assert job.max_attempts == 3
        assert job.track_id == 10
        assert job.track_name == "Tech Talk"
        assert job.podcast_data["trackId"] == 10
        assert job.podcast_data["genreIds"] == ["1318", "26"]

    async def test_duplicates_in_batch_and_missing_track_id_are_skipped(self, job_store, item, itunes_item):
        no_id = ITunesPodcast.model_validate(itunes_item(None, name="Sem id"))

        jobs = await job_store.enqueue_many([item(1), item(1), no_id, item(2)])

        assert [job.track_id for job in jobs] == [1, 2]

    async def test_active_track_ids_are_not_requeued(self, job_store, item):
        first = await job_store.enqueue_many([item(1), item(2), item(3)])
        await job_store.mark_processing(first[1].id)
        await job_store.mark_processing(first[2].id)
        await job_store.mark_completed(first[2].id)

        again = await job_store.enqueue_many([item(1), item(2), item(3), item(4)])

        assert [job.track_id for job in again] == [4]

    async def test_failed_track_id_can_be_requeued(self, job_store, item):
        store_jobs = await job_store.enqueue_many([item(1)])
        job_id = store_jobs[0].id
        for _ in range(3):
            await job_store.mark_processing(job_id)
            await job_store.mark_failed(job_id, "boom")

        again = await job_store.enqueue_many([item(1)])

        assert len(again) == 1
        assert again[0].id != job_id

    async def test_empty_batch(self, job_store):
        assert await job_store.enqueue_many([]) == []


class TestDequeue:
    async def test_oldest_first_and_limited(self, job_store, item, fake_clock):
        await job_store.enqueue_many([item(1)])
        fake_clock.advance(1)
        await job_store.enqueue_many([item(2), item(3)])

        batch = await job_store.dequeue_batch(2)

        assert [job.track_id for job in batch] == [1, 2]

    async def test_only_pending_jobs(self, job_store, item):
        jobs = await job_store.enqueue_many([item(1), item(2)])
        await job_store.mark_processing(jobs[0].id)

        batch = await job_store.dequeue_batch(10)

        assert [job.track_id for job in batch] == [2]

    async def test_returns_copies(self, job_store, item):
        await job_store.enqueue_many([item(1)])
        batch = await job_store.dequeue_batch(10)
        batch[0].status = JobStatus.COMPLETED

        stored = await job_store.get(batch[0].id)
        assert stored.status == JobStatus.PENDING


class TestTransitions:
    async def test_retry_until_failed(self, job_store, item):
        jobs = await job_store.enqueue_many([item(1)])
        job_id = jobs[0].id
        statuses = []

        for _ in range(3):
            assert await job_store.mark_processing(job_id)
            statuses.append((await job_store.get(job_id)).status)
            failed = await job_store.mark_failed(job_id, "upsert falhou")
            statuses.append(failed.status)

        assert statuses == [
            JobStatus.PROCESSING, JobStatus.PENDING,
            JobStatus.PROCESSING, JobStatus.PENDING,
            JobStatus.PROCESSING, JobStatus.FAILED,
        ]
        final = await job_store.get(job_id)
        assert final.attempts == 3
        assert final.error == "upsert falhou"
        assert final.last_attempt_at is not None
        assert await job_store.dequeue_batch(10) == []

    async def test_completed(self, job_store, item):
        jobs = await job_store.enqueue_many([item(1)])
        job_id = jobs[0].id

        assert not await job_store.mark_completed(job_id)
        await job_store.mark_processing(job_id)
        assert await job_store.mark_completed(job_id)

        job = await job_store.get(job_id)
        assert job.status == JobStatus.COMPLETED
        assert job.completed_at is not None
        assert not await job_store.mark_processing(job_id)

    async def test_mark_failed_on_terminal_job_is_ignored(self, job_store, item):
        jobs = await job_store.enqueue_many([item(1)])
        job_id = jobs[0].id
        await job_store.mark_processing(job_id)
        await job_store.mark_completed(job_id)

        result = await job_store.mark_failed(job_id, "tarde demais")

        assert result.status == JobStatus.COMPLETED
        assert result.attempts == 0

    async def test_mark_failed_unknown_job(self, job_store):
        assert await job_store.mark_failed(999, "x") is None


class TestQueries:
    async def test_existing_ids_for(self, job_store, item):
        jobs = await job_store.enqueue_many([item(1), item(2)])
        for _ in range(3):
            await job_store.mark_processing(jobs[1].id)
            await job_store.mark_failed(jobs[1].id, "x")

        assert await job_store.existing_ids_for([1, 2, 3]) == {1}
        assert await job_store.existing_ids_for([]) == set()

    async def test_stats(self, job_store, item):
        jobs = await job_store.enqueue_many([item(1), item(2), item(3)])
        await job_store.mark_processing(jobs[0].id)
        await job_store.mark_processing(jobs[1].id)
        await job_store.mark_completed(jobs[1].id)

        stats = await job_store.stats()

        assert (stats.pending, stats.processing, stats.completed, stats.failed) == (1, 1, 1, 0)
        assert stats.total == 3

    async def test_recover_interrupted(self, job_store, item):
        jobs = await job_store.enqueue_many([item(1), item(2)])
        await job_store.mark_processing(jobs[0].id)

        recovered = await job_store.recover_interrupted()

        assert recovered == 1
        job = await job_store.get(jobs[0].id)
        assert job.status == JobStatus.PENDING
        assert job.attempts == 0
