"""
Job Store - Registro durável dos podcasts descobertos e ainda não persistidos.

Duas implementações com o mesmo contrato:
- InMemoryJobStore: desenvolvimento local e testes (STORAGE_BACKEND=memory)
- PostgresJobStore: tabela podcast_jobs via asyncpg (STORAGE_BACKEND=postgres)
"""
import asyncio
import json
import logging
from abc import ABC, abstractmethod
from dataclasses import replace
from typing import Dict, Iterable, List, Optional, Sequence, Set

from app.core.clock import Clock, system_clock
from app.core.database import get_pool
from app.schemas.podcast import ITunesPodcast, JobStats
from .models import ACTIVE_STATUSES, DEFAULT_MAX_ATTEMPTS, Job, JobStatus

logger = logging.getLogger(__name__)

_ACTIVE_STATUS_VALUES = [status.value for status in ACTIVE_STATUSES]


def _unique_items(items: Iterable[ITunesPodcast]) -> List[ITunesPodcast]:
    """Remove itens sem trackId e duplicados dentro do próprio lote."""
    seen: Set[int] = set()
    unique = []
    for item in items:
        if item.track_id is None or item.track_id in seen:
            continue
        seen.add(item.track_id)
        unique.append(item)
    return unique


class JobStore(ABC):
    """Contrato da fila de persistência."""

    def __init__(self, max_attempts: int = DEFAULT_MAX_ATTEMPTS):
        self.max_attempts = max_attempts

    @abstractmethod
    async def enqueue_many(self, items: Sequence[ITunesPodcast]) -> List[Job]:
        """
        Cria jobs pending para os itens sem job ativo (pending/processing/completed).

        Returns:
            Jobs criados (itens já rastreados são ignorados)
        """

    @abstractmethod
    async def dequeue_batch(self, limit: int) -> List[Job]:
        """Até `limit` jobs pending com attempts < max_attempts, mais antigos primeiro."""

    @abstractmethod
    async def mark_processing(self, job_id: int) -> bool:
        """pending -> processing. Retorna False se o job não estava pending."""

    @abstractmethod
    async def mark_completed(self, job_id: int) -> bool:
        """processing -> completed. Retorna False se o job não estava processing."""

    @abstractmethod
    async def mark_failed(self, job_id: int, error: str) -> Optional[Job]:
        """
        Registra uma tentativa falha.

        attempts += 1; vira failed quando attempts >= max_attempts, senão volta
        a pending. Retorna o job atualizado, ou None se não existir.
        """

    @abstractmethod
    async def existing_ids_for(self, track_ids: Sequence[int]) -> Set[int]:
        """Subconjunto de track_ids que já tem job pending/processing/completed."""

    @abstractmethod
    async def stats(self) -> JobStats:
        """Contagem de jobs por status."""

    @abstractmethod
    async def get(self, job_id: int) -> Optional[Job]:
        """Busca job por id."""

    @abstractmethod
    async def recover_interrupted(self) -> int:
        """
        Devolve para pending os jobs que ficaram em processing (processo caiu
        no meio de um ciclo). Não altera attempts.

        Returns:
            Número de jobs recuperados
        """


class InMemoryJobStore(JobStore):
    """Job store em memória (ids auto-incrementais, ordem de criação preservada)."""

    def __init__(self, max_attempts: int = DEFAULT_MAX_ATTEMPTS, clock: Optional[Clock] = None):
        super().__init__(max_attempts=max_attempts)
        self._clock = clock or system_clock
        self._jobs: Dict[int, Job] = {}
        self._next_id = 1
        self._lock = asyncio.Lock()

    async def enqueue_many(self, items: Sequence[ITunesPodcast]) -> List[Job]:
        unique = _unique_items(items)
        if not unique:
            return []

        async with self._lock:
            active = self._active_track_ids()
            now = self._clock.utcnow()
            created = []
            for item in unique:
                if item.track_id in active:
                    continue
                job = Job(
                    id=self._next_id,
                    track_id=item.track_id,
                    track_name=item.track_name or "",
                    podcast_data=item.to_payload(),
                    status=JobStatus.PENDING,
                    attempts=0,
                    max_attempts=self.max_attempts,
                    created_at=now,
                    updated_at=now,
                )
                self._jobs[job.id] = job
                self._next_id += 1
                created.append(replace(job))

        logger.debug(f"📥 JobStore: {len(created)}/{len(unique)} jobs criados")
        return created

    def _active_track_ids(self) -> Set[int]:
        return {job.track_id for job in self._jobs.values() if job.status in ACTIVE_STATUSES}

    async def dequeue_batch(self, limit: int) -> List[Job]:
        async with self._lock:
            pending = [job for job in self._jobs.values() if job.can_retry]
            pending.sort(key=lambda job: (job.created_at, job.id))
            return [replace(job) for job in pending[:limit]]

    async def mark_processing(self, job_id: int) -> bool:
        async with self._lock:
            job = self._jobs.get(job_id)
            if job is None or job.status != JobStatus.PENDING:
                logger.warning(f"⚠️ JobStore: job {job_id} não está pending, ignorando mark_processing")
                return False
            now = self._clock.utcnow()
            job.status = JobStatus.PROCESSING
            job.last_attempt_at = now
            job.updated_at = now
            return True

    async def mark_completed(self, job_id: int) -> bool:
        async with self._lock:
            job = self._jobs.get(job_id)
            if job is None or job.status != JobStatus.PROCESSING:
                logger.warning(f"⚠️ JobStore: job {job_id} não está processing, ignorando mark_completed")
                return False
            now = self._clock.utcnow()
            job.status = JobStatus.COMPLETED
            job.completed_at = now
            job.updated_at = now
            return True

    async def mark_failed(self, job_id: int, error: str) -> Optional[Job]:
        async with self._lock:
            job = self._jobs.get(job_id)
            if job is None:
                logger.warning(f"⚠️ JobStore: job {job_id} não encontrado")
                return None
            if job.is_terminal:
                logger.warning(f"⚠️ JobStore: job {job_id} já está {job.status.value}, ignorando mark_failed")
                return replace(job)

            now = self._clock.utcnow()
            job.attempts += 1
            job.status = JobStatus.FAILED if job.attempts >= job.max_attempts else JobStatus.PENDING
            job.error = error
            job.last_attempt_at = now
            job.updated_at = now

            logger.debug(
                f"JobStore: job {job_id} falhou (tentativa {job.attempts}/{job.max_attempts}) "
                f"-> {job.status.value}"
            )
            return replace(job)

    async def existing_ids_for(self, track_ids: Sequence[int]) -> Set[int]:
        if not track_ids:
            return set()
        async with self._lock:
            return self._active_track_ids() & set(track_ids)

    async def stats(self) -> JobStats:
        async with self._lock:
            counts = {status: 0 for status in JobStatus}
            for job in self._jobs.values():
                counts[job.status] += 1
            return JobStats(
                pending=counts[JobStatus.PENDING],
                processing=counts[JobStatus.PROCESSING],
                completed=counts[JobStatus.COMPLETED],
                failed=counts[JobStatus.FAILED],
                total=len(self._jobs),
            )

    async def get(self, job_id: int) -> Optional[Job]:
        async with self._lock:
            job = self._jobs.get(job_id)
            return replace(job) if job else None

    async def recover_interrupted(self) -> int:
        async with self._lock:
            recovered = 0
            for job in self._jobs.values():
                if job.status == JobStatus.PROCESSING:
                    job.status = JobStatus.PENDING
                    job.updated_at = self._clock.utcnow()
                    recovered += 1
        if recovered:
            logger.warning(f"♻️ JobStore: {recovered} jobs interrompidos voltaram para pending")
        return recovered


class PostgresJobStore(JobStore):
    """Job store sobre a tabela podcast_jobs (asyncpg)."""

    async def enqueue_many(self, items: Sequence[ITunesPodcast]) -> List[Job]:
        unique = _unique_items(items)
        if not unique:
            return []

        track_ids = [item.track_id for item in unique]
        track_names = [item.track_name or "" for item in unique]
        payloads = [json.dumps(item.to_payload()) for item in unique]

        pool = await get_pool()
        async with pool.acquire() as conn:
            # Transação + lock para que dois enqueues concorrentes não criem
            # dois jobs ativos para o mesmo track_id
            async with conn.transaction():
                await conn.execute("LOCK TABLE podcast_jobs IN SHARE ROW EXCLUSIVE MODE")
                rows = await conn.fetch(
                    """
                    INSERT INTO podcast_jobs
                        (track_id, track_name, podcast_data, status, attempts, max_attempts)
                    SELECT i.track_id, i.track_name, i.podcast_data::jsonb, 'pending', 0, $4
                    FROM unnest($1::bigint[], $2::text[], $3::text[])
                        AS i(track_id, track_name, podcast_data)
                    WHERE NOT EXISTS (
                        SELECT 1 FROM podcast_jobs j
                        WHERE j.track_id = i.track_id
                          AND j.status = ANY($5::text[])
                    )
                    RETURNING *
                    """,
                    track_ids,
                    track_names,
                    payloads,
                    self.max_attempts,
                    _ACTIVE_STATUS_VALUES,
                )

        logger.debug(f"📥 JobStore: {len(rows)}/{len(unique)} jobs criados")
        return [Job.from_record(row) for row in rows]

    async def dequeue_batch(self, limit: int) -> List[Job]:
        pool = await get_pool()
        async with pool.acquire() as conn:
            rows = await conn.fetch(
                """
                SELECT * FROM podcast_jobs
                WHERE status = 'pending' AND attempts < max_attempts
                ORDER BY created_at ASC, id ASC
                LIMIT $1
                """,
                limit,
            )
            return [Job.from_record(row) for row in rows]

    async def mark_processing(self, job_id: int) -> bool:
        pool = await get_pool()
        async with pool.acquire() as conn:
            result = await conn.execute(
                """
                UPDATE podcast_jobs
                SET status = 'processing', last_attempt_at = NOW(), updated_at = NOW()
                WHERE id = $1 AND status = 'pending'
                """,
                job_id,
            )
        updated = result.endswith(" 1")
        if not updated:
            logger.warning(f"⚠️ JobStore: job {job_id} não está pending, ignorando mark_processing")
        return updated

    async def mark_completed(self, job_id: int) -> bool:
        pool = await get_pool()
        async with pool.acquire() as conn:
            result = await conn.execute(
                """
                UPDATE podcast_jobs
                SET status = 'completed', completed_at = NOW(), updated_at = NOW()
                WHERE id = $1 AND status = 'processing'
                """,
                job_id,
            )
        updated = result.endswith(" 1")
        if not updated:
            logger.warning(f"⚠️ JobStore: job {job_id} não está processing, ignorando mark_completed")
        return updated

    async def mark_failed(self, job_id: int, error: str) -> Optional[Job]:
        pool = await get_pool()
        async with pool.acquire() as conn:
            row = await conn.fetchrow(
                """
                UPDATE podcast_jobs
                SET attempts = attempts + 1,
                    status = CASE WHEN attempts + 1 >= max_attempts THEN 'failed' ELSE 'pending' END,
                    error = $2,
                    last_attempt_at = NOW(),
                    updated_at = NOW()
                WHERE id = $1 AND status IN ('pending', 'processing')
                RETURNING *
                """,
                job_id,
                error,
            )
            if row is None:
                existing = await conn.fetchrow("SELECT * FROM podcast_jobs WHERE id = $1", job_id)
                if existing is None:
                    logger.warning(f"⚠️ JobStore: job {job_id} não encontrado")
                    return None
                logger.warning(f"⚠️ JobStore: job {job_id} já está {existing['status']}, ignorando mark_failed")
                return Job.from_record(existing)

        job = Job.from_record(row)
        logger.debug(
            f"JobStore: job {job_id} falhou (tentativa {job.attempts}/{job.max_attempts}) "
            f"-> {job.status.value}"
        )
        return job

    async def existing_ids_for(self, track_ids: Sequence[int]) -> Set[int]:
        if not track_ids:
            return set()
        pool = await get_pool()
        async with pool.acquire() as conn:
            rows = await conn.fetch(
                """
                SELECT DISTINCT track_id FROM podcast_jobs
                WHERE track_id = ANY($1::bigint[]) AND status = ANY($2::text[])
                """,
                list(track_ids),
                _ACTIVE_STATUS_VALUES,
            )
            return {row["track_id"] for row in rows}

    async def stats(self) -> JobStats:
        pool = await get_pool()
        async with pool.acquire() as conn:
            rows = await conn.fetch(
                "SELECT status, COUNT(*) AS count FROM podcast_jobs GROUP BY status"
            )
        counts = {row["status"]: row["count"] for row in rows}
        return JobStats(
            pending=counts.get("pending", 0),
            processing=counts.get("processing", 0),
            completed=counts.get("completed", 0),
            failed=counts.get("failed", 0),
            total=sum(counts.values()),
        )

    async def get(self, job_id: int) -> Optional[Job]:
        pool = await get_pool()
        async with pool.acquire() as conn:
            row = await conn.fetchrow("SELECT * FROM podcast_jobs WHERE id = $1", job_id)
            return Job.from_record(row) if row else None

    async def recover_interrupted(self) -> int:
        pool = await get_pool()
        async with pool.acquire() as conn:
            result = await conn.execute(
                """
                UPDATE podcast_jobs
                SET status = 'pending', updated_at = NOW()
                WHERE status = 'processing'
                """
            )
        recovered = int(result.split()[-1]) if result else 0
        if recovered:
            logger.warning(f"♻️ JobStore: {recovered} jobs interrompidos voltaram para pending")
        return recovered
