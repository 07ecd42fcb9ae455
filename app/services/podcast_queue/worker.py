"""
Podcast Worker - Drena a fila de persistência periodicamente.

A cada tick (default 10s) pega um lote de jobs pending e grava cada podcast
no repositório via upsert. Jobs do lote rodam em paralelo com semântica
settle-all: a falha de um job fica registrada nele e não afeta os demais.
"""
import asyncio
import logging
from typing import Optional

from pydantic import ValidationError

from app.core.clock import Clock, system_clock
from app.core.exceptions import JobProcessingError
from app.core.periodic import PeriodicTask
from app.schemas.podcast import ITunesPodcast, JobStats, Podcast
from app.services.podcast_repository import PodcastRepository
from .job_store import JobStore
from .models import Job

logger = logging.getLogger(__name__)


def podcast_from_job(job: Job) -> Podcast:
    """
    Mapeia o snapshot do job para o podcast a ser gravado.

    Raises:
        JobProcessingError: Snapshot inválido
    """
    try:
        item = ITunesPodcast.model_validate(job.podcast_data)
        return Podcast.from_itunes(item)
    except (ValidationError, ValueError) as e:
        raise JobProcessingError(f"Snapshot inválido no job {job.id}: {e}") from e


class PodcastWorker:
    """
    Worker periódico com guarda single-flight.

    Se um ciclo ainda está rodando quando o próximo tick chega, o tick é
    ignorado.
    """

    def __init__(
        self,
        job_store: JobStore,
        repository: PodcastRepository,
        batch_size: int = 10,
        poll_interval: float = 10.0,
        clock: Optional[Clock] = None,
    ):
        """
        Args:
            job_store: Fila de persistência
            repository: Repositório de podcasts (destino do upsert)
            batch_size: Jobs por ciclo
            poll_interval: Intervalo entre ticks em segundos
            clock: Relógio (injetável para testes)
        """
        self._job_store = job_store
        self._repository = repository
        self._batch_size = batch_size
        self._clock = clock or system_clock

        self._cycle_lock = asyncio.Lock()
        self._periodic = PeriodicTask(
            name="podcast-worker",
            interval=poll_interval,
            callback=self.run_cycle,
            clock=self._clock,
        )

        self.last_stats: Optional[JobStats] = None
        self._cycles = 0
        self._skipped_ticks = 0
        self._jobs_completed = 0
        self._jobs_failed = 0

    @property
    def is_processing(self) -> bool:
        return self._cycle_lock.locked()

    async def run_cycle(self) -> Optional[JobStats]:
        """
        Executa um ciclo: dequeue, processa o lote, atualiza estatísticas.

        Returns:
            Estatísticas da fila após o lote, ou None se o ciclo foi ignorado
            (outro em andamento) ou não havia jobs
        """
        if self._cycle_lock.locked():
            self._skipped_ticks += 1
            logger.debug("Worker: ciclo anterior ainda em andamento, tick ignorado")
            return None

        async with self._cycle_lock:
            jobs = await self._job_store.dequeue_batch(self._batch_size)
            if not jobs:
                logger.debug("Worker: nenhum job pendente")
                return None

            self._cycles += 1
            logger.info(f"⚙️ Worker: processando {len(jobs)} jobs de podcast")

            results = await asyncio.gather(
                *(self._process_job(job) for job in jobs),
                return_exceptions=True,
            )
            for job, result in zip(jobs, results):
                if isinstance(result, BaseException):
                    logger.error(f"❌ Worker: erro não tratado no job {job.id}: {result}")

            stats = await self._job_store.stats()
            self.last_stats = stats
            logger.info(
                f"📊 Fila - Pending: {stats.pending}, Processing: {stats.processing}, "
                f"Completed: {stats.completed}, Failed: {stats.failed}"
            )
            return stats

    async def _process_job(self, job: Job) -> bool:
        """Processa um job. Retorna True se o podcast foi gravado."""
        if not await self._job_store.mark_processing(job.id):
            return False

        try:
            podcast = podcast_from_job(job)
            saved = await self._repository.upsert(podcast)
            await self._job_store.mark_completed(job.id)
            self._jobs_completed += 1
            logger.debug(f"✅ Worker: job {job.id} gravado ({saved.track_name}, id={saved.id})")
            return True
        except Exception as e:
            error = str(e) or type(e).__name__
            self._jobs_failed += 1
            logger.error(f"❌ Worker: falha no job {job.id} (track_id={job.track_id}): {error}")
            await self._job_store.mark_failed(job.id, error)
            return False

    async def start(self) -> None:
        """Recupera jobs interrompidos e inicia o loop periódico."""
        await self._job_store.recover_interrupted()
        self._periodic.start()

    async def stop(self, timeout: float = 30.0) -> None:
        """Para o loop; um ciclo em andamento termina antes (até `timeout`)."""
        await self._periodic.stop(timeout=timeout)

    def get_status(self) -> dict:
        return {
            "processing": self.is_processing,
            "cycles": self._cycles,
            "skipped_ticks": self._skipped_ticks,
            "jobs_completed": self._jobs_completed,
            "jobs_failed": self._jobs_failed,
            "last_stats": self.last_stats.model_dump() if self.last_stats else None,
            "loop": self._periodic.get_status(),
        }
