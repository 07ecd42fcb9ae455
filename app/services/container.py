"""
Container de serviços.

Constrói cada componente uma única vez a partir da configuração e controla
o ciclo de vida dos loops em background (sweep do cache e worker).
"""
import logging
from typing import Optional

from app.core import database
from app.core.clock import Clock, system_clock
from app.core.config import Settings, settings
from app.services.itunes_manager import ITunesManager
from app.services.podcast_queue import (
    InMemoryJobStore,
    JobStore,
    PodcastWorker,
    PostgresJobStore,
)
from app.services.podcast_repository import (
    InMemoryPodcastRepository,
    PodcastRepository,
    PostgresPodcastRepository,
)
from app.services.podcast_service import PodcastService

logger = logging.getLogger(__name__)


class ServiceContainer:
    """Componentes do serviço, montados a partir de Settings."""

    def __init__(
        self,
        app_settings: Optional[Settings] = None,
        clock: Optional[Clock] = None,
        itunes: Optional[ITunesManager] = None,
        job_store: Optional[JobStore] = None,
        repository: Optional[PodcastRepository] = None,
    ):
        self.settings = app_settings or settings
        self.clock = clock or system_clock

        self.itunes = itunes or ITunesManager(app_settings=self.settings, clock=self.clock)

        if self.settings.uses_postgres:
            self.job_store = job_store or PostgresJobStore(max_attempts=self.settings.JOB_MAX_ATTEMPTS)
            self.repository = repository or PostgresPodcastRepository()
        else:
            self.job_store = job_store or InMemoryJobStore(
                max_attempts=self.settings.JOB_MAX_ATTEMPTS, clock=self.clock
            )
            self.repository = repository or InMemoryPodcastRepository(clock=self.clock)

        self.worker = PodcastWorker(
            job_store=self.job_store,
            repository=self.repository,
            batch_size=self.settings.WORKER_BATCH_SIZE,
            poll_interval=self.settings.WORKER_POLL_INTERVAL,
            clock=self.clock,
        )
        self.podcast_service = PodcastService(
            itunes=self.itunes,
            job_store=self.job_store,
            repository=self.repository,
        )
        self._started = False

        logger.info(f"🧩 ServiceContainer montado (storage={self.settings.STORAGE_BACKEND})")

    async def start(self) -> None:
        """Startup: schema (postgres), sweep do cache e worker."""
        if self._started:
            return
        if self.settings.uses_postgres:
            await database.init_schema()
        self.itunes.cache.start()
        await self.worker.start()
        self._started = True
        logger.info("🚀 Loops em background iniciados (cache sweep + worker)")

    async def stop(self) -> None:
        """Shutdown: para loops, drena enfileiramentos, fecha cliente HTTP e pool."""
        if not self._started:
            return
        await self.worker.stop()
        await self.itunes.cache.stop()
        await self.podcast_service.drain()
        await self.itunes.close()
        if self.settings.uses_postgres:
            await database.close_pool()
        self._started = False
        logger.info("🛑 Loops em background parados")


# Singleton
_container: Optional[ServiceContainer] = None


def get_container() -> ServiceContainer:
    """
    Retorna instância singleton do ServiceContainer.

    Returns:
        ServiceContainer: Componentes do serviço
    """
    global _container
    if _container is None:
        _container = ServiceContainer()
    return _container


def set_container(container: Optional[ServiceContainer]) -> None:
    """Substitui o singleton (usado nos testes da API)."""
    global _container
    _container = container


def get_podcast_service() -> PodcastService:
    return get_container().podcast_service
