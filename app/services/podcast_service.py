"""
Podcast Service - Orquestra a busca de podcasts.

1. Busca no iTunes (cache / rate limit / retry ficam no ITunesManager)
2. Retorna os itens imediatamente para quem chamou
3. Em background, filtra o que é novo (nem persistido nem na fila) e enfileira
4. Se o iTunes estiver limitando ou fora do ar, responde com busca local
"""
import asyncio
import logging
from typing import List, Optional, Sequence, Set

from app.core.constants import (
    DEFAULT_COUNTRY,
    DEFAULT_LIMIT,
    DEFAULT_OFFSET,
    ITUNES_ENTITY,
    SOURCE_ITUNES,
    SOURCE_LOCAL,
)
from app.core.exceptions import NotFoundError, RateLimitedError, UpstreamUnavailableError
from app.schemas.podcast import ITunesPodcast, JobStats, Podcast, PodcastListResponse
from app.services.itunes_manager import ITunesManager
from app.services.podcast_queue import JobStore
from app.services.podcast_repository import PodcastRepository

logger = logging.getLogger(__name__)


class PodcastService:
    """Busca, listagem e enfileiramento de podcasts."""

    def __init__(
        self,
        itunes: ITunesManager,
        job_store: JobStore,
        repository: PodcastRepository,
    ):
        self._itunes = itunes
        self._job_store = job_store
        self._repository = repository
        self._background: Set[asyncio.Task] = set()

    async def search(
        self,
        term: str,
        country: str = DEFAULT_COUNTRY,
        limit: int = DEFAULT_LIMIT,
        offset: int = DEFAULT_OFFSET,
        entity: str = ITUNES_ENTITY,
    ) -> PodcastListResponse:
        """
        Busca podcasts no iTunes, com fallback local.

        Raises:
            InternalSearchError: Falha não-retentável do upstream (não há fallback)
        """
        logger.debug(f"🔍 Buscando podcasts: term='{term}', country={country}")

        try:
            response = await self._itunes.search(
                term=term, country=country, entity=entity, limit=limit, offset=offset
            )
        except (RateLimitedError, UpstreamUnavailableError) as e:
            logger.warning(f"⚠️ iTunes indisponível ({e.code}), usando busca local para term='{term}'")
            podcasts, total = await self._repository.text_search(term, limit=limit, offset=offset)
            return PodcastListResponse(
                items=podcasts,
                total_count=total,
                limit=limit,
                offset=offset,
                source=SOURCE_LOCAL,
            )

        self._schedule_enqueue(response.results)

        items = []
        for result in response.results:
            if result.track_id is None:
                continue
            items.append(Podcast.from_itunes(result))

        return PodcastListResponse(
            items=items,
            total_count=response.result_count,
            limit=limit,
            offset=offset,
            source=SOURCE_ITUNES,
        )

    def _schedule_enqueue(self, results: Sequence[ITunesPodcast]) -> None:
        """Dispara o enfileiramento em background. Quem chamou não espera."""
        if not results:
            return
        task = asyncio.create_task(self._enqueue_new(list(results)))
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _enqueue_new(self, results: List[ITunesPodcast]) -> int:
        """
        Enfileira apenas os podcasts realmente novos.

        Um track_id é novo se não está persistido, não tem job
        pending/processing/completed e não apareceu antes no mesmo resultado.
        """
        try:
            unique = {}
            for result in results:
                if result.track_id is not None and result.track_id not in unique:
                    unique[result.track_id] = result

            if not unique:
                return 0

            track_ids = list(unique.keys())
            persisted = await self._repository.exists_any(track_ids)
            remaining = [track_id for track_id in track_ids if track_id not in persisted]
            queued = await self._job_store.existing_ids_for(remaining)

            new_items = [unique[track_id] for track_id in remaining if track_id not in queued]
            if not new_items:
                logger.debug(f"Nenhum podcast novo ({len(persisted)} persistidos, {len(queued)} na fila)")
                return 0

            created = await self._job_store.enqueue_many(new_items)
            logger.info(
                f"📥 {len(created)} podcasts enfileirados "
                f"({len(track_ids)} retornados, {len(persisted)} já persistidos, {len(queued)} já na fila)"
            )
            return len(created)
        except Exception as e:
            logger.error(f"❌ Erro ao enfileirar podcasts: {e}", exc_info=True)
            return 0

    async def drain(self) -> None:
        """Aguarda os enfileiramentos em background pendentes."""
        if self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    async def find_all(self, limit: int = DEFAULT_LIMIT, offset: int = DEFAULT_OFFSET) -> PodcastListResponse:
        """Lista podcasts persistidos, mais recentes primeiro."""
        podcasts, total = await self._repository.find_all(limit=limit, offset=offset)
        return PodcastListResponse(
            items=podcasts,
            total_count=total,
            limit=limit,
            offset=offset,
            source=SOURCE_LOCAL,
        )

    async def find_one(self, podcast_id: int) -> Podcast:
        """
        Raises:
            NotFoundError: Se não existir podcast com esse id
        """
        podcast = await self._repository.find_by_id(podcast_id)
        if podcast is None:
            raise NotFoundError(f"Podcast not found with id: {podcast_id}")
        return podcast

    async def queue_stats(self) -> JobStats:
        return await self._job_store.stats()

    @property
    def pending_background_tasks(self) -> int:
        return len(self._background)
