"""
Endpoints de podcasts v1 - Busca no iTunes com fallback local e listagem.
"""
import logging
from typing import Annotated

from fastapi import APIRouter, Depends, Query

from app.core.constants import DEFAULT_LIMIT, DEFAULT_OFFSET, MAX_LIMIT
from app.schemas.common import success_response
from app.schemas.podcast import PodcastSearchRequest
from app.services.container import ServiceContainer, get_container, get_podcast_service
from app.services.podcast_service import PodcastService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/podcasts")


@router.get("/search")
async def search_podcasts(
    params: Annotated[PodcastSearchRequest, Query()],
    service: PodcastService = Depends(get_podcast_service),
):
    """
    Busca podcasts na iTunes Search API.

    Retorna os resultados imediatamente; podcasts novos são enfileirados
    para persistência em background. Se o iTunes estiver limitando ou fora
    do ar, responde com a busca no banco local (source='local').
    """
    logger.info(f"📥 Busca recebida: term='{params.term}', country={params.country}")
    result = await service.search(
        term=params.term,
        country=params.country,
        limit=params.limit,
        offset=params.offset,
        entity=params.entity,
    )
    return success_response(result.model_dump(mode="json"))


@router.get("/queue/stats")
async def queue_stats(container: ServiceContainer = Depends(get_container)):
    """Contagem de jobs da fila de persistência + status do worker."""
    stats = await container.podcast_service.queue_stats()
    return success_response({
        "queue": stats.model_dump(),
        "worker": container.worker.get_status(),
    })


@router.get("/status")
async def itunes_status(container: ServiceContainer = Depends(get_container)):
    """Métricas do cliente iTunes (cache, rate limiter, retries)."""
    return success_response(container.itunes.get_status())


@router.get("")
async def list_podcasts(
    limit: int = Query(DEFAULT_LIMIT, ge=1, le=MAX_LIMIT),
    offset: int = Query(DEFAULT_OFFSET, ge=0),
    service: PodcastService = Depends(get_podcast_service),
):
    """Lista podcasts persistidos, mais recentes primeiro."""
    result = await service.find_all(limit=limit, offset=offset)
    return success_response(result.model_dump(mode="json"))


@router.get("/{podcast_id}")
async def get_podcast(
    podcast_id: int,
    service: PodcastService = Depends(get_podcast_service),
):
    """Busca um podcast persistido pelo id (404 se não existir)."""
    podcast = await service.find_one(podcast_id)
    return success_response(podcast.model_dump(mode="json"))
