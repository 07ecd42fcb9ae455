"""
Router principal para API v1.
Agrupa todos os endpoints v1 em um único router.
"""
from fastapi import APIRouter

from app.api.v1 import podcasts

# Criar router principal
router = APIRouter()


@router.get("/")
async def v1_root():
    """Endpoint raiz da API v1 - lista endpoints disponíveis"""
    return {
        "version": "v1",
        "status": "ok",
        "endpoints": {
            "search": "GET /podcasts/search?term=...",
            "list": "GET /podcasts",
            "detail": "GET /podcasts/{id}",
            "queue_stats": "GET /podcasts/queue/stats",
            "itunes_status": "GET /podcasts/status",
        },
        "docs": "/docs"
    }


# Incluir todos os routers v1
router.include_router(podcasts.router, tags=["v1-podcasts"])

__all__ = ["router"]
