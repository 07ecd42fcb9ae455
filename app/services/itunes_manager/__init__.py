"""
iTunes Manager - Controle da API externa de busca de podcasts.

Este módulo centraliza todo o controle de infraestrutura para a busca:
- Cliente da iTunes Search API (retry classificado, backoff exponencial)
- Cache de buscas recentes (TTL + sweep periódico)
- Rate limiting de saída (20 req/s por padrão)

A lógica de negócio (o que é novo, fallback local) fica em
app/services/podcast_service.py
"""

from .itunes_manager import (
    ITunesManager,
    is_rate_limited,
)
from .search_cache import (
    CacheEntry,
    SearchCache,
    build_fingerprint,
)
from .rate_limiter import (
    FixedWindowRateLimiter,
)

__all__ = [
    # iTunes
    "ITunesManager",
    "is_rate_limited",
    # Cache
    "CacheEntry",
    "SearchCache",
    "build_fingerprint",
    # Rate Limiter
    "FixedWindowRateLimiter",
]
