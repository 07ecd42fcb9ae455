"""
Search Cache - Cache de resultados de busca da iTunes API.

Evita chamadas repetidas ao upstream para requisições idênticas dentro do
TTL. A limpeza de entradas expiradas roda em loop periódico próprio, nunca
junto com o atendimento das requisições.
"""

import asyncio
import hashlib
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from app.core.clock import Clock, system_clock
from app.core.periodic import PeriodicTask

logger = logging.getLogger(__name__)


def build_fingerprint(
    term: str,
    country: str,
    entity: str,
    limit: int,
    offset: int,
) -> str:
    """
    Gera chave determinística para uma requisição de busca.

    Termo e país são normalizados (trim + lowercase), então requisições
    logicamente idênticas geram a mesma chave.
    """
    normalized = "|".join([
        term.strip().lower(),
        (country or "").strip().lower(),
        (entity or "").strip().lower(),
        str(int(limit)),
        str(int(offset)),
    ])
    return hashlib.md5(normalized.encode("utf-8")).hexdigest()


@dataclass
class CacheEntry:
    """Entrada do cache de busca."""
    fingerprint: str
    payload: Any
    stored_at: float
    hits: int = 0
    last_access: float = 0.0


class SearchCache:
    """
    Cache com TTL para resultados de busca.

    Features:
    - TTL configurável (entrada válida enquanto idade <= TTL)
    - Entrada expirada é removida no próprio get (miss)
    - Limite máximo de entradas (LRU eviction)
    - Sweep periódico em background
    - Métricas de hit/miss
    """

    def __init__(
        self,
        ttl_seconds: float = 300.0,
        max_entries: int = 1000,
        sweep_interval: float = 600.0,
        clock: Optional[Clock] = None,
    ):
        """
        Args:
            ttl_seconds: Tempo de vida das entradas em segundos
            max_entries: Máximo de entradas no cache
            sweep_interval: Intervalo do sweep de entradas expiradas
            clock: Relógio (injetável para testes)
        """
        self._ttl_seconds = ttl_seconds
        self._max_entries = max_entries
        self._sweep_interval = sweep_interval
        self._clock = clock or system_clock

        self._cache: Dict[str, CacheEntry] = {}
        self._lock = asyncio.Lock()

        # Métricas
        self._hits = 0
        self._misses = 0
        self._evictions = 0
        self._expired = 0

        self._sweeper = PeriodicTask(
            name="search-cache-sweep",
            interval=sweep_interval,
            callback=self.sweep,
            clock=self._clock,
        )

        logger.info(
            f"SearchCache: max={max_entries}, ttl={ttl_seconds}s, "
            f"sweep_interval={sweep_interval}s"
        )

    @property
    def ttl_seconds(self) -> float:
        return self._ttl_seconds

    def __len__(self) -> int:
        return len(self._cache)

    def __contains__(self, fingerprint: str) -> bool:
        return fingerprint in self._cache

    def _is_stale(self, entry: CacheEntry, now: float) -> bool:
        return now - entry.stored_at > self._ttl_seconds

    async def get(self, fingerprint: str) -> Optional[Any]:
        """
        Busca payload no cache.

        Returns:
            Payload ou None se não encontrado/expirado
        """
        async with self._lock:
            entry = self._cache.get(fingerprint)

            if entry is None:
                self._misses += 1
                return None

            now = self._clock.monotonic()
            if self._is_stale(entry, now):
                del self._cache[fingerprint]
                self._expired += 1
                self._misses += 1
                logger.debug(f"[Cache] EXPIRED: {fingerprint[:16]}...")
                return None

            entry.hits += 1
            entry.last_access = now
            self._hits += 1

            logger.debug(f"[Cache] HIT: {fingerprint[:16]}...")
            return entry.payload

    async def put(self, fingerprint: str, payload: Any) -> None:
        """Armazena (ou substitui) o payload com stored_at = agora."""
        async with self._lock:
            if fingerprint not in self._cache and len(self._cache) >= self._max_entries:
                self._evict_lru()

            now = self._clock.monotonic()
            self._cache[fingerprint] = CacheEntry(
                fingerprint=fingerprint,
                payload=payload,
                stored_at=now,
                last_access=now,
            )

            logger.debug(f"[Cache] SET: {fingerprint[:16]}...")

    async def sweep(self) -> int:
        """
        Remove todas as entradas com idade > TTL. Entradas frescas ficam.

        Returns:
            Número de entradas removidas
        """
        async with self._lock:
            now = self._clock.monotonic()
            expired_keys = [
                key for key, entry in self._cache.items()
                if self._is_stale(entry, now)
            ]

            for key in expired_keys:
                del self._cache[key]

            self._expired += len(expired_keys)

        if expired_keys:
            logger.info(f"🧹 [Cache] Sweep: {len(expired_keys)} entradas expiradas removidas")
        return len(expired_keys)

    def _evict_lru(self):
        """Remove entrada menos recentemente usada."""
        if not self._cache:
            return

        lru_key = min(
            self._cache.keys(),
            key=lambda k: self._cache[k].last_access
        )

        del self._cache[lru_key]
        self._evictions += 1
        logger.debug(f"[Cache] LRU eviction: {lru_key[:16]}...")

    async def invalidate(self, fingerprint: str):
        """Invalida entrada específica do cache."""
        async with self._lock:
            if self._cache.pop(fingerprint, None) is not None:
                logger.debug(f"[Cache] Invalidated: {fingerprint[:16]}...")

    async def clear(self):
        """Limpa todo o cache."""
        async with self._lock:
            count = len(self._cache)
            self._cache.clear()
            logger.info(f"[Cache] Cleared: {count} entradas removidas")

    def start(self) -> None:
        """Inicia o sweep periódico."""
        self._sweeper.start()

    async def stop(self) -> None:
        """Para o sweep periódico."""
        await self._sweeper.stop()

    def get_status(self) -> dict:
        """Retorna status e métricas do cache."""
        total_requests = self._hits + self._misses
        hit_rate = self._hits / total_requests if total_requests > 0 else 0

        return {
            "entries": len(self._cache),
            "max_entries": self._max_entries,
            "hits": self._hits,
            "misses": self._misses,
            "hit_rate": f"{hit_rate:.1%}",
            "evictions": self._evictions,
            "expired": self._expired,
            "sweeper": self._sweeper.get_status(),
            "config": {
                "ttl_seconds": self._ttl_seconds,
                "sweep_interval": self._sweep_interval,
            },
        }
