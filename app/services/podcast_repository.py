"""
Repositório de podcasts persistidos.

Upsert por track_id (cria se não existe, atualiza se existe): reprocessar o
mesmo item nunca gera duplicata.
"""
import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Dict, List, Optional, Sequence, Set, Tuple

from app.core.clock import Clock, system_clock
from app.core.database import get_pool
from app.schemas.podcast import Podcast

logger = logging.getLogger(__name__)

# Colunas gravadas no upsert (id e timestamps ficam por conta do banco)
_UPSERT_COLUMNS = [
    "track_id", "track_name", "artist_name", "collection_name",
    "artwork_url_60", "artwork_url_100", "artwork_url_600",
    "feed_url", "track_view_url", "release_date", "country",
    "primary_genre_name", "genre_ids", "genres", "track_count",
    "track_explicit_content", "description",
]

# Campos considerados no fallback de busca textual
TEXT_SEARCH_FIELDS = ("track_name", "artist_name", "description")


def _escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


class PodcastRepository(ABC):
    """Contrato do store de podcasts persistidos."""

    @abstractmethod
    async def find_by_track_id(self, track_id: int) -> Optional[Podcast]:
        """Busca podcast pela chave externa."""

    @abstractmethod
    async def find_by_id(self, podcast_id: int) -> Optional[Podcast]:
        """Busca podcast pelo id interno."""

    @abstractmethod
    async def upsert(self, podcast: Podcast) -> Podcast:
        """Cria ou atualiza pelo track_id. Retorna o registro gravado."""

    @abstractmethod
    async def exists_any(self, track_ids: Sequence[int]) -> Set[int]:
        """Subconjunto de track_ids que já estão persistidos."""

    @abstractmethod
    async def text_search(self, query: str, limit: int = 20, offset: int = 0) -> Tuple[List[Podcast], int]:
        """
        Busca textual best-effort (case-insensitive, substring) em
        track_name / artist_name / description.

        Returns:
            (página de podcasts, total de matches)
        """

    @abstractmethod
    async def find_all(self, limit: int = 20, offset: int = 0) -> Tuple[List[Podcast], int]:
        """Lista paginada, mais recentes primeiro."""


class InMemoryPodcastRepository(PodcastRepository):
    """Repositório em memória (desenvolvimento local e testes)."""

    def __init__(self, clock: Optional[Clock] = None):
        self._clock = clock or system_clock
        self._by_track_id: Dict[int, Podcast] = {}
        self._next_id = 1
        self._lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self._by_track_id)

    async def find_by_track_id(self, track_id: int) -> Optional[Podcast]:
        return self._by_track_id.get(track_id)

    async def find_by_id(self, podcast_id: int) -> Optional[Podcast]:
        for podcast in self._by_track_id.values():
            if podcast.id == podcast_id:
                return podcast
        return None

    async def upsert(self, podcast: Podcast) -> Podcast:
        async with self._lock:
            now = self._clock.utcnow()
            existing = self._by_track_id.get(podcast.track_id)
            if existing:
                saved = podcast.model_copy(update={
                    "id": existing.id,
                    "created_at": existing.created_at,
                    "updated_at": now,
                })
                logger.debug(f"Podcast atualizado: {saved.track_name}")
            else:
                saved = podcast.model_copy(update={
                    "id": self._next_id,
                    "created_at": now,
                    "updated_at": now,
                })
                self._next_id += 1
                logger.debug(f"Podcast criado: {saved.track_name}")
            self._by_track_id[saved.track_id] = saved
            return saved

    async def exists_any(self, track_ids: Sequence[int]) -> Set[int]:
        return {track_id for track_id in track_ids if track_id in self._by_track_id}

    def _newest_first(self, podcasts: List[Podcast]) -> List[Podcast]:
        return sorted(podcasts, key=lambda p: p.id or 0, reverse=True)

    async def text_search(self, query: str, limit: int = 20, offset: int = 0) -> Tuple[List[Podcast], int]:
        needle = query.strip().lower()
        matches = [
            podcast for podcast in self._by_track_id.values()
            if any(needle in (getattr(podcast, field) or "").lower() for field in TEXT_SEARCH_FIELDS)
        ]
        matches = self._newest_first(matches)
        return matches[offset:offset + limit], len(matches)

    async def find_all(self, limit: int = 20, offset: int = 0) -> Tuple[List[Podcast], int]:
        podcasts = self._newest_first(list(self._by_track_id.values()))
        return podcasts[offset:offset + limit], len(podcasts)


class PostgresPodcastRepository(PodcastRepository):
    """Repositório sobre a tabela podcasts (asyncpg)."""

    async def find_by_track_id(self, track_id: int) -> Optional[Podcast]:
        pool = await get_pool()
        async with pool.acquire() as conn:
            row = await conn.fetchrow("SELECT * FROM podcasts WHERE track_id = $1", track_id)
            return Podcast(**dict(row)) if row else None

    async def find_by_id(self, podcast_id: int) -> Optional[Podcast]:
        pool = await get_pool()
        async with pool.acquire() as conn:
            row = await conn.fetchrow("SELECT * FROM podcasts WHERE id = $1", podcast_id)
            return Podcast(**dict(row)) if row else None

    async def upsert(self, podcast: Podcast) -> Podcast:
        values = [getattr(podcast, column) for column in _UPSERT_COLUMNS]
        columns = ", ".join(_UPSERT_COLUMNS)
        placeholders = ", ".join(f"${i}" for i in range(1, len(_UPSERT_COLUMNS) + 1))
        updates = ", ".join(
            f"{column} = EXCLUDED.{column}" for column in _UPSERT_COLUMNS if column != "track_id"
        )

        pool = await get_pool()
        async with pool.acquire() as conn:
            row = await conn.fetchrow(
                f"""
                INSERT INTO podcasts ({columns})
                VALUES ({placeholders})
                ON CONFLICT (track_id) DO UPDATE
                SET {updates}, updated_at = NOW()
                RETURNING *
                """,
                *values,
            )
        saved = Podcast(**dict(row))
        logger.debug(f"✅ Podcast gravado: id={saved.id}, track_id={saved.track_id}")
        return saved

    async def exists_any(self, track_ids: Sequence[int]) -> Set[int]:
        if not track_ids:
            return set()
        pool = await get_pool()
        async with pool.acquire() as conn:
            rows = await conn.fetch(
                "SELECT track_id FROM podcasts WHERE track_id = ANY($1::bigint[])",
                list(track_ids),
            )
            return {row["track_id"] for row in rows}

    async def text_search(self, query: str, limit: int = 20, offset: int = 0) -> Tuple[List[Podcast], int]:
        pattern = f"%{_escape_like(query.strip())}%"
        where = "track_name ILIKE $1 OR artist_name ILIKE $1 OR description ILIKE $1"
        pool = await get_pool()
        async with pool.acquire() as conn:
            rows = await conn.fetch(
                f"""
                SELECT * FROM podcasts
                WHERE {where}
                ORDER BY created_at DESC, id DESC
                LIMIT $2 OFFSET $3
                """,
                pattern,
                limit,
                offset,
            )
            # total separado: uma página além do fim ainda informa o total real
            total = await conn.fetchval(f"SELECT COUNT(*) FROM podcasts WHERE {where}", pattern)
        return [Podcast(**dict(row)) for row in rows], total or 0

    async def find_all(self, limit: int = 20, offset: int = 0) -> Tuple[List[Podcast], int]:
        pool = await get_pool()
        async with pool.acquire() as conn:
            rows = await conn.fetch(
                """
                SELECT * FROM podcasts
                ORDER BY created_at DESC, id DESC
                LIMIT $1 OFFSET $2
                """,
                limit,
                offset,
            )
            total = await conn.fetchval("SELECT COUNT(*) FROM podcasts")
        return [Podcast(**dict(row)) for row in rows], total or 0
