"""
Conexão assíncrona com PostgreSQL via asyncpg.
"""
import logging
from typing import Optional

import asyncpg
from tenacity import before_sleep_log, retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from app.core.config import settings

logger = logging.getLogger(__name__)

# Pool global de conexões
_pool: Optional[asyncpg.Pool] = None

# DDL idempotente (tabelas de podcasts e da fila de persistência)
SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS podcasts (
    id SERIAL PRIMARY KEY,
    track_id BIGINT NOT NULL UNIQUE,
    track_name VARCHAR(500) NOT NULL,
    artist_name VARCHAR(255),
    collection_name VARCHAR(500),
    artwork_url_60 VARCHAR(1000),
    artwork_url_100 VARCHAR(1000),
    artwork_url_600 VARCHAR(1000),
    feed_url TEXT,
    track_view_url TEXT,
    release_date TIMESTAMPTZ,
    country VARCHAR(10),
    primary_genre_name VARCHAR(100),
    genre_ids TEXT[] NOT NULL DEFAULT '{}',
    genres TEXT[] NOT NULL DEFAULT '{}',
    track_count INTEGER,
    track_explicit_content BOOLEAN NOT NULL DEFAULT FALSE,
    description TEXT,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);
CREATE INDEX IF NOT EXISTS idx_podcasts_primary_genre_name ON podcasts (primary_genre_name);
CREATE INDEX IF NOT EXISTS idx_podcasts_created_at ON podcasts (created_at);

CREATE TABLE IF NOT EXISTS podcast_jobs (
    id SERIAL PRIMARY KEY,
    track_id BIGINT NOT NULL,
    track_name VARCHAR(500) NOT NULL,
    podcast_data JSONB NOT NULL,
    status VARCHAR(20) NOT NULL DEFAULT 'pending',
    attempts INTEGER NOT NULL DEFAULT 0,
    max_attempts INTEGER NOT NULL DEFAULT 3,
    error TEXT,
    last_attempt_at TIMESTAMPTZ,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    completed_at TIMESTAMPTZ
);
CREATE INDEX IF NOT EXISTS idx_podcast_jobs_track_id ON podcast_jobs (track_id);
CREATE INDEX IF NOT EXISTS idx_podcast_jobs_status ON podcast_jobs (status);
CREATE INDEX IF NOT EXISTS idx_podcast_jobs_status_created_at ON podcast_jobs (status, created_at);
"""


@retry(
    retry=retry_if_exception_type((OSError, asyncpg.PostgresError)),
    wait=wait_exponential(multiplier=1, min=1, max=10),
    stop=stop_after_attempt(3),
    before_sleep=before_sleep_log(logger, logging.WARNING),
    reraise=True,
)
async def _create_pool() -> asyncpg.Pool:
    return await asyncpg.create_pool(
        settings.DATABASE_URL,
        min_size=settings.DATABASE_POOL_MIN_SIZE,
        max_size=settings.DATABASE_POOL_MAX_SIZE,
        command_timeout=60,
    )


async def get_pool() -> asyncpg.Pool:
    """
    Retorna pool de conexões (singleton).
    Cria pool na primeira chamada, com retry em falhas de conexão.

    Returns:
        asyncpg.Pool: Pool de conexões assíncrono

    Raises:
        Exception: Se não conseguir criar o pool após as tentativas
    """
    global _pool
    if _pool is None:
        if not settings.DATABASE_URL:
            raise RuntimeError("DATABASE_URL não configurada (STORAGE_BACKEND=postgres)")
        try:
            _pool = await _create_pool()
            logger.info(
                f"✅ Pool asyncpg criado (min={settings.DATABASE_POOL_MIN_SIZE}, "
                f"max={settings.DATABASE_POOL_MAX_SIZE})"
            )
        except Exception as e:
            logger.error(f"❌ Erro ao criar pool asyncpg: {e}")
            raise
    return _pool


async def init_schema() -> None:
    """Aplica o DDL das tabelas (idempotente)."""
    pool = await get_pool()
    async with pool.acquire() as conn:
        await conn.execute(SCHEMA_SQL)
    logger.info("✅ Schema podcasts/podcast_jobs verificado")


async def close_pool():
    """
    Fecha pool de conexões (chamar no shutdown).
    """
    global _pool
    if _pool:
        await _pool.close()
        _pool = None
        logger.info("🔌 Pool asyncpg fechado")


async def test_connection() -> bool:
    """
    Testa a conexão com o banco de dados.

    Returns:
        bool: True se a conexão está funcionando
    """
    try:
        pool = await get_pool()
        async with pool.acquire() as conn:
            result = await conn.fetchval("SELECT 1")
            return result == 1
    except Exception as e:
        logger.error(f"❌ Erro ao testar conexão: {e}")
        return False
