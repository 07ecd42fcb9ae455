"""
Relógio injetável.

Todo acesso a tempo (monotônico, UTC e sleep) do cliente iTunes, do cache,
do rate limiter e do worker passa por aqui, para que os testes simulem
tempo decorrido sem esperas reais.
"""
import asyncio
import time
from datetime import datetime, timezone


class Clock:
    """Relógio do sistema (implementação de produção)."""

    def monotonic(self) -> float:
        """Segundos monotônicos, usados para janelas, TTLs e latências."""
        return time.monotonic()

    def utcnow(self) -> datetime:
        """Data/hora UTC usada nos timestamps dos jobs."""
        return datetime.now(timezone.utc)

    async def sleep(self, seconds: float) -> None:
        await asyncio.sleep(max(0.0, seconds))


system_clock = Clock()
