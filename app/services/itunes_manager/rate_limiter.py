"""
Rate Limiter para a iTunes Search API - Controle de taxa de requisições.

Implementa janela fixa de 1 segundo: no máximo N requisições iniciadas por
janela. Quando a janela está cheia, o chamador espera o restante da janela
(nunca é rejeitado).

Diferente de semáforo, que controla concorrência, aqui controlamos a TAXA.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Optional

from app.core.clock import Clock, system_clock

logger = logging.getLogger(__name__)

WINDOW_SECONDS = 1.0


@dataclass
class RateWindow:
    """Estado da janela atual."""
    window_start: Optional[float] = None
    count_in_window: int = 0


@dataclass
class RateLimiterMetrics:
    """Métricas do rate limiter."""
    total_acquired: int = 0
    total_waited: int = 0
    total_wait_time_ms: float = 0

    @property
    def avg_wait_time_ms(self) -> float:
        if self.total_waited == 0:
            return 0
        return self.total_wait_time_ms / self.total_waited


class FixedWindowRateLimiter:
    """
    Rate Limiter de janela fixa (N req/s).

    O check-and-increment da janela roda sob `asyncio.Lock`: nenhuma outra
    chamada de acquire observa ou altera a janela entre a verificação e o
    incremento. A espera forçada também acontece sob o lock, então chamadas
    concorrentes entram na fila e encontram a janela já reiniciada.
    """

    def __init__(
        self,
        max_per_second: int = 20,
        name: str = "itunes",
        clock: Optional[Clock] = None,
    ):
        """
        Args:
            max_per_second: Máximo de requisições iniciadas por janela de 1s
            name: Nome para identificação em logs
            clock: Relógio (injetável para testes)
        """
        if max_per_second < 1:
            raise ValueError("max_per_second deve ser >= 1")

        self.max_per_second = max_per_second
        self.name = name
        self._clock = clock or system_clock

        self._window = RateWindow()
        self._lock = asyncio.Lock()
        self._metrics = RateLimiterMetrics()

        logger.info(f"🚦 FixedWindowRateLimiter[{name}]: max={max_per_second}/s")

    async def acquire(self) -> float:
        """
        Adquire permissão para uma requisição. Pode suspender, nunca rejeita.

        Returns:
            Segundos esperados por causa do limite (0.0 se passou direto)
        """
        async with self._lock:
            now = self._clock.monotonic()
            if self._window.window_start is None or now - self._window.window_start >= WINDOW_SECONDS:
                self._window.window_start = now
                self._window.count_in_window = 0

            waited = 0.0
            if self._window.count_in_window >= self.max_per_second:
                waited = WINDOW_SECONDS - (now - self._window.window_start)
                logger.debug(
                    f"⏳ RateLimiter[{self.name}]: janela cheia "
                    f"({self._window.count_in_window}/{self.max_per_second}), aguardando {waited:.3f}s"
                )
                await self._clock.sleep(waited)
                self._window.window_start = self._clock.monotonic()
                self._window.count_in_window = 0

                self._metrics.total_waited += 1
                self._metrics.total_wait_time_ms += waited * 1000

            self._window.count_in_window += 1
            self._metrics.total_acquired += 1
            return waited

    @property
    def count_in_window(self) -> int:
        return self._window.count_in_window

    def get_status(self) -> dict:
        """Retorna status e métricas do rate limiter."""
        return {
            "name": self.name,
            "max_per_second": self.max_per_second,
            "count_in_window": self._window.count_in_window,
            "metrics": {
                "total_acquired": self._metrics.total_acquired,
                "total_waited": self._metrics.total_waited,
                "avg_wait_time_ms": round(self._metrics.avg_wait_time_ms, 2),
            },
        }
