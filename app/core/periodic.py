"""
Tarefas periódicas em background com ciclo de vida explícito.

Usado pelo sweeper do cache de busca e pelo worker da fila de podcasts.
Cada tick roda em sua própria task: um tick lento não atrasa o relógio do
loop, por isso quem registra o callback é responsável pelo próprio
controle de concorrência (ex: single-flight do worker).
"""
import asyncio
import logging
from typing import Awaitable, Callable, Optional, Set

from app.core.clock import Clock, system_clock

logger = logging.getLogger(__name__)


class PeriodicTask:
    """Loop start/stop que dispara `callback` a cada `interval` segundos."""

    def __init__(
        self,
        name: str,
        interval: float,
        callback: Callable[[], Awaitable[object]],
        clock: Optional[Clock] = None,
    ):
        """
        Args:
            name: Nome para identificação em logs
            interval: Intervalo entre ticks em segundos
            callback: Corrotina executada a cada tick
            clock: Relógio (injetável para testes)
        """
        self.name = name
        self.interval = interval
        self._callback = callback
        self._clock = clock or system_clock

        self._running = False
        self._loop_task: Optional[asyncio.Task] = None
        self._tick_tasks: Set[asyncio.Task] = set()
        self._ticks = 0
        self._errors = 0

    @property
    def running(self) -> bool:
        return self._running

    def start(self) -> None:
        """Inicia o loop (idempotente)."""
        if self._running:
            return

        self._running = True
        self._loop_task = asyncio.create_task(self._loop())
        logger.info(f"⏱️ [{self.name}] Loop periódico iniciado (interval={self.interval}s)")

    async def stop(self, timeout: float = 10.0) -> None:
        """
        Para o loop e aguarda ticks em andamento terminarem.

        Ticks que não terminarem dentro de `timeout` são cancelados.
        """
        if not self._running:
            return

        self._running = False

        if self._loop_task is not None:
            self._loop_task.cancel()
            try:
                await self._loop_task
            except asyncio.CancelledError:
                pass
            self._loop_task = None

        if self._tick_tasks:
            done, pending = await asyncio.wait(list(self._tick_tasks), timeout=timeout)
            for task in pending:
                task.cancel()
            if pending:
                logger.warning(f"⚠️ [{self.name}] {len(pending)} ticks cancelados no shutdown")

        self._tick_tasks.clear()
        logger.info(f"⏱️ [{self.name}] Loop periódico parado ({self._ticks} ticks, {self._errors} erros)")

    async def _loop(self) -> None:
        while self._running:
            await self._clock.sleep(self.interval)
            if not self._running:
                break
            self.trigger()

    def trigger(self) -> asyncio.Task:
        """Dispara um tick imediatamente, fora do ritmo do loop."""
        self._ticks += 1
        task = asyncio.create_task(self._run_tick())
        self._tick_tasks.add(task)
        task.add_done_callback(self._tick_tasks.discard)
        return task

    async def _run_tick(self) -> None:
        try:
            await self._callback()
        except Exception as e:
            self._errors += 1
            logger.error(f"❌ [{self.name}] Erro no tick: {e}", exc_info=True)

    def get_status(self) -> dict:
        return {
            "name": self.name,
            "running": self._running,
            "interval": self.interval,
            "ticks": self._ticks,
            "errors": self._errors,
            "in_flight": len(self._tick_tasks),
        }
