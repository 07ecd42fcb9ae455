"""
iTunes Manager - Cliente resiliente da iTunes Search API.

Controla:
- Cliente HTTP com connection pooling (httpx)
- Cache de respostas por fingerprint da requisição (TTL)
- Rate limiting de saída por janela fixa (N req/s)
- Classificação de falhas e retry:
    * rate limit (3xx, 429, 503, quota zerada, Retry-After) -> backoff exponencial
    * falha de rede sem resposta -> delay fixo
    * qualquer outra falha -> erro imediato
- Métricas de uso da API

Os retries ficam inteiramente aqui dentro: quem chama só vê sucesso ou um
erro já classificado (RateLimitedError, UpstreamUnavailableError,
InternalSearchError).
"""

import asyncio
import logging
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any, Dict, Optional

import httpx
from pydantic import ValidationError

from app.core.clock import Clock, system_clock
from app.core.config import Settings, settings
from app.core.constants import (
    DEFAULT_COUNTRY,
    DEFAULT_LIMIT,
    DEFAULT_OFFSET,
    ITUNES_ENTITY,
    ITUNES_MEDIA,
    ITUNES_SEARCH_PATH,
    ITUNES_USER_AGENT,
    RATE_LIMIT_REMAINING_HEADERS,
    RATE_LIMIT_STATUS_CODES,
    RETRY_AFTER_HEADER,
)
from app.core.exceptions import (
    InternalSearchError,
    RateLimitedError,
    UpstreamUnavailableError,
)
from app.schemas.podcast import ITunesSearchResponse
from .rate_limiter import FixedWindowRateLimiter
from .search_cache import SearchCache, build_fingerprint

logger = logging.getLogger(__name__)


def _parse_retry_after(header_value: Optional[str], max_seconds: float = 60.0) -> Optional[float]:
    """
    Parseia o header Retry-After conforme RFC 7231.

    Pode ser:
    - Número em segundos (ex: "120")
    - HTTP-date (ex: "Wed, 21 Oct 2015 07:28:00 GMT")

    Returns:
        Segundos indicados pelo upstream, ou None se inválido/não presente.
        Limitado a max_seconds.
    """
    if not header_value or not header_value.strip():
        return None
    val = header_value.strip()
    try:
        seconds = float(val)
        return min(seconds, max_seconds) if seconds > 0 else None
    except ValueError:
        pass
    try:
        retry_dt = parsedate_to_datetime(val)
        if retry_dt.tzinfo is None:
            retry_dt = retry_dt.replace(tzinfo=timezone.utc)
        delta = (retry_dt - datetime.now(timezone.utc)).total_seconds()
        return min(delta, max_seconds) if delta > 0 else None
    except (ValueError, TypeError):
        return None


def is_rate_limited(response: httpx.Response) -> bool:
    """
    Decide se a resposta do upstream sinaliza throttling.

    Redirects (3xx) são tratados como rate limit sem inspecionar o destino:
    o iTunes redireciona clientes limitados em vez de responder 429.
    """
    if response.is_redirect or 300 <= response.status_code < 400:
        return True
    if response.status_code in RATE_LIMIT_STATUS_CODES:
        return True
    for header in RATE_LIMIT_REMAINING_HEADERS:
        remaining = response.headers.get(header)
        if remaining is not None and remaining.strip() == "0":
            return True
    return RETRY_AFTER_HEADER in response.headers


class ITunesManager:
    """
    Gerenciador centralizado da iTunes Search API.

    Uma instância por processo, construída uma vez e injetada onde for
    necessária. Cache e rate limiter são estado desta instância.
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        request_timeout: Optional[float] = None,
        retry_attempts: Optional[int] = None,
        retry_delay: Optional[float] = None,
        rate_limit_retry_attempts: Optional[int] = None,
        backoff_multiplier: Optional[float] = None,
        max_backoff_delay: Optional[float] = None,
        rate_limiter: Optional[FixedWindowRateLimiter] = None,
        cache: Optional[SearchCache] = None,
        clock: Optional[Clock] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        app_settings: Optional[Settings] = None,
    ):
        """
        Args:
            base_url: URL base da API (default: settings.ITUNES_API_URL)
            request_timeout: Timeout por requisição em segundos
            retry_attempts: Máximo de tentativas para falhas de rede
            retry_delay: Delay fixo entre tentativas de rede; também é o delay
                base do backoff de rate limit
            rate_limit_retry_attempts: Máximo de tentativas sob rate limit
            backoff_multiplier: Multiplicador do backoff exponencial
            max_backoff_delay: Teto do backoff em segundos
            rate_limiter: Rate limiter de saída (default: criado pela config)
            cache: Cache de respostas (default: criado pela config)
            clock: Relógio (injetável para testes)
            transport: Transport httpx (injetável para testes)
            app_settings: Configuração usada para os defaults
        """
        cfg = app_settings or settings
        self._base_url = base_url if base_url is not None else cfg.ITUNES_API_URL
        self._request_timeout = request_timeout if request_timeout is not None else cfg.ITUNES_API_TIMEOUT
        self._retry_attempts = retry_attempts if retry_attempts is not None else cfg.ITUNES_API_RETRY_ATTEMPTS
        self._retry_delay = retry_delay if retry_delay is not None else cfg.ITUNES_API_RETRY_DELAY
        self._rate_limit_retry_attempts = (
            rate_limit_retry_attempts if rate_limit_retry_attempts is not None
            else cfg.ITUNES_RATE_LIMIT_RETRY_ATTEMPTS
        )
        self._backoff_multiplier = (
            backoff_multiplier if backoff_multiplier is not None
            else cfg.ITUNES_RATE_LIMIT_BACKOFF_MULTIPLIER
        )
        self._max_backoff_delay = (
            max_backoff_delay if max_backoff_delay is not None
            else cfg.ITUNES_RATE_LIMIT_MAX_DELAY
        )

        self._clock = clock or system_clock
        self._transport = transport

        self._rate_limiter = rate_limiter or FixedWindowRateLimiter(
            max_per_second=cfg.ITUNES_MAX_REQUESTS_PER_SECOND,
            name="itunes",
            clock=self._clock,
        )
        self._cache = cache or SearchCache(
            ttl_seconds=cfg.SEARCH_CACHE_TTL,
            max_entries=cfg.SEARCH_CACHE_MAX_ENTRIES,
            sweep_interval=cfg.SEARCH_CACHE_SWEEP_INTERVAL,
            clock=self._clock,
        )

        self._client: Optional[httpx.AsyncClient] = None
        self._client_lock = asyncio.Lock()

        # Métricas
        self._total_requests = 0
        self._successful_requests = 0
        self._failed_requests = 0
        self._rate_limited_requests = 0
        self._network_errors = 0
        self._cache_hits = 0
        self._total_latency_ms = 0.0

        logger.info(
            f"ITunesManager: url={self._base_url}, timeout={self._request_timeout}s, "
            f"retries={self._retry_attempts}x{self._retry_delay}s, "
            f"rate_limit_retries={self._rate_limit_retry_attempts} (x{self._backoff_multiplier}, "
            f"max={self._max_backoff_delay}s)"
        )

    @property
    def cache(self) -> SearchCache:
        return self._cache

    @property
    def rate_limiter(self) -> FixedWindowRateLimiter:
        return self._rate_limiter

    def backoff_delay(self, attempt: int) -> float:
        """Delay antes do retry após a tentativa `attempt` (1-indexed) sob rate limit."""
        delay = self._retry_delay * (self._backoff_multiplier ** (attempt - 1))
        return min(delay, self._max_backoff_delay)

    async def _get_client(self) -> httpx.AsyncClient:
        """Retorna cliente HTTP com connection pooling (lazy initialization)."""
        async with self._client_lock:
            if self._client is None or self._client.is_closed:
                self._client = httpx.AsyncClient(
                    base_url=self._base_url,
                    timeout=httpx.Timeout(self._request_timeout),
                    limits=httpx.Limits(
                        max_keepalive_connections=20,
                        max_connections=100,
                        keepalive_expiry=30.0
                    ),
                    headers={
                        "Accept": "application/json",
                        "User-Agent": ITUNES_USER_AGENT,
                    },
                    follow_redirects=False,
                    transport=self._transport,
                )
                logger.info(f"🌐 iTunes: Cliente HTTP criado ({self._base_url})")
        return self._client

    async def close(self):
        """Fecha o cliente HTTP."""
        async with self._client_lock:
            if self._client and not self._client.is_closed:
                await self._client.aclose()
                self._client = None
                logger.info("🌐 iTunes: Cliente HTTP fechado")

    async def search(
        self,
        term: str,
        country: str = DEFAULT_COUNTRY,
        entity: str = ITUNES_ENTITY,
        limit: int = DEFAULT_LIMIT,
        offset: int = DEFAULT_OFFSET,
    ) -> ITunesSearchResponse:
        """
        Busca podcasts na iTunes Search API.

        Fluxo:
        1. Cache hit -> retorna imediatamente (sem rate limiter, sem upstream)
        2. Cache miss -> rate limiter + requisição com retry classificado
        3. Sucesso -> grava no cache

        Raises:
            RateLimitedError: Rate limit persistiu após todas as tentativas
            UpstreamUnavailableError: Falhas de rede esgotaram as tentativas
            InternalSearchError: Falha não-retentável
        """
        fingerprint = build_fingerprint(term, country, entity, limit, offset)

        cached = await self._cache.get(fingerprint)
        if cached is not None:
            self._cache_hits += 1
            logger.debug(f"💾 iTunes: cache hit para term='{term[:50]}'")
            return cached

        params: Dict[str, Any] = {
            "term": term,
            "country": country,
            "media": ITUNES_MEDIA,
            "entity": entity,
            "limit": limit,
            "offset": offset,
        }

        result = await self._search_with_retry(params)
        await self._cache.put(fingerprint, result)
        return result

    async def _search_with_retry(self, params: Dict[str, Any]) -> ITunesSearchResponse:
        """
        Executa a requisição com retry.

        Os contadores de tentativas de rate limit e de rede são independentes:
        uma falha de um tipo não consome tentativas do outro.
        """
        client = await self._get_client()
        term = str(params.get("term", ""))[:50]
        rate_limit_attempts = 0
        network_attempts = 0

        while True:
            await self._rate_limiter.acquire()

            start_time = self._clock.monotonic()
            self._total_requests += 1
            try:
                response = await client.get(ITUNES_SEARCH_PATH, params=params)
            except httpx.TransportError as e:
                network_attempts += 1
                self._network_errors += 1
                last_error = str(e) if str(e) else type(e).__name__

                if network_attempts >= self._retry_attempts:
                    self._failed_requests += 1
                    logger.error(
                        f"❌ iTunes falhou após {network_attempts} tentativas de rede: "
                        f"[{type(e).__name__}] {last_error}"
                    )
                    raise UpstreamUnavailableError(
                        "iTunes API is unreachable",
                        details={"attempts": network_attempts, "error": last_error},
                    ) from e

                logger.warning(
                    f"⚠️ iTunes {type(e).__name__}: {last_error}, "
                    f"tentativa {network_attempts}/{self._retry_attempts}, "
                    f"retry em {self._retry_delay:.1f}s"
                )
                await self._clock.sleep(self._retry_delay)
                continue
            except Exception as e:
                self._failed_requests += 1
                logger.error(f"❌ iTunes erro inesperado: {type(e).__name__}: {e}", exc_info=True)
                raise InternalSearchError("An unexpected error occurred") from e

            latency_ms = (self._clock.monotonic() - start_time) * 1000
            self._total_latency_ms += latency_ms

            if is_rate_limited(response):
                rate_limit_attempts += 1
                self._rate_limited_requests += 1
                delay = self.backoff_delay(rate_limit_attempts)
                upstream_hint = _parse_retry_after(
                    response.headers.get(RETRY_AFTER_HEADER), self._max_backoff_delay
                )
                hint = f", Retry-After upstream: {upstream_hint:.1f}s" if upstream_hint else ""

                if rate_limit_attempts >= self._rate_limit_retry_attempts:
                    self._failed_requests += 1
                    logger.error(
                        f"❌ iTunes rate limit ({response.status_code}) persistiu após "
                        f"{rate_limit_attempts} tentativas (term='{term}'){hint}"
                    )
                    raise RateLimitedError(
                        "iTunes API rate limit exceeded",
                        retry_after=delay,
                        attempts=rate_limit_attempts,
                    )

                logger.warning(
                    f"⚠️ iTunes rate limit ({response.status_code}), "
                    f"tentativa {rate_limit_attempts}/{self._rate_limit_retry_attempts}, "
                    f"backoff {delay:.1f}s{hint}"
                )
                await self._clock.sleep(delay)
                continue

            if not response.is_success:
                self._failed_requests += 1
                logger.error(f"❌ iTunes status inesperado: {response.status_code} (term='{term}')")
                raise InternalSearchError(
                    "Failed to fetch data from iTunes API",
                    details={"status_code": response.status_code},
                )

            try:
                data = ITunesSearchResponse.model_validate(response.json())
            except (ValueError, ValidationError) as e:
                self._failed_requests += 1
                logger.error(f"❌ iTunes corpo de resposta inválido: {e}")
                raise InternalSearchError("Invalid response body from iTunes API") from e

            self._successful_requests += 1
            logger.info(
                f"✅ iTunes: {data.result_count} resultados para term='{term}' "
                f"({latency_ms:.0f}ms, rate_limit_retries={rate_limit_attempts}, "
                f"network_retries={network_attempts})"
            )
            return data

    def get_status(self) -> dict:
        """Retorna status e métricas."""
        avg_latency = 0.0
        if self._successful_requests > 0:
            avg_latency = self._total_latency_ms / self._successful_requests

        success_rate = 0.0
        if self._total_requests > 0:
            success_rate = self._successful_requests / self._total_requests

        return {
            "total_requests": self._total_requests,
            "successful_requests": self._successful_requests,
            "failed_requests": self._failed_requests,
            "rate_limited_requests": self._rate_limited_requests,
            "network_errors": self._network_errors,
            "cache_hits": self._cache_hits,
            "success_rate": f"{success_rate:.1%}",
            "avg_latency_ms": round(avg_latency, 2),
            "rate_limiter": self._rate_limiter.get_status(),
            "cache": self._cache.get_status(),
            "config": {
                "base_url": self._base_url,
                "request_timeout": self._request_timeout,
                "retry_attempts": self._retry_attempts,
                "retry_delay": self._retry_delay,
                "rate_limit_retry_attempts": self._rate_limit_retry_attempts,
                "backoff_multiplier": self._backoff_multiplier,
                "max_backoff_delay": self._max_backoff_delay,
            }
        }
