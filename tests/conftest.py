"""
Fixtures compartilhadas dos testes.

Tudo roda em memória: o upstream do iTunes é um httpx.MockTransport roteirizado
e o tempo é um relógio falso (sleep avança o relógio na hora, sem espera real).
"""
import asyncio
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

import httpx
import pytest

from app.core.clock import Clock
from app.services.itunes_manager import FixedWindowRateLimiter, ITunesManager, SearchCache
from app.services.podcast_queue import InMemoryJobStore
from app.services.podcast_repository import InMemoryPodcastRepository


class FakeClock(Clock):
    """Relógio controlado pelo teste. Registra cada sleep pedido."""

    def __init__(self, start: float = 1000.0):
        self.now = start
        self.sleeps: List[float] = []
        self._epoch = datetime(2024, 1, 1, tzinfo=timezone.utc)

    def monotonic(self) -> float:
        return self.now

    def utcnow(self) -> datetime:
        return self._epoch + timedelta(seconds=self.now)

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += max(0.0, seconds)
        await asyncio.sleep(0)

    def advance(self, seconds: float) -> None:
        self.now += seconds


class ScriptedUpstream:
    """
    Handler do MockTransport que responde em sequência.

    Cada passo é um httpx.Response ou uma exceção a levantar. O último passo
    se repete quando o roteiro acaba.
    """

    def __init__(self, *steps):
        self.steps = list(steps)
        self.requests: List[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        step = self.steps.pop(0) if len(self.steps) > 1 else self.steps[0]
        if isinstance(step, Exception):
            raise step
        # cópia nova a cada envio: o mesmo passo pode se repetir
        return httpx.Response(step.status_code, headers=step.headers, content=step.content)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self)

    @property
    def calls(self) -> int:
        return len(self.requests)


def make_itunes_item(track_id: Optional[int], name: Optional[str] = None, **overrides) -> Dict[str, Any]:
    title = name or f"Podcast {track_id}"
    item = {
        "wrapperType": "track",
        "kind": "podcast",
        "trackId": track_id,
        "trackName": title,
        "collectionName": title,
        "artistName": "Example Network",
        "feedUrl": f"https://feeds.example.com/{track_id}.xml",
        "trackViewUrl": f"https://podcasts.apple.com/us/podcast/id{track_id}",
        "artworkUrl60": "https://is1.example.com/60x60bb.jpg",
        "artworkUrl100": "https://is1.example.com/100x100bb.jpg",
        "artworkUrl600": "https://is1.example.com/600x600bb.jpg",
        "releaseDate": "2024-01-15T08:00:00Z",
        "country": "USA",
        "primaryGenreName": "Technology",
        "genreIds": ["1318", "26"],
        "genres": ["Technology", "Podcasts"],
        "trackCount": 42,
        "trackExplicitness": "notExplicit",
        "collectionExplicitness": "notExplicit",
    }
    if track_id is None:
        item.pop("trackId")
    item.update(overrides)
    return item


def make_itunes_body(items: List[Dict[str, Any]]) -> Dict[str, Any]:
    return {"resultCount": len(items), "results": items}


def ok_response(items: List[Dict[str, Any]]) -> httpx.Response:
    return httpx.Response(200, json=make_itunes_body(items))


# === FIXTURES ===


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def itunes_item():
    """Factory de resultados no formato da iTunes Search API."""
    return make_itunes_item


@pytest.fixture
def itunes_ok():
    """Factory de respostas 200 com corpo da iTunes Search API."""
    return ok_response


@pytest.fixture
def scripted_upstream():
    return ScriptedUpstream


@pytest.fixture
def make_manager(fake_clock):
    """Factory de ITunesManager com defaults fixos (independentes do ambiente)."""
    def _make(upstream: ScriptedUpstream, **overrides) -> ITunesManager:
        kwargs = dict(
            base_url="https://itunes.test",
            request_timeout=5.0,
            retry_attempts=3,
            retry_delay=1.0,
            rate_limit_retry_attempts=5,
            backoff_multiplier=2.0,
            max_backoff_delay=60.0,
            rate_limiter=FixedWindowRateLimiter(max_per_second=20, clock=fake_clock),
            cache=SearchCache(ttl_seconds=300.0, max_entries=100, sweep_interval=600.0, clock=fake_clock),
            clock=fake_clock,
            transport=upstream.transport,
        )
        kwargs.update(overrides)
        return ITunesManager(**kwargs)

    return _make


@pytest.fixture
def job_store(fake_clock) -> InMemoryJobStore:
    return InMemoryJobStore(max_attempts=3, clock=fake_clock)


@pytest.fixture
def repository(fake_clock) -> InMemoryPodcastRepository:
    return InMemoryPodcastRepository(clock=fake_clock)
