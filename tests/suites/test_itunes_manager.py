"""
Testes do ITunesManager: classificação de falhas, retry, backoff e cache.

O upstream é um MockTransport roteirizado e o relógio é falso, então os
delays de retry aparecem em fake_clock.sleeps sem espera real.
"""
import httpx
import pytest

from app.core.exceptions import InternalSearchError, RateLimitedError, UpstreamUnavailableError
from app.services.itunes_manager import is_rate_limited
from app.services.itunes_manager.itunes_manager import _parse_retry_after


def _throttled():
    return httpx.Response(429)


def _connect_error():
    return httpx.ConnectError("connection refused")


class TestSuccess:
    async def test_returns_parsed_results(self, make_manager, scripted_upstream, itunes_ok, itunes_item):
        upstream = scripted_upstream(itunes_ok([itunes_item(1), itunes_item(2)]))
        manager = make_manager(upstream)

        response = await manager.search("tech", country="us", limit=20, offset=0)

        assert response.result_count == 2
        assert [r.track_id for r in response.results] == [1, 2]
        assert upstream.calls == 1

    async def test_sends_expected_query(self, make_manager, scripted_upstream, itunes_ok):
        upstream = scripted_upstream(itunes_ok([]))
        manager = make_manager(upstream)

        await manager.search("the daily", country="br", limit=5, offset=10)

        request = upstream.requests[0]
        assert request.url.path == "/search"
        assert request.url.params["term"] == "the daily"
        assert request.url.params["country"] == "br"
        assert request.url.params["media"] == "podcast"
        assert request.url.params["entity"] == "podcast"
        assert request.url.params["limit"] == "5"
        assert request.url.params["offset"] == "10"

    async def test_identical_search_is_served_from_cache(self, make_manager, scripted_upstream, itunes_ok, itunes_item):
        upstream = scripted_upstream(itunes_ok([itunes_item(1)]))
        manager = make_manager(upstream)

        first = await manager.search("tech")
        second = await manager.search("  TECH ")

        assert upstream.calls == 1
        assert second == first
        assert manager.get_status()["cache_hits"] == 1

    async def test_different_page_is_not_a_cache_hit(self, make_manager, scripted_upstream, itunes_ok):
        upstream = scripted_upstream(itunes_ok([]))
        manager = make_manager(upstream)

        await manager.search("tech", offset=0)
        await manager.search("tech", offset=20)

        assert upstream.calls == 2

    async def test_cache_expires_after_ttl(self, make_manager, scripted_upstream, itunes_ok, fake_clock):
        upstream = scripted_upstream(itunes_ok([]))
        manager = make_manager(upstream)

        await manager.search("tech")
        fake_clock.advance(301)
        await manager.search("tech")

        assert upstream.calls == 2


class TestRateLimitRetry:
    async def test_recovers_after_throttling(self, make_manager, scripted_upstream, itunes_ok, itunes_item, fake_clock):
        upstream = scripted_upstream(_throttled(), _throttled(), itunes_ok([itunes_item(7)]))
        manager = make_manager(upstream)

        response = await manager.search("tech")

        assert response.results[0].track_id == 7
        assert upstream.calls == 3
        assert fake_clock.sleeps == [1.0, 2.0]

    async def test_persistent_throttling_raises_with_retry_after(self, make_manager, scripted_upstream, fake_clock):
        upstream = scripted_upstream(_throttled())
        manager = make_manager(upstream)

        with pytest.raises(RateLimitedError) as exc_info:
            await manager.search("tech")

        assert upstream.calls == 5
        assert fake_clock.sleeps == [1.0, 2.0, 4.0, 8.0]
        assert exc_info.value.attempts == 5
        assert exc_info.value.retry_after == 16.0
        assert exc_info.value.status_code == 429

    @pytest.mark.parametrize("response", [
        httpx.Response(302, headers={"Location": "https://itunes.apple.com/elsewhere"}),
        httpx.Response(301),
        httpx.Response(503),
        httpx.Response(200, headers={"X-RateLimit-Remaining": "0"}, json={"resultCount": 0, "results": []}),
        httpx.Response(200, headers={"Retry-After": "5"}, json={"resultCount": 0, "results": []}),
    ])
    async def test_throttling_signals_are_retried(self, make_manager, scripted_upstream, itunes_ok, fake_clock, response):
        upstream = scripted_upstream(response, itunes_ok([]))
        manager = make_manager(upstream)

        await manager.search("tech")

        assert upstream.calls == 2
        assert fake_clock.sleeps == [1.0]

    async def test_failure_is_not_cached(self, make_manager, scripted_upstream, itunes_ok):
        upstream = scripted_upstream(*([_throttled()] * 5), itunes_ok([]))
        manager = make_manager(upstream)

        with pytest.raises(RateLimitedError):
            await manager.search("tech")
        await manager.search("tech")

        assert upstream.calls == 6

    def test_backoff_is_capped(self, make_manager, scripted_upstream, itunes_ok):
        manager = make_manager(scripted_upstream(itunes_ok([])))

        assert [manager.backoff_delay(a) for a in range(1, 6)] == [1.0, 2.0, 4.0, 8.0, 16.0]
        assert manager.backoff_delay(7) == 60.0


class TestNetworkRetry:
    async def test_recovers_after_network_error(self, make_manager, scripted_upstream, itunes_ok, fake_clock):
        upstream = scripted_upstream(_connect_error(), itunes_ok([]))
        manager = make_manager(upstream)

        await manager.search("tech")

        assert upstream.calls == 2
        assert fake_clock.sleeps == [1.0]

    async def test_exhausted_network_retries_raise_unavailable(self, make_manager, scripted_upstream, fake_clock):
        upstream = scripted_upstream(httpx.ReadTimeout("timed out"))
        manager = make_manager(upstream)

        with pytest.raises(UpstreamUnavailableError) as exc_info:
            await manager.search("tech")

        assert upstream.calls == 3
        assert fake_clock.sleeps == [1.0, 1.0]
        assert exc_info.value.details["attempts"] == 3

    async def test_counters_are_independent(self, make_manager, scripted_upstream, itunes_ok, fake_clock):
        # 2 falhas de rede + 2 de rate limit: nenhum contador chega ao máximo
        upstream = scripted_upstream(
            _connect_error(), _throttled(), _connect_error(), _throttled(), itunes_ok([])
        )
        manager = make_manager(upstream)

        await manager.search("tech")

        assert upstream.calls == 5
        assert fake_clock.sleeps == [1.0, 1.0, 1.0, 2.0]


class TestNonRetryable:
    @pytest.mark.parametrize("status_code", [400, 404, 500])
    async def test_unexpected_status_fails_immediately(self, make_manager, scripted_upstream, fake_clock, status_code):
        upstream = scripted_upstream(httpx.Response(status_code))
        manager = make_manager(upstream)

        with pytest.raises(InternalSearchError) as exc_info:
            await manager.search("tech")

        assert upstream.calls == 1
        assert fake_clock.sleeps == []
        assert exc_info.value.details == {"status_code": status_code}

    async def test_invalid_body(self, make_manager, scripted_upstream):
        upstream = scripted_upstream(httpx.Response(200, text="<html>not json</html>"))
        manager = make_manager(upstream)

        with pytest.raises(InternalSearchError):
            await manager.search("tech")

    async def test_unexpected_exception(self, make_manager, scripted_upstream):
        upstream = scripted_upstream(RuntimeError("bug"))
        manager = make_manager(upstream)

        with pytest.raises(InternalSearchError):
            await manager.search("tech")
        assert upstream.calls == 1


class TestRateLimitedDetection:
    def test_plain_success_is_not_throttled(self):
        assert not is_rate_limited(httpx.Response(200, headers={"X-RateLimit-Remaining": "12"}))

    def test_alternate_quota_header(self):
        assert is_rate_limited(httpx.Response(200, headers={"X-Rate-Limit-Remaining": "0"}))

    def test_server_error_is_not_throttled(self):
        assert not is_rate_limited(httpx.Response(500))


class TestParseRetryAfter:
    def test_seconds_are_capped(self):
        assert _parse_retry_after("120", max_seconds=60.0) == 60.0
        assert _parse_retry_after("5") == 5.0

    @pytest.mark.parametrize("value", [None, "", "  ", "soon", "0", "-3"])
    def test_invalid_values(self, value):
        assert _parse_retry_after(value) is None
