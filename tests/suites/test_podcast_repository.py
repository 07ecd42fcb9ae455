"""Testes dos repositórios de podcasts (em memória e consultas do Postgres)."""
import pytest

from app.schemas.podcast import ITunesPodcast, Podcast
from app.services import podcast_repository
from app.services.podcast_repository import PostgresPodcastRepository


def _podcast(itunes_item, track_id, **kwargs) -> Podcast:
    return Podcast.from_itunes(ITunesPodcast.model_validate(itunes_item(track_id, **kwargs)))


class TestUpsert:
    async def test_create_assigns_id_and_timestamps(self, repository, itunes_item):
        saved = await repository.upsert(_podcast(itunes_item, 10))

        assert saved.id == 1
        assert saved.created_at is not None
        assert saved.updated_at == saved.created_at

    async def test_replay_keeps_single_row(self, repository, itunes_item, fake_clock):
        first = await repository.upsert(_podcast(itunes_item, 10, name="Antigo"))
        fake_clock.advance(60)
        second = await repository.upsert(_podcast(itunes_item, 10, name="Novo"))

        assert len(repository) == 1
        assert second.id == first.id
        assert second.created_at == first.created_at
        assert second.updated_at > first.updated_at
        assert (await repository.find_by_track_id(10)).track_name == "Novo"

    async def test_exists_any(self, repository, itunes_item):
        await repository.upsert(_podcast(itunes_item, 1))
        await repository.upsert(_podcast(itunes_item, 2))

        assert await repository.exists_any([1, 3, 2]) == {1, 2}


class TestQueries:
    async def test_find_by_id(self, repository, itunes_item):
        saved = await repository.upsert(_podcast(itunes_item, 10))

        assert (await repository.find_by_id(saved.id)).track_id == 10
        assert await repository.find_by_id(999) is None

    async def test_text_search_is_case_insensitive(self, repository, itunes_item):
        await repository.upsert(_podcast(itunes_item, 1, name="Tech Talk"))
        await repository.upsert(_podcast(itunes_item, 2, name="Cooking Hour"))
        await repository.upsert(_podcast(itunes_item, 3, name="Daily", artistName="TECHNO Media"))

        items, total = await repository.text_search("tech")

        assert total == 2
        assert [p.track_id for p in items] == [3, 1]

    async def test_text_search_pagination(self, repository, itunes_item):
        for track_id in range(1, 6):
            await repository.upsert(_podcast(itunes_item, track_id, name=f"Show {track_id}"))

        items, total = await repository.text_search("show", limit=2, offset=2)

        assert total == 5
        assert [p.track_id for p in items] == [3, 2]

    async def test_find_all_newest_first(self, repository, itunes_item):
        for track_id in (7, 8, 9):
            await repository.upsert(_podcast(itunes_item, track_id))

        items, total = await repository.find_all(limit=10)

        assert total == 3
        assert [p.track_id for p in items] == [9, 8, 7]

    async def test_page_past_the_end_keeps_total(self, repository, itunes_item):
        for track_id in (1, 2, 3):
            await repository.upsert(_podcast(itunes_item, track_id))

        items, total = await repository.find_all(limit=10, offset=10)
        matches, match_total = await repository.text_search("podcast", limit=10, offset=10)

        assert (items, total) == ([], 3)
        assert (matches, match_total) == ([], 3)


class FakeConnection:
    """Conexão asyncpg simulada: página vazia, COUNT(*) com o total informado."""

    def __init__(self, total):
        self.total = total
        self.queries = []

    async def fetch(self, query, *args):
        self.queries.append((query, args))
        return []

    async def fetchval(self, query, *args):
        self.queries.append((query, args))
        return self.total


class FakePool:
    def __init__(self, conn):
        self.conn = conn

    def acquire(self):
        pool = self

        class _Acquire:
            async def __aenter__(self):
                return pool.conn

            async def __aexit__(self, *exc):
                return False

        return _Acquire()


@pytest.fixture
def fake_conn(monkeypatch):
    conn = FakeConnection(total=5)

    async def _get_pool():
        return FakePool(conn)

    monkeypatch.setattr(podcast_repository, "get_pool", _get_pool)
    return conn


class TestPostgresPagination:
    async def test_text_search_past_the_end_reports_total(self, fake_conn):
        items, total = await PostgresPodcastRepository().text_search("tech", limit=20, offset=100)

        assert items == []
        assert total == 5
        count_query, count_args = fake_conn.queries[-1]
        assert "COUNT(*)" in count_query
        assert count_args == ("%tech%",)

    async def test_find_all_past_the_end_reports_total(self, fake_conn):
        items, total = await PostgresPodcastRepository().find_all(limit=20, offset=100)

        assert items == []
        assert total == 5
