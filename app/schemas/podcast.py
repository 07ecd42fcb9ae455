"""
Schemas Pydantic de podcasts.

- ITunesPodcast / ITunesSearchResponse: formato bruto da iTunes Search API (camelCase)
- Podcast: item persistido / retornado pela API (snake_case)
- PodcastSearchRequest / PodcastListResponse: contrato do endpoint de busca
- JobStats: contagem da fila de persistência por status
"""
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from app.core.constants import (
    DEFAULT_COUNTRY,
    DEFAULT_LIMIT,
    DEFAULT_OFFSET,
    ITUNES_ENTITY,
    ITUNES_PODCAST_ENTITIES,
    MAX_LIMIT,
)


def _parse_release_date(value: Optional[str]) -> Optional[datetime]:
    """Converte releaseDate ISO-8601 do iTunes (ex: 2024-01-15T08:00:00Z)."""
    if not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None


class ITunesPodcast(BaseModel):
    """Um resultado da iTunes Search API. Campos desconhecidos são preservados."""

    track_id: Optional[int] = Field(None, alias="trackId")
    track_name: Optional[str] = Field(None, alias="trackName")
    artist_name: Optional[str] = Field(None, alias="artistName")
    collection_name: Optional[str] = Field(None, alias="collectionName")
    artwork_url_60: Optional[str] = Field(None, alias="artworkUrl60")
    artwork_url_100: Optional[str] = Field(None, alias="artworkUrl100")
    artwork_url_600: Optional[str] = Field(None, alias="artworkUrl600")
    feed_url: Optional[str] = Field(None, alias="feedUrl")
    track_view_url: Optional[str] = Field(None, alias="trackViewUrl")
    release_date: Optional[str] = Field(None, alias="releaseDate")
    country: Optional[str] = None
    primary_genre_name: Optional[str] = Field(None, alias="primaryGenreName")
    genre_ids: Optional[List[str]] = Field(None, alias="genreIds")
    genres: Optional[List[str]] = None
    track_count: Optional[int] = Field(None, alias="trackCount")
    track_explicitness: Optional[str] = Field(None, alias="trackExplicitness")
    collection_explicitness: Optional[str] = Field(None, alias="collectionExplicitness")

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    def to_payload(self) -> Dict[str, Any]:
        """Snapshot JSON (camelCase, como veio do upstream) guardado no job."""
        return self.model_dump(by_alias=True, exclude_none=True)


class ITunesSearchResponse(BaseModel):
    """Corpo de resposta da iTunes Search API."""

    result_count: int = Field(0, alias="resultCount")
    results: List[ITunesPodcast] = Field(default_factory=list)

    model_config = ConfigDict(populate_by_name=True, extra="allow")


class Podcast(BaseModel):
    """
    Podcast persistido (ou mapeado do upstream, ainda sem id).

    `track_id` é a chave externa estável usada no upsert.
    """

    id: Optional[int] = None
    track_id: int
    track_name: str
    artist_name: Optional[str] = None
    collection_name: Optional[str] = None
    artwork_url_60: Optional[str] = None
    artwork_url_100: Optional[str] = None
    artwork_url_600: Optional[str] = None
    feed_url: Optional[str] = None
    track_view_url: Optional[str] = None
    release_date: Optional[datetime] = None
    country: Optional[str] = None
    primary_genre_name: Optional[str] = None
    genre_ids: List[str] = Field(default_factory=list)
    genres: List[str] = Field(default_factory=list)
    track_count: Optional[int] = None
    track_explicit_content: bool = False
    description: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_itunes(cls, item: ITunesPodcast) -> "Podcast":
        """
        Mapeia um resultado do iTunes para o formato persistido.

        Raises:
            ValueError: Se o item não tiver trackId
        """
        if item.track_id is None:
            raise ValueError("Item do iTunes sem trackId")

        return cls(
            track_id=item.track_id,
            track_name=item.track_name or item.collection_name or "",
            artist_name=item.artist_name,
            collection_name=item.collection_name,
            artwork_url_60=item.artwork_url_60,
            artwork_url_100=item.artwork_url_100,
            artwork_url_600=item.artwork_url_600,
            feed_url=item.feed_url,
            track_view_url=item.track_view_url,
            release_date=_parse_release_date(item.release_date),
            country=item.country,
            primary_genre_name=item.primary_genre_name,
            genre_ids=item.genre_ids or [],
            genres=item.genres or [],
            track_count=item.track_count,
            track_explicit_content=(
                item.track_explicitness == "explicit"
                or item.collection_explicitness == "explicit"
            ),
            description=item.collection_name or "",
        )


class PodcastSearchRequest(BaseModel):
    """Parâmetros de busca (query string de GET /podcasts/search)."""

    term: str = Field(..., min_length=1, description="Termo de busca")
    country: str = Field(DEFAULT_COUNTRY, min_length=2, max_length=2, description="País (ISO 3166-1 alpha-2)")
    limit: int = Field(DEFAULT_LIMIT, ge=1, le=MAX_LIMIT)
    offset: int = Field(DEFAULT_OFFSET, ge=0)
    entity: str = Field(ITUNES_ENTITY, description="Entidade do iTunes (podcast, podcastAuthor, podcastEpisode)")

    @field_validator("term")
    @classmethod
    def term_not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("Search term is required")
        return value

    @field_validator("country")
    @classmethod
    def normalize_country(cls, value: str) -> str:
        return value.strip().lower()

    @field_validator("entity")
    @classmethod
    def known_entity(cls, value: str) -> str:
        if value not in ITUNES_PODCAST_ENTITIES:
            raise ValueError(f"entity deve ser um de: {', '.join(ITUNES_PODCAST_ENTITIES)}")
        return value

    model_config = ConfigDict(
        json_schema_extra={
            "example": {"term": "tech", "country": "us", "limit": 20, "offset": 0}
        }
    )


class PodcastListResponse(BaseModel):
    """
    Resultado de busca ou listagem.

    Campos:
        items: Podcasts retornados
        total_count: Total informado pelo upstream (ou total local no fallback)
        source: 'itunes' (upstream/cache) ou 'local' (fallback no banco)
    """

    items: List[Podcast] = Field(default_factory=list)
    total_count: int = 0
    limit: int = DEFAULT_LIMIT
    offset: int = DEFAULT_OFFSET
    source: str = "itunes"


class JobStats(BaseModel):
    """Contagem de jobs da fila por status."""

    pending: int = 0
    processing: int = 0
    completed: int = 0
    failed: int = 0
    total: int = 0
