"""Shared data structures for searches and raw index hits."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional, Tuple


class SearchType(str, Enum):
    BASIC = "basic"
    MOVIE = "movie"
    TV = "tv"


class Protocol(str, Enum):
    TORRENT = "torrent"
    USENET = "usenet"
    STREAMING = "streaming"


# Criteria field -> parameter name advertised in index capabilities.
ID_PARAMS: Dict[str, str] = {
    "imdb_id": "imdbId",
    "tmdb_id": "tmdbId",
    "tvdb_id": "tvdbId",
    "tvmaze_id": "tvMazeId",
}

# Identifier families each search type may carry.
TYPE_ID_FIELDS: Dict[SearchType, Tuple[str, ...]] = {
    SearchType.BASIC: (),
    SearchType.MOVIE: ("imdb_id", "tmdb_id"),
    SearchType.TV: ("imdb_id", "tmdb_id", "tvdb_id", "tvmaze_id"),
}


@dataclass(frozen=True)
class SearchCriteria:
    """
    One search request. ``search_type`` is the tag; movie and TV searches
    carry external identifiers, TV searches may also carry season/episode.

    When any identifier is present, identifier search is authoritative and
    indexes that cannot search by one of them are skipped rather than
    queried by free text.
    """

    search_type: SearchType
    query: str = ""
    imdb_id: Optional[str] = None
    tmdb_id: Optional[int] = None
    tvdb_id: Optional[int] = None
    tvmaze_id: Optional[int] = None
    year: Optional[int] = None
    season: Optional[int] = None
    episode: Optional[int] = None
    categories: Tuple[int, ...] = ()
    limit: Optional[int] = None
    offset: Optional[int] = None

    def __post_init__(self) -> None:
        if self.search_type != SearchType.TV and (self.season is not None or self.episode is not None):
            raise ValueError("season/episode are only valid on tv searches")
        if self.episode is not None and self.season is None:
            raise ValueError("episode requires season")
        allowed = TYPE_ID_FIELDS[self.search_type]
        for name in ID_PARAMS:
            if name not in allowed and getattr(self, name) is not None:
                raise ValueError(f"{name} is not valid on {self.search_type.value} searches")

    @classmethod
    def basic(cls, query: str, **kwargs: Any) -> "SearchCriteria":
        return cls(search_type=SearchType.BASIC, query=query, **kwargs)

    @classmethod
    def movie(cls, query: str = "", **kwargs: Any) -> "SearchCriteria":
        return cls(search_type=SearchType.MOVIE, query=query, **kwargs)

    @classmethod
    def tv(cls, query: str = "", **kwargs: Any) -> "SearchCriteria":
        return cls(search_type=SearchType.TV, query=query, **kwargs)

    def provided_ids(self) -> list[str]:
        """Capability parameter names of the identifiers this search carries, in canonical order."""
        return [ID_PARAMS[name] for name in TYPE_ID_FIELDS[self.search_type] if getattr(self, name)]

    def id_value(self, param: str) -> Optional[str]:
        for name, param_name in ID_PARAMS.items():
            if param_name.lower() == param.lower():
                value = getattr(self, name)
                return None if value is None else str(value)
        return None

    def with_season(self, season: Optional[int], episode: Optional[int] = None) -> "SearchCriteria":
        return replace(self, season=season, episode=episode)

    def with_categories(self, categories: Tuple[int, ...]) -> "SearchCriteria":
        return replace(self, categories=tuple(categories))


@dataclass
class RawResult:
    """An index hit before parsing and scoring."""

    title: str
    index_id: str
    index_name: str
    protocol: Protocol
    size: int = 0
    seeders: Optional[int] = None
    leechers: Optional[int] = None
    grabs: Optional[int] = None
    publish_date: Optional[datetime] = None
    download_url: str = ""
    magnet_url: str = ""
    info_hash: str = ""
    guid: str = ""
    details_url: str = ""
    categories: Tuple[int, ...] = ()
    imdb_id: Optional[str] = None
    tmdb_id: Optional[int] = None
    tvdb_id: Optional[int] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def identity(self) -> str:
        """Stable key for deduplication across indexes."""
        if self.info_hash:
            return f"hash:{self.info_hash.lower()}"
        return f"{self.index_id}:{self.guid or self.download_url or self.title}"
