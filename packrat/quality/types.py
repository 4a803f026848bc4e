"""Data structures for parsed, scored and matched releases."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional

from packrat.search.types import RawResult


@dataclass(frozen=True)
class EpisodeInfo:
    """Season/episode span a release title claims to cover."""

    seasons: tuple[int, ...] = ()
    episodes: tuple[int, ...] = ()
    is_season_pack: bool = False
    is_complete_series: bool = False
    absolute_episode: Optional[int] = None
    air_date: Optional[str] = None

    @property
    def season(self) -> Optional[int]:
        return self.seasons[0] if self.seasons else None

    @property
    def is_multi_season(self) -> bool:
        return len(self.seasons) > 1


@dataclass(frozen=True)
class ParsedRelease:
    title: str
    clean_title: str = ""
    year: Optional[int] = None
    resolution: Optional[str] = None
    source: Optional[str] = None
    codec: Optional[str] = None
    hdr: bool = False
    is_remux: bool = False
    is_proper: bool = False
    is_repack: bool = False
    release_group: Optional[str] = None
    hardcoded_subs: bool = False
    episode: Optional[EpisodeInfo] = None
    confidence: float = 0.0

    def format_tags(self) -> list[str]:
        """Lower-case tags a scoring profile can weight."""
        tags = [tag for tag in (self.resolution, self.source, self.codec) if tag]
        if self.is_remux:
            tags.append("remux")
        if self.hdr:
            tags.append("hdr")
        if self.is_proper:
            tags.append("proper")
        if self.is_repack:
            tags.append("repack")
        return tags


@dataclass(frozen=True)
class MetadataRecord:
    """A canonical catalog entry (TMDB identity)."""

    tmdb_id: int
    title: str
    media_type: str
    year: Optional[int] = None
    original_title: str = ""
    imdb_id: Optional[str] = None
    tvdb_id: Optional[int] = None


@dataclass(frozen=True)
class MetadataHint:
    media_type: str = "movie"
    tmdb_id: Optional[int] = None
    imdb_id: Optional[str] = None
    tvdb_id: Optional[int] = None


@dataclass(frozen=True)
class MetadataMatch:
    tmdb_id: int
    title: str
    media_type: str
    year: Optional[int]
    confidence: float
    matched_by: str


@dataclass(frozen=True)
class ScoreBreakdown:
    base: int = 0
    availability: int = 0
    freshness: int = 0
    enhancement: int = 0
    pack: int = 0
    confidence: int = 0
    penalties: int = 0

    @property
    def total(self) -> int:
        raw = (
            self.base
            + self.availability
            + self.freshness
            + self.enhancement
            + self.pack
            + self.confidence
            + self.penalties
        )
        return round(max(0, raw))


@dataclass
class ScoredCandidate:
    raw: RawResult
    parsed: ParsedRelease
    quality_score: int
    breakdown: ScoreBreakdown
    matched_formats: tuple[str, ...] = ()
    rejected: bool = False
    rejection_reason: str = ""
    match: Optional[MetadataMatch] = None

    @property
    def total_score(self) -> int:
        return self.breakdown.total

    @property
    def title(self) -> str:
        return self.raw.title

    @property
    def episode(self) -> Optional[EpisodeInfo]:
        return self.parsed.episode


@dataclass
class EnrichmentResult:
    candidates: list[ScoredCandidate] = field(default_factory=list)
    rejected_count: int = 0
    profile_used: str = ""
    elapsed_ms: float = 0.0
