"""Named scoring profiles: format weights, bans, size bounds and pack preference."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Mapping, Optional

from packrat.config import ScoringProfileConfig
from packrat.quality.types import ParsedRelease
from packrat.search.types import Protocol

NEUTRAL_BASE_SCORE = 100
MAX_QUALITY_SCORE = 1000
BYTES_PER_MB = 1024 * 1024

DEFAULT_FORMAT_SCORES: dict[str, int] = {
    "2160p": 300,
    "1080p": 250,
    "720p": 150,
    "480p": 50,
    "remux": 150,
    "bluray": 150,
    "web-dl": 120,
    "webrip": 90,
    "hdtv": 40,
    "dvd": 20,
    "x265": 40,
    "x264": 30,
    "av1": 40,
    "xvid": -50,
    "hdr": 60,
    "proper": 20,
    "repack": 20,
}


@dataclass(frozen=True)
class SizeLimits:
    min_mb: Optional[float] = None
    max_mb: Optional[float] = None

    @property
    def configured(self) -> bool:
        return self.min_mb is not None or self.max_mb is not None


@dataclass(frozen=True)
class PackPreference:
    enabled: bool = True
    season_pack_bonus: int = 100
    multi_season_bonus_per_season: int = 25
    complete_series_bonus: int = 200


@dataclass(frozen=True)
class ScoringProfile:
    name: str
    format_scores: Mapping[str, int] = field(default_factory=lambda: dict(DEFAULT_FORMAT_SCORES))
    banned: tuple[str, ...] = ()
    banned_groups: tuple[str, ...] = ()
    movie_size: SizeLimits = SizeLimits()
    episode_size: SizeLimits = SizeLimits()
    allowed_protocols: frozenset[Protocol] = frozenset({Protocol.TORRENT, Protocol.USENET})
    upgrades_allowed: bool = True
    min_quality_score: int = 0
    pack_preference: PackPreference = PackPreference()

    @classmethod
    def from_config(cls, name: str, config: ScoringProfileConfig) -> "ScoringProfile":
        return cls(
            name=name,
            format_scores={**DEFAULT_FORMAT_SCORES, **{k.lower(): v for k, v in config.format_scores.items()}},
            banned=tuple(tag.lower() for tag in config.banned),
            banned_groups=tuple(group.lower() for group in config.banned_groups),
            movie_size=SizeLimits(config.movie_size.min_mb, config.movie_size.max_mb),
            episode_size=SizeLimits(config.episode_size.min_mb, config.episode_size.max_mb),
            allowed_protocols=frozenset(Protocol(p.lower()) for p in config.allowed_protocols),
            upgrades_allowed=config.upgrades_allowed,
            min_quality_score=config.min_quality_score,
            pack_preference=PackPreference(
                enabled=config.pack_preference.enabled,
                season_pack_bonus=config.pack_preference.season_pack_bonus,
                multi_season_bonus_per_season=config.pack_preference.multi_season_bonus_per_season,
                complete_series_bonus=config.pack_preference.complete_series_bonus,
            ),
        )


DEFAULT_PROFILE = ScoringProfile(name="default")


@dataclass(frozen=True)
class QualityScore:
    base: int
    matched_formats: tuple[str, ...]
    rejection_reason: str = ""

    @property
    def rejected(self) -> bool:
        return bool(self.rejection_reason)


def _banned_reason(parsed: ParsedRelease, profile: ScoringProfile) -> str:
    tags = set(parsed.format_tags())
    for banned in profile.banned:
        if banned in tags or re.search(rf"(?<![a-z0-9]){re.escape(banned)}(?![a-z0-9])", parsed.title.lower()):
            return f"Banned: {banned}"
    group = (parsed.release_group or "").lower()
    if group and group in profile.banned_groups:
        return f"Banned: release group {parsed.release_group}"
    return ""


def size_rejection(
    size_bytes: int,
    parsed: ParsedRelease,
    profile: ScoringProfile,
    media_type: Optional[str] = None,
    episode_count: Optional[int] = None,
) -> str:
    """Reason the size is out of bounds for the media type, or an empty string."""
    if size_bytes <= 0:
        return ""
    is_episode = media_type == "episode" or (media_type is None and parsed.episode is not None)
    limits = profile.episode_size if is_episode else profile.movie_size
    if not limits.configured:
        return ""

    size_mb = size_bytes / BYTES_PER_MB
    label = "Size"
    if is_episode and parsed.episode is not None and parsed.episode.is_season_pack:
        if not episode_count:
            return "Season pack size cannot be validated without an episode count"
        size_mb = size_mb / episode_count
        label = "Per-episode size"
    elif is_episode and parsed.episode is not None and len(parsed.episode.episodes) > 1:
        size_mb = size_mb / len(parsed.episode.episodes)
        label = "Per-episode size"

    if limits.min_mb is not None and size_mb < limits.min_mb:
        return f"{label} {size_mb:.0f} MB below minimum {limits.min_mb:.0f} MB"
    if limits.max_mb is not None and size_mb > limits.max_mb:
        return f"{label} {size_mb:.0f} MB above maximum {limits.max_mb:.0f} MB"
    return ""


def score_quality(
    parsed: ParsedRelease,
    profile: ScoringProfile,
    size_bytes: int = 0,
    media_type: Optional[str] = None,
    episode_count: Optional[int] = None,
) -> QualityScore:
    """Base quality score (0-1000) from weighted format tags, plus size/ban/minimum verdicts."""
    matched = tuple(tag for tag in parsed.format_tags() if tag in profile.format_scores)
    raw_score = NEUTRAL_BASE_SCORE + sum(profile.format_scores[tag] for tag in matched)
    base = max(0, min(MAX_QUALITY_SCORE, raw_score))

    reason = size_rejection(size_bytes, parsed, profile, media_type, episode_count)
    if not reason:
        reason = _banned_reason(parsed, profile)
    if not reason and base < profile.min_quality_score:
        reason = "Quality requirements not met"
    return QualityScore(base=base, matched_formats=matched, rejection_reason=reason)


def pack_bonus(parsed: ParsedRelease, preference: PackPreference) -> int:
    """Flat bonus for packs. Grows with seasons covered; independent of quality."""
    episode = parsed.episode
    if not preference.enabled or episode is None or not episode.is_season_pack:
        return 0
    if episode.is_complete_series:
        return preference.complete_series_bonus
    season_count = max(1, len(episode.seasons))
    return preference.season_pack_bonus + (season_count - 1) * preference.multi_season_bonus_per_season
