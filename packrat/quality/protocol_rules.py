"""Per-protocol rejection hooks driven by each index's protocol settings."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Callable, Optional

from packrat.config import IndexConfig
from packrat.quality.types import ParsedRelease
from packrat.search.types import Protocol, RawResult

RESOLUTION_RANK = {"480p": 1, "720p": 2, "1080p": 3, "2160p": 4}

ProtocolRule = Callable[[RawResult, ParsedRelease, IndexConfig, Optional[datetime]], Optional[str]]


def _format_size(size: int) -> str:
    return f"{size / (1024 ** 3):.2f} GB"


def torrent_rejection(
    raw: RawResult,
    parsed: ParsedRelease,
    config: IndexConfig,
    now: Optional[datetime] = None,
) -> Optional[str]:
    settings = config.torrent
    seeders = raw.seeders
    if settings.reject_dead_torrents and seeders is not None and seeders == 0 and not raw.leechers:
        return "Dead torrent (no seeders or peers)"
    if seeders is not None and seeders < settings.minimum_seeders:
        return f"Not enough seeders ({seeders} < {settings.minimum_seeders})"
    if settings.maximum_size and raw.size > settings.maximum_size:
        return f"Exceeds maximum size ({_format_size(raw.size)} > {_format_size(settings.maximum_size)})"
    return None


def usenet_rejection(
    raw: RawResult,
    parsed: ParsedRelease,
    config: IndexConfig,
    now: Optional[datetime] = None,
) -> Optional[str]:
    settings = config.usenet
    if settings.retention_days and raw.publish_date is not None:
        now = now or datetime.now(timezone.utc)
        age_days = (now - raw.publish_date).days
        if age_days > settings.retention_days:
            return f"Older than retention ({age_days} > {settings.retention_days} days)"
    if settings.maximum_size and raw.size > settings.maximum_size:
        return f"Exceeds maximum size ({_format_size(raw.size)} > {_format_size(settings.maximum_size)})"
    return None


def streaming_rejection(
    raw: RawResult,
    parsed: ParsedRelease,
    config: IndexConfig,
    now: Optional[datetime] = None,
) -> Optional[str]:
    settings = config.streaming
    if raw.metadata.get("requires_auth") and not settings.auth_token:
        return "Stream requires authentication"
    minimum = settings.minimum_quality.lower()
    if minimum in RESOLUTION_RANK:
        actual = parsed.resolution or ""
        if RESOLUTION_RANK.get(actual, 0) < RESOLUTION_RANK[minimum]:
            return f"Quality below minimum ({actual or 'unknown'} < {minimum})"
    provider = str(raw.metadata.get("provider", "")).lower()
    blocked = {p.lower() for p in settings.blocked_providers}
    if provider and provider in blocked:
        return f"Provider blocked: {provider}"
    return None


PROTOCOL_RULES: dict[Protocol, ProtocolRule] = {
    Protocol.TORRENT: torrent_rejection,
    Protocol.USENET: usenet_rejection,
    Protocol.STREAMING: streaming_rejection,
}


def protocol_rejection(
    raw: RawResult,
    parsed: ParsedRelease,
    config: Optional[IndexConfig],
    now: Optional[datetime] = None,
) -> Optional[str]:
    """
    Reason the index's protocol handler refuses this hit, or None. No config means no rules.

    ``now`` is the clock age-based rules judge against; it defaults to the wall clock.
    """
    if config is None:
        return None
    return PROTOCOL_RULES[raw.protocol](raw, parsed, config, now)
