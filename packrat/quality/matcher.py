"""Resolve a parsed release to a canonical catalog identity."""

from __future__ import annotations

import asyncio
import re
import time
from typing import Optional

from aiohttp import ClientError

from packrat import logger
from packrat.errors import PackratError
from packrat.quality.parser import extract_external_ids
from packrat.quality.protocols import MetadataService
from packrat.quality.types import MetadataHint, MetadataMatch, MetadataRecord, ParsedRelease

EXTERNAL_ID_TTL_SECONDS = 24 * 60 * 60
TITLE_MATCH_THRESHOLD = 0.5

_LOOKUP_ERRORS = (PackratError, ClientError, asyncio.TimeoutError)


def _normalize_title(text: str) -> str:
    text = text.lower()
    text = re.sub(r"[^a-z0-9\s]", " ", text)
    text = re.sub(r"\s+", " ", text)
    return text.strip()


def levenshtein(a: str, b: str) -> int:
    if len(a) < len(b):
        a, b = b, a
    previous = list(range(len(b) + 1))
    for i, ca in enumerate(a, start=1):
        current = [i]
        for j, cb in enumerate(b, start=1):
            current.append(min(previous[j] + 1, current[j - 1] + 1, previous[j - 1] + (ca != cb)))
        previous = current
    return previous[-1]


def title_similarity(s1: str, s2: str) -> float:
    """Normalized Levenshtein similarity (0.0 to 1.0) after lowercasing and punctuation stripping."""
    a, b = _normalize_title(s1), _normalize_title(s2)
    if not a or not b:
        return 0.0
    if a == b:
        return 1.0
    return 1.0 - levenshtein(a, b) / max(len(a), len(b))


def year_bonus(release_year: Optional[int], record_year: Optional[int]) -> float:
    if release_year is None or record_year is None:
        return 0.0
    if release_year == record_year:
        return 0.2
    if abs(release_year - record_year) <= 1:
        return 0.1
    return 0.0


def years_compatible(release_year: Optional[int], record_year: Optional[int]) -> bool:
    if release_year is None or record_year is None:
        return True
    return abs(release_year - record_year) <= 1


class ExternalIdCache:
    """Reverse-lookup results keyed by (source, id), fresh for 24 hours."""

    def __init__(self, ttl_seconds: float = EXTERNAL_ID_TTL_SECONDS):
        self.ttl_seconds = ttl_seconds
        self._entries: dict[tuple[str, str], tuple[float, Optional[MetadataRecord]]] = {}

    def get(self, source: str, external_id: str) -> tuple[bool, Optional[MetadataRecord]]:
        entry = self._entries.get((source, external_id))
        if entry is None:
            return False, None
        stored_at, record = entry
        if time.monotonic() - stored_at >= self.ttl_seconds:
            del self._entries[(source, external_id)]
            return False, None
        return True, record

    def put(self, source: str, external_id: str, record: Optional[MetadataRecord]) -> None:
        self._entries[(source, external_id)] = (time.monotonic(), record)

    def __len__(self) -> int:
        return len(self._entries)


class CanonicalMetadataMatcher:
    """
    Match releases to catalog entries, first success wins:

    1. tmdb hint (year-checked)
    2. imdb hint via reverse lookup (year-checked)
    3. tvdb hint via reverse lookup
    4. the same three ids embedded in the release title
    5. fuzzy title search
    """

    def __init__(self, service: MetadataService, cache: Optional[ExternalIdCache] = None):
        self.service = service
        self.cache = cache or ExternalIdCache()

    async def match(self, parsed: ParsedRelease, hint: Optional[MetadataHint] = None) -> Optional[MetadataMatch]:
        hint = hint or MetadataHint(media_type="tv" if parsed.episode else "movie")
        media_type = hint.media_type

        found = await self._match_ids(parsed, media_type, hint.tmdb_id, hint.imdb_id, hint.tvdb_id, "hint")
        if found:
            return found

        embedded = extract_external_ids(parsed.title)
        if embedded:
            found = await self._match_ids(
                parsed,
                media_type,
                embedded.get("tmdb_id"),
                embedded.get("imdb_id"),
                embedded.get("tvdb_id"),
                "title",
            )
            if found:
                return found

        return await self._match_title(parsed, media_type)

    async def _match_ids(
        self,
        parsed: ParsedRelease,
        media_type: str,
        tmdb_id,
        imdb_id,
        tvdb_id,
        origin: str,
    ) -> Optional[MetadataMatch]:
        if tmdb_id:
            record = await self._safe(self.service.get_by_id(int(tmdb_id), media_type), f"tmdb {tmdb_id}")
            if record and years_compatible(parsed.year, record.year):
                return self._to_match(record, 1.0, f"{origin}:tmdb_id")
            if record:
                logger.get_logger().debug(
                    f"[Metadata] tmdb {tmdb_id} year {record.year} conflicts with release year {parsed.year}"
                )
        if imdb_id:
            record = await self._reverse_lookup(str(imdb_id), "imdb_id", media_type)
            if record and years_compatible(parsed.year, record.year):
                return self._to_match(record, 1.0, f"{origin}:imdb_id")
        if tvdb_id:
            record = await self._reverse_lookup(str(tvdb_id), "tvdb_id", media_type)
            if record:
                return self._to_match(record, 1.0, f"{origin}:tvdb_id")
        return None

    async def _reverse_lookup(self, external_id: str, source: str, media_type: str) -> Optional[MetadataRecord]:
        hit, record = self.cache.get(source, external_id)
        if hit:
            return record
        try:
            record = await self.service.find_by_external_id(external_id, source, media_type)
        except _LOOKUP_ERRORS as e:
            logger.get_logger().warning(f"[Metadata] Lookup failed for {source} {external_id}: {e}")
            return None
        self.cache.put(source, external_id, record)
        return record

    async def _match_title(self, parsed: ParsedRelease, media_type: str) -> Optional[MetadataMatch]:
        if not parsed.clean_title:
            return None
        records = await self._safe(self.service.search(parsed.clean_title, media_type, parsed.year), "title search")
        if not records and parsed.year is not None:
            records = await self._safe(self.service.search(parsed.clean_title, media_type, None), "title search")

        best: Optional[MetadataRecord] = None
        best_score = 0.0
        for record in records or []:
            similarity = max(
                title_similarity(parsed.clean_title, record.title),
                title_similarity(parsed.clean_title, record.original_title),
            )
            score = 0.8 * similarity + year_bonus(parsed.year, record.year)
            if score > best_score:
                best, best_score = record, score
        if best is None or best_score <= TITLE_MATCH_THRESHOLD:
            return None
        return self._to_match(best, round(best_score, 3), "title")

    @staticmethod
    async def _safe(awaitable, what: str):
        try:
            return await awaitable
        except _LOOKUP_ERRORS as e:
            logger.get_logger().warning(f"[Metadata] Lookup failed for {what}: {e}")
            return None

    @staticmethod
    def _to_match(record: MetadataRecord, confidence: float, matched_by: str) -> MetadataMatch:
        return MetadataMatch(
            tmdb_id=record.tmdb_id,
            title=record.title,
            media_type=record.media_type,
            year=record.year,
            confidence=confidence,
            matched_by=matched_by,
        )
