"""Parse, score, match and rank raw index hits."""

from __future__ import annotations

import asyncio
import math
import time
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Mapping, Optional, Sequence

from packrat import logger
from packrat.config import IndexConfig
from packrat.quality.matcher import CanonicalMetadataMatcher
from packrat.quality.parser import parse_release
from packrat.quality.profiles import DEFAULT_PROFILE, ScoringProfile, pack_bonus, score_quality
from packrat.quality.protocol_rules import protocol_rejection
from packrat.quality.types import (
    EnrichmentResult,
    MetadataHint,
    ParsedRelease,
    ScoreBreakdown,
    ScoredCandidate,
)
from packrat.search.types import RawResult

ENHANCEMENT_BONUS = 20
HARDCODED_SUBS_PENALTY = -50


def availability_bonus(base: int, seeders: Optional[int]) -> int:
    if not seeders or seeders <= 0:
        return 0
    return min(50, round(base * 0.05 * min(1.0, math.log10(seeders + 1) / 3)))


def freshness_bonus(base: int, published: Optional[datetime], now: datetime) -> int:
    if published is None:
        return 0
    if published.tzinfo is None:
        published = published.replace(tzinfo=timezone.utc)
    age_hours = (now - published).total_seconds() / 3600
    if age_hours < 24:
        return min(30, round(base * 0.03))
    if age_hours < 24 * 7:
        return min(15, round(base * 0.015))
    return 0


def enhancement_bonus(parsed: ParsedRelease, matched_formats: Sequence[str]) -> int:
    if not (parsed.is_proper or parsed.is_repack):
        return 0
    if "proper" in matched_formats or "repack" in matched_formats:
        return 0
    return ENHANCEMENT_BONUS


def confidence_bonus(base: int, parse_confidence: float) -> int:
    return min(30, round(base * 0.03 * parse_confidence))


@dataclass
class EnrichOptions:
    profile: ScoringProfile = DEFAULT_PROFILE
    media_type: Optional[str] = None
    episode_count: Optional[int] = None
    hint: Optional[MetadataHint] = None
    resolve_metadata: bool = False
    drop_rejected: bool = False
    min_score: Optional[int] = None
    now: Optional[datetime] = None
    # Parses already made by the caller, keyed by RawResult.identity.
    parsed: Mapping[str, ParsedRelease] = field(default_factory=dict)


class ReleaseEnricher:
    def __init__(
        self,
        index_configs: Optional[Mapping[str, IndexConfig]] = None,
        matcher: Optional[CanonicalMetadataMatcher] = None,
    ):
        self.index_configs = dict(index_configs or {})
        self.matcher = matcher

    def score(
        self,
        raw: RawResult,
        options: EnrichOptions,
        parsed: Optional[ParsedRelease] = None,
    ) -> ScoredCandidate:
        """Score one hit. Pure for a fixed ``options.now``."""
        parsed = parsed or options.parsed.get(raw.identity) or parse_release(raw.title)
        profile = options.profile
        now = options.now or datetime.now(timezone.utc)

        quality = score_quality(parsed, profile, raw.size, options.media_type, options.episode_count)
        base = quality.base
        breakdown = ScoreBreakdown(
            base=base,
            availability=availability_bonus(base, raw.seeders),
            freshness=freshness_bonus(base, raw.publish_date, now),
            enhancement=enhancement_bonus(parsed, quality.matched_formats),
            pack=pack_bonus(parsed, profile.pack_preference),
            confidence=confidence_bonus(base, parsed.confidence),
            penalties=HARDCODED_SUBS_PENALTY if parsed.hardcoded_subs else 0,
        )

        reason = quality.rejection_reason
        if not reason and raw.protocol not in profile.allowed_protocols:
            allowed = ", ".join(sorted(p.value for p in profile.allowed_protocols))
            reason = f"Protocol '{raw.protocol.value}' not allowed for profile '{profile.name}' (allowed: {allowed})"
        if not reason:
            reason = protocol_rejection(raw, parsed, self.index_configs.get(raw.index_id), now) or ""

        return ScoredCandidate(
            raw=raw,
            parsed=parsed,
            quality_score=base,
            breakdown=breakdown,
            matched_formats=quality.matched_formats,
            rejected=bool(reason),
            rejection_reason=reason,
        )

    async def _resolve(self, candidate: ScoredCandidate, hint: Optional[MetadataHint]) -> ScoredCandidate:
        if self.matcher is not None:
            candidate.match = await self.matcher.match(candidate.parsed, hint)
        return candidate

    async def enrich(self, raw_results: Sequence[RawResult], options: Optional[EnrichOptions] = None) -> EnrichmentResult:
        """
        Score every hit against ``options.profile`` and sort best-first.

        Rejected hits stay in the list (with a reason) unless
        ``drop_rejected`` is set; ``min_score`` drops anything below it.
        """
        options = options or EnrichOptions()
        if options.now is None:
            options = replace(options, now=datetime.now(timezone.utc))
        started = time.monotonic()

        candidates = [self.score(raw, options) for raw in raw_results]
        if options.resolve_metadata and self.matcher is not None:
            candidates = list(await asyncio.gather(*(self._resolve(c, options.hint) for c in candidates)))

        rejected_count = 0
        for candidate in candidates:
            if candidate.rejected:
                rejected_count += 1
                logger.get_logger().debug(f"[Enricher] Rejected {candidate.title}: {candidate.rejection_reason}")

        if options.drop_rejected:
            candidates = [c for c in candidates if not c.rejected]
        if options.min_score is not None:
            candidates = [c for c in candidates if c.total_score >= options.min_score]
        candidates.sort(key=lambda c: c.total_score, reverse=True)

        return EnrichmentResult(
            candidates=candidates,
            rejected_count=rejected_count,
            profile_used=options.profile.name,
            elapsed_ms=(time.monotonic() - started) * 1000,
        )
