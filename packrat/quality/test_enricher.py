from __future__ import annotations

from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from packrat.config import IndexConfig
from packrat.indexers.response_parser import _parse_date
from packrat.quality import enricher as enricher_module
from packrat.quality.enricher import EnrichOptions, ReleaseEnricher, availability_bonus, freshness_bonus
from packrat.quality.profiles import DEFAULT_FORMAT_SCORES, ScoringProfile
from packrat.quality.types import MetadataHint, MetadataMatch
from packrat.search.types import Protocol, RawResult

NOW = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)


class _FakeLog:
    def debug(self, *_args, **_kwargs) -> None:
        return None


class _FakeMatcher:
    def __init__(self) -> None:
        self.calls = 0

    async def match(self, parsed, hint):
        self.calls += 1
        return MetadataMatch(tmdb_id=hint.tmdb_id, title="Show Name", media_type="tv", year=None, confidence=1.0, matched_by="hint:tmdb_id")


@pytest.fixture(autouse=True)
def _quiet(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(enricher_module.logger, "get_logger", lambda: _FakeLog())


def _raw(title: str, **kwargs) -> RawResult:
    kwargs.setdefault("protocol", Protocol.TORRENT)
    return RawResult(title=title, index_id="demo", index_name="Demo", guid=title, **kwargs)


def test_bonuses_are_bounded() -> None:
    assert availability_bonus(1000, 0) == 0
    assert availability_bonus(1000, 999) == 50
    assert freshness_bonus(1000, NOW - timedelta(hours=2), NOW) == 30
    assert freshness_bonus(1000, NOW - timedelta(days=3), NOW) == 15
    assert freshness_bonus(1000, NOW - timedelta(days=30), NOW) == 0


@pytest.mark.asyncio
async def test_hd_season_pack_clears_min_score() -> None:
    profile = ScoringProfile(name="hd", format_scores={**DEFAULT_FORMAT_SCORES, "1080p": 400, "bluray": 200})
    raw = _raw("Show.Name.S01.1080p.BluRay.x265-GRP", seeders=500)

    result = await ReleaseEnricher().enrich([raw], EnrichOptions(profile=profile, min_score=500, now=NOW))

    [candidate] = result.candidates
    assert candidate.episode.seasons == (1,)
    assert candidate.episode.is_season_pack is True
    assert candidate.quality_score == 100 + 400 + 200 + 40
    assert candidate.rejected is False
    assert candidate.total_score >= 500
    assert result.profile_used == "hd"


@pytest.mark.asyncio
async def test_higher_quality_never_ranks_lower() -> None:
    raws = [
        _raw("Show.S01E01.480p.HDTV.x264-GRP", seeders=50),
        _raw("Show.S01E01.1080p.BluRay.x264-GRP", seeders=50),
        _raw("Show.S01E01.720p.WEB-DL.x264-GRP", seeders=50),
    ]

    result = await ReleaseEnricher().enrich(raws, EnrichOptions(now=NOW))

    assert [c.parsed.resolution for c in result.candidates] == ["1080p", "720p", "480p"]
    scores = [c.quality_score for c in result.candidates]
    assert scores == sorted(scores, reverse=True)


@pytest.mark.asyncio
async def test_pack_bonus_is_added_on_top_of_quality() -> None:
    pack = _raw("Show.S01.1080p.WEB-DL.x264-GRP")
    episode = _raw("Show.S01E01.1080p.WEB-DL.x264-GRP")

    result = await ReleaseEnricher().enrich([episode, pack], EnrichOptions(now=NOW))
    by_title = {c.title: c for c in result.candidates}

    assert by_title[pack.title].quality_score == by_title[episode.title].quality_score
    assert by_title[pack.title].breakdown.pack == 100
    assert by_title[pack.title].total_score - by_title[episode.title].total_score == 100


@pytest.mark.asyncio
async def test_enrich_is_repeatable_for_fixed_now() -> None:
    raws = [
        _raw("Show.S01E01.720p.HDTV.x264-GRP", seeders=5, publish_date=NOW - timedelta(hours=3)),
        _raw("Show.S01E01.1080p.WEB-DL.x265-GRP", seeders=80, publish_date=NOW - timedelta(days=2)),
    ]
    enricher = ReleaseEnricher()
    options = EnrichOptions(now=NOW)

    first = await enricher.enrich(raws, options)
    second = await enricher.enrich(raws, options)

    assert [(c.title, c.total_score) for c in first.candidates] == [(c.title, c.total_score) for c in second.candidates]


@pytest.mark.asyncio
async def test_rejections_are_kept_or_dropped_on_request() -> None:
    configs = {"demo": IndexConfig(definition=Path("demo.toml"), torrent={"minimum_seeders": 10})}
    raws = [_raw("Show.S01E01.1080p.WEB-DL-GRP", seeders=2), _raw("Show.S01E01.720p.WEB-DL-GRP", seeders=20)]
    enricher = ReleaseEnricher(configs)

    kept = await enricher.enrich(raws, EnrichOptions(now=NOW))
    dropped = await enricher.enrich(raws, EnrichOptions(now=NOW, drop_rejected=True))

    assert kept.rejected_count == 1
    assert [c.rejected for c in kept.candidates] == [True, False]
    assert kept.candidates[0].rejection_reason == "Not enough seeders (2 < 10)"
    assert [c.title for c in dropped.candidates] == ["Show.S01E01.720p.WEB-DL-GRP"]


@pytest.mark.asyncio
async def test_disallowed_protocol_is_rejected() -> None:
    profile = ScoringProfile(name="torrents", allowed_protocols=frozenset({Protocol.TORRENT}))

    result = await ReleaseEnricher().enrich(
        [_raw("Show.S01E01.720p", protocol=Protocol.USENET)], EnrichOptions(profile=profile, now=NOW)
    )

    assert result.candidates[0].rejection_reason == (
        "Protocol 'usenet' not allowed for profile 'torrents' (allowed: torrent)"
    )


@pytest.mark.asyncio
async def test_metadata_is_resolved_only_when_asked() -> None:
    matcher = _FakeMatcher()
    enricher = ReleaseEnricher(matcher=matcher)
    raws = [_raw("Show.Name.S01E01.720p")]

    plain = await enricher.enrich(raws, EnrichOptions(now=NOW))
    resolved = await enricher.enrich(
        raws, EnrichOptions(now=NOW, resolve_metadata=True, hint=MetadataHint(media_type="tv", tmdb_id=1399))
    )

    assert plain.candidates[0].match is None
    assert resolved.candidates[0].match.tmdb_id == 1399
    assert matcher.calls == 1


@pytest.mark.asyncio
async def test_usenet_retention_uses_the_injected_clock() -> None:
    configs = {"demo": IndexConfig(definition=Path("demo.toml"), usenet={"retention_days": 30})}
    raws = [
        _raw("Show.S01E01.720p.WEB-DL-GRP", protocol=Protocol.USENET, publish_date=NOW - timedelta(days=30)),
        _raw("Show.S01E02.720p.WEB-DL-GRP", protocol=Protocol.USENET, publish_date=NOW - timedelta(days=31)),
    ]

    result = await ReleaseEnricher(configs).enrich(raws, EnrichOptions(now=NOW))

    by_title = {c.title: c for c in result.candidates}
    assert by_title["Show.S01E01.720p.WEB-DL-GRP"].rejected is False
    assert by_title["Show.S01E02.720p.WEB-DL-GRP"].rejection_reason == "Older than retention (31 > 30 days)"


@pytest.mark.asyncio
async def test_feed_dates_without_a_zone_are_scored_and_checked() -> None:
    configs = {"demo": IndexConfig(definition=Path("demo.toml"), usenet={"retention_days": 3000})}
    published = _parse_date("Mon, 01 Jan 2024 00:00:00 -0000")
    raw = _raw("Show.S01E01.720p.WEB-DL-GRP", protocol=Protocol.USENET, publish_date=published)

    result = await ReleaseEnricher(configs).enrich([raw], EnrichOptions(now=NOW))

    assert result.candidates[0].rejected is False
