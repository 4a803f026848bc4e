from __future__ import annotations

import aiohttp
import pytest

from packrat.quality import matcher as matcher_module
from packrat.quality.matcher import CanonicalMetadataMatcher, ExternalIdCache, title_similarity
from packrat.quality.parser import parse_release
from packrat.quality.types import MetadataHint, MetadataRecord

THRONES = MetadataRecord(tmdb_id=1399, title="Game of Thrones", media_type="tv", year=2011, imdb_id="tt0944947", tvdb_id=121361)
HEAT = MetadataRecord(tmdb_id=949, title="Heat", media_type="movie", year=1995)
HEAT_REMAKE = MetadataRecord(tmdb_id=5000, title="Heat", media_type="movie", year=2013)


class _FakeLog:
    def __init__(self) -> None:
        self.warnings: list[str] = []

    def warning(self, message: str) -> None:
        self.warnings.append(message)

    def debug(self, *_args, **_kwargs) -> None:
        return None


class _FakeService:
    def __init__(self, records=(), external=None, fail_search: bool = False) -> None:
        self.records = list(records)
        self.external = dict(external or {})
        self.fail_search = fail_search
        self.lookups: list[tuple[str, str]] = []
        self.searches: list[tuple[str, int | None]] = []

    async def get_by_id(self, tmdb_id, media_type):
        return next((r for r in self.records if r.tmdb_id == tmdb_id), None)

    async def find_by_external_id(self, external_id, source, media_type):
        self.lookups.append((source, external_id))
        return self.external.get((source, external_id))

    async def search(self, title, media_type, year=None):
        self.searches.append((title, year))
        if self.fail_search:
            raise aiohttp.ClientConnectionError("catalog down")
        return [r for r in self.records if year is None or r.year == year]


@pytest.fixture
def log(monkeypatch: pytest.MonkeyPatch) -> _FakeLog:
    fake = _FakeLog()
    monkeypatch.setattr(matcher_module.logger, "get_logger", lambda: fake)
    return fake


def test_title_similarity_ignores_case_and_punctuation() -> None:
    assert title_similarity("Game.of.Thrones!", "game of thrones") == 1.0
    assert title_similarity("", "anything") == 0.0
    assert 0.0 < title_similarity("Game of Throne", "Game of Thrones") < 1.0


@pytest.mark.asyncio
async def test_tmdb_hint_wins(log: _FakeLog) -> None:
    service = _FakeService([THRONES])
    matcher = CanonicalMetadataMatcher(service)

    match = await matcher.match(parse_release("GoT.S01E01.720p"), MetadataHint(media_type="tv", tmdb_id=1399))

    assert (match.tmdb_id, match.confidence, match.matched_by) == (1399, 1.0, "hint:tmdb_id")
    assert service.searches == []


@pytest.mark.asyncio
async def test_imdb_hint_reverse_lookup_is_cached(log: _FakeLog) -> None:
    service = _FakeService(external={("imdb_id", "tt0944947"): THRONES})
    matcher = CanonicalMetadataMatcher(service)
    hint = MetadataHint(media_type="tv", imdb_id="tt0944947")

    first = await matcher.match(parse_release("GoT.S01E01"), hint)
    second = await matcher.match(parse_release("GoT.S01E02"), hint)

    assert first.matched_by == second.matched_by == "hint:imdb_id"
    assert service.lookups == [("imdb_id", "tt0944947")]


@pytest.mark.asyncio
async def test_embedded_tvdb_id_in_title(log: _FakeLog) -> None:
    service = _FakeService(external={("tvdb_id", "121361"): THRONES})

    match = await CanonicalMetadataMatcher(service).match(parse_release("Game of Thrones [tvdbid-121361] S01E01"))

    assert match.tmdb_id == 1399
    assert match.matched_by == "title:tvdb_id"


@pytest.mark.asyncio
async def test_fuzzy_title_prefers_matching_year(log: _FakeLog) -> None:
    service = _FakeService([HEAT_REMAKE, HEAT])

    match = await CanonicalMetadataMatcher(service).match(parse_release("Heat.1995.1080p.BluRay.x264-GRP"))

    assert match.tmdb_id == 949
    assert match.matched_by == "title"
    assert match.confidence == 1.0


@pytest.mark.asyncio
async def test_title_search_failure_is_logged_not_raised(log: _FakeLog) -> None:
    service = _FakeService(fail_search=True)

    match = await CanonicalMetadataMatcher(service).match(parse_release("Heat.1995.1080p"))

    assert match is None
    assert log.warnings[0].startswith("[Metadata] Lookup failed for title search")


def test_external_id_cache_expires(monkeypatch: pytest.MonkeyPatch) -> None:
    clock = {"now": 1000.0}
    monkeypatch.setattr(matcher_module.time, "monotonic", lambda: clock["now"])
    cache = ExternalIdCache(ttl_seconds=60)

    cache.put("imdb_id", "tt1", HEAT)
    assert cache.get("imdb_id", "tt1") == (True, HEAT)

    clock["now"] += 61
    assert cache.get("imdb_id", "tt1") == (False, None)
    assert len(cache) == 0
