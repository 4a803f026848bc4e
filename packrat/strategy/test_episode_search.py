from __future__ import annotations

import pytest

from packrat.grab.decision import Decision
from packrat.grab.types import GrabResult
from packrat.indexers.registry import SearchOutcome
from packrat.quality.enricher import EnrichOptions, ReleaseEnricher
from packrat.quality.parser import parse_release
from packrat.search.types import Protocol, RawResult, SearchType
from packrat.strategy import episode_search as episode_search_mod
from packrat.strategy.commit import CandidateCommitter
from packrat.strategy.episode_search import CandidateFinder, EpisodeSearch, covers_episode, matches_series
from packrat.strategy.state import MissingEpisode, SeriesContext

SERIES = SeriesContext(series_id=7, title="The Show", season_episode_counts={1: 10}, tmdb_id=1399)
EPISODE = MissingEpisode(id=15, season=1, episode=5)


class _FakeLog:
    def __init__(self) -> None:
        self.warnings: list[str] = []

    def info(self, message: str) -> None:
        pass

    def debug(self, message: str) -> None:
        pass

    def warning(self, message: str) -> None:
        self.warnings.append(message)


class _TextOnlySource:
    """Identifier searches come back empty; free-text searches find the episode."""

    def __init__(self, titles=("The.Show.S01.720p.HDTV-GRP", "The.Show.S01E05.1080p.WEB-DL-GRP")) -> None:
        self.queries: list[tuple] = []
        self.titles = list(titles)

    async def search_all(self, criteria, cancel=None) -> SearchOutcome:
        self.queries.append((criteria.search_type, criteria.query))
        if criteria.search_type != SearchType.BASIC:
            return SearchOutcome(failures={"demo": "timed out after 30s"})
        titles = self.titles
        return SearchOutcome(
            results=[RawResult(title=t, index_id="demo", index_name="Demo", protocol=Protocol.TORRENT, guid=t) for t in titles]
        )


class _ScriptedDecisions:
    def __init__(self, *decisions: Decision) -> None:
        self.decisions = list(decisions)

    async def evaluate_for_episodes(self, candidate, episode_ids) -> Decision:
        return self.decisions.pop(0)


class _ScriptedGrabber:
    def __init__(self, *results: GrabResult) -> None:
        self.results = list(results)
        self.grabbed: list[str] = []

    async def grab(self, candidate, target) -> GrabResult:
        self.grabbed.append(candidate.title)
        return self.results.pop(0)


@pytest.fixture
def log(monkeypatch) -> _FakeLog:
    fake = _FakeLog()
    monkeypatch.setattr(episode_search_mod.logger, "get_logger", lambda: fake)
    return fake


def _finder(source) -> CandidateFinder:
    return CandidateFinder(source, ReleaseEnricher(), EnrichOptions(drop_rejected=True))


def test_season_pack_does_not_cover_a_single_episode() -> None:
    assert covers_episode(parse_release("The.Show.S01E05.720p-GRP"), EPISODE) is True
    assert covers_episode(parse_release("The.Show.S01E04-E06.720p-GRP"), EPISODE) is True
    assert covers_episode(parse_release("The.Show.S01.720p-GRP"), EPISODE) is False
    assert covers_episode(parse_release("The.Show.S02E05.720p-GRP"), EPISODE) is False


@pytest.mark.asyncio
async def test_falls_back_to_free_text_search(log) -> None:
    source = _TextOnlySource()
    grabber = _ScriptedGrabber(GrabResult(success=True, release_name="The.Show.S01E05.1080p.WEB-DL-GRP", queue_item_id=3))
    search = EpisodeSearch(_finder(source), CandidateCommitter(_ScriptedDecisions(Decision(True)), grabber))

    result = await search.search_episode(SERIES, EPISODE)

    assert source.queries == [(SearchType.TV, "The Show"), (SearchType.BASIC, "The Show S01E05")]
    assert grabber.grabbed == ["The.Show.S01E05.1080p.WEB-DL-GRP"]
    assert (result.found, result.grabbed, result.queue_item_id) == (True, True, 3)
    assert result.episodes_covered == (15,)


@pytest.mark.asyncio
async def test_free_text_hits_for_another_series_are_ignored(log) -> None:
    source = _TextOnlySource(["Gardening.Weekly.S01E05.1080p.WEB-DL-GRP"])
    grabber = _ScriptedGrabber()
    search = EpisodeSearch(_finder(source), CandidateCommitter(_ScriptedDecisions(Decision(True)), grabber))

    result = await search.search_episode(SERIES, EPISODE)

    assert (result.found, result.grabbed) == (False, False)
    assert grabber.grabbed == []


def test_series_title_must_match_for_free_text_hits() -> None:
    assert matches_series(parse_release("The.Show.S01E05.720p-GRP"), SERIES) is True
    assert matches_series(parse_release("Gardening.Weekly.S01E05.720p-GRP"), SERIES) is False

@pytest.mark.asyncio
async def test_found_but_rejected_is_not_grabbed(log) -> None:
    grabber = _ScriptedGrabber()
    decisions = _ScriptedDecisions(Decision(False, reason="Existing file(s) already meet or exceed this quality"))
    search = EpisodeSearch(_finder(_TextOnlySource()), CandidateCommitter(decisions, grabber))

    result = await search.search_episode(SERIES, EPISODE)

    assert (result.found, result.grabbed) == (True, False)
    assert grabber.grabbed == []


@pytest.mark.asyncio
async def test_committer_moves_past_rejections_and_failed_grabs(log) -> None:
    finder = _finder(_TextOnlySource())
    raws = [
        RawResult(title=t, index_id="demo", index_name="Demo", protocol=Protocol.TORRENT, guid=t)
        for t in ("The.Show.S01E05.2160p.WEB-DL-GRP", "The.Show.S01E05.1080p.WEB-DL-GRP", "The.Show.S01E05.480p.HDTV-GRP")
    ]
    candidates = await finder.rank(raws, lambda parsed: covers_episode(parsed, EPISODE), 1)
    decisions = _ScriptedDecisions(Decision(False, reason="Banned: 2160p"), Decision(True), Decision(True))
    grabber = _ScriptedGrabber(
        GrabResult(success=False, error="No enabled torrent download client configured"),
        GrabResult(success=True, release_name="The.Show.S01E05.480p.HDTV-GRP"),
    )
    rejected: list[tuple[str, str]] = []

    commit = await CandidateCommitter(decisions, grabber).commit_first(
        candidates, 7, [15], on_reject=lambda c, reason: rejected.append((c.title, reason))
    )

    assert commit.candidate.title == "The.Show.S01E05.480p.HDTV-GRP"
    assert rejected == [
        ("The.Show.S01E05.2160p.WEB-DL-GRP", "Banned: 2160p"),
        ("The.Show.S01E05.1080p.WEB-DL-GRP", "No enabled torrent download client configured"),
    ]
    assert len(log.warnings) == 1
