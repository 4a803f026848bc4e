from __future__ import annotations

import pytest

from packrat.grab.decision import ReleaseDecisionService
from packrat.grab.types import EpisodeRecord, MediaFile, MovieRecord
from packrat.quality.parser import parse_release
from packrat.quality.profiles import ScoringProfile
from packrat.quality.types import ScoreBreakdown, ScoredCandidate
from packrat.search.types import Protocol, RawResult


class _FakeRepository:
    def __init__(self, episodes=(), files=(), movie=None, movie_files=()) -> None:
        self.episodes = {ep.id: ep for ep in episodes}
        self.files = list(files)
        self.movie = movie
        self._movie_files = list(movie_files)

    async def get_movie(self, movie_id):
        return self.movie

    async def movie_files(self, movie_id):
        return self._movie_files

    async def get_episodes(self, episode_ids):
        return [self.episodes[i] for i in episode_ids if i in self.episodes]

    async def season_episodes(self, series_id, season):
        return [ep for ep in self.episodes.values() if ep.season_number == season]

    async def episode_files(self, episode_ids):
        return [f for f in self.files if set(f.episode_ids) & set(episode_ids)]


def _candidate(score: int, rejection: str = "") -> ScoredCandidate:
    raw = RawResult(title="Show.S01.1080p.WEB-DL-GRP", index_id="demo", index_name="Demo", protocol=Protocol.TORRENT)
    return ScoredCandidate(
        raw=raw,
        parsed=parse_release(raw.title),
        quality_score=score,
        breakdown=ScoreBreakdown(base=score),
        rejected=bool(rejection),
        rejection_reason=rejection,
    )


def _episodes(has_file: bool) -> list[EpisodeRecord]:
    return [EpisodeRecord(id=i, series_id=1, season_number=1, episode_number=i, has_file=has_file) for i in (1, 2)]


_EXISTING = [MediaFile(id=10, relative_path="a.mkv", quality={"score": 400}, episode_ids=(1, 2))]


@pytest.mark.asyncio
async def test_missing_episode_accepts() -> None:
    episodes = _episodes(False)
    service = ReleaseDecisionService(_FakeRepository(episodes))

    decision = await service.evaluate_for_episodes(_candidate(100), [1, 2])

    assert decision.accepted is True
    assert decision.is_upgrade is False


@pytest.mark.asyncio
async def test_unknown_episode_counts_as_missing() -> None:
    service = ReleaseDecisionService(_FakeRepository(_episodes(True), _EXISTING))

    assert (await service.evaluate_for_episodes(_candidate(100), [1, 2, 3])).accepted is True


@pytest.mark.asyncio
async def test_better_quality_is_an_upgrade() -> None:
    service = ReleaseDecisionService(_FakeRepository(_episodes(True), _EXISTING))

    decision = await service.evaluate_for_season(_candidate(500), series_id=1, season=1)

    assert decision.accepted is True
    assert decision.is_upgrade is True


@pytest.mark.asyncio
async def test_equal_quality_is_rejected() -> None:
    service = ReleaseDecisionService(_FakeRepository(_episodes(True), _EXISTING))

    decision = await service.evaluate_for_series(_candidate(400), series_id=1, seasons=[1])

    assert decision.accepted is False
    assert decision.reason == "Existing file(s) already meet or exceed this quality"


@pytest.mark.asyncio
async def test_profile_without_upgrades_rejects() -> None:
    profile = ScoringProfile(name="keep", upgrades_allowed=False)
    service = ReleaseDecisionService(_FakeRepository(_episodes(True), _EXISTING), profile)

    decision = await service.evaluate_for_episodes(_candidate(900), [1, 2])

    assert decision.reason == "Upgrades not allowed by profile 'keep'"


@pytest.mark.asyncio
async def test_rejected_candidate_and_empty_target() -> None:
    service = ReleaseDecisionService(_FakeRepository(_episodes(False)))

    rejected = await service.evaluate_for_episodes(_candidate(900, "Banned: cam"), [1])
    empty = await service.evaluate_for_episodes(_candidate(900), [])

    assert (rejected.accepted, rejected.reason) == (False, "Banned: cam")
    assert (empty.accepted, empty.reason) == (False, "No episodes to evaluate")


@pytest.mark.asyncio
async def test_movie_decisions() -> None:
    movie = MovieRecord(id=1, title="Film", root_folder="/lib", path="Film", has_file=True)
    files = [MediaFile(id=3, relative_path="Film/Film.mkv", quality={"score": 300})]

    missing = await ReleaseDecisionService(_FakeRepository()).evaluate_for_movie(_candidate(100), 1)
    upgrade = await ReleaseDecisionService(_FakeRepository(movie=movie, movie_files=files)).evaluate_for_movie(
        _candidate(350), 1
    )

    assert missing.accepted is True
    assert upgrade.is_upgrade is True
