"""Accept/reject gate applied before a candidate is grabbed."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence

from packrat.grab.protocols import MediaFileRepository
from packrat.grab.types import MediaFile
from packrat.quality.profiles import DEFAULT_PROFILE, ScoringProfile
from packrat.quality.types import ScoredCandidate


@dataclass(frozen=True)
class Decision:
    accepted: bool
    is_upgrade: bool = False
    reason: str = ""


class ReleaseDecisionService:
    """
    Decides whether a scored candidate should be grabbed for a target.

    A target with any missing file always accepts. When every file is
    present the candidate has to be an upgrade the profile permits.
    """

    def __init__(self, repository: MediaFileRepository, profile: ScoringProfile = DEFAULT_PROFILE):
        self.repository = repository
        self.profile = profile

    async def evaluate_for_movie(self, candidate: ScoredCandidate, movie_id: int) -> Decision:
        if candidate.rejected:
            return Decision(False, reason=candidate.rejection_reason)
        movie = await self.repository.get_movie(movie_id)
        if movie is None or not movie.has_file:
            return Decision(True)
        files = await self.repository.movie_files(movie_id)
        return self._upgrade_decision(candidate, files)

    async def evaluate_for_episodes(self, candidate: ScoredCandidate, episode_ids: Sequence[int]) -> Decision:
        if candidate.rejected:
            return Decision(False, reason=candidate.rejection_reason)
        if not episode_ids:
            return Decision(False, reason="No episodes to evaluate")
        episodes = await self.repository.get_episodes(episode_ids)
        if len(episodes) < len(set(episode_ids)) or any(not ep.has_file for ep in episodes):
            return Decision(True)
        files = await self.repository.episode_files(episode_ids)
        return self._upgrade_decision(candidate, files)

    async def evaluate_for_season(self, candidate: ScoredCandidate, series_id: int, season: int) -> Decision:
        episodes = await self.repository.season_episodes(series_id, season)
        return await self.evaluate_for_episodes(candidate, [ep.id for ep in episodes])

    async def evaluate_for_series(self, candidate: ScoredCandidate, series_id: int, seasons: Sequence[int]) -> Decision:
        episode_ids: list[int] = []
        for season in seasons:
            episode_ids.extend(ep.id for ep in await self.repository.season_episodes(series_id, season))
        return await self.evaluate_for_episodes(candidate, episode_ids)

    def _upgrade_decision(self, candidate: ScoredCandidate, files: Sequence[MediaFile]) -> Decision:
        if not self.profile.upgrades_allowed:
            return Decision(False, reason=f"Upgrades not allowed by profile '{self.profile.name}'")
        existing = max((int(f.quality.get("score", 0) or 0) for f in files), default=0)
        if candidate.quality_score > existing:
            return Decision(True, is_upgrade=True, reason=f"Upgrade over existing quality {existing}")
        return Decision(False, reason="Existing file(s) already meet or exceed this quality")
