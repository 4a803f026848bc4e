"""Run-scoped values threaded through the pack-aware search phases."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Dict, Iterable, Mapping, Optional

from packrat.strategy.progress import StrategyPhase


@dataclass(frozen=True)
class MissingEpisode:
    id: int
    season: int
    episode: int

    @property
    def label(self) -> str:
        return f"S{self.season:02d}E{self.episode:02d}"


@dataclass(frozen=True)
class SeriesContext:
    series_id: int
    title: str
    season_episode_counts: Mapping[int, int]
    tmdb_id: Optional[int] = None
    tvdb_id: Optional[int] = None
    imdb_id: Optional[str] = None
    year: Optional[int] = None

    @property
    def seasons(self) -> list[int]:
        return sorted(s for s, count in self.season_episode_counts.items() if count > 0)


@dataclass(frozen=True)
class PhaseGrab:
    phase: StrategyPhase
    release_name: str
    episode_ids: tuple[int, ...]
    seasons: tuple[int, ...] = ()
    queue_item_id: Optional[int] = None


@dataclass(frozen=True)
class SearchPhaseState:
    """
    Missing episodes, per-season totals and the ids covered so far.

    Each phase receives a state and returns a new one; ``covered`` only
    ever grows.
    """

    missing: tuple[MissingEpisode, ...]
    season_totals: Mapping[int, int]
    covered: frozenset[int] = frozenset()
    phase: StrategyPhase = StrategyPhase.INITIALIZING
    grabs: tuple[PhaseGrab, ...] = ()

    @classmethod
    def start(cls, series: SeriesContext, missing: Iterable[MissingEpisode]) -> "SearchPhaseState":
        missing = tuple(sorted(set(missing), key=lambda ep: (ep.season, ep.episode)))
        totals: Dict[int, int] = dict(series.season_episode_counts)
        for season, episodes in cls._group(missing).items():
            # A season the library undercounts still has at least its missing episodes.
            totals[season] = max(totals.get(season, 0), len(episodes))
        return cls(missing=missing, season_totals=totals)

    @staticmethod
    def _group(episodes: Iterable[MissingEpisode]) -> Dict[int, list[MissingEpisode]]:
        grouped: Dict[int, list[MissingEpisode]] = {}
        for ep in episodes:
            grouped.setdefault(ep.season, []).append(ep)
        return grouped

    @property
    def remaining(self) -> tuple[MissingEpisode, ...]:
        return tuple(ep for ep in self.missing if ep.id not in self.covered)

    @property
    def total_in_series(self) -> int:
        return sum(self.season_totals.values())

    @property
    def is_satisfied(self) -> bool:
        return not self.remaining

    def missing_by_season(self, remaining_only: bool = True) -> Dict[int, list[MissingEpisode]]:
        return self._group(self.remaining if remaining_only else self.missing)

    def missing_ratio(self, seasons: Optional[Iterable[int]] = None, remaining_only: bool = True) -> float:
        """Percent of the episodes in ``seasons`` (default: all) that are missing."""
        episodes = self.remaining if remaining_only else self.missing
        if seasons is None:
            total = self.total_in_series
            count = len(episodes)
        else:
            wanted = set(seasons)
            total = sum(self.season_totals.get(s, 0) for s in wanted)
            count = sum(1 for ep in episodes if ep.season in wanted)
        if total <= 0:
            return 0.0
        return count / total * 100

    def ids_in(self, seasons: Iterable[int]) -> tuple[int, ...]:
        wanted = set(seasons)
        return tuple(ep.id for ep in self.remaining if ep.season in wanted)

    def with_phase(self, phase: StrategyPhase) -> "SearchPhaseState":
        return replace(self, phase=phase)

    def with_grab(self, grab: PhaseGrab, covered: Iterable[int]) -> "SearchPhaseState":
        return replace(self, covered=self.covered | frozenset(covered), grabs=self.grabs + (grab,))


@dataclass(frozen=True)
class StrategyResult:
    series_id: int
    grabs: tuple[PhaseGrab, ...] = ()
    covered: frozenset[int] = frozenset()
    summary: Dict[str, int] = field(default_factory=dict)
    remaining: tuple[MissingEpisode, ...] = ()
    cancelled: bool = False
