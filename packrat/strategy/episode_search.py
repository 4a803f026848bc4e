"""Search for one missing episode, falling back from identifier search to free text."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, replace
from typing import Callable, Iterator, Optional, Sequence

from packrat import logger
from packrat.quality.enricher import EnrichOptions, ReleaseEnricher
from packrat.quality.matcher import TITLE_MATCH_THRESHOLD, title_similarity
from packrat.quality.parser import parse_release
from packrat.quality.types import ParsedRelease, ScoredCandidate
from packrat.search.types import RawResult, SearchCriteria
from packrat.strategy.commit import CandidateCommitter
from packrat.strategy.protocols import ReleaseSource
from packrat.strategy.state import MissingEpisode, SeriesContext

Keep = Callable[[ParsedRelease], bool]


@dataclass(frozen=True)
class EpisodeSearchResult:
    episode: MissingEpisode
    found: bool = False
    grabbed: bool = False
    release_name: str = ""
    queue_item_id: Optional[int] = None
    episodes_covered: tuple[int, ...] = ()


def series_criteria(series: SeriesContext, season: Optional[int] = None, episode: Optional[int] = None) -> SearchCriteria:
    return SearchCriteria.tv(
        series.title,
        tmdb_id=series.tmdb_id,
        tvdb_id=series.tvdb_id,
        imdb_id=series.imdb_id,
        season=season,
        episode=episode,
    )


def covers_episode(parsed: ParsedRelease, episode: MissingEpisode) -> bool:
    info = parsed.episode
    return (
        info is not None
        and not info.is_season_pack
        and info.season == episode.season
        and episode.episode in info.episodes
    )


def matches_series(parsed: ParsedRelease, series: SeriesContext) -> bool:
    return title_similarity(parsed.clean_title, series.title) > TITLE_MATCH_THRESHOLD


class CandidateFinder:
    """One fan-out search, filtered on the parsed title, then scored best-first."""

    def __init__(self, source: ReleaseSource, enricher: ReleaseEnricher, options: EnrichOptions):
        self.source = source
        self.enricher = enricher
        self.options = options

    async def search(self, criteria: SearchCriteria, cancel: Optional[asyncio.Event] = None) -> list[RawResult]:
        outcome = await self.source.search_all(criteria, cancel)
        if outcome.failures:
            logger.get_logger().debug(f"[PackSearch] {len(outcome.failures)} index(es) failed: {outcome.failures}")
        return outcome.results

    async def rank(
        self,
        raw_results: Sequence[RawResult],
        keep: Keep,
        episode_count: Optional[int] = None,
    ) -> list[ScoredCandidate]:
        parsed = {}
        kept = []
        for raw in raw_results:
            release = parse_release(raw.title)
            if keep(release):
                parsed[raw.identity] = release
                kept.append(raw)
        if not kept:
            return []
        options = replace(self.options, media_type="episode", episode_count=episode_count, parsed=parsed)
        enriched = await self.enricher.enrich(kept, options)
        return enriched.candidates

    async def find(
        self,
        criteria: SearchCriteria,
        keep: Keep,
        episode_count: Optional[int] = None,
        cancel: Optional[asyncio.Event] = None,
    ) -> list[ScoredCandidate]:
        return await self.rank(await self.search(criteria, cancel), keep, episode_count)


class EpisodeSearch:
    """
    Cascade for a single episode: identifier search with season and
    episode, then a free-text ``Title SxxEyy`` search if the first step
    turned up nothing usable.
    """

    def __init__(self, finder: CandidateFinder, committer: CandidateCommitter):
        self.finder = finder
        self.committer = committer

    def _cascade(self, series: SeriesContext, episode: MissingEpisode) -> Iterator[tuple[SearchCriteria, Keep]]:
        yield series_criteria(series, episode.season, episode.episode), lambda parsed: covers_episode(parsed, episode)
        # Free-text hits must also name this series.
        yield (
            SearchCriteria.basic(f"{series.title} {episode.label}"),
            lambda parsed: covers_episode(parsed, episode) and matches_series(parsed, series),
        )

    async def search_episode(
        self,
        series: SeriesContext,
        episode: MissingEpisode,
        cancel: Optional[asyncio.Event] = None,
        is_automatic: bool = True,
    ) -> EpisodeSearchResult:
        for criteria, keep in self._cascade(series, episode):
            if cancel is not None and cancel.is_set():
                break
            candidates = await self.finder.find(
                criteria,
                keep,
                episode_count=1,
                cancel=cancel,
            )
            if not candidates:
                continue
            commit = await self.committer.commit_first(
                candidates,
                series.series_id,
                [episode.id],
                season_number=episode.season,
                is_automatic=is_automatic,
            )
            if commit is None:
                return EpisodeSearchResult(episode=episode, found=True)
            logger.get_logger().info(f"[PackSearch] Grabbed {commit.result.release_name} for {episode.label}")
            return EpisodeSearchResult(
                episode=episode,
                found=True,
                grabbed=True,
                release_name=commit.result.release_name,
                queue_item_id=commit.result.queue_item_id,
                episodes_covered=commit.result.episodes_covered or (episode.id,),
            )
        return EpisodeSearchResult(episode=episode)
