"""
pack_search.py - Pack-aware search for the missing episodes of one series

Phases run in order and each may finish the job:

1. complete series, when enough of the whole show is missing
2. multi-season packs over runs of consecutive seasons
3. single-season packs for seasons still mostly missing
4. whatever is left, one episode at a time with a delay between searches
"""

from __future__ import annotations

import asyncio
from typing import Any, Iterable, Optional, Sequence

import aiohttp

from packrat import logger
from packrat.config import StrategyConfig
from packrat.errors import PackratError, TargetNotFoundError
from packrat.quality.types import ParsedRelease
from packrat.search.types import RawResult
from packrat.strategy.commit import CandidateCommitter, Commit
from packrat.strategy.episode_search import CandidateFinder, EpisodeSearch, Keep, series_criteria
from packrat.strategy.progress import ProgressChannel, ProgressEvent, StrategyPhase
from packrat.strategy.state import MissingEpisode, PhaseGrab, SearchPhaseState, SeriesContext, StrategyResult

_PHASE_ERRORS = (PackratError, aiohttp.ClientError, asyncio.TimeoutError, ValueError)


def find_multi_season_ranges(state: SearchPhaseState, threshold: float) -> list[tuple[int, int]]:
    """
    Runs of at least two consecutive seasons with missing episodes whose
    combined missing percentage meets ``threshold``, widest first.
    """
    seasons = sorted(state.missing_by_season(remaining_only=False))
    ranges: list[tuple[int, int]] = []
    for i, start in enumerate(seasons):
        for j in range(i + 1, len(seasons)):
            if seasons[j] != seasons[j - 1] + 1:
                break
            if state.missing_ratio(seasons[i:j + 1], remaining_only=False) >= threshold:
                ranges.append((start, seasons[j]))
    ranges.sort(key=lambda r: r[1] - r[0], reverse=True)
    return ranges


def is_complete_series_pack(parsed: ParsedRelease, season_count: int) -> bool:
    info = parsed.episode
    if info is None:
        return False
    return info.is_complete_series or (info.is_season_pack and len(info.seasons) == season_count)


def covers_season_range(parsed: ParsedRelease, start: int, end: int) -> bool:
    info = parsed.episode
    if info is None or len(info.seasons) < 2:
        return False
    return min(info.seasons) <= start and max(info.seasons) >= end


def is_single_season_pack(parsed: ParsedRelease, season: int) -> bool:
    info = parsed.episode
    return info is not None and info.is_season_pack and info.seasons == (season,)


def _span(start: int, end: int) -> str:
    return f"S{start:02d}-S{end:02d}"


class PackAwareSearchStrategy:
    def __init__(
        self,
        finder: CandidateFinder,
        committer: CandidateCommitter,
        config: Optional[StrategyConfig] = None,
        episode_search: Optional[EpisodeSearch] = None,
    ):
        self.finder = finder
        self.committer = committer
        self.config = config or StrategyConfig()
        self.episode_search = episode_search or EpisodeSearch(finder, committer)

    async def run(
        self,
        series: SeriesContext,
        missing: Iterable[MissingEpisode],
        progress: Optional[ProgressChannel] = None,
        cancel: Optional[asyncio.Event] = None,
        is_automatic: bool = True,
    ) -> StrategyResult:
        """
        Search and grab for ``missing``. Whatever was committed before a
        cancellation is still returned; ``progress`` is closed at the end.
        """
        state = SearchPhaseState.start(series, missing)
        self._report(
            progress,
            StrategyPhase.INITIALIZING,
            f"Searching {len(state.missing)} missing episodes of {series.title}",
            5,
            seasons=sorted(state.missing_by_season()),
        )
        logger.get_logger().info(
            f"[PackSearch] {series.title}: {len(state.missing)} missing of {state.total_in_series} episodes"
        )

        counters = {"found": 0}
        phases = (
            self._complete_series_phase,
            self._multi_season_phase,
            self._single_season_phase,
            self._individual_phase,
        )
        cancelled = False
        try:
            for phase in phases:
                if state.is_satisfied:
                    break
                if self._cancelled(cancel):
                    cancelled = True
                    break
                state = await phase(series, state, progress, cancel, is_automatic, counters)
            cancelled = cancelled or (self._cancelled(cancel) and not state.is_satisfied)
            return self._finish(series, state, progress, cancelled, counters)
        finally:
            if progress is not None:
                progress.close()

    # Phase 1

    async def _complete_series_phase(self, series, state, progress, cancel, is_automatic, counters):
        ratio = state.missing_ratio(remaining_only=False)
        if ratio < self.config.complete_series_threshold:
            logger.get_logger().debug(
                f"[PackSearch] Skipping complete series: {ratio:.1f}% missing "
                f"< {self.config.complete_series_threshold:.0f}%"
            )
            return state

        phase = StrategyPhase.COMPLETE_SERIES
        state = state.with_phase(phase)
        seasons = series.seasons or sorted(state.season_totals)
        self._report(progress, phase, f"{ratio:.0f}% of the series is missing, trying complete series packs", 10)
        self._report(progress, phase, "Querying indexes for complete series packs", 12)

        raws = await self._search(phase, series_criteria(series), cancel)
        candidates = await self._rank(
            phase,
            raws,
            lambda parsed: is_complete_series_pack(parsed, len(seasons)),
            state.total_in_series,
        )
        if not candidates:
            self._report(progress, phase, "No complete series packs found", 15)
            return state

        self._report(progress, phase, f"Found {len(candidates)} complete series packs, evaluating", 15)
        ids = tuple(ep.id for ep in state.remaining)
        commit = await self._commit(phase, candidates, series, ids, None, is_automatic, progress, 18)
        if commit is None:
            return state
        return self._record(state, phase, commit, ids, tuple(seasons), progress, 18)

    # Phase 2

    async def _multi_season_phase(self, series, state, progress, cancel, is_automatic, counters):
        phase = StrategyPhase.MULTI_SEASON
        state = state.with_phase(phase)
        threshold = self.config.multi_season_threshold
        ranges = find_multi_season_ranges(state, threshold)
        self._report(progress, phase, "Trying multi-season packs", 25, ranges=[_span(s, e) for s, e in ranges])

        searched: dict[int, list[RawResult]] = {}
        for start, end in ranges:
            if self._cancelled(cancel) or state.is_satisfied:
                break
            seasons = range(start, end + 1)
            ids = state.ids_in(seasons)
            if not ids:
                continue
            ratio = state.missing_ratio(seasons)
            if ratio < threshold:
                logger.get_logger().debug(f"[PackSearch] {_span(start, end)} now {ratio:.1f}% missing, skipping")
                continue

            self._report(
                progress,
                phase,
                f"Searching for {_span(start, end)} pack",
                30,
                seasons=list(seasons),
                episode_count=len(ids),
                coverage_percent=round(ratio, 1),
            )
            if start not in searched:
                searched[start] = await self._search(phase, series_criteria(series, start), cancel)
            candidates = await self._rank(
                phase,
                searched[start],
                lambda parsed: covers_season_range(parsed, start, end),
                sum(state.season_totals.get(s, 0) for s in seasons),
            )
            if not candidates:
                continue
            commit = await self._commit(phase, candidates, series, ids, None, is_automatic, progress, 35)
            if commit is not None:
                state = self._record(state, phase, commit, ids, tuple(seasons), progress, 40)
        return state

    # Phase 3

    async def _single_season_phase(self, series, state, progress, cancel, is_automatic, counters):
        phase = StrategyPhase.SINGLE_SEASON
        state = state.with_phase(phase)
        self._report(progress, phase, "Trying single-season packs", 50)
        season_count = max(1, len(series.seasons or state.season_totals))

        for season, episodes in sorted(state.missing_by_season().items()):
            if self._cancelled(cancel):
                break
            total = state.season_totals.get(season, len(episodes))
            ratio = state.missing_ratio([season])
            if ratio < self.config.single_season_threshold:
                logger.get_logger().debug(
                    f"[PackSearch] Skipping season {season} pack: {ratio:.1f}% missing "
                    f"< {self.config.single_season_threshold:.0f}%"
                )
                continue

            percent = 50 + min(1.0, season / season_count) * 20
            self._report(
                progress,
                phase,
                f"Searching Season {season}",
                percent,
                seasons=[season],
                episode_count=len(episodes),
                coverage_percent=round(ratio, 1),
            )
            raws = await self._search(phase, series_criteria(series, season), cancel)
            candidates = await self._rank(phase, raws, lambda parsed: is_single_season_pack(parsed, season), total)
            if not candidates:
                continue
            ids = tuple(ep.id for ep in episodes)
            commit = await self._commit(phase, candidates, series, ids, season, is_automatic, progress, percent)
            if commit is not None:
                state = self._record(state, phase, commit, ids, (season,), progress, percent)
        return state

    # Phase 4

    async def _individual_phase(self, series, state, progress, cancel, is_automatic, counters):
        phase = StrategyPhase.INDIVIDUAL
        state = state.with_phase(phase)
        remaining = state.remaining
        total = len(remaining)
        self._report(progress, phase, f"Searching {total} remaining episodes individually", 75)

        for i, episode in enumerate(remaining):
            if self._cancelled(cancel):
                break
            if episode.id in state.covered:
                continue
            if i > 0:
                await asyncio.sleep(self.config.episode_delay_seconds)
            self._report(progress, phase, f"Searching {episode.label}", 75 + i / total * 20, current=episode.label)
            try:
                result = await self.episode_search.search_episode(series, episode, cancel, is_automatic)
            except TargetNotFoundError:
                raise
            except _PHASE_ERRORS as e:
                logger.get_logger().error(f"[PackSearch] Search for {episode.label} failed: {e}")
                continue
            if result.found:
                counters["found"] += 1
            if result.grabbed:
                grab = PhaseGrab(
                    phase=phase,
                    release_name=result.release_name,
                    episode_ids=result.episodes_covered,
                    seasons=(episode.season,),
                    queue_item_id=result.queue_item_id,
                )
                state = state.with_grab(grab, result.episodes_covered)
        return state

    # Helpers

    async def _search(self, phase: StrategyPhase, criteria, cancel) -> list[RawResult]:
        try:
            return await self.finder.search(criteria, cancel)
        except TargetNotFoundError:
            raise
        except _PHASE_ERRORS as e:
            logger.get_logger().error(f"[PackSearch] {phase.value} search failed: {e}")
            return []

    async def _rank(self, phase: StrategyPhase, raws: Sequence[RawResult], keep: Keep, episode_count: int):
        try:
            return await self.finder.rank(raws, keep, episode_count)
        except _PHASE_ERRORS as e:
            logger.get_logger().error(f"[PackSearch] {phase.value} scoring failed: {e}")
            return []

    async def _commit(
        self,
        phase: StrategyPhase,
        candidates,
        series: SeriesContext,
        ids: tuple[int, ...],
        season: Optional[int],
        is_automatic: bool,
        progress: Optional[ProgressChannel],
        percent: float,
    ) -> Optional[Commit]:
        def on_reject(candidate, reason: str) -> None:
            self._report(
                progress,
                phase,
                f"Rejected: {candidate.title} - {reason}",
                percent,
                release_name=candidate.title,
                decision="rejected",
                rejection_reason=reason,
            )

        try:
            return await self.committer.commit_first(
                candidates,
                series.series_id,
                ids,
                season_number=season,
                is_automatic=is_automatic,
                on_reject=on_reject,
            )
        except TargetNotFoundError:
            raise
        except _PHASE_ERRORS as e:
            logger.get_logger().error(f"[PackSearch] {phase.value} grab failed: {e}")
            return None

    def _record(
        self,
        state: SearchPhaseState,
        phase: StrategyPhase,
        commit: Commit,
        ids: tuple[int, ...],
        seasons: tuple[int, ...],
        progress: Optional[ProgressChannel],
        percent: float,
    ) -> SearchPhaseState:
        covered = commit.result.episodes_covered or ids
        grab = PhaseGrab(
            phase=phase,
            release_name=commit.result.release_name or commit.candidate.title,
            episode_ids=tuple(covered),
            seasons=seasons,
            queue_item_id=commit.result.queue_item_id,
        )
        logger.get_logger().info(
            f"[PackSearch] Grabbed {phase.value.replace('_', ' ')} pack {grab.release_name} "
            f"covering {len(covered)} episodes"
        )
        self._report(
            progress,
            phase,
            f"Grabbed {grab.release_name}",
            percent,
            release_name=grab.release_name,
            seasons=list(seasons),
            episode_count=len(covered),
            decision="accepted",
        )
        return state.with_grab(grab, covered)

    def _finish(self, series, state: SearchPhaseState, progress, cancelled: bool, counters) -> StrategyResult:
        missing_ids = {ep.id for ep in state.missing}
        grabbed = len(missing_ids & state.covered)

        def covered_by(phase: StrategyPhase) -> list[PhaseGrab]:
            return [g for g in state.grabs if g.phase == phase]

        individual = {i for g in covered_by(StrategyPhase.INDIVIDUAL) for i in g.episode_ids}
        summary = {
            "searched": len(state.missing),
            "found": counters["found"] + sum(1 for g in state.grabs if g.phase != StrategyPhase.INDIVIDUAL),
            "grabbed": grabbed,
            "complete_series": len(covered_by(StrategyPhase.COMPLETE_SERIES)),
            "multi_season": len(covered_by(StrategyPhase.MULTI_SEASON)),
            "single_season": len(covered_by(StrategyPhase.SINGLE_SEASON)),
            "individual": len(individual & missing_ids),
        }
        if cancelled:
            self._report(progress, StrategyPhase.CANCELLED, f"Search cancelled: {grabbed}/{len(missing_ids)} grabbed", 100)
            logger.get_logger().warning(f"[PackSearch] {series.title}: cancelled after {grabbed} episodes")
        else:
            self._report(
                progress,
                StrategyPhase.COMPLETED,
                f"Search complete: {grabbed}/{len(missing_ids)} episodes grabbed",
                100,
                **summary,
            )
            logger.get_logger().info(f"[PackSearch] {series.title}: {summary}")
        return StrategyResult(
            series_id=series.series_id,
            grabs=state.grabs,
            covered=state.covered,
            summary=summary,
            remaining=state.remaining,
            cancelled=cancelled,
        )

    @staticmethod
    def _cancelled(cancel: Optional[asyncio.Event]) -> bool:
        return cancel is not None and cancel.is_set()

    @staticmethod
    def _report(
        progress: Optional[ProgressChannel], phase: StrategyPhase, message: str, percent: float, **details: Any
    ) -> None:
        if progress is None:
            return
        progress.publish(ProgressEvent(phase=phase, message=message, percent=int(round(percent)), details=details))
