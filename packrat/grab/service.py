"""Commit a chosen candidate: download client or streaming placeholder, then queue/library records."""

from __future__ import annotations

import asyncio
from dataclasses import replace
from pathlib import Path
from typing import Dict, Mapping, Optional, Sequence, Tuple

import aiohttp

from packrat import logger
from packrat.config import DownloadClientConfig, IndexConfig
from packrat.errors import (
    DownloadClientError,
    DuplicateDownloadError,
    PackratError,
    PayloadResolutionError,
    TargetNotFoundError,
    TransactionFailure,
)
from packrat.grab.importer import LibraryImporter
from packrat.grab.nzb import validate_nzb
from packrat.grab.protocols import DownloadClient, MediaFileRepository, QueueRepository
from packrat.grab.resolver import DownloadResolver
from packrat.grab.stream import StrmWriter, parse_stream_url
from packrat.grab.types import (
    DownloadRequest,
    EpisodeRecord,
    GrabResult,
    GrabTarget,
    HistoryEntry,
    MovieRecord,
    QueueEntry,
    ResolvedPayload,
    SeriesRecord,
)
from packrat.quality.types import ScoredCandidate
from packrat.resilience import run_with_retries
from packrat.search.types import Protocol

_GRAB_ERRORS = (PackratError, aiohttp.ClientError, asyncio.TimeoutError, OSError, ValueError)


def _ids(record_id: Optional[int]) -> Tuple[int, ...]:
    return () if record_id is None else (record_id,)


class GrabService:
    """
    ``grab(candidate, target)`` for every protocol.

    Torrent and usenet candidates are resolved to a payload and handed to
    the preferred enabled client for that protocol; a duplicate reported by
    the client is adopted and linked into the queue like a fresh add.
    Streaming candidates become .strm placeholders imported straight into
    the library.

    Only a missing target (movie, series, episode or root folder) raises.
    Everything else comes back as ``GrabResult(success=False, error=...)``.
    """

    def __init__(
        self,
        repository: MediaFileRepository,
        queue: QueueRepository,
        resolver: DownloadResolver,
        download_clients: Optional[Mapping[str, Tuple[DownloadClientConfig, DownloadClient]]] = None,
        index_configs: Optional[Mapping[str, IndexConfig]] = None,
        strm_writer: Optional[StrmWriter] = None,
        importer: Optional[LibraryImporter] = None,
        max_attempts: int = 3,
    ):
        self.repository = repository
        self.queue = queue
        self.resolver = resolver
        self.download_clients = dict(download_clients or {})
        self.index_configs = dict(index_configs or {})
        self.strm_writer = strm_writer
        self.importer = importer or LibraryImporter(repository)
        self.max_attempts = max_attempts

    async def grab(self, candidate: ScoredCandidate, target: GrabTarget) -> GrabResult:
        await self._validate_target(target)
        protocol = candidate.raw.protocol
        try:
            if protocol == Protocol.STREAMING:
                return await self._grab_stream(candidate, target)
            return await self._grab_download(candidate, target)
        except TargetNotFoundError:
            raise
        except _GRAB_ERRORS as e:
            logger.get_logger().warning(f"[Grab] Failed to grab {candidate.title}: {e}")
            return GrabResult(success=False, release_name=candidate.title, error=str(e))

    async def _validate_target(self, target: GrabTarget) -> None:
        if target.media_type == "movie":
            movie = await self.repository.get_movie(target.movie_id)
            if movie is None:
                raise TargetNotFoundError(f"Movie {target.movie_id} not found")
            root_folder = movie.root_folder
        else:
            show = await self.repository.get_series(target.series_id)
            if show is None:
                raise TargetNotFoundError(f"Series {target.series_id} not found")
            if target.episode_ids:
                episodes = await self.repository.get_episodes(target.episode_ids)
                found = {ep.id for ep in episodes if ep.series_id == show.id}
                missing = [str(i) for i in target.episode_ids if i not in found]
                if missing:
                    raise TargetNotFoundError(f"Episode(s) not found for series {show.id}: {', '.join(missing)}")
            root_folder = show.root_folder
        if not root_folder or not Path(root_folder).is_dir():
            raise TargetNotFoundError(f"Root folder does not exist: {root_folder}")

    # Torrent / usenet

    def _client_for(self, protocol: Protocol) -> Optional[Tuple[str, DownloadClientConfig, DownloadClient]]:
        enabled = [
            (key, config, client)
            for key, (config, client) in self.download_clients.items()
            if config.enabled and config.protocol == protocol.value
        ]
        if not enabled:
            return None
        return min(enabled, key=lambda item: item[1].priority)

    def _seed_limits(
        self, candidate: ScoredCandidate, client_config: DownloadClientConfig
    ) -> Tuple[Optional[float], Optional[int]]:
        index_config = self.index_configs.get(candidate.raw.index_id)
        ratio = client_config.seed_ratio_limit
        seed_time = client_config.seed_time_limit
        if index_config is not None:
            if index_config.seed_ratio is not None:
                ratio = index_config.seed_ratio
            episode = candidate.episode
            if episode and episode.is_season_pack and index_config.pack_seed_time is not None:
                seed_time = index_config.pack_seed_time
            elif index_config.seed_time is not None:
                seed_time = index_config.seed_time
        return ratio, seed_time

    async def _grab_download(self, candidate: ScoredCandidate, target: GrabTarget) -> GrabResult:
        raw = candidate.raw
        chosen = self._client_for(raw.protocol)
        if chosen is None:
            return GrabResult(
                success=False,
                release_name=raw.title,
                error=f"No enabled {raw.protocol.value} download client configured",
            )
        client_key, client_config, client = chosen

        payload = await self.resolver.resolve(raw)
        if raw.protocol == Protocol.USENET:
            self._check_nzb(payload)

        request = self._build_request(candidate, target, client_config, payload)
        try:
            download_id = await run_with_retries(
                lambda: client.add_download(request),
                max_attempts=self.max_attempts,
                on_retry=lambda attempt, total, delay, exc: logger.get_logger().api_retry(
                    client_key, attempt, total, delay
                ),
            )
        except DuplicateDownloadError as dup:
            download_id = dup.existing.hash or payload.info_hash
            if not download_id:
                raise DownloadClientError(f"{client_key} reported a duplicate without a hash to adopt") from dup
            logger.get_logger().info(
                f"[Grab] {raw.title} already in {client_key} ({dup.existing.status or 'unknown'}), adopting {download_id}"
            )

        item = await self.queue.add_or_get(
            QueueEntry(
                download_client_id=client_key,
                download_id=download_id,
                title=raw.title,
                protocol=raw.protocol.value,
                info_hash=payload.info_hash,
                index_id=raw.index_id,
                index_name=raw.index_name,
                download_url=raw.download_url,
                magnet_url=payload.magnet_url,
                movie_id=target.movie_id,
                series_id=target.series_id,
                episode_ids=target.episode_ids,
                season_number=target.season_number,
                quality=self._quality(candidate),
                is_automatic=target.is_automatic,
                is_upgrade=target.is_upgrade,
            )
        )
        logger.get_logger().info(f"[Grab] Grabbed {raw.title} via {client_key} (queue item {item.id})")
        return GrabResult(
            success=True,
            release_name=raw.title,
            queue_item_id=item.id,
            episodes_covered=target.episode_ids,
        )

    @staticmethod
    def _check_nzb(payload: ResolvedPayload) -> None:
        if payload.nzb_file is not None:
            validate_nzb(payload.nzb_file)
        elif not payload.download_url:
            raise PayloadResolutionError("No NZB available for usenet release")

    def _build_request(
        self,
        candidate: ScoredCandidate,
        target: GrabTarget,
        client_config: DownloadClientConfig,
        payload: ResolvedPayload,
    ) -> DownloadRequest:
        category = client_config.movie_category if target.media_type == "movie" else client_config.tv_category
        ratio, seed_time = (None, None)
        if candidate.raw.protocol == Protocol.TORRENT:
            ratio, seed_time = self._seed_limits(candidate, client_config)
        return DownloadRequest(
            title=candidate.title,
            category=category,
            paused=client_config.add_paused,
            priority=client_config.priority,
            magnet_uri=payload.magnet_url,
            torrent_file=payload.torrent_file,
            nzb_file=payload.nzb_file,
            download_url=payload.download_url,
            info_hash=payload.info_hash,
            seed_ratio_limit=ratio,
            seed_time_limit=seed_time,
        )

    @staticmethod
    def _quality(candidate: ScoredCandidate) -> Dict[str, object]:
        parsed = candidate.parsed
        return {
            "resolution": parsed.resolution,
            "source": parsed.source,
            "codec": parsed.codec,
            "score": candidate.quality_score,
        }

    # Streaming

    async def _grab_stream(self, candidate: ScoredCandidate, target: GrabTarget) -> GrabResult:
        raw = candidate.raw
        descriptor = parse_stream_url(raw.download_url)
        if descriptor is None:
            return GrabResult(success=False, release_name=raw.title, error=f"Invalid stream descriptor: {raw.download_url}")
        if self.strm_writer is None:
            return GrabResult(success=False, release_name=raw.title, error="Streaming is not configured")

        quality = {
            "resolution": candidate.parsed.resolution or "1080p",
            "source": "Streaming",
            "codec": "HLS",
            "score": candidate.quality_score,
        }
        history = HistoryEntry(
            title=raw.title,
            protocol=Protocol.STREAMING.value,
            status="imported",
            index_id=raw.index_id,
            index_name=raw.index_name,
            movie_id=target.movie_id,
            series_id=target.series_id,
            season_number=target.season_number,
            quality=quality,
            is_automatic=target.is_automatic,
        )

        if descriptor.media_type == "movie":
            if target.media_type != "movie":
                return GrabResult(success=False, release_name=raw.title, error="Movie stream grabbed for a series target")
            movie = await self.repository.get_movie(target.movie_id)
            return await self._import_stream_movie(movie, descriptor.tmdb_id, candidate, quality, history, target)

        if target.media_type == "movie":
            return GrabResult(success=False, release_name=raw.title, error="Series stream grabbed for a movie target")
        show = await self.repository.get_series(target.series_id)

        if descriptor.episode is not None:
            episode = await self.repository.get_episode(show.id, descriptor.season, descriptor.episode)
            if episode is None:
                raise TargetNotFoundError(
                    f"Episode S{descriptor.season:02d}E{descriptor.episode:02d} not found for series {show.id}"
                )
            episodes = [episode]
        elif target.episode_ids:
            episodes = await self.repository.get_episodes(target.episode_ids)
        elif descriptor.season is not None:
            episodes = await self.repository.season_episodes(show.id, descriptor.season)
        else:
            return GrabResult(success=False, release_name=raw.title, error="Complete-series stream needs target episodes")

        return await self._import_stream_episodes(show, descriptor.tmdb_id, episodes, candidate, quality, history, target)

    async def _import_stream_movie(
        self,
        movie: MovieRecord,
        tmdb_id: str,
        candidate: ScoredCandidate,
        quality: Dict[str, object],
        history: HistoryEntry,
        target: GrabTarget,
    ) -> GrabResult:
        path = self.strm_writer.write_movie(movie, tmdb_id)
        try:
            outcome = await self.importer.import_movie(
                movie,
                path,
                scene_name=candidate.title,
                quality=quality,
                history=history,
                replace_existing=target.is_upgrade,
                release_group=candidate.parsed.release_group or "",
            )
        except TransactionFailure as e:
            logger.get_logger().warning(f"[Grab] Import of {path} failed, placeholder left for the library scan: {e}")
            return GrabResult(success=False, release_name=candidate.title, error=str(e))
        logger.get_logger().info(f"[Grab] Grabbed stream {candidate.title} for {movie.title}")
        return GrabResult(
            success=True,
            release_name=candidate.title,
            media_file_ids=tuple(outcome.linked.values()),
            history_ids=_ids(outcome.history_id),
        )

    async def _import_stream_episodes(
        self,
        show: SeriesRecord,
        tmdb_id: str,
        episodes: Sequence[EpisodeRecord],
        candidate: ScoredCandidate,
        quality: Dict[str, object],
        history: HistoryEntry,
        target: GrabTarget,
    ) -> GrabResult:
        wanted = list(episodes) if target.is_upgrade else [ep for ep in episodes if not ep.has_file]
        all_ids = tuple(ep.id for ep in episodes)
        if not wanted:
            logger.get_logger().info(f"[Grab] Every episode for {candidate.title} already has a file")
            return GrabResult(success=True, release_name=candidate.title, episodes_covered=all_ids)

        by_season: Dict[int, list[EpisodeRecord]] = {}
        for ep in wanted:
            by_season.setdefault(ep.season_number, []).append(ep)

        covered = [ep.id for ep in episodes if ep not in wanted]
        file_ids: list[int] = []
        history_ids: list[int] = []
        for season, season_episodes in sorted(by_season.items()):
            files = [
                (ep.id, self.strm_writer.write_episode(show, tmdb_id, season, ep.episode_number))
                for ep in season_episodes
            ]
            try:
                outcome = await self.importer.import_episodes(
                    show,
                    season,
                    files,
                    scene_name=candidate.title,
                    quality=quality,
                    history=replace(history, season_number=season),
                    replace_existing=target.is_upgrade,
                    release_group=candidate.parsed.release_group or "",
                )
            except TransactionFailure as e:
                logger.get_logger().warning(
                    f"[Grab] Season {season} import for {show.title} failed, "
                    f"{len(files)} placeholders left for the library scan: {e}"
                )
                return GrabResult(
                    success=False,
                    release_name=candidate.title,
                    episodes_covered=tuple(covered),
                    media_file_ids=tuple(file_ids),
                    history_ids=tuple(history_ids),
                    error=str(e),
                )
            covered.extend(outcome.linked)
            file_ids.extend(outcome.linked.values())
            history_ids.extend(_ids(outcome.history_id))
            if outcome.adopted:
                logger.get_logger().debug(
                    f"[Grab] Adopted {len(outcome.adopted)} existing file record(s) for {show.title} season {season}"
                )

        logger.get_logger().info(f"[Grab] Grabbed stream {candidate.title} for {show.title} ({len(wanted)} episodes)")
        ordered = tuple(i for i in all_ids if i in set(covered))
        return GrabResult(
            success=True,
            release_name=candidate.title,
            episodes_covered=ordered,
            media_file_ids=tuple(file_ids),
            history_ids=tuple(history_ids),
        )
