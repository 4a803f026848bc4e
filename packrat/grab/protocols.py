"""Protocol definitions for download clients and library repositories."""

from __future__ import annotations

from typing import Optional, Protocol, Sequence

from packrat.grab.types import (
    DownloadRequest,
    EpisodeRecord,
    HistoryEntry,
    ImportOutcome,
    MediaFile,
    MovieRecord,
    NewFile,
    QueueEntry,
    QueueItem,
    SeriesRecord,
)


class DownloadClient(Protocol):
    """
    A torrent or usenet client instance.

    ``add_download`` returns the client's native handle (torrent hash, nzo id).
    A payload the client already holds raises ``DuplicateDownloadError``
    carrying the existing item.
    """

    async def add_download(self, request: DownloadRequest) -> str:
        ...


class QueueRepository(Protocol):
    async def add_or_get(self, entry: QueueEntry) -> QueueItem:
        """Idempotent on (download_client_id, download_id)."""
        ...


class MediaFileRepository(Protocol):
    async def get_movie(self, movie_id: int) -> Optional[MovieRecord]:
        ...

    async def get_series(self, series_id: int) -> Optional[SeriesRecord]:
        ...

    async def get_episode(self, series_id: int, season: int, episode: int) -> Optional[EpisodeRecord]:
        ...

    async def get_episodes(self, episode_ids: Sequence[int]) -> list[EpisodeRecord]:
        ...

    async def season_episodes(self, series_id: int, season: int) -> list[EpisodeRecord]:
        ...

    async def movie_files(self, movie_id: int) -> list[MediaFile]:
        ...

    async def episode_files(self, episode_ids: Sequence[int]) -> list[MediaFile]:
        ...

    async def import_movie_file(
        self, movie_id: int, new_file: NewFile, history: HistoryEntry, replace_existing: bool
    ) -> ImportOutcome:
        ...

    async def import_episode_files(
        self,
        series_id: int,
        season_number: int,
        new_files: Sequence[NewFile],
        history: HistoryEntry,
        replace_existing: bool,
    ) -> ImportOutcome:
        """
        One transaction: link every file, flip has_file and write a single
        history record. A record already present for a relative path is
        adopted instead of re-inserted.
        """
        ...
