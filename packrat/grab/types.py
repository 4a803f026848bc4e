"""Data structures for grabs, download clients, the queue and the library."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Tuple


@dataclass(frozen=True)
class DownloadInfo:
    """An item already held by a download client."""

    hash: str
    name: str = ""
    status: str = ""
    progress: float = 0.0
    category: str = ""


@dataclass(frozen=True)
class ResolvedPayload:
    """What a candidate resolved to: exactly one of magnet, torrent file or NZB is the payload."""

    magnet_url: str = ""
    torrent_file: Optional[bytes] = None
    nzb_file: Optional[bytes] = None
    info_hash: str = ""
    download_url: str = ""
    used_fallback: bool = False


@dataclass(frozen=True)
class DownloadRequest:
    title: str
    category: str
    paused: bool = False
    priority: int = 1
    magnet_uri: str = ""
    torrent_file: Optional[bytes] = None
    nzb_file: Optional[bytes] = None
    download_url: str = ""
    info_hash: str = ""
    seed_ratio_limit: Optional[float] = None
    seed_time_limit: Optional[int] = None


@dataclass(frozen=True)
class GrabTarget:
    """What a grab is for. ``is_automatic`` is recorded only; ``is_upgrade`` replaces existing files."""

    media_type: str
    movie_id: Optional[int] = None
    series_id: Optional[int] = None
    episode_ids: Tuple[int, ...] = ()
    season_number: Optional[int] = None
    is_automatic: bool = False
    is_upgrade: bool = False

    @classmethod
    def movie(cls, movie_id: int, **kwargs: Any) -> "GrabTarget":
        return cls(media_type="movie", movie_id=movie_id, **kwargs)

    @classmethod
    def episodes(cls, series_id: int, episode_ids, **kwargs: Any) -> "GrabTarget":
        return cls(media_type="tv", series_id=series_id, episode_ids=tuple(episode_ids), **kwargs)


@dataclass(frozen=True)
class GrabResult:
    """
    Outcome of one grab. Download grabs link a queue item; stream grabs
    import straight into the library and report the file and history
    records they created instead.
    """

    success: bool
    release_name: str = ""
    queue_item_id: Optional[int] = None
    episodes_covered: Tuple[int, ...] = ()
    media_file_ids: Tuple[int, ...] = ()
    history_ids: Tuple[int, ...] = ()
    error: str = ""


@dataclass(frozen=True)
class QueueEntry:
    """A download to link into the queue; unique per (client, download_id)."""

    download_client_id: str
    download_id: str
    title: str
    protocol: str
    info_hash: str = ""
    index_id: str = ""
    index_name: str = ""
    download_url: str = ""
    magnet_url: str = ""
    movie_id: Optional[int] = None
    series_id: Optional[int] = None
    episode_ids: Tuple[int, ...] = ()
    season_number: Optional[int] = None
    quality: Dict[str, Any] = field(default_factory=dict)
    is_automatic: bool = False
    is_upgrade: bool = False


@dataclass(frozen=True)
class QueueItem:
    id: int
    download_client_id: str
    download_id: str
    title: str
    protocol: str
    added_at: str = ""


@dataclass(frozen=True)
class MovieRecord:
    id: int
    title: str
    root_folder: str
    path: str
    tmdb_id: Optional[int] = None
    year: Optional[int] = None
    has_file: bool = False


@dataclass(frozen=True)
class SeriesRecord:
    id: int
    title: str
    root_folder: str
    path: str
    tmdb_id: Optional[int] = None
    tvdb_id: Optional[int] = None
    imdb_id: Optional[str] = None
    year: Optional[int] = None


@dataclass(frozen=True)
class EpisodeRecord:
    id: int
    series_id: int
    season_number: int
    episode_number: int
    has_file: bool = False


@dataclass(frozen=True)
class MediaFile:
    """A file record in the library; ``relative_path`` is relative to the root folder."""

    id: int
    relative_path: str
    size: int = 0
    scene_name: str = ""
    release_group: str = ""
    quality: Dict[str, Any] = field(default_factory=dict)
    media_info: Dict[str, Any] = field(default_factory=dict)
    episode_ids: Tuple[int, ...] = ()


@dataclass(frozen=True)
class NewFile:
    """A file about to be linked to a movie or an episode."""

    relative_path: str
    size: int
    scene_name: str
    release_group: str = ""
    quality: Dict[str, Any] = field(default_factory=dict)
    media_info: Dict[str, Any] = field(default_factory=dict)
    episode_id: Optional[int] = None


@dataclass(frozen=True)
class HistoryEntry:
    title: str
    protocol: str
    status: str
    index_id: str = ""
    index_name: str = ""
    movie_id: Optional[int] = None
    series_id: Optional[int] = None
    season_number: Optional[int] = None
    size: int = 0
    quality: Dict[str, Any] = field(default_factory=dict)
    imported_path: str = ""
    is_automatic: bool = False


@dataclass
class ImportOutcome:
    """Files linked by one import transaction, plus the records it replaced."""

    linked: Dict[int, int] = field(default_factory=dict)
    adopted: Tuple[int, ...] = ()
    replaced: Tuple[MediaFile, ...] = ()
    history_id: Optional[int] = None
