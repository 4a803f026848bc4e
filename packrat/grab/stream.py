"""Stream descriptors and the .strm placeholder files they become in the library."""

from __future__ import annotations

import re
from dataclasses import dataclass
from pathlib import Path
from typing import Optional
from urllib.parse import quote

from packrat.errors import PayloadResolutionError
from packrat.grab.types import MovieRecord, SeriesRecord

STREAM_SCHEME = "stream://"

_MOVIE = re.compile(r"^stream://movie/([^/]+)$")
_TV = re.compile(r"^stream://tv/([^/]+)(?:/(all|\d+)(?:/(\d+))?)?$")
_UNSAFE = re.compile(r'[<>:"/\\|?*\x00-\x1f]')


@dataclass(frozen=True)
class StreamDescriptor:
    media_type: str
    tmdb_id: str
    season: Optional[int] = None
    episode: Optional[int] = None
    is_complete_series: bool = False

    @property
    def is_season_pack(self) -> bool:
        return self.media_type == "tv" and self.episode is None


def parse_stream_url(url: str) -> Optional[StreamDescriptor]:
    """
    ``stream://movie/{id}``, ``stream://tv/{id}/{s}/{e}``, ``stream://tv/{id}/{s}``
    (season pack) or ``stream://tv/{id}/all`` (complete series). Anything else is None.
    """
    url = (url or "").strip()
    match = _MOVIE.match(url)
    if match:
        return StreamDescriptor(media_type="movie", tmdb_id=match.group(1))
    match = _TV.match(url)
    if not match or match.group(2) is None:
        return None
    tmdb_id, season, episode = match.groups()
    if season == "all":
        if episode is not None:
            return None
        return StreamDescriptor(media_type="tv", tmdb_id=tmdb_id, is_complete_series=True)
    return StreamDescriptor(
        media_type="tv",
        tmdb_id=tmdb_id,
        season=int(season),
        episode=int(episode) if episode is not None else None,
    )


def format_stream_url(descriptor: StreamDescriptor) -> str:
    if descriptor.media_type == "movie":
        return f"{STREAM_SCHEME}movie/{descriptor.tmdb_id}"
    if descriptor.is_complete_series:
        return f"{STREAM_SCHEME}tv/{descriptor.tmdb_id}/all"
    if descriptor.episode is None:
        return f"{STREAM_SCHEME}tv/{descriptor.tmdb_id}/{descriptor.season}"
    return f"{STREAM_SCHEME}tv/{descriptor.tmdb_id}/{descriptor.season}/{descriptor.episode}"


def sanitize_filename(name: str) -> str:
    cleaned = _UNSAFE.sub("", name).replace("..", "")
    return re.sub(r"\s+", " ", cleaned).strip(" .") or "Unknown"


def _folder_name(path: str, title: str, year: Optional[int]) -> str:
    if path:
        return path.replace("..", "").strip("/\\").strip()
    return f"{sanitize_filename(title)} ({year or 'Unknown'})"


def _inside(root: Path, candidate: Path) -> bool:
    try:
        candidate.resolve().relative_to(root.resolve())
    except ValueError:
        return False
    return True


class StrmWriter:
    """Writes .strm files whose content is the streaming resolve URL."""

    def __init__(self, base_url: str, api_key: str = ""):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key

    def content(self, media_type: str, tmdb_id: str, season: Optional[int] = None, episode: Optional[int] = None) -> str:
        if media_type == "movie":
            url = f"{self.base_url}/api/streaming/resolve/movie/{quote(str(tmdb_id))}"
        else:
            url = f"{self.base_url}/api/streaming/resolve/tv/{quote(str(tmdb_id))}/{season}/{episode}"
        if self.api_key:
            url += f"?api_key={quote(self.api_key)}"
        return url

    def movie_path(self, movie: MovieRecord) -> Path:
        root = Path(movie.root_folder)
        folder = root / _folder_name(movie.path, movie.title, movie.year)
        if not _inside(root, folder):
            raise PayloadResolutionError("Invalid movie path: path traversal detected")
        return folder / f"{sanitize_filename(movie.title)} ({movie.year or 'Unknown'}).strm"

    def episode_path(self, show: SeriesRecord, season: int, episode: int) -> Path:
        root = Path(show.root_folder)
        folder = root / _folder_name(show.path, show.title, show.year)
        if not _inside(root, folder):
            raise PayloadResolutionError("Invalid series path: path traversal detected")
        return folder / f"Season {season:02d}" / f"{sanitize_filename(show.title)} - S{season:02d}E{episode:02d}.strm"

    def write_movie(self, movie: MovieRecord, tmdb_id: str) -> Path:
        return self._write(self.movie_path(movie), self.content("movie", tmdb_id))

    def write_episode(self, show: SeriesRecord, tmdb_id: str, season: int, episode: int) -> Path:
        return self._write(self.episode_path(show, season, episode), self.content("tv", tmdb_id, season, episode))

    @staticmethod
    def _write(path: Path, content: str) -> Path:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content + "\n", encoding="utf-8")
        return path
