"""Link files on disk into the library and record the acquisition."""

from __future__ import annotations

from dataclasses import replace
from pathlib import Path
from typing import Any, Dict, Iterable, Sequence, Tuple

from packrat import logger
from packrat.grab.protocols import MediaFileRepository
from packrat.grab.types import HistoryEntry, ImportOutcome, MediaFile, MovieRecord, NewFile, SeriesRecord


def probe_media_info(path: Path) -> Dict[str, Any]:
    """Technical info available without decoding the file."""
    suffix = path.suffix.lower().lstrip(".")
    info: Dict[str, Any] = {"container": suffix or "unknown", "size": path.stat().st_size}
    if suffix == "strm":
        info["remote"] = True
    return info


def relative_to_root(root_folder: str, path: Path) -> str:
    return path.resolve().relative_to(Path(root_folder).resolve()).as_posix()


class LibraryImporter:
    """
    Builds file records for freshly written files and hands them to the
    repository in one call. On upgrades the replaced records come back
    from the repository and their files are then removed from disk,
    skipping any path the new import reuses.
    """

    def __init__(self, repository: MediaFileRepository):
        self.repository = repository

    async def import_movie(
        self,
        movie: MovieRecord,
        path: Path,
        scene_name: str,
        quality: Dict[str, Any],
        history: HistoryEntry,
        replace_existing: bool = False,
        release_group: str = "",
    ) -> ImportOutcome:
        relative_path = relative_to_root(movie.root_folder, path)
        media_info = probe_media_info(path)
        new_file = NewFile(
            relative_path=relative_path,
            size=media_info["size"],
            scene_name=scene_name,
            release_group=release_group,
            quality=quality,
            media_info=media_info,
        )
        history = replace(history, size=new_file.size, imported_path=relative_path)
        outcome = await self.repository.import_movie_file(movie.id, new_file, history, replace_existing)
        self._remove_replaced(movie.root_folder, outcome.replaced, {relative_path})
        return outcome

    async def import_episodes(
        self,
        show: SeriesRecord,
        season_number: int,
        files: Sequence[Tuple[int, Path]],
        scene_name: str,
        quality: Dict[str, Any],
        history: HistoryEntry,
        replace_existing: bool = False,
        release_group: str = "",
    ) -> ImportOutcome:
        """Import ``(episode_id, path)`` pairs as one transaction with one history record."""
        new_files = []
        for episode_id, path in files:
            media_info = probe_media_info(path)
            new_files.append(
                NewFile(
                    relative_path=relative_to_root(show.root_folder, path),
                    size=media_info["size"],
                    scene_name=scene_name,
                    release_group=release_group,
                    quality=quality,
                    media_info=media_info,
                    episode_id=episode_id,
                )
            )
        kept = {f.relative_path for f in new_files}
        imported_path = new_files[0].relative_path if len(new_files) == 1 else str(Path(new_files[0].relative_path).parent.as_posix())
        history = replace(history, size=sum(f.size for f in new_files), imported_path=imported_path)
        outcome = await self.repository.import_episode_files(show.id, season_number, new_files, history, replace_existing)
        self._remove_replaced(show.root_folder, outcome.replaced, kept)
        return outcome

    @staticmethod
    def _remove_replaced(root_folder: str, replaced: Iterable[MediaFile], kept: set[str]) -> None:
        for old in replaced:
            if old.relative_path in kept:
                continue
            path = Path(root_folder) / old.relative_path
            try:
                path.unlink(missing_ok=True)
                logger.get_logger().debug(f"[Import] Removed replaced file {path}")
            except OSError as e:
                logger.get_logger().warning(f"[Import] Could not delete replaced file {path}: {e}")
