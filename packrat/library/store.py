"""SQLite-backed queue and media-file repositories."""

from __future__ import annotations

import asyncio
import json
import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Sequence, Union

from packrat import logger
from packrat.errors import TransactionConflict, TransactionFailure
from packrat.grab.types import (
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

SCHEMA = """
CREATE TABLE IF NOT EXISTS movies (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    title TEXT NOT NULL,
    tmdb_id INTEGER,
    year INTEGER,
    root_folder TEXT NOT NULL,
    path TEXT NOT NULL DEFAULT '',
    has_file INTEGER NOT NULL DEFAULT 0
);
CREATE TABLE IF NOT EXISTS series (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    title TEXT NOT NULL,
    tmdb_id INTEGER,
    tvdb_id INTEGER,
    imdb_id TEXT,
    year INTEGER,
    root_folder TEXT NOT NULL,
    path TEXT NOT NULL DEFAULT ''
);
CREATE TABLE IF NOT EXISTS episodes (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    series_id INTEGER NOT NULL REFERENCES series(id),
    season_number INTEGER NOT NULL,
    episode_number INTEGER NOT NULL,
    has_file INTEGER NOT NULL DEFAULT 0,
    UNIQUE(series_id, season_number, episode_number)
);
CREATE TABLE IF NOT EXISTS movie_files (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    movie_id INTEGER NOT NULL REFERENCES movies(id),
    relative_path TEXT NOT NULL,
    size INTEGER NOT NULL DEFAULT 0,
    scene_name TEXT,
    release_group TEXT,
    quality TEXT,
    media_info TEXT,
    date_added TEXT NOT NULL,
    UNIQUE(movie_id, relative_path)
);
CREATE TABLE IF NOT EXISTS episode_files (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    series_id INTEGER NOT NULL REFERENCES series(id),
    season_number INTEGER NOT NULL,
    relative_path TEXT NOT NULL,
    size INTEGER NOT NULL DEFAULT 0,
    scene_name TEXT,
    release_group TEXT,
    quality TEXT,
    media_info TEXT,
    date_added TEXT NOT NULL,
    UNIQUE(series_id, relative_path)
);
CREATE TABLE IF NOT EXISTS episode_file_episodes (
    episode_file_id INTEGER NOT NULL REFERENCES episode_files(id) ON DELETE CASCADE,
    episode_id INTEGER NOT NULL REFERENCES episodes(id),
    PRIMARY KEY (episode_file_id, episode_id)
);
CREATE TABLE IF NOT EXISTS download_queue (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    download_client_id TEXT NOT NULL,
    download_id TEXT NOT NULL,
    info_hash TEXT,
    title TEXT NOT NULL,
    protocol TEXT NOT NULL,
    index_id TEXT,
    index_name TEXT,
    download_url TEXT,
    magnet_url TEXT,
    movie_id INTEGER,
    series_id INTEGER,
    episode_ids TEXT,
    season_number INTEGER,
    quality TEXT,
    is_automatic INTEGER NOT NULL DEFAULT 0,
    is_upgrade INTEGER NOT NULL DEFAULT 0,
    added_at TEXT NOT NULL,
    UNIQUE(download_client_id, download_id)
);
CREATE TABLE IF NOT EXISTS download_history (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    title TEXT NOT NULL,
    protocol TEXT NOT NULL,
    status TEXT NOT NULL,
    index_id TEXT,
    index_name TEXT,
    movie_id INTEGER,
    series_id INTEGER,
    season_number INTEGER,
    episode_ids TEXT,
    file_ids TEXT,
    size INTEGER NOT NULL DEFAULT 0,
    quality TEXT,
    imported_path TEXT,
    is_automatic INTEGER NOT NULL DEFAULT 0,
    grabbed_at TEXT NOT NULL,
    imported_at TEXT
);
"""


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _loads(value: Optional[str]) -> dict:
    if not value:
        return {}
    try:
        loaded = json.loads(value)
    except json.JSONDecodeError:
        return {}
    return loaded if isinstance(loaded, dict) else {}


class SqliteLibraryStore:
    """
    Movies, series, episodes, their file records, the download queue and
    history in one SQLite file.

    Multi-row writes run under ``BEGIN IMMEDIATE`` so a concurrent
    library watcher writing the same database waits for the lock instead
    of interleaving. Episode file paths are unique per series.
    """

    def __init__(self, db_path: Union[str, Path]):
        self.db_path = str(db_path)
        conn = self._connect()
        try:
            conn.executescript(SCHEMA)
            conn.commit()
        finally:
            conn.close()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path, check_same_thread=False, timeout=30)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    # Library setup (used by the embedding application and tests)

    def add_movie(self, title: str, root_folder: str, path: str = "", tmdb_id: Optional[int] = None, year: Optional[int] = None) -> int:
        return self._insert(
            "INSERT INTO movies (title, tmdb_id, year, root_folder, path) VALUES (?, ?, ?, ?, ?)",
            (title, tmdb_id, year, root_folder, path),
        )

    def add_series(
        self,
        title: str,
        root_folder: str,
        path: str = "",
        tmdb_id: Optional[int] = None,
        tvdb_id: Optional[int] = None,
        imdb_id: Optional[str] = None,
        year: Optional[int] = None,
    ) -> int:
        return self._insert(
            "INSERT INTO series (title, tmdb_id, tvdb_id, imdb_id, year, root_folder, path) VALUES (?, ?, ?, ?, ?, ?, ?)",
            (title, tmdb_id, tvdb_id, imdb_id, year, root_folder, path),
        )

    def add_episode(self, series_id: int, season: int, episode: int, has_file: bool = False) -> int:
        return self._insert(
            "INSERT INTO episodes (series_id, season_number, episode_number, has_file) VALUES (?, ?, ?, ?)",
            (series_id, season, episode, int(has_file)),
        )

    def _insert(self, sql: str, params: tuple) -> int:
        conn = self._connect()
        try:
            cur = conn.execute(sql, params)
            conn.commit()
            return int(cur.lastrowid)
        finally:
            conn.close()

    def link_episode_file(
        self,
        series_id: int,
        season_number: int,
        relative_path: str,
        episode_ids: Sequence[int],
        size: int = 0,
        scene_name: str = "",
    ) -> int:
        """Watcher-style link of a file found on disk: the first writer of a relative path wins."""
        conn = self._connect()
        try:
            cur = conn.cursor()
            cur.execute("BEGIN IMMEDIATE")
            new_file = NewFile(relative_path=relative_path, size=size, scene_name=scene_name)
            try:
                file_id = self._insert_episode_file(cur, series_id, season_number, new_file)
            except TransactionConflict as conflict:
                file_id = conflict.existing_id
            for episode_id in episode_ids:
                self._link_episode(cur, file_id, episode_id)
            conn.commit()
            return file_id
        except sqlite3.Error:
            conn.rollback()
            raise
        finally:
            conn.close()

    def season_episode_counts(self, series_id: int) -> dict[int, int]:
        conn = self._connect()
        try:
            rows = conn.execute(
                "SELECT season_number, COUNT(*) FROM episodes WHERE series_id=? GROUP BY season_number",
                (series_id,),
            ).fetchall()
            return {int(row[0]): int(row[1]) for row in rows}
        finally:
            conn.close()

    def missing_episodes(self, series_id: int) -> list[EpisodeRecord]:
        conn = self._connect()
        try:
            rows = conn.execute(
                "SELECT * FROM episodes WHERE series_id=? AND has_file=0 ORDER BY season_number, episode_number",
                (series_id,),
            ).fetchall()
            return [self._episode(row) for row in rows]
        finally:
            conn.close()

    def history(self) -> list[dict]:
        conn = self._connect()
        try:
            rows = conn.execute("SELECT * FROM download_history ORDER BY id").fetchall()
            return [dict(row) for row in rows]
        finally:
            conn.close()

    def queue_items(self) -> list[QueueItem]:
        conn = self._connect()
        try:
            rows = conn.execute("SELECT * FROM download_queue ORDER BY id").fetchall()
            return [self._queue_item(row) for row in rows]
        finally:
            conn.close()

    # Row mapping

    @staticmethod
    def _episode(row: sqlite3.Row) -> EpisodeRecord:
        return EpisodeRecord(
            id=row["id"],
            series_id=row["series_id"],
            season_number=row["season_number"],
            episode_number=row["episode_number"],
            has_file=bool(row["has_file"]),
        )

    @staticmethod
    def _queue_item(row: sqlite3.Row) -> QueueItem:
        return QueueItem(
            id=row["id"],
            download_client_id=row["download_client_id"],
            download_id=row["download_id"],
            title=row["title"],
            protocol=row["protocol"],
            added_at=row["added_at"],
        )

    @staticmethod
    def _media_file(row: sqlite3.Row, episode_ids: Sequence[int] = ()) -> MediaFile:
        return MediaFile(
            id=row["id"],
            relative_path=row["relative_path"],
            size=row["size"],
            scene_name=row["scene_name"] or "",
            release_group=row["release_group"] or "",
            quality=_loads(row["quality"]),
            media_info=_loads(row["media_info"]),
            episode_ids=tuple(episode_ids),
        )

    # Repository interface

    async def get_movie(self, movie_id: int) -> Optional[MovieRecord]:
        return await asyncio.to_thread(self._get_movie, movie_id)

    def _get_movie(self, movie_id: int) -> Optional[MovieRecord]:
        conn = self._connect()
        try:
            row = conn.execute("SELECT * FROM movies WHERE id=?", (movie_id,)).fetchone()
            if not row:
                return None
            return MovieRecord(
                id=row["id"],
                title=row["title"],
                root_folder=row["root_folder"],
                path=row["path"],
                tmdb_id=row["tmdb_id"],
                year=row["year"],
                has_file=bool(row["has_file"]),
            )
        finally:
            conn.close()

    async def get_series(self, series_id: int) -> Optional[SeriesRecord]:
        return await asyncio.to_thread(self._get_series, series_id)

    def _get_series(self, series_id: int) -> Optional[SeriesRecord]:
        conn = self._connect()
        try:
            row = conn.execute("SELECT * FROM series WHERE id=?", (series_id,)).fetchone()
            if not row:
                return None
            return SeriesRecord(
                id=row["id"],
                title=row["title"],
                root_folder=row["root_folder"],
                path=row["path"],
                tmdb_id=row["tmdb_id"],
                tvdb_id=row["tvdb_id"],
                imdb_id=row["imdb_id"],
                year=row["year"],
            )
        finally:
            conn.close()

    async def get_episode(self, series_id: int, season: int, episode: int) -> Optional[EpisodeRecord]:
        return await asyncio.to_thread(self._get_episode, series_id, season, episode)

    def _get_episode(self, series_id: int, season: int, episode: int) -> Optional[EpisodeRecord]:
        conn = self._connect()
        try:
            row = conn.execute(
                "SELECT * FROM episodes WHERE series_id=? AND season_number=? AND episode_number=?",
                (series_id, season, episode),
            ).fetchone()
            return self._episode(row) if row else None
        finally:
            conn.close()

    async def get_episodes(self, episode_ids: Sequence[int]) -> list[EpisodeRecord]:
        return await asyncio.to_thread(self._get_episodes, list(episode_ids))

    def _get_episodes(self, episode_ids: list[int]) -> list[EpisodeRecord]:
        if not episode_ids:
            return []
        conn = self._connect()
        try:
            placeholders = ", ".join("?" for _ in episode_ids)
            rows = conn.execute(
                f"SELECT * FROM episodes WHERE id IN ({placeholders}) ORDER BY season_number, episode_number",
                episode_ids,
            ).fetchall()
            return [self._episode(row) for row in rows]
        finally:
            conn.close()

    async def season_episodes(self, series_id: int, season: int) -> list[EpisodeRecord]:
        return await asyncio.to_thread(self._season_episodes, series_id, season)

    def _season_episodes(self, series_id: int, season: int) -> list[EpisodeRecord]:
        conn = self._connect()
        try:
            rows = conn.execute(
                "SELECT * FROM episodes WHERE series_id=? AND season_number=? ORDER BY episode_number",
                (series_id, season),
            ).fetchall()
            return [self._episode(row) for row in rows]
        finally:
            conn.close()

    async def movie_files(self, movie_id: int) -> list[MediaFile]:
        return await asyncio.to_thread(self._movie_files, movie_id)

    def _movie_files(self, movie_id: int) -> list[MediaFile]:
        conn = self._connect()
        try:
            rows = conn.execute("SELECT * FROM movie_files WHERE movie_id=? ORDER BY id", (movie_id,)).fetchall()
            return [self._media_file(row) for row in rows]
        finally:
            conn.close()

    async def episode_files(self, episode_ids: Sequence[int]) -> list[MediaFile]:
        return await asyncio.to_thread(self._episode_files_sync, list(episode_ids))

    def _episode_files_sync(self, episode_ids: list[int]) -> list[MediaFile]:
        conn = self._connect()
        try:
            return self._episode_files(conn.cursor(), episode_ids)
        finally:
            conn.close()

    def _episode_files(self, cur: sqlite3.Cursor, episode_ids: Sequence[int]) -> list[MediaFile]:
        if not episode_ids:
            return []
        placeholders = ", ".join("?" for _ in episode_ids)
        rows = cur.execute(
            f"""
            SELECT DISTINCT f.* FROM episode_files f
            JOIN episode_file_episodes l ON l.episode_file_id = f.id
            WHERE l.episode_id IN ({placeholders})
            ORDER BY f.id
            """,
            list(episode_ids),
        ).fetchall()
        files = []
        for row in rows:
            linked = cur.execute(
                "SELECT episode_id FROM episode_file_episodes WHERE episode_file_id=? ORDER BY episode_id",
                (row["id"],),
            ).fetchall()
            files.append(self._media_file(row, [r[0] for r in linked]))
        return files

    async def add_or_get(self, entry: QueueEntry) -> QueueItem:
        return await asyncio.to_thread(self._add_or_get, entry)

    def _add_or_get(self, entry: QueueEntry) -> QueueItem:
        conn = self._connect()
        try:
            cur = conn.cursor()
            cur.execute("BEGIN IMMEDIATE")
            row = cur.execute(
                "SELECT * FROM download_queue WHERE download_client_id=? AND download_id=?",
                (entry.download_client_id, entry.download_id),
            ).fetchone()
            if row:
                conn.commit()
                logger.get_logger().debug(f"[Library] Queue already holds {entry.download_id} as item {row['id']}")
                return self._queue_item(row)
            cur.execute(
                """
                INSERT INTO download_queue (
                    download_client_id, download_id, info_hash, title, protocol, index_id, index_name,
                    download_url, magnet_url, movie_id, series_id, episode_ids, season_number, quality,
                    is_automatic, is_upgrade, added_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    entry.download_client_id,
                    entry.download_id,
                    entry.info_hash or None,
                    entry.title,
                    entry.protocol,
                    entry.index_id,
                    entry.index_name,
                    entry.download_url,
                    entry.magnet_url,
                    entry.movie_id,
                    entry.series_id,
                    json.dumps(list(entry.episode_ids)),
                    entry.season_number,
                    json.dumps(entry.quality),
                    int(entry.is_automatic),
                    int(entry.is_upgrade),
                    utc_now(),
                ),
            )
            row = cur.execute("SELECT * FROM download_queue WHERE id=?", (cur.lastrowid,)).fetchone()
            conn.commit()
            return self._queue_item(row)
        except sqlite3.Error as e:
            conn.rollback()
            raise TransactionFailure(f"Queue link failed: {e}") from e
        finally:
            conn.close()

    async def import_movie_file(
        self, movie_id: int, new_file: NewFile, history: HistoryEntry, replace_existing: bool
    ) -> ImportOutcome:
        return await asyncio.to_thread(self._import_movie_file, movie_id, new_file, history, replace_existing)

    def _import_movie_file(
        self, movie_id: int, new_file: NewFile, history: HistoryEntry, replace_existing: bool
    ) -> ImportOutcome:
        conn = self._connect()
        try:
            cur = conn.cursor()
            cur.execute("BEGIN IMMEDIATE")
            replaced: list[MediaFile] = []
            if replace_existing:
                rows = cur.execute("SELECT * FROM movie_files WHERE movie_id=?", (movie_id,)).fetchall()
                replaced = [self._media_file(row) for row in rows]
                cur.execute("DELETE FROM movie_files WHERE movie_id=?", (movie_id,))
            cur.execute(
                """
                INSERT INTO movie_files (movie_id, relative_path, size, scene_name, release_group, quality, media_info, date_added)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(movie_id, relative_path) DO NOTHING
                """,
                (
                    movie_id,
                    new_file.relative_path,
                    new_file.size,
                    new_file.scene_name,
                    new_file.release_group,
                    json.dumps(new_file.quality),
                    json.dumps(new_file.media_info),
                    utc_now(),
                ),
            )
            file_id = cur.execute(
                "SELECT id FROM movie_files WHERE movie_id=? AND relative_path=?",
                (movie_id, new_file.relative_path),
            ).fetchone()[0]
            cur.execute("UPDATE movies SET has_file=1 WHERE id=?", (movie_id,))
            history_id = self._insert_history(cur, history, (), (file_id,))
            conn.commit()
            return ImportOutcome(linked={movie_id: file_id}, replaced=tuple(replaced), history_id=history_id)
        except sqlite3.Error as e:
            conn.rollback()
            raise TransactionFailure(f"Movie import failed: {e}") from e
        finally:
            conn.close()

    async def import_episode_files(
        self,
        series_id: int,
        season_number: int,
        new_files: Sequence[NewFile],
        history: HistoryEntry,
        replace_existing: bool,
    ) -> ImportOutcome:
        return await asyncio.to_thread(
            self._import_episode_files, series_id, season_number, list(new_files), history, replace_existing
        )

    def _import_episode_files(
        self,
        series_id: int,
        season_number: int,
        new_files: list[NewFile],
        history: HistoryEntry,
        replace_existing: bool,
    ) -> ImportOutcome:
        conn = self._connect()
        try:
            cur = conn.cursor()
            cur.execute("BEGIN IMMEDIATE")
            outcome = ImportOutcome()
            adopted: list[int] = []
            replaced: list[MediaFile] = []
            for new_file in new_files:
                episode_id = new_file.episode_id
                if replace_existing:
                    for old in self._episode_files(cur, [episode_id]):
                        replaced.append(old)
                        cur.execute("DELETE FROM episode_files WHERE id=?", (old.id,))
                try:
                    file_id = self._insert_episode_file(cur, series_id, season_number, new_file)
                except TransactionConflict as conflict:
                    logger.get_logger().debug(
                        f"[Library] {conflict.relative_path} already linked as file {conflict.existing_id}, adopting"
                    )
                    file_id = conflict.existing_id
                    adopted.append(file_id)
                self._link_episode(cur, file_id, episode_id)
                outcome.linked[episode_id] = file_id

            if outcome.linked:
                outcome.history_id = self._insert_history(
                    cur,
                    history,
                    tuple(outcome.linked),
                    tuple(dict.fromkeys(outcome.linked.values())),
                )
            conn.commit()
            outcome.adopted = tuple(adopted)
            outcome.replaced = tuple(replaced)
            return outcome
        except sqlite3.Error as e:
            conn.rollback()
            raise TransactionFailure(f"Season import failed: {e}") from e
        finally:
            conn.close()

    @staticmethod
    def _insert_episode_file(cur: sqlite3.Cursor, series_id: int, season_number: int, new_file: NewFile) -> int:
        """Insert a file record; raises TransactionConflict when the relative path is already taken."""
        existing = cur.execute(
            "SELECT id FROM episode_files WHERE series_id=? AND relative_path=?",
            (series_id, new_file.relative_path),
        ).fetchone()
        if existing:
            raise TransactionConflict(new_file.relative_path, existing[0])
        try:
            cur.execute(
                """
                INSERT INTO episode_files (
                    series_id, season_number, relative_path, size, scene_name, release_group,
                    quality, media_info, date_added
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    series_id,
                    season_number,
                    new_file.relative_path,
                    new_file.size,
                    new_file.scene_name,
                    new_file.release_group,
                    json.dumps(new_file.quality),
                    json.dumps(new_file.media_info),
                    utc_now(),
                ),
            )
        except sqlite3.IntegrityError:
            existing = cur.execute(
                "SELECT id FROM episode_files WHERE series_id=? AND relative_path=?",
                (series_id, new_file.relative_path),
            ).fetchone()
            if not existing:
                raise
            raise TransactionConflict(new_file.relative_path, existing[0]) from None
        return int(cur.lastrowid)

    @staticmethod
    def _link_episode(cur: sqlite3.Cursor, file_id: int, episode_id: int) -> None:
        cur.execute(
            "INSERT OR IGNORE INTO episode_file_episodes (episode_file_id, episode_id) VALUES (?, ?)",
            (file_id, episode_id),
        )
        cur.execute("UPDATE episodes SET has_file=1 WHERE id=?", (episode_id,))

    @staticmethod
    def _insert_history(
        cur: sqlite3.Cursor,
        history: HistoryEntry,
        episode_ids: Sequence[int],
        file_ids: Sequence[int],
    ) -> int:
        now = utc_now()
        cur.execute(
            """
            INSERT INTO download_history (
                title, protocol, status, index_id, index_name, movie_id, series_id, season_number,
                episode_ids, file_ids, size, quality, imported_path, is_automatic, grabbed_at, imported_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                history.title,
                history.protocol,
                history.status,
                history.index_id,
                history.index_name,
                history.movie_id,
                history.series_id,
                history.season_number,
                json.dumps(list(episode_ids)),
                json.dumps(list(file_ids)),
                history.size,
                json.dumps(history.quality),
                history.imported_path,
                int(history.is_automatic),
                now,
                now,
            ),
        )
        return int(cur.lastrowid)
