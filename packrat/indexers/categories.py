"""Canonical (Newznab) category taxonomy and per-index category translation."""

from __future__ import annotations

from dataclasses import dataclass
from enum import IntEnum
from typing import Iterable, Optional, Sequence

from packrat.search.types import SearchType


class Category(IntEnum):
    CONSOLE = 1000
    MOVIES = 2000
    MOVIES_FOREIGN = 2010
    MOVIES_OTHER = 2020
    MOVIES_SD = 2030
    MOVIES_HD = 2040
    MOVIES_UHD = 2045
    MOVIES_BLURAY = 2050
    MOVIES_3D = 2060
    MOVIES_WEBDL = 2070
    AUDIO = 3000
    PC = 4000
    TV = 5000
    TV_WEBDL = 5010
    TV_FOREIGN = 5020
    TV_SD = 5030
    TV_HD = 5040
    TV_UHD = 5045
    TV_OTHER = 5050
    TV_SPORT = 5060
    TV_ANIME = 5070
    TV_DOCUMENTARY = 5080
    XXX = 6000
    BOOKS = 7000
    OTHER = 8000


CATEGORY_NAMES: dict[int, str] = {
    1000: "Console",
    2000: "Movies",
    2010: "Movies/Foreign",
    2020: "Movies/Other",
    2030: "Movies/SD",
    2040: "Movies/HD",
    2045: "Movies/UHD",
    2050: "Movies/BluRay",
    2060: "Movies/3D",
    2070: "Movies/WEB-DL",
    3000: "Audio",
    3010: "Audio/MP3",
    3030: "Audio/Audiobook",
    3040: "Audio/Lossless",
    4000: "PC",
    4050: "PC/Games",
    5000: "TV",
    5010: "TV/WEB-DL",
    5020: "TV/Foreign",
    5030: "TV/SD",
    5040: "TV/HD",
    5045: "TV/UHD",
    5050: "TV/Other",
    5060: "TV/Sport",
    5070: "TV/Anime",
    5080: "TV/Documentary",
    6000: "XXX",
    7000: "Books",
    7020: "Books/EBook",
    8000: "Other",
}

_IDS_BY_NAME = {name.lower(): cat_id for cat_id, name in CATEGORY_NAMES.items()}

# Root category each search type needs at least one mapping into.
SEARCH_TYPE_FAMILY: dict[SearchType, Category] = {
    SearchType.MOVIE: Category.MOVIES,
    SearchType.TV: Category.TV,
}


def root_category(cat_id: int) -> int:
    return (cat_id // 1000) * 1000


def is_in_family(cat_id: int, family: int) -> bool:
    return root_category(cat_id) == root_category(family)


def resolve_canonical(value: int | str) -> Optional[int]:
    """Resolve a canonical category given as an id, a numeric string or a Newznab name."""
    if isinstance(value, int):
        return value
    text = value.strip()
    if text.isdigit():
        return int(text)
    return _IDS_BY_NAME.get(text.lower())


def category_name(cat_id: int) -> str:
    return CATEGORY_NAMES.get(cat_id, str(cat_id))


@dataclass(frozen=True)
class CategoryMapEntry:
    native_id: str
    canonical_id: int
    description: str = ""
    default: bool = False


class CategoryTranslator:
    """
    Two-way category table for one index.

    Every native id maps to one canonical id. A canonical id may map to
    many native ids. Requests for a root category (``5000``) also pull in
    native ids mapped to its children.
    """

    def __init__(self, entries: Iterable[CategoryMapEntry]):
        self._forward: dict[str, int] = {}
        self._reverse: dict[int, list[str]] = {}
        self._defaults: list[str] = []
        for entry in entries:
            if entry.native_id in self._forward:
                continue
            self._forward[entry.native_id] = entry.canonical_id
            self._reverse.setdefault(entry.canonical_id, []).append(entry.native_id)
            if entry.default:
                self._defaults.append(entry.native_id)

    @property
    def native_to_canonical(self) -> dict[str, int]:
        return dict(self._forward)

    def defaults(self) -> list[str]:
        return list(self._defaults)

    def to_canonical(self, native_ids: Sequence[str]) -> list[int]:
        seen: list[int] = []
        for native_id in native_ids:
            canonical = self._forward.get(str(native_id))
            if canonical is not None and canonical not in seen:
                seen.append(canonical)
        return seen

    def to_native(self, canonical_ids: Sequence[int]) -> list[str]:
        """Native ids for the requested canonical ids; the index defaults when none map."""
        found: list[str] = []
        for canonical_id in canonical_ids:
            for native_id in self._natives_for(canonical_id):
                if native_id not in found:
                    found.append(native_id)
        if not found:
            return self.defaults()
        return found

    def _natives_for(self, canonical_id: int) -> list[str]:
        natives = list(self._reverse.get(canonical_id, []))
        if canonical_id == root_category(canonical_id):
            for mapped_id, mapped_natives in self._reverse.items():
                if mapped_id != canonical_id and root_category(mapped_id) == canonical_id:
                    natives.extend(mapped_natives)
        return natives
