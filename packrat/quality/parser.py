"""Regex release-title parser: quality tokens, year, group and season/episode span."""

from __future__ import annotations

import re
from typing import Optional

from packrat.quality.types import EpisodeInfo, ParsedRelease

_SEPARATORS = re.compile(r"[._]+")

_COMPLETE_SERIES = re.compile(
    r"\b(?:complete[ -]series|the[ -]complete[ -]series|complete[ -]collection|all[ -]seasons|full[ -]series|series[ -]complete)\b",
    re.IGNORECASE,
)
_COMPLETE_WORD = re.compile(r"\bcomplete\b", re.IGNORECASE)
_MULTI_SEASON = re.compile(r"\bS(\d{1,2}) ?- ?S?(\d{1,2})\b(?! ?E\d)", re.IGNORECASE)
_SEASONS_WORD = re.compile(r"\bSeasons? ?(\d{1,2}) ?(?:-|to|thru|through) ?(\d{1,2})\b", re.IGNORECASE)
_SEASON_EPISODE = re.compile(r"\bS(\d{1,2}) ?E(\d{1,3})((?:(?:-?E|-)\d{1,3}(?![\dpi]))*)", re.IGNORECASE)
_CROSS_EPISODE = re.compile(r"\b(\d{1,2})x(\d{2,3})\b", re.IGNORECASE)
_SEASON_PACK = re.compile(r"\bS(\d{1,2})\b(?! ?E\d)", re.IGNORECASE)
_SEASON_WORD = re.compile(r"\bSeason ?(\d{1,2})\b(?! ?Episode)", re.IGNORECASE)
_DAILY = re.compile(r"\b((?:19|20)\d{2})[ -](\d{2})[ -](\d{2})\b")
_ANIME_ABSOLUTE = re.compile(r"^\[[^\]]+\] ?(.+?) - (\d{2,4})\b")

_YEAR = re.compile(r"(?<![\dx])(19\d{2}|20\d{2})(?![\dp])")
_RESOLUTION = re.compile(r"\b(2160p|4k|uhd|1080[pi]|720p|576p|480p)\b", re.IGNORECASE)
_REMUX = re.compile(r"\bremux\b", re.IGNORECASE)
_SOURCES = (
    ("bluray", re.compile(r"\b(?:blu-?ray|bdrip|brrip|bd25|bd50)\b", re.IGNORECASE)),
    ("web-dl", re.compile(r"\b(?:web-?dl|amzn|nf|dsnp|hmax|atvp)\b", re.IGNORECASE)),
    ("webrip", re.compile(r"\bweb-?rip\b", re.IGNORECASE)),
    ("web-dl", re.compile(r"\bweb\b", re.IGNORECASE)),
    ("hdtv", re.compile(r"\b(?:hdtv|pdtv|sdtv)\b", re.IGNORECASE)),
    ("dvd", re.compile(r"\b(?:dvdrip|dvd|dvd9|dvd5)\b", re.IGNORECASE)),
)
_CODECS = (
    ("x265", re.compile(r"\b(?:x265|h ?265|hevc)\b", re.IGNORECASE)),
    ("x264", re.compile(r"\b(?:x264|h ?264|avc)\b", re.IGNORECASE)),
    ("av1", re.compile(r"\bav1\b", re.IGNORECASE)),
    ("xvid", re.compile(r"\b(?:xvid|divx)\b", re.IGNORECASE)),
)
_HDR = re.compile(r"\b(?:hdr(?:10)?(?:plus|\+)?|dolby ?vision|dovi|dv)\b", re.IGNORECASE)
_PROPER = re.compile(r"\bproper\b", re.IGNORECASE)
_REPACK = re.compile(r"\b(?:repack|rerip)\b", re.IGNORECASE)
_HARDCODED_SUBS = re.compile(r"\b(?:hc|hardsubs?|hardcoded|korsub|subbed ?in)\b", re.IGNORECASE)
_GROUP = re.compile(r"-([A-Za-z0-9]+)(?:\[[^\]]*\])?(?:\.(?:mkv|mp4|avi|nzb|torrent))?$")
_IMDB_ID = re.compile(r"\b(tt\d{7,9})\b")
_TMDB_ID = re.compile(r"[\[{(]tmdb(?:id)?[-=: ](\d+)[\]})]", re.IGNORECASE)
_TVDB_ID = re.compile(r"[\[{(]tvdb(?:id)?[-=: ](\d+)[\]})]", re.IGNORECASE)


def _season_range(start: int, end: int) -> tuple[int, ...]:
    if end < start or end - start > 50:
        return ()
    return tuple(range(start, end + 1))


def _episode_list(first: int, tail: str) -> tuple[int, ...]:
    extra = [int(n) for n in re.findall(r"\d{1,3}", tail)]
    if not extra:
        return (first,)
    if "-" in tail and len(extra) == 1 and extra[0] > first:
        return tuple(range(first, extra[0] + 1))
    return tuple(dict.fromkeys([first, *extra]))


def parse_episode_info(text: str) -> tuple[Optional[EpisodeInfo], int]:
    """Episode span for a separator-normalized title, plus where the marker starts (-1 if none)."""
    complete = _COMPLETE_SERIES.search(text)

    for pattern in (_MULTI_SEASON, _SEASONS_WORD):
        match = pattern.search(text)
        if match:
            seasons = _season_range(int(match.group(1)), int(match.group(2)))
            if seasons:
                start = min(match.start(), complete.start()) if complete else match.start()
                return (
                    EpisodeInfo(seasons=seasons, is_season_pack=True, is_complete_series=bool(complete)),
                    start,
                )

    if complete:
        return EpisodeInfo(is_season_pack=True, is_complete_series=True), complete.start()

    match = _SEASON_EPISODE.search(text)
    if match:
        episodes = _episode_list(int(match.group(2)), match.group(3) or "")
        return EpisodeInfo(seasons=(int(match.group(1)),), episodes=episodes), match.start()

    match = _CROSS_EPISODE.search(text)
    if match:
        return EpisodeInfo(seasons=(int(match.group(1)),), episodes=(int(match.group(2)),)), match.start()

    for pattern in (_SEASON_PACK, _SEASON_WORD):
        match = pattern.search(text)
        if match:
            return EpisodeInfo(seasons=(int(match.group(1)),), is_season_pack=True), match.start()

    match = _DAILY.search(text)
    if match:
        air_date = f"{match.group(1)}-{match.group(2)}-{match.group(3)}"
        return EpisodeInfo(air_date=air_date), match.start()

    match = _ANIME_ABSOLUTE.search(text)
    if match:
        return EpisodeInfo(absolute_episode=int(match.group(2))), match.start(2) - 3

    return None, -1


def _first_match(patterns, text: str) -> Optional[str]:
    for value, pattern in patterns:
        if pattern.search(text):
            return value
    return None


def _resolution(text: str) -> tuple[Optional[str], int]:
    match = _RESOLUTION.search(text)
    if not match:
        return None, -1
    token = match.group(1).lower()
    if token in {"4k", "uhd", "2160p"}:
        return "2160p", match.start()
    if token.startswith("1080"):
        return "1080p", match.start()
    if token == "576p":
        return "480p", match.start()
    return token, match.start()


def _year(text: str) -> tuple[Optional[int], int]:
    matches = list(_YEAR.finditer(text))
    if not matches:
        return None, -1
    # A year at the very start is usually part of the title ("2012", "1917").
    chosen = matches[1] if matches[0].start() == 0 and len(matches) > 1 else matches[0]
    if chosen.start() == 0:
        return None, -1
    return int(chosen.group(1)), chosen.start()


def _clean_title(text: str, cut: int) -> str:
    head = text[:cut] if cut > 0 else text
    head = re.sub(r"^\[[^\]]*\] ?", "", head)
    head = re.sub(r"[\[\](){}]", " ", head)
    head = re.sub(r"\s+", " ", head)
    return head.strip(" -")


def parse_release(title: str) -> ParsedRelease:
    """
    Parse a release title. Never raises: an unparseable title comes back
    with ``confidence=0`` so the hit is kept, just ranked low.
    """
    raw = (title or "").strip()
    text = _SEPARATORS.sub(" ", raw)
    if not re.search(r"[A-Za-z0-9]", text):
        return ParsedRelease(title=raw)

    episode, episode_at = parse_episode_info(text)
    year, year_at = _year(text)
    resolution, resolution_at = _resolution(text)
    source = _first_match(_SOURCES, text)
    is_remux = bool(_REMUX.search(text))
    if is_remux and source is None:
        source = "bluray"
    codec = _first_match(_CODECS, text)
    group_match = _GROUP.search(raw)

    markers = [pos for pos in (episode_at, year_at, resolution_at) if pos > 0]
    complete = _COMPLETE_WORD.search(text)
    if complete and complete.start() > 0:
        markers.append(complete.start())
    clean_title = _clean_title(text, min(markers) if markers else -1)

    confidence = 0.0
    if clean_title:
        confidence += 0.3
        confidence += 0.2 if resolution else 0.0
        confidence += 0.2 if source else 0.0
        confidence += 0.1 if codec else 0.0
        confidence += 0.1 if group_match else 0.0
        confidence += 0.1 if (year or episode) else 0.0

    return ParsedRelease(
        title=raw,
        clean_title=clean_title,
        year=year,
        resolution=resolution,
        source=source,
        codec=codec,
        hdr=bool(_HDR.search(text)),
        is_remux=is_remux,
        is_proper=bool(_PROPER.search(text)),
        is_repack=bool(_REPACK.search(text)),
        release_group=group_match.group(1) if group_match else None,
        hardcoded_subs=bool(_HARDCODED_SUBS.search(text)),
        episode=episode,
        confidence=round(min(1.0, confidence), 2),
    )


def extract_external_ids(title: str) -> dict[str, str | int]:
    """Catalog ids embedded in a title, e.g. ``{tmdb-1399}``, ``[tvdbid-121361]``, ``tt0944947``."""
    found: dict[str, str | int] = {}
    match = _TMDB_ID.search(title)
    if match:
        found["tmdb_id"] = int(match.group(1))
    match = _TVDB_ID.search(title)
    if match:
        found["tvdb_id"] = int(match.group(1))
    match = _IMDB_ID.search(title)
    if match:
        found["imdb_id"] = match.group(1)
    return found
