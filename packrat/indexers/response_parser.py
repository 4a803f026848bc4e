"""Turn index response bodies (Torznab/Newznab RSS or JSON) into RawResults."""

from __future__ import annotations

import json
import xml.etree.ElementTree as ET
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any, Optional

from packrat.errors import ResponseParseError
from packrat.indexers.categories import CategoryTranslator
from packrat.indexers.definition import IndexDefinition
from packrat.resilience import expect_dict, expect_list_of_dicts
from packrat.search.types import Protocol, RawResult

TORZNAB_NS = "http://torznab.com/schemas/2015/feed"
NEWZNAB_NS = "http://www.newznab.com/DTD/2010/feeds/attributes/"

DEFAULT_JSON_FIELDS = {
    "title": "title",
    "size": "size",
    "seeders": "seeders",
    "leechers": "leechers",
    "grabs": "grabs",
    "download": "download",
    "magnet": "magnet",
    "infohash": "infohash",
    "guid": "guid",
    "details": "details",
    "date": "date",
    "category": "category",
    "imdb": "imdb",
    "tmdb": "tmdb",
    "tvdb": "tvdb",
}


def _to_int(value: Any) -> Optional[int]:
    if value is None or value == "":
        return None
    try:
        return int(float(value))
    except (TypeError, ValueError, OverflowError):
        return None


def _parse_date(value: Any) -> Optional[datetime]:
    if value is None or value == "":
        return None
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(float(value), tz=timezone.utc)
    text = str(value).strip()
    if text.isdigit():
        return datetime.fromtimestamp(int(text), tz=timezone.utc)
    try:
        parsed = parsedate_to_datetime(text)
    except (TypeError, ValueError):
        pass
    else:
        # "-0000" zones come back naive
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    try:
        parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def _normalize_imdb(value: Any) -> Optional[str]:
    if value in (None, "", "0"):
        return None
    text = str(value).strip()
    if text.startswith("tt"):
        return text
    return f"tt{int(text):07d}" if text.isdigit() else None


class ResponseParser:
    """Parses responses for one index definition."""

    def __init__(self, definition: IndexDefinition, translator: CategoryTranslator, index_id: Optional[str] = None):
        self.definition = definition
        self.translator = translator
        self.index_id = index_id or definition.id
        self.protocol = definition.protocol

    def parse(self, body: str) -> list[RawResult]:
        response_type = self.definition.search.response.type
        if response_type == "json":
            return self.parse_json(body)
        return self.parse_torznab(body)

    def _result(self, **kwargs: Any) -> RawResult:
        return RawResult(index_id=self.index_id, index_name=self.definition.name, protocol=self.protocol, **kwargs)

    def _canonical_categories(self, values: list[str]) -> tuple[int, ...]:
        mapped = self.translator.to_canonical(values)
        if mapped:
            return tuple(mapped)
        # Torznab feeds usually report canonical ids directly.
        return tuple(cat for cat in (_to_int(v) for v in values) if cat is not None)

    def parse_torznab(self, body: str) -> list[RawResult]:
        try:
            root = ET.fromstring(body)
        except ET.ParseError as e:
            raise ResponseParseError(f"{self.definition.name}: invalid XML response: {e}") from e
        if root.tag == "error":
            code = root.attrib.get("code", "")
            description = root.attrib.get("description", "")
            raise ResponseParseError(f"{self.definition.name}: index error {code}: {description}")

        results: list[RawResult] = []
        for item in root.iter("item"):
            title = (item.findtext("title") or "").strip()
            if not title:
                continue
            attrs: dict[str, str] = {}
            categories: list[str] = []
            for ns in (TORZNAB_NS, NEWZNAB_NS):
                for attr in item.findall(f"{{{ns}}}attr"):
                    name = attr.attrib.get("name", "").lower()
                    value = attr.attrib.get("value", "")
                    if name == "category":
                        categories.append(value)
                    elif name and name not in attrs:
                        attrs[name] = value
            categories.extend((cat.text or "").strip() for cat in item.findall("category") if cat.text)

            enclosure = item.find("enclosure")
            enclosure_url = enclosure.attrib.get("url", "") if enclosure is not None else ""
            size = _to_int(item.findtext("size")) or _to_int(attrs.get("size"))
            if not size and enclosure is not None:
                size = _to_int(enclosure.attrib.get("length"))

            link = enclosure_url or (item.findtext("link") or "").strip()
            magnet = attrs.get("magneturl", "")
            if link.startswith("magnet:"):
                magnet, link = magnet or link, ""

            seeders = _to_int(attrs.get("seeders"))
            peers = _to_int(attrs.get("peers"))
            leechers = _to_int(attrs.get("leechers"))
            if leechers is None and peers is not None and seeders is not None:
                leechers = max(0, peers - seeders)

            results.append(
                self._result(
                    title=title,
                    size=size or 0,
                    seeders=seeders,
                    leechers=leechers,
                    grabs=_to_int(attrs.get("grabs")),
                    publish_date=_parse_date(attrs.get("usenetdate") or item.findtext("pubDate")),
                    download_url=link,
                    magnet_url=magnet,
                    info_hash=attrs.get("infohash", "").lower(),
                    guid=(item.findtext("guid") or "").strip(),
                    details_url=(item.findtext("comments") or "").strip(),
                    categories=self._canonical_categories(categories),
                    imdb_id=_normalize_imdb(attrs.get("imdbid") or attrs.get("imdb")),
                    tmdb_id=_to_int(attrs.get("tmdbid")),
                    tvdb_id=_to_int(attrs.get("tvdbid")),
                )
            )
        return results

    def parse_json(self, body: str) -> list[RawResult]:
        try:
            payload: Any = json.loads(body)
        except json.JSONDecodeError as e:
            raise ResponseParseError(f"{self.definition.name}: invalid JSON response: {e}") from e

        spec = self.definition.search.response
        context = f"{self.definition.name} response"
        rows_value: Any = payload
        try:
            for part in filter(None, spec.rows.split(".")):
                rows_value = expect_dict(rows_value, context).get(part)
                context = f"{context}.{part}"
            rows = expect_list_of_dicts(rows_value, context)
        except ValueError as e:
            raise ResponseParseError(str(e)) from e

        fields = {**DEFAULT_JSON_FIELDS, **spec.fields}
        results: list[RawResult] = []
        for row in rows:
            title = str(self._field(row, fields["title"]) or "").strip()
            if not title:
                continue
            download = str(self._field(row, fields["download"]) or "")
            magnet = str(self._field(row, fields["magnet"]) or "")
            if download.startswith("magnet:"):
                magnet, download = magnet or download, ""
            category = self._field(row, fields["category"])
            category_values = [str(c) for c in category] if isinstance(category, list) else ([str(category)] if category is not None else [])
            results.append(
                self._result(
                    title=title,
                    size=_to_int(self._field(row, fields["size"])) or 0,
                    seeders=_to_int(self._field(row, fields["seeders"])),
                    leechers=_to_int(self._field(row, fields["leechers"])),
                    grabs=_to_int(self._field(row, fields["grabs"])),
                    publish_date=_parse_date(self._field(row, fields["date"])),
                    download_url=download,
                    magnet_url=magnet,
                    info_hash=str(self._field(row, fields["infohash"]) or "").lower(),
                    guid=str(self._field(row, fields["guid"]) or ""),
                    details_url=str(self._field(row, fields["details"]) or ""),
                    categories=self._canonical_categories(category_values),
                    imdb_id=_normalize_imdb(self._field(row, fields["imdb"])),
                    tmdb_id=_to_int(self._field(row, fields["tmdb"])),
                    tvdb_id=_to_int(self._field(row, fields["tvdb"])),
                )
            )
        return results

    @staticmethod
    def _field(row: dict, path: str) -> Any:
        value: Any = row
        for part in path.split("."):
            if not isinstance(value, dict):
                return None
            value = value.get(part)
        return value
