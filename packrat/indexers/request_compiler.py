"""Compile canonical search criteria into concrete HTTP requests for one index."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, Mapping, Optional
from urllib.parse import quote, urlencode, urljoin

from packrat.indexers.capabilities import translator_for
from packrat.indexers.categories import SEARCH_TYPE_FAMILY, CategoryTranslator
from packrat.indexers.definition import IndexDefinition, SearchPath
from packrat.indexers.templates import TemplateContext, apply_filters, expand
from packrat.search.types import SearchCriteria, SearchType

RAW_INPUT_KEY = "$raw"
EXCLUSION_MARKER = "!"

_QUERY_TYPES = {SearchType.BASIC: "search", SearchType.MOVIE: "movie", SearchType.TV: "tvsearch"}


@dataclass(frozen=True)
class HttpRequestSpec:
    method: str
    url: str
    headers: Mapping[str, str] = field(default_factory=dict)
    body: tuple[tuple[str, str], ...] = ()


def build_keywords(criteria: SearchCriteria) -> str:
    """Free text plus year (movies) or an SxxEyy / Sxx token (TV)."""
    parts: list[str] = []
    if criteria.query:
        parts.append(criteria.query)
    if criteria.search_type == SearchType.MOVIE and criteria.year:
        parts.append(str(criteria.year))
    elif criteria.search_type == SearchType.TV and criteria.season is not None:
        if criteria.episode is not None:
            parts.append(f"S{criteria.season:02d}E{criteria.episode:02d}")
        else:
            parts.append(f"S{criteria.season:02d}")
    return " ".join(parts)


def _parse_raw(value: str) -> list[tuple[str, str]]:
    pairs: list[tuple[str, str]] = []
    for part in value.split("&"):
        key, _, raw_value = part.partition("=")
        if key:
            pairs.append((key, raw_value))
    return pairs


def path_matches_categories(path: SearchPath, native_categories: list[str]) -> bool:
    if not path.categories or not native_categories:
        return True
    if path.categories[0] == EXCLUSION_MARKER:
        excluded = set(path.categories[1:])
        return not any(cat in excluded for cat in native_categories)
    return any(cat in path.categories for cat in native_categories)


class RequestCompiler:
    """
    Turns criteria into one request per matching search path.

    ``credentials`` resolves ``{{ .Config.<key> }}`` lookups (api keys,
    passkeys) so the definition never carries secrets.
    """

    def __init__(
        self,
        definition: IndexDefinition,
        base_url: Optional[str] = None,
        credentials: Optional[Callable[[str], str]] = None,
        translator: Optional[CategoryTranslator] = None,
    ):
        self.definition = definition
        self.base_url = (base_url or definition.base_url).rstrip("/") + "/"
        self._credentials = credentials
        self.translator = translator or translator_for(definition)

    def native_categories(self, criteria: SearchCriteria) -> list[str]:
        requested = list(criteria.categories)
        if not requested and criteria.search_type in SEARCH_TYPE_FAMILY:
            requested = [int(SEARCH_TYPE_FAMILY[criteria.search_type])]
        return self.translator.to_native(requested)

    def _context(self, criteria: SearchCriteria, native_categories: list[str]) -> TemplateContext:
        search = self.definition.search
        keywords = build_keywords(criteria)
        filters = [(f.name, f.args) for f in search.keywordsfilters]
        imdb = criteria.imdb_id or ""
        if imdb and not imdb.startswith("tt"):
            imdb = f"tt{imdb}"
        context = TemplateContext(
            {
                ".Keywords": apply_filters(keywords, filters),
                ".Query.Keywords": keywords,
                ".Query.Q": criteria.query,
                ".Query.Type": _QUERY_TYPES[criteria.search_type],
                ".Query.Year": criteria.year or "",
                ".Query.Season": "" if criteria.season is None else criteria.season,
                ".Query.Ep": "" if criteria.episode is None else criteria.episode,
                ".Query.IMDBID": imdb,
                ".Query.IMDBIDShort": imdb[2:] if imdb else "",
                ".Query.TMDBID": criteria.tmdb_id or "",
                ".Query.TVDBID": criteria.tvdb_id or "",
                ".Query.TVMazeID": criteria.tvmaze_id or "",
                ".Query.Limit": criteria.limit or "",
                ".Query.Offset": criteria.offset or "",
                ".Categories": native_categories,
                ".Config.sitelink": self.base_url,
            }
        )
        if self._credentials is not None:
            for key in ("apikey", "passkey", "username", "cookie"):
                context.set(f".Config.{key}", self._credentials(key))
        return context

    def build_requests(self, criteria: SearchCriteria) -> list[HttpRequestSpec]:
        native = self.native_categories(criteria)
        context = self._context(criteria, native)
        requests: list[HttpRequestSpec] = []
        seen_urls: set[str] = set()
        for path in self.definition.search.paths:
            if not path_matches_categories(path, native):
                continue
            request = self._build_for_path(path, context.copy(), native)
            if request.url not in seen_urls:
                seen_urls.add(request.url)
                requests.append(request)
        return requests

    def _expand_inputs(self, inputs: Mapping[str, str], context: TemplateContext) -> dict[str, str]:
        expanded: dict[str, str] = {}
        allow_empty = self.definition.search.allow_empty_inputs
        for key, template in inputs.items():
            value = expand(template, context)
            if not value and not allow_empty:
                continue
            expanded[key] = value
        return expanded

    def _build_for_path(self, path: SearchPath, context: TemplateContext, native: list[str]) -> HttpRequestSpec:
        if path.categories and path.categories[0] != EXCLUSION_MARKER:
            intersection = [cat for cat in native if cat in path.categories]
            if intersection:
                context.set(".Categories", intersection)

        url = self._resolve_url(expand(path.path, context, lambda value: quote(value, safe="")))

        inputs: dict[str, str] = {}
        if path.inheritinputs:
            inputs.update(self._expand_inputs(self.definition.search.inputs, context))
        inputs.update(self._expand_inputs(path.inputs, context))

        pairs: list[tuple[str, str]] = []
        for key, value in inputs.items():
            if key == RAW_INPUT_KEY:
                pairs.extend(_parse_raw(value))
            else:
                pairs.append((key, value))

        headers = {key: expand(value, context) for key, value in self.definition.search.headers.items()}

        if path.method == "GET":
            if pairs:
                url += ("&" if "?" in url else "?") + urlencode(pairs)
            return HttpRequestSpec(method="GET", url=url, headers=headers)
        return HttpRequestSpec(method="POST", url=url, headers=headers, body=tuple(pairs))

    def _resolve_url(self, path: str) -> str:
        if path.startswith(("http://", "https://")):
            return path
        return urljoin(self.base_url, path)
