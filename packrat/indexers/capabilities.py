"""Pre-flight capability checks: can an index answer this search at all?"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Mapping

from packrat.indexers.categories import (
    SEARCH_TYPE_FAMILY,
    CategoryMapEntry,
    CategoryTranslator,
    is_in_family,
    resolve_canonical,
)
from packrat.indexers.definition import IndexDefinition
from packrat.search.types import SearchCriteria, SearchType

_TYPE_LABELS = {SearchType.BASIC: "Basic", SearchType.MOVIE: "Movie", SearchType.TV: "TV"}


class MatchOutcome(str, Enum):
    ACCEPTED = "accepted"
    NO_MATCHING_CATEGORIES = "no-matching-categories"
    UNSUPPORTED_SEARCH_TYPE = "unsupported-search-type"
    UNSUPPORTED_IDENTIFIERS = "unsupported-identifiers"


@dataclass(frozen=True)
class CapabilityVerdict:
    can_search: bool
    outcome: MatchOutcome
    reason: str = ""

    def describe(self) -> str:
        if self.can_search:
            return "accepted"
        return f"{self.outcome.value.replace('-', ' ')}: {self.reason}"


@dataclass(frozen=True)
class IndexCapabilities:
    """What one index advertises. Built once per definition load."""

    search_params: Mapping[SearchType, tuple[str, ...]] = field(default_factory=dict)
    categories: Mapping[str, int] = field(default_factory=dict)

    @classmethod
    def from_definition(cls, definition: IndexDefinition) -> "IndexCapabilities":
        categories: dict[str, int] = {}
        for mapping in definition.caps.categories:
            canonical = resolve_canonical(mapping.cat)
            if canonical is not None and mapping.id not in categories:
                categories[mapping.id] = canonical
        return cls(
            search_params={mode: tuple(params) for mode, params in definition.caps.modes.items()},
            categories=categories,
        )

    def supports_type(self, search_type: SearchType) -> bool:
        return search_type in self.search_params

    def supports_param(self, search_type: SearchType, param: str) -> bool:
        wanted = param.lower()
        return any(p.lower() == wanted for p in self.search_params.get(search_type, ()))

    def has_category_family(self, family: int) -> bool:
        return any(is_in_family(canonical, family) for canonical in self.categories.values())


def translator_for(definition: IndexDefinition) -> CategoryTranslator:
    entries = []
    for mapping in definition.caps.categories:
        canonical = resolve_canonical(mapping.cat)
        if canonical is None:
            continue
        entries.append(
            CategoryMapEntry(
                native_id=mapping.id,
                canonical_id=canonical,
                description=mapping.desc,
                default=mapping.default,
            )
        )
    return CategoryTranslator(entries)


def can_search_with_reason(criteria: SearchCriteria, capabilities: IndexCapabilities) -> CapabilityVerdict:
    """
    Gate a search against one index's capabilities. Pure; no I/O.

    Checks run in order and the first failure wins: category family,
    search type, then identifiers. When the criteria carry any external
    id, the index must support at least one of them. There is no fallback
    to free text in that case.
    """
    search_type = criteria.search_type

    family = SEARCH_TYPE_FAMILY.get(search_type)
    if family is not None and not capabilities.has_category_family(family):
        return CapabilityVerdict(
            can_search=False,
            outcome=MatchOutcome.NO_MATCHING_CATEGORIES,
            reason=f"No {search_type.value} categories (indexer has: {', '.join(capabilities.categories)})",
        )

    if not capabilities.supports_type(search_type):
        return CapabilityVerdict(
            can_search=False,
            outcome=MatchOutcome.UNSUPPORTED_SEARCH_TYPE,
            reason=f"Search mode '{search_type.value}' not available",
        )

    provided = criteria.provided_ids()
    if provided and not any(capabilities.supports_param(search_type, param) for param in provided):
        supported = capabilities.search_params.get(search_type, ())
        return CapabilityVerdict(
            can_search=False,
            outcome=MatchOutcome.UNSUPPORTED_IDENTIFIERS,
            reason=(
                f"{_TYPE_LABELS[search_type]} search has IDs [{', '.join(provided)}] "
                f"but indexer only supports [{', '.join(supported)}]"
            ),
        )

    return CapabilityVerdict(can_search=True, outcome=MatchOutcome.ACCEPTED)


def can_search(criteria: SearchCriteria, capabilities: IndexCapabilities) -> bool:
    return can_search_with_reason(criteria, capabilities).can_search
