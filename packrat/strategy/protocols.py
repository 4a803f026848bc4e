"""Protocol definitions for what the pack-aware search talks to."""

from __future__ import annotations

import asyncio
from typing import Optional, Protocol

from packrat.grab.types import GrabResult, GrabTarget
from packrat.indexers.registry import SearchOutcome
from packrat.quality.types import ScoredCandidate
from packrat.search.types import SearchCriteria


class ReleaseSource(Protocol):
    """Fan-out search across indexes; ``IndexRegistry`` is the production source."""

    async def search_all(self, criteria: SearchCriteria, cancel: Optional[asyncio.Event] = None) -> SearchOutcome:
        ...


class Grabber(Protocol):
    async def grab(self, candidate: ScoredCandidate, target: GrabTarget) -> GrabResult:
        ...
