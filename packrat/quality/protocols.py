"""Protocol definitions for the canonical-metadata service."""

from __future__ import annotations

from typing import Optional, Protocol, Sequence

from packrat.quality.types import MetadataRecord


class MetadataService(Protocol):
    """Catalog lookups used by the metadata matcher."""

    async def get_by_id(self, tmdb_id: int, media_type: str) -> Optional[MetadataRecord]:
        ...

    async def find_by_external_id(self, external_id: str, source: str, media_type: str) -> Optional[MetadataRecord]:
        """Reverse lookup; ``source`` is ``imdb_id`` or ``tvdb_id``."""
        ...

    async def search(self, title: str, media_type: str, year: Optional[int] = None) -> Sequence[MetadataRecord]:
        ...
