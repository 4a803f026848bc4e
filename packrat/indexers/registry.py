"""Configured indexes, capability filtering and bounded concurrent search fan-out."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Optional, Sequence

from packrat import logger
from packrat.config import IndexConfig, PackratConfig
from packrat.errors import CapabilityMismatch, PackratError
from packrat.indexers.capabilities import IndexCapabilities, can_search_with_reason, translator_for
from packrat.indexers.definition import IndexDefinition, load_definition
from packrat.indexers.request_compiler import RequestCompiler
from packrat.indexers.requester import IndexRequester
from packrat.indexers.response_parser import ResponseParser
from packrat.search.types import Protocol, RawResult, SearchCriteria


@dataclass(frozen=True)
class IndexRef:
    key: str
    name: str
    protocol: Protocol
    priority: int = 25


@dataclass
class SearchOutcome:
    """Merged results of one fan-out, plus per-index failures and skips."""

    results: list[RawResult] = field(default_factory=list)
    failures: dict[str, str] = field(default_factory=dict)
    skipped: dict[str, str] = field(default_factory=dict)
    cancelled: bool = False


class IndexRuntime:
    """Everything needed to query one configured index."""

    def __init__(self, key: str, definition: IndexDefinition, config: IndexConfig, requester=None):
        self.definition = definition
        self.config = config
        self.ref = IndexRef(key=key, name=definition.name, protocol=definition.protocol, priority=config.priority)
        self.capabilities = IndexCapabilities.from_definition(definition)
        translator = translator_for(definition)
        self.compiler = RequestCompiler(
            definition,
            base_url=config.base_url or None,
            credentials=config.credential,
            translator=translator,
        )
        self.parser = ResponseParser(definition, translator, index_id=key)
        self.requester = requester or IndexRequester(definition, config)

    async def search(self, criteria: SearchCriteria) -> list[RawResult]:
        verdict = can_search_with_reason(criteria, self.capabilities)
        if not verdict.can_search:
            raise CapabilityMismatch(self.ref.name, verdict.outcome.value, verdict.reason)

        results: list[RawResult] = []
        seen: set[str] = set()
        for spec in self.compiler.build_requests(criteria):
            response = await self.requester.do(spec)
            for result in self.parser.parse(response.text(self.definition.encoding)):
                if result.identity in seen:
                    continue
                seen.add(result.identity)
                results.append(result)
        return results


class IndexRegistry:
    def __init__(
        self,
        runtimes: Sequence[IndexRuntime],
        max_concurrent: int = 4,
        timeout_seconds: float = 30.0,
    ):
        self._runtimes = {runtime.ref.key: runtime for runtime in runtimes}
        self.max_concurrent = max(1, max_concurrent)
        self.timeout_seconds = timeout_seconds

    @classmethod
    def from_config(cls, config: PackratConfig) -> "IndexRegistry":
        runtimes: list[IndexRuntime] = []
        for key, index_config in config.indexes.items():
            if not index_config.enabled:
                continue
            try:
                definition = load_definition(index_config.definition)
            except PackratError as e:
                logger.get_logger().error(f"[Indexes] Skipping {key}: {e}")
                continue
            runtimes.append(IndexRuntime(key, definition, index_config))
        return cls(
            runtimes,
            max_concurrent=config.strategy.max_concurrent_indexes,
            timeout_seconds=config.strategy.index_timeout_seconds,
        )

    @property
    def refs(self) -> list[IndexRef]:
        return sorted((r.ref for r in self._runtimes.values()), key=lambda ref: (ref.priority, ref.key))

    def get(self, key: str) -> IndexRuntime:
        try:
            return self._runtimes[key]
        except KeyError:
            raise KeyError(f"Unknown index '{key}'") from None

    def requester_for(self, key: str) -> Optional[IndexRequester]:
        runtime = self._runtimes.get(key)
        return runtime.requester if runtime is not None else None

    def find_capable_indexes(self, criteria: SearchCriteria) -> list[IndexRef]:
        capable: list[IndexRef] = []
        for ref in self.refs:
            verdict = can_search_with_reason(criteria, self._runtimes[ref.key].capabilities)
            if verdict.can_search:
                capable.append(ref)
            else:
                logger.get_logger().debug(f"[Indexes] {ref.name} skipped: {verdict.reason}")
        return capable

    async def search(self, ref: IndexRef | str, criteria: SearchCriteria) -> list[RawResult]:
        key = ref if isinstance(ref, str) else ref.key
        return await self.get(key).search(criteria)

    async def search_all(
        self,
        criteria: SearchCriteria,
        cancel: Optional[asyncio.Event] = None,
    ) -> SearchOutcome:
        """
        Query every capable index concurrently.

        A slow or failing index is logged and dropped; the others still
        contribute. Indexes not yet started when ``cancel`` is set are
        skipped.
        """
        outcome = SearchOutcome()
        capable = self.find_capable_indexes(criteria)
        for ref in self.refs:
            if ref not in capable:
                outcome.skipped[ref.key] = "not capable"
        semaphore = asyncio.Semaphore(self.max_concurrent)

        async def _run(ref: IndexRef) -> list[RawResult]:
            async with semaphore:
                if cancel is not None and cancel.is_set():
                    outcome.skipped[ref.key] = "cancelled"
                    outcome.cancelled = True
                    return []
                try:
                    return await asyncio.wait_for(self.search(ref, criteria), timeout=self.timeout_seconds)
                except asyncio.TimeoutError:
                    outcome.failures[ref.key] = f"timed out after {self.timeout_seconds:.0f}s"
                except PackratError as e:
                    outcome.failures[ref.key] = str(e)
                except Exception as e:
                    outcome.failures[ref.key] = f"{type(e).__name__}: {e}"
                logger.get_logger().warning(f"[Indexes] {ref.name} search failed: {outcome.failures[ref.key]}")
                return []

        batches = await asyncio.gather(*(_run(ref) for ref in capable))
        seen: set[str] = set()
        for batch in batches:
            for result in batch:
                if result.identity in seen:
                    continue
                seen.add(result.identity)
                outcome.results.append(result)
        return outcome

    async def close(self) -> None:
        for runtime in self._runtimes.values():
            await runtime.requester.close()
