"""Acquisition pipeline facade: search, rank, pack-aware search and grab behind one object."""

from __future__ import annotations

import asyncio
from dataclasses import replace
from typing import Iterable, Mapping, Optional, Sequence

from packrat import logger
from packrat.config import PackratConfig
from packrat.grab.decision import ReleaseDecisionService
from packrat.grab.protocols import DownloadClient
from packrat.grab.resolver import DownloadResolver
from packrat.grab.service import GrabService
from packrat.grab.stream import StrmWriter
from packrat.grab.types import GrabResult, GrabTarget
from packrat.indexers.registry import IndexRef, IndexRegistry, SearchOutcome
from packrat.library.store import SqliteLibraryStore
from packrat.quality.enricher import EnrichOptions, ReleaseEnricher
from packrat.quality.matcher import CanonicalMetadataMatcher
from packrat.quality.profiles import DEFAULT_PROFILE, ScoringProfile
from packrat.quality.protocols import MetadataService
from packrat.quality.types import EnrichmentResult, ScoredCandidate
from packrat.search.types import RawResult, SearchCriteria
from packrat.strategy.commit import CandidateCommitter
from packrat.strategy.episode_search import CandidateFinder
from packrat.strategy.pack_search import PackAwareSearchStrategy
from packrat.strategy.progress import ProgressChannel
from packrat.strategy.state import MissingEpisode, SeriesContext, StrategyResult


class AcquisitionPipeline:
    """
    Components are passed in, so tests can swap any of them for fakes.
    ``from_config`` builds the production wiring.
    """

    def __init__(
        self,
        registry: IndexRegistry,
        enricher: ReleaseEnricher,
        grab_service: GrabService,
        decisions: ReleaseDecisionService,
        strategy: Optional[PackAwareSearchStrategy] = None,
        profiles: Optional[Mapping[str, ScoringProfile]] = None,
        config: Optional[PackratConfig] = None,
    ):
        self.registry = registry
        self.enricher = enricher
        self.grab_service = grab_service
        self.decisions = decisions
        self.config = config or PackratConfig()
        self.profiles = dict(profiles or {})
        self.profiles.setdefault(DEFAULT_PROFILE.name, DEFAULT_PROFILE)
        self.strategy = strategy or self._build_strategy(decisions.profile)

    @classmethod
    def from_config(
        cls,
        config: PackratConfig,
        download_clients: Optional[Mapping[str, DownloadClient]] = None,
        metadata_service: Optional[MetadataService] = None,
        profile_name: str = DEFAULT_PROFILE.name,
        store: Optional[SqliteLibraryStore] = None,
    ) -> "AcquisitionPipeline":
        """
        ``download_clients`` maps the keys of ``[download_clients.*]`` to
        live client instances; configured clients without an instance are
        left out with a warning.
        """
        registry = IndexRegistry.from_config(config)
        matcher = CanonicalMetadataMatcher(metadata_service) if metadata_service is not None else None
        enricher = ReleaseEnricher(config.indexes, matcher=matcher)
        store = store or SqliteLibraryStore(config.library.database)

        clients = {}
        instances = dict(download_clients or {})
        for key, client_config in config.download_clients.items():
            if key not in instances:
                logger.get_logger().warning(f"[Pipeline] Download client '{key}' is configured but not connected")
                continue
            clients[key] = (client_config, instances[key])

        profiles = {
            name: ScoringProfile.from_config(name, profile_config)
            for name, profile_config in config.scoring_profiles.items()
        }
        profile = profiles.get(profile_name, DEFAULT_PROFILE)
        grab_service = GrabService(
            repository=store,
            queue=store,
            resolver=DownloadResolver(registry.requester_for),
            download_clients=clients,
            index_configs=config.indexes,
            strm_writer=StrmWriter(config.library.streaming_base_url),
        )
        return cls(
            registry=registry,
            enricher=enricher,
            grab_service=grab_service,
            decisions=ReleaseDecisionService(store, profile),
            profiles=profiles,
            config=config,
        )

    def _build_strategy(self, profile: ScoringProfile) -> PackAwareSearchStrategy:
        options = EnrichOptions(profile=profile, drop_rejected=True, min_score=self.config.strategy.min_score)
        finder = CandidateFinder(self.registry, self.enricher, options)
        committer = CandidateCommitter(self.decisions, self.grab_service)
        return PackAwareSearchStrategy(finder, committer, self.config.strategy)

    def profile(self, name: str) -> ScoringProfile:
        try:
            return self.profiles[name]
        except KeyError:
            raise KeyError(f"Unknown scoring profile '{name}'") from None

    def find_capable_indexes(self, criteria: SearchCriteria) -> list[IndexRef]:
        return self.registry.find_capable_indexes(criteria)

    async def search(self, ref: IndexRef | str, criteria: SearchCriteria) -> list[RawResult]:
        return await self.registry.search(ref, criteria)

    async def search_all(self, criteria: SearchCriteria, cancel: Optional[asyncio.Event] = None) -> SearchOutcome:
        return await self.registry.search_all(criteria, cancel)

    async def enrich_and_rank(
        self,
        raw_results: Sequence[RawResult],
        options: Optional[EnrichOptions] = None,
    ) -> EnrichmentResult:
        if options is None:
            options = EnrichOptions(profile=self.decisions.profile)
        return await self.enricher.enrich(raw_results, options)

    async def run_pack_aware_search(
        self,
        series: SeriesContext,
        missing: Iterable[MissingEpisode],
        progress: Optional[ProgressChannel] = None,
        cancel: Optional[asyncio.Event] = None,
        is_automatic: bool = True,
        profile: Optional[str] = None,
    ) -> StrategyResult:
        strategy = self.strategy
        if profile is not None and profile != self.decisions.profile.name:
            chosen = self.profile(profile)
            decisions = ReleaseDecisionService(self.decisions.repository, chosen)
            options = replace(strategy.finder.options, profile=chosen)
            finder = CandidateFinder(strategy.finder.source, strategy.finder.enricher, options)
            strategy = PackAwareSearchStrategy(
                finder, CandidateCommitter(decisions, self.grab_service), self.config.strategy
            )
        return await strategy.run(series, missing, progress=progress, cancel=cancel, is_automatic=is_automatic)

    async def grab(self, candidate: ScoredCandidate, target: GrabTarget) -> GrabResult:
        return await self.grab_service.grab(candidate, target)

    async def close(self) -> None:
        await self.registry.close()
