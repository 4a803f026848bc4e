"""Walk ranked candidates through the decision gate and grab the first one accepted."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Optional, Sequence

from packrat import logger
from packrat.grab.decision import ReleaseDecisionService
from packrat.grab.types import GrabResult, GrabTarget
from packrat.quality.types import ScoredCandidate
from packrat.strategy.protocols import Grabber

RejectHook = Callable[[ScoredCandidate, str], None]


@dataclass(frozen=True)
class Commit:
    candidate: ScoredCandidate
    result: GrabResult


class CandidateCommitter:
    def __init__(self, decisions: ReleaseDecisionService, grabber: Grabber):
        self.decisions = decisions
        self.grabber = grabber

    async def commit_first(
        self,
        candidates: Sequence[ScoredCandidate],
        series_id: int,
        episode_ids: Sequence[int],
        season_number: Optional[int] = None,
        is_automatic: bool = True,
        on_reject: Optional[RejectHook] = None,
    ) -> Optional[Commit]:
        """``candidates`` are assumed best-first. Returns None when nothing was grabbed."""
        for candidate in candidates:
            decision = await self.decisions.evaluate_for_episodes(candidate, episode_ids)
            if not decision.accepted:
                logger.get_logger().debug(f"[PackSearch] Rejected {candidate.title}: {decision.reason}")
                if on_reject is not None:
                    on_reject(candidate, decision.reason)
                continue

            result = await self.grabber.grab(
                candidate,
                GrabTarget.episodes(
                    series_id,
                    episode_ids,
                    season_number=season_number,
                    is_automatic=is_automatic,
                    is_upgrade=decision.is_upgrade,
                ),
            )
            if result.success:
                return Commit(candidate=candidate, result=result)
            logger.get_logger().warning(f"[PackSearch] Grab of {candidate.title} failed: {result.error}")
            if on_reject is not None:
                on_reject(candidate, result.error or "Grab failed")
        return None
