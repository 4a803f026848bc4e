"""Bounded, non-blocking progress channel between a strategy run and its caller."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, AsyncIterator, Dict, Optional


class StrategyPhase(str, Enum):
    INITIALIZING = "initializing"
    COMPLETE_SERIES = "complete_series"
    MULTI_SEASON = "multi_season"
    SINGLE_SEASON = "single_season"
    INDIVIDUAL = "individual"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class ProgressEvent:
    phase: StrategyPhase
    message: str
    percent: int
    details: Dict[str, Any] = field(default_factory=dict)


_CLOSED = object()


class ProgressChannel:
    """
    The strategy publishes without ever waiting; when the caller falls
    behind and the queue is full the event is dropped and counted.
    Iterate with ``async for`` until the run closes the channel.
    """

    def __init__(self, maxsize: int = 100):
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=max(1, maxsize))
        self._closed = False
        self.dropped = 0

    @property
    def closed(self) -> bool:
        return self._closed

    def publish(self, event: ProgressEvent) -> bool:
        if self._closed:
            return False
        try:
            self._queue.put_nowait(event)
        except asyncio.QueueFull:
            self.dropped += 1
            return False
        return True

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            self._queue.put_nowait(_CLOSED)
        except asyncio.QueueFull:
            # Make room for the sentinel; the oldest event is the least useful one.
            self._queue.get_nowait()
            self.dropped += 1
            self._queue.put_nowait(_CLOSED)

    def drain(self) -> list[ProgressEvent]:
        """Everything buffered right now, without waiting."""
        events = []
        while True:
            try:
                item = self._queue.get_nowait()
            except asyncio.QueueEmpty:
                return events
            if item is _CLOSED:
                # Keep the sentinel for any iterator still waiting.
                self._queue.put_nowait(_CLOSED)
                return events
            events.append(item)

    async def get(self) -> Optional[ProgressEvent]:
        """Next event, or None once the channel is closed and empty."""
        item = await self._queue.get()
        if item is _CLOSED:
            self._queue.put_nowait(_CLOSED)
            return None
        return item

    def __aiter__(self) -> AsyncIterator[ProgressEvent]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[ProgressEvent]:
        while True:
            event = await self.get()
            if event is None:
                return
            yield event
