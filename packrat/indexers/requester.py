"""Authenticated aiohttp requester for one index."""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from typing import Mapping

import aiohttp

from packrat import logger
from packrat.__version__ import __version__
from packrat.config import IndexConfig
from packrat.errors import IndexNetworkError
from packrat.indexers import auth as index_auth
from packrat.indexers.definition import IndexDefinition
from packrat.indexers.request_compiler import HttpRequestSpec
from packrat.rate_limits import (
    INDEX_WAIT_LOG_THRESHOLD_SECONDS,
    enforce_index_min_interval,
)
from packrat.resilience import RETRYABLE_HTTP_STATUSES, retry_delay_seconds

DEFAULT_USER_AGENT = f"Packrat/{__version__}"


@dataclass
class HttpResponse:
    status: int
    body: bytes
    headers: Mapping[str, str] = field(default_factory=dict)
    elapsed_ms: float = 0.0

    def text(self, encoding: str = "utf-8") -> str:
        return self.body.decode(encoding, errors="replace")


class IndexRequester:
    """Sends compiled requests with the index's auth attached, paced and retried."""

    def __init__(
        self,
        definition: IndexDefinition,
        config: IndexConfig,
        max_concurrency: int = 2,
        max_retries: int = 3,
    ):
        self.definition = definition
        self.config = config
        self.name = definition.name
        self.base_url = (config.base_url or definition.base_url).rstrip("/") + "/"
        self.timeout = config.timeout
        self.max_retries = max_retries
        interval = definition.request_delay if definition.request_delay is not None else config.min_interval_seconds
        self._min_interval_seconds = max(0.0, float(interval))
        self._semaphore = asyncio.Semaphore(max_concurrency)
        self._session: aiohttp.ClientSession | None = None
        self._session_lock = asyncio.Lock()
        self._logged_in = False

    async def do(self, spec: HttpRequestSpec) -> HttpResponse:
        """Send a compiled request. Raises IndexNetworkError on transport failure or non-2xx."""
        response = await self._send(spec)
        if index_auth.check_login_needed(self.definition.login, response.status, response.text(self.definition.encoding)):
            logger.get_logger().warning(f"[{self.name}] Session expired, logging in again")
            self._logged_in = False
            response = await self._send(spec)
            if index_auth.check_login_needed(self.definition.login, response.status, response.text(self.definition.encoding)):
                raise IndexNetworkError(self.name, "Authentication failed", response.status)
        if response.status >= 400:
            raise IndexNetworkError(self.name, f"HTTP {response.status}", response.status)
        return response

    async def fetch(self, url: str) -> HttpResponse:
        """GET a download link (torrent file or NZB) through this index's session."""
        return await self.do(HttpRequestSpec(method="GET", url=url))

    async def verify(self) -> tuple[bool, str]:
        session = await self._ensure_session()
        return await index_auth.verify_auth(self.definition.login, session, self.base_url, self.config)

    async def _send(self, spec: HttpRequestSpec) -> HttpResponse:
        artifacts = index_auth.apply_auth(self.definition.login, self.config)
        headers = {**spec.headers, **artifacts.headers}
        logger.get_logger().api_request(spec.method, spec.url, dict(spec.body))
        request_start = time.time()

        async with self._semaphore:
            await self._enforce_interval()
            session = await self._ensure_session()
            for attempt in range(self.max_retries):
                try:
                    await self._ensure_logged_in(session)
                    async with session.request(
                        spec.method,
                        spec.url,
                        params=artifacts.params or None,
                        data=dict(spec.body) if spec.body else None,
                        headers=headers,
                        cookies=artifacts.cookies or None,
                    ) as response:
                        # Retry only transient server failures and explicit throttling.
                        if attempt < self.max_retries - 1 and response.status in RETRYABLE_HTTP_STATUSES:
                            delay = retry_delay_seconds(attempt=attempt, retry_after=response.headers.get("Retry-After"))
                            logger.get_logger().api_retry(self.name.upper(), attempt + 1, self.max_retries, delay)
                            await asyncio.sleep(delay)
                            continue
                        body = await response.read()
                        elapsed_ms = (time.time() - request_start) * 1000
                        result = HttpResponse(
                            status=response.status,
                            body=body,
                            headers=dict(response.headers),
                            elapsed_ms=elapsed_ms,
                        )
                        logger.get_logger().api_response(result.status, result.text(self.definition.encoding), elapsed_ms)
                        return result
                except (asyncio.TimeoutError, aiohttp.ClientConnectionError, aiohttp.ServerTimeoutError) as exc:
                    if attempt < self.max_retries - 1:
                        delay = 2 ** (attempt + 1)
                        logger.get_logger().api_retry(self.name.upper(), attempt + 1, self.max_retries, delay)
                        await asyncio.sleep(delay)
                    else:
                        logger.get_logger().api_failed(self.name.upper(), self.max_retries)
                        raise IndexNetworkError(self.name, f"{type(exc).__name__}: {exc}") from exc
                except aiohttp.ClientError as exc:
                    raise IndexNetworkError(self.name, f"{type(exc).__name__}: {exc}") from exc
        raise IndexNetworkError(self.name, "Retries exhausted")

    async def _enforce_interval(self) -> None:
        wait = await enforce_index_min_interval(
            self.base_url,
            min_interval_seconds=self._min_interval_seconds,
            request_limit=self.definition.request_limit,
        )
        log = logger.get_logger()
        log.api_wait_debug(self.name.upper(), wait)
        if wait > INDEX_WAIT_LOG_THRESHOLD_SECONDS:
            log.api_wait(self.name.upper(), wait)

    async def _ensure_logged_in(self, session: aiohttp.ClientSession) -> None:
        if self._logged_in:
            return
        await index_auth.authenticate(self.definition.login, session, self.base_url, self.config)
        self._logged_in = True

    async def _ensure_session(self) -> aiohttp.ClientSession:
        session = self._session
        if session is not None and not session.closed:
            return session

        async with self._session_lock:
            session = self._session
            if session is None or session.closed:
                timeout = aiohttp.ClientTimeout(total=self.timeout)
                self._session = aiohttp.ClientSession(
                    headers={"User-Agent": DEFAULT_USER_AGENT},
                    timeout=timeout,
                )
                self._logged_in = False
            return self._session

    async def close(self) -> None:
        """Close any open connections."""
        async with self._session_lock:
            session = self._session
            self._session = None
        if session is not None and not session.closed:
            await session.close()
