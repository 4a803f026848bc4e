from __future__ import annotations

import asyncio
from pathlib import Path

import aiohttp
import pytest

from packrat.config import IndexConfig, PackratConfig
from packrat.errors import CapabilityMismatch, IndexNetworkError
from packrat.indexers import registry as registry_module
from packrat.indexers import requester as requester_module
from packrat.indexers.definition import FormAuth, IndexDefinition
from packrat.indexers.registry import IndexRegistry, IndexRuntime
from packrat.indexers.requester import HttpResponse, IndexRequester
from packrat.search.types import SearchCriteria


def _feed(*titles: str) -> bytes:
    items = "".join(
        f"<item><title>{title}</title><guid>{title}</guid><link>https://x/{title}</link></item>" for title in titles
    )
    return f"<rss><channel>{items}</channel></rss>".encode()


class _FakeRequester:
    def __init__(self, body: bytes = b"<rss/>", error: Exception | None = None, delay: float = 0.0) -> None:
        self.body = body
        self.error = error
        self.delay = delay
        self.urls: list[str] = []
        self.closed = False

    async def do(self, spec):
        self.urls.append(spec.url)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return HttpResponse(status=200, body=self.body)

    async def close(self) -> None:
        self.closed = True


class _FakeLog:
    def __init__(self) -> None:
        self.warnings: list[str] = []
        self.errors: list[str] = []

    def warning(self, message: str) -> None:
        self.warnings.append(message)

    def error(self, message: str) -> None:
        self.errors.append(message)

    def debug(self, *_args, **_kwargs) -> None:
        return None


def _definition(key: str, tv_params=("q", "season", "ep", "tvdbId")) -> IndexDefinition:
    return IndexDefinition(
        id=key,
        name=key.title(),
        links=[f"https://{key}.example/"],
        caps={
            "modes": {"basic": ["q"], "tv": list(tv_params)},
            "categories": [{"id": "5", "cat": 5030}],
        },
        search={"paths": [{"path": "api"}], "inputs": {"q": "{{ .Keywords }}"}},
    )


def _runtime(key: str, requester: _FakeRequester, priority: int = 25, **definition_kwargs) -> IndexRuntime:
    config = IndexConfig(definition=Path(f"{key}.toml"), priority=priority)
    return IndexRuntime(key, _definition(key, **definition_kwargs), config, requester=requester)


@pytest.fixture
def log(monkeypatch: pytest.MonkeyPatch) -> _FakeLog:
    fake = _FakeLog()
    monkeypatch.setattr(registry_module.logger, "get_logger", lambda: fake)
    return fake


def test_refs_sorted_by_priority_then_key(log: _FakeLog) -> None:
    registry = IndexRegistry(
        [_runtime("zeta", _FakeRequester(), priority=1), _runtime("beta", _FakeRequester()), _runtime("alpha", _FakeRequester())]
    )

    assert [ref.key for ref in registry.refs] == ["zeta", "alpha", "beta"]


def test_find_capable_indexes_skips_unsupported_identifiers(log: _FakeLog) -> None:
    registry = IndexRegistry([_runtime("ids", _FakeRequester()), _runtime("text", _FakeRequester(), tv_params=("q",))])

    capable = registry.find_capable_indexes(SearchCriteria.tv("Show", tvdb_id=121361))

    assert [ref.key for ref in capable] == ["ids"]


@pytest.mark.asyncio
async def test_direct_search_on_incapable_index_raises_before_any_request(log: _FakeLog) -> None:
    requester = _FakeRequester()
    registry = IndexRegistry([_runtime("text", requester, tv_params=("q",))])

    with pytest.raises(CapabilityMismatch) as exc_info:
        await registry.search("text", SearchCriteria.tv("Show", tvdb_id=121361))

    assert exc_info.value.outcome == "unsupported-identifiers"
    assert requester.urls == []


@pytest.mark.asyncio
async def test_search_all_merges_and_isolates_failures(log: _FakeLog) -> None:
    registry = IndexRegistry(
        [
            _runtime("good", _FakeRequester(_feed("Show.S01E01.720p", "Show.S01E02.720p"))),
            _runtime("other", _FakeRequester(_feed("Show.S01E01.1080p"))),
            _runtime("broken", _FakeRequester(error=IndexNetworkError("Broken", "HTTP 500", 500))),
            _runtime("text", _FakeRequester(_feed("Never")), tv_params=("q",)),
        ],
        max_concurrent=2,
    )

    outcome = await registry.search_all(SearchCriteria.tv("Show", tvdb_id=1, season=1))

    assert sorted(r.title for r in outcome.results) == ["Show.S01E01.1080p", "Show.S01E01.720p", "Show.S01E02.720p"]
    assert outcome.failures == {"broken": "Broken: HTTP 500"}
    assert outcome.skipped == {"text": "not capable"}
    assert log.warnings == ["[Indexes] Broken search failed: Broken: HTTP 500"]


@pytest.mark.asyncio
async def test_search_all_drops_slow_index(log: _FakeLog) -> None:
    registry = IndexRegistry(
        [_runtime("fast", _FakeRequester(_feed("Quick"))), _runtime("slow", _FakeRequester(_feed("Late"), delay=5))],
        timeout_seconds=0.05,
    )

    outcome = await registry.search_all(SearchCriteria.basic("anything"))

    assert [r.title for r in outcome.results] == ["Quick"]
    assert "slow" in outcome.failures
    assert outcome.failures["slow"].startswith("timed out")


@pytest.mark.asyncio
async def test_search_all_skips_indexes_once_cancelled(log: _FakeLog) -> None:
    cancel = asyncio.Event()
    cancel.set()
    requester = _FakeRequester(_feed("Anything"))
    registry = IndexRegistry([_runtime("one", requester)])

    outcome = await registry.search_all(SearchCriteria.basic("anything"), cancel)

    assert outcome.cancelled is True
    assert outcome.skipped == {"one": "cancelled"}
    assert requester.urls == []


@pytest.mark.asyncio
async def test_close_closes_every_requester(log: _FakeLog) -> None:
    requesters = [_FakeRequester(), _FakeRequester()]
    registry = IndexRegistry([_runtime("a", requesters[0]), _runtime("b", requesters[1])])

    await registry.close()

    assert all(r.closed for r in requesters)


def test_from_config_skips_broken_and_disabled_definitions(tmp_path: Path, log: _FakeLog) -> None:
    good = tmp_path / "good.toml"
    good.write_text(
        'id = "good"\nname = "Good"\nlinks = ["https://good.example/"]\n\n[search]\npaths = [{ path = "api" }]\n'
    )
    broken = tmp_path / "broken.toml"
    broken.write_text('id = "broken"\n')
    config = PackratConfig(
        indexes={
            "good": IndexConfig(definition=good),
            "broken": IndexConfig(definition=broken),
            "off": IndexConfig(definition=tmp_path / "missing.toml", enabled=False),
        }
    )

    registry = IndexRegistry.from_config(config)

    assert [ref.key for ref in registry.refs] == ["good"]
    assert len(log.errors) == 1
    assert log.errors[0].startswith("[Indexes] Skipping broken:")
    assert registry.requester_for("missing") is None


class _DeadLoginSession:
    closed = False

    def post(self, url, **kwargs):
        raise aiohttp.ClientConnectionError("Cannot connect to host 127.0.0.1:1")

    def request(self, method, url, **kwargs):
        raise AssertionError("search sent before login")

    async def close(self) -> None:
        return None


class _QuietRequesterLog:
    def __getattr__(self, name):
        return lambda *args, **kwargs: None


@pytest.mark.asyncio
async def test_dead_login_index_does_not_sink_the_fan_out(monkeypatch: pytest.MonkeyPatch, log: _FakeLog) -> None:
    definition = _definition("dead").model_copy(update={"login": FormAuth(method="form", path="login.php")})
    config = IndexConfig(definition=Path("dead.toml"), base_url="http://127.0.0.1:1/", username="u", password="p")
    dead = IndexRequester(definition, config)

    async def _session():
        return _DeadLoginSession()

    async def _no_wait() -> None:
        return None

    async def _no_sleep(delay: float) -> None:
        return None

    monkeypatch.setattr(dead, "_ensure_session", _session)
    monkeypatch.setattr(dead, "_enforce_interval", _no_wait)
    monkeypatch.setattr(requester_module.asyncio, "sleep", _no_sleep)
    monkeypatch.setattr(requester_module.logger, "get_logger", lambda: _QuietRequesterLog())
    registry = IndexRegistry(
        [
            _runtime("healthy", _FakeRequester(_feed("Show.S01E01.720p"))),
            IndexRuntime("dead", definition, config, requester=dead),
        ]
    )

    outcome = await registry.search_all(SearchCriteria.basic("Show"))

    assert [r.title for r in outcome.results] == ["Show.S01E01.720p"]
    assert list(outcome.failures) == ["dead"]
    assert "Cannot connect to host" in outcome.failures["dead"]


@pytest.mark.asyncio
async def test_unexpected_index_error_is_recorded_as_a_failure(log: _FakeLog) -> None:
    registry = IndexRegistry(
        [
            _runtime("good", _FakeRequester(_feed("Show.S01E01.720p"))),
            _runtime("odd", _FakeRequester(error=ValueError("bad payload"))),
        ]
    )

    outcome = await registry.search_all(SearchCriteria.basic("Show"))

    assert [r.title for r in outcome.results] == ["Show.S01E01.720p"]
    assert outcome.failures == {"odd": "ValueError: bad payload"}
    assert log.warnings == ["[Indexes] Odd search failed: ValueError: bad payload"]
