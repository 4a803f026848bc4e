from __future__ import annotations

import json
from pathlib import Path

import pytest

from packrat.config import DownloadClientConfig, IndexConfig
from packrat.errors import DuplicateDownloadError, TargetNotFoundError, TransactionFailure
from packrat.grab import service as service_mod
from packrat.grab.resolver import DownloadResolver
from packrat.grab.service import GrabService
from packrat.grab.stream import StrmWriter
from packrat.grab.types import DownloadInfo, GrabTarget, QueueEntry
from packrat.indexers.requester import HttpResponse
from packrat.library.store import SqliteLibraryStore
from packrat.quality.parser import parse_release
from packrat.quality.types import ScoreBreakdown, ScoredCandidate
from packrat.search.types import Protocol, RawResult


class _FakeLog:
    def __init__(self) -> None:
        self.infos: list[str] = []
        self.warnings: list[str] = []

    def info(self, message: str) -> None:
        self.infos.append(message)

    def warning(self, message: str) -> None:
        self.warnings.append(message)

    def debug(self, message: str) -> None:
        pass

    def api_retry(self, *args) -> None:
        pass


class _FakeClient:
    def __init__(self, result="abc123") -> None:
        self.result = result
        self.requests = []

    async def add_download(self, request):
        self.requests.append(request)
        if isinstance(self.result, Exception):
            raise self.result
        return self.result


class _FakeRequester:
    def __init__(self, body: bytes) -> None:
        self.body = body

    async def fetch(self, url: str) -> HttpResponse:
        return HttpResponse(status=200, body=self.body)


class _FailingStore(SqliteLibraryStore):
    async def import_episode_files(self, *args, **kwargs):
        raise TransactionFailure("Season import failed")


@pytest.fixture
def log(monkeypatch) -> _FakeLog:
    fake = _FakeLog()
    monkeypatch.setattr(service_mod.logger, "get_logger", lambda: fake)
    return fake


@pytest.fixture
def library(tmp_path):
    root = tmp_path / "tv"
    root.mkdir()
    store = SqliteLibraryStore(tmp_path / "library.db")
    series_id = store.add_series("The Show", str(root), path="The Show (2020)", tmdb_id=1399, year=2020)
    episode_ids = [store.add_episode(series_id, 1, n) for n in (1, 2)]
    return store, series_id, episode_ids


def _candidate(title: str = "The.Show.S01.1080p.WEB-DL-GRP", protocol: Protocol = Protocol.TORRENT, **raw) -> ScoredCandidate:
    raw.setdefault("info_hash", "ABC123")
    result = RawResult(title=title, index_id="demo", index_name="Demo", protocol=protocol, **raw)
    return ScoredCandidate(raw=result, parsed=parse_release(title), quality_score=450, breakdown=ScoreBreakdown(base=450))


def _service(store, clients=None, requester=None, **kwargs) -> GrabService:
    return GrabService(
        store,
        store,
        DownloadResolver(lambda index_id: requester),
        download_clients=clients or {},
        strm_writer=StrmWriter("http://packrat.local"),
        **kwargs,
    )


def _torrent_client(client, **config) -> dict:
    return {"qbit": (DownloadClientConfig(protocol="torrent", **config), client)}


@pytest.mark.asyncio
async def test_duplicate_in_client_adopts_existing_queue_item(library, log) -> None:
    store, series_id, episode_ids = library
    existing = await store.add_or_get(QueueEntry("qbit", "abc123", "The.Show.S01.1080p.WEB-DL-GRP", "torrent"))
    client = _FakeClient(DuplicateDownloadError(DownloadInfo(hash="abc123", status="downloading", progress=0.4)))

    result = await _service(store, _torrent_client(client)).grab(
        _candidate(), GrabTarget.episodes(series_id, episode_ids, season_number=1)
    )

    assert result.success is True
    assert result.queue_item_id == existing.id
    assert len(store.queue_items()) == 1
    assert any("already in qbit (downloading), adopting abc123" in line for line in log.infos)


@pytest.mark.asyncio
async def test_grabbing_a_reported_duplicate_twice_links_one_queue_item(library, log) -> None:
    store, series_id, episode_ids = library
    client = _FakeClient(DuplicateDownloadError(DownloadInfo(hash="abc123", status="queued")))
    service = _service(store, _torrent_client(client))
    target = GrabTarget.episodes(series_id, episode_ids, season_number=1)

    first = await service.grab(_candidate(), target)
    second = await service.grab(_candidate(), target)

    assert first.queue_item_id == second.queue_item_id
    assert first.episodes_covered == tuple(episode_ids)
    assert len(store.queue_items()) == 1


@pytest.mark.asyncio
async def test_duplicate_without_any_hash_is_not_queued(library, log) -> None:
    store, series_id, episode_ids = library
    client = _FakeClient(DuplicateDownloadError(DownloadInfo(hash="", status="queued")))
    candidate = _candidate(download_url="https://demo.example/dl/1.torrent", info_hash="")

    result = await _service(store, _torrent_client(client)).grab(candidate, GrabTarget.episodes(series_id, episode_ids))

    assert result.success is False
    assert result.error == "qbit reported a duplicate without a hash to adopt"
    assert store.queue_items() == []


@pytest.mark.asyncio
async def test_no_enabled_client_is_a_failed_result(library, log) -> None:
    store, series_id, episode_ids = library
    clients = _torrent_client(_FakeClient(), enabled=False)

    result = await _service(store, clients).grab(_candidate(), GrabTarget.episodes(series_id, episode_ids))

    assert result.success is False
    assert result.error == "No enabled torrent download client configured"


@pytest.mark.asyncio
async def test_download_request_carries_index_seed_limits(library, log) -> None:
    store, series_id, episode_ids = library
    client = _FakeClient()
    index_configs = {"demo": IndexConfig(definition=Path("demo.yml"), seed_ratio=1.5, seed_time=60, pack_seed_time=600)}
    service = _service(
        store, _torrent_client(client, seed_ratio_limit=2.0, initial_state="pause"), index_configs=index_configs
    )

    await service.grab(_candidate(), GrabTarget.episodes(series_id, episode_ids))

    request = client.requests[0]
    assert (request.seed_ratio_limit, request.seed_time_limit) == (1.5, 600)
    assert request.category == "tv"
    assert request.paused is True
    assert request.magnet_uri.startswith("magnet:?xt=urn:btih:abc123")


@pytest.mark.asyncio
async def test_invalid_nzb_fails_the_grab(library, log) -> None:
    store, series_id, episode_ids = library
    clients = {"sab": (DownloadClientConfig(protocol="usenet"), _FakeClient())}
    requester = _FakeRequester(b'<error code="100" description="Bad key"/>')
    candidate = _candidate(protocol=Protocol.USENET, download_url="https://demo.example/getnzb/1", info_hash="")

    result = await _service(store, clients, requester).grab(candidate, GrabTarget.episodes(series_id, episode_ids))

    assert result.success is False
    assert result.error == "Indexer error 100: Bad key"
    assert clients["sab"][1].requests == []


@pytest.mark.asyncio
async def test_stream_season_pack_imports_placeholders(library, log, tmp_path) -> None:
    store, series_id, episode_ids = library
    candidate = _candidate("The Show S01 1080p", Protocol.STREAMING, download_url="stream://tv/1399/1", info_hash="")

    result = await _service(store).grab(candidate, GrabTarget.episodes(series_id, episode_ids, season_number=1))

    assert result.success is True
    assert result.episodes_covered == tuple(episode_ids)
    season_dir = tmp_path / "tv" / "The Show (2020)" / "Season 01"
    assert sorted(p.name for p in season_dir.iterdir()) == ["The Show - S01E01.strm", "The Show - S01E02.strm"]
    assert (season_dir / "The Show - S01E01.strm").read_text() == (
        "http://packrat.local/api/streaming/resolve/tv/1399/1/1\n"
    )
    assert all(ep.has_file for ep in await store.get_episodes(episode_ids))
    (history,) = store.history()
    assert result.queue_item_id is None
    assert result.history_ids == (history["id"],)
    assert len(result.media_file_ids) == 2
    assert sorted(json.loads(history["file_ids"])) == sorted(result.media_file_ids)


@pytest.mark.asyncio
async def test_failed_stream_import_leaves_placeholders(tmp_path, log) -> None:
    root = tmp_path / "tv"
    root.mkdir()
    store = _FailingStore(tmp_path / "library.db")
    series_id = store.add_series("The Show", str(root), path="The Show (2020)")
    episode_id = store.add_episode(series_id, 1, 1)
    candidate = _candidate("The Show S01E01", Protocol.STREAMING, download_url="stream://tv/1399/1/1", info_hash="")

    result = await _service(store).grab(candidate, GrabTarget.episodes(series_id, [episode_id]))

    assert result.success is False
    assert result.episodes_covered == ()
    assert result.error == "Season import failed"
    assert (root / "The Show (2020)" / "Season 01" / "The Show - S01E01.strm").exists()
    assert len(log.warnings) == 1


@pytest.mark.asyncio
async def test_missing_targets_raise(library, log, tmp_path) -> None:
    store, series_id, _ = library
    service = _service(store, _torrent_client(_FakeClient()))
    orphan_series = store.add_series("Gone", str(tmp_path / "missing-root"))

    with pytest.raises(TargetNotFoundError):
        await service.grab(_candidate(), GrabTarget.movie(404))
    with pytest.raises(TargetNotFoundError):
        await service.grab(_candidate(), GrabTarget.episodes(series_id, [9999]))
    with pytest.raises(TargetNotFoundError, match="Root folder does not exist"):
        await service.grab(_candidate(), GrabTarget.episodes(orphan_series, []))
