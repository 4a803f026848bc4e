from __future__ import annotations

from pathlib import Path

import pytest
from pydantic import ValidationError

from packrat.config import DownloadClientConfig, IndexConfig, StrategyConfig, load_config


def _write(tmp_path: Path, text: str) -> Path:
    path = tmp_path / "config.toml"
    path.write_text(text, encoding="utf-8")
    return path


def test_load_config_reads_every_section(tmp_path):
    path = _write(
        tmp_path,
        """
[indexes.nyaa]
definition = "definitions/nyaa.toml"
api_key = "k"
seed_ratio = 1.5

[indexes.nyaa.torrent]
minimum_seeders = 5

[download_clients.qbit]
protocol = "Torrent"
initial_state = "pause"
tv_category = "sonarr"

[strategy]
complete_series_threshold = 70
episode_delay_seconds = 0.1

[scoring_profiles.hd]
format_scores = { "1080p" = 400 }
banned = ["cam"]

[library]
database = "lib.db"
""",
    )

    config = load_config(path)

    index = config.indexes["nyaa"]
    assert index.definition == (tmp_path / "definitions" / "nyaa.toml").resolve()
    assert index.torrent.minimum_seeders == 5
    assert index.seed_ratio == 1.5
    client = config.download_clients["qbit"]
    assert client.protocol == "torrent"
    assert client.add_paused is True
    assert client.tv_category == "sonarr"
    assert config.strategy.complete_series_threshold == 70
    assert config.strategy.multi_season_threshold == 50
    assert config.strategy.episode_delay_seconds == 0.5
    assert config.scoring_profiles["hd"].format_scores == {"1080p": 400}
    assert config.library.database == Path("lib.db")
    assert config.config_path == path


def test_load_config_missing_file_exits(tmp_path):
    with pytest.raises(SystemExit) as exc:
        load_config(tmp_path / "absent.toml")
    assert exc.value.code == 1


def test_load_config_invalid_client_protocol_exits(tmp_path):
    path = _write(
        tmp_path,
        """
[download_clients.weird]
protocol = "ftp"
""",
    )
    with pytest.raises(SystemExit):
        load_config(path)


def test_download_client_rejects_unknown_initial_state():
    with pytest.raises(ValidationError):
        DownloadClientConfig(protocol="usenet", initial_state="later")


def test_index_credential_lookup_normalizes_keys():
    index = IndexConfig(definition=Path("x.toml"), api_key="abc", passkey="pk")

    assert index.credential("apikey") == "abc"
    assert index.credential("API_KEY") == "abc"
    assert index.credential("passkey") == "pk"
    assert index.credential("unknown") == ""


def test_strategy_defaults():
    strategy = StrategyConfig()

    assert (strategy.complete_series_threshold, strategy.multi_season_threshold, strategy.single_season_threshold) == (
        60,
        50,
        50,
    )
    assert strategy.episode_delay_seconds >= 0.5
