"""
config.py - Configuration model for Packrat
"""

from pathlib import Path
from typing import Dict, List, Optional
from pydantic import BaseModel, Field, field_validator
from rich.console import Console
import sys

try:
    import tomllib
except ModuleNotFoundError:
    import tomli as tomllib

console = Console()


class TorrentSettingsConfig(BaseModel):
    minimum_seeders: int = Field(
        default=1,
        description="Minimum seeders required for a torrent release to be considered"
    )
    reject_dead_torrents: bool = True
    maximum_size: Optional[int] = Field(default=None, description="Maximum size in bytes")


class UsenetSettingsConfig(BaseModel):
    retention_days: Optional[int] = Field(default=None, description="Reject posts older than this many days")
    maximum_size: Optional[int] = Field(default=None, description="Maximum size in bytes")


class StreamingSettingsConfig(BaseModel):
    auth_token: str = ""
    minimum_quality: str = ""
    blocked_providers: List[str] = Field(default_factory=list)


class IndexConfig(BaseModel):
    """One configured index: its definition file plus per-install credentials and limits."""

    definition: Path
    base_url: str = ""
    enabled: bool = True
    priority: int = 25
    api_key: str = ""
    cookie: str = ""
    username: str = ""
    password: str = ""
    passkey: str = ""
    timeout: int = 30
    min_interval_seconds: float = 2.0
    seed_ratio: Optional[float] = None
    seed_time: Optional[int] = Field(default=None, description="Seed time in minutes")
    pack_seed_time: Optional[int] = Field(default=None, description="Seed time for season packs in minutes")
    torrent: TorrentSettingsConfig = Field(default_factory=TorrentSettingsConfig)
    usenet: UsenetSettingsConfig = Field(default_factory=UsenetSettingsConfig)
    streaming: StreamingSettingsConfig = Field(default_factory=StreamingSettingsConfig)

    def credential(self, key: str) -> str:
        """Return a credential value by its template/config key (``apikey``, ``passkey`` ...)."""
        normalized = key.strip().lower().replace("_", "")
        values = {
            "apikey": self.api_key,
            "cookie": self.cookie,
            "username": self.username,
            "password": self.password,
            "passkey": self.passkey,
        }
        return values.get(normalized, "")


class DownloadClientConfig(BaseModel):
    protocol: str
    movie_category: str = "movies"
    tv_category: str = "tv"
    initial_state: str = "start"
    priority: int = 1
    enabled: bool = True
    seed_ratio_limit: Optional[float] = None
    seed_time_limit: Optional[int] = None

    @field_validator("protocol")
    @classmethod
    def _check_protocol(cls, value: str) -> str:
        normalized = value.strip().lower()
        if normalized not in {"torrent", "usenet"}:
            raise ValueError(f"Download client protocol must be torrent or usenet, got '{value}'")
        return normalized

    @field_validator("initial_state")
    @classmethod
    def _check_initial_state(cls, value: str) -> str:
        normalized = value.strip().lower()
        if normalized not in {"start", "pause"}:
            raise ValueError(f"initial_state must be start or pause, got '{value}'")
        return normalized

    @property
    def add_paused(self) -> bool:
        return self.initial_state == "pause"


class StrategyConfig(BaseModel):
    """Thresholds and pacing for the pack-aware search."""

    complete_series_threshold: float = Field(
        default=60,
        description="Percent of the series that must be missing before a complete-series search"
    )
    multi_season_threshold: float = Field(
        default=50,
        description="Percent missing across a run of consecutive seasons for a multi-season search"
    )
    single_season_threshold: float = Field(
        default=50,
        description="Percent of a season still missing for a single-season pack search"
    )
    episode_delay_seconds: float = 0.5
    max_concurrent_indexes: int = 4
    index_timeout_seconds: float = 30.0
    progress_queue_size: int = 100
    min_score: int = 0

    @field_validator("episode_delay_seconds")
    @classmethod
    def _floor_delay(cls, value: float) -> float:
        return max(0.5, float(value))


class PackPreferenceConfig(BaseModel):
    enabled: bool = True
    season_pack_bonus: int = 100
    multi_season_bonus_per_season: int = 25
    complete_series_bonus: int = 200


class SizeLimitsConfig(BaseModel):
    min_mb: Optional[float] = None
    max_mb: Optional[float] = None


class ScoringProfileConfig(BaseModel):
    format_scores: Dict[str, int] = Field(default_factory=dict)
    banned: List[str] = Field(default_factory=list)
    banned_groups: List[str] = Field(default_factory=list)
    movie_size: SizeLimitsConfig = Field(default_factory=SizeLimitsConfig)
    episode_size: SizeLimitsConfig = Field(default_factory=SizeLimitsConfig)
    allowed_protocols: List[str] = Field(default_factory=lambda: ["torrent", "usenet"])
    upgrades_allowed: bool = True
    min_quality_score: int = Field(default=0, description="Base quality score a release must reach")
    pack_preference: PackPreferenceConfig = Field(default_factory=PackPreferenceConfig)


class LibraryConfig(BaseModel):
    database: Path = Path("packrat.db")
    streaming_base_url: str = "http://localhost:3000"


class PackratConfig(BaseModel):
    indexes: Dict[str, IndexConfig] = Field(default_factory=dict)
    download_clients: Dict[str, DownloadClientConfig] = Field(default_factory=dict)
    strategy: StrategyConfig = Field(default_factory=StrategyConfig)
    scoring_profiles: Dict[str, ScoringProfileConfig] = Field(default_factory=dict)
    library: LibraryConfig = Field(default_factory=LibraryConfig)
    config_path: Optional[Path] = None


def _resolve_definition_paths(indexes: Dict[str, IndexConfig], config_path: Path) -> None:
    for index in indexes.values():
        if not index.definition.is_absolute():
            index.definition = (config_path.parent / index.definition).resolve()


def load_config(config_path: Path) -> PackratConfig:
    """Load configuration from TOML file"""

    if not config_path.exists():
        console.print(f"[red][ERROR][/red] Configuration file not found: {config_path}")
        console.print("Please create config.toml with your indexes and download clients")
        sys.exit(1)

    try:
        with open(config_path, "rb") as f:
            config_data = tomllib.load(f)

        indexes = {
            key: IndexConfig(**index_data)
            for key, index_data in config_data.get("indexes", {}).items()
        }
        _resolve_definition_paths(indexes, config_path)

        config = PackratConfig(
            indexes=indexes,
            download_clients={
                key: DownloadClientConfig(**client_data)
                for key, client_data in config_data.get("download_clients", {}).items()
            },
            strategy=StrategyConfig(**config_data.get("strategy", {})),
            scoring_profiles={
                name: ScoringProfileConfig(**profile_data)
                for name, profile_data in config_data.get("scoring_profiles", {}).items()
            },
            library=LibraryConfig(**config_data.get("library", {})),
            config_path=config_path,
        )

        return config

    except Exception as e:
        console.print(f"[red][ERROR][/red] Error loading configuration: {e}")
        sys.exit(1)
