"""
Configuration settings for the Squares Odds Engine.
Uses pydantic-settings for validation and environment variable loading.
"""

from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class SourceSettings(BaseSettings):
    """Endpoints and timeouts for every external data provider."""

    # Historical datasets (nflverse)
    games_csv_url: str = "https://raw.githubusercontent.com/nflverse/nfldata/master/data/games.csv"
    closing_lines_csv_url: str = (
        "https://raw.githubusercontent.com/nflverse/nfldata/master/data/closing_lines.csv"
    )

    # ESPN site API
    espn_base_url: str = "https://site.api.espn.com/apis/site/v2/sports/football/nfl"

    # TheSportsDB (free tier key "123")
    sportsdb_base_url: str = "https://www.thesportsdb.com/api/v1/json/123"

    # Timeouts (seconds)
    source_timeout_seconds: float = 12.0
    live_timeout_seconds: float = 10.0


class CacheSettings(BaseSettings):
    """Pre-game model cache."""

    key_prefix: str = "sb-lx-smart-odds-model-v1"
    ttl_seconds: float = 30 * 60  # 30 minutes
    cache_dir: Path = Field(
        default=Path(".cache/squareodds"),
        description="Directory for the persistent model cache",
    )
    persist: bool = True

    # In-flight de-duplication for dataset loaders / per-team lookups
    source_ttl_seconds: float = 6 * 60 * 60  # 6 hours


class PregameModelSettings(BaseSettings):
    """
    Pre-game model weights.

    Component weights are rebalanced toward the league baseline when a
    secondary source is missing (see engine.pregame.rebalance_blend_weights).
    """

    # Matrix blend
    baseline_weight: float = 0.45
    team_weight: float = 0.35
    simulation_weight: float = 0.20

    # Fallback expectation (typical competitive final)
    fallback_home_points: float = 23.0
    fallback_away_points: float = 21.0

    # Market edge: points shifted per 100% implied probability edge
    market_points_per_edge: float = 4.5

    min_expected_points: float = 10.0
    max_expected_points: float = 45.0


class RealtimeSettings(BaseSettings):
    """Realtime Monte Carlo engine."""

    feature_window_plays: int = 80
    play_recency_decay: float = 13.0  # exp(-age/13) per play

    # Simulation runs by remaining time
    runs_final_minutes: int = 12_000   # <= 8 min remaining
    runs_late: int = 10_000            # <= 20 min remaining
    runs_default: int = 8_000

    one_possession_probability: float = 0.28


class PollSettings(BaseSettings):
    """Live poll loop backoff."""

    backoff_base_seconds: float = 5.0
    backoff_step_seconds: float = 5.0
    backoff_max_seconds: float = 60.0


class Settings(BaseSettings):
    """Main application settings."""

    model_config = SettingsConfigDict(
        env_prefix="SQUAREODDS_",
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        extra="ignore"
    )

    # Debug settings
    debug: bool = False
    log_level: str = "INFO"

    # Sub-settings
    sources: SourceSettings = Field(default_factory=SourceSettings)
    cache: CacheSettings = Field(default_factory=CacheSettings)
    pregame: PregameModelSettings = Field(default_factory=PregameModelSettings)
    realtime: RealtimeSettings = Field(default_factory=RealtimeSettings)
    poll: PollSettings = Field(default_factory=PollSettings)


# Global settings instance
settings = Settings()
