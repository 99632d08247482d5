"""
Squares odds data models and schemas.

Defines the core data structures for:
- Historical game / moneyline records and derived team contexts
- Live game snapshots, clocks and play events
- Pre-game and realtime odds computation results

Internal records are plain dataclasses. Results handed to callers (and
written to the model cache) are pydantic models so they serialize cleanly.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


DIGIT_COUNT = 10

# Indexed [home_digit][away_digit]
DigitMatrix = list[list[float]]


class GameStatus(str, Enum):
    """Normalized live game status."""
    PREGAME = "pregame"
    IN_PROGRESS = "in_progress"
    HALFTIME = "halftime"
    FINAL = "final"
    POSTPONED = "postponed"
    UNKNOWN = "unknown"

    @property
    def is_finished(self) -> bool:
        return self in (GameStatus.FINAL, GameStatus.POSTPONED)


class SourceMode(str, Enum):
    """How much independent data backed a model."""
    FULL = "full"
    BASELINE = "baseline"


class OddsSource(str, Enum):
    """Data sources that can contribute to an odds result."""
    NFLVERSE_GAMES = "nflverse_games"
    NFLVERSE_CLOSING_LINES = "nflverse_closing_lines"
    ESPN_TEAM_STATS = "espn_team_stats"
    SPORTSDB_RECENT_FORM = "thesportsdb_recent_form"
    FALLBACK_MODEL = "fallback_model"
    ESPN_LIVE_SCOREBOARD = "espn_live_scoreboard"
    ESPN_LIVE_SUMMARY = "espn_live_summary"
    LIVE_COMMENTARY_SENTIMENT = "live_commentary_sentiment"


# =============================================================================
# Historical / Team Data
# =============================================================================

@dataclass
class GameRecord:
    """One completed game from the historical games dataset."""
    season: int
    gameday: str
    away_team: str
    away_score: int
    home_team: str
    home_score: int
    total_line: Optional[float] = None
    spread_line: Optional[float] = None


@dataclass
class MoneylineRecord:
    """Closing moneyline for one side of a game."""
    season: int
    side: str  # team code
    implied_probability: float


@dataclass
class TeamContext:
    """Recency-weighted scoring profile of a team from recent games."""
    offense_digit_dist: list[float]
    defense_digit_dist: list[float]
    avg_points_for: float
    avg_points_allowed: float
    sample_size: int


@dataclass
class TeamDescriptor:
    """Team identity as reported by the team stats provider."""
    id: str
    abbreviation: str
    display_name: str
    short_display_name: str = ""
    nickname: str = ""


@dataclass
class TeamStats:
    """Season statistics from the team stats provider."""
    points_per_game: Optional[float] = None
    third_down_pct: Optional[float] = None
    red_zone_pct: Optional[float] = None
    turnover_diff: Optional[float] = None


@dataclass
class RecentForm:
    """Last-N results from the recent-form provider."""
    avg_scored: float
    avg_allowed: float
    offense_digit_dist: list[float]
    defense_digit_dist: list[float]
    sample_size: int


# =============================================================================
# Live Game Data
# =============================================================================

@dataclass(frozen=True)
class LiveClock:
    """
    Game clock.

    ``seconds_remaining_in_period`` and ``seconds_remaining_game`` are None
    when the provider clock could not be parsed. None means "unknown", never
    zero.
    """
    period: int
    display_clock: str
    seconds_remaining_in_period: Optional[int]
    seconds_remaining_game: Optional[int]


@dataclass(frozen=True)
class LivePlayEvent:
    """A single normalized play."""
    id: str
    text: str
    team_code: Optional[str]  # None = unattributed / neutral
    period: Optional[int]
    clock: Optional[str]
    is_scoring_play: bool = False
    is_penalty: bool = False
    is_turnover: bool = False
    is_explosive_play: bool = False
    sentiment_score: float = 0.0


@dataclass(frozen=True)
class LiveSentiment:
    """Aggregate commentary sentiment (home/away in [-1,1], neutral in [0,1])."""
    home: float = 0.0
    away: float = 0.0
    neutral: float = 1.0


@dataclass(frozen=True)
class LiveGameSnapshot:
    """Immutable view of a live game at fetch time."""
    event_id: str
    fetched_at: str
    status: GameStatus
    status_detail: str
    home_team_code: str
    away_team_code: str
    home_team_name: str
    away_team_name: str
    home_score: int
    away_score: int
    clock: LiveClock
    plays: tuple[LivePlayEvent, ...] = field(default_factory=tuple)
    sentiment: LiveSentiment = field(default_factory=LiveSentiment)

    def get_display_name(self) -> str:
        """Get human-readable game name."""
        return f"{self.away_team_name} @ {self.home_team_name}"


# =============================================================================
# Results
# =============================================================================

class LiveFeatureVector(BaseModel):
    """Features derived from a live snapshot for the realtime engine."""
    remaining_game_seconds: int
    elapsed_game_seconds: int
    clock_known: bool = True

    home_momentum: float = 0.0
    away_momentum: float = 0.0
    home_penalty_pressure: float = 0.0
    away_penalty_pressure: float = 0.0
    home_turnover_pressure: float = 0.0
    away_turnover_pressure: float = 0.0
    home_recent_scoring_rate: float = 0.0
    away_recent_scoring_rate: float = 0.0
    play_pace_per_minute: float = 0.0


class CachedDigitModel(BaseModel):
    """Label-independent pre-game model, the unit stored in the model cache."""
    digit_probabilities: DigitMatrix
    generated_at: str
    source_mode: SourceMode
    sources_used: list[OddsSource]
    warnings: list[str] = Field(default_factory=list)
    expected_home_points: float
    expected_away_points: float


class SquareOddsResult(BaseModel):
    """Pre-game odds for a board, ready to render."""
    board_percentages: list[list[float]]
    digit_probabilities: DigitMatrix
    generated_at: str
    source_mode: SourceMode
    sources_used: list[OddsSource]
    warnings: list[str] = Field(default_factory=list)
    expected_home_points: float
    expected_away_points: float

    def to_log(self) -> dict:
        """Convert to loggable dict."""
        return {
            "source_mode": self.source_mode.value,
            "sources": [s.value for s in self.sources_used],
            "warnings": len(self.warnings),
            "expected_home": round(self.expected_home_points, 2),
            "expected_away": round(self.expected_away_points, 2),
        }


class RealtimeSquareOddsResult(SquareOddsResult):
    """Odds re-estimated from a live snapshot."""
    engine_mode: str = "realtime"
    live_event_id: str
    live_status: GameStatus
    live_status_detail: str
    live_clock: str
    live_snapshot_at: str
    feature_vector: LiveFeatureVector

    def to_log(self) -> dict:
        """Convert to loggable dict."""
        entry = super().to_log()
        entry.update({
            "event_id": self.live_event_id,
            "status": self.live_status.value,
            "clock": self.live_clock,
        })
        return entry
