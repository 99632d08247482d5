"""Squares odds data models and schemas."""

from squareodds.models.schemas import (
    DIGIT_COUNT,
    DigitMatrix,
    GameStatus,
    SourceMode,
    OddsSource,
    GameRecord,
    MoneylineRecord,
    TeamContext,
    TeamDescriptor,
    TeamStats,
    RecentForm,
    LiveClock,
    LivePlayEvent,
    LiveSentiment,
    LiveGameSnapshot,
    LiveFeatureVector,
    CachedDigitModel,
    SquareOddsResult,
    RealtimeSquareOddsResult,
)
from squareodds.models.teams import (
    NFL_TEAMS,
    Team,
    UnsupportedTeamError,
    resolve_team,
)

__all__ = [
    "DIGIT_COUNT",
    "DigitMatrix",
    "GameStatus",
    "SourceMode",
    "OddsSource",
    "GameRecord",
    "MoneylineRecord",
    "TeamContext",
    "TeamDescriptor",
    "TeamStats",
    "RecentForm",
    "LiveClock",
    "LivePlayEvent",
    "LiveSentiment",
    "LiveGameSnapshot",
    "LiveFeatureVector",
    "CachedDigitModel",
    "SquareOddsResult",
    "RealtimeSquareOddsResult",
    "NFL_TEAMS",
    "Team",
    "UnsupportedTeamError",
    "resolve_team",
]
