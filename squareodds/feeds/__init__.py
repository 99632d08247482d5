"""External data feeds."""

from squareodds.feeds.base import HttpSource, MalformedResponseError, SourceUnavailableError
from squareodds.feeds.espn_teams import EspnTeamSource
from squareodds.feeds.live_game import LiveFeedError, LiveGameFeed
from squareodds.feeds.nflverse import NflverseSource
from squareodds.feeds.sportsdb import SportsDbSource

__all__ = [
    "HttpSource",
    "MalformedResponseError",
    "SourceUnavailableError",
    "EspnTeamSource",
    "LiveFeedError",
    "LiveGameFeed",
    "NflverseSource",
    "SportsDbSource",
]
