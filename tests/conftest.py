"""Shared fixtures: settings, snapshots and a scripted HTTP transport."""

import json
from typing import Callable, Optional

import httpx
import pytest

from config.settings import CacheSettings, Settings
from squareodds.models.schemas import (
    GameStatus,
    LiveClock,
    LiveGameSnapshot,
    LivePlayEvent,
    LiveSentiment,
)


@pytest.fixture
def test_settings(tmp_path):
    """Settings with the on-disk model cache switched off."""
    return Settings(cache=CacheSettings(cache_dir=tmp_path / "cache", persist=False))


@pytest.fixture
def make_play():
    """Factory for play events."""
    def _make(
        play_id: str,
        text: str = "Run for 3 yards",
        team_code: Optional[str] = None,
        **flags,
    ) -> LivePlayEvent:
        return LivePlayEvent(
            id=play_id,
            text=text,
            team_code=team_code,
            period=flags.pop("period", 2),
            clock=flags.pop("clock", "7:00"),
            **flags,
        )
    return _make


@pytest.fixture
def make_snapshot():
    """Factory for live snapshots (SEA home, NE away)."""
    def _make(
        status: GameStatus = GameStatus.IN_PROGRESS,
        home_score: int = 14,
        away_score: int = 10,
        period: int = 3,
        display_clock: str = "7:30",
        seconds_remaining_game: Optional[int] = 1350,
        plays: tuple = (),
        sentiment: Optional[LiveSentiment] = None,
        event_id: str = "401547000",
    ) -> LiveGameSnapshot:
        return LiveGameSnapshot(
            event_id=event_id,
            fetched_at="2026-01-10T21:30:00+00:00",
            status=status,
            status_detail="Test detail",
            home_team_code="SEA",
            away_team_code="NE",
            home_team_name="Seattle Seahawks",
            away_team_name="New England Patriots",
            home_score=home_score,
            away_score=away_score,
            clock=LiveClock(
                period=period,
                display_clock=display_clock,
                seconds_remaining_in_period=None,
                seconds_remaining_game=seconds_remaining_game,
            ),
            plays=tuple(plays),
            sentiment=sentiment or LiveSentiment(),
        )
    return _make


class ScriptedTransport:
    """
    httpx MockTransport driven by a path -> response table.

    Values are dicts/lists (JSON), str (text), int (status code with empty
    body) or callables taking the request. Unrouted paths return 404.
    """

    def __init__(self, routes: dict):
        self.routes = routes
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        route = self.routes.get(request.url.path)
        if callable(route):
            route = route(request)
        if route is None:
            return httpx.Response(404)
        if isinstance(route, int):
            return httpx.Response(route)
        if isinstance(route, str):
            return httpx.Response(200, text=route)
        return httpx.Response(200, content=json.dumps(route).encode(), headers={"content-type": "application/json"})

    def count(self, path_suffix: str) -> int:
        return sum(1 for request in self.requests if request.url.path.endswith(path_suffix))

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self))


@pytest.fixture
def scripted_transport() -> Callable[[dict], ScriptedTransport]:
    return ScriptedTransport
