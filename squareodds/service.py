"""
Square odds service.

SquareOddsService owns every cache and the shared HTTP client, so two
services never share state. LiveOddsSession keeps one board's odds fresh
while a game is played.

Usage:
    async with SquareOddsService() as service:
        base = await service.build_square_odds("SEA", "NE", rows, cols)

        session = service.create_live_session("SEA", "NE", rows, cols)
        session.add_callback(lambda result: print(result.live_clock))
        session.start()
"""

import asyncio
import time
from typing import Awaitable, Callable, Optional, Sequence

import httpx
import structlog

from config.settings import PollSettings, Settings, settings as default_settings
from squareodds.engine.matrix import validate_labels
from squareodds.engine.pregame import PregameOddsAssembler
from squareodds.engine.realtime import PriorModel, build_realtime_odds
from squareodds.feeds.base import create_http_client
from squareodds.feeds.espn_teams import EspnTeamSource
from squareodds.feeds.live_game import LiveGameFeed, get_poll_interval_ms
from squareodds.feeds.nflverse import NflverseSource
from squareodds.feeds.sportsdb import SportsDbSource
from squareodds.models.schemas import (
    LiveGameSnapshot,
    RealtimeSquareOddsResult,
    SquareOddsResult,
)
from squareodds.models.teams import resolve_team
from squareodds.utils.cache import AsyncMemoCache, ModelCache

logger = structlog.get_logger()


class SquareOddsService:
    """
    Facade over the pre-game assembler, the live feed and the realtime engine.

    Args:
        settings: Configuration; defaults to the environment-loaded settings.
        client: Shared HTTP client. Created (and closed by ``close``) when omitted.
        model_cache: Pre-game model cache. Built from ``settings.cache`` when omitted.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        client: Optional[httpx.AsyncClient] = None,
        model_cache: Optional[ModelCache] = None,
    ):
        self.settings = settings or default_settings
        sources = self.settings.sources

        self._owns_client = client is None
        self.client = client or create_http_client(sources.source_timeout_seconds)

        source_cache = AsyncMemoCache(ttl_seconds=self.settings.cache.source_ttl_seconds)
        self.nflverse = NflverseSource(
            sources.games_csv_url,
            sources.closing_lines_csv_url,
            timeout=sources.source_timeout_seconds,
            client=self.client,
            cache=source_cache,
        )
        self.espn_teams = EspnTeamSource(
            sources.espn_base_url,
            timeout=sources.source_timeout_seconds,
            client=self.client,
            cache=source_cache,
        )
        self.sportsdb = SportsDbSource(
            sources.sportsdb_base_url,
            timeout=sources.source_timeout_seconds,
            client=self.client,
            cache=source_cache,
        )
        self.live_feed = LiveGameFeed(
            sources.espn_base_url,
            timeout=sources.live_timeout_seconds,
            client=self.client,
        )

        if model_cache is None:
            cache_settings = self.settings.cache
            model_cache = ModelCache(
                ttl_seconds=cache_settings.ttl_seconds,
                cache_dir=cache_settings.cache_dir if cache_settings.persist else None,
            )
        self.model_cache = model_cache

        self.pregame = PregameOddsAssembler(
            nflverse=self.nflverse,
            espn=self.espn_teams,
            sportsdb=self.sportsdb,
            model_cache=self.model_cache,
            settings=self.settings.pregame,
            cache_key_prefix=self.settings.cache.key_prefix,
        )

        self.logger = logger.bind(component="service")

    async def __aenter__(self) -> "SquareOddsService":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def close(self) -> None:
        """Close the HTTP client if this service created it."""
        if self._owns_client:
            await self.client.aclose()

    # =========================================================================
    # Odds
    # =========================================================================

    async def build_square_odds(
        self,
        home_team: str,
        away_team: str,
        row_labels: Sequence[int],
        col_labels: Sequence[int],
    ) -> SquareOddsResult:
        """Pre-game odds. Raises UnsupportedTeamError or ValueError only."""
        return await self.pregame.build_square_odds(home_team, away_team, row_labels, col_labels)

    async def fetch_snapshot(
        self,
        home_team: str,
        away_team: str,
        game_date: Optional[str] = None,
        event_id_override: Optional[str] = None,
    ) -> Optional[LiveGameSnapshot]:
        return await self.live_feed.fetch_snapshot(home_team, away_team, game_date, event_id_override)

    def build_realtime_odds(
        self,
        base_model: PriorModel,
        snapshot: LiveGameSnapshot,
        row_labels: Sequence[int],
        col_labels: Sequence[int],
    ) -> RealtimeSquareOddsResult:
        return build_realtime_odds(base_model, snapshot, row_labels, col_labels, self.settings.realtime)

    def create_live_session(
        self,
        home_team: str,
        away_team: str,
        row_labels: Sequence[int],
        col_labels: Sequence[int],
        game_date: Optional[str] = None,
        event_id_override: Optional[str] = None,
    ) -> "LiveOddsSession":
        return LiveOddsSession(
            self,
            home_team,
            away_team,
            row_labels,
            col_labels,
            game_date=game_date,
            event_id_override=event_id_override,
            poll_settings=self.settings.poll,
        )

    def get_metrics(self) -> dict:
        """Health of every source."""
        return {
            source.name: source.get_metrics()
            for source in (self.nflverse, self.espn_teams, self.sportsdb, self.live_feed)
        }


class LiveOddsSession:
    """
    Self-rescheduling poll loop for one board.

    Each cycle: pre-game model (cached) -> live snapshot -> realtime odds ->
    callbacks, then sleep for the interval the snapshot calls for. Failures
    back off linearly up to a cap and reset after the next success.

    ``poll_once`` never overlaps itself, and a result computed for an older
    generation (before ``stop``/``restart``) is dropped instead of delivered.
    """

    def __init__(
        self,
        service: SquareOddsService,
        home_team: str,
        away_team: str,
        row_labels: Sequence[int],
        col_labels: Sequence[int],
        game_date: Optional[str] = None,
        event_id_override: Optional[str] = None,
        poll_settings: Optional[PollSettings] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        # Fail fast on bad input instead of backing off forever
        resolve_team(home_team)
        resolve_team(away_team)
        validate_labels(row_labels, col_labels)

        self.service = service
        self.home_team = home_team
        self.away_team = away_team
        self.row_labels = list(row_labels)
        self.col_labels = list(col_labels)
        self.game_date = game_date
        self.event_id_override = event_id_override
        self.poll_settings = poll_settings or PollSettings()
        self._sleep = sleep

        self.logger = logger.bind(component="live_session", home=home_team, away=away_team)

        # State
        self._running = False
        self._busy = False
        self._generation = 0
        self._failures = 0
        self._task: Optional[asyncio.Task] = None

        self.last_snapshot: Optional[LiveGameSnapshot] = None
        self.last_result: Optional[RealtimeSquareOddsResult] = None
        self.last_poll_ms: int = 0

        # Callbacks
        self._callbacks: list[Callable[[RealtimeSquareOddsResult], None]] = []

    @property
    def running(self) -> bool:
        return self._running

    @property
    def busy(self) -> bool:
        return self._busy

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def failures(self) -> int:
        return self._failures

    def add_callback(self, callback: Callable[[RealtimeSquareOddsResult], None]) -> None:
        """Register a callback for new realtime results."""
        self._callbacks.append(callback)

    def _notify_callbacks(self, result: RealtimeSquareOddsResult) -> None:
        for callback in self._callbacks:
            try:
                callback(result)
            except Exception as e:
                self.logger.error("Callback error", error=str(e))

    def set_labels(self, row_labels: Sequence[int], col_labels: Sequence[int]) -> None:
        """Use a new label permutation from the next poll on."""
        validate_labels(row_labels, col_labels)
        self.row_labels = list(row_labels)
        self.col_labels = list(col_labels)

    # =========================================================================
    # Polling
    # =========================================================================

    def backoff_delay_ms(self) -> int:
        """Delay after the current run of consecutive failures."""
        poll = self.poll_settings
        delay = poll.backoff_base_seconds + self._failures * poll.backoff_step_seconds
        return int(min(delay, poll.backoff_max_seconds) * 1000)

    async def poll_once(self) -> Optional[int]:
        """
        Run one poll cycle.

        Returns:
            Milliseconds until the next poll, or None if the cycle was skipped
            (already busy) or its result went stale.

        Raises:
            Whatever the fetch raises; the loop turns that into backoff.
        """
        if self._busy:
            self.logger.debug("Poll skipped, previous poll still running")
            return None

        self._busy = True
        generation = self._generation
        try:
            base = await self.service.build_square_odds(
                self.home_team, self.away_team, self.row_labels, self.col_labels
            )
            if generation != self._generation:
                return None

            snapshot = await self.service.fetch_snapshot(
                self.home_team, self.away_team, self.game_date, self.event_id_override
            )
            if generation != self._generation:
                return None

            self.last_snapshot = snapshot
            self.last_poll_ms = int(time.time() * 1000)
            self._failures = 0

            if snapshot is None:
                self.logger.info("Live game not found yet")
                return get_poll_interval_ms(None)

            result = self.service.build_realtime_odds(base, snapshot, self.row_labels, self.col_labels)
            self.last_result = result
            self._notify_callbacks(result)
            return get_poll_interval_ms(snapshot)
        finally:
            self._busy = False

    async def _run(self) -> None:
        while self._running:
            try:
                delay_ms = await self.poll_once()
            except asyncio.CancelledError:
                break
            except Exception as e:
                self._failures += 1
                delay_ms = self.backoff_delay_ms()
                self.logger.warning(
                    "Live poll failed",
                    error=str(e),
                    failures=self._failures,
                    retry_ms=delay_ms,
                )

            if delay_ms is None:
                delay_ms = get_poll_interval_ms(self.last_snapshot)

            try:
                await self._sleep(delay_ms / 1000)
            except asyncio.CancelledError:
                break

    def start(self) -> None:
        """Start polling in the background. Must be called from a running loop."""
        if self._running:
            return
        self.logger.info("Starting live session", generation=self._generation)
        self._running = True
        self._task = asyncio.create_task(self._run())

    async def stop(self) -> None:
        """Stop polling; any in-flight result is discarded."""
        self._running = False
        self._generation += 1

        task, self._task = self._task, None
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        self.logger.info("Stopped live session", generation=self._generation)

    async def restart(
        self,
        home_team: Optional[str] = None,
        away_team: Optional[str] = None,
        game_date: Optional[str] = None,
        event_id_override: Optional[str] = None,
    ) -> None:
        """Stop, apply a new matchup or event, and start again."""
        await self.stop()
        if home_team is not None:
            resolve_team(home_team)
            self.home_team = home_team
        if away_team is not None:
            resolve_team(away_team)
            self.away_team = away_team
        if game_date is not None:
            self.game_date = game_date
        if event_id_override is not None:
            self.event_id_override = event_id_override
        self._failures = 0
        self.start()
