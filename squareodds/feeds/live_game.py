"""
ESPN live game feed.

Endpoints:
- GET {base}/scoreboard[?dates=YYYYMMDD]  -> events with competitors, status, clock
- GET {base}/summary?event={id}           -> header, drives, plays, scoring plays

The scoreboard locates the event; the summary is preferred for score and
clock (it updates faster) and is the only source of play-by-play. Each
fetch produces an immutable LiveGameSnapshot.
"""

import math
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Optional

import httpx

from squareodds.engine.matrix import clamp
from squareodds.engine.sentiment import (
    SentimentEntry,
    TeamSentimentContext,
    analyze_aggregate_sentiment,
    score_text,
)
from squareodds.feeds.base import HttpSource, SourceUnavailableError
from squareodds.models.schemas import (
    GameStatus,
    LiveClock,
    LiveGameSnapshot,
    LivePlayEvent,
    LiveSentiment,
)
from squareodds.models.teams import canonical_team_code, normalize_text, resolve_team


MAX_PLAY_EVENTS = 160
PERIOD_SECONDS = 15 * 60
REGULATION_PERIODS = 4

_CLOCK_PATTERN = re.compile(r"^(\d{1,2}):(\d{2})$")
_DATE_PATTERN = re.compile(r"^(\d{4})-(\d{2})-(\d{2})$")
_SCORING_PATTERN = re.compile(r"touchdown|field goal|safety|extra point|two point|2-point|pat is good")
_PENALTY_PATTERN = re.compile(r"penalty|foul|encroachment|offside|holding|pass interference")
_TURNOVER_PATTERN = re.compile(r"intercepted|interception|fumble|turnover|picked off")
_YARDAGE_PATTERN = re.compile(r"for\s(-?\d+)\syard")

EXPLOSIVE_PLAY_YARDS = 20


class LiveFeedError(SourceUnavailableError):
    """The live scoreboard could not be reached at all."""


@dataclass
class SnapshotCore:
    """Score, status and clock parsed from one competition node."""
    event_id: str
    status: GameStatus
    status_detail: str
    home_score: int
    away_score: int
    home_team_name: str
    away_team_name: str
    clock: LiveClock


# =============================================================================
# Payload helpers
# =============================================================================

def _as_dict(value: Any) -> Optional[dict]:
    return value if isinstance(value, dict) else None


def _as_list(value: Any) -> list:
    return value if isinstance(value, list) else []


def _dicts(value: Any) -> list[dict]:
    return [item for item in _as_list(value) if isinstance(item, dict)]


def _get_string(value: Any) -> Optional[str]:
    if isinstance(value, str) and value.strip():
        return value.strip()
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        # ESPN sends some ids as numbers
        return str(value)
    return None


def _get_number(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value) if math.isfinite(value) else None
    if isinstance(value, str) and value.strip():
        try:
            parsed = float(value)
        except ValueError:
            return None
        return parsed if math.isfinite(parsed) else None
    return None


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


# =============================================================================
# Status and clock
# =============================================================================

def parse_clock_to_seconds(clock: Optional[str]) -> Optional[int]:
    """'m:ss' / 'mm:ss' -> seconds clamped to one period; anything else -> None."""
    if not clock:
        return None
    match = _CLOCK_PATTERN.match(clock.strip())
    if not match:
        return None
    seconds = int(match.group(1)) * 60 + int(match.group(2))
    return int(clamp(seconds, 0, PERIOD_SECONDS))


def map_status(state: Optional[str], detail: str) -> GameStatus:
    lower_detail = detail.lower()
    if state == "pre":
        return GameStatus.PREGAME
    if state == "in":
        if "halftime" in lower_detail:
            return GameStatus.HALFTIME
        return GameStatus.IN_PROGRESS
    if state == "post":
        if "postponed" in lower_detail or "canceled" in lower_detail:
            return GameStatus.POSTPONED
        return GameStatus.FINAL
    if "halftime" in lower_detail:
        return GameStatus.HALFTIME
    if "final" in lower_detail:
        return GameStatus.FINAL
    return GameStatus.UNKNOWN


def calculate_remaining_game_seconds(
    status: GameStatus,
    period: int,
    seconds_in_period: Optional[int],
) -> Optional[int]:
    """
    Seconds left in the game, or None when the clock is unknown.

    Overtime counts only the current period.
    """
    if status.is_finished:
        return 0
    if status == GameStatus.PREGAME:
        return REGULATION_PERIODS * PERIOD_SECONDS
    if status == GameStatus.HALFTIME:
        return 2 * PERIOD_SECONDS
    if seconds_in_period is None:
        return None

    seconds = int(clamp(seconds_in_period, 0, PERIOD_SECONDS))
    if period <= REGULATION_PERIODS:
        clamped_period = int(clamp(period, 1, REGULATION_PERIODS))
        return (REGULATION_PERIODS - clamped_period) * PERIOD_SECONDS + seconds
    return seconds


def to_scoreboard_date(raw_date: Optional[str]) -> Optional[str]:
    """'YYYY-MM-DD' -> 'YYYYMMDD'; anything else -> None."""
    if not raw_date:
        return None
    match = _DATE_PATTERN.match(raw_date.strip())
    if not match:
        return None
    return "".join(match.groups())


def get_poll_interval_ms(snapshot: Optional[LiveGameSnapshot]) -> int:
    """How long to wait before the next live fetch."""
    if snapshot is None:
        return 45_000

    if snapshot.status == GameStatus.IN_PROGRESS:
        remaining = snapshot.clock.seconds_remaining_game
        if remaining is not None and remaining <= 8 * 60:
            return 5_000
        if remaining is not None and remaining <= 20 * 60:
            return 8_000
        return 12_000

    if snapshot.status == GameStatus.HALFTIME:
        return 20_000
    if snapshot.status == GameStatus.PREGAME:
        return 45_000
    return 60_000


# =============================================================================
# Core parsing
# =============================================================================

def _find_competitor(competitors: list[dict], team_code: str) -> Optional[dict]:
    for competitor in competitors:
        team = _as_dict(competitor.get("team")) or {}
        abbreviation = _get_string(team.get("abbreviation"))
        if abbreviation and canonical_team_code(abbreviation) == team_code:
            return competitor
    return None


def parse_core_from_competition(
    competition: Optional[dict],
    event: Optional[dict],
    home_team_code: str,
    away_team_code: str,
) -> Optional[SnapshotCore]:
    """Parse a competition node; None unless both teams are competitors."""
    if competition is None:
        return None

    competitors = _dicts(competition.get("competitors"))
    home = _find_competitor(competitors, home_team_code)
    away = _find_competitor(competitors, away_team_code)
    if home is None or away is None:
        return None

    event = event or {}
    event_id = (
        _get_string(event.get("id"))
        or _get_string(competition.get("id"))
        or f"{home_team_code}-{away_team_code}"
    )

    status_node = _as_dict(competition.get("status")) or _as_dict(event.get("status")) or {}
    status_type = _as_dict(status_node.get("type")) or {}
    status_detail = (
        _get_string(status_type.get("detail"))
        or _get_string(status_type.get("shortDetail"))
        or "Live status unavailable"
    )
    status = map_status(_get_string(status_type.get("state")), status_detail)

    raw_period = _get_number(status_node.get("period"))
    period = max(1, _round_half_up(raw_period if raw_period is not None else 1))

    display_clock = _get_string(status_node.get("displayClock"))
    if display_clock is None:
        if status == GameStatus.PREGAME:
            display_clock = "15:00"
        elif status == GameStatus.FINAL:
            display_clock = "0:00"
        else:
            display_clock = ""

    seconds_in_period = parse_clock_to_seconds(display_clock)
    clock = LiveClock(
        period=period,
        display_clock=display_clock or "--:--",
        seconds_remaining_in_period=seconds_in_period,
        seconds_remaining_game=calculate_remaining_game_seconds(status, period, seconds_in_period),
    )

    home_team = _as_dict(home.get("team")) or {}
    away_team = _as_dict(away.get("team")) or {}
    home_score = _get_number(home.get("score"))
    away_score = _get_number(away.get("score"))

    return SnapshotCore(
        event_id=event_id,
        status=status,
        status_detail=status_detail,
        home_score=max(0, _round_half_up(home_score or 0)),
        away_score=max(0, _round_half_up(away_score or 0)),
        home_team_name=(
            _get_string(home_team.get("displayName"))
            or _get_string(home_team.get("shortDisplayName"))
            or home_team_code
        ),
        away_team_name=(
            _get_string(away_team.get("displayName"))
            or _get_string(away_team.get("shortDisplayName"))
            or away_team_code
        ),
        clock=clock,
    )


def find_event_in_scoreboard(
    payload: Any,
    home_team_code: str,
    away_team_code: str,
    event_id_override: Optional[str] = None,
) -> Optional[SnapshotCore]:
    """First scoreboard event featuring both teams (restricted to the override id if given)."""
    root = _as_dict(payload)
    if root is None:
        return None

    for event in _dicts(root.get("events")):
        if event_id_override and _get_string(event.get("id")) != event_id_override:
            continue
        for competition in _dicts(event.get("competitions")):
            core = parse_core_from_competition(competition, event, home_team_code, away_team_code)
            if core is not None:
                return core
    return None


def parse_summary_core(payload: Any, home_team_code: str, away_team_code: str) -> Optional[SnapshotCore]:
    root = _as_dict(payload)
    if root is None:
        return None

    header = _as_dict(root.get("header")) or {}
    event = _as_dict(root.get("event")) or _as_dict(header.get("event"))
    for competition in _dicts(header.get("competitions")):
        core = parse_core_from_competition(competition, event, home_team_code, away_team_code)
        if core is not None:
            return core
    return None


# =============================================================================
# Plays
# =============================================================================

def _play_text(play: dict) -> Optional[str]:
    return (
        _get_string(play.get("text"))
        or _get_string(play.get("shortText"))
        or _get_string((_as_dict(play.get("type")) or {}).get("text"))
    )


def parse_play_clock(play: dict) -> Optional[str]:
    clock = _as_dict(play.get("clock")) or {}
    return (
        _get_string(clock.get("displayValue"))
        or _get_string(clock.get("shortDisplayValue"))
        or _get_string(play.get("clock"))
    )


def parse_play_period(play: dict) -> Optional[int]:
    period = _as_dict(play.get("period")) or {}
    raw = _get_number(period.get("number"))
    if raw is None:
        raw = _get_number(period.get("value"))
    if raw is None:
        raw = _get_number(play.get("period"))
    if raw is None:
        return None
    return max(1, _round_half_up(raw))


def _play_id(play: dict, text: str) -> str:
    explicit = _get_string(play.get("id")) or _get_string(play.get("sequenceNumber"))
    if explicit:
        return explicit
    period = parse_play_period(play)
    clock = parse_play_clock(play)
    return f"{period if period is not None else '?'}-{clock or '?'}-{text}"


def collect_summary_plays(payload: Any) -> list[dict]:
    """
    Raw plays in feed order, deduplicated, most recent last.

    Sources: previous drives, current drive, top-level plays, scoring
    plays and the situation's last play. Plays without text are dropped.
    """
    root = _as_dict(payload)
    if root is None:
        return []

    raw: list[dict] = []
    drives = _as_dict(root.get("drives")) or {}
    for drive in _dicts(drives.get("previous")):
        raw.extend(_dicts(drive.get("plays")))
    current = _as_dict(drives.get("current")) or {}
    raw.extend(_dicts(current.get("plays")))
    raw.extend(_dicts(root.get("plays")))
    raw.extend(_dicts(root.get("scoringPlays")))

    header = _as_dict(root.get("header")) or {}
    competitions = _dicts(header.get("competitions"))
    if competitions:
        situation = _as_dict(competitions[0].get("situation")) or {}
        last_play = _as_dict(situation.get("lastPlay"))
        if last_play is not None:
            raw.append(last_play)

    seen: set[str] = set()
    deduped = []
    for play in raw:
        text = _play_text(play)
        if not text:
            continue
        play_id = _play_id(play, text)
        if play_id in seen:
            continue
        seen.add(play_id)
        deduped.append(play)

    return deduped[-MAX_PLAY_EVENTS:]


def infer_team_code_from_text(
    text: str,
    home_team_code: str,
    away_team_code: str,
    home_team_name: str,
    away_team_name: str,
) -> Optional[str]:
    """Attribute a play by team code/name tokens; ambiguous or no match -> None."""
    normalized = normalize_text(text)
    if not normalized:
        return None

    home_tokens = [
        token for entry in (home_team_code, home_team_name)
        for token in normalize_text(entry).split(" ") if token
    ]
    away_tokens = [
        token for entry in (away_team_code, away_team_name)
        for token in normalize_text(entry).split(" ") if token
    ]

    has_home = any(token in normalized for token in home_tokens)
    has_away = any(token in normalized for token in away_tokens)
    if has_home and not has_away:
        return home_team_code
    if has_away and not has_home:
        return away_team_code
    return None


def normalize_play(
    play: dict,
    home_team_code: str,
    away_team_code: str,
    home_team_name: str,
    away_team_name: str,
) -> LivePlayEvent:
    text = _play_text(play) or "Play update unavailable"
    lower = text.lower()

    explicit_code = (
        _get_string((_as_dict(play.get("team")) or {}).get("abbreviation"))
        or _get_string((_as_dict(play.get("possession")) or {}).get("abbreviation"))
    )
    explicit_code = canonical_team_code(explicit_code) if explicit_code else None
    if explicit_code in (home_team_code, away_team_code):
        team_code = explicit_code
    else:
        team_code = infer_team_code_from_text(
            text, home_team_code, away_team_code, home_team_name, away_team_name
        )

    scoring_flag = play.get("scoringPlay")
    if not isinstance(scoring_flag, bool):
        scoring_flag = bool(_SCORING_PATTERN.search(lower))

    yards_match = _YARDAGE_PATTERN.search(lower)
    yards = int(yards_match.group(1)) if yards_match else 0

    return LivePlayEvent(
        id=_play_id(play, text),
        text=text,
        team_code=team_code,
        period=parse_play_period(play),
        clock=parse_play_clock(play),
        is_scoring_play=scoring_flag,
        is_penalty=bool(_PENALTY_PATTERN.search(lower)),
        is_turnover=bool(_TURNOVER_PATTERN.search(lower)),
        is_explosive_play=abs(yards) >= EXPLOSIVE_PLAY_YARDS,
        sentiment_score=score_text(text),
    )


def normalize_summary_plays(
    payload: Any,
    home_team_code: str,
    away_team_code: str,
    home_team_name: str,
    away_team_name: str,
) -> list[LivePlayEvent]:
    return [
        normalize_play(play, home_team_code, away_team_code, home_team_name, away_team_name)
        for play in collect_summary_plays(payload)
    ]


# =============================================================================
# Feed
# =============================================================================

class LiveGameFeed(HttpSource):
    """
    Fetches live snapshots for a matchup.

    Usage:
        feed = LiveGameFeed(settings.sources.espn_base_url, timeout=10.0)
        snapshot = await feed.fetch_snapshot("Seahawks", "Patriots")
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        super().__init__("espn_live", timeout, client)
        self.base_url = base_url.rstrip("/")

    async def fetch_snapshot(
        self,
        home_team: str,
        away_team: str,
        game_date: Optional[str] = None,
        event_id_override: Optional[str] = None,
    ) -> Optional[LiveGameSnapshot]:
        """
        Fetch the current state of a game.

        Returns None when the game cannot be located.

        Raises:
            UnsupportedTeamError: if either team cannot be resolved.
            LiveFeedError: if neither the scoreboard nor the summary could be
                reached.
        """
        home = resolve_team(home_team)
        away = resolve_team(away_team)

        scoreboard_url = f"{self.base_url}/scoreboard"
        scoreboard_date = to_scoreboard_date(game_date)
        attempts: list[Optional[dict]] = [{"dates": scoreboard_date}] if scoreboard_date else []
        attempts.append(None)

        core: Optional[SnapshotCore] = None
        any_scoreboard_ok = False
        last_error: Optional[Exception] = None

        for params in attempts:
            try:
                payload = await self.fetch_json(scoreboard_url, params=params)
            except SourceUnavailableError as e:
                last_error = e
                continue
            any_scoreboard_ok = True
            core = find_event_in_scoreboard(payload, home.code, away.code, event_id_override)
            if core is not None:
                break

        if not any_scoreboard_ok and not event_id_override:
            raise LiveFeedError(f"Live scoreboard unavailable: {last_error}")

        event_id = event_id_override or (core.event_id if core else None)
        if not event_id:
            self.logger.debug("Game not on scoreboard", home=home.code, away=away.code)
            return None

        summary_payload = None
        try:
            summary_payload = await self.fetch_json(f"{self.base_url}/summary", params={"event": event_id})
            summary_core = parse_summary_core(summary_payload, home.code, away.code)
            if summary_core is not None:
                core = summary_core
        except SourceUnavailableError as e:
            if not any_scoreboard_ok:
                raise LiveFeedError(f"Live scoreboard and summary unavailable: {e}") from e
            self.logger.info("Summary unavailable, using scoreboard", event_id=event_id, error=str(e))

        if core is None:
            return None

        plays: list[LivePlayEvent] = []
        if summary_payload is not None:
            plays = normalize_summary_plays(
                summary_payload, home.code, away.code, core.home_team_name, core.away_team_name
            )

        sentiment = LiveSentiment()
        if plays:
            sentiment = analyze_aggregate_sentiment(
                [SentimentEntry(text=play.text, team_code=play.team_code) for play in plays],
                TeamSentimentContext(
                    home_team_code=home.code,
                    away_team_code=away.code,
                    home_team_name=core.home_team_name,
                    away_team_name=core.away_team_name,
                ),
            )

        return LiveGameSnapshot(
            event_id=event_id,
            fetched_at=datetime.now(timezone.utc).isoformat(),
            status=core.status,
            status_detail=core.status_detail,
            home_team_code=home.code,
            away_team_code=away.code,
            home_team_name=core.home_team_name,
            away_team_name=core.away_team_name,
            home_score=core.home_score,
            away_score=core.away_score,
            clock=core.clock,
            plays=tuple(plays),
            sentiment=sentiment,
        )
