"""
TheSportsDB recent form.

Endpoints (free key "123"):
- GET {base}/searchteams.php?t={name}   -> candidate teams
- GET {base}/eventslast.php?id={id}     -> last few results

Recent form is a small sample (typically 5 games) and only nudges the
team matrix and expected points.
"""

from typing import Any, Optional, Sequence

import httpx

from squareodds.engine.matrix import normalize_vector, to_digit
from squareodds.feeds.base import HttpSource, SourceUnavailableError
from squareodds.feeds.nflverse import parse_numeric
from squareodds.models.schemas import DIGIT_COUNT, RecentForm
from squareodds.models.teams import normalize_text
from squareodds.utils.cache import AsyncMemoCache


def match_team_name(candidate: str, names: Sequence[str]) -> bool:
    """True when candidate equals, or ends with, any name (or vice versa)."""
    normalized_candidate = normalize_text(candidate)
    if not normalized_candidate:
        return False
    for name in names:
        normalized_name = normalize_text(name)
        if not normalized_name:
            continue
        if (
            normalized_candidate == normalized_name
            or normalized_candidate.endswith(normalized_name)
            or normalized_name.endswith(normalized_candidate)
        ):
            return True
    return False


def pick_team(payload: Any) -> Optional[tuple[str, str]]:
    """(idTeam, strTeam) of the best search hit, preferring the NFL."""
    teams = payload.get("teams") if isinstance(payload, dict) else None
    candidates = [
        team for team in teams or []
        if isinstance(team, dict) and team.get("idTeam") and team.get("strTeam")
    ]
    if not candidates:
        return None

    for team in candidates:
        if str(team.get("strLeague") or "").lower() == "nfl":
            return str(team["idTeam"]), team["strTeam"]
    return str(candidates[0]["idTeam"]), candidates[0]["strTeam"]


def build_recent_form(events: Any, names: Sequence[str]) -> Optional[RecentForm]:
    """Aggregate last results for the team identified by ``names``."""
    offense_counts = [1.0] * DIGIT_COUNT
    defense_counts = [1.0] * DIGIT_COUNT
    total_scored = 0.0
    total_allowed = 0.0
    sample_size = 0

    for event in events or []:
        if not isinstance(event, dict):
            continue
        home_score = parse_numeric(str(event.get("intHomeScore") or ""))
        away_score = parse_numeric(str(event.get("intAwayScore") or ""))
        if home_score is None or away_score is None:
            continue

        is_home = match_team_name(event.get("strHomeTeam") or "", names)
        is_away = match_team_name(event.get("strAwayTeam") or "", names)
        if not is_home and not is_away:
            continue

        team_score = home_score if is_home else away_score
        opponent_score = away_score if is_home else home_score
        offense_counts[to_digit(team_score)] += 1
        defense_counts[to_digit(opponent_score)] += 1
        total_scored += team_score
        total_allowed += opponent_score
        sample_size += 1

    if sample_size == 0:
        return None

    return RecentForm(
        avg_scored=total_scored / sample_size,
        avg_allowed=total_allowed / sample_size,
        offense_digit_dist=normalize_vector(offense_counts),
        defense_digit_dist=normalize_vector(defense_counts),
        sample_size=sample_size,
    )


class SportsDbSource(HttpSource):
    """Recent form lookups, memoized per team and primary name."""

    def __init__(
        self,
        base_url: str,
        timeout: float = 12.0,
        client: Optional[httpx.AsyncClient] = None,
        cache: Optional[AsyncMemoCache] = None,
    ):
        super().__init__("thesportsdb", timeout, client)
        self.base_url = base_url.rstrip("/")
        self.cache = cache if cache is not None else AsyncMemoCache()

    async def load_recent_form(
        self,
        team_code: str,
        name_candidates: Sequence[str],
    ) -> Optional[RecentForm]:
        """
        Recent form for a team, or None when unavailable. Never raises.

        Name candidates are searched in order; the first search with a usable
        hit wins.
        """
        names = list(name_candidates)
        key = f"sportsdb:{team_code.upper()}:{names[0] if names else ''}"
        return await self.cache.get_or_load(key, lambda: self._load_recent_form(team_code, names))

    async def _load_recent_form(self, team_code: str, names: list[str]) -> Optional[RecentForm]:
        try:
            match = None
            for name in names:
                payload = await self.fetch_json(f"{self.base_url}/searchteams.php", params={"t": name})
                match = pick_team(payload)
                if match is not None:
                    break

            if match is None:
                self.logger.debug("No team match", team=team_code, names=names)
                return None

            team_id, matched_name = match
            payload = await self.fetch_json(f"{self.base_url}/eventslast.php", params={"id": team_id})
        except SourceUnavailableError as e:
            self.logger.warning("Recent form unavailable", team=team_code, error=str(e))
            return None

        events = payload.get("results") if isinstance(payload, dict) else None
        return build_recent_form(events, [matched_name, *names])
