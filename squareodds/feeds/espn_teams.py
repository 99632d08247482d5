"""
ESPN team metadata and season statistics.

Endpoints (site API, no key):
- GET {base}/teams                       -> team ids, abbreviations and names
- GET {base}/teams/{id}/statistics       -> season stat categories

Stats feed the expected-points model only; they are optional. A failed
stats lookup yields None and the assembler rebalances toward the baseline.
"""

import math
from typing import Any, Optional

import httpx

from squareodds.feeds.base import HttpSource, MalformedResponseError, SourceUnavailableError
from squareodds.models.schemas import TeamDescriptor, TeamStats
from squareodds.models.teams import canonical_team_code
from squareodds.utils.cache import AsyncMemoCache


# Stat names in preference order for each TeamStats field
POINTS_PER_GAME_STATS = ("totalPointsPerGame", "offensivePointsPerGame", "totalPoints")
THIRD_DOWN_STATS = ("thirdDownConvPct",)
RED_ZONE_STATS = ("redzoneScoringPct", "redzoneTouchdownPct", "redzoneEfficiencyPct")
TURNOVER_STATS = ("turnOverDifferential",)


def _finite_number(value: Any) -> Optional[float]:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return float(value) if math.isfinite(value) else None


def extract_numeric_stats(payload: Any) -> dict[str, float]:
    """
    Flatten ``results.stats.categories[].stats[]`` into name -> value.

    ``perGameValue`` is preferred over ``value``; non-numeric entries are
    skipped.
    """
    output: dict[str, float] = {}
    if not isinstance(payload, dict):
        return output

    results = payload.get("results") or {}
    stats_root = results.get("stats") if isinstance(results, dict) else None
    categories = stats_root.get("categories") if isinstance(stats_root, dict) else None

    for category in categories or []:
        stats = category.get("stats") if isinstance(category, dict) else None
        if not isinstance(stats, list):
            continue
        for stat in stats:
            if not isinstance(stat, dict) or not stat.get("name"):
                continue
            value = _finite_number(stat.get("perGameValue"))
            if value is None:
                value = _finite_number(stat.get("value"))
            if value is not None:
                output[stat["name"]] = value

    return output


def _first_stat(stats: dict[str, float], names: tuple[str, ...]) -> Optional[float]:
    for name in names:
        if name in stats:
            return stats[name]
    return None


def parse_team_stats(payload: Any) -> TeamStats:
    stats = extract_numeric_stats(payload)
    return TeamStats(
        points_per_game=_first_stat(stats, POINTS_PER_GAME_STATS),
        third_down_pct=_first_stat(stats, THIRD_DOWN_STATS),
        red_zone_pct=_first_stat(stats, RED_ZONE_STATS),
        turnover_diff=_first_stat(stats, TURNOVER_STATS),
    )


def parse_team_map(payload: Any) -> dict[str, TeamDescriptor]:
    """
    Map canonical team code -> TeamDescriptor.

    Raises:
        MalformedResponseError: if no team could be mapped.
    """
    teams = []
    try:
        teams = payload["sports"][0]["leagues"][0]["teams"] or []
    except (KeyError, IndexError, TypeError):
        teams = []

    team_map: dict[str, TeamDescriptor] = {}
    for entry in teams:
        team = entry.get("team") if isinstance(entry, dict) else None
        if not isinstance(team, dict) or not team.get("id") or not team.get("abbreviation"):
            continue

        abbreviation = canonical_team_code(str(team["abbreviation"]))
        display_name = team.get("displayName") or team.get("shortDisplayName") or team.get("nickname") or ""
        team_map[abbreviation] = TeamDescriptor(
            id=str(team["id"]),
            abbreviation=abbreviation,
            display_name=display_name,
            short_display_name=team.get("shortDisplayName") or team.get("displayName") or "",
            nickname=team.get("nickname") or "",
        )

    if not team_map:
        raise MalformedResponseError("Could not map ESPN team IDs.")
    return team_map


class EspnTeamSource(HttpSource):
    """
    ESPN team list and per-team statistics.

    The team list is memoized; per-team stats are memoized by team code,
    including "no stats" results, until the cache entry expires.
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = 12.0,
        client: Optional[httpx.AsyncClient] = None,
        cache: Optional[AsyncMemoCache] = None,
    ):
        super().__init__("espn_teams", timeout, client)
        self.base_url = base_url.rstrip("/")
        self.cache = cache if cache is not None else AsyncMemoCache()

    async def load_teams(self) -> dict[str, TeamDescriptor]:
        """Team descriptors by abbreviation. Raises SourceUnavailableError."""
        return await self.cache.get_or_load("espn:teams", self._load_teams)

    async def load_team_stats(self, team_code: str) -> Optional[TeamStats]:
        """Season stats for a team, or None when unavailable. Never raises."""
        code = team_code.upper()
        return await self.cache.get_or_load(
            f"espn:stats:{code}",
            lambda: self._load_team_stats(code),
        )

    async def _load_teams(self) -> dict[str, TeamDescriptor]:
        payload = await self.fetch_json(f"{self.base_url}/teams")
        team_map = parse_team_map(payload)
        self.logger.info("Loaded team map", teams=len(team_map))
        return team_map

    async def _load_team_stats(self, team_code: str) -> Optional[TeamStats]:
        try:
            teams = await self.load_teams()
            team = teams.get(team_code)
            if team is None:
                self.logger.debug("Team not in team map", team=team_code)
                return None

            payload = await self.fetch_json(f"{self.base_url}/teams/{team.id}/statistics")
        except SourceUnavailableError as e:
            self.logger.warning("Team stats unavailable", team=team_code, error=str(e))
            return None

        return parse_team_stats(payload)
