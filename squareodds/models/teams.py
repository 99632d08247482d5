"""
NFL team table and free-text team resolution.
"""

import re
from dataclasses import dataclass
from typing import Optional


class UnsupportedTeamError(ValueError):
    """Raised when a team name or code cannot be resolved."""


@dataclass(frozen=True)
class Team:
    """An NFL team."""
    code: str   # "SEA"
    name: str   # "Seahawks"


NFL_TEAMS: tuple[Team, ...] = (
    Team("ARI", "Cardinals"),
    Team("ATL", "Falcons"),
    Team("BAL", "Ravens"),
    Team("BUF", "Bills"),
    Team("CAR", "Panthers"),
    Team("CHI", "Bears"),
    Team("CIN", "Bengals"),
    Team("CLE", "Browns"),
    Team("DAL", "Cowboys"),
    Team("DEN", "Broncos"),
    Team("DET", "Lions"),
    Team("GB", "Packers"),
    Team("HOU", "Texans"),
    Team("IND", "Colts"),
    Team("JAX", "Jaguars"),
    Team("KC", "Chiefs"),
    Team("LV", "Raiders"),
    Team("LAC", "Chargers"),
    Team("LAR", "Rams"),
    Team("MIA", "Dolphins"),
    Team("MIN", "Vikings"),
    Team("NE", "Patriots"),
    Team("NO", "Saints"),
    Team("NYG", "Giants"),
    Team("NYJ", "Jets"),
    Team("PHI", "Eagles"),
    Team("PIT", "Steelers"),
    Team("SF", "49ers"),
    Team("SEA", "Seahawks"),
    Team("TB", "Buccaneers"),
    Team("TEN", "Titans"),
    Team("WAS", "Commanders"),
)

_NON_ALNUM = re.compile(r"[^a-z0-9\s]")
_WHITESPACE = re.compile(r"\s+")


def normalize_text(value: str) -> str:
    """Lower-case, strip punctuation and collapse whitespace."""
    lowered = _NON_ALNUM.sub(" ", value.lower())
    return _WHITESPACE.sub(" ", lowered).strip()


def find_team(value: str) -> Optional[Team]:
    """
    Find a team by code or name.

    Match order: exact code, exact nickname, then "ends with nickname"
    (so "Seattle Seahawks" resolves to SEA).
    """
    normalized = normalize_text(value)
    if not normalized:
        return None

    for team in NFL_TEAMS:
        if normalize_text(team.code) == normalized:
            return team
    for team in NFL_TEAMS:
        if normalize_text(team.name) == normalized:
            return team
    for team in NFL_TEAMS:
        if normalized.endswith(normalize_text(team.name)):
            return team
    return None


def resolve_team(value: str) -> Team:
    """Resolve a team or raise UnsupportedTeamError."""
    team = find_team(value)
    if team is None:
        raise UnsupportedTeamError(f"Unsupported team name or code: {value}")
    return team


def get_team_by_code(code: str) -> Optional[Team]:
    """Look up a team by exact code."""
    upper = code.upper()
    for team in NFL_TEAMS:
        if team.code == upper:
            return team
    return None


# Provider abbreviations that differ from the table codes
PROVIDER_CODE_ALIASES = {
    "LA": "LAR",   # nflverse
    "WSH": "WAS",  # ESPN
}


def canonical_team_code(code: str) -> str:
    """Upper-case a provider abbreviation and map it onto the table code."""
    upper = code.strip().upper()
    return PROVIDER_CODE_ALIASES.get(upper, upper)
