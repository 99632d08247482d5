"""
Historical Model Builder.

Turns historical game and closing-line records into:
- a league-wide baseline digit matrix
- per-team scoring contexts (offense / defense digit distributions)
- market-implied win probabilities per team

Everything here is pure; dataset loading lives in feeds.nflverse.
"""

import math
from typing import Optional, Sequence

from squareodds.engine.matrix import clamp, normalize_matrix, normalize_vector, to_digit
from squareodds.models.schemas import (
    DIGIT_COUNT,
    DigitMatrix,
    GameRecord,
    MoneylineRecord,
    TeamContext,
)


# Baseline window
BASELINE_SEASONS = 15
BASELINE_FIRST_SEASON = 1999

# Team context window
TEAM_CONTEXT_SEASONS = 6
TEAM_CONTEXT_MAX_GAMES = 48
TEAM_CONTEXT_DECAY = 18.0

# Market window
MARKET_SEASONS = 8

LEAGUE_AVERAGE_SEASONS = 3
DEFAULT_LEAGUE_AVERAGE_POINTS = 22.0


def american_odds_to_implied_probability(odds: float) -> float:
    """
    Convert American odds to implied probability.

    -110 -> 110/210, +150 -> 100/250. Zero or non-finite odds are a coin flip.
    """
    if not math.isfinite(odds) or odds == 0:
        return 0.5
    if odds < 0:
        return abs(odds) / (abs(odds) + 100)
    return 100 / (odds + 100)


def get_latest_season(games: Sequence[GameRecord]) -> int:
    return max((game.season for game in games), default=0)


def build_baseline_matrix(
    games: Sequence[GameRecord],
    latest_season: int,
) -> tuple[DigitMatrix, int]:
    """
    League digit-pair matrix over the last ~15 seasons.

    Add-one smoothed; each game weighted by clamp(1.1 - 0.05 * age, 0.35, 1.1).

    Returns:
        (matrix, number of games counted)
    """
    counts = [[1.0] * DIGIT_COUNT for _ in range(DIGIT_COUNT)]
    start_season = max(BASELINE_FIRST_SEASON, latest_season - BASELINE_SEASONS)
    sample_size = 0

    for game in games:
        if game.season < start_season:
            continue
        if game.home_score < 0 or game.away_score < 0:
            continue

        age = latest_season - game.season
        weight = clamp(1.1 - age * 0.05, 0.35, 1.1)
        counts[to_digit(game.home_score)][to_digit(game.away_score)] += weight
        sample_size += 1

    return normalize_matrix(counts), sample_size


def build_team_context(
    games: Sequence[GameRecord],
    team_code: str,
    latest_season: int,
) -> Optional[TeamContext]:
    """
    Recency-weighted scoring profile from a team's last <=48 games.

    Only the last 6 seasons are considered; the i-th most recent game is
    weighted exp(-i / 18).
    """
    cutoff_season = latest_season - TEAM_CONTEXT_SEASONS
    team_games = [
        game for game in games
        if game.season >= cutoff_season
        and (game.home_team == team_code or game.away_team == team_code)
    ]
    team_games.sort(key=lambda game: game.gameday, reverse=True)
    team_games = team_games[:TEAM_CONTEXT_MAX_GAMES]

    if not team_games:
        return None

    offense_counts = [1.0] * DIGIT_COUNT
    defense_counts = [1.0] * DIGIT_COUNT
    weighted_for = 0.0
    weighted_against = 0.0
    total_weight = 0.0

    for index, game in enumerate(team_games):
        is_home = game.home_team == team_code
        points_for = game.home_score if is_home else game.away_score
        points_allowed = game.away_score if is_home else game.home_score
        if points_for < 0 or points_allowed < 0:
            continue

        weight = math.exp(-index / TEAM_CONTEXT_DECAY)
        offense_counts[to_digit(points_for)] += weight
        defense_counts[to_digit(points_allowed)] += weight
        weighted_for += points_for * weight
        weighted_against += points_allowed * weight
        total_weight += weight

    if total_weight <= 0:
        return None

    return TeamContext(
        offense_digit_dist=normalize_vector(offense_counts),
        defense_digit_dist=normalize_vector(defense_counts),
        avg_points_for=weighted_for / total_weight,
        avg_points_allowed=weighted_against / total_weight,
        sample_size=len(team_games),
    )


def calculate_league_average_points(
    games: Sequence[GameRecord],
    latest_season: int,
) -> float:
    """Average points per team per game over the last 3 seasons."""
    cutoff = latest_season - LEAGUE_AVERAGE_SEASONS
    total = 0
    sample = 0
    for game in games:
        if game.season < cutoff:
            continue
        total += game.home_score + game.away_score
        sample += 2

    if sample == 0:
        return DEFAULT_LEAGUE_AVERAGE_POINTS
    return total / sample


def calculate_market_implied_probability(
    moneylines: Sequence[MoneylineRecord],
    team_code: str,
    latest_season: int,
) -> Optional[float]:
    """
    Average closing-line implied win probability for a team.

    Uses the last 8 seasons, later seasons weighted up linearly
    (clamp(1 + 0.12 * (season - earliest), 0.4, 2.2)).
    """
    earliest = latest_season - MARKET_SEASONS
    rows = [
        entry for entry in moneylines
        if entry.side == team_code and entry.season >= earliest
    ]
    if not rows:
        return None

    weighted_sum = 0.0
    total_weight = 0.0
    for entry in rows:
        weight = clamp(1 + (entry.season - earliest) * 0.12, 0.4, 2.2)
        weighted_sum += entry.implied_probability * weight
        total_weight += weight

    if total_weight <= 0:
        return None
    return weighted_sum / total_weight
