"""
Pre-game Odds Assembler.

Fuses three digit-pair matrices into one pre-game model per matchup:

1. League baseline (historical final-score digits)
2. Team matrix (team/opponent digit tendencies + recent form)
3. Simulation matrix (Poisson scores around expected points)

Weights start at 45/35/20 and shift toward the baseline as secondary
sources drop out. The resulting label-independent model is cached per
matchup; the board's label permutation is applied on every read.
"""

import asyncio
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional, Sequence

import structlog

from config.settings import PregameModelSettings
from squareodds.engine.historical import (
    build_baseline_matrix,
    build_team_context,
    calculate_league_average_points,
    calculate_market_implied_probability,
    get_latest_season,
)
from squareodds.engine.matrix import (
    blend_matrices,
    blend_vectors,
    build_board,
    clamp,
    outer_product,
    poisson_digit_distribution,
    uniform_vector,
    validate_labels,
)
from squareodds.feeds.base import SourceUnavailableError
from squareodds.feeds.espn_teams import EspnTeamSource
from squareodds.feeds.nflverse import NflverseSource
from squareodds.feeds.sportsdb import SportsDbSource
from squareodds.models.schemas import (
    CachedDigitModel,
    DigitMatrix,
    MoneylineRecord,
    OddsSource,
    RecentForm,
    SourceMode,
    SquareOddsResult,
    TeamContext,
    TeamDescriptor,
    TeamStats,
)
from squareodds.models.teams import Team, get_team_by_code, resolve_team
from squareodds.utils.cache import AsyncMemoCache, ModelCache

logger = structlog.get_logger()


FALLBACK_WARNING = (
    "Live sports data sources were unavailable. Using a mathematically generated baseline model."
)
GAMES_UNAVAILABLE_WARNING = (
    "Unable to load NFL historical games dataset. Falling back to baseline simulation only."
)
LIMITED_HISTORY_WARNING = (
    "Limited team history found for one or both teams. "
    "Probabilities rely more heavily on league baseline."
)
MONEYLINES_UNAVAILABLE_WARNING = "Moneyline data could not be loaded. Market adjustments disabled."
TEAM_METADATA_UNAVAILABLE_WARNING = "ESPN team metadata unavailable. Team-level API stats reduced."
TEAM_STATS_UNAVAILABLE_WARNING = (
    "ESPN team stats unavailable. Expected-points model uses historical-only inputs."
)
RECENT_FORM_UNAVAILABLE_WARNING = (
    "Recent form feed unavailable. Team trend model uses historical games only."
)

# Sources needed for "full" mode
FULL_MODE_MIN_SOURCES = 3

# Team matrix vector weights
OWN_OFFENSE_WEIGHT = 0.55
OPPONENT_DEFENSE_WEIGHT = 0.25
OWN_FORM_OFFENSE_WEIGHT = 0.12
OPPONENT_FORM_DEFENSE_WEIGHT = 0.08


# =============================================================================
# Blend weights
# =============================================================================

@dataclass
class BlendWeights:
    """Normalized matrix blend weights (sum to 1)."""
    baseline: float
    team: float
    simulation: float


def rebalance_blend_weights(
    has_team_stats: bool,
    has_recent_form: bool,
    has_market: bool,
    base: Optional[PregameModelSettings] = None,
) -> BlendWeights:
    """
    Shift weight toward the baseline for each missing secondary source.

    No team stats: baseline +0.05, simulation -0.05.
    No recent form: baseline +0.03, team -0.03.
    No market: baseline +0.02, simulation -0.02.
    """
    base = base or PregameModelSettings()
    baseline = base.baseline_weight
    team = base.team_weight
    simulation = base.simulation_weight

    if not has_team_stats:
        baseline += 0.05
        simulation -= 0.05
    if not has_recent_form:
        baseline += 0.03
        team -= 0.03
    if not has_market:
        baseline += 0.02
        simulation -= 0.02

    baseline = clamp(baseline, 0.3, 0.7)
    team = clamp(team, 0.15, 0.45)
    simulation = clamp(simulation, 0.08, 0.35)
    total = baseline + team + simulation

    return BlendWeights(
        baseline=baseline / total,
        team=team / total,
        simulation=simulation / total,
    )


# =============================================================================
# Model components
# =============================================================================

def _weighted_average(parts: Sequence[tuple[Optional[float], float]], fallback: float) -> float:
    weighted_sum = 0.0
    total_weight = 0.0
    for value, weight in parts:
        if value is None or weight <= 0:
            continue
        weighted_sum += value * weight
        total_weight += weight
    if total_weight <= 0:
        return fallback
    return weighted_sum / total_weight


def estimate_expected_points(
    team_context: Optional[TeamContext],
    opponent_context: Optional[TeamContext],
    team_stats: Optional[TeamStats],
    opponent_stats: Optional[TeamStats],
    team_form: Optional[RecentForm],
    league_average: float,
    min_points: float = 10.0,
    max_points: float = 45.0,
) -> float:
    """Expected final score for one side before market adjustment."""
    team_stats = team_stats or TeamStats()
    opponent_stats = opponent_stats or TeamStats()

    expected = _weighted_average(
        [
            (team_context.avg_points_for if team_context else None, 0.42),
            (opponent_context.avg_points_allowed if opponent_context else None, 0.28),
            (team_stats.points_per_game, 0.15),
            (team_form.avg_scored if team_form else None, 0.10),
            (league_average, 0.05),
        ],
        league_average,
    )

    third_down_edge = ((team_stats.third_down_pct or 0) - (opponent_stats.third_down_pct or 0)) / 100
    expected += third_down_edge * 2.2

    red_zone_edge = ((team_stats.red_zone_pct or 0) - (opponent_stats.red_zone_pct or 0)) / 100
    expected += red_zone_edge * 1.6

    turnover_edge = (team_stats.turnover_diff or 0) - (opponent_stats.turnover_diff or 0)
    expected += turnover_edge * 0.12

    if team_form is not None and team_context is not None:
        expected += (team_form.avg_scored - team_context.avg_points_for) * 0.12

    return clamp(expected, min_points, max_points)


def build_team_digit_matrix(
    home_context: Optional[TeamContext],
    away_context: Optional[TeamContext],
    home_form: Optional[RecentForm],
    away_form: Optional[RecentForm],
) -> DigitMatrix:
    """Outer product of each side's blended offense / opponent-defense digits."""
    def side_vector(own_context, opponent_context, own_form, opponent_form):
        return blend_vectors([
            (own_context.offense_digit_dist if own_context else uniform_vector(), OWN_OFFENSE_WEIGHT),
            (opponent_context.defense_digit_dist if opponent_context else uniform_vector(), OPPONENT_DEFENSE_WEIGHT),
            (own_form.offense_digit_dist if own_form else uniform_vector(), OWN_FORM_OFFENSE_WEIGHT),
            (opponent_form.defense_digit_dist if opponent_form else uniform_vector(), OPPONENT_FORM_DEFENSE_WEIGHT),
        ])

    home_dist = side_vector(home_context, away_context, home_form, away_form)
    away_dist = side_vector(away_context, home_context, away_form, home_form)
    return outer_product(home_dist, away_dist)


def build_simulation_matrix(expected_home_points: float, expected_away_points: float) -> DigitMatrix:
    return outer_product(
        poisson_digit_distribution(expected_home_points),
        poisson_digit_distribution(expected_away_points),
    )


def resolve_source_mode(sources_used: Sequence[OddsSource]) -> SourceMode:
    return SourceMode.FULL if len(set(sources_used)) >= FULL_MODE_MIN_SOURCES else SourceMode.BASELINE


def build_fallback_model(
    warnings: Sequence[str],
    settings: Optional[PregameModelSettings] = None,
) -> CachedDigitModel:
    """Simulation-only model at a typical competitive final."""
    settings = settings or PregameModelSettings()
    return CachedDigitModel(
        digit_probabilities=build_simulation_matrix(
            settings.fallback_home_points, settings.fallback_away_points
        ),
        generated_at=_now_iso(),
        source_mode=SourceMode.BASELINE,
        sources_used=[OddsSource.FALLBACK_MODEL],
        warnings=list(warnings),
        expected_home_points=settings.fallback_home_points,
        expected_away_points=settings.fallback_away_points,
    )


def to_square_odds_result(
    model: CachedDigitModel,
    row_labels: Sequence[int],
    col_labels: Sequence[int],
) -> SquareOddsResult:
    """Apply a board's label permutation to a cached model."""
    return SquareOddsResult(
        board_percentages=build_board(model.digit_probabilities, row_labels, col_labels),
        digit_probabilities=model.digit_probabilities,
        generated_at=model.generated_at,
        source_mode=model.source_mode,
        sources_used=list(model.sources_used),
        warnings=list(model.warnings),
        expected_home_points=model.expected_home_points,
        expected_away_points=model.expected_away_points,
    )


def team_name_candidates(team: Team, descriptor: Optional[TeamDescriptor]) -> list[str]:
    """Names to search the recent-form provider with, most specific first."""
    candidates = []
    if descriptor is not None:
        candidates.extend([descriptor.display_name, descriptor.short_display_name, descriptor.nickname])
    candidates.append(team.name)

    output: list[str] = []
    for name in candidates:
        if name and name.strip() and name not in output:
            output.append(name)
    return output


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


# =============================================================================
# Assembler
# =============================================================================

class PregameOddsAssembler:
    """
    Builds and caches pre-game models.

    One instance per service: it owns the in-flight map so concurrent
    requests for the same matchup share one computation.
    """

    def __init__(
        self,
        nflverse: NflverseSource,
        espn: EspnTeamSource,
        sportsdb: SportsDbSource,
        model_cache: ModelCache,
        settings: Optional[PregameModelSettings] = None,
        cache_key_prefix: str = "sb-lx-smart-odds-model-v1",
    ):
        self.nflverse = nflverse
        self.espn = espn
        self.sportsdb = sportsdb
        self.model_cache = model_cache
        self.settings = settings or PregameModelSettings()
        self.cache_key_prefix = cache_key_prefix

        self._in_flight = AsyncMemoCache(ttl_seconds=0)
        self.logger = logger.bind(component="pregame")

    def cache_key(self, home_code: str, away_code: str) -> str:
        return f"{self.cache_key_prefix}:{home_code}:{away_code}"

    async def build_square_odds(
        self,
        home_team: str,
        away_team: str,
        row_labels: Sequence[int],
        col_labels: Sequence[int],
    ) -> SquareOddsResult:
        """
        Pre-game odds for a board.

        Raises:
            UnsupportedTeamError: if either team cannot be resolved.
            ValueError: if the labels are not two lists of 10 digits.

        Every other failure yields the fallback model with warnings.
        """
        home = resolve_team(home_team)
        away = resolve_team(away_team)
        validate_labels(row_labels, col_labels)

        try:
            model = await self.get_digit_model(home.code, away.code)
        except Exception as e:
            self.logger.error("Model build failed, using fallback", home=home.code, away=away.code, error=str(e))
            model = build_fallback_model([FALLBACK_WARNING, str(e)], self.settings)

        result = to_square_odds_result(model, row_labels, col_labels)
        self.logger.info("Square odds ready", home=home.code, away=away.code, **result.to_log())
        return result

    async def get_digit_model(self, home_code: str, away_code: str) -> CachedDigitModel:
        """Cached model for a matchup, computing (once) on a miss."""
        key = self.cache_key(home_code, away_code)
        cached = self.model_cache.get(key)
        if cached is not None:
            self.logger.debug("Model cache hit", key=key)
            return cached

        async def compute() -> CachedDigitModel:
            model = await self.build_digit_model(home_code, away_code)
            self.model_cache.set(key, model)
            return model

        return await self._in_flight.get_or_load(key, compute)

    async def build_digit_model(self, home_code: str, away_code: str) -> CachedDigitModel:
        """Compute a fresh model from every available source."""
        warnings: list[str] = []
        sources_used: list[OddsSource] = []

        try:
            games = await self.nflverse.load_games()
        except SourceUnavailableError as e:
            self.logger.warning("Historical games unavailable", error=str(e))
            return build_fallback_model([GAMES_UNAVAILABLE_WARNING], self.settings)
        sources_used.append(OddsSource.NFLVERSE_GAMES)

        latest_season = get_latest_season(games)
        league_average = calculate_league_average_points(games, latest_season)
        baseline, sample_size = build_baseline_matrix(games, latest_season)
        home_context = build_team_context(games, home_code, latest_season)
        away_context = build_team_context(games, away_code, latest_season)
        self.logger.debug("Baseline built", latest_season=latest_season, sample_size=sample_size)

        if home_context is None or away_context is None:
            warnings.append(LIMITED_HISTORY_WARNING)

        moneylines, espn_teams = await asyncio.gather(
            self._load_moneylines(warnings, sources_used),
            self._load_espn_teams(warnings),
        )

        home_team = get_team_by_code(home_code) or Team(home_code, home_code)
        away_team = get_team_by_code(away_code) or Team(away_code, away_code)

        home_stats, away_stats, home_form, away_form = await asyncio.gather(
            self.espn.load_team_stats(home_code),
            self.espn.load_team_stats(away_code),
            self.sportsdb.load_recent_form(
                home_code, team_name_candidates(home_team, espn_teams.get(home_code))
            ),
            self.sportsdb.load_recent_form(
                away_code, team_name_candidates(away_team, espn_teams.get(away_code))
            ),
        )

        has_team_stats = home_stats is not None or away_stats is not None
        if has_team_stats:
            sources_used.append(OddsSource.ESPN_TEAM_STATS)
        else:
            warnings.append(TEAM_STATS_UNAVAILABLE_WARNING)

        has_recent_form = home_form is not None or away_form is not None
        if has_recent_form:
            sources_used.append(OddsSource.SPORTSDB_RECENT_FORM)
        else:
            warnings.append(RECENT_FORM_UNAVAILABLE_WARNING)

        home_market = calculate_market_implied_probability(moneylines, home_code, latest_season)
        away_market = calculate_market_implied_probability(moneylines, away_code, latest_season)
        has_market = home_market is not None and away_market is not None

        team_matrix = build_team_digit_matrix(home_context, away_context, home_form, away_form)

        min_points = self.settings.min_expected_points
        max_points = self.settings.max_expected_points
        expected_home = estimate_expected_points(
            home_context, away_context, home_stats, away_stats, home_form,
            league_average, min_points, max_points,
        )
        expected_away = estimate_expected_points(
            away_context, home_context, away_stats, home_stats, away_form,
            league_average, min_points, max_points,
        )

        if has_market:
            market_edge = home_market - away_market
            shift = market_edge * self.settings.market_points_per_edge
            expected_home = clamp(expected_home + shift, min_points, max_points)
            expected_away = clamp(expected_away - shift, min_points, max_points)

        simulation_matrix = build_simulation_matrix(expected_home, expected_away)
        weights = rebalance_blend_weights(has_team_stats, has_recent_form, has_market, self.settings)

        digit_probabilities = blend_matrices([
            (baseline, weights.baseline),
            (team_matrix, weights.team),
            (simulation_matrix, weights.simulation),
        ])

        model = CachedDigitModel(
            digit_probabilities=digit_probabilities,
            generated_at=_now_iso(),
            source_mode=resolve_source_mode(sources_used),
            sources_used=sources_used,
            warnings=warnings,
            expected_home_points=expected_home,
            expected_away_points=expected_away,
        )
        self.logger.info(
            "Model computed",
            home=home_code,
            away=away_code,
            source_mode=model.source_mode.value,
            weights=(round(weights.baseline, 3), round(weights.team, 3), round(weights.simulation, 3)),
        )
        return model

    async def _load_moneylines(
        self,
        warnings: list[str],
        sources_used: list[OddsSource],
    ) -> list[MoneylineRecord]:
        try:
            moneylines = await self.nflverse.load_closing_moneylines()
        except SourceUnavailableError as e:
            self.logger.warning("Closing lines unavailable", error=str(e))
            warnings.append(MONEYLINES_UNAVAILABLE_WARNING)
            return []
        sources_used.append(OddsSource.NFLVERSE_CLOSING_LINES)
        return moneylines

    async def _load_espn_teams(self, warnings: list[str]) -> dict[str, TeamDescriptor]:
        try:
            return await self.espn.load_teams()
        except SourceUnavailableError as e:
            self.logger.warning("Team metadata unavailable", error=str(e))
            warnings.append(TEAM_METADATA_UNAVAILABLE_WARNING)
            return {}
