"""
Realtime Odds Engine.

Re-estimates the digit matrix from a live snapshot:

1. Feature vector from the trailing window of plays (momentum, penalty and
   turnover pressure, scoring rate, pace).
2. Expected additional points per side, blending the pre-game scoring
   rate with the observed one as the game progresses.
3. Seeded Monte Carlo over scoring events and outcome mixes.
4. Blend with the pre-game prior; the live weight grows as time runs out.

The engine is a pure function of (base model, snapshot, labels): the
generator is seeded from a hash of stable snapshot fields, so an unchanged
snapshot reproduces the same matrix.
"""

import math
from dataclasses import dataclass
from typing import Optional, Sequence, Union

import numpy as np
import structlog

from config.settings import RealtimeSettings
from squareodds.engine.matrix import (
    blend_matrices,
    build_board,
    clamp,
    normalize_matrix,
    single_cell_matrix,
    validate_labels,
)
from squareodds.models.schemas import (
    DIGIT_COUNT,
    CachedDigitModel,
    DigitMatrix,
    GameStatus,
    LiveFeatureVector,
    LiveGameSnapshot,
    OddsSource,
    RealtimeSquareOddsResult,
    SquareOddsResult,
)

logger = structlog.get_logger()


TOTAL_REGULATION_SECONDS = 4 * 15 * 60
PERIOD_SECONDS = 15 * 60
LATE_GAME_SECONDS = 12 * 60

PREGAME_WARNING = "Live feed connected but game has not started. Realtime adjustments are minimal."
UNKNOWN_CLOCK_WARNING = (
    "Live clock unavailable. Remaining time estimated from the start of the current period."
)

LIVE_SOURCES = (
    OddsSource.ESPN_LIVE_SCOREBOARD,
    OddsSource.ESPN_LIVE_SUMMARY,
    OddsSource.LIVE_COMMENTARY_SENTIMENT,
)

# Used when every outcome weight is degenerate
DEFAULT_OUTCOME_MIX = ((3, 0.34), (7, 0.51), (8, 0.06), (6, 0.06), (2, 0.03))

PriorModel = Union[SquareOddsResult, CachedDigitModel]


@dataclass
class ScoringProfile:
    """Expected scoring events for one side and the points mix per event."""
    expected_scoring_events: float
    outcomes: list[tuple[int, float]]  # (points, probability)


# =============================================================================
# Features
# =============================================================================

def resolve_remaining_seconds(snapshot: LiveGameSnapshot) -> tuple[int, bool]:
    """
    Remaining game seconds and whether the clock was known.

    An unknown clock falls back to the start of the current period.
    """
    remaining = snapshot.clock.seconds_remaining_game
    if remaining is not None:
        return remaining, True

    if snapshot.status.is_finished:
        return 0, False
    if snapshot.status == GameStatus.PREGAME:
        return TOTAL_REGULATION_SECONDS, False
    return max(0, TOTAL_REGULATION_SECONDS - (snapshot.clock.period - 1) * PERIOD_SECONDS), False


def build_feature_vector(
    snapshot: LiveGameSnapshot,
    window_plays: int = 80,
    recency_decay: float = 13.0,
) -> LiveFeatureVector:
    """Recency-weighted per-side features from the trailing plays."""
    remaining, clock_known = resolve_remaining_seconds(snapshot)
    elapsed = int(clamp(TOTAL_REGULATION_SECONDS - remaining, 0, TOTAL_REGULATION_SECONDS))

    plays = snapshot.plays[-window_plays:] if window_plays > 0 else ()
    count = len(plays)

    home = {"scoring": 0.0, "penalties": 0.0, "turnovers": 0.0, "momentum": 0.0}
    away = {"scoring": 0.0, "penalties": 0.0, "turnovers": 0.0, "momentum": 0.0}
    weight_total = 0.0

    for index, play in enumerate(plays):
        weight = math.exp(-(count - 1 - index) / recency_decay)

        if play.team_code == snapshot.home_team_code:
            own, opponent = home, away
        elif play.team_code == snapshot.away_team_code:
            own, opponent = away, home
        else:
            home["momentum"] += snapshot.sentiment.home * 0.15 * weight
            away["momentum"] += snapshot.sentiment.away * 0.15 * weight
            weight_total += weight
            continue

        if play.is_scoring_play:
            own["scoring"] += weight
            own["momentum"] += 1.7 * weight
        if play.is_penalty:
            own["penalties"] += weight
            own["momentum"] -= 1.15 * weight
        if play.is_turnover:
            own["turnovers"] += weight
            own["momentum"] -= 2.0 * weight
            opponent["momentum"] += 1.2 * weight
        if play.is_explosive_play:
            own["momentum"] += 0.8 * weight
        own["momentum"] += play.sentiment_score * 0.7 * weight
        weight_total += weight

    effective_weight = max(weight_total, 1.0)
    window_minutes = clamp(max(elapsed / 60, 1.0), 1.0, 60.0)

    home_penalty = home["penalties"] / effective_weight
    away_penalty = away["penalties"] / effective_weight
    home_turnover = home["turnovers"] / effective_weight
    away_turnover = away["turnovers"] / effective_weight

    home_momentum = (
        home["momentum"]
        + snapshot.sentiment.home * 1.25
        - home_penalty * 0.9
        - home_turnover * 1.35
    )
    away_momentum = (
        away["momentum"]
        + snapshot.sentiment.away * 1.25
        - away_penalty * 0.9
        - away_turnover * 1.35
    )

    return LiveFeatureVector(
        remaining_game_seconds=remaining,
        elapsed_game_seconds=elapsed,
        clock_known=clock_known,
        home_momentum=clamp(home_momentum, -2.6, 2.6),
        away_momentum=clamp(away_momentum, -2.6, 2.6),
        home_penalty_pressure=clamp(home_penalty, 0.0, 2.5),
        away_penalty_pressure=clamp(away_penalty, 0.0, 2.5),
        home_turnover_pressure=clamp(home_turnover, 0.0, 2.5),
        away_turnover_pressure=clamp(away_turnover, 0.0, 2.5),
        home_recent_scoring_rate=clamp(home["scoring"] / effective_weight, 0.0, 2.0),
        away_recent_scoring_rate=clamp(away["scoring"] / effective_weight, 0.0, 2.0),
        play_pace_per_minute=clamp(count / window_minutes, 0.0, 10.0),
    )


# =============================================================================
# Scoring model
# =============================================================================

def estimate_additional_points(
    base_expected_points: float,
    current_score: int,
    own_momentum: float,
    opponent_momentum: float,
    own_scoring_rate: float,
    own_penalty_pressure: float,
    own_turnover_pressure: float,
    play_pace_per_minute: float,
    remaining_seconds: int,
    elapsed_seconds: int,
    score_diff: int,
) -> float:
    """
    Points one side is expected to add before the final whistle.

    ``score_diff`` is own score minus opponent score.
    """
    remaining_ratio = clamp(remaining_seconds / TOTAL_REGULATION_SECONDS, 0.0, 1.0)
    elapsed_ratio = clamp(elapsed_seconds / TOTAL_REGULATION_SECONDS, 0.0, 1.0)
    base_rate = base_expected_points / TOTAL_REGULATION_SECONDS
    observed_rate = current_score / max(elapsed_seconds, 8 * 60)

    current_score_weight = clamp(
        0.4 + elapsed_ratio * 0.38 + (1 - remaining_ratio) * 0.3,
        0.35,
        0.97,
    )
    rate = base_rate * (1 - current_score_weight) + observed_rate * current_score_weight

    rate *= 1 + own_momentum * 0.085
    rate *= 1 + own_scoring_rate * 0.32
    rate *= 1 + clamp(play_pace_per_minute - 2.2, -1.4, 2.2) * 0.09
    rate *= 1 + (1 - remaining_ratio) * 0.1

    rate *= 1 - own_penalty_pressure * 0.22
    rate *= 1 - own_turnover_pressure * 0.34
    rate *= 1 - clamp(opponent_momentum, -1.5, 2.5) * 0.055

    # Trailing late: urgency. Leading late: clock management.
    if remaining_seconds <= 9 * 60 and score_diff < 0:
        rate *= 1 + clamp(abs(score_diff) / 15, 0.0, 0.4)
    if remaining_seconds <= 7 * 60 and score_diff > 0:
        rate *= 1 - clamp(score_diff / 18, 0.0, 0.3)

    cap = clamp(12 + base_expected_points * (remaining_ratio * 1.1 + 0.35), 16.0, 42.0)
    return clamp(rate * remaining_seconds, 0.0, cap)


def normalize_outcome_weights(outcomes: Sequence[tuple[int, float]]) -> list[tuple[int, float]]:
    positive = [
        (points, weight) for points, weight in outcomes
        if points > 0 and math.isfinite(weight) and weight > 0
    ]
    if not positive:
        return list(DEFAULT_OUTCOME_MIX)

    total = sum(weight for _, weight in positive)
    return [(points, weight / total) for points, weight in positive]


def estimate_remaining_drives(
    remaining_seconds: int,
    play_pace_per_minute: float,
    trailing_pressure: float,
) -> float:
    """Possessions left per team."""
    pace = clamp(play_pace_per_minute, 1.2, 4.8)
    plays_per_drive = clamp(6 - trailing_pressure * 0.9, 4.8, 6.2)
    drive_seconds = (plays_per_drive / pace) * 60
    return clamp(remaining_seconds / max(drive_seconds * 2, 90), 0.35, 13.0)


def build_team_scoring_profile(
    expected_additional_points: float,
    own_momentum: float,
    opponent_momentum: float,
    own_scoring_rate: float,
    own_penalty_pressure: float,
    own_turnover_pressure: float,
    opponent_turnover_pressure: float,
    play_pace_per_minute: float,
    remaining_seconds: int,
    score_diff: int,
) -> ScoringProfile:
    """Outcome mix (FG / TD+XP / TD+2 / TD / safety) and expected event count for one side."""
    remaining_ratio = clamp(remaining_seconds / TOTAL_REGULATION_SECONDS, 0.0, 1.0)
    urgency = clamp((LATE_GAME_SECONDS - remaining_seconds) / LATE_GAME_SECONDS, 0.0, 1.0)
    trailing = clamp(abs(score_diff) / 17, 0.0, 1.0) if score_diff < 0 else 0.0
    leading = clamp(score_diff / 17, 0.0, 1.0) if score_diff > 0 else 0.0
    momentum_edge = clamp(own_momentum - opponent_momentum, -2.8, 2.8)

    field_goal = 0.34 + own_penalty_pressure * 0.07 + leading * (0.08 + urgency * 0.06)
    touchdown_xp = 0.49 + momentum_edge * 0.05 + own_scoring_rate * 0.2 - own_penalty_pressure * 0.05
    touchdown_two = 0.04 + trailing * urgency * 0.22 + max(0.0, momentum_edge) * 0.02
    touchdown_missed_xp = 0.03 + own_penalty_pressure * 0.02
    safety = 0.01 + opponent_turnover_pressure * 0.03 + trailing * urgency * 0.025
    defensive_touchdown = 0.02 + opponent_turnover_pressure * 0.08 + max(0.0, momentum_edge) * 0.01

    if remaining_seconds <= 3 * 60 and trailing >= 0.2:
        touchdown_two += 0.08
        field_goal *= 0.9
    if remaining_seconds <= 2 * 60 and leading >= 0.2:
        field_goal += 0.1
        touchdown_two *= 0.65

    outcomes = normalize_outcome_weights([
        (3, clamp(field_goal, 0.15, 0.62)),
        (7, clamp(touchdown_xp, 0.22, 0.72) + clamp(defensive_touchdown, 0.01, 0.14)),
        (8, clamp(touchdown_two, 0.01, 0.24)),
        (6, clamp(touchdown_missed_xp, 0.01, 0.08)),
        (2, clamp(safety, 0.003, 0.07)),
    ])
    expected_per_event = sum(points * probability for points, probability in outcomes)

    drives = estimate_remaining_drives(remaining_seconds, play_pace_per_minute, trailing)

    raw_events = expected_additional_points / max(expected_per_event, 2.5)
    pace_multiplier = 1 + clamp(play_pace_per_minute - 2.2, -1.2, 2.8) * 0.1
    risk_multiplier = 1 + trailing * urgency * 0.25 - leading * urgency * 0.15
    disruption_multiplier = clamp(
        1 - own_turnover_pressure * 0.1 - own_penalty_pressure * 0.05, 0.55, 1.15
    )
    momentum_multiplier = 1 + momentum_edge * 0.06
    compression_multiplier = 1 + (1 - remaining_ratio) * 0.08

    expected_events = clamp(
        raw_events
        * pace_multiplier
        * risk_multiplier
        * disruption_multiplier
        * momentum_multiplier
        * compression_multiplier,
        0.0,
        drives * 0.92,
    )
    return ScoringProfile(expected_scoring_events=expected_events, outcomes=outcomes)


# =============================================================================
# Monte Carlo
# =============================================================================

FNV_OFFSET_BASIS = 2166136261
FNV_PRIME = 16777619


def fnv1a_hash(value: str) -> int:
    """32-bit FNV-1a over the UTF-8 bytes of value."""
    hash_value = FNV_OFFSET_BASIS
    for byte in value.encode("utf-8"):
        hash_value ^= byte
        hash_value = (hash_value * FNV_PRIME) & 0xFFFFFFFF
    return hash_value


def snapshot_seed(snapshot: LiveGameSnapshot) -> int:
    """Seed from the snapshot fields that change whenever the game state does."""
    last_play_id = snapshot.plays[-1].id if snapshot.plays else "none"
    basis = "|".join([
        snapshot.event_id,
        snapshot.status.value,
        snapshot.status_detail,
        str(snapshot.home_score),
        str(snapshot.away_score),
        str(snapshot.clock.period),
        snapshot.clock.display_clock,
        last_play_id,
        str(len(snapshot.plays)),
    ])
    return fnv1a_hash(basis)


def get_simulation_runs(remaining_seconds: int, settings: Optional[RealtimeSettings] = None) -> int:
    settings = settings or RealtimeSettings()
    if remaining_seconds <= 8 * 60:
        return settings.runs_final_minutes
    if remaining_seconds <= 20 * 60:
        return settings.runs_late
    return settings.runs_default


def _sample_points(
    rng: np.random.Generator,
    profile: ScoringProfile,
    event_counts: np.ndarray,
) -> np.ndarray:
    """Total points per run for the given per-run event counts."""
    runs = len(event_counts)
    total_events = int(event_counts.sum())
    if total_events == 0:
        return np.zeros(runs, dtype=np.int64)

    points = np.array([p for p, _ in profile.outcomes], dtype=np.int64)
    probabilities = np.array([prob for _, prob in profile.outcomes], dtype=float)
    draws = rng.choice(points, size=total_events, p=probabilities / probabilities.sum())
    run_index = np.repeat(np.arange(runs), event_counts)
    return np.bincount(run_index, weights=draws, minlength=runs).astype(np.int64)


def simulate_live_matrix(
    snapshot: LiveGameSnapshot,
    features: LiveFeatureVector,
    expected_home_additional: float,
    expected_away_additional: float,
    settings: Optional[RealtimeSettings] = None,
) -> DigitMatrix:
    """Normalized histogram of final digit pairs over seeded simulation runs."""
    settings = settings or RealtimeSettings()
    remaining = features.remaining_game_seconds
    runs = get_simulation_runs(remaining, settings)
    rng = np.random.default_rng(snapshot_seed(snapshot))
    score_diff = snapshot.home_score - snapshot.away_score

    home_profile = build_team_scoring_profile(
        expected_additional_points=expected_home_additional,
        own_momentum=features.home_momentum,
        opponent_momentum=features.away_momentum,
        own_scoring_rate=features.home_recent_scoring_rate,
        own_penalty_pressure=features.home_penalty_pressure,
        own_turnover_pressure=features.home_turnover_pressure,
        opponent_turnover_pressure=features.away_turnover_pressure,
        play_pace_per_minute=features.play_pace_per_minute,
        remaining_seconds=remaining,
        score_diff=score_diff,
    )
    away_profile = build_team_scoring_profile(
        expected_additional_points=expected_away_additional,
        own_momentum=features.away_momentum,
        opponent_momentum=features.home_momentum,
        own_scoring_rate=features.away_recent_scoring_rate,
        own_penalty_pressure=features.away_penalty_pressure,
        own_turnover_pressure=features.away_turnover_pressure,
        opponent_turnover_pressure=features.home_turnover_pressure,
        play_pace_per_minute=features.play_pace_per_minute,
        remaining_seconds=remaining,
        score_diff=-score_diff,
    )

    home_events = rng.poisson(home_profile.expected_scoring_events, size=runs)
    away_events = rng.poisson(away_profile.expected_scoring_events, size=runs)
    home_additional = _sample_points(rng, home_profile, home_events)
    away_additional = _sample_points(rng, away_profile, away_events)

    # One-possession finish: the side behind on projected score gets one more chance
    if remaining <= 2 * 60:
        extra_chance = rng.random(runs) < settings.one_possession_probability
        coin = rng.random(runs) < 0.5
        home_extra = _sample_points(rng, home_profile, np.ones(runs, dtype=np.int64))
        away_extra = _sample_points(rng, away_profile, np.ones(runs, dtype=np.int64))

        projected_home = snapshot.home_score + home_additional
        projected_away = snapshot.away_score + away_additional
        tied = projected_home == projected_away
        home_gets = extra_chance & ((projected_home < projected_away) | (tied & coin))
        away_gets = extra_chance & ((projected_away < projected_home) | (tied & ~coin))

        home_additional = home_additional + np.where(home_gets, home_extra, 0)
        away_additional = away_additional + np.where(away_gets, away_extra, 0)

    home_digits = (snapshot.home_score + home_additional) % DIGIT_COUNT
    away_digits = (snapshot.away_score + away_additional) % DIGIT_COUNT
    counts = np.bincount(
        home_digits * DIGIT_COUNT + away_digits,
        minlength=DIGIT_COUNT * DIGIT_COUNT,
    ).reshape(DIGIT_COUNT, DIGIT_COUNT)
    return normalize_matrix(counts)


# =============================================================================
# Blend
# =============================================================================

def get_live_blend_weight(features: LiveFeatureVector, snapshot: LiveGameSnapshot) -> float:
    """Share of the live matrix in the final blend."""
    if snapshot.status == GameStatus.PREGAME:
        return 0.2

    remaining = features.remaining_game_seconds
    if remaining <= 2 * 60:
        return 0.99
    if remaining <= 5 * 60:
        return 0.95
    if remaining <= 10 * 60:
        return 0.9

    elapsed_ratio = clamp(features.elapsed_game_seconds / TOTAL_REGULATION_SECONDS, 0.0, 1.0)
    remaining_ratio = clamp(remaining / TOTAL_REGULATION_SECONDS, 0.0, 1.0)
    score_signal = clamp((snapshot.home_score + snapshot.away_score) / 56, 0.0, 1.0)
    diff_signal = clamp(abs(snapshot.home_score - snapshot.away_score) / 21, 0.0, 1.0)
    late_pressure = clamp((LATE_GAME_SECONDS - remaining) / LATE_GAME_SECONDS, 0.0, 1.0)

    weight = (
        0.36
        + elapsed_ratio * 0.34
        + (1 - remaining_ratio) * 0.27
        + score_signal * 0.1
        + diff_signal * 0.05
        + late_pressure * 0.08
    )
    return clamp(weight, 0.36, 0.95)


def _blend_expected_points(
    base_points: float,
    current_score: int,
    additional: float,
    live_weight: float,
) -> float:
    if live_weight >= 0.999:
        return float(current_score)
    expectation_weight = clamp(0.08 + live_weight * 0.92, 0.08, 1.0)
    blended = base_points * (1 - expectation_weight) + (current_score + additional) * expectation_weight
    return clamp(blended, 0.0, 70.0)


def build_realtime_odds(
    base_model: PriorModel,
    snapshot: LiveGameSnapshot,
    row_labels: Sequence[int],
    col_labels: Sequence[int],
    settings: Optional[RealtimeSettings] = None,
) -> RealtimeSquareOddsResult:
    """
    Blend the pre-game model with a live simulation.

    Raises:
        ValueError: if the labels are not two lists of 10 digits.
    """
    validate_labels(row_labels, col_labels)
    settings = settings or RealtimeSettings()

    features = build_feature_vector(
        snapshot,
        window_plays=settings.feature_window_plays,
        recency_decay=settings.play_recency_decay,
    )

    if snapshot.status.is_finished:
        live_matrix = single_cell_matrix(snapshot.home_score, snapshot.away_score)
        live_weight = 1.0
        home_additional = 0.0
        away_additional = 0.0
    else:
        score_diff = snapshot.home_score - snapshot.away_score
        home_additional = estimate_additional_points(
            base_model.expected_home_points,
            snapshot.home_score,
            features.home_momentum,
            features.away_momentum,
            features.home_recent_scoring_rate,
            features.home_penalty_pressure,
            features.home_turnover_pressure,
            features.play_pace_per_minute,
            features.remaining_game_seconds,
            features.elapsed_game_seconds,
            score_diff,
        )
        away_additional = estimate_additional_points(
            base_model.expected_away_points,
            snapshot.away_score,
            features.away_momentum,
            features.home_momentum,
            features.away_recent_scoring_rate,
            features.away_penalty_pressure,
            features.away_turnover_pressure,
            features.play_pace_per_minute,
            features.remaining_game_seconds,
            features.elapsed_game_seconds,
            -score_diff,
        )
        live_matrix = simulate_live_matrix(snapshot, features, home_additional, away_additional, settings)
        live_weight = get_live_blend_weight(features, snapshot)

    live_weight = clamp(live_weight, 0.0, 1.0)
    digit_probabilities = blend_matrices([
        (base_model.digit_probabilities, 1 - live_weight),
        (live_matrix, live_weight),
    ])

    warnings = list(base_model.warnings)
    if snapshot.status == GameStatus.PREGAME:
        warnings.append(PREGAME_WARNING)
    if not features.clock_known:
        warnings.append(UNKNOWN_CLOCK_WARNING)

    sources_used = list(base_model.sources_used)
    for source in LIVE_SOURCES:
        if source not in sources_used:
            sources_used.append(source)

    result = RealtimeSquareOddsResult(
        board_percentages=build_board(digit_probabilities, row_labels, col_labels),
        digit_probabilities=digit_probabilities,
        generated_at=snapshot.fetched_at,
        source_mode=base_model.source_mode,
        sources_used=sources_used,
        warnings=warnings,
        expected_home_points=_blend_expected_points(
            base_model.expected_home_points, snapshot.home_score, home_additional, live_weight
        ),
        expected_away_points=_blend_expected_points(
            base_model.expected_away_points, snapshot.away_score, away_additional, live_weight
        ),
        live_event_id=snapshot.event_id,
        live_status=snapshot.status,
        live_status_detail=snapshot.status_detail,
        live_clock=f"Q{snapshot.clock.period} {snapshot.clock.display_clock}",
        live_snapshot_at=snapshot.fetched_at,
        feature_vector=features,
    )
    logger.debug("Realtime odds built", live_weight=round(live_weight, 3), **result.to_log())
    return result
