"""
Tests for the realtime odds engine.
"""

import pytest

from config.settings import RealtimeSettings
from squareodds.engine.pregame import build_fallback_model
from squareodds.engine.realtime import (
    LIVE_SOURCES,
    PREGAME_WARNING,
    UNKNOWN_CLOCK_WARNING,
    build_feature_vector,
    build_realtime_odds,
    build_team_scoring_profile,
    estimate_additional_points,
    estimate_remaining_drives,
    fnv1a_hash,
    get_live_blend_weight,
    get_simulation_runs,
    normalize_outcome_weights,
    resolve_remaining_seconds,
    snapshot_seed,
)
from squareodds.models.schemas import GameStatus, LiveFeatureVector, OddsSource


IDENTITY = list(range(10))


@pytest.fixture
def base_model():
    """Pre-game prior at 23-21."""
    return build_fallback_model([])


@pytest.fixture
def fast_settings():
    """Fewer simulation runs keep the tests quick."""
    return RealtimeSettings(runs_final_minutes=2_000, runs_late=1_500, runs_default=1_000)


def board_total(result) -> float:
    return sum(sum(row) for row in result.board_percentages)


class TestSeeding:
    """Tests for the deterministic seed."""

    def test_fnv1a_known_values(self):
        assert fnv1a_hash("") == 2166136261
        assert fnv1a_hash("a") == 0xE40C292C

    def test_seed_tracks_game_state(self, make_snapshot, make_play):
        snapshot = make_snapshot()
        assert snapshot_seed(snapshot) == snapshot_seed(make_snapshot())
        assert snapshot_seed(snapshot) != snapshot_seed(make_snapshot(home_score=17))
        assert snapshot_seed(snapshot) != snapshot_seed(make_snapshot(plays=(make_play("p1"),)))

    def test_same_snapshot_same_result(self, base_model, make_snapshot, fast_settings):
        snapshot = make_snapshot()
        first = build_realtime_odds(base_model, snapshot, IDENTITY, IDENTITY, fast_settings)
        second = build_realtime_odds(base_model, snapshot, IDENTITY, IDENTITY, fast_settings)
        assert first.model_dump() == second.model_dump()
        assert first.generated_at == snapshot.fetched_at


class TestBuildRealtimeOdds:
    """End-to-end realtime odds."""

    def test_final_score_dominates(self, base_model, make_snapshot):
        """A final 14-10 puts all mass on home digit 4, away digit 0."""
        rows = [5, 0, 1, 2, 3, 4, 6, 7, 8, 9]
        snapshot = make_snapshot(
            status=GameStatus.FINAL, home_score=14, away_score=10,
            period=4, display_clock="0:00", seconds_remaining_game=0,
        )

        result = build_realtime_odds(base_model, snapshot, rows, IDENTITY)

        assert result.expected_home_points == 14
        assert result.expected_away_points == 10
        cells = [
            (value, i, j)
            for i, row in enumerate(result.board_percentages)
            for j, value in enumerate(row)
        ]
        best, best_row, best_col = max(cells)
        assert (best_row, best_col) == (5, 0)
        assert rows[best_row] == 4
        assert best == pytest.approx(100.0)

    def test_in_progress_board(self, base_model, make_snapshot, fast_settings):
        result = build_realtime_odds(base_model, make_snapshot(), IDENTITY, IDENTITY, fast_settings)

        assert board_total(result) == pytest.approx(100.0)
        assert sum(sum(row) for row in result.digit_probabilities) == pytest.approx(1.0)
        assert result.live_clock == "Q3 7:30"
        assert result.live_event_id == "401547000"
        assert result.engine_mode == "realtime"
        assert result.warnings == []
        # Already at 14-10; more points still to come
        assert result.expected_home_points > 14
        assert result.expected_away_points > 10

    def test_one_possession_finish(self, base_model, make_snapshot, fast_settings):
        snapshot = make_snapshot(period=4, display_clock="1:00", seconds_remaining_game=60)
        result = build_realtime_odds(base_model, snapshot, IDENTITY, IDENTITY, fast_settings)
        assert board_total(result) == pytest.approx(100.0)
        assert result.feature_vector.remaining_game_seconds == 60

    def test_pregame_warning(self, base_model, make_snapshot, fast_settings):
        snapshot = make_snapshot(
            status=GameStatus.PREGAME, home_score=0, away_score=0,
            period=1, display_clock="15:00", seconds_remaining_game=3600,
        )
        result = build_realtime_odds(base_model, snapshot, IDENTITY, IDENTITY, fast_settings)
        assert result.warnings == [PREGAME_WARNING]

    def test_unknown_clock_warning(self, base_model, make_snapshot, fast_settings):
        snapshot = make_snapshot(display_clock="--:--", seconds_remaining_game=None)
        result = build_realtime_odds(base_model, snapshot, IDENTITY, IDENTITY, fast_settings)

        assert UNKNOWN_CLOCK_WARNING in result.warnings
        assert result.feature_vector.clock_known is False
        # Start of the third quarter
        assert result.feature_vector.remaining_game_seconds == 1800
        assert board_total(result) == pytest.approx(100.0)

    def test_base_warnings_and_sources_carried(self, make_snapshot, fast_settings):
        base = build_fallback_model(["Games feed down"])
        result = build_realtime_odds(base, make_snapshot(), IDENTITY, IDENTITY, fast_settings)

        assert result.warnings == ["Games feed down"]
        assert result.sources_used == [OddsSource.FALLBACK_MODEL, *LIVE_SOURCES]

        # Realtime results can be used as the prior; sources stay unique
        again = build_realtime_odds(result, make_snapshot(), IDENTITY, IDENTITY, fast_settings)
        assert again.sources_used == result.sources_used

    def test_invalid_labels(self, base_model, make_snapshot):
        with pytest.raises(ValueError):
            build_realtime_odds(base_model, make_snapshot(), IDENTITY, IDENTITY[:5])


class TestFeatures:
    """Tests for the live feature vector."""

    def test_scoring_play_builds_momentum(self, make_snapshot, make_play):
        plays = (
            make_play("1", "Run for 2 yards", team_code="NE"),
            make_play("2", "Touchdown", team_code="SEA", is_scoring_play=True),
        )
        features = build_feature_vector(make_snapshot(plays=plays))

        assert features.home_momentum > features.away_momentum
        assert features.home_recent_scoring_rate > 0
        assert features.away_recent_scoring_rate == 0

    def test_turnover_pressure(self, make_snapshot, make_play):
        plays = (make_play("1", "Interception", team_code="NE", is_turnover=True),)
        features = build_feature_vector(make_snapshot(plays=plays))

        assert features.away_turnover_pressure == pytest.approx(1.0)
        assert features.away_momentum < 0 < features.home_momentum

    def test_features_are_clamped(self, make_snapshot, make_play):
        plays = tuple(
            make_play(str(i), "Touchdown", team_code="SEA", is_scoring_play=True, is_explosive_play=True)
            for i in range(120)
        )
        features = build_feature_vector(make_snapshot(plays=plays))

        assert features.home_momentum == 2.6
        assert features.home_recent_scoring_rate <= 2.0
        assert features.play_pace_per_minute <= 10.0

    def test_remaining_time_resolution(self, make_snapshot):
        assert resolve_remaining_seconds(make_snapshot()) == (1350, True)
        assert resolve_remaining_seconds(make_snapshot(period=2, seconds_remaining_game=None)) == (2700, False)
        assert resolve_remaining_seconds(
            make_snapshot(status=GameStatus.FINAL, seconds_remaining_game=None)
        ) == (0, False)


class TestScoringModel:
    """Tests for expected points, outcome mix and blend weights."""

    def test_additional_points_bounds(self):
        points = estimate_additional_points(24.0, 14, 0.5, -0.2, 0.3, 0.0, 0.0, 2.2, 1350, 2250, 4)
        assert 0.0 < points <= 12 + 24.0 * (1350 / 3600 * 1.1 + 0.35)

    def test_no_time_no_points(self):
        assert estimate_additional_points(24.0, 14, 0.0, 0.0, 0.0, 0.0, 0.0, 2.2, 0, 3600, 0) == 0.0

    def test_profile(self):
        profile = build_team_scoring_profile(
            expected_additional_points=10.0,
            own_momentum=0.5,
            opponent_momentum=0.0,
            own_scoring_rate=0.2,
            own_penalty_pressure=0.1,
            own_turnover_pressure=0.0,
            opponent_turnover_pressure=0.1,
            play_pace_per_minute=2.2,
            remaining_seconds=1350,
            score_diff=-4,
        )
        assert sum(prob for _, prob in profile.outcomes) == pytest.approx(1.0)
        assert [points for points, _ in profile.outcomes] == [3, 7, 8, 6, 2]
        assert 0 < profile.expected_scoring_events <= estimate_remaining_drives(1350, 2.2, 4 / 17) * 0.92

    def test_degenerate_outcomes_use_default_mix(self):
        outcomes = normalize_outcome_weights([(3, 0.0), (7, float("nan"))])
        assert sum(prob for _, prob in outcomes) == pytest.approx(1.0)
        assert outcomes[1][0] == 7

    def test_simulation_runs(self):
        assert get_simulation_runs(300) == 12_000
        assert get_simulation_runs(900) == 10_000
        assert get_simulation_runs(3000) == 8_000

    @pytest.mark.parametrize("remaining,expected", [(100, 0.99), (250, 0.95), (500, 0.9)])
    def test_late_blend_weights(self, make_snapshot, remaining, expected):
        features = LiveFeatureVector(remaining_game_seconds=remaining, elapsed_game_seconds=3600 - remaining)
        assert get_live_blend_weight(features, make_snapshot()) == expected

    def test_pregame_blend_weight(self, make_snapshot):
        features = LiveFeatureVector(remaining_game_seconds=3600, elapsed_game_seconds=0)
        assert get_live_blend_weight(features, make_snapshot(status=GameStatus.PREGAME)) == 0.2

    def test_mid_game_blend_weight_range(self, make_snapshot):
        features = LiveFeatureVector(remaining_game_seconds=1350, elapsed_game_seconds=2250)
        weight = get_live_blend_weight(features, make_snapshot())
        assert 0.36 <= weight <= 0.95
