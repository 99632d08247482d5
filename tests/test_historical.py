"""
Tests for the historical model builder, the nflverse parsers and team resolution.
"""

import asyncio
import math

import pytest

from squareodds.engine.historical import (
    DEFAULT_LEAGUE_AVERAGE_POINTS,
    american_odds_to_implied_probability,
    build_baseline_matrix,
    build_team_context,
    calculate_league_average_points,
    calculate_market_implied_probability,
    get_latest_season,
)
from squareodds.feeds.base import MalformedResponseError, SourceUnavailableError
from squareodds.feeds.nflverse import (
    NflverseSource,
    parse_csv_with_selected_columns,
    parse_game_records,
    parse_moneyline_records,
    parse_numeric,
)
from squareodds.models.schemas import GameRecord, MoneylineRecord
from squareodds.models.teams import (
    UnsupportedTeamError,
    canonical_team_code,
    resolve_team,
)


GAMES_CSV = """game_id,season,game_type,gameday,away_team,away_score,home_team,home_score,total_line,spread_line
2023_01_NE_SEA,2023,REG,2023-09-10,NE,17,SEA,24,44.5,3.0
2023_02_SEA_LA,2023,REG,2023-09-17,SEA,30,LA,13,,
2024_01_OAK_KC,2024,REG,2024-09-08,LV,,KC,,47.5,-6.5

2024_02_KC_SEA,2024,REG,2024-09-15,KC,20,SEA,27,46.0,1.5
"""


@pytest.fixture
def games():
    """Two seasons of games for SEA, NE and KC."""
    return [
        GameRecord(2023, "2023-09-10", "NE", 17, "SEA", 24),
        GameRecord(2023, "2023-09-17", "SEA", 30, "LAR", 13),
        GameRecord(2024, "2024-09-15", "KC", 20, "SEA", 27),
        GameRecord(2024, "2024-09-22", "NE", 10, "KC", 31),
    ]


class TestOdds:
    """Tests for American odds conversion."""

    def test_favorite(self):
        assert american_odds_to_implied_probability(-110) == pytest.approx(110 / 210)

    def test_underdog(self):
        assert american_odds_to_implied_probability(150) == pytest.approx(0.4)

    def test_degenerate_odds_are_coin_flip(self):
        assert american_odds_to_implied_probability(0) == 0.5
        assert american_odds_to_implied_probability(math.inf) == 0.5


class TestBaseline:
    """Tests for the league baseline matrix."""

    def test_baseline_counts_games(self, games):
        matrix, sample = build_baseline_matrix(games, 2024)
        assert sample == 4
        assert sum(sum(row) for row in matrix) == pytest.approx(1.0)
        # 24-17 and 27-20 both land on (4, 7) / (7, 0)
        assert matrix[4][7] > matrix[0][0]
        assert matrix[7][0] > matrix[0][0]

    def test_empty_baseline_is_uniform(self):
        matrix, sample = build_baseline_matrix([], 0)
        assert sample == 0
        assert all(cell == pytest.approx(0.01) for row in matrix for cell in row)

    def test_latest_season(self, games):
        assert get_latest_season(games) == 2024
        assert get_latest_season([]) == 0


class TestTeamContext:
    """Tests for recency-weighted team contexts."""

    def test_team_context(self, games):
        context = build_team_context(games, "SEA", 2024)
        assert context is not None
        assert context.sample_size == 3
        assert sum(context.offense_digit_dist) == pytest.approx(1.0)
        # Most recent game (27 scored) weighs most
        assert 24 < context.avg_points_for < 30

        expected_for = (27 + 30 * math.exp(-1 / 18) + 24 * math.exp(-2 / 18)) / (
            1 + math.exp(-1 / 18) + math.exp(-2 / 18)
        )
        assert context.avg_points_for == pytest.approx(expected_for)

    def test_unknown_team_has_no_context(self, games):
        assert build_team_context(games, "MIA", 2024) is None

    def test_old_seasons_excluded(self, games):
        assert build_team_context(games, "SEA", 2040) is None


class TestLeagueAndMarket:
    """Tests for league scoring average and market probabilities."""

    def test_league_average(self, games):
        total = 24 + 17 + 30 + 13 + 27 + 20 + 10 + 31
        assert calculate_league_average_points(games, 2024) == pytest.approx(total / 8)

    def test_league_average_default(self):
        assert calculate_league_average_points([], 2024) == DEFAULT_LEAGUE_AVERAGE_POINTS

    def test_market_probability_weights_recent_seasons(self):
        moneylines = [
            MoneylineRecord(2016, "SEA", 0.7),
            MoneylineRecord(2024, "SEA", 0.5),
            MoneylineRecord(2024, "NE", 0.9),
        ]
        # 2016 weight 1.0, 2024 weight 1.96
        expected = (0.7 * 1.0 + 0.5 * 1.96) / (1.0 + 1.96)
        assert calculate_market_implied_probability(moneylines, "SEA", 2024) == pytest.approx(expected)

    def test_market_probability_missing(self):
        assert calculate_market_implied_probability([], "SEA", 2024) is None


class TestCsvParsing:
    """Tests for the nflverse CSV parsers."""

    def test_quoted_fields(self):
        text = 'a,b,c\n"x, ""quoted""",2,3\n'
        rows = parse_csv_with_selected_columns(text, ["a", "c"])
        assert rows == [{"a": 'x, "quoted"', "c": "3"}]

    def test_missing_column_raises(self):
        with pytest.raises(MalformedResponseError, match="required CSV columns"):
            parse_csv_with_selected_columns("a,b\n1,2\n", ["a", "z"])

    def test_empty_rows_skipped(self):
        rows = parse_csv_with_selected_columns("a,b\n1,2\n,\n\n3,4\n", ["a", "b"])
        assert rows == [{"a": "1", "b": "2"}, {"a": "3", "b": "4"}]

    def test_parse_numeric(self):
        assert parse_numeric("3.5") == 3.5
        assert parse_numeric("") is None
        assert parse_numeric("NA") is None
        assert parse_numeric("nan") is None

    def test_game_records(self):
        games = parse_game_records(GAMES_CSV)
        # Unplayed game (no scores) is dropped
        assert len(games) == 3
        assert games[0].home_team == "SEA"
        assert games[0].total_line == 44.5
        # Provider "LA" maps onto the canonical "LAR"
        assert games[1].home_team == "LAR"
        assert games[1].spread_line is None

    def test_moneyline_records(self):
        text = (
            "game_id,type,side,odds,line\n"
            "2023_01_NE_SEA,MONEYLINE,SEA,-150,\n"
            "2023_01_NE_SEA,MONEYLINE,NE,130,\n"
            "2023_01_NE_SEA,SPREAD,SEA,-110,-3\n"
            "2023_02_SEA_WSH,MONEYLINE,WSH,-100000,\n"
        )
        records = parse_moneyline_records(text)
        assert len(records) == 3
        assert records[0].season == 2023
        assert records[0].implied_probability == pytest.approx(0.6)
        assert records[1].implied_probability == pytest.approx(100 / 230)
        # Clamped to [0.01, 0.99]
        assert records[2].side == "WAS"
        assert records[2].implied_probability == 0.99


class TestNflverseSource:
    """Tests for dataset loading through the memo cache."""

    def test_games_loaded_once(self, scripted_transport):
        transport = scripted_transport({"/games.csv": GAMES_CSV})

        async def run():
            async with transport.client() as client:
                source = NflverseSource("https://data.test/games.csv", "https://data.test/lines.csv", client=client)
                first, second = await asyncio.gather(source.load_games(), source.load_games())
                return first, second

        first, second = asyncio.run(run())
        assert len(first) == 3
        assert first is second
        assert transport.count("/games.csv") == 1

    def test_http_error_raises(self, scripted_transport):
        transport = scripted_transport({"/games.csv": 503})

        async def run():
            async with transport.client() as client:
                source = NflverseSource("https://data.test/games.csv", "https://data.test/lines.csv", client=client)
                await source.load_games()

        with pytest.raises(SourceUnavailableError):
            asyncio.run(run())


class TestTeams:
    """Tests for team resolution."""

    @pytest.mark.parametrize("value", ["SEA", "sea", "Seahawks", "Seattle Seahawks", " seahawks! "])
    def test_resolves(self, value):
        assert resolve_team(value).code == "SEA"

    def test_numeric_nickname(self):
        assert resolve_team("San Francisco 49ers").code == "SF"

    def test_unknown_team_raises(self):
        with pytest.raises(UnsupportedTeamError):
            resolve_team("Martians")

    def test_provider_aliases(self):
        assert canonical_team_code("la") == "LAR"
        assert canonical_team_code("WSH") == "WAS"
        assert canonical_team_code("SEA") == "SEA"
