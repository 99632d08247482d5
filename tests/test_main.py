"""
Tests for the command line helpers, the runner and the odds history log.
"""

import argparse
import asyncio

import orjson
import pytest

import squareodds.main as cli
from squareodds.engine.pregame import build_fallback_model, to_square_odds_result
from squareodds.main import OddsRunner, build_parser, format_board, parse_labels
from squareodds.service import SquareOddsService
from squareodds.utils.logging import OddsHistoryLogger


@pytest.fixture
def result():
    """Fallback pre-game result on an identity board."""
    return to_square_odds_result(build_fallback_model(["Offline"]), list(range(10)), list(range(10)))


@pytest.fixture
def offline_service(monkeypatch, scripted_transport, test_settings):
    """Point the runner at a service whose providers are all unreachable."""
    transport = scripted_transport({})

    def make_service(settings):
        return SquareOddsService(test_settings, client=transport.client())

    monkeypatch.setattr(cli, "SquareOddsService", make_service)
    return transport


def run_cli(args, settings):
    runner = OddsRunner(build_parser().parse_args(args), settings)
    return runner, asyncio.run(runner.start())


class TestCli:
    """Tests for argument parsing and board rendering."""

    def test_parse_labels(self):
        assert parse_labels(None) == list(range(10))
        assert parse_labels("5,0,1,2,3,4,6,7,8,9") == [5, 0, 1, 2, 3, 4, 6, 7, 8, 9]

    def test_parse_labels_rejects_garbage(self):
        with pytest.raises(argparse.ArgumentTypeError):
            parse_labels("a,b,c")

    def test_parser(self):
        args = build_parser().parse_args(
            ["--home", "SEA", "--away", "NE", "--follow", "--event-id", "401", "--date", "2026-02-08"]
        )
        assert args.follow
        assert args.event_id == "401"
        assert args.date == "2026-02-08"
        assert args.rows is None

    def test_format_board(self, result):
        text = format_board(result, list(range(10)), list(range(10)))
        lines = text.splitlines()
        # Header plus ten rows
        assert len(lines[0].split()) == 10
        assert lines[1].split()[0] == "0"
        assert "Expected: home 23.0 / away 21.0" in text
        assert "! Offline" in text

    def test_game_display_name(self, make_snapshot):
        assert make_snapshot().get_display_name() == "New England Patriots @ Seattle Seahawks"


class TestOddsRunner:
    """Tests for the runner with every provider down."""

    def test_prints_fallback_board_and_closes_history(self, offline_service, test_settings, tmp_path, capsys):
        runner, code = run_cli(
            ["--home", "SEA", "--away", "NE", "--log-dir", str(tmp_path / "logs")], test_settings
        )

        assert code == 0
        assert "Expected: home 23.0 / away 21.0" in capsys.readouterr().out
        assert runner.history._file_handle is None
        assert len(runner.history.current_file.read_bytes().splitlines()) == 1

    def test_follow_stops_on_shutdown(self, offline_service, test_settings, tmp_path):
        runner = OddsRunner(
            build_parser().parse_args(
                ["--home", "SEA", "--away", "NE", "--follow", "--log-dir", str(tmp_path / "logs")]
            ),
            test_settings,
        )
        runner.shutdown()

        assert asyncio.run(runner.start()) == 0
        assert not runner._session.running
        assert runner.history._file_handle is None


class TestOddsHistoryLogger:
    """Tests for the JSONL odds history."""

    def test_writes_one_line_per_result(self, result, tmp_path):
        history = OddsHistoryLogger(str(tmp_path / "logs"))
        history.log_result("SEA-NE", result)
        history.log_result("SEA-NE", result)
        history.close()

        lines = history.current_file.read_bytes().splitlines()
        assert len(lines) == 2
        entry = orjson.loads(lines[0])
        assert entry["board_id"] == "SEA-NE"
        assert entry["sources_used"] == ["fallback_model"]
        assert entry["warnings"] == ["Offline"]
        assert history.current_file.name.startswith("odds_")
