"""
Squares Odds - command line entry point.

Prints the pre-game board for a matchup and, with --follow, keeps
re-printing the realtime board while the game is played.

Usage:
    python -m squareodds.main --home SEA --away NE
    python -m squareodds.main --home Seahawks --away Patriots --follow --date 2026-02-08

Environment Variables:
    SQUAREODDS_LOG_LEVEL          - DEBUG|INFO|WARNING (default: INFO)
    SQUAREODDS_CACHE__PERSIST     - false disables the on-disk model cache
    SQUAREODDS_SOURCES__ESPN_BASE_URL - override the ESPN site API base
"""

import argparse
import asyncio
import signal
from typing import Optional, Sequence

import structlog

from config.settings import Settings, settings as default_settings
from squareodds.models.schemas import RealtimeSquareOddsResult, SquareOddsResult
from squareodds.models.teams import UnsupportedTeamError
from squareodds.service import LiveOddsSession, SquareOddsService
from squareodds.utils.logging import OddsHistoryLogger, setup_logging

logger = structlog.get_logger()

DEFAULT_LABELS = list(range(10))


def parse_labels(raw: Optional[str]) -> list[int]:
    """'3,1,4,...' -> [3, 1, 4, ...]; None -> 0..9."""
    if not raw:
        return list(DEFAULT_LABELS)
    try:
        return [int(value) for value in raw.split(",")]
    except ValueError as e:
        raise argparse.ArgumentTypeError(f"Labels must be comma-separated digits: {raw}") from e


def format_board(result: SquareOddsResult, row_labels: Sequence[int], col_labels: Sequence[int]) -> str:
    """Render board percentages as a fixed-width table (rows = home digit)."""
    lines = ["      " + "".join(f"{label:>6}" for label in col_labels)]
    for label, row in zip(row_labels, result.board_percentages):
        lines.append(f"{label:>6}" + "".join(f"{value:>6.2f}" for value in row))

    lines.append("")
    lines.append(
        f"Expected: home {result.expected_home_points:.1f} / away {result.expected_away_points:.1f}"
        f"  ({result.source_mode.value}: {', '.join(s.value for s in result.sources_used)})"
    )
    if isinstance(result, RealtimeSquareOddsResult):
        lines.append(f"Live: {result.live_status_detail} [{result.live_clock}]")
    for warning in result.warnings:
        lines.append(f"! {warning}")
    return "\n".join(lines)


class OddsRunner:
    """Runs one board: prints pre-game odds, optionally follows the live game."""

    def __init__(self, args: argparse.Namespace, settings: Optional[Settings] = None):
        self.args = args
        self.settings = settings or default_settings

        setup_logging(self.settings.log_level, json_logs=not self.settings.debug)
        self.logger = logger.bind(component="runner")

        self.row_labels = parse_labels(args.rows)
        self.col_labels = parse_labels(args.cols)
        self.history = OddsHistoryLogger(args.log_dir) if args.log_dir else None

        self._shutdown_event = asyncio.Event()
        self._session: Optional[LiveOddsSession] = None

    @property
    def board_id(self) -> str:
        return f"{self.args.home}-{self.args.away}".upper()

    def _print(self, result: SquareOddsResult) -> None:
        print(format_board(result, self.row_labels, self.col_labels))
        print()
        if self.history:
            self.history.log_result(self.board_id, result)

    async def start(self) -> int:
        try:
            async with SquareOddsService(self.settings) as service:
                try:
                    return await self._run(service)
                finally:
                    self.logger.info("Source health", **service.get_metrics())
        finally:
            if self.history:
                self.history.close()
            self.logger.info("Runner stopped")

    async def _run(self, service: SquareOddsService) -> int:
        result = await service.build_square_odds(
            self.args.home, self.args.away, self.row_labels, self.col_labels
        )
        self._print(result)

        if not self.args.follow:
            return 0

        self._session = service.create_live_session(
            self.args.home,
            self.args.away,
            self.row_labels,
            self.col_labels,
            game_date=self.args.date,
            event_id_override=self.args.event_id,
        )
        self._session.add_callback(self._print)
        self._session.start()

        await self._shutdown_event.wait()
        await self._session.stop()

        snapshot = self._session.last_snapshot
        if snapshot is not None:
            self.logger.info(
                "Last live state",
                game=snapshot.get_display_name(),
                score=f"{snapshot.away_score}-{snapshot.home_score}",
                status=snapshot.status.value,
            )
        return 0

    def shutdown(self) -> None:
        """Trigger graceful shutdown."""
        if not self._shutdown_event.is_set():
            self._shutdown_event.set()
            self.logger.info("Shutdown signal set")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Squares board odds for an NFL matchup",
    )
    parser.add_argument("--home", required=True, help="Home team code or name (e.g. SEA, Seahawks)")
    parser.add_argument("--away", required=True, help="Away team code or name")
    parser.add_argument("--rows", help="Comma-separated home digit labels, top to bottom")
    parser.add_argument("--cols", help="Comma-separated away digit labels, left to right")
    parser.add_argument("--follow", action="store_true", help="Keep polling the live game")
    parser.add_argument("--date", help="Game date YYYY-MM-DD for the live scoreboard")
    parser.add_argument("--event-id", help="ESPN event id, skips scoreboard matching")
    parser.add_argument("--log-dir", help="Append every result to a daily JSONL file here")
    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Main entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        runner = OddsRunner(args)
    except argparse.ArgumentTypeError as e:
        parser.error(str(e))

    async def run() -> int:
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, runner.shutdown)
            except NotImplementedError:
                # Windows event loops
                signal.signal(sig, lambda *_: runner.shutdown())
        return await runner.start()

    try:
        return asyncio.run(run())
    except (UnsupportedTeamError, ValueError) as e:
        print(f"Error: {e}")
        return 2


if __name__ == "__main__":
    raise SystemExit(main())
