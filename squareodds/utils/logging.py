"""
Logging setup and the odds history log.
"""

import logging
from datetime import datetime
from pathlib import Path
from typing import Optional

import orjson
import structlog
from structlog.processors import JSONRenderer, TimeStamper

from squareodds.models.schemas import SquareOddsResult


def setup_logging(log_level: str = "INFO", json_logs: bool = True) -> None:
    """
    Configure structlog for the application.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        json_logs: Render JSON lines; False gives the console renderer
    """
    renderer = JSONRenderer() if json_logs else structlog.dev.ConsoleRenderer()

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.dev.set_exc_info,
            TimeStamper(fmt="iso"),
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, log_level.upper(), logging.INFO)
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


class OddsHistoryLogger:
    """
    Appends every odds result to a daily JSONL file for later analysis.

    One line per result: the full pydantic dump plus the board identity.
    """

    def __init__(self, log_dir: str = "logs"):
        self.log_dir = Path(log_dir)
        self.log_dir.mkdir(parents=True, exist_ok=True)

        self.logger = structlog.get_logger("odds_history")

        # Current day's log file
        self._current_date: Optional[str] = None
        self._current_file: Optional[Path] = None
        self._file_handle = None

    def _get_log_file(self) -> Path:
        """Get current day's log file, rotating if needed."""
        today = datetime.now().strftime("%Y-%m-%d")

        if today != self._current_date:
            if self._file_handle:
                self._file_handle.close()

            self._current_date = today
            self._current_file = self.log_dir / f"odds_{today}.jsonl"
            self._file_handle = open(self._current_file, "ab")

        return self._current_file

    @property
    def current_file(self) -> Optional[Path]:
        return self._current_file

    def log_result(self, board_id: str, result: SquareOddsResult) -> None:
        """Write one result line and mirror a summary to structlog."""
        self._get_log_file()

        entry = {"board_id": board_id, **result.model_dump(mode="json")}
        self._file_handle.write(orjson.dumps(entry) + b"\n")
        self._file_handle.flush()

        self.logger.info("odds_logged", board_id=board_id, **result.to_log())

    def close(self) -> None:
        """Close log file handle."""
        if self._file_handle:
            self._file_handle.close()
            self._file_handle = None
