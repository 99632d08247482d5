"""
nflverse historical datasets.

Two flat CSV files fetched from GitHub:
- games.csv: every game since 1999 with final scores and lines
- closing_lines.csv: closing spread / total / moneyline per side

Both are large and change at most daily, so each is loaded once per
service and memoized through the injected AsyncMemoCache.
"""

import csv
import math
from typing import Optional, Sequence

import httpx

from squareodds.engine.historical import american_odds_to_implied_probability
from squareodds.engine.matrix import clamp
from squareodds.feeds.base import HttpSource, MalformedResponseError
from squareodds.models.schemas import GameRecord, MoneylineRecord
from squareodds.models.teams import canonical_team_code
from squareodds.utils.cache import AsyncMemoCache


GAME_COLUMNS = [
    "season",
    "gameday",
    "away_team",
    "away_score",
    "home_team",
    "home_score",
    "total_line",
    "spread_line",
]

CLOSING_LINE_COLUMNS = ["game_id", "type", "side", "odds"]


def parse_numeric(value: Optional[str]) -> Optional[float]:
    """Parse a CSV cell as a float; blank or non-finite cells are None."""
    if value is None or value.strip() == "":
        return None
    try:
        parsed = float(value)
    except ValueError:
        return None
    return parsed if math.isfinite(parsed) else None


def parse_csv_with_selected_columns(text: str, columns: Sequence[str]) -> list[dict[str, str]]:
    """
    Parse CSV text keeping only the named columns.

    Quoted fields (including doubled quotes) are handled by the csv module.
    Rows where every selected cell is empty are skipped.

    Raises:
        MalformedResponseError: if a required column is missing from the header.
    """
    lines = [line for line in text.splitlines() if line.strip()]
    if not lines:
        return []

    reader = csv.reader(lines)
    header = next(reader)
    try:
        indexes = [header.index(column) for column in columns]
    except ValueError as e:
        raise MalformedResponseError("Could not find required CSV columns.") from e

    records = []
    for values in reader:
        record = {
            column: values[index] if index < len(values) else ""
            for column, index in zip(columns, indexes)
        }
        if any(value != "" for value in record.values()):
            records.append(record)
    return records


def parse_game_records(text: str) -> list[GameRecord]:
    records = []
    for row in parse_csv_with_selected_columns(text, GAME_COLUMNS):
        season = parse_numeric(row["season"])
        away_score = parse_numeric(row["away_score"])
        home_score = parse_numeric(row["home_score"])
        if season is None or away_score is None or home_score is None:
            continue
        if not row["away_team"] or not row["home_team"]:
            continue

        records.append(GameRecord(
            season=int(round(season)),
            gameday=row["gameday"],
            away_team=canonical_team_code(row["away_team"]),
            away_score=int(round(away_score)),
            home_team=canonical_team_code(row["home_team"]),
            home_score=int(round(home_score)),
            total_line=parse_numeric(row["total_line"]),
            spread_line=parse_numeric(row["spread_line"]),
        ))
    return records


def parse_moneyline_records(text: str) -> list[MoneylineRecord]:
    records = []
    for row in parse_csv_with_selected_columns(text, CLOSING_LINE_COLUMNS):
        if row["type"] != "MONEYLINE":
            continue
        odds = parse_numeric(row["odds"])
        if odds is None:
            continue
        try:
            season = int(row["game_id"][:4])
        except ValueError:
            continue

        records.append(MoneylineRecord(
            season=season,
            side=canonical_team_code(row["side"]),
            implied_probability=clamp(american_odds_to_implied_probability(odds), 0.01, 0.99),
        ))
    return records


class NflverseSource(HttpSource):
    """
    Historical games and closing moneylines.

    Usage:
        source = NflverseSource(games_url, closing_lines_url, timeout=12.0)
        games = await source.load_games()
    """

    def __init__(
        self,
        games_url: str,
        closing_lines_url: str,
        timeout: float = 12.0,
        client: Optional[httpx.AsyncClient] = None,
        cache: Optional[AsyncMemoCache] = None,
    ):
        super().__init__("nflverse", timeout, client)
        self.games_url = games_url
        self.closing_lines_url = closing_lines_url
        self.cache = cache if cache is not None else AsyncMemoCache()

    async def load_games(self) -> list[GameRecord]:
        """Load every completed game. Raises SourceUnavailableError."""
        return await self.cache.get_or_load("nflverse:games", self._load_games)

    async def load_closing_moneylines(self) -> list[MoneylineRecord]:
        """Load closing moneylines. Raises SourceUnavailableError."""
        return await self.cache.get_or_load("nflverse:closing_lines", self._load_closing_moneylines)

    async def _load_games(self) -> list[GameRecord]:
        text = await self.fetch_text(self.games_url)
        games = parse_game_records(text)
        self.logger.info("Loaded historical games", count=len(games))
        return games

    async def _load_closing_moneylines(self) -> list[MoneylineRecord]:
        text = await self.fetch_text(self.closing_lines_url)
        moneylines = parse_moneyline_records(text)
        self.logger.info("Loaded closing moneylines", count=len(moneylines))
        return moneylines
