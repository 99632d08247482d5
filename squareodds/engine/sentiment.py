"""
Commentary Sentiment Scorer.

Scores free-text play descriptions with a small football lexicon and
attributes them to the home side, the away side or neither.
"""

import math
from dataclasses import dataclass
from typing import Iterable, Optional

from squareodds.engine.matrix import clamp
from squareodds.models.schemas import LiveSentiment
from squareodds.models.teams import get_team_by_code, normalize_text


POSITIVE_TERMS = frozenset({
    "touchdown", "scores", "scored", "good", "great", "huge", "explosive",
    "interception", "sack", "forced", "stops", "stop", "efficient",
    "conversion", "converted", "first", "down", "win", "winning", "momentum",
    "dominant", "clutch", "redzone", "red", "zone",
})

NEGATIVE_TERMS = frozenset({
    "penalty", "foul", "flags", "flag", "missed", "miss", "intercepted",
    "fumble", "turnover", "safety", "stuffed", "stalled", "punt", "sacked",
    "loss", "losing", "injury", "slow", "struggling", "struggle",
    "incomplete", "delay",
})

# Short strings are normalized as if they had at least this many tokens
MIN_TOKEN_DENOMINATOR = 4
SCORE_GAIN = 2.4
RECENCY_DECAY_ENTRIES = 14.0


@dataclass
class SentimentEntry:
    """A piece of commentary, optionally already attributed to a team."""
    text: str
    team_code: Optional[str] = None


@dataclass
class TeamSentimentContext:
    """The two teams commentary is attributed between."""
    home_team_code: str
    away_team_code: str
    home_team_name: str
    away_team_name: str


def tokenize(text: str) -> list[str]:
    normalized = normalize_text(text)
    if not normalized:
        return []
    return normalized.split(" ")


def score_text(text: str) -> float:
    """Valence of a play description in [-1, 1]. Empty text scores 0."""
    tokens = tokenize(text)
    if not tokens:
        return 0.0

    score = 0
    for token in tokens:
        if token in POSITIVE_TERMS:
            score += 1
        if token in NEGATIVE_TERMS:
            score -= 1

    normalized = score / max(len(tokens), MIN_TOKEN_DENOMINATOR)
    return clamp(normalized * SCORE_GAIN, -1.0, 1.0)


def _alias_set(team_code: str, team_name: str) -> set[str]:
    """Code, full names and name tokens (3+ chars) that identify a team in text."""
    aliases = {team_code.lower()}
    team = get_team_by_code(team_code)
    base_name = team.name if team else team_name

    for name in (team_name, base_name):
        normalized = normalize_text(name)
        if not normalized:
            continue
        aliases.add(normalized)
        for token in normalized.split(" "):
            if len(token) >= 3:
                aliases.add(token)
    return aliases


def _detect_side(text: str, home_aliases: set[str], away_aliases: set[str]) -> Optional[str]:
    normalized = normalize_text(text)
    if not normalized:
        return None

    home_match = any(alias and alias in normalized for alias in home_aliases)
    away_match = any(alias and alias in normalized for alias in away_aliases)

    if home_match and not away_match:
        return "home"
    if away_match and not home_match:
        return "away"
    return None


def analyze_aggregate_sentiment(
    entries: Iterable[SentimentEntry],
    context: TeamSentimentContext,
) -> LiveSentiment:
    """
    Recency-weighted sentiment per side.

    Entries are ordered oldest first. Explicit team codes win over text
    matching. Sides with no attributed entries default to calm: home/away 0,
    neutral 1.
    """
    entries = list(entries)
    if not entries:
        return LiveSentiment()

    home_aliases = _alias_set(context.home_team_code, context.home_team_name)
    away_aliases = _alias_set(context.away_team_code, context.away_team_name)
    home_code = context.home_team_code.upper()
    away_code = context.away_team_code.upper()

    weighted = {"home": 0.0, "away": 0.0, "neutral": 0.0}
    weights = {"home": 0.0, "away": 0.0, "neutral": 0.0}

    count = len(entries)
    for index, entry in enumerate(entries):
        recency_weight = math.exp(-(count - 1 - index) / RECENCY_DECAY_ENTRIES)
        base_score = score_text(entry.text)

        side = None
        if entry.team_code:
            code = entry.team_code.upper()
            if code == home_code:
                side = "home"
            elif code == away_code:
                side = "away"
        if side is None:
            side = _detect_side(entry.text, home_aliases, away_aliases)

        bucket = side or "neutral"
        weighted[bucket] += base_score * recency_weight
        weights[bucket] += recency_weight

    home = clamp(weighted["home"] / weights["home"], -1.0, 1.0) if weights["home"] > 0 else 0.0
    away = clamp(weighted["away"] / weights["away"], -1.0, 1.0) if weights["away"] > 0 else 0.0
    neutral = (
        clamp((weighted["neutral"] / weights["neutral"] + 1.0) / 2.0, 0.0, 1.0)
        if weights["neutral"] > 0
        else 1.0
    )

    return LiveSentiment(home=home, away=away, neutral=neutral)
