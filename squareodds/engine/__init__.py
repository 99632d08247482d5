"""Odds models: matrix primitives, sentiment, historical and realtime engines.

The pre-game assembler depends on the feeds and is imported from
squareodds.engine.pregame directly.
"""

from squareodds.engine.historical import build_baseline_matrix, build_team_context
from squareodds.engine.realtime import build_feature_vector, build_realtime_odds
from squareodds.engine.sentiment import analyze_aggregate_sentiment, score_text

__all__ = [
    "build_baseline_matrix",
    "build_team_context",
    "build_feature_vector",
    "build_realtime_odds",
    "analyze_aggregate_sentiment",
    "score_text",
]
