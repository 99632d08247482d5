"""
Tests for the commentary sentiment scorer.
"""

import math

import pytest

from squareodds.engine.sentiment import (
    SentimentEntry,
    TeamSentimentContext,
    analyze_aggregate_sentiment,
    score_text,
    tokenize,
)


@pytest.fixture
def context():
    """SEA hosting NE."""
    return TeamSentimentContext(
        home_team_code="SEA",
        away_team_code="NE",
        home_team_name="Seattle Seahawks",
        away_team_name="New England Patriots",
    )


class TestScoreText:
    """Tests for single-text scoring."""

    def test_empty_text_is_zero(self):
        """Empty and punctuation-only text scores 0."""
        assert score_text("") == 0.0
        assert score_text("!!! ...") == 0.0

    def test_positive_text_clamps_to_one(self):
        """Two positive hits over four tokens exceed the clamp."""
        assert score_text("Touchdown pass, great catch") == 1.0

    def test_negative_text(self):
        """Two negative hits over five tokens -> -2/5 * 2.4."""
        assert score_text("Penalty flag on the offense") == pytest.approx(-0.96)

    def test_short_text_uses_minimum_denominator(self):
        """A two-token string is normalized as if it had four tokens."""
        assert score_text("Incomplete pass") == pytest.approx(-0.6)

    def test_neutral_text(self):
        """No lexicon hits scores 0."""
        assert score_text("Kickoff to the end of the field") == 0.0

    def test_tokenize_strips_punctuation(self):
        assert tokenize("  Wilson's  PASS!! ") == ["wilson", "s", "pass"]


class TestAggregateSentiment:
    """Tests for recency-weighted attribution."""

    def test_no_entries_is_calm(self, context):
        """Empty input -> home 0, away 0, neutral 1."""
        sentiment = analyze_aggregate_sentiment([], context)
        assert (sentiment.home, sentiment.away, sentiment.neutral) == (0.0, 0.0, 1.0)

    def test_explicit_team_code_wins(self, context):
        """Team codes attribute even when the text names the other team."""
        sentiment = analyze_aggregate_sentiment(
            [SentimentEntry("Patriots touchdown, great drive", team_code="SEA")],
            context,
        )
        assert sentiment.home > 0
        assert sentiment.away == 0.0
        assert sentiment.neutral == 1.0

    def test_text_attribution(self, context):
        """Team names in text attribute entries without codes."""
        sentiment = analyze_aggregate_sentiment(
            [
                SentimentEntry("Seahawks touchdown, great throw"),
                SentimentEntry("Patriots fumble, turnover"),
            ],
            context,
        )
        assert sentiment.home > 0
        assert sentiment.away < 0

    def test_ambiguous_text_is_neutral(self, context):
        """Text naming both teams lands in the neutral bucket."""
        sentiment = analyze_aggregate_sentiment(
            [SentimentEntry("Seahawks and Patriots trade punts, slow game")],
            context,
        )
        assert sentiment.home == 0.0
        assert sentiment.away == 0.0
        assert 0.0 <= sentiment.neutral < 0.5

    def test_recent_entries_weigh_more(self, context):
        """Entries are ordered oldest first; the newest carries weight 1."""
        sentiment = analyze_aggregate_sentiment(
            [
                SentimentEntry("Fumble, turnover, loss", team_code="SEA"),
                SentimentEntry("Touchdown great huge", team_code="SEA"),
            ],
            context,
        )
        older = math.exp(-1 / 14)
        assert sentiment.home == pytest.approx((1 - older) / (1 + older))
        assert sentiment.home > 0
