"""Tests for smackdown.confidence - trust scores and winner binding."""

import pytest

from smackdown.confidence import (
    AUTO_APPROVE_THRESHOLD,
    INVALID_SCORE_TRUST_CAP,
    orient_scores,
    resolve_winner,
    should_auto_apply,
    trust_score,
)
from smackdown.models import Match, MatchContext, Player
from smackdown.score_parser import parse_score_text, validate_score


@pytest.fixture
def context():
    """John Smith vs Sarah Lee, race to 9."""
    match = Match(
        id="m1",
        bracket_id="b1",
        round_number=1,
        match_number=1,
        player1_id="john",
        player2_id="sarah",
    )
    return MatchContext(
        match=match,
        player1=Player(id="john", name="John Smith"),
        player2=Player(id="sarah", name="Sarah Lee"),
        match_length=9,
    )


def _trust(text: str, match_length: int = 9) -> int:
    parsed = parse_score_text(text)
    return trust_score(parsed, validate_score(parsed, match_length))


# ======================================================================
# Trust
# ======================================================================


class TestTrustScore:
    def test_high_and_valid(self):
        assert _trust("John 9 Sarah 4") == 90

    def test_medium_and_valid(self):
        assert _trust("9-4") == 60

    def test_low(self):
        assert _trust("gg") == 30

    def test_invalid_caps_high(self):
        assert _trust("John 7 Sarah 4") == INVALID_SCORE_TRUST_CAP

    def test_invalid_leaves_low_alone(self):
        assert _trust("no idea") == 30

    def test_cap_below_threshold(self):
        assert INVALID_SCORE_TRUST_CAP < AUTO_APPROVE_THRESHOLD


# ======================================================================
# Orientation & winner binding
# ======================================================================


class TestOrientScores:
    def test_forward_order_kept(self, context):
        scores = orient_scores(parse_score_text("John 9 Sarah 4"), context)
        assert (scores.player1_score, scores.player2_score) == (9, 4)

    def test_reverse_order_swapped(self, context):
        scores = orient_scores(parse_score_text("Sarah 4 John 9"), context)
        assert (scores.player1_score, scores.player2_score) == (9, 4)

    def test_unnamed_kept_in_match_order(self, context):
        scores = orient_scores(parse_score_text("4-9"), context)
        assert (scores.player1_score, scores.player2_score) == (4, 9)

    def test_unknown_names_kept(self, context):
        scores = orient_scores(parse_score_text("Bob 9 Alice 4"), context)
        assert (scores.player1_score, scores.player2_score) == (9, 4)


class TestResolveWinner:
    def test_named_winner_substring_case_insensitive(self, context):
        assert resolve_winner(parse_score_text("sarah 9 john 2"), context) == "sarah"

    def test_beat_form(self, context):
        assert resolve_winner(parse_score_text("John beat Sarah 9-3"), context) == "john"

    def test_falls_back_to_higher_score(self, context):
        assert resolve_winner(parse_score_text("4-9"), context) == "sarah"

    def test_unknown_name_falls_back_to_score(self, context):
        # "Bob" matches nobody, so the oriented scores decide
        assert resolve_winner(parse_score_text("Bob 9 Alice 4"), context) == "john"

    def test_tie_is_unbound(self, context):
        assert resolve_winner(parse_score_text("5-5"), context) is None

    def test_nothing_parsed_is_unbound(self, context):
        assert resolve_winner(parse_score_text("gg"), context) is None


class TestShouldAutoApply:
    def test_all_conditions(self):
        assert should_auto_apply(90, "john", 9, 4)

    def test_below_threshold(self):
        assert not should_auto_apply(60, "john", 9, 4)

    def test_unbound_winner(self):
        assert not should_auto_apply(90, None, 9, 4)

    def test_missing_score(self):
        assert not should_auto_apply(90, "john", 9, None)

    def test_custom_threshold(self):
        assert should_auto_apply(60, "john", 9, 4, threshold=60)
