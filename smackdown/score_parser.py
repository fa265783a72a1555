"""
smackdown/score_parser.py - Free-text score parsing and validation

Players text scores in whatever shape they like. The parser tries a few
patterns from most to least specific and takes the first hit; it never
raises, it just reports how sure it is.

Examples:
    "John 9 Sarah 4"      -> high, John wins 9-4
    "Mike beat Lisa 7-2"  -> high, Mike named as winner
    "9-4"                 -> medium, scores only
    "we're done table 5"  -> low, could not parse
"""

import re
from dataclasses import dataclass
from enum import Enum


class Confidence(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


@dataclass
class ParsedScore:
    confidence: Confidence
    player1_name: str | None = None
    player2_name: str | None = None
    player1_score: int | None = None
    player2_score: int | None = None
    winner_name: str | None = None
    error: str | None = None

    @property
    def has_scores(self) -> bool:
        return self.player1_score is not None and self.player2_score is not None


# Names start with a letter; scores are at most three digits.
_NAME = r"\b([^\W\d_]\w*)"
_SCORE = r"(?<!\d)(\d{1,3})(?!\d)"

# "John 9 Sarah 4"
_NAMED_SCORES = re.compile(rf"{_NAME}\s+{_SCORE}\s+{_NAME}\s+{_SCORE}")
# "Mike beat Lisa 7-2", "Mike def. Lisa 7-2"
_NAMED_WINNER = re.compile(
    rf"{_NAME}\s+(?:beat|defeated|def\.?)\s+{_NAME}\s+{_SCORE}\s*-\s*{_SCORE}", re.IGNORECASE
)
# "9-4", "9:4", "9 4"
_BARE_SCORES = re.compile(rf"{_SCORE}(?:\s*[-:]\s*|\s+){_SCORE}")
# "table 5", "Table #12"
_TABLE_MENTION = re.compile(r"\btable\s*#?\s*\d+", re.IGNORECASE)

PARSE_ERROR = "Could not parse score from text"


def parse_score_text(text: str) -> ParsedScore:
    """Best-effort score extraction. First matching pattern wins, no merging.

    Table numbers are dropped first so they are never read as scores.
    """
    text = _TABLE_MENTION.sub(" ", text)
    m = _NAMED_SCORES.search(text)
    if m:
        name1, score1, name2, score2 = m.groups()
        s1, s2 = int(score1), int(score2)
        winner = None
        if s1 != s2:
            winner = name1 if s1 > s2 else name2
        return ParsedScore(
            confidence=Confidence.HIGH,
            player1_name=name1,
            player2_name=name2,
            player1_score=s1,
            player2_score=s2,
            winner_name=winner,
        )

    m = _NAMED_WINNER.search(text)
    if m:
        winner, loser, score1, score2 = m.groups()
        # The text says who won; trust that over the numbers.
        return ParsedScore(
            confidence=Confidence.HIGH,
            player1_name=winner,
            player2_name=loser,
            player1_score=int(score1),
            player2_score=int(score2),
            winner_name=winner,
        )

    m = _BARE_SCORES.search(text)
    if m:
        return ParsedScore(
            confidence=Confidence.MEDIUM,
            player1_score=int(m.group(1)),
            player2_score=int(m.group(2)),
        )

    return ParsedScore(confidence=Confidence.LOW, error=PARSE_ERROR)


# ============================================================================
# Validation
# ============================================================================


class ScoreProblem(str, Enum):
    MISSING_SCORE = "missing_score"
    NEGATIVE_SCORE = "negative_score"
    NO_SCORE_AT_LENGTH = "no_score_at_length"
    TIED_SCORE = "tied_score"
    LOSER_TOO_HIGH = "loser_too_high"


@dataclass
class ValidationResult:
    valid: bool
    problem: ScoreProblem | None = None
    error: str | None = None


def check_scores(
    player1_score: int | None, player2_score: int | None, match_length: int
) -> ValidationResult:
    """Check a race-to-match_length result: one side on exactly N, the other below."""
    if player1_score is None or player2_score is None:
        return ValidationResult(False, ScoreProblem.MISSING_SCORE, "Could not determine both scores")

    if player1_score < 0 or player2_score < 0:
        return ValidationResult(False, ScoreProblem.NEGATIVE_SCORE, "Scores must be positive")

    at_length = (player1_score == match_length) + (player2_score == match_length)
    if at_length == 0:
        return ValidationResult(
            False,
            ScoreProblem.NO_SCORE_AT_LENGTH,
            f"One player must reach {match_length} points",
        )
    if at_length == 2:
        return ValidationResult(False, ScoreProblem.TIED_SCORE, "Scores cannot be tied")

    if min(player1_score, player2_score) >= match_length:
        return ValidationResult(
            False,
            ScoreProblem.LOSER_TOO_HIGH,
            "Losing score must be less than match length",
        )

    return ValidationResult(True)


def validate_score(parsed: ParsedScore, match_length: int) -> ValidationResult:
    return check_scores(parsed.player1_score, parsed.player2_score, match_length)
