"""
smackdown/confidence.py - Trust scoring and winner resolution for score reports

Turns a parse + validation into a 0-100 trust number and decides whether a
report is safe to apply without a director looking at it.
"""

from dataclasses import dataclass

from .models import MatchContext
from .score_parser import Confidence, ParsedScore, ValidationResult

TRUST_BY_CONFIDENCE = {
    Confidence.HIGH: 90,
    Confidence.MEDIUM: 60,
    Confidence.LOW: 30,
}
INVALID_SCORE_TRUST_CAP = 40
AUTO_APPROVE_THRESHOLD = 90


def trust_score(parsed: ParsedScore, validation: ValidationResult) -> int:
    trust = TRUST_BY_CONFIDENCE[parsed.confidence]
    if not validation.valid:
        trust = min(trust, INVALID_SCORE_TRUST_CAP)
    return trust


def _name_matches(reported: str | None, full_name: str | None) -> bool:
    """Case-insensitive "is the reported name part of the player's name"."""
    if not reported or not full_name:
        return False
    return reported.lower() in full_name.lower()


@dataclass
class OrientedScore:
    """Scores lined up with the match's own player1/player2 slots."""

    player1_score: int | None
    player2_score: int | None


def orient_scores(parsed: ParsedScore, context: MatchContext) -> OrientedScore:
    """Swap the parsed scores if the text named the two sides in reverse order.

    "Sarah 4 John 9" against a match seeded John vs Sarah becomes 9-4.
    Unnamed scores are taken in match order.
    """
    p1_name = context.player1.name if context.player1 else None
    p2_name = context.player2.name if context.player2 else None

    forward = _name_matches(parsed.player1_name, p1_name) or _name_matches(
        parsed.player2_name, p2_name
    )
    reversed_ = _name_matches(parsed.player1_name, p2_name) or _name_matches(
        parsed.player2_name, p1_name
    )
    if reversed_ and not forward:
        return OrientedScore(parsed.player2_score, parsed.player1_score)
    return OrientedScore(parsed.player1_score, parsed.player2_score)


def resolve_winner(
    parsed: ParsedScore, context: MatchContext, scores: OrientedScore | None = None
) -> str | None:
    """Bind the reported winner to a match participant.

    1. a named winner that is part of one participant's name
    2. otherwise the participant with the higher score
    3. otherwise nobody
    """
    for player in (context.player1, context.player2):
        if player is not None and _name_matches(parsed.winner_name, player.name):
            return player.id

    scores = scores or orient_scores(parsed, context)
    s1, s2 = scores.player1_score, scores.player2_score
    if s1 is None or s2 is None or s1 == s2:
        return None
    return context.match.player1_id if s1 > s2 else context.match.player2_id


def should_auto_apply(
    trust: int,
    winner_id: str | None,
    player1_score: int | None,
    player2_score: int | None,
    threshold: int = AUTO_APPROVE_THRESHOLD,
) -> bool:
    return (
        trust >= threshold
        and winner_id is not None
        and player1_score is not None
        and player2_score is not None
    )
