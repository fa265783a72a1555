"""
smackdown/notify.py - Outbound messages for resolved score reports

The workflow calls a Notifier after every approve, reject and clarification
request. Delivery (SMS, push, whatever) is someone else's job; the default
implementation just logs.
"""

import logging
from typing import Protocol

from .models import MatchContext, ScoreReport

logger = logging.getLogger(__name__)


# ============================================================================
# Message templates
# ============================================================================

UNKNOWN_SENDER_MESSAGE = (
    "We couldn't find your phone number in our system. "
    "Please check in with the tournament director."
)
NO_ACTIVE_MATCH_MESSAGE = (
    "You don't have any active matches right now. "
    "Please check with the tournament director."
)
ALREADY_RECORDED_MESSAGE = (
    "That match has already been recorded. "
    "Please check with the tournament director if the score is wrong."
)
PENDING_MESSAGE = (
    "Thanks! Your score report has been received and is pending director approval."
)
ERROR_MESSAGE = "Sorry, there was an error processing your message. Please try again."


def approved_message(winner_name: str, player1_score: int, player2_score: int) -> str:
    """Winner's score first, whichever side of the match they were on."""
    high, low = max(player1_score, player2_score), min(player1_score, player2_score)
    return (
        f"Score recorded! {winner_name} wins {high}-{low}. "
        "Thanks for reporting!"
    )


def rejected_message(context: MatchContext, reason: str | None = None) -> str:
    detail = f": {reason}" if reason else ""
    return (
        f"Your score report for {context.player1_name} vs {context.player2_name} "
        f"was rejected{detail}. Please check with the tournament director."
    )


def clarification_message(context: MatchContext, question: str | None = None) -> str:
    ask = question or "Please resend the final score, e.g. 'John 9 Sarah 4'."
    return f"We couldn't confirm your score for {context.player1_name} vs {context.player2_name}. {ask}"


def pending_message(
    context: MatchContext, player1_score: int | None, player2_score: int | None
) -> str:
    if player1_score is None or player2_score is None:
        return PENDING_MESSAGE
    return (
        f"Score report received: {context.player1_name} {player1_score} - "
        f"{context.player2_name} {player2_score}. Pending director approval."
    )


# ============================================================================
# Notifier
# ============================================================================


class Notifier(Protocol):
    def on_report_resolved(self, report: ScoreReport, message: str) -> None: ...


class LoggingNotifier:
    """Writes outbound messages to the log instead of sending them."""

    def on_report_resolved(self, report: ScoreReport, message: str) -> None:
        logger.info(
            f"[notify] report {report.id} ({report.status.value}) "
            f"-> {report.reported_by_phone}: {message}"
        )
