"""
smackdown/workflow.py - Score report intake and director approval

Report lifecycle:

    pending ──auto-apply / director approve──> approved   (match completed)
       │  └──director reject─────────────────> rejected   (match untouched)
       └──director asks for clarification───> needs_clarification
                                                 └─> approved / rejected

approved and rejected are terminal. Approving and completing the match happen
in one store transaction, so "applied but not approved" is never visible.
Parser and validator problems never raise: they lower trust and leave the
report in the manual queue.
"""

import logging
import uuid
from dataclasses import dataclass
from typing import Sequence

from .confidence import (
    AUTO_APPROVE_THRESHOLD,
    orient_scores,
    resolve_winner,
    should_auto_apply,
    trust_score,
)
from .models import (
    Match,
    MatchContext,
    ReportStatus,
    ScoreReport,
    now_iso,
)
from .notify import (
    ALREADY_RECORDED_MESSAGE,
    NO_ACTIVE_MATCH_MESSAGE,
    UNKNOWN_SENDER_MESSAGE,
    LoggingNotifier,
    Notifier,
    approved_message,
    clarification_message,
    pending_message,
    rejected_message,
)
from .score_parser import check_scores, parse_score_text, validate_score
from .store import MatchAlreadyRecordedError, MatchStore, ReportAlreadyResolvedError

logger = logging.getLogger(__name__)

AUTO_APPROVER = "auto"
ALREADY_RECORDED_NOTE = "match already recorded"


class NoActiveMatchError(LookupError):
    """Raised when a sender has no match a report could apply to."""


class ReportNotFoundError(KeyError):
    """Raised when a report id is not in the store."""


class InvalidScoreError(ValueError):
    """Raised when a director approves scores that don't make a valid result."""


@dataclass
class Sender:
    """Who sent a report. player_id is None when the phone isn't registered."""

    phone: str
    player_id: str | None = None


@dataclass
class IntakeResult:
    report: ScoreReport
    context: MatchContext
    reply: str
    auto_applied: bool = False


# ============================================================================
# Match selection
# ============================================================================


def _mentioned(name: str | None, text: str) -> bool:
    return bool(name) and name.lower() in text


def select_match(
    raw_text: str,
    candidates: Sequence[MatchContext],
    sender_player_id: str | None = None,
) -> MatchContext:
    """Pick which of a sender's active matches a report is about.

    A match whose opponent is named in the text wins, then a match with any
    participant named, then the earliest-created match.
    """
    if not candidates:
        raise NoActiveMatchError("No active match for sender")

    ordered = sorted(candidates, key=lambda c: c.match.created_at or "")
    if len(ordered) == 1:
        return ordered[0]

    text = raw_text.lower()
    for context in ordered:
        opponents = [
            p for p in (context.player1, context.player2)
            if p is not None and p.id != sender_player_id
        ]
        if any(_mentioned(p.name, text) for p in opponents):
            return context

    for context in ordered:
        players = [p for p in (context.player1, context.player2) if p is not None]
        if any(_mentioned(p.name, text) for p in players):
            return context

    return ordered[0]


def _winner_holds_higher_score(
    context: MatchContext, winner_id: str, player1_score: int, player2_score: int
) -> bool:
    if winner_id == context.match.player1_id:
        return player1_score > player2_score
    if winner_id == context.match.player2_id:
        return player2_score > player1_score
    return False


# ============================================================================
# Workflow
# ============================================================================


class ScoreReportWorkflow:
    """Turns inbound score texts into match results, with a director in the loop."""

    def __init__(
        self,
        store: MatchStore,
        notifier: Notifier | None = None,
        auto_approve_threshold: int = AUTO_APPROVE_THRESHOLD,
    ):
        self.store = store
        self.notifier = notifier or LoggingNotifier()
        self.auto_approve_threshold = auto_approve_threshold

    # ------------------------------------------------------------------
    # Intake
    # ------------------------------------------------------------------

    def submit_score_report(
        self,
        sender: Sender,
        raw_text: str,
        candidates: Sequence[MatchContext],
    ) -> IntakeResult:
        """Record a report against one of the sender's active matches.

        Applies it straight away when trust is high enough and a winner is
        bound; otherwise it waits for a director. Raises NoActiveMatchError
        when candidates is empty.
        """
        context = select_match(raw_text, candidates, sender.player_id)
        match = context.match

        parsed = parse_score_text(raw_text)
        validation = validate_score(parsed, context.match_length)
        trust = trust_score(parsed, validation)
        scores = orient_scores(parsed, context)
        winner_id = resolve_winner(parsed, context, scores)

        report = self.store.create_report(
            ScoreReport(
                id=str(uuid.uuid4()),
                match_id=match.id,
                reported_by_phone=sender.phone,
                reported_by_player_id=sender.player_id,
                raw_text=raw_text,
                parsed_winner_id=winner_id,
                parsed_player1_score=scores.player1_score,
                parsed_player2_score=scores.player2_score,
                confidence_score=trust,
                status=ReportStatus.PENDING,
                created_at=now_iso(),
            )
        )
        logger.info(
            f"Report {report.id} for match {match.id}: {parsed.confidence.value} parse, "
            f"trust {trust}, winner {winner_id}"
            + (f" ({validation.error})" if not validation.valid else "")
        )

        auto = should_auto_apply(
            trust,
            winner_id,
            scores.player1_score,
            scores.player2_score,
            self.auto_approve_threshold,
        ) and _winner_holds_higher_score(
            context, winner_id, scores.player1_score, scores.player2_score
        )
        if not auto:
            return IntakeResult(
                report=report,
                context=context,
                reply=pending_message(context, scores.player1_score, scores.player2_score),
            )

        try:
            report, match = self.store.apply_report(
                report.id,
                winner_id,
                scores.player1_score,
                scores.player2_score,
                approved_by=AUTO_APPROVER,
            )
        except MatchAlreadyRecordedError:
            logger.warning(f"Report {report.id} lost race: match {match.id} already recorded")
            report = self.store.resolve_report(
                report.id, ReportStatus.REJECTED, ALREADY_RECORDED_NOTE
            )
            self._notify(report, ALREADY_RECORDED_MESSAGE)
            return IntakeResult(report=report, context=context, reply=ALREADY_RECORDED_MESSAGE)
        except ReportAlreadyResolvedError:
            # Resolved by a director between intake and auto-apply
            resolved = self.store.get_report(report.id) or report
            logger.warning(
                f"Report {report.id} was {resolved.status.value} by a director before auto-apply"
            )
            return IntakeResult(report=resolved, context=context, reply=ALREADY_RECORDED_MESSAGE)

        context.match = match
        message = approved_message(
            context.name_of(winner_id) or "Winner", match.player1_score, match.player2_score
        )
        logger.info(f"Report {report.id} auto-approved: match {match.id} completed")
        self._notify(report, message)
        return IntakeResult(report=report, context=context, reply=message, auto_applied=True)

    def handle_inbound(self, phone: str, raw_text: str) -> tuple[str, IntakeResult | None]:
        """Identify the sender of a text, find their matches and submit.

        Returns the reply to send back, plus the intake result when a report
        was created.
        """
        player = self.store.find_player_by_phone(phone)
        if player is None:
            logger.info(f"Text from unregistered number {phone}")
            return UNKNOWN_SENDER_MESSAGE, None

        candidates = self.store.active_match_contexts(player.id)
        try:
            result = self.submit_score_report(
                Sender(phone=phone, player_id=player.id), raw_text.strip(), candidates
            )
        except NoActiveMatchError:
            logger.info(f"No active match for {player.name} ({player.id})")
            return NO_ACTIVE_MATCH_MESSAGE, None
        return result.reply, result

    # ------------------------------------------------------------------
    # Director actions
    # ------------------------------------------------------------------

    def pending_reports(self) -> list[ScoreReport]:
        """The manual queue: open reports, oldest first."""
        reports = self.store.list_reports(ReportStatus.PENDING) + self.store.list_reports(
            ReportStatus.NEEDS_CLARIFICATION
        )
        return sorted(reports, key=lambda r: r.created_at or "")

    def approve_report(
        self,
        report_id: str,
        override_scores: tuple[int, int] | None = None,
        approved_by: str | None = None,
        correction: bool = False,
    ) -> tuple[ScoreReport, Match]:
        """Apply a report's scores (or the director's override) to its match.

        correction=True lets an already-completed match be overwritten, as long
        as the division hasn't moved past that match's round.
        """
        report = self._open_report(report_id)
        context = self.store.match_context(report.match_id)

        if override_scores is not None:
            player1_score, player2_score = override_scores
        else:
            player1_score = report.parsed_player1_score
            player2_score = report.parsed_player2_score

        validation = check_scores(player1_score, player2_score, context.match_length)
        if not validation.valid:
            raise InvalidScoreError(validation.error)

        winner_id = (
            context.match.player1_id
            if player1_score > player2_score
            else context.match.player2_id
        )
        if winner_id is None:
            raise InvalidScoreError("Match has no opponent to record a result against")

        if correction and self._round_has_advanced(context.match):
            raise MatchAlreadyRecordedError(
                f"Match {context.match.id} can't be corrected: round {context.match.round_number} "
                "has already been advanced"
            )

        report, match = self.store.apply_report(
            report.id,
            winner_id,
            player1_score,
            player2_score,
            approved_by=approved_by,
            correction=correction,
        )
        context.match = match
        logger.info(
            f"Report {report.id} approved by {approved_by or 'director'}: "
            f"match {match.id} {player1_score}-{player2_score}"
            + (" (correction)" if correction else "")
        )
        self._notify(
            report,
            approved_message(context.name_of(winner_id) or "Winner", player1_score, player2_score),
        )
        return report, match

    def reject_report(self, report_id: str, reason: str | None = None) -> ScoreReport:
        """Reject a report. The match is left alone and the report is never retried."""
        report = self._open_report(report_id)
        context = self.store.match_context(report.match_id)
        report = self.store.resolve_report(report.id, ReportStatus.REJECTED, reason)
        logger.info(f"Report {report.id} rejected" + (f": {reason}" if reason else ""))
        self._notify(report, rejected_message(context, reason))
        return report

    def request_clarification(self, report_id: str, question: str | None = None) -> ScoreReport:
        """Park a report and ask the sender to resend a clearer score."""
        report = self._open_report(report_id)
        context = self.store.match_context(report.match_id)
        report = self.store.resolve_report(
            report.id, ReportStatus.NEEDS_CLARIFICATION, question
        )
        logger.info(f"Report {report.id} needs clarification")
        self._notify(report, clarification_message(context, question))
        return report

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _open_report(self, report_id: str) -> ScoreReport:
        report = self.store.get_report(report_id)
        if report is None:
            raise ReportNotFoundError(report_id)
        if not report.is_open:
            raise ReportAlreadyResolvedError(
                f"Report {report_id} is already {report.status.value}"
            )
        return report

    def _round_has_advanced(self, match: Match) -> bool:
        bracket = self.store.get_bracket(match.bracket_id)
        if bracket is None:
            return False
        states = self.store.division_brackets(bracket.division_id)
        return any(
            m.round_number > match.round_number
            for state in states.values()
            for m in state.matches
        )

    def _notify(self, report: ScoreReport, message: str) -> None:
        try:
            self.notifier.on_report_resolved(report, message)
        except Exception as e:
            logger.warning(f"Notifier failed for report {report.id}: {e}")
