"""Tests for smackdown.workflow - score report intake and director review."""

import threading

import pytest

from arena.db import ArenaDB
from smackdown.models import (
    Match,
    MatchContext,
    MatchStatus,
    Player,
    ReportStatus,
)
from smackdown.notify import (
    ALREADY_RECORDED_MESSAGE,
    NO_ACTIVE_MATCH_MESSAGE,
    UNKNOWN_SENDER_MESSAGE,
)
from smackdown.seeding import make_rng
from smackdown.store import MatchAlreadyRecordedError, ReportAlreadyResolvedError
from smackdown.tournament import advance_round, start_division
from smackdown.workflow import (
    InvalidScoreError,
    NoActiveMatchError,
    ReportNotFoundError,
    ScoreReportWorkflow,
    Sender,
    select_match,
)

JOHN_PHONE = "+1 (555) 010-0001"
SARAH_PHONE = "+1 (555) 010-0002"


class RecordingNotifier:
    def __init__(self):
        self.sent = []

    def on_report_resolved(self, report, message):
        self.sent.append((report.id, report.status, message))


class BrokenNotifier:
    def on_report_resolved(self, report, message):
        raise ConnectionError("SMS gateway down")


class InterleavingDB(ArenaDB):
    """Runs a callback as soon as a report is stored, before intake continues."""

    on_report_created = None

    def create_report(self, report):
        created = super().create_report(report)
        if self.on_report_created is not None:
            self.on_report_created(created)
        return created


@pytest.fixture
def db():
    """Fresh in-memory DB for each test."""
    return ArenaDB(":memory:")


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def workflow(db, notifier):
    return ScoreReportWorkflow(db, notifier=notifier)


@pytest.fixture
def duel(db):
    """John vs Sarah, one race-to-9 match in main round 1."""
    john = db.create_player("John", JOHN_PHONE)
    sarah = db.create_player("Sarah", SARAH_PHONE)
    division = db.create_division("9-ball", match_length=9)
    state = start_division(db, division.id, [john.id, sarah.id], rng=make_rng(1))
    (match,) = state.matches
    return {"john": john, "sarah": sarah, "division": division, "bracket": state.bracket, "match": match}


def _score_of(match: Match, player_id: str) -> int:
    return match.player1_score if match.player1_id == player_id else match.player2_score


def _submit(workflow, db, player, text):
    sender = Sender(phone=player.phone, player_id=player.id)
    return workflow.submit_score_report(sender, text, db.active_match_contexts(player.id))


# ======================================================================
# Match selection
# ======================================================================


def _context(match_id, created_at, p1, p2) -> MatchContext:
    match = Match(
        id=match_id,
        bracket_id="b",
        round_number=1,
        match_number=1,
        player1_id=p1.id,
        player2_id=p2.id,
        created_at=created_at,
    )
    return MatchContext(match=match, player1=p1, player2=p2, match_length=9)


class TestSelectMatch:
    me = Player(id="me", name="Mike")
    lisa = Player(id="lisa", name="Lisa")
    tom = Player(id="tom", name="Tom")

    def test_no_candidates(self):
        with pytest.raises(NoActiveMatchError):
            select_match("9-4", [])

    def test_single_candidate(self):
        only = _context("m1", "2026-01-01T10:00:00", self.me, self.lisa)
        assert select_match("whatever", [only], "me") is only

    def test_opponent_named(self):
        vs_lisa = _context("m1", "2026-01-01T10:00:00", self.me, self.lisa)
        vs_tom = _context("m2", "2026-01-01T11:00:00", self.me, self.tom)
        assert select_match("Mike 9 Tom 3", [vs_lisa, vs_tom], "me") is vs_tom

    def test_opponent_beats_participant(self):
        # Sender's own name matches both; the opponent's name decides
        vs_lisa = _context("m1", "2026-01-01T10:00:00", self.me, self.lisa)
        vs_tom = _context("m2", "2026-01-01T11:00:00", self.tom, self.me)
        assert select_match("mike beat tom 9-2", [vs_lisa, vs_tom], "me") is vs_tom

    def test_any_participant_when_sender_unknown(self):
        vs_lisa = _context("m1", "2026-01-01T10:00:00", self.me, self.lisa)
        vs_tom = _context("m2", "2026-01-01T11:00:00", self.me, self.tom)
        assert select_match("tom 9 mike 3", [vs_lisa, vs_tom], None) is vs_tom

    def test_earliest_when_nobody_named(self):
        later = _context("m2", "2026-01-01T11:00:00", self.me, self.tom)
        earlier = _context("m1", "2026-01-01T10:00:00", self.me, self.lisa)
        assert select_match("9-4", [later, earlier], "me") is earlier


# ======================================================================
# Intake
# ======================================================================


class TestIntake:
    def test_high_confidence_auto_applies(self, db, workflow, notifier, duel):
        result = _submit(workflow, db, duel["john"], "John 9 Sarah 4")

        assert result.auto_applied
        assert result.report.status == ReportStatus.APPROVED
        assert result.report.confidence_score == 90
        assert result.report.approved_by == "auto"
        assert result.reply == "Score recorded! John wins 9-4. Thanks for reporting!"

        match = db.get_match(duel["match"].id)
        assert match.status == MatchStatus.COMPLETED
        assert match.winner_id == duel["john"].id
        assert _score_of(match, duel["john"].id) == 9
        assert _score_of(match, duel["sarah"].id) == 4
        assert match.completed_at is not None
        assert len(notifier.sent) == 1

    def test_reversed_names_bind_the_right_winner(self, db, workflow, duel):
        result = _submit(workflow, db, duel["sarah"], "sarah 4 john 9")
        match = db.get_match(duel["match"].id)
        assert result.auto_applied
        assert match.winner_id == duel["john"].id
        assert _score_of(match, duel["john"].id) == 9

    def test_invalid_score_queued(self, db, workflow, notifier, duel):
        result = _submit(workflow, db, duel["john"], "John beat Sarah 7-2")

        assert not result.auto_applied
        assert result.report.status == ReportStatus.PENDING
        assert result.report.confidence_score == 40
        assert result.report.parsed_winner_id == duel["john"].id
        assert "Pending director approval" in result.reply

        match = db.get_match(duel["match"].id)
        assert match.status == MatchStatus.PENDING
        assert match.winner_id is None
        assert notifier.sent == []

    def test_bare_scores_queued(self, db, workflow, duel):
        result = _submit(workflow, db, duel["john"], "9-4")
        assert result.report.confidence_score == 60
        assert result.report.status == ReportStatus.PENDING

    def test_unparseable_queued_without_scores(self, db, workflow, duel):
        result = _submit(workflow, db, duel["john"], "we're done")
        assert result.report.confidence_score == 30
        assert result.report.parsed_player1_score is None
        assert "pending director approval" in result.reply

    def test_no_active_match(self, db, workflow, duel):
        _submit(workflow, db, duel["john"], "John 9 Sarah 4")
        with pytest.raises(NoActiveMatchError):
            _submit(workflow, db, duel["sarah"], "John 9 Sarah 4")

    def test_lost_race_rejects_report(self, db, workflow, notifier, duel):
        stale = db.active_match_contexts(duel["sarah"].id)
        _submit(workflow, db, duel["john"], "John 9 Sarah 4")

        result = workflow.submit_score_report(
            Sender(phone=SARAH_PHONE, player_id=duel["sarah"].id), "John 9 Sarah 4", stale
        )
        assert not result.auto_applied
        assert result.reply == ALREADY_RECORDED_MESSAGE
        assert result.report.status == ReportStatus.REJECTED
        assert result.report.resolution_note == "match already recorded"
        assert notifier.sent[-1][2] == ALREADY_RECORDED_MESSAGE

    def test_concurrent_reports_complete_match_once(self, db, workflow, duel):
        contexts = {
            p: db.active_match_contexts(duel[p].id) for p in ("john", "sarah")
        }
        barrier = threading.Barrier(2)
        results = {}

        def report(who):
            barrier.wait()
            sender = Sender(phone=duel[who].phone, player_id=duel[who].id)
            results[who] = workflow.submit_score_report(sender, "John 9 Sarah 4", contexts[who])

        threads = [threading.Thread(target=report, args=(p,)) for p in ("john", "sarah")]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        statuses = sorted(r.report.status.value for r in results.values())
        assert statuses == ["approved", "rejected"]
        assert sum(r.auto_applied for r in results.values()) == 1
        assert db.get_match(duel["match"].id).status == MatchStatus.COMPLETED

    def test_oversized_score_goes_to_manual_queue(self, workflow, notifier, duel):
        reply, result = workflow.handle_inbound(JOHN_PHONE, "John 99999999999999999999 Sarah 4")

        assert "pending director approval" in reply
        assert result.report.status == ReportStatus.PENDING
        assert result.report.confidence_score == 30
        assert result.report.parsed_player1_score is None
        assert [r.id for r in workflow.pending_reports()] == [result.report.id]
        assert notifier.sent == []

    def test_director_approval_during_intake(self, notifier):
        db = InterleavingDB(":memory:")
        workflow = ScoreReportWorkflow(db, notifier=notifier)
        john = db.create_player("John", JOHN_PHONE)
        sarah = db.create_player("Sarah", SARAH_PHONE)
        division = db.create_division("9-ball", match_length=9)
        (match,) = start_division(db, division.id, [john.id, sarah.id], rng=make_rng(1)).matches
        db.on_report_created = lambda report: workflow.approve_report(report.id, approved_by="td")

        reply, result = workflow.handle_inbound(JOHN_PHONE, "John 9 Sarah 4")

        assert reply == ALREADY_RECORDED_MESSAGE
        assert not result.auto_applied
        assert result.report.status == ReportStatus.APPROVED
        assert result.report.approved_by == "td"
        assert db.get_match(match.id).winner_id == john.id
        assert len(notifier.sent) == 1


class TestHandleInbound:
    def test_unknown_sender(self, workflow, duel):
        reply, result = workflow.handle_inbound("+15559999999", "John 9 Sarah 4")
        assert reply == UNKNOWN_SENDER_MESSAGE
        assert result is None

    def test_phone_format_ignored(self, workflow, duel):
        reply, result = workflow.handle_inbound("5550100001", "John 9 Sarah 4")
        assert result is not None
        assert result.report.reported_by_player_id == duel["john"].id
        assert result.auto_applied

    def test_no_active_match(self, workflow, duel):
        workflow.handle_inbound(JOHN_PHONE, "John 9 Sarah 4")
        reply, result = workflow.handle_inbound(SARAH_PHONE, "John 9 Sarah 4")
        assert reply == NO_ACTIVE_MATCH_MESSAGE
        assert result is None


# ======================================================================
# Director actions
# ======================================================================


class TestDirectorApproval:
    def test_approve_parsed_scores(self, db, workflow, notifier, duel):
        # Medium confidence: valid but never auto-applied
        pending = _submit(workflow, db, duel["john"], "9-4").report
        report, match = workflow.approve_report(pending.id, approved_by="td")

        assert report.status == ReportStatus.APPROVED
        assert report.approved_by == "td"
        assert report.approved_at is not None
        assert match.status == MatchStatus.COMPLETED
        assert (match.player1_score, match.player2_score) == (9, 4)
        assert match.winner_id == match.player1_id
        assert notifier.sent[-1][2].startswith("Score recorded!")

    def test_override_scores(self, db, workflow, duel):
        pending = _submit(workflow, db, duel["john"], "John beat Sarah 7-2").report
        _, match = workflow.approve_report(pending.id, override_scores=(3, 9))
        assert (match.player1_score, match.player2_score) == (3, 9)
        assert match.winner_id == match.player2_id

    def test_invalid_override_rejected(self, db, workflow, duel):
        pending = _submit(workflow, db, duel["john"], "9-4").report
        with pytest.raises(InvalidScoreError, match="One player must reach 9 points"):
            workflow.approve_report(pending.id, override_scores=(7, 2))
        assert db.get_report(pending.id).status == ReportStatus.PENDING
        assert db.get_match(duel["match"].id).status == MatchStatus.PENDING

    def test_unparsed_report_needs_override(self, db, workflow, duel):
        pending = _submit(workflow, db, duel["john"], "gg").report
        with pytest.raises(InvalidScoreError):
            workflow.approve_report(pending.id)

    def test_unknown_report(self, workflow):
        with pytest.raises(ReportNotFoundError):
            workflow.approve_report("nope")

    def test_approve_twice(self, db, workflow, duel):
        pending = _submit(workflow, db, duel["john"], "9-4").report
        workflow.approve_report(pending.id)
        with pytest.raises(ReportAlreadyResolvedError):
            workflow.approve_report(pending.id)

    def test_conflict_leaves_report_open(self, db, workflow, duel):
        pending = _submit(workflow, db, duel["sarah"], "9-4").report
        _submit(workflow, db, duel["john"], "John 9 Sarah 4")

        with pytest.raises(MatchAlreadyRecordedError):
            workflow.approve_report(pending.id)
        assert db.get_report(pending.id).status == ReportStatus.PENDING

    def test_correction_overwrites_completed_match(self, db, workflow, duel):
        pending = _submit(workflow, db, duel["sarah"], "9-8").report
        first = _submit(workflow, db, duel["john"], "John 9 Sarah 4")
        assert first.auto_applied

        sarah_first = duel["match"].player1_id == duel["sarah"].id
        override = (9, 8) if sarah_first else (8, 9)
        _, match = workflow.approve_report(pending.id, override_scores=override, correction=True)
        assert match.winner_id == duel["sarah"].id
        assert _score_of(match, duel["sarah"].id) == 9
        assert _score_of(match, duel["john"].id) == 8

    def test_no_correction_after_round_advanced(self, db, workflow, duel):
        first = _submit(workflow, db, duel["john"], "John 9 Sarah 4")
        assert first.auto_applied
        advance_round(db, duel["bracket"].id)

        # Nothing is active any more, so submit straight against the context
        context = db.match_context(duel["match"].id)
        late = workflow.submit_score_report(
            Sender(phone=SARAH_PHONE, player_id=duel["sarah"].id), "9-8", [context]
        ).report
        with pytest.raises(MatchAlreadyRecordedError, match="already been advanced"):
            workflow.approve_report(late.id, correction=True)


class TestRejectAndClarify:
    def test_reject(self, db, workflow, notifier, duel):
        pending = _submit(workflow, db, duel["john"], "9-4").report
        report = workflow.reject_report(pending.id, "score disputed")

        assert report.status == ReportStatus.REJECTED
        assert report.resolution_note == "score disputed"
        assert db.get_match(duel["match"].id).status == MatchStatus.PENDING
        assert "was rejected: score disputed" in notifier.sent[-1][2]

    def test_rejected_is_terminal(self, db, workflow, duel):
        pending = _submit(workflow, db, duel["john"], "9-4").report
        workflow.reject_report(pending.id)
        with pytest.raises(ReportAlreadyResolvedError):
            workflow.approve_report(pending.id)
        with pytest.raises(ReportAlreadyResolvedError):
            workflow.reject_report(pending.id)

    def test_clarification_then_approve(self, db, workflow, notifier, duel):
        pending = _submit(workflow, db, duel["john"], "gg").report
        report = workflow.request_clarification(pending.id)
        assert report.status == ReportStatus.NEEDS_CLARIFICATION
        assert "resend" in notifier.sent[-1][2]

        report, match = workflow.approve_report(pending.id, override_scores=(9, 1))
        assert report.status == ReportStatus.APPROVED
        assert match.status == MatchStatus.COMPLETED

    def test_pending_queue_oldest_first(self, db, workflow, duel):
        first = _submit(workflow, db, duel["john"], "9-4").report
        second = _submit(workflow, db, duel["sarah"], "gg").report
        workflow.request_clarification(second.id)
        auto = _submit(workflow, db, duel["john"], "John 9 Sarah 4").report

        queue = [r.id for r in workflow.pending_reports()]
        assert queue == [first.id, second.id]
        assert auto.id not in queue

    def test_notifier_failure_does_not_undo(self, db, duel):
        workflow = ScoreReportWorkflow(db, notifier=BrokenNotifier())
        result = _submit(workflow, db, duel["john"], "John 9 Sarah 4")
        assert result.auto_applied
        assert db.get_report(result.report.id).status == ReportStatus.APPROVED
