"""
arena/server.py - FastAPI tournament server for Smackdown.

Endpoints:
    POST   /players                  Register a player
    GET    /players/{id}             Get player details
    POST   /divisions                Create a division
    GET    /divisions/{id}           Division with its brackets
    POST   /divisions/{id}/start     Create brackets and draw round 1
    GET    /brackets/{id}            Bracket with its matches
    POST   /brackets/{id}/advance    Advance the division a round
    GET    /matches/{id}             Get match details
    POST   /matches/{id}/start       Mark a match as being played

Score reports:
    POST   /sms                      SMS webhook (form From/Body, TwiML reply)
    POST   /reports/inbound          Same intake, JSON in and out
    GET    /reports                  Manual queue (or ?status=...)
    GET    /reports/{id}             Get report details
    POST   /reports/{id}/approve     Director approves (optionally with scores)
    POST   /reports/{id}/reject      Director rejects
    POST   /reports/{id}/clarify     Ask the sender to resend

    GET    /outbox                   Messages waiting for the SMS sender
    GET    /health                   Server health check
"""

import logging
from contextlib import asynccontextmanager
from dataclasses import asdict
from enum import Enum
from typing import Any

from fastapi import FastAPI, Form, HTTPException, Response
from pydantic import BaseModel

from smackdown.bracket import RoundNotCompleteError
from smackdown.config import SmackdownConfig
from smackdown.models import BracketState, ReportStatus, ScoreReport
from smackdown.notify import ERROR_MESSAGE
from smackdown.seeding import make_rng
from smackdown.sms import twiml_response
from smackdown.store import (
    DuplicateBracketError,
    MatchAlreadyRecordedError,
    ReportAlreadyResolvedError,
)
from smackdown.tournament import (
    BracketNotFoundError,
    DivisionNotFoundError,
    advance_round,
    start_division,
)
from smackdown.workflow import (
    InvalidScoreError,
    ReportNotFoundError,
    ScoreReportWorkflow,
)

from .db import ArenaDB

logger = logging.getLogger(__name__)


class OutboxNotifier:
    """Queues report outcomes in the outbox table for an SMS sender to deliver."""

    def __init__(self, db: ArenaDB):
        self.db = db

    def on_report_resolved(self, report: ScoreReport, message: str) -> None:
        self.db.enqueue_message(report.reported_by_phone, message, report.id)
        logger.info(f"Queued reply for report {report.id} to {report.reported_by_phone}")


# Global DB instance - set during lifespan
_db: ArenaDB | None = None
_config = SmackdownConfig()


def get_db() -> ArenaDB:
    assert _db is not None, "DB not initialized"
    return _db


def get_workflow() -> ScoreReportWorkflow:
    db = get_db()
    return ScoreReportWorkflow(
        db,
        notifier=OutboxNotifier(db),
        auto_approve_threshold=_config.scoring.auto_approve_threshold,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    global _db, _config
    _config = getattr(app.state, "config", None) or SmackdownConfig()
    db_path = getattr(app.state, "db_path", None) or _config.arena.db_path
    _db = ArenaDB(db_path)
    logger.info(f"Arena DB initialized: {db_path}")
    _log_startup_config()

    yield
    _db = None


def _log_startup_config():
    """Log settings on startup so operators can verify them."""
    logger.info("=" * 50)
    logger.info("Smackdown startup config:")
    logger.info(f"  Auto-approve threshold: {_config.scoring.auto_approve_threshold}")
    logger.info(f"  Default match length: {_config.scoring.default_match_length}")
    logger.info(f"  Starting table: {_config.bracket.starting_table}")
    if _config.bracket.seed is not None:
        logger.info(f"  Draw seed: {_config.bracket.seed}")
    if _config.sms.phone_number:
        logger.info(f"  SMS number: {_config.sms.phone_number}")
    else:
        logger.info("  SMS number: NOT configured (webhook still accepts texts)")
    logger.info("=" * 50)


app = FastAPI(title="Smackdown", lifespan=lifespan)

# Allow the director dashboard (and other frontends) to call the API
from starlette.middleware.cors import CORSMiddleware

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)


# ======================================================================
# Request/Response Models
# ======================================================================


class PlayerRequest(BaseModel):
    name: str
    phone: str | None = None
    email: str | None = None


class PlayerResponse(BaseModel):
    id: str
    name: str
    phone: str | None = None
    email: str | None = None
    created_at: str | None = None


class DivisionRequest(BaseModel):
    name: str
    match_length: int | None = None  # falls back to [scoring] default_match_length
    clock_required: bool = False


class DivisionResponse(BaseModel):
    id: str
    name: str
    match_length: int
    clock_required: bool
    created_at: str | None = None
    brackets: list[dict[str, Any]] = []


class StartRequest(BaseModel):
    player_ids: list[str]
    seed: int | None = None


class MatchResponse(BaseModel):
    id: str
    bracket_id: str
    round_number: int
    match_number: int
    player1_id: str | None = None
    player2_id: str | None = None
    winner_id: str | None = None
    player1_score: int = 0
    player2_score: int = 0
    table_number: int | None = None
    status: str
    created_at: str | None = None
    started_at: str | None = None
    completed_at: str | None = None


class BracketResponse(BaseModel):
    id: str
    division_id: str
    bracket_type: str
    current_round: int
    status: str
    created_at: str | None = None
    matches: list[MatchResponse] = []


class AdvanceRequest(BaseModel):
    expected_round: int | None = None


class AdvanceResponse(BaseModel):
    advanced: bool
    message: str
    from_round: int | None = None
    to_round: int | None = None
    matches: list[MatchResponse] = []
    main_winner_id: str | None = None
    consolation_winner_id: str | None = None


class InboundRequest(BaseModel):
    phone: str
    text: str


class InboundResponse(BaseModel):
    reply: str
    report_id: str | None = None
    match_id: str | None = None
    status: str | None = None
    confidence_score: int | None = None
    auto_applied: bool = False


class ReportResponse(BaseModel):
    id: str
    match_id: str
    reported_by_phone: str
    reported_by_player_id: str | None = None
    raw_text: str
    parsed_winner_id: str | None = None
    parsed_player1_score: int | None = None
    parsed_player2_score: int | None = None
    confidence_score: int
    status: str
    resolution_note: str | None = None
    approved_by: str | None = None
    approved_at: str | None = None
    created_at: str | None = None


class ApproveRequest(BaseModel):
    player1_score: int | None = None
    player2_score: int | None = None
    approved_by: str | None = None
    correction: bool = False


class ApproveResponse(BaseModel):
    report: ReportResponse
    match: MatchResponse


class RejectRequest(BaseModel):
    reason: str | None = None


class ClarifyRequest(BaseModel):
    question: str | None = None


class OutboxMessage(BaseModel):
    id: str
    report_id: str | None = None
    phone: str
    message: str
    created_at: str | None = None


class HealthResponse(BaseModel):
    status: str
    active_matches: int
    open_reports: int


# ======================================================================
# Helpers
# ======================================================================


def _plain(obj: Any) -> dict[str, Any]:
    """Dataclass to dict, with status enums flattened to their values."""
    return asdict(
        obj,
        dict_factory=lambda items: {k: v.value if isinstance(v, Enum) else v for k, v in items},
    )


def _bracket_payload(state: BracketState) -> dict[str, Any]:
    payload = _plain(state.bracket)
    payload["matches"] = [_plain(m) for m in state.matches]
    return payload


def _report_or_404(report_id: str) -> ScoreReport:
    report = get_db().get_report(report_id)
    if report is None:
        raise HTTPException(status_code=404, detail="Report not found")
    return report


# ======================================================================
# Players & Divisions
# ======================================================================


@app.post("/players", response_model=PlayerResponse)
def create_player(req: PlayerRequest) -> dict[str, Any]:
    """Register a player. The phone number is how their texts are matched."""
    player = get_db().create_player(req.name, req.phone, req.email)
    logger.info(f"Player registered: {player.name} ({player.id})")
    return _plain(player)


@app.get("/players/{player_id}", response_model=PlayerResponse)
def get_player(player_id: str) -> dict[str, Any]:
    player = get_db().get_player(player_id)
    if player is None:
        raise HTTPException(status_code=404, detail="Player not found")
    return _plain(player)


@app.post("/divisions", response_model=DivisionResponse)
def create_division(req: DivisionRequest) -> dict[str, Any]:
    match_length = req.match_length or _config.scoring.default_match_length
    if match_length < 1:
        raise HTTPException(status_code=422, detail="match_length must be positive")
    division = get_db().create_division(req.name, match_length, req.clock_required)
    logger.info(f"Division created: {division.name} (race to {match_length})")
    return _plain(division)


@app.get("/divisions/{division_id}", response_model=DivisionResponse)
def get_division(division_id: str) -> dict[str, Any]:
    db = get_db()
    division = db.get_division(division_id)
    if division is None:
        raise HTTPException(status_code=404, detail="Division not found")
    payload = _plain(division)
    payload["brackets"] = [_plain(s.bracket) for s in db.division_brackets(division_id).values()]
    return payload


@app.post("/divisions/{division_id}/start", response_model=BracketResponse)
def start_division_brackets(division_id: str, req: StartRequest) -> dict[str, Any]:
    """Create the main and consolation brackets and draw round 1."""
    db = get_db()
    for player_id in req.player_ids:
        if db.get_player(player_id) is None:
            raise HTTPException(status_code=422, detail=f"Unknown player {player_id}")

    seed = req.seed if req.seed is not None else _config.bracket.seed
    try:
        state = start_division(
            db,
            division_id,
            req.player_ids,
            rng=make_rng(seed),
            starting_table=_config.bracket.starting_table,
        )
    except DivisionNotFoundError:
        raise HTTPException(status_code=404, detail="Division not found")
    except DuplicateBracketError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))
    return _bracket_payload(state)


# ======================================================================
# Brackets & Matches
# ======================================================================


@app.get("/brackets/{bracket_id}", response_model=BracketResponse)
def get_bracket(bracket_id: str) -> dict[str, Any]:
    state = get_db().bracket_state(bracket_id)
    if state is None:
        raise HTTPException(status_code=404, detail="Bracket not found")
    return _bracket_payload(state)


@app.post("/brackets/{bracket_id}/advance", response_model=AdvanceResponse)
def advance_bracket(bracket_id: str, req: AdvanceRequest | None = None) -> dict[str, Any]:
    """Advance the division that owns this bracket by one round.

    Send expected_round to make retries safe: a repeat of an advance that
    already happened comes back with advanced=false.
    """
    expected_round = req.expected_round if req else None
    try:
        result = advance_round(
            get_db(),
            bracket_id,
            expected_round=expected_round,
            starting_table=_config.bracket.starting_table,
        )
    except BracketNotFoundError:
        raise HTTPException(status_code=404, detail="Bracket not found")
    except RoundNotCompleteError as e:
        raise HTTPException(status_code=409, detail=str(e))
    return _plain(result)


@app.get("/matches/{match_id}", response_model=MatchResponse)
def get_match(match_id: str) -> dict[str, Any]:
    match = get_db().get_match(match_id)
    if match is None:
        raise HTTPException(status_code=404, detail="Match not found")
    return _plain(match)


@app.post("/matches/{match_id}/start", response_model=MatchResponse)
def start_match(match_id: str) -> dict[str, Any]:
    """Mark a pending match as in progress (players are at the table)."""
    db = get_db()
    if db.get_match(match_id) is None:
        raise HTTPException(status_code=404, detail="Match not found")
    if not db.start_match(match_id):
        raise HTTPException(status_code=409, detail="Match is not pending")
    return _plain(db.get_match(match_id))


# ======================================================================
# Score Report Intake
# ======================================================================


@app.post("/sms")
def sms_webhook(From: str = Form(""), Body: str = Form("")) -> Response:
    """Inbound SMS webhook. Always answers 200 with a TwiML reply."""
    logger.info(f"SMS from {From}: {Body!r}")
    try:
        reply, _ = get_workflow().handle_inbound(From, Body)
    except Exception as e:
        logger.exception(f"SMS intake failed for {From}: {e}")
        reply = ERROR_MESSAGE
    return Response(content=twiml_response(reply), media_type="text/xml")


@app.post("/reports/inbound", response_model=InboundResponse)
def inbound_report(req: InboundRequest) -> dict[str, Any]:
    """Submit a score text as JSON, for channels other than the SMS webhook."""
    reply, result = get_workflow().handle_inbound(req.phone, req.text)
    if result is None:
        return {"reply": reply}
    return {
        "reply": reply,
        "report_id": result.report.id,
        "match_id": result.report.match_id,
        "status": result.report.status.value,
        "confidence_score": result.report.confidence_score,
        "auto_applied": result.auto_applied,
    }


# ======================================================================
# Director Review
# ======================================================================


@app.get("/reports", response_model=list[ReportResponse])
def list_reports(status: ReportStatus | None = None) -> list[dict[str, Any]]:
    """Reports needing a director (default), or every report with one status."""
    if status is None:
        reports = get_workflow().pending_reports()
    else:
        reports = get_db().list_reports(status)
    return [_plain(r) for r in reports]


@app.get("/reports/{report_id}", response_model=ReportResponse)
def get_report(report_id: str) -> dict[str, Any]:
    return _plain(_report_or_404(report_id))


@app.post("/reports/{report_id}/approve", response_model=ApproveResponse)
def approve_report(report_id: str, req: ApproveRequest | None = None) -> dict[str, Any]:
    """Approve a report, optionally overriding the parsed scores."""
    req = req or ApproveRequest()
    override = None
    if req.player1_score is not None or req.player2_score is not None:
        if req.player1_score is None or req.player2_score is None:
            raise HTTPException(status_code=422, detail="Override needs both scores")
        override = (req.player1_score, req.player2_score)

    try:
        report, match = get_workflow().approve_report(
            report_id,
            override_scores=override,
            approved_by=req.approved_by,
            correction=req.correction,
        )
    except ReportNotFoundError:
        raise HTTPException(status_code=404, detail="Report not found")
    except (ReportAlreadyResolvedError, MatchAlreadyRecordedError) as e:
        raise HTTPException(status_code=409, detail=str(e))
    except InvalidScoreError as e:
        raise HTTPException(status_code=422, detail=str(e))
    return {"report": _plain(report), "match": _plain(match)}


@app.post("/reports/{report_id}/reject", response_model=ReportResponse)
def reject_report(report_id: str, req: RejectRequest | None = None) -> dict[str, Any]:
    try:
        report = get_workflow().reject_report(report_id, req.reason if req else None)
    except ReportNotFoundError:
        raise HTTPException(status_code=404, detail="Report not found")
    except ReportAlreadyResolvedError as e:
        raise HTTPException(status_code=409, detail=str(e))
    return _plain(report)


@app.post("/reports/{report_id}/clarify", response_model=ReportResponse)
def clarify_report(report_id: str, req: ClarifyRequest | None = None) -> dict[str, Any]:
    try:
        report = get_workflow().request_clarification(
            report_id, req.question if req else None
        )
    except ReportNotFoundError:
        raise HTTPException(status_code=404, detail="Report not found")
    except ReportAlreadyResolvedError as e:
        raise HTTPException(status_code=409, detail=str(e))
    return _plain(report)


# ======================================================================
# Outbox & Health
# ======================================================================


@app.get("/outbox", response_model=list[OutboxMessage])
def get_outbox(limit: int = 100) -> list[dict[str, Any]]:
    """Queued replies, newest first."""
    return get_db().outbox(limit)


@app.get("/health", response_model=HealthResponse)
def health() -> dict[str, Any]:
    db = get_db()
    return {
        "status": "ok",
        "active_matches": db.active_matches(),
        "open_reports": db.open_reports(),
    }
