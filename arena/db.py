"""
arena/db.py - SQLite storage for the tournament server.

All queries go through ArenaDB. One instance per server lifetime,
backed by a single SQLite file (or :memory: for tests). Implements
smackdown.store.MatchStore.

Match completion and round advancement are compare-and-swap updates inside
a transaction; a writer that loses the race sees rowcount 0 and backs out.
"""

import sqlite3
import threading
import uuid
from typing import Any, Sequence

from smackdown.bracket import AdvancePlan
from smackdown.models import (
    OPEN_REPORT_STATUSES,
    Bracket,
    BracketState,
    BracketStatus,
    BracketType,
    Division,
    Match,
    MatchContext,
    MatchDraft,
    MatchStatus,
    Player,
    ReportStatus,
    ScoreReport,
    now_iso,
)
from smackdown.sms import phone_key
from smackdown.store import (
    DuplicateBracketError,
    MatchAlreadyRecordedError,
    ReportAlreadyResolvedError,
)

_OPEN_REPORTS = tuple(s.value for s in OPEN_REPORT_STATUSES)
_ACTIVE_MATCHES = (MatchStatus.PENDING.value, MatchStatus.IN_PROGRESS.value)


class _LostRace(Exception):
    pass


class ArenaDB:
    """Thin wrapper around SQLite for players, brackets, matches and reports."""

    def __init__(self, path: str = "smackdown.db"):
        self._conn = sqlite3.connect(path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.execute("PRAGMA foreign_keys=ON")
        # One connection is shared by the server's worker threads
        self._lock = threading.RLock()
        self._create_tables()

    def _create_tables(self) -> None:
        self._conn.executescript(
            """
            CREATE TABLE IF NOT EXISTS players (
                id TEXT PRIMARY KEY,
                name TEXT NOT NULL,
                phone TEXT,
                phone_key TEXT,
                email TEXT,
                created_at TEXT
            );

            CREATE TABLE IF NOT EXISTS divisions (
                id TEXT PRIMARY KEY,
                name TEXT NOT NULL,
                match_length INTEGER NOT NULL DEFAULT 9,
                clock_required INTEGER NOT NULL DEFAULT 0,
                created_at TEXT
            );

            CREATE TABLE IF NOT EXISTS brackets (
                id TEXT PRIMARY KEY,
                division_id TEXT NOT NULL REFERENCES divisions(id),
                bracket_type TEXT NOT NULL,
                current_round INTEGER NOT NULL DEFAULT 1,
                status TEXT NOT NULL DEFAULT 'pending',
                created_at TEXT,
                UNIQUE (division_id, bracket_type)
            );

            CREATE TABLE IF NOT EXISTS matches (
                id TEXT PRIMARY KEY,
                bracket_id TEXT NOT NULL REFERENCES brackets(id),
                round_number INTEGER NOT NULL,
                match_number INTEGER NOT NULL,
                player1_id TEXT,
                player2_id TEXT,
                winner_id TEXT,
                player1_score INTEGER NOT NULL DEFAULT 0,
                player2_score INTEGER NOT NULL DEFAULT 0,
                table_number INTEGER,
                status TEXT NOT NULL DEFAULT 'pending',
                created_at TEXT,
                started_at TEXT,
                completed_at TEXT,
                UNIQUE (bracket_id, round_number, match_number)
            );

            CREATE TABLE IF NOT EXISTS score_reports (
                id TEXT PRIMARY KEY,
                match_id TEXT NOT NULL REFERENCES matches(id),
                reported_by_phone TEXT NOT NULL,
                reported_by_player_id TEXT,
                raw_text TEXT NOT NULL,
                parsed_winner_id TEXT,
                parsed_player1_score INTEGER,
                parsed_player2_score INTEGER,
                confidence_score INTEGER NOT NULL DEFAULT 0,
                status TEXT NOT NULL DEFAULT 'pending',
                resolution_note TEXT,
                approved_by TEXT,
                approved_at TEXT,
                created_at TEXT
            );

            CREATE TABLE IF NOT EXISTS outbox (
                id TEXT PRIMARY KEY,
                report_id TEXT,
                phone TEXT NOT NULL,
                message TEXT NOT NULL,
                created_at TEXT
            );

            CREATE INDEX IF NOT EXISTS idx_players_phone ON players (phone_key);
            CREATE INDEX IF NOT EXISTS idx_matches_p1 ON matches (player1_id, status);
            CREATE INDEX IF NOT EXISTS idx_matches_p2 ON matches (player2_id, status);
            CREATE INDEX IF NOT EXISTS idx_reports_status ON score_reports (status);
            """
        )

    # ------------------------------------------------------------------
    # Players & divisions
    # ------------------------------------------------------------------

    def create_player(
        self, name: str, phone: str | None = None, email: str | None = None
    ) -> Player:
        player = Player(id=str(uuid.uuid4()), name=name, phone=phone, email=email, created_at=now_iso())
        with self._lock, self._conn:
            self._conn.execute(
                "INSERT INTO players (id, name, phone, phone_key, email, created_at) "
                "VALUES (?, ?, ?, ?, ?, ?)",
                (player.id, name, phone, phone_key(phone) or None, email, player.created_at),
            )
        return player

    def get_player(self, player_id: str) -> Player | None:
        row = self._fetchone("SELECT * FROM players WHERE id = ?", (player_id,))
        return _player(row) if row else None

    def find_player_by_phone(self, phone: str) -> Player | None:
        """Match on the trailing national digits, so formatting doesn't matter."""
        key = phone_key(phone)
        if not key:
            return None
        row = self._fetchone(
            "SELECT * FROM players WHERE phone_key = ? ORDER BY created_at ASC, rowid ASC LIMIT 1",
            (key,),
        )
        return _player(row) if row else None

    def create_division(
        self, name: str, match_length: int = 9, clock_required: bool = False
    ) -> Division:
        division = Division(
            id=str(uuid.uuid4()),
            name=name,
            match_length=match_length,
            clock_required=clock_required,
            created_at=now_iso(),
        )
        with self._lock, self._conn:
            self._conn.execute(
                "INSERT INTO divisions (id, name, match_length, clock_required, created_at) "
                "VALUES (?, ?, ?, ?, ?)",
                (division.id, name, match_length, int(clock_required), division.created_at),
            )
        return division

    def get_division(self, division_id: str) -> Division | None:
        row = self._fetchone("SELECT * FROM divisions WHERE id = ?", (division_id,))
        return _division(row) if row else None

    # ------------------------------------------------------------------
    # Brackets
    # ------------------------------------------------------------------

    def create_bracket(
        self,
        division_id: str,
        bracket_type: BracketType,
        status: BracketStatus = BracketStatus.PENDING,
    ) -> Bracket:
        """Create a bracket. A division gets at most one of each type."""
        bracket = Bracket(
            id=str(uuid.uuid4()),
            division_id=division_id,
            bracket_type=bracket_type,
            current_round=1,
            status=status,
            created_at=now_iso(),
        )
        try:
            with self._lock, self._conn:
                self._conn.execute(
                    "INSERT INTO brackets (id, division_id, bracket_type, current_round, status, created_at) "
                    "VALUES (?, ?, ?, 1, ?, ?)",
                    (bracket.id, division_id, bracket_type.value, status.value, bracket.created_at),
                )
        except sqlite3.IntegrityError as e:
            raise DuplicateBracketError(
                f"Division {division_id} already has a {bracket_type.value} bracket"
            ) from e
        return bracket

    def get_bracket(self, bracket_id: str) -> Bracket | None:
        row = self._fetchone("SELECT * FROM brackets WHERE id = ?", (bracket_id,))
        return _bracket(row) if row else None

    def bracket_state(self, bracket_id: str) -> BracketState | None:
        bracket = self.get_bracket(bracket_id)
        if bracket is None:
            return None
        return BracketState(bracket=bracket, matches=self.bracket_matches(bracket_id))

    def bracket_matches(self, bracket_id: str) -> list[Match]:
        rows = self._fetchall(
            "SELECT * FROM matches WHERE bracket_id = ? ORDER BY round_number, match_number",
            (bracket_id,),
        )
        return [_match(r) for r in rows]

    def division_brackets(self, division_id: str) -> dict[BracketType, BracketState]:
        with self._lock:
            rows = self._fetchall(
                "SELECT * FROM brackets WHERE division_id = ? ORDER BY created_at", (division_id,)
            )
            return {
                BracketType(r["bracket_type"]): BracketState(
                    bracket=_bracket(r), matches=self.bracket_matches(r["id"])
                )
                for r in rows
            }

    # ------------------------------------------------------------------
    # Matches
    # ------------------------------------------------------------------

    def insert_matches(self, bracket_id: str, drafts: Sequence[MatchDraft]) -> list[Match]:
        with self._lock, self._conn:
            return self._insert_drafts(bracket_id, drafts)

    def _insert_drafts(self, bracket_id: str, drafts: Sequence[MatchDraft]) -> list[Match]:
        """Insert inside the caller's transaction."""
        now = _now()
        created = []
        for d in drafts:
            match = Match(
                id=str(uuid.uuid4()),
                bracket_id=bracket_id,
                round_number=d.round_number,
                match_number=d.match_number,
                player1_id=d.player1_id,
                player2_id=d.player2_id,
                winner_id=d.winner_id,
                table_number=d.table_number,
                status=d.status,
                created_at=now,
            )
            self._conn.execute(
                "INSERT INTO matches (id, bracket_id, round_number, match_number, player1_id, "
                "player2_id, winner_id, table_number, status, created_at) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    match.id,
                    bracket_id,
                    match.round_number,
                    match.match_number,
                    match.player1_id,
                    match.player2_id,
                    match.winner_id,
                    match.table_number,
                    match.status.value,
                    now,
                ),
            )
            created.append(match)
        return created

    def get_match(self, match_id: str) -> Match | None:
        row = self._fetchone("SELECT * FROM matches WHERE id = ?", (match_id,))
        return _match(row) if row else None

    def start_match(self, match_id: str) -> bool:
        """Mark a pending match as being played. Returns True if it was pending."""
        with self._lock, self._conn:
            cursor = self._conn.execute(
                "UPDATE matches SET status = 'in_progress', started_at = ? "
                "WHERE id = ? AND status = 'pending'",
                (_now(), match_id),
            )
        return cursor.rowcount == 1

    def match_context(self, match_id: str) -> MatchContext | None:
        row = self._fetchone(
            "SELECT m.*, b.bracket_type AS bracket_type, d.match_length AS match_length "
            "FROM matches m "
            "JOIN brackets b ON b.id = m.bracket_id "
            "JOIN divisions d ON d.id = b.division_id "
            "WHERE m.id = ?",
            (match_id,),
        )
        return self._context(row) if row else None

    def active_match_contexts(self, player_id: str) -> list[MatchContext]:
        """Playable matches (pending or in progress) the player is in, oldest first."""
        rows = self._fetchall(
            "SELECT m.*, b.bracket_type AS bracket_type, d.match_length AS match_length "
            "FROM matches m "
            "JOIN brackets b ON b.id = m.bracket_id "
            "JOIN divisions d ON d.id = b.division_id "
            "WHERE (m.player1_id = ? OR m.player2_id = ?) AND m.status IN (?, ?) "
            "ORDER BY m.created_at ASC, m.rowid ASC",
            (player_id, player_id, *_ACTIVE_MATCHES),
        )
        return [self._context(r) for r in rows]

    def _context(self, row: sqlite3.Row) -> MatchContext:
        match = _match(row)
        return MatchContext(
            match=match,
            player1=self.get_player(match.player1_id) if match.player1_id else None,
            player2=self.get_player(match.player2_id) if match.player2_id else None,
            match_length=row["match_length"],
            bracket_type=BracketType(row["bracket_type"]),
        )

    # ------------------------------------------------------------------
    # Score reports
    # ------------------------------------------------------------------

    def create_report(self, report: ScoreReport) -> ScoreReport:
        created_at = report.created_at or _now()
        with self._lock, self._conn:
            self._conn.execute(
                "INSERT INTO score_reports (id, match_id, reported_by_phone, reported_by_player_id, "
                "raw_text, parsed_winner_id, parsed_player1_score, parsed_player2_score, "
                "confidence_score, status, created_at) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    report.id,
                    report.match_id,
                    report.reported_by_phone,
                    report.reported_by_player_id,
                    report.raw_text,
                    report.parsed_winner_id,
                    report.parsed_player1_score,
                    report.parsed_player2_score,
                    report.confidence_score,
                    report.status.value,
                    created_at,
                ),
            )
        return self.get_report(report.id)

    def get_report(self, report_id: str) -> ScoreReport | None:
        row = self._fetchone("SELECT * FROM score_reports WHERE id = ?", (report_id,))
        return _report(row) if row else None

    def list_reports(self, status: ReportStatus | None = None) -> list[ScoreReport]:
        if status is None:
            rows = self._fetchall("SELECT * FROM score_reports ORDER BY created_at, rowid")
        else:
            rows = self._fetchall(
                "SELECT * FROM score_reports WHERE status = ? ORDER BY created_at, rowid",
                (status.value,),
            )
        return [_report(r) for r in rows]

    def apply_report(
        self,
        report_id: str,
        winner_id: str,
        player1_score: int,
        player2_score: int,
        approved_by: str | None = None,
        correction: bool = False,
    ) -> tuple[ScoreReport, Match]:
        """Approve a report and complete its match in one transaction."""
        match_statuses = _ACTIVE_MATCHES + ((MatchStatus.COMPLETED.value,) if correction else ())
        now = _now()
        with self._lock:
            with self._conn:
                row = self._conn.execute(
                    "SELECT match_id, status FROM score_reports WHERE id = ?", (report_id,)
                ).fetchone()
                if row is None:
                    raise KeyError(report_id)

                cursor = self._conn.execute(
                    "UPDATE score_reports SET status = 'approved', approved_by = ?, approved_at = ? "
                    f"WHERE id = ? AND status IN ({_placeholders(_OPEN_REPORTS)})",
                    (approved_by, now, report_id, *_OPEN_REPORTS),
                )
                if cursor.rowcount == 0:
                    raise ReportAlreadyResolvedError(
                        f"Report {report_id} is already {row['status']}"
                    )

                cursor = self._conn.execute(
                    "UPDATE matches SET winner_id = ?, player1_score = ?, player2_score = ?, "
                    "status = 'completed', completed_at = ? "
                    f"WHERE id = ? AND status IN ({_placeholders(match_statuses)})",
                    (winner_id, player1_score, player2_score, now, row["match_id"], *match_statuses),
                )
                if cursor.rowcount == 0:
                    raise MatchAlreadyRecordedError(f"Match {row['match_id']} already recorded")

            return self.get_report(report_id), self.get_match(row["match_id"])

    def resolve_report(
        self, report_id: str, status: ReportStatus, note: str | None = None
    ) -> ScoreReport:
        """Move an open report to rejected or needs_clarification."""
        with self._lock:
            with self._conn:
                cursor = self._conn.execute(
                    "UPDATE score_reports SET status = ?, resolution_note = ? "
                    f"WHERE id = ? AND status IN ({_placeholders(_OPEN_REPORTS)})",
                    (status.value, note, report_id, *_OPEN_REPORTS),
                )
            if cursor.rowcount == 0:
                existing = self.get_report(report_id)
                if existing is None:
                    raise KeyError(report_id)
                raise ReportAlreadyResolvedError(
                    f"Report {report_id} is already {existing.status.value}"
                )
            return self.get_report(report_id)

    # ------------------------------------------------------------------
    # Round advancement
    # ------------------------------------------------------------------

    def apply_advance(self, plan: AdvancePlan) -> list[Match] | None:
        """Persist an AdvancePlan. None if another caller already advanced."""
        if not plan.bumps and not plan.status_updates:
            return None
        with self._lock:
            try:
                with self._conn:
                    for bracket_id, expected_round in plan.bumps.items():
                        cursor = self._conn.execute(
                            "UPDATE brackets SET current_round = ? "
                            "WHERE id = ? AND current_round = ? AND status != 'completed'",
                            (plan.to_round, bracket_id, expected_round),
                        )
                        if cursor.rowcount == 0:
                            raise _LostRace()

                    for bracket_id, status in plan.status_updates.items():
                        cursor = self._conn.execute(
                            "UPDATE brackets SET status = ? WHERE id = ? AND status != 'completed'",
                            (status.value, bracket_id),
                        )
                        if cursor.rowcount == 0 and status == BracketStatus.COMPLETED:
                            raise _LostRace()

                    created = self._insert_drafts(plan.main_bracket_id, plan.main_matches)
                    if plan.consolation_bracket_id and plan.consolation_matches:
                        created += self._insert_drafts(
                            plan.consolation_bracket_id, plan.consolation_matches
                        )
            except (_LostRace, sqlite3.IntegrityError):
                return None
        return created

    # ------------------------------------------------------------------
    # Outbox
    # ------------------------------------------------------------------

    def enqueue_message(self, phone: str, message: str, report_id: str | None = None) -> str:
        """Queue an outbound message for an external sender to deliver."""
        message_id = str(uuid.uuid4())
        with self._lock, self._conn:
            self._conn.execute(
                "INSERT INTO outbox (id, report_id, phone, message, created_at) VALUES (?, ?, ?, ?, ?)",
                (message_id, report_id, phone, message, _now()),
            )
        return message_id

    def outbox(self, limit: int = 100) -> list[dict[str, Any]]:
        rows = self._fetchall(
            "SELECT * FROM outbox ORDER BY created_at DESC, rowid DESC LIMIT ?", (limit,)
        )
        return [dict(r) for r in rows]

    # ------------------------------------------------------------------
    # Stats
    # ------------------------------------------------------------------

    def active_matches(self) -> int:
        """Number of matches still to be played."""
        return self._conn.execute(
            "SELECT COUNT(*) FROM matches WHERE status IN (?, ?)", _ACTIVE_MATCHES
        ).fetchone()[0]

    def open_reports(self) -> int:
        """Number of reports waiting on a director."""
        return self._conn.execute(
            f"SELECT COUNT(*) FROM score_reports WHERE status IN ({_placeholders(_OPEN_REPORTS)})",
            _OPEN_REPORTS,
        ).fetchone()[0]

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _fetchone(self, sql: str, params: tuple = ()) -> sqlite3.Row | None:
        with self._lock:
            return self._conn.execute(sql, params).fetchone()

    def _fetchall(self, sql: str, params: tuple = ()) -> list[sqlite3.Row]:
        with self._lock:
            return self._conn.execute(sql, params).fetchall()


# ============================================================================
# Row mapping
# ============================================================================


def _player(row: sqlite3.Row) -> Player:
    return Player(
        id=row["id"],
        name=row["name"],
        phone=row["phone"],
        email=row["email"],
        created_at=row["created_at"],
    )


def _division(row: sqlite3.Row) -> Division:
    return Division(
        id=row["id"],
        name=row["name"],
        match_length=row["match_length"],
        clock_required=bool(row["clock_required"]),
        created_at=row["created_at"],
    )


def _bracket(row: sqlite3.Row) -> Bracket:
    return Bracket(
        id=row["id"],
        division_id=row["division_id"],
        bracket_type=BracketType(row["bracket_type"]),
        current_round=row["current_round"],
        status=BracketStatus(row["status"]),
        created_at=row["created_at"],
    )


def _match(row: sqlite3.Row) -> Match:
    return Match(
        id=row["id"],
        bracket_id=row["bracket_id"],
        round_number=row["round_number"],
        match_number=row["match_number"],
        player1_id=row["player1_id"],
        player2_id=row["player2_id"],
        winner_id=row["winner_id"],
        player1_score=row["player1_score"],
        player2_score=row["player2_score"],
        table_number=row["table_number"],
        status=MatchStatus(row["status"]),
        created_at=row["created_at"],
        started_at=row["started_at"],
        completed_at=row["completed_at"],
    )


def _report(row: sqlite3.Row) -> ScoreReport:
    return ScoreReport(
        id=row["id"],
        match_id=row["match_id"],
        reported_by_phone=row["reported_by_phone"],
        reported_by_player_id=row["reported_by_player_id"],
        raw_text=row["raw_text"],
        parsed_winner_id=row["parsed_winner_id"],
        parsed_player1_score=row["parsed_player1_score"],
        parsed_player2_score=row["parsed_player2_score"],
        confidence_score=row["confidence_score"],
        status=ReportStatus(row["status"]),
        resolution_note=row["resolution_note"],
        approved_by=row["approved_by"],
        approved_at=row["approved_at"],
        created_at=row["created_at"],
    )


def _placeholders(values: Sequence[Any]) -> str:
    return ", ".join("?" for _ in values)


def _now() -> str:
    """ISO timestamp in UTC."""
    return now_iso()
