"""
smackdown/models.py - Tournament data types

Plain dataclasses, referenced by id everywhere. Statuses are str-valued enums
so they round-trip through SQLite text columns unchanged.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum


# ============================================================================
# Status Enums
# ============================================================================


class BracketType(str, Enum):
    MAIN = "main"
    CONSOLATION = "consolation"
    LAST_CHANCE = "last_chance"


class BracketStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


class MatchStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    BYE = "bye"


class ReportStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    NEEDS_CLARIFICATION = "needs_clarification"


# Matches a report can still complete
ACTIVE_MATCH_STATUSES = (MatchStatus.PENDING, MatchStatus.IN_PROGRESS)
# Matches that count as "done" for round completion
RESOLVED_MATCH_STATUSES = (MatchStatus.COMPLETED, MatchStatus.BYE)
# Reports a director can still act on
OPEN_REPORT_STATUSES = (ReportStatus.PENDING, ReportStatus.NEEDS_CLARIFICATION)


# ============================================================================
# Entities
# ============================================================================


@dataclass
class Player:
    id: str
    name: str
    phone: str | None = None
    email: str | None = None
    created_at: str | None = None


@dataclass
class Division:
    id: str
    name: str
    match_length: int = 9  # race-to-N points
    clock_required: bool = False
    created_at: str | None = None


@dataclass
class Bracket:
    id: str
    division_id: str
    bracket_type: BracketType = BracketType.MAIN
    current_round: int = 1
    status: BracketStatus = BracketStatus.PENDING
    created_at: str | None = None


@dataclass
class MatchDraft:
    """A match the bracket engine wants created. No identity yet."""

    round_number: int
    match_number: int
    player1_id: str | None
    player2_id: str | None
    status: MatchStatus
    winner_id: str | None = None
    table_number: int | None = None

    @property
    def is_bye(self) -> bool:
        return self.status == MatchStatus.BYE


@dataclass
class Match:
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
    status: MatchStatus = MatchStatus.PENDING
    created_at: str | None = None
    started_at: str | None = None
    completed_at: str | None = None

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_MATCH_STATUSES

    @property
    def is_resolved(self) -> bool:
        return self.status in RESOLVED_MATCH_STATUSES

    @property
    def loser_id(self) -> str | None:
        """The non-winning side of a completed match. None for byes and unplayed matches."""
        if self.status != MatchStatus.COMPLETED or self.winner_id is None:
            return None
        if self.winner_id == self.player1_id:
            return self.player2_id
        return self.player1_id

    def has_player(self, player_id: str) -> bool:
        return player_id in (self.player1_id, self.player2_id)


@dataclass
class ScoreReport:
    id: str
    match_id: str
    reported_by_phone: str
    raw_text: str
    reported_by_player_id: str | None = None
    parsed_winner_id: str | None = None
    parsed_player1_score: int | None = None
    parsed_player2_score: int | None = None
    confidence_score: int = 0
    status: ReportStatus = ReportStatus.PENDING
    resolution_note: str | None = None
    approved_by: str | None = None
    approved_at: str | None = None
    created_at: str | None = None

    @property
    def is_open(self) -> bool:
        return self.status in OPEN_REPORT_STATUSES


# ============================================================================
# Aggregates
# ============================================================================


@dataclass
class MatchContext:
    """A match with everything intake needs to judge a report against it.

    Built by storage. The core never walks relations on its own.
    """

    match: Match
    player1: Player | None
    player2: Player | None
    match_length: int
    bracket_type: BracketType = BracketType.MAIN

    @property
    def player1_name(self) -> str:
        return self.player1.name if self.player1 else "Player 1"

    @property
    def player2_name(self) -> str:
        return self.player2.name if self.player2 else "Player 2"

    def name_of(self, player_id: str | None) -> str | None:
        for player in (self.player1, self.player2):
            if player is not None and player.id == player_id:
                return player.name
        return None


@dataclass
class BracketState:
    """A bracket with its matches, ordered by (round, match number)."""

    bracket: Bracket
    matches: list[Match] = field(default_factory=list)

    def round(self, round_number: int) -> list[Match]:
        return [m for m in self.matches if m.round_number == round_number]


def now_iso() -> str:
    """ISO timestamp in UTC."""
    return datetime.now(timezone.utc).isoformat()
