"""
smackdown/store.py - Storage interface the workflow runs against

The core never talks to a database directly. Anything that implements
MatchStore can back it; arena.db.ArenaDB is the SQLite one.

Two guarantees every implementation must give:
  - apply_report completes a match with a compare-and-swap on its status,
    in the same transaction that approves the report
  - apply_advance moves each bracket's current_round with a compare-and-swap,
    in the same transaction that inserts the new matches
"""

from typing import Protocol, Sequence

from .bracket import AdvancePlan
from .models import (
    Bracket,
    BracketState,
    BracketStatus,
    BracketType,
    Division,
    Match,
    MatchContext,
    MatchDraft,
    Player,
    ReportStatus,
    ScoreReport,
)


class MatchAlreadyRecordedError(RuntimeError):
    """Raised when a match has already been completed by someone else."""


class ReportAlreadyResolvedError(RuntimeError):
    """Raised when acting on a report that is already approved or rejected."""


class DuplicateBracketError(RuntimeError):
    """Raised when a division already has a bracket of the requested type."""


class MatchStore(Protocol):
    """Repository the score report workflow and bracket actions use."""

    # Reads

    def get_player(self, player_id: str) -> Player | None: ...

    def find_player_by_phone(self, phone: str) -> Player | None: ...

    def get_division(self, division_id: str) -> Division | None: ...

    def get_bracket(self, bracket_id: str) -> Bracket | None: ...

    def division_brackets(self, division_id: str) -> dict[BracketType, BracketState]: ...

    def get_match(self, match_id: str) -> Match | None: ...

    def match_context(self, match_id: str) -> MatchContext | None: ...

    def active_match_contexts(self, player_id: str) -> list[MatchContext]: ...

    def get_report(self, report_id: str) -> ScoreReport | None: ...

    def list_reports(self, status: ReportStatus | None = None) -> list[ScoreReport]: ...

    # Writes

    def create_bracket(
        self,
        division_id: str,
        bracket_type: BracketType,
        status: BracketStatus = BracketStatus.PENDING,
    ) -> Bracket: ...

    def insert_matches(self, bracket_id: str, drafts: Sequence[MatchDraft]) -> list[Match]: ...

    def create_report(self, report: ScoreReport) -> ScoreReport: ...

    def apply_report(
        self,
        report_id: str,
        winner_id: str,
        player1_score: int,
        player2_score: int,
        approved_by: str | None = None,
        correction: bool = False,
    ) -> tuple[ScoreReport, Match]:
        """Approve the report and complete its match, atomically.

        Raises MatchAlreadyRecordedError if the match is no longer active
        (unless correction is set and the match is completed), and
        ReportAlreadyResolvedError if the report is no longer open.
        """
        ...

    def resolve_report(
        self, report_id: str, status: ReportStatus, note: str | None = None
    ) -> ScoreReport:
        """Move an open report to rejected or needs_clarification.

        Raises ReportAlreadyResolvedError if the report is not open.
        """
        ...

    def apply_advance(self, plan: AdvancePlan) -> list[Match] | None:
        """Persist an AdvancePlan and return the matches it created.

        None if another caller advanced the division first.
        """
        ...
