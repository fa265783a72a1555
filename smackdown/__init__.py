"""
Smackdown - Pool tournament brackets with SMS score reporting

Draws single-elimination brackets with a consolation side, advances rounds as
results come in, and turns texted scores into match results.
"""

__version__ = "0.1.0"

from .models import (
    # Statuses
    BracketType,
    BracketStatus,
    MatchStatus,
    ReportStatus,
    # Entities
    Player,
    Division,
    Bracket,
    Match,
    MatchDraft,
    ScoreReport,
    # Aggregates
    MatchContext,
    BracketState,
)

from .bracket import (
    AdvancePlan,
    RoundNotCompleteError,
    calculate_rounds,
    generate_next_round,
    generate_round1,
    is_bracket_complete,
    is_round_complete,
    plan_advance,
)

from .score_parser import (
    Confidence,
    ParsedScore,
    ValidationResult,
    parse_score_text,
    validate_score,
)

from .workflow import (
    IntakeResult,
    Sender,
    ScoreReportWorkflow,
)

from .tournament import (
    AdvanceResult,
    advance_round,
    start_division,
)

__all__ = [
    # Version
    "__version__",
    # Data model
    "BracketType",
    "BracketStatus",
    "MatchStatus",
    "ReportStatus",
    "Player",
    "Division",
    "Bracket",
    "Match",
    "MatchDraft",
    "ScoreReport",
    "MatchContext",
    "BracketState",
    # Bracket engine
    "AdvancePlan",
    "RoundNotCompleteError",
    "calculate_rounds",
    "generate_next_round",
    "generate_round1",
    "is_bracket_complete",
    "is_round_complete",
    "plan_advance",
    # Score parsing
    "Confidence",
    "ParsedScore",
    "ValidationResult",
    "parse_score_text",
    "validate_score",
    # Workflow
    "IntakeResult",
    "Sender",
    "ScoreReportWorkflow",
    "AdvanceResult",
    "advance_round",
    "start_division",
]
