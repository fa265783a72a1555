"""
smackdown/tournament.py - Director bracket actions

Starting a division's brackets and advancing rounds. These sit between the
pure bracket engine and a MatchStore: read state, plan, persist.
"""

import logging
import random
from dataclasses import dataclass, field
from typing import Sequence

from .bracket import RoundNotCompleteError, generate_round1, plan_advance
from .models import BracketState, BracketStatus, BracketType, Match, MatchStatus
from .store import MatchStore

logger = logging.getLogger(__name__)

MIN_PLAYERS = 2


class DivisionNotFoundError(KeyError):
    """Raised when a division id is not in the store."""


class BracketNotFoundError(KeyError):
    """Raised when a bracket id is not in the store."""


@dataclass
class AdvanceResult:
    advanced: bool
    message: str
    from_round: int | None = None
    to_round: int | None = None
    matches: list[Match] = field(default_factory=list)
    main_winner_id: str | None = None
    consolation_winner_id: str | None = None


def start_division(
    store: MatchStore,
    division_id: str,
    player_ids: Sequence[str],
    rng: random.Random | None = None,
    starting_table: int = 1,
) -> BracketState:
    """Create the main and consolation brackets and seed main round 1.

    Needs at least two distinct players. Returns the main bracket state.
    """
    if store.get_division(division_id) is None:
        raise DivisionNotFoundError(division_id)

    player_ids = list(dict.fromkeys(player_ids))
    if len(player_ids) < MIN_PLAYERS:
        raise ValueError(
            f"A division needs at least {MIN_PLAYERS} players to start (got {len(player_ids)})"
        )

    main = store.create_bracket(division_id, BracketType.MAIN, BracketStatus.IN_PROGRESS)
    store.create_bracket(division_id, BracketType.CONSOLATION)

    drafts = generate_round1(player_ids, starting_table, rng)
    matches = store.insert_matches(main.id, drafts)

    byes = sum(1 for m in matches if m.status == MatchStatus.BYE)
    logger.info(
        f"Division {division_id} started: {len(player_ids)} players, "
        f"{len(matches)} round-1 matches ({byes} byes)"
    )
    return BracketState(bracket=main, matches=matches)


def _untouched_since_advance(
    main: BracketState, consolation: BracketState | None, round_number: int
) -> bool:
    """True when round_number came from an advance and nothing in it has been played."""
    if round_number <= 1:
        return False
    matches = main.round(round_number) + (
        consolation.round(round_number) if consolation is not None else []
    )
    return not any(m.status == MatchStatus.COMPLETED for m in matches)


def advance_round(
    store: MatchStore,
    bracket_id: str,
    expected_round: int | None = None,
    starting_table: int = 1,
) -> AdvanceResult:
    """Advance the division that owns bracket_id by one round.

    expected_round is the round the caller believes is current. If the
    division has already moved past it, nothing happens and the result says
    so. Without expected_round, a repeat call that lands on a freshly created
    round (nothing in it played yet) is also a no-op. Raises
    RoundNotCompleteError before touching storage if the current round still
    has unplayed matches.
    """
    bracket = store.get_bracket(bracket_id)
    if bracket is None:
        raise BracketNotFoundError(bracket_id)

    states = store.division_brackets(bracket.division_id)
    main = states.get(BracketType.MAIN)
    if main is None:
        raise BracketNotFoundError(f"No main bracket for division {bracket.division_id}")
    consolation = states.get(BracketType.CONSOLATION)

    driver = main
    if main.bracket.status == BracketStatus.COMPLETED and consolation is not None:
        driver = consolation
    current = driver.bracket.current_round

    if expected_round is not None and expected_round != current:
        logger.info(
            f"Advance skipped for division {bracket.division_id}: "
            f"expected round {expected_round}, already at {current}"
        )
        return AdvanceResult(
            advanced=False,
            message=f"Round {expected_round} was already advanced (now at round {current})",
            from_round=current,
            to_round=current,
        )

    try:
        plan = plan_advance(main, consolation, starting_table)
    except RoundNotCompleteError:
        if expected_round is None and _untouched_since_advance(main, consolation, current):
            logger.info(
                f"Advance skipped for division {bracket.division_id}: "
                f"round {current} has just been created"
            )
            return AdvanceResult(
                advanced=False,
                message=f"Round {current - 1} was already advanced (now at round {current})",
                from_round=current,
                to_round=current,
            )
        raise

    if plan is None:
        return AdvanceResult(
            advanced=False,
            message="Bracket is already complete",
            from_round=current,
            to_round=current,
        )

    created = store.apply_advance(plan)
    if created is None:
        logger.warning(
            f"Advance lost race for division {bracket.division_id} at round {plan.from_round}"
        )
        return AdvanceResult(
            advanced=False,
            message=f"Round {plan.from_round} was already advanced",
            from_round=plan.from_round,
            to_round=plan.from_round,
        )

    if plan.main_winner_id:
        logger.info(f"Main bracket {plan.main_bracket_id} won by {plan.main_winner_id}")
    if plan.consolation_winner_id:
        logger.info(
            f"Consolation bracket {plan.consolation_bracket_id} won by {plan.consolation_winner_id}"
        )

    if created:
        message = f"Advanced to round {plan.to_round}"
    elif plan.consolation_winner_id or plan.main_winner_id:
        message = "Bracket complete"
    else:
        message = "Bracket complete with no winner"
    logger.info(
        f"Division {bracket.division_id}: {message} "
        f"({len(plan.main_matches)} main, {len(plan.consolation_matches)} consolation matches)"
    )
    return AdvanceResult(
        advanced=True,
        message=message,
        from_round=plan.from_round,
        to_round=plan.to_round if created else plan.from_round,
        matches=created,
        main_winner_id=plan.main_winner_id,
        consolation_winner_id=plan.consolation_winner_id,
    )
