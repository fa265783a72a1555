"""
smackdown/bracket.py - Bracket progression engine

Pure functions over match lists. Nothing here reads or writes storage: callers
hand in matches, get back MatchDrafts to persist.

Preconditions (caller contract, not checked at runtime):
  - matches passed to the round helpers all belong to one bracket
  - a "completed round" handed to generate_next_round has a winner on
    every match
"""

import logging
import math
import random
from dataclasses import dataclass, field
from typing import Iterable, Sequence

from .models import (
    BracketState,
    BracketStatus,
    Match,
    MatchDraft,
    MatchStatus,
)
from .seeding import shuffle

logger = logging.getLogger(__name__)


class RoundNotCompleteError(RuntimeError):
    """Raised when advancing a round that still has unplayed matches."""


# ============================================================================
# Sizing
# ============================================================================


def calculate_rounds(player_count: int) -> int:
    """Rounds needed to reduce player_count entrants to one winner."""
    if player_count <= 1:
        return 0
    return math.ceil(math.log2(player_count))


def next_power_of_two(n: int) -> int:
    """Smallest power of two >= n. Zero stays zero."""
    if n <= 0:
        return 0
    return 1 << (n - 1).bit_length()


# ============================================================================
# Generation
# ============================================================================


def _bye(round_number: int, match_number: int, player_id: str) -> MatchDraft:
    return MatchDraft(
        round_number=round_number,
        match_number=match_number,
        player1_id=player_id,
        player2_id=None,
        status=MatchStatus.BYE,
        winner_id=player_id,
    )


def pair_entrants(
    entrant_ids: Sequence[str],
    round_number: int,
    starting_match_number: int = 1,
) -> list[MatchDraft]:
    """Pair entrants two at a time in order. A trailing odd entrant gets a bye."""
    drafts: list[MatchDraft] = []
    match_number = starting_match_number
    for i in range(0, len(entrant_ids), 2):
        player1 = entrant_ids[i]
        if i + 1 < len(entrant_ids):
            drafts.append(
                MatchDraft(
                    round_number=round_number,
                    match_number=match_number,
                    player1_id=player1,
                    player2_id=entrant_ids[i + 1],
                    status=MatchStatus.PENDING,
                )
            )
        else:
            drafts.append(_bye(round_number, match_number, player1))
        match_number += 1
    return drafts


def assign_tables(drafts: list[MatchDraft], starting_table: int = 1) -> int:
    """Number every playable draft's table in match order. Byes get none.

    Returns the next free table number so a second bracket can continue
    where this one stopped.
    """
    table = starting_table
    for draft in sorted(drafts, key=lambda d: d.match_number):
        if draft.is_bye:
            draft.table_number = None
        else:
            draft.table_number = table
            table += 1
    return table


def generate_round1(
    player_ids: Sequence[str],
    starting_table: int = 1,
    rng: random.Random | None = None,
) -> list[MatchDraft]:
    """Round 1 of a main bracket, padded with byes up to a power of two.

    The first (bracket size - N) shuffled players get byes, the rest are
    paired in order. Byes are numbered first, then the paired matches.
    """
    shuffled = shuffle(player_ids, rng)
    bye_count = next_power_of_two(len(shuffled)) - len(shuffled)

    drafts = [
        _bye(1, number, player_id)
        for number, player_id in enumerate(shuffled[:bye_count], start=1)
    ]
    drafts.extend(pair_entrants(shuffled[bye_count:], 1, bye_count + 1))
    assign_tables(drafts, starting_table)
    return drafts


def round_winners(matches: Iterable[Match]) -> list[str]:
    """Winners of the given matches, ordered by match number."""
    ordered = sorted(matches, key=lambda m: m.match_number)
    return [m.winner_id for m in ordered if m.winner_id is not None]


def generate_next_round(
    completed_matches: Iterable[Match],
    next_round_number: int,
    starting_match_number: int = 1,
) -> list[MatchDraft]:
    """Pair the winners of a finished round, in match-number order.

    Position in the next round depends only on pairing order, never on
    score margin, so the bracket keeps its tree shape.
    """
    return pair_entrants(
        round_winners(completed_matches), next_round_number, starting_match_number
    )


def route_losers(completed_matches: Iterable[Match]) -> list[str]:
    """Losers of completed matches, in match-number order. Byes have no loser."""
    ordered = sorted(completed_matches, key=lambda m: m.match_number)
    return [m.loser_id for m in ordered if m.loser_id is not None]


# ============================================================================
# Inspection
# ============================================================================


def _round_matches(matches: Iterable[Match], round_number: int) -> list[Match]:
    return [m for m in matches if m.round_number == round_number]


def is_round_complete(matches: Iterable[Match], round_number: int) -> bool:
    """True iff the round has matches and every one is completed or a bye."""
    round_matches = _round_matches(matches, round_number)
    return bool(round_matches) and all(m.is_resolved for m in round_matches)


def current_round(matches: Sequence[Match]) -> int:
    """Lowest incomplete round, or the last round when all are complete."""
    if not matches:
        return 1
    rounds = sorted({m.round_number for m in matches})
    for round_number in rounds:
        if not is_round_complete(matches, round_number):
            return round_number
    return rounds[-1]


def _final_round(matches: Sequence[Match]) -> list[Match]:
    if not matches:
        return []
    return _round_matches(matches, max(m.round_number for m in matches))


def is_bracket_complete(matches: Sequence[Match]) -> bool:
    """True iff the highest round holds exactly one match and it has a winner."""
    final = _final_round(matches)
    return len(final) == 1 and final[0].winner_id is not None


def bracket_winner(matches: Sequence[Match]) -> str | None:
    if not is_bracket_complete(matches):
        return None
    return _final_round(matches)[0].winner_id


# ============================================================================
# Division advancement
# ============================================================================


@dataclass
class AdvancePlan:
    """What advancing a division's bracket pair from from_round would do.

    Round numbers stay in lockstep across the pair: consolation round r+1 is
    fed by main round r. bumps maps each bracket whose current_round moves to
    to_round onto the current_round it is expected to hold beforehand.
    """

    main_bracket_id: str
    consolation_bracket_id: str | None
    from_round: int
    to_round: int
    main_matches: list[MatchDraft] = field(default_factory=list)
    consolation_matches: list[MatchDraft] = field(default_factory=list)
    bumps: dict[str, int] = field(default_factory=dict)
    status_updates: dict[str, BracketStatus] = field(default_factory=dict)
    main_winner_id: str | None = None
    consolation_winner_id: str | None = None

    @property
    def creates_matches(self) -> bool:
        return bool(self.main_matches or self.consolation_matches)


def plan_advance(
    main: BracketState,
    consolation: BracketState | None = None,
    starting_table: int = 1,
) -> AdvancePlan | None:
    """Work out the next round for a division. None when there is nothing left to do.

    Raises RoundNotCompleteError if any match in the current round of either
    bracket is still unplayed.
    """
    main_done = main.bracket.status == BracketStatus.COMPLETED
    cons_done = consolation is None or consolation.bracket.status == BracketStatus.COMPLETED
    if main_done and cons_done:
        return None

    # Once main is finished, consolation drives the round counter.
    driver = consolation if main_done else main
    from_round = driver.bracket.current_round
    to_round = from_round + 1

    main_round = [] if main_done else main.round(from_round)
    cons_round = consolation.round(from_round) if consolation is not None else []
    round_matches = main_round + cons_round
    if not round_matches or not all(m.is_resolved for m in round_matches):
        raise RoundNotCompleteError(
            f"Round {from_round} is not complete for bracket {driver.bracket.id}"
        )

    plan = AdvancePlan(
        main_bracket_id=main.bracket.id,
        consolation_bracket_id=consolation.bracket.id if consolation else None,
        from_round=from_round,
        to_round=to_round,
    )
    next_table = starting_table

    if not main_done:
        if is_bracket_complete(main.matches):
            plan.main_winner_id = bracket_winner(main.matches)
            plan.status_updates[main.bracket.id] = BracketStatus.COMPLETED
            main_done = True
        else:
            plan.main_matches = generate_next_round(main_round, to_round)
            next_table = assign_tables(plan.main_matches, next_table)
            plan.bumps[main.bracket.id] = main.bracket.current_round

    if consolation is not None and not cons_done:
        losers = route_losers(main_round)
        # Nothing more can arrive from main, and consolation is down to one
        # decided final (or never had anyone routed into it).
        cons_is_finished = (
            main_done
            and not losers
            and (not consolation.matches or is_bracket_complete(consolation.matches))
        )
        if cons_is_finished:
            plan.consolation_winner_id = bracket_winner(consolation.matches)
            plan.status_updates[consolation.bracket.id] = BracketStatus.COMPLETED
        else:
            entrants = round_winners(cons_round) + losers
            plan.consolation_matches = pair_entrants(entrants, to_round)
            assign_tables(plan.consolation_matches, next_table)
            if plan.consolation_matches:
                plan.bumps[consolation.bracket.id] = consolation.bracket.current_round
                plan.status_updates.setdefault(
                    consolation.bracket.id, BracketStatus.IN_PROGRESS
                )

    logger.debug(
        f"Planned advance {from_round} -> {to_round}: "
        f"{len(plan.main_matches)} main, {len(plan.consolation_matches)} consolation"
    )
    return plan
