#!/usr/bin/env python3
"""
smackdown/cli.py - Command line interface for Smackdown

Usage:
    smackdown arena [--port 8000] [--db smackdown.db]
    smackdown parse "John 9 Sarah 4" [--match-length 9]
    smackdown draw Alice Bob Carol Dave [--seed 42]
"""

import argparse
import logging
import sys
from pathlib import Path

# Set up logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(message)s",
    datefmt="%H:%M:%S",
)
logger = logging.getLogger(__name__)


def _load_config(args):
    from smackdown.config import load_config

    return load_config(Path(args.config) if args.config else None)


def cmd_arena(args):
    """Start the tournament server."""
    import uvicorn

    from arena.server import app

    config = _load_config(args)
    db_path = args.db or config.arena.db_path
    port = args.port or config.arena.port
    host = args.host or config.arena.host

    # Lifespan picks these up from app state
    app.state.config = config
    app.state.db_path = db_path
    logger.info(f"Starting Smackdown server on {host}:{port} (db: {db_path})")
    uvicorn.run(app, host=host, port=port, log_level="info")
    return 0


def cmd_parse(args):
    """Show how a score text would be parsed, validated and trusted."""
    from smackdown.confidence import trust_score
    from smackdown.score_parser import parse_score_text, validate_score

    config = _load_config(args)
    match_length = args.match_length or config.scoring.default_match_length
    threshold = config.scoring.auto_approve_threshold

    parsed = parse_score_text(args.text)
    validation = validate_score(parsed, match_length)
    trust = trust_score(parsed, validation)

    print(f"\n📨 {args.text!r}\n")
    print(f"  Confidence:  {parsed.confidence.value}")
    if parsed.player1_name or parsed.player2_name:
        print(f"  Names:       {parsed.player1_name or '?'} / {parsed.player2_name or '?'}")
    if parsed.has_scores:
        print(f"  Scores:      {parsed.player1_score}-{parsed.player2_score}")
    if parsed.winner_name:
        print(f"  Winner:      {parsed.winner_name}")
    if parsed.error:
        print(f"  Parse error: {parsed.error}")
    if validation.valid:
        print(f"  Valid:       yes (race to {match_length})")
    else:
        print(f"  Valid:       no ({validation.error})")
    eligible = "yes" if trust >= threshold else "no"
    print(f"  Trust:       {trust} (auto-apply eligible: {eligible})")
    print()
    return 0


def cmd_draw(args):
    """Print a round-1 draw for a list of names."""
    from smackdown.bracket import calculate_rounds, generate_round1
    from smackdown.seeding import make_rng

    config = _load_config(args)
    seed = args.seed if args.seed is not None else config.bracket.seed
    starting_table = args.starting_table or config.bracket.starting_table

    names = list(dict.fromkeys(args.names))
    if len(names) < 2:
        logger.error("A draw needs at least two distinct names")
        return 1

    drafts = generate_round1(names, starting_table, make_rng(seed))

    print(f"\n🎱 Round 1 ({len(names)} players, {calculate_rounds(len(names))} rounds)\n")
    print(f"{'Match':<7} {'Table':<7} {'Player 1':<20} {'Player 2'}")
    print("-" * 50)
    for d in drafts:
        table = str(d.table_number) if d.table_number is not None else "-"
        opponent = d.player2_id if not d.is_bye else "(bye)"
        print(f"{d.match_number:<7} {table:<7} {d.player1_id:<20} {opponent}")
    print()
    return 0


def main():
    parser = argparse.ArgumentParser(
        prog="smackdown",
        description="Pool tournament brackets with SMS score reporting",
    )
    parser.add_argument("--config", default=None, help="Config file (default: ~/.smackdown/config.toml)")
    subparsers = parser.add_subparsers(dest="command", required=True)

    # arena command
    arena_parser = subparsers.add_parser("arena", help="Start the tournament server")
    arena_parser.add_argument("--port", "-p", type=int, default=None, help="Server port (default: 8000)")
    arena_parser.add_argument("--host", default=None, help="Bind address (default: 0.0.0.0)")
    arena_parser.add_argument("--db", default=None, help="SQLite database path (default: smackdown.db)")
    arena_parser.set_defaults(func=cmd_arena)

    # parse command
    parse_parser = subparsers.add_parser("parse", help="Parse a score text")
    parse_parser.add_argument("text", help='Score text, e.g. "John 9 Sarah 4"')
    parse_parser.add_argument("--match-length", "-m", type=int, default=None, help="Race-to-N (default: 9)")
    parse_parser.set_defaults(func=cmd_parse)

    # draw command
    draw_parser = subparsers.add_parser("draw", help="Print a round-1 draw")
    draw_parser.add_argument("names", nargs="+", help="Player names")
    draw_parser.add_argument("--seed", type=int, default=None, help="RNG seed for a repeatable draw")
    draw_parser.add_argument("--starting-table", type=int, default=None, help="First table number (default: 1)")
    draw_parser.set_defaults(func=cmd_draw)

    args = parser.parse_args()
    sys.exit(args.func(args))


if __name__ == "__main__":
    main()
