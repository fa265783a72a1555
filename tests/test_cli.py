"""Tests for smackdown.cli - parse and draw commands."""

from argparse import Namespace

from smackdown.cli import cmd_draw, cmd_parse


def _args(**kwargs) -> Namespace:
    return Namespace(config=None, **kwargs)


class TestParseCommand:
    def test_high_confidence(self, capsys):
        assert cmd_parse(_args(text="John 9 Sarah 4", match_length=None)) == 0
        out = capsys.readouterr().out
        assert "Confidence:  high" in out
        assert "Scores:      9-4" in out
        assert "Winner:      John" in out
        assert "Trust:       90 (auto-apply eligible: yes)" in out

    def test_invalid_for_match_length(self, capsys):
        cmd_parse(_args(text="Mike beat Lisa 7-2", match_length=9))
        out = capsys.readouterr().out
        assert "Valid:       no (One player must reach 9 points)" in out
        assert "Trust:       40" in out

    def test_unparseable(self, capsys):
        cmd_parse(_args(text="we're done", match_length=None))
        out = capsys.readouterr().out
        assert "Confidence:  low" in out
        assert "Could not parse score from text" in out


class TestDrawCommand:
    def test_draw_lists_every_player(self, capsys):
        names = ["Alice", "Bob", "Carol", "Dave", "Eve"]
        assert cmd_draw(_args(names=names, seed=1, starting_table=None)) == 0
        out = capsys.readouterr().out
        assert "5 players, 3 rounds" in out
        for name in names:
            assert name in out
        assert out.count("(bye)") == 3

    def test_seeded_draw_repeats(self, capsys):
        names = ["Alice", "Bob", "Carol", "Dave"]
        cmd_draw(_args(names=names, seed=7, starting_table=None))
        first = capsys.readouterr().out
        cmd_draw(_args(names=names, seed=7, starting_table=None))
        assert capsys.readouterr().out == first

    def test_needs_two_names(self, capsys):
        assert cmd_draw(_args(names=["Alice", "Alice"], seed=None, starting_table=None)) == 1
