"""Tests for status normalisation and board stage mapping."""

from __future__ import annotations

import pytest

from src.quotesync.sync.stages import (
    BoardStage,
    board_stage_index,
    is_terminal,
    map_to_board_stage,
    normalize_status,
    status_key,
)


class TestNormalizeStatus:
    @pytest.mark.parametrize(
        "raw",
        ["Quote:Sent", "Quote : Sent ", "Quote:  Sent", "  Quote :Sent", "Quote:\tSent"],
    )
    def test_spacing_variants_collapse(self, raw):
        """Every spacing variant around the colon normalises to one form."""
        assert normalize_status(raw) == "Quote: Sent"

    @pytest.mark.parametrize(
        "raw",
        [
            "Quote:Sent",
            " Quote :  Archived - Not Won ",
            "Quote::Won",
            "",
            "no colon here",
            "a  :  b  :  c",
        ],
    )
    def test_idempotent(self, raw):
        """Normalising twice gives the same result as once."""
        once = normalize_status(raw)
        assert normalize_status(once) == once

    def test_none_is_empty(self):
        assert normalize_status(None) == ""

    def test_status_key_ignores_case(self):
        assert status_key("QUOTE:sent") == status_key("Quote : Sent")


class TestMapToBoardStage:
    def test_archived_not_won_is_lost(self):
        """Lost is decided before Won even though the text contains 'won'."""
        assert map_to_board_stage("Quote: Archived - Not Won") is BoardStage.lost

    def test_archived_not_won_ignores_spacing_and_case(self):
        assert map_to_board_stage("quote :archived - NOT WON") is BoardStage.lost

    @pytest.mark.parametrize("raw", ["Quote: Won", "Quote: Archived - Won", "won"])
    def test_won(self, raw):
        assert map_to_board_stage(raw) is BoardStage.won

    @pytest.mark.parametrize("raw", ["Quote: Sent", "Quote:Sent", "SENT"])
    def test_sent(self, raw):
        assert map_to_board_stage(raw) is BoardStage.proposal_sent

    @pytest.mark.parametrize(
        "raw",
        ["Quote: To Write", "Quote: On Hold", "Quote: Due Date Reached", "", None, "???"],
    )
    def test_everything_else_is_discovery(self, raw):
        """Mapping is total: unknown, empty and None all land in Discovery."""
        assert map_to_board_stage(raw) is BoardStage.discovery


def test_stage_indexes_follow_board_order():
    """Status column indexes match the board's label order."""
    assert [board_stage_index(s) for s in BoardStage] == [0, 1, 2, 3]


def test_only_won_and_lost_are_terminal():
    assert {s for s in BoardStage if is_terminal(s)} == {BoardStage.won, BoardStage.lost}
