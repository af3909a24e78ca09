"""simPRO status strings -> monday deal stages.

simPRO statuses are free text with inconsistent spacing ("Quote:Sent",
"Quote : Sent ", "Quote:  Sent"). ``normalize_status`` collapses those to
one canonical key. ``map_to_board_stage`` is a deliberately lossy
many-to-one classification: every status that is not won, lost or sent
lands in Discovery.
"""

from __future__ import annotations

import re
from enum import Enum

_COLON = re.compile(r"\s*:\s*")
_WHITESPACE = re.compile(r"\s+")


class BoardStage(str, Enum):
    """Deal stage labels on the monday deals board, in column index order."""

    discovery = "Discovery"
    proposal_sent = "Proposal Sent"
    won = "Won"
    lost = "Lost"


_STAGE_INDEX: dict[BoardStage, int] = {
    BoardStage.discovery: 0,
    BoardStage.proposal_sent: 1,
    BoardStage.won: 2,
    BoardStage.lost: 3,
}

TERMINAL_STAGES = frozenset({BoardStage.won, BoardStage.lost})


def normalize_status(raw: str | None) -> str:
    """Canonical form of a status: ``"Quote: Sent"`` for any spacing variant.

    Trims, collapses whitespace runs to one space and renders every colon as
    ``": "``. Idempotent.
    """
    if not raw:
        return ""
    text = _COLON.sub(": ", raw.strip())
    text = _WHITESPACE.sub(" ", text)
    return text.strip()


def status_key(raw: str | None) -> str:
    """Comparison key: normalised and case-folded."""
    return normalize_status(raw).casefold()


def map_to_board_stage(status: str | None) -> BoardStage:
    """Classify a simPRO status (or stage) string into a board stage.

    Lost is checked before Won because "Archived - Not Won" contains "won".
    Total: every input, including empty and None, maps to a label.
    """
    key = status_key(status)
    if "archived" in key and "not won" in key:
        return BoardStage.lost
    if "won" in key:
        return BoardStage.won
    if "sent" in key:
        return BoardStage.proposal_sent
    return BoardStage.discovery


def board_stage_index(stage: BoardStage) -> int:
    return _STAGE_INDEX[stage]


def is_terminal(stage: BoardStage) -> bool:
    return stage in TERMINAL_STAGES
