"""Shared data models for Chess Arena.

The review types are the contract between the analysis pipeline, the
MCP server and the terminal report. The room types belong to the match
server.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field

import chess

MATE_SCORE = 10000


@dataclass(frozen=True)
class MoveRecord:
    """One played ply, captured before the move is pushed."""

    from_square: str
    to_square: str
    promotion: str | None
    san: str
    is_capture: bool = False
    is_check: bool = False

    @classmethod
    def from_board(cls, board: chess.Board, move: chess.Move) -> MoveRecord:
        """Describe `move` as played from `board` (board is not modified)."""
        promotion = chess.piece_symbol(move.promotion) if move.promotion else None
        return cls(
            from_square=chess.square_name(move.from_square),
            to_square=chess.square_name(move.to_square),
            promotion=promotion,
            san=board.san(move),
            is_capture=board.is_capture(move),
            is_check=board.gives_check(move),
        )

    def uci(self) -> str:
        return f"{self.from_square}{self.to_square}{self.promotion or ''}"

    def to_move(self) -> chess.Move:
        return chess.Move.from_uci(self.uci())


@dataclass(frozen=True)
class Evaluation:
    """Engine (or manual) verdict on a position, White-positive.

    For mate scores `value` is the signed distance to mate in White's
    favour and `sign` says who delivers it, which keeps a mate-in-0
    directional.
    """

    kind: str
    value: int
    best_move: str | None = None
    sign: int = 0

    @property
    def is_mate(self) -> bool:
        return self.kind == "mate"

    def centipawns(self) -> int:
        """Pseudo-centipawn value comparable across cp and mate scores."""
        if not self.is_mate:
            return self.value
        if self.sign > 0:
            return MATE_SCORE - self.value
        return -MATE_SCORE - self.value

    def display(self) -> str:
        """Short score text, e.g. '+0.35' or 'M3'."""
        if self.is_mate:
            return f"M{abs(self.value)}"
        return f"{self.value / 100.0:+.2f}"


@dataclass(frozen=True)
class AnalysisItem:
    """A queued position awaiting evaluation."""

    fen: str
    turn: chess.Color
    ply_index: int
    manual_evaluation: Evaluation | None = None


@dataclass
class MoveReview:
    """Classification of a single played move."""

    ply: int
    san: str
    color: str
    classification: str
    loss: int
    accuracy: float
    evaluation: Evaluation
    suggested_move: str | None = None
    suggested_move_san: str | None = None


@dataclass
class ReviewReport:
    """Completed review of a game."""

    moves: list[MoveRecord]
    evaluations: list[Evaluation]
    reviews: list[MoveReview] = field(default_factory=list)
    stats: dict = field(default_factory=dict)
    accuracy: dict = field(default_factory=lambda: {"white": 0.0, "black": 0.0})
    starting_fen: str = chess.STARTING_FEN


@dataclass
class ReviewFrame:
    """What the board view shows for one review index (0 = start)."""

    ply: int
    eval_bar_fraction: float
    classification: str | None
    suggested_move: str | None
    running_accuracy: dict
    coach_message: str


# ---------------------------------------------------------------------------
# View state
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Live:
    """The board follows the game being played."""


@dataclass(frozen=True)
class Reviewing:
    """The board shows the position after `index` plies of the review."""

    index: int


ViewState = Live | Reviewing


# ---------------------------------------------------------------------------
# Online rooms
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Participant:
    connection_id: str
    color: str


@dataclass
class Room:
    """A match room holding at most two participants."""

    code: str
    participants: list[Participant] = field(default_factory=list)
    created_at: float = field(default_factory=time.time)

    @property
    def state(self) -> str:
        return "active" if len(self.participants) == 2 else "awaiting_opponent"

    def member(self, connection_id: str) -> Participant | None:
        for participant in self.participants:
            if participant.connection_id == connection_id:
                return participant
        return None

    def others(self, connection_id: str) -> list[Participant]:
        return [p for p in self.participants if p.connection_id != connection_id]
