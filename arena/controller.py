"""Game controller shared by local, vs-engine, online and review play.

Owns one rules board, the move history as MoveRecords and the current
view state. The engine and the review pipeline are passed in rather than
looked up, so several controllers can share one engine process.
"""

from __future__ import annotations

import io
import logging

import chess
import chess.pgn

from arena import config
from arena.engine import EngineProcess
from arena.models import Live, MoveRecord, ReviewReport, Reviewing, ViewState
from arena.pipeline import AnalysisPipeline

_log = logging.getLogger(__name__)


class IllegalMove(ValueError):
    """A move the rules board rejects."""


class InvalidGameNotation(ValueError):
    """Imported PGN text that cannot be replayed."""


def parse_pgn(text: str) -> tuple[str, list[MoveRecord]]:
    """Parse PGN text into a starting FEN and its mainline moves.

    Raises:
        InvalidGameNotation: On empty input, parse errors or illegal moves.
    """
    if not text or not text.strip():
        raise InvalidGameNotation("Invalid PGN: no game found")

    game = chess.pgn.read_game(io.StringIO(text))
    if game is None:
        raise InvalidGameNotation("Invalid PGN: no game found")
    if game.errors:
        raise InvalidGameNotation(f"Invalid PGN: {game.errors[0]}")

    board = game.board()
    starting_fen = board.fen()
    records: list[MoveRecord] = []
    for move in game.mainline_moves():
        if move not in board.legal_moves:
            raise InvalidGameNotation(f"Invalid PGN: illegal move {move.uci()}")
        records.append(MoveRecord.from_board(board, move))
        board.push(move)

    if not records:
        raise InvalidGameNotation("Invalid PGN: the game has no moves")
    return starting_fen, records


class GameController:
    """One game in progress plus its review.

    Args:
        engine: Engine for play-vs-engine; None for human-only modes.
        pipeline: Review pipeline; built from the engine when omitted.
        starting_fen: Initial position.
    """

    def __init__(
        self,
        engine: EngineProcess | None = None,
        pipeline: AnalysisPipeline | None = None,
        starting_fen: str = chess.STARTING_FEN,
    ) -> None:
        self.engine = engine
        if pipeline is None:
            pipeline = AnalysisPipeline(engine.search if engine is not None else None)
        self.pipeline = pipeline
        self.starting_fen = starting_fen
        self.board = chess.Board(starting_fen)
        self.moves: list[MoveRecord] = []
        self.view: ViewState = Live()
        self.report: ReviewReport | None = None

    @property
    def input_enabled(self) -> bool:
        return isinstance(self.view, Live) and not self.board.is_game_over()

    def reset(self, starting_fen: str = chess.STARTING_FEN) -> None:
        """Start a fresh game, discarding any review."""
        self.pipeline.cancel()
        self.starting_fen = starting_fen
        self.board = chess.Board(starting_fen)
        self.moves = []
        self.view = Live()
        self.report = None

    def _push(self, move: chess.Move) -> MoveRecord:
        record = MoveRecord.from_board(self.board, move)
        self.board.push(move)
        self.moves.append(record)
        return record

    def apply_local_move(self, uci: str) -> MoveRecord:
        """Play a move entered on this client.

        Raises:
            IllegalMove: If input is disabled or the move is illegal.
        """
        if not self.input_enabled:
            raise IllegalMove("Moves are not accepted right now")
        try:
            move = chess.Move.from_uci(uci)
        except ValueError as exc:
            raise IllegalMove(f"Invalid move: {uci}") from exc
        if move not in self.board.legal_moves:
            raise IllegalMove(f"Illegal move: {uci}")
        return self._push(move)

    def apply_remote_move(self, payload: dict) -> MoveRecord | None:
        """Play a move relayed from the online opponent.

        A move the local board rejects means the two clients disagree;
        it is logged and dropped.

        Args:
            payload: {'from': 'e7', 'to': 'e8', 'promotion': 'q' | None}.

        Returns:
            The played MoveRecord, or None if the move was dropped.
        """
        uci = f"{payload.get('from', '')}{payload.get('to', '')}{payload.get('promotion') or ''}"
        try:
            move = chess.Move.from_uci(uci)
        except ValueError:
            move = None
        if move is None or move not in self.board.legal_moves:
            _log.warning("Dropping relayed move %r: illegal in %s", uci, self.board.fen())
            return None
        return self._push(move)

    async def engine_reply(self, depth: int = config.LIVE_DEPTH) -> MoveRecord:
        """Let the engine play the side to move.

        Raises:
            RuntimeError: If no engine is attached.
            ValueError: If the game is over.
        """
        if self.engine is None:
            raise RuntimeError("No engine attached")
        move = await self.engine.best_move(self.board, depth=depth)
        return self._push(move)

    def load_pgn(self, text: str) -> list[MoveRecord]:
        """Replace the game with an imported one.

        The current game is untouched when the text is rejected.

        Raises:
            InvalidGameNotation: If the PGN cannot be replayed.
        """
        starting_fen, records = parse_pgn(text)
        self.reset(starting_fen)
        for record in records:
            self._push(record.to_move())
        return records

    async def start_review(self) -> ReviewReport | None:
        """Review the moves played so far.

        Returns:
            The report, or None when a newer review superseded this one.
        """
        self.view = Reviewing(0)
        self.report = None
        report = await self.pipeline.review(self.moves, self.starting_fen)
        if report is not None:
            self.report = report
        return report

    def scrub(self, index: int) -> Reviewing:
        """Show the position after `index` plies of the reviewed game."""
        self.view = Reviewing(max(0, min(len(self.moves), index)))
        return self.view

    def resume_live(self) -> None:
        """Close the review and return to the live board."""
        self.pipeline.cancel()
        self.view = Live()

    def displayed_board(self) -> chess.Board:
        """Board the view should render for the current view state."""
        if isinstance(self.view, Reviewing):
            board = chess.Board(self.starting_fen)
            for record in self.moves[:self.view.index]:
                board.push(record.to_move())
            return board
        return self.board.copy()
