"""Game review pipeline.

Turns a played move list into one evaluation per position by draining a
queue against the engine, strictly one search at a time, then scores
every move from adjacent evaluations.

Each review session carries a tag. Engine results tagged for an older
session are dropped, so starting a new review mid-analysis can never
write stale scores into the fresh session.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Sequence

import chess
import chess.engine

from arena import config
from arena.classify import (
    BAD_MOVES,
    classify_move,
    coach_message,
    empty_stats,
    eval_bar_fraction,
    mean_accuracy,
    move_accuracy,
    move_loss,
)
from arena.engine import SearchClient, SearchResult
from arena.models import (
    AnalysisItem,
    Evaluation,
    MoveRecord,
    MoveReview,
    ReviewFrame,
    ReviewReport,
)

_log = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int], None]


def _color_name(color: chess.Color) -> str:
    return "white" if color == chess.WHITE else "black"


def terminal_evaluation(board: chess.Board) -> Evaluation | None:
    """Evaluation for a finished position, or None if play continues.

    Checkmate scores mate-in-0 for the side that is NOT to move; any
    recognised draw scores 0.
    """
    if board.is_checkmate():
        sign = 1 if board.turn == chess.BLACK else -1
        return Evaluation("mate", 0, sign=sign)
    if board.is_game_over(claim_draw=True):
        return Evaluation("cp", 0)
    return None


def normalize_score(kind: str, value: int, turn: chess.Color) -> Evaluation:
    """Re-express a side-to-move score from White's point of view.

    Args:
        kind: 'cp' or 'mate'.
        value: Score as reported by the engine (mover's perspective).
        turn: Side to move in the searched position.

    Returns:
        White-positive Evaluation (without best move).
    """
    flip = 1 if turn == chess.WHITE else -1
    if kind == "mate":
        # Mate 0 from the engine means the mover is the one mated
        mover_sign = 1 if value > 0 else -1
        return Evaluation("mate", value * flip, sign=mover_sign * flip)
    return Evaluation("cp", value * flip)


def build_queue(
    moves: Sequence[MoveRecord],
    starting_fen: str = chess.STARTING_FEN,
) -> list[AnalysisItem]:
    """Build the evaluation queue: the start position plus one item per ply.

    Args:
        moves: Played moves in order.
        starting_fen: Position the game started from.

    Returns:
        len(moves) + 1 AnalysisItems, terminal positions pre-evaluated.

    Raises:
        ValueError: If a move is illegal in the replayed position.
    """
    board = chess.Board(starting_fen)
    queue = [AnalysisItem(fen=board.fen(), turn=board.turn, ply_index=-1)]

    for i, record in enumerate(moves):
        move = record.to_move()
        if move not in board.legal_moves:
            raise ValueError(f"Illegal move at ply {i}: {record.uci()}")
        board.push(move)
        queue.append(AnalysisItem(
            fen=board.fen(),
            turn=board.turn,
            ply_index=i,
            manual_evaluation=terminal_evaluation(board),
        ))

    return queue


class ReviewSession:
    """Evaluations for one game under review.

    `evaluations[0]` is the start position, `evaluations[i + 1]` the
    position after ply i.
    """

    def __init__(
        self,
        moves: Sequence[MoveRecord],
        starting_fen: str = chess.STARTING_FEN,
        tag: int = 0,
    ) -> None:
        self.moves = list(moves)
        self.starting_fen = starting_fen
        self.tag = tag
        self.queue = build_queue(self.moves, starting_fen)
        self.fens = [item.fen for item in self.queue]
        self.evaluations: list[Evaluation | None] = [None] * len(self.queue)
        self._next_slot = 0

    @property
    def total(self) -> int:
        return len(self.evaluations)

    @property
    def completed(self) -> int:
        return self._next_slot

    def is_complete(self) -> bool:
        return self._next_slot == len(self.evaluations)

    def record(self, item: AnalysisItem, evaluation: Evaluation) -> None:
        """Store an evaluation, enforcing strictly increasing slot order."""
        slot = item.ply_index + 1
        if slot != self._next_slot:
            raise RuntimeError(
                f"Out-of-order evaluation: slot {slot}, expected {self._next_slot}"
            )
        self.evaluations[slot] = evaluation
        self._next_slot += 1

    def _mover(self, ply: int) -> chess.Color:
        return chess.Board(self.fens[ply]).turn

    def suggested_move_san(self, ply: int) -> str | None:
        """SAN of the engine's choice at the position before ply `ply`."""
        before = self.evaluations[ply]
        if before is None or before.best_move is None:
            return None
        board = chess.Board(self.fens[ply])
        try:
            return board.san(chess.Move.from_uci(before.best_move))
        except (ValueError, AssertionError):
            return None

    def classify(self) -> ReviewReport:
        """Score every move. Only valid once all evaluations are in.

        Raises:
            RuntimeError: If the drain has not completed.
        """
        if not self.is_complete():
            raise RuntimeError(
                f"Review incomplete: {self.completed}/{self.total} positions evaluated"
            )

        evaluations: list[Evaluation] = list(self.evaluations)  # type: ignore[arg-type]
        stats = empty_stats()
        scores: dict[str, list[float]] = {"white": [], "black": []}
        reviews: list[MoveReview] = []

        for i, record in enumerate(self.moves):
            color = _color_name(self._mover(i))
            before, after = evaluations[i], evaluations[i + 1]
            loss = move_loss(before, after, color == "white")
            classification = classify_move(before, after, color == "white")
            accuracy = move_accuracy(loss)

            stats[color][classification] += 1
            scores[color].append(accuracy)
            reviews.append(MoveReview(
                ply=i,
                san=record.san,
                color=color,
                classification=classification,
                loss=loss,
                accuracy=accuracy,
                evaluation=after,
                suggested_move=before.best_move,
                suggested_move_san=self.suggested_move_san(i),
            ))

        return ReviewReport(
            moves=self.moves,
            evaluations=evaluations,
            reviews=reviews,
            stats=stats,
            accuracy={color: mean_accuracy(scores[color]) for color in scores},
            starting_fen=self.starting_fen,
        )

    def frame(self, index: int, report: ReviewReport | None = None) -> ReviewFrame:
        """View data for review index `index` (0 = start, i = after ply i-1).

        Args:
            index: Clamped to 0..len(moves).
            report: A classified report; computed when omitted.
        """
        report = report or self.classify()
        index = max(0, min(len(self.moves), index))
        evaluation = report.evaluations[index]
        bar = eval_bar_fraction(evaluation)

        running: dict[str, list[float]] = {"white": [], "black": []}
        for review in report.reviews[:index]:
            running[review.color].append(review.accuracy)
        running_accuracy = {color: mean_accuracy(running[color]) for color in running}

        if index == 0:
            return ReviewFrame(
                ply=0,
                eval_bar_fraction=bar,
                classification=None,
                suggested_move=None,
                running_accuracy=running_accuracy,
                coach_message="Ready to review? Step through the moves.",
            )

        review = report.reviews[index - 1]
        suggestion = None
        if review.classification in BAD_MOVES:
            suggestion = review.suggested_move_san or review.suggested_move
        return ReviewFrame(
            ply=index,
            eval_bar_fraction=bar,
            classification=review.classification,
            suggested_move=review.suggested_move if suggestion else None,
            running_accuracy=running_accuracy,
            coach_message=coach_message(
                review.classification,
                review.san,
                suggested_move=suggestion,
                is_checkmate=chess.Board(self.fens[index]).is_checkmate(),
                mover=review.color,
            ),
        )


class AnalysisPipeline:
    """Drains review queues against a single engine.

    Args:
        search: Engine search client; None runs a neutral review.
        depth: Fixed search depth per position.
        on_progress: Called with (done, total) after each stored slot.
    """

    def __init__(
        self,
        search: SearchClient | None,
        depth: int = config.REVIEW_DEPTH,
        on_progress: ProgressCallback | None = None,
    ) -> None:
        self._search = search
        self._depth = depth
        self._on_progress = on_progress
        self._tag = 0
        self.session: ReviewSession | None = None

    @property
    def current_tag(self) -> int:
        return self._tag

    def cancel(self) -> None:
        """Abandon the current review; any in-flight result becomes stale."""
        self._tag += 1
        self.session = None
        if self._search is not None:
            self._search.stop()

    def start(
        self,
        moves: Sequence[MoveRecord],
        starting_fen: str = chess.STARTING_FEN,
    ) -> ReviewSession:
        """Open a new session, invalidating whatever was running."""
        self.cancel()
        self.session = ReviewSession(moves, starting_fen, tag=self._tag)
        _log.info(
            "Review %d started: %d positions", self._tag, self.session.total
        )
        return self.session

    async def review(
        self,
        moves: Sequence[MoveRecord],
        starting_fen: str = chess.STARTING_FEN,
    ) -> ReviewReport | None:
        """Evaluate and classify a whole game.

        Returns:
            The ReviewReport, or None if the review was superseded.
        """
        session = self.start(moves, starting_fen)
        if not await self.drain(session):
            return None
        return session.classify()

    async def drain(self, session: ReviewSession) -> bool:
        """Evaluate queued positions in order until empty or superseded.

        Returns:
            True if the session completed, False if it was cancelled.
        """
        while session.queue:
            if session.tag != self._tag:
                return False
            item = session.queue.pop(0)

            if item.manual_evaluation is not None:
                self._store(session, item, item.manual_evaluation)
                await asyncio.sleep(0)
                continue

            result = await self._evaluate(item, session.tag)
            if result is None:
                self._store(session, item, Evaluation("cp", 0))
                continue
            if result.tag != self._tag:
                _log.debug(
                    "Dropping stale result for query %d (tag %d, current %d)",
                    result.query_id, result.tag, self._tag,
                )
                return False

            evaluation = normalize_score(result.kind, result.value, item.turn)
            self._store(session, item, Evaluation(
                evaluation.kind,
                evaluation.value,
                best_move=result.best_move,
                sign=evaluation.sign,
            ))

        _log.info("Review %d complete", session.tag)
        return session.tag == self._tag

    async def _evaluate(self, item: AnalysisItem, tag: int) -> SearchResult | None:
        if self._search is None:
            return None
        try:
            return await self._search.search(chess.Board(item.fen), self._depth, tag=tag)
        except chess.engine.EngineError as exc:
            _log.warning(
                "Engine unavailable at ply %d, using neutral score: %s",
                item.ply_index, exc,
            )
            return None

    def _store(self, session: ReviewSession, item: AnalysisItem, evaluation: Evaluation) -> None:
        session.record(item, evaluation)
        if self._on_progress is not None:
            self._on_progress(session.completed, session.total)
