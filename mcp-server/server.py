"""MCP server for Chess Arena game review.

Exposes the review pipeline and single-position analysis as FastMCP
tools. Reviews are stored in memory keyed by UUID so an agent can step
through a reviewed game move by move.
"""

from __future__ import annotations

import logging
import sys
import uuid
from pathlib import Path

# Add project root and mcp-server dir to path for imports
_PROJECT_ROOT = Path(__file__).resolve().parent.parent
_MCP_SERVER_DIR = Path(__file__).resolve().parent
sys.path.insert(0, str(_PROJECT_ROOT))
sys.path.insert(0, str(_MCP_SERVER_DIR))

import chess
from mcp.server.fastmcp import FastMCP

from arena import config
from arena.controller import InvalidGameNotation, parse_pgn
from arena.engine import EngineProcess
from arena.pipeline import AnalysisPipeline, ReviewSession, normalize_score

from response_schemas import (  # noqa: E402
    minify_evaluation,
    minify_review_frame,
    minify_review_summary,
)

_log = logging.getLogger(__name__)

mcp = FastMCP("chess-arena")

# In-memory review store: review_id -> {session, report}
_reviews: dict[str, dict] = {}


async def _open_engine() -> EngineProcess | None:
    """Start Stockfish, or None when it is not installed."""
    try:
        return await EngineProcess.open()
    except FileNotFoundError as exc:
        _log.warning("%s Reviewing without an engine.", exc)
        return None


def _get_review(review_id: str) -> dict | None:
    """Look up a stored review by ID."""
    return _reviews.get(review_id)


# ---------------------------------------------------------------------------
# Review tools
# ---------------------------------------------------------------------------


@mcp.tool()
async def review_game(pgn: str, depth: int = config.REVIEW_DEPTH) -> dict:
    """Review a full game: score every position and classify every move.

    Args:
        pgn: Game in PGN notation.
        depth: Search depth per position (default 12).

    Returns:
        Review summary with accuracy, classification counts and per-move
        verdicts, plus the review_id for get_review_move.
    """
    try:
        starting_fen, records = parse_pgn(pgn)
    except InvalidGameNotation as exc:
        return {"error": str(exc)}

    engine = await _open_engine()
    pipeline = AnalysisPipeline(engine.search if engine is not None else None, depth=depth)
    try:
        report = await pipeline.review(records, starting_fen)
    finally:
        if engine is not None:
            await engine.close()

    if report is None:
        return {"error": "Review was cancelled"}

    review_id = str(uuid.uuid4())
    _reviews[review_id] = {"session": pipeline.session, "report": report}
    return minify_review_summary(review_id, report)


@mcp.tool()
def get_review_move(review_id: str, ply: int) -> dict:
    """Show the review at one point of the game.

    Args:
        review_id: ID returned by review_game.
        ply: 0 for the start position, n for the position after move n.

    Returns:
        Eval bar fraction, classification, suggestion, running accuracy
        and the coach's comment.
    """
    review = _get_review(review_id)
    if review is None:
        return {"error": f"Review not found: {review_id}"}

    session: ReviewSession = review["session"]
    frame = session.frame(ply, review["report"])
    return minify_review_frame(review_id, frame)


@mcp.tool()
def close_review(review_id: str) -> dict:
    """Discard a stored review.

    Args:
        review_id: ID returned by review_game.
    """
    if _reviews.pop(review_id, None) is None:
        return {"error": f"Review not found: {review_id}"}
    return {"review_id": review_id, "message": "Review closed"}


@mcp.tool()
async def analyze_position(fen: str, depth: int = config.REVIEW_DEPTH) -> dict:
    """Evaluate one position from White's point of view.

    Args:
        fen: FEN string of the position to analyze.
        depth: Search depth (default 12).

    Returns:
        Dict with fen, depth, score (White-positive) and best move.
    """
    try:
        board = chess.Board(fen)
        if not board.is_valid():
            return {"error": f"Invalid FEN position: {fen}"}
    except ValueError as exc:
        return {"error": f"Invalid FEN: {exc}"}

    if board.is_game_over(claim_draw=True):
        return {"error": f"Position is already decided: {board.result(claim_draw=True)}"}

    engine = await _open_engine()
    if engine is None:
        return {"error": "Stockfish not available"}
    try:
        result = await engine.search.search(board, depth)
    finally:
        await engine.close()

    evaluation = normalize_score(result.kind, result.value, board.turn)
    response = {"fen": board.fen(), "depth": depth}
    response.update(minify_evaluation(evaluation))
    response["best_move"] = result.best_move
    return response


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

if __name__ == "__main__":
    config.configure_logging()
    mcp.run()
