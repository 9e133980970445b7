"""Response schemas and minification for MCP tool responses.

Reviews carry one evaluation per position; the tool responses flatten
them into compact dicts so an agent reading the review does not pay for
full dataclass dumps.
"""

from __future__ import annotations

import os

import chess

from arena.models import Evaluation, MoveReview, ReviewFrame, ReviewReport


# ---------------------------------------------------------------------------
# Minification functions
# ---------------------------------------------------------------------------


def minify_evaluation(evaluation: Evaluation) -> dict:
    """Compact White-positive evaluation.

    Args:
        evaluation: Evaluation to minify.

    Returns:
        Dict with score text, kind and best move (when known).
    """
    result = {
        "kind": evaluation.kind,
        "value": evaluation.value,
        "score": evaluation.display(),
    }
    if evaluation.best_move is not None:
        result["best_move"] = evaluation.best_move
    return result


def minify_move_review(review: MoveReview) -> dict:
    """Minify one reviewed move; suggestions only for bad moves."""
    result = {
        "ply": review.ply,
        "san": review.san,
        "color": review.color,
        "classification": review.classification,
        "loss": review.loss,
        "score": review.evaluation.display(),
    }
    if review.classification in ("inaccuracy", "mistake", "blunder"):
        result["suggested_move"] = review.suggested_move_san or review.suggested_move
    return result


def minify_review_summary(review_id: str, report: ReviewReport) -> dict:
    """Minify a finished review for the review_game response.

    Drops classification counters that are zero for both sides and
    compacts the move list to a PGN-style string.

    Args:
        review_id: Identifier of the stored review.
        report: Completed ReviewReport.

    Returns:
        Minified dict.
    """
    stats: dict[str, dict[str, int]] = {"white": {}, "black": {}}
    for color in ("white", "black"):
        for label, count in report.stats[color].items():
            if count:
                stats[color][label] = count

    return {
        "review_id": review_id,
        "move_list": _moves_to_pgn_string([m.san for m in report.moves], report.starting_fen),
        "plies": len(report.moves),
        "accuracy": report.accuracy,
        "stats": stats,
        "final_score": report.evaluations[-1].display(),
        "moves": [minify_move_review(r) for r in report.reviews],
    }


def minify_review_frame(review_id: str, frame: ReviewFrame) -> dict:
    """Minify the per-index view of a review."""
    result = {
        "review_id": review_id,
        "ply": frame.ply,
        "eval_bar": round(frame.eval_bar_fraction, 3),
        "classification": frame.classification,
        "running_accuracy": frame.running_accuracy,
        "coach": frame.coach_message,
    }
    if frame.suggested_move is not None:
        result["suggested_move"] = frame.suggested_move
    return result


# ---------------------------------------------------------------------------
# Helper: move list to PGN string
# ---------------------------------------------------------------------------


def _moves_to_pgn_string(moves: list[str], starting_fen: str = chess.STARTING_FEN) -> str:
    """Convert a list of SAN moves to a PGN move string.

    Numbering continues from the starting position, e.g.
    ['e4', 'e5', 'Nf3', 'Nc6'] -> '1.e4 e5 2.Nf3 Nc6', or '12...Kg8 13.Qd1'
    when Black moves first at move 12.
    """
    board = chess.Board(starting_fen)
    number, turn = board.fullmove_number, board.turn

    parts = []
    for i, move in enumerate(moves):
        if turn == chess.WHITE:
            parts.append(f"{number}.{move}")
        else:
            parts.append(f"{number}...{move}" if i == 0 else move)
            number += 1
        turn = not turn

    return " ".join(parts)


# ---------------------------------------------------------------------------
# Validation schemas (dict-based)
# ---------------------------------------------------------------------------

REVIEW_SUMMARY_SCHEMA = {
    "review_id": str,
    "move_list": str,
    "plies": int,
    "accuracy": dict,
    "stats": dict,
    "final_score": str,
    "moves": list,
}

REVIEW_FRAME_SCHEMA = {
    "review_id": str,
    "ply": int,
    "eval_bar": (int, float),
    "classification": (str, type(None)),
    "running_accuracy": dict,
    "coach": str,
}

POSITION_SCHEMA = {
    "fen": str,
    "depth": int,
    "kind": str,
    "value": int,
    "score": str,
}

ERROR_SCHEMA = {
    "error": str,
}


def validate_response(response: dict, schema: dict) -> list[str]:
    """Validate a response dict against a schema.

    Only runs when ARENA_VALIDATE=1 env var is set.

    Args:
        response: Response dict to validate.
        schema: Dict mapping key names to expected types (or tuple of types).

    Returns:
        List of validation error strings (empty = valid).
    """
    if os.environ.get("ARENA_VALIDATE") != "1":
        return []

    errors = []

    if not isinstance(response, dict):
        errors.append(f"Response is not a dict: {type(response).__name__}")
        return errors

    for key, expected_types in schema.items():
        if key not in response:
            errors.append(f"Missing key: {key}")
            continue

        value = response[key]
        if isinstance(expected_types, tuple):
            if not isinstance(value, expected_types):
                type_names = ", ".join(t.__name__ for t in expected_types)
                errors.append(
                    f"Key '{key}': expected ({type_names}), "
                    f"got {type(value).__name__}"
                )
        else:
            if not isinstance(value, expected_types):
                errors.append(
                    f"Key '{key}': expected {expected_types.__name__}, "
                    f"got {type(value).__name__}"
                )

    return errors
