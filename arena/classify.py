"""Move classification and review scoring.

Everything here is a pure function of adjacent evaluations, so a review
can be re-scored at any time from its evaluation list alone.
"""

from __future__ import annotations

from arena.models import Evaluation

# Ordered best-to-worst. The first three are reserved: the scorer never
# assigns them but statistics carry a counter for each.
CLASSIFICATIONS = (
    "brilliant",
    "great",
    "book",
    "best",
    "excellent",
    "good",
    "inaccuracy",
    "mistake",
    "blunder",
)

# Inclusive upper bounds on centipawn loss
_CLASSIFICATION_THRESHOLDS = [
    (10, "best"),
    (30, "excellent"),
    (70, "good"),
    (130, "inaccuracy"),
    (300, "mistake"),
]

BAD_MOVES = frozenset({"inaccuracy", "mistake", "blunder"})

_COACH_TEXT = {
    "best": "That's the engine's top choice.",
    "excellent": "A very strong move, almost as good as the best.",
    "good": "A solid move that keeps the position together.",
    "inaccuracy": "Not the most precise. A better option was available.",
    "mistake": "This gives away a real part of your advantage.",
    "blunder": "A serious error that changes the evaluation sharply.",
}


def empty_stats() -> dict[str, dict[str, int]]:
    """Per-side classification counters, all zero."""
    return {
        "white": {label: 0 for label in CLASSIFICATIONS},
        "black": {label: 0 for label in CLASSIFICATIONS},
    }


def move_loss(before: Evaluation, after: Evaluation, white_moved: bool) -> int:
    """Centipawn loss suffered by the mover, never negative.

    Args:
        before: White-positive evaluation of the position before the move.
        after: White-positive evaluation of the position after the move.
        white_moved: True if White played the move.

    Returns:
        Non-negative loss in (pseudo-)centipawns.
    """
    if white_moved:
        loss = before.centipawns() - after.centipawns()
    else:
        loss = after.centipawns() - before.centipawns()
    return max(0, loss)


def classify_loss(loss: int) -> str:
    """Map a centipawn loss to a classification label."""
    for threshold, label in _CLASSIFICATION_THRESHOLDS:
        if loss <= threshold:
            return label
    return "blunder"


def classify_move(before: Evaluation, after: Evaluation, white_moved: bool) -> str:
    return classify_loss(move_loss(before, after, white_moved))


def move_accuracy(loss: int) -> float:
    """Per-move accuracy in percent."""
    return max(0.0, 100.0 - loss / 2)


def mean_accuracy(scores: list[float]) -> float:
    if not scores:
        return 0.0
    return round(sum(scores) / len(scores), 1)


def eval_bar_fraction(evaluation: Evaluation | None) -> float:
    """White's share of the evaluation bar, 0.0 to 1.0."""
    if evaluation is None:
        return 0.5
    if evaluation.is_mate:
        return 1.0 if evaluation.sign > 0 else 0.0
    return 1.0 / (1.0 + 10 ** (-evaluation.value / 400))


def coach_message(
    classification: str,
    san: str,
    suggested_move: str | None = None,
    is_checkmate: bool = False,
    mover: str = "white",
) -> str:
    """Explain a reviewed move in one or two sentences.

    Args:
        classification: Label from classify_move.
        san: The move as played.
        suggested_move: Best move at the pre-move position, if known.
        is_checkmate: True when the move ends the game by checkmate.
        mover: 'white' or 'black'.

    Returns:
        Coach text for display.
    """
    label = classification.capitalize()
    if is_checkmate:
        return f"{label}: {san} is checkmate. {mover.capitalize()} wins the game."

    text = f"{label}: {san}. {_COACH_TEXT.get(classification, '')}".rstrip()
    if classification in BAD_MOVES and suggested_move:
        text += f" You missed {suggested_move}."
    return text
