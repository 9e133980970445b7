"""Terminal game review for Chess Arena.

Reviews a PGN file with Stockfish and renders the move-by-move verdicts
and per-side statistics with Rich. Without a Stockfish binary every
position scores 0.00 and the layout can still be checked.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path

import chess
from rich.console import Console, Group
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from arena import config
from arena.classify import CLASSIFICATIONS, eval_bar_fraction
from arena.controller import InvalidGameNotation, parse_pgn
from arena.engine import EngineProcess
from arena.models import ReviewReport
from arena.pipeline import AnalysisPipeline

_log = logging.getLogger(__name__)

# Classification -> (symbol, style)
_CLASS_STYLES = {
    "brilliant": ("!!", "bold cyan"),
    "great": ("!", "cyan"),
    "book": ("□", "yellow"),
    "best": ("★", "bold green"),
    "excellent": ("\U0001f44d", "green"),
    "good": ("✓", "green"),
    "inaccuracy": ("?!", "yellow"),
    "mistake": ("?", "dark_orange"),
    "blunder": ("??", "bold red"),
}

_BAR_LEN = 20


def _eval_bar(fraction: float) -> str:
    filled = int(round(fraction * _BAR_LEN))
    return "█" * filled + "░" * (_BAR_LEN - filled)


def render_moves(report: ReviewReport) -> Table:
    """Render the move list with classifications and scores.

    Args:
        report: Completed ReviewReport.

    Returns:
        Rich Table, one row per full move.
    """
    table = Table(title="Moves", show_edge=False, header_style="bold")
    table.add_column("#", justify="right")
    table.add_column("White")
    table.add_column("Eval", justify="right")
    table.add_column("Black")
    table.add_column("Eval", justify="right")

    number = chess.Board(report.starting_fen).fullmove_number
    row: list[Text] = []
    for review in report.reviews:
        symbol, style = _CLASS_STYLES[review.classification]
        cell = Text(f"{review.san} ")
        cell.append(symbol, style=style)
        if review.classification in ("inaccuracy", "mistake", "blunder") and review.suggested_move_san:
            cell.append(f" (best {review.suggested_move_san})", style="dim")

        if review.color == "white":
            row = [Text(str(number)), cell, Text(review.evaluation.display())]
        else:
            if not row:
                row = [Text(str(number)), Text("..."), Text("")]
            row += [cell, Text(review.evaluation.display())]
            table.add_row(*row)
            row = []
            number += 1

    if row:
        table.add_row(*row, Text(""), Text(""))
    return table


def render_summary(report: ReviewReport) -> Panel:
    """Render accuracy and classification counts for both sides."""
    table = Table(show_edge=False, header_style="bold")
    table.add_column("")
    table.add_column("White", justify="right")
    table.add_column("Black", justify="right")

    table.add_row(
        Text("Accuracy", style="bold"),
        f"{report.accuracy['white']:.1f}%",
        f"{report.accuracy['black']:.1f}%",
    )
    for label in CLASSIFICATIONS:
        symbol, style = _CLASS_STYLES[label]
        table.add_row(
            Text(f"{symbol} {label.capitalize()}", style=style),
            str(report.stats["white"][label]),
            str(report.stats["black"][label]),
        )

    final = report.evaluations[-1]
    bar = Text(f"\nFinal: {final.display()}  [{_eval_bar(eval_bar_fraction(final))}]")
    return Panel(Group(table, bar), title="Summary", border_style="green")


def render_report(report: ReviewReport) -> Group:
    return Group(render_moves(report), render_summary(report))


async def review_pgn(text: str, depth: int = config.REVIEW_DEPTH) -> ReviewReport:
    """Review PGN text end to end.

    Uses Stockfish when available; otherwise every search is skipped and
    positions score as level.

    Raises:
        InvalidGameNotation: If the PGN cannot be replayed.
    """
    starting_fen, records = parse_pgn(text)

    engine: EngineProcess | None = None
    try:
        engine = await EngineProcess.open()
    except FileNotFoundError as exc:
        _log.warning("%s Reviewing without an engine.", exc)

    pipeline = AnalysisPipeline(engine.search if engine is not None else None, depth=depth)
    try:
        report = await pipeline.review(records, starting_fen)
    finally:
        if engine is not None:
            await engine.close()
    if report is None:
        raise RuntimeError("Review was cancelled")
    return report


def main() -> None:
    """CLI entry point for report.py."""
    parser = argparse.ArgumentParser(description="Review a PGN game with Stockfish")
    parser.add_argument("pgn", type=Path, help="PGN file to review")
    parser.add_argument(
        "--depth", type=int, default=config.REVIEW_DEPTH, help="Search depth per position"
    )
    args = parser.parse_args()

    config.configure_logging()
    console = Console()

    try:
        text = args.pgn.read_text(encoding="utf-8")
    except OSError as exc:
        console.print(f"[red]Cannot read {args.pgn}: {exc}[/red]")
        sys.exit(1)

    try:
        with console.status("Analyzing..."):
            report = asyncio.run(review_pgn(text, depth=args.depth))
    except InvalidGameNotation as exc:
        console.print(f"[red]{exc}[/red]")
        sys.exit(1)

    console.print(render_report(report))


if __name__ == "__main__":
    main()
