"""Shared test fixtures with dual-mode support (fake engine vs real Stockfish).

Usage:
    pytest tests/                  # Fast, fake engine (no Stockfish)
    pytest tests/ --e2e            # Also run tests that need Stockfish

Fixtures:
    fake_search    - Factory for a scripted SearchClient stand-in.
    make_records   - Builds MoveRecords from SAN moves.
    stockfish_path - Real Stockfish path; skips unless --e2e is passed.
"""

from __future__ import annotations

import asyncio

import chess
import pytest

from arena.engine import SearchResult
from arena.models import MoveRecord


# ---------------------------------------------------------------------------
# CLI option and marker registration
# ---------------------------------------------------------------------------


def pytest_addoption(parser):
    """Register --e2e CLI flag for real Stockfish tests."""
    parser.addoption(
        "--e2e",
        action="store_true",
        default=False,
        help="Run with real Stockfish engine (no fakes).",
    )


def pytest_configure(config):
    """Register the e2e marker."""
    config.addinivalue_line(
        "markers", "e2e: mark test as end-to-end (requires real Stockfish)"
    )


def pytest_collection_modifyitems(config, items):
    """Skip e2e tests unless --e2e is passed."""
    if config.getoption("--e2e"):
        return
    skip = pytest.mark.skip(reason="needs --e2e and a Stockfish binary")
    for item in items:
        if "e2e" in item.keywords:
            item.add_marker(skip)


# ---------------------------------------------------------------------------
# Fake search client
# ---------------------------------------------------------------------------


class FakeSearch:
    """Scripted stand-in for arena.engine.SearchClient.

    Replies are consumed in call order; each is (kind, value, best_move)
    from the side to move's point of view, like a real engine. Calls past
    the end of the script return a level score with no best move.
    """

    def __init__(self, script=None, error=None):
        self.script = list(script or [])
        self.error = error
        self.calls: list[tuple[str, int, int]] = []
        self.stops = 0
        self.active = 0
        self.max_active = 0

    async def search(self, board: chess.Board, depth: int, tag: int = 0) -> SearchResult:
        self.calls.append((board.fen(), depth, tag))
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            await asyncio.sleep(0)
            if self.error is not None:
                raise self.error
            index = len(self.calls) - 1
            kind, value, best = self.script[index] if index < len(self.script) else ("cp", 0, None)
            return SearchResult(
                tag=tag,
                query_id=len(self.calls),
                fen=board.fen(),
                kind=kind,
                value=value,
                best_move=best,
            )
        finally:
            self.active -= 1

    def stop(self) -> None:
        self.stops += 1


@pytest.fixture()
def fake_search():
    """Factory: fake_search(script=[...], error=None) -> FakeSearch."""
    return FakeSearch


# ---------------------------------------------------------------------------
# Move records
# ---------------------------------------------------------------------------


def records_from_san(sans, starting_fen: str = chess.STARTING_FEN) -> list[MoveRecord]:
    board = chess.Board(starting_fen)
    records = []
    for san in sans:
        move = board.parse_san(san)
        records.append(MoveRecord.from_board(board, move))
        board.push(move)
    return records


@pytest.fixture()
def make_records():
    """Factory: make_records(['e4', 'e5'], starting_fen=...) -> list[MoveRecord]."""
    return records_from_san


SCHOLARS_MATE = ["e4", "e5", "Bc4", "Nc6", "Qh5", "Nf6", "Qxf7#"]
FOOLS_MATE = ["f3", "e5", "g4", "Qh4#"]

SCHOLARS_MATE_PGN = """[Event "Casual"]
[White "A"]
[Black "B"]
[Result "1-0"]

1. e4 e5 2. Bc4 Nc6 3. Qh5 Nf6 4. Qxf7# 1-0
"""


@pytest.fixture()
def scholars_mate():
    return list(SCHOLARS_MATE)


@pytest.fixture()
def fools_mate():
    return list(FOOLS_MATE)


@pytest.fixture()
def scholars_mate_pgn():
    return SCHOLARS_MATE_PGN


# ---------------------------------------------------------------------------
# Real Stockfish
# ---------------------------------------------------------------------------


@pytest.fixture()
def stockfish_path(request):
    """Path to a real Stockfish binary (only with --e2e)."""
    if not request.config.getoption("--e2e"):
        pytest.skip("needs --e2e")
    from arena.engine import _find_stockfish

    try:
        return _find_stockfish()
    except FileNotFoundError as exc:
        pytest.skip(str(exc))
