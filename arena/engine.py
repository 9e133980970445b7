"""Stockfish process handle for Chess Arena.

Wraps a UCI engine via python-chess's asyncio interface. Provides:
- Engine discovery (explicit path, env override, known paths, PATH)
- Strength configuration for play-vs-engine (Skill Level, UCI_Elo)
- Live opponent moves at a shallow fixed depth
- SearchClient: one tagged search at a time for the review pipeline
- CLI for quick position analysis
"""

from __future__ import annotations

import argparse
import asyncio
import itertools
import logging
import shutil
import sys
from dataclasses import dataclass
from pathlib import Path

import chess
import chess.engine

from arena import config

_log = logging.getLogger(__name__)

# Stockfish search paths in priority order
_STOCKFISH_PATHS = [
    "/opt/homebrew/bin/stockfish",
    "/usr/local/bin/stockfish",
    "/usr/bin/stockfish",
    "/usr/games/stockfish",
]

# Elo range mapped linearly onto Skill Level 0..20
_MIN_ELO = 400
_MAX_ELO = 3200


def _find_stockfish() -> str:
    """Auto-detect Stockfish binary path.

    Checks ARENA_STOCKFISH, known install paths, then PATH.

    Returns:
        Path to Stockfish binary.

    Raises:
        FileNotFoundError: If Stockfish is not found anywhere.
    """
    if config.STOCKFISH_PATH:
        return config.STOCKFISH_PATH

    for path_str in _STOCKFISH_PATHS:
        if Path(path_str).is_file():
            return path_str

    which_result = shutil.which("stockfish")
    if which_result is not None:
        return which_result

    raise FileNotFoundError(
        "Stockfish not found. Install it or set ARENA_STOCKFISH."
    )


def skill_level_for_elo(elo: int) -> int:
    """Map an Elo rating onto Stockfish's Skill Level (0-20)."""
    level = round((elo - _MIN_ELO) / (_MAX_ELO - _MIN_ELO) * 20)
    return max(0, min(20, level))


def strength_options(
    elo: int,
    available: dict[str, chess.engine.Option] | None = None,
) -> dict[str, object]:
    """Build the setoption payload for a target Elo.

    Options the engine does not advertise are left out, and UCI_Elo is
    clamped to the advertised range.

    Args:
        elo: Target playing strength.
        available: The engine's option table (protocol.options).

    Returns:
        Mapping of option name to value for configure().
    """
    options: dict[str, object] = {
        "Skill Level": skill_level_for_elo(elo),
        "UCI_LimitStrength": True,
        "UCI_Elo": elo,
    }
    if available is None:
        return options

    result: dict[str, object] = {}
    for name, value in options.items():
        option = available.get(name)
        if option is None:
            continue
        if name == "UCI_Elo":
            if option.min is not None:
                value = max(option.min, value)
            if option.max is not None:
                value = min(option.max, value)
        result[name] = value
    return result


@dataclass(frozen=True)
class SearchResult:
    """Outcome of one fixed-depth search.

    `kind` and `value` are from the side to move's point of view, exactly
    as the engine reported them.
    """

    tag: int
    query_id: int
    fen: str
    kind: str
    value: int
    best_move: str | None


class SearchClient:
    """Runs one fixed-depth search at a time on a UCI protocol.

    Every query gets a fresh id and carries the caller's tag so results
    can be matched to the session that asked for them.
    """

    def __init__(self, protocol: chess.engine.Protocol) -> None:
        self._protocol = protocol
        self._ids = itertools.count(1)
        self._serial = asyncio.Lock()
        self._active: chess.engine.AnalysisResult | None = None
        self.in_flight: int | None = None

    async def search(self, board: chess.Board, depth: int, tag: int = 0) -> SearchResult:
        """Search `board` to `depth` and return the last reported score.

        Args:
            board: Position to search.
            depth: Fixed search depth.
            tag: Caller-defined identifier echoed in the result.

        Returns:
            SearchResult carrying the score and the engine's best move.

        Raises:
            chess.engine.EngineError: If the engine fails or terminates.
        """
        async with self._serial:
            query_id = next(self._ids)
            self.in_flight = query_id
            kind, value = "cp", 0
            try:
                analysis = await self._protocol.analysis(
                    board, chess.engine.Limit(depth=depth)
                )
                self._active = analysis
                async for info in analysis:
                    score = info.get("score")
                    if score is None:
                        continue
                    relative = score.relative
                    if relative.is_mate():
                        kind, value = "mate", relative.mate()
                    else:
                        kind, value = "cp", relative.score()
                best = await analysis.wait()
            finally:
                self._active = None
                self.in_flight = None

        best_move = best.move.uci() if best.move is not None else None
        return SearchResult(
            tag=tag,
            query_id=query_id,
            fen=board.fen(),
            kind=kind,
            value=value,
            best_move=best_move,
        )

    async def play(self, board: chess.Board, depth: int) -> chess.Move | None:
        """Choose a move at `depth`, queued behind any running search.

        Raises:
            chess.engine.EngineError: If the engine fails or terminates.
        """
        async with self._serial:
            result = await self._protocol.play(board, chess.engine.Limit(depth=depth))
        return result.move

    async def configure(self, options: dict[str, object]) -> None:
        """Send setoption commands between searches."""
        async with self._serial:
            await self._protocol.configure(options)

    def rebind(self, protocol: chess.engine.Protocol) -> None:
        """Point at a restarted engine; holders of this client keep working."""
        self._protocol = protocol
        self._active = None

    def stop(self) -> None:
        """Ask the engine to finish the in-flight search early."""
        if self._active is not None:
            self._active.stop()


class EngineProcess:
    """A running UCI engine shared by live play and review."""

    def __init__(
        self,
        transport: asyncio.SubprocessTransport | None,
        protocol: chess.engine.Protocol,
        path: str | None = None,
    ) -> None:
        self._transport = transport
        self._protocol = protocol
        self._path = path
        self._target_elo: int | None = None
        self.search = SearchClient(protocol)

    @classmethod
    async def open(cls, path: str | None = None) -> EngineProcess:
        """Launch Stockfish and complete the UCI handshake.

        Args:
            path: Explicit binary path; auto-detected when None.

        Raises:
            FileNotFoundError: If Stockfish is not found.
        """
        stockfish_path = path or _find_stockfish()
        transport, protocol = await chess.engine.popen_uci(stockfish_path)
        _log.info("Engine started: %s", stockfish_path)
        return cls(transport, protocol, stockfish_path)

    async def _reopen(self) -> None:
        """Replace a terminated engine process with a fresh one."""
        _log.warning("Engine terminated, restarting %s", self._path)
        self._transport, self._protocol = await chess.engine.popen_uci(self._path)
        self.search.rebind(self._protocol)
        if self._target_elo is not None:
            await self.configure_strength(self._target_elo)

    async def configure_strength(self, elo: int) -> dict[str, object]:
        """Limit playing strength for play-vs-engine.

        Args:
            elo: Target Elo; mapped to Skill Level and UCI_Elo.

        Returns:
            The options actually sent to the engine.
        """
        self._target_elo = elo
        options = strength_options(elo, dict(self._protocol.options))
        _log.info(
            "Configuring engine: Elo %d -> Skill Level %s",
            elo, options.get("Skill Level"),
        )
        await self.search.configure(options)
        return options

    async def best_move(
        self,
        board: chess.Board,
        depth: int = config.LIVE_DEPTH,
    ) -> chess.Move:
        """Pick the engine's reply for live play.

        Waits for any review search in progress. Restarts the engine once
        if it has terminated.

        Raises:
            ValueError: If the game is already over.
        """
        if board.is_game_over():
            raise ValueError("Game is already over")

        try:
            return await self.search.play(board, depth)
        except chess.engine.EngineTerminatedError:
            if self._path is None:
                raise
            await self._reopen()
            return await self.search.play(board, depth)

    async def close(self) -> None:
        """Clean up the engine process."""
        try:
            await self._protocol.quit()
        except chess.engine.EngineTerminatedError:
            pass


# ---------------------------------------------------------------------------
# CLI interface
# ---------------------------------------------------------------------------


async def _analyze(fen: str, depth: int) -> SearchResult:
    engine = await EngineProcess.open()
    try:
        return await engine.search.search(chess.Board(fen), depth)
    finally:
        await engine.close()


def main() -> None:
    """CLI entry point for engine.py."""
    parser = argparse.ArgumentParser(description="Analyze a position with Stockfish")
    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    analyze_parser = subparsers.add_parser("analyze", help="Analyze a FEN position")
    analyze_parser.add_argument("fen", type=str, help="FEN string to analyze")
    analyze_parser.add_argument(
        "--depth", type=int, default=config.REVIEW_DEPTH, help="Search depth"
    )

    args = parser.parse_args()
    config.configure_logging()

    if args.command != "analyze":
        parser.print_help()
        sys.exit(1)

    try:
        board = chess.Board(args.fen)
    except ValueError as exc:
        print(f"Invalid FEN: {exc}")
        sys.exit(1)

    try:
        result = asyncio.run(_analyze(board.fen(), args.depth))
    except FileNotFoundError as exc:
        print(exc)
        sys.exit(1)
    score = f"Mate in {result.value}" if result.kind == "mate" else f"{result.value / 100.0:+.2f}"
    print(f"Position: {board.fen()}")
    print(f"Side to move: {'White' if board.turn else 'Black'}")
    print(f"Score (side to move): {score}")
    print(f"Best move: {result.best_move}")


if __name__ == "__main__":
    main()
