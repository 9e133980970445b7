"""Pytest tests for the engine wrapper.

Tests fake the UCI protocol so they don't require the actual binary.
Covers: Stockfish discovery, strength options, tagged searches, live
moves with restart, and one real-engine search behind --e2e.
"""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import chess
import chess.engine
import pytest

from arena import engine as engine_mod
from arena.engine import (
    EngineProcess,
    SearchClient,
    _find_stockfish,
    skill_level_for_elo,
    strength_options,
)
from arena.pipeline import AnalysisPipeline


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


class _FakeAnalysis:
    """Mimics chess.engine.AnalysisResult: async-iterable infos, then bestmove."""

    def __init__(self, infos, best):
        self._infos = list(infos)
        self._best = best
        self.stopped = False

    def __aiter__(self):
        return self._iterate()

    async def _iterate(self):
        for info in self._infos:
            await asyncio.sleep(0)
            yield info

    async def wait(self):
        return chess.engine.BestMove(self._best, None)

    def stop(self):
        self.stopped = True


class _FakeProtocol:
    def __init__(self, infos=(), best=None, error=None):
        self.infos = infos
        self.best = best
        self.error = error
        self.limits = []
        self.last_analysis = None

    async def analysis(self, board, limit):
        if self.error is not None:
            raise self.error
        self.limits.append(limit)
        self.last_analysis = _FakeAnalysis(self.infos, self.best)
        return self.last_analysis

    async def play(self, board, limit):
        self.limits.append(limit)
        return chess.engine.PlayResult(self.best, None)


class _SharedProtocol:
    """Records command order; analyses block until `gate` is set."""

    def __init__(self):
        self.gate = asyncio.Event()
        self.events = []
        self.active = 0
        self.max_active = 0

    def enter(self, name):
        self.events.append(name)
        self.active += 1
        self.max_active = max(self.max_active, self.active)

    def leave(self):
        self.active -= 1

    async def analysis(self, board, limit):
        self.enter("analysis")
        best = next(iter(board.legal_moves))
        return _GatedAnalysis(self, [_info(chess.engine.Cp(50), board.turn)], best)

    async def play(self, board, limit):
        self.enter("play")
        await asyncio.sleep(0)
        self.leave()
        return chess.engine.PlayResult(chess.Move.from_uci("e7e5"), None)


class _GatedAnalysis(_FakeAnalysis):

    def __init__(self, protocol, infos, best):
        super().__init__(infos, best)
        self._protocol = protocol

    async def _iterate(self):
        await self._protocol.gate.wait()
        for info in self._infos:
            yield info

    async def wait(self):
        self._protocol.leave()
        return await super().wait()


def _info(score, turn=chess.WHITE, depth=1):
    return {"depth": depth, "score": chess.engine.PovScore(score, turn)}


def _option(name, minimum=None, maximum=None):
    return chess.engine.Option(
        name=name, type="spin", default=None, min=minimum, max=maximum, var=[]
    )


# ---------------------------------------------------------------------------
# Discovery
# ---------------------------------------------------------------------------


class TestFindStockfish:

    def test_not_found(self):
        with patch.object(engine_mod.config, "STOCKFISH_PATH", None), \
             patch("arena.engine.Path.is_file", return_value=False), \
             patch("arena.engine.shutil.which", return_value=None):
            with pytest.raises(FileNotFoundError, match="Stockfish not found"):
                _find_stockfish()

    def test_env_override(self):
        with patch.object(engine_mod.config, "STOCKFISH_PATH", "/custom/stockfish"):
            assert _find_stockfish() == "/custom/stockfish"

    def test_found_via_which(self):
        with patch.object(engine_mod.config, "STOCKFISH_PATH", None), \
             patch("arena.engine.Path.is_file", return_value=False), \
             patch("arena.engine.shutil.which", return_value="/usr/local/bin/stockfish"):
            assert _find_stockfish() == "/usr/local/bin/stockfish"

    def test_found_via_known_path(self):
        with patch.object(engine_mod.config, "STOCKFISH_PATH", None), \
             patch("arena.engine.Path.is_file", return_value=True), \
             patch("arena.engine.shutil.which", return_value=None):
            assert _find_stockfish() == "/opt/homebrew/bin/stockfish"


# ---------------------------------------------------------------------------
# Strength
# ---------------------------------------------------------------------------


class TestStrength:

    @pytest.mark.parametrize("elo,level", [
        (100, 0), (400, 0), (1800, 10), (3200, 20), (4000, 20),
    ])
    def test_skill_level(self, elo, level):
        assert skill_level_for_elo(elo) == level

    def test_all_options_without_table(self):
        assert strength_options(1500) == {
            "Skill Level": 8,
            "UCI_LimitStrength": True,
            "UCI_Elo": 1500,
        }

    def test_unadvertised_options_dropped(self):
        options = strength_options(1500, {"Skill Level": _option("Skill Level", 0, 20)})
        assert options == {"Skill Level": 8}

    def test_elo_clamped_to_engine_range(self):
        table = {
            "UCI_Elo": _option("UCI_Elo", 1320, 3190),
            "UCI_LimitStrength": _option("UCI_LimitStrength"),
        }
        assert strength_options(800, table)["UCI_Elo"] == 1320
        assert strength_options(3500, table)["UCI_Elo"] == 3190

    def test_configure_strength_sends_options(self):
        protocol = MagicMock()
        protocol.options = {"Skill Level": _option("Skill Level", 0, 20)}
        protocol.configure = AsyncMock()
        process = EngineProcess(None, protocol)

        sent = asyncio.run(process.configure_strength(400))
        protocol.configure.assert_awaited_once_with({"Skill Level": 0})
        assert sent == {"Skill Level": 0}


# ---------------------------------------------------------------------------
# SearchClient
# ---------------------------------------------------------------------------


class TestSearchClient:

    def test_last_score_wins(self):
        protocol = _FakeProtocol(
            infos=[_info(chess.engine.Cp(10)), {"depth": 2}, _info(chess.engine.Cp(42))],
            best=chess.Move.from_uci("e2e4"),
        )
        client = SearchClient(protocol)
        result = asyncio.run(client.search(chess.Board(), 12, tag=7))

        assert (result.kind, result.value) == ("cp", 42)
        assert result.best_move == "e2e4"
        assert result.tag == 7
        assert result.fen == chess.STARTING_FEN
        assert protocol.limits[0].depth == 12

    def test_mate_score_mover_perspective(self):
        board = chess.Board()
        board.push_san("e4")
        protocol = _FakeProtocol(
            infos=[_info(chess.engine.Mate(-3), chess.BLACK)],
            best=chess.Move.from_uci("e7e5"),
        )
        result = asyncio.run(SearchClient(protocol).search(board, 12))
        assert (result.kind, result.value) == ("mate", -3)

    def test_no_score_defaults_level(self):
        protocol = _FakeProtocol(infos=[{"depth": 1}], best=None)
        result = asyncio.run(SearchClient(protocol).search(chess.Board(), 5))
        assert (result.kind, result.value, result.best_move) == ("cp", 0, None)

    def test_query_ids_increase(self):
        client = SearchClient(_FakeProtocol(best=chess.Move.from_uci("e2e4")))

        async def two():
            first = await client.search(chess.Board(), 1)
            second = await client.search(chess.Board(), 1)
            return first, second

        first, second = asyncio.run(two())
        assert second.query_id == first.query_id + 1
        assert client.in_flight is None

    def test_engine_error_propagates(self):
        client = SearchClient(_FakeProtocol(error=chess.engine.EngineTerminatedError("gone")))
        with pytest.raises(chess.engine.EngineError):
            asyncio.run(client.search(chess.Board(), 1))
        assert client.in_flight is None

    def test_stop_without_search_is_noop(self):
        SearchClient(_FakeProtocol()).stop()


# ---------------------------------------------------------------------------
# Live play
# ---------------------------------------------------------------------------


class TestBestMove:

    def test_plays_at_live_depth(self):
        protocol = MagicMock()
        protocol.play = AsyncMock(return_value=chess.engine.PlayResult(chess.Move.from_uci("e2e4"), None))
        process = EngineProcess(None, protocol)

        move = asyncio.run(process.best_move(chess.Board()))
        assert move == chess.Move.from_uci("e2e4")
        limit = protocol.play.call_args.args[1]
        assert limit.depth == 10

    def test_game_over_rejected(self):
        board = chess.Board()
        for san in ("f3", "e5", "g4", "Qh4#"):
            board.push_san(san)
        with pytest.raises(ValueError, match="already over"):
            asyncio.run(EngineProcess(None, MagicMock()).best_move(board))

    def test_restarts_terminated_engine(self):
        dead = MagicMock()
        dead.play = AsyncMock(side_effect=chess.engine.EngineTerminatedError("gone"))
        fresh = MagicMock()
        fresh.play = AsyncMock(return_value=chess.engine.PlayResult(chess.Move.from_uci("d2d4"), None))
        process = EngineProcess(None, dead, path="/usr/bin/stockfish")

        with patch("arena.engine.chess.engine.popen_uci", AsyncMock(return_value=(None, fresh))):
            move = asyncio.run(process.best_move(chess.Board()))

        assert move == chess.Move.from_uci("d2d4")
        assert process.search._protocol is fresh

    def test_review_after_restart_uses_new_engine(self, make_records):
        dead = MagicMock()
        dead.play = AsyncMock(side_effect=chess.engine.EngineTerminatedError("gone"))
        fresh = _FakeProtocol(infos=[_info(chess.engine.Cp(35))], best=chess.Move.from_uci("e2e4"))
        process = EngineProcess(None, dead, path="/usr/bin/stockfish")
        pipeline = AnalysisPipeline(process.search)

        async def run():
            with patch("arena.engine.chess.engine.popen_uci", AsyncMock(return_value=(None, fresh))):
                await process.best_move(chess.Board())
            return await pipeline.review(make_records(["e4"]))

        report = asyncio.run(run())
        assert [(ev.kind, ev.value) for ev in report.evaluations] == [("cp", 35), ("cp", -35)]
        assert report.evaluations[0].best_move == "e2e4"

    def test_strength_restored_after_restart(self):
        dead = MagicMock()
        dead.options = {"Skill Level": _option("Skill Level", 0, 20)}
        dead.configure = AsyncMock()
        dead.play = AsyncMock(side_effect=chess.engine.EngineTerminatedError("gone"))
        fresh = MagicMock()
        fresh.options = dead.options
        fresh.configure = AsyncMock()
        fresh.play = AsyncMock(return_value=chess.engine.PlayResult(chess.Move.from_uci("d2d4"), None))
        process = EngineProcess(None, dead, path="/usr/bin/stockfish")

        async def run():
            await process.configure_strength(1800)
            with patch("arena.engine.chess.engine.popen_uci", AsyncMock(return_value=(None, fresh))):
                return await process.best_move(chess.Board())

        assert asyncio.run(run()) == chess.Move.from_uci("d2d4")
        fresh.configure.assert_awaited_once_with({"Skill Level": 10})

    def test_close_tolerates_dead_engine(self):
        protocol = MagicMock()
        protocol.quit = AsyncMock(side_effect=chess.engine.EngineTerminatedError("gone"))
        asyncio.run(EngineProcess(None, protocol).close())


# ---------------------------------------------------------------------------
# Live play and review sharing one engine
# ---------------------------------------------------------------------------


class TestSharedEngine:

    def test_live_move_waits_for_review_search(self, make_records):
        async def scenario():
            protocol = _SharedProtocol()
            process = EngineProcess(None, protocol)
            pipeline = AnalysisPipeline(process.search)
            review = asyncio.create_task(pipeline.review(make_records(["e4"])))
            await asyncio.sleep(0)

            board = chess.Board()
            board.push_san("e4")
            live = asyncio.create_task(process.best_move(board))
            for _ in range(5):
                await asyncio.sleep(0)
            pending = list(protocol.events)

            protocol.gate.set()
            return pending, await review, await live, protocol

        pending, report, move, protocol = asyncio.run(scenario())

        assert pending == ["analysis"]
        assert protocol.events == ["analysis", "play", "analysis"]
        assert protocol.max_active == 1
        assert move == chess.Move.from_uci("e7e5")
        assert report.evaluations[0].value == 50
        assert report.evaluations[0].best_move is not None

    def test_configure_waits_for_search(self):
        async def scenario():
            protocol = _SharedProtocol()
            protocol.options = {}
            protocol.configure = AsyncMock(side_effect=lambda options: protocol.events.append("configure"))
            process = EngineProcess(None, protocol)
            search = asyncio.create_task(process.search.search(chess.Board(), 12))
            await asyncio.sleep(0)
            configure = asyncio.create_task(process.configure_strength(1500))
            for _ in range(5):
                await asyncio.sleep(0)
            pending = list(protocol.events)
            protocol.gate.set()
            await search
            await configure
            return pending, protocol.events

        pending, events = asyncio.run(scenario())
        assert pending == ["analysis"]
        assert events == ["analysis", "configure"]


# ---------------------------------------------------------------------------
# Real Stockfish
# ---------------------------------------------------------------------------


@pytest.mark.e2e
def test_real_engine_search(stockfish_path):
    async def run():
        process = await EngineProcess.open(stockfish_path)
        try:
            return await process.search.search(chess.Board(), 8)
        finally:
            await process.close()

    result = asyncio.run(run())
    assert result.kind in ("cp", "mate")
    assert result.best_move is not None
