import os
import sys
import time

import chess
import pytest

from config import BotConfig
from engine_comm import EngineProcess, spawn_engine
from game_tracker import canonicalize
from scheduler import ManualScheduler, Scheduler
from search_session import SearchSession, SessionState

STUB_ENGINE = [sys.executable, os.path.join(os.path.dirname(__file__), "fixtures", "stub_engine.py")]


def pump(scheduler: Scheduler, done, timeout: float = 10.0) -> None:
    deadline = time.monotonic() + timeout
    while not done():
        if time.monotonic() > deadline:
            pytest.fail("timed out waiting for engine output")
        scheduler.run_pending()
        time.sleep(0.01)


@pytest.mark.engine_smoke
def test_engine_process_posts_lines_and_exit_to_loop() -> None:
    scheduler = Scheduler()
    lines = []
    exits = []
    engine = EngineProcess(STUB_ENGINE, scheduler, lines.append, exits.append)
    engine.send("uci")
    pump(scheduler, lambda: "uciok" in lines)
    assert lines[0] == "id name StubEngine"
    assert engine.alive

    engine.stop(timeout=5.0)
    pump(scheduler, lambda: bool(exits))
    assert exits == [0]
    assert not engine.alive


@pytest.mark.engine_smoke
def test_search_session_against_subprocess_engine() -> None:
    scheduler = Scheduler()
    results = []
    session = SearchSession(
        scheduler,
        spawn_engine(STUB_ENGINE, scheduler),
        lambda position, primary, ranked: results.append((primary, ranked)),
        BotConfig(),
    )
    session.start()
    pump(scheduler, lambda: session.ready)

    position = canonicalize(chess.STARTING_FEN)
    session.request_search(position, 1)
    pump(scheduler, lambda: bool(results))
    primary, ranked = results[0]
    assert primary == "a2a3"
    assert [candidate.move for candidate in ranked] == ["a2a3", "a2a4", "b1a3"]
    assert session.state == SessionState.IDLE
    session.shutdown()


def test_missing_engine_binary_is_an_init_failure() -> None:
    scheduler = ManualScheduler()
    fatal = []
    session = SearchSession(
        scheduler,
        spawn_engine("/nonexistent/uci-engine", scheduler),
        lambda position, primary, ranked: None,
        BotConfig(),
        on_fatal=fatal.append,
    )
    session.start()
    scheduler.advance(1000)
    assert session.state == SessionState.FAILED
    assert "could not start engine" in str(fatal[0])
