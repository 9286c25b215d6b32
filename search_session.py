"""Search Engine Session: lifecycle and streaming output of one UCI engine process."""

from __future__ import annotations

import re
from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Deque, Dict, List, Optional, Protocol

from config import BotConfig
from errors import EngineInitFailure, EngineStall, InvalidTransition
from game_tracker import Position
from scheduler import Scheduler, TimerHandle
from utils import BotLogger, get_logger

MATE_SCORE = 100000

_MULTIPV_RE = re.compile(r"\bmultipv\s+(\d+)")
_PV_RE = re.compile(r"\bpv\s+(\S+)")
_SCORE_RE = re.compile(r"\bscore\s+(cp|mate)\s+(-?\d+)")


@dataclass(frozen=True)
class MoveCandidate:
    move: str
    rank: int
    score: int = 0


class EngineHandle(Protocol):
    def send(self, command: str) -> None: ...

    def stop_in_background(self, timeout: float = 2.0) -> Any: ...


EngineFactory = Callable[[Callable[[str], None], Callable[[Optional[int]], None]], EngineHandle]
ResultCallback = Callable[[Position, Optional[str], List[MoveCandidate]], None]


class SessionState(Enum):
    IDLE = "idle"
    SEARCHING = "searching"
    RESTARTING = "restarting"
    FAILED = "failed"


_TRANSITIONS = {
    SessionState.IDLE: {SessionState.SEARCHING, SessionState.RESTARTING, SessionState.FAILED},
    SessionState.SEARCHING: {SessionState.SEARCHING, SessionState.IDLE, SessionState.RESTARTING},
    SessionState.RESTARTING: {SessionState.IDLE, SessionState.FAILED},
    SessionState.FAILED: {SessionState.RESTARTING},
}


def parse_info_line(line: str) -> Optional[MoveCandidate]:
    """Extract ``(variant index, move, score)`` from a UCI ``info`` line."""
    if not line.startswith("info"):
        return None
    pv_match = _PV_RE.search(line)
    if pv_match is None:
        return None
    multipv_match = _MULTIPV_RE.search(line)
    variant = int(multipv_match.group(1)) if multipv_match else 1
    score = 0
    score_match = _SCORE_RE.search(line)
    if score_match:
        kind, value = score_match.group(1), int(score_match.group(2))
        if kind == "cp":
            score = value
        elif value > 0:
            score = MATE_SCORE - value
        else:
            score = -MATE_SCORE - value
    return MoveCandidate(pv_match.group(1), max(variant - 1, 0), score)


class SearchSession:
    """Owns the engine process, the search generation counter and the watchdog."""

    def __init__(
        self,
        scheduler: Scheduler,
        engine_factory: EngineFactory,
        on_result: ResultCallback,
        config: BotConfig,
        *,
        on_ready: Optional[Callable[[bool], None]] = None,
        on_fatal: Optional[Callable[[EngineInitFailure], None]] = None,
        logger: Optional[BotLogger] = None,
    ) -> None:
        self._scheduler = scheduler
        self._engine_factory = engine_factory
        self._on_result = on_result
        self._on_ready = on_ready
        self._on_fatal = on_fatal
        self._config = config
        self._log = logger or get_logger()

        self.state = SessionState.IDLE
        self.generation = 0
        self.ready = False
        self.last_activity = scheduler.now()
        self.restarts = 0

        self._engine: Optional[EngineHandle] = None
        self._process_token = 0
        self._handshake_ok = False
        self._restarted = False
        self._init_attempts = 0
        self._outstanding: Deque[int] = deque()
        self._candidates: Dict[int, MoveCandidate] = {}
        self._search_position: Optional[Position] = None
        self._deferred: Optional[tuple] = None
        self._watchdog: Optional[TimerHandle] = None
        self._init_timer: Optional[TimerHandle] = None
        self._cap_timer: Optional[TimerHandle] = None
        self._started = False

    # ── Lifecycle ────────────────────────────────────────────────────────

    def start(self) -> None:
        if self._started:
            return
        self._started = True
        self._init_attempts = 0
        self._watchdog = self._scheduler.call_every(
            self._config.watchdog_interval_ms, self._watchdog_tick
        )
        self._initialize()

    def shutdown(self) -> None:
        for timer in (self._watchdog, self._init_timer, self._cap_timer):
            if timer is not None:
                timer.cancel()
        self._watchdog = self._init_timer = self._cap_timer = None
        self._process_token += 1
        self._teardown_engine()
        self._outstanding.clear()
        self._candidates.clear()
        self._deferred = None
        self.ready = False
        self._started = False

    def restart(self, reason: str = "restart requested") -> bool:
        """Tear the engine down and reinitialise it. Returns False if one is under way."""
        if self.state == SessionState.RESTARTING:
            self._log.debug(f"Restart already in progress; ignoring ({reason})")
            return False
        self._log.warn(f"Restarting engine: {reason}")
        self._transition(SessionState.RESTARTING)
        self.restarts += 1
        self._restarted = True
        self._abandon_search()
        self._deferred = None
        self._process_token += 1
        self._teardown_engine()
        self._init_attempts = 0
        token = self._process_token
        self._scheduler.call_later(self._config.restart_delay_ms, self._reinitialize, token)
        return True

    # ── Searching ────────────────────────────────────────────────────────

    @property
    def calculating(self) -> bool:
        return self.state == SessionState.SEARCHING or self._deferred is not None

    def request_search(
        self, position: Position, depth: int, movetime_ms: Optional[int] = None
    ) -> Optional[int]:
        """Start a search for *position*, cancelling any search in flight."""
        if self.state == SessionState.FAILED:
            self._log.error("Engine unavailable; search request dropped")
            return None

        if self.state == SessionState.SEARCHING:
            self._log.warn("Already calculating - cancelling previous search")
            self._send("stop")
            self._transition(SessionState.IDLE)

        self.generation += 1
        self._candidates.clear()
        self.last_activity = self._scheduler.now()
        self._search_position = position

        if not self.ready or self.state == SessionState.RESTARTING:
            self._log.debug(f"Engine not ready; deferring search generation {self.generation}")
            self._deferred = (self.generation, position, depth, movetime_ms)
            return self.generation

        self._dispatch(self.generation, position, depth, movetime_ms)
        return self.generation

    def _dispatch(
        self, generation: int, position: Position, depth: int, movetime_ms: Optional[int]
    ) -> None:
        self._deferred = None
        self._transition(SessionState.SEARCHING)
        self.last_activity = self._scheduler.now()
        self._send(f"position fen {position.fen}")
        self._send(f"go depth {depth}")
        self._outstanding.append(generation)
        self._log.info(
            f"Calculating: depth={depth}"
            + (f", time={movetime_ms}ms" if movetime_ms is not None else "")
            + f", generation={generation}"
        )
        if self._cap_timer is not None:
            self._cap_timer.cancel()
            self._cap_timer = None
        if movetime_ms is not None:
            self._cap_timer = self._scheduler.call_later(
                movetime_ms + self._config.stop_grace_ms, self._soft_stop, generation
            )

    def _soft_stop(self, generation: int) -> None:
        if generation != self.generation or self.state != SessionState.SEARCHING:
            return
        self._log.warn("Calculation timeout - forcing stop")
        self._send("stop")

    def _abandon_search(self) -> None:
        self.generation += 1
        self._outstanding.clear()
        self._candidates.clear()
        self._search_position = None
        if self._cap_timer is not None:
            self._cap_timer.cancel()
            self._cap_timer = None

    # ── Engine output ────────────────────────────────────────────────────

    def _handle_line(self, token: int, line: str) -> None:
        if token != self._process_token:
            return
        self.last_activity = self._scheduler.now()

        if line == "uciok":
            self._handshake_ok = True
        elif line == "readyok":
            self._on_readyok()
        elif line.startswith("bestmove"):
            self._on_bestmove(line)
        elif line.startswith("info"):
            self._on_info(line)

    def _on_info(self, line: str) -> None:
        if not self._outstanding or self._outstanding[0] != self.generation:
            return
        candidate = parse_info_line(line)
        if candidate is None:
            return
        self._candidates[candidate.rank] = candidate
        self._log.debug(f"PV{candidate.rank + 1}: {candidate.move} ({candidate.score})")

    def _on_bestmove(self, line: str) -> None:
        generation = self._outstanding.popleft() if self._outstanding else None
        if generation != self.generation or self.state != SessionState.SEARCHING:
            self._log.debug(f"Discarding stale result: {line}")
            return

        parts = line.split()
        primary: Optional[str] = parts[1] if len(parts) >= 2 else None
        if primary == "(none)":
            primary = None
        if primary is None:
            self._log.error("Engine returned no move")
        else:
            self._log.info(f"Engine suggests: {primary}")

        ranked = [self._candidates[rank] for rank in sorted(self._candidates)]
        position = self._search_position
        self._candidates.clear()
        self._search_position = None
        if self._cap_timer is not None:
            self._cap_timer.cancel()
            self._cap_timer = None
        self._transition(SessionState.IDLE)

        if position is not None:
            self._on_result(position, primary, ranked)

    def _on_readyok(self) -> None:
        if self.ready:
            return
        self.ready = True
        if self._init_timer is not None:
            self._init_timer.cancel()
            self._init_timer = None
        restarted = self._restarted
        self._restarted = False
        if self.state == SessionState.RESTARTING:
            self._transition(SessionState.IDLE)
        self._log.info("Engine ready" + (" after restart" if restarted else ""))

        if self._deferred is not None:
            generation, position, depth, movetime_ms = self._deferred
            if generation == self.generation:
                self._dispatch(generation, position, depth, movetime_ms)
            else:
                self._deferred = None
        if self._on_ready is not None:
            self._on_ready(restarted)

    def _handle_exit(self, token: int, returncode: Optional[int]) -> None:
        if token != self._process_token:
            return
        self._engine = None
        if not self.ready:
            self._init_failed(f"engine exited during initialisation (code {returncode})")
            return
        self.restart(f"engine exited unexpectedly (code {returncode})")

    # ── Watchdog & initialisation ────────────────────────────────────────

    def _watchdog_tick(self) -> None:
        if self.state != SessionState.SEARCHING:
            return
        idle_ms = self._scheduler.now() - self.last_activity
        if idle_ms > self._config.watchdog_timeout_ms:
            stall = EngineStall(f"no engine activity for {int(idle_ms)}ms")
            self.restart(str(stall))

    def _initialize(self) -> None:
        self.ready = False
        self._handshake_ok = False
        self._process_token += 1
        token = self._process_token
        try:
            self._engine = self._engine_factory(
                lambda line: self._handle_line(token, line),
                lambda code: self._handle_exit(token, code),
            )
        except OSError as exc:
            self._engine = None
            self._init_failed(f"could not start engine: {exc}")
            return

        self._send("uci")
        self._send(f"setoption name MultiPV value {self._config.multipv}")
        self._send(f"setoption name Contempt value {self._config.contempt}")
        self._send(f"setoption name Move Overhead value {self._config.move_overhead_ms}")
        self._send("isready")
        self.last_activity = self._scheduler.now()
        self._init_timer = self._scheduler.call_later(
            self._config.init_timeout_ms, self._init_timeout, token
        )
        self._log.info(
            f"Engine initialised with MultiPV={self._config.multipv}, "
            f"Contempt={self._config.contempt}"
        )

    def _reinitialize(self, token: int) -> None:
        if token != self._process_token or not self._started:
            return
        self._initialize()

    def _init_timeout(self, token: int) -> None:
        if token != self._process_token or self.ready:
            return
        stage = "readyok" if self._handshake_ok else "uciok"
        self._init_failed(f"no {stage} within {self._config.init_timeout_ms}ms")

    def _init_failed(self, reason: str) -> None:
        if self._init_timer is not None:
            self._init_timer.cancel()
            self._init_timer = None
        self._process_token += 1
        self._teardown_engine()
        self._init_attempts += 1
        if self._init_attempts <= self._config.init_retries:
            self._log.warn(f"Engine initialisation failed ({reason}); retrying")
            token = self._process_token
            self._scheduler.call_later(
                self._config.init_retry_delay_ms, self._reinitialize, token
            )
            return

        error = EngineInitFailure(reason)
        self._log.error(f"Engine initialisation failed: {reason}")
        self._deferred = None
        self._abandon_search()
        if self.state != SessionState.FAILED:
            self._transition(SessionState.FAILED)
        if self._on_fatal is not None:
            self._on_fatal(error)

    # ── Helpers ──────────────────────────────────────────────────────────

    def _send(self, command: str) -> None:
        if self._engine is not None:
            self._engine.send(command)

    def _teardown_engine(self) -> None:
        engine, self._engine = self._engine, None
        if engine is not None:
            engine.stop_in_background()

    def _transition(self, target: SessionState) -> None:
        if target not in _TRANSITIONS[self.state]:
            raise InvalidTransition(f"session cannot go from {self.state.value} to {target.value}")
        self.state = target
