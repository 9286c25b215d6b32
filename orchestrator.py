"""Move Orchestrator: the context object that wires tracker, engine, validator and queue."""

from __future__ import annotations

import json
import random
from typing import Any, List, Mapping, Optional, Union

from chess_logic import RulesOracle
from config import BotConfig
from delivery_queue import DeliveryQueue, QueueEntry
from errors import BotError, EngineInitFailure, TerminalPosition
from game_tracker import GameStateTracker, Position
from move_validator import MoveValidator
from scheduler import Scheduler, TimerHandle
from search_session import EngineFactory, MoveCandidate, SearchSession, SessionState
from transport import TransportAdapter, parse_position_message
from utils import BotLogger, get_logger


class MoveOrchestrator:
    """Owns all game, engine and delivery state.

    Every method runs on the scheduler's loop. Threads that receive transport
    messages must hand them over with ``scheduler.post(orchestrator.on_transport_message, raw)``.
    """

    def __init__(
        self,
        config: BotConfig,
        scheduler: Scheduler,
        engine_factory: EngineFactory,
        transport: TransportAdapter,
        *,
        oracle: Optional[RulesOracle] = None,
        rng: Optional[random.Random] = None,
        logger: Optional[BotLogger] = None,
    ) -> None:
        self.config = config
        self.scheduler = scheduler
        self.transport = transport
        self.oracle = oracle or RulesOracle()
        self._rng = rng or random.Random()
        self._log = logger or get_logger()

        self.tracker = GameStateTracker(
            self._on_turn_edge,
            clock=scheduler.now,
            game_update_timeout_ms=config.game_update_timeout_ms,
            logger=self._log,
        )
        self.session = SearchSession(
            scheduler,
            engine_factory,
            self._on_search_result,
            config,
            on_ready=self._on_engine_ready,
            on_fatal=self._on_engine_fatal,
            logger=self._log,
        )
        self.validator = MoveValidator(
            self.oracle,
            variation_rate=config.variation_rate,
            rng=self._rng,
            logger=self._log,
        )
        self.queue = DeliveryQueue(
            scheduler,
            transport,
            lambda: self.tracker.position,
            config,
            on_failed=self._on_delivery_failed,
            on_stuck=self._on_delivery_stuck,
            logger=self._log,
        )

        self.automation_enabled = config.automation_enabled
        self.halted = False
        self.halt_reason: Optional[BotError] = None
        self._activity_timer: Optional[TimerHandle] = None
        self._stale_warned = False

    # ── Lifecycle ────────────────────────────────────────────────────────

    def start(self) -> None:
        self._log.info("Move orchestrator starting")
        self.session.start()
        if self._activity_timer is None:
            self._activity_timer = self.scheduler.call_every(
                self.config.watchdog_interval_ms, self._check_game_activity
            )

    def shutdown(self) -> None:
        if self._activity_timer is not None:
            self._activity_timer.cancel()
            self._activity_timer = None
        self.queue.clear()
        self.session.shutdown()
        self._log.info("Move orchestrator stopped")

    def new_game(self) -> None:
        self._log.info("New game - resetting state")
        self.tracker.reset()
        self.queue.clear()
        self.halted = False
        self.halt_reason = None
        self._stale_warned = False
        if self.session.state == SessionState.FAILED:
            self.session.restart("new game")

    def halt(self, reason: BotError) -> None:
        if self.halted:
            return
        self.halted = True
        self.halt_reason = reason
        self.queue.clear()
        self._log.error(f"Automated play halted for this game: {reason}")

    # ── Inbound ──────────────────────────────────────────────────────────

    def on_transport_message(self, raw: Union[str, bytes, Mapping[str, Any]]) -> None:
        if self._is_new_game_message(raw):
            self.new_game()
            return
        parsed = parse_position_message(raw)
        if parsed is None:
            return
        fen, ply = parsed
        self.tracker.on_transport_update(fen, ply)
        if self.tracker.last_update == self.scheduler.now():
            self._stale_warned = False

    @staticmethod
    def _is_new_game_message(raw: Union[str, bytes, Mapping[str, Any]]) -> bool:
        message: Any = raw
        if isinstance(raw, (str, bytes)):
            try:
                message = json.loads(raw)
            except ValueError:
                return False
        return isinstance(message, Mapping) and message.get("t") == "newgame"

    # ── Calculation ──────────────────────────────────────────────────────

    def _on_turn_edge(self, position: Position) -> None:
        if not self.automation_enabled:
            self._log.info("Automation disabled - skipping")
            return
        if self.halted:
            return
        self.queue.purge_stale()
        self.scheduler.call_later(self.config.calculate_delay_ms, self._calculate, position.fen)

    def _calculate(self, fen: str) -> None:
        position = self.tracker.position
        if self.halted or position is None or position.fen != fen or not self.tracker.is_my_turn:
            return
        tactical = self.oracle.is_tactical(position.fen)
        depth = self.config.depth_for(self.tracker.phase, tactical)
        think_time = self.config.thinking_time_ms(self.tracker.phase, self._rng)
        self.session.request_search(position, depth, think_time)

    def request_calculation(self) -> bool:
        """Force a fresh search for the current position if it is our turn."""
        position = self.tracker.position
        if position is None or not self.tracker.is_my_turn or self.halted:
            return False
        if not self.automation_enabled or self.session.calculating or len(self.queue):
            return False
        self._log.info("Re-requesting calculation for current position")
        self._calculate(position.fen)
        return True

    def _on_search_result(
        self, position: Position, primary: Optional[str], ranked: List[MoveCandidate]
    ) -> None:
        current = self.tracker.position
        if current is None or current.fen != position.fen:
            self._log.warn("Search finished for an outdated position - discarding")
            return
        if self.halted:
            return
        move = self.validator.resolve(position, primary, ranked)
        if move is None:
            self.halt(TerminalPosition(f"no legal moves on {position.fen}"))
            return
        self.queue.enqueue(move, position)

    # ── Recovery hooks ───────────────────────────────────────────────────

    def _on_engine_ready(self, restarted: bool) -> None:
        if restarted:
            self.request_calculation()

    def _on_engine_fatal(self, error: EngineInitFailure) -> None:
        self.halt(error)

    def _on_delivery_failed(self, entry: QueueEntry) -> None:
        self._log.warn(f"Delivery of {entry.move} dropped ({entry.last_error})")
        self.scheduler.call_soon(self.request_calculation)

    def _on_delivery_stuck(self) -> None:
        self.session.restart("too many consecutive delivery failures")

    def _check_game_activity(self) -> None:
        if self._stale_warned or not self.tracker.is_stale(self.scheduler.now()):
            return
        self._stale_warned = True
        self._log.warn(
            f"No game update for {self.config.game_update_timeout_ms}ms - waiting for the transport"
        )
