"""Game State Tracker: turns raw transport frames into Positions and turn edges."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Optional

import chess

from config import GamePhase, phase_for_move_number
from utils import BotLogger, get_logger

COLOR_NAME = {chess.WHITE: "White", chess.BLACK: "Black"}


@dataclass(frozen=True)
class Position:
    fen: str
    side_to_move: bool
    ply: int

    @property
    def move_number(self) -> int:
        return self.ply // 2 + 1


def _ply_from_fields(side_to_move: bool, fullmove: str) -> int:
    try:
        number = max(1, int(fullmove))
    except ValueError:
        number = 1
    return (number - 1) * 2 + (0 if side_to_move == chess.WHITE else 1)


def canonicalize(raw_fen: str, ply: Optional[int] = None) -> Position:
    """Build a Position from a possibly abbreviated FEN.

    A missing side-to-move field is derived from ply parity; missing castling,
    en-passant and clock fields are filled with their empty values.
    """
    parts = raw_fen.split()
    if not parts:
        raise ValueError("empty position string")
    if len(parts) == 1:
        parts.append("w" if (ply or 0) % 2 == 0 else "b")
    if parts[1] not in ("w", "b"):
        raise ValueError(f"invalid side to move '{parts[1]}' in {raw_fen!r}")
    side_to_move = chess.WHITE if parts[1] == "w" else chess.BLACK

    defaults = ["-", "-", "0", str((ply or 0) // 2 + 1)]
    while len(parts) < 6:
        parts.append(defaults[len(parts) - 2])

    if ply is None:
        ply = _ply_from_fields(side_to_move, parts[5])
    return Position(" ".join(parts[:6]), side_to_move, int(ply))


class GameStateTracker:
    """Derives turn ownership and edge-triggers calculation requests."""

    def __init__(
        self,
        on_calculate: Callable[[Position], None],
        *,
        clock: Optional[Callable[[], float]] = None,
        game_update_timeout_ms: int = 15000,
        logger: Optional[BotLogger] = None,
    ) -> None:
        self._on_calculate = on_calculate
        self._clock = clock
        self._game_update_timeout_ms = game_update_timeout_ms
        self._log = logger or get_logger()
        self.reset()

    def reset(self) -> None:
        self.position: Optional[Position] = None
        self.my_color: Optional[bool] = None
        self.is_my_turn = False
        self.phase = GamePhase.OPENING
        self.last_update: Optional[float] = None
        self.calculation_requests = 0

    def on_transport_update(self, raw_fen: str, ply: Optional[int] = None) -> bool:
        """Ingest one frame. Returns True when a calculation request was emitted."""
        try:
            position = canonicalize(raw_fen, ply)
        except ValueError as exc:
            self._log.warn(f"Ignoring malformed position update: {exc}")
            return False
        if self._clock is not None:
            self.last_update = self._clock()

        current = self.position
        if current is not None:
            if position.fen == current.fen:
                return False
            if position.ply < current.ply:
                self._log.warn(
                    f"Ignoring out-of-order update (ply {position.ply} < {current.ply}); "
                    "send a newgame message if a new game has started"
                )
                return False

        if self.my_color is None:
            self.my_color = position.side_to_move
            self._log.info(f"My color: {COLOR_NAME[self.my_color]}")

        was_my_turn = self.is_my_turn
        self.position = position
        self.is_my_turn = position.side_to_move == self.my_color
        self.phase = phase_for_move_number(position.move_number)
        self._log.debug(
            f"Game state: move {position.move_number}, to move "
            f"{COLOR_NAME[position.side_to_move]}, my turn: {self.is_my_turn}"
        )

        if self.is_my_turn and not was_my_turn:
            self.calculation_requests += 1
            self._log.info(f"My turn - move {position.move_number} ({self.phase.value})")
            self._on_calculate(position)
            return True
        return False

    def is_stale(self, now: float) -> bool:
        if self.last_update is None:
            return False
        return now - self.last_update > self._game_update_timeout_ms
