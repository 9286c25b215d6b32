"""Move Validator: turns engine candidates into a move that is legal to deliver."""

from __future__ import annotations

import random
from typing import List, Optional, Protocol, Sequence

from chess_logic import LegalMove
from game_tracker import Position
from search_session import MoveCandidate
from utils import BotLogger, get_logger


class RulesOracleLike(Protocol):
    def normalize(self, fen: str, candidate: Optional[str], lenient: bool = True) -> Optional[str]: ...

    def legal_moves(self, fen: str) -> List[LegalMove]: ...


class MoveValidator:
    """Primary move, then ranked alternatives, then a random legal move."""

    def __init__(
        self,
        oracle: RulesOracleLike,
        *,
        variation_rate: float = 0.0,
        rng: Optional[random.Random] = None,
        logger: Optional[BotLogger] = None,
    ) -> None:
        self._oracle = oracle
        self.variation_rate = variation_rate
        self._rng = rng or random.Random()
        self._log = logger or get_logger()
        self.last_source: Optional[str] = None

    def resolve(
        self,
        position: Position,
        primary_move: Optional[str],
        ranked_alternatives: Sequence[MoveCandidate],
    ) -> Optional[str]:
        """Return a legal UCI move for *position*, or ``None`` if none exists."""
        fen = position.fen
        ordered = sorted(ranked_alternatives, key=lambda candidate: candidate.rank)

        move = self._oracle.normalize(fen, primary_move)
        if move is not None:
            self.last_source = "primary"
            return self._maybe_vary(fen, move, ordered)

        if primary_move:
            self._log.warn(f"Move {primary_move} is illegal on {fen}")

        for candidate in ordered:
            move = self._oracle.normalize(fen, candidate.move)
            if move is not None:
                self.last_source = "alternative"
                self._log.info(f"Using fallback move: {move}")
                return move

        legal = self._oracle.legal_moves(fen)
        if not legal:
            self.last_source = None
            self._log.error(f"No legal moves on {fen}")
            return None

        move = self._rng.choice(legal).uci()
        self.last_source = "random"
        self._log.warn(f"No legal engine candidate; using random move {move}")
        return move

    def _maybe_vary(self, fen: str, move: str, ordered: Sequence[MoveCandidate]) -> str:
        if self.variation_rate <= 0 or self._rng.random() >= self.variation_rate:
            return move
        legal_alternatives = []
        for candidate in ordered:
            normalized = self._oracle.normalize(fen, candidate.move)
            if normalized is not None:
                legal_alternatives.append(normalized)
            if len(legal_alternatives) >= 2:
                break
        if len(legal_alternatives) < 2:
            return move
        self.last_source = "variation"
        self._log.info(f"Applying variation - using 2nd best: {legal_alternatives[1]}")
        return legal_alternatives[1]
