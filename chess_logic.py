from dataclasses import dataclass
from typing import List, Optional

import chess


@dataclass(frozen=True)
class LegalMove:
    from_square: str
    to_square: str
    promotion: Optional[str] = None

    def uci(self) -> str:
        return self.from_square + self.to_square + (self.promotion or "")


def get_game_result(board: chess.Board) -> str:
    if board.is_checkmate():
        return "Checkmate"
    elif board.is_stalemate():
        return "Stalemate"
    elif board.is_insufficient_material():
        return "Insufficient Material"
    elif board.is_seventyfive_moves():
        return "75-move rule"
    elif board.is_fivefold_repetition():
        return "Fivefold Repetition"
    elif board.is_variant_draw():
        return "Variant-specific Draw"
    else:
        return "Game in progress"


def _parse_candidate(board: chess.Board, candidate: str, lenient: bool) -> Optional[chess.Move]:
    text = candidate.strip()
    if not text:
        return None
    try:
        move = chess.Move.from_uci(text.lower() if lenient else text)
    except ValueError:
        move = None
    if move is not None:
        return move if move in board.legal_moves else None
    if not lenient:
        return None
    try:
        return board.parse_san(text)
    except ValueError:
        return None


class RulesOracle:
    """Legality checks and move enumeration backed by python-chess."""

    def load(self, fen: str) -> chess.Board:
        return chess.Board(fen)

    def normalize(self, fen: str, candidate: Optional[str], lenient: bool = True) -> Optional[str]:
        """Return *candidate* as a UCI string if it is legal on *fen*, else ``None``."""
        if not candidate:
            return None
        try:
            board = self.load(fen)
        except ValueError:
            return None
        move = _parse_candidate(board, candidate, lenient)
        return move.uci() if move is not None else None

    def try_move(self, fen: str, candidate: Optional[str], lenient: bool = True) -> bool:
        return self.normalize(fen, candidate, lenient) is not None

    def legal_moves(self, fen: str) -> List[LegalMove]:
        try:
            board = self.load(fen)
        except ValueError:
            return []
        moves = []
        for move in board.legal_moves:
            promotion = chess.piece_symbol(move.promotion) if move.promotion else None
            moves.append(
                LegalMove(
                    chess.square_name(move.from_square),
                    chess.square_name(move.to_square),
                    promotion,
                )
            )
        return moves

    def is_tactical(self, fen: str) -> bool:
        try:
            return self.load(fen).is_check()
        except ValueError:
            return False

    def is_game_over(self, fen: str) -> bool:
        try:
            return self.load(fen).is_game_over()
        except ValueError:
            return False

    def game_result(self, fen: str) -> str:
        return get_game_result(self.load(fen))
