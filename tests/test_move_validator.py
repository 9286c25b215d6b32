import random

import chess

from chess_logic import RulesOracle
from game_tracker import canonicalize
from move_validator import MoveValidator
from search_session import MoveCandidate

# 1. e3 e6: the e-pawn has already left e2.
P1 = canonicalize("rnbqkbnr/pppp1ppp/4p3/8/8/4P3/PPPP1PPP/RNBQKBNR w KQkq - 0 2")
STALEMATE = canonicalize("7k/5Q2/6K1/8/8/8/8/8 b - - 0 1")


class FixedRandom(random.Random):
    def __init__(self, value: float) -> None:
        super().__init__(0)
        self.value = value

    def random(self) -> float:
        return self.value


def ranked(*moves: str):
    return [MoveCandidate(move, rank, 0) for rank, move in enumerate(moves)]


def test_legal_primary_is_selected() -> None:
    validator = MoveValidator(RulesOracle())
    assert validator.resolve(P1, "d2d4", ranked("d2d4", "g1f3")) == "d2d4"
    assert validator.last_source == "primary"


def test_illegal_primary_falls_back_to_first_legal_alternative() -> None:
    validator = MoveValidator(RulesOracle(), variation_rate=1.0, rng=FixedRandom(0.0))
    move = validator.resolve(P1, "e2e4", [MoveCandidate("g1f3", 1, 10), MoveCandidate("d2d4", 0, 20)])
    assert move == "d2d4"
    assert validator.last_source == "alternative"


def test_alternatives_scanned_in_rank_order_skipping_illegal() -> None:
    validator = MoveValidator(RulesOracle())
    assert validator.resolve(P1, "e2e4", ranked("e2e4", "a1a5", "g1f3")) == "g1f3"


def test_random_legal_move_when_no_candidate_is_legal() -> None:
    oracle = RulesOracle()
    validator = MoveValidator(oracle, rng=random.Random(3))
    for _ in range(10):
        move = validator.resolve(P1, "e2e4", ranked("e2e4", "h1h8"))
        assert chess.Move.from_uci(move) in chess.Board(P1.fen).legal_moves
        assert validator.last_source == "random"


def test_missing_primary_uses_fallback_chain() -> None:
    validator = MoveValidator(RulesOracle())
    assert validator.resolve(P1, None, ranked("b1c3")) == "b1c3"


def test_terminal_position_returns_none() -> None:
    validator = MoveValidator(RulesOracle())
    assert validator.resolve(STALEMATE, "h8g8", ranked("h8g8")) is None
    assert validator.last_source is None


def test_variation_substitutes_second_best_legal_alternative() -> None:
    validator = MoveValidator(RulesOracle(), variation_rate=0.5, rng=FixedRandom(0.1))
    assert validator.resolve(P1, "d2d4", ranked("d2d4", "e2e4", "g1f3")) == "g1f3"
    assert validator.last_source == "variation"


def test_variation_needs_two_legal_alternatives() -> None:
    validator = MoveValidator(RulesOracle(), variation_rate=1.0, rng=FixedRandom(0.0))
    assert validator.resolve(P1, "d2d4", ranked("d2d4", "e2e4")) == "d2d4"
    assert validator.last_source == "primary"


def test_variation_not_applied_above_rate() -> None:
    validator = MoveValidator(RulesOracle(), variation_rate=0.03, rng=FixedRandom(0.5))
    assert validator.resolve(P1, "d2d4", ranked("d2d4", "g1f3")) == "d2d4"


def test_san_candidates_are_normalised_to_uci() -> None:
    validator = MoveValidator(RulesOracle())
    assert validator.resolve(P1, "Nf3", []) == "g1f3"


def test_never_emits_illegal_move_for_random_candidate_sets() -> None:
    oracle = RulesOracle()
    rng = random.Random(11)
    validator = MoveValidator(oracle, variation_rate=0.3, rng=rng)
    board = chess.Board(P1.fen)
    pool = ["e2e4", "d2d4", "g1f3", "a1a8", "e1g1", "h2h4", "zz00", "b1d2"]
    for _ in range(100):
        primary = rng.choice(pool)
        alternatives = ranked(*rng.sample(pool, 3))
        move = validator.resolve(P1, primary, alternatives)
        assert chess.Move.from_uci(move) in board.legal_moves
