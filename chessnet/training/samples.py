"""Training sample data structures and game-to-sample conversion.

Each ply of a game becomes one sample: the encoded position before the move,
the index of the move that was played, and a weight reflecting how much the
mover's side should be imitated.
"""

import chess
import numpy as np
from dataclasses import dataclass
from typing import List, Optional

from ..chess_env import encode_board, move_to_index
from .pgn import GameRecord, GameSkipped


# Skip reasons raised during conversion
ILLEGAL_MOVE = "illegal_move"
TOO_SHORT = "too_short"

ELO_REFERENCE = 1500.0
MIN_ELO_FACTOR = 0.1
MAX_ELO_FACTOR = 2.0
RATING_DIFF_SCALE = 100.0


@dataclass
class TrainingSample:
    """A single (position, played move, weight) example.

    - board_state: Encoded position before the move (65,)
    - target_move_index: Index of the played move in [0, 4096)
    - outcome_weight: Scales the output error; negative for the losing side
    """
    board_state: np.ndarray     # (65,) int32
    target_move_index: int
    outcome_weight: float


def outcome_weight(record: GameRecord, white_to_move: bool, draw_weight: float = 0.5) -> float:
    """Weight for samples played by one side of a game.

    Args:
        record: Parsed game
        white_to_move: Side that played the move
        draw_weight: Base weight for draws and unknown results

    Returns:
        base * elo_factor * rating_factor
    """
    winner = record.winner
    if winner is None:
        base = draw_weight
    else:
        base = 1.0 if winner == white_to_move else -1.0

    elo = record.white_elo if white_to_move else record.black_elo
    elo_factor = min(max(elo / ELO_REFERENCE, MIN_ELO_FACTOR), MAX_ELO_FACTOR)

    diff = record.white_rating_diff if white_to_move else record.black_rating_diff
    rating_factor = max(0.0, 1.0 + diff / RATING_DIFF_SCALE)

    return base * elo_factor * rating_factor


class GameConverter:
    """Replays a game's SAN moves and emits one sample per ply."""

    def __init__(self, min_plies: int = 5, max_plies: Optional[int] = None, draw_weight: float = 0.5):
        if min_plies < 0:
            raise ValueError(f"min_plies must be non-negative, got {min_plies}")
        if max_plies is not None and max_plies <= 0:
            raise ValueError(f"max_plies must be positive, got {max_plies}")
        self.min_plies = min_plies
        self.max_plies = max_plies
        self.draw_weight = draw_weight

    def convert(self, record: GameRecord) -> List[TrainingSample]:
        """Convert a game into samples.

        Raises:
            GameSkipped: On an illegal or ambiguous move, or a short game
        """
        if len(record.moves) < self.min_plies:
            raise GameSkipped(TOO_SHORT, f"{len(record.moves)} plies")

        weights = {
            chess.WHITE: outcome_weight(record, True, self.draw_weight),
            chess.BLACK: outcome_weight(record, False, self.draw_weight),
        }

        moves = record.moves
        if self.max_plies is not None:
            moves = moves[:self.max_plies]

        board = chess.Board()
        samples = []
        for san in moves:
            try:
                move = board.parse_san(san)
            except ValueError:
                raise GameSkipped(ILLEGAL_MOVE, san) from None

            samples.append(TrainingSample(
                board_state=encode_board(board),
                target_move_index=move_to_index(move),
                outcome_weight=weights[board.turn],
            ))
            board.push(move)

        return samples
