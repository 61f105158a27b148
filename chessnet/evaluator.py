"""Best-move selection from network scores.

Provides a clean interface between a trained network and anything that needs
to pick moves for a python-chess board.
"""

import chess
import numpy as np
from typing import List, Optional, Tuple

from .chess_env import encode_board, get_encoder
from .neural import Network, rank_scores


class MoveSelector:
    """Ranks moves for a position by raw network score.

    Scores are unnormalized ReLU outputs; only their order matters.
    """

    def __init__(self, network: Network):
        """Initialize selector.

        Args:
            network: Trained move-prediction network
        """
        self.network = network
        self._encoder = get_encoder()

    def scores(self, board: chess.Board) -> np.ndarray:
        """Raw network scores over the whole move space.

        Args:
            board: Current position

        Returns:
            Array of shape (4096,)
        """
        return self.network.predict(encode_board(board))

    def top_moves(
        self,
        board: chess.Board,
        k: int = 5,
        legal_only: bool = True
    ) -> List[Tuple[chess.Move, float]]:
        """The k highest-scoring moves, best first.

        NaN and infinite scores are never selected.

        Args:
            board: Current position
            k: Number of moves to return
            legal_only: Restrict ranking to legal moves in this position

        Returns:
            List of (move, score) pairs
        """
        mask = self._encoder.get_legal_action_mask(board) if legal_only else None
        scores = self.scores(board)
        indices = rank_scores(scores, k=k, mask=mask)

        if not legal_only:
            return [(self._encoder.decode(int(i), board), float(scores[i])) for i in indices]

        # Pick the legal move behind each index (promotion choice included)
        by_index = {}
        for move in board.legal_moves:
            index = self._encoder.encode(move)
            best = by_index.get(index)
            if best is None or move.promotion == chess.QUEEN:
                by_index[index] = move
        return [(by_index[int(i)], float(scores[i])) for i in indices]

    def best_move(self, board: chess.Board) -> Optional[chess.Move]:
        """Highest-scoring legal move, or None if the position has no legal moves."""
        ranked = self.top_moves(board, k=1, legal_only=True)
        return ranked[0][0] if ranked else None
