"""Move encoding/decoding for the move-prediction network.

Maps between (from, to) square pairs and move indices (0-4095):

    index = from_square * 64 + to_square

Squares use python-chess numbering (a1=0, h8=63). Promotions share the index
of the underlying pawn move; decoding a pawn move onto the last rank implies
a queen promotion.
"""

import chess
import numpy as np
from typing import Optional, Tuple


NUM_SQUARES = 64
MOVE_SPACE_SIZE = NUM_SQUARES * NUM_SQUARES  # = 4096


def _check_square(square: int) -> None:
    if not 0 <= square < NUM_SQUARES:
        raise ValueError(f"Square {square} out of range [0, {NUM_SQUARES})")


def encode_move(from_square: int, to_square: int) -> int:
    """Convert a (from, to) square pair to a move index."""
    _check_square(from_square)
    _check_square(to_square)
    return from_square * NUM_SQUARES + to_square


def decode_move(index: int) -> Tuple[int, int]:
    """Convert a move index back to its (from, to) square pair."""
    if not 0 <= index < MOVE_SPACE_SIZE:
        raise ValueError(f"Move index {index} out of range [0, {MOVE_SPACE_SIZE})")
    return divmod(index, NUM_SQUARES)


def square_to_string(square: int) -> str:
    """0 -> 'a1', 63 -> 'h8'"""
    _check_square(square)
    return chess.square_name(square)


def string_to_square(name: str) -> int:
    """'a1' -> 0, 'h8' -> 63"""
    try:
        return chess.parse_square(name.strip().lower())
    except ValueError:
        raise ValueError(f"Invalid square name: {name!r}") from None


class MoveEncoder:
    """Bidirectional mapping between chess.Move and move indices."""

    num_actions = MOVE_SPACE_SIZE

    def encode(self, move: chess.Move) -> int:
        """Convert a chess.Move to a move index.

        Args:
            move: The chess move to encode (promotion piece is ignored)

        Returns:
            Move index in range [0, 4096)
        """
        if not move:
            raise ValueError("Cannot encode the null move")
        return encode_move(move.from_square, move.to_square)

    def decode(self, index: int, board: Optional[chess.Board] = None) -> chess.Move:
        """Convert a move index to a chess.Move.

        Args:
            index: Move index in range [0, 4096)
            board: Current board, used to detect pawn promotions

        Returns:
            The corresponding chess.Move
        """
        from_square, to_square = decode_move(index)

        promotion = None
        if board is not None:
            piece = board.piece_at(from_square)
            if piece and piece.piece_type == chess.PAWN:
                to_rank = chess.square_rank(to_square)
                if (piece.color == chess.WHITE and to_rank == 7) or \
                   (piece.color == chess.BLACK and to_rank == 0):
                    promotion = chess.QUEEN

        return chess.Move(from_square, to_square, promotion=promotion)

    def get_legal_action_mask(self, board: chess.Board) -> np.ndarray:
        """Get a binary mask of legal moves for the current position.

        Returns:
            float32 array of shape (4096,) with 1.0 for legal moves
        """
        mask = np.zeros(self.num_actions, dtype=np.float32)
        for move in board.legal_moves:
            mask[self.encode(move)] = 1.0
        return mask


# Global encoder instance
_encoder = None


def get_encoder() -> MoveEncoder:
    """Get the global MoveEncoder instance."""
    global _encoder
    if _encoder is None:
        _encoder = MoveEncoder()
    return _encoder


def move_to_index(move: chess.Move) -> int:
    """Convenience function to encode a chess.Move."""
    return get_encoder().encode(move)


def index_to_move(index: int, board: Optional[chess.Board] = None) -> chess.Move:
    """Convenience function to decode a move index."""
    return get_encoder().decode(index, board)


def get_legal_mask(board: chess.Board) -> np.ndarray:
    """Convenience function to get the legal move mask."""
    return get_encoder().get_legal_action_mask(board)
