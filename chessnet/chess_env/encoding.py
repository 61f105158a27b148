"""Board state encoding for the move-prediction network.

Encodes a chess position as a flat integer vector of length 65:
- Elements 0-63: square contents, a1=0 ... h8=63
  - 0 = empty
  - 1-6 = white P, N, B, R, Q, K
  - 11-16 = black p, n, b, r, q, k
- Element 64: side to move (1 if white, 0 if black)

Values stay below 16, which is the network's input scale.
"""

import chess
import numpy as np


PIECE_CODES = {
    (chess.PAWN, chess.WHITE): 1,
    (chess.KNIGHT, chess.WHITE): 2,
    (chess.BISHOP, chess.WHITE): 3,
    (chess.ROOK, chess.WHITE): 4,
    (chess.QUEEN, chess.WHITE): 5,
    (chess.KING, chess.WHITE): 6,
    (chess.PAWN, chess.BLACK): 11,
    (chess.KNIGHT, chess.BLACK): 12,
    (chess.BISHOP, chess.BLACK): 13,
    (chess.ROOK, chess.BLACK): 14,
    (chess.QUEEN, chess.BLACK): 15,
    (chess.KING, chess.BLACK): 16,
}

NUM_SQUARES = 64
TURN_INDEX = NUM_SQUARES
BOARD_VECTOR_SIZE = NUM_SQUARES + 1  # = 65


def encode_board(board: chess.Board) -> np.ndarray:
    """Encode a position as a board vector.

    Args:
        board: Chess board to encode

    Returns:
        int32 array of shape (65,)
    """
    state = np.zeros(BOARD_VECTOR_SIZE, dtype=np.int32)
    for square, piece in board.piece_map().items():
        state[square] = PIECE_CODES[(piece.piece_type, piece.color)]
    state[TURN_INDEX] = 1 if board.turn == chess.WHITE else 0
    return state


def decode_board(state: np.ndarray) -> chess.Board:
    """Rebuild piece placement and side to move from a board vector.

    Castling rights, en passant and clocks are not part of the encoding and
    come back cleared.
    """
    state = np.asarray(state)
    if state.shape != (BOARD_VECTOR_SIZE,):
        raise ValueError(f"Expected board vector of length {BOARD_VECTOR_SIZE}, got shape {state.shape}")

    codes = {code: key for key, code in PIECE_CODES.items()}
    board = chess.Board.empty()
    for square in range(NUM_SQUARES):
        code = int(state[square])
        if code == 0:
            continue
        if code not in codes:
            raise ValueError(f"Unknown piece code {code} on square {chess.square_name(square)}")
        piece_type, color = codes[code]
        board.set_piece_at(square, chess.Piece(piece_type, color))
    board.turn = chess.WHITE if state[TURN_INDEX] else chess.BLACK
    return board
