"""Chess board and move encoders (python-chess based)."""

from .encoding import encode_board, decode_board, BOARD_VECTOR_SIZE, PIECE_CODES
from .moves import (
    MOVE_SPACE_SIZE,
    MoveEncoder,
    get_encoder,
    encode_move,
    decode_move,
    move_to_index,
    index_to_move,
    square_to_string,
    string_to_square,
    get_legal_mask,
)

__all__ = [
    "encode_board",
    "decode_board",
    "BOARD_VECTOR_SIZE",
    "PIECE_CODES",
    "MOVE_SPACE_SIZE",
    "MoveEncoder",
    "get_encoder",
    "encode_move",
    "decode_move",
    "move_to_index",
    "index_to_move",
    "square_to_string",
    "string_to_square",
    "get_legal_mask",
]
