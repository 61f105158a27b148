#!/usr/bin/env python3
"""Suggest moves for a position using a trained chessnet model."""

import argparse
import sys
from pathlib import Path

import chess

sys.path.insert(0, str(Path(__file__).parent.parent))

from chessnet.evaluator import MoveSelector
from chessnet.neural import load_model


def main():
    parser = argparse.ArgumentParser(description="Rank legal moves with a chessnet model")

    parser.add_argument("--model", type=str, required=True,
                        help="Path to model file")
    parser.add_argument("--fen", type=str, default=chess.STARTING_FEN,
                        help="Position in FEN (default: starting position)")
    parser.add_argument("--top-k", type=int, default=5,
                        help="Number of moves to show")

    args = parser.parse_args()

    try:
        board = chess.Board(args.fen)
    except ValueError as e:
        print(f"Invalid FEN: {e}")
        sys.exit(1)

    print(f"Loading model from {args.model}...")
    network = load_model(args.model)
    selector = MoveSelector(network)

    ranked = selector.top_moves(board, k=args.top_k)
    if not ranked:
        print("No legal moves in this position")
        return

    print(board)
    print()
    for rank, (move, score) in enumerate(ranked, 1):
        print(f"{rank:2d}. {board.san(move):8s} {move.uci():6s} score={score:.4f}")


if __name__ == "__main__":
    main()
