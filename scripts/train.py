#!/usr/bin/env python3
"""Main training entry point for the chessnet move-prediction network."""

import argparse
import logging
import signal
import sys
from datetime import datetime
from pathlib import Path

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from chessnet import ChessNetConfig, PROFILES, find_largest_archive, prepend_line
from chessnet.neural import ShapeMismatchError, count_parameters, load_or_create
from chessnet.parallel import configure_pool
from chessnet.training import TrainingPipeline

logger = logging.getLogger(__name__)


def setup_logging(log_dir: str, verbose: bool = False):
    """Setup logging configuration."""
    Path(log_dir).mkdir(parents=True, exist_ok=True)

    level = logging.DEBUG if verbose else logging.INFO
    format_str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    logging.basicConfig(
        level=level,
        format=format_str,
        handlers=[
            logging.StreamHandler(),
            logging.FileHandler(f"{log_dir}/training.log")
        ]
    )


def build_config(args) -> ChessNetConfig:
    """Resolve settings with priority: CLI args > profile > defaults."""
    config = ChessNetConfig.from_profile(args.profile) if args.profile else ChessNetConfig()

    if args.workers is not None:
        config.training.num_workers = args.workers
    if args.compute_threads is not None:
        config.training.compute_threads = args.compute_threads
    if args.batch_size is not None:
        config.training.batch_size = args.batch_size
    if args.buffer_size is not None:
        config.training.buffer_size = args.buffer_size
    if args.max_games is not None:
        config.training.max_games = args.max_games
    if args.epochs is not None:
        config.training.epochs = args.epochs
    if args.seed is not None:
        config.network.seed = args.seed
        config.training.shuffle_seed = args.seed
    if args.learning_rate is not None:
        config.network.learning_rate = args.learning_rate
    if args.max_memory_mb is not None:
        config.memory.max_memory_mb = args.max_memory_mb

    if args.model is not None:
        config.checkpoint.model_path = args.model
        config.checkpoint.epoch_dir = str(Path(args.model).parent)
    if args.checkpoint is not None:
        config.checkpoint.checkpoint_path = args.checkpoint
    if args.checkpoint_interval is not None:
        config.checkpoint.checkpoint_interval = args.checkpoint_interval
    config.checkpoint.allow_partial_load = args.allow_partial_load

    config.reporting.progress_bar = args.progress_bar
    config.log_dir = args.log_dir
    return config


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Train the chessnet move-prediction network")

    parser.add_argument("archive", type=str, nargs="?", default=None,
                        help="PGN archive (.pgn, .gz, .bz2, .zst); default: largest in ./assets or .")

    # Hardware profile
    parser.add_argument("--profile", type=str, default=None,
                        choices=sorted(PROFILES),
                        help="Hardware profile: sets layer sizes, workers, batch/buffer sizes and memory ceiling")

    # Training parameters
    parser.add_argument("--workers", type=int, default=None,
                        help="Conversion workers (1 = single-threaded, deterministic)")
    parser.add_argument("--compute-threads", type=int, default=None,
                        help="Threads for the numeric kernels (default: CPU count)")
    parser.add_argument("--batch-size", type=int, default=None,
                        help="Mini-batch size (default: from profile or 128)")
    parser.add_argument("--buffer-size", type=int, default=None,
                        help="Samples buffered before training (default: from profile or 500)")
    parser.add_argument("--max-games", type=int, default=None,
                        help="Stop after reading this many games")
    parser.add_argument("--epochs", type=int, default=None,
                        help="Passes over the archive (default: 1)")
    parser.add_argument("--learning-rate", type=float, default=None,
                        help="SGD learning rate (default: 0.001)")
    parser.add_argument("--seed", type=int, default=None,
                        help="Seed for weight init and shuffling")
    parser.add_argument("--max-memory-mb", type=float, default=None,
                        help="Memory ceiling before forced flushes (default: from profile or 1024)")

    # Paths
    parser.add_argument("--model", type=str, default=None,
                        help="Model to resume from and final save path")
    parser.add_argument("--checkpoint", type=str, default=None,
                        help="Periodic checkpoint path")
    parser.add_argument("--checkpoint-interval", type=int, default=None,
                        help="Samples between checkpoints (default: 50000)")
    parser.add_argument("--allow-partial-load", action="store_true",
                        help="Load overlapping weights when the model's shape differs")
    parser.add_argument("--log-dir", type=str, default="logs",
                        help="Directory for logs")

    # Other
    parser.add_argument("--note", type=str, default=None,
                        help="Version note prepended to models.info next to the model")
    parser.add_argument("--progress-bar", action="store_true",
                        help="Show a tqdm progress bar instead of log lines")
    parser.add_argument("--verbose", action="store_true",
                        help="Verbose logging")

    return parser


def install_stop_handlers(pipeline: TrainingPipeline) -> dict:
    """Turn SIGINT/SIGTERM into a stop request honored at the next game boundary.

    Returns:
        The previous handlers, for ``signal.signal`` to restore
    """
    original = {
        signal.SIGINT: signal.getsignal(signal.SIGINT),
        signal.SIGTERM: signal.getsignal(signal.SIGTERM),
    }

    def signal_handler(signum, frame):
        logger.info(f"Received signal {signum}, stopping after the current game...")
        pipeline.request_stop()

    for signum in original:
        signal.signal(signum, signal_handler)
    return original


def main():
    args = build_parser().parse_args()

    config = build_config(args)

    # Setup logging
    setup_logging(args.log_dir, args.verbose)

    archive = Path(args.archive) if args.archive else find_largest_archive()
    if archive is None:
        logger.error("No PGN archive given and none found in ./assets or .")
        sys.exit(1)

    if config.training.compute_threads is not None:
        configure_pool(config.training.compute_threads)

    model_path = Path(config.checkpoint.model_path)
    try:
        network = load_or_create(
            model_path,
            config.network.layer_sizes,
            learning_rate=config.network.learning_rate,
            seed=config.network.seed,
            allow_partial_load=config.checkpoint.allow_partial_load,
        )
    except ShapeMismatchError as e:
        logger.error(f"{e}. Use --allow-partial-load to load the overlapping weights.")
        sys.exit(1)

    logger.info(f"Network: {network} ({count_parameters(network):,} parameters)")
    logger.info(f"Archive: {archive}")

    pipeline = TrainingPipeline(network, config)
    original_handlers = install_stop_handlers(pipeline)
    try:
        result = pipeline.run(archive, model_path)
    except OSError as e:
        logger.error(f"Training failed: {e}")
        sys.exit(1)
    finally:
        # Restore original signal handlers
        for signum, handler in original_handlers.items():
            signal.signal(signum, handler)

    stats = result.stats
    logger.info(
        f"Done: {stats['games_processed']} games, {stats['samples_trained']} samples, "
        f"{stats['checkpoints']} checkpoints ({stats['checkpoint_failures']} failed)"
    )
    if stats["filtered"]:
        logger.info(f"Filtered games: {stats['filtered']}")

    if args.note:
        stamp = datetime.now().strftime("%Y-%m-%d %H:%M:%S")
        prepend_line(
            model_path.parent / "models.info",
            f"{stamp} {result.final_model.name}: {args.note}",
        )

    if result.stopped_by_request:
        sys.exit(130)


if __name__ == "__main__":
    main()
