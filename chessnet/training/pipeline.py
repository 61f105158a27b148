"""Streaming training pipeline.

Reads a PGN archive game by game, converts games into samples, buffers them
and trains the network in shuffled mini-batches, with memory backpressure,
periodic checkpoints and an optional game limit.

Single-threaded mode (``num_workers <= 1``) is deterministic for a given
shuffle seed and network seed. With more workers a reader thread feeds a
bounded queue that worker threads drain; sample order then depends on
scheduling.
"""

import gc
import os
import time
import queue
import random
import logging
import threading
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Callable, List, Optional, Union

from ..config import ChessNetConfig
from ..neural import Network
from .checkpointing import CheckpointManager
from .memory import MemoryMonitor
from .pgn import ArchiveReader, GameFilter, GameSkipped, RawGame, iter_raw_games
from .samples import GameConverter, TrainingSample
from .stats import PipelineStats
from .training_monitor import ProgressReporter


logger = logging.getLogger(__name__)

PARSE_ERROR = "parse_error"
QUEUE_TIMEOUT = 0.1

_SENTINEL = object()


class PipelineState(Enum):
    """Pipeline stages."""
    IDLE = "idle"
    READING = "reading"
    CONVERTING = "converting"
    BUFFERING = "buffering"
    TRAINING = "training"
    CHECKPOINTING = "checkpointing"
    COMPLETED = "completed"
    STOPPED_BY_LIMIT = "stopped_by_limit"
    STOPPED_BY_REQUEST = "stopped_by_request"


@dataclass
class PipelineResult:
    """Outcome of a training run."""
    stats: dict
    stopped_by_limit: bool = False
    stopped_by_request: bool = False
    epochs_completed: int = 0
    epoch_models: List[Path] = field(default_factory=list)
    final_model: Optional[Path] = None


class TrainingPipeline:
    """Trains a network from a PGN archive.

    Usage:
        pipeline = TrainingPipeline(network, config)
        result = pipeline.run("games.pgn.zst")
    """

    def __init__(
        self,
        network: Network,
        config: Optional[ChessNetConfig] = None,
        converter: Optional[GameConverter] = None,
        game_filter: Optional[GameFilter] = None,
        memory_monitor: Optional[MemoryMonitor] = None,
        checkpoints: Optional[CheckpointManager] = None,
        stats: Optional[PipelineStats] = None,
        archive_opener: Callable[[Union[str, os.PathLike]], ArchiveReader] = ArchiveReader,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep
    ):
        """Initialize pipeline.

        Args:
            network: Network to train in place
            config: Run configuration; defaults to ChessNetConfig()
            converter: Game to samples conversion
            game_filter: Raw game parsing and filtering
            memory_monitor: Backpressure source
            checkpoints: Model file writer
            stats: Shared counters
            archive_opener: Factory returning a context-managed line iterator
            clock: Monotonic time source for the timed memory check
            sleep: Pause function used under memory pressure
        """
        self.network = network
        self.config = config or ChessNetConfig()
        self.stats = stats if stats is not None else PipelineStats()

        training = self.config.training
        if training.batch_size <= 0:
            raise ValueError(f"batch_size must be positive, got {training.batch_size}")
        if training.buffer_size <= 0:
            raise ValueError(f"buffer_size must be positive, got {training.buffer_size}")

        filters = self.config.filter
        self.converter = converter or GameConverter(
            min_plies=training.min_plies,
            max_plies=training.max_plies,
            draw_weight=filters.draw_weight,
        )
        self.game_filter = game_filter or GameFilter(
            excluded_time_controls=filters.excluded_time_controls,
            require_ratings=filters.require_ratings,
            min_elo=filters.min_elo,
        )

        memory = self.config.memory
        self.memory_monitor = memory_monitor or MemoryMonitor(
            max_memory_mb=memory.max_memory_mb,
            max_memory_fraction=memory.max_memory_fraction,
        )

        ckpt = self.config.checkpoint
        self.checkpoints = checkpoints or CheckpointManager(
            checkpoint_path=ckpt.checkpoint_path,
            interval_samples=ckpt.checkpoint_interval,
            epoch_dir=ckpt.epoch_dir,
            stats=self.stats,
        )

        self.archive_opener = archive_opener
        self._clock = clock
        self._sleep = sleep

        self._state = PipelineState.IDLE
        self._buffer: List[TrainingSample] = []
        self._buffer_lock = threading.Lock()
        self._train_lock = threading.Lock()
        self._rng = random.Random(training.shuffle_seed)
        self._last_memory_check = 0.0
        self._reporter: Optional[ProgressReporter] = None
        self._stop_requested = threading.Event()

    @property
    def state(self) -> PipelineState:
        return self._state

    def _set_state(self, state: PipelineState) -> None:
        if state is not self._state:
            logger.debug(f"Pipeline state: {self._state.value} -> {state.value}")
            self._state = state

    def request_stop(self) -> None:
        """Ask a running pipeline to stop at the next game boundary.

        Safe to call from a signal handler or another thread. The run then
        flushes its buffer, writes a checkpoint and saves the final model,
        exactly as when the game limit is reached.
        """
        self._stop_requested.set()

    @property
    def stop_requested(self) -> bool:
        return self._stop_requested.is_set()

    def run(self, archive_path: Union[str, os.PathLike], model_path: Union[str, os.PathLike, None] = None) -> PipelineResult:
        """Train on every epoch of an archive and save the final model.

        Args:
            archive_path: PGN archive (plain, .gz, .bz2 or .zst)
            model_path: Final model destination; defaults to the configured path

        Returns:
            PipelineResult with counters and written model paths

        Raises:
            OSError: If the archive cannot be read or the final save fails
        """
        training = self.config.training
        model_path = Path(model_path or self.config.checkpoint.model_path)

        self._rng = random.Random(training.shuffle_seed)
        self._last_memory_check = self._clock()
        with self._buffer_lock:
            self._buffer = []

        result = PipelineResult(stats={})
        reporting = self.config.reporting
        self._reporter = ProgressReporter(
            self.stats,
            interval=reporting.progress_interval,
            memory_monitor=self.memory_monitor,
            progress_bar=reporting.progress_bar,
        )

        logger.info(
            f"Training {self.network} on {archive_path}: "
            f"{training.epochs} epoch(s), {max(1, training.num_workers)} worker(s)"
        )

        try:
            with self._reporter:
                for epoch in range(1, training.epochs + 1):
                    if self.stop_requested:
                        stopped = True
                    else:
                        logger.info(f"Epoch {epoch}/{training.epochs} started")
                        if training.num_workers > 1:
                            stopped = self._run_epoch_concurrent(archive_path)
                        else:
                            stopped = self._run_epoch(archive_path)

                    self._flush()

                    if stopped:
                        if self.stop_requested:
                            logger.info("Stop requested, stopping at game boundary")
                            result.stopped_by_request = True
                        else:
                            logger.info(f"Game limit of {training.max_games} reached, stopping")
                            result.stopped_by_limit = True
                        self._set_state(PipelineState.CHECKPOINTING)
                        self.checkpoints.checkpoint(self.network)
                        break

                    result.epochs_completed = epoch
                    samples = self.stats.samples_trained
                    self._set_state(PipelineState.CHECKPOINTING)
                    path = self.checkpoints.save_epoch_model(self.network, epoch, samples)
                    if path is not None:
                        result.epoch_models.append(path)
                    logger.info(f"Epoch {epoch}/{training.epochs} finished: {samples} samples trained")
        finally:
            self._reporter = None
            self._stop_requested.clear()

        result.final_model = self.checkpoints.save_final(self.network, model_path)
        result.stats = self.stats.snapshot()
        if result.stopped_by_request:
            self._set_state(PipelineState.STOPPED_BY_REQUEST)
        elif result.stopped_by_limit:
            self._set_state(PipelineState.STOPPED_BY_LIMIT)
        else:
            self._set_state(PipelineState.COMPLETED)
        logger.info(
            f"Training finished: {result.stats['games_processed']} games processed, "
            f"{result.stats['games_filtered']} filtered, "
            f"{result.stats['samples_trained']} samples trained"
        )
        return result

    def _open_archive(self, archive_path) -> ArchiveReader:
        reader = self.archive_opener(archive_path)
        if self._reporter is not None:
            self._reporter.total_bytes = getattr(reader, "size", None)
        return reader

    def _should_stop(self, games_read: int) -> bool:
        """Game-boundary stop check: the game limit or an outside stop request."""
        if self.stop_requested:
            return True
        max_games = self.config.training.max_games
        return max_games is not None and games_read >= max_games

    def _run_epoch(self, archive_path) -> bool:
        """Single-threaded pass over the archive. Returns True if it stopped early."""
        with self._open_archive(archive_path) as reader:
            self._set_state(PipelineState.READING)
            for raw in iter_raw_games(reader):
                self.stats.set_bytes_read(reader.bytes_read)
                games_read = self.stats.increment("games_read")

                self._process_game(raw)
                self._after_game(games_read)

                if self._should_stop(games_read):
                    return True
                self._set_state(PipelineState.READING)
        return False

    def _run_epoch_concurrent(self, archive_path) -> bool:
        """Reader thread plus worker threads. Returns True if it stopped early."""
        training = self.config.training
        num_workers = training.num_workers
        games: queue.Queue = queue.Queue(maxsize=training.queue_size)
        abort = threading.Event()
        stopped = threading.Event()
        errors: List[BaseException] = []
        errors_lock = threading.Lock()

        def fail(e: BaseException) -> None:
            with errors_lock:
                errors.append(e)
            abort.set()

        def put(item) -> bool:
            while not abort.is_set():
                try:
                    games.put(item, timeout=QUEUE_TIMEOUT)
                    return True
                except queue.Full:
                    continue
            return False

        def read() -> None:
            try:
                with self._open_archive(archive_path) as reader:
                    self._set_state(PipelineState.READING)
                    for raw in iter_raw_games(reader):
                        self.stats.set_bytes_read(reader.bytes_read)
                        games_read = self.stats.increment("games_read")
                        if not put(raw):
                            break
                        self._after_game(games_read)
                        if self._should_stop(games_read):
                            stopped.set()
                            break
            except Exception as e:
                logger.error(f"Archive reader failed: {e}")
                fail(e)
            finally:
                for _ in range(num_workers):
                    if not put(_SENTINEL):
                        break

        def work() -> None:
            try:
                while True:
                    try:
                        raw = games.get(timeout=QUEUE_TIMEOUT)
                    except queue.Empty:
                        if abort.is_set():
                            return
                        continue
                    if raw is _SENTINEL:
                        return
                    self._process_game(raw)
            except Exception as e:
                logger.error(f"Training worker failed: {e}")
                fail(e)

        threads = [threading.Thread(target=read, name="chessnet-reader", daemon=True)]
        threads += [
            threading.Thread(target=work, name=f"chessnet-worker-{i}", daemon=True)
            for i in range(num_workers)
        ]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        if errors:
            raise errors[0]
        return stopped.is_set()

    def _process_game(self, raw: RawGame) -> None:
        """Parse, filter, convert and buffer one game. Never raises for bad games."""
        self._set_state(PipelineState.CONVERTING)
        try:
            record = self.game_filter.parse_game(raw)
            samples = self.converter.convert(record)
        except GameSkipped as e:
            self.stats.record_filtered(e.reason)
            return
        except Exception as e:
            logger.debug(f"Failed to convert game {raw.headers.get('Site', '?')}: {e!r}")
            self.stats.record_filtered(PARSE_ERROR)
            return

        self.stats.increment("games_processed")
        self._add_samples(samples)

    def _add_samples(self, samples: List[TrainingSample]) -> None:
        self._set_state(PipelineState.BUFFERING)
        with self._buffer_lock:
            self._buffer.extend(samples)
            if len(self._buffer) < self.config.training.buffer_size:
                return
            pending = self._buffer
            self._buffer = []
        self._train(pending)

    def _flush(self, forced: bool = False) -> None:
        """Train on whatever is buffered."""
        with self._buffer_lock:
            pending = self._buffer
            self._buffer = []
        if not pending:
            return
        if forced:
            self.stats.increment("forced_flushes")
        self._train(pending)

    def _train(self, samples: List[TrainingSample]) -> None:
        """Shuffle, train in mini-batches, then consider a checkpoint."""
        batch_size = self.config.training.batch_size
        with self._train_lock:
            self._set_state(PipelineState.TRAINING)
            self._rng.shuffle(samples)
            for start in range(0, len(samples), batch_size):
                batch = samples[start:start + batch_size]
                loss = self.network.train_batch(batch)
                self.stats.record_batch(len(batch), loss)

            self._set_state(PipelineState.CHECKPOINTING)
            self.checkpoints.maybe_checkpoint(self.network, self.stats.samples_trained)

    def _relieve_memory_pressure(self) -> bool:
        if not self.memory_monitor.is_memory_low():
            return False
        self._flush(forced=True)
        gc.collect()
        return True

    def _after_game(self, games_read: int) -> None:
        """Memory backpressure checks, run at every game boundary."""
        memory = self.config.memory

        if memory.check_interval_games and games_read % memory.check_interval_games == 0:
            self._relieve_memory_pressure()

        now = self._clock()
        if now - self._last_memory_check >= memory.check_interval_seconds:
            self._last_memory_check = now
            if self._relieve_memory_pressure():
                self.stats.increment("memory_pauses")
                self._sleep(memory.pause_seconds)

        if memory.gc_interval_games and games_read % memory.gc_interval_games == 0:
            gc.collect()
