"""Tests for utilities and configuration."""

import importlib.util
import signal
from datetime import datetime

import pytest

import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent))

from chessnet import (
    ChessNetConfig,
    PROFILES,
    epoch_model_filename,
    parse_model_filename,
    unique_path,
    find_largest_archive,
    prepend_line,
)
from chessnet.neural import Network
from chessnet.training import TrainingPipeline


SCRIPTS_DIR = Path(__file__).parent.parent / "scripts"


def load_script(name):
    """Import a script from scripts/ as a module."""
    module_spec = importlib.util.spec_from_file_location(f"chessnet_script_{name}", SCRIPTS_DIR / f"{name}.py")
    module = importlib.util.module_from_spec(module_spec)
    module_spec.loader.exec_module(module)
    return module


class TestModelFilenames:
    """Tests for epoch model naming."""

    def test_format(self):
        """Test the epoch model file name format."""
        when = datetime(2024, 3, 1, 14, 5, 9)
        assert epoch_model_filename(2, 5000, when) == "epoch2_chessnet-5000-20240301-140509.model"

    def test_parse_round_trip(self):
        """Test a generated name parses back."""
        when = datetime(2024, 3, 1, 14, 5, 9)
        assert parse_model_filename(f"models/{epoch_model_filename(3, 42, when)}") == (3, 42, when)

    def test_parse_deduplicated_name(self):
        """Test names with a dedup suffix still parse."""
        assert parse_model_filename("epoch1_chessnet-10-20240101-000000-2.model")[0] == 1

    def test_parse_unrelated(self):
        """Test unrelated names are ignored."""
        assert parse_model_filename("chessnet.model") is None


class TestUniquePath:
    """Tests for unique_path."""

    def test_free_path_unchanged(self, tmp_path):
        """Test a free path is returned as is."""
        assert unique_path(tmp_path / "a.model") == tmp_path / "a.model"

    def test_appends_counter(self, tmp_path):
        """Test taken paths get the next free counter."""
        (tmp_path / "a.model").write_text("x")
        (tmp_path / "a-1.model").write_text("x")
        assert unique_path(tmp_path / "a.model") == tmp_path / "a-2.model"


class TestFindLargestArchive:
    """Tests for archive discovery."""

    def test_picks_largest(self, tmp_path):
        """Test the largest archive is chosen."""
        (tmp_path / "small.pgn").write_text("x")
        (tmp_path / "big.pgn.zst").write_text("x" * 100)
        (tmp_path / "other.txt").write_text("x" * 1000)
        assert find_largest_archive(tmp_path) == tmp_path / "big.pgn.zst"

    def test_none_found(self, tmp_path):
        """Test None when no archive exists."""
        assert find_largest_archive(tmp_path) is None

    def test_assets_preferred(self, tmp_path, monkeypatch):
        """Test ./assets is searched first."""
        (tmp_path / "assets").mkdir()
        (tmp_path / "assets" / "a.pgn").write_text("x")
        (tmp_path / "b.pgn").write_text("x" * 50)
        monkeypatch.chdir(tmp_path)
        assert find_largest_archive() == Path("assets") / "a.pgn"


class TestPrependLine:
    """Tests for prepend_line."""

    def test_creates_and_prepends(self, tmp_path):
        """Test lines are prepended, creating the file."""
        path = tmp_path / "models.info"
        assert prepend_line(path, "first")
        assert prepend_line(path, "second\n")
        assert path.read_text().splitlines() == ["second", "first"]

    def test_failure_is_logged(self, tmp_path):
        """Test a write failure returns False."""
        blocker = tmp_path / "blocker"
        blocker.write_text("file")
        assert not prepend_line(blocker / "models.info", "note")


class TestConfig:
    """Tests for configuration defaults and profiles."""

    def test_defaults(self):
        """Test configuration defaults."""
        config = ChessNetConfig()
        assert config.network.layer_sizes[0] == 65
        assert config.network.layer_sizes[-1] == 4096
        assert config.training.batch_size == 128
        assert config.training.buffer_size == 500
        assert config.training.compute_threads is None
        assert config.checkpoint.checkpoint_interval == 50000
        assert config.checkpoint.allow_partial_load is False
        assert config.memory.max_memory_mb == 1024
        assert config.filter.excluded_time_controls == ("ultrabullet", "bullet")

    def test_from_profile(self):
        """Test a hardware profile fills the config."""
        config = ChessNetConfig.from_profile("high")
        profile = PROFILES["high"]
        assert config.network.layer_sizes == profile.layer_sizes
        assert config.training.num_workers == profile.workers
        assert config.memory.max_memory_mb == profile.max_memory_mb

    def test_unknown_profile(self):
        """Test an unknown profile is rejected."""
        with pytest.raises(ValueError):
            ChessNetConfig.from_profile("huge")

    def test_configs_independent(self):
        """Test configs do not share mutable state."""
        a = ChessNetConfig()
        a.training.batch_size = 1
        assert ChessNetConfig().training.batch_size == 128


class TestTrainScript:
    """Tests for the training entry point's wiring."""

    def test_compute_threads_independent_of_workers(self):
        """Test the worker count does not size the compute pool."""
        train = load_script("train")
        config = train.build_config(train.build_parser().parse_args(["games.pgn", "--workers", "4"]))
        assert config.training.num_workers == 4
        assert config.training.compute_threads is None

    def test_compute_threads_option(self):
        """Test the compute pool size has its own option."""
        train = load_script("train")
        args = train.build_parser().parse_args(["--profile", "high", "--compute-threads", "2"])
        config = train.build_config(args)
        assert config.training.compute_threads == 2
        assert config.training.num_workers == PROFILES["high"].workers

    def test_interrupt_requests_stop(self):
        """Test SIGINT becomes a pipeline stop request instead of an exception."""
        train = load_script("train")
        pipeline = TrainingPipeline(Network((65, 8, 4096), seed=0))
        original = train.install_stop_handlers(pipeline)
        try:
            handler = signal.getsignal(signal.SIGINT)
            handler(signal.SIGINT, None)
        finally:
            for signum, previous in original.items():
                signal.signal(signum, previous)

        assert pipeline.stop_requested
        assert signal.getsignal(signal.SIGINT) is original[signal.SIGINT]


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
