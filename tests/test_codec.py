"""Tests for the binary model format."""

import struct

import pytest
import numpy as np

import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent))

from chessnet.neural import (
    Network,
    ModelCodec,
    ModelFormatError,
    ShapeMismatchError,
    save_model,
    load_model,
    load_or_create,
)


def assert_same_parameters(a, b):
    assert a.layer_sizes == b.layer_sizes
    for la, lb in zip(a.layers, b.layers):
        np.testing.assert_array_equal(la.weights, lb.weights)
        np.testing.assert_array_equal(la.biases, lb.biases)


class TestModelCodec:
    """Tests for saving and loading models."""

    def test_round_trip(self, tmp_path):
        """Test a saved network loads back with identical parameters."""
        net = Network([65, 16, 8, 4096], seed=5)
        path = tmp_path / "net.model"
        save_model(net, path)
        assert_same_parameters(net, load_model(path))

    def test_byte_layout(self, tmp_path):
        """Test the exact big-endian byte layout of a one-layer model."""
        net = Network([2, 3], seed=0)
        weights = np.arange(6, dtype=np.float32).reshape(3, 2)
        biases = np.array([0.5, -0.5, 1.5], dtype=np.float32)
        net.layers[0].set_parameters(weights, biases)

        path = tmp_path / "tiny.model"
        save_model(net, path)
        data = path.read_bytes()

        assert len(data) == 4 + 8 + 4 * 6 + 4 * 3
        assert struct.unpack(">iii", data[:12]) == (1, 3, 2)
        np.testing.assert_array_equal(np.frombuffer(data[12:36], dtype=">f4"), weights.ravel())
        np.testing.assert_array_equal(np.frombuffer(data[36:], dtype=">f4"), biases)

    def test_save_leaves_no_temp_files(self, tmp_path):
        """Test an atomic save leaves only the target file."""
        save_model(Network([4, 3]), tmp_path / "a.model")
        assert [p.name for p in tmp_path.iterdir()] == ["a.model"]

    def test_truncated_file(self, tmp_path):
        """Test a truncated file raises ModelFormatError."""
        path = tmp_path / "net.model"
        save_model(Network([4, 3]), path)
        path.write_bytes(path.read_bytes()[:-3])
        with pytest.raises(ModelFormatError):
            load_model(path)

    def test_trailing_data(self, tmp_path):
        """Test bytes after the last layer are rejected."""
        path = tmp_path / "net.model"
        save_model(Network([4, 3]), path)
        path.write_bytes(path.read_bytes() + b"\x00")
        with pytest.raises(ModelFormatError):
            load_model(path)

    def test_invalid_layer_count(self, tmp_path):
        """Test a zero layer count is rejected."""
        path = tmp_path / "bad.model"
        path.write_bytes(struct.pack(">i", 0))
        with pytest.raises(ModelFormatError):
            load_model(path)

    def test_broken_chain_on_disk(self, tmp_path):
        """Test mismatched consecutive layer sizes are rejected."""
        path = tmp_path / "bad.model"
        data = struct.pack(">i", 2)
        data += struct.pack(">ii", 3, 2) + b"\x00" * 4 * (6 + 3)
        data += struct.pack(">ii", 2, 4) + b"\x00" * 4 * (8 + 2)
        path.write_bytes(data)
        with pytest.raises(ModelFormatError):
            load_model(path)

    def test_oversized_layer_header(self, tmp_path):
        """Test a header declaring more weights than the file holds fails cleanly."""
        path = tmp_path / "huge.model"
        path.write_bytes(struct.pack(">iii", 1, 2 ** 30, 2 ** 30) + b"\x00" * 16)
        with pytest.raises(ModelFormatError, match="bytes remain"):
            load_model(path)

    def test_format_error_is_oserror(self):
        """Test format errors are I/O errors."""
        assert issubclass(ModelFormatError, OSError)


class TestLoadPolicy:
    """Tests for loading into a declared architecture."""

    def test_load_into_matching_network(self, tmp_path):
        """Test loading into a network of the same shape."""
        source = Network([6, 4, 3], seed=1)
        path = tmp_path / "net.model"
        save_model(source, path)

        target = Network([6, 4, 3], seed=2)
        ModelCodec.load(path, network=target)
        assert_same_parameters(source, target)

    def test_mismatch_raises_by_default(self, tmp_path):
        """Test a shape mismatch raises unless partial loading is on."""
        path = tmp_path / "net.model"
        save_model(Network([6, 4, 3]), path)
        with pytest.raises(ShapeMismatchError):
            ModelCodec.load(path, network=Network([6, 5, 3]))

    def test_partial_load_copies_overlap(self, tmp_path):
        """Test partial loading copies only the overlapping weights."""
        source = Network([6, 4, 3], seed=1)
        path = tmp_path / "net.model"
        save_model(source, path)

        target = Network([6, 5, 3], seed=2)
        untouched = target.layers[0].weights[4].copy()
        ModelCodec.load(path, network=target, allow_partial_load=True)

        np.testing.assert_array_equal(target.layers[0].weights[:4], source.layers[0].weights)
        np.testing.assert_array_equal(target.layers[0].weights[4], untouched)
        np.testing.assert_array_equal(target.layers[1].weights[:, :4], source.layers[1].weights)


class TestLoadOrCreate:
    """Tests for the load-or-start-fresh helper."""

    def test_missing_file_creates_network(self, tmp_path):
        """Test a missing file yields a fresh network."""
        net = load_or_create(tmp_path / "missing.model", [4, 3, 2], seed=0)
        assert net.layer_sizes == (4, 3, 2)

    def test_corrupt_file_creates_network(self, tmp_path):
        """Test a corrupt file yields a fresh network."""
        path = tmp_path / "bad.model"
        path.write_bytes(b"\x00\x00")
        fresh = Network([4, 3, 2], seed=0)
        net = load_or_create(path, [4, 3, 2], seed=0)
        assert_same_parameters(fresh, net)

    def test_oversized_layer_header_creates_network(self, tmp_path):
        """Test a header with an impossible layer size falls back to a fresh network."""
        path = tmp_path / "huge.model"
        path.write_bytes(struct.pack(">iii", 1, 2 ** 30, 2 ** 30) + b"\x00" * 16)
        fresh = Network([4, 3], seed=0)
        net = load_or_create(path, [4, 3], seed=0)
        assert_same_parameters(fresh, net)

    def test_existing_file_is_loaded(self, tmp_path):
        """Test an existing compatible file is loaded."""
        source = Network([4, 3, 2], seed=9)
        path = tmp_path / "net.model"
        save_model(source, path)
        assert_same_parameters(source, load_or_create(path, [4, 3, 2], seed=0))

    def test_shape_mismatch_propagates(self, tmp_path):
        """Test an incompatible file is a configuration error."""
        path = tmp_path / "net.model"
        save_model(Network([4, 3, 2]), path)
        with pytest.raises(ShapeMismatchError):
            load_or_create(path, [4, 6, 2])


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
