"""Tests for DenseLayer."""

import pytest
import numpy as np

import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent))

from chessnet.neural import DenseLayer


def make_pair(input_size, output_size, seed=0):
    """Two layers with identical parameters: one always sequential, one always parallel."""
    sequential = DenseLayer(
        input_size, output_size, rng=np.random.default_rng(seed), parallel_threshold=10**9
    )
    parallel = DenseLayer(
        input_size, output_size, rng=np.random.default_rng(seed), parallel_threshold=0, min_chunk=7
    )
    return sequential, parallel


class TestDenseLayerInit:
    """Tests for layer construction."""

    def test_shapes(self):
        """Test weight and bias shapes."""
        layer = DenseLayer(65, 128, rng=np.random.default_rng(0))
        assert layer.shape == (128, 65)
        assert layer.weights.dtype == np.float32
        assert layer.biases.shape == (128,)
        assert np.all(layer.biases == 0)

    def test_he_uniform_bounds(self):
        """Test weights stay within the He-uniform bound."""
        layer = DenseLayer(50, 200, rng=np.random.default_rng(1))
        scale = np.sqrt(2.0 / 50)
        assert np.all(np.abs(layer.weights) <= scale)

    def test_same_seed_same_weights(self):
        """Test seeded layers initialize identically."""
        a = DenseLayer(10, 20, rng=np.random.default_rng(7))
        b = DenseLayer(10, 20, rng=np.random.default_rng(7))
        np.testing.assert_array_equal(a.weights, b.weights)

    def test_invalid_sizes(self):
        """Test non-positive sizes are rejected."""
        with pytest.raises(ValueError):
            DenseLayer(0, 10)

    def test_set_parameters_shape_check(self):
        """Test replacing parameters with the wrong shape fails."""
        layer = DenseLayer(3, 2)
        with pytest.raises(ValueError):
            layer.set_parameters(np.zeros((3, 2)), np.zeros(2))


class TestDenseLayerForward:
    """Tests for the forward pass."""

    def test_output_length_and_relu_range(self):
        """Test output length and ReLU clamping."""
        layer = DenseLayer(65, 300, rng=np.random.default_rng(2))
        x = np.random.default_rng(3).uniform(-1, 1, 65).astype(np.float32)
        out = layer.forward(x)
        assert out.shape == (300,)
        assert np.all(out >= 0)

    def test_matches_reference(self):
        """Test forward matches a plain numpy reference."""
        layer = DenseLayer(4, 3)
        weights = np.array([[1, -1, 0, 2], [0.5, 0.5, 0.5, 0.5], [-1, -1, -1, -1]], dtype=np.float32)
        biases = np.array([0.1, -3.0, 0.0], dtype=np.float32)
        layer.set_parameters(weights, biases)

        x = np.array([1, 2, 3, 4], dtype=np.float32)
        out = layer.forward(x)
        expected = np.maximum(weights @ x + biases, 0)
        np.testing.assert_allclose(out, expected, rtol=1e-6)
        assert out[2] == 0.0

    def test_wrong_input_length(self):
        """Test an input of the wrong length is rejected."""
        layer = DenseLayer(4, 3)
        with pytest.raises(ValueError):
            layer.forward(np.zeros(5, dtype=np.float32))

    def test_forward_caches_copies(self):
        """Test forward caches copies, not the caller's arrays."""
        layer = DenseLayer(4, 3, rng=np.random.default_rng(0))
        x = np.ones(4, dtype=np.float32)
        out = layer.forward(x)
        x[:] = 5
        out[:] = -1
        np.testing.assert_array_equal(layer.last_input, np.ones(4, dtype=np.float32))
        assert np.all(layer.last_output >= 0)

    def test_parallel_forward_bit_identical(self):
        """Test parallel forward is bit-identical to sequential."""
        sequential, parallel = make_pair(130, 517)
        x = np.random.default_rng(9).uniform(0, 1, 130).astype(np.float32)
        np.testing.assert_array_equal(sequential.forward(x), parallel.forward(x))


class TestDenseLayerBackward:
    """Tests for gradient accumulation and updates."""

    def test_backward_before_forward(self):
        """Test backward without a cached forward fails."""
        layer = DenseLayer(4, 3)
        with pytest.raises(RuntimeError):
            layer.backward_accumulate(np.ones(3, dtype=np.float32))

    def test_relu_mask_and_gradients(self):
        """Test gradients are masked by the ReLU output."""
        layer = DenseLayer(2, 2)
        layer.set_parameters(np.array([[1, 1], [-1, -1]], dtype=np.float32), np.zeros(2, dtype=np.float32))
        x = np.array([1, 2], dtype=np.float32)
        out = layer.forward(x)
        assert out[1] == 0.0

        grad_in = layer.backward_accumulate(np.array([0.5, 0.7], dtype=np.float32))
        # Second unit is inactive, so only the first row contributes
        np.testing.assert_allclose(layer.grad_biases, [0.5, 0.0])
        np.testing.assert_allclose(layer.grad_weights, [[0.5, 1.0], [0.0, 0.0]])
        np.testing.assert_allclose(grad_in, [0.5, 0.5])

    def test_gradients_accumulate(self):
        """Test repeated backward calls sum their gradients."""
        layer = DenseLayer(3, 2, rng=np.random.default_rng(0))
        x = np.ones(3, dtype=np.float32)
        layer.set_parameters(np.ones((2, 3), dtype=np.float32), np.zeros(2, dtype=np.float32))
        for _ in range(3):
            layer.forward(x)
            layer.backward_accumulate(np.ones(2, dtype=np.float32))
        np.testing.assert_allclose(layer.grad_biases, [3.0, 3.0])

    def test_update_zeroes_accumulators(self):
        """Test an update applies and clears the accumulators."""
        layer = DenseLayer(3, 2)
        layer.set_parameters(np.ones((2, 3), dtype=np.float32), np.zeros(2, dtype=np.float32))
        layer.forward(np.ones(3, dtype=np.float32))
        layer.backward_accumulate(np.ones(2, dtype=np.float32))

        layer.update_weights(learning_rate=0.1, batch_size=1)

        assert np.all(layer.grad_weights == 0)
        assert np.all(layer.grad_biases == 0)
        np.testing.assert_allclose(layer.weights, np.full((2, 3), 0.9), rtol=1e-6)
        np.testing.assert_allclose(layer.biases, [-0.1, -0.1], rtol=1e-6)

    def test_update_averages_over_batch(self):
        """Test the update divides by the batch size."""
        layer = DenseLayer(1, 1)
        layer.set_parameters(np.ones((1, 1), dtype=np.float32), np.zeros(1, dtype=np.float32))
        for _ in range(4):
            layer.forward(np.ones(1, dtype=np.float32))
            layer.backward_accumulate(np.ones(1, dtype=np.float32))
        layer.update_weights(learning_rate=1.0, batch_size=4)
        np.testing.assert_allclose(layer.weights, [[0.0]], atol=1e-7)

    def test_update_invalid_batch_size(self):
        """Test a non-positive batch size is rejected."""
        layer = DenseLayer(2, 2)
        with pytest.raises(ValueError):
            layer.update_weights(0.1, 0)

    def test_parallel_backward_bit_identical(self):
        """Test parallel backward is bit-identical to sequential."""
        sequential, parallel = make_pair(300, 90, seed=4)
        rng = np.random.default_rng(5)
        x = rng.uniform(0, 1, 300).astype(np.float32)
        grad = rng.uniform(-1, 1, 90).astype(np.float32)

        sequential.forward(x)
        parallel.forward(x)
        grad_seq = sequential.backward_accumulate(grad.copy())
        grad_par = parallel.backward_accumulate(grad.copy())

        np.testing.assert_array_equal(grad_seq, grad_par)
        np.testing.assert_array_equal(sequential.grad_weights, parallel.grad_weights)
        np.testing.assert_array_equal(sequential.grad_biases, parallel.grad_biases)

    def test_accumulate_gradients_merges(self):
        """Test merging task-local gradients under the lock."""
        layer = DenseLayer(2, 2)
        layer.accumulate_gradients(np.ones((2, 2), dtype=np.float32), np.ones(2, dtype=np.float32))
        layer.accumulate_gradients(np.ones((2, 2), dtype=np.float32), np.ones(2, dtype=np.float32))
        np.testing.assert_array_equal(layer.grad_weights, np.full((2, 2), 2.0))
        layer.zero_grad()
        assert np.all(layer.grad_weights == 0)


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
