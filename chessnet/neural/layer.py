"""Dense affine + ReLU layer with accumulating gradients.

The forward pass computes ``relu(bias + W @ x)`` one output row at a time with
a fixed per-row reduction, so splitting the output range across threads gives
bit-identical results to the sequential path.
"""

import threading
import numpy as np
from typing import Optional, Tuple

from ..parallel import parallel_for


# Layers wider than this are computed by bisecting the index range
PARALLEL_THRESHOLD = 256
# Smallest chunk handed to a single task
MIN_CHUNK = 64


def _rows_dot(matrix: np.ndarray, vector: np.ndarray) -> np.ndarray:
    """Row-wise dot products of a C-contiguous float32 matrix with a vector."""
    return np.multiply(matrix, vector).sum(axis=1, dtype=np.float32)


class DenseLayer:
    """One affine transform followed by ReLU.

    Gradients accumulate across every backward call in a mini-batch and are
    applied and reset only by ``update_weights``. The cached ``last_input`` /
    ``last_output`` pair makes ``forward``/``backward_accumulate`` single-flight
    per instance; concurrent callers use ``propagate``/``backpropagate`` with
    their own buffers instead.
    """

    def __init__(
        self,
        input_size: int,
        output_size: int,
        rng: Optional[np.random.Generator] = None,
        parallel_threshold: int = PARALLEL_THRESHOLD,
        min_chunk: int = MIN_CHUNK,
    ):
        """Initialize a layer with He-style uniform weights and zero biases.

        Args:
            input_size: Number of inputs
            output_size: Number of output units
            rng: Random generator for weight init
            parallel_threshold: Range length above which kernels run in parallel
            min_chunk: Chunk-size floor for parallel kernels
        """
        if input_size <= 0 or output_size <= 0:
            raise ValueError(f"Layer sizes must be positive, got {input_size}x{output_size}")

        rng = rng if rng is not None else np.random.default_rng()
        scale = np.sqrt(2.0 / input_size)

        self._weights = rng.uniform(-scale, scale, size=(output_size, input_size)).astype(np.float32)
        self._biases = np.zeros(output_size, dtype=np.float32)
        self._weights_t: Optional[np.ndarray] = None

        self.grad_weights = np.zeros((output_size, input_size), dtype=np.float32)
        self.grad_biases = np.zeros(output_size, dtype=np.float32)
        self._grad_lock = threading.Lock()

        self.last_input: Optional[np.ndarray] = None
        self.last_output: Optional[np.ndarray] = None

        self.parallel_threshold = parallel_threshold
        self.min_chunk = min_chunk

    @property
    def input_size(self) -> int:
        return self._weights.shape[1]

    @property
    def output_size(self) -> int:
        return self._weights.shape[0]

    @property
    def shape(self) -> Tuple[int, int]:
        """(output_size, input_size)"""
        return self._weights.shape

    @property
    def weights(self) -> np.ndarray:
        return self._weights

    @property
    def biases(self) -> np.ndarray:
        return self._biases

    def set_parameters(self, weights: np.ndarray, biases: np.ndarray) -> None:
        """Overwrite weights and biases in place.

        Raises:
            ValueError: If either shape differs from the layer's
        """
        weights = np.asarray(weights, dtype=np.float32)
        biases = np.asarray(biases, dtype=np.float32)
        if weights.shape != self._weights.shape or biases.shape != self._biases.shape:
            raise ValueError(
                f"Parameter shapes {weights.shape}/{biases.shape} do not match "
                f"layer {self._weights.shape}/{self._biases.shape}"
            )
        self._weights[...] = weights
        self._biases[...] = biases
        self._weights_t = None

    def _transposed(self) -> np.ndarray:
        weights_t = self._weights_t
        if weights_t is None:
            weights_t = np.ascontiguousarray(self._weights.T)
            self._weights_t = weights_t
        return weights_t

    def propagate(self, x: np.ndarray) -> np.ndarray:
        """Forward pass without caching (safe for concurrent callers).

        Args:
            x: Input vector of length input_size

        Returns:
            ReLU activations of length output_size
        """
        x = np.asarray(x, dtype=np.float32)
        if x.shape != (self.input_size,):
            raise ValueError(f"Expected input of length {self.input_size}, got shape {x.shape}")

        output = np.empty(self.output_size, dtype=np.float32)
        weights = self._weights
        biases = self._biases

        def compute(lo: int, hi: int) -> None:
            pre = _rows_dot(weights[lo:hi], x) + biases[lo:hi]
            np.maximum(pre, 0.0, out=output[lo:hi])

        parallel_for(0, self.output_size, compute, self.parallel_threshold, self.min_chunk)
        return output

    def forward(self, x: np.ndarray) -> np.ndarray:
        """Forward pass, caching input and output for ``backward_accumulate``."""
        output = self.propagate(x)
        self.last_input = np.array(x, dtype=np.float32, copy=True)
        self.last_output = output.copy()
        return output

    def backpropagate(
        self,
        output_grad: np.ndarray,
        layer_input: np.ndarray,
        layer_output: np.ndarray,
        grad_weights: np.ndarray,
        grad_biases: np.ndarray,
    ) -> np.ndarray:
        """Backward pass into caller-owned gradient buffers.

        Masks ``output_grad`` in place with the ReLU derivative, adds this
        sample's contribution to ``grad_weights``/``grad_biases`` and returns
        the gradient with respect to the layer input.
        """
        if output_grad.shape != (self.output_size,):
            raise ValueError(
                f"Expected gradient of length {self.output_size}, got shape {output_grad.shape}"
            )
        output_grad[layer_output <= 0] = 0.0

        input_grad = np.empty(self.input_size, dtype=np.float32)
        weights_t = self._transposed()

        def compute(lo: int, hi: int) -> None:
            input_grad[lo:hi] = _rows_dot(weights_t[lo:hi], output_grad)

        parallel_for(0, self.input_size, compute, self.parallel_threshold, self.min_chunk)

        grad_biases += output_grad
        grad_weights += np.outer(output_grad, layer_input)
        return input_grad

    def backward_accumulate(self, output_grad: np.ndarray) -> np.ndarray:
        """Accumulate gradients for the last ``forward`` call.

        Args:
            output_grad: Gradient w.r.t. this layer's output (float32, modified in place)

        Returns:
            Gradient w.r.t. this layer's input
        """
        if self.last_input is None or self.last_output is None:
            raise RuntimeError("backward_accumulate called before forward")
        return self.backpropagate(
            output_grad, self.last_input, self.last_output, self.grad_weights, self.grad_biases
        )

    def accumulate_gradients(self, grad_weights: np.ndarray, grad_biases: np.ndarray) -> None:
        """Merge a task-local gradient buffer into the layer's accumulators."""
        with self._grad_lock:
            self.grad_weights += grad_weights
            self.grad_biases += grad_biases

    def update_weights(self, learning_rate: float, batch_size: int) -> None:
        """Apply accumulated gradients averaged over the batch, then reset them."""
        if batch_size <= 0:
            raise ValueError(f"batch_size must be positive, got {batch_size}")
        step = np.float32(learning_rate / batch_size)

        with self._grad_lock:
            self._weights -= step * self.grad_weights
            self._biases -= step * self.grad_biases
            self.grad_weights.fill(0.0)
            self.grad_biases.fill(0.0)
            self._weights_t = None

    def zero_grad(self) -> None:
        with self._grad_lock:
            self.grad_weights.fill(0.0)
            self.grad_biases.fill(0.0)

    def __repr__(self) -> str:
        return f"DenseLayer({self.input_size} -> {self.output_size})"
