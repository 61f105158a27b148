"""Move-prediction network: an ordered stack of dense ReLU layers.

Architecture (default sizes):
    board vector (65,) / 16
        |
    DenseLayer + ReLU  x N
        |
    move scores (4096,)   raw ReLU outputs, used only for ranking
"""

import threading
import logging
import numpy as np
from typing import List, Optional, Sequence

from .layer import DenseLayer
from .loss import squared_error
from ..parallel import parallel_for


logger = logging.getLogger(__name__)

# Raw board codes are divided by this before the first layer
INPUT_SCALE = 16.0

NORMALIZE_THRESHOLD = 256
NORMALIZE_MIN_CHUNK = 64

# Batches larger than this are split across the pool at sample level
BATCH_PARALLEL_THRESHOLD = 512
BATCH_MIN_CHUNK = 128

# Layer-level work (init, update) is parallel above this many layers
LAYER_PARALLEL_THRESHOLD = 2
LAYER_MIN_CHUNK = 2


class ShapeMismatchError(ValueError):
    """Layer shapes violate the chain invariant or a declared architecture."""


class Network:
    """Feed-forward move predictor trained with plain mini-batch SGD.

    The network owns its layers exclusively; the compute pool is shared
    process-wide. ``train_batch`` calls are serialized by an internal lock so
    several pipeline workers can share one network.
    """

    def __init__(
        self,
        layer_sizes: Sequence[int],
        learning_rate: float = 0.001,
        seed: Optional[int] = None,
        batch_parallel_threshold: int = BATCH_PARALLEL_THRESHOLD,
    ):
        """Build a network with freshly initialized layers.

        Args:
            layer_sizes: Sizes from input to output, e.g. (65, 256, 4096)
            learning_rate: SGD step size
            seed: Seed for weight initialization (None for random)
            batch_parallel_threshold: Batch size above which training is split
                across the pool at sample level
        """
        layer_sizes = tuple(int(s) for s in layer_sizes)
        if len(layer_sizes) < 2:
            raise ValueError(f"Need at least input and output sizes, got {layer_sizes}")

        num_layers = len(layer_sizes) - 1
        # One independent stream per layer keeps init reproducible under threading
        streams = np.random.SeedSequence(seed).spawn(num_layers)
        layers: List[Optional[DenseLayer]] = [None] * num_layers

        def init(lo: int, hi: int) -> None:
            for i in range(lo, hi):
                layers[i] = DenseLayer(
                    layer_sizes[i], layer_sizes[i + 1], rng=np.random.default_rng(streams[i])
                )

        parallel_for(0, num_layers, init, LAYER_PARALLEL_THRESHOLD, LAYER_MIN_CHUNK)

        self._layers: List[DenseLayer] = layers
        self.learning_rate = learning_rate
        self.batch_parallel_threshold = batch_parallel_threshold
        self._train_lock = threading.RLock()

    @classmethod
    def from_layers(
        cls,
        layers: Sequence[DenseLayer],
        learning_rate: float = 0.001,
        batch_parallel_threshold: int = BATCH_PARALLEL_THRESHOLD,
    ) -> "Network":
        """Wrap existing layers, checking that consecutive shapes chain.

        Raises:
            ShapeMismatchError: If layer i's input size differs from layer i-1's output size
        """
        if not layers:
            raise ValueError("Network needs at least one layer")
        for i in range(1, len(layers)):
            if layers[i].input_size != layers[i - 1].output_size:
                raise ShapeMismatchError(
                    f"Layer {i} expects {layers[i].input_size} inputs but layer {i - 1} "
                    f"produces {layers[i - 1].output_size}"
                )

        network = cls.__new__(cls)
        network._layers = list(layers)
        network.learning_rate = learning_rate
        network.batch_parallel_threshold = batch_parallel_threshold
        network._train_lock = threading.RLock()
        return network

    @property
    def layers(self) -> List[DenseLayer]:
        return list(self._layers)

    @property
    def layer_sizes(self) -> tuple:
        return (self._layers[0].input_size,) + tuple(l.output_size for l in self._layers)

    @property
    def input_size(self) -> int:
        return self._layers[0].input_size

    @property
    def output_size(self) -> int:
        return self._layers[-1].output_size

    def normalize(self, board_state: Sequence[int]) -> np.ndarray:
        """Scale a raw integer board vector into the network's input range."""
        raw = np.asarray(board_state)
        if raw.shape != (self.input_size,):
            raise ValueError(f"Expected board vector of length {self.input_size}, got shape {raw.shape}")

        current = np.empty(raw.shape[0], dtype=np.float32)

        def scale(lo: int, hi: int) -> None:
            current[lo:hi] = raw[lo:hi] / np.float32(INPUT_SCALE)

        parallel_for(0, raw.shape[0], scale, NORMALIZE_THRESHOLD, NORMALIZE_MIN_CHUNK)
        return current

    def predict(self, board_state: Sequence[int]) -> np.ndarray:
        """Score every move in the move space for a board.

        Leaves the layers' training caches untouched, so it is safe to call
        while another thread trains.

        Args:
            board_state: Integer board vector (last element is the turn flag)

        Returns:
            Raw ReLU scores of shape (output_size,)
        """
        return self._infer(board_state)[-1]

    def _forward_cached(self, board_state: Sequence[int]) -> np.ndarray:
        """Training forward pass; each layer keeps its input/output for backward."""
        current = self.normalize(board_state)
        for layer in self._layers:
            current = layer.forward(current)
        return current

    def _infer(self, board_state: Sequence[int]) -> List[np.ndarray]:
        """Forward pass without touching layer caches; returns every activation."""
        activations = [self.normalize(board_state)]
        for layer in self._layers:
            activations.append(layer.propagate(activations[-1]))
        return activations

    def _output_grad(self, predicted: np.ndarray, target: int, weight: float) -> np.ndarray:
        expected = np.zeros(self.output_size, dtype=np.float32)
        expected[target] = 1.0
        return (predicted - expected) * np.float32(weight)

    def _check_sample(self, sample) -> None:
        if len(sample.board_state) != self.input_size:
            raise ValueError(
                f"Sample board vector has length {len(sample.board_state)}, expected {self.input_size}"
            )
        if not 0 <= sample.target_move_index < self.output_size:
            raise ValueError(
                f"Target move index {sample.target_move_index} outside move space {self.output_size}"
            )

    def train_batch(self, samples: Sequence) -> float:
        """Train on one mini-batch and apply a single weight update.

        Every sample runs forward and backward with its gradients accumulated;
        only then does each layer apply ``update_weights`` once.

        Args:
            samples: TrainingSample-like objects with ``board_state``,
                ``target_move_index`` and ``outcome_weight``

        Returns:
            Mean squared-error loss over the batch (measured before the update)
        """
        samples = list(samples)
        batch_size = len(samples)
        if batch_size == 0:
            return 0.0
        for sample in samples:
            self._check_sample(sample)

        with self._train_lock:
            try:
                if batch_size > self.batch_parallel_threshold:
                    total_loss = self._accumulate_parallel(samples)
                else:
                    total_loss = self._accumulate_sequential(samples)
            except BaseException:
                # A half-accumulated batch must not leak into the next update
                for layer in self._layers:
                    layer.zero_grad()
                raise

            learning_rate = self.learning_rate
            layers = self._layers

            def update(lo: int, hi: int) -> None:
                for i in range(lo, hi):
                    layers[i].update_weights(learning_rate, batch_size)

            parallel_for(0, len(layers), update, LAYER_PARALLEL_THRESHOLD, LAYER_MIN_CHUNK)

        mean_loss = total_loss / batch_size
        logger.debug(f"Trained batch of {batch_size} samples: loss={mean_loss:.4f}")
        return mean_loss

    def _accumulate_sequential(self, samples: Sequence) -> float:
        total_loss = 0.0
        for sample in samples:
            predicted = self._forward_cached(sample.board_state)
            total_loss += squared_error(predicted, sample.target_move_index)

            grad = self._output_grad(predicted, sample.target_move_index, sample.outcome_weight)
            for layer in reversed(self._layers):
                grad = layer.backward_accumulate(grad)
        return total_loss

    def _accumulate_parallel(self, samples: Sequence) -> float:
        layers = self._layers

        def run(lo: int, hi: int):
            # Task-local buffers; merged once per task below
            grad_weights = [np.zeros(l.shape, dtype=np.float32) for l in layers]
            grad_biases = [np.zeros(l.output_size, dtype=np.float32) for l in layers]
            task_loss = 0.0

            for sample in samples[lo:hi]:
                activations = self._infer(sample.board_state)
                predicted = activations[-1]
                task_loss += squared_error(predicted, sample.target_move_index)

                grad = self._output_grad(predicted, sample.target_move_index, sample.outcome_weight)
                for i in range(len(layers) - 1, -1, -1):
                    grad = layers[i].backpropagate(
                        grad, activations[i], activations[i + 1], grad_weights[i], grad_biases[i]
                    )
            return grad_weights, grad_biases, task_loss

        results = parallel_for(0, len(samples), run, self.batch_parallel_threshold, BATCH_MIN_CHUNK)

        total_loss = 0.0
        for grad_weights, grad_biases, task_loss in results:
            for layer, gw, gb in zip(layers, grad_weights, grad_biases):
                layer.accumulate_gradients(gw, gb)
            total_loss += task_loss
        return total_loss

    def loss(self, samples: Sequence) -> float:
        """Mean squared-error loss over samples, without training."""
        if not samples:
            return 0.0
        total = 0.0
        for sample in samples:
            self._check_sample(sample)
            total += squared_error(self._infer(sample.board_state)[-1], sample.target_move_index)
        return total / len(samples)

    def top_k(self, board_state: Sequence[int], k: int = 1, mask: Optional[np.ndarray] = None) -> np.ndarray:
        """Indices of the k highest-scoring moves, best first.

        Args:
            board_state: Integer board vector
            k: Number of moves to return
            mask: Optional boolean/0-1 array; masked-out moves are never returned
        """
        return rank_scores(self.predict(board_state), k=k, mask=mask)

    def __repr__(self) -> str:
        sizes = " -> ".join(str(s) for s in self.layer_sizes)
        return f"Network({sizes}, lr={self.learning_rate})"


def rank_scores(scores: np.ndarray, k: int = 1, mask: Optional[np.ndarray] = None) -> np.ndarray:
    """Indices of the k highest scores, best first, ties in index order.

    Non-finite and masked-out entries are never returned.
    """
    scores = np.asarray(scores, dtype=np.float64).copy()
    scores[~np.isfinite(scores)] = -np.inf
    if mask is not None:
        scores[np.asarray(mask) <= 0] = -np.inf

    candidates = np.flatnonzero(np.isfinite(scores))
    if candidates.size == 0:
        return candidates
    order = np.argsort(-scores[candidates], kind="stable")
    return candidates[order[:k]]


def count_parameters(network: Network) -> int:
    """Total number of trainable weights and biases."""
    return sum(l.weights.size + l.biases.size for l in network.layers)
