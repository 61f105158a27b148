"""Binary model file format.

Layout (big-endian, no header, version or checksum):

    int32 layer_count
    per layer:
        int32 output_size
        int32 input_size
        float32[output_size * input_size]   weights, row-major
        float32[output_size]                biases

Any change to this layout breaks existing files.
"""

import os
import struct
import logging
import tempfile
import numpy as np
from pathlib import Path
from typing import BinaryIO, Optional, Sequence, Tuple, Union

from .layer import DenseLayer
from .network import Network, ShapeMismatchError


logger = logging.getLogger(__name__)

PathLike = Union[str, os.PathLike]

_INT = struct.Struct(">i")
_FLOAT = np.dtype(">f4")


class ModelFormatError(IOError):
    """Model file is truncated or structurally invalid."""


def _read_exact(f: BinaryIO, size: int, what: str) -> bytes:
    data = f.read(size)
    if len(data) != size:
        raise ModelFormatError(f"Unexpected end of file while reading {what} ({len(data)}/{size} bytes)")
    return data


def _read_int(f: BinaryIO, what: str) -> int:
    return _INT.unpack(_read_exact(f, _INT.size, what))[0]


def _read_floats(f: BinaryIO, count: int, what: str) -> np.ndarray:
    data = _read_exact(f, count * _FLOAT.itemsize, what)
    return np.frombuffer(data, dtype=_FLOAT).astype(np.float32)


def _read_layer_header(f: BinaryIO, index: int) -> Tuple[int, int]:
    output_size = _read_int(f, f"layer {index} output size")
    input_size = _read_int(f, f"layer {index} input size")
    if output_size <= 0 or input_size <= 0:
        raise ModelFormatError(f"Layer {index} has invalid shape {output_size}x{input_size}")
    return output_size, input_size


def _check_layer_fits(f: BinaryIO, index: int, output_size: int, input_size: int) -> None:
    """Reject a layer header whose parameters cannot be in the rest of the file.

    A corrupt header can declare billions of weights; this fails before
    any buffer of that size is requested.
    """
    needed = (output_size * input_size + output_size) * _FLOAT.itemsize
    remaining = os.fstat(f.fileno()).st_size - f.tell()
    if needed > remaining:
        raise ModelFormatError(
            f"Layer {index} declares {output_size}x{input_size} ({needed} bytes) "
            f"but only {remaining} bytes remain"
        )


def _read_layer_count(f: BinaryIO) -> int:
    count = _read_int(f, "layer count")
    if count <= 0:
        raise ModelFormatError(f"Invalid layer count {count}")
    return count


class ModelCodec:
    """Reads and writes networks in the binary model format."""

    @staticmethod
    def save(network: Network, path: PathLike) -> None:
        """Write a network to ``path``.

        The file is written next to the target and renamed into place, so an
        interrupted save never leaves a truncated model behind.

        Raises:
            OSError: If the file cannot be written
        """
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)

        fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=str(path.parent))
        try:
            with os.fdopen(fd, "wb") as f:
                layers = network.layers
                f.write(_INT.pack(len(layers)))
                for layer in layers:
                    f.write(_INT.pack(layer.output_size))
                    f.write(_INT.pack(layer.input_size))
                    f.write(layer.weights.astype(_FLOAT).tobytes(order="C"))
                    f.write(layer.biases.astype(_FLOAT).tobytes())
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_name, path)
        except BaseException:
            try:
                os.unlink(tmp_name)
            except OSError:
                pass
            raise

    @staticmethod
    def load(
        path: PathLike,
        network: Optional[Network] = None,
        allow_partial_load: bool = False,
        learning_rate: float = 0.001,
    ) -> Network:
        """Load a network from ``path``.

        Args:
            path: Model file
            network: Existing network to load into; its shapes must match the
                file unless ``allow_partial_load`` is set
            allow_partial_load: Copy only the overlap of declared and on-disk
                shapes; weights outside the overlap keep their current values
                and extra on-disk values are dropped
            learning_rate: Learning rate for a newly built network

        Returns:
            The loaded network (``network`` itself when one is given)

        Raises:
            ModelFormatError: On truncated or malformed files
            ShapeMismatchError: If shapes differ and partial loading is off
            OSError: If the file cannot be read
        """
        with open(path, "rb") as f:
            count = _read_layer_count(f)
            params = []
            for index in range(count):
                output_size, input_size = _read_layer_header(f, index)
                _check_layer_fits(f, index, output_size, input_size)
                weights = _read_floats(f, output_size * input_size, f"layer {index} weights")
                biases = _read_floats(f, output_size, f"layer {index} biases")
                params.append((weights.reshape(output_size, input_size), biases))
                if index > 0 and input_size != params[index - 1][0].shape[0]:
                    raise ModelFormatError(
                        f"Layer {index} input size {input_size} does not match "
                        f"layer {index - 1} output size {params[index - 1][0].shape[0]}"
                    )
            if f.read(1):
                raise ModelFormatError(f"Trailing data after {count} layers")

        if network is None:
            layers = []
            for weights, biases in params:
                layer = DenseLayer(weights.shape[1], weights.shape[0])
                layer.set_parameters(weights, biases)
                layers.append(layer)
            loaded = Network.from_layers(layers, learning_rate=learning_rate)
            logger.info(f"Loaded model {path}: {loaded}")
            return loaded

        _load_into(network, params, allow_partial_load, path)
        return network


def _load_into(
    network: Network,
    params: Sequence[Tuple[np.ndarray, np.ndarray]],
    allow_partial_load: bool,
    path: PathLike,
) -> None:
    layers = network.layers
    on_disk = [w.shape for w, _ in params]
    declared = [l.shape for l in layers]

    if on_disk == declared:
        for layer, (weights, biases) in zip(layers, params):
            layer.set_parameters(weights, biases)
        logger.info(f"Loaded model {path} into {network}")
        return

    if not allow_partial_load:
        raise ShapeMismatchError(f"Model {path} has layer shapes {on_disk}, network declares {declared}")

    logger.warning(
        f"Partially loading {path}: on-disk shapes {on_disk} vs declared {declared}; "
        f"weights outside the overlap are left unchanged"
    )
    for layer, (weights, biases) in zip(layers, params):
        rows = min(layer.output_size, weights.shape[0])
        cols = min(layer.input_size, weights.shape[1])
        new_weights = layer.weights.copy()
        new_biases = layer.biases.copy()
        new_weights[:rows, :cols] = weights[:rows, :cols]
        new_biases[:rows] = biases[:rows]
        layer.set_parameters(new_weights, new_biases)


def save_model(network: Network, path: PathLike) -> None:
    """Convenience wrapper for ``ModelCodec.save``."""
    ModelCodec.save(network, path)


def load_model(path: PathLike, **kwargs) -> Network:
    """Convenience wrapper for ``ModelCodec.load``."""
    return ModelCodec.load(path, **kwargs)


def load_or_create(
    path: PathLike,
    layer_sizes: Sequence[int],
    learning_rate: float = 0.001,
    seed: Optional[int] = None,
    allow_partial_load: bool = False,
) -> Network:
    """Load a model into a network of the declared architecture, or start fresh.

    A missing or unreadable file falls back to a newly initialized network.
    A file that reads fine but declares a different architecture is a
    configuration error and is raised unless ``allow_partial_load`` is set.

    Raises:
        ShapeMismatchError: If the file's topology differs from ``layer_sizes``
    """
    network = Network(layer_sizes, learning_rate=learning_rate, seed=seed)
    try:
        return ModelCodec.load(path, network=network, allow_partial_load=allow_partial_load)
    except FileNotFoundError:
        logger.info(f"No model at {path}, using a new model")
    except OSError as e:
        logger.warning(f"Could not load model {path} ({e}), using a new model")
    return network
