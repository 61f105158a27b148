"""Dense move-prediction network, its kernels and its file format."""

from .layer import DenseLayer
from .network import Network, ShapeMismatchError, count_parameters, rank_scores, INPUT_SCALE
from .loss import squared_error
from .codec import ModelCodec, ModelFormatError, save_model, load_model, load_or_create

__all__ = [
    "DenseLayer",
    "Network",
    "ShapeMismatchError",
    "count_parameters",
    "rank_scores",
    "INPUT_SCALE",
    "squared_error",
    "ModelCodec",
    "ModelFormatError",
    "save_model",
    "load_model",
    "load_or_create",
]
