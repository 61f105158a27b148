"""Loss for move prediction.

The training gradient is ``(predicted - one_hot(target)) * outcome_weight``,
which is the gradient of half the squared error. The loss here matches it and
is only used for progress reporting; the engine never differentiates it.
"""

import numpy as np


def squared_error(predicted: np.ndarray, target: int) -> float:
    """Half squared error between raw scores and a one-hot target.

    Args:
        predicted: Network output (move_space,)
        target: Index of the played move

    Returns:
        0.5 * sum((predicted - one_hot(target))^2)
    """
    diff = np.asarray(predicted, dtype=np.float64).copy()
    diff[target] -= 1.0
    return 0.5 * float(np.dot(diff, diff))

