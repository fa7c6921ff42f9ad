"""
Approximation Quality

Compares network outputs with their targets element by element:

    delta          = outputs - targets
    absolute error = |delta|
    relative error = |delta| / (max(targets) - min(targets))

The relative error measures a miss against the range the targets span, so
it reads the same for functions of very different scale.
"""

import logging
from dataclasses import dataclass
from typing import Optional

import numpy as np

from nnkit import tensor
from nnkit.errors import EstimateError
from nnkit.log import get_logger


@dataclass
class EstimateResult:
    """
    Error statistics of outputs against targets.

    Attributes:
        max_absolute_error: Largest |output - target|
        avg_absolute_error: Mean |output - target|
        max_relative_error: Largest absolute error divided by the target range
        max_relative_error_percents: The same, in percent
        deltas: output - target, element-wise
        absolute_deltas: |output - target|, element-wise
        relative_deltas: Absolute deltas divided by the target range
    """

    max_absolute_error: float
    avg_absolute_error: float
    max_relative_error: float
    max_relative_error_percents: float
    deltas: np.ndarray
    absolute_deltas: np.ndarray
    relative_deltas: np.ndarray

    def short_string(self) -> str:
        return (
            f"{{max abs: {self.max_absolute_error:e}, avg abs: {self.avg_absolute_error:e}, "
            f"max rel: {self.max_relative_error_percents:.2f}%}}"
        )


def estimate(
    outputs: np.ndarray,
    targets: np.ndarray,
    logger: Optional[logging.Logger] = None,
) -> EstimateResult:
    """
    Measure how far outputs are from targets.

    Args:
        outputs: Network outputs, shape (rows, outputs)
        targets: Expected values, same shape
        logger: Logger to use instead of the module logger

    Returns:
        EstimateResult

    Raises:
        EstimateError: If either array is missing or empty, the shapes
                       differ, or all targets are equal (no range to relate
                       errors to)
    """
    log = get_logger(__name__, logger)
    if outputs is None or targets is None:
        raise EstimateError("no outputs or targets provided")

    outputs = np.asarray(outputs, dtype=np.float64)
    targets = np.asarray(targets, dtype=np.float64)
    log.debug(
        "estimating: outputs [%s], targets [%s]",
        tensor.short_string(outputs),
        tensor.short_string(targets),
    )
    try:
        tensor.check_equal_shape(targets, outputs, "outputs")
    except ValueError as err:
        raise EstimateError("can not compare outputs with targets") from err
    if targets.size == 0:
        raise EstimateError("no values to estimate")

    interval = float(np.max(targets) - np.min(targets))
    if interval == 0.0:
        raise EstimateError("targets have zero range")

    deltas = outputs - targets
    absolute_deltas = np.abs(deltas)
    relative_deltas = absolute_deltas / interval
    max_relative_error = float(np.max(relative_deltas))

    return EstimateResult(
        max_absolute_error=float(np.max(absolute_deltas)),
        avg_absolute_error=float(np.mean(absolute_deltas)),
        max_relative_error=max_relative_error,
        max_relative_error_percents=max_relative_error * 100,
        deltas=deltas,
        absolute_deltas=absolute_deltas,
        relative_deltas=relative_deltas,
    )
