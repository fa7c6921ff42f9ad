"""
Stochastic Gradient Descent

``new_sgd`` returns two callables:

    optimizer(param, grad) -> param - grad * learn_rate
    post_optimize()        -> advance the learn-rate schedule by one epoch

The optimizer reads the current learn rate at call time, so the trainer
applies it to every parameter of the network first and calls
``post_optimize`` once afterwards, exactly once per epoch.

Learning rate schedule (only when a stop rate, an epoch count or the
exponential type is given):

    LINEAR:       lr <- lr - (lr0 - stop) / (epochs - 1)
    EXPONENTIAL:  lr <- lr * (stop / lr0) ** (1 / epochs)

Each step is only taken while lr is still above the stop rate, and never
takes it below the stop rate.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional, Tuple

import numpy as np

from nnkit.log import TRACE, get_logger
from nnkit.operation import Optimizer

DEFAULT_LEARN_RATE = 0.05
DEFAULT_STOP_LEARN_RATE = 0.001
DEFAULT_EPOCHS_COUNT = 1000

PostOptimize = Callable[[], None]


class DecayType(Enum):
    LINEAR = "linear"
    EXPONENTIAL = "exponential"


@dataclass
class SGDParameters:
    """
    SGD configuration. Zero values mean "not set" and fall back to defaults.

    Attributes:
        learn_rate: Initial learning rate
        stop_learn_rate: Rate the schedule decays towards
        epochs_count: Number of epochs over which the schedule runs
        decay_type: Shape of the schedule
    """

    learn_rate: float = 0.0
    stop_learn_rate: float = 0.0
    epochs_count: int = 0
    decay_type: DecayType = DecayType.LINEAR


class SGD:
    """
    Learn rate shared by the optimizer and its schedule.

    Use ``new_sgd`` to create one; it hands out the bound ``optimize`` and
    ``post_optimize`` methods.
    """

    def __init__(
        self,
        learn_rate: float,
        stop_learn_rate: float,
        step: Optional[Callable[[float], float]] = None,
    ):
        self.learn_rate = learn_rate
        self.stop_learn_rate = stop_learn_rate
        self._step = step

    def optimize(self, param: np.ndarray, grad: np.ndarray) -> np.ndarray:
        return param - grad * self.learn_rate

    def post_optimize(self) -> None:
        if self._step is not None and self.learn_rate > self.stop_learn_rate:
            self.learn_rate = max(self.stop_learn_rate, self._step(self.learn_rate))


def new_sgd(
    parameters: Optional[SGDParameters] = None,
    logger: Optional[logging.Logger] = None,
) -> Tuple[Optimizer, PostOptimize]:
    """
    Create an SGD optimizer and its post-optimize hook.

    Args:
        parameters: SGD configuration, defaults for everything if None
        logger: Logger to use instead of the module logger

    Returns:
        Tuple of (optimizer, post_optimize)
    """
    log = get_logger(__name__, logger)
    if parameters is None:
        parameters = SGDParameters()

    learn_rate = parameters.learn_rate
    if not learn_rate:
        learn_rate = DEFAULT_LEARN_RATE
        log.debug("no learn rate provided, using default value: %s", DEFAULT_LEARN_RATE)

    decay_type = DecayType(parameters.decay_type)
    needs_decay = (
        bool(parameters.stop_learn_rate)
        or bool(parameters.epochs_count)
        or decay_type == DecayType.EXPONENTIAL
    )

    stop_learn_rate = 0.0
    step = None
    if needs_decay:
        stop_learn_rate = parameters.stop_learn_rate
        if not stop_learn_rate:
            stop_learn_rate = DEFAULT_STOP_LEARN_RATE
            log.debug("no stop learn rate provided, using default value: %s", DEFAULT_STOP_LEARN_RATE)
        epochs_count = parameters.epochs_count
        if not epochs_count:
            epochs_count = DEFAULT_EPOCHS_COUNT
            log.debug("no epochs count provided, using default value: %s", DEFAULT_EPOCHS_COUNT)

        if learn_rate < stop_learn_rate:
            log.warning(
                "learn rate [%s] less than stop learn rate [%s], using default values: %s and %s",
                learn_rate,
                stop_learn_rate,
                DEFAULT_LEARN_RATE,
                DEFAULT_STOP_LEARN_RATE,
            )
            learn_rate = DEFAULT_LEARN_RATE
            stop_learn_rate = DEFAULT_STOP_LEARN_RATE

        if decay_type == DecayType.EXPONENTIAL:
            factor = (stop_learn_rate / learn_rate) ** (1.0 / epochs_count)
            log.log(
                TRACE,
                "exponential learn rate decay with per-epoch factor [%e] (lr %s, stop %s, epochs %d)",
                factor,
                learn_rate,
                stop_learn_rate,
                epochs_count,
            )
            step = lambda value: value * factor  # noqa: E731
        else:
            delta = (learn_rate - stop_learn_rate) / max(1, epochs_count - 1)
            log.log(
                TRACE,
                "linear learn rate decay with per-epoch delta [%e] (lr %s, stop %s, epochs %d)",
                delta,
                learn_rate,
                stop_learn_rate,
                epochs_count,
            )
            step = lambda value: value - delta  # noqa: E731

    sgd = SGD(learn_rate, stop_learn_rate, step)
    return sgd.optimize, sgd.post_optimize
