"""
Training

Single training run:

    for each epoch:
        (on picked epochs) evaluate on the tests part, checkpoint the best
        shuffle the train part
        forward -> loss -> backward -> apply optimizer -> post-optimize
    evaluate the live network and the checkpoint on the valid part
    keep the better one, report its loss on the whole dataset

Multi training run: repeat single runs with fresh networks, datasets and
optimizers from providers, one after another or on a thread pool, and keep
the run with the lowest loss.

Functions:
    every_tenth_epoch: Default checkpoint epoch picker
    single_train: One training run
    multi_train: Many independent training runs
"""

import logging
import math
import os
import threading
import uuid
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Tuple

import numpy as np

from nnkit.dataset import Data, Dataset
from nnkit.errors import CancelledTrainError, ExecError, ParametersError, PreTrainError
from nnkit.log import TRACE, get_logger
from nnkit.network import FeedForwardNetwork
from nnkit.operation import Optimizer
from nnkit.optimizer import PostOptimize

EpochPicker = Callable[[int, int], bool]
NetworkProvider = Callable[[], FeedForwardNetwork]
DatasetProvider = Callable[[], Dataset]
OptimizerProvider = Callable[[], Tuple[Optimizer, PostOptimize]]


def every_tenth_epoch(epoch: int, epochs: int) -> bool:
    """Pick every (epochs // 10)-th epoch, or every epoch for short runs."""
    return epoch % max(1, epochs // 10) == 0


@dataclass(frozen=True)
class TrainId:
    id: uuid.UUID = field(default_factory=uuid.uuid4)
    parent_id: Optional[uuid.UUID] = None


@dataclass
class SingleParameters:
    """
    Configuration of one training run.

    Attributes:
        epochs_count: Number of epochs, at least 1
        network: Network to train in place
        dataset: Train, tests and valid data
        optimizer: Parameter update function
        post_optimize: Schedule hook, called once after every epoch's update
        train_id: Identity of this run
        test_epoch_picker: Chooses the epochs evaluated for checkpoints
        save_best: Keep a checkpoint of the best network on the tests part
        save_stats: Keep every tests-part evaluation in the result
        rng: Random generator for shuffling the train part
    """

    epochs_count: int
    network: Optional[FeedForwardNetwork]
    dataset: Optional[Dataset]
    optimizer: Optional[Optimizer]
    post_optimize: Optional[PostOptimize]
    train_id: TrainId = field(default_factory=TrainId)
    test_epoch_picker: EpochPicker = every_tenth_epoch
    save_best: bool = True
    save_stats: bool = False
    rng: Optional[np.random.Generator] = None


@dataclass
class EpochResult:
    """Network snapshot with its outputs and loss on some data part."""

    network: FeedForwardNetwork
    outputs: np.ndarray
    loss: float


@dataclass
class BestSingleResult(EpochResult):
    epoch: int = 0


@dataclass
class SingleResult:
    """
    Outcome of one training run.

    ``network``, ``outputs`` and ``loss`` describe the chosen network on the
    combined dataset. ``valid_loss`` and ``best_valid_loss`` are the losses of
    the live network and the checkpoint on the valid part.
    """

    train_id: TrainId
    dataset: Dataset
    network: FeedForwardNetwork
    outputs: np.ndarray
    loss: float
    valid_loss: float
    best: Optional[BestSingleResult] = None
    best_valid_loss: Optional[float] = None
    stats: Optional[Dict[int, EpochResult]] = None


def _check_single_parameters(parameters: Optional[SingleParameters]) -> None:
    if parameters is None:
        raise ParametersError("no parameters provided")
    if parameters.network is None:
        raise ParametersError("no network provided")
    if parameters.dataset is None:
        raise ParametersError("no dataset provided")
    if parameters.optimizer is None:
        raise ParametersError("no optimizer provided")
    if parameters.post_optimize is None:
        raise ParametersError("no post optimize func provided")
    if parameters.epochs_count < 1:
        raise ParametersError(f"invalid epochs count provided: {parameters.epochs_count}")
    if parameters.train_id is None:
        raise ParametersError("no single train id provided")
    if parameters.test_epoch_picker is None:
        raise ParametersError("no test epoch picker provided")


def _evaluate(network: FeedForwardNetwork, data: Data) -> Tuple[float, np.ndarray]:
    outputs = network.forward(data.x)
    return network.loss(data.y), outputs


def single_train(
    parameters: SingleParameters,
    logger: Optional[logging.Logger] = None,
    stop_event: Optional[threading.Event] = None,
) -> SingleResult:
    """
    Run one training session.

    Args:
        parameters: Run configuration; the network is trained in place
        logger: Logger to use instead of the module logger
        stop_event: Checked before every epoch; when set the run is abandoned

    Returns:
        SingleResult for the network with the lower valid loss, live or
        checkpoint (a tie goes to the checkpoint)

    Raises:
        ParametersError: If a required parameter is missing or invalid
        CancelledTrainError: If stop_event was set
        ExecError: If any training step fails
    """
    log = get_logger(__name__, logger)
    _check_single_parameters(parameters)

    network = parameters.network
    dataset = parameters.dataset
    epochs = parameters.epochs_count
    rng = parameters.rng if parameters.rng is not None else np.random.default_rng()
    train_id = parameters.train_id

    log.info(
        "start single train run: parent id [%s], id [%s], epochs count [%d], network %s, dataset %s",
        train_id.parent_id,
        train_id.id,
        epochs,
        network.short_string(),
        dataset.short_string(),
    )

    best = BestSingleResult(network=None, outputs=None, loss=math.inf) if parameters.save_best else None
    stats: Optional[Dict[int, EpochResult]] = {} if parameters.save_stats else None
    train_data = dataset.train.copy()

    for epoch in range(epochs):
        if stop_event is not None and stop_event.is_set():
            raise CancelledTrainError(f"train [{train_id.id}] cancelled on epoch [{epoch}]")

        if parameters.test_epoch_picker(epoch, epochs):
            try:
                loss, outputs = _evaluate(network, dataset.tests)
            except ExecError as err:
                raise ExecError(f"error calculating loss on epoch [{epoch}]") from err
            log.debug("loss on tests data on [%d/%d] epoch: %e", epoch, epochs, loss)

            if stats is not None:
                stats[epoch] = EpochResult(network.copy(), outputs, loss)

            if best is not None:
                if loss < best.loss:
                    log.log(TRACE, "loss [%e] became better on epoch [%d]", loss, epoch)
                    best.network = network.copy()
                    best.outputs = outputs.copy()
                    best.loss = loss
                    best.epoch = epoch
                else:
                    log.debug(
                        "loss [%e] became worse for epoch [%d] comparing to [%e] at epoch [%d]",
                        loss,
                        epoch,
                        best.loss,
                        best.epoch,
                    )

        train_data, _ = train_data.shuffle(rng)
        try:
            network.forward(train_data.x)
            network.loss(train_data.y)
            network.backward()
            network.apply_optim(parameters.optimizer)
        except ExecError as err:
            raise ExecError(f"error training on epoch [{epoch}]") from err
        parameters.post_optimize()

    valid_loss = _valid_loss(network, dataset.valid, "trained", log)
    chosen = network.copy()
    best_valid_loss = None
    if best is not None and best.network is not None:
        best_valid_loss = _valid_loss(best.network, dataset.valid, "checkpoint", log)
        log.info(
            "valid loss of trained network [%e], of checkpoint from epoch [%d] [%e]",
            valid_loss,
            best.epoch,
            best_valid_loss,
        )
        if best_valid_loss <= valid_loss:
            chosen = best.network

    try:
        loss, outputs = _evaluate(chosen, dataset.combine())
    except ExecError as err:
        raise ExecError("error calculating loss on combined data") from err
    log.info("done train network %s, loss on all (combined) data: %e", chosen.short_string(), loss)

    return SingleResult(
        train_id=train_id,
        dataset=dataset,
        network=chosen,
        outputs=outputs,
        loss=loss,
        valid_loss=valid_loss,
        best=best if best is not None and best.network is not None else None,
        best_valid_loss=best_valid_loss,
        stats=stats,
    )


def _valid_loss(network: FeedForwardNetwork, data: Data, name: str, log: logging.Logger) -> float:
    try:
        loss, _ = _evaluate(network, data)
    except ExecError as err:
        log.warning("can not evaluate %s network on valid data: %s", name, err)
        return math.inf
    return loss


@dataclass
class MultiParameters:
    """
    Configuration of a multi training run.

    The providers are called once per retry, so every retry trains its own
    network on its own dataset with its own optimizer schedule.

    Attributes:
        epochs_count: Epochs per retry
        network_provider: Creates a freshly initialized network
        dataset_provider: Creates the dataset
        optimizer_provider: Creates (optimizer, post_optimize)
        retries_count: Number of independent retries, at least 1
        parallel: Run retries on a thread pool
        max_workers: Pool size, defaults to min(retries, CPU count)
        seed: Seed for the per-retry shuffling generators
    """

    epochs_count: int
    network_provider: Optional[NetworkProvider]
    dataset_provider: Optional[DatasetProvider]
    optimizer_provider: Optional[OptimizerProvider]
    retries_count: int = 1
    parallel: bool = False
    max_workers: Optional[int] = None
    train_id: TrainId = field(default_factory=TrainId)
    test_epoch_picker: EpochPicker = every_tenth_epoch
    save_best: bool = True
    save_stats: bool = False
    seed: Optional[int] = None


@dataclass
class MultiResults:
    train_id: TrainId
    best_result: Optional[SingleResult] = None
    all_results: List[SingleResult] = field(default_factory=list)

    @property
    def best_network(self) -> Optional[FeedForwardNetwork]:
        return self.best_result.network if self.best_result is not None else None

    @property
    def network_results(self) -> Dict[FeedForwardNetwork, float]:
        """Loss of every retry's network, keyed by the network itself."""
        return {result.network: result.loss for result in self.all_results}

    def add(self, result: SingleResult) -> None:
        self.all_results.append(result)
        if self.best_result is None or result.loss < self.best_result.loss:
            self.best_result = result


def _check_multi_parameters(parameters: Optional[MultiParameters]) -> None:
    if parameters is None:
        raise ParametersError("no parameters provided")
    if parameters.network_provider is None:
        raise ParametersError("no network provider")
    if parameters.dataset_provider is None:
        raise ParametersError("no dataset provider")
    if parameters.optimizer_provider is None:
        raise ParametersError("no optimizer provider")
    if parameters.epochs_count < 1:
        raise ParametersError(f"invalid epochs count provided: {parameters.epochs_count}")
    if parameters.retries_count < 1:
        raise ParametersError(f"invalid retries count provided: {parameters.retries_count}")
    if parameters.max_workers is not None and parameters.max_workers < 1:
        raise ParametersError(f"invalid max workers provided: {parameters.max_workers}")
    if parameters.test_epoch_picker is None:
        raise ParametersError("no test epoch picker provided")


def _prepare_single(parameters: MultiParameters, rng: np.random.Generator) -> SingleParameters:
    try:
        network = parameters.network_provider()
        dataset = parameters.dataset_provider()
        optimizer, post_optimize = parameters.optimizer_provider()
    except Exception as err:
        raise PreTrainError("provider failed") from err

    return SingleParameters(
        epochs_count=parameters.epochs_count,
        network=network,
        dataset=dataset,
        optimizer=optimizer,
        post_optimize=post_optimize,
        train_id=TrainId(parent_id=parameters.train_id.id),
        test_epoch_picker=parameters.test_epoch_picker,
        save_best=parameters.save_best,
        save_stats=parameters.save_stats,
        rng=rng,
    )


def multi_train(
    parameters: MultiParameters,
    logger: Optional[logging.Logger] = None,
) -> MultiResults:
    """
    Run ``retries_count`` independent training runs and keep the best.

    In parallel mode the first failing retry stops the others: they notice
    on their next epoch and end with CancelledTrainError.

    Returns:
        MultiResults with one SingleResult per retry

    Raises:
        ParametersError: If a required parameter is missing or invalid
        ExecError: Wrapping the first failure of any retry (its cause is a
                   PreTrainError if a provider failed)
    """
    log = get_logger(__name__, logger)
    _check_multi_parameters(parameters)

    log.info(
        "start multi train run: id [%s], retries [%d], epochs count [%d], parallel [%s]",
        parameters.train_id.id,
        parameters.retries_count,
        parameters.epochs_count,
        parameters.parallel,
    )
    seeds = np.random.SeedSequence(parameters.seed).spawn(parameters.retries_count)
    rngs = [np.random.default_rng(seed) for seed in seeds]

    if parameters.parallel:
        results = _multi_train_parallel(parameters, rngs, log)
    else:
        results = _multi_train_sequential(parameters, rngs, log)

    log.info(
        "done multi train run [%s], best loss: %e",
        parameters.train_id.id,
        results.best_result.loss,
    )
    return results


def _multi_train_sequential(
    parameters: MultiParameters, rngs: List[np.random.Generator], log: logging.Logger
) -> MultiResults:
    results = MultiResults(train_id=parameters.train_id)
    for index, rng in enumerate(rngs):
        try:
            single = _prepare_single(parameters, rng)
            results.add(single_train(single, logger=log))
        except Exception as err:
            raise ExecError(f"error running [{index}] train") from err
    return results


def _multi_train_parallel(
    parameters: MultiParameters, rngs: List[np.random.Generator], log: logging.Logger
) -> MultiResults:
    results = MultiResults(train_id=parameters.train_id)
    lock = threading.Lock()
    stop_event = threading.Event()
    max_workers = parameters.max_workers or min(len(rngs), os.cpu_count() or 1)

    def run(rng: np.random.Generator) -> None:
        if stop_event.is_set():
            raise CancelledTrainError("train cancelled before start")
        single = _prepare_single(parameters, rng)
        result = single_train(single, logger=log, stop_event=stop_event)
        with lock:
            results.add(result)

    first_error: Optional[Tuple[int, BaseException]] = None
    with ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="train") as executor:
        futures = {executor.submit(run, rng): index for index, rng in enumerate(rngs)}
        for future in as_completed(futures):
            err = future.exception()
            if err is None or first_error is not None:
                continue
            first_error = (futures[future], err)
            log.warning("train [%d] failed, cancelling the others: %s", futures[future], err)
            stop_event.set()

    if first_error is not None:
        index, err = first_error
        raise ExecError(f"error running [{index}] train") from err
    return results
