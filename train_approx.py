#!/usr/bin/env python3
"""
Function Approximation Training Script

Trains small feed-forward networks to approximate y = sin(x) on [-pi, pi]
and keeps the best of several independent retries.

Usage:
    python train_approx.py
    python train_approx.py --retries 8 --parallel --epochs 2000 --log-level DEBUG

The script will:
1. Sample a synthetic dataset from the target function
2. Build one network, dataset and optimizer per retry
3. Train every retry with checkpointing on the tests part
4. Report the loss of every retry, and the loss and errors of the best network

Default Configuration:
    - Network: 1 -> 16 (tanh) -> 1 (linear), Glorot initialization
    - Loss: MSE
    - Optimizer: SGD, learn rate 0.05 decaying linearly to 0.001
"""

import argparse
import logging
import threading

import numpy as np

from nnkit.builders import ParamInitType
from nnkit.dataset import DataSplitParameters, generate
from nnkit.estimate import estimate
from nnkit.layers import LayerKind
from nnkit.log import setup_logging
from nnkit.loss import LossKind
from nnkit.network import NetworkBuilder
from nnkit.operation import OperationKind
from nnkit.optimizer import DecayType, SGDParameters, new_sgd
from nnkit.train import MultiParameters, multi_train

ACTIVATIONS = {
    "tanh": OperationKind.TANH_ACTIVATION,
    "sigmoid": OperationKind.SIGMOID_ACTIVATION,
    "param-sigmoid": OperationKind.SIGMOID_PARAM_ACTIVATION,
    "linear": OperationKind.LINEAR_ACTIVATION,
}


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Approximate sin(x) with a feed-forward network")
    parser.add_argument("--epochs", type=int, default=1000, help="Epochs per retry")
    parser.add_argument("--retries", type=int, default=4, help="Number of independent retries")
    parser.add_argument("--parallel", action="store_true", help="Run retries on a thread pool")
    parser.add_argument("--workers", type=int, default=None, help="Thread pool size")
    parser.add_argument("--samples", type=int, default=500, help="Number of generated samples")
    parser.add_argument("--hidden", type=int, default=16, help="Hidden layer size")
    parser.add_argument(
        "--activation",
        default="tanh",
        choices=sorted(ACTIVATIONS),
        help="Hidden layer activation",
    )
    parser.add_argument(
        "--keep-probability",
        type=float,
        default=None,
        help="Add dropout to the hidden layer with this keep probability",
    )
    parser.add_argument("--learn-rate", type=float, default=0.05, help="Initial learn rate")
    parser.add_argument("--stop-learn-rate", type=float, default=0.001, help="Final learn rate")
    parser.add_argument(
        "--decay",
        default=DecayType.LINEAR.value,
        choices=[decay.value for decay in DecayType],
        help="Learn rate decay",
    )
    parser.add_argument("--seed", type=int, default=None, help="Random seed")
    parser.add_argument("--log-level", default="INFO", help="Logging level (TRACE, DEBUG, INFO, ...)")
    return parser.parse_args(argv)


def main(argv=None):
    """Main training function."""
    args = parse_args(argv)
    logger = setup_logging(args.log_level)

    print("=" * 60)
    print("Function Approximation: sin(x)")
    print("=" * 60)
    print()

    seed_sequence = np.random.SeedSequence(args.seed)
    data_seed, network_seed = seed_sequence.spawn(2)
    network_rng = np.random.default_rng(network_seed)

    dataset = generate(
        np.sin,
        [(-np.pi, np.pi)],
        args.samples,
        DataSplitParameters(),
        rng=np.random.default_rng(data_seed),
    )
    print(f"Dataset: {dataset.short_string()}")

    hidden_kind = LayerKind.DENSE if args.keep_probability is None else LayerKind.DENSE_DROP
    builder = (
        NetworkBuilder(rng=network_rng, logger=logger)
        .loss_kind(LossKind.MSE)
        .add_layer_kind(hidden_kind)
        .add_inputs_count(1)
        .add_neurons_count(args.hidden)
        .add_param_init_type(ParamInitType.GLOROT)
        .add_activation_kind(ACTIVATIONS[args.activation])
        .add_layer_kind(LayerKind.DENSE)
        .add_inputs_count(args.hidden)
        .add_neurons_count(1)
        .add_param_init_type(ParamInitType.GLOROT)
        .add_activation_kind(OperationKind.LINEAR_ACTIVATION)
        .set_reset_after_build(True)
    )
    if args.keep_probability is not None:
        builder.add_keep_probability(args.keep_probability)

    sgd_parameters = SGDParameters(
        learn_rate=args.learn_rate,
        stop_learn_rate=args.stop_learn_rate,
        epochs_count=args.epochs,
        decay_type=DecayType(args.decay),
    )

    # Retries may build concurrently; the builder and its generator are shared.
    build_lock = threading.Lock()

    def build_network():
        with build_lock:
            return builder.build()

    parameters = MultiParameters(
        epochs_count=args.epochs,
        network_provider=build_network,
        dataset_provider=dataset.copy,
        optimizer_provider=lambda: new_sgd(sgd_parameters, logger=logger),
        retries_count=args.retries,
        parallel=args.parallel,
        max_workers=args.workers,
        seed=args.seed,
    )

    results = multi_train(parameters, logger=logger)

    print()
    print("Retries:")
    for index, result in enumerate(results.all_results):
        print(f"  [{index}] loss {result.loss:.6e}  {result.network!r}")
    print()
    best = results.best_result
    estimation = estimate(best.outputs, best.dataset.combine().y, logger=logger)
    print(f"Best loss: {best.loss:.6e}")
    print(f"Best errors: {estimation.short_string()}")
    print(f"Best network: {results.best_network.short_string()}")

    if logger.isEnabledFor(logging.DEBUG) and results.best_result.best is not None:
        logger.debug("best checkpoint epoch: %d", results.best_result.best.epoch)


if __name__ == "__main__":
    main()
