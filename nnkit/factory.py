"""
Factories

Create operations and layers from a kind tag and positional arguments. The
builders use these once they have filled in every argument.
"""

import numbers

import numpy as np

from nnkit.activations import (
    LinearActivation,
    SigmoidActivation,
    SigmoidParamActivation,
    TanhActivation,
)
from nnkit.errors import CreateError, FabricError
from nnkit.layers import Layer, LayerKind, new_dense_drop_layer, new_dense_layer
from nnkit.operation import BiasAdd, Dropout, Operation, OperationKind, WeightMultiply

_STATELESS = {
    OperationKind.LINEAR_ACTIVATION: LinearActivation,
    OperationKind.SIGMOID_ACTIVATION: SigmoidActivation,
    OperationKind.TANH_ACTIVATION: TanhActivation,
}


def _parse_kind(enum_type, kind):
    try:
        return enum_type(kind)
    except ValueError:
        raise FabricError(f"unknown {enum_type.__name__}: {kind}") from None


def _argument(args, index: int, expected, what: str, kind):
    if len(args) <= index:
        raise FabricError(f"no {what} provided for {kind}")
    value = args[index]
    if not isinstance(value, expected):
        raise FabricError(f"argument {index} for {kind} is not a {what}: {type(value).__name__}")
    return value


def create_operation(kind, *args, rng=None) -> Operation:
    """
    Create an operation of the given kind.

    Args:
        kind: OperationKind (or its string value)
        *args: Kind-specific arguments:
            WEIGHT_MULTIPLY: weight matrix
            BIAS_ADD: bias vector
            SIGMOID_PARAM_ACTIVATION: coefficients vector
            DROPOUT: keep probability
        rng: Random generator for dropout masks

    Raises:
        FabricError: Unknown kind, missing or mistyped argument, or the
                     operation constructor rejected the argument
    """
    kind = _parse_kind(OperationKind, kind)

    try:
        if kind in _STATELESS:
            return _STATELESS[kind]()
        if kind == OperationKind.WEIGHT_MULTIPLY:
            return WeightMultiply(_argument(args, 0, np.ndarray, "weight matrix", kind))
        if kind == OperationKind.BIAS_ADD:
            return BiasAdd(_argument(args, 0, np.ndarray, "bias vector", kind))
        if kind == OperationKind.SIGMOID_PARAM_ACTIVATION:
            return SigmoidParamActivation(_argument(args, 0, np.ndarray, "coefficients vector", kind))
        if kind == OperationKind.DROPOUT:
            keep = _argument(args, 0, numbers.Real, "keep probability", kind)
            return Dropout(keep, rng=rng)
    except CreateError as err:
        raise FabricError(f"can not create {kind}") from err

    raise FabricError(f"unknown operation: {kind}")


def create_layer(kind, *args, rng=None) -> Layer:
    """
    Create a layer of the given kind.

    Args:
        kind: LayerKind (or its string value)
        *args: weight matrix, bias vector, activation operation and, for
               DENSE_DROP, keep probability
        rng: Random generator for the dropout masks

    Raises:
        FabricError: Unknown kind or unusable arguments
    """
    kind = _parse_kind(LayerKind, kind)

    weight = _argument(args, 0, np.ndarray, "weight matrix", kind)
    bias = _argument(args, 1, np.ndarray, "bias vector", kind)
    activation = _argument(args, 2, Operation, "operation", kind)
    try:
        if kind == LayerKind.DENSE:
            return new_dense_layer(weight, bias, activation)
        keep = _argument(args, 3, numbers.Real, "keep probability", kind)
        return new_dense_drop_layer(weight, bias, activation, keep, rng=rng)
    except CreateError as err:
        raise FabricError(f"can not create {kind}") from err
