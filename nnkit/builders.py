"""
Operation and Layer Builders

Builders collect optional, pre-built pieces and sizing hints through fluent
setters, then ``build()`` fills every gap and validates the result:

    builder = (
        LayerBuilder(LayerKind.DENSE)
        .inputs_count(4)
        .neurons_count(8)
        .param_init_type(ParamInitType.GLOROT)
        .activation_kind(OperationKind.TANH_ACTIVATION)
    )
    layer = builder.build()

Missing weights and biases are drawn from a normal distribution (scale 1
for DEFAULT init, 2 / (inputs + neurons) for GLOROT init). Missing sigmoid
coefficients are spaced linearly over [1, 4]. A keep probability of 0 is
treated as unset and means keep everything. A DENSE_DROP layer whose
dropout can't be built falls back to a dropout that keeps everything.

With ``set_reset_after_build(True)`` a builder forgets its weight, bias and
generated coefficients after every successful build, so the same builder yields freshly
initialized objects each time it is called.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional

import numpy as np

from nnkit.errors import BuilderError, CreateError, FabricError
from nnkit.factory import create_operation
from nnkit.layers import Layer, LayerKind, check_dense_sizes
from nnkit.log import TRACE, get_logger
from nnkit.operation import Dropout, Operation, OperationKind, is_activation

DEFAULT_SIGMOID_COEFFS_LEFT = 1.0
DEFAULT_SIGMOID_COEFFS_RIGHT = 4.0
ALWAYS_KEEP = 1.0


class ParamInitType(Enum):
    DEFAULT = "default"
    GLOROT = "glorot"


@dataclass(frozen=True)
class SigmoidCoeffsRange:
    left: float = DEFAULT_SIGMOID_COEFFS_LEFT
    right: float = DEFAULT_SIGMOID_COEFFS_RIGHT


class OperationBuilder:
    """
    Builder for a single operation kind.

    Args:
        kind: Kind of the operations to build
        rng: Random generator for parameter initialization and dropout masks
        logger: Logger to use instead of the module logger
    """

    def __init__(
        self,
        kind,
        rng: Optional[np.random.Generator] = None,
        logger: Optional[logging.Logger] = None,
    ):
        try:
            self.kind = OperationKind(kind)
        except ValueError:
            raise BuilderError(f"error creating builder: not an operation: {kind}") from None

        self._rng = rng if rng is not None else np.random.default_rng()
        self._logger = get_logger(__name__, logger)
        self._logger.debug("create builder for %s", self.kind)

        self._param_init_type = ParamInitType.DEFAULT
        self._keep_probability: Optional[float] = None
        self._sigmoid_coeffs: Optional[np.ndarray] = None
        self._generated_coeffs: Optional[np.ndarray] = None
        self._sigmoid_coeffs_range: Optional[SigmoidCoeffsRange] = None
        self._weight: Optional[np.ndarray] = None
        self._bias: Optional[np.ndarray] = None
        self._inputs_count = 0
        self._neurons_count = 0
        self._reset_after_build = False

    def param_init_type(self, param_init_type: ParamInitType) -> "OperationBuilder":
        self._param_init_type = ParamInitType(param_init_type)
        return self

    def keep_probability(self, probability: float) -> "OperationBuilder":
        self._keep_probability = probability
        return self

    def sigmoid_coeffs(self, coeffs) -> "OperationBuilder":
        self._sigmoid_coeffs = None if coeffs is None else np.asarray(coeffs, dtype=np.float64)
        return self

    def sigmoid_coeffs_range(self, coeffs_range: SigmoidCoeffsRange) -> "OperationBuilder":
        self._sigmoid_coeffs_range = coeffs_range
        return self

    def weight(self, weight) -> "OperationBuilder":
        self._weight = None if weight is None else np.asarray(weight, dtype=np.float64)
        return self

    def bias(self, bias) -> "OperationBuilder":
        self._bias = None if bias is None else np.asarray(bias, dtype=np.float64)
        return self

    def inputs_count(self, inputs_count: int) -> "OperationBuilder":
        self._inputs_count = inputs_count
        return self

    def neurons_count(self, neurons_count: int) -> "OperationBuilder":
        self._neurons_count = neurons_count
        return self

    def set_reset_after_build(self, value: bool) -> "OperationBuilder":
        self._reset_after_build = value
        return self

    def build(self) -> Operation:
        """
        Build the operation.

        Raises:
            BuilderError: If sizing hints are missing or the operation can't
                          be created from the collected values
        """
        self._logger.debug("build operation %s", self.kind)
        self._prepare()

        args = ()
        if self.kind == OperationKind.DROPOUT:
            args = (self._keep_probability,)
        elif self.kind == OperationKind.SIGMOID_PARAM_ACTIVATION:
            args = (self._coeffs(),)
        elif self.kind == OperationKind.WEIGHT_MULTIPLY:
            args = (self._weight,)
        elif self.kind == OperationKind.BIAS_ADD:
            args = (self._bias,)

        try:
            operation = create_operation(self.kind, *args, rng=self._rng)
        except FabricError as err:
            raise BuilderError(f"error building {self.kind}") from err

        if self._reset_after_build:
            self._weight = None
            self._bias = None
            self._generated_coeffs = None
        return operation

    def _coeffs(self) -> Optional[np.ndarray]:
        if self._sigmoid_coeffs is not None:
            return self._sigmoid_coeffs
        return self._generated_coeffs

    def _prepare(self) -> None:
        if self.kind == OperationKind.DROPOUT:
            # zero keep probability means unset
            if not self._keep_probability:
                self._keep_probability = ALWAYS_KEEP

        elif self.kind == OperationKind.SIGMOID_PARAM_ACTIVATION:
            if self._coeffs() is None:
                if self._neurons_count < 1:
                    raise BuilderError(f"no neurons count provided: {self._neurons_count}")
                coeffs_range = self._sigmoid_coeffs_range or SigmoidCoeffsRange()
                self._generated_coeffs = np.linspace(
                    coeffs_range.left, coeffs_range.right, self._neurons_count
                )

        elif self.kind == OperationKind.WEIGHT_MULTIPLY:
            if self._weight is None:
                if self._inputs_count < 1 or self._neurons_count < 1:
                    raise BuilderError(
                        f"no inputs/neurons count provided: {self._inputs_count}, {self._neurons_count}"
                    )
                self._weight = self._rng.normal(
                    0.0, self._scale(), size=(self._inputs_count, self._neurons_count)
                )

        elif self.kind == OperationKind.BIAS_ADD:
            if self._bias is None:
                if self._neurons_count < 1:
                    raise BuilderError(f"no neurons count provided: {self._neurons_count}")
                if self._param_init_type == ParamInitType.GLOROT and self._inputs_count < 1:
                    raise BuilderError(
                        f"no inputs count provided for glorot init: {self._inputs_count}"
                    )
                self._bias = self._rng.normal(0.0, self._scale(), size=self._neurons_count)

    def _scale(self) -> float:
        if self._param_init_type == ParamInitType.GLOROT:
            return 2.0 / (self._inputs_count + self._neurons_count)
        return 1.0


class LayerBuilder:
    """
    Builder for DENSE and DENSE_DROP layers.

    Explicit operations take precedence; whatever is missing is built from
    the sizing hints by per-operation builders.
    """

    def __init__(
        self,
        kind,
        rng: Optional[np.random.Generator] = None,
        logger: Optional[logging.Logger] = None,
    ):
        try:
            self.kind = LayerKind(kind)
        except ValueError:
            raise BuilderError(f"error creating builder: not a layer: {kind}") from None

        self._rng = rng if rng is not None else np.random.default_rng()
        self._logger = get_logger(__name__, logger)
        self._logger.debug("create new builder for %s", self.kind)

        self._weight: Optional[Operation] = None
        self._bias: Optional[Operation] = None
        self._activation: Optional[Operation] = None
        self._dropout: Optional[Operation] = None

        self._weight_builder = OperationBuilder(OperationKind.WEIGHT_MULTIPLY, self._rng, logger)
        self._bias_builder = OperationBuilder(OperationKind.BIAS_ADD, self._rng, logger)
        self._dropout_builder = OperationBuilder(OperationKind.DROPOUT, self._rng, logger)
        self._activation_builder: Optional[OperationBuilder] = None

        self._inputs_count = 0
        self._neurons_count = 0
        self._sigmoid_coeffs = None
        self._sigmoid_coeffs_range: Optional[SigmoidCoeffsRange] = None
        self._reset_after_build = False

    def weight(self, weight: Optional[Operation]) -> "LayerBuilder":
        self._weight = weight
        return self

    def bias(self, bias: Optional[Operation]) -> "LayerBuilder":
        self._bias = bias
        return self

    def activation(self, activation: Optional[Operation]) -> "LayerBuilder":
        self._activation = activation
        return self

    def dropout(self, dropout: Optional[Operation]) -> "LayerBuilder":
        self._dropout = dropout
        return self

    def inputs_count(self, inputs_count: int) -> "LayerBuilder":
        self._inputs_count = inputs_count
        return self

    def neurons_count(self, neurons_count: int) -> "LayerBuilder":
        self._neurons_count = neurons_count
        return self

    def activation_kind(self, kind) -> "LayerBuilder":
        if not is_activation(kind):
            self._logger.warning("%s is not an activation, activation kind not changed", kind)
            return self
        self._activation_builder = OperationBuilder(kind, self._rng, self._logger)
        self._activation_builder.set_reset_after_build(self._reset_after_build)
        return self

    def sigmoid_coeffs(self, coeffs) -> "LayerBuilder":
        self._sigmoid_coeffs = coeffs
        return self

    def sigmoid_coeffs_range(self, coeffs_range: SigmoidCoeffsRange) -> "LayerBuilder":
        self._sigmoid_coeffs_range = coeffs_range
        return self

    def param_init_type(self, param_init_type: ParamInitType) -> "LayerBuilder":
        self._weight_builder.param_init_type(param_init_type)
        self._bias_builder.param_init_type(param_init_type)
        return self

    def keep_probability(self, probability: float) -> "LayerBuilder":
        self._dropout_builder.keep_probability(probability)
        return self

    def set_reset_after_build(self, value: bool) -> "LayerBuilder":
        self._reset_after_build = value
        for builder in (self._weight_builder, self._bias_builder, self._dropout_builder):
            builder.set_reset_after_build(value)
        if self._activation_builder is not None:
            self._activation_builder.set_reset_after_build(value)
        return self

    def build(self) -> Layer:
        """
        Build the layer.

        Raises:
            BuilderError: If an operation can't be obtained or the sizes of
                          weight, bias and activation disagree
        """
        self._logger.debug("build layer %s", self.kind)
        self._push_sizes()

        weight = self._get(self._weight, OperationKind.WEIGHT_MULTIPLY, self._weight_builder)
        bias = self._get(self._bias, OperationKind.BIAS_ADD, self._bias_builder)
        activation = self._get_activation()
        try:
            check_dense_sizes(weight, bias, activation)
        except ValueError as err:
            raise BuilderError(f"error building {self.kind}: {err}") from err

        operations = [weight, bias, activation]
        if self.kind == LayerKind.DENSE_DROP:
            operations.append(self._get_dropout())

        try:
            layer = Layer(
                self.kind,
                operations,
                inputs_count=weight.inputs_count,
                size=weight.neurons_count,
            )
        except CreateError as err:
            raise BuilderError(f"error building {self.kind}") from err

        if self._reset_after_build:
            self._weight = None
            self._bias = None
            self._activation = None
            self._dropout = None
        return layer

    def _push_sizes(self) -> None:
        builders = [self._weight_builder, self._bias_builder]
        if self._activation_builder is not None:
            builders.append(self._activation_builder)
            if self._sigmoid_coeffs is not None:
                self._activation_builder.sigmoid_coeffs(self._sigmoid_coeffs)
            if self._sigmoid_coeffs_range is not None:
                self._activation_builder.sigmoid_coeffs_range(self._sigmoid_coeffs_range)
        for builder in builders:
            builder.inputs_count(self._inputs_count).neurons_count(self._neurons_count)

    def _get(self, given: Optional[Operation], kind: OperationKind, builder: OperationBuilder):
        if given is not None and given.is_(kind):
            return given.copy()

        self._logger.log(TRACE, "no %s provided, building one", kind)
        operation = builder.build()
        if not operation.is_(kind):
            raise BuilderError(f"built operation is not {kind}")
        return operation

    def _get_activation(self) -> Operation:
        if self._activation is not None and self._activation.is_activation:
            return self._activation.copy()

        if self._activation_builder is None:
            raise BuilderError(
                "no activation provided and no activation builder configured "
                "(perhaps configured activation kind was not actual activation)"
            )
        activation = self._activation_builder.build()
        if not activation.is_activation:
            raise BuilderError("built operation is not activation too")
        return activation

    def _get_dropout(self) -> Operation:
        if self._dropout is not None and self._dropout.is_(OperationKind.DROPOUT):
            return self._dropout.copy()

        try:
            return self._dropout_builder.build()
        except BuilderError as err:
            self._logger.warning(
                "error building %s (%s), using dropout that keeps everything",
                OperationKind.DROPOUT,
                err.__cause__ or err,
            )
            return Dropout(ALWAYS_KEEP, rng=self._rng)
