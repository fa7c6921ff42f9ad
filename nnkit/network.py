"""
Feed-Forward Network

A network chains layers and ends in a loss:

    x -> layer_0 -> layer_1 -> ... -> layer_n -> y
                                               loss(t, y)

One training step is::

    network.forward(x)
    network.loss(t)
    network.backward()
    network.apply_optim(optimizer)

Networks are compared with ``equal``/``equal_approx`` and hash by identity,
so they can key a dict of training results.
"""

import logging
from enum import Enum
from typing import List, Optional, Tuple

import numpy as np

from nnkit.builders import LayerBuilder, ParamInitType, SigmoidCoeffsRange
from nnkit.errors import BuilderError, CreateError, ExecError, FabricError
from nnkit.layers import Layer, is_layer
from nnkit.log import TRACE, get_logger
from nnkit.loss import Loss, create_loss, is_loss
from nnkit.operation import Operation, Optimizer

logger = logging.getLogger(__name__)


class NetworkKind(str, Enum):
    FEED_FORWARD = "feed forward neural network"

    def __str__(self) -> str:
        return self.value


class FeedForwardNetwork:
    """
    Sequence of layers followed by a loss.

    The constructor copies the loss and every layer, so the network never
    shares state with the objects it was built from.

    Args:
        loss: Loss computed on the last layer's output
        *layers: Layers in forward order; each layer's inputs count must
                 match the previous layer's size

    Raises:
        CreateError: If the loss or a layer is missing or sizes don't chain
    """

    kind = NetworkKind.FEED_FORWARD

    def __init__(self, loss: Loss, *layers: Layer):
        logger.debug("create %s", self.kind)
        if loss is None:
            raise CreateError("no loss provided")
        if len(layers) < 1:
            raise CreateError("no layers provided")

        for index, layer in enumerate(layers):
            if layer is None:
                raise CreateError(f"missing {index}'th layer")
            if index > 0 and layer.inputs_count != layers[index - 1].size:
                raise CreateError(
                    f"{index - 1}'th layer's size mismatch {index}'th layer's inputs count: "
                    f"{layers[index - 1].size} != {layer.inputs_count}"
                )

        self._loss = loss.copy()
        self._layers = [layer.copy() for layer in layers]

    @property
    def layers(self) -> Tuple[Layer, ...]:
        return tuple(self._layers)

    @property
    def inputs_count(self) -> int:
        return self._layers[0].inputs_count

    @property
    def outputs_count(self) -> int:
        return self._layers[-1].size

    def is_(self, kind) -> bool:
        return self.kind == kind

    def forward(self, x: np.ndarray) -> np.ndarray:
        """
        Forward pass through every layer.

        Raises:
            ExecError: If x is missing or a layer fails
        """
        if x is None:
            raise ExecError("forward on network: no input provided")

        y = np.array(x, dtype=np.float64)
        for index, layer in enumerate(self._layers):
            try:
                y = layer.forward(y)
            except ExecError as err:
                raise ExecError(f"forward on network: error processing {index}'th layer") from err
        return y

    def loss(self, targets: np.ndarray) -> float:
        """Loss of the last forward output against targets."""
        if targets is None:
            raise ExecError("loss on network: no targets provided")
        try:
            return self._loss.forward(targets, self._layers[-1].output())
        except ExecError as err:
            raise ExecError("loss on network: error computing loss") from err

    def backward(self) -> np.ndarray:
        """Backward pass from the loss gradient to the input gradient."""
        try:
            dx = self._loss.backward()
        except ExecError as err:
            raise ExecError("backward on network: error calculating loss gradient") from err

        for index in range(len(self._layers) - 1, -1, -1):
            try:
                dx = self._layers[index].backward(dx)
            except ExecError as err:
                raise ExecError(
                    f"backward on network: error calculating gradient on {index}'th layer"
                ) from err
        return dx

    def apply_optim(self, optimizer: Optimizer) -> None:
        if optimizer is None:
            raise ExecError("apply optimizer on network: no optimizer provided")
        for index, layer in enumerate(self._layers):
            try:
                layer.apply_optim(optimizer)
            except ExecError as err:
                raise ExecError(f"apply optimizer on network: error optimizing {index}'th layer") from err

    def copy(self) -> "FeedForwardNetwork":
        return FeedForwardNetwork(self._loss, *self._layers)

    def equal(self, other) -> bool:
        return self._equal(other, approx=False)

    def equal_approx(self, other) -> bool:
        return self._equal(other, approx=True)

    def _equal(self, other, approx: bool) -> bool:
        if other is None or not isinstance(other, FeedForwardNetwork):
            return False
        if len(self._layers) != len(other._layers):
            return False
        same_loss = self._loss.equal_approx(other._loss) if approx else self._loss.equal(other._loss)
        if not same_loss:
            return False
        for mine, theirs in zip(self._layers, other._layers):
            same = mine.equal_approx(theirs) if approx else mine.equal(theirs)
            if not same:
                return False
        return True

    def short_string(self) -> str:
        layers = ", ".join(layer.short_string() for layer in self._layers)
        return f"{{kind: {self.kind}, loss: {self._loss.kind}, layers: [{layers}]}}"

    def __repr__(self) -> str:
        sizes = " -> ".join([str(self.inputs_count)] + [str(layer.size) for layer in self._layers])
        return f"FeedForwardNetwork({sizes})"


class NetworkBuilder:
    """
    Builder for feed-forward networks.

    ``add_layer_kind`` starts a new layer builder; every other ``add_*``
    setter configures the most recently started one and is ignored if
    there is none yet.

    Example:
        network = (
            NetworkBuilder(rng=rng)
            .loss_kind(LossKind.MSE)
            .add_layer_kind(LayerKind.DENSE)
            .add_inputs_count(1)
            .add_neurons_count(8)
            .add_activation_kind(OperationKind.TANH_ACTIVATION)
            .add_layer_kind(LayerKind.DENSE)
            .add_inputs_count(8)
            .add_neurons_count(1)
            .add_activation_kind(OperationKind.LINEAR_ACTIVATION)
            .build()
        )
    """

    def __init__(
        self,
        kind=NetworkKind.FEED_FORWARD,
        rng: Optional[np.random.Generator] = None,
        logger: Optional[logging.Logger] = None,
    ):
        try:
            self.kind = NetworkKind(kind)
        except ValueError:
            raise BuilderError(f"error creating builder: not a network: {kind}") from None

        self._rng = rng if rng is not None else np.random.default_rng()
        self._logger = get_logger(__name__, logger)
        self._logger.debug("create new builder for %s", self.kind)

        self._loss: Optional[Loss] = None
        self._loss_kind = None
        self._layers: List[Layer] = []
        self._layer_builders: List[LayerBuilder] = []
        self._reset_after_build = False

    def loss(self, loss: Optional[Loss]) -> "NetworkBuilder":
        self._loss = loss
        return self

    def loss_kind(self, kind) -> "NetworkBuilder":
        if not is_loss(kind):
            self._logger.warning("%s is not a loss, loss kind not changed", kind)
            return self
        self._loss_kind = kind
        return self

    def add_layer(self, layer: Layer) -> "NetworkBuilder":
        self._layers.append(layer)
        return self

    def add_layer_kind(self, kind) -> "NetworkBuilder":
        if not is_layer(kind):
            self._logger.warning("%s is not a layer, layer not added", kind)
            return self
        builder = LayerBuilder(kind, rng=self._rng, logger=self._logger)
        builder.set_reset_after_build(self._reset_after_build)
        self._layer_builders.append(builder)
        return self

    def _last(self, configure) -> "NetworkBuilder":
        if self._layer_builders:
            configure(self._layer_builders[-1])
        return self

    def add_weight(self, weight: Operation) -> "NetworkBuilder":
        return self._last(lambda builder: builder.weight(weight))

    def add_bias(self, bias: Operation) -> "NetworkBuilder":
        return self._last(lambda builder: builder.bias(bias))

    def add_activation(self, activation: Operation) -> "NetworkBuilder":
        return self._last(lambda builder: builder.activation(activation))

    def add_dropout(self, dropout: Operation) -> "NetworkBuilder":
        return self._last(lambda builder: builder.dropout(dropout))

    def add_inputs_count(self, inputs_count: int) -> "NetworkBuilder":
        return self._last(lambda builder: builder.inputs_count(inputs_count))

    def add_neurons_count(self, neurons_count: int) -> "NetworkBuilder":
        return self._last(lambda builder: builder.neurons_count(neurons_count))

    def add_activation_kind(self, kind) -> "NetworkBuilder":
        return self._last(lambda builder: builder.activation_kind(kind))

    def add_sigmoid_coeffs(self, coeffs) -> "NetworkBuilder":
        return self._last(lambda builder: builder.sigmoid_coeffs(coeffs))

    def add_sigmoid_coeffs_range(self, coeffs_range: SigmoidCoeffsRange) -> "NetworkBuilder":
        return self._last(lambda builder: builder.sigmoid_coeffs_range(coeffs_range))

    def add_param_init_type(self, param_init_type: ParamInitType) -> "NetworkBuilder":
        return self._last(lambda builder: builder.param_init_type(param_init_type))

    def add_keep_probability(self, probability: float) -> "NetworkBuilder":
        return self._last(lambda builder: builder.keep_probability(probability))

    def set_reset_after_build(self, value: bool) -> "NetworkBuilder":
        self._reset_after_build = value
        for builder in self._layer_builders:
            builder.set_reset_after_build(value)
        return self

    def build(self) -> FeedForwardNetwork:
        """
        Build the network.

        Explicit layers added with ``add_layer`` win over layer builders.

        Raises:
            BuilderError: If the loss or the layers can't be obtained or the
                          network rejects them
        """
        self._logger.debug("build network %s", self.kind)
        loss = self._get_loss()
        layers = self._get_layers()
        try:
            return FeedForwardNetwork(loss, *layers)
        except CreateError as err:
            raise BuilderError(f"error building {self.kind}") from err

    def _get_loss(self) -> Loss:
        if self._loss is not None:
            return self._loss

        self._logger.log(TRACE, "no loss provided")
        if self._loss_kind is None:
            raise BuilderError("no loss provided and no loss kind configured")
        try:
            return create_loss(self._loss_kind)
        except FabricError as err:
            raise BuilderError("error building loss") from err

    def _get_layers(self) -> List[Layer]:
        if self._layers:
            return list(self._layers)

        self._logger.log(TRACE, "no layers provided")
        if not self._layer_builders:
            raise BuilderError("no layers provided and no layer builders configured")

        layers = []
        for index, builder in enumerate(self._layer_builders):
            try:
                layers.append(builder.build())
            except BuilderError as err:
                raise BuilderError(f"error building {index}'th layer") from err
        return layers
