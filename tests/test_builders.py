"""
Tests for the operation and layer builders.

Tests cover:
- Operation builder: defaults, sizing hints, initialization scales, reset
- Layer builder: explicit parts, sizing hints, size validation
- DenseDrop fallback to an always-keep dropout
"""

import logging

import numpy as np
import pytest

from nnkit.activations import SigmoidParamActivation, TanhActivation
from nnkit.builders import LayerBuilder, OperationBuilder, ParamInitType, SigmoidCoeffsRange
from nnkit.errors import BuilderError
from nnkit.layers import LayerKind
from nnkit.operation import BiasAdd, OperationKind, WeightMultiply


@pytest.fixture
def rng():
    return np.random.default_rng(2024)


class TestOperationBuilder:
    """OperationBuilder fills missing arguments before creating an operation."""

    def test_weight_from_sizes(self, rng):
        operation = (
            OperationBuilder(OperationKind.WEIGHT_MULTIPLY, rng=rng)
            .inputs_count(3)
            .neurons_count(5)
            .build()
        )

        assert isinstance(operation, WeightMultiply)
        assert operation.parameter().shape == (3, 5)

    def test_weight_without_sizes(self, rng):
        with pytest.raises(BuilderError):
            OperationBuilder(OperationKind.WEIGHT_MULTIPLY, rng=rng).inputs_count(3).build()

    def test_explicit_weight(self, rng):
        weight = np.array([[1.0, 2.0]])
        operation = OperationBuilder(OperationKind.WEIGHT_MULTIPLY, rng=rng).weight(weight).build()

        np.testing.assert_allclose(operation.parameter(), weight)

    def test_bias_glorot_needs_inputs(self, rng):
        builder = (
            OperationBuilder(OperationKind.BIAS_ADD, rng=rng)
            .neurons_count(4)
            .param_init_type(ParamInitType.GLOROT)
        )
        with pytest.raises(BuilderError):
            builder.build()

        bias = builder.inputs_count(2).build()
        assert isinstance(bias, BiasAdd)
        assert bias.neurons_count == 4

    def test_glorot_scale(self, rng):
        """Glorot init draws with scale 2 / (inputs + neurons)."""
        weight = (
            OperationBuilder(OperationKind.WEIGHT_MULTIPLY, rng=rng)
            .inputs_count(100)
            .neurons_count(100)
            .param_init_type(ParamInitType.GLOROT)
            .build()
            .parameter()
        )

        assert np.std(weight) == pytest.approx(0.01, rel=0.05)
        assert abs(np.mean(weight)) < 0.001

    def test_default_scale(self, rng):
        weight = (
            OperationBuilder(OperationKind.WEIGHT_MULTIPLY, rng=rng)
            .inputs_count(100)
            .neurons_count(100)
            .build()
            .parameter()
        )

        assert np.std(weight) == pytest.approx(1.0, rel=0.05)

    def test_default_sigmoid_coefficients(self, rng):
        """Coefficients are spaced linearly over [1, 4] by default."""
        operation = (
            OperationBuilder(OperationKind.SIGMOID_PARAM_ACTIVATION, rng=rng)
            .neurons_count(4)
            .build()
        )

        assert isinstance(operation, SigmoidParamActivation)
        np.testing.assert_allclose(operation.parameters()[0], [[1.0, 2.0, 3.0, 4.0]])

    def test_sigmoid_coefficients_range(self, rng):
        operation = (
            OperationBuilder(OperationKind.SIGMOID_PARAM_ACTIVATION, rng=rng)
            .neurons_count(3)
            .sigmoid_coeffs_range(SigmoidCoeffsRange(1.0, 2.0))
            .build()
        )

        np.testing.assert_allclose(operation.parameters()[0], [[1.0, 1.5, 2.0]])

    def test_default_dropout_keeps_everything(self, rng):
        dropout = OperationBuilder(OperationKind.DROPOUT, rng=rng).build()
        assert dropout.keep_probability == 1.0

    def test_zero_keep_probability_means_unset(self, rng):
        dropout = OperationBuilder(OperationKind.DROPOUT, rng=rng).keep_probability(0).build()
        assert dropout.keep_probability == 1.0

    def test_generated_coefficients_follow_neurons_count(self, rng):
        """Generated coefficients are dropped on reset, explicit ones are kept."""
        builder = (
            OperationBuilder(OperationKind.SIGMOID_PARAM_ACTIVATION, rng=rng)
            .neurons_count(3)
            .set_reset_after_build(True)
        )
        assert builder.build().coeffs_count == 3
        assert builder.neurons_count(5).build().coeffs_count == 5

        builder.sigmoid_coeffs([2.0, 3.0])
        builder.build()
        np.testing.assert_allclose(builder.build().parameters()[0], [[2.0, 3.0]])

    def test_invalid_dropout(self, rng):
        with pytest.raises(BuilderError):
            OperationBuilder(OperationKind.DROPOUT, rng=rng).keep_probability(1.5).build()

    def test_reset_after_build(self, rng):
        """With reset enabled every build draws fresh parameters."""
        builder = OperationBuilder(OperationKind.WEIGHT_MULTIPLY, rng=rng).inputs_count(2).neurons_count(2)
        first = builder.build()
        second = builder.build()
        assert first.equal(second)

        builder.set_reset_after_build(True)
        third = builder.build()
        fourth = builder.build()
        assert not third.equal(fourth)

    def test_unknown_kind(self):
        with pytest.raises(BuilderError):
            OperationBuilder("softmax activation")


class TestLayerBuilder:
    """LayerBuilder assembles dense layers from explicit parts or hints."""

    def test_nothing_configured(self, rng):
        """Without operations or sizing hints the build fails."""
        with pytest.raises(BuilderError):
            LayerBuilder(LayerKind.DENSE, rng=rng).build()

    def test_sizing_hints_only(self, rng):
        layer = (
            LayerBuilder(LayerKind.DENSE, rng=rng)
            .inputs_count(3)
            .neurons_count(4)
            .activation_kind(OperationKind.TANH_ACTIVATION)
            .build()
        )

        assert layer.inputs_count == 3
        assert layer.size == 4
        assert layer.forward(np.ones((2, 3))).shape == (2, 4)

    def test_explicit_operations(self, rng):
        weight = WeightMultiply(np.ones((2, 3)))
        bias = BiasAdd(np.zeros(3))

        layer = (
            LayerBuilder(LayerKind.DENSE, rng=rng)
            .weight(weight)
            .bias(bias)
            .activation(TanhActivation())
            .build()
        )

        assert layer.operations[0].equal(weight)
        assert layer.operations[0] is not weight

    def test_explicit_sizes_mismatch(self, rng):
        builder = (
            LayerBuilder(LayerKind.DENSE, rng=rng)
            .weight(WeightMultiply(np.ones((2, 3))))
            .bias(BiasAdd(np.zeros(4)))
            .activation(TanhActivation())
        )
        with pytest.raises(BuilderError):
            builder.build()

    def test_missing_bias_hint(self, rng):
        """An explicit weight does not tell the bias builder its size."""
        builder = (
            LayerBuilder(LayerKind.DENSE, rng=rng)
            .weight(WeightMultiply(np.ones((2, 3))))
            .activation(TanhActivation())
        )
        with pytest.raises(BuilderError):
            builder.build()

    def test_parametrized_sigmoid_from_hints(self, rng):
        layer = (
            LayerBuilder(LayerKind.DENSE, rng=rng)
            .inputs_count(2)
            .neurons_count(3)
            .activation_kind(OperationKind.SIGMOID_PARAM_ACTIVATION)
            .sigmoid_coeffs_range(SigmoidCoeffsRange(1.0, 2.0))
            .build()
        )

        np.testing.assert_allclose(layer.operations[2].parameters()[0], [[1.0, 1.5, 2.0]])

    def test_not_an_activation_kind(self, rng, caplog):
        """A non-activation kind is ignored with a warning."""
        builder = LayerBuilder(LayerKind.DENSE, rng=rng).inputs_count(2).neurons_count(2)

        with caplog.at_level(logging.WARNING, logger="nnkit"):
            builder.activation_kind(OperationKind.BIAS_ADD)

        assert "not an activation" in caplog.text
        with pytest.raises(BuilderError):
            builder.build()

    def test_dense_drop(self, rng):
        layer = (
            LayerBuilder(LayerKind.DENSE_DROP, rng=rng)
            .inputs_count(2)
            .neurons_count(3)
            .activation_kind(OperationKind.SIGMOID_ACTIVATION)
            .keep_probability(0.8)
            .build()
        )

        assert len(layer.operations) == 4
        assert layer.operations[3].keep_probability == 0.8

    def test_dense_drop_falls_back_to_keep_everything(self, rng, caplog):
        """An unbuildable dropout is replaced by one that keeps everything."""
        builder = (
            LayerBuilder(LayerKind.DENSE_DROP, rng=rng)
            .inputs_count(2)
            .neurons_count(3)
            .activation_kind(OperationKind.TANH_ACTIVATION)
            .keep_probability(1.5)
        )

        with caplog.at_level(logging.WARNING, logger="nnkit"):
            layer = builder.build()

        assert layer.operations[3].keep_probability == 1.0
        assert "keeps everything" in caplog.text

    def test_reset_after_build(self, rng):
        builder = (
            LayerBuilder(LayerKind.DENSE, rng=rng)
            .inputs_count(2)
            .neurons_count(2)
            .activation_kind(OperationKind.TANH_ACTIVATION)
            .set_reset_after_build(True)
        )

        assert not builder.build().equal(builder.build())

    def test_unknown_kind(self):
        with pytest.raises(BuilderError):
            LayerBuilder("convolution layer")
