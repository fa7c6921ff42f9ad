"""
Tests for activation functions module.

Tests cover:
- sigmoid: values, numerical stability
- Sigmoid / tanh / linear activation operations: forward and backward
- Parametrized sigmoid: per-neuron coefficients, gradient, validation
"""

import numpy as np
import pytest


def numerical_gradient(function, inputs, output_gradient, epsilon=1e-6):
    """Finite-difference gradient of sum(function(x) * output_gradient)."""
    gradient = np.zeros_like(inputs)
    for index in np.ndindex(inputs.shape):
        plus = inputs.copy()
        minus = inputs.copy()
        plus[index] += epsilon
        minus[index] -= epsilon
        gradient[index] = np.sum((function(plus) - function(minus)) * output_gradient) / (
            2 * epsilon
        )
    return gradient


class TestSigmoid:
    """
    Test suite for the logistic sigmoid.

    Formula: sigmoid(x) = 1 / (1 + exp(-x))
    """

    def test_sigmoid_values(self):
        """sigmoid(0) = 0.5 and it matches the textbook formula."""
        from nnkit.activations import sigmoid

        input_values = np.array([-2.0, 0.0, 3.0])
        expected = 1.0 / (1.0 + np.exp(-input_values))

        np.testing.assert_allclose(sigmoid(input_values), expected)
        assert sigmoid(np.array([0.0]))[0] == pytest.approx(0.5)

    def test_sigmoid_numerical_stability(self):
        """Large magnitudes should saturate without overflow warnings."""
        from nnkit.activations import sigmoid

        with np.errstate(over="raise"):
            output = sigmoid(np.array([-1000.0, 1000.0]))

        np.testing.assert_allclose(output, [0.0, 1.0])


class TestActivationOperations:
    """Stateless activations read their cached output in backward."""

    def test_linear_is_identity(self):
        """Linear activation passes values and gradients through."""
        from nnkit.activations import LinearActivation

        operation = LinearActivation()
        input_values = np.array([[1.0, -2.0], [3.0, 4.0]])
        output_gradient = np.array([[0.5, 0.5], [1.0, -1.0]])

        np.testing.assert_allclose(operation.forward(input_values), input_values)
        np.testing.assert_allclose(operation.backward(output_gradient), output_gradient)

    def test_sigmoid_backward(self):
        """Sigmoid backward should be dy * y * (1 - y)."""
        from nnkit.activations import SigmoidActivation, sigmoid

        rng = np.random.default_rng(1)
        input_values = rng.normal(size=(3, 4))
        output_gradient = rng.normal(size=(3, 4))

        operation = SigmoidActivation()
        output = operation.forward(input_values)
        input_gradient = operation.backward(output_gradient)

        np.testing.assert_allclose(input_gradient, output_gradient * output * (1 - output))
        np.testing.assert_allclose(
            input_gradient,
            numerical_gradient(sigmoid, input_values, output_gradient),
            atol=1e-6,
        )

    def test_tanh_backward_numerical_gradient(self):
        """Tanh backward should match the numerical gradient."""
        from nnkit.activations import TanhActivation

        rng = np.random.default_rng(2)
        input_values = rng.normal(size=(2, 5))
        output_gradient = rng.normal(size=(2, 5))

        operation = TanhActivation()
        operation.forward(input_values)
        input_gradient = operation.backward(output_gradient)

        np.testing.assert_allclose(
            input_gradient,
            numerical_gradient(np.tanh, input_values, output_gradient),
            atol=1e-6,
        )

    def test_activations_report_kind(self):
        from nnkit.activations import SigmoidActivation, TanhActivation
        from nnkit.operation import OperationKind

        assert TanhActivation().is_activation
        assert SigmoidActivation().is_(OperationKind.SIGMOID_ACTIVATION)


class TestSigmoidParamActivation:
    """
    Parametrized sigmoid: y_ij = sigmoid(k_j * x_ij).
    """

    def test_forward_applies_coefficients_per_column(self):
        from nnkit.activations import SigmoidParamActivation, sigmoid

        coeffs = np.array([1.0, 2.0, 3.0])
        input_values = np.array([[1.0, 1.0, 1.0], [-1.0, 0.5, 2.0]])

        operation = SigmoidParamActivation(coeffs)
        output = operation.forward(input_values)

        np.testing.assert_allclose(output, sigmoid(input_values * coeffs))
        assert operation.coeffs_count == 3

    def test_backward_numerical_gradient(self):
        """Backward should match the numerical gradient."""
        from nnkit.activations import SigmoidParamActivation, sigmoid

        rng = np.random.default_rng(3)
        coeffs = np.array([1.0, 2.5, 4.0])
        input_values = rng.normal(size=(4, 3))
        output_gradient = rng.normal(size=(4, 3))

        operation = SigmoidParamActivation(coeffs)
        operation.forward(input_values)
        input_gradient = operation.backward(output_gradient)

        np.testing.assert_allclose(
            input_gradient,
            numerical_gradient(lambda x: sigmoid(x * coeffs), input_values, output_gradient),
            atol=1e-6,
        )

    def test_coefficients_are_constant(self):
        """Coefficients stay unchanged by forward and backward passes."""
        from nnkit.activations import SigmoidParamActivation

        operation = SigmoidParamActivation([1.0, 2.0])
        operation.forward(np.ones((3, 2)))
        operation.backward(np.ones((3, 2)))

        np.testing.assert_allclose(operation.parameters()[0], [[1.0, 2.0]])

    def test_invalid_coefficients(self):
        from nnkit.activations import SigmoidParamActivation
        from nnkit.errors import CreateError

        with pytest.raises(CreateError):
            SigmoidParamActivation(None)
        with pytest.raises(CreateError):
            SigmoidParamActivation(np.array([]))

    def test_column_mismatch(self):
        """Inputs with a different column count than coefficients fail."""
        from nnkit.activations import SigmoidParamActivation
        from nnkit.errors import ExecError

        operation = SigmoidParamActivation([1.0, 2.0])
        with pytest.raises(ExecError):
            operation.forward(np.ones((2, 3)))
