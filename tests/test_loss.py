"""
Tests for the loss module.
"""

import numpy as np
import pytest

from nnkit.errors import ExecError, FabricError
from nnkit.loss import LossKind, MSELoss, create_loss, is_loss


class TestMSELoss:
    """
    MSE loss: L = sum((y - t)^2) / (2 * N), dL/dy = (y - t) / N.
    """

    def test_forward_value(self):
        loss = MSELoss()
        value = loss.forward(np.array([[1.0], [2.0]]), np.array([[2.0], [4.0]]))

        assert value == pytest.approx(1.25)
        assert loss.output() == pytest.approx(1.25)

    def test_backward_value(self):
        loss = MSELoss()
        loss.forward(np.array([[1.0, 0.0], [2.0, 0.0]]), np.array([[2.0, 1.0], [4.0, -1.0]]))

        np.testing.assert_allclose(loss.backward(), [[0.5, 0.5], [1.0, -0.5]])

    def test_perfect_prediction(self):
        loss = MSELoss()
        targets = np.array([[0.3, -0.7]])

        assert loss.forward(targets, targets.copy()) == 0.0
        np.testing.assert_allclose(loss.backward(), np.zeros((1, 2)))

    def test_backward_before_forward(self):
        with pytest.raises(ExecError):
            MSELoss().backward()

    def test_invalid_inputs(self):
        loss = MSELoss()
        with pytest.raises(ExecError):
            loss.forward(None, np.ones((1, 1)))
        with pytest.raises(ExecError):
            loss.forward(np.ones((1, 1)), None)
        with pytest.raises(ExecError):
            loss.forward(np.ones((2, 1)), np.ones((1, 2)))

    def test_copy_and_equality(self):
        loss = MSELoss()
        loss.forward(np.array([[1.0]]), np.array([[1.5]]))
        duplicate = loss.copy()

        assert duplicate is not loss
        assert duplicate.equal(loss)
        assert duplicate.equal_approx(loss)

        loss.backward()
        assert not duplicate.equal(loss)


class TestLossFactory:
    def test_create_mse(self):
        loss = create_loss(LossKind.MSE)
        assert isinstance(loss, MSELoss)
        assert loss.is_("MSE loss")

    def test_unknown_loss(self):
        with pytest.raises(FabricError):
            create_loss("cross entropy loss")
        assert not is_loss("cross entropy loss")
