"""
Tests for the SGD optimizer module.

Tests cover:
- Default learn rate
- Linear and exponential learn rate decay
- Decay stops at the stop learn rate
- Correction of a learn rate below the stop learn rate
"""

import logging

import numpy as np
import pytest

from nnkit.optimizer import DecayType, SGDParameters, new_sgd


def current_rate(optimizer):
    """Learn rate the optimizer applies right now."""
    return -optimizer(np.zeros((1, 1)), np.ones((1, 1)))[0, 0]


class TestSGD:
    """SGD update: p <- p - grad * learn_rate."""

    def test_default_learn_rate(self):
        """Without parameters the learn rate is 0.05."""
        optimizer, _ = new_sgd(None)

        result = optimizer(np.full((2, 2), 2.0), np.ones((2, 2)))

        np.testing.assert_allclose(result, np.full((2, 2), 1.95))

    def test_inputs_not_modified(self):
        optimizer, _ = new_sgd()
        param = np.ones((2, 2))
        grad = np.ones((2, 2))

        optimizer(param, grad)

        np.testing.assert_array_equal(param, np.ones((2, 2)))

    def test_no_decay_by_default(self):
        optimizer, post_optimize = new_sgd(SGDParameters(learn_rate=0.2))
        for _ in range(5):
            post_optimize()

        assert current_rate(optimizer) == pytest.approx(0.2)


class TestLearnRateDecay:
    """The post-optimize hook advances the schedule by one epoch."""

    def test_linear_decay(self):
        optimizer, post_optimize = new_sgd(
            SGDParameters(learn_rate=0.1, stop_learn_rate=0.01, epochs_count=10)
        )

        assert current_rate(optimizer) == pytest.approx(0.1)
        post_optimize()
        assert current_rate(optimizer) == pytest.approx(0.09)
        post_optimize()
        assert current_rate(optimizer) == pytest.approx(0.08)

    def test_linear_decay_stops_at_stop_rate(self):
        optimizer, post_optimize = new_sgd(
            SGDParameters(learn_rate=0.5, stop_learn_rate=0.25, epochs_count=2)
        )

        for _ in range(5):
            post_optimize()

        assert current_rate(optimizer) == 0.25

    @pytest.mark.parametrize("decay_type", [DecayType.LINEAR, DecayType.EXPONENTIAL])
    @pytest.mark.parametrize(
        "learn_rate, stop_learn_rate, epochs_count",
        [(0.05, 0.001, 2), (0.1, 0.003, 7), (0.3, 0.01, 13)],
    )
    def test_rate_never_below_stop_rate(self, decay_type, learn_rate, stop_learn_rate, epochs_count):
        """Rounding must not push the rate past the floor on long runs."""
        optimizer, post_optimize = new_sgd(
            SGDParameters(
                learn_rate=learn_rate,
                stop_learn_rate=stop_learn_rate,
                epochs_count=epochs_count,
                decay_type=decay_type,
            )
        )

        rates = []
        for _ in range(3 * epochs_count):
            post_optimize()
            rates.append(current_rate(optimizer))

        assert min(rates) >= stop_learn_rate
        assert rates[-1] == pytest.approx(stop_learn_rate)

    def test_exponential_decay(self):
        optimizer, post_optimize = new_sgd(
            SGDParameters(
                learn_rate=0.1,
                stop_learn_rate=0.001,
                epochs_count=2,
                decay_type=DecayType.EXPONENTIAL,
            )
        )

        post_optimize()
        assert current_rate(optimizer) == pytest.approx(0.01)
        post_optimize()
        assert current_rate(optimizer) == pytest.approx(0.001)

    def test_exponential_type_enables_default_schedule(self):
        """Only the decay type given: defaults for stop rate and epochs."""
        optimizer, post_optimize = new_sgd(SGDParameters(decay_type=DecayType.EXPONENTIAL))

        post_optimize()

        expected = 0.05 * (0.001 / 0.05) ** (1 / 1000)
        assert current_rate(optimizer) == pytest.approx(expected)

    def test_learn_rate_below_stop_rate_is_corrected(self, caplog):
        """A learn rate below the stop rate falls back to the defaults."""
        with caplog.at_level(logging.WARNING, logger="nnkit"):
            optimizer, _ = new_sgd(SGDParameters(learn_rate=0.0001, stop_learn_rate=0.01))

        assert current_rate(optimizer) == pytest.approx(0.05)
        assert "less than stop learn rate" in caplog.text

    def test_schedules_are_independent(self):
        """Each new_sgd call has its own learn rate."""
        parameters = SGDParameters(learn_rate=0.1, stop_learn_rate=0.01, epochs_count=10)
        first, first_post_optimize = new_sgd(parameters)
        second, _ = new_sgd(parameters)

        first_post_optimize()

        assert current_rate(first) == pytest.approx(0.09)
        assert current_rate(second) == pytest.approx(0.1)
