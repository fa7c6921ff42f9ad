"""
Datasets for Training

Data holds an input matrix X and a target matrix Y with one sample per row.
Dataset groups three Data parts: train (fitted), tests (checked during
training to pick checkpoints) and valid (checked once after training).

Classes:
    Data: Paired inputs and targets
    DataSplitParameters: Fractions of rows for train, tests and valid
    Dataset: Train / tests / valid parts

Functions:
    generate: Sample a synthetic dataset from a NumPy function
"""

import logging
from dataclasses import dataclass
from typing import Callable, List, Optional, Sequence, Tuple

import numpy as np

from nnkit import tensor
from nnkit.errors import CreateError, SplitError
from nnkit.log import TRACE

logger = logging.getLogger(__name__)


class Data:
    """
    Inputs and targets with matching row counts.

    Args:
        x: Inputs, shape (rows, inputs)
        y: Targets, shape (rows, outputs)
    """

    def __init__(self, x, y):
        if x is None:
            raise CreateError("no inputs provided")
        if y is None:
            raise CreateError("no outputs provided")
        try:
            self.x = tensor.as_matrix(x)
            self.y = tensor.as_matrix(y)
        except ValueError as err:
            raise CreateError("inputs and outputs must be matrices") from err
        if self.x.shape[0] != self.y.shape[0]:
            raise CreateError(
                f"rows count mismatches in inputs and outputs: {self.x.shape[0]} != {self.y.shape[0]}"
            )

    def __len__(self) -> int:
        return self.x.shape[0]

    def copy(self) -> "Data":
        return Data(self.x.copy(), self.y.copy())

    def shuffle(self, rng: Optional[np.random.Generator] = None) -> Tuple["Data", np.ndarray]:
        """
        Reorder rows of inputs and targets with the same random permutation.

        The source stays untouched.

        Returns:
            Tuple of (shuffled data, permutation)
        """
        rng = rng if rng is not None else np.random.default_rng()
        permutation = rng.permutation(len(self))
        logger.log(TRACE, "permutation: %s", permutation)
        return Data(self.x[permutation], self.y[permutation]), permutation

    def split(self, pivot: int) -> Tuple["Data", "Data"]:
        """
        Split rows into [0, pivot) and [pivot, rows).

        Raises:
            SplitError: If either part would be empty
        """
        if pivot < 1:
            raise SplitError(f"negative or zero split pivot for data: {pivot}")
        if len(self) - pivot < 1:
            raise SplitError(f"not enough values for split data sized {len(self)} with pivot {pivot}")

        first = Data(self.x[:pivot], self.y[:pivot])
        second = Data(self.x[pivot:], self.y[pivot:])
        return first, second

    def batches(self, batch_size: int) -> List["Data"]:
        """
        Split rows into consecutive batches; the last one may be shorter.

        Raises:
            SplitError: If batch_size < 1
        """
        if batch_size < 1:
            raise SplitError(f"negative or zero batch size: {batch_size}")

        return [
            Data(self.x[start : start + batch_size], self.y[start : start + batch_size])
            for start in range(0, len(self), batch_size)
        ]

    def equal(self, other) -> bool:
        if other is None or not isinstance(other, Data):
            return False
        return tensor.equal(self.x, other.x) and tensor.equal(self.y, other.y)

    def equal_approx(self, other) -> bool:
        if other is None or not isinstance(other, Data):
            return False
        return tensor.equal_approx(self.x, other.x) and tensor.equal_approx(self.y, other.y)

    def short_string(self) -> str:
        return f"{{x: {tensor.short_string(self.x)}, y: {tensor.short_string(self.y)}}}"

    def __repr__(self) -> str:
        return f"Data({self.short_string()})"


@dataclass
class DataSplitParameters:
    """Fractions of the rows that go to train, tests and valid parts."""

    train: float = 0.6
    tests: float = 0.3
    valid: float = 0.1


class Dataset:
    """
    Train, tests and valid parts of one data source.

    All parts must agree on the number of input and output columns.
    """

    def __init__(self, train: Data, tests: Data, valid: Data):
        for name, part in (("train", train), ("tests", tests), ("valid", valid)):
            if part is None:
                raise CreateError(f"no {name} data provided")

        if not train.x.shape[1] == tests.x.shape[1] == valid.x.shape[1]:
            raise CreateError(
                f"cols count in input data mismatches: "
                f"{train.x.shape[1]}, {tests.x.shape[1]}, {valid.x.shape[1]}"
            )
        if not train.y.shape[1] == tests.y.shape[1] == valid.y.shape[1]:
            raise CreateError(
                f"cols count in output data mismatches: "
                f"{train.y.shape[1]}, {tests.y.shape[1]}, {valid.y.shape[1]}"
            )

        self.train = train
        self.tests = tests
        self.valid = valid

    @classmethod
    def split(cls, data: Data, parameters: Optional[DataSplitParameters] = None) -> "Dataset":
        """
        Split data into train, tests and valid parts, in that row order.

        Raises:
            CreateError: If a part would be empty or the valid part ends up far
                         from its requested size
        """
        if data is None:
            raise CreateError("no data provided for splitting")
        parameters = parameters or DataSplitParameters()
        logger.debug("split data %s by %s", data.short_string(), parameters)

        rows = len(data)
        train_size = int(rows * parameters.train)
        tests_size = int(rows * parameters.tests)
        valid_size = int(rows * parameters.valid)
        try:
            train, others = data.split(train_size)
            tests, valid = others.split(tests_size)
        except SplitError as err:
            raise CreateError(f"can not split data sized {rows} by {parameters}") from err

        if abs(valid_size - len(valid)) > 0.1 * rows:
            raise CreateError(
                f"desired and actual valid part sizes mismatch too much: {valid_size} != {len(valid)}"
            )
        return cls(train, tests, valid)

    def combine(self) -> Data:
        """All rows of train, tests and valid, concatenated in that order."""
        return Data(
            np.concatenate([self.train.x, self.tests.x, self.valid.x]),
            np.concatenate([self.train.y, self.tests.y, self.valid.y]),
        )

    def copy(self) -> "Dataset":
        return Dataset(self.train.copy(), self.tests.copy(), self.valid.copy())

    def equal(self, other) -> bool:
        if other is None or not isinstance(other, Dataset):
            return False
        return (
            self.train.equal(other.train)
            and self.tests.equal(other.tests)
            and self.valid.equal(other.valid)
        )

    def equal_approx(self, other) -> bool:
        if other is None or not isinstance(other, Dataset):
            return False
        return (
            self.train.equal_approx(other.train)
            and self.tests.equal_approx(other.tests)
            and self.valid.equal_approx(other.valid)
        )

    def short_string(self) -> str:
        return (
            f"{{train: {self.train.short_string()}, tests: {self.tests.short_string()}, "
            f"valid: {self.valid.short_string()}}}"
        )

    def __repr__(self) -> str:
        return f"Dataset({self.short_string()})"


def generate(
    function: Callable[..., np.ndarray],
    ranges: Sequence[Tuple[float, float]],
    count: int,
    split: Optional[DataSplitParameters] = None,
    rng: Optional[np.random.Generator] = None,
) -> Dataset:
    """
    Generate a dataset by sampling a function.

    Inputs are drawn uniformly from the per-input ranges; the function gets
    one column per input and returns the target values.

    Args:
        function: Vectorized function f(x1, ..., xn) -> y
        ranges: One (low, high) pair per input
        count: Number of samples
        split: Train/tests/valid fractions
        rng: Random generator for the inputs

    Returns:
        Dataset with rows in sampling order

    Example:
        >>> dataset = generate(np.sin, [(-np.pi, np.pi)], 100)
        >>> dataset.train.x.shape
        (60, 1)
    """
    if function is None:
        raise CreateError("no function provided")
    if not ranges:
        raise CreateError("no input ranges provided")
    if count < 1:
        raise CreateError(f"invalid samples count: {count}")

    rng = rng if rng is not None else np.random.default_rng()
    low = np.array([left for left, _ in ranges], dtype=np.float64)
    high = np.array([right for _, right in ranges], dtype=np.float64)
    if np.any(low > high):
        raise CreateError(f"invalid input ranges: {list(ranges)}")

    x = rng.uniform(low, high, size=(count, len(ranges)))
    y = np.asarray(function(*x.T), dtype=np.float64).reshape(count, -1)
    logger.debug("generated %d samples for %d inputs", count, len(ranges))

    return Dataset.split(Data(x, y), split)
