"""
Exception Hierarchy

Every failure in the toolkit is raised as one of the exceptions below. They
derive from the built-in exception that best describes the problem, so callers
can keep catching ``ValueError`` or ``RuntimeError`` if they don't care about
the details:

    NNError
    ├── CreateError        construction-time invariant violated (ValueError)
    ├── BuilderError       builder lacks inputs or fails a dependency (ValueError)
    ├── FabricError        unknown kind or bad arguments for a factory (ValueError)
    ├── SplitError         invalid dataset split / batch size (ValueError)
    ├── EstimateError      outputs and targets can not be compared (ValueError)
    ├── ParametersError    trainer configuration missing or invalid (ValueError)
    ├── PreTrainError      a provider failed before training started (RuntimeError)
    └── ExecError          runtime misuse or numeric failure (RuntimeError)
        └── CancelledTrainError

Context is attached with ``raise SomeError("what failed") from cause``; the
original exception stays reachable through ``__cause__``.
"""


class NNError(Exception):
    """Base class for all toolkit errors."""


class CreateError(NNError, ValueError):
    """An object could not be created from the given values."""


class BuilderError(NNError, ValueError):
    """A builder could not produce its object."""


class FabricError(NNError, ValueError):
    """A factory got an unknown kind or unusable arguments."""


class SplitError(NNError, ValueError):
    """Data could not be split into the requested parts."""


class EstimateError(NNError, ValueError):
    """Outputs could not be compared with their targets."""


class ParametersError(NNError, ValueError):
    """Training parameters are missing or invalid."""


class PreTrainError(NNError, RuntimeError):
    """Preparing a training run failed."""


class ExecError(NNError, RuntimeError):
    """A forward, backward or optimization step could not be executed."""


class CancelledTrainError(ExecError):
    """A training run was stopped because a sibling run failed."""


class ShapeError(ValueError):
    """Two arrays that must share a shape do not."""
