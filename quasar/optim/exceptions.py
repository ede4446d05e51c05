# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
Exceptions raised by the optimizer pipeline.

Every failure here is a precondition violation: the caller handed the
optimizer something it cannot work with. None of them are retried or
recovered from inside quasar.optim, they go straight back to the caller.
Numerical blow-ups (NaN/inf in the output) are not exceptions at all, see
quasar.optim.base.is_finite.
"""


class OptimizerError(Exception):
    """Base for all optimizer errors."""


class ShapeMismatchError(OptimizerError):
    """Raised when a gradient or a piece of state doesn't match the parameter's shape."""


class InvalidLearningRateError(OptimizerError):
    """Raised when the learning rate is negative or not a finite number."""


class UnknownParameterError(OptimizerError):
    """Raised when a gradient is supplied for a parameter id the model doesn't have."""


class StateMismatchError(OptimizerError):
    """
    Raised when restored optimizer state doesn't fit the current configuration.

    This covers records produced by a different algorithm, records whose
    configuration signature differs (for example RMSProp saved with
    centered=True and restored with centered=False), and state dicts whose
    field set is not exactly what `step` produces.
    """
