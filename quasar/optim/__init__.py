# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
Quasar optimizer package.

Subsystems:
  - base: SimpleOptimizer contract (one parameter, one step)
  - decay: weight decay transforms (accumulator and coupled)
  - adam: Adam with bias-corrected moments
  - rmsprop: RMSProp with optional centering and momentum
  - grad_clipping: clip gradients by value or L2 norm
  - adaptor: maps a SimpleOptimizer over a whole nn.Module
  - record: checkpoint record of per-parameter state
  - factory: config -> OptimizerAdaptor
"""

from quasar.optim.adam import Adam, AdamState, AdaptiveMomentumState
from quasar.optim.adaptor import OptimizerAdaptor, gradients_from_model
from quasar.optim.base import SimpleOptimizer, is_finite
from quasar.optim.decay import WeightDecayState
from quasar.optim.exceptions import (
    InvalidLearningRateError,
    OptimizerError,
    ShapeMismatchError,
    StateMismatchError,
    UnknownParameterError,
)
from quasar.optim.factory import create_optimizer
from quasar.optim.grad_clipping import GradientClipping
from quasar.optim.record import OptimizerRecord
from quasar.optim.rmsprop import (
    CenteredState,
    RMSProp,
    RMSPropMomentumState,
    RMSPropState,
    SquareAvgState,
)

__all__ = [
    "Adam",
    "AdamState",
    "AdaptiveMomentumState",
    "CenteredState",
    "GradientClipping",
    "InvalidLearningRateError",
    "OptimizerAdaptor",
    "OptimizerError",
    "OptimizerRecord",
    "RMSProp",
    "RMSPropMomentumState",
    "RMSPropState",
    "ShapeMismatchError",
    "SimpleOptimizer",
    "SquareAvgState",
    "StateMismatchError",
    "UnknownParameterError",
    "WeightDecayState",
    "create_optimizer",
    "gradients_from_model",
    "is_finite",
]
