# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
Optimizer factory for Quasar.

Turns a validated config into a ready-to-use OptimizerAdaptor:
  - picks the algorithm (Adam or RMSProp)
  - builds the per-parameter SimpleOptimizer from its hyperparameters
  - attaches gradient clipping when the config asks for it

Accepts either the top-level OptimConfig (from a YAML file) or one of the
algorithm configs directly, which is handy in code and tests.
"""

from typing import Union

from quasar.config.schema import AdamConfig, OptimConfig, RMSPropConfig
from quasar.optim.adam import Adam
from quasar.optim.adaptor import OptimizerAdaptor
from quasar.optim.base import SimpleOptimizer
from quasar.optim.grad_clipping import GradientClipping
from quasar.optim.rmsprop import RMSProp

AlgorithmConfig = Union[AdamConfig, RMSPropConfig]


def _select_algorithm_config(config: OptimConfig) -> AlgorithmConfig:
    """Pick the nested section matching `config.algorithm`."""
    if config.algorithm == "adam":
        return config.adam
    return config.rmsprop


def create_optimizer(config: Union[OptimConfig, AlgorithmConfig]) -> OptimizerAdaptor:
    """
    Create an OptimizerAdaptor from a config.

    Args:
        config: OptimConfig, AdamConfig or RMSPropConfig. All are frozen
            pydantic models, so hyperparameter ranges are already checked.

    Returns:
        An adaptor wrapping the configured algorithm, with gradient clipping
        attached if `grad_clipping` is set. An OptimConfig also sets the
        adaptor's default learning rate.

    Raises:
        TypeError: If `config` is none of the supported config types.
    """
    learning_rate = None
    if isinstance(config, OptimConfig):
        learning_rate = config.learning_rate
        config = _select_algorithm_config(config)

    optimizer: SimpleOptimizer
    if isinstance(config, AdamConfig):
        optimizer = Adam(config)
    elif isinstance(config, RMSPropConfig):
        optimizer = RMSProp(config)
    else:
        raise TypeError(f"Unsupported optimizer config type: {type(config).__name__}")

    adaptor = OptimizerAdaptor(optimizer, learning_rate=learning_rate)
    if config.grad_clipping is not None:
        adaptor = adaptor.with_grad_clipping(GradientClipping(config.grad_clipping))

    return adaptor
