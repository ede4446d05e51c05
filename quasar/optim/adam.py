# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
Adam optimizer.

From "Adam: A Method for Stochastic Optimization" (Kingma & Ba, 2014).
Per parameter we keep a step counter and two exponential moving averages:

  m_t = beta1 * m_{t-1} + (1 - beta1) * g
  v_t = beta2 * v_{t-1} + (1 - beta2) * g^2

Both start at zero, which biases them towards zero early in training, so
they're rescaled before use:

  m_hat = m_t / (1 - beta1^t)
  v_hat = v_t / (1 - beta2^t)
  update = m_hat / (sqrt(v_hat) + epsilon)

Optional weight decay runs first, in accumulator mode (see decay.py).
"""

from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, Optional

import torch

from quasar.config.schema import AdamConfig
from quasar.optim.base import (
    SimpleOptimizer,
    check_consistent_shapes,
    check_same_shape,
    check_state_fields,
    require_tensor,
)
from quasar.optim.decay import WeightDecay, WeightDecayState
from quasar.optim.exceptions import StateMismatchError


@dataclass(frozen=True, eq=False)
class AdaptiveMomentumState:
    """Step counter plus first and second raw moment estimates."""

    step_count: int
    first_moment: torch.Tensor
    second_moment: torch.Tensor

    def to_device(self, device: torch.device) -> "AdaptiveMomentumState":
        return AdaptiveMomentumState(
            step_count=self.step_count,
            first_moment=self.first_moment.to(device),
            second_moment=self.second_moment.to(device),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "step_count": self.step_count,
            "first_moment": self.first_moment,
            "second_moment": self.second_moment,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "AdaptiveMomentumState":
        check_state_fields(data, ("step_count", "first_moment", "second_moment"), "momentum")
        step_count = data["step_count"]
        if isinstance(step_count, bool) or not isinstance(step_count, int) or step_count < 0:
            raise StateMismatchError(
                f"momentum.step_count must be a non-negative int, got {step_count!r}"
            )
        return cls(
            step_count=step_count,
            first_moment=require_tensor(data, "first_moment", "momentum"),
            second_moment=require_tensor(data, "second_moment", "momentum"),
        )


@dataclass(frozen=True, eq=False)
class AdamState:
    """Adam's per-parameter state. `weight_decay` is None when decay is off."""

    weight_decay: Optional[WeightDecayState]
    momentum: AdaptiveMomentumState

    def to_device(self, device: torch.device) -> "AdamState":
        weight_decay = None
        if self.weight_decay is not None:
            weight_decay = self.weight_decay.to_device(device)
        return AdamState(weight_decay=weight_decay, momentum=self.momentum.to_device(device))


class AdaptiveMomentum:
    """The bias-corrected moment transform at the heart of Adam."""

    def __init__(self, beta1: float, beta2: float, epsilon: float) -> None:
        self.beta1 = beta1
        self.beta2 = beta2
        self.epsilon = epsilon

    def transform(
        self,
        grad: torch.Tensor,
        state: Optional[AdaptiveMomentumState],
    ) -> tuple[torch.Tensor, AdaptiveMomentumState]:
        grad_squared = grad.pow(2.0)

        if state is None:
            first_moment = grad.mul(1.0 - self.beta1)
            second_moment = grad_squared.mul(1.0 - self.beta2)
            step_count = 1
        else:
            check_same_shape("momentum.first_moment", state.first_moment, grad.shape)
            check_same_shape("momentum.second_moment", state.second_moment, grad.shape)
            first_moment = state.first_moment.mul(self.beta1).add(grad.mul(1.0 - self.beta1))
            second_moment = state.second_moment.mul(self.beta2).add(
                grad_squared.mul(1.0 - self.beta2)
            )
            step_count = state.step_count + 1

        first_corrected = first_moment.div(1.0 - self.beta1**step_count)
        second_corrected = second_moment.div(1.0 - self.beta2**step_count)
        adapted = first_corrected.div(second_corrected.sqrt().add(self.epsilon))

        return adapted, AdaptiveMomentumState(
            step_count=step_count,
            first_moment=first_moment,
            second_moment=second_moment,
        )


class Adam(SimpleOptimizer[AdamState]):
    """
    Adam with optional accumulator weight decay.

    Build it from an AdamConfig; gradient clipping in that config is applied
    by the OptimizerAdaptor, not here.
    """

    name = "adam"

    def __init__(self, config: AdamConfig) -> None:
        self.momentum = AdaptiveMomentum(
            beta1=config.beta1,
            beta2=config.beta2,
            epsilon=config.epsilon,
        )
        self.weight_decay: Optional[WeightDecay] = None
        if config.weight_decay is not None:
            self.weight_decay = WeightDecay(config.weight_decay)

    def _transform(
        self,
        tensor: torch.Tensor,
        grad: torch.Tensor,
        state: Optional[AdamState],
    ) -> tuple[torch.Tensor, AdamState]:
        weight_decay_state = None
        momentum_state = None
        if state is not None:
            weight_decay_state = state.weight_decay
            momentum_state = state.momentum

        if self.weight_decay is not None:
            grad, weight_decay_state = self.weight_decay.transform(grad, weight_decay_state)

        grad, momentum_state = self.momentum.transform(grad, momentum_state)

        return grad, AdamState(weight_decay=weight_decay_state, momentum=momentum_state)

    def signature(self) -> dict[str, object]:
        return {"weight_decay": self.weight_decay is not None}

    def state_to_dict(self, state: AdamState) -> dict[str, Any]:
        return {
            "weight_decay": state.weight_decay.to_dict() if state.weight_decay is not None else None,
            "momentum": state.momentum.to_dict(),
        }

    def state_from_dict(self, data: Mapping[str, Any]) -> AdamState:
        check_state_fields(data, ("weight_decay", "momentum"), "adam")

        weight_decay_data = data["weight_decay"]
        if (weight_decay_data is None) != (self.weight_decay is None):
            raise StateMismatchError(
                "Adam state weight_decay presence doesn't match the configuration"
            )
        weight_decay = None
        if weight_decay_data is not None:
            weight_decay = WeightDecayState.from_dict(weight_decay_data)

        momentum = AdaptiveMomentumState.from_dict(data["momentum"])

        tensors = [momentum.first_moment, momentum.second_moment]
        if weight_decay is not None:
            tensors.append(weight_decay.buffer)
        check_consistent_shapes(tensors, "adam")

        return AdamState(weight_decay=weight_decay, momentum=momentum)
