# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
Weight decay transforms.

Two different penalty policies share the WeightDecayConfig name:

  WeightDecay (Adam)
      Stateful exponential accumulator over the gradient:
        buffer = buffer * decay_rate + grad * penalty
      The buffer IS the new gradient, and it is persisted in the state.
      A missing state is a zero buffer, so the first buffer is grad * penalty.

  CoupledWeightDecay (RMSProp)
      Stateless L2 coupling against the parameter value:
        grad_out = grad + penalty * tensor
      Nothing is persisted.

The two policies are independent; each optimizer keeps its own.
"""

from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, Optional

import torch

from quasar.config.schema import WeightDecayConfig
from quasar.optim.base import check_same_shape, check_state_fields, require_tensor


@dataclass(frozen=True, eq=False)
class WeightDecayState:
    """Accumulated decayed gradient, shaped like the parameter."""

    buffer: torch.Tensor

    def to_device(self, device: torch.device) -> "WeightDecayState":
        return WeightDecayState(buffer=self.buffer.to(device))

    def to_dict(self) -> dict[str, Any]:
        return {"buffer": self.buffer}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "WeightDecayState":
        check_state_fields(data, ("buffer",), "weight_decay")
        return cls(buffer=require_tensor(data, "buffer", "weight_decay"))


class WeightDecay:
    """Accumulator-mode weight decay used by Adam."""

    def __init__(self, config: WeightDecayConfig) -> None:
        self.penalty = config.penalty
        self.decay_rate = config.decay_rate

    def transform(
        self,
        grad: torch.Tensor,
        state: Optional[WeightDecayState],
    ) -> tuple[torch.Tensor, WeightDecayState]:
        """
        Fold `grad` into the decay buffer.

        Args:
            grad: Incoming gradient.
            state: Previous buffer, or None on the first step.

        Returns:
            (new_grad, new_state) where new_grad is the updated buffer.
        """
        contribution = grad.mul(self.penalty)
        if state is None:
            buffer = contribution
        else:
            check_same_shape("weight_decay.buffer", state.buffer, grad.shape)
            buffer = state.buffer.mul(self.decay_rate).add(contribution)

        return buffer, WeightDecayState(buffer=buffer)


class CoupledWeightDecay:
    """Stateless L2 penalty used by RMSProp."""

    def __init__(self, config: WeightDecayConfig) -> None:
        self.penalty = config.penalty

    def transform(self, grad: torch.Tensor, tensor: torch.Tensor) -> torch.Tensor:
        return tensor.mul(self.penalty).add(grad)
