# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
RMSProp optimizer.

The update is a chain of three sub-transforms, each owning one slice of the
per-parameter state:

  1. square average   sq  = alpha * sq + (1 - alpha) * g^2
  2. centered         ga  = alpha * ga + (1 - alpha) * g        (centered only)
                      avg = sq - ga^2    (centered)  |  avg = sq
  3. momentum         n   = g / (sqrt(avg) + epsilon)
                      buf = momentum * buf + n                  (momentum > 0)
                      update = buf  |  n

When `centered` is off no grad_avg is kept, and when momentum is 0 there is
no momentum state at all. That makes the state's shape depend on the
configuration, so records are checked against it on restore.

Weight decay, if configured, is the coupled L2 flavor applied against the
parameter before step 1 (see decay.py).
"""

from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, Optional

import torch

from quasar.config.schema import RMSPropConfig
from quasar.optim.base import (
    SimpleOptimizer,
    check_consistent_shapes,
    check_same_shape,
    check_state_fields,
    require_tensor,
)
from quasar.optim.decay import CoupledWeightDecay
from quasar.optim.exceptions import StateMismatchError


@dataclass(frozen=True, eq=False)
class SquareAvgState:
    """Running average of the squared gradient."""

    square_avg: torch.Tensor

    def to_device(self, device: torch.device) -> "SquareAvgState":
        return SquareAvgState(square_avg=self.square_avg.to(device))

    def to_dict(self) -> dict[str, Any]:
        return {"square_avg": self.square_avg}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "SquareAvgState":
        check_state_fields(data, ("square_avg",), "square_avg")
        return cls(square_avg=require_tensor(data, "square_avg", "square_avg"))

    @staticmethod
    def transform(
        alpha: float,
        grad: torch.Tensor,
        state: Optional["SquareAvgState"],
    ) -> "SquareAvgState":
        grad_squared = grad.pow(2.0).mul(1.0 - alpha)
        if state is None:
            return SquareAvgState(square_avg=grad_squared)

        check_same_shape("square_avg", state.square_avg, grad.shape)
        return SquareAvgState(square_avg=state.square_avg.mul(alpha).add(grad_squared))


@dataclass(frozen=True, eq=False)
class CenteredState:
    """
    The variance estimate the gradient gets normalized by.

    `grad_avg` is only present for centered RMSProp; `avg` always is.
    """

    grad_avg: Optional[torch.Tensor]
    avg: torch.Tensor

    def to_device(self, device: torch.device) -> "CenteredState":
        grad_avg = self.grad_avg.to(device) if self.grad_avg is not None else None
        return CenteredState(grad_avg=grad_avg, avg=self.avg.to(device))

    def to_dict(self) -> dict[str, Any]:
        return {"grad_avg": self.grad_avg, "avg": self.avg}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "CenteredState":
        check_state_fields(data, ("grad_avg", "avg"), "centered")
        grad_avg = None
        if data["grad_avg"] is not None:
            grad_avg = require_tensor(data, "grad_avg", "centered")
        return cls(grad_avg=grad_avg, avg=require_tensor(data, "avg", "centered"))

    @staticmethod
    def transform(
        alpha: float,
        centered: bool,
        grad: torch.Tensor,
        square_avg: SquareAvgState,
        state: Optional["CenteredState"],
    ) -> "CenteredState":
        if not centered:
            return CenteredState(grad_avg=None, avg=square_avg.square_avg)

        grad_avg = grad.mul(1.0 - alpha)
        if state is not None and state.grad_avg is not None:
            check_same_shape("centered.grad_avg", state.grad_avg, grad.shape)
            grad_avg = state.grad_avg.mul(alpha).add(grad_avg)

        avg = square_avg.square_avg.sub(grad_avg.pow(2.0))
        return CenteredState(grad_avg=grad_avg, avg=avg)


@dataclass(frozen=True, eq=False)
class RMSPropMomentumState:
    """Momentum buffer of normalized gradients."""

    buffer: torch.Tensor

    def to_device(self, device: torch.device) -> "RMSPropMomentumState":
        return RMSPropMomentumState(buffer=self.buffer.to(device))

    def to_dict(self) -> dict[str, Any]:
        return {"buffer": self.buffer}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "RMSPropMomentumState":
        check_state_fields(data, ("buffer",), "momentum")
        return cls(buffer=require_tensor(data, "buffer", "momentum"))


class RMSPropMomentum:
    """Normalizes the gradient by the variance estimate, then applies momentum."""

    def __init__(self, momentum: float, epsilon: float) -> None:
        self.momentum = momentum
        self.epsilon = epsilon

    def transform(
        self,
        grad: torch.Tensor,
        centered: CenteredState,
        state: Optional[RMSPropMomentumState],
    ) -> tuple[torch.Tensor, Optional[RMSPropMomentumState]]:
        normalized = grad.div(centered.avg.sqrt().add(self.epsilon))

        if self.momentum <= 0.0:
            return normalized, None

        if state is None:
            buffer = normalized
        else:
            check_same_shape("momentum.buffer", state.buffer, grad.shape)
            buffer = state.buffer.mul(self.momentum).add(normalized)

        return buffer, RMSPropMomentumState(buffer=buffer)


@dataclass(frozen=True, eq=False)
class RMSPropState:
    """RMSProp's per-parameter state. `momentum` is None when momentum == 0."""

    square_avg: SquareAvgState
    centered: CenteredState
    momentum: Optional[RMSPropMomentumState]

    def to_device(self, device: torch.device) -> "RMSPropState":
        momentum = self.momentum.to_device(device) if self.momentum is not None else None
        return RMSPropState(
            square_avg=self.square_avg.to_device(device),
            centered=self.centered.to_device(device),
            momentum=momentum,
        )


class RMSProp(SimpleOptimizer[RMSPropState]):
    """
    RMSProp with optional centering, momentum and coupled weight decay.

    Build it from an RMSPropConfig; gradient clipping in that config is
    applied by the OptimizerAdaptor, not here.
    """

    name = "rmsprop"

    def __init__(self, config: RMSPropConfig) -> None:
        self.alpha = config.alpha
        self.centered = config.centered
        self.momentum = RMSPropMomentum(momentum=config.momentum, epsilon=config.epsilon)
        self.weight_decay: Optional[CoupledWeightDecay] = None
        if config.weight_decay is not None:
            self.weight_decay = CoupledWeightDecay(config.weight_decay)

    def _transform(
        self,
        tensor: torch.Tensor,
        grad: torch.Tensor,
        state: Optional[RMSPropState],
    ) -> tuple[torch.Tensor, RMSPropState]:
        square_avg_state = None
        centered_state = None
        momentum_state = None
        if state is not None:
            square_avg_state = state.square_avg
            centered_state = state.centered
            momentum_state = state.momentum

        if self.weight_decay is not None:
            grad = self.weight_decay.transform(grad, tensor)

        square_avg_state = SquareAvgState.transform(self.alpha, grad, square_avg_state)
        centered_state = CenteredState.transform(
            self.alpha,
            self.centered,
            grad,
            square_avg_state,
            centered_state,
        )
        grad, momentum_state = self.momentum.transform(grad, centered_state, momentum_state)

        return grad, RMSPropState(
            square_avg=square_avg_state,
            centered=centered_state,
            momentum=momentum_state,
        )

    def signature(self) -> dict[str, object]:
        return {
            "centered": self.centered,
            "momentum": self.momentum.momentum > 0.0,
        }

    def state_to_dict(self, state: RMSPropState) -> dict[str, Any]:
        return {
            "square_avg": state.square_avg.to_dict(),
            "centered": state.centered.to_dict(),
            "momentum": state.momentum.to_dict() if state.momentum is not None else None,
        }

    def state_from_dict(self, data: Mapping[str, Any]) -> RMSPropState:
        check_state_fields(data, ("square_avg", "centered", "momentum"), "rmsprop")

        centered = CenteredState.from_dict(data["centered"])
        if (centered.grad_avg is not None) != self.centered:
            raise StateMismatchError(
                f"RMSProp state grad_avg presence doesn't match centered={self.centered}"
            )

        momentum_data = data["momentum"]
        momentum_enabled = self.momentum.momentum > 0.0
        if (momentum_data is not None) != momentum_enabled:
            raise StateMismatchError(
                f"RMSProp momentum state presence doesn't match momentum={self.momentum.momentum}"
            )
        momentum = None
        if momentum_data is not None:
            momentum = RMSPropMomentumState.from_dict(momentum_data)

        square_avg = SquareAvgState.from_dict(data["square_avg"])

        tensors = [square_avg.square_avg, centered.avg]
        if centered.grad_avg is not None:
            tensors.append(centered.grad_avg)
        if momentum is not None:
            tensors.append(momentum.buffer)
        check_consistent_shapes(tensors, "rmsprop")

        return RMSPropState(square_avg=square_avg, centered=centered, momentum=momentum)
