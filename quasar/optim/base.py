# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
The per-parameter optimizer contract.

A SimpleOptimizer knows how to advance ONE parameter by one step:

  step(lr, tensor, grad, state) -> (new_tensor, new_state)

It holds only immutable hyperparameters. Everything that changes between
steps lives in the state object, which the caller threads through. That
makes every call referentially transparent: same inputs, same outputs.

The pipeline is fixed for every algorithm:
  1. optional weight decay
  2. momentum / adaptive moment transform (mandatory)
  3. new_tensor = tensor - lr * adapted_grad

Subclasses implement 1 and 2 in `_transform`; this base class owns the
precondition checks and step 3.

Shapes are validated at runtime at the top of every transform since the
tensor rank isn't part of the type.
"""

import math
from abc import ABC, abstractmethod
from collections.abc import Iterable, Mapping
from typing import Any, Generic, Optional, TypeVar

import torch

from quasar.optim.exceptions import (
    InvalidLearningRateError,
    ShapeMismatchError,
    StateMismatchError,
)

StateT = TypeVar("StateT")


def check_same_shape(name: str, tensor: torch.Tensor, expected: torch.Size) -> None:
    """Raise ShapeMismatchError unless `tensor` has exactly the `expected` shape."""
    if tensor.shape != expected:
        raise ShapeMismatchError(
            f"{name} has shape {tuple(tensor.shape)}, expected {tuple(expected)}"
        )


def check_learning_rate(lr: float) -> None:
    """Learning rate must be a finite, non-negative scalar."""
    if not math.isfinite(lr) or lr < 0.0:
        raise InvalidLearningRateError(
            f"Learning rate must be finite and >= 0, got {lr}"
        )


def check_state_fields(
    data: Mapping[str, Any],
    expected: Iterable[str],
    where: str,
) -> None:
    """
    Reject a state dict whose keys aren't exactly `expected`.

    Records must carry the same field set that `step` produces, no more and
    no less.
    """
    if not isinstance(data, Mapping):
        raise StateMismatchError(
            f"{where} state must be a mapping, got {type(data).__name__}"
        )
    expected_keys = set(expected)
    actual_keys = set(data.keys())
    if actual_keys != expected_keys:
        missing = sorted(expected_keys - actual_keys)
        unknown = sorted(actual_keys - expected_keys)
        raise StateMismatchError(
            f"Invalid {where} fields: missing={missing}, unknown={unknown}"
        )


def require_tensor(data: Mapping[str, Any], key: str, where: str) -> torch.Tensor:
    """Fetch a tensor field from a state dict, failing loudly if it isn't one."""
    value = data[key]
    if not isinstance(value, torch.Tensor):
        raise StateMismatchError(
            f"{where}.{key} must be a tensor, got {type(value).__name__}"
        )
    return value


def check_consistent_shapes(tensors: Iterable[torch.Tensor], where: str) -> None:
    """Reject a state whose tensors don't all share one shape."""
    shapes = {tuple(tensor.shape) for tensor in tensors}
    if len(shapes) > 1:
        raise StateMismatchError(
            f"{where} state tensors have inconsistent shapes: {sorted(shapes)}"
        )


def is_finite(tensor: torch.Tensor) -> bool:
    """True when every element is finite (no NaN, no +/-inf)."""
    return bool(torch.isfinite(tensor).all().item())


class SimpleOptimizer(ABC, Generic[StateT]):
    """
    Base class for per-parameter optimizer algorithms.

    Contract:
        step(lr, tensor, grad, state) -> (new_tensor, new_state)
        where new_tensor.shape == tensor.shape and new_state is never None.

    Subclasses provide:
        name          algorithm identifier stored in checkpoint records
        _transform    weight decay + momentum, returning the adapted gradient
        signature     the configuration facts that decide the state's shape
        state_from_dict / state_to_dict for checkpoint records
    """

    name: str = ""

    def step(
        self,
        lr: float,
        tensor: torch.Tensor,
        grad: torch.Tensor,
        state: Optional[StateT] = None,
    ) -> tuple[torch.Tensor, StateT]:
        """
        Advance one parameter by one step.

        Args:
            lr: Learning rate, finite and >= 0.
            tensor: Current parameter value.
            grad: Gradient of the loss w.r.t. `tensor`, same shape.
            state: State returned by the previous step, or None on the first one.

        Returns:
            (new_tensor, new_state). The inputs are never modified.

        Raises:
            InvalidLearningRateError: lr < 0 or not finite.
            ShapeMismatchError: grad or state tensors don't match tensor's shape.
        """
        check_learning_rate(lr)
        check_same_shape("gradient", grad, tensor.shape)

        with torch.no_grad():
            tensor = tensor.detach()
            grad = grad.detach()
            adapted, new_state = self._transform(tensor, grad, state)
            new_tensor = tensor.sub(adapted.mul(lr))

        return new_tensor, new_state

    @abstractmethod
    def _transform(
        self,
        tensor: torch.Tensor,
        grad: torch.Tensor,
        state: Optional[StateT],
    ) -> tuple[torch.Tensor, StateT]:
        """Run weight decay and momentum, returning (adapted_grad, new_state)."""
        ...

    def to_device(self, state: StateT, device: torch.device) -> StateT:
        """
        Move every tensor inside `state` to `device`.

        Returns a new state object, the input is left as it was. Counters and
        other scalar fields are carried over untouched.
        """
        return state.to_device(device)  # type: ignore[attr-defined]

    @abstractmethod
    def signature(self) -> dict[str, object]:
        """Configuration facts that determine which sub-states exist."""
        ...

    @abstractmethod
    def state_to_dict(self, state: StateT) -> dict[str, Any]:
        """Flatten a state into plain dicts of tensors and scalars."""
        ...

    @abstractmethod
    def state_from_dict(self, data: Mapping[str, Any]) -> StateT:
        """
        Rebuild a state from `state_to_dict` output.

        Raises:
            StateMismatchError: The dict doesn't describe a state this
                configuration would produce.
        """
        ...
