# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
Whole-model optimizer adaptor.

SimpleOptimizer works on one tensor at a time. OptimizerAdaptor maps it over
every trainable parameter of an nn.Module:

  1. optional gradient clipping over the whole gradient collection
  2. for each parameter with a gradient:
       move its saved state to the parameter's device
       step it through the SimpleOptimizer
       put the new value back on the model, keep the new state
  3. return the model

Parameters are identified by their dotted name from named_parameters(),
which is stable across processes and is what checkpoint records are keyed
by. A tied parameter has one id (its first name) and its update is
installed in every module that shares it. Each parameter's update only
depends on its own gradient and state, so the order parameters are visited
in doesn't matter.
"""

import logging
from collections.abc import Mapping
from typing import Any, Generic, Optional

import torch
import torch.nn as nn

from quasar.logging.logger import get_logger
from quasar.optim.base import SimpleOptimizer, StateT
from quasar.optim.exceptions import (
    InvalidLearningRateError,
    StateMismatchError,
    UnknownParameterError,
)
from quasar.optim.grad_clipping import GradientClipping
from quasar.optim.record import OptimizerRecord

logger: logging.Logger = get_logger(__name__)


def gradients_from_model(model: nn.Module) -> dict[str, torch.Tensor]:
    """
    Collect the gradients left on a model by a backward pass.

    Frozen parameters and parameters that didn't receive a gradient are
    skipped.

    Args:
        model: Module whose parameters have been through loss.backward().

    Returns:
        Parameter id -> detached gradient tensor.
    """
    grads: dict[str, torch.Tensor] = {}
    for name, param in model.named_parameters():
        if not param.requires_grad or param.grad is None:
            continue
        grads[name] = param.grad.detach()
    return grads


def _parameter_owners(model: nn.Module) -> dict[int, list[tuple[nn.Module, str]]]:
    """
    Map each parameter object to every (module, attribute) slot holding it.

    Tied weights appear once in named_parameters() but sit in several
    modules; all of those slots have to receive the updated parameter.
    """
    owners: dict[int, list[tuple[nn.Module, str]]] = {}
    for name, param in model.named_parameters(remove_duplicate=False):
        module_path, _, leaf = name.rpartition(".")
        owner = model.get_submodule(module_path) if module_path else model
        slots = owners.setdefault(id(param), [])
        if not any(module is owner and attr == leaf for module, attr in slots):
            slots.append((owner, leaf))
    return owners


def _assign_parameter(
    owners: list[tuple[nn.Module, str]],
    current: nn.Parameter,
    value: torch.Tensor,
) -> None:
    """Install one fresh nn.Parameter holding `value` in every owning slot."""
    replacement = nn.Parameter(value, requires_grad=current.requires_grad)
    for owner, leaf in owners:
        setattr(owner, leaf, replacement)


class OptimizerAdaptor(Generic[StateT]):
    """
    Applies a SimpleOptimizer to every parameter of a model.

    Holds the per-parameter states between steps, and is the only thing
    that does: the SimpleOptimizer itself is stateless.
    """

    def __init__(
        self,
        optimizer: SimpleOptimizer[StateT],
        learning_rate: Optional[float] = None,
    ) -> None:
        self.optimizer = optimizer
        self.learning_rate = learning_rate
        self.grad_clipping: Optional[GradientClipping] = None
        self._states: dict[str, StateT] = {}

    def with_grad_clipping(self, grad_clipping: GradientClipping) -> "OptimizerAdaptor[StateT]":
        """Clip gradients before every step. Returns self for chaining."""
        self.grad_clipping = grad_clipping
        return self

    @property
    def states(self) -> Mapping[str, StateT]:
        """Copy of the tracked states, keyed by parameter id."""
        return dict(self._states)

    def step(
        self,
        lr: Optional[float],
        model: nn.Module,
        grads: Mapping[str, torch.Tensor],
    ) -> nn.Module:
        """
        Run one optimizer step over every parameter that has a gradient.

        Args:
            lr: Learning rate for this step. None uses the adaptor's
                configured `learning_rate`.
            model: The model to update. Its parameters are replaced with
                new nn.Parameter objects holding the updated values.
            grads: Parameter id -> gradient, e.g. from gradients_from_model().

        Returns:
            The updated model (same object).

        Raises:
            UnknownParameterError: A gradient id isn't a parameter of the model.
            InvalidLearningRateError: lr is None and no learning rate is
                configured, or the optimizer rejects the value.
            ShapeMismatchError: from the optimizer.
        """
        if lr is None:
            if self.learning_rate is None:
                raise InvalidLearningRateError(
                    "No learning rate given and none configured on the optimizer"
                )
            lr = self.learning_rate

        params = dict(model.named_parameters())
        unknown = sorted(set(grads) - set(params))
        if unknown:
            raise UnknownParameterError(f"Gradients given for unknown parameters: {unknown}")

        if self.grad_clipping is not None:
            grads = self.grad_clipping.clip_all(grads)

        new_values: dict[str, torch.Tensor] = {}
        new_states: dict[str, StateT] = {}
        for param_id, param in params.items():
            if not param.requires_grad or param_id not in grads:
                continue

            state = self._states.get(param_id)
            if state is not None:
                state = self.optimizer.to_device(state, param.device)

            new_values[param_id], new_states[param_id] = self.optimizer.step(
                lr, param, grads[param_id], state
            )

        # Commit only once every parameter has stepped cleanly.
        owners = _parameter_owners(model)
        for param_id, value in new_values.items():
            param = params[param_id]
            _assign_parameter(owners[id(param)], param, value)
        self._states.update(new_states)

        return model

    def to_device(self, device: torch.device) -> "OptimizerAdaptor[StateT]":
        """Move every tracked state to `device`. Returns self."""
        moved = {
            param_id: self.optimizer.to_device(state, device)
            for param_id, state in self._states.items()
        }
        self._states = moved
        logger.info(
            "Optimizer state moved",
            extra={"device": str(device), "params": len(moved)},
        )
        return self

    def to_record(self) -> OptimizerRecord:
        """Snapshot every tracked state, ordered by parameter id."""
        states: dict[str, dict[str, Any]] = {
            param_id: self.optimizer.state_to_dict(self._states[param_id])
            for param_id in sorted(self._states)
        }
        return OptimizerRecord(
            algorithm=self.optimizer.name,
            signature=self.optimizer.signature(),
            states=states,
        )

    def load_record(self, record: OptimizerRecord) -> "OptimizerAdaptor[StateT]":
        """
        Replace the tracked states with the ones in `record`.

        The whole record is validated before anything is replaced, so a bad
        record leaves the adaptor exactly as it was.

        Raises:
            StateMismatchError: Different algorithm, different configuration
                signature, or a state dict that doesn't fit this optimizer.
        """
        if record.algorithm != self.optimizer.name:
            raise StateMismatchError(
                f"Record was produced by '{record.algorithm}', "
                f"cannot load into '{self.optimizer.name}'"
            )

        expected_signature = self.optimizer.signature()
        if dict(record.signature) != expected_signature:
            raise StateMismatchError(
                f"Record configuration {dict(record.signature)} doesn't match "
                f"the optimizer configuration {expected_signature}"
            )

        states = {
            param_id: self.optimizer.state_from_dict(record.states[param_id])
            for param_id in sorted(record.states)
        }
        self._states = states

        logger.info(
            "Optimizer record loaded",
            extra={"algorithm": record.algorithm, "params": len(states)},
        )
        return self
