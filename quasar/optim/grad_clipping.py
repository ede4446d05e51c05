# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
Gradient clipping.

Runs over the raw gradient collection before any per-parameter step. Two
modes, picked by GradientClippingConfig.mode:

  value  clamp every element into [-threshold, threshold]
  norm   rescale a gradient tensor whose L2 norm exceeds threshold so its
         norm becomes (just under) threshold

Clipping is per gradient tensor, not global across the model. Inputs are
never modified; clipped gradients are new tensors.
"""

from collections.abc import Mapping

import torch

from quasar.config.schema import GradientClippingConfig

# Keeps the rescale finite when a norm sits right at the threshold.
_NORM_EPSILON = 1e-6


class GradientClipping:
    """Clips gradients by value or by L2 norm."""

    def __init__(self, config: GradientClippingConfig) -> None:
        self.mode = config.mode
        self.threshold = config.threshold

    def clip(self, grad: torch.Tensor) -> torch.Tensor:
        """Return a clipped copy of one gradient tensor."""
        with torch.no_grad():
            if self.mode == "value":
                return grad.clamp(min=-self.threshold, max=self.threshold)
            return self._clip_by_norm(grad)

    def clip_all(self, grads: Mapping[str, torch.Tensor]) -> dict[str, torch.Tensor]:
        """Clip every gradient in a parameter-id -> gradient mapping."""
        return {param_id: self.clip(grad) for param_id, grad in grads.items()}

    def _clip_by_norm(self, grad: torch.Tensor) -> torch.Tensor:
        norm = float(torch.linalg.vector_norm(grad, ord=2).item())
        if norm > self.threshold:
            return grad.mul(self.threshold / (norm + _NORM_EPSILON))
        return grad.clone()
