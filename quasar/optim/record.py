# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
Checkpoint record for optimizer state.

A record is what OptimizerAdaptor.to_record() hands out and load_record()
takes back:

  algorithm   "adam" / "rmsprop", the optimizer that produced the states
  signature   configuration facts that decide the state's shape
              (e.g. {"centered": False, "momentum": True})
  states      parameter id -> state dict, ordered by parameter id

State dicts contain only nested dicts, tensors, ints, bools, floats and None,
so `to_dict()` output goes through torch.save / torch.load(weights_only=True)
unchanged.
"""

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from quasar.optim.exceptions import StateMismatchError

RECORD_FORMAT_VERSION = 1


@dataclass(frozen=True)
class OptimizerRecord:
    """Serializable snapshot of every tracked parameter's optimizer state."""

    algorithm: str
    signature: dict[str, object]
    states: dict[str, dict[str, Any]] = field(default_factory=dict)

    def __len__(self) -> int:
        return len(self.states)

    def to_dict(self) -> dict[str, Any]:
        return {
            "format_version": RECORD_FORMAT_VERSION,
            "algorithm": self.algorithm,
            "signature": dict(self.signature),
            "states": {param_id: self.states[param_id] for param_id in sorted(self.states)},
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "OptimizerRecord":
        """
        Rebuild a record from `to_dict()` output.

        Only the envelope is checked here. Whether the states actually fit an
        optimizer is decided by OptimizerAdaptor.load_record.

        Raises:
            StateMismatchError: Unknown format version, missing envelope keys,
                or a signature or states entry that isn't a mapping.
        """
        if not isinstance(data, Mapping):
            raise StateMismatchError(
                f"Optimizer record must be a mapping, got {type(data).__name__}"
            )

        version = data.get("format_version")
        if version != RECORD_FORMAT_VERSION:
            raise StateMismatchError(
                f"Unsupported optimizer record format version: {version!r}"
            )

        for key in ("algorithm", "signature", "states"):
            if key not in data:
                raise StateMismatchError(f"Optimizer record is missing '{key}'")

        signature = data["signature"]
        states = data["states"]
        if not isinstance(signature, Mapping):
            raise StateMismatchError(
                f"Optimizer record signature must be a mapping, got {type(signature).__name__}"
            )
        if not isinstance(states, Mapping):
            raise StateMismatchError(
                f"Optimizer record states must be a mapping, got {type(states).__name__}"
            )

        return cls(
            algorithm=str(data["algorithm"]),
            signature=dict(signature),
            states={param_id: states[param_id] for param_id in sorted(states)},
        )
