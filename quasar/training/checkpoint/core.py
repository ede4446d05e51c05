# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
Atomic checkpoint save/load for a model and its Quasar optimizer.

A checkpoint directory holds:
  model.pt        model.state_dict()
  optimizer.pt    OptimizerAdaptor.to_record().to_dict()
  rng_state.pt    Python and torch RNG states
  metadata.json   step, seed, learning rate, loss, config snapshot

Saves go to a temp directory next to the target and are renamed into place
at the end, so a crash mid-save never leaves a half-written checkpoint.

On load the optimizer record is validated against the optimizer it's loaded
into (algorithm, configuration signature, per-state field sets), so resuming
with an incompatible optimizer config fails here instead of training on
misread state.
"""

import json
import logging
import random
import shutil
import tempfile
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Optional

import torch
import torch.nn as nn

from quasar.logging.logger import get_logger
from quasar.optim.adaptor import OptimizerAdaptor
from quasar.optim.record import OptimizerRecord

logger: logging.Logger = get_logger(__name__)

_STEP_PREFIX = "step_"


@dataclass(frozen=True)
class CheckpointMetadata:
    """Metadata stored alongside the checkpoint for tracing."""

    global_step: int
    seed: int
    learning_rate: float
    loss: float
    config_snapshot: dict[str, object]


def checkpoint_dir_for_step(experiment_dir: Path, step: int) -> Path:
    """Where the checkpoint for `step` lives, e.g. <exp>/checkpoints/step_000100."""
    return experiment_dir / "checkpoints" / f"{_STEP_PREFIX}{step:06d}"


def save_checkpoint(
    model: nn.Module,
    optimizer: OptimizerAdaptor,
    metadata: CheckpointMetadata,
    checkpoint_dir: Path,
) -> Path:
    """
    Save model weights, optimizer record, RNG state and metadata atomically.

    Args:
        model: The model to checkpoint.
        optimizer: The adaptor holding per-parameter optimizer state.
        metadata: Step, seed, learning rate, loss, config snapshot.
        checkpoint_dir: Final directory for this checkpoint.

    Returns:
        Path to the saved checkpoint directory.
    """
    parent = checkpoint_dir.parent
    parent.mkdir(parents=True, exist_ok=True)

    tmp_dir = Path(tempfile.mkdtemp(dir=parent, prefix=".ckpt_tmp_"))
    try:
        torch.save(model.state_dict(), tmp_dir / "model.pt")

        record = optimizer.to_record()
        torch.save(record.to_dict(), tmp_dir / "optimizer.pt")

        rng_state = {
            "python": random.getstate(),
            "torch_cpu": torch.random.get_rng_state(),
        }
        if torch.cuda.is_available():
            rng_state["torch_cuda"] = torch.cuda.get_rng_state_all()
        torch.save(rng_state, tmp_dir / "rng_state.pt")

        (tmp_dir / "metadata.json").write_text(
            json.dumps(asdict(metadata), indent=2, default=str),
            encoding="utf-8",
        )

        if checkpoint_dir.exists():
            shutil.rmtree(checkpoint_dir)
        tmp_dir.rename(checkpoint_dir)

    except Exception:
        if tmp_dir.exists():
            shutil.rmtree(tmp_dir)
        raise

    logger.info(
        "Checkpoint saved",
        extra={
            "step": metadata.global_step,
            "path": str(checkpoint_dir),
            "optimizer": record.algorithm,
            "params": len(record),
        },
    )
    return checkpoint_dir


def _check_model_state(
    model: nn.Module,
    state: dict[str, torch.Tensor],
    checkpoint_dir: Path,
) -> None:
    """Reject saved weights whose keys or shapes don't match `model`."""
    expected = model.state_dict()
    missing = sorted(set(expected) - set(state))
    unexpected = sorted(set(state) - set(expected))
    if missing or unexpected:
        raise RuntimeError(
            f"model.pt in {checkpoint_dir} doesn't match the model: "
            f"missing={missing}, unexpected={unexpected}"
        )
    for key, tensor in expected.items():
        if state[key].shape != tensor.shape:
            raise RuntimeError(
                f"model.pt in {checkpoint_dir}: '{key}' has shape "
                f"{tuple(state[key].shape)}, expected {tuple(tensor.shape)}"
            )


def load_checkpoint(
    checkpoint_dir: Path,
    model: nn.Module,
    optimizer: Optional[OptimizerAdaptor] = None,
    device: Optional[torch.device] = None,
) -> CheckpointMetadata:
    """
    Restore model weights, optimizer state and RNG state from a checkpoint.

    Args:
        checkpoint_dir: Path to the checkpoint directory.
        model: The model to load weights into.
        optimizer: Optional adaptor to restore optimizer state into.
        device: Device to map tensors to. Optimizer state is moved there
            after loading.

    Returns:
        CheckpointMetadata of the restored checkpoint.

    Raises:
        FileNotFoundError: If checkpoint_dir doesn't exist.
        RuntimeError: If a required checkpoint file is missing, or the saved
            weights don't fit `model`.
        StateMismatchError: If the optimizer record doesn't fit `optimizer`.
    """
    if not checkpoint_dir.is_dir():
        raise FileNotFoundError(f"Checkpoint directory not found: {checkpoint_dir}")

    model_path = checkpoint_dir / "model.pt"
    opt_path = checkpoint_dir / "optimizer.pt"
    meta_path = checkpoint_dir / "metadata.json"
    required = [model_path, meta_path]
    if optimizer is not None:
        required.append(opt_path)
    for path in required:
        if not path.is_file():
            raise RuntimeError(f"{path.name} not found in {checkpoint_dir}")

    # Read and validate everything before touching the model or optimizer.
    map_location = device if device is not None else "cpu"
    meta_dict = json.loads(meta_path.read_text(encoding="utf-8"))
    metadata = CheckpointMetadata(
        global_step=meta_dict["global_step"],
        seed=meta_dict["seed"],
        learning_rate=meta_dict.get("learning_rate", 0.0),
        loss=meta_dict.get("loss", 0.0),
        config_snapshot=meta_dict.get("config_snapshot", {}),
    )

    model_state = torch.load(model_path, map_location=map_location, weights_only=True)
    _check_model_state(model, model_state, checkpoint_dir)

    record = None
    if optimizer is not None:
        raw_record = torch.load(opt_path, map_location=map_location, weights_only=True)
        record = OptimizerRecord.from_dict(raw_record)

    rng_state = None
    rng_path = checkpoint_dir / "rng_state.pt"
    if rng_path.is_file():
        # Python's RNG state is a tuple of ints, which weights_only refuses.
        rng_state = torch.load(rng_path, map_location="cpu", weights_only=False)

    # Commit.
    if optimizer is not None and record is not None:
        optimizer.load_record(record)
        if device is not None:
            optimizer.to_device(device)

    model.load_state_dict(model_state)

    if rng_state is not None:
        random.setstate(rng_state["python"])
        torch.random.set_rng_state(rng_state["torch_cpu"])
        if torch.cuda.is_available() and "torch_cuda" in rng_state:
            torch.cuda.set_rng_state_all(rng_state["torch_cuda"])

    logger.info(
        "Checkpoint loaded",
        extra={"step": metadata.global_step, "path": str(checkpoint_dir)},
    )
    return metadata


def find_latest_checkpoint(experiment_dir: Path) -> Optional[Path]:
    """
    Find the checkpoint with the highest step number under
    <experiment_dir>/checkpoints, or None if there isn't one.
    """
    checkpoints_dir = experiment_dir / "checkpoints"
    if not checkpoints_dir.is_dir():
        return None

    ckpt_dirs = sorted(
        (
            d
            for d in checkpoints_dir.iterdir()
            if d.is_dir() and d.name.startswith(_STEP_PREFIX)
            and d.name[len(_STEP_PREFIX):].isdigit()
        ),
        key=lambda d: int(d.name[len(_STEP_PREFIX):]),
    )

    if not ckpt_dirs:
        return None

    return ckpt_dirs[-1]
