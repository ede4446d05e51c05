# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
Runtime bootstrap for Quasar.

The one-time setup a training run does before its first optimizer step:
  1. Set deterministic seeds
  2. Initialize the logger at the configured level and file
  3. Ensure the project directories exist

Everything here reads from GlobalConfig, so a run is reproducible from its
config file alone.
"""

import logging
import os
import random
from pathlib import Path
from typing import Optional

import torch

from quasar.config.schema import GlobalConfig
from quasar.logging.logger import get_logger


def set_deterministic_seed(seed: int) -> None:
    """
    Lock down all sources of randomness to the given seed.

    This sets Python's random module, PYTHONHASHSEED, and the PyTorch CPU
    and CUDA generators. cuDNN is switched to deterministic mode when CUDA
    is present.

    Args:
        seed: Integer seed value. Must be >= 0.
    """
    random.seed(seed)
    os.environ["PYTHONHASHSEED"] = str(seed)

    torch.manual_seed(seed)
    if torch.cuda.is_available():
        torch.cuda.manual_seed_all(seed)
        torch.backends.cudnn.deterministic = True  # type: ignore[attr-defined]
        torch.backends.cudnn.benchmark = False  # type: ignore[attr-defined]


def _ensure_project_directories(project_root: Path, config: GlobalConfig) -> None:
    dirs = config.directories
    for relative in (dirs.checkpoints, dirs.logs, dirs.experiments):
        (project_root / relative).mkdir(parents=True, exist_ok=True)


def bootstrap(config: GlobalConfig, project_root: Optional[Path] = None) -> logging.Logger:
    """
    Run the bootstrap sequence and return the runtime logger.

    Args:
        config: The validated global configuration.
        project_root: Directory that `log_file` and `directories` are
            relative to. When None, `log_file` is taken as given and no
            directories are created.

    Returns:
        The "quasar.runtime" logger, configured with `log_level` / `log_file`.
    """
    set_deterministic_seed(config.seed)

    log_file = None
    if config.log_file is not None:
        log_file = Path(config.log_file)
        if project_root is not None and not log_file.is_absolute():
            log_file = project_root / log_file

    logger = get_logger("quasar.runtime", log_level=config.log_level, log_file=log_file)

    if project_root is not None:
        _ensure_project_directories(project_root, config)

    logger.info(
        "Quasar bootstrap complete",
        extra={"project": config.project_name, "seed": config.seed},
    )
    return logger
