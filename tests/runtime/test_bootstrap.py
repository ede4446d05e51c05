# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
Tests for the runtime bootstrap: seeding and logger setup driven by
GlobalConfig.
"""

import logging
import random
from pathlib import Path

import torch

from quasar.config.schema import DirectoryConfig, GlobalConfig
from quasar.runtime.bootstrap import bootstrap, set_deterministic_seed


class TestDeterministicSeed:
    def test_same_seed_produces_same_sequences(self) -> None:
        set_deterministic_seed(42)
        python_a = [random.random() for _ in range(5)]
        torch_a = torch.randn(5)

        set_deterministic_seed(42)
        python_b = [random.random() for _ in range(5)]
        torch_b = torch.randn(5)

        assert python_a == python_b
        assert torch.equal(torch_a, torch_b)

    def test_different_seeds_produce_different_sequences(self) -> None:
        set_deterministic_seed(42)
        sequence_a = torch.randn(5)
        set_deterministic_seed(99)
        sequence_b = torch.randn(5)
        assert not torch.equal(sequence_a, sequence_b)


class TestBootstrap:
    def test_seeds_from_config(self) -> None:
        bootstrap(GlobalConfig(config_version="1.0.0", seed=123, log_level="WARNING"))
        first = torch.randn(3)

        set_deterministic_seed(123)
        assert torch.equal(first, torch.randn(3))

    def test_applies_configured_log_level(self) -> None:
        logger = bootstrap(GlobalConfig(config_version="1.0.0", log_level="ERROR"))
        assert logger.level == logging.ERROR

    def test_creates_project_directories(self, tmp_path: Path) -> None:
        config = GlobalConfig(
            config_version="1.0.0",
            log_level="WARNING",
            directories=DirectoryConfig(checkpoints="ckpt", logs="log", experiments="exp"),
        )

        bootstrap(config, project_root=tmp_path)

        assert (tmp_path / "ckpt").is_dir()
        assert (tmp_path / "log").is_dir()
        assert (tmp_path / "exp").is_dir()

    def test_without_project_root_creates_nothing(self, tmp_path: Path, monkeypatch) -> None:
        monkeypatch.chdir(tmp_path)
        bootstrap(GlobalConfig(config_version="1.0.0", log_level="WARNING"))
        assert list(tmp_path.iterdir()) == []
