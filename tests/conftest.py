# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
Shared pytest fixtures for Quasar tests.

Two groups:
  - config files written to tmp_path (valid, invalid, broken YAML)
  - a tiny 6 -> 6 linear layer plus the two input batches the numeric
    regression tests are built around
"""

import textwrap
from collections.abc import Callable
from pathlib import Path

import pytest
import torch
import torch.nn as nn

REFERENCE_WEIGHT = [
    [-0.3206, 0.1374, 0.4043, 0.3200, 0.0859, 0.0671],
    [0.0777, -0.0185, -0.3667, 0.2550, 0.1955, -0.2922],
    [-0.0190, 0.0346, -0.2962, 0.2484, -0.2780, 0.3130],
    [-0.2980, -0.2214, -0.3715, -0.2981, -0.0761, 0.1626],
    [0.3300, -0.2182, 0.3717, -0.1729, 0.3796, -0.0304],
    [-0.0159, -0.0120, 0.1258, 0.1921, 0.0293, 0.3833],
]
REFERENCE_BIAS = [-0.3905, 0.0884, -0.0970, 0.1176, 0.1366, 0.0130]

BATCH_1 = [
    [0.6294, 0.0940, 0.8176, 0.8824, 0.5228, 0.4310],
    [0.7152, 0.9559, 0.7893, 0.5684, 0.5939, 0.8883],
]
BATCH_2 = [
    [0.8491, 0.2108, 0.8939, 0.4433, 0.5527, 0.2528],
    [0.3270, 0.0412, 0.5538, 0.9605, 0.3195, 0.9085],
]


class TinyLinear(nn.Module):
    """
    y = x @ weight + bias, with weight stored as [d_in, d_out].

    Deliberately not nn.Linear: the reference numbers were produced with
    the weight laid out input-major.
    """

    def __init__(self, weight: torch.Tensor, bias: torch.Tensor) -> None:
        super().__init__()
        self.weight = nn.Parameter(weight.clone())
        self.bias = nn.Parameter(bias.clone())

    def forward(self, x: torch.Tensor) -> torch.Tensor:
        return x @ self.weight + self.bias


@pytest.fixture()
def make_linear() -> Callable[..., TinyLinear]:
    """Factory for TinyLinear layers from nested lists."""

    def _make(weight: list[list[float]], bias: list[float]) -> TinyLinear:
        return TinyLinear(
            torch.tensor(weight, dtype=torch.float32),
            torch.tensor(bias, dtype=torch.float32),
        )

    return _make


@pytest.fixture()
def reference_linear(make_linear: Callable[..., TinyLinear]) -> TinyLinear:
    """The 6x6 layer the Adam/RMSProp regression numbers start from."""
    return make_linear(REFERENCE_WEIGHT, REFERENCE_BIAS)


@pytest.fixture()
def batch_1() -> torch.Tensor:
    return torch.tensor(BATCH_1, dtype=torch.float32)


@pytest.fixture()
def batch_2() -> torch.Tensor:
    return torch.tensor(BATCH_2, dtype=torch.float32)


@pytest.fixture()
def tmp_config_file(tmp_path: Path) -> Path:
    """
    Create a minimal valid config YAML file in a temp directory.

    This is the smallest config that passes schema validation.
    """
    config_content = textwrap.dedent("""\
        global:
          config_version: "1.0.0"
          project_name: "quasar-test"
          seed: 42
          log_level: "DEBUG"
    """)
    config_file = tmp_path / "test_config.yaml"
    config_file.write_text(config_content, encoding="utf-8")
    return config_file


@pytest.fixture()
def invalid_config_file(tmp_path: Path) -> Path:
    """A config file that's valid YAML but fails schema validation (missing required field)."""
    config_content = textwrap.dedent("""\
        global:
          project_name: "quasar-test"
          seed: 42
    """)
    config_file = tmp_path / "invalid_config.yaml"
    config_file.write_text(config_content, encoding="utf-8")
    return config_file


@pytest.fixture()
def broken_yaml_file(tmp_path: Path) -> Path:
    """A file that isn't valid YAML at all."""
    config_file = tmp_path / "broken.yaml"
    config_file.write_text("{{not: yaml: at: all:::", encoding="utf-8")
    return config_file
