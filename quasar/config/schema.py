# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
Type-safe configuration schemas for Quasar.

Every optimizer hyperparameter set is a frozen pydantic model. Frozen means
the optimizer built from it can rely on the values never changing under it.

The models use pydantic v2's ConfigDict with:
  - frozen=True: immutability after construction
  - extra="forbid": unknown fields cause immediate failure
  - validate_default=True: even defaults get type-checked

Range checks (beta in [0, 1), epsilon > 0, ...) live in the Field
constraints, so an out-of-range hyperparameter fails when the config is
built, long before any tensor is touched.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class DirectoryConfig(BaseModel):
    """Paths to the standard project directories, all relative to project root."""

    model_config = ConfigDict(frozen=True, extra="forbid", validate_default=True)

    checkpoints: str = Field(default="checkpoints", description="Saved model and optimizer states")
    logs: str = Field(default="logs", description="System and debug logs")
    experiments: str = Field(default="experiments", description="Training run outputs")


class GlobalConfig(BaseModel):
    """
    Cross-cutting settings that apply to the entire system: reproducibility
    (seed), observability (log_level, log_file) and project identity.
    """

    model_config = ConfigDict(frozen=True, extra="forbid", validate_default=True)

    config_version: str = Field(
        description="Schema version for compatibility tracking, e.g. '1.0.0'"
    )
    project_name: str = Field(
        default="quasar", description="Human-readable project identifier"
    )
    seed: int = Field(
        default=42,
        ge=0,
        description="Global random seed",
    )
    log_level: str = Field(
        default="INFO",
        description="One of DEBUG, INFO, WARNING, ERROR, CRITICAL",
    )
    log_file: Optional[str] = Field(
        default=None,
        description="Optional path for file-based log output, relative to project root",
    )
    directories: DirectoryConfig = Field(default_factory=DirectoryConfig)


class WeightDecayConfig(BaseModel):
    """
    Weight decay penalty.

    Adam reads both fields (accumulator mode); RMSProp only reads `penalty`
    (coupled mode). See quasar.optim.decay.
    """

    model_config = ConfigDict(frozen=True, extra="forbid", validate_default=True)

    penalty: float = Field(
        ge=0.0,
        description="Weight decay penalty factor",
    )
    decay_rate: float = Field(
        default=0.9,
        ge=0.0,
        le=1.0,
        description="How much of the previous decay buffer survives each step (Adam only)",
    )


class GradientClippingConfig(BaseModel):
    """Clamp gradients by value or rescale them by L2 norm before each step."""

    model_config = ConfigDict(frozen=True, extra="forbid", validate_default=True)

    mode: str = Field(
        default="norm",
        pattern=r"^(value|norm)$",
        description="'value' clamps each element, 'norm' rescales each gradient tensor",
    )
    threshold: float = Field(
        gt=0.0,
        description="Maximum absolute value (value mode) or maximum L2 norm (norm mode)",
    )


class AdamConfig(BaseModel):
    """Hyperparameters for Adam."""

    model_config = ConfigDict(frozen=True, extra="forbid", validate_default=True)

    beta1: float = Field(
        default=0.9,
        ge=0.0,
        lt=1.0,
        description="Decay rate of the first moment estimate",
    )
    beta2: float = Field(
        default=0.999,
        ge=0.0,
        lt=1.0,
        description="Decay rate of the second moment estimate",
    )
    epsilon: float = Field(
        default=1e-5,
        gt=0.0,
        description="Added to the denominator for numerical stability",
    )
    weight_decay: Optional[WeightDecayConfig] = Field(default=None)
    grad_clipping: Optional[GradientClippingConfig] = Field(default=None)


class RMSPropConfig(BaseModel):
    """Hyperparameters for RMSProp."""

    model_config = ConfigDict(frozen=True, extra="forbid", validate_default=True)

    alpha: float = Field(
        default=0.99,
        ge=0.0,
        lt=1.0,
        description="Smoothing constant of the squared-gradient average",
    )
    momentum: float = Field(
        default=0.9,
        ge=0.0,
        description="Momentum factor, 0 disables the momentum buffer",
    )
    epsilon: float = Field(
        default=1e-5,
        gt=0.0,
        description="Added to the denominator for numerical stability",
    )
    centered: bool = Field(
        default=False,
        description="Normalize by an estimate of the gradient's variance instead of its second moment",
    )
    weight_decay: Optional[WeightDecayConfig] = Field(default=None)
    grad_clipping: Optional[GradientClippingConfig] = Field(default=None)


class OptimConfig(BaseModel):
    """
    Optimizer selection and hyperparameters. Maps to the `optim:` section.

    Only the section named by `algorithm` is used; the other keeps its
    defaults.
    """

    model_config = ConfigDict(frozen=True, extra="forbid", validate_default=True)

    config_version: str = Field(description="Schema version")
    algorithm: str = Field(
        default="adam",
        pattern=r"^(adam|rmsprop)$",
        description="Which optimizer to build: 'adam' or 'rmsprop'",
    )
    learning_rate: float = Field(
        default=1e-3,
        ge=0.0,
        description="Learning rate handed to every optimizer step",
    )
    adam: AdamConfig = Field(default_factory=AdamConfig)
    rmsprop: RMSPropConfig = Field(default_factory=RMSPropConfig)


class QuasarConfig(BaseModel):
    """
    Top-level config container.

    A YAML file may contain just `global:`, or `global:` + `optim:` for a
    training run. Sections not present stay None.
    """

    model_config = ConfigDict(frozen=True, extra="forbid", validate_default=True)

    global_config: GlobalConfig = Field(alias="global")
    optim: Optional[OptimConfig] = Field(default=None)
