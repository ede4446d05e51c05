# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
Tests for the RMSProp optimizer.

The numeric regression tests run two steps on the 6x6 linear fixture and
compare against reference values to 6 decimals. The rest pins down the
sub-state rules: grad_avg only when centered, momentum buffer only when
momentum > 0.
"""

import pytest
import torch
import torch.nn as nn

from quasar.config.schema import RMSPropConfig, WeightDecayConfig
from quasar.optim.adaptor import OptimizerAdaptor, gradients_from_model
from quasar.optim.exceptions import ShapeMismatchError, StateMismatchError
from quasar.optim.factory import create_optimizer
from quasar.optim.rmsprop import (
    CenteredState,
    RMSProp,
    RMSPropMomentumState,
    RMSPropState,
    SquareAvgState,
)

LEARNING_RATE = 0.01


def _reference_config(**overrides: object) -> RMSPropConfig:
    values: dict[str, object] = {
        "alpha": 0.99,
        "epsilon": 1e-8,
        "weight_decay": WeightDecayConfig(penalty=0.05),
        "momentum": 0.9,
        "centered": False,
    }
    values.update(overrides)
    return RMSPropConfig(**values)


def _train_step(optimizer: OptimizerAdaptor, model: nn.Module, x: torch.Tensor) -> nn.Module:
    model.zero_grad()
    model(x).sum().backward()
    return optimizer.step(LEARNING_RATE, model, gradients_from_model(model))


class TestRMSPropWithNumbers:
    def test_two_steps_match_reference(self, reference_linear, batch_1, batch_2) -> None:
        optimizer = create_optimizer(_reference_config())

        model = _train_step(optimizer, reference_linear, batch_1)
        model = _train_step(optimizer, model, batch_2)

        weight_expected = torch.tensor([
            [-0.576399, -0.118494, 0.148353, 0.064070, -0.169983, -0.188779],
            [-0.135571, -0.231448, -0.578445, 0.041143, -0.018162, -0.504207],
            [-0.275990, -0.222397, -0.553153, -0.008625, -0.534956, 0.055967],
            [-0.557575, -0.480979, -0.631072, -0.557675, -0.335686, -0.096997],
            [0.078313, -0.469618, 0.119993, -0.424341, 0.127890, -0.281912],
            [-0.271996, -0.268097, -0.130324, -0.064037, -0.226805, 0.127126],
        ])
        bias_expected = torch.tensor(
            [-0.651299, -0.172400, -0.357800, -0.143200, -0.124200, -0.247800]
        )

        torch.testing.assert_close(model.bias.detach(), bias_expected, atol=1e-6, rtol=0.0)
        torch.testing.assert_close(model.weight.detach(), weight_expected, atol=1e-6, rtol=0.0)

    def test_two_steps_from_constant_layer(self, make_linear, batch_1, batch_2) -> None:
        """Same protocol from an all-ones weight and 0.5 bias."""
        optimizer = create_optimizer(_reference_config())
        model = make_linear([[1.0] * 6 for _ in range(6)], [0.5] * 6)

        model = _train_step(optimizer, model, batch_1)
        model = _train_step(optimizer, model, batch_2)

        row_values = [0.743937, 0.783809, 0.742881, 0.740366, 0.748005, 0.743710]
        weight_expected = torch.tensor([[value] * 6 for value in row_values])
        bias_expected = torch.full((6,), 0.239199)

        torch.testing.assert_close(model.bias.detach(), bias_expected, atol=1e-6, rtol=0.0)
        torch.testing.assert_close(model.weight.detach(), weight_expected, atol=1e-6, rtol=0.0)


class TestRMSPropSubStates:
    def test_uncentered_never_keeps_grad_avg(self) -> None:
        rmsprop = RMSProp(_reference_config(centered=False))
        tensor = torch.zeros(4)
        state = None
        for _ in range(3):
            tensor, state = rmsprop.step(LEARNING_RATE, tensor, torch.randn(4), state)
            assert state.centered.grad_avg is None
            assert torch.equal(state.centered.avg, state.square_avg.square_avg)

    def test_centered_always_keeps_grad_avg(self) -> None:
        rmsprop = RMSProp(_reference_config(centered=True))
        tensor = torch.zeros(4)
        state = None
        for _ in range(3):
            tensor, state = rmsprop.step(LEARNING_RATE, tensor, torch.randn(4), state)
            assert state.centered.grad_avg is not None
            assert state.centered.grad_avg.shape == tensor.shape

    def test_centered_avg_subtracts_squared_grad_avg(self) -> None:
        """After one step: avg = (1-a) g^2 - ((1-a) g)^2."""
        alpha = 0.9
        rmsprop = RMSProp(RMSPropConfig(alpha=alpha, centered=True, momentum=0.0))
        grad = torch.tensor([2.0, -1.0])

        _, state = rmsprop.step(LEARNING_RATE, torch.zeros(2), grad)

        expected_square_avg = grad.pow(2) * (1 - alpha)
        expected_grad_avg = grad * (1 - alpha)
        torch.testing.assert_close(state.square_avg.square_avg, expected_square_avg)
        torch.testing.assert_close(state.centered.grad_avg, expected_grad_avg)
        torch.testing.assert_close(
            state.centered.avg, expected_square_avg - expected_grad_avg.pow(2)
        )

    def test_zero_momentum_keeps_no_buffer(self) -> None:
        """momentum == 0: the update is the normalized gradient and no buffer is stored."""
        rmsprop = RMSProp(RMSPropConfig(alpha=0.99, epsilon=1e-8, momentum=0.0))
        grad = torch.tensor([3.0, -0.5])

        new_tensor, state = rmsprop.step(LEARNING_RATE, torch.zeros(2), grad)

        assert state.momentum is None
        # sqrt(0.01 * g^2) = 0.1 |g|, so the normalized grad is 10 * sign(g)
        torch.testing.assert_close(new_tensor, torch.tensor([-0.1, 0.1]), atol=1e-6, rtol=0.0)

    def test_momentum_buffer_accumulates(self) -> None:
        rmsprop = RMSProp(RMSPropConfig(alpha=0.99, epsilon=1e-8, momentum=0.5))
        grad = torch.tensor([1.0])

        _, state = rmsprop.step(LEARNING_RATE, torch.zeros(1), grad)
        first_buffer = state.momentum.buffer.clone()
        _, state = rmsprop.step(LEARNING_RATE, torch.zeros(1), grad, state)

        normalized = grad / (state.centered.avg.sqrt() + 1e-8)
        torch.testing.assert_close(state.momentum.buffer, first_buffer * 0.5 + normalized)


class TestRMSPropStep:
    @pytest.mark.parametrize("centered", [False, True])
    def test_missing_state_equals_zero_state(self, centered: bool) -> None:
        rmsprop = RMSProp(_reference_config(centered=centered))
        torch.manual_seed(0)
        tensor = torch.randn(3, 2)
        grad = torch.randn(3, 2)
        zero_state = RMSPropState(
            square_avg=SquareAvgState(square_avg=torch.zeros(3, 2)),
            centered=CenteredState(
                grad_avg=torch.zeros(3, 2) if centered else None,
                avg=torch.zeros(3, 2),
            ),
            momentum=RMSPropMomentumState(buffer=torch.zeros(3, 2)),
        )

        from_none, state_none = rmsprop.step(LEARNING_RATE, tensor, grad, None)
        from_zero, state_zero = rmsprop.step(LEARNING_RATE, tensor, grad, zero_state)

        assert torch.equal(from_none, from_zero)
        assert torch.equal(state_none.square_avg.square_avg, state_zero.square_avg.square_avg)
        assert torch.equal(state_none.centered.avg, state_zero.centered.avg)
        assert torch.equal(state_none.momentum.buffer, state_zero.momentum.buffer)

    def test_step_is_deterministic(self) -> None:
        rmsprop = RMSProp(_reference_config(centered=True))
        torch.manual_seed(3)
        tensor = torch.randn(6)
        grad = torch.randn(6)
        _, state = rmsprop.step(LEARNING_RATE, tensor, grad)

        first, _ = rmsprop.step(LEARNING_RATE, tensor, grad, state)
        second, _ = rmsprop.step(LEARNING_RATE, tensor, grad, state)

        assert torch.equal(first, second)

    def test_shapes_are_preserved(self) -> None:
        rmsprop = RMSProp(_reference_config(centered=True))
        tensor = torch.randn(2, 5)
        new_tensor, state = rmsprop.step(LEARNING_RATE, tensor, torch.randn(2, 5))

        assert new_tensor.shape == tensor.shape
        assert state.square_avg.square_avg.shape == tensor.shape
        assert state.centered.grad_avg.shape == tensor.shape
        assert state.centered.avg.shape == tensor.shape
        assert state.momentum.buffer.shape == tensor.shape

    def test_state_shape_mismatch_raises(self) -> None:
        rmsprop = RMSProp(_reference_config())
        _, state = rmsprop.step(LEARNING_RATE, torch.zeros(4), torch.ones(4))
        with pytest.raises(ShapeMismatchError):
            rmsprop.step(LEARNING_RATE, torch.zeros(5), torch.ones(5), state)


class TestRMSPropStateDict:
    def test_restoring_centered_state_into_uncentered_optimizer_fails(self) -> None:
        centered = RMSProp(_reference_config(centered=True))
        _, state = centered.step(LEARNING_RATE, torch.zeros(2), torch.ones(2))

        uncentered = RMSProp(_reference_config(centered=False))
        with pytest.raises(StateMismatchError):
            uncentered.state_from_dict(centered.state_to_dict(state))

    def test_restoring_without_momentum_buffer_fails_when_momentum_on(self) -> None:
        no_momentum = RMSProp(_reference_config(momentum=0.0))
        _, state = no_momentum.step(LEARNING_RATE, torch.zeros(2), torch.ones(2))

        with_momentum = RMSProp(_reference_config(momentum=0.9))
        with pytest.raises(StateMismatchError):
            with_momentum.state_from_dict(no_momentum.state_to_dict(state))

    def test_unknown_field_is_rejected(self) -> None:
        rmsprop = RMSProp(_reference_config())
        _, state = rmsprop.step(LEARNING_RATE, torch.zeros(2), torch.ones(2))
        data = rmsprop.state_to_dict(state)
        data["square_avg"] = {**data["square_avg"], "extra": torch.zeros(2)}

        with pytest.raises(StateMismatchError):
            rmsprop.state_from_dict(data)

    def test_inconsistent_square_avg_shape_is_rejected(self) -> None:
        rmsprop = RMSProp(_reference_config())
        _, state = rmsprop.step(LEARNING_RATE, torch.zeros(2, 3), torch.ones(2, 3))
        data = rmsprop.state_to_dict(state)
        data["square_avg"] = {"square_avg": torch.zeros(7)}

        with pytest.raises(StateMismatchError):
            rmsprop.state_from_dict(data)

    def test_inconsistent_grad_avg_shape_is_rejected(self) -> None:
        rmsprop = RMSProp(_reference_config(centered=True))
        _, state = rmsprop.step(LEARNING_RATE, torch.zeros(4), torch.ones(4))
        data = rmsprop.state_to_dict(state)
        data["centered"] = {**data["centered"], "grad_avg": torch.zeros(2, 2)}

        with pytest.raises(StateMismatchError):
            rmsprop.state_from_dict(data)

    def test_non_mapping_sub_state_is_rejected(self) -> None:
        rmsprop = RMSProp(_reference_config())
        _, state = rmsprop.step(LEARNING_RATE, torch.zeros(2), torch.ones(2))
        data = rmsprop.state_to_dict(state)
        data["square_avg"] = None

        with pytest.raises(StateMismatchError):
            rmsprop.state_from_dict(data)


class TestRMSPropToDevice:
    def test_moves_every_tensor(self) -> None:
        rmsprop = RMSProp(_reference_config(centered=True))
        _, state = rmsprop.step(LEARNING_RATE, torch.zeros(3), torch.ones(3))

        moved = rmsprop.to_device(state, torch.device("meta"))

        assert moved.square_avg.square_avg.device.type == "meta"
        assert moved.centered.grad_avg.device.type == "meta"
        assert moved.centered.avg.device.type == "meta"
        assert moved.momentum.buffer.device.type == "meta"

    def test_keeps_absent_sub_states_absent(self) -> None:
        rmsprop = RMSProp(_reference_config(centered=False, momentum=0.0))
        _, state = rmsprop.step(LEARNING_RATE, torch.zeros(3), torch.ones(3))

        moved = rmsprop.to_device(state, torch.device("meta"))

        assert moved.centered.grad_avg is None
        assert moved.momentum is None
        assert moved.centered.avg.device.type == "meta"
