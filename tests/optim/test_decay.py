# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
Tests for the two weight decay flavors.

Adam's accumulator keeps a buffer; RMSProp's coupled penalty keeps nothing
and depends on the parameter value instead.
"""

import pytest
import torch

from quasar.config.schema import WeightDecayConfig
from quasar.optim.decay import CoupledWeightDecay, WeightDecay, WeightDecayState
from quasar.optim.exceptions import ShapeMismatchError, StateMismatchError


class TestAccumulatorWeightDecay:
    def test_first_call_scales_gradient_by_penalty(self) -> None:
        decay = WeightDecay(WeightDecayConfig(penalty=0.5))
        grad = torch.tensor([2.0, -4.0])

        new_grad, state = decay.transform(grad, None)

        assert torch.equal(new_grad, torch.tensor([1.0, -2.0]))
        assert torch.equal(state.buffer, new_grad)

    def test_buffer_decays_and_accumulates(self) -> None:
        decay = WeightDecay(WeightDecayConfig(penalty=0.5, decay_rate=0.5))
        _, state = decay.transform(torch.tensor([2.0]), None)

        new_grad, state = decay.transform(torch.tensor([4.0]), state)

        # 1.0 * 0.5 + 4.0 * 0.5
        assert torch.equal(new_grad, torch.tensor([2.5]))
        assert torch.equal(state.buffer, torch.tensor([2.5]))

    def test_missing_state_equals_zero_buffer(self) -> None:
        decay = WeightDecay(WeightDecayConfig(penalty=0.3))
        grad = torch.tensor([1.5, -0.25, 8.0])

        from_none, _ = decay.transform(grad, None)
        from_zero, _ = decay.transform(grad, WeightDecayState(buffer=torch.zeros(3)))

        assert torch.equal(from_none, from_zero)

    def test_buffer_shape_mismatch_raises(self) -> None:
        decay = WeightDecay(WeightDecayConfig(penalty=0.3))
        with pytest.raises(ShapeMismatchError):
            decay.transform(torch.ones(3), WeightDecayState(buffer=torch.zeros(4)))


class TestCoupledWeightDecay:
    def test_adds_penalty_times_parameter(self) -> None:
        decay = CoupledWeightDecay(WeightDecayConfig(penalty=0.1))
        out = decay.transform(torch.tensor([1.0, 1.0]), torch.tensor([10.0, -10.0]))
        torch.testing.assert_close(out, torch.tensor([2.0, 0.0]))

    def test_zero_penalty_is_identity(self) -> None:
        decay = CoupledWeightDecay(WeightDecayConfig(penalty=0.0))
        grad = torch.tensor([0.25, -3.0])
        assert torch.equal(decay.transform(grad, torch.tensor([7.0, 7.0])), grad)


class TestWeightDecayState:
    def test_dict_round_trip(self) -> None:
        state = WeightDecayState(buffer=torch.arange(4.0))
        restored = WeightDecayState.from_dict(state.to_dict())
        assert torch.equal(restored.buffer, state.buffer)

    def test_non_tensor_buffer_is_rejected(self) -> None:
        with pytest.raises(StateMismatchError):
            WeightDecayState.from_dict({"buffer": [1.0, 2.0]})
