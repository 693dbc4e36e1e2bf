"""Unit tests for jogarm.motion.filters."""

import numpy as np
import pytest

from jogarm.motion.filters import JointFilterBank, LowPassFilter


class TestLowPassFilter:
    """Scalar second-order filter."""

    def test_reset_then_constant_input_is_steady(self):
        """After reset(5.0), filtering 5.0 returns 5.0 every time."""
        f = LowPassFilter(2.0)
        f.reset(5.0)
        for _ in range(3):
            assert f.filter(5.0) == pytest.approx(5.0, abs=1e-12)

    def test_step_response_converges_without_overshooting_wildly(self):
        """A unit step settles at 1 and stays bounded on the way."""
        f = LowPassFilter(2.0)
        f.reset(0.0)
        out = [f.filter(1.0) for _ in range(60)]
        assert max(abs(v) for v in out) < 1.5
        assert out[-1] == pytest.approx(1.0, abs=1e-6)

    def test_first_output_after_zero_reset(self):
        """First sample of a step is k * x since the history is all zero."""
        c = 2.0
        f = LowPassFilter(c)
        f.reset(0.0)
        k = 1.0 / (1.0 + c * c + 1.414 * c)
        assert f.filter(1.0) == pytest.approx(k)

    def test_heavier_coefficient_filters_more(self):
        """A larger coefficient responds more slowly to a step."""
        light, heavy = LowPassFilter(1.5), LowPassFilter(8.0)
        light.reset(0.0)
        heavy.reset(0.0)
        for _ in range(3):
            a, b = light.filter(1.0), heavy.filter(1.0)
        assert b < a

    @pytest.mark.parametrize("coeff", [0.0, -1.0, float("nan")])
    def test_rejects_non_positive_coefficient(self, coeff):
        with pytest.raises(ValueError):
            LowPassFilter(coeff)


class TestJointFilterBank:
    """Vectorised bank must match independent scalar filters."""

    def test_matches_scalar_filters(self):
        rng = np.random.default_rng(7)
        bank = JointFilterBank(4, 3.0)
        scalars = [LowPassFilter(3.0) for _ in range(4)]
        init = rng.normal(size=4)
        bank.reset(init)
        for f, v in zip(scalars, init):
            f.reset(v)

        for _ in range(20):
            sample = rng.normal(size=4)
            out = bank.filter(sample)
            expected = [f.filter(v) for f, v in zip(scalars, sample)]
            np.testing.assert_allclose(out, expected, rtol=1e-12, atol=1e-12)

    def test_scalar_reset_broadcasts(self):
        bank = JointFilterBank(3, 2.0)
        bank.reset(2.5)
        np.testing.assert_allclose(bank.filter(np.full(3, 2.5)), 2.5)

    def test_reset_channels_only_touches_masked_joints(self):
        bank = JointFilterBank(3, 2.0)
        bank.reset(0.0)
        for _ in range(5):
            bank.filter(np.ones(3))
        bank.reset_channels(np.array([False, True, False]), np.array([9.0, 4.0, 9.0]))
        out = bank.filter(np.array([1.0, 4.0, 1.0]))
        assert out[1] == pytest.approx(4.0)
        assert out[0] == pytest.approx(out[2])
        assert out[0] != pytest.approx(9.0)

    def test_rejects_wrong_length(self):
        bank = JointFilterBank(3, 2.0)
        with pytest.raises(ValueError):
            bank.filter(np.zeros(4))
