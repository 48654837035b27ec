"""Tests for hybridflow.distributions.hybrid module."""

import numpy as np
import pytest

from hybridflow.core.types import DiscreteKey, FactorKind
from hybridflow.distributions.conditional import GaussianMixture, GaussianMixtureFactor
from hybridflow.distributions.continuous import GaussianConditional, JacobianFactor
from hybridflow.distributions.discrete import DecisionTreeFactor, DiscreteConditional
from hybridflow.distributions.hybrid import HybridConditional, HybridFactor


M1 = DiscreteKey("m1", 2)


def _motion(b):
    return JacobianFactor([("x1", [[-1.0]]), ("x2", [[1.0]])], [b])


def _transition(d):
    return GaussianConditional([("x2", [[1.0]]), ("x1", [[-1.0]])], 1, [d])


# ----------------------------------------------------------------------
# HybridFactor
# ----------------------------------------------------------------------

class TestHybridFactor:
    def test_continuous(self):
        f = HybridFactor(_motion(0.0))
        assert f.kind is FactorKind.CONTINUOUS
        assert f.is_continuous()
        assert f.keys == ["x1", "x2"]
        assert f.discrete_keys == []
        assert f.as_gaussian() is f.inner
        assert f.as_discrete() is None
        assert f.as_mixture() is None

    def test_discrete(self):
        table = DecisionTreeFactor([M1], [0.2, 0.8])
        f = HybridFactor(table)
        assert f.is_discrete()
        assert f.continuous_keys == []
        assert f.keys == ["m1"]
        assert f.as_discrete() is table
        assert f.as_gaussian() is None

    def test_mixture_factor(self):
        mixture = GaussianMixtureFactor(["x1", "x2"], [M1], [_motion(0.0), _motion(1.0)])
        f = HybridFactor(mixture)
        assert f.is_hybrid()
        assert f.continuous_keys == ["x1", "x2"]
        assert f.discrete_keys == [M1]
        assert f.keys == ["x1", "x2", "m1"]
        assert f.as_mixture() is mixture

    def test_mixture_conditional_keys(self):
        mixture = GaussianMixture(["x2"], ["x1"], [M1],
                                  [_transition(0.0), _transition(1.0)])
        f = HybridFactor(mixture)
        assert f.continuous_keys == ["x2", "x1"]
        assert f.discrete_keys == [M1]

    def test_rewrap_unwraps(self):
        inner = _motion(0.0)
        f = HybridFactor(HybridFactor(inner))
        assert f.inner is inner

    def test_unsupported(self):
        with pytest.raises(TypeError):
            HybridFactor("not a factor")

    def test_components(self):
        gaussian = _motion(0.0)
        tree = HybridFactor(gaussian).components()
        assert tree.keys == []
        assert tree({}) is gaussian
        with pytest.raises(TypeError):
            HybridFactor(DecisionTreeFactor([M1], [1.0, 1.0])).components()

    def test_error_dispatch(self):
        values = {"x1": np.array([0.0]), "x2": np.array([1.0])}
        assert HybridFactor(_motion(0.0)).error(values, {}) == pytest.approx(0.5)
        table = HybridFactor(DecisionTreeFactor([M1], [1.0, np.exp(-2.0)]))
        assert table.error(values, {"m1": 1}) == pytest.approx(2.0)
        mixture = HybridFactor(GaussianMixtureFactor(
            ["x1", "x2"], [M1], [_motion(0.0), _motion(1.0)]))
        assert mixture.error(values, {"m1": 1}) == pytest.approx(0.0)


# ----------------------------------------------------------------------
# HybridConditional
# ----------------------------------------------------------------------

class TestHybridConditional:
    def test_rejects_plain_factor(self):
        with pytest.raises(TypeError):
            HybridConditional(_motion(0.0))

    def test_gaussian(self):
        c = HybridConditional(_transition(0.0))
        assert c.frontals == ["x2"]
        assert c.continuous_parents == ["x1"]
        assert c.discrete_parents == []

    def test_mixture(self):
        c = HybridConditional(GaussianMixture(
            ["x2"], ["x1"], [M1], [_transition(0.0), _transition(1.0)]))
        assert c.parents == ["x1", "m1"]
        assert c.continuous_parents == ["x1"]
        assert c.discrete_parents == [M1]
        assert c.nr_frontals == 1

    def test_discrete(self):
        m2 = DiscreteKey("m2", 2)
        c = HybridConditional(DiscreteConditional.from_signature(m2, [M1], "1/2 3/2"))
        assert c.frontals == ["m2"]
        assert c.discrete_parents == [M1]
        assert c.continuous_parents == []
        assert c.evaluate({}, {"m1": 1, "m2": 0}) == pytest.approx(0.6)

    def test_prune(self):
        c = HybridConditional(GaussianMixture(
            ["x2"], ["x1"], [M1], [_transition(0.0), _transition(1.0)]))
        pruned = c.prune(DecisionTreeFactor([M1], [1.0, 0.0]))
        assert pruned is not c
        assert pruned.as_mixture().nr_components() == 1
        unrelated = DecisionTreeFactor([DiscreteKey("m9", 2)], [1.0, 0.0])
        assert c.prune(unrelated) is c
        gaussian = HybridConditional(_transition(0.0))
        assert gaussian.prune(DecisionTreeFactor([M1], [1.0, 0.0])) is gaussian

    def test_log_probability_dispatch(self):
        c = HybridConditional(GaussianMixture(
            ["x2"], ["x1"], [M1], [_transition(0.0), _transition(1.0)]))
        values = {"x1": np.array([0.0]), "x2": np.array([0.0])}
        expected = -0.5 * np.log(2.0 * np.pi)
        assert c.log_probability(values, {"m1": 0}) == pytest.approx(expected)

    def test_equals(self):
        a = HybridConditional(_transition(0.0))
        assert a.equals(HybridConditional(_transition(0.0)))
        assert not a.equals(HybridConditional(_transition(1.0)))
