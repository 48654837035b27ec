"""Tests for hybridflow.distributions.conditional module."""

import math

import numpy as np
import pytest

from hybridflow.core.errors import StructuralError
from hybridflow.core.types import DiscreteKey
from hybridflow.decision.tree import DecisionTree
from hybridflow.distributions.conditional import GaussianMixture, GaussianMixtureFactor
from hybridflow.distributions.continuous import GaussianConditional, JacobianFactor
from hybridflow.distributions.discrete import DecisionTreeFactor


M1 = DiscreteKey("m1", 2)
M2 = DiscreteKey("m2", 2)


def _motion(b):
    return JacobianFactor([("x1", [[-1.0]]), ("x2", [[1.0]])], [b])


def _transition(d):
    return GaussianConditional([("x2", [[1.0]]), ("x1", [[-1.0]])], 1, [d])


@pytest.fixture
def mixture():
    return GaussianMixture(["x2"], ["x1"], [M1], [_transition(0.0), _transition(1.0)])


# ------------------------------------------------------------------ #
#  GaussianMixtureFactor
# ------------------------------------------------------------------ #

class TestGaussianMixtureFactor:
    def test_select(self):
        still, moving = _motion(0.0), _motion(1.0)
        f = GaussianMixtureFactor(["x1", "x2"], [M1], [still, moving])
        assert f({"m1": 1}) is moving
        assert f.keys == ["x1", "x2", "m1"]

    def test_component_keys_must_match(self):
        wrong = JacobianFactor([("x1", [[1.0]])], [0.0])
        with pytest.raises(StructuralError):
            GaussianMixtureFactor(["x1", "x2"], [M1], [_motion(0.0), wrong])

    def test_component_count(self):
        with pytest.raises(StructuralError):
            GaussianMixtureFactor(["x1", "x2"], [M1, M2], [_motion(0.0), _motion(1.0)])

    def test_error(self):
        f = GaussianMixtureFactor(["x1", "x2"], [M1], [_motion(0.0), _motion(1.0)])
        values = {"x1": np.array([0.0]), "x2": np.array([1.0])}
        assert f.error(values, {"m1": 0}) == pytest.approx(0.5)
        assert f.error(values, {"m1": 1}) == pytest.approx(0.0)

    def test_error_pruned_is_inf(self):
        f = GaussianMixtureFactor(["x1", "x2"], [M1], [None, _motion(1.0)])
        values = {"x1": np.array([0.0]), "x2": np.array([1.0])}
        assert f.error(values, {"m1": 0}) == math.inf

    def test_error_missing_assignment(self):
        f = GaussianMixtureFactor(["x1", "x2"], [M1], [_motion(0.0), _motion(1.0)])
        with pytest.raises(ValueError):
            f.error({"x1": np.array([0.0]), "x2": np.array([0.0])}, {})

    def test_add_to_collects_slices(self):
        f1 = GaussianMixtureFactor(["x1", "x2"], [M1], [_motion(0.0), _motion(1.0)])
        f2 = GaussianMixtureFactor(["x1", "x2"], [M2], [_motion(2.0), None])
        slices = f2.add_to(f1.add_to(DecisionTree.constant(())))
        assert slices.keys == [M1, M2]
        assert len(slices({"m1": 1, "m2": 0})) == 2
        assert slices({"m1": 0, "m2": 1}) is None


# ------------------------------------------------------------------ #
#  GaussianMixture
# ------------------------------------------------------------------ #

class TestGaussianMixture:
    def test_structure(self, mixture):
        assert mixture.frontals == ["x2"]
        assert mixture.continuous_parents == ["x1"]
        assert mixture.parents == ["x1", "m1"]
        assert mixture.nr_components() == 2

    def test_choose(self, mixture):
        chosen = mixture.choose({"m1": 1})
        np.testing.assert_allclose(chosen.d, [1.0])

    def test_choose_missing_key(self, mixture):
        with pytest.raises(ValueError):
            mixture.choose({"m2": 1})

    def test_frontal_mismatch(self):
        with pytest.raises(StructuralError):
            GaussianMixture(["x1"], ["x2"], [M1], [_transition(0.0), _transition(1.0)])

    def test_prune(self, mixture):
        decision = DecisionTreeFactor([M1], [0.0, 0.7])
        pruned = mixture.prune(decision)
        assert pruned.nr_components() == 1
        assert pruned({"m1": 0}) is None
        assert pruned.components.nr_leaves == 2
        with pytest.raises(ValueError):
            pruned.choose({"m1": 0})
        values = {"x1": np.array([0.0]), "x2": np.array([1.0])}
        assert pruned.log_probability(values, {"m1": 0}) == -math.inf
        assert pruned.error(values, {"m1": 0}) == math.inf

    def test_prune_ignores_foreign_keys(self, mixture):
        decision = DecisionTreeFactor([M2], [0.0, 1.0])
        assert mixture.prune(decision) is mixture

    def test_prune_with_subset_of_keys(self):
        components = [_transition(float(i)) for i in range(4)]
        mixture = GaussianMixture(["x2"], ["x1"], [M1, M2], components)
        decision = DecisionTreeFactor([M2], [1.0, 0.0])
        pruned = mixture.prune(decision)
        assert pruned.nr_components() == 2
        assert pruned({"m1": 1, "m2": 1}) is None
        assert pruned({"m1": 1, "m2": 0}) is components[2]

    def test_log_probability(self, mixture):
        values = {"x1": np.array([0.0]), "x2": np.array([1.0])}
        expected = -0.5 * math.log(2.0 * math.pi)
        assert mixture.log_probability(values, {"m1": 1}) == pytest.approx(expected)
        assert mixture.log_probability(values, {"m1": 0}) == pytest.approx(expected - 0.5)

    def test_as_factor(self, mixture):
        f = mixture.as_factor()
        assert isinstance(f, GaussianMixtureFactor)
        assert f.continuous_keys == ["x2", "x1"]
        assert f({"m1": 0}) is mixture({"m1": 0})

    def test_equals(self, mixture):
        same = GaussianMixture(["x2"], ["x1"], [M1],
                               [_transition(0.0), _transition(1.0)])
        other = GaussianMixture(["x2"], ["x1"], [M1],
                                [_transition(0.0), _transition(2.0)])
        assert mixture.equals(same)
        assert not mixture.equals(other)
