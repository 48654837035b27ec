"""Tests for hybridflow.distributions.continuous module."""

import math

import numpy as np
import pytest

from hybridflow.core.errors import IndeterminantLinearSystemError, StructuralError
from hybridflow.distributions.continuous import (
    GaussianBayesNet,
    GaussianConditional,
    GaussianFactorGraph,
    JacobianFactor,
    eliminate_qr,
)


def _prior():
    return JacobianFactor([("x1", [[10.0]])], [-10.0])


def _between():
    return JacobianFactor([("x1", [[-1.0]]), ("x2", [[1.0]])], [-1.0])


# ------------------------------------------------------------------ #
#  JacobianFactor
# ------------------------------------------------------------------ #

class TestJacobianFactor:
    def test_error(self):
        f = JacobianFactor([("x1", [[1.0]])], [0.0], sigmas=0.1)
        assert f.error({"x1": np.array([0.1])}) == pytest.approx(0.5)

    def test_whitening(self):
        f = JacobianFactor([("x1", [[1.0], [2.0]])], [1.0, 2.0],
                           sigmas=[0.5, 2.0])
        np.testing.assert_allclose(f.A("x1"), [[2.0], [1.0]])
        np.testing.assert_allclose(f.b, [2.0, 1.0])

    def test_row_mismatch(self):
        with pytest.raises(StructuralError):
            JacobianFactor([("x1", [[1.0], [2.0]])], [0.0])

    def test_duplicate_key(self):
        with pytest.raises(StructuralError):
            JacobianFactor([("x1", [[1.0]]), ("x1", [[2.0]])], [0.0])

    def test_unknown_block(self):
        with pytest.raises(KeyError):
            _prior().A("x2")

    def test_missing_value(self):
        with pytest.raises(KeyError):
            _between().error({"x1": np.array([0.0])})

    def test_structure(self):
        f = _between()
        assert f.keys == ["x1", "x2"]
        assert f.rows == 1
        assert f.dim("x2") == 1
        assert not f.empty()


# ------------------------------------------------------------------ #
#  GaussianConditional
# ------------------------------------------------------------------ #

class TestGaussianConditional:
    def test_from_mean_and_stddev(self):
        c = GaussianConditional.from_mean_and_stddev("x", [1.0, 2.0], 0.5)
        np.testing.assert_allclose(c.R, 2.0 * np.eye(2))
        np.testing.assert_allclose(c.solve({})["x"], [1.0, 2.0])

    def test_log_normalization_constant(self):
        c = GaussianConditional.from_mean_and_stddev("x", [1.0, 2.0], 0.5)
        expected = 2.0 * math.log(2.0) - math.log(2.0 * math.pi)
        assert c.log_normalization_constant() == pytest.approx(expected)
        assert c.log_probability({"x": np.array([1.0, 2.0])}) == pytest.approx(expected)

    def test_solve_with_parent(self):
        c = GaussianConditional([("x2", [[2.0]]), ("x1", [[-2.0]])], 1, [2.0])
        assert c.frontals == ["x2"]
        assert c.parents == ["x1"]
        np.testing.assert_allclose(c.solve({"x1": np.array([3.0])})["x2"], [4.0])

    def test_missing_parent(self):
        c = GaussianConditional([("x2", [[2.0]]), ("x1", [[-2.0]])], 1, [2.0])
        with pytest.raises(KeyError):
            c.solve({})

    def test_non_square_r(self):
        with pytest.raises(StructuralError):
            GaussianConditional([("x", [[1.0, 0.0]])], 1, [0.0])

    def test_S_of_frontal(self):
        c = GaussianConditional([("x2", [[2.0]]), ("x1", [[-2.0]])], 1, [2.0])
        np.testing.assert_allclose(c.S("x1"), [[-2.0]])
        with pytest.raises(KeyError):
            c.S("x2")


# ------------------------------------------------------------------ #
#  QR elimination
# ------------------------------------------------------------------ #

class TestEliminateQR:
    def test_remainder_information(self):
        conditional, remainder = eliminate_qr([_prior(), _between()], ["x1"])
        assert conditional.frontals == ["x1"]
        assert conditional.parents == ["x2"]
        assert remainder.keys == ["x2"]
        assert remainder.rows == 1
        a = remainder.A("x2")
        assert float(a.T @ a) == pytest.approx(100.0 / 101.0)

    def test_positive_diagonal(self):
        conditional, _ = eliminate_qr([_prior(), _between()], ["x1"])
        assert np.all(np.diag(conditional.R) > 0)
        assert float(conditional.R[0, 0]) == pytest.approx(math.sqrt(101.0))

    @pytest.mark.parametrize("x1,x2", [(0.3, -0.7), (-1.0, 0.0), (2.5, 1.5)])
    def test_error_splits(self, x1, x2):
        factors = [_prior(), _between()]
        values = {"x1": np.array([x1]), "x2": np.array([x2])}
        conditional, remainder = eliminate_qr(factors, ["x1"])
        total = sum(f.error(values) for f in factors)
        assert conditional.error(values) + remainder.error(values) == pytest.approx(total)

    def test_constant_residual_kept(self):
        # two inconsistent priors leave a constant error behind
        factors = [
            JacobianFactor([("x1", [[1.0]])], [0.0]),
            JacobianFactor([("x1", [[1.0]])], [2.0]),
        ]
        _, remainder = eliminate_qr(factors, ["x1"])
        assert remainder.empty()
        assert remainder.error({}) == pytest.approx(1.0)

    def test_singular_names_key(self):
        factor = JacobianFactor([("x1", [[0.0]]), ("x2", [[1.0]])], [1.0])
        with pytest.raises(IndeterminantLinearSystemError) as excinfo:
            eliminate_qr([factor], ["x1"])
        assert excinfo.value.key == "x1"

    def test_too_few_rows(self):
        factor = JacobianFactor([("x1", [[1.0]]), ("x2", [[1.0]])], [1.0])
        with pytest.raises(IndeterminantLinearSystemError) as excinfo:
            eliminate_qr([factor], ["x1", "x2"])
        assert excinfo.value.key == "x2"

    def test_dimension_mismatch(self):
        f1 = JacobianFactor([("x1", [[1.0]])], [0.0])
        f2 = JacobianFactor([("x1", [[1.0, 0.0]])], [0.0])
        with pytest.raises(StructuralError):
            eliminate_qr([f1, f2], ["x1"])

    def test_explicit_separator_order(self):
        f = JacobianFactor(
            [("x1", [[1.0]]), ("x2", [[1.0]]), ("x3", [[1.0]])], [0.0])
        conditional, _ = eliminate_qr([f], ["x1"], separator_keys=["x3", "x2"])
        assert conditional.parents == ["x3", "x2"]


# ------------------------------------------------------------------ #
#  Containers
# ------------------------------------------------------------------ #

class TestGaussianFactorGraph:
    def test_optimize_chain(self):
        graph = GaussianFactorGraph([
            JacobianFactor([("x1", [[1.0]])], [0.0]),
            JacobianFactor([("x1", [[-1.0]]), ("x2", [[1.0]])], [1.0]),
        ])
        values = graph.optimize()
        np.testing.assert_allclose(values["x1"], [0.0], atol=1e-12)
        np.testing.assert_allclose(values["x2"], [1.0])

    def test_bayes_net_order(self):
        graph = GaussianFactorGraph([_prior(), _between()])
        bayes_net = graph.eliminate_sequential(["x1", "x2"])
        assert isinstance(bayes_net, GaussianBayesNet)
        assert [c.frontals for c in bayes_net] == [["x1"], ["x2"]]
        with pytest.raises(IndexError):
            bayes_net.at(2)

    def test_log_probability_matches_error(self):
        graph = GaussianFactorGraph([_prior(), _between()])
        bayes_net = graph.eliminate_sequential()
        values = {"x1": np.array([-0.9]), "x2": np.array([0.2])}
        constant = sum(c.log_normalization_constant() for c in bayes_net)
        assert bayes_net.log_probability(values) == pytest.approx(
            constant - graph.error(values))
