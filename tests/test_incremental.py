"""Tests for hybridflow.inference.incremental module.

Each scenario feeds a switching chain to :class:`HybridGaussianISAM` in
batches and checks the clique structure, the mixtures and the mode weights
against batch elimination of the same factors.
"""

import numpy as np
import pytest

from hybridflow.core.errors import OrderingError
from hybridflow.inference.incremental import HybridGaussianISAM
from hybridflow.networks.factor_graph import HybridGaussianFactorGraph
from hybridflow.networks.graph import M, X, build_switching_chain


def _subgraph(chain, indices):
    return HybridGaussianFactorGraph([chain.factor_graph[i] for i in indices])


def _labels(discrete_keys):
    return [dk.key for dk in discrete_keys]


# Mode weights of the three-state chain at the discrete root, by (m1, m2).
ROOT_WEIGHTS = {
    (0, 0): 0.0619233,
    (1, 0): 0.183743,
    (0, 1): 0.204159,
    (1, 1): 0.2,
}

# Unpruned mode weights of the four-state chain, by (m3, m2, m1).
FOUR_STATE_WEIGHTS = {
    (0, 0, 0): 0.11267528,
    (0, 0, 1): 0.18576102,
    (0, 1, 0): 0.18754662,
    (0, 1, 1): 0.30623871,
    (1, 0, 0): 0.18576102,
    (1, 0, 1): 0.30622428,
    (1, 1, 0): 0.30623871,
    (1, 1, 1): 0.5,
}


# -----------------------------------------------------------------------
# Exact incremental updates
# -----------------------------------------------------------------------

class TestIncrementalElimination:
    @pytest.fixture
    def chain(self):
        return build_switching_chain(3)

    def test_first_batch(self, chain):
        isam = HybridGaussianISAM()
        isam.update(_subgraph(chain, [0, 1, 2, 5]))
        assert len(isam) == 3
        assert isam[X(1)].frontals == [X(1)]
        assert isam[X(1)].parents == [X(2), M(1)]
        assert isam[X(2)].frontals == [X(2), X(3)]
        assert isam[X(2)].parents == [M(1), M(2)]

    def test_second_batch(self, chain):
        isam = HybridGaussianISAM()
        isam.update(_subgraph(chain, [0, 1, 2, 5]))
        isam.update(_subgraph(chain, [4, 6]))
        assert len(isam) == 3
        assert isam[X(3)].frontals == [X(2), X(3)]
        assert isam[X(3)].parents == [M(1), M(2)]
        # the untouched x1 clique is reattached below the new one
        tree = isam.bayes_tree
        assert tree.parent(isam[X(1)]) == isam[X(2)]

    def test_empty_update(self, chain):
        isam = HybridGaussianISAM()
        isam.update(_subgraph(chain, [0, 1, 2, 5]))
        before = isam.bayes_tree
        isam.update(HybridGaussianFactorGraph())
        assert len(isam) == 3
        assert isam[X(1)] == before[X(1)]

    def test_bad_ordering_leaves_tree(self, chain):
        isam = HybridGaussianISAM()
        isam.update(_subgraph(chain, [0, 1, 2, 5]))
        before = isam.bayes_tree
        with pytest.raises(OrderingError):
            isam.update(_subgraph(chain, [4, 6]), ordering=[M(1), X(2), X(3), M(2)])
        assert isam.bayes_tree is before
        assert len(isam) == 3


class TestIncrementalInference:
    @pytest.fixture
    def chain(self):
        return build_switching_chain(3)

    @pytest.fixture
    def isam(self, chain):
        isam = HybridGaussianISAM()
        isam.update(_subgraph(chain, [0, 1, 3, 5]))
        return isam

    def test_first_batch_root(self, isam):
        root = isam[M(1)].conditional.as_discrete()
        assert _labels(root.discrete_keys) == [M(1)]
        assert isam[X(1)] is isam[X(2)]

    def test_mixtures_match_batch(self, isam, chain):
        isam.update(_subgraph(chain, [2, 4, 6]))
        expected, _ = chain.factor_graph.eliminate_partial_multifrontal(
            chain.continuous_keys)
        for key in (X(1), X(2)):
            actual = isam[key].conditional.as_mixture()
            assert actual.equals(expected[key].conditional.as_mixture(), 1e-8)

    def test_mode_weights(self, isam, chain):
        isam.update(_subgraph(chain, [2, 4, 6]))
        root = isam[M(2)].conditional.as_discrete()
        for (m1, m2), weight in ROOT_WEIGHTS.items():
            assert root({M(1): m1, M(2): m2}) == pytest.approx(weight, abs=1e-5)

    def test_mode_weights_match_batch(self, isam, chain):
        isam.update(_subgraph(chain, [2, 4, 6]))
        _, remaining = chain.factor_graph.eliminate_partial_multifrontal(
            chain.continuous_keys)
        batch, _ = remaining.eliminate_multifrontal([M(1), M(2)])
        expected = batch[M(1)].conditional.as_discrete()
        actual = isam[M(2)].conditional.as_discrete()
        assert actual.equals(expected, 1e-8)

    def test_optimize_matches_batch(self, isam, chain):
        isam.update(_subgraph(chain, [2, 4, 6]))
        batch, _ = chain.factor_graph.eliminate_multifrontal()
        expected = batch.optimize()
        result = isam.bayes_tree.optimize()
        assert result.discrete == expected.discrete
        for key in chain.continuous_keys:
            np.testing.assert_allclose(result.continuous[key],
                                       expected.continuous[key], atol=1e-8)


# -----------------------------------------------------------------------
# Incremental updates with mode pruning
# -----------------------------------------------------------------------

class TestApproxInference:
    @pytest.fixture
    def chain(self):
        return build_switching_chain(4)

    @pytest.fixture
    def graph(self, chain):
        return _subgraph(chain, [1, 2, 3, 0, 4, 5, 6, 7])

    def test_structure(self, graph):
        isam = HybridGaussianISAM()
        isam.update(graph)
        assert len(isam) == 4
        assert isam[X(1)].parents == [X(2), M(1)]
        assert isam[X(2)].parents == [X(3), M(1), M(2)]
        assert isam[X(3)].frontals == [X(3), X(4)]
        assert isam[X(3)].parents == [M(1), M(2), M(3)]
        assert isam[M(1)].frontals == [M(1), M(2), M(3)]

    def test_unpruned_weights(self, graph):
        isam = HybridGaussianISAM()
        isam.update(graph)
        root = isam[M(3)].conditional.as_discrete()
        for (m3, m2, m1), weight in FOUR_STATE_WEIGHTS.items():
            value = root({M(1): m1, M(2): m2, M(3): m3})
            assert value == pytest.approx(weight, rel=1e-4)

    def test_prune_root(self, graph):
        isam = HybridGaussianISAM()
        isam.update(graph)
        isam.prune(M(3), 5)
        root = isam[M(1)].conditional.as_discrete()
        assert _labels(root.discrete_keys) == [M(1), M(2), M(3)]
        assert root.nr_nonzero() == 5
        zeros = {(a[M(3)], a[M(2)], a[M(1)]) for a, v in root.enumerate() if v == 0}
        assert zeros == {(0, 0, 0), (0, 0, 1), (1, 0, 0)}

    def test_pruned_mixture_matches_batch(self, graph, chain):
        isam = HybridGaussianISAM()
        isam.update(graph)
        isam.prune(M(3), 5)
        unpruned, _ = graph.eliminate_partial_multifrontal(chain.continuous_keys)
        root = isam[M(1)].conditional.as_discrete()
        actual = isam[X(4)].conditional.as_mixture()
        expected = unpruned[X(4)].conditional.as_mixture()
        for assignment, weight in root.enumerate():
            if weight == 0:
                assert actual(assignment) is None
            else:
                assert actual(assignment).equals(expected(assignment), 1e-9)

    def test_other_mixtures_untouched(self, graph):
        isam = HybridGaussianISAM()
        isam.update(graph)
        before = isam.bayes_tree
        isam.prune(M(3), 5)
        assert isam[X(1)].conditional.as_mixture().nr_components() == 2
        assert isam[X(2)].conditional.as_mixture().nr_components() == 4
        # earlier snapshots keep every mode
        assert before[X(4)].conditional.as_mixture().nr_components() == 8

    def test_prune_unknown_key(self, graph):
        isam = HybridGaussianISAM()
        isam.update(graph)
        with pytest.raises(KeyError):
            isam.prune(M(9), 5)


class TestIncrementalApproximate:
    @pytest.fixture
    def chain(self):
        return build_switching_chain(5)

    def test_two_rounds(self, chain):
        isam = HybridGaussianISAM()
        isam.update(_subgraph(chain, [1, 2, 3, 0, 5, 6, 7]))
        isam.prune(M(3), 5)
        assert len(isam) == 4
        counts = [isam[X(k)].conditional.as_mixture().nr_components()
                  for k in range(1, 5)]
        assert counts == [2, 4, 5, 5]

        isam.update(_subgraph(chain, [4, 8]))
        isam.prune(M(4), 5)
        assert len(isam) == 5
        assert isam[X(4)].conditional.as_mixture().nr_components() == 5
        assert isam[X(5)].conditional.as_mixture().nr_components() == 5
        assert isam[X(4)] is isam[X(5)]

    def test_orphans_reattached(self, chain):
        isam = HybridGaussianISAM()
        isam.update(_subgraph(chain, [1, 2, 3, 0, 5, 6, 7]))
        isam.prune(M(3), 5)
        isam.update(_subgraph(chain, [4, 8]))
        tree = isam.bayes_tree
        assert tree.parent(isam[X(2)]) == isam[X(3)]
        assert tree.parent(isam[X(1)]) == isam[X(2)]
        assert isam[X(3)].frontals == [X(3)]
        assert [c.frontals for c in tree.roots] == [[M(1), M(2), M(3), M(4)]]
