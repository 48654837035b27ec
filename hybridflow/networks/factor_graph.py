"""Hybrid Gaussian factor graph.

Provides :class:`HybridGaussianFactorGraph`, an ordered list of
:class:`~hybridflow.distributions.hybrid.HybridFactor` with sequential and
multifrontal elimination into a
:class:`~hybridflow.networks.dag.HybridBayesNet` or
:class:`~hybridflow.networks.bayes_tree.HybridBayesTree`.
"""

from __future__ import annotations

from typing import Any, Dict, Iterable, Iterator, List, Optional, Sequence, Tuple

from hybridflow.core.types import Assignment, DiscreteKey
from hybridflow.distributions.continuous import Values
from hybridflow.distributions.discrete import DecisionTreeFactor
from hybridflow.distributions.hybrid import HybridFactor
from hybridflow.inference import elimination_tree
from hybridflow.inference.elimination import EliminationStrategy
from hybridflow.networks.bayes_tree import HybridBayesTree
from hybridflow.networks.dag import HybridBayesNet


class HybridGaussianFactorGraph:
    """Ordered list of hybrid factors.

    Raw Gaussian, discrete and mixture factors are wrapped in
    :class:`HybridFactor` when pushed.

    Examples
    --------
    >>> graph = HybridGaussianFactorGraph()
    >>> graph.push_back(JacobianFactor([("x1", [[1.0]])], [0.0]))
    >>> graph.push_back(GaussianMixtureFactor(["x1", "x2"], [m1], [still, moving]))
    >>> bayes_net, remaining = graph.eliminate_sequential()
    """

    def __init__(self, factors: Iterable[Any] = ()) -> None:
        self._factors: List[HybridFactor] = []
        for factor in factors:
            self.push_back(factor)

    # ------------------------------------------------------------------ #
    #  Construction
    # ------------------------------------------------------------------ #

    def push_back(self, factor: Any) -> None:
        """Append a factor, or every factor of a graph or list."""
        if isinstance(factor, (HybridGaussianFactorGraph, list, tuple)):
            for f in factor:
                self.push_back(f)
            return
        if not isinstance(factor, HybridFactor):
            factor = HybridFactor(factor)
        self._factors.append(factor)

    def add_discrete(self, keys: Sequence[DiscreteKey], values: Any) -> None:
        """Append a discrete factor with row-major *values*."""
        self.push_back(DecisionTreeFactor(keys, values))

    # ------------------------------------------------------------------ #
    #  Access
    # ------------------------------------------------------------------ #

    def __len__(self) -> int:
        return len(self._factors)

    def __iter__(self) -> Iterator[HybridFactor]:
        return iter(self._factors)

    def __getitem__(self, i: int) -> HybridFactor:
        return self._factors[i]

    def at(self, i: int) -> HybridFactor:
        """Factor *i*; raises ``IndexError`` when out of range."""
        if not 0 <= i < len(self._factors):
            raise IndexError(
                f"Factor index {i} out of range for factor graph of size "
                f"{len(self._factors)}"
            )
        return self._factors[i]

    def keys(self) -> List[Any]:
        return sorted({k for f in self._factors for k in f.keys})

    def continuous_keys(self) -> List[Any]:
        return sorted({k for f in self._factors for k in f.continuous_keys})

    def discrete_keys(self) -> Dict[Any, DiscreteKey]:
        """Map from variable key to its :class:`DiscreteKey`."""
        found: Dict[Any, DiscreteKey] = {}
        for factor in self._factors:
            for dk in factor.discrete_keys:
                found.setdefault(dk.key, dk)
        return found

    def error(self, values: Values, assignment: Assignment) -> float:
        return sum(f.error(values, assignment) for f in self._factors)

    # ------------------------------------------------------------------ #
    #  Elimination
    # ------------------------------------------------------------------ #

    def default_ordering(self) -> List[Any]:
        """Continuous keys (sorted), then discrete keys (sorted)."""
        return elimination_tree.default_ordering(self._factors)

    def _sequential(self, ordering, strategy, rank_tolerance, partial):
        if ordering is None:
            ordering = self.default_ordering()
        bayes_net, remaining = elimination_tree.eliminate_sequential(
            self._factors, ordering, strategy, rank_tolerance, partial)
        return bayes_net, HybridGaussianFactorGraph(remaining)

    def _multifrontal(self, ordering, strategy, rank_tolerance, partial):
        if ordering is None:
            ordering = self.default_ordering()
        tree, remaining = elimination_tree.eliminate_multifrontal(
            self._factors, ordering, strategy, rank_tolerance, partial)
        return tree, HybridGaussianFactorGraph(remaining)

    def eliminate_sequential(
        self,
        ordering: Optional[Sequence[Any]] = None,
        strategy: Optional[EliminationStrategy] = None,
        rank_tolerance: Optional[float] = None,
    ) -> Tuple[HybridBayesNet, 'HybridGaussianFactorGraph']:
        """Eliminate every key, one at a time.

        Parameters
        ----------
        ordering : sequence, optional
            Must cover every key.  Defaults to :meth:`default_ordering`.
        strategy : EliminationStrategy, optional
            Discrete elimination; defaults to the active settings.
        rank_tolerance : float, optional
            Defaults to the active settings.

        Returns
        -------
        (HybridBayesNet, HybridGaussianFactorGraph)

        Raises
        ------
        OrderingError
            If the ordering is incomplete, repeats or invents keys, or puts
            a discrete key before a continuous key it depends on.
        """
        return self._sequential(ordering, strategy, rank_tolerance, False)

    def eliminate_partial_sequential(
        self,
        ordering: Sequence[Any],
        strategy: Optional[EliminationStrategy] = None,
        rank_tolerance: Optional[float] = None,
    ) -> Tuple[HybridBayesNet, 'HybridGaussianFactorGraph']:
        """Eliminate the keys of *ordering* only; the rest remain as factors."""
        return self._sequential(ordering, strategy, rank_tolerance, True)

    def eliminate_multifrontal(
        self,
        ordering: Optional[Sequence[Any]] = None,
        strategy: Optional[EliminationStrategy] = None,
        rank_tolerance: Optional[float] = None,
    ) -> Tuple[HybridBayesTree, 'HybridGaussianFactorGraph']:
        """Eliminate every key into a Bayes tree."""
        return self._multifrontal(ordering, strategy, rank_tolerance, False)

    def eliminate_partial_multifrontal(
        self,
        ordering: Sequence[Any],
        strategy: Optional[EliminationStrategy] = None,
        rank_tolerance: Optional[float] = None,
    ) -> Tuple[HybridBayesTree, 'HybridGaussianFactorGraph']:
        """Eliminate the keys of *ordering* into a Bayes tree; the rest remain."""
        return self._multifrontal(ordering, strategy, rank_tolerance, True)

    def __repr__(self) -> str:
        return f"HybridGaussianFactorGraph(size={len(self)})"
