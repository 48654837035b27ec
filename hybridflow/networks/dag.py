"""Hybrid Bayes net: an ordered product of hybrid conditionals.

Provides :class:`HybridBayesNet`, the result of sequential elimination.
Conditionals are kept in elimination order, so the last ones are the roots.

Queries:

* :meth:`HybridBayesNet.choose` - fix every discrete mode and get back a
  plain :class:`~hybridflow.distributions.continuous.GaussianBayesNet`.
* :meth:`HybridBayesNet.prune` - null the mixture components of modes with
  zero weight in a discrete factor.
* :meth:`HybridBayesNet.optimize` - most probable modes, then the most
  probable continuous values given them.
"""

from __future__ import annotations

import logging
import math
from typing import Any, Dict, Iterable, Iterator, List, NamedTuple, Optional, Sequence

from hybridflow.core.types import Assignment, DiscreteKey
from hybridflow.distributions.conditional import GaussianMixture
from hybridflow.distributions.continuous import (
    GaussianBayesNet,
    GaussianConditional,
    Values,
)
from hybridflow.distributions.discrete import DecisionTreeFactor, DiscreteConditional
from hybridflow.distributions.hybrid import HybridConditional

logger = logging.getLogger(__name__)


class HybridValues(NamedTuple):
    """A hybrid point: continuous values and a discrete assignment."""
    continuous: Values
    discrete: Assignment


class HybridBayesNet:
    """Ordered list of :class:`HybridConditional`.

    Examples
    --------
    >>> bayes_net = HybridBayesNet()
    >>> bayes_net.add(DiscreteKey("m1", 2), "1/3")
    >>> bayes_net.at_discrete(0)({"m1": 1})
    0.75
    """

    def __init__(self, conditionals: Iterable[HybridConditional] = ()) -> None:
        self._conditionals: List[HybridConditional] = [
            c if isinstance(c, HybridConditional) else HybridConditional(c)
            for c in conditionals
        ]

    # ------------------------------------------------------------------ #
    #  Construction
    # ------------------------------------------------------------------ #

    def push_back(self, conditional) -> None:
        """Append a conditional, wrapping a raw one in :class:`HybridConditional`."""
        if not isinstance(conditional, HybridConditional):
            conditional = HybridConditional(conditional)
        self._conditionals.append(conditional)

    def add(
        self,
        key: DiscreteKey,
        table: str,
        parents: Sequence[DiscreteKey] = (),
    ) -> None:
        """Append ``P(key | parents)`` given as a literal table such as ``"1/3"``."""
        self.push_back(DiscreteConditional.from_signature(key, parents, table))

    # ------------------------------------------------------------------ #
    #  Access
    # ------------------------------------------------------------------ #

    def __len__(self) -> int:
        return len(self._conditionals)

    def __iter__(self) -> Iterator[HybridConditional]:
        return iter(self._conditionals)

    def __getitem__(self, i: int) -> HybridConditional:
        return self._conditionals[i]

    def at(self, i: int) -> HybridConditional:
        """Conditional *i*; raises ``IndexError`` when out of range."""
        if not 0 <= i < len(self._conditionals):
            raise IndexError(
                f"Conditional index {i} out of range for Bayes net of size "
                f"{len(self._conditionals)}"
            )
        return self._conditionals[i]

    def at_mixture(self, i: int) -> Optional[GaussianMixture]:
        return self.at(i).as_mixture()

    def at_discrete(self, i: int) -> Optional[DiscreteConditional]:
        return self.at(i).as_discrete()

    def at_gaussian(self, i: int) -> Optional[GaussianConditional]:
        return self.at(i).as_gaussian()

    @property
    def discrete_keys(self) -> List[DiscreteKey]:
        """Every discrete key referenced by a conditional, sorted."""
        found: Dict[Any, DiscreteKey] = {}
        for conditional in self._conditionals:
            for dk in conditional.discrete_keys:
                found.setdefault(dk.key, dk)
        return sorted(found.values())

    @property
    def continuous_keys(self) -> List[Any]:
        return sorted({k for c in self._conditionals for k in c.continuous_keys})

    # ------------------------------------------------------------------ #
    #  Mode selection and pruning
    # ------------------------------------------------------------------ #

    def choose(self, assignment: Assignment) -> GaussianBayesNet:
        """The Gaussian Bayes net selected by a full discrete assignment.

        Gaussian conditionals pass through unchanged and discrete ones are
        skipped.

        Raises
        ------
        ValueError
            If *assignment* misses a discrete key some conditional depends on,
            or selects a pruned component.
        """
        missing = [dk.key for dk in self.discrete_keys if dk.key not in assignment]
        if missing:
            raise ValueError(f"Assignment is missing discrete keys {missing}")
        gaussian = GaussianBayesNet()
        for conditional in self._conditionals:
            if conditional.is_continuous():
                gaussian.push_back(conditional.as_gaussian())
            elif conditional.is_hybrid():
                gaussian.push_back(conditional.as_mixture().choose(assignment))
        return gaussian

    def prune(self, discrete_factor: DecisionTreeFactor) -> 'HybridBayesNet':
        """New Bayes net with zero-weight modes nulled in every mixture.

        Only mixtures whose discrete keys cover the keys of
        *discrete_factor* are touched; tree shapes never change.
        """
        logger.debug("Pruning Bayes net with factor on %s", discrete_factor.keys)
        return HybridBayesNet(c.prune(discrete_factor) for c in self._conditionals)

    # ------------------------------------------------------------------ #
    #  Optimisation and evaluation
    # ------------------------------------------------------------------ #

    def optimize_discrete(self) -> Assignment:
        """Most probable discrete assignment by back-substitution.

        Discrete conditionals are visited roots first and each picks its
        arg-max given the parents already assigned.
        """
        assignment: Assignment = {}
        for conditional in reversed(self._conditionals):
            discrete = conditional.as_discrete()
            if discrete is not None:
                assignment.update(discrete.argmax(assignment))
        return assignment

    def optimize(self, assignment: Optional[Assignment] = None) -> HybridValues:
        """Most probable continuous values for *assignment*.

        With no assignment the discrete MPE from :meth:`optimize_discrete`
        is used.
        """
        if assignment is None:
            assignment = self.optimize_discrete()
        continuous = self.choose(assignment).optimize()
        return HybridValues(continuous, dict(assignment))

    def log_probability(self, values: Values, assignment: Assignment) -> float:
        """Sum of the conditionals' log densities and log probabilities."""
        return sum(c.log_probability(values, assignment)
                   for c in self._conditionals)

    def evaluate(self, values: Values, assignment: Assignment) -> float:
        return math.exp(self.log_probability(values, assignment))

    def error(self, values: Values, assignment: Assignment) -> float:
        return sum(c.error(values, assignment) for c in self._conditionals)

    def equals(self, other: 'HybridBayesNet', tol: float = 1e-9) -> bool:
        return len(self) == len(other) and all(
            a.equals(b, tol) for a, b in zip(self, other))

    def __repr__(self) -> str:
        return f"HybridBayesNet(size={len(self)})"
