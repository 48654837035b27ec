"""Tagged unions over continuous, discrete and mixture factors.

:class:`HybridFactor` wraps exactly one of

* a :class:`~hybridflow.distributions.continuous.JacobianFactor`
  (``FactorKind.CONTINUOUS``),
* a :class:`~hybridflow.distributions.discrete.DecisionTreeFactor`
  (``FactorKind.DISCRETE``),
* a :class:`~hybridflow.distributions.conditional.GaussianMixtureFactor` or
  :class:`~hybridflow.distributions.conditional.GaussianMixture`
  (``FactorKind.HYBRID``),

and exposes one accessor per case.  The ``as_*`` accessors are fallible
down-casts: they return ``None`` when the wrapped value is of another kind.
"""

from __future__ import annotations

import math
from typing import Any, List, Optional, Union

from hybridflow.core.types import Assignment, DiscreteKey, FactorKind
from hybridflow.decision.tree import DecisionTree
from hybridflow.distributions.conditional import GaussianMixture, GaussianMixtureFactor
from hybridflow.distributions.continuous import GaussianConditional, JacobianFactor, Values
from hybridflow.distributions.discrete import DecisionTreeFactor, DiscreteConditional

Inner = Union[JacobianFactor, DecisionTreeFactor, GaussianMixtureFactor, GaussianMixture]


def _kind_of(inner: Any) -> FactorKind:
    if isinstance(inner, JacobianFactor):
        return FactorKind.CONTINUOUS
    if isinstance(inner, DecisionTreeFactor):
        return FactorKind.DISCRETE
    if isinstance(inner, (GaussianMixtureFactor, GaussianMixture)):
        return FactorKind.HYBRID
    raise TypeError(f"Cannot wrap {type(inner).__name__} in a hybrid factor")


class HybridFactor:
    """A continuous, discrete or mixture factor behind one interface."""

    def __init__(self, inner: Inner) -> None:
        if isinstance(inner, HybridFactor):
            inner = inner.inner
        self._kind = _kind_of(inner)
        self._inner = inner

    @property
    def kind(self) -> FactorKind:
        return self._kind

    @property
    def inner(self) -> Inner:
        return self._inner

    def is_continuous(self) -> bool:
        return self._kind is FactorKind.CONTINUOUS

    def is_discrete(self) -> bool:
        return self._kind is FactorKind.DISCRETE

    def is_hybrid(self) -> bool:
        return self._kind is FactorKind.HYBRID

    @property
    def continuous_keys(self) -> List[Any]:
        if self.is_continuous():
            return self._inner.keys
        if self.is_hybrid():
            return self._inner.continuous_keys
        return []

    @property
    def discrete_keys(self) -> List[DiscreteKey]:
        if self.is_discrete():
            return self._inner.discrete_keys
        if isinstance(self._inner, GaussianMixture):
            return self._inner.discrete_parents
        if self.is_hybrid():
            return self._inner.discrete_keys
        return []

    @property
    def keys(self) -> List[Any]:
        """Continuous keys followed by the variable keys of the discrete ones."""
        return self.continuous_keys + [dk.key for dk in self.discrete_keys]

    # ----- fallible down-casts --------------------------------------------

    def as_gaussian(self) -> Optional[JacobianFactor]:
        return self._inner if self.is_continuous() else None

    def as_discrete(self) -> Optional[DecisionTreeFactor]:
        return self._inner if self.is_discrete() else None

    def as_mixture(self) -> Optional[Union[GaussianMixtureFactor, GaussianMixture]]:
        return self._inner if self.is_hybrid() else None

    def components(self) -> DecisionTree:
        """Gaussian components keyed by the discrete keys.

        A continuous factor is a single component under a tree with no keys.
        """
        if self.is_hybrid():
            return self._inner.components
        if self.is_continuous():
            return DecisionTree.constant(self._inner)
        raise TypeError("A discrete factor has no Gaussian components")

    # ----- evaluation -----------------------------------------------------

    def error(self, values: Values, assignment: Assignment) -> float:
        """Negative log of the factor at a hybrid point."""
        if self.is_continuous():
            return self._inner.error(values)
        if self.is_discrete():
            return self._inner.error(assignment)
        return self._inner.error(values, assignment)

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self._inner!r})"


class HybridConditional(HybridFactor):
    """A Gaussian, mixture or discrete conditional behind one interface."""

    def __init__(
        self, inner: Union[GaussianConditional, GaussianMixture, DiscreteConditional]
    ) -> None:
        if isinstance(inner, HybridFactor):
            inner = inner.inner
        if not isinstance(inner, (GaussianConditional, GaussianMixture,
                                  DiscreteConditional)):
            raise TypeError(
                f"{type(inner).__name__} is not a conditional"
            )
        super().__init__(inner)

    @property
    def nr_frontals(self) -> int:
        return self._inner.nr_frontals

    @property
    def frontals(self) -> List[Any]:
        return self._inner.frontals

    @property
    def parents(self) -> List[Any]:
        return self._inner.parents

    @property
    def continuous_parents(self) -> List[Any]:
        if isinstance(self._inner, GaussianConditional):
            return self._inner.parents
        if isinstance(self._inner, GaussianMixture):
            return self._inner.continuous_parents
        return []

    @property
    def discrete_parents(self) -> List[DiscreteKey]:
        if isinstance(self._inner, GaussianMixture):
            return self._inner.discrete_parents
        if isinstance(self._inner, DiscreteConditional):
            return self._inner.parent_keys
        return []

    def log_probability(self, values: Values, assignment: Assignment) -> float:
        """Log density (continuous) or log probability (discrete)."""
        if self.is_continuous():
            return self._inner.log_probability(values)
        if self.is_discrete():
            return self._inner.log_probability(assignment)
        return self._inner.log_probability(values, assignment)

    def prune(self, decision_factor: DecisionTreeFactor) -> 'HybridConditional':
        """Prune a mixture conditional; other kinds are returned unchanged."""
        if isinstance(self._inner, GaussianMixture):
            pruned = self._inner.prune(decision_factor)
            if pruned is not self._inner:
                return HybridConditional(pruned)
        return self

    def equals(self, other: 'HybridConditional', tol: float = 1e-9) -> bool:
        return (isinstance(other, HybridConditional)
                and self._kind is other._kind
                and self._inner.equals(other._inner, tol))

    def evaluate(self, values: Values, assignment: Assignment) -> float:
        return math.exp(self.log_probability(values, assignment))
