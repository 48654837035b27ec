"""Gaussian mixtures indexed by discrete modes.

A mixture ties a Gaussian factor (or conditional) to every joint assignment
of its discrete keys, so the continuous density depends on the realised
mode.  Components live at the leaves of a
:class:`~hybridflow.decision.tree.DecisionTree`; a ``None`` leaf marks a
pruned (infeasible) component.

Example
-------
>>> m1 = DiscreteKey("m1", 2)
>>> still = JacobianFactor([("x1", [[-1.0]]), ("x2", [[1.0]])], [0.0])
>>> moving = JacobianFactor([("x1", [[-1.0]]), ("x2", [[1.0]])], [1.0])
>>> motion = GaussianMixtureFactor(["x1", "x2"], [m1], [still, moving])
>>> motion({"m1": 1}) is moving
True
"""

from __future__ import annotations

import logging
import math
from typing import Any, List, Optional, Sequence, Union

from hybridflow.core.errors import StructuralError
from hybridflow.core.types import (
    Assignment,
    DiscreteKey,
    cardinality_product,
    restrict,
)
from hybridflow.decision.tree import DecisionTree
from hybridflow.distributions.continuous import (
    GaussianConditional,
    JacobianFactor,
    Values,
)
from hybridflow.distributions.discrete import DecisionTreeFactor

logger = logging.getLogger(__name__)


def _as_tree(
    discrete_keys: List[DiscreteKey], components: Union[Sequence[Any], DecisionTree]
) -> DecisionTree:
    if isinstance(components, DecisionTree):
        if sorted(components.keys) != sorted(discrete_keys):
            raise StructuralError(
                f"Component tree over {components.keys} does not match "
                f"discrete keys {discrete_keys}"
            )
        if components.keys != discrete_keys:
            components = components.reorder(discrete_keys)
        return components
    components = list(components)
    expected = cardinality_product(discrete_keys)
    if len(components) != expected:
        raise StructuralError(
            f"Mixture over {discrete_keys} needs {expected} components, "
            f"got {len(components)}"
        )
    return DecisionTree(discrete_keys, components)


def _select(tree: DecisionTree, discrete_keys: List[DiscreteKey],
            assignment: Assignment) -> Any:
    missing = [dk.key for dk in discrete_keys if dk.key not in assignment]
    if missing:
        raise ValueError(
            f"Assignment {assignment} is missing discrete keys {missing}"
        )
    return tree(assignment)


# ------------------------------------------------------------------ #
#  GaussianMixtureFactor
# ------------------------------------------------------------------ #

class GaussianMixtureFactor:
    """A Gaussian factor per discrete assignment.

    Parameters
    ----------
    continuous_keys : sequence
        Continuous keys every component must touch, no more and no fewer.
    discrete_keys : sequence of DiscreteKey
        Keys indexing the components.
    factors : sequence of JacobianFactor or None, or DecisionTree
        Row-major components (or a tree over *discrete_keys*).

    Raises
    ------
    StructuralError
        If a component's key set differs from *continuous_keys*, or the
        number of components is not the product of the cardinalities.
    """

    def __init__(
        self,
        continuous_keys: Sequence[Any],
        discrete_keys: Sequence[DiscreteKey],
        factors: Union[Sequence[Optional[JacobianFactor]], DecisionTree],
    ) -> None:
        self._continuous_keys = list(continuous_keys)
        self._discrete_keys = list(discrete_keys)
        tree = _as_tree(self._discrete_keys, factors)
        expected = set(self._continuous_keys)
        for assignment, factor in tree.enumerate():
            if factor is not None and set(factor.keys) != expected:
                raise StructuralError(
                    f"Component at {assignment} involves {factor.keys}, "
                    f"expected continuous keys {self._continuous_keys}"
                )
        self._factors = tree

    @property
    def continuous_keys(self) -> List[Any]:
        return list(self._continuous_keys)

    @property
    def discrete_keys(self) -> List[DiscreteKey]:
        return list(self._discrete_keys)

    @property
    def keys(self) -> List[Any]:
        return self._continuous_keys + [dk.key for dk in self._discrete_keys]

    @property
    def components(self) -> DecisionTree:
        """Tree of components (``None`` where pruned)."""
        return self._factors

    def __call__(self, assignment: Assignment):
        """Component at a full assignment, or a sub-tree for a partial one."""
        return self._factors(assignment)

    def error(self, values: Values, assignment: Assignment) -> float:
        """Error of the selected component, ``inf`` if it was pruned."""
        factor = _select(self._factors, self._discrete_keys, assignment)
        return math.inf if factor is None else factor.error(values)

    def add_to(self, sum_tree: DecisionTree) -> DecisionTree:
        """Append this mixture's components to the tuples of *sum_tree*.

        Both trees are re-indexed to the union of their keys (``sum_tree``
        keys first); a ``None`` on either side makes the slice ``None``.
        """
        def concat(acc, factor):
            if acc is None or factor is None:
                return None
            return acc + (factor,)
        return sum_tree.apply2(self._factors, concat)

    def equals(self, other: 'GaussianMixtureFactor', tol: float = 1e-9) -> bool:
        if not isinstance(other, GaussianMixtureFactor):
            return False
        return (sorted(self._discrete_keys) == sorted(other._discrete_keys)
                and self._factors.equals(other._factors, _component_equal(tol)))

    def __repr__(self) -> str:
        return (
            f"GaussianMixtureFactor(continuous={self._continuous_keys}, "
            f"discrete={self._discrete_keys})"
        )


def _component_equal(tol: float):
    def compare(a, b):
        if a is None or b is None:
            return a is None and b is None
        return a.equals(b, tol)
    return compare


# ------------------------------------------------------------------ #
#  GaussianMixture
# ------------------------------------------------------------------ #

class GaussianMixture:
    """``p(x_f | x_p, m)``: a Gaussian conditional per discrete assignment.

    Parameters
    ----------
    frontals : sequence
        Continuous frontal keys, shared by every component.
    continuous_parents : sequence
        Continuous parent keys.
    discrete_parents : sequence of DiscreteKey
        Keys indexing the components.
    conditionals : sequence of GaussianConditional or None, or DecisionTree
        Row-major components; ``None`` marks a pruned component.  The leaf
        count always equals the product of the cardinalities.
    """

    def __init__(
        self,
        frontals: Sequence[Any],
        continuous_parents: Sequence[Any],
        discrete_parents: Sequence[DiscreteKey],
        conditionals: Union[Sequence[Optional[GaussianConditional]], DecisionTree],
    ) -> None:
        self._frontals = list(frontals)
        self._continuous_parents = list(continuous_parents)
        self._discrete_parents = list(discrete_parents)
        tree = _as_tree(self._discrete_parents, conditionals)
        expected = set(self._frontals) | set(self._continuous_parents)
        for assignment, conditional in tree.enumerate():
            if conditional is None:
                continue
            if (conditional.frontals != self._frontals
                    or set(conditional.keys) != expected):
                raise StructuralError(
                    f"Component at {assignment} is p({conditional.frontals} | "
                    f"{conditional.parents}), expected p({self._frontals} | "
                    f"{self._continuous_parents})"
                )
        self._conditionals = tree

    @property
    def frontals(self) -> List[Any]:
        return list(self._frontals)

    @property
    def nr_frontals(self) -> int:
        return len(self._frontals)

    @property
    def continuous_parents(self) -> List[Any]:
        return list(self._continuous_parents)

    @property
    def discrete_parents(self) -> List[DiscreteKey]:
        return list(self._discrete_parents)

    @property
    def continuous_keys(self) -> List[Any]:
        return self._frontals + self._continuous_parents

    @property
    def parents(self) -> List[Any]:
        """Continuous parent keys, then discrete parent keys."""
        return self._continuous_parents + [dk.key for dk in self._discrete_parents]

    @property
    def components(self) -> DecisionTree:
        """Tree of conditionals (``None`` where pruned)."""
        return self._conditionals

    def __call__(self, assignment: Assignment):
        """Conditional at a full assignment, or a sub-tree for a partial one."""
        return self._conditionals(assignment)

    def nr_components(self) -> int:
        """Number of non-null components."""
        return self._conditionals.fold(
            lambda c, acc: acc + (c is not None), 0)

    def choose(self, assignment: Assignment) -> GaussianConditional:
        """Component selected by a full assignment of the discrete parents.

        Raises
        ------
        ValueError
            If a discrete parent is not assigned or the component was pruned.
        """
        conditional = _select(self._conditionals, self._discrete_parents,
                              assignment)
        if conditional is None:
            raise ValueError(
                f"Component of p({self._frontals} | ...) at "
                f"{restrict(assignment, self._discrete_parents)} was pruned"
            )
        return conditional

    def error(self, values: Values, assignment: Assignment) -> float:
        conditional = _select(self._conditionals, self._discrete_parents,
                              assignment)
        return math.inf if conditional is None else conditional.error(values)

    def log_probability(self, values: Values, assignment: Assignment) -> float:
        """Log density of the selected component, ``-inf`` if pruned.

        Only the Gaussian term: the discrete weight of *assignment* is not
        included.  :meth:`HybridBayesNet.log_probability` adds the log
        weights of the discrete conditionals to get the joint.
        """
        conditional = _select(self._conditionals, self._discrete_parents,
                              assignment)
        if conditional is None:
            return -math.inf
        return conditional.log_probability(values)

    def prune(self, decision_factor: DecisionTreeFactor) -> 'GaussianMixture':
        """Null every component whose assignment has zero weight.

        Only applies when this mixture's discrete parents include every key
        of *decision_factor*; otherwise the mixture is returned unchanged.
        The tree shape never changes.
        """
        own = {dk.key for dk in self._discrete_parents}
        if not set(decision_factor.keys) <= own:
            return self
        factor_keys = decision_factor.discrete_keys

        def keep(assignment: Assignment, conditional):
            if conditional is None:
                return None
            if decision_factor(restrict(assignment, factor_keys)) > 0:
                return conditional
            return None

        pruned = GaussianMixture(
            self._frontals, self._continuous_parents, self._discrete_parents,
            self._conditionals.apply_with_assignment(keep),
        )
        logger.debug("Pruned mixture on %s: %d of %d components remain",
                     self._frontals, pruned.nr_components(),
                     self._conditionals.nr_leaves)
        return pruned

    def as_factor(self) -> GaussianMixtureFactor:
        """The components as a :class:`GaussianMixtureFactor`."""
        return GaussianMixtureFactor(
            self.continuous_keys, self._discrete_parents, self._conditionals)

    def add_to(self, sum_tree: DecisionTree) -> DecisionTree:
        return self.as_factor().add_to(sum_tree)

    def equals(self, other: 'GaussianMixture', tol: float = 1e-9) -> bool:
        if not isinstance(other, GaussianMixture):
            return False
        return (self._frontals == other._frontals
                and sorted(self._discrete_parents) == sorted(other._discrete_parents)
                and self._conditionals.equals(other._conditionals,
                                              _component_equal(tol)))

    def __repr__(self) -> str:
        return (
            f"GaussianMixture(frontals={self._frontals}, "
            f"continuous_parents={self._continuous_parents}, "
            f"discrete_parents={self._discrete_parents}, "
            f"nr_components={self.nr_components()})"
        )
