"""Discrete factors and conditionals over decision trees.

Provides:

* :class:`DecisionTreeFactor` - a non-negative table over discrete keys with
  multiply, sum-out, max-out and prune operations.
* :class:`DiscreteConditional` - a factor normalised over its frontal keys
  for every parent assignment, built from a literal signature string.
* :class:`DiscreteLookupTable` - the raw product kept by max-product
  elimination, queried with :meth:`DiscreteConditional.argmax`.
"""

from __future__ import annotations

import math
from typing import Any, Iterable, List, Sequence, Union

import numpy as np

from hybridflow.core.types import (
    Assignment,
    DiscreteKey,
    assignments,
    cardinality_product,
    merge_discrete_keys,
)
from hybridflow.decision.tree import DecisionTree


# ------------------------------------------------------------------ #
#  DecisionTreeFactor
# ------------------------------------------------------------------ #

class DecisionTreeFactor:
    """A discrete factor (potential function) over a set of discrete keys.

    Parameters
    ----------
    keys : sequence of DiscreteKey
        Keys indexing the table, first key outermost.
    values : sequence of float, numpy.ndarray or DecisionTree
        Row-major leaf values (or a tree over *keys*).  All values must be
        non-negative.
    """

    def __init__(
        self,
        keys: Sequence[DiscreteKey],
        values: Union[Sequence[float], np.ndarray, DecisionTree],
    ) -> None:
        keys = list(keys)
        if isinstance(values, DecisionTree):
            if values.keys != keys:
                values = values.reorder(keys)
            leaves = values.leaves()
        else:
            leaves = np.asarray(values, dtype=np.float64).ravel().tolist()
        leaves = [float(v) for v in leaves]
        if any(v < 0 or math.isnan(v) for v in leaves):
            raise ValueError("Discrete factor values must be non-negative")
        self._tree = DecisionTree(keys, leaves)

    # ----- structure ------------------------------------------------------

    @property
    def discrete_keys(self) -> List[DiscreteKey]:
        return self._tree.keys

    @property
    def keys(self) -> List[Any]:
        """Variable keys of :attr:`discrete_keys`."""
        return self._tree.labels

    @property
    def tree(self) -> DecisionTree:
        return self._tree

    @property
    def nr_leaves(self) -> int:
        return self._tree.nr_leaves

    def cardinality(self, key: Any) -> int:
        for dk in self.discrete_keys:
            if dk.key == key:
                return dk.cardinality
        raise KeyError(f"Key {key!r} not in discrete factor {self.keys}")

    def _with_values(self, keys: Sequence[DiscreteKey], values) -> 'DecisionTreeFactor':
        return DecisionTreeFactor(keys, values)

    # ----- evaluation -----------------------------------------------------

    def __call__(self, assignment: Assignment) -> float:
        """Value at a full assignment of this factor's keys."""
        missing = [k for k in self.keys if k not in assignment]
        if missing:
            raise ValueError(
                f"Assignment {assignment} is missing discrete keys {missing}"
            )
        return self._tree(assignment)

    def enumerate(self):
        """Lazy, restartable sequence of ``(assignment, value)`` pairs."""
        return self._tree.enumerate()

    def fold(self, f, init):
        """Reduce the leaf values with ``acc = f(value, acc)``."""
        return self._tree.fold(f, init)

    def to_array(self) -> np.ndarray:
        """Values as an N-d array whose axes follow :attr:`discrete_keys`."""
        shape = tuple(dk.cardinality for dk in self.discrete_keys)
        return np.asarray(self._tree.leaves(), dtype=np.float64).reshape(shape)

    def error(self, assignment: Assignment) -> float:
        """Negative log value, ``inf`` at a zero leaf."""
        value = self(assignment)
        return math.inf if value == 0 else -math.log(value)

    # ----- core operations ------------------------------------------------

    def multiply(self, other: 'DecisionTreeFactor') -> 'DecisionTreeFactor':
        """Point-wise product over the union of both key sets.

        Keys of this factor come first, followed by the keys only *other*
        has.  Returns a plain :class:`DecisionTreeFactor`.
        """
        combined = merge_discrete_keys(self.discrete_keys, other.discrete_keys)
        a = self._broadcast_into(combined)
        b = other._broadcast_into(combined)
        return DecisionTreeFactor(combined, a * b)

    def __mul__(self, other: 'DecisionTreeFactor') -> 'DecisionTreeFactor':
        return self.multiply(other)

    def __truediv__(self, other: 'DecisionTreeFactor') -> 'DecisionTreeFactor':
        """Point-wise ratio; ``0 / 0`` is taken as ``0``.

        *other* must be defined over a subset of this factor's keys.
        """
        b = other._broadcast_into(self.discrete_keys)
        a = self.to_array()
        with np.errstate(divide="ignore", invalid="ignore"):
            ratio = np.where(b > 0, a / np.where(b > 0, b, 1.0), 0.0)
        return DecisionTreeFactor(self.discrete_keys, ratio)

    def sum(self, keys: Iterable[Any]) -> 'DecisionTreeFactor':
        """Sum out (marginalize) the variable keys in *keys*."""
        return self._reduce(keys, np.sum)

    def max(self, keys: Iterable[Any]) -> 'DecisionTreeFactor':
        """Maximize out the variable keys in *keys*."""
        return self._reduce(keys, np.max)

    def _reduce(self, keys: Iterable[Any], op) -> 'DecisionTreeFactor':
        keys = set(keys)
        unknown = keys - set(self.keys)
        if unknown:
            raise KeyError(f"Keys {sorted(unknown)} not in factor {self.keys}")
        axes = tuple(i for i, k in enumerate(self.keys) if k in keys)
        remaining = [dk for dk in self.discrete_keys if dk.key not in keys]
        values = op(self.to_array(), axis=axes) if axes else self.to_array()
        return DecisionTreeFactor(remaining, np.atleast_1d(values))

    def normalize(self) -> 'DecisionTreeFactor':
        """Return a copy scaled so that all entries sum to 1."""
        total = self.fold(lambda v, acc: acc + v, 0.0)
        if total <= 0:
            return self._with_values(self.discrete_keys, self._tree)
        return self._with_values(
            self.discrete_keys, self._tree.apply(lambda v: v / total)
        )

    def prune(self, max_nr_leaves: int) -> 'DecisionTreeFactor':
        """Keep the *max_nr_leaves* largest leaves and zero the rest.

        The threshold is the ``max_nr_leaves``-th largest value.  Every leaf
        above it is kept, and leaves equal to it fill the remaining budget in
        traversal order.
        The index space is unchanged, and so is every retained value.
        """
        if max_nr_leaves < 0:
            raise ValueError("max_nr_leaves must be non-negative")
        values = self._tree.leaves()
        if len(values) <= max_nr_leaves:
            return self._with_values(self.discrete_keys, self._tree)
        if max_nr_leaves == 0:
            return self._with_values(self.discrete_keys, [0.0] * len(values))
        threshold = sorted(values, reverse=True)[max_nr_leaves - 1]
        ties = max_nr_leaves - sum(1 for v in values if v > threshold)
        pruned = []
        for value in values:
            if value > threshold:
                pruned.append(value)
            elif value == threshold and ties > 0:
                pruned.append(value)
                ties -= 1
            else:
                pruned.append(0.0)
        return self._with_values(self.discrete_keys, pruned)

    def nr_nonzero(self) -> int:
        """Number of leaves with a strictly positive value."""
        return self.fold(lambda v, acc: acc + (v > 0), 0)

    # ----- helpers --------------------------------------------------------

    def _broadcast_into(self, target: Sequence[DiscreteKey]) -> np.ndarray:
        """Reshape values so axes align with *target* (size-1 for missing)."""
        labels = [dk.key for dk in target]
        own = self.keys
        src_axes = [own.index(k) for k in labels if k in own]
        transposed = np.transpose(self.to_array(), src_axes)
        for axis, k in enumerate(labels):
            if k not in own:
                transposed = np.expand_dims(transposed, axis=axis)
        return transposed

    def equals(self, other: 'DecisionTreeFactor', tol: float = 1e-9) -> bool:
        return self._tree.equals(
            other._tree, lambda a, b: abs(a - b) <= tol
        )

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}(keys={self.discrete_keys}, "
            f"values={self._tree.leaves()})"
        )


# ------------------------------------------------------------------ #
#  DiscreteConditional
# ------------------------------------------------------------------ #

def _parse_signature(table: str) -> List[float]:
    """Parse ``"1/2 3/2"`` (or ``"0.1 0.9"``) into a flat list of numbers."""
    values: List[float] = []
    for token in table.split():
        values.extend(float(part) for part in token.split("/"))
    return values


class DiscreteConditional(DecisionTreeFactor):
    """``P(frontals | parents)`` stored as a decision-tree factor.

    Keys are ordered frontals first, then parents.

    Parameters
    ----------
    nr_frontals : int
        How many of the leading *keys* are frontal.
    keys : sequence of DiscreteKey
        Frontal keys followed by parent keys.
    values : sequence of float, numpy.ndarray or DecisionTree
        Row-major table over *keys*.
    """

    def __init__(
        self,
        nr_frontals: int,
        keys: Sequence[DiscreteKey],
        values: Union[Sequence[float], np.ndarray, DecisionTree],
    ) -> None:
        keys = list(keys)
        if not 0 < nr_frontals <= len(keys):
            raise ValueError(
                f"nr_frontals must be in [1, {len(keys)}], got {nr_frontals}"
            )
        super().__init__(keys, values)
        self._nr_frontals = nr_frontals

    @classmethod
    def from_signature(
        cls,
        key: DiscreteKey,
        parents: Sequence[DiscreteKey] = (),
        table: str = "",
    ) -> 'DiscreteConditional':
        """Build ``P(key | parents)`` from a literal table.

        *table* holds one ``a/b/...`` token per parent assignment (row-major
        over *parents*, last parent fastest); each row is normalised.  With
        no parents, ``"1/3"`` gives ``P(key=0) = 0.25``.

        Example
        -------
        >>> m1, m2 = DiscreteKey("m1", 2), DiscreteKey("m2", 2)
        >>> DiscreteConditional.from_signature(m2, [m1], "1/2 3/2")
        """
        parents = list(parents)
        nr_rows = cardinality_product(parents)
        numbers = _parse_signature(table)
        if len(numbers) != nr_rows * key.cardinality:
            raise ValueError(
                f"Table {table!r} has {len(numbers)} entries, expected "
                f"{nr_rows * key.cardinality} for {key} given {parents}"
            )
        rows = np.asarray(numbers, dtype=np.float64).reshape(
            nr_rows, key.cardinality)
        totals = rows.sum(axis=1, keepdims=True)
        if np.any(totals <= 0):
            raise ValueError(f"Table {table!r} has a row summing to zero")
        rows = rows / totals
        # rows are indexed by parents; the tree puts the frontal key first
        return cls(1, [key] + parents, rows.T.ravel())

    @classmethod
    def from_joint(
        cls, joint: DecisionTreeFactor, frontal_keys: Sequence[Any]
    ) -> 'DiscreteConditional':
        """``joint / joint.sum(frontals)`` with the frontal keys first."""
        frontal_keys = list(frontal_keys)
        frontals = [dk for k in frontal_keys for dk in joint.discrete_keys
                    if dk.key == k]
        parents = [dk for dk in joint.discrete_keys if dk.key not in frontal_keys]
        ratio = joint / joint.sum(frontal_keys)
        return cls(len(frontals), frontals + parents,
                   ratio.tree.reorder(frontals + parents))

    def _with_values(self, keys, values) -> 'DiscreteConditional':
        return type(self)(self._nr_frontals, keys, values)

    @property
    def nr_frontals(self) -> int:
        return self._nr_frontals

    @property
    def frontal_keys(self) -> List[DiscreteKey]:
        return self.discrete_keys[:self._nr_frontals]

    @property
    def parent_keys(self) -> List[DiscreteKey]:
        return self.discrete_keys[self._nr_frontals:]

    @property
    def frontals(self) -> List[Any]:
        return [dk.key for dk in self.frontal_keys]

    @property
    def parents(self) -> List[Any]:
        return [dk.key for dk in self.parent_keys]

    def choose(self, parent_assignment: Assignment) -> DecisionTreeFactor:
        """Restrict to a parent assignment: a factor over the frontals."""
        missing = [k for k in self.parents if k not in parent_assignment]
        if missing:
            raise ValueError(f"Parent keys {missing} are not assigned")
        values = [self._tree({**parent_assignment, **a})
                  for a in assignments(self.frontal_keys)]
        return DecisionTreeFactor(self.frontal_keys, values)

    def argmax(self, parent_assignment: Assignment) -> Assignment:
        """Frontal assignment with the largest value given the parents.

        Ties go to the first assignment in traversal order.
        """
        missing = [k for k in self.parents if k not in parent_assignment]
        if missing:
            raise ValueError(f"Parent keys {missing} are not assigned")
        best, best_value = None, -1.0
        for a in assignments(self.frontal_keys):
            value = self._tree({**parent_assignment, **a})
            if value > best_value:
                best, best_value = a, value
        return best

    def log_probability(self, assignment: Assignment) -> float:
        value = self(assignment)
        return -math.inf if value == 0 else math.log(value)

    def equals(self, other: DecisionTreeFactor, tol: float = 1e-9) -> bool:
        if not isinstance(other, DiscreteConditional):
            return False
        return (self.frontals == other.frontals
                and super().equals(other, tol))


class DiscreteLookupTable(DiscreteConditional):
    """Max-product elimination result.

    Holds the un-normalised product of the eliminated factors, so leaf values
    are not probabilities; :meth:`argmax` recovers the most probable frontal
    values given the parents.
    """
