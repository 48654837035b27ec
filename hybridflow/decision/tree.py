"""Immutable decision trees over discrete keys.

A :class:`DecisionTree` maps every joint assignment of an ordered list of
:class:`~hybridflow.core.types.DiscreteKey` to a leaf value.  Leaves may hold
anything: probabilities for discrete factors, Gaussian conditionals (or
``None`` for a pruned component) for mixtures, tuples while collecting
elimination slices.

Nodes are frozen and shared between trees: every transform returns a new
root, so a tree held by an older snapshot never changes underneath it.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Iterator, List, Optional, Sequence, Tuple

from hybridflow.core.types import (
    Assignment,
    DiscreteKey,
    assignments,
    cardinality_product,
    merge_discrete_keys,
    restrict,
)


# ---------------------------------------------------------------------------
# Internal node representations
# ---------------------------------------------------------------------------

@dataclass(frozen=True, eq=False)
class _Leaf:
    """A terminal node holding one value."""
    value: Any


@dataclass(frozen=True, eq=False)
class _Choice:
    """An internal node branching on the values of one discrete key."""
    label: DiscreteKey
    branches: Tuple[Any, ...]


def _build(keys: Sequence[DiscreteKey], leaves: Sequence[Any], start: int,
           depth: int) -> Tuple[Any, int]:
    """Build the sub-tree for ``keys[depth:]`` from row-major *leaves*."""
    if depth == len(keys):
        return _Leaf(leaves[start]), start + 1
    branches = []
    for _ in range(keys[depth].cardinality):
        node, start = _build(keys, leaves, start, depth + 1)
        branches.append(node)
    return _Choice(keys[depth], tuple(branches)), start


def _walk(node: Any, prefix: Assignment) -> Iterator[Tuple[Assignment, Any]]:
    if isinstance(node, _Leaf):
        yield dict(prefix), node.value
        return
    label = node.label.key
    for value, branch in enumerate(node.branches):
        prefix[label] = value
        yield from _walk(branch, prefix)
    del prefix[label]


class _Enumeration:
    """Lazy, restartable view of ``(assignment, value)`` pairs."""

    def __init__(self, tree: 'DecisionTree') -> None:
        self._tree = tree

    def __iter__(self) -> Iterator[Tuple[Assignment, Any]]:
        return _walk(self._tree._root, {})

    def __len__(self) -> int:
        return self._tree.nr_leaves


# ---------------------------------------------------------------------------
# DecisionTree
# ---------------------------------------------------------------------------

class DecisionTree:
    """A function from discrete assignments to leaf values.

    Parameters
    ----------
    keys : sequence of DiscreteKey
        Branching order, first key at the root.
    leaves : sequence
        One value per joint assignment, row-major over *keys* (the last key
        varies fastest).  Its length must equal the product of the
        cardinalities.

    Example
    -------
    >>> m1, m2 = DiscreteKey("m1", 2), DiscreteKey("m2", 2)
    >>> tree = DecisionTree([m1, m2], [1.0, 2.0, 3.0, 4.0])
    >>> tree({"m1": 1, "m2": 0})
    3.0
    """

    def __init__(self, keys: Sequence[DiscreteKey], leaves: Sequence[Any]) -> None:
        keys = list(keys)
        labels = [dk.key for dk in keys]
        if len(set(labels)) != len(labels):
            raise ValueError(f"Duplicate discrete keys in {labels}")
        expected = cardinality_product(keys)
        leaves = list(leaves)
        if len(leaves) != expected:
            raise ValueError(
                f"Decision tree over {keys} needs {expected} leaves, "
                f"got {len(leaves)}"
            )
        self._keys: List[DiscreteKey] = keys
        self._root, _ = _build(keys, leaves, 0, 0)

    @classmethod
    def constant(cls, value: Any) -> 'DecisionTree':
        """A tree with no keys and a single leaf."""
        return cls([], [value])

    @classmethod
    def _from_root(cls, keys: List[DiscreteKey], root: Any) -> 'DecisionTree':
        tree = cls.__new__(cls)
        tree._keys = keys
        tree._root = root
        return tree

    # ------------------------------------------------------------------
    # Structure
    # ------------------------------------------------------------------

    @property
    def keys(self) -> List[DiscreteKey]:
        """Discrete keys in branching order."""
        return list(self._keys)

    @property
    def labels(self) -> List[Any]:
        """Variable keys of :attr:`keys`, in branching order."""
        return [dk.key for dk in self._keys]

    @property
    def nr_leaves(self) -> int:
        """Number of leaves, i.e. the product of the cardinalities."""
        return cardinality_product(self._keys)

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    def __call__(self, assignment: Assignment) -> Any:
        """Evaluate the tree.

        A full assignment (covering every key) returns the leaf value; a
        partial one returns the sub-tree over the keys it leaves free.  Keys
        of *assignment* the tree does not branch on are ignored.

        Raises
        ------
        IndexError
            If an assigned value is outside ``[0, cardinality)``.
        """
        for dk in self._keys:
            if dk.key in assignment:
                value = assignment[dk.key]
                if not 0 <= value < dk.cardinality:
                    raise IndexError(
                        f"Value {value} out of range for discrete key "
                        f"{dk.key!r} with cardinality {dk.cardinality}"
                    )
        free = [dk for dk in self._keys if dk.key not in assignment]
        root = self._restrict(self._root, assignment)
        if not free:
            return root.value
        return DecisionTree._from_root(free, root)

    def _restrict(self, node: Any, assignment: Assignment) -> Any:
        if isinstance(node, _Leaf):
            return node
        if node.label.key in assignment:
            return self._restrict(node.branches[assignment[node.label.key]],
                                  assignment)
        branches = tuple(self._restrict(b, assignment) for b in node.branches)
        if all(new is old for new, old in zip(branches, node.branches)):
            return node
        return _Choice(node.label, branches)

    def leaves(self) -> List[Any]:
        """All leaf values in traversal (row-major) order."""
        return [value for _, value in self.enumerate()]

    def enumerate(self) -> _Enumeration:
        """Lazy, restartable sequence of ``(assignment, value)`` pairs.

        Pairs come in traversal order (first key outermost) and every one of
        the ``nr_leaves`` assignments is visited exactly once.
        """
        return _Enumeration(self)

    def fold(self, f: Callable[[Any, Any], Any], init: Any) -> Any:
        """Reduce the leaves with ``acc = f(value, acc)``."""
        acc = init
        for _, value in self.enumerate():
            acc = f(value, acc)
        return acc

    # ------------------------------------------------------------------
    # Transforms
    # ------------------------------------------------------------------

    def apply(self, f: Callable[[Any], Any]) -> 'DecisionTree':
        """New tree with the same keys and ``f(value)`` at every leaf."""
        return DecisionTree(self._keys, [f(value) for value in self.leaves()])

    def apply_with_assignment(
        self, f: Callable[[Assignment, Any], Any]
    ) -> 'DecisionTree':
        """New tree with ``f(assignment, value)`` at every leaf."""
        return DecisionTree(
            self._keys, [f(a, value) for a, value in self.enumerate()]
        )

    def apply2(
        self, other: 'DecisionTree', f: Callable[[Any, Any], Any]
    ) -> 'DecisionTree':
        """Combine two trees leaf by leaf.

        The result branches on the union of both key lists: this tree's
        keys first, then the keys only *other* has.

        Raises
        ------
        ValueError
            If a key is shared with a different cardinality.
        """
        keys = merge_discrete_keys(self._keys, other._keys)
        leaves = [
            f(self(restrict(a, self._keys)), other(restrict(a, other._keys)))
            for a in assignments(keys)
        ]
        return DecisionTree(keys, leaves)

    def reorder(self, keys: Sequence[DiscreteKey]) -> 'DecisionTree':
        """Same function, branching in the order of *keys*.

        *keys* must be a permutation of :attr:`keys`; leaf values are not
        changed, only re-indexed.
        """
        keys = list(keys)
        if sorted(keys) != sorted(self._keys):
            raise ValueError(
                f"Cannot reorder a tree over {self._keys} to {keys}"
            )
        return DecisionTree(keys, [self(a) for a in assignments(keys)])

    def unzip(self) -> Tuple['DecisionTree', 'DecisionTree']:
        """Split a tree of pairs into a pair of trees."""
        firsts, seconds = [], []
        for first, second in self.leaves():
            firsts.append(first)
            seconds.append(second)
        return DecisionTree(self._keys, firsts), DecisionTree(self._keys, seconds)

    # ------------------------------------------------------------------
    # Comparison
    # ------------------------------------------------------------------

    def equals(
        self,
        other: 'DecisionTree',
        compare: Optional[Callable[[Any, Any], bool]] = None,
    ) -> bool:
        """Whether both trees define the same function.

        Trees over the same key set in different orders compare equal.
        *compare* defaults to ``==`` on leaves.
        """
        if sorted(self._keys) != sorted(other._keys):
            return False
        compare = compare or (lambda a, b: a == b)
        return all(compare(value, other(a)) for a, value in self.enumerate())

    def __repr__(self) -> str:
        return f"DecisionTree(keys={self._keys}, nr_leaves={self.nr_leaves})"
