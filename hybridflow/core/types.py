"""Core types shared by the discrete, continuous and hybrid layers."""

from __future__ import annotations

import enum
import itertools
from dataclasses import dataclass
from typing import Dict, Hashable, Iterable, Iterator, List, NamedTuple, Sequence

# A variable key: any hashable, mutually orderable value.
Key = Hashable

# Discrete assignment: key -> selected value in [0, cardinality).
Assignment = Dict[Key, int]


class Symbol(NamedTuple):
    """A character/index key that orders ``x2`` before ``x10``."""

    chr: str
    index: int

    def __str__(self) -> str:
        return f"{self.chr}{self.index}"

    def __repr__(self) -> str:
        return f"{self.chr}{self.index}"


# ---------------------------------------------------------------------------
# Discrete keys
# ---------------------------------------------------------------------------

@dataclass(frozen=True, order=True)
class DiscreteKey:
    """A discrete variable: its key and its number of values."""

    key: Key
    cardinality: int

    def __post_init__(self) -> None:
        if self.cardinality < 1:
            raise ValueError(
                f"Discrete key {self.key!r} needs a positive cardinality, "
                f"got {self.cardinality}"
            )

    def __repr__(self) -> str:
        return f"({self.key}, {self.cardinality})"


class FactorKind(enum.Enum):
    """Discriminant of a hybrid factor."""

    CONTINUOUS = "continuous"
    DISCRETE = "discrete"
    HYBRID = "hybrid"


def cardinality_product(keys: Iterable[DiscreteKey]) -> int:
    """Number of joint assignments of *keys*."""
    total = 1
    for dk in keys:
        total *= dk.cardinality
    return total


def assignments(keys: Sequence[DiscreteKey]) -> Iterator[Assignment]:
    """Enumerate all joint assignments of *keys* in row-major order.

    The first key varies slowest, matching the leaf order of a
    :class:`~hybridflow.decision.tree.DecisionTree` built over *keys*.
    """
    labels = [dk.key for dk in keys]
    for values in itertools.product(*(range(dk.cardinality) for dk in keys)):
        yield dict(zip(labels, values))


def merge_discrete_keys(
    first: Sequence[DiscreteKey], second: Sequence[DiscreteKey]
) -> List[DiscreteKey]:
    """Union of two key lists: *first* in order, then new keys of *second*.

    Raises
    ------
    ValueError
        If a key appears in both lists with different cardinalities.
    """
    merged: List[DiscreteKey] = list(first)
    seen = {dk.key: dk for dk in first}
    for dk in second:
        known = seen.get(dk.key)
        if known is None:
            merged.append(dk)
            seen[dk.key] = dk
        elif known.cardinality != dk.cardinality:
            raise ValueError(
                f"Discrete key {dk.key!r} has cardinality {dk.cardinality} "
                f"here but {known.cardinality} elsewhere"
            )
    return merged


def restrict(assignment: Assignment, keys: Iterable[DiscreteKey]) -> Assignment:
    """Sub-assignment of *assignment* on the labels of *keys* that it covers."""
    return {dk.key: assignment[dk.key] for dk in keys if dk.key in assignment}
