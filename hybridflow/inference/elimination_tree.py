"""Symbolic elimination structures and the elimination drivers.

Provides:

* :class:`EliminationTree` - one node per eliminated key, built symbolically
  before any numeric work.  Ordering problems are detected here.
* :class:`JunctionTree` - elimination-tree nodes merged into clusters of
  frontal keys for multifrontal elimination.
* :func:`eliminate_sequential` / :func:`eliminate_multifrontal` - run
  :func:`~hybridflow.inference.elimination.eliminate_hybrid` over those
  structures, children before parents.

Factors are anything exposing ``keys``, ``continuous_keys`` and
``discrete_keys``: :class:`~hybridflow.distributions.hybrid.HybridFactor`
for numeric work, or :class:`~hybridflow.networks.bayes_tree.OrphanWrapper`
for sub-trees reattached during incremental updates.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple

from hybridflow.core.errors import OrderingError
from hybridflow.distributions.hybrid import HybridFactor
from hybridflow.inference.elimination import EliminationStrategy, eliminate_hybrid
from hybridflow.networks.bayes_tree import Clique, HybridBayesTree, OrphanWrapper
from hybridflow.networks.dag import HybridBayesNet

logger = logging.getLogger(__name__)


def default_ordering(factors: Sequence[Any]) -> List[Any]:
    """Continuous keys (sorted), then discrete keys (sorted)."""
    discrete = {dk.key for f in factors for dk in f.discrete_keys}
    continuous = {k for f in factors for k in f.continuous_keys} - discrete
    return sorted(continuous) + sorted(discrete)


# ------------------------------------------------------------------ #
#  Elimination tree
# ------------------------------------------------------------------ #

@dataclass
class _EliminationNode:
    key: Any
    factors: List[Any] = field(default_factory=list)
    children: List[int] = field(default_factory=list)
    separator: List[Any] = field(default_factory=list)
    parent: Optional[int] = None


class EliminationTree:
    """Symbolic elimination of *factors* in the order *ordering*.

    Node ``i`` eliminates ``ordering[i]``; its children always come earlier.

    Parameters
    ----------
    factors : sequence
        Hybrid factors (and orphan wrappers).
    ordering : sequence
        Keys to eliminate, in order.
    partial : bool
        When False the ordering must cover every key of *factors*.

    Raises
    ------
    OrderingError
        For duplicate or unknown keys, an incomplete ordering when
        *partial* is False, or a discrete key eliminated while its
        symbolic clique still holds an un-eliminated continuous key.
    """

    def __init__(self, factors: Sequence[Any], ordering: Sequence[Any],
                 partial: bool = False) -> None:
        ordering = list(ordering)
        self.ordering = ordering
        all_keys = {k for f in factors for k in f.keys}
        discrete = {dk.key for f in factors for dk in f.discrete_keys}
        self.discrete = discrete

        seen = set()
        for key in ordering:
            if key in seen:
                raise OrderingError(f"Key {key!r} appears twice in the ordering")
            if key not in all_keys:
                raise OrderingError(f"Key {key!r} is not in the factor graph")
            seen.add(key)
        if not partial:
            missing = all_keys - seen
            if missing:
                raise OrderingError(
                    f"Ordering does not cover keys {sorted(missing)}")

        position = {key: i for i, key in enumerate(ordering)}
        self.position = position
        self.nodes: List[_EliminationNode] = [_EliminationNode(k) for k in ordering]
        self.remaining: List[Any] = []
        for factor in factors:
            ordered = [position[k] for k in factor.keys if k in position]
            if ordered:
                self.nodes[min(ordered)].factors.append(factor)
            else:
                self.remaining.append(factor)

        self.roots: List[int] = []
        for i, node in enumerate(self.nodes):
            keys = {k for f in node.factors for k in f.keys}
            for child in node.children:
                keys.update(self.nodes[child].separator)
            keys.discard(node.key)
            node.separator = sorted(
                keys, key=lambda k: (k not in position, position.get(k, 0)))
            if node.key in discrete:
                continuous = [k for k in node.separator if k not in discrete]
                if continuous:
                    raise OrderingError(
                        f"Cannot eliminate discrete key {node.key!r} before "
                        f"continuous keys {continuous}"
                    )
            later = [position[k] for k in node.separator if k in position]
            if later:
                node.parent = min(later)
                self.nodes[node.parent].children.append(i)
            else:
                self.roots.append(i)

    def is_discrete(self, key: Any) -> bool:
        return key in self.discrete

    def __len__(self) -> int:
        return len(self.nodes)


# ------------------------------------------------------------------ #
#  Junction tree
# ------------------------------------------------------------------ #

@dataclass
class _Cluster:
    frontals: List[Any]
    factors: List[Any]
    nr_parents: int
    discrete: bool
    children: List[int] = field(default_factory=list)
    parent: Optional[int] = None


class JunctionTree:
    """Clusters of elimination-tree nodes eliminated together.

    A child node is merged into its parent when the parent's separator size
    plus its current frontal count equals the child's separator size (the
    child's clique is the parent's), provided both eliminate the same kind
    of key.  Frontals of a cluster stay in elimination order.
    """

    def __init__(self, etree: EliminationTree) -> None:
        self.etree = etree
        owner: Dict[int, int] = {}
        clusters: List[_Cluster] = []
        for i, node in enumerate(etree.nodes):
            cluster = _Cluster([node.key], list(node.factors),
                               len(node.separator), etree.is_discrete(node.key))
            nr_frontals = 1
            children: List[int] = []
            for child in node.children:
                other = clusters[owner[child]]
                if (cluster.nr_parents + nr_frontals == other.nr_parents
                        and other.discrete == cluster.discrete):
                    cluster.frontals.extend(other.frontals)
                    cluster.factors.extend(other.factors)
                    children.extend(other.children)
                    nr_frontals += len(other.frontals)
                    other.frontals = []
                else:
                    children.append(owner[child])
            cluster.frontals.sort(key=etree.position.__getitem__)
            cluster.children = children
            index = len(clusters)
            clusters.append(cluster)
            for c in children:
                clusters[c].parent = index
            owner[i] = index
        # merged-away clusters are left with no frontals
        self.clusters = clusters
        self.order = [i for i, c in enumerate(clusters) if c.frontals]
        self.roots = [i for i in self.order if clusters[i].parent is None]

    def __len__(self) -> int:
        return len(self.order)


# ------------------------------------------------------------------ #
#  Drivers
# ------------------------------------------------------------------ #

def _split_orphans(factors: Sequence[Any]) -> Tuple[List[Any], List[Clique]]:
    numeric = [f for f in factors if not isinstance(f, OrphanWrapper)]
    orphans = [f.clique for f in factors if isinstance(f, OrphanWrapper)]
    return numeric, orphans


def _keep(remainder: HybridFactor, remaining: List[HybridFactor]) -> None:
    # remainders with no keys are constants and are dropped
    if remainder.keys:
        remaining.append(remainder)


def eliminate_sequential(
    factors: Sequence[Any],
    ordering: Sequence[Any],
    strategy: Optional[EliminationStrategy] = None,
    rank_tolerance: Optional[float] = None,
    partial: bool = False,
) -> Tuple[HybridBayesNet, List[HybridFactor]]:
    """Eliminate one key at a time.

    Returns
    -------
    (HybridBayesNet, list of HybridFactor)
        Conditionals in elimination order and the factors left on keys the
        ordering does not cover.
    """
    etree = EliminationTree(factors, ordering, partial=partial)
    bayes_net = HybridBayesNet()
    remainders: Dict[int, HybridFactor] = {}
    remaining: List[HybridFactor] = []
    for i, node in enumerate(etree.nodes):
        numeric, _ = _split_orphans(node.factors)
        numeric += [remainders.pop(c) for c in node.children]
        conditional, remainder = eliminate_hybrid(
            numeric, [node.key], strategy, rank_tolerance)
        bayes_net.push_back(conditional)
        if node.parent is None:
            _keep(remainder, remaining)
        else:
            remainders[i] = remainder
    remaining.extend(f for f in etree.remaining if isinstance(f, HybridFactor))
    logger.debug("Sequential elimination of %d keys, %d factors remain",
                 len(etree), len(remaining))
    return bayes_net, remaining


def eliminate_multifrontal(
    factors: Sequence[Any],
    ordering: Sequence[Any],
    strategy: Optional[EliminationStrategy] = None,
    rank_tolerance: Optional[float] = None,
    partial: bool = False,
    into: Optional[HybridBayesTree] = None,
) -> Tuple[HybridBayesTree, List[HybridFactor]]:
    """Eliminate the clusters of a junction tree into a Bayes tree.

    Parameters
    ----------
    into : HybridBayesTree, optional
        Tree receiving the new cliques; orphan sub-trees already in it are
        reattached under the clique that eliminates their separator.  A new
        tree is created when omitted.

    Returns
    -------
    (HybridBayesTree, list of HybridFactor)
        The tree and the factors left on keys the ordering does not cover.
    """
    jtree = JunctionTree(EliminationTree(factors, ordering, partial=partial))
    tree = HybridBayesTree() if into is None else into
    cliques: Dict[int, Clique] = {}
    remainders: Dict[int, HybridFactor] = {}
    remaining: List[HybridFactor] = []
    for i in jtree.order:
        cluster = jtree.clusters[i]
        numeric, orphans = _split_orphans(cluster.factors)
        numeric += [remainders.pop(c) for c in cluster.children]
        conditional, remainder = eliminate_hybrid(
            numeric, cluster.frontals, strategy, rank_tolerance)
        children = [cliques.pop(c) for c in cluster.children] + orphans
        cliques[i] = tree.add_clique(conditional, children)
        if orphans:
            logger.debug("Reattached %d orphans under %s", len(orphans),
                         cluster.frontals)
        if cluster.parent is None:
            _keep(remainder, remaining)
        else:
            remainders[i] = remainder
    remaining.extend(f for f in jtree.etree.remaining
                     if isinstance(f, HybridFactor))
    logger.debug("Multifrontal elimination into %d cliques, %d factors remain",
                 len(jtree), len(remaining))
    return tree, remaining
