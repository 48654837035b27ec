"""Hybrid Bayes tree: a forest of cliques produced by multifrontal elimination.

Cliques live in a :class:`networkx.DiGraph` keyed by stable integer ids, with
edges from parent to child.  Each node carries an immutable :class:`Clique`;
removing a clique deregisters it and relinks its neighbours, so a
:class:`Clique` object held elsewhere stays valid.  Pruning returns a new tree
(copy-on-write); only :class:`~hybridflow.inference.incremental.HybridGaussianISAM`
mutates its own tree in place.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Tuple

import networkx as nx

from hybridflow.core.types import Assignment, DiscreteKey
from hybridflow.distributions.continuous import GaussianBayesNet
from hybridflow.distributions.discrete import DecisionTreeFactor
from hybridflow.distributions.hybrid import HybridConditional
from hybridflow.networks.dag import HybridBayesNet, HybridValues

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Clique:
    """A clique: its stable id and its conditional on the frontal keys."""
    id: int
    conditional: HybridConditional

    @property
    def frontals(self) -> List[Any]:
        return self.conditional.frontals

    @property
    def parents(self) -> List[Any]:
        """Separator keys shared with the parent clique."""
        return self.conditional.parents

    def __repr__(self) -> str:
        return f"Clique({self.id}, {self.frontals} | {self.parents})"


class OrphanWrapper:
    """A detached sub-tree entering elimination as a symbolic factor.

    It involves the separator of the orphan's root clique, so the orphan is
    reattached under whichever new clique eliminates that separator.  It has
    no numeric content.
    """

    def __init__(self, clique: Clique) -> None:
        self.clique = clique

    @property
    def continuous_keys(self) -> List[Any]:
        return self.clique.conditional.continuous_parents

    @property
    def discrete_keys(self) -> List[DiscreteKey]:
        return self.clique.conditional.discrete_parents

    @property
    def keys(self) -> List[Any]:
        return self.continuous_keys + [dk.key for dk in self.discrete_keys]

    def __repr__(self) -> str:
        return f"OrphanWrapper({self.clique!r})"


class HybridBayesTree:
    """Clique forest of :class:`HybridConditional`.

    Parameters
    ----------
    None

    Examples
    --------
    >>> tree, _ = graph.eliminate_multifrontal(ordering)
    >>> tree.clique(X(1)).frontals
    [x1]
    >>> tree.to_bayes_net().optimize()
    """

    def __init__(self) -> None:
        self._graph: nx.DiGraph = nx.DiGraph()
        # frontal key -> clique id
        self._nodes: Dict[Any, int] = {}
        self._next_id = 0

    def copy(self) -> 'HybridBayesTree':
        """Shallow copy sharing the (immutable) cliques."""
        other = HybridBayesTree()
        other._graph = self._graph.copy()
        other._nodes = dict(self._nodes)
        other._next_id = self._next_id
        return other

    # ------------------------------------------------------------------ #
    #  Construction
    # ------------------------------------------------------------------ #

    def add_clique(
        self,
        conditional: HybridConditional,
        children: Iterable[Clique] = (),
    ) -> Clique:
        """Register a clique and make it the parent of *children*."""
        clique = Clique(self._next_id, conditional)
        self._next_id += 1
        self._graph.add_node(clique.id, clique=clique)
        for key in conditional.frontals:
            if key in self._nodes:
                raise ValueError(f"Key {key!r} is already a frontal of "
                                 f"clique {self._nodes[key]}")
            self._nodes[key] = clique.id
        for child in children:
            self.attach(child, clique)
        return clique

    def attach(self, child: Clique, parent: Clique) -> None:
        """Make *parent* the parent of *child*, detaching it from any other."""
        for old in list(self._graph.predecessors(child.id)):
            self._graph.remove_edge(old, child.id)
        self._graph.add_edge(parent.id, child.id)

    def _replace(self, clique: Clique, conditional: HybridConditional) -> Clique:
        updated = Clique(clique.id, conditional)
        self._graph.nodes[clique.id]["clique"] = updated
        return updated

    # ------------------------------------------------------------------ #
    #  Access
    # ------------------------------------------------------------------ #

    def __len__(self) -> int:
        return self._graph.number_of_nodes()

    def __contains__(self, key: Any) -> bool:
        return key in self._nodes

    def __getitem__(self, key: Any) -> Clique:
        return self._graph.nodes[self._nodes[key]]["clique"]

    def clique(self, key: Any) -> Clique:
        """Clique whose frontals contain *key*; ``KeyError`` if none does."""
        if key not in self._nodes:
            raise KeyError(f"Key {key!r} is not a frontal of any clique")
        return self[key]

    def keys(self) -> List[Any]:
        return list(self._nodes)

    def cliques(self) -> List[Clique]:
        """All cliques in creation order."""
        return [self._graph.nodes[i]["clique"] for i in sorted(self._graph)]

    @property
    def roots(self) -> List[Clique]:
        return [self._graph.nodes[i]["clique"] for i in sorted(self._graph)
                if self._graph.in_degree(i) == 0]

    def parent(self, clique: Clique) -> Optional[Clique]:
        for i in self._graph.predecessors(clique.id):
            return self._graph.nodes[i]["clique"]
        return None

    def children(self, clique: Clique) -> List[Clique]:
        return [self._graph.nodes[i]["clique"]
                for i in self._graph.successors(clique.id)]

    # ------------------------------------------------------------------ #
    #  Removal
    # ------------------------------------------------------------------ #

    def _remove_clique(self, clique_id: int) -> Clique:
        clique = self._graph.nodes[clique_id]["clique"]
        self._graph.remove_node(clique_id)
        for key in clique.frontals:
            del self._nodes[key]
        return clique

    def remove_top(self, keys: Iterable[Any]) -> Tuple[HybridBayesNet, List[Clique]]:
        """Remove the cliques on the paths from *keys* to their roots.

        Returns
        -------
        (HybridBayesNet, list of Clique)
            The conditionals of the removed cliques and the roots of the
            sub-trees left behind (the orphans).  Keys that are not in the
            tree are ignored.
        """
        removed: List[Clique] = []
        orphans: List[int] = []
        for key in keys:
            clique_id = self._nodes.get(key)
            while clique_id is not None:
                parents = list(self._graph.predecessors(clique_id))
                orphans.extend(self._graph.successors(clique_id))
                removed.append(self._remove_clique(clique_id))
                clique_id = parents[0] if parents else None
        bayes_net = HybridBayesNet(c.conditional for c in removed)
        survivors = [self._graph.nodes[i]["clique"] for i in dict.fromkeys(orphans)
                     if i in self._graph]
        logger.debug("Removed %d cliques, %d orphans", len(removed),
                     len(survivors))
        return bayes_net, survivors

    # ------------------------------------------------------------------ #
    #  Queries
    # ------------------------------------------------------------------ #

    def to_bayes_net(self) -> HybridBayesNet:
        """Conditionals of every clique, children before parents."""
        bayes_net = HybridBayesNet()
        for root in self.roots:
            for i in nx.dfs_postorder_nodes(self._graph, root.id):
                bayes_net.push_back(self._graph.nodes[i]["clique"].conditional)
        return bayes_net

    def choose(self, assignment: Assignment) -> GaussianBayesNet:
        return self.to_bayes_net().choose(assignment)

    def optimize(self, assignment: Optional[Assignment] = None) -> HybridValues:
        return self.to_bayes_net().optimize(assignment)

    # ------------------------------------------------------------------ #
    #  Pruning
    # ------------------------------------------------------------------ #

    def prune(self, discrete_factor: DecisionTreeFactor) -> 'HybridBayesTree':
        """New tree with zero-weight modes nulled in every covering mixture."""
        pruned = self.copy()
        for clique in pruned.cliques():
            conditional = clique.conditional.prune(discrete_factor)
            if conditional is not clique.conditional:
                pruned._replace(clique, conditional)
        return pruned

    def prune_at(self, key: Any, max_nr_leaves: int) -> 'HybridBayesTree':
        """Prune the discrete conditional of *key*'s clique, then the mixtures.

        The discrete conditional keeps its *max_nr_leaves* largest leaves;
        mixtures whose discrete keys cover it lose the components of the
        zeroed leaves.

        Raises
        ------
        KeyError
            If *key* is not in the tree.
        ValueError
            If *key*'s clique does not hold a discrete conditional.
        """
        clique = self.clique(key)
        discrete = clique.conditional.as_discrete()
        if discrete is None:
            raise ValueError(
                f"Clique of {key!r} holds a {clique.conditional.kind.value} "
                f"conditional, expected a discrete one"
            )
        decision = discrete.prune(max_nr_leaves)
        logger.debug("Pruned discrete conditional on %s to %d of %d leaves",
                     discrete.keys, decision.nr_nonzero(), decision.nr_leaves)
        pruned = self.prune(decision)
        pruned._replace(clique, HybridConditional(decision))
        return pruned

    def __repr__(self) -> str:
        return f"HybridBayesTree(cliques={self.cliques()})"
