"""Incremental hybrid inference over a Bayes tree."""

from __future__ import annotations

import logging
from typing import Any, Iterable, List, Optional, Sequence, Set

from hybridflow.core.types import Key
from hybridflow.distributions.hybrid import HybridFactor
from hybridflow.inference.elimination import EliminationStrategy
from hybridflow.inference.elimination_tree import eliminate_multifrontal
from hybridflow.networks.bayes_tree import Clique, HybridBayesTree, OrphanWrapper

logger = logging.getLogger(__name__)


class HybridGaussianISAM:
    """Keeps a Bayes tree up to date as factors arrive.

    Each :meth:`update` re-eliminates only the cliques on the paths from the
    keys touched by the new factors to the root; every other clique is kept
    as-is and reattached.

    Parameters
    ----------
    bayes_tree : HybridBayesTree, optional
        Starting tree, copied.  Defaults to an empty tree.
    strategy : EliminationStrategy, optional
        Discrete elimination used by every update.  Defaults to the active
        settings at update time.
    """

    def __init__(
        self,
        bayes_tree: Optional[HybridBayesTree] = None,
        strategy: Optional[EliminationStrategy] = None,
    ) -> None:
        self._tree = HybridBayesTree() if bayes_tree is None else bayes_tree.copy()
        self.strategy = strategy

    @property
    def bayes_tree(self) -> HybridBayesTree:
        """The current tree.  Do not mutate it."""
        return self._tree

    def __len__(self) -> int:
        return len(self._tree)

    def __contains__(self, key: Key) -> bool:
        return key in self._tree

    def __getitem__(self, key: Key) -> Clique:
        return self._tree[key]

    def clique(self, key: Key) -> Clique:
        return self._tree.clique(key)

    def update(
        self,
        new_factors: Iterable[Any],
        ordering: Optional[Sequence[Key]] = None,
    ) -> None:
        """Add *new_factors* and re-eliminate the affected top of the tree.

        Parameters
        ----------
        new_factors : iterable of HybridFactor (or raw factors)
            Typically a :class:`HybridGaussianFactorGraph`.
        ordering : sequence, optional
            Elimination ordering of every key in the affected region.  By
            default: continuous keys not touched by the new factors, then the
            touched continuous keys, then the discrete keys, each sorted.

        Raises
        ------
        OrderingError
            If *ordering* is not valid for the affected region.  The tree is
            left unchanged.
        """
        new_factors = [f if isinstance(f, HybridFactor) else HybridFactor(f)
                       for f in new_factors]
        new_keys = list(dict.fromkeys(k for f in new_factors for k in f.keys))

        working = self._tree.copy()
        removed, orphans = working.remove_top(new_keys)
        pool = list(removed) + new_factors + [OrphanWrapper(o) for o in orphans]

        if ordering is None:
            ordering = self._ordering(pool, set(new_keys))
        logger.debug("Updating with %d factors: %d cliques removed, "
                     "%d orphans", len(new_factors), len(removed), len(orphans))
        eliminate_multifrontal(pool, ordering, self.strategy, into=working)
        self._tree = working

    @staticmethod
    def _ordering(pool: Sequence[Any], new_keys: Set[Key]) -> List[Key]:
        discrete = {dk.key for f in pool for dk in f.discrete_keys}
        continuous = {k for f in pool for k in f.continuous_keys} - discrete
        untouched = sorted(continuous - new_keys)
        touched = sorted(continuous & new_keys)
        return untouched + touched + sorted(discrete)

    def prune(self, key: Key, max_nr_leaves: int) -> None:
        """Bound the modes kept at *key*'s discrete clique.

        The discrete conditional keeps its *max_nr_leaves* largest leaves and
        every mixture covering its keys loses the components of the rest.
        Trees previously returned by :attr:`bayes_tree` are not modified.
        """
        self._tree = self._tree.prune_at(key, max_nr_leaves)
