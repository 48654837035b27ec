"""One elimination step over hybrid factors.

Provides:

* :class:`SumProduct` / :class:`MaxProduct` - strategies for eliminating
  discrete frontal keys (marginalisation vs. most probable explanation).
* :func:`eliminate_hybrid` - eliminate a set of frontal keys from the
  factors that involve them, returning a
  :class:`~hybridflow.distributions.hybrid.HybridConditional` and the factor
  left on the separator.

Eliminating a continuous key in the presence of mixtures runs one Gaussian
elimination per discrete assignment ("slice") of the mixtures' keys; a
singular slice becomes a pruned (``None``) component rather than aborting
the step.
"""

from __future__ import annotations

import abc
import logging
import math
from functools import reduce
from typing import Any, List, Optional, Sequence, Tuple

from hybridflow.core.context import HybridFlow
from hybridflow.core.errors import IndeterminantLinearSystemError, OrderingError
from hybridflow.core.types import DiscreteKey, cardinality_product, merge_discrete_keys
from hybridflow.decision.tree import DecisionTree
from hybridflow.distributions.conditional import GaussianMixture, GaussianMixtureFactor
from hybridflow.distributions.continuous import eliminate_qr
from hybridflow.distributions.discrete import (
    DecisionTreeFactor,
    DiscreteConditional,
    DiscreteLookupTable,
)
from hybridflow.distributions.hybrid import HybridConditional, HybridFactor

logger = logging.getLogger(__name__)


# ------------------------------------------------------------------ #
#  Discrete strategies
# ------------------------------------------------------------------ #

class EliminationStrategy(abc.ABC):
    """How discrete frontal keys are removed from a product of factors."""

    name: str = ""

    def eliminate(
        self, factors: Sequence[DecisionTreeFactor], frontal_keys: Sequence[Any]
    ) -> Tuple[DiscreteConditional, DecisionTreeFactor]:
        """Multiply *factors* and eliminate *frontal_keys* from the product."""
        product = reduce(lambda a, b: a * b, factors)
        return self.eliminate_product(product, list(frontal_keys))

    @abc.abstractmethod
    def eliminate_product(
        self, product: DecisionTreeFactor, frontal_keys: List[Any]
    ) -> Tuple[DiscreteConditional, DecisionTreeFactor]:
        ...

    def __repr__(self) -> str:
        return f"{type(self).__name__}()"


class SumProduct(EliminationStrategy):
    """Marginalise: ``P(f | s) = prod / sum_f prod`` and ``sum_f prod``."""

    name = "sum"

    def eliminate_product(self, product, frontal_keys):
        marginal = product.sum(frontal_keys)
        return DiscreteConditional.from_joint(product, frontal_keys), marginal


class MaxProduct(EliminationStrategy):
    """Most probable explanation: keep the raw product, pass on its max."""

    name = "max"

    def eliminate_product(self, product, frontal_keys):
        frontals = [dk for k in frontal_keys for dk in product.discrete_keys
                    if dk.key == k]
        parents = [dk for dk in product.discrete_keys
                   if dk.key not in frontal_keys]
        keys = frontals + parents
        table = DiscreteLookupTable(len(frontals), keys,
                                    product.tree.reorder(keys))
        return table, product.max(frontal_keys)


_STRATEGIES = {"sum": SumProduct, "max": MaxProduct}


def strategy_from_settings() -> EliminationStrategy:
    """Strategy named by the active :class:`HybridFlow` settings."""
    return _STRATEGIES[HybridFlow.settings().discrete_elimination]()


# ------------------------------------------------------------------ #
#  Hybrid elimination
# ------------------------------------------------------------------ #

def _discrete_labels(factors: Sequence[HybridFactor]) -> set:
    return {dk.key for f in factors for dk in f.discrete_keys}


def _eliminate_discrete(factors, frontal_keys, strategy):
    not_discrete = [f for f in factors if not f.is_discrete()]
    if not_discrete:
        raise OrderingError(
            f"Cannot eliminate discrete keys {frontal_keys} while factors on "
            f"continuous keys {not_discrete[0].continuous_keys} remain"
        )
    conditional, marginal = strategy.eliminate(
        [f.as_discrete() for f in factors], frontal_keys)
    logger.debug("Eliminated discrete %s with %s -> separator %s",
                 frontal_keys, strategy.name, marginal.keys)
    return HybridConditional(conditional), HybridFactor(marginal)


def _eliminate_continuous(factors, frontal_keys, rank_tolerance):
    conditional, remainder = eliminate_qr(
        [f.as_gaussian() for f in factors], frontal_keys, rank_tolerance)
    return HybridConditional(conditional), HybridFactor(remainder)


def _eliminate_mixtures(factors, frontal_keys, rank_tolerance):
    continuous = tuple(f.as_gaussian() for f in factors if f.is_continuous())
    mixtures = [f for f in factors if f.is_hybrid()]

    # Every slice is indexed by the full, sorted union of the mixtures'
    # discrete keys, even where a local factor does not depend on one.
    discrete_keys: List[DiscreteKey] = []
    for mixture in mixtures:
        discrete_keys = merge_discrete_keys(discrete_keys, mixture.discrete_keys)
    discrete_keys = sorted(discrete_keys)
    separator = sorted({k for f in factors for k in f.continuous_keys}
                       - set(frontal_keys))

    slices = DecisionTree(discrete_keys,
                          [continuous] * cardinality_product(discrete_keys))
    for mixture in mixtures:
        slices = mixture.inner.add_to(slices)

    def eliminate_slice(assignment, gaussians):
        if gaussians is None:
            return None, None
        try:
            return eliminate_qr(list(gaussians), frontal_keys, rank_tolerance,
                                separator_keys=separator)
        except IndeterminantLinearSystemError as exc:
            logger.warning("Dropping mode %s: %s", assignment, exc)
            return None, None

    conditionals, remainders = slices.apply_with_assignment(eliminate_slice).unzip()
    conditional = GaussianMixture(frontal_keys, separator, discrete_keys,
                                  conditionals)

    if separator:
        remaining = HybridFactor(
            GaussianMixtureFactor(separator, discrete_keys, remainders))
    else:
        # The leftover residual of each slice weighs its mode.
        remaining = HybridFactor(DecisionTreeFactor(
            discrete_keys,
            remainders.apply(
                lambda r: 0.0 if r is None else math.exp(-r.error({}))),
        ))
    logger.debug("Eliminated %s over modes %s: %d of %d components",
                 frontal_keys, [dk.key for dk in discrete_keys],
                 conditional.nr_components(), conditionals.nr_leaves)
    return HybridConditional(conditional), remaining


def eliminate_hybrid(
    factors: Sequence[HybridFactor],
    frontal_keys: Sequence[Any],
    strategy: Optional[EliminationStrategy] = None,
    rank_tolerance: Optional[float] = None,
) -> Tuple[HybridConditional, HybridFactor]:
    """Eliminate *frontal_keys* from *factors*.

    Parameters
    ----------
    factors : sequence of HybridFactor
        Every factor that involves a frontal key (and nothing else).
    frontal_keys : sequence
        Keys to eliminate, all continuous or all discrete.
    strategy : EliminationStrategy, optional
        Used for discrete frontals; defaults to the active settings.
    rank_tolerance : float, optional
        Singularity threshold for Gaussian elimination; defaults to the
        active settings.

    Returns
    -------
    (HybridConditional, HybridFactor)
        The conditional on the frontals and the factor left on the
        separator (possibly with no keys).

    Raises
    ------
    OrderingError
        If the frontals mix discrete and continuous keys, or a discrete
        factor is handed to a continuous step (or the other way round).
    """
    factors = [f if isinstance(f, HybridFactor) else HybridFactor(f)
               for f in factors]
    frontal_keys = list(frontal_keys)
    settings = HybridFlow.settings()
    if strategy is None:
        strategy = strategy_from_settings()
    if rank_tolerance is None:
        rank_tolerance = settings.rank_tolerance

    discrete = _discrete_labels(factors)
    discrete_frontals = [k for k in frontal_keys if k in discrete]
    if discrete_frontals:
        if len(discrete_frontals) != len(frontal_keys):
            raise OrderingError(
                f"Cannot eliminate discrete and continuous keys together: "
                f"{frontal_keys}"
            )
        return _eliminate_discrete(factors, frontal_keys, strategy)

    stray = [f for f in factors if f.is_discrete()]
    if stray:
        raise OrderingError(
            f"Discrete factor on {stray[0].keys} cannot be eliminated with "
            f"continuous keys {frontal_keys}"
        )
    if not any(f.is_hybrid() for f in factors):
        return _eliminate_continuous(factors, frontal_keys, rank_tolerance)
    return _eliminate_mixtures(factors, frontal_keys, rank_tolerance)
