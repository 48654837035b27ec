"""hybridflow: hybrid discrete/continuous inference by elimination.

This package builds factor graphs that mix discrete modes with Gaussian
continuous variables, eliminates them into hybrid Bayes nets or Bayes trees,
prunes unlikely modes and keeps a Bayes tree up to date incrementally.
"""

import logging

try:
    from hybridflow._version import version as __version__
except ImportError:
    __version__ = "0.1.0"

from .core.types import DiscreteKey, FactorKind, Symbol
from .core.context import EliminationSettings, HybridFlow
from .core.errors import IndeterminantLinearSystemError, OrderingError, StructuralError
from .decision.tree import DecisionTree
from .distributions.continuous import (
    GaussianBayesNet,
    GaussianConditional,
    GaussianFactorGraph,
    JacobianFactor,
)
from .distributions.discrete import DecisionTreeFactor, DiscreteConditional, DiscreteLookupTable
from .distributions.conditional import GaussianMixture, GaussianMixtureFactor
from .distributions.hybrid import HybridConditional, HybridFactor
from .networks.dag import HybridBayesNet, HybridValues
from .networks.bayes_tree import Clique, HybridBayesTree
from .inference.elimination import MaxProduct, SumProduct, eliminate_hybrid
from .inference.incremental import HybridGaussianISAM
from .networks.factor_graph import HybridGaussianFactorGraph
from .networks.graph import M, X, build_switching_chain

logging.getLogger(__name__).addHandler(logging.NullHandler())

__all__ = [
    "DiscreteKey",
    "FactorKind",
    "Symbol",
    "EliminationSettings",
    "HybridFlow",
    "IndeterminantLinearSystemError",
    "OrderingError",
    "StructuralError",
    "DecisionTree",
    "GaussianBayesNet",
    "GaussianConditional",
    "GaussianFactorGraph",
    "JacobianFactor",
    "DecisionTreeFactor",
    "DiscreteConditional",
    "DiscreteLookupTable",
    "GaussianMixture",
    "GaussianMixtureFactor",
    "HybridConditional",
    "HybridFactor",
    "HybridBayesNet",
    "HybridValues",
    "Clique",
    "HybridBayesTree",
    "MaxProduct",
    "SumProduct",
    "eliminate_hybrid",
    "HybridGaussianISAM",
    "HybridGaussianFactorGraph",
    "M",
    "X",
    "build_switching_chain",
]
