"""Hybrid elimination, elimination trees and incremental inference."""

from .elimination import (
    EliminationStrategy,
    MaxProduct,
    SumProduct,
    eliminate_hybrid,
    strategy_from_settings,
)
from .elimination_tree import (
    EliminationTree,
    JunctionTree,
    default_ordering,
    eliminate_multifrontal,
    eliminate_sequential,
)
from .incremental import HybridGaussianISAM

__all__ = [
    "EliminationStrategy",
    "MaxProduct",
    "SumProduct",
    "eliminate_hybrid",
    "strategy_from_settings",
    "EliminationTree",
    "JunctionTree",
    "default_ordering",
    "eliminate_multifrontal",
    "eliminate_sequential",
    "HybridGaussianISAM",
]
