"""Gaussian, discrete, mixture and hybrid factors and conditionals."""

from .continuous import (
    GaussianBayesNet,
    GaussianConditional,
    GaussianFactorGraph,
    JacobianFactor,
    eliminate_qr,
)
from .discrete import DecisionTreeFactor, DiscreteConditional, DiscreteLookupTable
from .conditional import GaussianMixture, GaussianMixtureFactor
from .hybrid import HybridConditional, HybridFactor

__all__ = [
    "GaussianBayesNet",
    "GaussianConditional",
    "GaussianFactorGraph",
    "JacobianFactor",
    "eliminate_qr",
    "DecisionTreeFactor",
    "DiscreteConditional",
    "DiscreteLookupTable",
    "GaussianMixture",
    "GaussianMixtureFactor",
    "HybridConditional",
    "HybridFactor",
]
