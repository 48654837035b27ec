"""Core module for hybridflow.

This module contains the key types, the settings context manager and the
exception hierarchy shared by every other layer.
"""

from .types import (
    Assignment,
    DiscreteKey,
    FactorKind,
    Key,
    Symbol,
    assignments,
    cardinality_product,
)
from .context import EliminationSettings, HybridFlow
from .errors import IndeterminantLinearSystemError, OrderingError, StructuralError

__all__ = [
    "Assignment",
    "DiscreteKey",
    "FactorKind",
    "Key",
    "Symbol",
    "assignments",
    "cardinality_product",
    "EliminationSettings",
    "HybridFlow",
    "IndeterminantLinearSystemError",
    "OrderingError",
    "StructuralError",
]
